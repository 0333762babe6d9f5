"""Batch dedup prompts: merge news items that cover the same story."""

DEDUP_SYSTEM = """\
You are a news editor fluent in Arabic. You'll be given a list of news items that may contain duplicates. Your task is to deduplicate the news items. Follow these rules:

1. Identify and merge ALL similar stories - whenever multiple items cover the same event or are related to the same topic, combine them into one news item.
2. Don't skip any news item: items that cannot be merged should be kept as is.
3. When merging, preserve all unique sources from the duplicate items.
4. Keep the most comprehensive summary when merging duplicates.
5. Return ALL unique news items after deduplication.
6. Respond ONLY with valid JSON, no markdown formatting, no code fences.\
"""

DEDUP_USER_TEMPLATE = """\
Deduplicate these {item_count} news items.

--- ITEMS START ---
{items_json}
--- ITEMS END ---

Return a JSON object with this EXACT structure:
{{
  "items": [
    {{
      "text": "Most comprehensive summary of the story",
      "sources": ["https://source-1", "https://source-2"]
    }}
  ]
}}\
"""
