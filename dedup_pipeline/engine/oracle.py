"""Deduplicate-a-batch oracles.

The engine only depends on the DedupOracle protocol. LLMOracle is the real
one; ExactTextOracle and PassthroughOracle are deterministic and need no API.
"""

import json
import re
from typing import Protocol

from ..core.errors import OracleError
from ..core.types import NewsItem, OracleResult, UsageStats
from ..core.utils import batch_label
from ..prompts.dedup_prompts import DEDUP_SYSTEM, DEDUP_USER_TEMPLATE


class DedupOracle(Protocol):
    def deduplicate_batch(self, batch: list[NewsItem], round_number: int,
                          batch_number: int) -> OracleResult:
        ...


class PassthroughOracle:
    """Returns every batch unchanged."""

    def deduplicate_batch(self, batch, round_number, batch_number):
        return OracleResult(items=list(batch))


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip().casefold()


class ExactTextOracle:
    """Merges items whose whitespace/case-normalised text is identical.

    The first occurrence keeps its position; sources of later duplicates are
    appended to it without repeats.
    """

    def deduplicate_batch(self, batch, round_number, batch_number):
        merged: dict[str, NewsItem] = {}
        for item in batch:
            key = normalize_text(item.text)
            if key not in merged:
                merged[key] = item
                continue
            kept = merged[key]
            extra = tuple(s for s in item.sources if s not in kept.sources)
            if extra:
                merged[key] = NewsItem(text=kept.text, sources=kept.sources + extra)
        return OracleResult(items=list(merged.values()))


class LLMOracle:
    """Asks an LLM to merge the batch and parses {"items": [...]} back."""

    def __init__(self, client, max_output_tokens: int = 32768):
        self.client = client
        self.max_output_tokens = max_output_tokens

    def build_prompt(self, batch: list[NewsItem]) -> str:
        items_json = json.dumps([i.to_dict() for i in batch], ensure_ascii=False, indent=2)
        return DEDUP_USER_TEMPLATE.format(item_count=len(batch), items_json=items_json)

    def deduplicate_batch(self, batch, round_number, batch_number):
        label = batch_label(round_number, batch_number)
        result = self.client.call_json(
            system=DEDUP_SYSTEM, user=self.build_prompt(batch),
            max_tokens=self.max_output_tokens, phase=f"round-{round_number}",
        )
        usage = getattr(self.client, "last_usage", UsageStats())

        raw_items = result.get("items") if isinstance(result, dict) else result
        if not isinstance(raw_items, list):
            raise OracleError("response has no 'items' list", round_number, batch_number)

        items = []
        for raw in raw_items:
            try:
                item = NewsItem.from_raw(raw)
            except TypeError as e:
                raise OracleError(f"bad item in {label}: {e}", round_number, batch_number)
            if item.text.strip():
                items.append(item)

        if batch and not items:
            raise OracleError("response dropped every item", round_number, batch_number)
        return OracleResult(items=items, usage=usage)
