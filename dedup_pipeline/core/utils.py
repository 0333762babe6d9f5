"""File I/O and small list helpers."""

import json
import os
from typing import Any, Iterable

from .types import NewsItem


def write_json(data: Any, path: str) -> None:
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def read_json(path: str) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def flatten(batches: Iterable[list]) -> list:
    return [item for batch in batches for item in batch]


def count_items(batches: Iterable[list]) -> int:
    return sum(len(batch) for batch in batches)


def batch_label(round_number: int, batch_number: int | None = None) -> str:
    """Zero-padded "RR-BB" label, "RR---" for a whole round."""
    batch_part = f"{batch_number:02d}" if batch_number else "--"
    return f"{round_number:02d}-{batch_part}"


def items_to_json(items: Iterable[NewsItem | str]) -> list:
    return [i.to_dict() if isinstance(i, NewsItem) else i for i in items]


def load_news_payload(path: str) -> dict:
    """Read collected news from disk.

    Accepts either a bare list of items or a collected-news object
    ({"date", "newsItems", "numberOfPosts", "numberOfSources"}).
    Items are normalised to NewsItem.
    """
    data = read_json(path)
    if isinstance(data, list):
        data = {"newsItems": data}
    if not isinstance(data, dict):
        raise ValueError(f"Unsupported input structure in {path}")

    raw_items = data.get("newsItems", data.get("items", []))
    payload = {k: v for k, v in data.items() if k not in ("newsItems", "items")}
    payload["items"] = [NewsItem.from_raw(i) for i in raw_items]
    return payload
