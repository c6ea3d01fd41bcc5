"""Collapse content records from several origins into one canonical list.

Two passes of identity are applied per item, in input order:

- Server-assigned ids are authoritative: a repeated id is a duplicate.
- Temporary ids (see :data:`~storyshelf.models.TEMP_ID_THRESHOLD`) are
  expected to differ between independent imports of the same item, so
  they never count as identity; the normalized ``(title, type)`` key is
  the fallback discriminator and applies to every item.

The first occurrence wins and keeps its position and field values.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TypeVar

from storyshelf.models import ContentItem, is_temporary_id

T = TypeVar("T", ContentItem, Mapping)


def _field(item: ContentItem | Mapping, name: str) -> object:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def title_type_key(item: ContentItem | Mapping) -> tuple[str, str]:
    """Lowercased, trimmed title paired with the literal type."""
    title = _field(item, "title") or ""
    type_ = _field(item, "type") or ""
    return str(title).strip().lower(), str(type_)


def deduplicate(items: Iterable[T]) -> list[T]:
    """Return *items* without identity or title/type duplicates."""
    seen_ids: set[object] = set()
    seen_keys: set[tuple[str, str]] = set()
    result: list[T] = []

    for item in items:
        item_id = _field(item, "id")
        if item_id is not None and not is_temporary_id(item_id) and item_id in seen_ids:
            continue

        key = title_type_key(item)
        if key in seen_keys:
            continue

        seen_ids.add(item_id)
        seen_keys.add(key)
        result.append(item)

    return result
