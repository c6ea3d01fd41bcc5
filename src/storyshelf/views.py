"""Filtering, ordering and counting for display."""

from __future__ import annotations

import random
from collections.abc import Iterable

from pydantic import BaseModel

from storyshelf.models import ContentItem, ContentType


class LibraryStats(BaseModel):
    """Counts shown in the library header."""

    total: int = 0
    songs: int = 0
    poems: int = 0
    stories: int = 0
    archived: int = 0


def filter_items(
    items: Iterable[ContentItem],
    *,
    search: str = "",
    type_filter: str = "all",
    archived: bool = False,
) -> list[ContentItem]:
    """Items on the requested shelf (active or archived) matching search and type."""
    result = [i for i in items if i.archived == archived]
    if search:
        needle = search.lower()
        result = [i for i in result if needle in i.title.lower() or needle in i.content.lower()]
    if type_filter != "all":
        result = [i for i in result if i.type == type_filter]
    return result


def sort_for_display(items: Iterable[ContentItem]) -> list[ContentItem]:
    """Favorites first, then least-read, then by title."""
    return sorted(items, key=lambda i: (not i.favorite, i.read_count, i.title.casefold()))


def library_stats(items: Iterable[ContentItem]) -> LibraryStats:
    stats = LibraryStats()
    for item in items:
        if item.archived:
            stats.archived += 1
            continue
        stats.total += 1
        if item.type == ContentType.SONG:
            stats.songs += 1
        elif item.type == ContentType.POEM:
            stats.poems += 1
        elif item.type == ContentType.STORY:
            stats.stories += 1
    return stats


def pick_random(items: Iterable[ContentItem], rng: random.Random | None = None) -> ContentItem | None:
    """A random non-archived item, or None if there is none."""
    available = [i for i in items if not i.archived]
    if not available:
        return None
    return (rng or random).choice(available)


def preview(text: str, limit: int = 70) -> str:
    """First two non-blank lines, joined and truncated."""
    lines = " • ".join([line for line in text.split("\n") if line.strip()][:2])
    return lines[:limit] + "..." if len(lines) > limit else lines
