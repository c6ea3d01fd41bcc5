"""Canonical library models shared by the cache, gateway and coordinator."""

from __future__ import annotations

import random
import time
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# Server ids come from a sequential SQL column; client-synthesized ids are
# millisecond timestamps (~1.7e12 today). Anything above this is temporary.
TEMP_ID_THRESHOLD = 1_000_000_000_000


class ContentType(StrEnum):
    """Closed set of content kinds."""

    SONG = "song"
    POEM = "poem"
    STORY = "story"


# Index order used by the compact seed rows ``[id, title, type_index, content]``.
CONTENT_TYPES: list[ContentType] = [ContentType.SONG, ContentType.POEM, ContentType.STORY]


class ProgressAction(StrEnum):
    """Actions accepted by the remote progress endpoint."""

    MARK_READ = "markRead"
    TOGGLE_FAVORITE = "toggleFavorite"
    TOGGLE_ARCHIVE = "toggleArchive"
    SET_PROGRESS = "setProgress"


class ContentItem(BaseModel):
    """A song, poem or story plus this device's progress on it.

    ``id`` is either a server-assigned integer or a temporary id built
    from a millisecond timestamp (see :func:`new_temporary_id`).
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int | float
    title: str = ""
    type: str = ContentType.POEM.value
    content: str = ""
    read_count: int = Field(default=0, ge=0, alias="readCount")
    favorite: bool = False
    archived: bool = False

    @property
    def is_temporary(self) -> bool:
        return is_temporary_id(self.id)

    def to_record(self) -> dict[str, object]:
        """Serialize with domain (camelCase) field names."""
        return self.model_dump(by_alias=True)


class StoredSnapshot(BaseModel):
    """Versioned copy of the whole collection, as persisted locally."""

    version: int
    items: list[ContentItem] = Field(default_factory=list)


def is_temporary_id(value: object) -> bool:
    """True if *value* is a numeric id above :data:`TEMP_ID_THRESHOLD`."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return value > TEMP_ID_THRESHOLD


def new_temporary_id(jitter: bool = False) -> int | float:
    """Return a temporary id derived from the current time in milliseconds.

    With ``jitter`` a fractional random component is added so that ids
    minted in the same millisecond (e.g. one import batch) do not collide.
    """
    stamp = time.time_ns() // 1_000_000
    if jitter:
        return stamp + random.random()
    return stamp
