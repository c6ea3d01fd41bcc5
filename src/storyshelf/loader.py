"""Load the library: remote first, local cache as fallback, else empty.

``load`` never raises. The worst outcome is an empty list, which the
caller treats as "nothing here yet, ask the user to import".
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

from storyshelf.cache import SNAPSHOT_VERSION, STORAGE_KEY, CacheStore
from storyshelf.dedupe import deduplicate
from storyshelf.errors import SyncReport
from storyshelf.gateway import ContentGateway, GatewayError
from storyshelf.models import ContentItem, StoredSnapshot

logger = logging.getLogger(__name__)


def transform_record(raw: Mapping[str, object]) -> ContentItem:
    """Map a transport record (snake_case) onto a ContentItem."""
    return ContentItem(
        id=raw["id"],
        title=raw.get("title") or "",
        type=raw.get("type") or "",
        content=raw.get("content") or "",
        read_count=raw.get("read_count") or 0,
        favorite=bool(raw.get("favorite") or False),
        archived=bool(raw.get("archived") or False),
    )


class ReconciliationLoader:
    """Produces the canonical item list from the server or the cache."""

    def __init__(
        self,
        gateway: ContentGateway | None,
        cache: CacheStore,
        *,
        version: int = SNAPSHOT_VERSION,
        key: str = STORAGE_KEY,
        report: SyncReport | None = None,
    ) -> None:
        self._gateway = gateway
        self._cache = cache
        self._version = version
        self._key = key
        self.report = report or SyncReport()
        self.pending_writes: set[asyncio.Task[bool]] = set()

    @property
    def version(self) -> int:
        return self._version

    @property
    def key(self) -> str:
        return self._key

    async def load(self, device_id: str) -> list[ContentItem]:
        """Return the deduplicated library for *device_id*."""
        items = await self._load_remote(device_id)
        if items:
            self._persist_detached(items)
            self.report.source = "remote"
            logger.info("Loaded %d item(s) from server", len(items))
            return items

        snapshot = self.read_snapshot()
        if snapshot is not None:
            cached = deduplicate(snapshot.items)
            self.report.source = "cache"
            logger.info("Loaded %d item(s) from local cache", len(cached))
            return cached

        self.report.source = "empty"
        logger.info("No content on server or in cache")
        return []

    def read_snapshot(self) -> StoredSnapshot | None:
        """Return the cached snapshot if it is current and non-empty."""
        snapshot = self._cache.get(self._key)
        if snapshot is None:
            return None
        if snapshot.version != self._version:
            logger.warning(
                "Ignoring cache snapshot with version %d (expected %d)",
                snapshot.version,
                self._version,
            )
            return None
        if not snapshot.items:
            return None
        return snapshot

    async def drain(self) -> None:
        """Wait for any cache writes started by ``load``."""
        if self.pending_writes:
            await asyncio.gather(*list(self.pending_writes), return_exceptions=True)

    async def _load_remote(self, device_id: str) -> list[ContentItem]:
        if self._gateway is None:
            return []
        try:
            records = await asyncio.to_thread(self._gateway.fetch_content, device_id)
            items = [transform_record(r) for r in records]
        except (GatewayError, OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Remote load failed, falling back to cache: %s", exc)
            self.report.add_error("fetch-content", str(exc), error_type=type(exc).__name__)
            return []
        self.report.count("fetch-content")
        return deduplicate(items)

    def _persist_detached(self, items: list[ContentItem]) -> None:
        snapshot = StoredSnapshot(version=self._version, items=items)
        task = asyncio.create_task(asyncio.to_thread(self._cache.set, self._key, snapshot))
        self.pending_writes.add(task)
        task.add_done_callback(self.pending_writes.discard)
