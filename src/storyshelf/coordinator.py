"""Optimistic mutations over the in-memory library.

Every mutation replaces the whole collection in :class:`LibraryState`
before returning, then hands the matching server call to a detached
task. Remote outcomes are only logged and recorded in the
:class:`~storyshelf.errors.SyncReport`; they are never written back into
the state and a failure never rolls a local change back. The next
successful full reload is the only thing that corrects drift.

Known property: a toggle flips the local flag and asks the server for a
NOT-toggle independently. Toggles made on another device in between are
not reconciled until the next reload.

Items with a temporary id have never reached the server, so their
progress and edit calls stay local.

An update applies to every item carrying the target id. Server ids are
unique after deduplication, but independent imports can leave two items
sharing one temporary id.

A debounced write persists the latest collection to the local cache
after every mutation, independent of how the remote calls went.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any

from storyshelf.cache import CacheStore
from storyshelf.dedupe import deduplicate
from storyshelf.errors import SyncReport
from storyshelf.gateway import ContentGateway, GatewayError
from storyshelf.importer import parse_import
from storyshelf.loader import ReconciliationLoader, transform_record
from storyshelf.models import (
    ContentItem,
    ContentType,
    ProgressAction,
    StoredSnapshot,
    is_temporary_id,
    new_temporary_id,
)

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5

_REMOTE_ERRORS = (GatewayError, OSError, ValueError, KeyError, TypeError)


class LibraryState:
    """Owns the in-memory collection. ``replace`` is the only writer."""

    def __init__(self, items: Iterable[ContentItem] = ()) -> None:
        self._items: tuple[ContentItem, ...] = tuple(items)

    @property
    def items(self) -> tuple[ContentItem, ...]:
        return self._items

    def replace(self, items: Iterable[ContentItem]) -> None:
        self._items = tuple(items)

    def find(self, item_id: int | float) -> ContentItem | None:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def __len__(self) -> int:
        return len(self._items)


class MutationCoordinator:
    """Applies mutations locally and syncs them in the background."""

    def __init__(
        self,
        state: LibraryState,
        gateway: ContentGateway | None,
        cache: CacheStore,
        loader: ReconciliationLoader,
        device_id: str,
        *,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        report: SyncReport | None = None,
    ) -> None:
        self._state = state
        self._gateway = gateway
        self._cache = cache
        self._loader = loader
        self._device_id = device_id
        self._debounce = debounce
        self.report = report or loader.report
        self._tasks: set[asyncio.Task[bool]] = set()
        self._timer: asyncio.TimerHandle | None = None

    @property
    def state(self) -> LibraryState:
        return self._state

    @property
    def has_pending_write(self) -> bool:
        return self._timer is not None

    # -- progress -----------------------------------------------------

    def mark_read(self, item_id: int | float) -> ContentItem | None:
        """Increment ``read_count`` by one and ask the server to do the same."""
        updated = self._update(item_id, lambda i: i.model_copy(update={"read_count": i.read_count + 1}))
        if updated is not None:
            self._sync_progress(updated, ProgressAction.MARK_READ)
        return updated

    def toggle_favorite(self, item_id: int | float) -> ContentItem | None:
        updated = self._update(item_id, lambda i: i.model_copy(update={"favorite": not i.favorite}))
        if updated is not None:
            self._sync_progress(updated, ProgressAction.TOGGLE_FAVORITE)
        return updated

    def toggle_archive(self, item_id: int | float) -> ContentItem | None:
        updated = self._update(item_id, lambda i: i.model_copy(update={"archived": not i.archived}))
        if updated is not None:
            self._sync_progress(updated, ProgressAction.TOGGLE_ARCHIVE)
        return updated

    def set_progress(
        self,
        item_id: int | float,
        *,
        read_count: int,
        favorite: bool,
        archived: bool,
    ) -> ContentItem | None:
        """Overwrite all progress fields. The only way to lower ``read_count``."""
        if read_count < 0:
            raise ValueError("read_count must be non-negative")
        values = {"read_count": read_count, "favorite": favorite, "archived": archived}
        updated = self._update(item_id, lambda i: i.model_copy(update=values))
        if updated is not None:
            self._sync_progress(
                updated,
                ProgressAction.SET_PROGRESS,
                {"readCount": read_count, "favorite": favorite, "archived": archived},
            )
        return updated

    # -- content ------------------------------------------------------

    def update_item(
        self,
        item_id: int | float,
        *,
        title: str | None = None,
        content: str | None = None,
    ) -> ContentItem | None:
        """Merge new title and/or content. Type is immutable."""
        changes: dict[str, Any] = {}
        if title is not None:
            changes["title"] = title
        if content is not None:
            changes["content"] = content
        updated = self._update(item_id, lambda i: i.model_copy(update=changes))
        if updated is None or not changes:
            return updated
        if is_temporary_id(updated.id):
            logger.debug("Item %s has a temporary id, not sending edit", updated.id)
        elif self._gateway is not None:
            self._spawn(
                "update-content",
                updated.id,
                self._gateway.update_content,
                updated.id,
                title=updated.title,
                content=updated.content,
            )
        return updated

    async def add_item(self, title: str, type: str, content: str) -> ContentItem:
        """Create an item on the server, or locally if the server is unreachable.

        Raises:
            ValueError: If title or content is blank or type is unknown.
        """
        if not title.strip() or not content.strip():
            raise ValueError("Title and content are required")
        if type not in {t.value for t in ContentType}:
            raise ValueError(f"Invalid type {type!r}. Must be: song, poem, or story")

        created: ContentItem | None = None
        if self._gateway is not None:
            try:
                record = await asyncio.to_thread(self._gateway.create_content, title, type, content)
                created = transform_record(record)
                self.report.count("create-content")
            except _REMOTE_ERRORS as exc:
                logger.warning("Create failed, keeping %r locally: %s", title, exc)
                self.report.add_error("create-content", str(exc), error_type=_error_type(exc))
        if created is None:
            created = ContentItem(id=new_temporary_id(), title=title, type=type, content=content)

        current = self._state.items
        merged = deduplicate([*current, created])
        if len(merged) == len(current):
            logger.warning("%r (%s) is already in the library", title, type)
        self._commit(merged)
        return created

    # -- bulk ---------------------------------------------------------

    async def import_text(self, text: str) -> list[ContentItem]:
        """Parse an import file and import it.

        Raises:
            ImportFormatError: If the text cannot be parsed.
        """
        return await self.import_items(parse_import(text))

    async def import_items(self, items: Iterable[ContentItem]) -> list[ContentItem]:
        """Seed the server with *items*, then reload; merge locally on failure."""
        parsed = deduplicate(list(items))
        seeded = False
        if self._gateway is not None:
            try:
                result = await asyncio.to_thread(
                    self._gateway.seed,
                    [item.to_record() for item in parsed],
                    self._device_id,
                )
                seeded = True
                self.report.count("batch-seed")
                logger.info(
                    "Seeded %d item(s): %s inserted, %s progress updated",
                    len(parsed),
                    result.get("insertedContent"),
                    result.get("updatedProgress"),
                )
            except _REMOTE_ERRORS as exc:
                logger.warning("Seed failed, merging import locally: %s", exc)
                self.report.add_error("batch-seed", str(exc), error_type=_error_type(exc))

        if seeded:
            self._commit(await self._loader.load(self._device_id))
        else:
            self._commit(deduplicate([*self._state.items, *parsed]))
        return list(self._state.items)

    async def reload(self) -> list[ContentItem]:
        """Replace the state with a fresh load."""
        self._state.replace(await self._loader.load(self._device_id))
        return list(self._state.items)

    # -- persistence --------------------------------------------------

    def flush(self) -> bool:
        """Write a pending debounced snapshot now. Returns True if written."""
        if self._timer is None:
            return False
        self._timer.cancel()
        return self._write_cache()

    async def drain(self) -> None:
        """Wait for background work, then flush any pending write."""
        await self._loader.drain()
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self.flush()

    # -- internals ----------------------------------------------------

    def _update(
        self,
        item_id: int | float,
        change: Callable[[ContentItem], ContentItem],
    ) -> ContentItem | None:
        updated: ContentItem | None = None
        items: list[ContentItem] = []
        for item in self._state.items:
            if item.id == item_id:
                changed = change(item)
                if updated is None:
                    updated = changed
                items.append(changed)
            else:
                items.append(item)
        if updated is None:
            logger.warning("No item with id %s", item_id)
            return None
        self._commit(items)
        return updated

    def _commit(self, items: Iterable[ContentItem]) -> None:
        self._state.replace(items)
        self._schedule_write()

    def _sync_progress(
        self,
        item: ContentItem,
        action: ProgressAction,
        value: dict[str, object] | None = None,
    ) -> None:
        if is_temporary_id(item.id):
            logger.debug("Item %s has a temporary id, not sending %s", item.id, action)
            return
        if self._gateway is None:
            return
        self._spawn(
            f"progress:{action}",
            item.id,
            self._gateway.update_progress,
            self._device_id,
            item.id,
            action,
            value,
        )

    def _spawn(
        self,
        operation: str,
        item_id: int | float,
        func: Callable[..., object],
        *args: object,
        **kwargs: object,
    ) -> asyncio.Task[bool] | None:
        """Start a detached remote call; its result is only logged."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, skipping %s for %s", operation, item_id)
            return None
        task = loop.create_task(self._call_remote(operation, item_id, func, *args, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(self._on_task_done)
        return task

    async def _call_remote(
        self,
        operation: str,
        item_id: int | float,
        func: Callable[..., object],
        *args: object,
        **kwargs: object,
    ) -> bool:
        try:
            await asyncio.to_thread(func, *args, **kwargs)
        except _REMOTE_ERRORS as exc:
            logger.warning("%s failed for item %s: %s", operation, item_id, exc)
            self.report.add_error(operation, str(exc), error_type=_error_type(exc), item_id=item_id)
            return False
        self.report.count(operation)
        return True

    @staticmethod
    def _on_task_done(task: asyncio.Task[bool]) -> None:
        """Log unexpected exceptions from background tasks."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unhandled exception in background sync: %s", exc, exc_info=exc)

    def _schedule_write(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_cache()
            return
        old_timer = self._timer
        self._timer = None
        if old_timer is not None:
            old_timer.cancel()
        self._timer = loop.call_later(self._debounce, self._write_cache)

    def _write_cache(self) -> bool:
        self._timer = None
        items = list(self._state.items)
        if not items:
            return False
        snapshot = StoredSnapshot(version=self._loader.version, items=items)
        if not self._cache.set(self._loader.key, snapshot):
            self.report.add_error("cache-write", "Failed to persist library snapshot", recoverable=False)
            return False
        logger.debug("Persisted %d item(s) to cache", len(items))
        return True


def _error_type(exc: BaseException) -> str:
    return type(exc).__name__
