"""Tests for the reconciliation loader."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from storyshelf.cache import STORAGE_KEY, CacheStore
from storyshelf.gateway import ContentGateway, GatewayError
from storyshelf.loader import ReconciliationLoader, transform_record
from storyshelf.models import ContentItem, StoredSnapshot


def _row(item_id: int, title: str, type_: str = "song", **extra) -> dict:
    row = {
        "id": item_id,
        "title": title,
        "type": type_,
        "content": f"{title} lyrics",
        "read_count": 0,
        "favorite": False,
        "archived": False,
        "created_at": "2025-06-01T00:00:00Z",
    }
    row.update(extra)
    return row


def _gateway(rows=None, error: Exception | None = None) -> MagicMock:
    gateway = MagicMock(spec=ContentGateway)
    if error is not None:
        gateway.fetch_content.side_effect = error
    else:
        gateway.fetch_content.return_value = rows or []
    return gateway


def _load(loader: ReconciliationLoader, device_id: str = "device-1") -> list[ContentItem]:
    async def run():
        items = await loader.load(device_id)
        await loader.drain()
        return items

    return asyncio.run(run())


@pytest.fixture
def cache(tmp_path) -> CacheStore:
    return CacheStore(tmp_path)


def _seed_cache(cache: CacheStore, items: list[ContentItem], version: int = 1) -> None:
    cache.set(STORAGE_KEY, StoredSnapshot(version=version, items=items))


X = ContentItem(id=1, title="X", type="song", content="x", read_count=2)
Y = ContentItem(id=2, title="Y", type="poem", content="y", favorite=True)


class TestTransformRecord:
    def test_maps_transport_names(self):
        item = transform_record(_row(3, "Moon", "story", read_count=5, favorite=True))
        assert item.id == 3
        assert item.type == "story"
        assert item.read_count == 5
        assert item.favorite is True
        assert item.archived is False

    def test_defaults_missing_progress(self):
        item = transform_record({"id": 4, "title": "A", "type": "poem", "content": "x"})
        assert item.read_count == 0
        assert item.favorite is False
        assert item.archived is False

    def test_null_progress_defaults(self):
        item = transform_record(_row(4, "A", read_count=None, favorite=None))
        assert item.read_count == 0
        assert item.favorite is False


class TestRemoteLoad:
    def test_returns_transformed_and_deduplicated(self, cache):
        gateway = _gateway([_row(1, "A"), _row(1, "Dup"), _row(2, "B"), _row(3, " a ")])
        loader = ReconciliationLoader(gateway, cache)

        items = _load(loader)

        assert [i.id for i in items] == [1, 2]
        gateway.fetch_content.assert_called_once_with("device-1")
        assert loader.report.source == "remote"

    def test_preserves_server_order(self, cache):
        gateway = _gateway([_row(9, "Z"), _row(1, "A"), _row(5, "M")])
        items = _load(ReconciliationLoader(gateway, cache))
        assert [i.id for i in items] == [9, 1, 5]

    def test_persists_snapshot(self, cache):
        gateway = _gateway([_row(1, "A", read_count=3)])
        _load(ReconciliationLoader(gateway, cache))

        snapshot = cache.get(STORAGE_KEY)
        assert snapshot is not None
        assert snapshot.version == 1
        assert snapshot.items[0].read_count == 3

    def test_remote_wins_over_cache(self, cache):
        _seed_cache(cache, [X, Y])
        items = _load(ReconciliationLoader(_gateway([_row(7, "Fresh")]), cache))
        assert [i.id for i in items] == [7]


class TestFallback:
    def test_remote_failure_uses_cache(self, cache):
        _seed_cache(cache, [X, Y])
        loader = ReconciliationLoader(_gateway(error=GatewayError(message="offline")), cache)

        items = _load(loader)

        assert items == [X, Y]
        assert loader.report.source == "cache"
        assert loader.report.error_count == 1
        assert loader.report.errors[0].operation == "fetch-content"

    def test_empty_remote_uses_cache(self, cache):
        _seed_cache(cache, [X])
        assert _load(ReconciliationLoader(_gateway([]), cache)) == [X]

    def test_cached_items_are_deduplicated(self, cache):
        dup = X.model_copy(update={"title": "other"})
        _seed_cache(cache, [X, dup, Y])
        items = _load(ReconciliationLoader(_gateway(error=GatewayError()), cache))
        assert items == [X, Y]

    def test_no_cache_returns_empty(self, cache):
        loader = ReconciliationLoader(_gateway(error=GatewayError()), cache)
        assert _load(loader) == []
        assert loader.report.source == "empty"

    def test_version_mismatch_treated_as_absent(self, cache):
        _seed_cache(cache, [X, Y], version=0)
        loader = ReconciliationLoader(_gateway(error=GatewayError()), cache)
        assert _load(loader) == []

    def test_custom_version_gate(self, cache):
        _seed_cache(cache, [X], version=2)
        loader = ReconciliationLoader(_gateway(error=GatewayError()), cache, version=2)
        assert _load(loader) == [X]

    def test_empty_snapshot_treated_as_absent(self, cache):
        _seed_cache(cache, [])
        assert _load(ReconciliationLoader(_gateway(error=GatewayError()), cache)) == []

    def test_corrupt_cache_treated_as_absent(self, cache, tmp_path):
        (tmp_path / f"{STORAGE_KEY}.json").write_text("garbage", encoding="utf-8")
        assert _load(ReconciliationLoader(_gateway(error=GatewayError()), cache)) == []

    def test_malformed_remote_record_falls_back(self, cache):
        _seed_cache(cache, [X])
        loader = ReconciliationLoader(_gateway([{"title": "no id"}]), cache)
        assert _load(loader) == [X]

    def test_no_gateway_reads_cache(self, cache):
        _seed_cache(cache, [Y])
        assert _load(ReconciliationLoader(None, cache)) == [Y]

    def test_failure_does_not_overwrite_cache(self, cache):
        _seed_cache(cache, [X])
        _load(ReconciliationLoader(_gateway(error=GatewayError()), cache))
        assert cache.get(STORAGE_KEY).items == [X]
