"""Per-device key-value cache backed by JSON files.

Each key maps to one file under the cache directory. Reads never raise:
a missing, unreadable or corrupt entry is reported as absent.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from pathlib import Path

from pydantic import ValidationError

from storyshelf.models import StoredSnapshot

logger = logging.getLogger(__name__)

STORAGE_KEY = "vn-kids-content"
DEVICE_ID_KEY = "vn-kids-device-id"
SNAPSHOT_VERSION = 1


def _atomic_write(path: Path, content: str) -> None:
    """Write *content* to *path* via a temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class CacheStore:
    """Stores snapshots and small text values in a directory."""

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def get(self, key: str) -> StoredSnapshot | None:
        """Return the snapshot stored under *key*, or None."""
        path = self._path(key)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return StoredSnapshot.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError, ValueError):
            logger.warning("Corrupt cache entry at %s, ignoring", path)
            return None

    def set(self, key: str, snapshot: StoredSnapshot) -> bool:
        """Persist *snapshot* under *key*. Returns False on failure."""
        payload = json.dumps(
            {
                "version": snapshot.version,
                "items": [item.to_record() for item in snapshot.items],
            },
            ensure_ascii=False,
        )
        return self.set_text(key, payload)

    def get_text(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Failed to read cache entry %s: %s", path, exc)
            return None

    def set_text(self, key: str, value: str) -> bool:
        path = self._path(key)
        try:
            _atomic_write(path, value)
        except OSError as exc:
            logger.warning("Failed to write cache entry %s: %s", path, exc)
            return False
        return True


def load_device_id(store: CacheStore) -> str:
    """Return this device's anonymous id, creating it on first use."""
    existing = store.get_text(DEVICE_ID_KEY)
    if existing and existing.strip():
        return existing.strip()
    device_id = f"device-{uuid.uuid4().hex}"
    if not store.set_text(DEVICE_ID_KEY, device_id):
        logger.warning("Device id could not be persisted; using %s for this run", device_id)
    return device_id
