"""
Key-value storage backends for cached function results.

The cache layer only needs ``get``/``set``/``delete`` by fully qualified
key. Two backends are provided: an in-process store built on cachetools
and a directory of JSON files that survives process restarts.
"""

from __future__ import annotations

import asyncio
import json
import logging
from copy import deepcopy
from pathlib import Path
from typing import Any
from uuid import uuid4
from urllib.parse import quote

from cachetools import Cache
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    """A stored value together with the time it was fetched."""

    key: str
    value: Any = None
    stored_at: float
    max_age: float

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_fresh(self, now: float) -> bool:
        # An entry whose age equals max_age is already stale.
        return self.age(now) < self.max_age


class CacheStorage:
    """Interface shared by the storage backends."""

    async def get(self, key: str) -> CacheEntry | None:
        raise NotImplementedError

    async def set(self, key: str, entry: CacheEntry) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(CacheStorage):
    """
    In-process storage backed by a cachetools ``Cache``.

    Entries are deep copied on the way in and out so callers cannot mutate
    shared state. ``max_entries`` bounds memory only; an entry dropped by
    the store simply reads as a miss.
    """

    def __init__(self, *, max_entries: int = 4096) -> None:
        self._cache: Cache[str, dict[str, Any]] = Cache(maxsize=max_entries)
        # Created lazily so no asyncio primitive exists before a loop does.
        self._lock: asyncio.Lock | None = None

    async def get(self, key: str) -> CacheEntry | None:
        async with self._ensure_lock():
            payload = self._cache.get(key)
        if payload is None:
            return None
        return CacheEntry.model_validate(deepcopy(payload))

    async def set(self, key: str, entry: CacheEntry) -> None:
        payload = entry.model_dump()
        async with self._ensure_lock():
            self._cache[key] = deepcopy(payload)

    async def delete(self, key: str) -> None:
        async with self._ensure_lock():
            self._cache.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._cache.keys())

    def _ensure_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock


class FileStorage(CacheStorage):
    """
    Storage that keeps one JSON file per key under ``base_dir``.

    Keys are percent-encoded into file names, so keys containing ``/`` or
    ``:`` never escape the directory. File I/O runs in a worker thread.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)

    def path_for(self, key: str) -> Path:
        return self.base_dir / quote(key, safe="")

    async def get(self, key: str) -> CacheEntry | None:
        return await asyncio.to_thread(self._read, self.path_for(key))

    async def set(self, key: str, entry: CacheEntry) -> None:
        await asyncio.to_thread(self._write, self.path_for(key), entry.model_dump_json())

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.path_for(key).unlink, missing_ok=True)

    def _read(self, path: Path) -> CacheEntry | None:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return CacheEntry.model_validate(json.load(f))
        except (OSError, ValueError) as exc:
            # A corrupt file is treated as a miss and overwritten on the next fetch.
            logger.warning("Ignoring unreadable cache file %s: %s", path, exc)
            return None

    def _write(self, path: Path, payload: str) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        # Unique per write so concurrent writers of one key never share a temp file
        tmp_path = path.with_name(f"{path.name}.{uuid4().hex}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(payload)
        tmp_path.replace(path)


__all__ = ["CacheEntry", "CacheStorage", "MemoryStorage", "FileStorage"]
