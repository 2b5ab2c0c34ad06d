"""
Cached wrappers around expensive async functions.

``CachedFunction`` stores the result of an async fetch function in a
``CacheStorage`` backend for ``max_age`` seconds. The wrapper is itself
awaitable-callable and exposes ``invalidate()`` and ``refresh()``.

Keys follow ``<group>:functions:<name>[:<discriminator>].json``. When a
``get_key`` function is given, the arguments of each call are forwarded to
it, so a cache can hold one entry per request identity or per business key.

No lock guards the read/fetch/write sequence. Two concurrent misses may both
fetch and the last write wins.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from .storage import CacheEntry, CacheStorage

T = TypeVar("T")

DEFAULT_GROUP = "c8y"

logger = logging.getLogger(__name__)


def build_cache_key(group: str, name: str, discriminator: str | None = None) -> str:
    if discriminator is not None:
        return f"{group}:functions:{name}:{discriminator}.json"
    return f"{group}:functions:{name}.json"


class CachedFunction(Generic[T]):
    """
    An async function whose results are cached per derived key.

    Args:
        fetch: Async function producing the value. Its result must be JSON
            serializable because storage backends may persist it.
        name: Unique name of the cached function.
        group: Namespace shared by all caches of one feature area.
        max_age: Seconds an entry stays fresh. An entry aged exactly
            ``max_age`` is stale and triggers a re-fetch.
        storage: Backend holding the entries.
        get_key: Optional function returning the per-call discriminator.
            Receives the same arguments as ``fetch``.
        decode: Optional function applied to the stored value before it is
            returned, e.g. to rebuild pydantic models.
        swr: Stale-while-revalidate is not supported; must stay ``False``.
        clock: Time source in seconds, replaceable in tests.
    """

    def __init__(
        self,
        fetch: Callable[..., Awaitable[Any]],
        *,
        name: str,
        storage: CacheStorage,
        max_age: float,
        group: str = DEFAULT_GROUP,
        get_key: Callable[..., str] | None = None,
        decode: Callable[[Any], T] | None = None,
        swr: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if swr:
            raise ValueError("stale-while-revalidate is not supported; stale entries are re-fetched")
        if max_age < 0:
            raise ValueError("max_age must not be negative")
        self.fetch = fetch
        self.name = name
        self.group = group
        self.max_age = max_age
        self.storage = storage
        self.get_key = get_key
        self.decode = decode
        self.clock = clock

    def cache_key(self, *args: Any, **kwargs: Any) -> str:
        discriminator = self.get_key(*args, **kwargs) if self.get_key else None
        return build_cache_key(self.group, self.name, discriminator)

    async def __call__(self, *args: Any, **kwargs: Any) -> T:
        key = self.cache_key(*args, **kwargs)
        entry = await self.storage.get(key)
        if entry is not None and entry.is_fresh(self.clock()):
            logger.debug("Cache hit for %s", self.name)
            return self._decode(entry.value)

        logger.debug("Cache %s for %s", "stale" if entry else "miss", self.name)
        value = await self.fetch(*args, **kwargs)
        await self.storage.set(
            key,
            CacheEntry(key=key, value=value, stored_at=self.clock(), max_age=self.max_age),
        )
        return self._decode(value)

    async def invalidate(self, *args: Any, **kwargs: Any) -> None:
        """Drop the entry for the key derived from the given arguments."""
        key = self.cache_key(*args, **kwargs)
        logger.debug("Invalidating %s", key)
        await self.storage.delete(key)

    async def refresh(self, *args: Any, **kwargs: Any) -> T:
        """Invalidate and fetch again, regardless of the entry's age."""
        await self.invalidate(*args, **kwargs)
        return await self(*args, **kwargs)

    def _decode(self, value: Any) -> T:
        if self.decode is None:
            return value
        return self.decode(value)

    def __repr__(self) -> str:
        return f"<CachedFunction {self.group}:{self.name} max_age={self.max_age}>"


class DerivedCachedFunction(Generic[T]):
    """
    An accessor computed from another cached function's value.

    It owns no entry of its own: invalidating it invalidates the parent, so
    every accessor sharing that parent sees the change.
    """

    def __init__(
        self,
        parent: CachedFunction[Any],
        derive: Callable[[Any], T],
    ) -> None:
        self.parent = parent
        self.derive = derive

    async def __call__(self) -> T:
        return self.derive(await self.parent())

    async def invalidate(self) -> None:
        await self.parent.invalidate()

    async def refresh(self) -> T:
        await self.invalidate()
        return await self()


def cached_function(
    *,
    name: str,
    storage: CacheStorage,
    max_age: float,
    group: str = DEFAULT_GROUP,
    get_key: Callable[..., str] | None = None,
    decode: Callable[[Any], Any] | None = None,
    clock: Callable[[], float] = time.time,
) -> Callable[[Callable[..., Awaitable[Any]]], CachedFunction[Any]]:
    """Decorator form of ``CachedFunction``."""

    def decorator(fetch: Callable[..., Awaitable[Any]]) -> CachedFunction[Any]:
        return CachedFunction(
            fetch,
            name=name,
            storage=storage,
            max_age=max_age,
            group=group,
            get_key=get_key,
            decode=decode,
            clock=clock,
        )

    return decorator


__all__ = ["CachedFunction", "DerivedCachedFunction", "cached_function", "build_cache_key"]
