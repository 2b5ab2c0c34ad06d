"""
Cached tenant option lookups.

Option keys are only known at runtime, so ``TenantOptionRegistry`` creates
one ``CachedFunction`` per key on first access and keeps it for the life of
the registry. Each key resolves its own TTL. Bulk operations only cover keys
that have been accessed at least once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from .cache import DEFAULT_GROUP, CachedFunction
from .config_loader import Config
from .errors import UpstreamFailure
from .service_base import BaseService
from .storage import CacheStorage

# Keys with this prefix are encrypted options; the platform expects them without it.
SECRET_PREFIX = "credentials."

TENANT_OPTION_CACHE_NAME = "_c8y_tenant_option"

OptionFetcher = Callable[[str], Awaitable[str | None]]


def strip_secret_prefix(key: str) -> str:
    if key.startswith(SECRET_PREFIX):
        return key[len(SECRET_PREFIX):]
    return key


def tenant_option_ttl(config: Config, key: str) -> int:
    """Per-key TTL override if configured, otherwise the default TTL."""
    per_key = config.tenant_options_ttl
    if key in per_key:
        return per_key[key]
    return config.default_tenant_options_ttl


class TenantOptionRegistry(BaseService):
    """
    Lazily populated map from tenant option key to its cached fetcher.

    Args:
        fetch_option: Async function taking the API key (prefix stripped) and
            returning the option value. A 404 ``UpstreamFailure`` means unset.
        storage: Backend shared with the other caches.
        ttl_for_key: Resolves the TTL of a key when its cache is created.
    """

    def __init__(
        self,
        fetch_option: OptionFetcher,
        storage: CacheStorage,
        ttl_for_key: Callable[[str], float],
        *,
        group: str = DEFAULT_GROUP,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ):
        super().__init__(logger=logger)
        self._fetch_option = fetch_option
        self._storage = storage
        self._ttl_for_key = ttl_for_key
        self._group = group
        self._clock = clock
        self._fetchers: dict[str, CachedFunction[str | None]] = {}

    def keys(self) -> list[str]:
        """Keys accessed so far."""
        return list(self._fetchers)

    def __contains__(self, key: str) -> bool:
        return key in self._fetchers

    def get_or_create(self, key: str) -> CachedFunction[str | None]:
        fetcher = self._fetchers.get(key)
        if fetcher is None:
            fetcher = self._create(key)
            self._fetchers[key] = fetcher
        return fetcher

    def _create(self, key: str) -> CachedFunction[str | None]:
        api_key = strip_secret_prefix(key)
        max_age = self._ttl_for_key(key)

        async def fetch() -> str | None:
            try:
                return await self._fetch_option(api_key)
            except UpstreamFailure as exc:
                if exc.is_not_found:
                    self.logger.debug("Tenant option %s is not set", key)
                    return None
                raise

        self.logger.debug("Creating tenant option cache for %s (ttl=%ss)", key, max_age)
        return CachedFunction(
            fetch,
            name=TENANT_OPTION_CACHE_NAME,
            group=self._group,
            get_key=lambda: key,
            max_age=max_age,
            storage=self._storage,
            clock=self._clock,
        )

    async def get(self, key: str) -> str | None:
        return await self.get_or_create(key)()

    async def invalidate(self, key: str) -> None:
        """Invalidate one key. Keys never accessed have nothing to invalidate."""
        fetcher = self._fetchers.get(key)
        if fetcher is not None:
            await fetcher.invalidate()

    async def refresh(self, key: str) -> str | None:
        return await self.get_or_create(key).refresh()

    async def invalidate_all(self) -> None:
        await asyncio.gather(*(fetcher.invalidate() for fetcher in list(self._fetchers.values())))

    async def refresh_all(self) -> dict[str, str | None]:
        """Refresh every accessed key and return the new values by key."""
        items = list(self._fetchers.items())
        values = await asyncio.gather(*(fetcher.refresh() for _, fetcher in items))
        return {key: value for (key, _), value in zip(items, values, strict=True)}


__all__ = [
    "SECRET_PREFIX",
    "TenantOptionRegistry",
    "strip_secret_prefix",
    "tenant_option_ttl",
]
