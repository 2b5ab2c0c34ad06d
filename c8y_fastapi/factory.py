"""
Credentialed accessors used by route handlers.

``CredentialedClientFactory`` knows which platform resources are cached and
how the caching tiers compose:

- the current user and their roles live only in the request context bag,
  so every request sees the platform's current state of the user;
- subscribed tenant credentials are one process-wide TTL-cached value, and
  the deployed tenant's credentials are read out of that same entry;
- tenant options go through a ``TenantOptionRegistry`` with one cache per key.

The factory is created once per application by ``setup_c8y`` and stored on
``app.state``; tests build their own instance with a fresh storage.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from functools import partial
from typing import Any

from starlette.requests import Request

from .cache import CachedFunction, DerivedCachedFunction
from .client import C8yClient
from .config_loader import Config
from .config_loader import config as default_config
from .credentials import Credentials, credentials_from_request, forwarded_headers
from .errors import CredentialsNotFoundError
from .memo import get_or_compute, request_context
from .service_base import BaseService
from .storage import CacheStorage, MemoryStorage
from .tenant_options import TenantOptionRegistry, tenant_option_ttl

SUBSCRIBED_CREDENTIALS_CACHE_NAME = "_c8y_get_subscribed_tenant_credentials"

# Request context slots
USER_SLOT = "user"
USER_ROLES_SLOT = "user_roles"
USER_CLIENT_SLOT = "user_client"
USER_TENANT_SLOT = "user_tenant"
USER_TENANT_CLIENT_SLOT = "user_tenant_client"
USER_TENANT_CREDENTIALS_SLOT = "user_tenant_credentials"


def extract_role_ids(user: dict[str, Any]) -> list[str]:
    """
    Flatten the role identifiers of a current-user payload.

    Reads ``roles.references`` and, when present, ``effectiveRoles``.
    Duplicates are removed while keeping the first occurrence.
    """
    role_ids: list[str] = []
    references = (user.get("roles") or {}).get("references") or []
    for ref in references:
        role_id = ref.get("id") or (ref.get("role") or {}).get("id")
        if role_id:
            role_ids.append(str(role_id))
    for role in user.get("effectiveRoles") or []:
        role_id = role.get("id") or role.get("name")
        if role_id:
            role_ids.append(str(role_id))
    return list(dict.fromkeys(role_ids))


def _decode_credentials_map(value: dict[str, Any]) -> dict[str, Credentials]:
    return {tenant: Credentials.model_validate(creds) for tenant, creds in value.items()}


class CredentialedClientFactory(BaseService):
    """
    Cached credential and client accessors for one application.

    Args:
        config: Resolved configuration; defaults to the module singleton.
        storage: Backend for the TTL caches; defaults to a fresh MemoryStorage.
        client_class: Platform client type, replaceable in tests.
        clock: Time source shared by every cache of this factory.
    """

    def __init__(
        self,
        config: Config | None = None,
        storage: CacheStorage | None = None,
        *,
        client_class: type[C8yClient] = C8yClient,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ):
        super().__init__(logger=logger)
        self.config = config or default_config
        self.storage = storage or MemoryStorage(max_entries=self.config.cache_max_entries)
        self.client_class = client_class

        self.subscribed_tenant_credentials: CachedFunction[dict[str, Credentials]] = CachedFunction(
            self._fetch_subscribed_tenant_credentials,
            name=SUBSCRIBED_CREDENTIALS_CACHE_NAME,
            max_age=self.config.credentials_cache_ttl,
            storage=self.storage,
            decode=_decode_credentials_map,
            clock=clock,
        )
        # Shares the subscribed credentials entry; invalidating one invalidates both.
        self.deployed_tenant_credentials: DerivedCachedFunction[Credentials] = DerivedCachedFunction(
            self.subscribed_tenant_credentials,
            self._pick_deployed_tenant_credentials,
        )
        self.tenant_options = TenantOptionRegistry(
            self._fetch_tenant_option,
            self.storage,
            partial(tenant_option_ttl, self.config),
            clock=clock,
        )

    @property
    def bootstrap_credentials(self) -> Credentials:
        return Credentials(
            tenant=self.config.bootstrap_tenant,
            user=self.config.bootstrap_user,
            password=self.config.bootstrap_password,
        )

    # =========================================================================
    # Service credentials
    # =========================================================================

    async def _fetch_subscribed_tenant_credentials(self) -> dict[str, dict[str, Any]]:
        subscriptions = await self.client_class.microservice_subscriptions(
            self.bootstrap_credentials, self.config.base_url
        )
        # Keyed by tenant for direct lookups; entries without a tenant are unusable
        by_tenant = {sub["tenant"]: sub for sub in subscriptions if sub.get("tenant")}
        self.logger.debug("Loaded service credentials for %s subscribed tenant(s)", len(by_tenant))
        return by_tenant

    def _pick_deployed_tenant_credentials(self, creds: dict[str, Credentials]) -> Credentials:
        tenant = self.config.bootstrap_tenant
        if tenant not in creds:
            raise CredentialsNotFoundError(f"No credentials found for deployed tenant '{tenant}'")
        return creds[tenant]

    async def get_subscribed_tenant_clients(self) -> dict[str, C8yClient]:
        creds = await self.subscribed_tenant_credentials()
        return {
            tenant: self.client_class(self.config.base_url, tenant_creds)
            for tenant, tenant_creds in creds.items()
        }

    async def get_deployed_tenant_client(self) -> C8yClient:
        return self.client_class(self.config.base_url, await self.deployed_tenant_credentials())

    # =========================================================================
    # Request-scoped user accessors
    # =========================================================================

    def get_user_client(self, request: Request) -> C8yClient:
        """
        Client acting as the user who sent ``request``.

        Browser sessions authenticate with the platform cookie; their XSRF
        token is forwarded with every call.
        """
        bag = request_context(request)
        if USER_CLIENT_SLOT not in bag:
            bag[USER_CLIENT_SLOT] = self.client_class(
                self.config.base_url,
                credentials_from_request(request),
                headers=forwarded_headers(request),
            )
        return bag[USER_CLIENT_SLOT]

    async def get_user(self, request: Request) -> dict[str, Any]:
        """Current user of ``request``, fetched at most once per request."""
        return await get_or_compute(
            request_context(request),
            USER_SLOT,
            lambda: self.get_user_client(request).current_user(),
        )

    async def get_user_roles(self, request: Request) -> list[str]:
        async def compute() -> list[str]:
            return extract_role_ids(await self.get_user(request))

        return await get_or_compute(request_context(request), USER_ROLES_SLOT, compute)

    async def get_user_tenant(self, request: Request) -> str:
        """
        Tenant the requesting user belongs to.

        Basic credentials name the tenant directly; for bearer tokens the
        platform's current-tenant endpoint is asked once per request.
        """
        client = self.get_user_client(request)
        if client.tenant:
            return client.tenant

        async def compute() -> str:
            tenant = await client.current_tenant()
            return tenant["name"]

        return await get_or_compute(request_context(request), USER_TENANT_SLOT, compute)

    async def get_user_tenant_credentials(self, request: Request) -> Credentials:
        """Service credentials of the requesting user's tenant."""

        async def compute() -> Credentials:
            tenant = await self.get_user_tenant(request)
            creds = await self.subscribed_tenant_credentials()
            if tenant not in creds:
                raise CredentialsNotFoundError(
                    f"No subscribed tenant credentials found for user tenant '{tenant}'"
                )
            return creds[tenant]

        return await get_or_compute(request_context(request), USER_TENANT_CREDENTIALS_SLOT, compute)

    async def get_user_tenant_client(self, request: Request) -> C8yClient:
        async def compute() -> C8yClient:
            creds = await self.get_user_tenant_credentials(request)
            return self.client_class(self.config.base_url, creds)

        return await get_or_compute(request_context(request), USER_TENANT_CLIENT_SLOT, compute)

    # =========================================================================
    # Tenant options
    # =========================================================================

    async def _fetch_tenant_option(self, api_key: str) -> str | None:
        client = await self.get_deployed_tenant_client()
        return await client.tenant_option(self.config.settings_category, api_key)

    async def get_tenant_option(self, key: str) -> str | None:
        """Value of a tenant option, or ``None`` when it is not set."""
        return await self.tenant_options.get(key)


__all__ = ["CredentialedClientFactory", "extract_role_ids"]
