"""
Installs the Cumulocity runtime pieces into a FastAPI application.

``setup_c8y`` wires:

- the ``CredentialedClientFactory`` on ``app.state.c8y``,
- liveness/readiness probe routes unless the manifest defines its own,
- the development-user middleware when dev mode is on,
- a startup check for the required platform variables and for
  manifest probes pointing at routes that do not exist.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from starlette.routing import Route
from starlette.types import ASGIApp, Receive, Scope, Send

from .config_loader import Config
from .config_loader import config as default_config
from .credentials import Credentials, basic_auth_header
from .dependencies import FACTORY_STATE_ATTR
from .factory import CredentialedClientFactory
from .storage import CacheStorage, FileStorage, MemoryStorage

logger = logging.getLogger(__name__)

LIVENESS_ROUTE = "/_c8y/liveness"
READINESS_ROUTE = "/_c8y/readiness"

PROBE_ROUTES = {
    "livenessProbe": LIVENESS_ROUTE,
    "readinessProbe": READINESS_ROUTE,
}


def create_storage(config: Config) -> CacheStorage:
    """Build the storage backend selected in the configuration."""
    if config.cache_storage == "file":
        logger.debug("Using file cache storage in %s", config.cache_storage_dir)
        return FileStorage(config.cache_storage_dir)
    if config.cache_storage != "memory":
        raise ValueError(f"Unknown cache storage backend: {config.cache_storage!r}")
    return MemoryStorage(max_entries=config.cache_max_entries)


def ensure_required_vars(config: Config) -> None:
    missing = config.missing_required_vars()
    if missing:
        raise RuntimeError(
            f"Missing required environment variables: {', '.join(missing)}\n\n"
            "Register the microservice on your development tenant and put the generated\n"
            "bootstrap credentials (C8Y_BOOTSTRAP_TENANT, C8Y_BOOTSTRAP_USER,\n"
            "C8Y_BOOTSTRAP_PASSWORD) and C8Y_BASEURL into the environment."
        )


async def probe() -> dict[str, str]:
    return {"status": "OK"}


def register_probes(app: FastAPI, manifest: dict[str, Any]) -> list[str]:
    """Add probe routes for every probe the manifest leaves without ``httpGet``."""
    registered = []
    for probe_type, path in PROBE_ROUTES.items():
        if (manifest.get(probe_type) or {}).get("httpGet"):
            logger.debug("%s httpGet defined by user; skipping generation", probe_type)
            continue
        app.add_api_route(path, probe, methods=["GET"], include_in_schema=False)
        registered.append(path)
        logger.debug("Generated %s at %s", probe_type, path)
    return registered


def check_probes(app: FastAPI, manifest: dict[str, Any]) -> list[str]:
    """
    Warn about user-defined probes whose path has no GET route.

    Returns the warning messages, mostly for tests.
    """
    warnings = []
    for probe_type in PROBE_ROUTES:
        http_get = (manifest.get(probe_type) or {}).get("httpGet")
        if not http_get:
            continue
        path = http_get.get("path")
        matching = [r for r in app.routes if isinstance(r, Route) and r.path == path]
        if not matching:
            warnings.append(
                f'{probe_type} route "{path}" not found in application routes. '
                "The probe will fail at runtime."
            )
        elif not any(r.methods is None or "GET" in r.methods for r in matching):
            available = ", ".join(sorted({m for r in matching for m in (r.methods or ())}))
            warnings.append(
                f'{probe_type} route "{path}" exists but does not accept GET requests. '
                f"Available methods: {available or 'none specified'}. The probe will fail at runtime."
            )
    for message in warnings:
        logger.warning(message)
    return warnings


class DevUserMiddleware:
    """
    Replaces the Authorization header with the configured development user.

    Lets routes protected by role or tenant checks work during local
    development without a platform UI in front of the service.
    """

    def __init__(self, app: ASGIApp, config: Config) -> None:
        self.app = app
        self.config = config
        self._warned = False

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            scope = self._inject(scope)
        await self.app(scope, receive, send)

    def _inject(self, scope: Scope) -> Scope:
        missing = self.config.missing_development_vars()
        if missing:
            if not self._warned:
                logger.warning(
                    "Missing development environment variables: %s. Dev user injection will be "
                    "skipped. Routes requiring authentication or roles will fail.",
                    ", ".join(missing),
                )
                self._warned = True
            return scope

        credentials = Credentials(
            tenant=self.config.development_tenant,
            user=self.config.development_user,
            password=self.config.development_password,
        )
        auth_header = basic_auth_header(credentials).encode("latin-1")
        headers = [(k, v) for k, v in scope.get("headers", []) if k.lower() != b"authorization"]
        headers.append((b"authorization", auth_header))
        logger.debug("Development user injected into request authorization header")
        return {**scope, "headers": headers}


def setup_c8y(
    app: FastAPI,
    config: Config | None = None,
    storage: CacheStorage | None = None,
    *,
    factory: CredentialedClientFactory | None = None,
    check_env: bool = True,
) -> CredentialedClientFactory:
    """
    Install the Cumulocity helpers into ``app`` and return the factory.

    Must be called before the application starts serving requests.
    """
    config = config or default_config
    if factory is None:
        factory = CredentialedClientFactory(config, storage or create_storage(config))
    setattr(app.state, FACTORY_STATE_ATTR, factory)

    register_probes(app, config.manifest)

    if config.dev_mode:
        app.add_middleware(DevUserMiddleware, config=config)

    wrapped_lifespan = app.router.lifespan_context

    @asynccontextmanager
    async def c8y_lifespan(app_: FastAPI) -> AsyncIterator[Any]:
        if check_env:
            ensure_required_vars(config)
        check_probes(app_, config.manifest)
        async with wrapped_lifespan(app_) as state:
            yield state

    app.router.lifespan_context = c8y_lifespan
    return factory


__all__ = [
    "LIVENESS_ROUTE",
    "READINESS_ROUTE",
    "DevUserMiddleware",
    "check_probes",
    "create_storage",
    "ensure_required_vars",
    "register_probes",
    "setup_c8y",
]
