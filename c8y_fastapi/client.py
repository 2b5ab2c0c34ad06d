"""Thin HTTP client for the Cumulocity REST API."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

import aiohttp

from .credentials import Credentials, basic_auth_header
from .errors import UpstreamFailure

DEFAULT_TIMEOUT = 30


def upstream_error_message(body: str, reason: str | None) -> str:
    """
    Pick the human readable message out of a platform error response.

    Cumulocity errors are JSON objects with ``error``, ``message`` and
    ``info`` fields; anything else falls back to the reason phrase or raw text.
    """
    try:
        payload = json.loads(body)
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return body.strip()[:500] or reason or "Unknown error"


class C8yClient:
    """
    Platform client bound to one identity.

    The identity is a user's credentials taken from an inbound request, a
    tenant's service user or the bootstrap user. ``headers`` are sent with
    every call in addition to the authorization, e.g. the XSRF token of a
    cookie-authenticated browser session. Every call opens its own aiohttp
    session.
    """

    def __init__(
        self,
        base_url: str,
        credentials: Credentials,
        logger: logging.Logger | None = None,
        *,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.extra_headers = dict(headers or {})
        self.logger = logger or logging.getLogger(self.__class__.__module__)

    @property
    def tenant(self) -> str | None:
        """Tenant of the bound identity; ``None`` for bearer tokens."""
        return self.credentials.tenant

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", **self.extra_headers}
        headers["Authorization"] = basic_auth_header(self.credentials)
        return headers

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Execute a request against the platform and return the parsed JSON body."""
        url = f"{self.base_url}{path}"

        async with aiohttp.ClientSession() as session:
            try:
                async with session.request(
                    method,
                    url,
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=DEFAULT_TIMEOUT),
                    **kwargs,
                ) as response:
                    if response.status >= 400:
                        error_text = await response.text()
                        message = upstream_error_message(error_text, response.reason)
                        if response.status != 404:
                            self.logger.error(
                                "Cumulocity returned %s for %s %s: %s",
                                response.status, method, path, error_text[:500],
                            )
                        raise UpstreamFailure(
                            response.status,
                            f"Cumulocity request {method} {path} failed with status "
                            f"{response.status}: {message}",
                        )
                    if response.status == 204:
                        return None
                    return await response.json(content_type=None)
            except TimeoutError:
                raise UpstreamFailure(504, "Cumulocity timeout")
            except aiohttp.ClientError as exc:
                self.logger.error("Cumulocity connection error: %s", exc)
                raise UpstreamFailure(503, "Cannot connect to Cumulocity") from exc

    async def current_user(self) -> dict[str, Any]:
        return await self.request("GET", "/user/currentUser")

    async def current_tenant(self) -> dict[str, Any]:
        return await self.request("GET", "/tenant/currentTenant")

    async def tenant_option(self, category: str, key: str) -> str | None:
        """Fetch the value of a tenant option. An unset option raises a 404 ``UpstreamFailure``."""
        path = f"/tenant/options/{quote(category, safe='')}/{quote(key, safe='')}"
        data = await self.request("GET", path)
        return data.get("value")

    @classmethod
    async def microservice_subscriptions(
        cls, bootstrap: Credentials, base_url: str
    ) -> list[dict[str, Any]]:
        """
        List the service users of every tenant subscribed to this microservice.

        Returns credential dicts with ``tenant``, ``user`` and ``password``.
        """
        client = cls(base_url, bootstrap)
        data = await client.request("GET", "/application/currentApplication/subscriptions")
        return [
            {"tenant": user.get("tenant"), "user": user.get("name"), "password": user.get("password")}
            for user in data.get("users", [])
        ]


__all__ = ["C8yClient", "upstream_error_message"]
