"""
Key derivation from inbound authentication material.

Pure helpers that turn an ``Authorization`` header into a ``Credentials``
value and a ``Credentials`` value into a stable cache key discriminator.
"""

from __future__ import annotations

import base64
import binascii
import json

from pydantic import BaseModel, ConfigDict
from starlette.requests import Request

from .errors import UnauthorizedError

BASIC_PREFIX = "Basic "
BEARER_PREFIX = "Bearer "

AUTH_COOKIE = "authorization"
XSRF_COOKIE = "XSRF-TOKEN"
XSRF_HEADER = "X-XSRF-TOKEN"


class Credentials(BaseModel):
    """
    Credentials of a user or service user.

    Either the ``tenant``/``user``/``password`` triple or ``token`` is set,
    depending on the authentication scheme that produced them.
    """

    model_config = ConfigDict(frozen=True)

    tenant: str | None = None
    user: str | None = None
    password: str | None = None
    token: str | None = None

    @property
    def is_token(self) -> bool:
        return self.token is not None


def extract_credentials(authorization: str | None) -> Credentials:
    """
    Parse an ``Authorization`` header value.

    Supports ``Basic`` (``tenant/user:password``, split at the first ``:``
    and then at the first ``/``) and ``Bearer`` tokens.

    Raises:
        UnauthorizedError: When the header is missing or malformed.
    """
    if not authorization:
        raise UnauthorizedError("Missing Authorization header")

    if authorization.startswith(BASIC_PREFIX):
        encoded = authorization[len(BASIC_PREFIX):].strip()
        if not encoded:
            raise UnauthorizedError("Empty Basic auth token")
        try:
            decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise UnauthorizedError("Invalid Basic auth encoding") from exc

        username, sep, password = decoded.partition(":")
        if not sep:
            raise UnauthorizedError("Invalid Basic auth format")

        tenant, slash, user = username.partition("/")
        if not slash:
            raise UnauthorizedError("Invalid username format, expected tenant/user")

        return Credentials(tenant=tenant, user=user, password=password)

    if authorization.startswith(BEARER_PREFIX):
        token = authorization[len(BEARER_PREFIX):]
        if not token:
            raise UnauthorizedError("Empty Bearer token")
        return Credentials(token=token)

    raise UnauthorizedError("Unsupported Authorization header format")


def credentials_from_request(request: Request) -> Credentials:
    """
    Credentials of the user who sent ``request``.

    A platform session cookie (``authorization``) takes precedence over the
    ``Authorization`` header, the way browser sessions reach the service
    through the platform UI.
    """
    cookie_token = request.cookies.get(AUTH_COOKIE)
    if cookie_token:
        return Credentials(token=cookie_token)
    return extract_credentials(request.headers.get("authorization"))


def forwarded_headers(request: Request) -> dict[str, str]:
    """Headers to pass on to the platform for the requesting user (the XSRF token, if any)."""
    xsrf_token = request.cookies.get(XSRF_COOKIE)
    if xsrf_token:
        return {XSRF_HEADER: xsrf_token}
    return {}


def derive_key_discriminator(credentials: Credentials) -> str:
    """Serialize credentials into a canonical string usable inside a cache key."""
    payload = credentials.model_dump(exclude_none=True)
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def basic_auth_header(credentials: Credentials) -> str:
    """Build an outbound ``Authorization`` value for the given credentials."""
    if credentials.is_token:
        return f"{BEARER_PREFIX}{credentials.token}"
    raw = f"{credentials.tenant}/{credentials.user}:{credentials.password}"
    return BASIC_PREFIX + base64.b64encode(raw.encode("utf-8")).decode("ascii")


__all__ = [
    "Credentials",
    "extract_credentials",
    "credentials_from_request",
    "forwarded_headers",
    "derive_key_discriminator",
    "basic_auth_header",
]
