"""
FastAPI dependencies for access control.

Each factory returns a dependency to be used with ``Depends`` (or in a
router's ``dependencies=[...]``). A failed check raises ``ForbiddenError``.

The tenant checks trust the tenant named in Basic credentials without
asking the platform. That holds behind the platform's proxy, which
authenticates every request before it reaches the microservice; a service
exposed directly must not rely on them alone.

Example::

    @router.get("/admin", dependencies=[Depends(has_user_required_role("ROLE_ADMIN"))])
    async def admin() -> dict[str, str]:
        ...
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable

from fastapi import Request

from .errors import ForbiddenError
from .factory import CredentialedClientFactory

FACTORY_STATE_ATTR = "c8y"

RequestCheck = Callable[[Request], Awaitable[None]]


def get_factory(request: Request) -> CredentialedClientFactory:
    """The factory installed on the application by ``setup_c8y``."""
    factory = getattr(request.app.state, FACTORY_STATE_ATTR, None)
    if factory is None:
        raise RuntimeError("Cumulocity helpers are not installed; call setup_c8y(app) first")
    return factory


def _as_list(value: str | Iterable[str]) -> list[str]:
    if isinstance(value, str):
        return [value]
    return list(value)


def has_user_required_role(roles: str | Iterable[str]) -> RequestCheck:
    """Require the current user to hold at least one of ``roles``."""
    required = _as_list(roles)

    async def check(request: Request) -> None:
        user_roles = await get_factory(request).get_user_roles(request)
        if not any(role in user_roles for role in required):
            raise ForbiddenError(
                "User does not have required role(s) to access this resource: "
                + ", ".join(required)
            )

    return check


def is_user_from_allowed_tenant(tenants: str | Iterable[str]) -> RequestCheck:
    """Require the current user to belong to one of ``tenants``."""
    allowed = _as_list(tenants)

    async def check(request: Request) -> None:
        tenant = await get_factory(request).get_user_tenant(request)
        if tenant not in allowed:
            raise ForbiddenError(
                f"User tenant '{tenant}' is not allowed to access this resource"
            )

    return check


def is_user_from_deployed_tenant() -> RequestCheck:
    """Require the current user to belong to the tenant this microservice is deployed on."""

    async def check(request: Request) -> None:
        factory = get_factory(request)
        tenant = await factory.get_user_tenant(request)
        if tenant != factory.config.bootstrap_tenant:
            raise ForbiddenError(
                f"User tenant '{tenant}' is not the deployed tenant of this microservice"
            )

    return check


__all__ = [
    "get_factory",
    "has_user_required_role",
    "is_user_from_allowed_tenant",
    "is_user_from_deployed_tenant",
]
