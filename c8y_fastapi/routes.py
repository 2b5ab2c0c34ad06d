"""
Example route handlers for the demo microservice.

Shows how handlers reach the cached accessors through the factory
dependency and how the access-control dependencies are attached.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request

from .dependencies import (
    get_factory,
    has_user_required_role,
    is_user_from_deployed_tenant,
)
from .factory import CredentialedClientFactory

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/user")
async def user(
    request: Request,
    factory: CredentialedClientFactory = Depends(get_factory),
) -> dict[str, Any]:
    """
    Current user of the request.

    Roles are read from the same request-scoped user object, so the
    platform is asked only once.
    """
    current = await factory.get_user(request)
    roles = await factory.get_user_roles(request)
    return {"userName": current.get("userName"), "roles": roles}


@router.get("/tenant-options")
async def tenant_options(
    factory: CredentialedClientFactory = Depends(get_factory),
) -> dict[str, Any]:
    my_option = await factory.get_tenant_option("myOption")
    secret = await factory.get_tenant_option("credentials.secret")
    return {"myOption": my_option, "secret": secret}


@router.post(
    "/tenant-options/refresh",
    dependencies=[Depends(is_user_from_deployed_tenant())],
)
async def refresh_tenant_options(
    factory: CredentialedClientFactory = Depends(get_factory),
) -> dict[str, Any]:
    """Re-fetch every tenant option accessed so far."""
    values = await factory.tenant_options.refresh_all()
    logger.info("Refreshed %s tenant option(s)", len(values))
    return {"refreshed": sorted(values)}


@router.get(
    "/admin",
    dependencies=[Depends(has_user_required_role(["ROLE_TENANT_ADMIN", "ROLE_TENANT_MANAGEMENT_ADMIN"]))],
)
async def admin() -> dict[str, str]:
    return {"message": "You have access"}


@router.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "service": "c8y-fastapi-demo"}
