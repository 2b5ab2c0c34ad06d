"""
Cumulocity microservice helpers for FastAPI.

Cached credential lookups, request-scoped user accessors, tenant option
caching and access-control dependencies for services running on the
Cumulocity IoT platform.
"""
from .cache import CachedFunction, DerivedCachedFunction, cached_function
from .client import C8yClient
from .config_loader import Config
from .credentials import Credentials, derive_key_discriminator, extract_credentials
from .dependencies import (
    get_factory,
    has_user_required_role,
    is_user_from_allowed_tenant,
    is_user_from_deployed_tenant,
)
from .errors import (
    C8yError,
    CredentialsNotFoundError,
    ForbiddenError,
    UnauthorizedError,
    UpstreamFailure,
)
from .factory import CredentialedClientFactory
from .memo import get_or_compute, request_context
from .plugin import setup_c8y
from .storage import CacheEntry, CacheStorage, FileStorage, MemoryStorage
from .tenant_options import TenantOptionRegistry

__version__ = "0.1.0"
__all__ = [
    "C8yClient",
    "C8yError",
    "CacheEntry",
    "CacheStorage",
    "CachedFunction",
    "Config",
    "CredentialedClientFactory",
    "Credentials",
    "CredentialsNotFoundError",
    "DerivedCachedFunction",
    "FileStorage",
    "ForbiddenError",
    "MemoryStorage",
    "TenantOptionRegistry",
    "UnauthorizedError",
    "UpstreamFailure",
    "cached_function",
    "derive_key_discriminator",
    "extract_credentials",
    "get_factory",
    "get_or_compute",
    "has_user_required_role",
    "is_user_from_allowed_tenant",
    "is_user_from_deployed_tenant",
    "request_context",
    "setup_c8y",
]
