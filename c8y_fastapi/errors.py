"""
Failure types raised by the Cumulocity helpers.

Every error is a FastAPI HTTPException so route handlers can let them
propagate and FastAPI renders the matching status code. The cache core
never retries; callers that want a retry use ``.refresh()``.
"""

from __future__ import annotations

from fastapi import HTTPException


class C8yError(HTTPException):
    """Base class for all errors produced by this package."""

    status_code = 500

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(status_code=status_code or self.status_code, detail=detail)


class UnauthorizedError(C8yError):
    """The request carried no usable credentials."""

    status_code = 401

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.headers = {"WWW-Authenticate": 'Basic realm="Cumulocity"'}


class ForbiddenError(C8yError):
    """Credentials are valid but lack the required role or tenant."""

    status_code = 403


class UpstreamFailure(C8yError):
    """
    The platform answered with a non-success status.

    The upstream status code and message are preserved so handlers can
    pass them through unchanged.
    """

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail, status_code=status_code)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class CredentialsNotFoundError(C8yError):
    """A tenant has no registered service credentials for this microservice."""

    status_code = 500


__all__ = [
    "C8yError",
    "UnauthorizedError",
    "ForbiddenError",
    "UpstreamFailure",
    "CredentialsNotFoundError",
]
