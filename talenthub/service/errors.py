from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for exceptions rendered as error envelopes by the HTTP layer.

    The base class defaults to a 400 ``validation_error``; subclasses pin the
    401 ``unauthorized`` and 404 ``not_found`` responses raised by routes.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


__all__ = [
    "ServiceError",
    "AuthenticationError",
    "NotFoundError",
]
