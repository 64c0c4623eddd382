from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass fixes the HTTP status and the default message that reaches
    the client as ``{"error": message}``:
    - MissingAuthorization / InvalidAuthentication (401)
    - ValidationError / NotPairedError (422)
    - RateLimitExceeded (429)
    - StorageUnavailable / ServerError (500)
    """

    status_code: int = 422
    default_message: str = "Invalid request"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    default_message = "Invalid authentication"


class MissingAuthorization(AuthenticationError):
    default_message = "Missing authorization"


class InvalidAuthentication(AuthenticationError):
    default_message = "Invalid authentication"


class ValidationError(ServiceError):
    """Request body is malformed or missing fields (422)."""
    status_code = 422
    default_message = "Invalid request"


class NotPairedError(ValidationError):
    """Home is unknown or belongs to someone else; reported like a validation error."""
    default_message = "Home not paired to user"


class RateLimitExceeded(ServiceError):
    """Daily free-tier quota used up (429)."""
    status_code = 429
    default_message = "Free-tier message limit exceeded"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    default_message = "Internal server error"


class StorageUnavailable(ServerError):
    """The persistence layer rejected a write; a deployment problem, not a client one."""
    default_message = "Server configuration error"


__all__ = [
    "ServiceError",
    "AuthenticationError",
    "MissingAuthorization",
    "InvalidAuthentication",
    "ValidationError",
    "NotPairedError",
    "RateLimitExceeded",
    "ServerError",
    "StorageUnavailable",
]
