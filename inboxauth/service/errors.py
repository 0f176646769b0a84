from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP status_code, a stable error_code and the fixed
    client-facing message. Callers may pass a more specific message for the
    logs, but only ``public_message`` is ever returned to a client:
    - validation_error (400)
    - request_failed (400)
    - unauthorized (401)
    - not_found (404)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"
    public_message: str = "Bad request"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.public_message
        super().__init__(self.message)


class BadRequestError(ServiceError):
    """Client input is missing or malformed (400)."""
    status_code = 400
    error_code = "validation_error"
    public_message = "Bad request"


class RequestFailedError(ServiceError):
    """The identity platform refused the operation or could not be reached (400).

    Wrong code, expired session and transport errors all end up here so the
    response never tells a caller which of them happened.
    """
    status_code = 400
    error_code = "request_failed"
    public_message = "Request failed"


class UnauthorizedError(ServiceError):
    """Credential missing, invalid, expired or revoked (401)."""
    status_code = 401
    error_code = "unauthorized"
    public_message = "Unauthorized"


class NotFoundError(ServiceError):
    """The user has no email attribute (404)."""
    status_code = 404
    error_code = "not_found"
    public_message = "Email not found"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"
    public_message = "Internal Server Error"


__all__ = [
    "ServiceError",
    "BadRequestError",
    "RequestFailedError",
    "UnauthorizedError",
    "NotFoundError",
    "ServerError",
]
