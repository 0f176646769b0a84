from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

_VALID_ERROR_CODES = {
    "validation_error",
    "request_failed",
    "unauthorized",
    "not_found",
    "server_error",
}

MAX_EMAIL_LENGTH = 320
MAX_SESSION_LENGTH = 4096
MAX_OTP_LENGTH = 64


class ErrorBody(BaseModel):
    """Error envelope body with a stable code value."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(f"unknown error code {value!r}")
        return value


class Envelope(BaseModel):
    """API envelope format."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class LoginInitRequest(BaseModel):
    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)


class LoginInitResponse(BaseModel):
    session: str


class OtpRequest(BaseModel):
    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)
    otp: str = Field(..., max_length=MAX_OTP_LENGTH)
    session: str = Field(..., max_length=MAX_SESSION_LENGTH)


class AuthStatusResponse(BaseModel):
    email: str


class HealthResponse(BaseModel):
    status: str
    signing_keys_cached: bool
