from __future__ import annotations

import os
from enum import Enum
from typing import Any, List

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from inboxauth.logging import get_logger

logger = get_logger(__name__)

# Token validity bounds accepted by the identity platform's app client.
MIN_ACCESS_TOKEN_MINUTES = 5
MAX_ACCESS_TOKEN_MINUTES = 24 * 60
MIN_REFRESH_TOKEN_MINUTES = 60
MAX_REFRESH_TOKEN_MINUTES = 10 * 365 * 24 * 60


class EmailTransport(str, Enum):
    """How one-time passcodes leave the system."""

    SES = "ses"
    SMTP = "smtp"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the passwordless email login service."""

    # Identity platform (Cognito user pool + public app client)
    cognito_region: str = env_field("us-east-1", "COGNITO_REGION")
    cognito_user_pool_id: str | None = env_field(None, "COGNITO_USER_POOL_ID")
    cognito_client_id: str | None = env_field(None, "COGNITO_CLIENT_ID")
    cognito_endpoint_url: str | None = env_field(
        None, "COGNITO_ENDPOINT_URL", description="Override for local emulators"
    )
    jwks_url: str | None = env_field(
        None, "JWKS_URL", description="Defaults to the user pool's well-known JWKS"
    )

    # One-time passcode email
    email_transport: EmailTransport = env_field(EmailTransport.SES, "EMAIL_TRANSPORT")
    ses_region: str = env_field("us-east-2", "SES_REGION")
    otp_from: str = env_field("example@example.com", "OTP_FROM")
    otp_email_subject: str = env_field("Temporary password", "OTP_SUBJECT")
    otp_email_text: str = env_field(
        "This is your temporary password. It will expire in 15 minutes.",
        "OTP_TEXT",
        description="Preamble; the passcode follows after an empty line",
    )
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")

    # Token validity mirrors the platform's app client configuration
    access_token_validity_minutes: int = env_field(60, "ACCESS_TOKEN_VALIDITY_MINUTES")
    refresh_token_validity_minutes: int = env_field(
        30 * 24 * 60, "REFRESH_TOKEN_VALIDITY_MINUTES"
    )

    # Per-call timeouts. Starting a login waits on the OTP email being sent,
    # so it gets the longest budget.
    login_timeout_seconds: float = env_field(20, "LOGIN_TIMEOUT_SECONDS")
    token_timeout_seconds: float = env_field(10, "TOKEN_TIMEOUT_SECONDS")
    email_timeout_seconds: float = env_field(5, "EMAIL_TIMEOUT_SECONDS")
    jwks_timeout_seconds: float = env_field(5, "JWKS_TIMEOUT_SECONDS")

    cors_allow_origins: List[str] = env_field(
        [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        "CORS_ALLOW_ORIGINS",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("email_transport")
    @classmethod
    def _validate_transport(cls, value: EmailTransport) -> EmailTransport:
        return EmailTransport(value)

    @field_validator("access_token_validity_minutes")
    @classmethod
    def _validate_access_validity(cls, value: int) -> int:
        if not MIN_ACCESS_TOKEN_MINUTES <= value <= MAX_ACCESS_TOKEN_MINUTES:
            raise ValueError("access token validity must be between 5 minutes and 1 day")
        return value

    @field_validator("refresh_token_validity_minutes")
    @classmethod
    def _validate_refresh_validity(cls, value: int) -> int:
        if not MIN_REFRESH_TOKEN_MINUTES <= value <= MAX_REFRESH_TOKEN_MINUTES:
            raise ValueError("refresh token validity must be between 60 minutes and 10 years")
        return value

    @model_validator(mode="after")
    def _access_within_refresh(self) -> "Settings":
        if self.access_token_validity_minutes > self.refresh_token_validity_minutes:
            raise ValueError("access token validity cannot exceed refresh token validity")
        return self

    @property
    def issuer(self) -> str | None:
        """Token issuer URL for the configured user pool."""
        if not self.cognito_user_pool_id:
            return None
        return f"https://cognito-idp.{self.cognito_region}.amazonaws.com/{self.cognito_user_pool_id}"

    @property
    def resolved_jwks_url(self) -> str | None:
        if self.jwks_url:
            return self.jwks_url
        issuer = self.issuer
        return f"{issuer}/.well-known/jwks.json" if issuer else None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.debug(
            "settings_loaded",
            email_transport=_settings_cache.email_transport.value,
            cognito_region=_settings_cache.cognito_region,
        )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
