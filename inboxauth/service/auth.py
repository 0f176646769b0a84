from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from inboxauth.logging import get_logger, redact_email
from inboxauth.service.errors import (
    BadRequestError,
    NotFoundError,
    RequestFailedError,
    ServerError,
    UnauthorizedError,
)
from inboxauth.service.identity import (
    CUSTOM_CHALLENGE,
    IdentityPlatform,
    PlatformError,
    PlatformRejectedError,
    TokenGrant,
)
from inboxauth.service.tokens import AccessTokenVerifier

logger = get_logger(__name__)


@dataclass(frozen=True)
class LoginStarted:
    session: str


@dataclass(frozen=True)
class IssuedCredentials:
    access_token: str
    refresh_token: str
    access_expiry: int  # epoch milliseconds


@dataclass(frozen=True)
class RefreshedCredentials:
    access_token: str
    access_expiry: int  # epoch milliseconds


@dataclass(frozen=True)
class AuthContext:
    subject: str


def _epoch_millis() -> int:
    return int(time.time() * 1000)


class AuthService:
    """Credential issuance and verification on top of the identity platform.

    Platform calls are blocking boto3 calls and run in a worker thread; each
    carries its own timeout and is never retried here.
    """

    def __init__(
        self,
        platform: IdentityPlatform,
        verifier: AccessTokenVerifier,
        *,
        access_token_validity_minutes: int = 60,
        clock: Callable[[], int] = _epoch_millis,
    ) -> None:
        self.platform = platform
        self.verifier = verifier
        self.access_token_validity_minutes = access_token_validity_minutes
        self.clock = clock

    def _expiry_for(self, grant: TokenGrant) -> int:
        lifetime = grant.expires_in or self.access_token_validity_minutes * 60
        return self.clock() + int(lifetime) * 1000

    async def start_login(self, email: Optional[str]) -> LoginStarted:
        if not email:
            raise BadRequestError("email is required")
        try:
            challenge = await asyncio.to_thread(self.platform.initiate_custom_auth, email)
        except PlatformError as exc:
            logger.warning(
                "login_start_failed",
                recipient=redact_email(email),
                error_type=type(exc).__name__,
                error_code=exc.code,
            )
            raise RequestFailedError("could not start login") from exc
        if challenge.challenge_name != CUSTOM_CHALLENGE or not challenge.session:
            logger.warning(
                "login_unexpected_challenge",
                recipient=redact_email(email),
                challenge_name=challenge.challenge_name,
            )
            raise RequestFailedError("platform did not pose the email challenge")
        logger.info("login_started", recipient=redact_email(email))
        return LoginStarted(session=challenge.session)

    async def answer_challenge(
        self, email: Optional[str], session: Optional[str], answer: Optional[str]
    ) -> IssuedCredentials:
        if not email or not session or not answer:
            raise BadRequestError("email, otp and session are required")
        try:
            grant = await asyncio.to_thread(
                self.platform.respond_to_challenge, email, session, answer
            )
        except PlatformError as exc:
            # Wrong code, expired session and outages look the same to the client
            logger.warning(
                "challenge_answer_failed",
                recipient=redact_email(email),
                error_type=type(exc).__name__,
                error_code=exc.code,
            )
            raise RequestFailedError("challenge answer failed") from exc
        if grant is None or not grant.refresh_token:
            logger.info("challenge_answer_not_accepted", recipient=redact_email(email))
            raise RequestFailedError("challenge answer not accepted")
        logger.info("login_completed", recipient=redact_email(email))
        return IssuedCredentials(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            access_expiry=self._expiry_for(grant),
        )

    async def refresh(self, refresh_token: Optional[str]) -> RefreshedCredentials:
        if not refresh_token:
            raise UnauthorizedError("no refresh token")
        try:
            grant = await asyncio.to_thread(self.platform.refresh, refresh_token)
        except PlatformRejectedError as exc:
            logger.info("refresh_rejected", error_code=exc.code)
            raise UnauthorizedError("refresh token rejected") from exc
        except PlatformError as exc:
            logger.warning("refresh_failed", error_type=type(exc).__name__, error_code=exc.code)
            raise RequestFailedError("refresh failed") from exc
        if grant is None:
            raise UnauthorizedError("refresh produced no access token")
        return RefreshedCredentials(
            access_token=grant.access_token,
            access_expiry=self._expiry_for(grant),
        )

    async def sign_out(self, refresh_token: Optional[str]) -> None:
        """Revoke ``refresh_token`` if one is given; never raises."""
        if not refresh_token:
            return
        try:
            await asyncio.to_thread(self.platform.revoke, refresh_token)
        except PlatformError as exc:
            logger.warning("signout_revoke_failed", error_type=type(exc).__name__, error_code=exc.code)
            return
        logger.info("signout_revoked")

    async def authenticate(self, access_token: Optional[str]) -> AuthContext:
        claims = await self.verifier.verify(access_token)
        return AuthContext(subject=claims["sub"])

    async def lookup_email(self, subject: str) -> str:
        try:
            attributes = await asyncio.to_thread(self.platform.get_user_attributes, subject)
        except PlatformError as exc:
            logger.error("email_lookup_failed", error_type=type(exc).__name__, error_code=exc.code)
            raise ServerError("email lookup failed") from exc
        email = attributes.get("email")
        if not email:
            raise NotFoundError("user has no email attribute")
        return email
