from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import httpx
import jwt
from jwt import PyJWK
from jwt.exceptions import PyJWKError

from inboxauth.logging import get_logger
from inboxauth.service.errors import UnauthorizedError

logger = get_logger(__name__)

ALGORITHMS = ["RS256"]
_TOKEN_USES = {"access", "id"}


class JwksUnavailableError(Exception):
    """The signing keys could not be fetched or parsed."""


class JwksCache:
    """Process-wide cache of the user pool's token signing keys.

    Keys are fetched on first use and kept for the life of the process; a key
    rotation upstream is picked up by the next process. Concurrent cold-start
    callers share one in-flight fetch instead of taking a lock. A failed fetch
    leaves the cache cold so the next caller tries again.
    """

    def __init__(
        self,
        jwks_url: Optional[str],
        *,
        timeout: float = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.jwks_url = jwks_url
        self.timeout = timeout
        self._transport = transport
        self._keys: Optional[Dict[str, PyJWK]] = None
        self._inflight: Optional[asyncio.Future] = None

    @property
    def is_warm(self) -> bool:
        return self._keys is not None

    async def get_keys(self) -> Dict[str, PyJWK]:
        if self._keys is not None:
            return self._keys
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._fetch())
        task = self._inflight
        try:
            # Shielded so one cancelled waiter does not abort the shared fetch
            keys = await asyncio.shield(task)
        finally:
            if self._inflight is task and task.done():
                self._inflight = None
        return keys

    async def _fetch(self) -> Dict[str, PyJWK]:
        if not self.jwks_url:
            raise JwksUnavailableError("no JWKS URL configured")
        logger.info("jwks_fetch_started", url=self.jwks_url)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(self.jwks_url)
                response.raise_for_status()
                document = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(
                "jwks_fetch_failed",
                url=self.jwks_url,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise JwksUnavailableError(str(exc)) from exc

        keys: Dict[str, PyJWK] = {}
        for entry in document.get("keys", []) if isinstance(document, dict) else []:
            kid = entry.get("kid") if isinstance(entry, dict) else None
            if not kid:
                continue
            try:
                keys[kid] = PyJWK(entry)
            except PyJWKError as exc:
                logger.warning("jwks_key_skipped", kid=kid, error=str(exc))
        if not keys:
            logger.error("jwks_empty", url=self.jwks_url)
            raise JwksUnavailableError("JWKS document has no usable keys")
        # Set by the fetch itself; its waiters may all have been cancelled
        self._keys = keys
        logger.info("jwks_fetch_completed", key_count=len(keys))
        return keys


class AccessTokenVerifier:
    """Validates access tokens issued by the user pool.

    Signature, expiry, issuer and the app client are all checked; any failure
    (a missing token included) is reported as UnauthorizedError.
    """

    def __init__(
        self,
        keys: JwksCache,
        *,
        issuer: Optional[str],
        client_id: Optional[str],
        leeway: float = 0,
    ) -> None:
        self.keys = keys
        self.issuer = issuer
        self.client_id = client_id
        self.leeway = leeway

    def _client_matches(self, claims: Dict[str, Any]) -> bool:
        # Access tokens name the app client in client_id, id tokens in aud
        if "client_id" in claims:
            return claims["client_id"] == self.client_id
        audience = claims.get("aud")
        if isinstance(audience, list):
            return self.client_id in audience
        return audience == self.client_id

    async def verify(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise UnauthorizedError("missing access token")
        if not self.issuer or not self.client_id:
            logger.error("token_verifier_not_configured")
            raise UnauthorizedError("token verification is not configured")
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as exc:
            raise UnauthorizedError("malformed access token") from exc

        try:
            keys = await self.keys.get_keys()
        except JwksUnavailableError as exc:
            raise UnauthorizedError("signing keys unavailable") from exc
        key = keys.get(header.get("kid"))
        if key is None:
            logger.warning("token_unknown_kid", kid=header.get("kid"))
            raise UnauthorizedError("unknown signing key")

        try:
            claims = jwt.decode(
                token,
                key.key,
                algorithms=ALGORITHMS,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": ["exp", "iss", "sub"], "verify_aud": False},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.info("token_expired")
            raise UnauthorizedError("access token expired") from exc
        except jwt.InvalidTokenError as exc:
            logger.warning("token_invalid", error_type=type(exc).__name__)
            raise UnauthorizedError("invalid access token") from exc

        if not self._client_matches(claims):
            logger.warning("token_client_mismatch")
            raise UnauthorizedError("token was issued to another client")
        token_use = claims.get("token_use")
        if token_use is not None and token_use not in _TOKEN_USES:
            raise UnauthorizedError("unexpected token use")
        return claims
