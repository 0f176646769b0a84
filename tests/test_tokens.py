"""Tests for the signing-key cache and access token verification."""

import asyncio
import time

import httpx
import pytest

from inboxauth.service.errors import UnauthorizedError
from inboxauth.service.tokens import AccessTokenVerifier, JwksCache, JwksUnavailableError

ISSUER = "https://cognito-idp.us-east-1.amazonaws.com/us-east-1_TestPool"
JWKS_URL = f"{ISSUER}/.well-known/jwks.json"


def _counting_transport(document, statuses=None):
    """MockTransport serving ``document``; ``statuses`` are consumed first."""
    calls = []
    pending = list(statuses or [])

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        status = pending.pop(0) if pending else 200
        if status != 200:
            return httpx.Response(status, json={"message": "unavailable"})
        return httpx.Response(200, json=document)

    return httpx.MockTransport(handler), calls


def _verifier(cache, client_id="test-client-id", issuer=ISSUER):
    return AccessTokenVerifier(cache, issuer=issuer, client_id=client_id)


class TestJwksCache:
    """Tests for lazy, fetch-once key caching."""

    async def test_fetches_once(self, jwks_document):
        transport, calls = _counting_transport(jwks_document)
        cache = JwksCache(JWKS_URL, transport=transport)
        assert cache.is_warm is False

        first = await cache.get_keys()
        second = await cache.get_keys()

        assert first is second
        assert "test-kid" in first
        assert calls == [JWKS_URL]
        assert cache.is_warm is True

    async def test_concurrent_cold_start_shares_one_fetch(self, jwks_document):
        transport, calls = _counting_transport(jwks_document)
        cache = JwksCache(JWKS_URL, transport=transport)

        results = await asyncio.gather(*(cache.get_keys() for _ in range(5)))

        assert len(calls) == 1
        assert all(result is results[0] for result in results)

    async def test_failed_fetch_is_retried_by_next_caller(self, jwks_document):
        transport, calls = _counting_transport(jwks_document, statuses=[503])
        cache = JwksCache(JWKS_URL, transport=transport)

        with pytest.raises(JwksUnavailableError):
            await cache.get_keys()
        assert cache.is_warm is False

        keys = await cache.get_keys()
        assert "test-kid" in keys
        assert len(calls) == 2

    async def test_fetch_outlives_cancelled_waiter(self, jwks_document):
        release = asyncio.Event()
        calls = []

        async def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            await release.wait()
            return httpx.Response(200, json=jwks_document)

        cache = JwksCache(JWKS_URL, transport=httpx.MockTransport(handler))
        waiter = asyncio.ensure_future(cache.get_keys())
        while not calls:
            await asyncio.sleep(0)
        shared = cache._inflight

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        release.set()
        await shared

        assert cache.is_warm is True
        assert "test-kid" in await cache.get_keys()
        assert len(calls) == 1

    async def test_document_without_keys_rejected(self):
        transport, _ = _counting_transport({"keys": []})
        cache = JwksCache(JWKS_URL, transport=transport)
        with pytest.raises(JwksUnavailableError):
            await cache.get_keys()

    async def test_missing_url_rejected(self):
        with pytest.raises(JwksUnavailableError):
            await JwksCache(None).get_keys()


class TestAccessTokenVerifier:
    """Tests for token signature and claim validation."""

    async def test_valid_token_returns_claims(self, jwks_document, mint_token):
        transport, _ = _counting_transport(jwks_document)
        claims = await _verifier(JwksCache(JWKS_URL, transport=transport)).verify(mint_token())
        assert claims["sub"] == "user-sub-1"

    async def test_id_token_audience_accepted(self, jwks_document, mint_token):
        transport, _ = _counting_transport(jwks_document)
        token = mint_token(client_id=None, aud="test-client-id", token_use="id")
        claims = await _verifier(JwksCache(JWKS_URL, transport=transport)).verify(token)
        assert claims["aud"] == "test-client-id"

    @pytest.mark.parametrize("token", [None, ""])
    async def test_missing_token_unauthorized(self, token):
        transport, calls = _counting_transport({"keys": []})
        with pytest.raises(UnauthorizedError):
            await _verifier(JwksCache(JWKS_URL, transport=transport)).verify(token)
        assert calls == []

    async def test_expired_token_unauthorized(self, jwks_document, mint_token):
        transport, _ = _counting_transport(jwks_document)
        past = int(time.time()) - 120
        token = mint_token(iat=past - 3600, exp=past)
        with pytest.raises(UnauthorizedError):
            await _verifier(JwksCache(JWKS_URL, transport=transport)).verify(token)

    async def test_wrong_client_unauthorized(self, jwks_document, mint_token):
        transport, _ = _counting_transport(jwks_document)
        with pytest.raises(UnauthorizedError):
            await _verifier(JwksCache(JWKS_URL, transport=transport)).verify(
                mint_token(client_id="someone-else")
            )

    async def test_wrong_issuer_unauthorized(self, jwks_document, mint_token):
        transport, _ = _counting_transport(jwks_document)
        with pytest.raises(UnauthorizedError):
            await _verifier(JwksCache(JWKS_URL, transport=transport)).verify(
                mint_token(iss="https://evil.example.com")
            )

    async def test_unknown_kid_unauthorized(self, jwks_document, mint_token):
        transport, calls = _counting_transport(jwks_document)
        with pytest.raises(UnauthorizedError):
            await _verifier(JwksCache(JWKS_URL, transport=transport)).verify(
                mint_token(kid="rotated-kid")
            )
        assert len(calls) == 1

    async def test_foreign_signature_unauthorized(self, jwks_document, mint_token):
        from cryptography.hazmat.primitives.asymmetric import rsa

        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        transport, _ = _counting_transport(jwks_document)
        with pytest.raises(UnauthorizedError):
            await _verifier(JwksCache(JWKS_URL, transport=transport)).verify(
                mint_token(key=other_key)
            )

    async def test_garbage_token_unauthorized(self, jwks_document):
        transport, _ = _counting_transport(jwks_document)
        with pytest.raises(UnauthorizedError):
            await _verifier(JwksCache(JWKS_URL, transport=transport)).verify("not-a-jwt")

    async def test_key_fetch_failure_unauthorized(self, mint_token):
        transport, _ = _counting_transport({}, statuses=[500])
        with pytest.raises(UnauthorizedError):
            await _verifier(JwksCache(JWKS_URL, transport=transport)).verify(mint_token())

    async def test_unconfigured_verifier_unauthorized(self, jwks_document, mint_token):
        transport, _ = _counting_transport(jwks_document)
        verifier = _verifier(JwksCache(JWKS_URL, transport=transport), issuer=None)
        with pytest.raises(UnauthorizedError):
            await verifier.verify(mint_token())

    async def test_cache_shared_across_verifications(self, jwks_document, mint_token):
        transport, calls = _counting_transport(jwks_document)
        verifier = _verifier(JwksCache(JWKS_URL, transport=transport))
        for _ in range(3):
            await verifier.verify(mint_token())
        assert len(calls) == 1
