from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"
ACCESS_EXPIRY_COOKIE = "accessExpiry"

# Set-Cookie values are built by hand to keep the fixed attribute order;
# Response.set_cookie emits its own.

# Token cookies are never readable from page script; the expiry cookie is, so
# clients can refresh ahead of time.
_TOKEN_ATTRIBUTES = "Secure; HttpOnly; Path=/"
_PLAIN_ATTRIBUTES = "Path=/"
_EXPIRE_NOW = "Path=/; Max-Age=0"


@dataclass(frozen=True)
class SessionCookieSet:
    """Ordered ``Set-Cookie`` header values for one response."""

    headers: List[str] = field(default_factory=list)

    def apply(self, response) -> None:
        for header in self.headers:
            response.headers.append("set-cookie", header)


def _token_cookie(name: str, value: str) -> str:
    return f"{name}={value}; {_TOKEN_ATTRIBUTES}"


def _expiry_cookie(expiry_millis: int) -> str:
    return f"{ACCESS_EXPIRY_COOKIE}={int(expiry_millis)}; {_PLAIN_ATTRIBUTES}"


def encode(access_token: str, refresh_token: str, access_expiry: int) -> SessionCookieSet:
    return SessionCookieSet(
        [
            _token_cookie(ACCESS_TOKEN_COOKIE, access_token),
            _token_cookie(REFRESH_TOKEN_COOKIE, refresh_token),
            _expiry_cookie(access_expiry),
        ]
    )


def encode_refreshed(access_token: str, access_expiry: int) -> SessionCookieSet:
    """Cookies for a refresh; the refresh cookie already held by the client stays."""
    return SessionCookieSet(
        [
            _token_cookie(ACCESS_TOKEN_COOKIE, access_token),
            _expiry_cookie(access_expiry),
        ]
    )


def clear() -> SessionCookieSet:
    return SessionCookieSet(
        [
            f"{ACCESS_TOKEN_COOKIE}=; {_EXPIRE_NOW}",
            f"{REFRESH_TOKEN_COOKIE}=; {_EXPIRE_NOW}",
            f"{ACCESS_EXPIRY_COOKIE}=0; {_EXPIRE_NOW}",
        ]
    )


def extract(cookies: Optional[Iterable[str]], name: str) -> Optional[str]:
    """Return the first value stored under ``name`` in a raw cookie list.

    Each entry is split on ``"; "`` and each part on its first ``"="``.
    Entries are scanned in order and the first match wins.
    """
    if not cookies:
        return None
    for entry in cookies:
        for part in entry.split("; "):
            key, sep, value = part.partition("=")
            if sep and key == name:
                return value
    return None
