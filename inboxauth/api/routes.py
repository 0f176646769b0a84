from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Request, Response

from inboxauth.api.schemas import (
    AuthStatusResponse,
    Envelope,
    LoginInitRequest,
    LoginInitResponse,
    OtpRequest,
)
from inboxauth.logging import get_logger
from inboxauth.service import cookies
from inboxauth.service.auth import AuthContext
from inboxauth.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _request_cookies(request: Request) -> List[str]:
    return request.headers.getlist("cookie")


def _cookie(request: Request, name: str) -> str | None:
    # An empty value is what a cleared cookie leaves behind
    return cookies.extract(_request_cookies(request), name) or None


async def get_principal(request: Request) -> AuthContext:
    """Authorize a protected call from its access-token cookie."""
    runtime = get_runtime()
    return await runtime.auth.authenticate(_cookie(request, cookies.ACCESS_TOKEN_COOKIE))


@router.post("/auth/init", response_model=Envelope, tags=["auth"])
async def auth_init(body: LoginInitRequest):
    """Start a passwordless login.

    The identity platform emails a one-time passcode to the address; the
    returned session must accompany the answer.

    Raises:
        400: If the email is missing or the challenge could not be posed
    """
    runtime = get_runtime()
    started = await runtime.auth.start_login(body.email)
    return Envelope(status="ok", data=LoginInitResponse(session=started.session))


@router.post("/auth/otp", response_model=Envelope, tags=["auth"])
async def auth_otp(body: OtpRequest, response: Response):
    """Answer the emailed passcode and receive the session cookies."""
    runtime = get_runtime()
    credentials = await runtime.auth.answer_challenge(body.email, body.session, body.otp)
    cookies.encode(
        credentials.access_token,
        credentials.refresh_token,
        credentials.access_expiry,
    ).apply(response)
    return Envelope(status="ok")


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def auth_refresh(request: Request, response: Response):
    """Exchange the refresh cookie for a new access token.

    Raises:
        401: If the refresh cookie is absent or rejected
        400: If the identity platform could not be reached
    """
    runtime = get_runtime()
    refreshed = await runtime.auth.refresh(_cookie(request, cookies.REFRESH_TOKEN_COOKIE))
    cookies.encode_refreshed(refreshed.access_token, refreshed.access_expiry).apply(response)
    return Envelope(status="ok")


@router.post("/auth/signout", response_model=Envelope, tags=["auth"])
async def auth_signout(request: Request, response: Response):
    runtime = get_runtime()
    await runtime.auth.sign_out(_cookie(request, cookies.REFRESH_TOKEN_COOKIE))
    cookies.clear().apply(response)
    return Envelope(status="ok")


@router.get("/auth/status", response_model=Envelope, tags=["auth"])
async def auth_status(principal: AuthContext = Depends(get_principal)):
    """Return the signed-in user's current email address."""
    runtime = get_runtime()
    email = await runtime.auth.lookup_email(principal.subject)
    return Envelope(status="ok", data=AuthStatusResponse(email=email))
