from __future__ import annotations

from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from inboxauth.api.error_handling import register_exception_handlers
from inboxauth.api.routes import router
from inboxauth.api.schemas import HealthResponse
from inboxauth.config import Settings
from inboxauth.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime before the first request is served."""
    from inboxauth.service.runtime import get_runtime

    runtime = get_runtime()
    logger.info(
        "app_started",
        version=__version__,
        email_transport=runtime.settings.email_transport.value,
    )
    yield
    logger.info("app_stopped")


app = FastAPI(title="inboxauth", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    # Never a wildcard: the session travels in credentialed cookies
    return [origin for origin in _settings.cors_allow_origins if origin != "*"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID", "API-Version"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation ID.

    Taken from the client's X-Request-ID header when present, otherwise
    generated; bound for structured logging and echoed back in X-Request-ID.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # Responses carry credentials and session handles; proxies must not keep them
    if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    response.headers.setdefault("API-Version", __version__)
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness check; also reports whether the signing keys are cached yet."""
    from inboxauth.service.runtime import get_runtime

    runtime = get_runtime()
    return HealthResponse(status="ok", signing_keys_cached=runtime.jwks.is_warm)


def create_app() -> FastAPI:
    return app
