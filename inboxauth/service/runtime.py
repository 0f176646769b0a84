from __future__ import annotations

import threading
from typing import Optional

from inboxauth.config import Settings, get_settings, reset_settings_cache
from inboxauth.logging import get_logger
from inboxauth.service.auth import AuthService
from inboxauth.service.challenge import ChallengeIssuer
from inboxauth.service.email import EmailService
from inboxauth.service.identity import CognitoIdentityPlatform
from inboxauth.service.tokens import AccessTokenVerifier, JwksCache

logger = get_logger(__name__)


class Runtime:
    """Holds the process-wide service instances.

    Built once per process; the key cache inside ``verifier`` is shared by every
    request handled by this process.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            email_transport=self.settings.email_transport.value,
            cognito_region=self.settings.cognito_region,
            pool_configured=bool(self.settings.cognito_user_pool_id),
        )

        self.email = EmailService(
            transport=self.settings.email_transport,
            from_email=self.settings.otp_from,
            subject=self.settings.otp_email_subject,
            preamble=self.settings.otp_email_text,
            ses_region=self.settings.ses_region,
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            timeout=self.settings.email_timeout_seconds,
        )
        self.issuer = ChallengeIssuer(self.email)
        self.identity = CognitoIdentityPlatform(
            region=self.settings.cognito_region,
            client_id=self.settings.cognito_client_id,
            user_pool_id=self.settings.cognito_user_pool_id,
            endpoint_url=self.settings.cognito_endpoint_url,
            login_timeout=self.settings.login_timeout_seconds,
            token_timeout=self.settings.token_timeout_seconds,
        )
        self.jwks = JwksCache(
            self.settings.resolved_jwks_url,
            timeout=self.settings.jwks_timeout_seconds,
        )
        self.verifier = AccessTokenVerifier(
            self.jwks,
            issuer=self.settings.issuer,
            client_id=self.settings.cognito_client_id,
        )
        self.auth = AuthService(
            self.identity,
            self.verifier,
            access_token_validity_minutes=self.settings.access_token_validity_minutes,
        )
        logger.info("runtime_init_completed")


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking so the common path never takes the lock.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton from a freshly read environment."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        runtime = Runtime()
        return runtime
