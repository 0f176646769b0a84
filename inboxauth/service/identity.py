from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from inboxauth.logging import get_logger

logger = get_logger(__name__)

CUSTOM_CHALLENGE = "CUSTOM_CHALLENGE"

# Error codes meaning "the platform said no", as opposed to "could not ask"
_REJECTION_CODES = {
    "NotAuthorizedException",
    "UserNotFoundException",
    "CodeMismatchException",
    "ExpiredCodeException",
    "UserNotConfirmedException",
    "InvalidParameterException",
}


class PlatformError(Exception):
    """Base class for identity-platform adapter failures."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class PlatformRejectedError(PlatformError):
    """The platform refused the request (bad code, expired session, revoked token)."""


class PlatformUnavailableError(PlatformError):
    """Transport failure, timeout, throttling or an unexpected platform error."""


@dataclass(frozen=True)
class LoginChallenge:
    challenge_name: Optional[str]
    session: Optional[str]


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: Optional[str]
    expires_in: Optional[int]


class IdentityPlatform(Protocol):
    def initiate_custom_auth(self, email: str) -> LoginChallenge: ...

    def respond_to_challenge(
        self, email: str, session: str, answer: str
    ) -> Optional[TokenGrant]: ...

    def refresh(self, refresh_token: str) -> Optional[TokenGrant]: ...

    def revoke(self, refresh_token: str) -> None: ...

    def get_user_attributes(self, subject: str) -> Dict[str, str]: ...


def _grant_from(result: Optional[Dict[str, Any]]) -> Optional[TokenGrant]:
    if not result or not result.get("AccessToken"):
        return None
    return TokenGrant(
        access_token=result["AccessToken"],
        refresh_token=result.get("RefreshToken"),
        expires_in=result.get("ExpiresIn"),
    )


class CognitoIdentityPlatform:
    """Cognito user pool adapter over boto3 ``cognito-idp``.

    Two clients are kept: one with the longer budget for starting a login
    (the pool's create-challenge trigger sends the email inside that call) and
    one for token exchange and lookups. Neither retries internally.
    """

    def __init__(
        self,
        *,
        region: str,
        client_id: Optional[str],
        user_pool_id: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        login_timeout: float = 20,
        token_timeout: float = 10,
        login_client: Any = None,
        token_client: Any = None,
    ) -> None:
        self.region = region
        self.client_id = client_id
        self.user_pool_id = user_pool_id
        self.endpoint_url = endpoint_url
        self.login_timeout = login_timeout
        self.token_timeout = token_timeout
        self._login_client = login_client
        self._token_client = token_client
        self._client_lock = threading.Lock()

    def _build_client(self, timeout: float):
        kwargs: Dict[str, Any] = {
            "region_name": self.region,
            "config": Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"max_attempts": 0},
            ),
        }
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        logger.debug(
            "cognito_client_initialized",
            region=self.region,
            timeout=timeout,
            custom_endpoint=bool(self.endpoint_url),
        )
        return boto3.client("cognito-idp", **kwargs)

    def _get_login_client(self):
        if self._login_client is None:
            with self._client_lock:
                if self._login_client is None:
                    self._login_client = self._build_client(self.login_timeout)
        return self._login_client

    def _get_token_client(self):
        if self._token_client is None:
            with self._client_lock:
                if self._token_client is None:
                    self._token_client = self._build_client(self.token_timeout)
        return self._token_client

    def _require(self, value: Optional[str], name: str) -> str:
        if not value:
            raise PlatformUnavailableError(f"{name} is not configured")
        return value

    def _call(self, operation: str, client, **params) -> Dict[str, Any]:
        try:
            return getattr(client, operation)(**params)
        except ClientError as exc:
            error = exc.response.get("Error", {})
            code = error.get("Code")
            if code in _REJECTION_CODES:
                logger.info("cognito_rejected", operation=operation, error_code=code)
                raise PlatformRejectedError(error.get("Message") or code, code=code) from exc
            logger.error(
                "cognito_error",
                operation=operation,
                error_code=code,
                error=error.get("Message"),
            )
            raise PlatformUnavailableError(error.get("Message") or str(code), code=code) from exc
        except BotoCoreError as exc:
            logger.error(
                "cognito_unavailable",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise PlatformUnavailableError(str(exc)) from exc

    def initiate_custom_auth(self, email: str) -> LoginChallenge:
        response = self._call(
            "initiate_auth",
            self._get_login_client(),
            AuthFlow="CUSTOM_AUTH",
            ClientId=self._require(self.client_id, "client id"),
            AuthParameters={"USERNAME": email},
        )
        return LoginChallenge(
            challenge_name=response.get("ChallengeName"),
            session=response.get("Session"),
        )

    def respond_to_challenge(
        self, email: str, session: str, answer: str
    ) -> Optional[TokenGrant]:
        response = self._call(
            "respond_to_auth_challenge",
            self._get_token_client(),
            ChallengeName=CUSTOM_CHALLENGE,
            ClientId=self._require(self.client_id, "client id"),
            Session=session,
            ChallengeResponses={"USERNAME": email, "ANSWER": answer},
        )
        return _grant_from(response.get("AuthenticationResult"))

    def refresh(self, refresh_token: str) -> Optional[TokenGrant]:
        response = self._call(
            "initiate_auth",
            self._get_token_client(),
            AuthFlow="REFRESH_TOKEN_AUTH",
            ClientId=self._require(self.client_id, "client id"),
            AuthParameters={"REFRESH_TOKEN": refresh_token},
        )
        return _grant_from(response.get("AuthenticationResult"))

    def revoke(self, refresh_token: str) -> None:
        self._call(
            "revoke_token",
            self._get_token_client(),
            Token=refresh_token,
            ClientId=self._require(self.client_id, "client id"),
        )

    def get_user_attributes(self, subject: str) -> Dict[str, str]:
        response = self._call(
            "admin_get_user",
            self._get_token_client(),
            UserPoolId=self._require(self.user_pool_id, "user pool id"),
            Username=subject,
        )
        return {
            attr["Name"]: attr.get("Value", "")
            for attr in response.get("UserAttributes", [])
            if "Name" in attr
        }
