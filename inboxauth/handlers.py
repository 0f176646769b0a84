"""Entrypoints invoked by the identity platform and the API gateway.

The three challenge triggers receive the platform's event dict, answer in its
``response`` section and return the event. ``authorize`` is the per-request
authorizer for protected routes.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from inboxauth.logging import get_logger
from inboxauth.service.challenge import (
    OTP_CHALLENGE,
    ChallengeAttempt,
    ChallengeResult,
    decide_next,
    verify_answer,
)
from inboxauth.service.cookies import ACCESS_TOKEN_COOKIE, extract
from inboxauth.service.errors import ServiceError
from inboxauth.service.identity import CUSTOM_CHALLENGE
from inboxauth.service.runtime import get_runtime

logger = get_logger(__name__)


class _TriggerModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SessionEntry(_TriggerModel):
    challenge_name: str = Field("", alias="challengeName")
    challenge_result: Optional[bool] = Field(None, alias="challengeResult")
    challenge_metadata: Optional[str] = Field(None, alias="challengeMetadata")

    def to_attempt(self) -> ChallengeAttempt:
        if self.challenge_result is None:
            result = ChallengeResult.PENDING
        elif self.challenge_result:
            result = ChallengeResult.CORRECT
        else:
            result = ChallengeResult.INCORRECT
        return ChallengeAttempt(
            name=to_domain_challenge(self.challenge_name),
            metadata=self.challenge_metadata,
            result=result,
        )


class DefineChallengeRequest(_TriggerModel):
    session: List[SessionEntry] = Field(default_factory=list)


class CreateChallengeRequest(_TriggerModel):
    challenge_name: str = Field("", alias="challengeName")
    session: List[SessionEntry] = Field(default_factory=list)
    user_attributes: Dict[str, str] = Field(default_factory=dict, alias="userAttributes")


class VerifyChallengeRequest(_TriggerModel):
    private_challenge_parameters: Dict[str, str] = Field(
        default_factory=dict, alias="privateChallengeParameters"
    )
    challenge_answer: Optional[str] = Field(None, alias="challengeAnswer")


def to_domain_challenge(name: Optional[str]) -> str:
    return OTP_CHALLENGE if name == CUSTOM_CHALLENGE else (name or "")


def _history(entries: List[SessionEntry]) -> List[ChallengeAttempt]:
    return [entry.to_attempt() for entry in entries]


def _request(event: Dict[str, Any]) -> Dict[str, Any]:
    return event.get("request") or {}


def _response(event: Dict[str, Any]) -> Dict[str, Any]:
    response = event.get("response")
    if response is None:
        response = event["response"] = {}
    return response


def define_auth_challenge(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    request = DefineChallengeRequest.model_validate(_request(event))
    decision = decide_next(_history(request.session))
    response = _response(event)
    response["issueTokens"] = decision.issue_tokens
    response["failAuthentication"] = decision.fail_authentication
    if decision.challenge_name == OTP_CHALLENGE:
        response["challengeName"] = CUSTOM_CHALLENGE
    logger.info(
        "challenge_decided",
        outcome=decision.outcome.value,
        attempts=len(request.session),
    )
    return event


def create_auth_challenge(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    request = CreateChallengeRequest.model_validate(_request(event))
    if request.challenge_name != CUSTOM_CHALLENGE:
        return event
    email = request.user_attributes.get("email", "")
    issued = get_runtime().issuer.issue(_history(request.session), email)
    response = _response(event)
    response["publicChallengeParameters"] = dict(issued.public_parameters)
    response["privateChallengeParameters"] = dict(issued.private_parameters)
    response["challengeMetadata"] = issued.metadata
    return event


def verify_auth_challenge(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    request = VerifyChallengeRequest.model_validate(_request(event))
    expected = request.private_challenge_parameters.get("secretLoginCode")
    correct = verify_answer(expected, request.challenge_answer)
    _response(event)["answerCorrect"] = correct
    logger.info("challenge_answer_checked", correct=correct)
    return event


def _deny() -> Dict[str, Any]:
    return {"isAuthorized": False, "context": {}}


def authorize(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Grant a protected request when its access cookie verifies."""
    token = extract(event.get("cookies"), ACCESS_TOKEN_COOKIE)
    if not token:
        return _deny()
    try:
        auth_context = asyncio.run(get_runtime().auth.authenticate(token))
    except ServiceError:
        return _deny()
    return {"isAuthorized": True, "context": {"sub": auth_context.subject}}
