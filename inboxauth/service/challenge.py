from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Sequence

from inboxauth.logging import get_logger, redact_email
from inboxauth.service.errors import ServerError
from inboxauth.service.otp import embed_passcode, extract_passcode, generate_passcode

logger = get_logger(__name__)

OTP_CHALLENGE = "OTP"
MAX_ATTEMPTS = 3


class ChallengeResult(str, Enum):
    PENDING = "pending"
    CORRECT = "correct"
    INCORRECT = "incorrect"


@dataclass(frozen=True)
class ChallengeAttempt:
    """One posed challenge of a login session, as replayed by the platform."""

    name: str
    metadata: Optional[str] = None
    result: ChallengeResult = ChallengeResult.PENDING


class ChallengeOutcome(str, Enum):
    START = "start"
    FOREIGN_CHALLENGE = "foreign_challenge"
    ACCEPT = "accept"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    RETRY = "retry"


@dataclass(frozen=True)
class ChallengeDecision:
    outcome: ChallengeOutcome
    issue_tokens: bool = False
    fail_authentication: bool = False
    challenge_name: Optional[str] = None


def decide_next(history: Sequence[ChallengeAttempt]) -> ChallengeDecision:
    """Decide the next step of a login session from its attempt history.

    Checks run in order and the first match wins, so a correct answer is
    accepted even on the last allowed attempt. The attempt ceiling counts every
    attempt, including the one just answered.
    """
    if not history:
        return ChallengeDecision(ChallengeOutcome.START, challenge_name=OTP_CHALLENGE)
    last = history[-1]
    if last.name != OTP_CHALLENGE:
        return ChallengeDecision(ChallengeOutcome.FOREIGN_CHALLENGE, fail_authentication=True)
    if last.result == ChallengeResult.CORRECT:
        return ChallengeDecision(ChallengeOutcome.ACCEPT, issue_tokens=True)
    if len(history) >= MAX_ATTEMPTS:
        return ChallengeDecision(ChallengeOutcome.TOO_MANY_ATTEMPTS, fail_authentication=True)
    return ChallengeDecision(ChallengeOutcome.RETRY, challenge_name=OTP_CHALLENGE)


@dataclass(frozen=True)
class IssuedChallenge:
    """Parameters for a posed challenge.

    ``public_parameters`` reach the client; ``private_parameters`` stay with the
    platform and are handed back to the verifier with the answer.
    """

    public_parameters: Dict[str, str] = field(default_factory=dict)
    private_parameters: Dict[str, str] = field(default_factory=dict)
    metadata: str = ""

    @property
    def passcode(self) -> str:
        return self.private_parameters["secretLoginCode"]


class ChallengeIssuer:
    """Poses OTP challenges, emailing a fresh code only for the first attempt."""

    def __init__(self, email_service, generate: Callable[[], str] = generate_passcode) -> None:
        self.email_service = email_service
        self.generate = generate

    def issue(self, history: Sequence[ChallengeAttempt], email: str) -> IssuedChallenge:
        if not history:
            passcode = self.generate()
            # Raises on delivery failure; the challenge is not posed without the email
            self.email_service.send_passcode(email, passcode)
            logger.info("challenge_issued", recipient=redact_email(email))
        else:
            passcode = extract_passcode(history[-1].metadata)
            if passcode is None:
                logger.error("challenge_metadata_unreadable", attempts=len(history))
                raise ServerError("previous challenge carries no passcode")
            logger.info("challenge_reissued", recipient=redact_email(email), attempts=len(history))
        return IssuedChallenge(
            public_parameters={"email": email},
            private_parameters={"secretLoginCode": passcode},
            metadata=embed_passcode(passcode),
        )


def verify_answer(expected: Optional[str], answer: Optional[str]) -> bool:
    """Exact, case-sensitive comparison of the submitted answer."""
    if not expected or answer is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), answer.encode("utf-8"))
