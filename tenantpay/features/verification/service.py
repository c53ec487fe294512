"""
Verification challenges for upgrade attempts.

Each attempt holds at most one live challenge. Issuing again replaces it, so
only the most recently issued code is ever accepted. Codes are six ASCII
digits drawn uniformly from 000000-999999.

Expiry and lockout are off unless VERIFICATION_CODE_TTL_SECONDS /
VERIFICATION_MAX_ATTEMPTS are set.
"""

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from tenantpay.core.config import settings
from tenantpay.core.errors import InvalidCode
from tenantpay.core.logging import log_event
from tenantpay.models.payment_method import VerificationChallenge, VerificationMedium

CODE_DIGITS = 6


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"


class CodeSender(Protocol):
    def send(self, admin_id: str, medium: VerificationMedium, code: str) -> None:
        ...


class LoggingCodeSender:
    """Default sender: records that a code went out, never the code itself."""

    def send(self, admin_id: str, medium: VerificationMedium, code: str) -> None:
        log_event(
            "info",
            "verification.code_dispatched",
            admin_id=admin_id,
            event_type="verification.code_dispatched",
            extra={"medium": medium.value},
        )


class VerificationChallengeIssuer:
    def __init__(
        self,
        sender: Optional[CodeSender] = None,
        ttl_seconds: Optional[int] = None,
        max_attempts: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.sender = sender or LoggingCodeSender()
        self.ttl_seconds = settings.VERIFICATION_CODE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.max_attempts = settings.VERIFICATION_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def issue(self, attempt_id: str, admin_id: str, medium: VerificationMedium) -> VerificationChallenge:
        challenge = VerificationChallenge(
            code=generate_code(),
            issued_at=self._clock(),
            medium=medium,
            attempt_id=attempt_id,
        )
        self.sender.send(admin_id, medium, challenge.code)
        return challenge

    def check(self, challenge: Optional[VerificationChallenge], submitted: Optional[str]) -> bool:
        if challenge is None or submitted is None:
            return False
        return hmac.compare_digest(challenge.code.encode(), str(submitted).encode())

    def is_expired(self, challenge: VerificationChallenge, now: Optional[datetime] = None) -> bool:
        if not self.ttl_seconds:
            return False
        now = now or self._clock()
        return now - challenge.issued_at > timedelta(seconds=self.ttl_seconds)

    def verify(
        self,
        challenge: Optional[VerificationChallenge],
        submitted: Optional[str],
        failed_attempts: int = 0,
    ) -> None:
        """
        Raise InvalidCode unless `submitted` equals the current challenge.

        Reasons: locked (too many failures), expired (past TTL), mismatch.
        """
        if self.max_attempts and failed_attempts >= self.max_attempts:
            raise InvalidCode("locked")
        if challenge is not None and self.is_expired(challenge):
            raise InvalidCode("expired")
        if not self.check(challenge, submitted):
            raise InvalidCode("mismatch")
