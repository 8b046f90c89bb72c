"""
OTP Issuer

Issues and verifies one-time e-mail codes.

- issue(): invalidates the subject's unconsumed challenges and creates a
  fresh 6-digit code valid for OTP_TTL_SECONDS
- verify(): accepts an unconsumed, unexpired challenge with the exact
  code exactly once

Every challenge allows OTP_MAX_ATTEMPTS wrong guesses, after which it
is burned. A subject cannot be issued a new code within
OTP_ISSUE_COOLDOWN_SECONDS of the previous one.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Callable

from django.db import transaction  # type: ignore
from django.db.models import Q  # type: ignore

from shared.domain.clock import Clock, system_clock
from shared.domain.exceptions import StateError, ValidationError

from .models import OTPChallenge

logger = logging.getLogger(__name__)

CODE_LENGTH = 6


class VerificationFailure(Enum):
    NO_CHALLENGE = 'NO_CHALLENGE'
    EXPIRED = 'EXPIRED'
    MISMATCH = 'MISMATCH'


@dataclass(frozen=True)
class VerificationResult:
    accepted: bool
    reason: VerificationFailure | None = None

    @classmethod
    def ok(cls) -> 'VerificationResult':
        return cls(accepted=True)

    @classmethod
    def rejected(cls, reason: VerificationFailure) -> 'VerificationResult':
        return cls(accepted=False, reason=reason)


class OTPRejected(StateError):
    """A code was refused; ``code`` carries the VerificationFailure value"""

    def __init__(self, reason: VerificationFailure, message: str = ''):
        super().__init__(message or f"Verification code rejected: {reason.value}", code=reason.value)
        self.reason = reason


class OTPThrottled(StateError):
    code = 'THROTTLED'

    def __init__(self, message: str = '', *, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


def normalize_subject(subject_email: str) -> str:
    subject = (subject_email or '').strip().lower()
    if not subject or '@' not in subject:
        raise ValidationError(f"Invalid e-mail address: {subject_email!r}")
    return subject


def generate_code() -> str:
    """Uniformly random code from 100000 to 999999"""
    return str(100000 + secrets.randbelow(900000))


class OTPIssuer:
    """
    Issue/verify one-time codes for e-mail subjects

    ``sender`` is called after the challenge is stored, as
    sender(subject_email, code, ttl). Delivery failures are logged and
    never undo the issued challenge.
    """

    def __init__(
        self,
        clock: Clock = system_clock,
        *,
        ttl: timedelta = timedelta(minutes=5),
        max_attempts: int = 3,
        cooldown: timedelta = timedelta(seconds=30),
        sender: Callable[[str, str, timedelta], bool] | None = None,
    ):
        if ttl <= timedelta(0):
            raise ValueError("OTP time-to-live must be positive")
        if max_attempts < 1:
            raise ValueError("OTP attempts must be at least 1")
        self.clock = clock
        self.ttl = ttl
        self.max_attempts = max_attempts
        self.cooldown = cooldown
        self.sender = sender

    def issue(self, subject_email: str) -> str:
        """
        Create the single live challenge of ``subject_email``

        Raises:
            ValidationError: malformed e-mail address
            OTPThrottled: the previous code is younger than the cooldown
        """
        subject = normalize_subject(subject_email)
        now = self.clock.now()

        with transaction.atomic():
            previous = list(
                OTPChallenge.objects.select_for_update()
                .filter(subject_email=subject)
                .order_by("-issued_at")[:1]
            )

            if previous and self.cooldown > timedelta(0):
                elapsed = now - previous[0].issued_at
                if elapsed < self.cooldown:
                    retry_after = int((self.cooldown - elapsed).total_seconds()) + 1
                    logger.info(f"OTP issue for {subject} throttled, retry in {retry_after}s")
                    raise OTPThrottled(
                        f"A code was sent recently, retry in {retry_after}s",
                        retry_after=retry_after,
                    )

            deleted, _ = OTPChallenge.objects.filter(subject_email=subject, consumed=False).delete()
            if deleted:
                logger.debug(f"Invalidated {deleted} pending challenge(s) for {subject}")

            code = generate_code()
            OTPChallenge.objects.create(
                subject_email=subject,
                code=code,
                issued_at=now,
                expires_at=now + self.ttl,
                attempts_left=self.max_attempts,
            )

        logger.info(f"Issued OTP challenge for {subject}, expires in {self.ttl}")

        if self.sender is not None:
            if not self.sender(subject, code, self.ttl):
                logger.warning(f"OTP for {subject} was issued but could not be delivered")

        return code

    def verify(self, subject_email: str, code: str) -> VerificationResult:
        """
        Check ``code`` against the live challenge of ``subject_email``

        A successful verification consumes the challenge; a second
        verification of the same code gets NO_CHALLENGE.
        """
        try:
            subject = normalize_subject(subject_email)
        except ValidationError:
            return VerificationResult.rejected(VerificationFailure.NO_CHALLENGE)

        now = self.clock.now()
        candidate = (code or '').strip()

        with transaction.atomic():
            challenge = (
                OTPChallenge.objects.select_for_update()
                .filter(subject_email=subject, consumed=False, attempts_left__gt=0)
                .order_by("-issued_at")
                .first()
            )

            if challenge is None:
                return VerificationResult.rejected(VerificationFailure.NO_CHALLENGE)

            if challenge.is_expired(now):
                logger.info(f"OTP for {subject} presented after expiry")
                return VerificationResult.rejected(VerificationFailure.EXPIRED)

            if len(candidate) != CODE_LENGTH or not secrets.compare_digest(candidate, challenge.code):
                challenge.attempts_left = max(challenge.attempts_left - 1, 0)
                challenge.save(update_fields=["attempts_left"])
                logger.info(
                    f"OTP mismatch for {subject}, {challenge.attempts_left} attempt(s) left"
                )
                return VerificationResult.rejected(VerificationFailure.MISMATCH)

            challenge.consumed = True
            challenge.consumed_at = now
            challenge.save(update_fields=["consumed", "consumed_at"])

        logger.info(f"OTP for {subject} accepted")
        return VerificationResult.ok()

    def verify_or_raise(self, subject_email: str, code: str):
        result = self.verify(subject_email, code)
        if not result.accepted:
            raise OTPRejected(result.reason)

    def purge(self, older_than: timedelta = timedelta(hours=1)) -> int:
        """
        Delete challenges that can never be accepted again

        Consumed, expired and exhausted challenges are kept for
        ``older_than`` so the issue cooldown still sees them.
        """
        if older_than < self.cooldown:
            raise ValueError("Purge age must not be shorter than the issue cooldown")
        cutoff = self.clock.now() - older_than

        deleted, _ = OTPChallenge.objects.filter(
            Q(expires_at__lte=cutoff)
            | Q(consumed=True, consumed_at__lte=cutoff)
            | Q(attempts_left=0, issued_at__lte=cutoff)
        ).delete()
        if deleted:
            logger.info(f"Purged {deleted} spent OTP challenge(s)")
        return deleted


def get_otp_issuer(clock: Clock = system_clock) -> OTPIssuer:
    """Issuer configured from settings, delivering codes by e-mail"""
    from django.conf import settings  # type: ignore

    from apps.notifications.services import send_otp_email

    return OTPIssuer(
        clock,
        ttl=timedelta(seconds=getattr(settings, "OTP_TTL_SECONDS", 300)),
        max_attempts=getattr(settings, "OTP_MAX_ATTEMPTS", 3),
        cooldown=timedelta(seconds=getattr(settings, "OTP_ISSUE_COOLDOWN_SECONDS", 30)),
        sender=send_otp_email,
    )
