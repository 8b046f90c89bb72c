"""Stored one-time code challenges."""

from __future__ import annotations

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class OTPChallenge(models.Model):
    """6-digit code sent to an e-mail address to prove control of it."""

    subject_email = models.EmailField(db_index=True)
    code = models.CharField(max_length=6)
    issued_at = models.DateTimeField()
    expires_at = models.DateTimeField()
    attempts_left = models.PositiveSmallIntegerField(default=3)
    consumed = models.BooleanField(default=False)
    consumed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _("OTP challenge")
        verbose_name_plural = _("OTP challenges")
        ordering = ["-issued_at"]
        indexes = [
            models.Index(fields=["subject_email", "consumed"], name="otp_subject_consumed_idx"),
        ]

    def __str__(self) -> str:
        return f"Challenge for {self.subject_email} (expires {self.expires_at:%H:%M:%S})"

    def is_expired(self, now) -> bool:
        return now >= self.expires_at

    @property
    def is_live(self) -> bool:
        return not self.consumed and self.attempts_left > 0
