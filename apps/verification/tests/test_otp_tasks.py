"""Tests for clearing out spent one-time codes."""

from __future__ import annotations

from datetime import timedelta

from django.test import TestCase, override_settings
from django.utils import timezone

from apps.verification.models import OTPChallenge
from apps.verification.services import OTPIssuer
from apps.verification.tasks import purge_spent_challenges
from shared.domain.clock import FrozenClock


class OTPPurgeTests(TestCase):
    def setUp(self) -> None:
        self.clock = FrozenClock()
        self.issuer = OTPIssuer(self.clock, ttl=timedelta(minutes=5), cooldown=timedelta(seconds=30))

    def test_only_spent_challenges_past_retention_are_deleted(self) -> None:
        code = self.issuer.issue("used@example.com")
        self.assertTrue(self.issuer.verify("used@example.com", code).accepted)

        locked = self.issuer.issue("locked@example.com")
        for _ in range(3):
            self.issuer.verify("locked@example.com", "000000" if locked != "000000" else "111111")

        self.issuer.issue("lapsed@example.com")

        self.clock.advance(minutes=30)
        self.issuer.issue("live@example.com")

        self.assertEqual(self.issuer.purge(older_than=timedelta(hours=1)), 0)
        self.assertEqual(OTPChallenge.objects.count(), 4)

        self.clock.advance(hours=1)
        self.assertEqual(self.issuer.purge(older_than=timedelta(hours=1)), 3)
        self.assertEqual(
            list(OTPChallenge.objects.values_list("subject_email", flat=True)),
            ["live@example.com"],
        )

    def test_retention_cannot_undercut_the_cooldown(self) -> None:
        with self.assertRaises(ValueError):
            self.issuer.purge(older_than=timedelta(seconds=10))

    @override_settings(OTP_RETENTION_SECONDS=60)
    def test_periodic_task_purges_with_configured_retention(self) -> None:
        now = timezone.now()
        OTPChallenge.objects.create(
            subject_email="old@example.com",
            code="123456",
            issued_at=now - timedelta(hours=2),
            expires_at=now - timedelta(hours=2) + timedelta(minutes=5),
            consumed=True,
            consumed_at=now - timedelta(hours=2),
        )
        OTPChallenge.objects.create(
            subject_email="new@example.com",
            code="654321",
            issued_at=now,
            expires_at=now + timedelta(minutes=5),
        )

        self.assertEqual(purge_spent_challenges(), {"purged": 1})
        self.assertTrue(OTPChallenge.objects.filter(subject_email="new@example.com").exists())
