"""API tests for one-time code endpoints."""

from __future__ import annotations

import re

from django.core import mail
from django.test import override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.users.models import User


class OTPAPITests(APITestCase):
    def setUp(self) -> None:
        self.user = User.objects.create_user(email="customer@example.com", password="pass12345")
        self.client.force_authenticate(self.user)

    def _code(self) -> str:
        return re.search(r"\b(\d{6})\b", mail.outbox[-1].body).group(1)

    def test_issue_and_verify_own_address(self) -> None:
        issue = self.client.post(reverse("otp-issue"), {}, format="json")
        self.assertEqual(issue.status_code, status.HTTP_202_ACCEPTED, issue.data)
        self.assertEqual(issue.data["expires_in"], 300)
        self.assertIn("expires in 5 minutes", mail.outbox[-1].body)

        verify = self.client.post(reverse("otp-verify"), {"code": self._code()}, format="json")
        self.assertEqual(verify.status_code, status.HTTP_200_OK, verify.data)
        self.assertTrue(verify.data["accepted"])

        again = self.client.post(reverse("otp-verify"), {"code": self._code()}, format="json")
        self.assertEqual(again.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(again.data["code"], "NO_CHALLENGE")

    def test_customers_cannot_issue_for_other_addresses(self) -> None:
        self.client.post(reverse("otp-issue"), {"email": "victim@example.com"}, format="json")
        self.assertEqual(mail.outbox[-1].to, [self.user.email])

    def test_malformed_code_is_rejected_by_the_serializer(self) -> None:
        response = self.client.post(reverse("otp-verify"), {"code": "12ab"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @override_settings(OTP_ISSUE_COOLDOWN_SECONDS=60)
    def test_rapid_reissue_is_throttled(self) -> None:
        self.client.post(reverse("otp-issue"), {}, format="json")
        response = self.client.post(reverse("otp-issue"), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response.data["code"], "THROTTLED")
        self.assertIn("Retry-After", response)

    def test_anonymous_callers_are_refused(self) -> None:
        self.client.force_authenticate(None)
        response = self.client.post(reverse("otp-issue"), {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
