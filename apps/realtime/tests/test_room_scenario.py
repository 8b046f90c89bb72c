"""End-to-end: one room, two customers, codes and realtime events."""

from __future__ import annotations

import re
from datetime import datetime, time, timedelta

from django.core import mail
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.realtime.services import session_registry
from apps.realtime.transport import QueueConnection
from apps.scheduling.models import Resource, Service
from apps.users.identity import identity_for
from apps.users.models import User


def drain(connection: QueueConnection) -> list[dict]:
    messages = []
    while True:
        message = connection.receive(timeout=0)
        if message is None:
            return messages
        messages.append(message)


class RoomScenarioTests(APITestCase):
    def setUp(self) -> None:
        self.first = User.objects.create_user(email="first@example.com", password="pass12345")
        self.second = User.objects.create_user(email="second@example.com", password="pass12345")
        self.room = Resource.objects.create(label="Room A", capacity=1, is_published=True)
        self.service = Service.objects.create(
            name="Consultation",
            duration=timedelta(minutes=30),
            requires_otp=True,
            is_published=True,
        )
        tomorrow = timezone.localdate() + timedelta(days=1)
        self.start = timezone.make_aware(datetime.combine(tomorrow, time(10, 0)))

        self.first_inbox = QueueConnection()
        self.second_inbox = QueueConnection()
        self.room_watch = QueueConnection()
        session_registry.register(identity_for(self.first), self.first_inbox)
        session_registry.register(identity_for(self.second), self.second_inbox)
        session_registry.watch(session_registry.register("observer", self.room_watch), self.room.pk)

    def tearDown(self) -> None:
        for connection in (self.first_inbox, self.second_inbox, self.room_watch):
            session_registry.connection_lost(connection)

    def as_user(self, user) -> None:
        self.client.force_authenticate(user)

    def post(self, url, data=None):
        with self.captureOnCommitCallbacks(execute=True):
            return self.client.post(url, data or {}, format="json")

    def reserve(self):
        return self.post(reverse("appointment-list"), {
            "resource": self.room.pk,
            "service": self.service.pk,
            "start_time": self.start.isoformat(),
        })

    def test_capacity_one_room(self) -> None:
        # First customer books 10:00-10:30 and confirms with the e-mailed code
        self.as_user(self.first)
        booked = self.reserve()
        self.assertEqual(booked.status_code, status.HTTP_201_CREATED, booked.data)
        self.assertEqual(booked.data["status"], "pending")
        self.assertEqual(drain(self.room_watch)[0]["bookedCount"], 1)

        self.post(reverse("otp-issue"))
        code = re.search(r"\b(\d{6})\b", mail.outbox[-1].body).group(1)
        confirmed = self.post(reverse("appointment-confirm", args=[booked.data["id"]]), {"code": code})
        self.assertEqual(confirmed.data["status"], "confirmed")

        (confirmation,) = drain(self.first_inbox)
        self.assertEqual(confirmation["kind"], "booking-confirmed")
        self.assertEqual(confirmation["service"], "Consultation")
        self.assertEqual(confirmation["time"], self.start.isoformat())

        # The same slot is full for the second customer, and only they hear about it
        self.as_user(self.second)
        refused = self.reserve()
        self.assertEqual(refused.status_code, status.HTTP_409_CONFLICT, refused.data)
        self.assertEqual(refused.data["code"], "CAPACITY_EXCEEDED")
        (unavailable,) = drain(self.second_inbox)
        self.assertEqual(unavailable["kind"], "slot-unavailable")
        self.assertEqual(drain(self.first_inbox), [])

        # Cancelling gives the slot back
        self.as_user(self.first)
        cancelled = self.post(reverse("appointment-cancel", args=[booked.data["id"]]))
        self.assertEqual(cancelled.data["status"], "cancelled")
        (cancellation,) = drain(self.first_inbox)
        self.assertEqual(cancellation["kind"], "appointment-cancelled")
        self.assertEqual(drain(self.room_watch)[-1]["bookedCount"], 0)

        self.as_user(self.second)
        retried = self.reserve()
        self.assertEqual(retried.status_code, status.HTTP_201_CREATED, retried.data)
        self.assertEqual(drain(self.second_inbox), [])
