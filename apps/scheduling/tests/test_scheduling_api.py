"""Integration tests for scheduling API endpoints."""

from __future__ import annotations

import re
from datetime import datetime, time, timedelta

from django.core import mail
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.scheduling.models import Appointment, Resource, Service
from apps.users.models import User


class SchedulingAPITests(APITestCase):
    """Covers reservation, confirmation, conflicts and cancellation."""

    def setUp(self) -> None:
        self.customer = User.objects.create_user(
            email="customer@example.com",
            phone="+77000000002",
            password="CustomerPass123",
        )
        self.other = User.objects.create_user(
            email="other@example.com",
            phone="+77000000004",
            password="OtherPass123",
        )
        self.organiser = User.objects.create_user(
            email="organiser@example.com",
            phone="+77000000003",
            password="OrganiserPass123",
            role=User.RoleChoices.ORGANISER,
        )
        self.resource = Resource.objects.create(label="Room A", capacity=1, is_published=True)
        self.service = Service.objects.create(
            name="Consultation",
            duration=timedelta(minutes=30),
            requires_otp=True,
            is_published=True,
        )
        tomorrow = timezone.localdate() + timedelta(days=1)
        self.start = timezone.make_aware(datetime.combine(tomorrow, time(10, 0)))
        self.client.force_authenticate(self.customer)
        self.list_url = reverse("appointment-list")

    def _payload(self, start=None, **extra) -> dict:
        payload = {
            "resource": self.resource.pk,
            "service": self.service.pk,
            "start_time": (start or self.start).isoformat(),
        }
        payload.update(extra)
        return payload

    def _last_code(self) -> str:
        match = re.search(r"\b(\d{6})\b", mail.outbox[-1].body)
        assert match is not None
        return match.group(1)

    def test_customer_can_reserve_and_confirm_with_code(self) -> None:
        response = self.client.post(self.list_url, self._payload(), format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["status"], "pending")
        self.assertIsNotNone(response.data["confirm_deadline"])
        self.assertEqual(response.data["service_name"], "Consultation")

        issue = self.client.post(reverse("otp-issue"), {}, format="json")
        self.assertEqual(issue.status_code, status.HTTP_202_ACCEPTED, issue.data)
        self.assertEqual(mail.outbox[-1].to, [self.customer.email])

        confirm_url = reverse("appointment-confirm", args=[response.data["id"]])
        confirm = self.client.post(confirm_url, {"code": self._last_code()}, format="json")
        self.assertEqual(confirm.status_code, status.HTTP_200_OK, confirm.data)
        self.assertEqual(confirm.data["status"], "confirmed")

    def test_confirm_with_wrong_code_is_refused(self) -> None:
        response = self.client.post(self.list_url, self._payload(), format="json")
        self.client.post(reverse("otp-issue"), {}, format="json")
        code = self._last_code()
        wrong = "123456" if code != "123456" else "654321"

        confirm_url = reverse("appointment-confirm", args=[response.data["id"]])
        confirm = self.client.post(confirm_url, {"code": wrong}, format="json")

        self.assertEqual(confirm.status_code, status.HTTP_409_CONFLICT, confirm.data)
        self.assertEqual(confirm.data["code"], "MISMATCH")
        appointment = Appointment.objects.get(pk=response.data["id"])
        self.assertEqual(appointment.status, Appointment.Status.PENDING)

    def test_overlapping_request_on_full_resource_conflicts(self) -> None:
        first = self.client.post(self.list_url, self._payload(), format="json")
        self.assertEqual(first.status_code, status.HTTP_201_CREATED, first.data)

        self.client.force_authenticate(self.other)
        second = self.client.post(
            self.list_url,
            self._payload(self.start + timedelta(minutes=15)),
            format="json",
        )

        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT, second.data)
        self.assertEqual(second.data["code"], "CAPACITY_EXCEEDED")
        self.assertEqual(Appointment.objects.count(), 1)

    def test_past_start_is_bad_request(self) -> None:
        response = self.client.post(
            self.list_url,
            self._payload(timezone.now() - timedelta(hours=1)),
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)
        self.assertEqual(response.data["code"], "INVALID_WINDOW")

    def test_unknown_resource_is_not_found(self) -> None:
        response = self.client.post(self.list_url, self._payload(resource=9999), format="json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND, response.data)
        self.assertEqual(response.data["code"], "NOT_FOUND")

    def test_reservation_without_resource_takes_the_least_loaded_one(self) -> None:
        second = Resource.objects.create(label="Room B", capacity=1, is_published=True)
        self.service.resources.add(self.resource, second)
        first = self.client.post(self.list_url, self._payload(), format="json")
        self.assertEqual(first.status_code, status.HTTP_201_CREATED, first.data)

        self.client.force_authenticate(self.other)
        payload = self._payload()
        del payload["resource"]
        response = self.client.post(self.list_url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["resource"], second.pk)

    def test_reservation_without_resource_needs_linked_resources(self) -> None:
        payload = self._payload()
        del payload["resource"]
        response = self.client.post(self.list_url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)
        self.assertEqual(response.data["code"], "INVALID_INPUT")
        self.assertEqual(Appointment.objects.count(), 0)

    def test_cancel_frees_the_slot(self) -> None:
        first = self.client.post(self.list_url, self._payload(), format="json")
        cancel_url = reverse("appointment-cancel", args=[first.data["id"]])

        cancel = self.client.post(cancel_url, {"reason": "Travel"}, format="json")
        self.assertEqual(cancel.status_code, status.HTTP_200_OK, cancel.data)
        self.assertEqual(cancel.data["status"], "cancelled")
        self.assertEqual(cancel.data["cancellation_reason"], "Travel")

        self.client.force_authenticate(self.other)
        second = self.client.post(self.list_url, self._payload(), format="json")
        self.assertEqual(second.status_code, status.HTTP_201_CREATED, second.data)

    def test_customers_only_see_their_own_appointments(self) -> None:
        mine = self.client.post(self.list_url, self._payload(), format="json")
        self.client.force_authenticate(self.other)
        self.client.post(self.list_url, self._payload(self.start + timedelta(hours=1)), format="json")

        listing = self.client.get(self.list_url)
        self.assertEqual(listing.status_code, status.HTTP_200_OK)
        self.assertEqual(len(listing.data), 1)

        foreign = self.client.get(reverse("appointment-detail", args=[mine.data["id"]]))
        self.assertEqual(foreign.status_code, status.HTTP_404_NOT_FOUND)

        self.client.force_authenticate(self.organiser)
        self.assertEqual(len(self.client.get(self.list_url).data), 2)

    def test_availability_lists_remaining_capacity(self) -> None:
        self.client.post(self.list_url, self._payload(), format="json")

        url = reverse("resource-availability", args=[self.resource.pk])
        response = self.client.get(url, {"date": self.start.date().isoformat(), "service": self.service.pk})

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        slots = {slot["start_time"]: slot for slot in response.data["slots"]}
        self.assertEqual(len(slots), 18)
        booked = slots[self.start.isoformat()]
        self.assertEqual(booked["remaining"], 0)
        self.assertFalse(booked["available"])
        free = slots[(self.start + timedelta(minutes=30)).isoformat()]
        self.assertTrue(free["available"])

    def test_organiser_manages_capacity(self) -> None:
        self.client.post(self.list_url, self._payload(), format="json")
        self.client.force_authenticate(self.organiser)
        url = reverse("resource-capacity", args=[self.resource.pk])

        response = self.client.post(url, {"capacity": 3}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["capacity"], 3)
        self.assertEqual(response.data["ledger_version"], 2)

        self.client.force_authenticate(self.customer)
        forbidden = self.client.post(url, {"capacity": 5}, format="json")
        self.assertEqual(forbidden.status_code, status.HTTP_403_FORBIDDEN)

    def test_capacity_below_bookings_conflicts(self) -> None:
        self.resource.capacity = 2
        self.resource.save()
        self.client.post(self.list_url, self._payload(), format="json")
        self.client.force_authenticate(self.other)
        self.client.post(self.list_url, self._payload(), format="json")

        self.client.force_authenticate(self.organiser)
        response = self.client.post(
            reverse("resource-capacity", args=[self.resource.pk]),
            {"capacity": 1},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertEqual(response.data["code"], "CAPACITY_EXCEEDED")
        self.resource.refresh_from_db()
        self.assertEqual(self.resource.capacity, 2)

    def test_capacity_cannot_be_patched_directly(self) -> None:
        self.client.force_authenticate(self.organiser)
        response = self.client.patch(
            reverse("resource-detail", args=[self.resource.pk]),
            {"capacity": 7},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)

    def test_unpublished_catalogue_is_hidden_from_customers(self) -> None:
        Resource.objects.create(label="Back office", capacity=1, is_published=False)

        response = self.client.get(reverse("resource-list"))
        self.assertEqual([r["label"] for r in response.data], ["Room A"])

        self.client.force_authenticate(self.organiser)
        self.assertEqual(len(self.client.get(reverse("resource-list")).data), 2)
