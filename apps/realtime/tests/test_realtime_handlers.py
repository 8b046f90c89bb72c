"""Tests for the domain event to realtime event mapping."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest import mock

from django.test import TestCase

from apps.realtime import handlers
from apps.realtime.events import EventKind
from apps.scheduling.domain.events import (
    AppointmentCancelled,
    AppointmentCreated,
    BookingConfirmed,
    CapacityAllocated,
    ResourceCapacityChanged,
    SlotUnavailable,
)
from apps.scheduling.models import Service
from shared.application.message_bus import MessageBus
from shared.domain.value_objects import TimeWindow

START = datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)
WINDOW = TimeWindow(START, timedelta(minutes=30))


class RealtimeMappingTests(TestCase):
    def setUp(self) -> None:
        self.service = Service.objects.create(name="Consultation", is_published=True)
        self.appointment_id = uuid.uuid4()

    def appointment_fields(self) -> dict:
        return dict(
            appointment_id=self.appointment_id,
            resource_id=3,
            service_id=self.service.pk,
            customer_id="7",
            window=WINDOW,
        )

    def test_booking_confirmed_goes_to_the_customer(self) -> None:
        event = handlers.to_realtime(BookingConfirmed(**self.appointment_fields()))

        self.assertEqual(event.target_identity, "7")
        self.assertIsNone(event.target_resource)
        self.assertEqual(event.to_message(), {
            "kind": "booking-confirmed",
            "appointmentId": str(self.appointment_id),
            "resourceId": 3,
            "service": "Consultation",
            "time": "2030-01-07T10:00:00+00:00",
            "end": "2030-01-07T10:30:00+00:00",
        })

    def test_slot_unavailable_goes_to_the_requester(self) -> None:
        event = handlers.to_realtime(SlotUnavailable(
            resource_id=3,
            service_id=self.service.pk,
            customer_id="8",
            window=WINDOW,
            requested_units=2,
        ))

        self.assertEqual(event.kind, EventKind.SLOT_UNAVAILABLE)
        self.assertEqual(event.target_identity, "8")
        self.assertEqual(event.to_message()["requestedUnits"], 2)

    def test_cancellation_carries_reason_and_expiry(self) -> None:
        event = handlers.to_realtime(AppointmentCancelled(
            previous_status="pending",
            reason="Confirmation window elapsed",
            expired=True,
            **self.appointment_fields(),
        ))

        message = event.to_message()
        self.assertEqual(message["kind"], "appointment-cancelled")
        self.assertEqual(message["reason"], "Confirmation window elapsed")
        self.assertTrue(message["expired"])

    def test_capacity_events_go_to_resource_watchers(self) -> None:
        allocated = handlers.to_realtime(CapacityAllocated(
            resource_id=3,
            appointment_id=self.appointment_id,
            window=WINDOW,
            units=1,
            load=2,
            capacity=3,
        ))

        self.assertEqual(allocated.target_resource, 3)
        message = allocated.to_message()
        self.assertEqual(message["kind"], "slot-update")
        self.assertEqual(message["bookedCount"], 2)
        self.assertEqual(message["available"], 1)

        resized = handlers.to_realtime(ResourceCapacityChanged(resource_id=3, old_capacity=3, new_capacity=5))
        self.assertEqual(resized.to_message()["capacity"], 5)
        self.assertEqual(resized.to_message()["previousCapacity"], 3)

    def test_internal_events_are_not_broadcast(self) -> None:
        created = AppointmentCreated(confirm_deadline=START, **self.appointment_fields())
        self.assertIsNone(handlers.to_realtime(created))
        self.assertIsNone(handlers.dispatch(created))

    def test_registered_handler_publishes_through_the_notifier(self) -> None:
        bus = MessageBus()
        handlers.register(bus)
        handlers.register(bus)
        notifier = mock.Mock()

        with mock.patch("apps.realtime.services.get_notifier", return_value=notifier):
            bus.publish_events([BookingConfirmed(**self.appointment_fields())])

        notifier.publish.assert_called_once()
        (event,), _ = notifier.publish.call_args
        self.assertEqual(event.kind, EventKind.BOOKING_CONFIRMED)
