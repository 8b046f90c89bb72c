"""Unit tests for the appointment lifecycle."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from apps.scheduling.domain.entities import Appointment, AppointmentStatus, ServicePolicy
from apps.scheduling.domain.events import (
    AppointmentCancelled,
    AppointmentCompleted,
    AppointmentCreated,
    AppointmentReminder,
    BookingConfirmed,
)
from apps.scheduling.domain.ledger import SlotLedger
from shared.domain.exceptions import InvalidTransition, PermissionDenied, StateError
from shared.domain.value_objects import Actor, Role, TimeWindow

NOW = datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc)
WINDOW = TimeWindow(NOW + timedelta(hours=2), timedelta(minutes=30))
CUSTOMER = Actor("7")
OTHER = Actor("8")
ORGANISER = Actor("9", Role.ORGANISER)


def make_appointment(requires_otp: bool = False) -> Appointment:
    reservation = SlotLedger(resource_id=1, capacity=1).admit(WINDOW)
    policy = ServicePolicy(
        service_id=3,
        name="Consultation",
        duration=timedelta(minutes=30),
        requires_otp=requires_otp,
    )
    return Appointment.from_reservation(
        reservation,
        customer_id="7",
        customer_email="customer@example.com",
        now=NOW,
        confirmation_window=timedelta(minutes=15),
        policy=policy,
    )


def test_created_pending_with_deadline() -> None:
    appointment = make_appointment()

    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.confirm_deadline == NOW + timedelta(minutes=15)
    assert appointment.service_name == "Consultation"
    assert appointment.blocks_capacity()
    (event,) = appointment.events
    assert isinstance(event, AppointmentCreated)
    assert event.confirm_deadline == appointment.confirm_deadline


def test_confirm_without_otp() -> None:
    appointment = make_appointment()
    appointment.clear_events()

    appointment.confirm(NOW + timedelta(minutes=5))

    assert appointment.status == AppointmentStatus.CONFIRMED
    assert appointment.confirm_deadline is None
    assert isinstance(appointment.events[0], BookingConfirmed)


def test_confirm_requires_verified_code() -> None:
    appointment = make_appointment(requires_otp=True)
    appointment.clear_events()

    with pytest.raises(StateError) as excinfo:
        appointment.confirm(NOW)
    assert excinfo.value.code == "OTP_REQUIRED"
    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.events == []

    appointment.confirm(NOW, otp_verified=True)
    assert appointment.status == AppointmentStatus.CONFIRMED


def test_confirm_after_deadline_is_refused() -> None:
    appointment = make_appointment()

    with pytest.raises(InvalidTransition):
        appointment.confirm(NOW + timedelta(minutes=15))
    assert appointment.status == AppointmentStatus.PENDING


def test_expire_only_after_deadline_and_only_once() -> None:
    appointment = make_appointment()
    appointment.clear_events()

    assert appointment.expire(NOW + timedelta(minutes=14)) is False
    assert appointment.status == AppointmentStatus.PENDING

    assert appointment.expire(NOW + timedelta(minutes=15)) is True
    assert appointment.status == AppointmentStatus.CANCELLED
    assert appointment.cancelled_by == "system"
    (event,) = appointment.events
    assert isinstance(event, AppointmentCancelled)
    assert event.expired is True
    assert event.previous_status == "pending"

    assert appointment.expire(NOW + timedelta(hours=1)) is False
    assert len(appointment.events) == 1


def test_expire_is_ignored_once_confirmed() -> None:
    appointment = make_appointment()
    appointment.confirm(NOW)

    assert appointment.expire(NOW + timedelta(hours=1)) is False
    assert appointment.status == AppointmentStatus.CONFIRMED


def test_owner_and_staff_can_cancel() -> None:
    mine = make_appointment()
    mine.cancel(CUSTOMER, NOW, "Changed plans")
    assert mine.status == AppointmentStatus.CANCELLED
    assert mine.cancellation_reason == "Changed plans"
    assert not mine.blocks_capacity()

    theirs = make_appointment()
    theirs.confirm(NOW)
    theirs.cancel(ORGANISER, NOW)
    assert theirs.status == AppointmentStatus.CANCELLED
    assert theirs.cancelled_by == "9"


def test_strangers_cannot_cancel() -> None:
    appointment = make_appointment()
    appointment.clear_events()

    with pytest.raises(PermissionDenied):
        appointment.cancel(OTHER, NOW)
    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.events == []


def test_terminal_states_reject_transitions() -> None:
    appointment = make_appointment()
    appointment.cancel(CUSTOMER, NOW)

    with pytest.raises(InvalidTransition):
        appointment.cancel(CUSTOMER, NOW)
    with pytest.raises(InvalidTransition):
        appointment.confirm(NOW)
    with pytest.raises(InvalidTransition):
        appointment.complete(WINDOW.end)


def test_complete_after_window_ends() -> None:
    appointment = make_appointment()
    appointment.confirm(NOW)
    appointment.clear_events()

    with pytest.raises(InvalidTransition):
        appointment.complete(WINDOW.start)

    appointment.complete(WINDOW.end)
    assert appointment.status == AppointmentStatus.COMPLETED
    assert isinstance(appointment.events[0], AppointmentCompleted)
    assert appointment.blocks_capacity()
    assert not appointment.is_active


def test_pending_cannot_complete() -> None:
    with pytest.raises(InvalidTransition):
        make_appointment().complete(WINDOW.end)


def test_reminder_is_sent_once_within_lead() -> None:
    appointment = make_appointment()
    appointment.confirm(NOW)
    appointment.clear_events()

    assert appointment.remind(NOW, timedelta(hours=1)) is False
    assert appointment.remind(NOW + timedelta(hours=1, minutes=30), timedelta(hours=1)) is True
    assert isinstance(appointment.events[0], AppointmentReminder)
    assert appointment.events[0].customer_email == "customer@example.com"
    assert appointment.remind(NOW + timedelta(hours=1, minutes=45), timedelta(hours=1)) is False
