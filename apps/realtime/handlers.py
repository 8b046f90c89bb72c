"""
Domain event -> realtime event

- BookingConfirmed -> booking-confirmed (customer)
- SlotUnavailable -> slot-unavailable (requester only)
- AppointmentCancelled -> appointment-cancelled (customer)
- AppointmentReminder -> appointment-reminder (customer)
- AppointmentCompleted -> appointment-completed (customer)
- CapacityAllocated / CapacityReleased / ResourceCapacityChanged
  -> slot-update (connections watching the resource)
"""

from __future__ import annotations

from functools import singledispatch

import structlog

from shared.application.message_bus import MessageBus
from apps.scheduling.domain.events import (
    AppointmentCancelled,
    AppointmentCompleted,
    AppointmentReminder,
    BookingConfirmed,
    CapacityAllocated,
    CapacityReleased,
    ResourceCapacityChanged,
    SlotUnavailable,
)

from .events import Event, EventKind

logger = structlog.get_logger(__name__)


def service_name(service_id) -> str | None:
    if service_id is None:
        return None

    from apps.scheduling.models import Service

    return Service.objects.filter(pk=service_id).values_list("name", flat=True).first()


def _appointment_payload(event) -> dict:
    return {
        "appointmentId": event.appointment_id,
        "resourceId": event.resource_id,
        "service": service_name(event.service_id),
        "time": event.window.start,
        "end": event.window.end,
    }


@singledispatch
def to_realtime(event) -> Event | None:
    """Realtime event for a domain event, or None if clients don't hear about it"""
    return None


@to_realtime.register
def _(event: BookingConfirmed) -> Event:
    return Event.for_identity(EventKind.BOOKING_CONFIRMED, event.customer_id, **_appointment_payload(event))


@to_realtime.register
def _(event: SlotUnavailable) -> Event:
    return Event.for_identity(
        EventKind.SLOT_UNAVAILABLE,
        event.customer_id,
        resourceId=event.resource_id,
        service=service_name(event.service_id),
        time=event.window.start,
        end=event.window.end,
        requestedUnits=event.requested_units,
    )


@to_realtime.register
def _(event: AppointmentCancelled) -> Event:
    return Event.for_identity(
        EventKind.APPOINTMENT_CANCELLED,
        event.customer_id,
        reason=event.reason or None,
        expired=event.expired,
        **_appointment_payload(event),
    )


@to_realtime.register
def _(event: AppointmentReminder) -> Event:
    return Event.for_identity(EventKind.APPOINTMENT_REMINDER, event.customer_id, **_appointment_payload(event))


@to_realtime.register
def _(event: AppointmentCompleted) -> Event:
    return Event.for_identity(EventKind.APPOINTMENT_COMPLETED, event.customer_id, **_appointment_payload(event))


def _slot_update(event) -> Event:
    return Event.for_resource(
        EventKind.SLOT_UPDATE,
        event.resource_id,
        resourceId=event.resource_id,
        time=event.window.start,
        end=event.window.end,
        bookedCount=event.load,
        capacity=event.capacity,
        available=max(event.capacity - event.load, 0),
        timestamp=event.occurred_at,
    )


@to_realtime.register
def _(event: CapacityAllocated) -> Event:
    return _slot_update(event)


@to_realtime.register
def _(event: CapacityReleased) -> Event:
    return _slot_update(event)


@to_realtime.register
def _(event: ResourceCapacityChanged) -> Event:
    return Event.for_resource(
        EventKind.SLOT_UPDATE,
        event.resource_id,
        resourceId=event.resource_id,
        capacity=event.new_capacity,
        previousCapacity=event.old_capacity,
        timestamp=event.occurred_at,
    )


def dispatch(domain_event):
    """Message bus handler: translate and publish"""
    event = to_realtime(domain_event)
    if event is None:
        return None

    from .services import get_notifier

    report = get_notifier().publish(event)
    logger.debug(
        "realtime.dispatched",
        domain_event=type(domain_event).__name__,
        delivered=report.delivered,
    )
    return report


REALTIME_EVENTS = (
    BookingConfirmed,
    SlotUnavailable,
    AppointmentCancelled,
    AppointmentReminder,
    AppointmentCompleted,
    CapacityAllocated,
    CapacityReleased,
    ResourceCapacityChanged,
)


def register(bus: MessageBus):
    for event_type in REALTIME_EVENTS:
        bus.register_event_handler(event_type, dispatch)
