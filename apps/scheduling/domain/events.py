"""
Scheduling Domain Events

Events that represent things that have happened to appointments and
to resource capacity. They are published after successful transaction
commits (SlotUnavailable, which has no transaction, is published right
after the rejected admission).
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from shared.domain.base import DomainEvent
from shared.domain.value_objects import TimeWindow


# ===== Appointment Events =====

@dataclass(kw_only=True)
class AppointmentCreated(DomainEvent):
    """
    Event: A slot was admitted and a PENDING appointment created

    Triggers:
    - Schedule the confirmation deadline (expiry task)
    """
    appointment_id: UUID
    resource_id: int
    service_id: int | None
    customer_id: str
    window: TimeWindow
    confirm_deadline: datetime | None


@dataclass(kw_only=True)
class BookingConfirmed(DomainEvent):
    """
    Event: PENDING -> CONFIRMED

    Triggers:
    - booking-confirmed to the customer's connections
    """
    appointment_id: UUID
    resource_id: int
    service_id: int | None
    customer_id: str
    window: TimeWindow


@dataclass(kw_only=True)
class AppointmentCancelled(DomainEvent):
    """
    Event: PENDING/CONFIRMED -> CANCELLED (cancel or confirmation timeout)

    Triggers:
    - appointment-cancelled to the customer's connections
    """
    appointment_id: UUID
    resource_id: int
    service_id: int | None
    customer_id: str
    window: TimeWindow
    previous_status: str
    reason: str
    expired: bool = False


@dataclass(kw_only=True)
class AppointmentCompleted(DomainEvent):
    """Event: CONFIRMED -> COMPLETED"""
    appointment_id: UUID
    resource_id: int
    service_id: int | None
    customer_id: str
    window: TimeWindow


@dataclass(kw_only=True)
class AppointmentReminder(DomainEvent):
    """
    Event: A confirmed appointment is about to start

    Triggers:
    - appointment-reminder to the customer's connections
    - reminder e-mail
    """
    appointment_id: UUID
    resource_id: int
    service_id: int | None
    customer_id: str
    customer_email: str
    window: TimeWindow


# ===== Ledger Events =====

@dataclass(kw_only=True)
class SlotUnavailable(DomainEvent):
    """
    Event: An admission was rejected for lack of capacity

    Only the requester is told. ``resource_id`` is None when the
    request let the service pick the resource.
    """
    resource_id: int | None
    service_id: int | None
    customer_id: str
    window: TimeWindow
    requested_units: int


@dataclass(kw_only=True)
class CapacityAllocated(DomainEvent):
    """Event: Capacity was consumed in a window of a resource"""
    resource_id: int
    appointment_id: UUID
    window: TimeWindow
    units: int
    load: int
    capacity: int


@dataclass(kw_only=True)
class CapacityReleased(DomainEvent):
    """Event: Capacity was given back (appointment cancelled or expired)"""
    resource_id: int
    appointment_id: UUID
    window: TimeWindow
    units: int
    load: int
    capacity: int


@dataclass(kw_only=True)
class ResourceCapacityChanged(DomainEvent):
    """Event: An organiser changed the capacity of a resource"""
    resource_id: int
    old_capacity: int
    new_capacity: int
