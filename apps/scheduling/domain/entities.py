"""
Scheduling Domain Entities

Core business entities for the scheduling domain:
- Appointment: Aggregate owning the lifecycle of one booking
- AppointmentStatus: FSM states for the appointment lifecycle
- ServicePolicy: What a service demands of its appointments
- ResourceProfile: Catalogue facts about a resource
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from uuid import UUID, uuid4

from shared.domain.base import Aggregate
from shared.domain.exceptions import InvalidTransition, PermissionDenied, StateError
from shared.domain.value_objects import Actor, TimeWindow


class AppointmentStatus(Enum):
    """
    Appointment Status Finite State Machine

    State transitions:
    - PENDING -> CONFIRMED (OTP verified or not required)
    - PENDING -> CANCELLED (confirmation window elapsed, or cancelled)
    - CONFIRMED -> CANCELLED (owner or organiser/admin cancelled)
    - CONFIRMED -> COMPLETED (appointment time has passed)
    """
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'
    COMPLETED = 'completed'

    @property
    def is_terminal(self) -> bool:
        return self in (AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED)


TRANSITIONS = {
    ('confirm', AppointmentStatus.PENDING): AppointmentStatus.CONFIRMED,
    ('expire', AppointmentStatus.PENDING): AppointmentStatus.CANCELLED,
    ('cancel', AppointmentStatus.PENDING): AppointmentStatus.CANCELLED,
    ('cancel', AppointmentStatus.CONFIRMED): AppointmentStatus.CANCELLED,
    ('complete', AppointmentStatus.CONFIRMED): AppointmentStatus.COMPLETED,
}


@dataclass(frozen=True)
class ServicePolicy:
    """Booking rules of a service, read from the catalogue"""
    service_id: int
    name: str
    duration: timedelta
    requires_otp: bool = False
    confirmation_window: timedelta | None = None
    is_published: bool = True


@dataclass(frozen=True)
class ResourceProfile:
    """Read-only facts about a resource needed before admission"""
    resource_id: int
    label: str
    capacity: int
    opens_at: time
    closes_at: time
    is_published: bool = True


@dataclass(kw_only=True, eq=False)
class Appointment(Aggregate):
    """
    Appointment Aggregate Root

    Created from an admitted reservation, mutated only through the
    transition methods below, never deleted.

    Key invariants:
    - Status only changes along TRANSITIONS
    - A PENDING appointment has a confirmation deadline
    - A rejected transition leaves the aggregate untouched
    """

    resource_id: int
    service_id: int | None
    customer_id: str
    window: TimeWindow
    capacity_units: int = 1
    customer_email: str = ''
    service_name: str = ''

    status: AppointmentStatus = AppointmentStatus.PENDING
    requires_otp: bool = False
    confirm_deadline: datetime | None = None
    version: int = 0

    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None
    reminded_at: datetime | None = None
    cancellation_reason: str = ''
    cancelled_by: str = ''

    @classmethod
    def from_reservation(
        cls,
        reservation,
        *,
        customer_id: str,
        now: datetime,
        confirmation_window: timedelta,
        policy: ServicePolicy | None = None,
        customer_email: str = '',
        appointment_id: UUID | None = None,
    ) -> 'Appointment':
        """
        Create the PENDING appointment for an admitted reservation

        Events: AppointmentCreated
        """
        appointment = cls(
            id=appointment_id or uuid4(),
            created_at=now,
            updated_at=now,
            resource_id=reservation.resource_id,
            service_id=policy.service_id if policy else None,
            service_name=policy.name if policy else '',
            customer_id=str(customer_id),
            customer_email=customer_email,
            window=reservation.window,
            capacity_units=reservation.units,
            requires_otp=policy.requires_otp if policy else False,
            confirm_deadline=now + confirmation_window,
        )

        from apps.scheduling.domain.events import AppointmentCreated

        appointment.add_event(AppointmentCreated(
            aggregate_id=appointment.id,
            appointment_id=appointment.id,
            resource_id=appointment.resource_id,
            service_id=appointment.service_id,
            customer_id=appointment.customer_id,
            window=appointment.window,
            confirm_deadline=appointment.confirm_deadline,
        ))

        return appointment

    # ----- guards -----

    def ensure_transition(self, action: str) -> AppointmentStatus:
        """Return the target status or raise InvalidTransition"""
        target = TRANSITIONS.get((action, self.status))
        if target is None:
            raise InvalidTransition(
                f"Cannot {action} appointment {self.id} in status {self.status.value}"
            )
        return target

    def confirmation_window_elapsed(self, now: datetime) -> bool:
        if self.status != AppointmentStatus.PENDING:
            return False
        if not self.confirm_deadline:
            return False
        return now >= self.confirm_deadline

    def ensure_can_confirm(self, now: datetime):
        self.ensure_transition('confirm')
        if self.confirmation_window_elapsed(now):
            raise InvalidTransition(
                f"Confirmation window of appointment {self.id} "
                f"elapsed at {self.confirm_deadline.isoformat()}"
            )

    # ----- transitions -----

    def confirm(self, now: datetime, *, otp_verified: bool = False):
        """
        Confirm (PENDING -> CONFIRMED)

        Guard: the OTP was verified, or the service does not require one.
        Events: BookingConfirmed
        """
        self.ensure_can_confirm(now)

        if self.requires_otp and not otp_verified:
            raise StateError(
                f"Appointment {self.id} needs a verified code to be confirmed",
                code='OTP_REQUIRED',
            )

        from apps.scheduling.domain.events import BookingConfirmed

        self.status = AppointmentStatus.CONFIRMED
        self.confirmed_at = now
        self.confirm_deadline = None
        self.updated_at = now

        self.add_event(BookingConfirmed(
            aggregate_id=self.id,
            appointment_id=self.id,
            resource_id=self.resource_id,
            service_id=self.service_id,
            customer_id=self.customer_id,
            window=self.window,
        ))

    def expire(self, now: datetime) -> bool:
        """
        Expire (PENDING -> CANCELLED) once the confirmation window elapsed

        Idempotent: returns False and changes nothing when the trigger is
        stale (already confirmed/cancelled) or early.
        Events: AppointmentCancelled(expired=True)
        """
        if not self.confirmation_window_elapsed(now):
            return False

        self._to_cancelled(now, reason='Confirmation window elapsed', actor='system', expired=True)
        return True

    def cancel(self, actor: Actor, now: datetime, reason: str = ''):
        """
        Cancel (PENDING/CONFIRMED -> CANCELLED)

        Guard: the actor owns the appointment or is an organiser/admin.
        Events: AppointmentCancelled
        """
        self.ensure_transition('cancel')

        if not actor.can_act_for(self.customer_id):
            raise PermissionDenied(
                f"User {actor.identity} may not cancel appointment {self.id}"
            )

        self._to_cancelled(now, reason=reason, actor=actor.identity, expired=False)

    def complete(self, now: datetime):
        """
        Complete (CONFIRMED -> COMPLETED)

        Guard: the appointment window has ended.
        Events: AppointmentCompleted
        """
        self.ensure_transition('complete')

        if now < self.window.end:
            raise InvalidTransition(
                f"Appointment {self.id} ends at {self.window.end.isoformat()}, "
                f"cannot complete it yet"
            )

        from apps.scheduling.domain.events import AppointmentCompleted

        self.status = AppointmentStatus.COMPLETED
        self.completed_at = now
        self.updated_at = now

        self.add_event(AppointmentCompleted(
            aggregate_id=self.id,
            appointment_id=self.id,
            resource_id=self.resource_id,
            service_id=self.service_id,
            customer_id=self.customer_id,
            window=self.window,
        ))

    def remind(self, now: datetime, lead: timedelta) -> bool:
        """
        Emit the one reminder of a confirmed appointment starting soon

        Not a status transition. Returns False when nothing was due.
        Events: AppointmentReminder
        """
        if self.status != AppointmentStatus.CONFIRMED or self.reminded_at:
            return False
        if not (now <= self.window.start <= now + lead):
            return False

        from apps.scheduling.domain.events import AppointmentReminder

        self.reminded_at = now
        self.updated_at = now

        self.add_event(AppointmentReminder(
            aggregate_id=self.id,
            appointment_id=self.id,
            resource_id=self.resource_id,
            service_id=self.service_id,
            customer_id=self.customer_id,
            customer_email=self.customer_email,
            window=self.window,
        ))
        return True

    def _to_cancelled(self, now: datetime, *, reason: str, actor: str, expired: bool):
        from apps.scheduling.domain.events import AppointmentCancelled

        previous = self.status
        self.status = AppointmentStatus.CANCELLED
        self.cancelled_at = now
        self.cancellation_reason = reason
        self.cancelled_by = actor
        self.confirm_deadline = None
        self.updated_at = now

        self.add_event(AppointmentCancelled(
            aggregate_id=self.id,
            appointment_id=self.id,
            resource_id=self.resource_id,
            service_id=self.service_id,
            customer_id=self.customer_id,
            window=self.window,
            previous_status=previous.value,
            reason=reason,
            expired=expired,
        ))

    # ----- queries -----

    def blocks_capacity(self) -> bool:
        """Everything except CANCELLED counts against the resource capacity"""
        return self.status != AppointmentStatus.CANCELLED

    @property
    def is_active(self) -> bool:
        return self.status in (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)

    def __str__(self):
        return f"Appointment {self.id} ({self.status.value})"

    def __repr__(self):
        return (
            f"Appointment(id={self.id}, resource_id={self.resource_id}, "
            f"status={self.status.value}, window={self.window!r})"
        )
