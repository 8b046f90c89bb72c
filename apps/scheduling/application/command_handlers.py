"""
Scheduling Command Handlers

These are the use cases for the scheduling domain.
They orchestrate domain operations within transactions.

Commands:
- ReserveSlotCommand: Admit a booking request and create a PENDING appointment
- ConfirmAppointmentCommand: Confirm a PENDING appointment (OTP-gated)
- CancelAppointmentCommand: Cancel and release capacity
- ExpireAppointmentCommand: Cancel a PENDING appointment whose window elapsed
- CompleteAppointmentCommand: Mark a CONFIRMED appointment as done
- RemindAppointmentCommand: Emit the reminder of an upcoming appointment
- ChangeResourceCapacityCommand: Resize a resource without orphaning bookings
"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import List
from uuid import UUID
import logging

from shared.application.locks import KeyedLocks, resource_locks
from shared.application.uow import DjangoUnitOfWork
from shared.domain.clock import Clock, system_clock
from shared.domain.exceptions import (
    ConcurrencyConflict,
    PermissionDenied,
    ResourceBusy,
    ValidationError,
)
from shared.domain.value_objects import Actor, TimeWindow
from apps.scheduling.domain.entities import Appointment, ResourceProfile
from apps.scheduling.domain.events import SlotUnavailable
from apps.scheduling.domain.ledger import Rejected, RejectionReason, SlotLedger

logger = logging.getLogger(__name__)


# ===== Commands =====

@dataclass
class ReserveSlotCommand:
    """
    Command to reserve capacity on a resource

    ``resource_id`` may be None: the least loaded resource linked to
    the service that still fits the window is assigned.
    ``duration`` defaults to the service duration.
    """
    resource_id: int | None
    service_id: int
    customer_id: str
    start_time: datetime
    duration: timedelta | None = None
    units: int = 1
    customer_email: str = ''


@dataclass
class ConfirmAppointmentCommand:
    """Command to confirm an appointment, with the e-mailed code if required"""
    appointment_id: UUID
    actor: Actor
    code: str = ''


@dataclass
class CancelAppointmentCommand:
    """Command to cancel an appointment"""
    appointment_id: UUID
    actor: Actor
    reason: str = ''


@dataclass
class ExpireAppointmentCommand:
    """Command fired when the confirmation deadline of an appointment passes"""
    appointment_id: UUID


@dataclass
class CompleteAppointmentCommand:
    """Command to complete an appointment after it ended"""
    appointment_id: UUID


@dataclass
class RemindAppointmentCommand:
    """Command to remind the customer of an upcoming appointment"""
    appointment_id: UUID


@dataclass
class ChangeResourceCapacityCommand:
    """Command to change how many appointments a resource can hold at once"""
    resource_id: int
    capacity: int
    actor: Actor


# ===== Command Handlers =====

class BaseHandler:
    """
    Shared plumbing: clock, unit of work factory, resource locks
    and the bounded retry on optimistic version conflicts.
    """

    def __init__(
        self,
        *,
        clock: Clock = system_clock,
        uow_factory=DjangoUnitOfWork,
        locks: KeyedLocks = resource_locks,
        bus=None,
        max_attempts: int = 3,
    ):
        self.clock = clock
        self.uow_factory = uow_factory
        self.locks = locks
        self.bus = bus
        self.max_attempts = max(max_attempts, 1)

    def _uow(self):
        return self.uow_factory(bus=self.bus)

    @contextmanager
    def _serialized(self, resource_id: int):
        """
        Unit of work running entirely under the lock of ``resource_id``

        The lock is taken before the transaction starts and released
        after it commits. Events are published once the lock is free.
        """
        uow = self._uow()
        uow.hold_publication()
        with self.locks.hold(resource_id):
            with uow:
                yield uow
        uow.release_publication()

    def _with_retries(self, operation, description: str):
        """Run ``operation`` again on ConcurrencyConflict, at most max_attempts times"""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except ResourceBusy:
                # The lock wait was already bounded
                raise
            except ConcurrencyConflict as e:
                logger.warning(
                    f"{description}: concurrency conflict on attempt "
                    f"{attempt}/{self.max_attempts}: {e}"
                )
                if attempt == self.max_attempts:
                    raise

    def __call__(self, command):
        return self.handle(command)


class ReserveSlotHandler(BaseHandler):
    """
    Handler for ReserveSlot command

    This implements the critical business logic for admitting bookings
    with overbooking prevention.

    Strategy (Defense in Depth):
    1. Validate the request before touching shared state
    2. Take the in-process lock of the resource
    3. Start database transaction (atomic)
    4. Load the SlotLedger with SELECT FOR UPDATE on the resource row
    5. Check the peak load of the window in the domain (admit)
    6. Create the PENDING Appointment and bind the reservation to it
    7. Save both; the ledger version check catches concurrent writers
    8. Commit transaction, then release the lock
    9. Publish events (after the lock is released)
    10. Retry a bounded number of times on version conflicts

    Without a resource in the command, the resources of the service are
    tried from the least loaded one until one admits the request.
    """

    def __init__(
        self,
        appointment_repo,
        ledger_repo,
        catalog,
        *,
        confirmation_window: timedelta = timedelta(minutes=15),
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.appointment_repo = appointment_repo
        self.ledger_repo = ledger_repo
        self.catalog = catalog
        self.confirmation_window = confirmation_window

    def handle(self, command: ReserveSlotCommand) -> Appointment | Rejected:
        """
        Handle a reservation request

        Returns: the PENDING Appointment, or Rejected
            (INVALID_WINDOW / CAPACITY_EXCEEDED)

        Raises:
            NotFound: unknown resource or service
            ValidationError: unpublished resource/service, a service
                without bookable resources, units below 1
        """
        logger.info(
            f"Reserving {command.units} unit(s) on resource "
            f"{command.resource_id if command.resource_id is not None else '(any)'} "
            f"for customer {command.customer_id} at {command.start_time}"
        )

        if command.units < 1:
            raise ValidationError(f"Requested units must be at least 1, got {command.units}")

        candidates, policy = self._candidates(command)

        window = self._validate_window(command, policy.duration)
        if isinstance(window, Rejected):
            logger.info(f"Reservation rejected: {window.detail}")
            return window

        confirmation_window = policy.confirmation_window or self.confirmation_window

        if len(candidates) > 1:
            candidates = self._by_load(candidates, window)

        result = None
        for resource in candidates:
            result = self._try(command, resource.resource_id, window, policy, confirmation_window)
            if isinstance(result, Appointment):
                break
            logger.debug(f"Resource {resource.resource_id} cannot take the request: {result.detail}")

        if len(candidates) > 1 and isinstance(result, Rejected) and not result.retryable:
            result = Rejected(
                RejectionReason.CAPACITY_EXCEEDED,
                f"None of the {len(candidates)} resources of service "
                f"{command.service_id} has {command.units} unit(s) free for {window}",
            )

        if isinstance(result, Rejected):
            logger.info(f"Reservation rejected ({result.code}): {result.detail}")
            self._publish_unavailable(command, window)
            return result

        logger.info(
            f"Appointment {result.id} reserved on resource {result.resource_id} "
            f"for {result.window}, confirm by {result.confirm_deadline}"
        )
        return result

    def _candidates(self, command: ReserveSlotCommand):
        if command.resource_id is not None:
            resource = self.catalog.get_resource(command.resource_id)
            policy = self.catalog.get_service(command.service_id)
            if not resource.is_published:
                raise ValidationError(f"Resource {command.resource_id} is not open for booking")
        else:
            policy = self.catalog.get_service(command.service_id)
            resource = None

        if not policy.is_published:
            raise ValidationError(f"Service {command.service_id} is not open for booking")

        if resource is not None:
            return [resource], policy

        resources = self.catalog.resources_for_service(command.service_id)
        if not resources:
            raise ValidationError(f"Service {command.service_id} has no resource open for booking")
        return resources, policy

    def _by_load(self, resources: List[ResourceProfile], window: TimeWindow) -> List[ResourceProfile]:
        """
        Least loaded first: peak load of the window, then units booked
        that day, then resource id. Read without locks; every candidate
        is checked again under its lock.
        """
        day_start = datetime.combine(window.start.date(), time.min, tzinfo=window.start.tzinfo)
        day = TimeWindow(day_start, timedelta(days=1))

        ranked = []
        for resource in resources:
            ledger = self.ledger_repo.get_for_window(resource.resource_id, day)
            ranked.append((
                ledger.peak_load(window),
                ledger.booked_units(),
                resource.resource_id,
                resource,
            ))
        ranked.sort(key=lambda entry: entry[:3])
        return [entry[3] for entry in ranked]

    def _validate_window(self, command: ReserveSlotCommand, default_duration: timedelta):
        duration = command.duration if command.duration is not None else default_duration
        start = command.start_time

        if start.tzinfo is None:
            return Rejected(RejectionReason.INVALID_WINDOW, "Start time must include a timezone")
        if duration <= timedelta(0):
            return Rejected(RejectionReason.INVALID_WINDOW, f"Duration must be positive, got {duration}")
        if start < self.clock.now():
            return Rejected(RejectionReason.INVALID_WINDOW, f"Start time {start.isoformat()} is in the past")

        return TimeWindow(start, duration)

    def _try(self, command, resource_id, window, policy, confirmation_window) -> Appointment | Rejected:
        try:
            return self._with_retries(
                lambda: self._admit(command, resource_id, window, policy, confirmation_window),
                f"Reservation on resource {resource_id}",
            )
        except ResourceBusy:
            return Rejected(
                RejectionReason.CAPACITY_EXCEEDED,
                f"Resource {resource_id} is busy with other bookings, try again",
                retryable=True,
            )
        except ConcurrencyConflict:
            return Rejected(
                RejectionReason.CAPACITY_EXCEEDED,
                f"Resource {resource_id} stayed contended for "
                f"{self.max_attempts} attempt(s)",
                retryable=True,
            )

    def _admit(self, command, resource_id, window, policy, confirmation_window) -> Appointment | Rejected:
        with self._serialized(resource_id) as uow:
            ledger: SlotLedger = self.ledger_repo.get_for_window(resource_id, window, lock=True)

            decision = ledger.admit(window, command.units)
            if isinstance(decision, Rejected):
                return decision

            appointment = Appointment.from_reservation(
                decision,
                customer_id=command.customer_id,
                customer_email=command.customer_email,
                now=self.clock.now(),
                confirmation_window=confirmation_window,
                policy=policy,
            )
            ledger.bind(decision, appointment.id)

            uow.collect_events(appointment)
            uow.collect_events(ledger)

            self.ledger_repo.save(ledger)
            self.appointment_repo.add(appointment)

        return appointment

    def _publish_unavailable(self, command: ReserveSlotCommand, window: TimeWindow):
        from shared.application.message_bus import message_bus

        bus = self.bus or message_bus
        bus.publish_events([SlotUnavailable(
            resource_id=command.resource_id,
            service_id=command.service_id,
            customer_id=str(command.customer_id),
            window=window,
            requested_units=command.units,
        )])


class ConfirmAppointmentHandler(BaseHandler):
    """
    Handler for confirming an appointment

    The code is checked in the same transaction as the transition: it
    is consumed only if the appointment is confirmed. A wrong code
    still spends one attempt.
    """

    def __init__(self, appointment_repo, otp_issuer=None, **kwargs):
        super().__init__(**kwargs)
        self.appointment_repo = appointment_repo
        self.otp_issuer = otp_issuer

    def handle(self, command: ConfirmAppointmentCommand) -> Appointment:
        logger.info(f"Confirming appointment {command.appointment_id}")

        appointment = self.appointment_repo.get(command.appointment_id)
        self._ensure_actor(command.actor, appointment)
        appointment.ensure_can_confirm(self.clock.now())
        if appointment.requires_otp and self.otp_issuer is None:
            raise ValidationError("No verification service configured")

        def confirm():
            with self._uow() as uow:
                current = self.appointment_repo.get(command.appointment_id)
                now = self.clock.now()
                current.ensure_can_confirm(now)

                otp_verified = False
                if current.requires_otp:
                    verification = self.otp_issuer.verify(current.customer_email, command.code)
                    if not verification.accepted:
                        # Commit the spent attempt, leave the appointment alone
                        return None, verification
                    otp_verified = True

                current.confirm(now, otp_verified=otp_verified)
                uow.collect_events(current)
                self.appointment_repo.save(current)
            return current, None

        confirmed, failed = self._with_retries(confirm, f"Confirmation of {command.appointment_id}")
        if failed is not None:
            from apps.verification.services import OTPRejected

            logger.info(f"Appointment {command.appointment_id} not confirmed: {failed.reason.value}")
            raise OTPRejected(failed.reason)

        logger.info(f"Appointment {confirmed.id} confirmed")
        return confirmed

    def _ensure_actor(self, actor: Actor, appointment: Appointment):
        if not actor.can_act_for(appointment.customer_id):
            raise PermissionDenied(
                f"User {actor.identity} may not confirm appointment {appointment.id}"
            )


class CancelAppointmentHandler(BaseHandler):
    """
    Handler for cancelling an appointment

    The release happens in the same transaction as the transition, so
    the capacity is bookable again before handle() returns.
    """

    def __init__(self, appointment_repo, ledger_repo, **kwargs):
        super().__init__(**kwargs)
        self.appointment_repo = appointment_repo
        self.ledger_repo = ledger_repo

    def handle(self, command: CancelAppointmentCommand) -> Appointment:
        logger.info(f"Cancelling appointment {command.appointment_id}, reason: {command.reason!r}")

        cancelled = self._with_retries(
            lambda: self._cancel(command),
            f"Cancellation of {command.appointment_id}",
        )
        logger.info(f"Appointment {cancelled.id} cancelled by {command.actor.identity}")
        return cancelled

    def _cancel(self, command: CancelAppointmentCommand) -> Appointment:
        appointment = self.appointment_repo.get(command.appointment_id)
        # Fail fast on invalid transitions before taking the resource lock
        appointment.ensure_transition('cancel')

        with self._serialized(appointment.resource_id) as uow:
            appointment = self.appointment_repo.get(command.appointment_id)
            ledger = self.ledger_repo.get_for_window(
                appointment.resource_id, appointment.window, lock=True
            )
            appointment.cancel(command.actor, self.clock.now(), command.reason)
            release_capacity(ledger, appointment)

            uow.collect_events(appointment)
            uow.collect_events(ledger)

            self.ledger_repo.save(ledger)
            self.appointment_repo.save(appointment)

        return appointment


class ExpireAppointmentHandler(BaseHandler):
    """
    Handler for the confirmation deadline

    Safe to fire any number of times: a trigger that arrives before the
    deadline, or after the appointment left PENDING, changes nothing.
    """

    def __init__(self, appointment_repo, ledger_repo, **kwargs):
        super().__init__(**kwargs)
        self.appointment_repo = appointment_repo
        self.ledger_repo = ledger_repo

    def handle(self, command: ExpireAppointmentCommand) -> bool:
        expired = self._with_retries(
            lambda: self._expire(command),
            f"Expiry of {command.appointment_id}",
        )
        if expired:
            logger.info(f"Appointment {command.appointment_id} expired unconfirmed")
        else:
            logger.debug(f"Stale expiry trigger for {command.appointment_id} ignored")
        return expired

    def _expire(self, command: ExpireAppointmentCommand) -> bool:
        appointment = self.appointment_repo.get(command.appointment_id)
        if not appointment.confirmation_window_elapsed(self.clock.now()):
            return False

        with self._serialized(appointment.resource_id) as uow:
            appointment = self.appointment_repo.get(command.appointment_id)
            ledger = self.ledger_repo.get_for_window(
                appointment.resource_id, appointment.window, lock=True
            )
            if not appointment.expire(self.clock.now()):
                return False
            release_capacity(ledger, appointment)

            uow.collect_events(appointment)
            uow.collect_events(ledger)

            self.ledger_repo.save(ledger)
            self.appointment_repo.save(appointment)

        return True


class CompleteAppointmentHandler(BaseHandler):
    """Handler for completing an appointment"""

    def __init__(self, appointment_repo, **kwargs):
        super().__init__(**kwargs)
        self.appointment_repo = appointment_repo

    def handle(self, command: CompleteAppointmentCommand) -> Appointment:
        logger.info(f"Completing appointment {command.appointment_id}")

        def complete():
            with self._uow() as uow:
                appointment = self.appointment_repo.get(command.appointment_id)
                appointment.complete(self.clock.now())
                uow.collect_events(appointment)
                self.appointment_repo.save(appointment)
            return appointment

        return self._with_retries(complete, f"Completion of {command.appointment_id}")


class RemindAppointmentHandler(BaseHandler):
    """Handler emitting the single reminder of an upcoming appointment"""

    def __init__(self, appointment_repo, *, lead: timedelta = timedelta(hours=1), **kwargs):
        super().__init__(**kwargs)
        self.appointment_repo = appointment_repo
        self.lead = lead

    def handle(self, command: RemindAppointmentCommand) -> bool:
        def remind():
            with self._uow() as uow:
                appointment = self.appointment_repo.get(command.appointment_id)
                if not appointment.remind(self.clock.now(), self.lead):
                    return False
                uow.collect_events(appointment)
                self.appointment_repo.save(appointment)
            return True

        return self._with_retries(remind, f"Reminder of {command.appointment_id}")


class ChangeResourceCapacityHandler(BaseHandler):
    """
    Handler for resizing a resource

    Refuses to go below the peak load of the bookings that have not
    ended yet (CapacityError), so no booking is silently orphaned.
    """

    def __init__(self, ledger_repo, **kwargs):
        super().__init__(**kwargs)
        self.ledger_repo = ledger_repo

    def handle(self, command: ChangeResourceCapacityCommand) -> SlotLedger:
        logger.info(
            f"Changing capacity of resource {command.resource_id} to {command.capacity} "
            f"(requested by {command.actor.identity})"
        )

        if not command.actor.is_staff:
            raise PermissionDenied(
                f"User {command.actor.identity} may not change resource capacity"
            )
        if command.capacity < 1:
            raise ValidationError(f"Capacity must be at least 1, got {command.capacity}")

        def change():
            with self._serialized(command.resource_id) as uow:
                ledger = self.ledger_repo.get_for_resource(
                    command.resource_id, self.clock.now(), lock=True
                )
                ledger.change_capacity(command.capacity)
                uow.collect_events(ledger)
                self.ledger_repo.save(ledger)
            return ledger

        ledger = self._with_retries(change, f"Capacity change of resource {command.resource_id}")
        logger.info(f"Resource {command.resource_id} capacity is now {ledger.capacity}")
        return ledger


def release_capacity(ledger: SlotLedger, appointment: Appointment):
    """Release the allocation of a cancelled appointment, once"""
    released = ledger.release(appointment.id)
    if released is None:
        logger.warning(
            f"Appointment {appointment.id} held no allocation on resource "
            f"{appointment.resource_id}; nothing to release"
        )
    return released
