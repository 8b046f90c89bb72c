"""Concurrent admissions against in-memory repositories."""

from __future__ import annotations

import copy
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, time, timedelta, timezone

import pytest

from apps.scheduling.application.command_handlers import (
    CancelAppointmentCommand,
    CancelAppointmentHandler,
    ReserveSlotCommand,
    ReserveSlotHandler,
)
from apps.scheduling.domain.entities import Appointment, ResourceProfile, ServicePolicy
from apps.scheduling.domain.events import AppointmentCreated, CapacityAllocated, SlotUnavailable
from apps.scheduling.domain.ledger import Rejected, RejectionReason, SlotLedger
from apps.scheduling.repositories import (
    AbstractAppointmentRepository,
    AbstractCatalog,
    AbstractSlotLedgerRepository,
)
from shared.application.locks import KeyedLocks
from shared.application.message_bus import MessageBus
from shared.application.uow import AbstractUnitOfWork
from shared.domain.clock import FrozenClock
from shared.domain.exceptions import ConcurrencyConflict, NotFound, ValidationError
from shared.domain.value_objects import Actor, TimeWindow

NOW = datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc)
START = NOW + timedelta(hours=3)


class InMemoryUnitOfWork(AbstractUnitOfWork):
    def commit(self):
        self._publish_events(self._take_events())

    def rollback(self):
        self._events.clear()


class InMemoryAppointmentRepository(AbstractAppointmentRepository):
    def __init__(self):
        self.rows: dict = {}
        self._lock = threading.Lock()

    def get(self, appointment_id):
        with self._lock:
            if appointment_id not in self.rows:
                raise NotFound(f"Appointment {appointment_id} not found")
            return copy.deepcopy(self.rows[appointment_id])

    def add(self, appointment: Appointment):
        with self._lock:
            self.rows[appointment.id] = copy.deepcopy(appointment)

    def save(self, appointment: Appointment):
        with self._lock:
            if self.rows[appointment.id].version != appointment.version:
                raise ConcurrencyConflict("stale appointment")
            appointment.version += 1
            self.rows[appointment.id] = copy.deepcopy(appointment)

    def blocking(self, resource_id: int):
        with self._lock:
            return [
                a for a in self.rows.values()
                if a.resource_id == resource_id and a.blocks_capacity()
            ]

    def list_due_for_expiry(self, now):
        return []

    def list_due_for_completion(self, now):
        return []

    def list_due_for_reminder(self, now, lead):
        return []


class InMemoryLedgerRepository(AbstractSlotLedgerRepository):
    def __init__(self, appointments: InMemoryAppointmentRepository, capacities: dict):
        self.appointments = appointments
        self.capacities = dict(capacities)
        self.versions = {resource_id: 0 for resource_id in capacities}
        self.conflicts_to_raise = 0
        self._lock = threading.Lock()

    def _build(self, resource_id, rows):
        from apps.scheduling.domain.ledger import Allocation

        with self._lock:
            capacity = self.capacities[resource_id]
            version = self.versions[resource_id]
        return SlotLedger(
            resource_id=resource_id,
            capacity=capacity,
            allocations=[Allocation(a.id, a.window, a.capacity_units) for a in rows],
            version=version,
        )

    def get_for_window(self, resource_id, window, lock=False):
        rows = [a for a in self.appointments.blocking(resource_id) if a.window.overlaps_with(window)]
        return self._build(resource_id, rows)

    def get_for_resource(self, resource_id, since, lock=False):
        rows = [a for a in self.appointments.blocking(resource_id) if a.window.end > since]
        return self._build(resource_id, rows)

    def save(self, ledger: SlotLedger):
        with self._lock:
            if self.conflicts_to_raise:
                self.conflicts_to_raise -= 1
                raise ConcurrencyConflict("ledger moved")
            if self.versions[ledger.resource_id] != ledger.version:
                raise ConcurrencyConflict("ledger moved")
            self.versions[ledger.resource_id] += 1
            self.capacities[ledger.resource_id] = ledger.capacity
        ledger.version += 1


class InMemoryCatalog(AbstractCatalog):
    def __init__(self, capacities: dict, service_resources: tuple = ()):
        self.capacities = capacities
        self.service_resources = service_resources

    def get_resource(self, resource_id):
        if resource_id not in self.capacities:
            raise NotFound(f"Resource {resource_id} not found")
        return ResourceProfile(
            resource_id=resource_id,
            label=f"Room {resource_id}",
            capacity=self.capacities[resource_id],
            opens_at=time(9),
            closes_at=time(18),
        )

    def get_service(self, service_id):
        return ServicePolicy(service_id=service_id, name="Session", duration=timedelta(minutes=30))

    def resources_for_service(self, service_id):
        return [self.get_resource(resource_id) for resource_id in self.service_resources]


class Harness:
    def __init__(self, capacities: dict, service_resources: tuple = ()):
        self.bus = MessageBus()
        self.events: list = []
        for event_type in (AppointmentCreated, CapacityAllocated, SlotUnavailable):
            self.bus.register_event_handler(event_type, self.events.append)

        self.clock = FrozenClock(NOW)
        self.appointments = InMemoryAppointmentRepository()
        self.ledgers = InMemoryLedgerRepository(self.appointments, capacities)
        self.locks = KeyedLocks(timeout=5.0)
        common = dict(
            clock=self.clock,
            uow_factory=InMemoryUnitOfWork,
            locks=self.locks,
            bus=self.bus,
        )
        self.reserve = ReserveSlotHandler(
            self.appointments,
            self.ledgers,
            InMemoryCatalog(capacities, service_resources),
            **common,
        )
        self.cancel = CancelAppointmentHandler(self.appointments, self.ledgers, **common)

    def command(self, customer: int, resource_id: int | None = 1, units: int = 1, start=START):
        return ReserveSlotCommand(
            resource_id=resource_id,
            service_id=1,
            customer_id=str(customer),
            start_time=start,
            units=units,
        )

    def race(self, commands):
        barrier = threading.Barrier(len(commands))

        def run(command):
            barrier.wait()
            return self.reserve.handle(command)

        with ThreadPoolExecutor(max_workers=len(commands)) as pool:
            return list(pool.map(run, commands))

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


def test_single_seat_admits_exactly_one_of_many() -> None:
    harness = Harness({1: 1})

    results = harness.race([harness.command(customer) for customer in range(10)])

    admitted = [r for r in results if isinstance(r, Appointment)]
    rejected = [r for r in results if isinstance(r, Rejected)]
    assert len(admitted) == 1
    assert len(rejected) == 9
    assert {r.reason for r in rejected} == {RejectionReason.CAPACITY_EXCEEDED}
    assert not any(r.retryable for r in rejected)
    assert len(harness.appointments.rows) == 1
    assert len(harness.of_type(AppointmentCreated)) == 1
    assert len(harness.of_type(CapacityAllocated)) == 1

    unavailable = harness.of_type(SlotUnavailable)
    assert len(unavailable) == 9
    assert {e.customer_id for e in unavailable} == {str(c) for c in range(10)} - {admitted[0].customer_id}


def test_units_never_exceed_capacity_under_contention() -> None:
    harness = Harness({1: 5})

    commands = [harness.command(customer, units=1 + customer % 3) for customer in range(12)]
    harness.race(commands)

    window = TimeWindow(START, timedelta(minutes=30))
    ledger = harness.ledgers.get_for_window(1, window)
    assert ledger.peak_load(window) <= 5
    assert ledger.peak_load(window) == sum(a.capacity_units for a in harness.appointments.rows.values())


def test_resources_do_not_share_capacity() -> None:
    harness = Harness({1: 1, 2: 1})

    results = harness.race([
        harness.command(1, resource_id=1),
        harness.command(2, resource_id=2),
    ])

    assert all(isinstance(r, Appointment) for r in results)


def test_cancellation_frees_the_seat_for_the_next_request() -> None:
    harness = Harness({1: 1})
    first = harness.reserve.handle(harness.command(1))
    assert isinstance(harness.reserve.handle(harness.command(2)), Rejected)

    harness.cancel.handle(CancelAppointmentCommand(first.id, Actor("1")))

    assert isinstance(harness.reserve.handle(harness.command(2)), Appointment)


def test_version_conflict_is_retried() -> None:
    harness = Harness({1: 1})
    harness.ledgers.conflicts_to_raise = 2

    result = harness.reserve.handle(harness.command(1))

    assert isinstance(result, Appointment)
    assert harness.ledgers.versions[1] == 1


def test_persistent_conflict_ends_as_capacity_rejection() -> None:
    harness = Harness({1: 1})
    harness.ledgers.conflicts_to_raise = 10

    result = harness.reserve.handle(harness.command(1))

    assert isinstance(result, Rejected)
    assert result.reason == RejectionReason.CAPACITY_EXCEEDED
    assert harness.appointments.rows == {}
    assert len(harness.of_type(SlotUnavailable)) == 1
    assert harness.of_type(AppointmentCreated) == []


def test_invalid_windows_are_rejected_before_admission() -> None:
    harness = Harness({1: 1})

    past = harness.reserve.handle(harness.command(1, start=NOW - timedelta(minutes=1)))
    naive = harness.reserve.handle(harness.command(1, start=datetime(2030, 1, 7, 12, 0)))

    assert past.reason == RejectionReason.INVALID_WINDOW
    assert naive.reason == RejectionReason.INVALID_WINDOW
    assert harness.appointments.rows == {}


def test_held_lock_gives_a_retryable_rejection() -> None:
    harness = Harness({1: 1})
    harness.locks.timeout = 0.05

    with harness.locks.hold(1):
        result = harness.reserve.handle(harness.command(1))

    assert isinstance(result, Rejected)
    assert result.reason == RejectionReason.CAPACITY_EXCEEDED
    assert result.retryable
    assert "busy" in result.detail
    assert harness.ledgers.versions[1] == 0

    assert isinstance(harness.reserve.handle(harness.command(1)), Appointment)


def test_events_are_published_after_the_resource_lock_is_released() -> None:
    harness = Harness({1: 1})
    lock_was_free: list = []

    def try_lock(event):
        with harness.locks.hold(event.resource_id, timeout=0):
            lock_was_free.append(event.appointment_id)

    harness.bus.register_event_handler(AppointmentCreated, try_lock)

    appointment = harness.reserve.handle(harness.command(1))

    assert lock_was_free == [appointment.id]


# ----- resource assignment -----

def test_assignment_prefers_the_least_loaded_resource() -> None:
    harness = Harness({1: 2, 2: 2, 3: 2}, service_resources=(1, 2, 3))
    harness.reserve.handle(harness.command(10, resource_id=1))
    harness.reserve.handle(harness.command(11, resource_id=2, start=START - timedelta(hours=2)))

    # Window load: 1, 0, 0; units booked that day: 1, 1, 0
    first = harness.reserve.handle(harness.command(1, resource_id=None))
    second = harness.reserve.handle(harness.command(2, resource_id=None))
    third = harness.reserve.handle(harness.command(3, resource_id=None))

    assert first.resource_id == 3
    assert second.resource_id == 2
    # Resources 1 and 3 tie on both loads; the lower id wins
    assert third.resource_id == 1


def test_assignment_moves_on_when_the_request_does_not_fit() -> None:
    harness = Harness({1: 3, 2: 1}, service_resources=(1, 2))
    harness.reserve.handle(harness.command(10, resource_id=1))

    result = harness.reserve.handle(harness.command(1, resource_id=None, units=2))

    assert isinstance(result, Appointment)
    assert result.resource_id == 1
    assert result.capacity_units == 2


def test_assignment_rejects_when_every_resource_is_full() -> None:
    harness = Harness({1: 1, 2: 1}, service_resources=(1, 2))
    harness.reserve.handle(harness.command(10, resource_id=1))
    harness.reserve.handle(harness.command(11, resource_id=2))

    result = harness.reserve.handle(harness.command(1, resource_id=None))

    assert isinstance(result, Rejected)
    assert result.reason == RejectionReason.CAPACITY_EXCEEDED
    assert not result.retryable
    assert "None of the 2 resources" in result.detail
    assert len(harness.appointments.rows) == 2
    (unavailable,) = harness.of_type(SlotUnavailable)
    assert unavailable.resource_id is None
    assert unavailable.customer_id == "1"


def test_service_without_resources_cannot_assign() -> None:
    harness = Harness({1: 1})

    with pytest.raises(ValidationError):
        harness.reserve.handle(harness.command(1, resource_id=None))
