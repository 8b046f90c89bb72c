"""
Slot Ledger Aggregate

This is the CRITICAL aggregate for preventing overbooking.
All capacity consumption on a resource MUST go through this aggregate.

The ledger is loaded per resource (for the window being decided, or for
all future allocations) and is the consistency boundary that ensures the
units of non-cancelled appointments covering any instant never exceed
the resource capacity.

Strategy (Defense in Depth):
1. Domain validation: admit() checks the peak load of the window
2. Per-resource in-process lock around the admission
3. SELECT FOR UPDATE on the resource row where the backend supports it
4. Optimistic ledger version checked when the ledger is saved
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List
from uuid import UUID, uuid4

from shared.domain.base import Aggregate
from shared.domain.exceptions import CapacityError
from shared.domain.value_objects import TimeWindow


class RejectionReason(Enum):
    CAPACITY_EXCEEDED = 'CAPACITY_EXCEEDED'
    INVALID_WINDOW = 'INVALID_WINDOW'


@dataclass
class Allocation:
    """
    Allocation - capacity consumed by one appointment

    Several allocations can overlap as long as their units fit
    within the resource capacity at every instant.
    """
    appointment_id: UUID
    window: TimeWindow
    units: int = 1

    def __post_init__(self):
        if self.units < 1:
            raise ValueError("Allocation units must be at least 1")


@dataclass(frozen=True)
class Reservation:
    """
    Provisional admission handle

    Becomes an allocation once bound to the appointment created in the
    same unit of work.
    """
    resource_id: int
    window: TimeWindow
    units: int
    load_after: int
    reservation_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class Rejected:
    """
    Negative admission result. Not an exception: it is an expected answer.

    ``retryable`` marks rejections caused by contention on the resource
    rather than by a full window.
    """
    reason: RejectionReason
    detail: str = ''
    retryable: bool = False

    @property
    def code(self) -> str:
        return self.reason.value


def peak_load(allocations: List[Allocation], window: TimeWindow) -> int:
    """
    Highest number of units in use at any instant of ``window``

    Sweeps over allocation boundaries clipped to the window. Ends are
    processed before starts at the same instant (half-open intervals).
    """
    points = []
    for allocation in allocations:
        if not allocation.window.overlaps_with(window):
            continue
        points.append((max(allocation.window.start, window.start), 1, allocation.units))
        points.append((min(allocation.window.end, window.end), 0, -allocation.units))

    points.sort(key=lambda point: (point[0], point[1]))

    load = peak = 0
    for _, _, delta in points:
        load += delta
        peak = max(peak, load)
    return peak


@dataclass(kw_only=True, eq=False)
class SlotLedger(Aggregate):
    """
    Slot Ledger Aggregate Root

    Key invariants:
    - Units in use at any instant never exceed capacity
    - An appointment holds at most one allocation
    - Capacity is at least 1 and never drops below the current peak load

    Usage:
        ledger = ledger_repo.get_for_window(resource_id, window, lock=True)

        decision = ledger.admit(window, units)
        if isinstance(decision, Rejected):
            return decision

        ledger.bind(decision, appointment.id)
        ledger_repo.save(ledger)
    """

    resource_id: int
    capacity: int
    allocations: List[Allocation] = field(default_factory=list)
    version: int = 0

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError("Resource capacity must be at least 1")

    def peak_load(self, window: TimeWindow) -> int:
        return peak_load(self.allocations, window)

    def remaining(self, window: TimeWindow) -> int:
        """Units still free across the whole window"""
        return max(self.capacity - self.peak_load(window), 0)

    def can_admit(self, window: TimeWindow, units: int = 1) -> bool:
        return self.peak_load(window) + units <= self.capacity

    def admit(self, window: TimeWindow, units: int = 1) -> Reservation | Rejected:
        """
        Decide whether ``units`` fit into ``window``

        Returns a provisional Reservation or a Rejected result. Nothing
        is consumed until the reservation is bound.
        """
        if units < 1:
            raise ValueError("Requested units must be at least 1")

        load = self.peak_load(window)
        if load + units > self.capacity:
            return Rejected(
                RejectionReason.CAPACITY_EXCEEDED,
                f"{units} unit(s) requested for {window} on resource {self.resource_id}, "
                f"{self.capacity - load} of {self.capacity} free",
            )

        return Reservation(
            resource_id=self.resource_id,
            window=window,
            units=units,
            load_after=load + units,
        )

    def bind(self, reservation: Reservation, appointment_id: UUID) -> Allocation:
        """
        Turn a reservation into an allocation for ``appointment_id``

        Raises:
            CapacityError: the reservation no longer fits (stale handle)
            ValueError: the reservation belongs to another resource or
                the appointment already holds an allocation
        """
        if reservation.resource_id != self.resource_id:
            raise ValueError(
                f"Reservation for resource {reservation.resource_id} "
                f"cannot be bound in ledger of resource {self.resource_id}"
            )
        if self.get_allocation(appointment_id) is not None:
            raise ValueError(f"Appointment {appointment_id} already holds an allocation")
        if not self.can_admit(reservation.window, reservation.units):
            raise CapacityError(
                f"Reservation {reservation.reservation_id} no longer fits "
                f"resource {self.resource_id}"
            )

        allocation = Allocation(
            appointment_id=appointment_id,
            window=reservation.window,
            units=reservation.units,
        )
        self.allocations.append(allocation)

        from apps.scheduling.domain.events import CapacityAllocated

        self.add_event(CapacityAllocated(
            aggregate_id=self.id,
            resource_id=self.resource_id,
            appointment_id=appointment_id,
            window=reservation.window,
            units=reservation.units,
            load=self.peak_load(reservation.window),
            capacity=self.capacity,
        ))

        return allocation

    def release(self, appointment_id: UUID) -> Allocation | None:
        """
        Give back the capacity held by an appointment

        Returns the removed allocation, or None when the appointment
        holds nothing (already released).
        """
        allocation = self.get_allocation(appointment_id)
        if allocation is None:
            return None

        self.allocations.remove(allocation)

        from apps.scheduling.domain.events import CapacityReleased

        self.add_event(CapacityReleased(
            aggregate_id=self.id,
            resource_id=self.resource_id,
            appointment_id=appointment_id,
            window=allocation.window,
            units=allocation.units,
            load=self.peak_load(allocation.window),
            capacity=self.capacity,
        ))

        return allocation

    def change_capacity(self, new_capacity: int):
        """
        Change the resource capacity without orphaning bookings

        Raises:
            ValueError: capacity below 1
            CapacityError: existing allocations need more than new_capacity
        """
        if new_capacity < 1:
            raise ValueError("Resource capacity must be at least 1")

        required = self.overall_peak()
        if new_capacity < required:
            raise CapacityError(
                f"Resource {self.resource_id} has {required} unit(s) booked at peak; "
                f"capacity cannot drop to {new_capacity}"
            )

        old_capacity = self.capacity
        if old_capacity == new_capacity:
            return

        self.capacity = new_capacity

        from apps.scheduling.domain.events import ResourceCapacityChanged

        self.add_event(ResourceCapacityChanged(
            aggregate_id=self.id,
            resource_id=self.resource_id,
            old_capacity=old_capacity,
            new_capacity=new_capacity,
        ))

    def overall_peak(self) -> int:
        if not self.allocations:
            return 0
        start = min(a.window.start for a in self.allocations)
        end = max(a.window.end for a in self.allocations)
        return self.peak_load(TimeWindow.between(start, end))

    def get_allocation(self, appointment_id: UUID) -> Allocation | None:
        return next(
            (a for a in self.allocations if a.appointment_id == appointment_id),
            None
        )

    def booked_units(self) -> int:
        """Units held by every loaded allocation, overlapping or not"""
        return sum(a.units for a in self.allocations)

    def load_at(self, instant: datetime) -> int:
        return sum(a.units for a in self.allocations if a.window.contains(instant))

    def __str__(self):
        return f"SlotLedger(resource={self.resource_id}, allocations={len(self.allocations)})"

    def __repr__(self):
        return (
            f"SlotLedger(resource_id={self.resource_id}, capacity={self.capacity}, "
            f"allocations_count={len(self.allocations)}, version={self.version})"
        )
