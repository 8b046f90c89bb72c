"""
Common Value Objects

Value objects used across multiple domains:
- TimeWindow: A half-open time interval a booking occupies on a resource
- Role / Actor: Who is asking for a state change
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from shared.domain.base import ValueObject


@dataclass(frozen=True)
class TimeWindow(ValueObject):
    """
    Time window value object

    Represents the interval [start, start + duration).
    Used as the derived slot key together with a resource id.
    """
    start: datetime
    duration: timedelta

    def __post_init__(self):
        if self.start.tzinfo is None:
            raise ValueError("Window start must be timezone-aware")
        if self.duration <= timedelta(0):
            raise ValueError(f"Window duration must be positive, got {self.duration}")

    @classmethod
    def between(cls, start: datetime, end: datetime) -> 'TimeWindow':
        return cls(start, end - start)

    @property
    def end(self) -> datetime:
        return self.start + self.duration

    def overlaps_with(self, other: 'TimeWindow') -> bool:
        """
        Check if this window overlaps with another

        The end is exclusive, so back-to-back windows don't overlap.

        Examples:
            - 10:00-10:30 overlaps with 10:15-10:45 -> True
            - 10:00-10:30 overlaps with 10:30-11:00 -> False (adjacent)
        """
        if not isinstance(other, TimeWindow):
            raise TypeError("Can only check overlap with another TimeWindow")

        return self.start < other.end and self.end > other.start

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def __str__(self):
        return f"{self.start.isoformat()} - {self.end.isoformat()}"

    def __repr__(self):
        return f"TimeWindow({self.start.isoformat()}, {self.duration})"


class Role(Enum):
    CUSTOMER = 'customer'
    ORGANISER = 'organiser'
    ADMIN = 'admin'


@dataclass(frozen=True)
class Actor(ValueObject):
    """
    Authenticated caller as supplied by the identity collaborator

    ``identity`` is the key the session registry and appointments use
    for the customer (the auth user's primary key as a string).
    """
    identity: str
    role: Role = Role.CUSTOMER

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.ORGANISER, Role.ADMIN)

    def can_act_for(self, owner_identity: str) -> bool:
        """Owners act on their own appointments, staff on anyone's"""
        return self.is_staff or self.identity == str(owner_identity)
