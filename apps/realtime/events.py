"""Realtime events: what a connected client receives."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict
from uuid import UUID, uuid4


class EventKind(str, Enum):
    BOOKING_CONFIRMED = "booking-confirmed"
    SLOT_UNAVAILABLE = "slot-unavailable"
    APPOINTMENT_CANCELLED = "appointment-cancelled"
    APPOINTMENT_REMINDER = "appointment-reminder"
    APPOINTMENT_COMPLETED = "appointment-completed"
    SLOT_UPDATE = "slot-update"


@dataclass(frozen=True, eq=False)
class Event:
    """
    One notification, addressed either to an identity (all of its
    connections) or to a resource (every connection watching it).
    Never stored.
    """

    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)
    target_identity: str | None = None
    target_resource: int | None = None
    event_id: UUID = field(default_factory=uuid4)

    def __post_init__(self):
        if (self.target_identity is None) == (self.target_resource is None):
            raise ValueError("An event targets exactly one identity or one resource")

    @classmethod
    def for_identity(cls, kind: EventKind, identity: str, **payload) -> "Event":
        return cls(kind=kind, payload=payload, target_identity=str(identity))

    @classmethod
    def for_resource(cls, kind: EventKind, resource_id: int, **payload) -> "Event":
        return cls(kind=kind, payload=payload, target_resource=resource_id)

    def to_message(self) -> Dict[str, Any]:
        """Wire shape: {"kind": ..., "service"?: ..., "time"?: ISO 8601, ...}"""
        message: Dict[str, Any] = {"kind": self.kind.value}
        for key, value in self.payload.items():
            if value is None:
                continue
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, UUID):
                value = str(value)
            message[key] = value
        return message

    def __repr__(self):
        target = (
            f"identity={self.target_identity}"
            if self.target_identity is not None
            else f"resource={self.target_resource}"
        )
        return f"Event({self.kind.value}, {target})"
