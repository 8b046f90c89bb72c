"""Bookable windows of a resource for one day."""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import List

from shared.domain.value_objects import TimeWindow

from .ledger import SlotLedger


@dataclass(frozen=True)
class SlotAvailability:
    window: TimeWindow
    remaining: int
    capacity: int

    @property
    def available(self) -> bool:
        return self.remaining > 0


def day_windows(
    day: date,
    opens_at: time,
    closes_at: time,
    duration: timedelta,
    tz: tzinfo,
) -> List[TimeWindow]:
    """Split opening hours into back-to-back windows of ``duration``"""
    if duration <= timedelta(0):
        raise ValueError("Slot duration must be positive")

    start = datetime.combine(day, opens_at, tzinfo=tz)
    end = datetime.combine(day, closes_at, tzinfo=tz)

    windows = []
    while start + duration <= end:
        windows.append(TimeWindow(start, duration))
        start += duration
    return windows


def availability(
    ledger: SlotLedger,
    windows: List[TimeWindow],
    *,
    not_before: datetime | None = None,
) -> List[SlotAvailability]:
    """Remaining capacity for each window; windows starting before ``not_before`` are skipped"""
    result = []
    for window in windows:
        if not_before is not None and window.start < not_before:
            continue
        result.append(SlotAvailability(
            window=window,
            remaining=ledger.remaining(window),
            capacity=ledger.capacity,
        ))
    return result
