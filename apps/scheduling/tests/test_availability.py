"""Unit tests for day availability."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from uuid import uuid4

import pytest

from apps.scheduling.domain.availability import availability, day_windows
from apps.scheduling.domain.ledger import SlotLedger


def test_day_windows_fill_opening_hours() -> None:
    windows = day_windows(date(2030, 1, 7), time(9), time(11), timedelta(minutes=45), timezone.utc)

    assert [w.start.time() for w in windows] == [time(9), time(9, 45)]
    assert windows[-1].end == datetime(2030, 1, 7, 10, 30, tzinfo=timezone.utc)


def test_day_windows_reject_non_positive_duration() -> None:
    with pytest.raises(ValueError):
        day_windows(date(2030, 1, 7), time(9), time(11), timedelta(0), timezone.utc)


def test_availability_reflects_ledger_and_skips_past() -> None:
    windows = day_windows(date(2030, 1, 7), time(9), time(11), timedelta(minutes=30), timezone.utc)
    ledger = SlotLedger(resource_id=1, capacity=2)
    ledger.bind(ledger.admit(windows[1], units=2), uuid4())

    slots = availability(ledger, windows, not_before=windows[1].start)

    assert len(slots) == 3
    assert slots[0].remaining == 0
    assert not slots[0].available
    assert slots[1].remaining == 2
    assert slots[1].available
