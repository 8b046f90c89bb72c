"""
Clock / Time Provider

Every component that needs "now" takes a Clock instead of calling
datetime.now() so that deadlines, expiry and "not in the past" checks
can be driven deterministically.
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of wall-clock and monotonic time"""

    @abstractmethod
    def now(self) -> datetime:
        """Timezone-aware wall-clock time (UTC)"""

    @abstractmethod
    def monotonic(self) -> float:
        """Monotonic seconds, for measuring elapsed time and timeouts"""


class SystemClock(Clock):
    """Clock backed by the host"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


class FrozenClock(Clock):
    """
    Manually driven clock

    Time only moves when advance() or set() is called.
    """

    def __init__(self, now: datetime | None = None):
        if now is None:
            now = datetime.now(timezone.utc)
        if now.tzinfo is None:
            raise ValueError("FrozenClock needs a timezone-aware datetime")
        self._now = now
        self._elapsed = 0.0
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def monotonic(self) -> float:
        with self._lock:
            return self._elapsed

    def advance(self, delta: timedelta | None = None, **kwargs) -> datetime:
        """Move forward by ``delta`` or by timedelta(**kwargs)"""
        step = delta if delta is not None else timedelta(**kwargs)
        if step < timedelta(0):
            raise ValueError("Clock cannot move backwards")
        with self._lock:
            self._now += step
            self._elapsed += step.total_seconds()
            return self._now

    def set(self, now: datetime) -> None:
        if now.tzinfo is None:
            raise ValueError("FrozenClock needs a timezone-aware datetime")
        with self._lock:
            if now < self._now:
                raise ValueError("Clock cannot move backwards")
            self._elapsed += (now - self._now).total_seconds()
            self._now = now


system_clock = SystemClock()
