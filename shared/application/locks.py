"""
Keyed Locks

One mutex per key (e.g. per resource) so that admission checks for
different resources never wait on each other. Locks are created on
first use and dropped when nobody holds or waits for them.
"""

from contextlib import contextmanager
import logging
import threading

from shared.domain.exceptions import ResourceBusy

logger = logging.getLogger(__name__)


class KeyedLocks:
    """Registry of per-key mutexes with bounded acquisition"""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._locks: dict = {}

    def _checkout(self, key):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key, timeout: float | None = None):
        """
        Hold the lock for ``key``

        Raises ResourceBusy when the lock cannot be taken
        within the timeout.
        """
        wait = self.timeout if timeout is None else timeout
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=wait):
                logger.warning(f"Timed out after {wait}s waiting for lock {key!r}")
                raise ResourceBusy(f"Lock for {key!r} is busy")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def __len__(self):
        with self._guard:
            return len(self._locks)


# Process-wide registry used for resource admission checks
resource_locks = KeyedLocks()
