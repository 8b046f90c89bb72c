"""Process-wide registry and notifier."""

from __future__ import annotations

import threading

from django.conf import settings  # type: ignore

from .notifier import Notifier
from .registry import SessionRegistry

session_registry = SessionRegistry()

_notifier: Notifier | None = None
_notifier_lock = threading.Lock()


def get_notifier() -> Notifier:
    global _notifier
    with _notifier_lock:
        if _notifier is None:
            _notifier = Notifier(
                session_registry,
                timeout=getattr(settings, "REALTIME_DELIVERY_TIMEOUT_SECONDS", 2.0),
                max_workers=getattr(settings, "REALTIME_MAX_WORKERS", 8),
            )
        return _notifier
