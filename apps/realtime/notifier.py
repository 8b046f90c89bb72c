"""
Notifier

Fans a realtime Event out to the connections the session registry
resolves for its target. Each connection gets the event at most once.
Deliveries run on a worker pool and are awaited for at most
``timeout`` seconds; stalled or failed deliveries are dropped, logged,
and their connections removed from the registry. A delivery that never
started because every worker was busy is dropped too, but its connection
stays registered. There are no retries and nothing is persisted.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from uuid import UUID

import structlog

from .events import Event
from .registry import SessionRegistry
from .transport import Connection, ConnectionClosed

logger = structlog.get_logger(__name__)


@dataclass
class DeliveryReport:
    event_id: UUID
    kind: str
    targeted: int = 0
    delivered: int = 0
    failed: int = 0
    timed_out: int = 0
    # Deliveries that never started before the timeout
    dropped: int = 0

    @property
    def complete(self) -> bool:
        return self.delivered == self.targeted


class Notifier:

    def __init__(self, registry: SessionRegistry, *, timeout: float = 2.0, max_workers: int = 8):
        if timeout <= 0:
            raise ValueError("Delivery timeout must be positive")
        self.registry = registry
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="realtime-notifier",
        )

    def publish(self, event: Event) -> DeliveryReport:
        """Deliver ``event`` to every connection of its target"""
        report = DeliveryReport(event_id=event.event_id, kind=event.kind.value)

        if event.target_identity is not None:
            connections = self.registry.resolve(event.target_identity)
        else:
            connections = self.registry.resolve_resource(event.target_resource)

        report.targeted = len(connections)
        if not connections:
            logger.debug("realtime.no_subscribers", event=repr(event))
            return report

        message = event.to_message()
        futures = {
            self._executor.submit(connection.send, message): connection
            for connection in connections
        }
        done, not_done = wait(futures, timeout=self.timeout)

        for future in done:
            connection = futures[future]
            error = future.exception()
            if error is None:
                report.delivered += 1
                continue

            report.failed += 1
            if isinstance(error, ConnectionClosed):
                logger.info("realtime.connection_closed", kind=event.kind.value)
            else:
                logger.warning(
                    "realtime.delivery_failed",
                    kind=event.kind.value,
                    error=str(error),
                )
            self._drop(connection)

        for future in not_done:
            connection = futures[future]
            if future.cancel():
                # Never started: the pool is busy elsewhere, the connection may be fine
                report.dropped += 1
                logger.warning(
                    "realtime.delivery_dropped",
                    kind=event.kind.value,
                    timeout=self.timeout,
                )
                continue
            if future.done() and future.exception() is None:
                # Finished right after the wait gave up
                report.delivered += 1
                continue

            report.timed_out += 1
            logger.warning(
                "realtime.delivery_timed_out",
                kind=event.kind.value,
                timeout=self.timeout,
            )
            self._drop(connection)

        logger.info(
            "realtime.published",
            kind=event.kind.value,
            targeted=report.targeted,
            delivered=report.delivered,
            failed=report.failed,
            timed_out=report.timed_out,
            dropped=report.dropped,
        )
        return report

    def _drop(self, connection: Connection):
        self.registry.connection_lost(connection)
        try:
            connection.close()
        except Exception as exc:
            logger.warning("realtime.close_failed", error=str(exc))

    def shutdown(self, block: bool = False):
        self._executor.shutdown(wait=block, cancel_futures=True)
