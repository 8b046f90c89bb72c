"""
Session Registry

Tracks which live connections belong to which identity and which
resources each connection watches. The registry is the only owner of
subscriptions; the notifier reads snapshots of them.

All operations are thread-safe. One identity may hold any number of
subscriptions (one per device or tab).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Set
from uuid import UUID, uuid4

import structlog

from shared.domain.base import utc_now
from shared.domain.exceptions import NotFound, ValidationError

from .transport import Connection

logger = structlog.get_logger(__name__)


@dataclass(eq=False)
class Subscription:
    subscriber_id: UUID
    identity: str
    connection: Connection
    resources: Set[int] = field(default_factory=set)
    registered_at: datetime = field(default_factory=utc_now)


class SessionRegistry:

    def __init__(self):
        self._lock = threading.RLock()
        self._subscriptions: Dict[UUID, Subscription] = {}
        self._by_identity: Dict[str, Set[UUID]] = {}
        self._by_resource: Dict[int, Set[UUID]] = {}

    def register(self, identity: str, connection: Connection) -> UUID:
        """Add a subscription for ``identity`` and return its subscriber id"""
        identity = str(identity or "").strip()
        if not identity:
            raise ValidationError("A subscription needs an identity")

        subscription = Subscription(subscriber_id=uuid4(), identity=identity, connection=connection)
        with self._lock:
            self._subscriptions[subscription.subscriber_id] = subscription
            self._by_identity.setdefault(identity, set()).add(subscription.subscriber_id)
            count = len(self._by_identity[identity])

        logger.info(
            "realtime.registered",
            subscriber_id=str(subscription.subscriber_id),
            identity=identity,
            connections=count,
        )
        return subscription.subscriber_id

    def unregister(self, subscriber_id: UUID) -> bool:
        """Remove a subscription. Unknown ids are ignored (returns False)."""
        with self._lock:
            subscription = self._subscriptions.pop(subscriber_id, None)
            if subscription is None:
                return False

            ids = self._by_identity.get(subscription.identity)
            if ids is not None:
                ids.discard(subscriber_id)
                if not ids:
                    del self._by_identity[subscription.identity]

            for resource_id in subscription.resources:
                self._forget_watch(resource_id, subscriber_id)

        logger.info(
            "realtime.unregistered",
            subscriber_id=str(subscriber_id),
            identity=subscription.identity,
        )
        return True

    def resolve(self, identity: str) -> Set[Connection]:
        """Connections currently registered for ``identity``"""
        with self._lock:
            return {
                self._subscriptions[subscriber_id].connection
                for subscriber_id in self._by_identity.get(str(identity), ())
            }

    def watch(self, subscriber_id: UUID, resource_id: int):
        """Subscribe a connection to slot updates of a resource"""
        with self._lock:
            subscription = self._subscriptions.get(subscriber_id)
            if subscription is None:
                raise NotFound(f"Subscriber {subscriber_id} is not registered")
            subscription.resources.add(resource_id)
            self._by_resource.setdefault(resource_id, set()).add(subscriber_id)

        logger.debug("realtime.watch", subscriber_id=str(subscriber_id), resource_id=resource_id)

    def unwatch(self, subscriber_id: UUID, resource_id: int) -> bool:
        with self._lock:
            subscription = self._subscriptions.get(subscriber_id)
            if subscription is None or resource_id not in subscription.resources:
                return False
            subscription.resources.discard(resource_id)
            self._forget_watch(resource_id, subscriber_id)
        return True

    def resolve_resource(self, resource_id: int) -> Set[Connection]:
        """Connections watching ``resource_id``"""
        with self._lock:
            return {
                self._subscriptions[subscriber_id].connection
                for subscriber_id in self._by_resource.get(resource_id, ())
            }

    def connection_lost(self, connection: Connection) -> int:
        """Drop every subscription using ``connection``; returns how many"""
        with self._lock:
            stale = [
                subscriber_id
                for subscriber_id, subscription in self._subscriptions.items()
                if subscription.connection is connection
            ]
            for subscriber_id in stale:
                self.unregister(subscriber_id)

        if stale:
            logger.info("realtime.connection_lost", removed=len(stale))
        return len(stale)

    def subscriptions_for(self, identity: str) -> List[Subscription]:
        with self._lock:
            return [
                self._subscriptions[subscriber_id]
                for subscriber_id in self._by_identity.get(str(identity), ())
            ]

    def _forget_watch(self, resource_id: int, subscriber_id: UUID):
        watchers = self._by_resource.get(resource_id)
        if watchers is None:
            return
        watchers.discard(subscriber_id)
        if not watchers:
            del self._by_resource[resource_id]

    def __len__(self):
        with self._lock:
            return len(self._subscriptions)
