"""
Realtime transport

The registry and the notifier only see the narrow Connection interface.
QueueConnection is the in-process implementation behind the
Server-Sent-Events stream: the notifier puts messages in, the streaming
response takes them out.
"""

from __future__ import annotations

import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict

from shared.domain.exceptions import DeliveryFailure


class ConnectionClosed(DeliveryFailure):
    """The peer is gone; the connection will never accept another message."""


class Connection(ABC):

    @abstractmethod
    def send(self, message: Dict[str, Any]) -> None:
        """Deliver one message. Raise ConnectionClosed if the peer is gone."""

    @abstractmethod
    def close(self) -> None:
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass


class QueueConnection(Connection):
    """
    Bounded in-memory mailbox

    send() never blocks: a full mailbox means the client stopped
    reading, and the connection counts as closed.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 100):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    def send(self, message: Dict[str, Any]) -> None:
        if self._closed.is_set():
            raise ConnectionClosed("Connection is closed")
        try:
            self._queue.put_nowait(message)
        except queue.Full:
            raise ConnectionClosed("Client stopped reading") from None

    def receive(self, timeout: float | None = None) -> Dict[str, Any] | None:
        """Next message, or None on timeout. Raises ConnectionClosed after close()."""
        if self._closed.is_set() and self._queue.empty():
            raise ConnectionClosed("Connection is closed")
        try:
            message = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if message is self._CLOSED:
            raise ConnectionClosed("Connection is closed")
        return message

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self._queue.put_nowait(self._CLOSED)
        except queue.Full:
            # The reader sees the closed flag once the mailbox drains
            pass

    @property
    def is_open(self) -> bool:
        return not self._closed.is_set()

    def pending(self) -> int:
        return self._queue.qsize()
