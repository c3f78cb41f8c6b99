"""Notification channel between the driver and its consumers.

The driver never calls consumers directly; it publishes ``GattEvent`` objects
on an ``EventChannel`` that any number of listeners subscribe to. Listener
failures are logged and do not prevent delivery to the remaining listeners,
so a faulty consumer cannot break the transport callback that triggered the
publish.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .gatt_attributes import CharacteristicId

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    SERVICES_DISCOVERED = "services_discovered"
    MEASURING_STARTED = "measuring_started"
    MEASUREMENT_INITIALIZING = "measurement_initializing"
    DATA_AVAILABLE = "data_available"
    DATA_WRITTEN = "data_written"


@dataclass(frozen=True)
class GattEvent:
    """A single domain notification.

    Attributes:
        kind: What happened.
        data: Decoded payload for DATA_AVAILABLE / DATA_WRITTEN, else ``None``.
        characteristic: Characteristic the data belongs to, when any.
    """

    kind: EventKind
    data: Optional[str] = None
    characteristic: Optional[CharacteristicId] = None


Listener = Callable[[GattEvent], None]


class EventChannel:
    """Subscriber list delivering ``GattEvent`` objects synchronously."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def publish(
        self,
        kind: EventKind,
        data: Optional[str] = None,
        characteristic: Optional[CharacteristicId] = None,
    ) -> GattEvent:
        event = GattEvent(kind=kind, data=data, characteristic=characteristic)
        with self._lock:
            listeners = list(self._listeners)

        logger.debug("Publishing %s to %d listener(s)", kind.value, len(listeners))
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", kind.value)
        return event
