"""Translation of transport events into domain notifications.

Each transport event produces at most one notification. Failure statuses are
logged and dropped here; nothing is retried.
"""

from __future__ import annotations

import logging

from .decoder import decode, heart_rate_flags
from .events import EventChannel, EventKind
from .transport import GATT_SUCCESS, GattCharacteristic

logger = logging.getLogger(__name__)


class GattEventDispatcher:
    def __init__(self, channel: EventChannel) -> None:
        self._channel = channel

    def connected(self) -> None:
        self._channel.publish(EventKind.CONNECTED)

    def disconnected(self) -> None:
        self._channel.publish(EventKind.DISCONNECTED)

    def services_discovered(self, status: int) -> None:
        if status != GATT_SUCCESS:
            logger.warning("on_services_discovered received: %d", status)
            return
        self._channel.publish(EventKind.SERVICES_DISCOVERED)

    def characteristic_read(
        self, characteristic: GattCharacteristic, value: bytes, status: int
    ) -> None:
        if status != GATT_SUCCESS:
            logger.warning("Read of %s failed: status=%d", characteristic.uuid, status)
            return
        self._publish_value(EventKind.DATA_AVAILABLE, characteristic, value)

    def characteristic_written(
        self, characteristic: GattCharacteristic, value: bytes, status: int
    ) -> None:
        if status != GATT_SUCCESS:
            logger.warning("Write to %s failed: status=%d", characteristic.uuid, status)
            return
        self._publish_value(EventKind.DATA_WRITTEN, characteristic, value)

    def characteristic_changed(self, characteristic: GattCharacteristic, value: bytes) -> None:
        self._publish_value(EventKind.DATA_AVAILABLE, characteristic, value)

    def _publish_value(
        self, kind: EventKind, characteristic: GattCharacteristic, value: bytes
    ) -> None:
        # The format flags of a heart rate measurement travel in its first byte
        data = decode(characteristic.id, value, heart_rate_flags(value))
        self._channel.publish(kind, data, characteristic.id)
