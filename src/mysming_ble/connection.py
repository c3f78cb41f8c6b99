"""Connection lifecycle and GATT operations for one peripheral.

``ConnectionManager`` owns the adapter handle, the remembered device address,
the GATT handle and the ``ConnectionState``. It is the ``GattCallback`` the
transport reports to: state transitions happen here, then the event is handed
to the ``GattEventDispatcher`` for publication.

Every operation is fire-and-forget. Synchronous failures (no adapter, no
address, unresolvable device, transport refusal) raise; everything else is
reported later through the event channel.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, List, Optional, Union

from .dispatcher import GattEventDispatcher
from .errors import AdapterUnavailable, DeviceNotFound, NotInitialized, OperationRejected
from .gatt_attributes import (
    CLIENT_CHARACTERISTIC_CONFIG,
    DISABLE_NOTIFICATION_VALUE,
    ENABLE_NOTIFICATION_VALUE,
    CharacteristicId,
)
from .transport import (
    GattCallback,
    GattCharacteristic,
    GattHandle,
    GattService,
    GattTransport,
    ProfileState,
)

logger = logging.getLogger(__name__)

# A characteristic already in hand, or its (service, characteristic) identity
CharacteristicTarget = Union[GattCharacteristic, CharacteristicId]


class ConnectionState(Enum):
    DISCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2
    INIT_MEASURE = 3
    MEASURING = 4


class ConnectionManager(GattCallback):
    """Connection Manager for a single BLE peripheral.

    Args:
        transport: Platform BLE stack.
        dispatcher: Publishes domain notifications for transport events.

    Attributes:
        lock: Re-entrant lock serialising every state mutation. The
            measurement sequencer takes the same lock on its timer ticks.
    """

    def __init__(self, transport: GattTransport, dispatcher: GattEventDispatcher) -> None:
        self._transport = transport
        self._dispatcher = dispatcher
        self._adapter: Optional[Any] = None
        self._address: Optional[str] = None
        self._gatt: Optional[GattHandle] = None
        self._state = ConnectionState.DISCONNECTED
        self.lock = threading.RLock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @state.setter
    def state(self, value: ConnectionState) -> None:
        with self.lock:
            if value is not self._state:
                logger.debug("Connection state %s -> %s", self._state.name, value.name)
            self._state = value

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def gatt(self) -> Optional[GattHandle]:
        return self._gatt

    def initialize(self) -> None:
        """Obtain the platform Bluetooth adapter.

        Raises:
            AdapterUnavailable: Bluetooth hardware is absent or disabled.
        """
        with self.lock:
            if self._adapter is not None:
                return
            adapter = self._transport.acquire_adapter()
            if adapter is None:
                logger.error("Unable to obtain a Bluetooth adapter.")
                raise AdapterUnavailable("Unable to obtain a Bluetooth adapter.")
            self._adapter = adapter

    def connect(self, address: str) -> None:
        """Connect to the GATT server of the device at ``address``.

        The connection result is reported asynchronously as a CONNECTED or
        DISCONNECTED notification.

        Raises:
            NotInitialized: ``initialize()`` has not succeeded or ``address``
                is empty.
            DeviceNotFound: ``address`` does not resolve to a device.
            OperationRejected: The transport refused the connection request.
        """
        with self.lock:
            if self._adapter is None or not address:
                logger.warning("Bluetooth adapter not initialized or unspecified address.")
                raise NotInitialized("Bluetooth adapter not initialized or unspecified address.")

            # Previously connected device. Try to reconnect.
            if address == self._address and self._gatt is not None:
                logger.debug("Trying to use an existing GATT handle for connection.")
                if not self._gatt.connect():
                    raise OperationRejected(f"Reconnect to {address} rejected")
                self.state = ConnectionState.CONNECTING
                return

            device = self._transport.get_remote_device(self._adapter, address)
            if device is None:
                logger.warning("Device not found. Unable to connect.")
                raise DeviceNotFound(address)

            if self._gatt is not None:
                logger.info("Releasing connection to %s before connecting to %s", self._address, address)
                self._gatt.close()
                self._gatt = None

            # Direct connection: no background auto-connect
            gatt = self._transport.connect_gatt(device, False, self)
            if gatt is None:
                raise OperationRejected(f"Connection to {address} rejected")
            logger.debug("Trying to create a new connection.")
            self._gatt = gatt
            self._address = address
            self.state = ConnectionState.CONNECTING

    def disconnect(self) -> None:
        """Disconnect or cancel a pending connection; result arrives as an event."""
        with self.lock:
            if self._adapter is None or self._gatt is None:
                logger.warning("Bluetooth adapter not initialized")
                return
            self._gatt.disconnect()

    def close(self) -> None:
        """Release the GATT handle. Safe to call repeatedly."""
        with self.lock:
            if self._gatt is None:
                return
            self._gatt.close()
            self._gatt = None
            self.state = ConnectionState.DISCONNECTED

    def list_services(self) -> Optional[List[GattService]]:
        """Services found by discovery, or ``None`` without a connection."""
        with self.lock:
            if self._gatt is None:
                return None
            return list(self._gatt.services)

    def find_characteristic(self, char_id: CharacteristicId) -> Optional[GattCharacteristic]:
        with self.lock:
            if self._gatt is None:
                return None
            service = self._gatt.get_service(char_id.service)
            if service is None:
                return None
            return service.get_characteristic(char_id.characteristic)

    def _resolve(self, target: CharacteristicTarget, operation: str) -> Optional[GattCharacteristic]:
        if self._adapter is None or self._gatt is None:
            logger.warning("Bluetooth adapter not initialized; %s dropped", operation)
            return None
        if isinstance(target, GattCharacteristic):
            return target
        characteristic = self.find_characteristic(target)
        if characteristic is None:
            logger.warning("Characteristic %s not available; %s dropped", target.characteristic, operation)
        return characteristic

    def read_characteristic(self, target: CharacteristicTarget) -> bool:
        """Request a read; the value arrives as a DATA_AVAILABLE notification.

        Returns:
            True if the request was handed to the transport, False if it was
            dropped (no connection, unknown characteristic, transport refusal).
        """
        with self.lock:
            characteristic = self._resolve(target, "read")
            if characteristic is None:
                return False
            if not self._gatt.read_characteristic(characteristic):
                logger.warning("Read of %s rejected by transport", characteristic.uuid)
                return False
            return True

    def write_characteristic(self, target: CharacteristicTarget, value: bytes) -> bool:
        """Request a write; completion arrives as a DATA_WRITTEN notification."""
        with self.lock:
            characteristic = self._resolve(target, "write")
            if characteristic is None:
                return False
            if not self._gatt.write_characteristic(characteristic, bytes(value)):
                logger.warning("Write to %s rejected by transport", characteristic.uuid)
                return False
            return True

    def set_notification(self, target: CharacteristicTarget, enabled: bool = True) -> bool:
        """Enable or disable notifications for a characteristic.

        Notifications are switched on locally first, then remotely by writing
        the Client Characteristic Configuration descriptor when the
        characteristic has one.

        Raises:
            OperationRejected: The transport refused to change local
                notification delivery.
        """
        with self.lock:
            characteristic = self._resolve(target, "notification setup")
            if characteristic is None:
                return False

            # Enable notification internally.
            if not self._gatt.set_characteristic_notification(characteristic, enabled):
                logger.warning("set_characteristic_notification failed")
                raise OperationRejected(
                    f"Notification setup on {characteristic.uuid} rejected"
                )

            # Enable notification remotely.
            client_config = characteristic.get_descriptor(CLIENT_CHARACTERISTIC_CONFIG)
            if client_config is None:
                logger.debug("No CCCD on %s; local notification only", characteristic.uuid)
                return True
            value = ENABLE_NOTIFICATION_VALUE if enabled else DISABLE_NOTIFICATION_VALUE
            return self._gatt.write_descriptor(client_config, value)

    # GattCallback

    def on_connection_state_change(self, status: int, new_state: ProfileState) -> None:
        with self.lock:
            if new_state is ProfileState.CONNECTED:
                self.state = ConnectionState.CONNECTED
                logger.info("Connected to GATT server.")
                self._dispatcher.connected()
                # Attempts to discover services after successful connection.
                started = self._gatt.discover_services() if self._gatt is not None else False
                logger.info("Attempting to start service discovery: %s", started)
            elif new_state is ProfileState.DISCONNECTED:
                self.state = ConnectionState.DISCONNECTED
                logger.info("Disconnected from GATT server (status=%d).", status)
                self._dispatcher.disconnected()

    def on_services_discovered(self, status: int) -> None:
        with self.lock:
            self._dispatcher.services_discovered(status)

    def on_characteristic_read(
        self, characteristic: GattCharacteristic, value: bytes, status: int
    ) -> None:
        with self.lock:
            self._dispatcher.characteristic_read(characteristic, value, status)

    def on_characteristic_write(
        self, characteristic: GattCharacteristic, value: bytes, status: int
    ) -> None:
        with self.lock:
            self._dispatcher.characteristic_written(characteristic, value, status)

    def on_characteristic_changed(self, characteristic: GattCharacteristic, value: bytes) -> None:
        with self.lock:
            self._dispatcher.characteristic_changed(characteristic, value)
