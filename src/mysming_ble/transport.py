"""Interface to the BLE radio stack / GATT transport.

The driver consumes the transport through three narrow abstractions:

- ``GattTransport``: adapter acquisition, device resolution and opening a
  GATT connection.
- ``GattHandle``: one GATT connection. Every operation is fire-and-forget;
  the boolean result only tells whether the request was accepted, never
  whether it succeeded on the peripheral.
- ``GattCallback``: the asynchronous event surface the transport reports
  results through.

The discovered service catalog is modelled with small dataclasses so that
the driver never touches backend-specific objects.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

from .gatt_attributes import CharacteristicId

GATT_SUCCESS = 0
GATT_FAILURE = 0x101


class ProfileState(Enum):
    """Transport-level link state reported by ``on_connection_state_change``."""

    DISCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2
    DISCONNECTING = 3


@dataclass
class GattDescriptor:
    uuid: str
    handle: int = 0


@dataclass
class GattCharacteristic:
    """A discovered characteristic and its descriptors."""

    uuid: str
    service_uuid: str
    handle: int = 0
    properties: Tuple[str, ...] = ()
    descriptors: List[GattDescriptor] = field(default_factory=list)

    @property
    def id(self) -> CharacteristicId:
        return CharacteristicId(self.service_uuid, self.uuid)

    def get_descriptor(self, uuid: str) -> Optional[GattDescriptor]:
        uuid = uuid.lower()
        for descriptor in self.descriptors:
            if descriptor.uuid == uuid:
                return descriptor
        return None


@dataclass
class GattService:
    uuid: str
    characteristics: List[GattCharacteristic] = field(default_factory=list)

    def get_characteristic(self, uuid: str) -> Optional[GattCharacteristic]:
        uuid = uuid.lower()
        for characteristic in self.characteristics:
            if characteristic.uuid == uuid:
                return characteristic
        return None


class GattCallback(ABC):
    """Asynchronous results delivered by a ``GattHandle``."""

    @abstractmethod
    def on_connection_state_change(self, status: int, new_state: ProfileState) -> None:
        pass

    @abstractmethod
    def on_services_discovered(self, status: int) -> None:
        pass

    @abstractmethod
    def on_characteristic_read(
        self, characteristic: GattCharacteristic, value: bytes, status: int
    ) -> None:
        pass

    @abstractmethod
    def on_characteristic_write(
        self, characteristic: GattCharacteristic, value: bytes, status: int
    ) -> None:
        pass

    @abstractmethod
    def on_characteristic_changed(
        self, characteristic: GattCharacteristic, value: bytes
    ) -> None:
        pass


class GattHandle(ABC):
    """One GATT client connection to a remote peripheral."""

    @abstractmethod
    def connect(self) -> bool:
        """Reconnect this handle to its device."""

    @abstractmethod
    def disconnect(self) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the connection. No callbacks are delivered afterwards."""

    @abstractmethod
    def discover_services(self) -> bool:
        pass

    @property
    @abstractmethod
    def services(self) -> List[GattService]:
        """Services found by the last successful discovery (empty before)."""

    def get_service(self, uuid: str) -> Optional[GattService]:
        uuid = uuid.lower()
        for service in self.services:
            if service.uuid == uuid:
                return service
        return None

    @abstractmethod
    def read_characteristic(self, characteristic: GattCharacteristic) -> bool:
        pass

    @abstractmethod
    def write_characteristic(
        self, characteristic: GattCharacteristic, value: bytes
    ) -> bool:
        pass

    @abstractmethod
    def set_characteristic_notification(
        self, characteristic: GattCharacteristic, enabled: bool
    ) -> bool:
        """Enable/disable local delivery of notifications for ``characteristic``."""

    @abstractmethod
    def write_descriptor(self, descriptor: GattDescriptor, value: bytes) -> bool:
        pass


class GattTransport(ABC):
    """Entry point to the platform BLE stack."""

    @abstractmethod
    def acquire_adapter(self) -> Optional[Any]:
        """Return an adapter handle, or ``None`` when Bluetooth is unavailable."""

    @abstractmethod
    def get_remote_device(self, adapter: Any, address: str) -> Optional[Any]:
        """Resolve ``address`` to a device reference, or ``None``."""

    @abstractmethod
    def connect_gatt(
        self, device: Any, auto_connect: bool, callback: GattCallback
    ) -> Optional[GattHandle]:
        """Open a GATT connection; the outcome arrives via ``callback``."""
