"""Simulated LSM330 peripheral for testing and demonstration.

``MockGattTransport`` implements the transport interface against an
in-process fake peripheral so the driver can be exercised without Bluetooth
hardware. Like a real stack it reports every result asynchronously: callbacks
are scheduled with ``loop.call_soon`` and therefore run on a later loop
iteration, never inside the call that requested the operation.

The simulated peripheral exposes the heart rate service, the LSM330 sensor
service and the measurement control service. Values written are stored and
read back; the temperature sample follows a slow sine wave around room
temperature with a little noise, and the heart rate characteristic pushes a
notification every second while notifications are enabled.

Every request made on a handle is appended to ``MockGattHandle.operations``
so tests can assert on the exact GATT traffic.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import struct
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from . import gatt_attributes as attrs
from .gatt_attributes import CharacteristicId
from .transport import (
    GATT_FAILURE,
    GATT_SUCCESS,
    GattCallback,
    GattCharacteristic,
    GattDescriptor,
    GattHandle,
    GattService,
    GattTransport,
    ProfileState,
)

logger = logging.getLogger(__name__)

# Status codes the host stack reports for a failed link / lost link
GATT_ERROR = 133
GATT_CONN_TIMEOUT = 8

HEART_RATE_INTERVAL = 1.0


def _characteristic(
    service: str,
    uuid: str,
    handle: int,
    properties: Iterable[str],
    notify: bool = False,
) -> GattCharacteristic:
    descriptors = []
    if notify:
        descriptors.append(GattDescriptor(attrs.CLIENT_CHARACTERISTIC_CONFIG, handle + 1))
    return GattCharacteristic(
        uuid=uuid,
        service_uuid=service,
        handle=handle,
        properties=tuple(properties),
        descriptors=descriptors,
    )


def default_catalog() -> List[GattService]:
    """Services exposed by the simulated peripheral."""
    rw = ("read", "write")
    lsm330 = [
        attrs.LSM330_CHAR_ACC_EN,
        attrs.LSM330_CHAR_GYRO_EN,
        attrs.LSM330_CHAR_ACC_FSCALE,
        attrs.LSM330_CHAR_GYRO_FSCALE,
        attrs.LSM330_CHAR_ACC_ODR,
        attrs.LSM330_CHAR_GYRO_ODR,
        attrs.LSM330_CHAR_TRIGGER_VAL,
        attrs.LSM330_CHAR_TRIGGER_AXIS,
    ]
    return [
        GattService(
            attrs.HEART_RATE_SERVICE,
            [
                _characteristic(
                    attrs.HEART_RATE_SERVICE,
                    attrs.HEART_RATE_MEASUREMENT,
                    0x10,
                    ("notify",),
                    notify=True,
                )
            ],
        ),
        GattService(
            attrs.LSM330_SERVICE,
            [
                _characteristic(attrs.LSM330_SERVICE, uuid, 0x20 + 2 * i, rw)
                for i, uuid in enumerate(lsm330)
            ]
            + [
                _characteristic(
                    attrs.LSM330_SERVICE, attrs.LSM330_CHAR_TEMP_SAMPLE, 0x40, ("read",)
                )
            ],
        ),
        GattService(
            attrs.MEASURE_SERVICE,
            [
                _characteristic(attrs.MEASURE_SERVICE, attrs.MEASURE_CHAR_START, 0x50, ("write",)),
                _characteristic(attrs.MEASURE_SERVICE, attrs.MEASURE_CHAR_STOP, 0x52, ("write",)),
                _characteristic(attrs.MEASURE_SERVICE, attrs.MEASURE_CHAR_DURATION, 0x54, rw),
                _characteristic(
                    attrs.MEASURE_SERVICE,
                    attrs.MEASURE_CHAR_DATASTREAM,
                    0x56,
                    ("read", "notify"),
                    notify=True,
                ),
            ],
        ),
    ]


class SimulatedPeripheral:
    """Characteristic value store of the fake device."""

    def __init__(self) -> None:
        self.values: Dict[CharacteristicId, bytes] = {}
        self._start_time = time.time()

    def temperature(self) -> int:
        elapsed = time.time() - self._start_time
        temp_c = 25.0 + 3.0 * math.sin(2 * math.pi * 0.01 * elapsed) + random.gauss(0, 0.5)
        return max(-128, min(127, int(round(temp_c))))

    def heart_rate(self) -> bytes:
        elapsed = time.time() - self._start_time
        bpm = int(70 + 5 * math.sin(2 * math.pi * 0.05 * elapsed))
        # flags=0x00: UINT8 heart rate value
        return bytes([0x00, bpm])

    def read(self, char_id: CharacteristicId) -> bytes:
        if char_id == attrs.TEMP_SAMPLE_ID:
            return struct.pack("<b", self.temperature())
        return self.values.get(char_id, b"\x00")

    def write(self, char_id: CharacteristicId, value: bytes) -> None:
        self.values[char_id] = value

    @property
    def measuring(self) -> bool:
        return self.values.get(attrs.MEASURE_START_ID) == b"\x01" and (
            self.values.get(attrs.MEASURE_STOP_ID) != b"\x01"
        )


@dataclass(frozen=True)
class MockDevice:
    address: str


class MockGattHandle(GattHandle):
    """Connection to the simulated peripheral."""

    def __init__(
        self,
        transport: "MockGattTransport",
        device: MockDevice,
        callback: GattCallback,
    ) -> None:
        self.device = device
        self.operations: List[Tuple[Any, ...]] = []
        self.connected = False
        self.closed = False
        self._transport = transport
        self._callback = callback
        self._services: List[GattService] = []
        self._notifying: Dict[CharacteristicId, bool] = {}
        self._heart_rate_timer: Optional[Any] = None

    def _schedule(self, fn: Callable[..., None], *args: Any) -> None:
        def deliver() -> None:
            if not self.closed:
                fn(*args)

        self._transport.loop.call_soon(deliver)

    @property
    def services(self) -> List[GattService]:
        return self._services

    def connect(self) -> bool:
        self.operations.append(("connect",))
        if self.closed or self._transport.reject_connect:
            return False
        self._schedule(self._complete_connect)
        return True

    def _complete_connect(self) -> None:
        if not self._transport.device_reachable:
            logger.debug("Simulated connect to %s failed", self.device.address)
            self._callback.on_connection_state_change(GATT_ERROR, ProfileState.DISCONNECTED)
            return
        self.connected = True
        self._callback.on_connection_state_change(GATT_SUCCESS, ProfileState.CONNECTED)

    def disconnect(self) -> None:
        self.operations.append(("disconnect",))
        if self.closed:
            return
        self._schedule(self._drop_link, GATT_SUCCESS)

    def simulate_link_loss(self) -> None:
        """Drop the link as if the peripheral went out of range."""
        self._schedule(self._drop_link, GATT_CONN_TIMEOUT)

    def _drop_link(self, status: int) -> None:
        self.connected = False
        self._services = []
        self._notifying.clear()
        self._cancel_heart_rate()
        self._callback.on_connection_state_change(status, ProfileState.DISCONNECTED)

    def close(self) -> None:
        if self.closed:
            return
        self.operations.append(("close",))
        self.closed = True
        self.connected = False
        self._services = []
        self._cancel_heart_rate()

    def discover_services(self) -> bool:
        self.operations.append(("discover",))
        if not self.connected:
            return False
        self._schedule(self._complete_discovery)
        return True

    def _complete_discovery(self) -> None:
        if self._transport.fail_discovery:
            self._callback.on_services_discovered(GATT_FAILURE)
            return
        self._services = self._transport.catalog_factory()
        self._callback.on_services_discovered(GATT_SUCCESS)

    def read_characteristic(self, characteristic: GattCharacteristic) -> bool:
        self.operations.append(("read", characteristic.id))
        if not self.connected:
            return False
        self._schedule(self._complete_read, characteristic)
        return True

    def _complete_read(self, characteristic: GattCharacteristic) -> None:
        if self._transport.fail_io:
            self._callback.on_characteristic_read(characteristic, b"", GATT_FAILURE)
            return
        value = self._transport.peripheral.read(characteristic.id)
        self._callback.on_characteristic_read(characteristic, value, GATT_SUCCESS)

    def write_characteristic(self, characteristic: GattCharacteristic, value: bytes) -> bool:
        value = bytes(value)
        self.operations.append(("write", characteristic.id, value))
        if not self.connected:
            return False
        self._schedule(self._complete_write, characteristic, value)
        return True

    def _complete_write(self, characteristic: GattCharacteristic, value: bytes) -> None:
        if self._transport.fail_io:
            self._callback.on_characteristic_write(characteristic, value, GATT_FAILURE)
            return
        self._transport.peripheral.write(characteristic.id, value)
        self._callback.on_characteristic_write(characteristic, value, GATT_SUCCESS)

    def set_characteristic_notification(
        self, characteristic: GattCharacteristic, enabled: bool
    ) -> bool:
        self.operations.append(("notify", characteristic.id, enabled))
        if not self.connected or self._transport.reject_notifications:
            return False
        self._notifying[characteristic.id] = enabled
        if characteristic.id == attrs.HEART_RATE_MEASUREMENT_ID:
            if enabled:
                self._arm_heart_rate(characteristic)
            else:
                self._cancel_heart_rate()
        return True

    def write_descriptor(self, descriptor: GattDescriptor, value: bytes) -> bool:
        self.operations.append(("descriptor", descriptor.uuid, bytes(value)))
        return self.connected

    def push_notification(self, characteristic: GattCharacteristic, value: bytes) -> None:
        """Deliver a characteristic-changed event if notifications are enabled."""
        if self._notifying.get(characteristic.id):
            self._schedule(self._callback.on_characteristic_changed, characteristic, bytes(value))

    def _arm_heart_rate(self, characteristic: GattCharacteristic) -> None:
        self._cancel_heart_rate()

        def fire() -> None:
            self._heart_rate_timer = None
            if self.closed or not self.connected:
                return
            self.push_notification(characteristic, self._transport.peripheral.heart_rate())
            self._arm_heart_rate(characteristic)

        self._heart_rate_timer = self._transport.loop.call_later(HEART_RATE_INTERVAL, fire)

    def _cancel_heart_rate(self) -> None:
        if self._heart_rate_timer is not None:
            self._heart_rate_timer.cancel()
            self._heart_rate_timer = None


class MockGattTransport(GattTransport):
    """``GattTransport`` backed by ``SimulatedPeripheral``.

    Args:
        loop: Loop used to deliver callbacks. Anything with ``call_soon`` and
            ``call_later`` works. Defaults to the running asyncio loop.
        adapter_available: When False, ``acquire_adapter`` returns ``None``.
        known_addresses: Addresses that resolve to a device. ``None`` means
            every non-empty address resolves.
        device_reachable: When False, connection attempts complete with an
            error status instead of CONNECTED.

    The ``reject_connect``, ``reject_notifications``, ``fail_discovery`` and
    ``fail_io`` attributes inject failures and may be flipped at any time.
    """

    def __init__(
        self,
        loop: Optional[Any] = None,
        *,
        adapter_available: bool = True,
        known_addresses: Optional[Iterable[str]] = None,
        device_reachable: bool = True,
    ) -> None:
        self._loop = loop
        self.adapter_available = adapter_available
        self.known_addresses = set(known_addresses) if known_addresses is not None else None
        self.device_reachable = device_reachable
        self.reject_connect = False
        self.reject_notifications = False
        self.fail_discovery = False
        self.fail_io = False
        self.catalog_factory: Callable[[], List[GattService]] = default_catalog
        self.peripheral = SimulatedPeripheral()
        self.handles: List[MockGattHandle] = []

    @property
    def loop(self) -> Any:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def acquire_adapter(self) -> Optional[str]:
        if not self.adapter_available:
            logger.error("Simulated adapter unavailable")
            return None
        return "mock-adapter"

    def get_remote_device(self, adapter: Any, address: str) -> Optional[MockDevice]:
        if self.known_addresses is not None and address not in self.known_addresses:
            return None
        return MockDevice(address)

    def connect_gatt(
        self, device: MockDevice, auto_connect: bool, callback: GattCallback
    ) -> Optional[GattHandle]:
        handle = MockGattHandle(self, device, callback)
        self.handles.append(handle)
        if not handle.connect():
            return None
        return handle
