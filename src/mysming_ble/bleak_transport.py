"""bleak-backed GATT transport.

bleak exposes BLE operations as coroutines, while the driver core expects a
fire-and-forget transport that reports results through ``GattCallback``.
``BleakGattHandle`` bridges the two: every request is spawned as a task on
the event loop and its outcome is delivered to the callback from that task,
so all callbacks run on the loop thread, the same thread the sequencer timer
fires on.

Notes on backend behaviour:
- bleak discovers services as part of ``connect()``, so ``discover_services``
  only converts the already-populated collection into the driver's catalog.
- bleak writes the Client Characteristic Configuration descriptor itself in
  ``start_notify``/``stop_notify`` (BlueZ even refuses direct CCCD writes), so
  ``write_descriptor`` on the CCCD is acknowledged without touching the radio.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Coroutine, List, Optional, Set

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.exc import BleakError

from .gatt_attributes import CLIENT_CHARACTERISTIC_CONFIG
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

# MAC address (Linux/Windows) or CoreBluetooth UUID (macOS)
_ADDRESS_PATTERN = re.compile(
    r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$"
    r"|^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}$"
)

_BLE_ERRORS = (BleakError, asyncio.TimeoutError, OSError)


@dataclass(frozen=True)
class BleakAdapter:
    """Adapter handle returned by ``BleakTransport.acquire_adapter``."""

    loop: asyncio.AbstractEventLoop
    name: Optional[str] = None


def _to_catalog(collection: Any) -> List[GattService]:
    services = []
    for service in collection:
        characteristics = [
            GattCharacteristic(
                uuid=char.uuid.lower(),
                service_uuid=service.uuid.lower(),
                handle=char.handle,
                properties=tuple(char.properties),
                descriptors=[
                    GattDescriptor(uuid=desc.uuid.lower(), handle=desc.handle)
                    for desc in char.descriptors
                ],
            )
            for char in service.characteristics
        ]
        services.append(GattService(uuid=service.uuid.lower(), characteristics=characteristics))
    return services


class BleakGattHandle(GattHandle):
    """GATT connection backed by a ``BleakClient``."""

    def __init__(
        self,
        device: Any,
        callback: GattCallback,
        *,
        loop: asyncio.AbstractEventLoop,
        timeout: float = 10.0,
        adapter: Optional[str] = None,
    ) -> None:
        self._callback = callback
        self._loop = loop
        self._tasks: Set[asyncio.Task[None]] = set()
        self._services: List[GattService] = []
        self._closed = False

        kwargs: dict[str, Any] = {}
        if adapter:
            kwargs["adapter"] = adapter
        self._client = BleakClient(
            device,
            disconnected_callback=self._on_disconnect,
            timeout=timeout,
            **kwargs,
        )

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> bool:
        if self._closed:
            coro.close()
            return False
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def _on_disconnect(self, _client: BleakClient) -> None:
        self._services = []
        if self._closed:
            return
        logger.info("BLE connection lost (callback)")
        self._callback.on_connection_state_change(GATT_SUCCESS, ProfileState.DISCONNECTED)

    @property
    def is_connected(self) -> bool:
        return self._client.is_connected

    @property
    def services(self) -> List[GattService]:
        return self._services

    def connect(self) -> bool:
        return self._spawn(self._connect())

    async def _connect(self) -> None:
        try:
            await self._client.connect()
        except _BLE_ERRORS as e:
            logger.warning("BLE connection failed: %s: %s", type(e).__name__, e)
            if not self._closed:
                self._callback.on_connection_state_change(
                    GATT_FAILURE, ProfileState.DISCONNECTED
                )
            return

        if self._closed:
            return
        self._callback.on_connection_state_change(GATT_SUCCESS, ProfileState.CONNECTED)

    def disconnect(self) -> None:
        self._spawn(self._disconnect())

    async def _disconnect(self) -> None:
        try:
            await self._client.disconnect()
        except _BLE_ERRORS as e:
            logger.warning("BLE disconnect failed: %s", e)

    def close(self) -> None:
        if self._closed:
            return
        if self._client.is_connected:
            self._spawn(self._disconnect())
        self._closed = True
        self._services = []

    def discover_services(self) -> bool:
        return self._spawn(self._discover_services())

    async def _discover_services(self) -> None:
        try:
            collection = self._client.services
        except BleakError as e:
            logger.warning("Service discovery failed: %s", e)
            if not self._closed:
                self._callback.on_services_discovered(GATT_FAILURE)
            return

        if self._closed:
            return
        self._services = _to_catalog(collection)
        logger.debug("Service catalog: %d service(s)", len(self._services))
        self._callback.on_services_discovered(GATT_SUCCESS)

    def read_characteristic(self, characteristic: GattCharacteristic) -> bool:
        return self._spawn(self._read(characteristic))

    async def _read(self, characteristic: GattCharacteristic) -> None:
        try:
            value = bytes(await self._client.read_gatt_char(characteristic.handle))
        except _BLE_ERRORS as e:
            logger.warning("Read failed on %s: %s", characteristic.uuid, e)
            if not self._closed:
                self._callback.on_characteristic_read(characteristic, b"", GATT_FAILURE)
            return
        if self._closed:
            return
        self._callback.on_characteristic_read(characteristic, value, GATT_SUCCESS)

    def write_characteristic(self, characteristic: GattCharacteristic, value: bytes) -> bool:
        return self._spawn(self._write(characteristic, bytes(value)))

    async def _write(self, characteristic: GattCharacteristic, value: bytes) -> None:
        try:
            await self._client.write_gatt_char(characteristic.handle, value, response=True)
        except _BLE_ERRORS as e:
            logger.warning("Write failed on %s: %s", characteristic.uuid, e)
            if not self._closed:
                self._callback.on_characteristic_write(characteristic, value, GATT_FAILURE)
            return
        if self._closed:
            return
        self._callback.on_characteristic_write(characteristic, value, GATT_SUCCESS)

    def set_characteristic_notification(
        self, characteristic: GattCharacteristic, enabled: bool
    ) -> bool:
        if not self._client.is_connected:
            return False
        if enabled:
            return self._spawn(self._start_notify(characteristic))
        return self._spawn(self._stop_notify(characteristic))

    async def _start_notify(self, characteristic: GattCharacteristic) -> None:
        def handle(_sender: BleakGATTCharacteristic, data: bytearray) -> None:
            if self._closed:
                return
            logger.debug("Notification received: %s %d bytes", characteristic.uuid, len(data))
            self._callback.on_characteristic_changed(characteristic, bytes(data))

        try:
            await self._client.start_notify(characteristic.handle, handle)
        except _BLE_ERRORS as e:
            logger.warning("Enabling notifications failed on %s: %s", characteristic.uuid, e)

    async def _stop_notify(self, characteristic: GattCharacteristic) -> None:
        try:
            await self._client.stop_notify(characteristic.handle)
        except _BLE_ERRORS as e:
            logger.warning("Disabling notifications failed on %s: %s", characteristic.uuid, e)

    def write_descriptor(self, descriptor: GattDescriptor, value: bytes) -> bool:
        if descriptor.uuid == CLIENT_CHARACTERISTIC_CONFIG:
            logger.debug("CCCD write handled by start_notify/stop_notify")
            return not self._closed
        return self._spawn(self._write_descriptor(descriptor, bytes(value)))

    async def _write_descriptor(self, descriptor: GattDescriptor, value: bytes) -> None:
        try:
            await self._client.write_gatt_descriptor(descriptor.handle, value)
        except _BLE_ERRORS as e:
            logger.warning("Descriptor write failed on %s: %s", descriptor.uuid, e)


class BleakTransport(GattTransport):
    """``GattTransport`` for the host Bluetooth stack through bleak.

    Args:
        loop: Event loop the connection tasks run on. Defaults to the loop
            running when ``acquire_adapter`` is called.
        adapter: Backend adapter name (e.g. ``"hci0"`` on BlueZ).
        connect_timeout: Seconds bleak waits for a connection to complete.
    """

    def __init__(
        self,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        adapter: Optional[str] = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self._loop = loop
        self._adapter_name = adapter
        self._connect_timeout = connect_timeout

    def acquire_adapter(self) -> Optional[BleakAdapter]:
        try:
            loop = self._loop or asyncio.get_running_loop()
        except RuntimeError:
            logger.error("No running event loop to bind the Bluetooth adapter to.")
            return None

        kwargs: dict[str, Any] = {}
        if self._adapter_name:
            kwargs["adapter"] = self._adapter_name
        try:
            # Constructing a scanner probes the platform backend without scanning
            BleakScanner(**kwargs)
        except _BLE_ERRORS as e:
            logger.error("Unable to obtain a Bluetooth adapter: %s", e)
            return None
        self._loop = loop
        return BleakAdapter(loop=loop, name=self._adapter_name)

    def get_remote_device(self, adapter: BleakAdapter, address: str) -> Optional[str]:
        if not _ADDRESS_PATTERN.match(address):
            logger.warning("Invalid BLE address: %r", address)
            return None
        return address

    def connect_gatt(
        self, device: Any, auto_connect: bool, callback: GattCallback
    ) -> Optional[GattHandle]:
        if auto_connect:
            logger.warning("bleak does not support auto-connect; using a direct connection")
        if self._loop is None:
            logger.error("Transport used before acquire_adapter()")
            return None
        handle = BleakGattHandle(
            device,
            callback,
            loop=self._loop,
            timeout=self._connect_timeout,
            adapter=self._adapter_name,
        )
        handle.connect()
        return handle
