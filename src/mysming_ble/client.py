"""Public control surface of the driver."""

from __future__ import annotations

from typing import Any, Callable, List, Optional

from .connection import CharacteristicTarget, ConnectionManager, ConnectionState
from .dispatcher import GattEventDispatcher
from .events import EventChannel, Listener
from .sequencer import MeasurementSequencer, SequencerTiming
from .transport import GattService, GattTransport


class SensorClient:
    """Driver for one LSM330 / heart rate peripheral.

    Composes the connection manager, the event dispatcher and the measurement
    sequencer around one event channel. Consumers subscribe to the channel to
    receive every notification; all control calls return immediately.

    Args:
        transport: BLE stack to drive, e.g. ``BleakTransport``.
        loop: Timer source for the measurement sequencer (defaults to the
            running asyncio loop).
        timing: Measurement step delays.
        channel: Event channel to publish on; a new one is created if omitted.

    Example:
        >>> client = SensorClient(BleakTransport())
        >>> client.subscribe(print)
        >>> client.initialize()
        >>> client.connect("C0:FF:EE:00:00:01")
    """

    def __init__(
        self,
        transport: GattTransport,
        *,
        loop: Optional[Any] = None,
        timing: Optional[SequencerTiming] = None,
        channel: Optional[EventChannel] = None,
    ) -> None:
        self.events = channel or EventChannel()
        self.connection = ConnectionManager(transport, GattEventDispatcher(self.events))
        self.sequencer = MeasurementSequencer(
            self.connection, self.events, loop=loop, timing=timing
        )

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.events.subscribe(listener)

    def initialize(self) -> None:
        self.connection.initialize()

    def connect(self, address: str) -> None:
        self.connection.connect(address)

    def disconnect(self) -> None:
        self.connection.disconnect()

    def close(self) -> None:
        """Abandon any measurement run and release the connection."""
        self.sequencer.cancel()
        self.connection.close()

    def read_characteristic(self, target: CharacteristicTarget) -> bool:
        return self.connection.read_characteristic(target)

    def write_characteristic(self, target: CharacteristicTarget, value: bytes) -> bool:
        return self.connection.write_characteristic(target, value)

    def set_notification(self, target: CharacteristicTarget, enabled: bool = True) -> bool:
        return self.connection.set_notification(target, enabled)

    def list_services(self) -> Optional[List[GattService]]:
        return self.connection.list_services()

    def start_measurement(self) -> None:
        self.sequencer.start()

    def stop_measurement(self) -> None:
        self.sequencer.stop()

    def advance(self) -> None:
        self.sequencer.advance()

    def reset(self) -> None:
        self.sequencer.reset()
