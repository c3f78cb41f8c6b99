"""Command-line measurement session.

Connects to the peripheral, runs one scripted measurement for a fixed
duration and prints every notification to standard output, one line each::

    data_available,Temperature Sample,25

Logs go to standard error (configured by ``main()``), so stdout stays a clean
CSV stream suitable for piping.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from .bleak_transport import BleakTransport
from .client import SensorClient
from .events import EventKind, GattEvent
from .gatt_attributes import HEART_RATE_MEASUREMENT_ID, lookup
from .mock_transport import MockGattTransport
from .sequencer import SequencerTiming
from .transport import GattTransport

logger = logging.getLogger(__name__)

MOCK_ADDRESS = "C0:FF:EE:00:00:01"


@dataclass(frozen=True)
class SessionConfig:
    """Settings of one CLI measurement session.

    Attributes:
        address: BLE address of the peripheral.
        duration: Seconds to stay in steady-state measurement before stopping.
        heart_rate: Enable heart rate notifications once services are known.
        list_services: Print the discovered service catalog.
        adapter: Backend adapter name (e.g. ``hci0``), ``None`` for default.
        connect_timeout: Seconds allowed for connection plus discovery.
        timing: Measurement step delays.
        mock: Use the simulated peripheral instead of Bluetooth hardware.
    """

    address: str
    duration: float = 10.0
    heart_rate: bool = False
    list_services: bool = False
    adapter: Optional[str] = None
    connect_timeout: float = 10.0
    timing: SequencerTiming = field(default_factory=SequencerTiming)
    mock: bool = False


def format_event(event: GattEvent) -> str:
    """Render a notification as ``kind,characteristic,data``."""
    name = ""
    if event.characteristic is not None:
        uuid = event.characteristic.characteristic
        name = lookup(uuid) or uuid
    data = "" if event.data is None else event.data
    return f"{event.kind.value},{name},{data}"


async def _wait_for(
    queue: "asyncio.Queue[GattEvent]", kind: EventKind, timeout: float
) -> GattEvent:
    async def wait() -> GattEvent:
        while True:
            event = await queue.get()
            if event.kind is kind:
                return event
            if event.kind is EventKind.DISCONNECTED:
                raise RuntimeError("BLE connection lost.")

    logger.debug("Waiting for %s (timeout=%.1fs)", kind.value, timeout)
    return await asyncio.wait_for(wait(), timeout=timeout)


def _print_services(client: SensorClient) -> None:
    for service in client.list_services() or []:
        print(f"service,{service.uuid},{lookup(service.uuid, 'Unknown service')}", flush=True)
        for char in service.characteristics:
            props = "|".join(char.properties)
            print(
                f"characteristic,{char.uuid},{lookup(char.uuid, 'Unknown characteristic')},{props}",
                flush=True,
            )


async def run_session(config: SessionConfig, transport: Optional[GattTransport] = None) -> None:
    """Run one measurement session against ``config.address``.

    Raises:
        SensorClientError: Adapter missing, device not found, rejected request.
        RuntimeError: The link dropped before the session finished.
        asyncio.TimeoutError: The peripheral did not answer in time.
    """
    loop = asyncio.get_running_loop()
    if transport is None:
        if config.mock:
            transport = MockGattTransport(loop)
        else:
            transport = BleakTransport(
                loop=loop, adapter=config.adapter, connect_timeout=config.connect_timeout
            )

    client = SensorClient(transport, loop=loop, timing=config.timing)
    queue: asyncio.Queue[GattEvent] = asyncio.Queue()

    def on_event(event: GattEvent) -> None:
        print(format_event(event), flush=True)
        queue.put_nowait(event)

    client.subscribe(on_event)

    # Upper bound for any scripted run: start delay plus every step
    sequence_timeout = config.timing.start_delay + 6 * config.timing.step_delay + 5.0

    client.initialize()
    logger.info("BLE connection starting: %s", config.address)
    client.connect(config.address)
    try:
        await _wait_for(queue, EventKind.SERVICES_DISCOVERED, config.connect_timeout + 5.0)
        logger.info("BLE connection established: %s", config.address)

        if config.list_services:
            _print_services(client)
        if config.heart_rate:
            client.set_notification(HEART_RATE_MEASUREMENT_ID, True)

        client.start_measurement()
        await _wait_for(queue, EventKind.MEASURING_STARTED, sequence_timeout)
        logger.info("Measuring for %.1fs", config.duration)
        await asyncio.sleep(config.duration)

        client.stop_measurement()
        await _wait_for(queue, EventKind.CONNECTED, sequence_timeout)
        logger.info("Measurement stopped")

        client.disconnect()
        try:
            await _wait_for(queue, EventKind.DISCONNECTED, config.connect_timeout)
        except asyncio.TimeoutError:
            logger.warning("No disconnect confirmation; closing anyway")
    finally:
        client.close()


def run(config: SessionConfig) -> int:
    """Synchronous wrapper around ``run_session`` for the CLI.

    Returns:
        int: 0 on success, 1 on error, 130 on keyboard interrupt.
    """
    try:
        asyncio.run(run_session(config))
        return 0
    except KeyboardInterrupt:
        # SIGINT: Return 130 by convention
        return 130
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1
