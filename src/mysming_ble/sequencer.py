"""Scripted measurement start/stop sequence.

The peripheral has no "measurement ready" acknowledgement, so the sequence is
paced by a one-shot timer instead: each tick performs exactly one step, then
re-arms the timer for the next one. Write and read completions are never
consulted; a step whose GATT operation was dropped or failed is still
followed by the next step.

Runs and their steps::

    BEGIN    0 notify MEASUREMENT_INITIALIZING
             1 write accelerometer enable = 1
             2 write gyroscope enable = 1
             3 write measurement start = 1
             4 hand over to REFRESH
    REFRESH  0 notify MEASURING_STARTED
             1 read temperature sample (repeats every tick)
    END      0 write measurement stop = 1
             1 write gyroscope enable = 0
             2 write accelerometer enable = 0
             3 notify CONNECTED, run finished

The active run is held as one ``(RunKind, step)`` pair, and at most one timer
is pending at any time: scheduling a tick cancels the previous one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, Optional

from . import gatt_attributes as attrs
from .connection import ConnectionManager, ConnectionState
from .errors import NotMeasuring
from .events import EventChannel, EventKind

logger = logging.getLogger(__name__)

ENABLE = b"\x01"
DISABLE = b"\x00"


class RunKind(IntEnum):
    REFRESH = 0
    BEGIN = 1
    END = 2


_RUN_STATES = {
    RunKind.REFRESH: ConnectionState.MEASURING,
    RunKind.BEGIN: ConnectionState.INIT_MEASURE,
    RunKind.END: ConnectionState.CONNECTED,
}


@dataclass(frozen=True)
class SequencerTiming:
    """Delays between sequence steps, in seconds.

    Attributes:
        start_delay: Delay before the first step of a BEGIN or END run.
        step_delay: Delay between consecutive steps, also the temperature
            sampling period in steady state.
    """

    start_delay: float = 0.1
    step_delay: float = 0.5


class MeasurementSequencer:
    """Timer-driven step machine starting and stopping a measurement.

    Args:
        connection: Performs the GATT operations and holds ``ConnectionState``.
        channel: Receives the progress notifications.
        loop: Anything providing asyncio's ``call_later``. Defaults to the
            running event loop at the time the first tick is scheduled.
        timing: Step delays.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        channel: EventChannel,
        *,
        loop: Optional[Any] = None,
        timing: Optional[SequencerTiming] = None,
    ) -> None:
        self._connection = connection
        self._channel = channel
        self._loop = loop
        self.timing = timing or SequencerTiming()
        self._run: Optional[RunKind] = None
        self._step = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._handlers: Dict[RunKind, Callable[[], None]] = {
            RunKind.REFRESH: self._refresh_temperature,
            RunKind.BEGIN: self._begin_measurement,
            RunKind.END: self._end_measurement,
        }

    @property
    def run(self) -> Optional[RunKind]:
        return self._run

    @property
    def step(self) -> int:
        return self._step

    @property
    def is_active(self) -> bool:
        return self._run is not None

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        """Begin a measurement run; restarts from step 0 if one is active."""
        with self._connection.lock:
            if self._run is not None:
                logger.info("Restarting measurement sequence (was %s step %d)", self._run.name, self._step)
            self._run = RunKind.BEGIN
            self._step = 0
            self._schedule(self.timing.start_delay)

    def stop(self) -> None:
        """Run the teardown sequence.

        Raises:
            NotMeasuring: No measurement has been started.
        """
        with self._connection.lock:
            if self._run is None:
                raise NotMeasuring("No measurement in progress")
            if self._run is RunKind.END:
                logger.debug("Teardown already in progress")
                return
            self._run = RunKind.END
            self._step = 0
            self._schedule(self.timing.start_delay)

    def advance(self) -> None:
        """Move to the next step and re-arm the timer for the active run."""
        with self._connection.lock:
            self._step += 1
            if self._run is not None:
                self._schedule(self.timing.step_delay)

    def reset(self) -> None:
        """Return to step 0 of the active run without touching the timer."""
        with self._connection.lock:
            self._step = 0

    def cancel(self) -> None:
        """Abandon the active run, if any."""
        with self._connection.lock:
            self._clear_timer()
            if self._run is not None:
                logger.info("Measurement sequence cancelled (%s step %d)", self._run.name, self._step)
            self._run = None
            self._step = 0

    def handle_tick(self, kind: RunKind) -> None:
        """Execute one step of run ``kind``. Timer callback."""
        with self._connection.lock:
            if kind is not self._run:
                logger.debug("Ignoring stale %s tick (active run: %s)", kind.name, self._run)
                return
            self._timer = None
            if self._connection.state is ConnectionState.DISCONNECTED:
                # Steps still run; their GATT operations are dropped
                logger.warning("Link down during %s step %d", kind.name, self._step)
            else:
                self._connection.state = _RUN_STATES[kind]
            logger.debug("%s step %d", kind.name, self._step)
            self._handlers[kind]()

    def _schedule(self, delay: float) -> None:
        self._clear_timer()
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._timer = self._loop.call_later(delay, self.handle_tick, self._run)

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _write(self, char_id: attrs.CharacteristicId, value: bytes) -> None:
        if not self._connection.write_characteristic(char_id, value):
            logger.debug("Step %d of %s: write to %s dropped", self._step, self._run, char_id.characteristic)

    def _refresh_temperature(self) -> None:
        if self._step == 0:
            self._channel.publish(EventKind.MEASURING_STARTED)
            self.advance()
        elif self._step == 1:
            if not self._connection.read_characteristic(attrs.TEMP_SAMPLE_ID):
                logger.debug("Temperature read dropped")
            # Steady state: keep sampling at the same step
            self._schedule(self.timing.step_delay)
        else:
            logger.warning("REFRESH has no step %d", self._step)

    def _begin_measurement(self) -> None:
        if self._step == 0:
            self._channel.publish(EventKind.MEASUREMENT_INITIALIZING)
        elif self._step == 1:
            self._write(attrs.ACC_ENABLE_ID, ENABLE)
        elif self._step == 2:
            self._write(attrs.GYRO_ENABLE_ID, ENABLE)
        elif self._step == 3:
            self._write(attrs.MEASURE_START_ID, ENABLE)
        elif self._step == 4:
            self._step = 0
            self._run = RunKind.REFRESH
            self._schedule(self.timing.step_delay)
            return
        else:
            logger.warning("BEGIN has no step %d", self._step)
            return
        self.advance()

    def _end_measurement(self) -> None:
        if self._step == 0:
            self._write(attrs.MEASURE_STOP_ID, ENABLE)
        elif self._step == 1:
            self._write(attrs.GYRO_ENABLE_ID, DISABLE)
        elif self._step == 2:
            self._write(attrs.ACC_ENABLE_ID, DISABLE)
        elif self._step == 3:
            self._channel.publish(EventKind.CONNECTED)
            self._step = 0
            self._clear_timer()
            self._run = None
            return
        else:
            logger.warning("END has no step %d", self._step)
            return
        self.advance()
