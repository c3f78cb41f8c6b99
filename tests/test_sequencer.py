import logging
import threading

import pytest
from conftest import ADDRESS, kinds, reads, writes

from mysming_ble import ConnectionState, EventKind, NotMeasuring
from mysming_ble import gatt_attributes as attrs
from mysming_ble.sequencer import RunKind

BEGIN_WRITES = [
    (attrs.ACC_ENABLE_ID, b"\x01"),
    (attrs.GYRO_ENABLE_ID, b"\x01"),
    (attrs.MEASURE_START_ID, b"\x01"),
]
END_WRITES = [
    (attrs.MEASURE_STOP_ID, b"\x01"),
    (attrs.GYRO_ENABLE_ID, b"\x00"),
    (attrs.ACC_ENABLE_ID, b"\x00"),
]


def progress(events):
    return [k for k in kinds(events) if k not in (EventKind.DATA_WRITTEN, EventKind.DATA_AVAILABLE)]


def measure(client, loop):
    """Start a measurement and run it up to the MEASURING_STARTED step."""
    client.start_measurement()
    for _ in range(6):
        loop.tick()


def test_begin_sequence(connected, loop, events, handle):
    sequencer = connected.sequencer
    connected.start_measurement()
    assert sequencer.run is RunKind.BEGIN
    assert sequencer.step == 0
    assert sequencer.pending
    assert events == []

    loop.tick()
    assert loop.now == pytest.approx(0.1)
    assert progress(events) == [EventKind.MEASUREMENT_INITIALIZING]
    assert connected.state is ConnectionState.INIT_MEASURE
    assert sequencer.step == 1

    for _ in range(3):
        loop.tick()
    assert writes(handle) == BEGIN_WRITES
    assert loop.now == pytest.approx(1.6)

    loop.tick()
    assert sequencer.run is RunKind.REFRESH
    assert sequencer.step == 0

    loop.tick()
    assert progress(events) == [EventKind.MEASUREMENT_INITIALIZING, EventKind.MEASURING_STARTED]
    assert connected.state is ConnectionState.MEASURING

    loop.tick()
    assert reads(handle) == [attrs.TEMP_SAMPLE_ID]
    assert events[-1].kind is EventKind.DATA_AVAILABLE
    assert events[-1].characteristic == attrs.TEMP_SAMPLE_ID
    assert loop.now == pytest.approx(3.1)


def test_begin_writes_are_confirmed(connected, loop, events, transport):
    measure(connected, loop)
    written = [e.characteristic for e in events if e.kind is EventKind.DATA_WRITTEN]
    assert written == [attrs.ACC_ENABLE_ID, attrs.GYRO_ENABLE_ID, attrs.MEASURE_START_ID]
    assert transport.peripheral.measuring


def test_temperature_sampled_every_step(connected, loop, handle):
    measure(connected, loop)
    assert reads(handle) == []

    loop.advance(1.9)
    assert len(reads(handle)) == 3
    assert connected.sequencer.run is RunKind.REFRESH
    assert connected.sequencer.step == 1


def test_end_sequence(connected, loop, events, handle, transport):
    measure(connected, loop)
    loop.tick()
    sampled = len(reads(handle))
    events.clear()

    connected.stop_measurement()
    assert connected.sequencer.run is RunKind.END
    assert connected.sequencer.step == 0

    for _ in range(3):
        loop.tick()
    assert writes(handle)[-3:] == END_WRITES
    assert progress(events) == []

    loop.tick()
    assert progress(events) == [EventKind.CONNECTED]
    assert connected.state is ConnectionState.CONNECTED
    assert connected.sequencer.run is None
    assert not connected.sequencer.pending

    # nothing left scheduled: sampling stopped with the teardown
    assert not loop.tick()
    assert len(reads(handle)) == sampled
    assert not transport.peripheral.measuring


def test_stale_ticks_are_ignored(connected, loop, events, handle):
    measure(connected, loop)
    connected.stop_measurement()
    loop.tick()
    before = list(handle.operations)
    seen = len(events)

    connected.sequencer.handle_tick(RunKind.REFRESH)
    connected.sequencer.handle_tick(RunKind.BEGIN)

    assert handle.operations == before
    assert len(events) == seen
    assert connected.sequencer.pending

    for _ in range(3):
        loop.tick()
    assert connected.sequencer.run is None
    finished = list(handle.operations)

    connected.sequencer.handle_tick(RunKind.END)
    assert handle.operations == finished
    assert progress(events).count(EventKind.CONNECTED) == 1


def test_stop_without_measurement(connected):
    with pytest.raises(NotMeasuring):
        connected.stop_measurement()


def test_stop_after_teardown(connected, loop):
    measure(connected, loop)
    connected.stop_measurement()
    for _ in range(4):
        loop.tick()
    with pytest.raises(NotMeasuring):
        connected.stop_measurement()


def test_stop_during_teardown_is_noop(connected, loop):
    measure(connected, loop)
    connected.stop_measurement()
    loop.tick()
    assert connected.sequencer.step == 1

    connected.stop_measurement()
    assert connected.sequencer.run is RunKind.END
    assert connected.sequencer.step == 1


def test_stop_during_begin(connected, loop, handle):
    connected.start_measurement()
    loop.tick()
    loop.tick()

    connected.stop_measurement()
    for _ in range(4):
        loop.tick()

    assert writes(handle) == [(attrs.ACC_ENABLE_ID, b"\x01")] + END_WRITES
    assert connected.sequencer.run is None


def test_start_restarts_active_run(connected, loop, events):
    connected.start_measurement()
    loop.tick()
    loop.tick()
    assert connected.sequencer.step == 2

    connected.start_measurement()
    assert connected.sequencer.run is RunKind.BEGIN
    assert connected.sequencer.step == 0
    assert len(loop.timers()) == 1

    loop.tick()
    assert progress(events) == [EventKind.MEASUREMENT_INITIALIZING] * 2


def test_at_most_one_timer_pending(connected, loop):
    connected.start_measurement()
    for _ in range(8):
        loop.tick()
        assert len(loop.timers()) <= 1
    connected.stop_measurement()
    assert len(loop.timers()) == 1


def test_dropped_writes_do_not_stall_sequence(client, loop, events, transport):
    # peripheral without any services: every step's GATT request is dropped
    transport.catalog_factory = list
    client.initialize()
    client.connect(ADDRESS)
    loop.run_ready()
    events.clear()

    measure(client, loop)
    loop.tick()

    handle = transport.handles[-1]
    assert writes(handle) == []
    assert reads(handle) == []
    assert progress(events) == [EventKind.MEASUREMENT_INITIALIZING, EventKind.MEASURING_STARTED]
    assert client.state is ConnectionState.MEASURING


def test_failed_writes_do_not_stall_sequence(connected, loop, events, handle, transport):
    transport.fail_io = True
    measure(connected, loop)

    assert writes(handle) == BEGIN_WRITES
    assert progress(events) == [EventKind.MEASUREMENT_INITIALIZING, EventKind.MEASURING_STARTED]
    assert EventKind.DATA_WRITTEN not in kinds(events)


def test_sequence_advances_without_handle(client, loop, events, transport):
    # adapter ready but never connected: every GATT step is dropped
    client.initialize()
    measure(client, loop)

    assert progress(events) == [EventKind.MEASUREMENT_INITIALIZING, EventKind.MEASURING_STARTED]
    assert client.sequencer.run is RunKind.REFRESH
    assert client.sequencer.step == 1
    assert client.sequencer.pending
    assert client.state is ConnectionState.DISCONNECTED
    assert transport.handles == []

    client.stop_measurement()
    for _ in range(4):
        loop.tick()
    assert progress(events)[-1] is EventKind.CONNECTED
    assert client.sequencer.run is None


def test_link_loss_does_not_end_run(connected, loop, events, handle, caplog):
    connected.start_measurement()
    loop.tick()
    loop.tick()

    handle.simulate_link_loss()
    loop.run_ready()
    assert kinds(events)[-1] is EventKind.DISCONNECTED
    assert connected.sequencer.run is RunKind.BEGIN
    assert connected.sequencer.pending

    with caplog.at_level(logging.WARNING, logger="mysming_ble.sequencer"):
        for _ in range(4):
            loop.tick()

    assert "Link down during BEGIN step 2" in caplog.text
    assert writes(handle) == [(attrs.ACC_ENABLE_ID, b"\x01")]
    assert progress(events)[-1] is EventKind.MEASURING_STARTED
    assert connected.sequencer.run is RunKind.REFRESH
    assert connected.state is ConnectionState.DISCONNECTED

    connected.stop_measurement()
    for _ in range(4):
        loop.tick()
    assert progress(events)[-1] is EventKind.CONNECTED
    assert connected.sequencer.run is None
    assert not connected.sequencer.pending


def test_close_cancels_run(connected, loop, handle):
    measure(connected, loop)
    connected.close()

    assert connected.sequencer.run is None
    assert connected.state is ConnectionState.DISCONNECTED
    assert not loop.tick()


def test_reset_repeats_current_run(connected, loop, events):
    connected.start_measurement()
    loop.tick()
    assert connected.sequencer.step == 1

    connected.reset()
    assert connected.sequencer.step == 0
    assert connected.sequencer.pending

    loop.tick()
    assert progress(events) == [EventKind.MEASUREMENT_INITIALIZING] * 2


def test_reset_waits_for_connection_lock(connected, loop):
    connected.start_measurement()
    loop.tick()
    worker = threading.Thread(target=connected.reset)

    with connected.connection.lock:
        worker.start()
        worker.join(timeout=0.1)
        assert worker.is_alive()
        assert connected.sequencer.step == 1

    worker.join(timeout=1.0)
    assert not worker.is_alive()
    assert connected.sequencer.step == 0


def test_advance_skips_a_step(connected, loop, handle):
    connected.start_measurement()
    connected.advance()

    assert connected.sequencer.step == 1
    assert loop.timers()[0].when == pytest.approx(0.5)

    loop.tick()
    assert writes(handle) == [(attrs.ACC_ENABLE_ID, b"\x01")]


def test_advance_without_run_only_counts(connected, loop):
    connected.advance()
    assert connected.sequencer.step == 1
    assert not connected.sequencer.pending
    assert loop.timers() == []


def test_unknown_step_halts_run(connected, loop, handle, caplog):
    connected.start_measurement()
    for _ in range(5):
        connected.advance()

    with caplog.at_level(logging.WARNING, logger="mysming_ble.sequencer"):
        loop.tick()

    assert "BEGIN has no step 5" in caplog.text
    assert writes(handle) == []
    assert not connected.sequencer.pending
