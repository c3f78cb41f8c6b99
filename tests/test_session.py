import asyncio
from unittest.mock import patch

import pytest

import mysming_ble
from mysming_ble import DeviceNotFound, EventKind, GattEvent, SequencerTiming
from mysming_ble import gatt_attributes as attrs
from mysming_ble.gatt_attributes import CharacteristicId
from mysming_ble.mock_transport import MockGattTransport
from mysming_ble.session import MOCK_ADDRESS, SessionConfig, format_event, run, run_session

FAST = SequencerTiming(start_delay=0.01, step_delay=0.01)


def mock_config(**overrides):
    settings = dict(
        address=MOCK_ADDRESS, duration=0.05, connect_timeout=1.0, timing=FAST, mock=True
    )
    settings.update(overrides)
    return SessionConfig(**settings)


def test_format_event():
    assert format_event(GattEvent(EventKind.CONNECTED)) == "connected,,"
    assert (
        format_event(GattEvent(EventKind.DATA_AVAILABLE, "25", attrs.TEMP_SAMPLE_ID))
        == "data_available,Temperature Sample,25"
    )


def test_format_event_unknown_characteristic():
    uuid = "0000ffee-0000-1000-8000-00805f9b34fb"
    event = GattEvent(EventKind.DATA_WRITTEN, None, CharacteristicId(attrs.LSM330_SERVICE, uuid))
    assert format_event(event) == f"data_written,{uuid},"


def test_mock_session(capsys):
    asyncio.run(run_session(mock_config(list_services=True)))

    lines = capsys.readouterr().out.splitlines()
    kinds = [line.split(",", 1)[0] for line in lines]

    assert kinds[:2] == ["connected", "services_discovered"]
    assert f"service,{attrs.MEASURE_SERVICE},Measurement Service" in lines
    assert kinds.index("measurement_initializing") < kinds.index("measuring_started")
    assert any(line.startswith("data_written,Measurement Start,") for line in lines)
    assert any(line.startswith("data_available,Temperature Sample,") for line in lines)
    assert any(line.startswith("data_written,Measurement Stop,") for line in lines)
    assert kinds[-2:] == ["connected", "disconnected"]


def test_session_with_unreachable_device():
    async def scenario():
        transport = MockGattTransport(device_reachable=False)
        await run_session(mock_config(), transport)

    with pytest.raises(RuntimeError, match="connection lost"):
        asyncio.run(scenario())


def test_session_with_unknown_device():
    async def scenario():
        transport = MockGattTransport(known_addresses=["C0:FF:EE:00:00:09"])
        await run_session(mock_config(), transport)

    with pytest.raises(DeviceNotFound):
        asyncio.run(scenario())


def test_run_exit_codes():
    assert run(mock_config(duration=0.0)) == 0

    with patch("mysming_ble.session.run_session", side_effect=KeyboardInterrupt):
        assert run(mock_config()) == 130

    with patch("mysming_ble.session.run_session", side_effect=DeviceNotFound("C0:FF:EE:00:00:09")):
        assert run(mock_config()) == 1


def test_main_builds_config(monkeypatch):
    monkeypatch.setattr(
        "sys.argv",
        ["mysming-ble", "--mock", "--duration", "2.5", "--step-delay", "0.2", "--heart-rate"],
    )
    with patch("mysming_ble.run", return_value=0) as run_mock, patch("logging.basicConfig"):
        with pytest.raises(SystemExit) as excinfo:
            mysming_ble.main()

    assert excinfo.value.code == 0
    (config,) = run_mock.call_args.args
    assert config.address == MOCK_ADDRESS
    assert config.duration == 2.5
    assert config.heart_rate
    assert config.timing == SequencerTiming(start_delay=0.1, step_delay=0.2)


def test_main_requires_address(monkeypatch):
    monkeypatch.setattr("sys.argv", ["mysming-ble"])
    with patch("mysming_ble.run") as run_mock, patch("logging.basicConfig"):
        with pytest.raises(SystemExit) as excinfo:
            mysming_ble.main()

    assert excinfo.value.code == 2
    run_mock.assert_not_called()
