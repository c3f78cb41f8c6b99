from __future__ import annotations

import argparse
import logging
import sys

from .client import SensorClient
from .connection import ConnectionState
from .errors import (
    AdapterUnavailable,
    DeviceNotFound,
    NotInitialized,
    NotMeasuring,
    OperationRejected,
    SensorClientError,
)
from .events import EventChannel, EventKind, GattEvent
from .sequencer import SequencerTiming
from .session import MOCK_ADDRESS, SessionConfig, run

__all__ = [
    "AdapterUnavailable",
    "ConnectionState",
    "DeviceNotFound",
    "EventChannel",
    "EventKind",
    "GattEvent",
    "NotInitialized",
    "NotMeasuring",
    "OperationRejected",
    "SensorClient",
    "SensorClientError",
    "SequencerTiming",
    "main",
]

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="mysming-ble",
        description="Connect to an LSM330 sensor peripheral over BLE, run one measurement and print every notification to stdout as CSV.",
    )
    parser.add_argument("--address", help="BLE address of the peripheral to connect to")
    parser.add_argument(
        "--adapter",
        default=None,
        help="Bluetooth adapter to use (e.g. hci0; default: system default)",
    )
    parser.add_argument(
        "--connect-timeout",
        type=float,
        default=10.0,
        help="Connection timeout in seconds",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=10.0,
        help="Seconds to keep measuring before the stop sequence runs",
    )
    parser.add_argument(
        "--heart-rate",
        action="store_true",
        help="Enable heart rate measurement notifications",
    )
    parser.add_argument(
        "--list-services",
        action="store_true",
        help="Print the discovered GATT services and characteristics",
    )
    parser.add_argument(
        "--start-delay",
        type=float,
        default=0.1,
        help="Delay before the first step of a start/stop sequence (seconds)",
    )
    parser.add_argument(
        "--step-delay",
        type=float,
        default=0.5,
        help="Delay between sequence steps and temperature samples (seconds)",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use a simulated peripheral (no BLE device required)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
            "NOTSET",
        ],
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (default: stderr only)",
    )

    args = parser.parse_args()

    # Notifications go to stdout; logs to stderr and optionally a file
    level = getattr(logging, str(args.log_level).upper(), logging.WARNING)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if args.log_file:
        try:
            handlers.append(logging.FileHandler(args.log_file, encoding="utf-8"))
        except OSError as e:
            print(f"Cannot open log file {args.log_file}: {e}", file=sys.stderr)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )

    address = args.address
    if address is None:
        if not args.mock:
            parser.error("--address is required unless --mock is given")
        address = MOCK_ADDRESS

    if args.mock:
        logger.info("🔧 Using simulated peripheral (no BLE device required)")

    config = SessionConfig(
        address=address,
        duration=args.duration,
        heart_rate=args.heart_rate,
        list_services=args.list_services,
        adapter=args.adapter,
        connect_timeout=args.connect_timeout,
        timing=SequencerTiming(start_delay=args.start_delay, step_delay=args.step_delay),
        mock=args.mock,
    )
    raise SystemExit(run(config))
