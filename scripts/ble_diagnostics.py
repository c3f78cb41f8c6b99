#!/usr/bin/env python3
"""
BLE connection diagnostics: host Bluetooth status and GATT catalog dump.

Usage: python scripts/ble_diagnostics.py C0:FF:EE:00:00:01
"""

import sys
import os
import asyncio
import subprocess
import platform
import logging
from typing import Optional

# Add the package to the path (from scripts/ to src/)
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

# Configure logging for diagnostics tool
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",  # Simple format for user-friendly output
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

try:
    from mysming_ble import EventKind, SensorClient, SensorClientError
    from mysming_ble.bleak_transport import BleakTransport
    from mysming_ble.gatt_attributes import lookup
except ImportError as e:
    logger.error(f"❌ Cannot import mysming_ble ({e}). Run 'pip install -e .' first.")
    sys.exit(1)


# Host command reporting the adapter state, and the text present when it is on
_ADAPTER_PROBES = {
    "darwin": (["system_profiler", "SPBluetoothDataType"], "State: On"),
    "linux": (["bluetoothctl", "show"], "Powered: yes"),
}


def adapter_powered() -> Optional[bool]:
    """Ask the host stack whether the adapter is on; ``None`` when unknown."""
    system = platform.system().lower()
    probe = _ADAPTER_PROBES.get(system)
    if probe is None:
        logger.warning(f"⚠️ No adapter state probe for {system}")
        return None

    command, powered_marker = probe
    try:
        output = subprocess.run(command, capture_output=True, text=True, timeout=10).stdout
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"⚠️ '{command[0]}' failed: {e}")
        return None
    return powered_marker in output


async def dump_gatt_catalog(address: str, timeout: float = 20.0) -> bool:
    """Connect to the peripheral and log every discovered service/characteristic."""
    logger.info(f"\n🔌 Connecting to {address}...")

    client = SensorClient(BleakTransport(connect_timeout=timeout))
    discovered = asyncio.Event()
    lost = asyncio.Event()

    def on_event(event) -> None:
        if event.kind is EventKind.SERVICES_DISCOVERED:
            discovered.set()
        elif event.kind is EventKind.DISCONNECTED:
            lost.set()

    client.subscribe(on_event)

    try:
        client.initialize()
        client.connect(address)

        _, pending = await asyncio.wait(
            [
                asyncio.ensure_future(discovered.wait()),
                asyncio.ensure_future(lost.wait()),
            ],
            timeout=timeout + 5.0,
            return_when=asyncio.FIRST_COMPLETED,
        )
        for waiter in pending:
            waiter.cancel()
        if not discovered.is_set():
            logger.error("❌ Connection failed or timed out")
            return False

        services = client.list_services() or []
        logger.info(f"✅ Connected, {len(services)} service(s) discovered:")
        for service in services:
            logger.info(f"   📦 {service.uuid} {lookup(service.uuid, 'Unknown service')}")
            for char in service.characteristics:
                props = ",".join(char.properties)
                logger.info(
                    f"      🔹 {char.uuid} {lookup(char.uuid, 'Unknown characteristic')} [{props}]"
                )
        return True

    except SensorClientError as e:
        logger.error(f"❌ Connection test failed: {e}")
        return False

    finally:
        client.disconnect()
        await asyncio.sleep(1.0)
        client.close()


async def main() -> None:
    """Run BLE diagnostics."""
    if len(sys.argv) < 2:
        logger.error("Usage: ble_diagnostics.py <BLE address>")
        sys.exit(2)

    logger.info("🔧 LSM330 Sensor BLE Diagnostics")
    logger.info("=" * 40)

    powered = adapter_powered()
    if powered is False:
        logger.error("❌ Bluetooth adapter is off. Enable it and try again.")
        return
    if powered:
        logger.info("✅ Bluetooth adapter is on")

    ok = await dump_gatt_catalog(sys.argv[1])

    logger.info("\n🏁 Diagnostics complete")
    if not ok:
        logger.info("\n💡 If you're still having connection issues:")
        logger.info("   1. Restart the sensor device")
        logger.info("   2. Move closer to reduce interference")
        logger.info("   3. Check the address with your system Bluetooth tools")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("\n👋 Diagnostics cancelled by user")
    except Exception as e:
        logger.error(f"❌ Diagnostics error: {e}")
        sys.exit(1)
