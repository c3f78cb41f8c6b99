"""GATT attribute registry for the LSM330 sensor peripheral.

Standard Bluetooth SIG attributes use the 16-bit base UUID; the vendor
services (LSM330 sensor and measurement control) share a 128-bit vendor base.
"""

from __future__ import annotations

from typing import NamedTuple, Optional


def _sig(short: int) -> str:
    return f"0000{short:04x}-0000-1000-8000-00805f9b34fb"


def _vendor(short: int) -> str:
    return f"f000{short:04x}-0451-4000-b000-000000000000"


class CharacteristicId(NamedTuple):
    """(service UUID, characteristic UUID) pair identifying one characteristic."""

    service: str
    characteristic: str


# Standard services / characteristics
HEART_RATE_SERVICE = _sig(0x180D)
HEART_RATE_MEASUREMENT = _sig(0x2A37)
DEVICE_INFORMATION_SERVICE = _sig(0x180A)
MANUFACTURER_NAME_STRING = _sig(0x2A29)
CLIENT_CHARACTERISTIC_CONFIG = _sig(0x2902)

# LSM330 accelerometer/gyroscope service
LSM330_SERVICE = _vendor(0xAA80)
LSM330_CHAR_ACC_EN = _vendor(0xAA81)
LSM330_CHAR_GYRO_EN = _vendor(0xAA82)
LSM330_CHAR_TEMP_SAMPLE = _vendor(0xAA83)
LSM330_CHAR_ACC_FSCALE = _vendor(0xAA84)
LSM330_CHAR_GYRO_FSCALE = _vendor(0xAA85)
LSM330_CHAR_ACC_ODR = _vendor(0xAA86)
LSM330_CHAR_GYRO_ODR = _vendor(0xAA87)
LSM330_CHAR_TRIGGER_VAL = _vendor(0xAA88)
LSM330_CHAR_TRIGGER_AXIS = _vendor(0xAA89)

# Measurement control service
MEASURE_SERVICE = _vendor(0xAA90)
MEASURE_CHAR_START = _vendor(0xAA91)
MEASURE_CHAR_STOP = _vendor(0xAA92)
MEASURE_CHAR_DURATION = _vendor(0xAA93)
MEASURE_CHAR_DATASTREAM = _vendor(0xAA94)

HEART_RATE_MEASUREMENT_ID = CharacteristicId(HEART_RATE_SERVICE, HEART_RATE_MEASUREMENT)
ACC_ENABLE_ID = CharacteristicId(LSM330_SERVICE, LSM330_CHAR_ACC_EN)
GYRO_ENABLE_ID = CharacteristicId(LSM330_SERVICE, LSM330_CHAR_GYRO_EN)
TEMP_SAMPLE_ID = CharacteristicId(LSM330_SERVICE, LSM330_CHAR_TEMP_SAMPLE)
ACC_FSCALE_ID = CharacteristicId(LSM330_SERVICE, LSM330_CHAR_ACC_FSCALE)
GYRO_FSCALE_ID = CharacteristicId(LSM330_SERVICE, LSM330_CHAR_GYRO_FSCALE)
ACC_ODR_ID = CharacteristicId(LSM330_SERVICE, LSM330_CHAR_ACC_ODR)
GYRO_ODR_ID = CharacteristicId(LSM330_SERVICE, LSM330_CHAR_GYRO_ODR)
TRIGGER_VAL_ID = CharacteristicId(LSM330_SERVICE, LSM330_CHAR_TRIGGER_VAL)
TRIGGER_AXIS_ID = CharacteristicId(LSM330_SERVICE, LSM330_CHAR_TRIGGER_AXIS)
MEASURE_START_ID = CharacteristicId(MEASURE_SERVICE, MEASURE_CHAR_START)
MEASURE_STOP_ID = CharacteristicId(MEASURE_SERVICE, MEASURE_CHAR_STOP)
MEASURE_DURATION_ID = CharacteristicId(MEASURE_SERVICE, MEASURE_CHAR_DURATION)
MEASURE_DATASTREAM_ID = CharacteristicId(MEASURE_SERVICE, MEASURE_CHAR_DATASTREAM)

# Client Characteristic Configuration values
ENABLE_NOTIFICATION_VALUE = b"\x01\x00"
DISABLE_NOTIFICATION_VALUE = b"\x00\x00"

_NAMES = {
    HEART_RATE_SERVICE: "Heart Rate Service",
    HEART_RATE_MEASUREMENT: "Heart Rate Measurement",
    DEVICE_INFORMATION_SERVICE: "Device Information Service",
    MANUFACTURER_NAME_STRING: "Manufacturer Name String",
    CLIENT_CHARACTERISTIC_CONFIG: "Client Characteristic Configuration",
    LSM330_SERVICE: "LSM330 Service",
    LSM330_CHAR_ACC_EN: "Accelerometer Enable",
    LSM330_CHAR_GYRO_EN: "Gyroscope Enable",
    LSM330_CHAR_TEMP_SAMPLE: "Temperature Sample",
    LSM330_CHAR_ACC_FSCALE: "Accelerometer Full Scale",
    LSM330_CHAR_GYRO_FSCALE: "Gyroscope Full Scale",
    LSM330_CHAR_ACC_ODR: "Accelerometer Output Data Rate",
    LSM330_CHAR_GYRO_ODR: "Gyroscope Output Data Rate",
    LSM330_CHAR_TRIGGER_VAL: "Trigger Value",
    LSM330_CHAR_TRIGGER_AXIS: "Trigger Axis",
    MEASURE_SERVICE: "Measurement Service",
    MEASURE_CHAR_START: "Measurement Start",
    MEASURE_CHAR_STOP: "Measurement Stop",
    MEASURE_CHAR_DURATION: "Measurement Duration",
    MEASURE_CHAR_DATASTREAM: "Measurement Datastream",
}


def lookup(uuid: str, default: Optional[str] = None) -> Optional[str]:
    """Return the human-readable name of a known service/characteristic UUID."""
    return _NAMES.get(uuid.lower(), default)
