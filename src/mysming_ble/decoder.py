"""Characteristic payload decoding.

Turns raw characteristic values into the human-readable strings carried by
DATA_AVAILABLE / DATA_WRITTEN notifications. Decoding is stateless and never
raises on malformed input; payloads that cannot be decoded yield ``None``.
"""

from __future__ import annotations

import logging
import struct
from typing import Optional, Union

from .gatt_attributes import (
    HEART_RATE_MEASUREMENT,
    LSM330_CHAR_TEMP_SAMPLE,
    CharacteristicId,
)

logger = logging.getLogger(__name__)

# Heart Rate Measurement flags, bit 0: value format (0 = UINT8, 1 = UINT16)
HEART_RATE_FORMAT_UINT16 = 0x01


def heart_rate_flags(value: bytes) -> int:
    """Return the flags field (first byte) of a Heart Rate Measurement value."""
    return value[0] if value else 0


def _decode_heart_rate(value: bytes, format_flags: int) -> Optional[str]:
    if format_flags & HEART_RATE_FORMAT_UINT16:
        fmt = "<H"
        logger.debug("Heart rate format UINT16.")
    else:
        fmt = "<B"
        logger.debug("Heart rate format UINT8.")

    if len(value) < 1 + struct.calcsize(fmt):
        logger.debug("Heart rate payload too short: %d bytes", len(value))
        return None

    (heart_rate,) = struct.unpack_from(fmt, value, 1)
    logger.debug("Received heart rate: %d", heart_rate)
    return str(heart_rate)


def _hex_dump(value: bytes) -> str:
    return "".join(f"{b:02X} " for b in value)


def decode(
    characteristic: Union[CharacteristicId, str],
    value: Optional[bytes],
    format_flags: int = 0,
) -> Optional[str]:
    """Decode a characteristic value into a display string.

    Args:
        characteristic: Identity of the characteristic the value belongs to,
            either a ``CharacteristicId`` or a bare characteristic UUID.
        value: Raw payload as received from (or written to) the peripheral.
        format_flags: Declared format flags. Only consulted for the heart rate
            measurement, where bit 0 selects a 16-bit little-endian value.

    Returns:
        - heart rate: the beats-per-minute value at byte offset 1, in decimal
        - temperature sample: the first byte as a signed decimal
        - anything else: the payload as text followed by a ``"%02X "`` dump
        - ``None`` for an empty payload
    """
    if not value:
        return None

    uuid = (
        characteristic.characteristic
        if isinstance(characteristic, CharacteristicId)
        else characteristic
    ).lower()

    if uuid == HEART_RATE_MEASUREMENT:
        return _decode_heart_rate(value, format_flags)

    if uuid == LSM330_CHAR_TEMP_SAMPLE:
        (temperature,) = struct.unpack_from("<b", value)
        return str(temperature)

    return value.decode("utf-8", errors="replace") + _hex_dump(value)
