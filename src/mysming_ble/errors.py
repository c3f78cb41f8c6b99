"""Exceptions raised by the synchronous entry points of the sensor client.

Asynchronous outcomes (connection result, discovery, read/write completion)
are never raised; they are reported as notifications on the event channel.
"""

from __future__ import annotations


class SensorClientError(Exception):
    """Base class for all driver errors."""


class AdapterUnavailable(SensorClientError):
    """No Bluetooth adapter could be obtained (hardware absent or disabled)."""


class NotInitialized(SensorClientError):
    """Operation requested before initialize() or without a target address."""


class DeviceNotFound(SensorClientError):
    """The given address does not resolve to a remote device."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Device not found: {address!r}")
        self.address = address


class OperationRejected(SensorClientError):
    """The transport synchronously refused an operation."""


class NotMeasuring(SensorClientError):
    """stop_measurement() was called while no measurement run is active."""
