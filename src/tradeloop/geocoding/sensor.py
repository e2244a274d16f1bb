"""
Device location sensor capability.

Hosts supply an implementation of :class:`LocationSensor`. Error codes
follow the W3C Geolocation API numbering so browser-reported failures can be
passed through unchanged.
"""
from enum import IntEnum
from typing import Optional, Protocol

from tradeloop.geocoding.models import DevicePosition


class SensorErrorCode(IntEnum):
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


SENSOR_ERROR_MESSAGES = {
    SensorErrorCode.PERMISSION_DENIED: "Location access denied by user",
    SensorErrorCode.POSITION_UNAVAILABLE: "Location information unavailable",
    SensorErrorCode.TIMEOUT: "Location request timed out",
}
GENERIC_SENSOR_MESSAGE = "Failed to get location"
UNSUPPORTED_SENSOR_MESSAGE = "Geolocation is not supported on this device"


class LocationSensorError(Exception):
    """Raised by sensors; ``code`` is None for unclassified failures."""

    def __init__(self, code: Optional[int] = None, message: str = ""):
        super().__init__(message or f"location sensor error {code}")
        self.code = code


def sensor_error_message(code: Optional[int]) -> str:
    try:
        return SENSOR_ERROR_MESSAGES[SensorErrorCode(code)]
    except (ValueError, TypeError):
        return GENERIC_SENSOR_MESSAGE


class LocationSensor(Protocol):
    async def current_position(
        self,
        *,
        high_accuracy: bool,
        timeout: float,
        maximum_age: float,
    ) -> DevicePosition:
        ...


class ReportedPositionSensor:
    """
    Sensor backed by a fix the client already acquired, as posted to the API.
    """

    def __init__(self, position: Optional[DevicePosition] = None, error_code: Optional[int] = None):
        self.position = position
        self.error_code = error_code

    async def current_position(
        self,
        *,
        high_accuracy: bool,
        timeout: float,
        maximum_age: float,
    ) -> DevicePosition:
        if self.error_code is not None or self.position is None:
            raise LocationSensorError(self.error_code)
        return self.position
