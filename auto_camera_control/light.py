from __future__ import annotations

import logging
from typing import Optional, Protocol

from .config import SimpleConfig
from .event_log import EventId, event

try:
    from winrt.windows.devices.sensors import LightSensor

    WINRT_SENSORS_AVAILABLE = True
except ImportError:
    WINRT_SENSORS_AVAILABLE = False

logger = logging.getLogger("auto-camera-control.light")


class LightSource(Protocol):
    def is_available(self) -> bool: ...

    def read_lux(self) -> Optional[float]: ...


class AmbientLightSensor:
    """Default ambient light sensor exposed through WinRT, if any."""

    def is_available(self) -> bool:
        if not WINRT_SENSORS_AVAILABLE:
            return False
        try:
            return LightSensor.get_default() is not None
        except Exception:
            logger.debug("Light sensor lookup failed.", exc_info=True)
            return False

    def read_lux(self) -> Optional[float]:
        if not WINRT_SENSORS_AVAILABLE:
            return None
        try:
            sensor = LightSensor.get_default()
            if sensor is None:
                return None
            reading = sensor.get_current_reading()
            if reading is None:
                return None
            return float(reading.illuminance_in_lux)
        except Exception:
            logger.warning("Unable to read ambient light sensor.", exc_info=True)
            return None


def should_suppress_disable(config: SimpleConfig, current_lux: Optional[float]) -> bool:
    """Keep the camera enabled on lock only when the room is known to be bright.

    A missing reading counts as dark, so the camera still gets disabled.
    """
    if not config.enable_light_sensor:
        return False
    if current_lux is None:
        return False
    return current_lux >= config.light_threshold


class LightGate:
    """Lock-time override: reads the sensor only when gating is switched on."""

    def __init__(self, sensor: Optional[LightSource] = None):
        self.sensor = sensor if sensor is not None else AmbientLightSensor()

    def current_lux(self, config: SimpleConfig) -> Optional[float]:
        if not config.enable_light_sensor:
            return None
        if not self.sensor.is_available():
            logger.warning(
                "Light gating is enabled but no ambient light sensor is available.",
                extra=event(EventId.SENSOR_UNAVAILABLE),
            )
            return None
        return self.sensor.read_lux()

    def should_suppress_disable(self, config: SimpleConfig, current_lux: Optional[float]) -> bool:
        return should_suppress_disable(config, current_lux)
