from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

from . import APP_DIR_NAME
from .errors import ConfigIOFailure
from .event_log import EventId, event

CONFIG_ENV_VAR = "AUTO_CAMERA_CONTROL_CONFIG"

DEFAULT_LIGHT_THRESHOLD = 10.0
MIN_LIGHT_THRESHOLD = 0.1
MAX_LIGHT_THRESHOLD = 10000.0
# Thresholds below the minimum are reset to this value, not clamped to it.
LOW_THRESHOLD_RESET = 1.0


def default_config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    base = os.environ.get("PROGRAMDATA") or "C:\\ProgramData"
    return Path(base) / APP_DIR_NAME / "config.json"


def clamp_threshold(value: float) -> float:
    if not math.isfinite(value):
        raise ValueError("`lightThreshold` must be a finite number.")
    if value < MIN_LIGHT_THRESHOLD:
        return LOW_THRESHOLD_RESET
    if value > MAX_LIGHT_THRESHOLD:
        return MAX_LIGHT_THRESHOLD
    return value


@dataclass(frozen=True)
class SimpleConfig:
    target_camera_device_id: Optional[str] = None
    enable_light_sensor: bool = False
    light_threshold: float = DEFAULT_LIGHT_THRESHOLD

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimpleConfig":
        """Build a validated config from the camelCase JSON object.

        Keys are matched case-insensitively so files written by other tools
        import cleanly. Wrong types raise `ValueError`; an out-of-range
        threshold is corrected rather than rejected.
        """
        if not isinstance(data, dict):
            raise ValueError("Config root must be a JSON object.")
        lowered = {str(key).lower(): value for key, value in data.items()}

        target = lowered.get("targetcameradeviceid")
        if target is not None and not isinstance(target, str):
            raise ValueError("`targetCameraDeviceId` must be a string or null.")
        target = target.strip() if target else None

        enable_light_sensor = lowered.get("enablelightsensor", False)
        if not isinstance(enable_light_sensor, bool):
            raise ValueError("`enableLightSensor` must be true or false.")

        threshold = lowered.get("lightthreshold", DEFAULT_LIGHT_THRESHOLD)
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ValueError("`lightThreshold` must be a number.")
        threshold = float(threshold)
        if not math.isfinite(threshold):
            raise ValueError("`lightThreshold` must be a finite number.")

        return cls(
            target_camera_device_id=target or None,
            enable_light_sensor=enable_light_sensor,
            light_threshold=clamp_threshold(threshold),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targetCameraDeviceId": self.target_camera_device_id,
            "enableLightSensor": self.enable_light_sensor,
            "lightThreshold": self.light_threshold,
        }

    def validated(self) -> "SimpleConfig":
        return replace(self, light_threshold=clamp_threshold(float(self.light_threshold)))

    def with_changes(self, **changes: Any) -> "SimpleConfig":
        return replace(self, **changes).validated()


class ConfigStore:
    """Owns the on-disk config file. Saves replace the whole file atomically."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else default_config_path()
        self.logger = logging.getLogger("auto-camera-control.config")

    def load(self) -> SimpleConfig:
        try:
            with self.path.open("r", encoding="utf-8-sig") as handle:
                data = json.load(handle)
            config = SimpleConfig.from_dict(data)
            self.logger.info(
                "Loaded config from %s (target=%s, light_sensor=%s, threshold=%s)",
                self.path,
                config.target_camera_device_id,
                config.enable_light_sensor,
                config.light_threshold,
                extra=event(EventId.CONFIG_RELOADED),
            )
            return config
        except FileNotFoundError:
            self.logger.info("No config at %s, using defaults.", self.path)
        except Exception as exc:
            self.logger.error(
                "Failed to load config from %s: %s",
                self.path,
                exc,
                exc_info=True,
                extra=event(EventId.CONFIG_LOAD_FAILED),
            )
        return SimpleConfig()

    def save(self, config: SimpleConfig) -> SimpleConfig:
        config = config.validated()
        self._write(self.path, config)
        self.logger.info("Saved config to %s", self.path, extra=event(EventId.CONFIG_RELOADED))
        return config

    def export_to(self, destination: Path, config: Optional[SimpleConfig] = None) -> Path:
        config = config or self.load()
        destination = Path(destination)
        self._write(destination, config.validated())
        self.logger.info("Exported config to %s", destination, extra=event(EventId.CONFIG_RELOADED))
        return destination

    def import_from(self, source: Path) -> SimpleConfig:
        source = Path(source)
        try:
            with source.open("r", encoding="utf-8-sig") as handle:
                data = json.load(handle)
            config = SimpleConfig.from_dict(data)
        except (OSError, ValueError) as exc:
            self.logger.error(
                "Failed to import config from %s: %s",
                source,
                exc,
                extra=event(EventId.CONFIG_LOAD_FAILED),
            )
            raise ConfigIOFailure(f"Cannot import config from {source}: {exc}") from exc
        return self.save(config)

    def _write(self, path: Path, config: SimpleConfig) -> None:
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(config.to_dict(), handle, indent=2)
            tmp_path.replace(path)
        except OSError as exc:
            self.logger.error(
                "Unable to write config to %s: %s",
                path,
                exc,
                exc_info=True,
                extra=event(EventId.CONFIG_SAVE_FAILED),
            )
            raise ConfigIOFailure(f"Cannot write config to {path}: {exc}") from exc
