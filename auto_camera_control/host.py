"""Service-side wiring: config, device controller and session state machine.

Nothing here imports pywin32; `service.py` adapts these calls to the service
control manager.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from . import VERSION
from .config import ConfigStore, SimpleConfig
from .devices import DeviceController
from .event_log import EventId, event
from .light import LightGate
from .models import SessionEvent, SessionEventKind
from .process import is_admin
from .session import SessionStateMachine

WTS_SESSION_LOCK = 7
WTS_SESSION_UNLOCK = 8

_SESSION_EVENTS = {
    WTS_SESSION_LOCK: SessionEventKind.LOCK,
    WTS_SESSION_UNLOCK: SessionEventKind.UNLOCK,
}


class StartupError(Enum):
    NO_TARGET_DEVICE = "no_target_device"
    INSUFFICIENT_PRIVILEGE = "insufficient_privilege"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class StartupResult:
    error: Optional[StartupError] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


class ServiceHost:
    def __init__(
        self,
        store: Optional[ConfigStore] = None,
        controller: Optional[DeviceController] = None,
        light_gate: Optional[LightGate] = None,
        admin_check: Callable[[], bool] = is_admin,
        machine: Optional[SessionStateMachine] = None,
    ):
        self.store = store if store is not None else ConfigStore()
        self.controller = controller if controller is not None else DeviceController()
        self._admin_check = admin_check
        self.machine = machine if machine is not None else SessionStateMachine(
            self.controller, light_gate
        )
        self.logger = logging.getLogger("auto-camera-control.host")
        self.config: Optional[SimpleConfig] = None

    def start(self) -> StartupResult:
        """Load config and start monitoring. Failures are returned, never raised."""
        self.logger.info("Auto Camera Control %s starting.", VERSION)
        try:
            config = self.store.load()
            self.config = config
            if not config.target_camera_device_id:
                return self._startup_failed(
                    StartupError.NO_TARGET_DEVICE,
                    f"No target camera configured in {self.store.path}; "
                    "run `auto-camera-control configure --camera ID` first.",
                    EventId.INVALID_CONFIG,
                )
            if not self._admin_check():
                return self._startup_failed(
                    StartupError.INSUFFICIENT_PRIVILEGE,
                    "The service needs administrator rights to toggle devices.",
                    EventId.INSUFFICIENT_PERMISSIONS,
                )

            self.logger.info(
                "Light sensor gating %s (threshold %.1f lux).",
                "enabled" if config.enable_light_sensor else "disabled",
                config.light_threshold,
                extra=event(
                    EventId.LIGHT_SENSOR_ENABLED
                    if config.enable_light_sensor
                    else EventId.LIGHT_SENSOR_DISABLED
                ),
            )
            self.machine.start(config)
        except Exception as exc:
            self.logger.exception(
                "Service startup failed.", extra=event(EventId.MONITOR_START_FAILED)
            )
            return StartupResult(StartupError.UNEXPECTED, f"Startup failed: {exc}")
        return StartupResult()

    def on_session_change(self, event_type: int) -> bool:
        kind = _SESSION_EVENTS.get(event_type)
        if kind is None:
            self.logger.debug("Ignoring session change code %s.", event_type)
            return False
        return self.machine.on_session_change(SessionEvent(kind))

    def stop(self, timeout: float = 10.0) -> None:
        self.machine.stop(timeout)

    def _startup_failed(self, error: StartupError, message: str, event_id: EventId) -> StartupResult:
        self.logger.error(message, extra=event(event_id))
        return StartupResult(error, message)
