"""Camera enumeration and enable/disable through pnputil."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from .device_id import is_valid_pnp_device_id, same_device, to_pnp_device_id
from .errors import AutoCameraControlError, ExternalToolFailure
from .event_log import EventId, event
from .models import CameraDevice, DeviceState
from .process import CommandRunner, is_admin, run_command

PNPUTIL = "pnputil.exe"
# 3010: done, reboot required. 50: reported for already-applied changes on some builds.
SUCCESS_EXIT_CODES = frozenset({0, 3010, 50})
REBOOT_REQUIRED_EXIT_CODE = 3010
CM_PROB_DISABLED = 22

logger = logging.getLogger("auto-camera-control.devices")


class DeviceSource(Protocol):
    def enumerate(self) -> List[CameraDevice]: ...


class PnpCameraEnumerator:
    """Lists present Camera/Image class devices with `Get-PnpDevice`."""

    device_classes = ("Camera", "Image")

    def __init__(self, runner: CommandRunner = run_command, timeout: float = 15.0):
        self._runner = runner
        self.timeout = timeout

    def _script(self) -> str:
        classes = ",".join(self.device_classes)
        return (
            f"Get-PnpDevice -Class {classes} -PresentOnly -ErrorAction SilentlyContinue | "
            "Select-Object InstanceId,FriendlyName,Status,ConfigManagerErrorCode | "
            "ConvertTo-Json -Compress"
        )

    def enumerate(self) -> List[CameraDevice]:
        result = self._runner(
            ["powershell.exe", "-NoProfile", "-NonInteractive", "-Command", self._script()],
            self.timeout,
        )
        if not result.ok:
            raise ExternalToolFailure(
                f"Device enumeration failed: {result.error_text}",
                exit_code=result.returncode,
                output=result.error_text,
            )
        try:
            return parse_pnp_devices(result.stdout)
        except ValueError as exc:
            raise ExternalToolFailure(
                f"Unreadable device list from Get-PnpDevice: {exc}",
                exit_code=result.returncode,
                output=result.stdout,
            ) from exc


def _is_enabled(entry: Dict[str, Any]) -> bool:
    code = entry.get("ConfigManagerErrorCode")
    if code is None:
        return str(entry.get("Status") or "").upper() == "OK"
    return code not in (CM_PROB_DISABLED, str(CM_PROB_DISABLED), "CM_PROB_DISABLED")


def parse_pnp_devices(output: str) -> List[CameraDevice]:
    text = (output or "").strip()
    if not text:
        return []
    data = json.loads(text)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON object or array, got {type(data).__name__}")

    devices = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        instance_id = entry.get("InstanceId")
        if not instance_id:
            continue
        devices.append(
            CameraDevice(
                device_id=instance_id,
                name=entry.get("FriendlyName") or instance_id,
                is_enabled=_is_enabled(entry),
                description=str(entry.get("Status") or ""),
            )
        )
    return devices


class DeviceController:
    """Idempotent camera enable/disable.

    State is enumerated live on every call. Public methods log and return
    `False` instead of raising, so one failed toggle never takes the service down.
    """

    def __init__(
        self,
        source: Optional[DeviceSource] = None,
        runner: CommandRunner = run_command,
        admin_check: Callable[[], bool] = is_admin,
        tool: str = PNPUTIL,
        timeout: float = 60.0,
    ):
        self.source = source if source is not None else PnpCameraEnumerator(runner)
        self._runner = runner
        self._admin_check = admin_check
        self.tool = tool
        self.timeout = timeout

    def is_running_as_admin(self) -> bool:
        return self._admin_check()

    def list_cameras(self) -> List[CameraDevice]:
        try:
            cameras = list(self.source.enumerate())
        except Exception as exc:
            logger.error(
                "Camera enumeration failed: %s",
                exc,
                exc_info=True,
                extra=event(EventId.DEVICE_NOT_FOUND),
            )
            return []
        # Disabled devices first within a name, names descending.
        cameras.sort(key=lambda camera: camera.is_enabled)
        cameras.sort(key=lambda camera: camera.name, reverse=True)
        return cameras

    def find_device(self, device_id: str) -> Optional[CameraDevice]:
        for camera in self.source.enumerate():
            if camera.device_id == device_id or same_device(camera.device_id, device_id):
                return camera
        return None

    def get_state(self, device_id: str) -> DeviceState:
        camera = self.find_device(device_id)
        if camera is None:
            return DeviceState.NOT_FOUND
        return DeviceState.ENABLED if camera.is_enabled else DeviceState.DISABLED

    def get_enabled(self, device_id: str) -> bool:
        try:
            return self.get_state(device_id) is DeviceState.ENABLED
        except Exception:
            logger.warning("Unable to query state of %s.", device_id, exc_info=True)
            return False

    def enable(self, device_id: str) -> bool:
        return self._set_enabled(device_id, True)

    def disable(self, device_id: str) -> bool:
        return self._set_enabled(device_id, False)

    # ----------------------------------------------------------- INTERNALS --

    def _set_enabled(self, device_id: str, enabled: bool) -> bool:
        action = "enable" if enabled else "disable"
        if not device_id:
            logger.error("No camera device id given.", extra=event(EventId.DEVICE_NOT_FOUND))
            return False

        try:
            state = self.get_state(device_id)
        except Exception as exc:
            logger.error(
                "Cannot %s %s, state query failed: %s",
                action,
                device_id,
                exc,
                exc_info=True,
                extra=event(EventId.CAMERA_CONTROL_FAILED),
            )
            return False

        if enabled and state is DeviceState.ENABLED:
            logger.info(
                "Camera %s already enabled, nothing to do.",
                device_id,
                extra=event(EventId.CAMERA_ALREADY_ENABLED),
            )
            return True
        if not enabled and state is DeviceState.DISABLED:
            logger.info(
                "Camera %s already disabled, nothing to do.",
                device_id,
                extra=event(EventId.CAMERA_ALREADY_DISABLED),
            )
            return True
        if state is DeviceState.NOT_FOUND:
            logger.warning(
                "Camera %s not found, cannot %s it.",
                device_id,
                action,
                extra=event(EventId.DEVICE_NOT_FOUND),
            )
            return False

        if not self._admin_check():
            logger.error(
                "Administrator rights are required to %s camera %s.",
                action,
                device_id,
                extra=event(EventId.INSUFFICIENT_PERMISSIONS),
            )
            return False

        try:
            pnp_device_id = to_pnp_device_id(device_id)
            if not is_valid_pnp_device_id(pnp_device_id):
                logger.error(
                    "Refusing to pass suspicious device id %r to %s.",
                    pnp_device_id,
                    self.tool,
                    extra=event(EventId.SECURITY_VALIDATION_FAILED),
                )
                return False
            result = self._runner([self.tool, f"/{action}-device", pnp_device_id], self.timeout)
        except AutoCameraControlError as exc:
            logger.error(
                "Failed to %s camera %s: %s",
                action,
                device_id,
                exc,
                extra=event(EventId.CAMERA_CONTROL_FAILED),
            )
            return False
        except Exception:
            logger.exception(
                "Unexpected error trying to %s camera %s.",
                action,
                device_id,
                extra=event(EventId.CAMERA_CONTROL_FAILED),
            )
            return False

        if result.returncode in SUCCESS_EXIT_CODES:
            logger.info(
                "Camera %s %sd via %s (exit code %s%s).",
                pnp_device_id,
                action,
                self.tool,
                result.returncode,
                ", reboot required" if result.returncode == REBOOT_REQUIRED_EXIT_CODE else "",
                extra=event(EventId.CAMERA_ENABLED if enabled else EventId.CAMERA_DISABLED),
            )
            return True

        logger.error(
            "%s /%s-device failed with exit code %s for %s: %s",
            self.tool,
            action,
            result.returncode,
            pnp_device_id,
            result.error_text,
            extra=event(EventId.CAMERA_CONTROL_FAILED),
        )
        return False
