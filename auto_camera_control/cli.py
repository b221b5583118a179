"""Command line entry point.

`auto-camera-control --service` is what the service control manager runs;
everything else is an operator command.
"""

from __future__ import annotations

import argparse
import logging
import math
import os
import sys
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence

from . import SERVICE_NAME, VERSION
from .config import CONFIG_ENV_VAR, ConfigStore, SimpleConfig
from .devices import DeviceController
from .errors import AutoCameraControlError, ConfigIOFailure
from .event_log import ExceptionGuard, setup_logging
from .lifecycle import ServiceLifecycleManager
from .light import AmbientLightSensor
from .models import ServiceOperationResult, ServiceStatus

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

logger = logging.getLogger("auto-camera-control")


def _on_off(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("on", "true", "yes", "1"):
        return True
    if lowered in ("off", "false", "no", "0"):
        return False
    raise argparse.ArgumentTypeError(f"expected on or off, got {value!r}")


def _lux(value: str) -> float:
    try:
        lux = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from None
    if not math.isfinite(lux):
        raise argparse.ArgumentTypeError(f"not a finite number: {value!r}")
    return lux


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="auto-camera-control",
        description="Disable the IR camera while the workstation is locked.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument(
        "--service",
        action="store_true",
        help="Run as the Windows service (used by the service control manager)",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    install = sub.add_parser("install", help="Install the service (administrator)")
    install.add_argument("--exe", default=None, help="Executable the service should run")
    sub.add_parser("uninstall", help="Stop and remove the service (administrator)")
    sub.add_parser("start", help="Start the service")
    sub.add_parser("stop", help="Stop the service")
    sub.add_parser("restart", help="Stop, then start the service")
    sub.add_parser("status", help="Show service status and configuration")
    sub.add_parser("check", help="Check the environment for common problems")
    sub.add_parser("cameras", help="List camera devices")
    sub.add_parser("light", help="Show the ambient light sensor reading")

    enable = sub.add_parser("enable-camera", help="Enable a camera device (administrator)")
    enable.add_argument("device_id")
    disable = sub.add_parser("disable-camera", help="Disable a camera device (administrator)")
    disable.add_argument("device_id")

    configure = sub.add_parser("configure", help="Change and save the configuration")
    configure.add_argument("--camera", default=None, help="Target camera device id")
    configure.add_argument("--light-sensor", type=_on_off, default=None, metavar="on|off")
    configure.add_argument("--threshold", type=_lux, default=None, metavar="LUX")

    export = sub.add_parser("export-config", help="Write the current configuration to a file")
    export.add_argument("path", type=Path)
    import_ = sub.add_parser("import-config", help="Load a configuration file and save it")
    import_.add_argument("path", type=Path)
    return parser


def _print_result(result: ServiceOperationResult, verbose: bool) -> int:
    print(result.message)
    if not result.success:
        if result.error is not None:
            print(f"Error: {result.error.value}", file=sys.stderr)
        if verbose and result.error_details:
            print(result.error_details, file=sys.stderr)
        return EXIT_FAILURE
    return EXIT_OK


def _format_status(status: ServiceStatus, config: SimpleConfig, config_path: Path) -> str:
    lines = [f"Service {SERVICE_NAME}:"]
    if status.error_message:
        lines.append(f"  query failed: {status.error_message}")
    elif not status.is_installed:
        lines.append("  not installed")
    else:
        lines.append(f"  state: {status.status.name if status.status else 'unknown'}")
        lines.append(f"  start type: {status.start_type.value if status.start_type else 'unknown'}")
        lines.append(
            f"  can start: {status.can_start}, can stop: {status.can_stop}, "
            f"can pause: {status.can_pause}"
        )
    lines.append(f"  administrator: {status.has_admin_rights}")
    lines.append(f"Configuration ({config_path}):")
    lines.append(f"  target camera: {config.target_camera_device_id or '(none)'}")
    lines.append(f"  light sensor: {'on' if config.enable_light_sensor else 'off'}")
    lines.append(f"  threshold: {config.light_threshold:g} lux")
    return "\n".join(lines)


class Commands:
    """One method per operator subcommand; each returns a process exit code."""

    def __init__(
        self,
        store: ConfigStore,
        lifecycle: Optional[ServiceLifecycleManager] = None,
        controller: Optional[DeviceController] = None,
        light_sensor: Optional[AmbientLightSensor] = None,
        verbose: bool = False,
    ):
        self.store = store
        self.lifecycle = lifecycle if lifecycle is not None else ServiceLifecycleManager()
        self.controller = controller if controller is not None else DeviceController()
        self.light_sensor = light_sensor if light_sensor is not None else AmbientLightSensor()
        self.verbose = verbose

    def dispatch(self, args: argparse.Namespace) -> int:
        handlers: Dict[str, Callable[[argparse.Namespace], int]] = {
            "install": lambda a: self._result(self.lifecycle.install(a.exe)),
            "uninstall": lambda a: self._result(self.lifecycle.uninstall()),
            "start": lambda a: self._result(self.lifecycle.start()),
            "stop": lambda a: self._result(self.lifecycle.stop()),
            "restart": lambda a: self._result(self.lifecycle.restart()),
            "check": lambda a: self._result(self.lifecycle.check_environment()),
            "status": self.status,
            "cameras": self.cameras,
            "light": self.light,
            "enable-camera": lambda a: self._toggle(a.device_id, True),
            "disable-camera": lambda a: self._toggle(a.device_id, False),
            "configure": self.configure,
            "export-config": self.export_config,
            "import-config": self.import_config,
        }
        return handlers[args.command](args)

    def _result(self, result: ServiceOperationResult) -> int:
        return _print_result(result, self.verbose)

    def status(self, args: argparse.Namespace) -> int:
        print(_format_status(self.lifecycle.get_status(), self.store.load(), self.store.path))
        return EXIT_OK

    def cameras(self, args: argparse.Namespace) -> int:
        target = self.store.load().target_camera_device_id
        cameras = self.controller.list_cameras()
        if not cameras:
            print("No camera devices found.")
            return EXIT_FAILURE
        for camera in cameras:
            marker = "*" if target and camera.device_id.lower() == target.lower() else " "
            state = "enabled" if camera.is_enabled else "disabled"
            print(f"{marker} {camera.name} [{state}]\n    {camera.device_id}")
        return EXIT_OK

    def light(self, args: argparse.Namespace) -> int:
        config = self.store.load()
        if not self.light_sensor.is_available():
            print("No ambient light sensor available.")
            return EXIT_FAILURE
        lux = self.light_sensor.read_lux()
        if lux is None:
            print("Ambient light sensor returned no reading.")
            return EXIT_FAILURE
        print(f"Ambient light: {lux:.1f} lux (threshold {config.light_threshold:g} lux, "
              f"gating {'on' if config.enable_light_sensor else 'off'})")
        return EXIT_OK

    def _toggle(self, device_id: str, enabled: bool) -> int:
        ok = self.controller.enable(device_id) if enabled else self.controller.disable(device_id)
        action = "enable" if enabled else "disable"
        print(f"{action.capitalize()}d {device_id}." if ok else f"Failed to {action} {device_id}.")
        return EXIT_OK if ok else EXIT_FAILURE

    def configure(self, args: argparse.Namespace) -> int:
        changes = {}
        if args.camera is not None:
            camera = args.camera.strip()
            changes["target_camera_device_id"] = camera or None
            if camera:
                self._warn_if_absent(camera)
        if args.light_sensor is not None:
            changes["enable_light_sensor"] = args.light_sensor
        if args.threshold is not None:
            changes["light_threshold"] = args.threshold
        if not changes:
            print("Nothing to change; pass --camera, --light-sensor or --threshold.", file=sys.stderr)
            return EXIT_USAGE

        try:
            saved = self.store.save(self.store.load().with_changes(**changes))
        except (ConfigIOFailure, ValueError) as exc:
            print(str(exc), file=sys.stderr)
            return EXIT_USAGE
        print(f"Saved {self.store.path}. Restart the service to apply.")
        print(f"  target camera: {saved.target_camera_device_id or '(none)'}")
        print(f"  light sensor: {'on' if saved.enable_light_sensor else 'off'}")
        print(f"  threshold: {saved.light_threshold:g} lux")
        return EXIT_OK

    def _warn_if_absent(self, camera: str) -> None:
        try:
            present = self.controller.find_device(camera) is not None
        except AutoCameraControlError as exc:
            logger.warning("Could not check for camera %s: %s", camera, exc)
            return
        if not present:
            logger.warning("Camera %s is not present right now; saving anyway.", camera)

    def export_config(self, args: argparse.Namespace) -> int:
        try:
            destination = self.store.export_to(args.path)
        except ConfigIOFailure as exc:
            print(str(exc), file=sys.stderr)
            return EXIT_USAGE
        print(f"Exported configuration to {destination}.")
        return EXIT_OK

    def import_config(self, args: argparse.Namespace) -> int:
        try:
            self.store.import_from(args.path)
        except ConfigIOFailure as exc:
            print(str(exc), file=sys.stderr)
            return EXIT_USAGE
        print(f"Imported {args.path} into {self.store.path}. Restart the service to apply.")
        return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.service:
        if args.config is not None:
            # The service class is built by servicemanager, so the path travels via the environment.
            os.environ[CONFIG_ENV_VAR] = str(args.config)
        setup_logging(service_mode=True, verbose=args.verbose)
        guard = ExceptionGuard(logger)
        guard.install()
        # Imported here so operator commands work without pywin32 service support.
        from .service import run_service

        try:
            return run_service()
        finally:
            guard.uninstall()

    if not args.command:
        parser.print_help()
        return EXIT_USAGE

    setup_logging(service_mode=False, verbose=args.verbose)
    commands = Commands(ConfigStore(args.config), verbose=args.verbose)
    return commands.dispatch(args)


if __name__ == "__main__":
    sys.exit(main())
