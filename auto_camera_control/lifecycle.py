"""Install, remove, start and stop the Windows service through `sc.exe`.

Every public operation returns a `ServiceOperationResult`; nothing raises past
this module. Service state is queried fresh on every call because an
administrator may be poking at the same service with `sc` or services.msc.
"""

from __future__ import annotations

import functools
import logging
import os
import re
import shutil
import sys
import time
import traceback
from dataclasses import dataclass
from pathlib import PureWindowsPath
from typing import Callable, List, Optional

from . import SERVICE_DESCRIPTION, SERVICE_DISPLAY_NAME, SERVICE_NAME
from .errors import (
    AlreadyInstalled,
    AutoCameraControlError,
    ErrorKind,
    ExternalToolFailure,
    InsufficientPrivilege,
    InvalidExecutable,
    NotInstalled,
    Timeout,
)
from .event_log import EVENTLOG_AVAILABLE, EventId, event
from .models import ServiceOperationResult, ServiceState, ServiceStatus, StartType
from .process import CommandResult, CommandRunner, is_admin, kill_processes_by_name, run_command

SC = "sc.exe"
SERVICE_HOST_FLAG = "--service"
DEFAULT_PROCESS_NAME = "auto-camera-control"

SC_COMMAND_TIMEOUT = 30.0
RECOVERY_CONFIG_TIMEOUT = 10.0
TRANSITION_TIMEOUT = 30.0
POLL_INTERVAL = 0.5
INSTALL_SETTLE_SECONDS = 1.0
DESCRIPTION_RETRY_SETTLE_SECONDS = 0.5
UNINSTALL_SETTLE_SECONDS = 3.0
RESTART_SETTLE_SECONDS = 2.0

MAX_PATH = 260
INVALID_PATH_CHARS = frozenset('"<>|' + "".join(chr(code) for code in range(32)))

ERROR_SERVICE_ALREADY_RUNNING = 1056
ERROR_SERVICE_DOES_NOT_EXIST = 1060
ERROR_SERVICE_NOT_ACTIVE = 1062

# No automatic restart after a crash: a broken service should stay visibly stopped.
RECOVERY_RESET_SECONDS = "86400"
RECOVERY_ACTIONS = "none/0/none/0/none/0"

logger = logging.getLogger("auto-camera-control.lifecycle")

_STATE_RE = re.compile(r"^\s*STATE\s*:\s*(\d+)", re.MULTILINE)


@dataclass(frozen=True)
class ServiceQuery:
    state: ServiceState
    stoppable: bool = False
    pausable: bool = False


def parse_query_output(output: str) -> ServiceQuery:
    match = _STATE_RE.search(output or "")
    if not match:
        return ServiceQuery(state=ServiceState.UNKNOWN)
    upper = output.upper()
    return ServiceQuery(
        state=ServiceState.from_code(int(match.group(1))),
        stoppable="STOPPABLE" in upper and "NOT_STOPPABLE" not in upper,
        pausable="PAUSABLE" in upper and "NOT_PAUSABLE" not in upper,
    )


def parse_start_type(output: str) -> StartType:
    text = output or ""
    if "AUTO_START" in text:
        return StartType.AUTOMATIC
    if "DEMAND_START" in text:
        return StartType.MANUAL
    if "DISABLED" in text:
        return StartType.DISABLED
    return StartType.MANUAL


def parse_qc_field(output: str, key: str) -> Optional[str]:
    match = re.search(rf"^\s*{re.escape(key)}\s*:\s*(.*?)\s*$", output or "", re.MULTILINE)
    return match.group(1) if match else None


def executable_from_binary_path(binary_path: Optional[str]) -> Optional[str]:
    if not binary_path:
        return None
    binary_path = binary_path.strip()
    if binary_path.startswith('"'):
        end = binary_path.find('"', 1)
        return binary_path[1:end] if end > 0 else binary_path[1:]
    return binary_path.split(f" {SERVICE_HOST_FLAG}")[0].strip()


def default_executable_path() -> str:
    if getattr(sys, "frozen", False):
        return sys.executable
    return shutil.which(DEFAULT_PROCESS_NAME) or ""


def validate_executable(path: str) -> None:
    if not path:
        raise InvalidExecutable("Executable path is empty.")
    if any(char in INVALID_PATH_CHARS for char in path):
        raise InvalidExecutable(f"Executable path contains invalid characters: {path!r}")
    if len(path) > MAX_PATH:
        raise InvalidExecutable(f"Executable path is longer than {MAX_PATH} characters.")
    if not os.path.isfile(path):
        raise InvalidExecutable(f"Executable not found: {path}")
    try:
        with open(path, "rb") as handle:
            handle.read(1)
    except OSError as exc:
        raise InvalidExecutable(f"Cannot read executable {path}: {exc}") from exc


def _failure_details(exc: Exception) -> str:
    if isinstance(exc, ExternalToolFailure) and exc.output:
        return exc.output
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def _reports_result(action: str):
    """Turn any exception from a lifecycle operation into a failed result."""

    def decorator(func: Callable[..., ServiceOperationResult]):
        @functools.wraps(func)
        def wrapper(self: "ServiceLifecycleManager", *args, **kwargs) -> ServiceOperationResult:
            try:
                result = func(self, *args, **kwargs)
            except AutoCameraControlError as exc:
                result = ServiceOperationResult.fail(
                    f"{action} failed: {exc}", exc.kind, _failure_details(exc)
                )
            except Exception as exc:
                result = ServiceOperationResult.fail(
                    f"{action} failed: {exc}", ErrorKind.UNEXPECTED, _failure_details(exc)
                )
            if result.success:
                logger.info("%s: %s", action, result.message.splitlines()[0])
            else:
                logger.error(
                    "%s: %s", action, result.message, extra=event(EventId.SERVICE_OPERATION_FAILED)
                )
            return result

        return wrapper

    return decorator


class ServiceLifecycleManager:
    def __init__(
        self,
        service_name: str = SERVICE_NAME,
        display_name: str = SERVICE_DISPLAY_NAME,
        description: str = SERVICE_DESCRIPTION,
        runner: CommandRunner = run_command,
        admin_check: Callable[[], bool] = is_admin,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        process_killer: Callable[[str], int] = kill_processes_by_name,
        transition_timeout: float = TRANSITION_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
    ):
        self.service_name = service_name
        self.display_name = display_name
        self.description = description
        self.transition_timeout = transition_timeout
        self.poll_interval = poll_interval
        self._runner = runner
        self._admin_check = admin_check
        self._sleep = sleep
        self._clock = clock
        self._process_killer = process_killer

    # ------------------------------------------------------------- QUERIES --

    def query_state(self) -> Optional[ServiceQuery]:
        """Live `sc query`; `None` when the service does not exist."""
        result = self._sc("query", self.service_name)
        if result.returncode == ERROR_SERVICE_DOES_NOT_EXIST:
            return None
        self._raise_for(result, "query")
        return parse_query_output(result.stdout)

    def is_installed(self) -> bool:
        try:
            return self.query_state() is not None
        except AutoCameraControlError:
            logger.warning("Unable to query service %s.", self.service_name, exc_info=True)
            return False

    def query_start_type(self) -> StartType:
        result = self._sc("qc", self.service_name)
        self._raise_for(result, "qc")
        return parse_start_type(result.stdout)

    def get_status(self) -> ServiceStatus:
        has_admin = self._admin_check()
        try:
            query = self.query_state()
        except Exception as exc:
            return ServiceStatus(is_installed=False, has_admin_rights=has_admin, error_message=str(exc))
        if query is None:
            return ServiceStatus(is_installed=False, has_admin_rights=has_admin)

        try:
            start_type: Optional[StartType] = self.query_start_type()
        except Exception:
            logger.debug("Start type query failed.", exc_info=True)
            start_type = None

        running = query.state is ServiceState.RUNNING
        return ServiceStatus(
            is_installed=True,
            has_admin_rights=has_admin,
            status=query.state,
            can_start=query.state is ServiceState.STOPPED,
            can_stop=running and query.stoppable,
            can_pause=running and query.pausable,
            start_type=start_type,
            is_auto_start=start_type is StartType.AUTOMATIC,
        )

    # ---------------------------------------------------------- OPERATIONS --

    @_reports_result("Install")
    def install(self, executable_path: Optional[str] = None) -> ServiceOperationResult:
        if not self._admin_check():
            raise InsufficientPrivilege("Administrator rights are required to install the service.")

        executable = executable_path if executable_path is not None else default_executable_path()
        validate_executable(executable)

        if self.is_installed():
            raise AlreadyInstalled(f"Service {self.service_name} is already installed.")

        created = self._sc_checked(
            "create",
            self.service_name,
            "binPath=",
            f'"{executable}" {SERVICE_HOST_FLAG}',
            "DisplayName=",
            self.display_name,
            "start=",
            "auto",
            "obj=",
            "LocalSystem",
        )
        self._sleep(INSTALL_SETTLE_SECONDS)
        self._set_description()
        self._configure_recovery()

        message = f"Service {self.service_name} ({self.display_name}) installed for {executable}."
        validation = self.describe_installation()
        if validation.success:
            message = f"{message}\n\n{validation.message}"
        return ServiceOperationResult.ok(message, created.stdout.strip() or None)

    @_reports_result("Uninstall")
    def uninstall(self) -> ServiceOperationResult:
        if not self._admin_check():
            raise InsufficientPrivilege("Administrator rights are required to uninstall the service.")
        if not self.is_installed():
            raise NotInstalled(f"Service {self.service_name} is not installed.")

        process_name = self._host_process_name()
        stopped = self.stop()
        if not stopped.success:
            killed = self._force_kill(process_name)
            logger.warning(
                "Graceful stop failed (%s); force killed %d %s process(es).",
                stopped.message,
                killed,
                process_name,
            )
        self._sleep(UNINSTALL_SETTLE_SECONDS)

        self._sc_checked("delete", self.service_name)
        return ServiceOperationResult.ok(f"Service {self.service_name} uninstalled.")

    @_reports_result("Start")
    def start(self) -> ServiceOperationResult:
        query = self._require_installed()
        if query.state is ServiceState.RUNNING:
            return ServiceOperationResult.ok("Service is already running.")
        if query.state in (ServiceState.START_PENDING, ServiceState.CONTINUE_PENDING):
            return ServiceOperationResult.ok("Service start is already pending.")

        verb = "continue" if query.state is ServiceState.PAUSED else "start"
        result = self._sc(verb, self.service_name)
        if not result.ok and result.returncode != ERROR_SERVICE_ALREADY_RUNNING:
            self._raise_for(result, verb)

        self._wait_for(ServiceState.RUNNING)
        return ServiceOperationResult.ok("Service started.")

    @_reports_result("Stop")
    def stop(self) -> ServiceOperationResult:
        query = self._require_installed()
        if query.state is ServiceState.STOPPED:
            return ServiceOperationResult.ok("Service is already stopped.")
        if query.state is ServiceState.STOP_PENDING:
            return ServiceOperationResult.ok("Service stop is already pending.")
        if not query.stoppable:
            raise AutoCameraControlError(
                f"Service cannot be stopped while {query.state.name.lower()}."
            )

        result = self._sc("stop", self.service_name)
        if not result.ok and result.returncode != ERROR_SERVICE_NOT_ACTIVE:
            self._raise_for(result, "stop")

        self._wait_for(ServiceState.STOPPED)
        return ServiceOperationResult.ok("Service stopped.")

    @_reports_result("Restart")
    def restart(self) -> ServiceOperationResult:
        stopped = self.stop()
        if not stopped.success:
            return ServiceOperationResult.fail(
                f"Restart aborted, stop failed: {stopped.message}",
                stopped.error or ErrorKind.UNEXPECTED,
                stopped.error_details,
            )
        self._sleep(RESTART_SETTLE_SECONDS)
        started = self.start()
        if not started.success:
            return ServiceOperationResult.fail(
                f"Restart incomplete, start failed: {started.message}",
                started.error or ErrorKind.UNEXPECTED,
                started.error_details,
            )
        return ServiceOperationResult.ok("Service restarted.")

    @_reports_result("Validate installation")
    def describe_installation(self) -> ServiceOperationResult:
        query = self._require_installed()
        qc = self._sc_checked("qc", self.service_name)
        executable = executable_from_binary_path(parse_qc_field(qc.stdout, "BINARY_PATH_NAME"))

        lines = [
            f"State: {query.state.name.replace('_', ' ').title()}",
            f"Start type: {parse_start_type(qc.stdout).value}",
            f"Account: {parse_qc_field(qc.stdout, 'SERVICE_START_NAME') or 'unknown'}",
            f"Executable: {executable or 'unknown'}",
        ]
        if executable and os.path.isfile(executable):
            lines.append("Executable present on disk.")
        else:
            lines.append("Executable missing on disk.")
        return ServiceOperationResult.ok("Installation details:\n" + "\n".join(lines))

    @_reports_result("Environment check")
    def check_environment(self) -> ServiceOperationResult:
        issues: List[str] = []
        warnings: List[str] = []

        if sys.platform != "win32":
            issues.append("Windows is required.")
        if not self._admin_check():
            warnings.append("Not running as administrator; install, uninstall and camera control will fail.")
        try:
            scm_query = self._sc("query", "EventLog")
            if not scm_query.ok:
                warnings.append(f"Service control manager query failed: {scm_query.error_text}")
        except AutoCameraControlError as exc:
            warnings.append(f"Service control manager not reachable: {exc}")
        if not EVENTLOG_AVAILABLE:
            warnings.append("Windows event log API unavailable; logs go to file only.")

        message = "Environment check complete."
        if issues:
            message += "\nIssues:\n- " + "\n- ".join(issues)
        if warnings:
            message += "\nWarnings:\n- " + "\n- ".join(warnings)
        if not issues and not warnings:
            message += " No problems found."
        if issues:
            return ServiceOperationResult.fail(message, ErrorKind.UNEXPECTED)
        return ServiceOperationResult.ok(message)

    # ----------------------------------------------------------- INTERNALS --

    def _sc(self, *args: str, timeout: float = SC_COMMAND_TIMEOUT) -> CommandResult:
        return self._runner([SC, *args], timeout)

    def _sc_checked(self, *args: str, timeout: float = SC_COMMAND_TIMEOUT) -> CommandResult:
        result = self._sc(*args, timeout=timeout)
        self._raise_for(result, args[0])
        return result

    @staticmethod
    def _raise_for(result: CommandResult, verb: str) -> None:
        if result.ok:
            return
        raise ExternalToolFailure(
            f"sc {verb} exited with {result.returncode}: {result.error_text}",
            exit_code=result.returncode,
            output=f"Command: {result.command_line}\nOutput: {result.stdout}\nError: {result.stderr}",
        )

    def _require_installed(self) -> ServiceQuery:
        query = self.query_state()
        if query is None:
            raise NotInstalled(f"Service {self.service_name} is not installed.")
        return query

    def _wait_for(self, target: ServiceState) -> None:
        deadline = self._clock() + self.transition_timeout
        last_state: Optional[ServiceState] = None
        while True:
            query = self.query_state()
            if query is None:
                if target is ServiceState.STOPPED:
                    return
            else:
                last_state = query.state
                if query.state is target:
                    return
            if self._clock() >= deadline:
                raise Timeout(
                    f"Service did not reach {target.name} within {self.transition_timeout:g}s "
                    f"(last state: {last_state.name if last_state else 'unknown'})."
                )
            self._sleep(self.poll_interval)

    def _set_description(self) -> bool:
        try:
            primary = self._sc("config", self.service_name, "description=", self.description)
            if primary.ok:
                return True
            logger.warning("sc config description= failed: %s", primary.error_text)
            self._sleep(DESCRIPTION_RETRY_SETTLE_SECONDS)
            fallback = self._sc("description", self.service_name, self.description)
            if not fallback.ok:
                logger.warning("sc description failed as well: %s", fallback.error_text)
            return fallback.ok
        except AutoCameraControlError as exc:
            logger.warning("Unable to set service description: %s", exc)
            return False

    def _configure_recovery(self) -> bool:
        try:
            result = self._sc(
                "failure",
                self.service_name,
                "reset=",
                RECOVERY_RESET_SECONDS,
                "actions=",
                RECOVERY_ACTIONS,
                timeout=RECOVERY_CONFIG_TIMEOUT,
            )
        except AutoCameraControlError as exc:
            logger.warning("Unable to configure failure actions: %s", exc)
            return False
        if not result.ok:
            logger.warning("sc failure exited with %s: %s", result.returncode, result.error_text)
        return result.ok

    def _host_process_name(self) -> str:
        try:
            qc = self._sc("qc", self.service_name)
            executable = executable_from_binary_path(parse_qc_field(qc.stdout, "BINARY_PATH_NAME"))
        except AutoCameraControlError:
            executable = None
        return PureWindowsPath(executable).name if executable else DEFAULT_PROCESS_NAME

    def _force_kill(self, process_name: str) -> int:
        try:
            return self._process_killer(process_name)
        except Exception:
            logger.warning("Force kill of %s failed.", process_name, exc_info=True)
            return 0
