"""Shared fakes for the test suite.

Nothing here touches Windows: the tool runner, the service control manager,
the clock and the light sensor are all replaced with in-memory stand-ins.
"""

from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from auto_camera_control.config import CONFIG_ENV_VAR
from auto_camera_control.models import CameraDevice, ServiceState
from auto_camera_control.process import CommandResult

INSTANCE_ID = "USB\\VID_04F2&PID_B7E8&MI_00\\7&37c306d&1&0000"
INTERFACE_PATH = (
    "\\\\?\\USB#VID_04F2&PID_B7E8&MI_00#7&37c306d&1&0000"
    "#{e5323777-f976-4f5b-9b55-b94699c46e44}\\GLOBAL"
)


# =============================================================================
# Environment
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every well-known Windows folder at the test's temp dir."""
    monkeypatch.setenv("PROGRAMDATA", str(tmp_path / "ProgramData"))
    monkeypatch.setenv("LOCALAPPDATA", str(tmp_path / "LocalAppData"))
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    return tmp_path


# =============================================================================
# Fakes
# =============================================================================

class FakeRunner:
    """Records tool invocations and answers with a fixed exit code."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "", error=None):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.error = error
        self.calls: List[Tuple[List[str], float]] = []

    def __call__(self, args: Sequence[str], timeout: float) -> CommandResult:
        self.calls.append((list(args), timeout))
        if self.error is not None:
            raise self.error
        return CommandResult(list(args), self.returncode, self.stdout, self.stderr)

    @property
    def argv(self) -> List[List[str]]:
        return [args for args, _timeout in self.calls]


class FakeDeviceSource:
    def __init__(self, *cameras: CameraDevice):
        self.cameras = list(cameras)
        self.enumerations = 0

    def enumerate(self) -> List[CameraDevice]:
        self.enumerations += 1
        return list(self.cameras)


class FakeClock:
    """Monotonic clock that only advances when `sleep` is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeLightSensor:
    def __init__(self, lux: Optional[float] = None, available: bool = True):
        self.lux = lux
        self.available = available
        self.reads = 0

    def is_available(self) -> bool:
        return self.available

    def read_lux(self) -> Optional[float]:
        self.reads += 1
        return self.lux


class RecordingController:
    """Stands in for DeviceController in state machine tests."""

    def __init__(self, result: bool = True, fail_on: Optional[str] = None):
        self.result = result
        self.fail_on = fail_on
        self.calls: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def _record(self, action: str, device_id: str) -> bool:
        with self._lock:
            self.calls.append((action, device_id))
        if action == self.fail_on:
            raise RuntimeError(f"{action} exploded")
        return self.result

    def enable(self, device_id: str) -> bool:
        return self._record("enable", device_id)

    def disable(self, device_id: str) -> bool:
        return self._record("disable", device_id)


_STATE_LINES = {
    ServiceState.STOPPED: "1  STOPPED",
    ServiceState.START_PENDING: "2  START_PENDING",
    ServiceState.STOP_PENDING: "3  STOP_PENDING",
    ServiceState.RUNNING: "4  RUNNING",
    ServiceState.PAUSED: "7  PAUSED",
}

_START_TYPE_LINES = {
    "auto": "2   AUTO_START",
    "demand": "3   DEMAND_START",
    "disabled": "4   DISABLED",
}


class FakeServiceControl:
    """Simulates `sc.exe` for one service.

    `pending_polls` is how many queries a start/stop stays pending for;
    `stuck=True` keeps it pending forever.
    """

    def __init__(
        self,
        installed: bool = True,
        state: ServiceState = ServiceState.STOPPED,
        stoppable: bool = True,
        pending_polls: int = 0,
        stuck: bool = False,
        start_type: str = "auto",
    ):
        self.installed = installed
        self.state = state
        self.stoppable = stoppable
        self.pending_polls = pending_polls
        self.stuck = stuck
        self.start_type = start_type
        self.binary_path = '"C:\\Program Files\\AutoCameraControl\\auto-camera-control.exe" --service'
        self.failures: Dict[str, Tuple[int, str]] = {}
        self.calls: List[Tuple[List[str], float]] = []
        self._pending_left = 0
        self._pending_target: Optional[ServiceState] = None

    def fail(self, verb: str, code: int = 1, stderr: str = "") -> None:
        self.failures[verb] = (code, stderr or f"[SC] {verb} FAILED {code}")

    @property
    def verbs(self) -> List[str]:
        return [args[1] for args, _timeout in self.calls]

    def call(self, verb: str) -> List[str]:
        return next(args for args, _timeout in self.calls if args[1] == verb)

    def __call__(self, args: Sequence[str], timeout: float) -> CommandResult:
        args = list(args)
        self.calls.append((args, timeout))
        assert args[0] == "sc.exe"
        verb = args[1]

        if verb in self.failures:
            code, stderr = self.failures[verb]
            return CommandResult(args, code, "", stderr)
        if verb == "query" and args[2] == "EventLog":
            return CommandResult(args, 0, self._query_text(ServiceState.RUNNING, True))
        if verb == "create":
            if self.installed:
                return CommandResult(args, 1073, "[SC] CreateService FAILED 1073")
            self.installed = True
            self.state = ServiceState.STOPPED
            self.binary_path = args[4]
            return CommandResult(args, 0, "[SC] CreateService SUCCESS")
        if not self.installed:
            return CommandResult(args, 1060, "[SC] OpenService FAILED 1060:\n\nThe specified service does not exist.")

        handler = getattr(self, f"_{verb}", None)
        if handler is None:
            return CommandResult(args, 0, f"[SC] {verb} SUCCESS")
        return handler(args)

    def _query_text(self, state: ServiceState, stoppable: bool) -> str:
        flags = "STOPPABLE" if stoppable else "NOT_STOPPABLE"
        return (
            "\nSERVICE_NAME: AutoCameraControlService\n"
            "        TYPE               : 10  WIN32_OWN_PROCESS\n"
            f"        STATE              : {_STATE_LINES[state]}\n"
            f"                                ({flags}, NOT_PAUSABLE, ACCEPTS_SHUTDOWN)\n"
            "        WIN32_EXIT_CODE    : 0  (0x0)\n"
        )

    def _query(self, args):
        if self._pending_target is not None and not self.stuck:
            if self._pending_left <= 0:
                self.state = self._pending_target
                self._pending_target = None
            else:
                self._pending_left -= 1
        stoppable = self.stoppable and self.state is ServiceState.RUNNING
        return CommandResult(args, 0, self._query_text(self.state, stoppable))

    def _transition(self, pending: ServiceState, target: ServiceState) -> None:
        if self.pending_polls or self.stuck:
            self.state = pending
            self._pending_left = self.pending_polls
            self._pending_target = target
        else:
            self.state = target

    def _start(self, args):
        if self.state is ServiceState.RUNNING:
            return CommandResult(args, 1056, "[SC] StartService FAILED 1056")
        self._transition(ServiceState.START_PENDING, ServiceState.RUNNING)
        return CommandResult(args, 0, self._query_text(self.state, False))

    def _continue(self, args):
        self._transition(ServiceState.START_PENDING, ServiceState.RUNNING)
        return CommandResult(args, 0, "")

    def _stop(self, args):
        if self.state is ServiceState.STOPPED:
            return CommandResult(args, 1062, "[SC] ControlService FAILED 1062")
        self._transition(ServiceState.STOP_PENDING, ServiceState.STOPPED)
        return CommandResult(args, 0, self._query_text(self.state, False))

    def _qc(self, args):
        return CommandResult(
            args,
            0,
            "[SC] QueryServiceConfig SUCCESS\n\n"
            "SERVICE_NAME: AutoCameraControlService\n"
            "        TYPE               : 10  WIN32_OWN_PROCESS\n"
            f"        START_TYPE         : {_START_TYPE_LINES[self.start_type]}\n"
            "        ERROR_CONTROL      : 1   NORMAL\n"
            f"        BINARY_PATH_NAME   : {self.binary_path}\n"
            "        DISPLAY_NAME       : Auto Camera Control\n"
            "        SERVICE_START_NAME : LocalSystem\n",
        )

    def _delete(self, args):
        self.installed = False
        return CommandResult(args, 0, "[SC] DeleteService SUCCESS")


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ir_camera() -> CameraDevice:
    return CameraDevice(device_id=INSTANCE_ID, name="Integrated IR Camera", is_enabled=True)
