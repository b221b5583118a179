"""Thin wrappers around the external tools the service depends on."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from typing import Callable, List, Sequence

import psutil

from .errors import ExternalToolFailure, Timeout

logger = logging.getLogger("auto-camera-control.process")

# Keep console windows from flashing when the service shells out.
_SUBPROCESS_FLAGS = subprocess.CREATE_NO_WINDOW if sys.platform == "win32" else 0

DEFAULT_COMMAND_TIMEOUT = 60.0


@dataclass(frozen=True)
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def error_text(self) -> str:
        error = (self.stderr or "").strip()
        return error if error else (self.stdout or "").strip()

    @property
    def command_line(self) -> str:
        return subprocess.list2cmdline(self.args)


CommandRunner = Callable[[Sequence[str], float], CommandResult]


def run_command(args: Sequence[str], timeout: float = DEFAULT_COMMAND_TIMEOUT) -> CommandResult:
    """Run a tool to completion, capturing both output streams.

    Raises `Timeout` when the tool does not finish in time (the child may keep
    running) and `ExternalToolFailure` when it cannot be launched.
    """
    argv = [str(arg) for arg in args]
    logger.debug("Running %s", subprocess.list2cmdline(argv))
    try:
        completed = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            creationflags=_SUBPROCESS_FLAGS,
        )
    except subprocess.TimeoutExpired as exc:
        raise Timeout(f"{argv[0]} did not finish within {timeout:g}s") from exc
    except OSError as exc:
        raise ExternalToolFailure(f"Unable to launch {argv[0]}: {exc}") from exc

    result = CommandResult(
        args=argv,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    logger.debug("%s exited with %s", argv[0], result.returncode)
    return result


def is_admin() -> bool:
    if os.name != "nt":
        return False
    try:
        import ctypes

        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except Exception:
        logger.warning("Unable to determine administrator rights.", exc_info=True)
        return False


def kill_processes_by_name(image_name: str, timeout: float = 5.0) -> int:
    """Force-terminate every process whose image name matches, except ourselves."""
    target = image_name.lower()
    if not target.endswith(".exe"):
        target_exe = f"{target}.exe"
    else:
        target_exe = target
    current_pid = os.getpid()

    victims = []
    for proc in psutil.process_iter(["pid", "name"]):
        try:
            name = (proc.info.get("name") or "").lower()
            if proc.pid == current_pid or name not in (target, target_exe):
                continue
            logger.warning("Force killing process: pid=%d name=%s", proc.pid, name)
            proc.kill()
            victims.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue

    if victims:
        _gone, alive = psutil.wait_procs(victims, timeout=timeout)
        for proc in alive:
            logger.warning("Process %d did not exit after kill.", proc.pid)
    return len(victims)
