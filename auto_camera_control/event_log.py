"""Logging plumbing: event ids, the Windows event log sink and the crash guard."""

from __future__ import annotations

import logging
import os
import sys
import threading
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import Optional

from . import APP_DIR_NAME

try:
    import win32evtlog
    import win32evtlogutil

    EVENTLOG_AVAILABLE = True
except ImportError:
    EVENTLOG_AVAILABLE = False

EVENT_SOURCE_NAME = "AutoCameraControl"
EVENT_LOG_NAME = "Application"
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


class EventId(IntEnum):
    # Information 1000-1999
    SERVICE_STARTED = 1001
    SERVICE_STOPPED = 1002
    CAMERA_ENABLED = 1003
    CAMERA_DISABLED = 1004
    CONFIG_RELOADED = 1005
    LOCK_SCREEN_LIGHT_SUFFICIENT = 1006
    UNLOCK_CAMERA_ALREADY_ENABLED = 1007
    LIGHT_SENSOR_ENABLED = 1008
    LIGHT_SENSOR_DISABLED = 1009
    CAMERA_CONTROL_TRIGGERED = 1010
    CAMERA_ALREADY_ENABLED = 1011
    CAMERA_ALREADY_DISABLED = 1012
    SESSION_SWITCH_DETECTED = 1013
    # Warning 2000-2999
    INVALID_CONFIG = 2001
    SENSOR_UNAVAILABLE = 2002
    DEVICE_NOT_FOUND = 2003
    INSUFFICIENT_PERMISSIONS = 2004
    CONFIGURATION_ERROR = 2005
    # Error 3000-3999
    CAMERA_CONTROL_FAILED = 3001
    SERVICE_EXCEPTION = 3002
    CONFIG_LOAD_FAILED = 3003
    CONFIG_SAVE_FAILED = 3004
    MONITOR_START_FAILED = 3005
    SECURITY_VALIDATION_FAILED = 3006
    SERVICE_OPERATION_FAILED = 3007


def event(event_id: EventId) -> dict:
    """`extra=` payload that tags a log record with its event id."""
    return {"event_id": int(event_id)}


def default_log_dir() -> Path:
    base = os.environ.get("LOCALAPPDATA")
    root = Path(base) if base else Path.home() / "AppData" / "Local"
    return root / APP_DIR_NAME / "Logs"


class EventLogHandler(logging.Handler):
    """Writes to the Application event log, degrading to a daily file, then stderr.

    `logging.Handler.handle` holds `self.lock` around `emit`, so the decision to
    downgrade from the event log to the file is never interleaved between threads.
    Informational records go to the file only.
    """

    def __init__(self, log_dir: Optional[Path] = None, source: str = EVENT_SOURCE_NAME):
        super().__init__()
        self.source = source
        self.log_dir = Path(log_dir) if log_dir else default_log_dir()
        self._event_log_available = False

    @property
    def event_log_available(self) -> bool:
        return self._event_log_available

    def initialize(self) -> bool:
        if not EVENTLOG_AVAILABLE:
            self._write_file("WARNING", int(EventId.SERVICE_EXCEPTION),
                             "Windows event log API unavailable; using file log.")
            return False
        try:
            win32evtlogutil.AddSourceToRegistry(self.source, eventLogType=EVENT_LOG_NAME)
            self._event_log_available = True
        except Exception as exc:
            self._event_log_available = False
            self._write_file(
                "WARNING",
                int(EventId.SERVICE_EXCEPTION),
                f"Event log initialisation failed, using file log: {exc}",
            )
        return self._event_log_available

    def log_file_path(self, when: Optional[datetime] = None) -> Path:
        stamp = (when or datetime.now()).strftime("%Y%m%d")
        return self.log_dir / f"{APP_DIR_NAME}_{stamp}.log"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        event_id = int(getattr(record, "event_id", 0) or 0)

        if self._event_log_available and record.levelno >= logging.WARNING:
            try:
                self._write_event_log(record.levelno, event_id, message)
                return
            except Exception as exc:
                self._event_log_available = False
                message = f"{message} (event log write failed: {exc})"
        self._write_file(record.levelname, event_id, message, record)

    def _write_event_log(self, levelno: int, event_id: int, message: str) -> None:
        if levelno >= logging.ERROR:
            event_type = win32evtlog.EVENTLOG_ERROR_TYPE
        elif levelno >= logging.WARNING:
            event_type = win32evtlog.EVENTLOG_WARNING_TYPE
        else:
            event_type = win32evtlog.EVENTLOG_INFORMATION_TYPE
        win32evtlogutil.ReportEvent(
            self.source, event_id, eventType=event_type, strings=[message]
        )

    def _write_file(
        self,
        level: str,
        event_id: int,
        message: str,
        record: Optional[logging.LogRecord] = None,
    ) -> None:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        line = f"[{timestamp}] [{level}] [EventId:{event_id}] {message}\n"
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with self.log_file_path().open("a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError:
            self._write_console(line, record)

    def _write_console(self, line: str, record: Optional[logging.LogRecord]) -> None:
        stream = sys.stderr or sys.__stderr__
        try:
            stream.write(line)
            stream.flush()
        except Exception:
            if record is not None:
                self.handleError(record)


def setup_logging(service_mode: bool, log_dir: Optional[Path] = None, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    if service_mode:
        handler: logging.Handler = EventLogHandler(log_dir)
        handler.initialize()
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[handler], force=True)


class ExceptionGuard:
    """Routes uncaught exceptions (main and worker threads) to the logger.

    A non-blocking acquire acts as a single-slot compare-and-set: a crash raised
    while a previous one is still being reported is dropped instead of recursing.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("auto-camera-control")
        self._busy = threading.Lock()
        self._previous_excepthook = None
        self._previous_threading_hook = None

    def install(self) -> None:
        self._previous_excepthook = sys.excepthook
        self._previous_threading_hook = threading.excepthook
        sys.excepthook = self._handle_exception
        threading.excepthook = self._handle_thread_exception

    def uninstall(self) -> None:
        if self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
        if self._previous_threading_hook is not None:
            threading.excepthook = self._previous_threading_hook

    def report(self, message: str, exc_info) -> bool:
        if not self._busy.acquire(blocking=False):
            return False
        try:
            self.logger.critical(
                message, exc_info=exc_info, extra=event(EventId.SERVICE_EXCEPTION)
            )
        finally:
            self._busy.release()
        return True

    def _handle_exception(self, exc_type, exc_value, exc_tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            if self._previous_excepthook is not None:
                self._previous_excepthook(exc_type, exc_value, exc_tb)
            return
        self.report("Unhandled exception, process is terminating.", (exc_type, exc_value, exc_tb))

    def _handle_thread_exception(self, args) -> None:
        if args.exc_type is SystemExit:
            return
        name = args.thread.name if args.thread is not None else "unknown"
        self.report(
            f"Unhandled exception in thread {name}.",
            (args.exc_type, args.exc_value, args.exc_traceback),
        )
