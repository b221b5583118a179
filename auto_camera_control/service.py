"""pywin32 adapter between the service control manager and `ServiceHost`."""

from __future__ import annotations

import logging

import pywintypes
import servicemanager
import win32event
import win32service
import win32serviceutil
import winerror

from . import SERVICE_DESCRIPTION, SERVICE_DISPLAY_NAME, SERVICE_NAME
from .host import ServiceHost, StartupError

logger = logging.getLogger("auto-camera-control.service")

# Service-specific exit codes reported to the SCM when startup is refused.
STARTUP_EXIT_CODES = {
    StartupError.NO_TARGET_DEVICE: 1,
    StartupError.INSUFFICIENT_PRIVILEGE: 2,
    StartupError.UNEXPECTED: 3,
}


class AutoCameraControlService(win32serviceutil.ServiceFramework):
    _svc_name_ = SERVICE_NAME
    _svc_display_name_ = SERVICE_DISPLAY_NAME
    _svc_description_ = SERVICE_DESCRIPTION

    def __init__(self, args):
        win32serviceutil.ServiceFramework.__init__(self, args)
        self._stop_event = win32event.CreateEvent(None, 0, 0, None)
        self.host = ServiceHost()

    def GetAcceptedControls(self):
        accepted = win32serviceutil.ServiceFramework.GetAcceptedControls(self)
        return accepted | win32service.SERVICE_ACCEPT_SESSIONCHANGE | win32service.SERVICE_ACCEPT_SHUTDOWN

    def SvcRun(self):
        self.ReportServiceStatus(win32service.SERVICE_START_PENDING)
        result = self.host.start()
        if not result.ok:
            logger.error("Service refused to start: %s", result.message)
            self.ReportServiceStatus(
                win32service.SERVICE_STOPPED,
                win32ExitCode=winerror.ERROR_SERVICE_SPECIFIC_ERROR,
                svcExitCode=STARTUP_EXIT_CODES[result.error],
            )
            return

        self.ReportServiceStatus(win32service.SERVICE_RUNNING)
        servicemanager.LogMsg(
            servicemanager.EVENTLOG_INFORMATION_TYPE,
            servicemanager.PYS_SERVICE_STARTED,
            (self._svc_name_, ""),
        )
        win32event.WaitForSingleObject(self._stop_event, win32event.INFINITE)

        try:
            self.host.stop()
        finally:
            self.ReportServiceStatus(win32service.SERVICE_STOPPED)

    def SvcStop(self):
        self.ReportServiceStatus(win32service.SERVICE_STOP_PENDING)
        win32event.SetEvent(self._stop_event)

    def SvcShutdown(self):
        self.SvcStop()

    def SvcOtherEx(self, control, event_type, data):
        if control == win32service.SERVICE_CONTROL_SESSIONCHANGE:
            self.host.on_session_change(event_type)


def run_service() -> int:
    """Hand the process to the service control dispatcher; blocks until stopped."""
    servicemanager.Initialize()
    servicemanager.PrepareToHostSingle(AutoCameraControlService)
    try:
        servicemanager.StartServiceCtrlDispatcher()
    except pywintypes.error as exc:
        if exc.winerror == winerror.ERROR_FAILED_SERVICE_CONTROLLER_CONNECT:
            logger.error(
                "--service only works when started by the service control manager; "
                "use `auto-camera-control install` and `start` instead."
            )
        else:
            logger.exception("Service dispatcher failed.")
        return 1
    return 0
