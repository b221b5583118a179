from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INSUFFICIENT_PRIVILEGE = "InsufficientPrivilege"
    INVALID_EXECUTABLE = "InvalidExecutable"
    ALREADY_INSTALLED = "AlreadyInstalled"
    NOT_INSTALLED = "NotInstalled"
    MALFORMED_IDENTIFIER = "MalformedIdentifier"
    EXTERNAL_TOOL_FAILURE = "ExternalToolFailure"
    TIMEOUT = "Timeout"
    CONFIG_IO_FAILURE = "ConfigIOFailure"
    UNEXPECTED = "Unexpected"


class AutoCameraControlError(Exception):
    kind = ErrorKind.UNEXPECTED


class InsufficientPrivilege(AutoCameraControlError):
    kind = ErrorKind.INSUFFICIENT_PRIVILEGE


class InvalidExecutable(AutoCameraControlError):
    kind = ErrorKind.INVALID_EXECUTABLE


class AlreadyInstalled(AutoCameraControlError):
    kind = ErrorKind.ALREADY_INSTALLED


class NotInstalled(AutoCameraControlError):
    kind = ErrorKind.NOT_INSTALLED


class MalformedIdentifier(AutoCameraControlError, ValueError):
    kind = ErrorKind.MALFORMED_IDENTIFIER


class Timeout(AutoCameraControlError):
    kind = ErrorKind.TIMEOUT


class ConfigIOFailure(AutoCameraControlError):
    kind = ErrorKind.CONFIG_IO_FAILURE


class ExternalToolFailure(AutoCameraControlError):
    """A tool exited with a failure code or could not be launched at all."""

    kind = ErrorKind.EXTERNAL_TOOL_FAILURE

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        output: str = "",
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output
