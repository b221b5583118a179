from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .errors import ErrorKind


def _now_local() -> datetime:
    return datetime.now().astimezone()


@dataclass(frozen=True)
class CameraDevice:
    device_id: str
    name: str
    is_enabled: bool
    description: str = ""


class DeviceState(Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    NOT_FOUND = "not_found"


class SessionEventKind(Enum):
    LOCK = "lock"
    UNLOCK = "unlock"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    timestamp: datetime = field(default_factory=_now_local)


class ServiceState(Enum):
    STOPPED = 1
    START_PENDING = 2
    STOP_PENDING = 3
    RUNNING = 4
    CONTINUE_PENDING = 5
    PAUSE_PENDING = 6
    PAUSED = 7
    UNKNOWN = 0

    @classmethod
    def from_code(cls, code: int) -> "ServiceState":
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_pending(self) -> bool:
        return self in (
            ServiceState.START_PENDING,
            ServiceState.STOP_PENDING,
            ServiceState.CONTINUE_PENDING,
            ServiceState.PAUSE_PENDING,
        )


class StartType(Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    DISABLED = "disabled"


@dataclass(frozen=True)
class ServiceOperationResult:
    success: bool
    message: str
    error_details: Optional[str] = None
    error: Optional[ErrorKind] = None
    timestamp: datetime = field(default_factory=_now_local)

    @classmethod
    def ok(cls, message: str, details: Optional[str] = None) -> "ServiceOperationResult":
        return cls(success=True, message=message, error_details=details)

    @classmethod
    def fail(
        cls,
        message: str,
        error: ErrorKind,
        details: Optional[str] = None,
    ) -> "ServiceOperationResult":
        return cls(success=False, message=message, error_details=details, error=error)


@dataclass(frozen=True)
class ServiceStatus:
    is_installed: bool
    has_admin_rights: bool
    status: Optional[ServiceState] = None
    can_start: bool = False
    can_stop: bool = False
    can_pause: bool = False
    start_type: Optional[StartType] = None
    is_auto_start: bool = False
    error_message: Optional[str] = None
