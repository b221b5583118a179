"""Lock/unlock handling.

Session-change callbacks arrive on the service control thread and must return
quickly, so each accepted transition becomes exactly one job on a FIFO queue.
A single worker thread runs the jobs in the order they were submitted.
"""

from __future__ import annotations

import functools
import logging
import queue
import threading
from enum import Enum
from typing import Callable, Optional

from .config import SimpleConfig
from .devices import DeviceController
from .event_log import EventId, event
from .light import LightGate
from .models import SessionEvent, SessionEventKind

logger = logging.getLogger("auto-camera-control.session")

_STOP = object()


class SessionState(Enum):
    IDLE = "idle"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class TransitionWorker:
    def __init__(self, name: str = "camera-transition-worker"):
        self.name = name
        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopping

    def start(self) -> bool:
        """Start the consumer thread; refuses while a stopped one is still draining."""
        if self._thread is not None and self._thread.is_alive():
            if self._stopping:
                logger.warning("Worker %s is still draining, not restarting.", self.name)
                return False
            return True
        self._stopping = False
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return True

    def submit(self, job: Callable[[], None], label: str) -> bool:
        if not self.running:
            logger.warning("Worker not running, dropping %s job.", label)
            return False
        self._queue.put((label, job))
        return True

    def wait_idle(self) -> None:
        self._queue.join()

    def stop(self, timeout: float = 10.0) -> None:
        if self._thread is None:
            return
        if not self._stopping:
            self._stopping = True
            # Jobs queued before the sentinel still run.
            self._queue.put(_STOP)
        self._thread.join(timeout)
        if self._thread.is_alive():
            # Keep the reference so a restart cannot add a second consumer.
            logger.warning("Worker %s still busy after %.0fs.", self.name, timeout)
            return
        self._thread = None
        self._stopping = False

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                label, job = item
                try:
                    job()
                except Exception:
                    logger.exception(
                        "Camera %s job failed.", label, extra=event(EventId.SERVICE_EXCEPTION)
                    )
            finally:
                self._queue.task_done()


class SessionStateMachine:
    def __init__(
        self,
        controller: DeviceController,
        light_gate: Optional[LightGate] = None,
        worker: Optional[TransitionWorker] = None,
    ):
        self.controller = controller
        self.light_gate = light_gate if light_gate is not None else LightGate()
        self.worker = worker if worker is not None else TransitionWorker()
        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._config: Optional[SimpleConfig] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def config(self) -> Optional[SimpleConfig]:
        return self._config

    def start(self, config: SimpleConfig) -> None:
        with self._lock:
            if not self.worker.start():
                raise RuntimeError(f"Worker {self.worker.name} from the previous run is still busy.")
            self._config = config
            # The user is assumed to be at the desk when the service comes up.
            self._state = SessionState.UNLOCKED
        logger.info(
            "Session monitoring started for camera %s.",
            config.target_camera_device_id,
            extra=event(EventId.SERVICE_STARTED),
        )

    def stop(self, timeout: float = 10.0) -> None:
        with self._lock:
            self._state = SessionState.IDLE
        self.worker.stop(timeout)
        logger.info("Session monitoring stopped.", extra=event(EventId.SERVICE_STOPPED))

    def lock(self) -> bool:
        return self.on_session_change(SessionEvent(SessionEventKind.LOCK))

    def unlock(self) -> bool:
        return self.on_session_change(SessionEvent(SessionEventKind.UNLOCK))

    def on_session_change(self, session_event: SessionEvent) -> bool:
        """Queue the camera work for one transition; returns whether a job was queued."""
        logger.info(
            "Session change detected: %s at %s",
            session_event.kind.value,
            session_event.timestamp.isoformat(),
            extra=event(EventId.SESSION_SWITCH_DETECTED),
        )
        with self._lock:
            config = self._config
            if self._state is SessionState.IDLE or config is None:
                logger.debug("Ignoring %s, service not initialised.", session_event.kind.value)
                return False
            target = config.target_camera_device_id
            if not target:
                logger.debug("Ignoring %s, no target camera configured.", session_event.kind.value)
                return False

            if session_event.kind is SessionEventKind.LOCK:
                next_state = SessionState.LOCKED
                job = functools.partial(self._handle_lock, config, target)
            else:
                next_state = SessionState.UNLOCKED
                job = functools.partial(self._handle_unlock, target)
            if not self.worker.submit(job, session_event.kind.value):
                return False
            self._state = next_state
            return True

    # ------------------------------------------------------------ HANDLERS --

    def _handle_lock(self, config: SimpleConfig, target: str) -> None:
        logger.info("Handling lock for camera %s.", target, extra=event(EventId.CAMERA_CONTROL_TRIGGERED))
        lux = self.light_gate.current_lux(config)
        if self.light_gate.should_suppress_disable(config, lux):
            logger.info(
                "Ambient light %.1f lux >= %.1f lux, leaving camera enabled.",
                lux,
                config.light_threshold,
                extra=event(EventId.LOCK_SCREEN_LIGHT_SUFFICIENT),
            )
            return

        if self.controller.disable(target):
            logger.info("Camera disabled on lock.", extra=event(EventId.CAMERA_DISABLED))
        else:
            logger.error("Failed to disable camera on lock.", extra=event(EventId.CAMERA_CONTROL_FAILED))

    def _handle_unlock(self, target: str) -> None:
        logger.info("Handling unlock for camera %s.", target, extra=event(EventId.CAMERA_CONTROL_TRIGGERED))
        if self.controller.enable(target):
            logger.info("Camera enabled on unlock.", extra=event(EventId.CAMERA_ENABLED))
        else:
            logger.error("Failed to enable camera on unlock.", extra=event(EventId.CAMERA_CONTROL_FAILED))
