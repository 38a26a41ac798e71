from __future__ import annotations

import enum
import logging
import threading
from typing import Callable

from .aggregator import ResultAggregator

logger = logging.getLogger(__name__)


class SessionPhase(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


TransitionListener = Callable[[SessionPhase, SessionPhase], None]


class SessionState:
    """Run/idle/failed state machine that gates the capture scheduler.

    Listeners are called with ``(previous, current)`` after every real
    transition, while the session lock is held, so they observe transitions
    in order.
    """

    def __init__(self, aggregator: ResultAggregator | None = None) -> None:
        self._aggregator = aggregator
        self._lock = threading.RLock()
        self._phase = SessionPhase.IDLE
        self._error: str | None = None
        self._listeners: list[TransitionListener] = []

    @property
    def phase(self) -> SessionPhase:
        with self._lock:
            return self._phase

    @property
    def error(self) -> str | None:
        with self._lock:
            return self._error

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def start(self) -> bool:
        """Enter RUNNING. Returns False when already running or failed."""
        with self._lock:
            if self._phase is SessionPhase.RUNNING:
                return False
            if self._phase is SessionPhase.FAILED:
                logger.info("Ignoring start while failed: %s", self._error)
                return False
            self._error = None
            self._clear_current()
            self._transition(SessionPhase.RUNNING)
            return True

    def stop(self) -> bool:
        with self._lock:
            if self._phase is not SessionPhase.RUNNING:
                return False
            self._clear_current()
            self._transition(SessionPhase.IDLE)
            return True

    def fail(self, reason: str) -> None:
        with self._lock:
            self._error = reason
            logger.error("Session failed: %s", reason)
            if self._phase is not SessionPhase.FAILED:
                self._transition(SessionPhase.FAILED)

    def reset(self) -> bool:
        """Leave FAILED for IDLE so the session can be started again."""
        with self._lock:
            if self._phase is not SessionPhase.FAILED:
                return False
            self._error = None
            self._transition(SessionPhase.IDLE)
            return True

    def _clear_current(self) -> None:
        if self._aggregator is not None:
            self._aggregator.clear_current()

    def _transition(self, phase: SessionPhase) -> None:
        previous = self._phase
        self._phase = phase
        logger.info("Session %s -> %s", previous.value, phase.value)
        for listener in list(self._listeners):
            listener(previous, phase)


__all__ = ["SessionPhase", "SessionState", "TransitionListener"]
