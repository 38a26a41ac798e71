from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from oracle.gateway import InferenceGateway
from oracle.types import Classification

from .aggregator import HistoryEntry, ResultAggregator
from .capture import DeviceDenied, FrameSource
from .scheduler import CaptureScheduler, SchedulerConfig, SchedulerStats
from .session import SessionPhase, SessionState

logger = logging.getLogger(__name__)

FrameSourceFactory = Callable[[], FrameSource]


@dataclass
class MonitorSnapshot:
    phase: SessionPhase
    error: str | None
    in_flight: bool
    current: Classification | None
    history: tuple[HistoryEntry, ...]
    consecutive_errors: int
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "error": self.error,
            "in_flight": self.in_flight,
            "current": self.current.to_dict() if self.current else None,
            "history_size": len(self.history),
            "consecutive_errors": self.consecutive_errors,
            "stats": {
                "ticks": self.stats.ticks,
                "dropped": self.stats.dropped,
                "unavailable": self.stats.unavailable,
                "completed": self.stats.completed,
                "failed": self.stats.failed,
            },
        }


class GestureMonitor:
    """Coordinates session -> scheduler -> camera -> oracle -> aggregator."""

    def __init__(
        self,
        frame_source_factory: FrameSourceFactory,
        gateway: InferenceGateway,
        aggregator: ResultAggregator | None = None,
        scheduler_config: SchedulerConfig | None = None,
    ) -> None:
        self._factory = frame_source_factory
        self._device_lock = threading.Lock()
        self._source: FrameSource | None = None
        self._aggregator = aggregator or ResultAggregator()
        self._session = SessionState(self._aggregator)
        self._scheduler = CaptureScheduler(
            frame_source=None,
            gateway=gateway,
            aggregator=self._aggregator,
            config=scheduler_config,
            on_device_failure=self._handle_device_failure,
        )
        self._session.add_listener(self._handle_transition)

    @property
    def session(self) -> SessionState:
        return self._session

    @property
    def aggregator(self) -> ResultAggregator:
        return self._aggregator

    @property
    def scheduler(self) -> CaptureScheduler:
        return self._scheduler

    def open_device(self) -> bool:
        """Acquire the camera, marking the session failed if access is denied.

        Any handle already held is released first; most webcams accept a
        single open handle.
        """
        with self._device_lock:
            previous, self._source = self._source, None
        if previous is not None:
            self._scheduler.set_frame_source(None)
            self._release_source(previous)
        try:
            source = self._factory()
        except DeviceDenied as exc:
            self._session.fail(str(exc) or "Camera access denied or unavailable.")
            return False
        with self._device_lock:
            self._source = source
        self._scheduler.set_frame_source(source)
        logger.info("Camera opened source=%s", source.__class__.__name__)
        return True

    def start(self) -> bool:
        if self._session.phase is SessionPhase.FAILED:
            logger.info("Start rejected; session failed: %s", self._session.error)
            return False
        with self._device_lock:
            source = self._source
        if source is None or not source.is_active():
            if not self.open_device():
                return False
        return self._session.start()

    def stop(self) -> bool:
        return self._session.stop()

    def retry_device(self) -> bool:
        """Re-acquire the camera and, on success, clear a failed session.

        Only a failed session is retried; otherwise returns False untouched.
        """
        if self._session.phase is not SessionPhase.FAILED:
            logger.info("Retry ignored; session is %s", self._session.phase.value)
            return False
        if not self.open_device():
            return False
        self._session.reset()
        return True

    def snapshot(self) -> MonitorSnapshot:
        return MonitorSnapshot(
            phase=self._session.phase,
            error=self._session.error,
            in_flight=self._scheduler.in_flight,
            current=self._aggregator.current,
            history=self._aggregator.history,
            consecutive_errors=self._aggregator.consecutive_errors,
            stats=self._scheduler.stats(),
        )

    def close(self) -> None:
        self._session.stop()
        self._scheduler.close()
        with self._device_lock:
            source, self._source = self._source, None
        if source is not None:
            self._release_source(source)

    def _handle_transition(self, previous: SessionPhase, current: SessionPhase) -> None:
        if current is SessionPhase.RUNNING:
            self._scheduler.arm()
        else:
            self._scheduler.disarm()

    def _handle_device_failure(self, exc: DeviceDenied) -> None:
        self._session.fail(str(exc) or "Camera access denied or unavailable.")

    def _release_source(self, source: FrameSource) -> None:
        try:
            source.release()
        except Exception:  # pragma: no cover - best effort cleanup
            logger.warning("Failed to release camera %r", source, exc_info=True)


__all__ = ["FrameSourceFactory", "GestureMonitor", "MonitorSnapshot"]
