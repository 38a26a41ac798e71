from __future__ import annotations

import dataclasses
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from oracle.gateway import InferenceGateway
from oracle.types import Classification

from .aggregator import ResultAggregator
from .capture import DeviceDenied, DeviceUnavailable, Frame, FrameSource

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 1.5


@dataclass
class SchedulerConfig:
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    save_frames_dir: Path | None = None


@dataclass
class SchedulerStats:
    ticks: int = 0
    dropped: int = 0
    unavailable: int = 0
    completed: int = 0
    failed: int = 0


class CaptureScheduler:
    """Samples the frame source on a fixed cadence with at most one inference in flight.

    ``arm()`` runs one tick straight away and then one per interval on a
    ticker thread. A tick that arrives while a call is outstanding is dropped,
    never queued. Cycles run on a single worker thread, so results reach the
    aggregator in the order the calls were issued. ``disarm()`` stops future
    ticks but lets an outstanding call finish and deliver its result.
    """

    def __init__(
        self,
        frame_source: FrameSource | None,
        gateway: InferenceGateway,
        aggregator: ResultAggregator,
        config: SchedulerConfig | None = None,
        on_device_failure: Callable[[DeviceDenied], None] | None = None,
    ) -> None:
        self._config = config or SchedulerConfig()
        if self._config.interval_seconds <= 0:
            raise ValueError("Scheduler interval must be positive")
        self._source = frame_source
        self._gateway = gateway
        self._aggregator = aggregator
        self._on_device_failure = on_device_failure
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._armed = False
        self._in_flight = False
        self._stop_event: threading.Event | None = None
        self._ticker: threading.Thread | None = None
        self._stats = SchedulerStats()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gesture-inference")

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._armed

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight

    @property
    def interval_seconds(self) -> float:
        return self._config.interval_seconds

    def stats(self) -> SchedulerStats:
        with self._lock:
            return dataclasses.replace(self._stats)

    def set_frame_source(self, frame_source: FrameSource | None) -> None:
        with self._lock:
            self._source = frame_source

    def arm(self) -> None:
        with self._lock:
            if self._armed:
                return
            self._armed = True
            stop_event = threading.Event()
            ticker = threading.Thread(
                target=self._run_ticker,
                args=(stop_event,),
                name="capture-scheduler",
                daemon=True,
            )
            self._stop_event = stop_event
            self._ticker = ticker
        logger.info("Capture scheduler armed interval=%.2fs", self._config.interval_seconds)
        self.tick()
        ticker.start()

    def disarm(self) -> None:
        with self._lock:
            if not self._armed:
                return
            self._armed = False
            stop_event, self._stop_event = self._stop_event, None
            self._ticker = None
            in_flight = self._in_flight
        if stop_event is not None:
            stop_event.set()
        logger.info("Capture scheduler disarmed in_flight=%s", in_flight)

    def tick(self, stop_event: threading.Event | None = None) -> Future[Classification | None] | None:
        """Attempt one capture-and-classify cycle.

        Returns the cycle's future, or None when the scheduler is disarmed or
        the tick was dropped because a call is already outstanding. A ticker
        passes its own ``stop_event`` so a tick from a superseded arming is
        discarded even if the scheduler has been re-armed since.
        """
        with self._lock:
            if not self._armed:
                return None
            if stop_event is not None and stop_event.is_set():
                return None
            self._stats.ticks += 1
            if self._in_flight:
                self._stats.dropped += 1
                dropped = True
            else:
                self._in_flight = True
                dropped = False
        if dropped:
            logger.debug("Inference in flight; dropping tick")
            return None
        try:
            return self._executor.submit(self._run_cycle)
        except RuntimeError:
            self._release()
            raise

    def wait_idle(self, timeout: float | None = None) -> bool:
        with self._idle:
            return self._idle.wait_for(lambda: not self._in_flight, timeout)

    def close(self) -> None:
        with self._lock:
            ticker = self._ticker
        self.disarm()
        if ticker is not None and ticker.is_alive() and ticker is not threading.current_thread():
            ticker.join(timeout=self._config.interval_seconds + 1.0)
        self._executor.shutdown(wait=True)

    def _run_ticker(self, stop_event: threading.Event) -> None:
        interval = self._config.interval_seconds
        next_tick = time.monotonic() + interval
        while not stop_event.wait(max(0.0, next_tick - time.monotonic())):
            self.tick(stop_event)
            next_tick += interval
            now = time.monotonic()
            if next_tick <= now:
                missed = int((now - next_tick) // interval) + 1
                next_tick += missed * interval
                logger.debug("Ticker fell behind; skipping %d tick(s)", missed)

    def _run_cycle(self) -> Classification | None:
        with self._lock:
            source = self._source
        try:
            try:
                if source is None:
                    raise DeviceUnavailable("No camera has been opened")
                frame = source.acquire()
            except DeviceUnavailable as exc:
                with self._lock:
                    self._stats.unavailable += 1
                logger.debug("Skipping tick: %s", exc)
                return None
            except DeviceDenied as exc:
                with self._lock:
                    self._stats.failed += 1
                self._report_device_failure(exc)
                return None

            self._save_frame(frame)
            classification = self._gateway.classify(frame.data)
            self._aggregator.ingest(classification, frame.captured_at_ms)
            with self._lock:
                self._stats.completed += 1
            return classification
        except Exception:
            with self._lock:
                self._stats.failed += 1
            logger.exception("Capture cycle failed")
            return None
        finally:
            self._release()

    def _release(self) -> None:
        with self._idle:
            self._in_flight = False
            self._idle.notify_all()

    def _report_device_failure(self, exc: DeviceDenied) -> None:
        logger.error("Camera lost during capture: %s", exc)
        if self._on_device_failure is not None:
            self._on_device_failure(exc)

    def _save_frame(self, frame: Frame) -> None:
        debug_dir = self._config.save_frames_dir
        if not debug_dir:
            return
        try:
            debug_dir.mkdir(parents=True, exist_ok=True)
            frame_path = debug_dir / f"{frame.captured_at_ms}.{frame.encoding}"
            frame_path.write_bytes(frame.data)
        except OSError as exc:
            logger.warning("Failed to save debug frame to %s: %s", debug_dir, exc)
            return
        logger.debug("Saved frame to %s", frame_path)


__all__ = ["CaptureScheduler", "DEFAULT_INTERVAL_SECONDS", "SchedulerConfig", "SchedulerStats"]
