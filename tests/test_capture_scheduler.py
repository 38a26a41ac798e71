from __future__ import annotations

import math
import threading
import time

import pytest

from device.aggregator import ResultAggregator
from device.capture import DeviceDenied, Frame, StubFrameSource
from device.scheduler import CaptureScheduler, SchedulerConfig
from oracle.gateway import InferenceGateway
from oracle.types import ERROR_CLASSIFICATION, Classification

FIST = Classification(label="Fist", confidence=0.9, description="A closed fist.", glyph="✊")


class _GatedClassifier:
    """Blocks every call until ``release`` is set and records overlap."""

    def __init__(self, result: Classification = FIST, delay: float = 0.0) -> None:
        self.result = result
        self.delay = delay
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def classify(self, image_bytes: bytes) -> Classification:
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.entered.set()
        try:
            self.release.wait(timeout=5.0)
            if self.delay:
                time.sleep(self.delay)
            return self.result
        finally:
            with self._lock:
                self.active -= 1


class _DeniedSource:
    def acquire(self) -> Frame:
        raise DeviceDenied("Camera access denied or unavailable.")

    def is_active(self) -> bool:
        return False

    def release(self) -> None:
        return None


def _scheduler(classifier, aggregator=None, source=None, **config) -> CaptureScheduler:
    config.setdefault("interval_seconds", 60.0)
    return CaptureScheduler(
        frame_source=source or StubFrameSource(),
        gateway=InferenceGateway(classifier=classifier),
        aggregator=aggregator or ResultAggregator(),
        config=SchedulerConfig(**config),
    )


def test_arm_ticks_immediately_and_drops_ticks_while_in_flight() -> None:
    classifier = _GatedClassifier()
    aggregator = ResultAggregator()
    scheduler = _scheduler(classifier, aggregator)
    try:
        scheduler.arm()
        assert classifier.entered.wait(2.0)
        assert scheduler.in_flight

        for _ in range(5):
            assert scheduler.tick() is None

        classifier.release.set()
        assert scheduler.wait_idle(2.0)
        assert not scheduler.in_flight

        stats = scheduler.stats()
        assert stats.ticks == 6
        assert stats.dropped == 5
        assert stats.completed == 1
        assert classifier.calls == 1
        assert aggregator.current == FIST

        future = scheduler.tick()
        assert future is not None
        assert future.result(timeout=2.0) == FIST
        assert classifier.calls == 2
        assert classifier.max_active == 1
    finally:
        classifier.release.set()
        scheduler.close()


def test_disarm_stops_ticks_but_delivers_in_flight_result() -> None:
    classifier = _GatedClassifier()
    aggregator = ResultAggregator()
    scheduler = _scheduler(classifier, aggregator)
    try:
        scheduler.arm()
        assert classifier.entered.wait(2.0)
        scheduler.disarm()

        assert not scheduler.armed
        assert scheduler.in_flight
        assert scheduler.tick() is None

        classifier.release.set()
        assert scheduler.wait_idle(2.0)
        assert aggregator.current == FIST
        assert len(aggregator.history) == 1
        assert scheduler.stats().ticks == 1
        assert not scheduler.in_flight
    finally:
        classifier.release.set()
        scheduler.close()


def test_tick_is_noop_while_disarmed() -> None:
    classifier = _GatedClassifier()
    scheduler = _scheduler(classifier)
    try:
        assert scheduler.tick() is None
        assert scheduler.stats().ticks == 0
        assert classifier.calls == 0
    finally:
        scheduler.close()


def test_tick_from_superseded_ticker_is_discarded_after_rearm() -> None:
    classifier = _GatedClassifier()
    classifier.release.set()
    scheduler = _scheduler(classifier)
    try:
        scheduler.arm()
        assert scheduler.wait_idle(2.0)
        scheduler.disarm()
        scheduler.arm()
        assert scheduler.wait_idle(2.0)
        ticks = scheduler.stats().ticks

        stale = threading.Event()
        stale.set()
        assert scheduler.tick(stale) is None
        assert scheduler.stats().ticks == ticks
        assert classifier.calls == 2

        assert scheduler.tick(threading.Event()) is not None
        assert scheduler.wait_idle(2.0)
        assert classifier.calls == 3
    finally:
        scheduler.close()


def test_concurrent_ticks_never_overlap_calls() -> None:
    classifier = _GatedClassifier(delay=0.002)
    classifier.release.set()
    scheduler = _scheduler(classifier)
    scheduler.arm()
    barrier = threading.Barrier(8)

    def hammer() -> None:
        barrier.wait()
        for _ in range(50):
            scheduler.tick()
            time.sleep(0.0005)

    threads = [threading.Thread(target=hammer) for _ in range(8)]
    try:
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10.0)
        assert scheduler.wait_idle(2.0)
        stats = scheduler.stats()
        assert classifier.max_active == 1
        assert stats.completed == classifier.calls
        assert stats.ticks == stats.dropped + stats.completed
        assert stats.dropped > 0
    finally:
        scheduler.close()


def test_periodic_ticks_bounded_by_interval() -> None:
    classifier = _GatedClassifier(delay=0.12)
    classifier.release.set()
    scheduler = _scheduler(classifier, interval_seconds=0.02)
    window = 0.6
    try:
        scheduler.arm()
        time.sleep(window)
        scheduler.disarm()
        assert scheduler.wait_idle(2.0)
    finally:
        scheduler.close()

    stats = scheduler.stats()
    assert classifier.max_active == 1
    assert classifier.calls >= 2
    # each call holds the slot for at least 0.12s; leave one slot of slack
    assert classifier.calls <= math.ceil(window / 0.12) + 1
    assert stats.dropped > 0


def test_periodic_ticks_keep_cadence_with_fast_oracle() -> None:
    classifier = _GatedClassifier()
    classifier.release.set()
    scheduler = _scheduler(classifier, interval_seconds=0.05)
    try:
        scheduler.arm()
        time.sleep(0.32)
        scheduler.disarm()
        assert scheduler.wait_idle(2.0)
        ticks_at_disarm = scheduler.stats().ticks
        time.sleep(0.15)
    finally:
        scheduler.close()

    assert 3 <= classifier.calls <= math.ceil(0.32 / 0.05) + 2
    assert scheduler.stats().ticks == ticks_at_disarm


def test_unavailable_frame_skips_silently() -> None:
    classifier = _GatedClassifier()
    classifier.release.set()
    aggregator = ResultAggregator()
    source = StubFrameSource(ready=False)
    scheduler = _scheduler(classifier, aggregator, source=source)
    try:
        scheduler.arm()
        assert scheduler.wait_idle(2.0)
        assert scheduler.stats().unavailable == 1
        assert classifier.calls == 0
        assert aggregator.current is None

        source.mark_ready()
        future = scheduler.tick()
        assert future is not None
        assert future.result(timeout=2.0) == FIST
    finally:
        scheduler.close()


def test_device_denied_reported_to_callback() -> None:
    failures: list[str] = []
    classifier = _GatedClassifier()
    scheduler = CaptureScheduler(
        frame_source=_DeniedSource(),
        gateway=InferenceGateway(classifier=classifier),
        aggregator=ResultAggregator(),
        config=SchedulerConfig(interval_seconds=60.0),
        on_device_failure=lambda exc: failures.append(str(exc)),
    )
    try:
        scheduler.arm()
        assert scheduler.wait_idle(2.0)
    finally:
        scheduler.close()

    assert failures == ["Camera access denied or unavailable."]
    assert scheduler.stats().failed == 1
    assert classifier.calls == 0


def test_oracle_errors_keep_the_loop_alive() -> None:
    classifier = _GatedClassifier(result=None)  # type: ignore[arg-type]
    classifier.release.set()
    aggregator = ResultAggregator()
    scheduler = _scheduler(classifier, aggregator)
    try:
        scheduler.arm()
        assert scheduler.wait_idle(2.0)
        assert aggregator.current == ERROR_CLASSIFICATION
        future = scheduler.tick()
        assert future is not None
        assert future.result(timeout=2.0) == ERROR_CLASSIFICATION
        assert aggregator.history == ()
        assert scheduler.armed
    finally:
        scheduler.close()


def test_saves_frames_when_configured(tmp_path) -> None:
    classifier = _GatedClassifier()
    classifier.release.set()
    scheduler = _scheduler(classifier, save_frames_dir=tmp_path / "frames")
    try:
        scheduler.arm()
        assert scheduler.wait_idle(2.0)
    finally:
        scheduler.close()

    saved = list((tmp_path / "frames").glob("*.jpeg"))
    assert len(saved) == 1
    assert saved[0].read_bytes()[:2] == b"\xff\xd8"


def test_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        _scheduler(_GatedClassifier(), interval_seconds=0)
