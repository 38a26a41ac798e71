from __future__ import annotations

from .aggregator import HistoryEntry, ResultAggregator
from .capture import DeviceDenied, DeviceUnavailable, Frame, FrameSource
from .harness import GestureMonitor
from .scheduler import CaptureScheduler, SchedulerConfig
from .session import SessionPhase, SessionState

__all__ = [
    "CaptureScheduler",
    "DeviceDenied",
    "DeviceUnavailable",
    "Frame",
    "FrameSource",
    "GestureMonitor",
    "HistoryEntry",
    "ResultAggregator",
    "SchedulerConfig",
    "SessionPhase",
    "SessionState",
]
