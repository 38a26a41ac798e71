from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from oracle.types import ACCEPTANCE_THRESHOLD, ERROR_LABEL, Classification, is_accepted

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_CAPACITY = 20


@dataclass(frozen=True)
class HistoryEntry:
    classification: Classification
    timestamp_ms: int

    def to_dict(self) -> dict[str, object]:
        return {"timestamp_ms": self.timestamp_ms, **self.classification.to_dict()}


ResultListener = Callable[[Classification, Optional[HistoryEntry]], None]


class ResultAggregator:
    """Tracks the latest classification and a bounded, newest-first history."""

    def __init__(
        self,
        capacity: int = DEFAULT_HISTORY_CAPACITY,
        threshold: float = ACCEPTANCE_THRESHOLD,
        error_streak_warning: int = 5,
    ) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self._capacity = capacity
        self._threshold = threshold
        self._error_streak_warning = max(0, error_streak_warning)
        self._lock = threading.Lock()
        # appendleft on a bounded deque drops the rightmost (oldest) entry
        self._history: deque[HistoryEntry] = deque(maxlen=capacity)
        self._current: Classification | None = None
        self._consecutive_errors = 0
        self._listeners: list[ResultListener] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def current(self) -> Classification | None:
        with self._lock:
            return self._current

    @property
    def history(self) -> tuple[HistoryEntry, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def consecutive_errors(self) -> int:
        with self._lock:
            return self._consecutive_errors

    def add_listener(self, listener: ResultListener) -> None:
        self._listeners.append(listener)

    def clear_current(self) -> None:
        with self._lock:
            self._current = None

    def ingest(self, classification: Classification, timestamp_ms: int) -> HistoryEntry | None:
        entry: HistoryEntry | None = None
        with self._lock:
            self._current = classification
            if classification.label.strip().lower() == ERROR_LABEL:
                self._consecutive_errors += 1
                streak = self._consecutive_errors
            else:
                self._consecutive_errors = 0
                streak = 0
            if is_accepted(classification, self._threshold):
                entry = HistoryEntry(classification=classification, timestamp_ms=timestamp_ms)
                self._history.appendleft(entry)
            history_size = len(self._history)

        if entry is not None:
            logger.info(
                "Accepted gesture label=%s confidence=%.2f history=%d/%d",
                classification.label,
                classification.confidence,
                history_size,
                self._capacity,
            )
        else:
            logger.debug(
                "Result not added to history label=%s confidence=%.2f",
                classification.label,
                classification.confidence,
            )
        if self._error_streak_warning and streak and streak % self._error_streak_warning == 0:
            logger.warning("Oracle has returned %d consecutive errors", streak)

        for listener in list(self._listeners):
            try:
                listener(classification, entry)
            except Exception:
                logger.exception("Result listener %r failed", listener)
        return entry


__all__ = ["DEFAULT_HISTORY_CAPACITY", "HistoryEntry", "ResultAggregator", "ResultListener"]
