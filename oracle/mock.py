from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Iterator, List

from .types import Classification, parse_classification

_DEFAULT_SCRIPT: list[dict[str, Any]] = [
    {
        "gesture": "Thumbs Up",
        "confidence": 0.92,
        "description": "A hand with the thumb raised and fingers curled.",
        "emoji": "👍",
        "actionSuggested": "Submit",
    },
    {
        "gesture": "None",
        "confidence": 0.95,
        "description": "No hand is visible in the frame.",
        "emoji": "❓",
    },
    {
        "gesture": "Peace Sign",
        "confidence": 0.74,
        "description": "Index and middle fingers raised in a V shape.",
        "emoji": "✌️",
    },
    {
        "gesture": "Open Palm",
        "confidence": 0.55,
        "description": "An open hand facing the camera, partially out of frame.",
        "emoji": "✋",
        "actionSuggested": "Cancel",
    },
]


@dataclass
class MockGestureClassifier:
    """Offline oracle that replays a script of raw responses in a loop.

    Script items are oracle-shaped dicts; an ``Exception`` instance in the
    script is raised instead, which exercises the gateway's fallback path.
    """

    script: List[Any] = field(default_factory=lambda: list(_DEFAULT_SCRIPT))
    latency: float = 0.0
    calls: List[int] = field(default_factory=list)
    _cursor: Iterator[Any] | None = field(init=False, default=None, repr=False)

    def classify(self, image_bytes: bytes) -> Classification:
        self.calls.append(len(image_bytes))
        if self._cursor is None:
            if not self.script:
                raise RuntimeError("Mock oracle has an empty script")
            self._cursor = itertools.cycle(self.script)
        item = next(self._cursor)
        if self.latency > 0:
            time.sleep(self.latency)
        if isinstance(item, Exception):
            raise item
        return parse_classification(item)


__all__ = ["MockGestureClassifier"]
