from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

# Accepted results must score strictly above this threshold.
ACCEPTANCE_THRESHOLD: float = 0.6

NONE_LABEL = "none"
ERROR_LABEL = "error"

RECOGNIZED_GESTURES: tuple[str, ...] = (
    "Thumbs Up",
    "Thumbs Down",
    "Peace Sign",
    "Open Palm",
    "Fist",
    "Pointing",
    "OK Sign",
    "Heart Hands",
    "Crossed Fingers",
)


class Classifier(Protocol):
    def classify(self, image_bytes: bytes) -> "Classification": ...


@dataclass(frozen=True)
class Classification:
    label: str
    confidence: float
    description: str
    glyph: str
    suggested_action: str | None = None

    @property
    def is_sentinel(self) -> bool:
        return self.label.strip().lower() in {NONE_LABEL, ERROR_LABEL}

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "confidence": self.confidence,
            "description": self.description,
            "glyph": self.glyph,
            "suggested_action": self.suggested_action,
        }


ERROR_CLASSIFICATION = Classification(
    label=ERROR_LABEL,
    confidence=0.0,
    description="Failed to analyze frame.",
    glyph="⚠",
)


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _required_text(payload: Mapping[str, Any], *keys: str) -> str:
    value = _pick(payload, *keys)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Oracle response is missing required field {keys[0]!r}")
    return value.strip()


def parse_classification(payload: Any) -> Classification:
    """Validate a decoded oracle response and build a Classification.

    The oracle is asked for ``gesture``/``emoji``/``actionSuggested``; the
    ``label``/``glyph``/``suggested_action`` names are accepted as well.
    Raises ``ValueError`` when a required field is absent or the confidence is
    not a number in ``[0, 1]``.
    """
    if not isinstance(payload, Mapping):
        raise ValueError("Oracle response must be a JSON object")

    label = _required_text(payload, "label", "gesture")
    description = _required_text(payload, "description")
    glyph = _required_text(payload, "glyph", "emoji")

    raw_confidence = _pick(payload, "confidence", "score")
    # bool is an int subclass; reject it explicitly
    if isinstance(raw_confidence, bool) or not isinstance(raw_confidence, (int, float)):
        raise ValueError(f"Oracle confidence must be numeric, got {raw_confidence!r}")
    confidence = float(raw_confidence)
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"Oracle confidence {confidence} outside [0, 1]")

    action_value = _pick(payload, "suggested_action", "actionSuggested", "suggestedAction")
    suggested_action = None
    if isinstance(action_value, str):
        suggested_action = action_value.strip() or None

    return Classification(
        label=label,
        confidence=confidence,
        description=description,
        glyph=glyph,
        suggested_action=suggested_action,
    )


def is_accepted(classification: Classification, threshold: float = ACCEPTANCE_THRESHOLD) -> bool:
    return not classification.is_sentinel and classification.confidence > threshold


__all__ = [
    "ACCEPTANCE_THRESHOLD",
    "Classification",
    "Classifier",
    "ERROR_CLASSIFICATION",
    "ERROR_LABEL",
    "NONE_LABEL",
    "RECOGNIZED_GESTURES",
    "is_accepted",
    "parse_classification",
]
