from __future__ import annotations

from .types import Classification, Classifier, ERROR_CLASSIFICATION
from .gateway import InferenceGateway

__all__ = [
    "Classification",
    "Classifier",
    "ERROR_CLASSIFICATION",
    "InferenceGateway",
    "GeminiGestureClassifier",
    "OpenAIGestureClassifier",
    "MockGestureClassifier",
]


def __getattr__(name: str):
    if name == "GeminiGestureClassifier":
        from .gemini_client import GeminiGestureClassifier

        return GeminiGestureClassifier
    if name == "OpenAIGestureClassifier":
        from .openai_client import OpenAIGestureClassifier

        return OpenAIGestureClassifier
    if name == "MockGestureClassifier":
        from .mock import MockGestureClassifier

        return MockGestureClassifier
    raise AttributeError(f"module 'oracle' has no attribute {name!r}")
