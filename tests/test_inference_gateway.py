from __future__ import annotations

import json
from unittest.mock import Mock, patch

import requests

from oracle.gateway import InferenceGateway
from oracle.gemini_client import GeminiGestureClassifier
from oracle.mock import MockGestureClassifier
from oracle.types import ERROR_CLASSIFICATION, Classification


class _RaisingClassifier:
    def __init__(self, exc: Exception) -> None:
        self._exc = exc
        self.calls = 0

    def classify(self, image_bytes: bytes) -> Classification:
        self.calls += 1
        raise self._exc


class _WrongTypeClassifier:
    def classify(self, image_bytes: bytes):
        return {"gesture": "Fist"}


def test_transport_failure_returns_sentinel() -> None:
    fake_requests = Mock()
    fake_requests.post.side_effect = requests.ConnectionError("connection refused")
    gateway = InferenceGateway(classifier=GeminiGestureClassifier(api_key="key"))

    with patch("oracle.gemini_client.requests", fake_requests):
        result = gateway.classify(b"jpeg")

    assert result == ERROR_CLASSIFICATION
    assert result.glyph == "⚠"
    assert fake_requests.post.call_count == 1


def test_http_error_and_malformed_body_return_sentinel() -> None:
    gateway = InferenceGateway(classifier=GeminiGestureClassifier(api_key="key"))

    failing = Mock()
    failing.raise_for_status.side_effect = requests.HTTPError("429 Too Many Requests")
    empty = Mock()
    empty.raise_for_status.return_value = None
    empty.json.return_value = {"candidates": []}
    not_json = Mock()
    not_json.raise_for_status.return_value = None
    not_json.json.return_value = {"candidates": [{"content": {"parts": [{"text": "Fist!"}]}}]}
    out_of_range = Mock()
    out_of_range.raise_for_status.return_value = None
    out_of_range.json.return_value = {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {
                            "text": json.dumps(
                                {
                                    "gesture": "Fist",
                                    "confidence": 7,
                                    "description": "fist",
                                    "emoji": "✊",
                                }
                            )
                        }
                    ]
                }
            }
        ]
    }

    for response in (failing, empty, not_json, out_of_range):
        fake_requests = Mock()
        fake_requests.post.return_value = response
        with patch("oracle.gemini_client.requests", fake_requests):
            assert gateway.classify(b"jpeg") == ERROR_CLASSIFICATION


def test_missing_api_key_is_absorbed() -> None:
    gateway = InferenceGateway(classifier=GeminiGestureClassifier(api_key=""))
    assert gateway.classify(b"jpeg") == ERROR_CLASSIFICATION


def test_unexpected_exceptions_and_types_are_absorbed() -> None:
    raising = _RaisingClassifier(KeyError("boom"))
    assert InferenceGateway(classifier=raising).classify(b"x") == ERROR_CLASSIFICATION
    assert raising.calls == 1
    assert InferenceGateway(classifier=_WrongTypeClassifier()).classify(b"x") == ERROR_CLASSIFICATION


def test_successful_result_passes_through_without_retry() -> None:
    classifier = MockGestureClassifier(
        script=[
            {
                "gesture": "Pointing",
                "confidence": 0.88,
                "description": "Index finger extended.",
                "emoji": "☝️",
            }
        ]
    )
    gateway = InferenceGateway(classifier=classifier)

    result = gateway.classify(b"12345")

    assert result.label == "Pointing"
    assert result.confidence == 0.88
    assert classifier.calls == [5]


def test_mock_script_exceptions_become_sentinel() -> None:
    classifier = MockGestureClassifier(script=[RuntimeError("quota exceeded")])
    gateway = InferenceGateway(classifier=classifier)

    assert gateway.classify(b"frame") == ERROR_CLASSIFICATION
