from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any

import requests

from .prompt import SYSTEM_INSTRUCTION, TASK_INSTRUCTION, gemini_response_schema
from .types import Classification, Classifier, parse_classification


@dataclass
class GeminiGestureClassifier(Classifier):
    """Classify hand gestures by delegating to the Google Gemini multimodal API."""

    api_key: str
    model: str = "models/gemini-2.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout: float = 30.0

    def classify(self, image_bytes: bytes) -> Classification:
        if not self.api_key:
            raise RuntimeError("Gemini API key is required to classify frames")

        payload = self._build_payload(image_bytes)
        url = f"{self.base_url.rstrip('/')}/{self.model}:generateContent"
        response_data = self._send_request(url, payload)
        message = self._extract_message_content(response_data)
        return self._parse_message(message)

    def _send_request(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = requests.post(
                url,
                params={"key": self.api_key},
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except Exception as exc:
            raise RuntimeError(f"Failed to reach Gemini API: {exc}") from exc

    def _build_payload(self, image_bytes: bytes) -> dict[str, Any]:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        return {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {
                            "inline_data": {
                                "mime_type": "image/jpeg",
                                "data": encoded,
                            }
                        },
                        {"text": TASK_INSTRUCTION},
                    ],
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": gemini_response_schema(),
            },
        }

    def _extract_message_content(self, data: dict[str, Any]) -> str:
        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise RuntimeError("Unexpected response format from Gemini API") from exc
        if not text.strip():
            raise RuntimeError("No response text from Gemini")
        return text

    def _parse_message(self, message: str) -> Classification:
        try:
            payload = json.loads(message)
        except json.JSONDecodeError as exc:
            raise RuntimeError("Gemini API response was not valid JSON") from exc
        return parse_classification(payload)


__all__ = ["GeminiGestureClassifier"]
