from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any

import requests

from .prompt import SYSTEM_INSTRUCTION, TASK_INSTRUCTION, json_field_instructions
from .types import Classification, Classifier, parse_classification


@dataclass
class OpenAIGestureClassifier(Classifier):
    """Classify hand gestures with an OpenAI vision-capable chat model."""

    api_key: str
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    timeout: float = 30.0

    def classify(self, image_bytes: bytes) -> Classification:
        if not self.api_key:
            raise RuntimeError("OpenAI API key is required to classify frames")

        payload = self._build_payload(image_bytes)
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        response_data = self._send_request(url, payload)
        message = self._extract_message_content(response_data)
        return self._parse_message(message)

    def _send_request(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = requests.post(
                url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except Exception as exc:
            raise RuntimeError(f"Failed to reach OpenAI API: {exc}") from exc

    def _build_payload(self, image_bytes: bytes) -> dict[str, Any]:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        return {
            "model": self.model,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_INSTRUCTION},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": f"{TASK_INSTRUCTION}\n{json_field_instructions()}",
                        },
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{encoded}"},
                        },
                    ],
                },
            ],
        }

    def _extract_message_content(self, data: dict[str, Any]) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise RuntimeError("Unexpected response format from OpenAI API") from exc
        if not isinstance(content, str) or not content.strip():
            raise RuntimeError("No response text from OpenAI")
        return content

    def _parse_message(self, message: str) -> Classification:
        try:
            payload = json.loads(message)
        except json.JSONDecodeError as exc:
            raise RuntimeError("OpenAI API response was not valid JSON") from exc
        return parse_classification(payload)


__all__ = ["OpenAIGestureClassifier"]
