from __future__ import annotations

from .types import RECOGNIZED_GESTURES

_GESTURE_HINTS = {
    "Thumbs Up": "Approval, Good",
    "Thumbs Down": "Disapproval, Bad",
    "Peace Sign": "Victory, Peace",
    "Open Palm": "Stop, Hello",
    "Fist": "Strength, Solidarity, Rock",
    "Pointing": "Direction, Attention",
    "OK Sign": "Okay, Perfect",
    "Heart Hands": "Love, Appreciation",
    "Crossed Fingers": "Luck",
}


def build_system_instruction() -> str:
    gestures = "\n".join(
        f'- "{name}" ({_GESTURE_HINTS[name]})' for name in RECOGNIZED_GESTURES
    )
    return (
        "You are an advanced visual AI expert specializing in Human-Computer Interaction (HCI) "
        "and hand gesture recognition.\n"
        "Your task is to analyze the provided image frame from a webcam and identify the primary "
        "hand gesture being performed.\n\n"
        f"Recognize common gestures such as:\n{gestures}\n\n"
        'If no clear hand gesture is visible, return "None".\n'
        "Be precise. If the confidence is low, indicate it."
    )


SYSTEM_INSTRUCTION = build_system_instruction()

TASK_INSTRUCTION = "Identify the hand gesture in this image."

# Field descriptions shared by the Gemini schema and the OpenAI JSON prompt.
RESPONSE_FIELDS = {
    "gesture": "The name of the detected gesture. Use 'None' if no gesture detected.",
    "confidence": "Confidence score between 0.0 and 1.0",
    "description": "A short, one-sentence description of what the hand is doing.",
    "emoji": "A relevant emoji for the gesture (e.g., 👍, ✌️, ✋). Use ❓ for None.",
    "actionSuggested": "A suggested UI action based on the gesture (e.g., 'Submit', 'Cancel', 'Scroll').",
}

REQUIRED_FIELDS = ("gesture", "confidence", "description", "emoji")


def gemini_response_schema() -> dict[str, object]:
    properties: dict[str, object] = {}
    for name, description in RESPONSE_FIELDS.items():
        kind = "NUMBER" if name == "confidence" else "STRING"
        properties[name] = {"type": kind, "description": description}
    return {
        "type": "OBJECT",
        "properties": properties,
        "required": list(REQUIRED_FIELDS),
    }


def json_field_instructions() -> str:
    lines = [f"- '{name}': {description}" for name, description in RESPONSE_FIELDS.items()]
    required = ", ".join(f"'{name}'" for name in REQUIRED_FIELDS)
    return (
        "Return a JSON object with the following fields:\n"
        + "\n".join(lines)
        + f"\nFields {required} are required."
    )


__all__ = [
    "SYSTEM_INSTRUCTION",
    "TASK_INSTRUCTION",
    "RESPONSE_FIELDS",
    "REQUIRED_FIELDS",
    "gemini_response_schema",
    "json_field_instructions",
]
