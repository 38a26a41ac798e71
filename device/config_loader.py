"""JSON configuration for the gesture monitor.

Settings are read from ``config/gesture.json`` (see
``config/gesture.example.json``). Every section and key is optional; missing
values fall back to the dataclass defaults below. API keys are never stored in
the file, only the name of the environment variable that holds them.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ORACLE_BACKENDS = ("gemini", "openai", "mock")
CAMERA_KINDS = ("stub", "opencv")


@dataclass
class CaptureSettings:
    kind: str = "opencv"
    source: str = "0"
    resolution: str | None = "640x480"
    backend: str | None = None
    warmup_frames: int = 2
    jpeg_quality: int = 80
    mirror: bool = True


@dataclass
class SchedulerSettings:
    interval_seconds: float = 1.5
    save_frames_dir: str | None = None


@dataclass
class HistorySettings:
    capacity: int = 20
    acceptance_threshold: float = 0.6
    error_streak_warning: int = 5


@dataclass
class BackendSettings:
    api_key_env: str
    model: str
    base_url: str
    timeout: float = 30.0


def _gemini_defaults() -> BackendSettings:
    return BackendSettings(
        api_key_env="GEMINI_API_KEY",
        model="models/gemini-2.5-flash",
        base_url="https://generativelanguage.googleapis.com/v1beta",
    )


def _openai_defaults() -> BackendSettings:
    return BackendSettings(
        api_key_env="OPENAI_API_KEY",
        model="gpt-4o-mini",
        base_url="https://api.openai.com/v1",
    )


@dataclass
class OracleSettings:
    backend: str = "gemini"
    gemini: BackendSettings = field(default_factory=_gemini_defaults)
    openai: BackendSettings = field(default_factory=_openai_defaults)
    mock_latency: float = 0.0


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class AppConfig:
    capture: CaptureSettings = field(default_factory=CaptureSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    history: HistorySettings = field(default_factory=HistorySettings)
    oracle: OracleSettings = field(default_factory=OracleSettings)
    server: ServerSettings = field(default_factory=ServerSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppConfig:
        capture = _section(data, "capture")
        scheduler = _section(data, "scheduler")
        history = _section(data, "history")
        oracle = _section(data, "oracle")
        server = _section(data, "server")

        config = cls(
            capture=CaptureSettings(
                kind=str(capture.get("kind", "opencv")).strip().lower(),
                source=str(capture.get("source", "0")),
                resolution=_optional_str(capture.get("resolution", "640x480")),
                backend=_optional_str(capture.get("backend")),
                warmup_frames=int(capture.get("warmup_frames", 2)),
                jpeg_quality=int(capture.get("jpeg_quality", 80)),
                mirror=capture.get("mirror", True),
            ),
            scheduler=SchedulerSettings(
                interval_seconds=float(scheduler.get("interval_seconds", 1.5)),
                save_frames_dir=_optional_str(scheduler.get("save_frames_dir")),
            ),
            history=HistorySettings(
                capacity=int(history.get("capacity", 20)),
                acceptance_threshold=float(history.get("acceptance_threshold", 0.6)),
                error_streak_warning=int(history.get("error_streak_warning", 5)),
            ),
            oracle=OracleSettings(
                backend=str(oracle.get("backend", "gemini")).strip().lower(),
                gemini=_backend(_section(oracle, "gemini"), _gemini_defaults()),
                openai=_backend(_section(oracle, "openai"), _openai_defaults()),
                mock_latency=float(oracle.get("mock_latency", 0.0)),
            ),
            server=ServerSettings(
                host=str(server.get("host", "127.0.0.1")),
                port=int(server.get("port", 8000)),
            ),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.capture.kind not in CAMERA_KINDS:
            raise ValueError(f"capture.kind must be one of {CAMERA_KINDS}, got {self.capture.kind!r}")
        if not 1 <= self.capture.jpeg_quality <= 100:
            raise ValueError("capture.jpeg_quality must be between 1 and 100")
        if not isinstance(self.capture.mirror, bool):
            raise ValueError(f"capture.mirror must be true or false, got {self.capture.mirror!r}")
        if self.scheduler.interval_seconds <= 0:
            raise ValueError("scheduler.interval_seconds must be positive")
        if self.history.capacity < 1:
            raise ValueError("history.capacity must be at least 1")
        if not 0.0 <= self.history.acceptance_threshold <= 1.0:
            raise ValueError("history.acceptance_threshold must be within [0, 1]")
        if self.oracle.backend not in ORACLE_BACKENDS:
            raise ValueError(
                f"oracle.backend must be one of {ORACLE_BACKENDS}, got {self.oracle.backend!r}"
            )


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        logger.warning("Ignoring non-object config section %r", name)
        return {}
    return value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _backend(data: dict[str, Any], defaults: BackendSettings) -> BackendSettings:
    return BackendSettings(
        api_key_env=str(data.get("api_key_env", defaults.api_key_env)),
        model=str(data.get("model", defaults.model)),
        base_url=str(data.get("base_url", defaults.base_url)),
        timeout=float(data.get("timeout", defaults.timeout)),
    )


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from ``path``; ``None`` yields the defaults.

    Raises ``FileNotFoundError`` for a missing file and ``ValueError`` for
    malformed JSON or invalid values.
    """
    if path is None:
        return AppConfig()
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(config_path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root in {config_path} must be an object")
    logger.debug("Loaded configuration from %s", config_path)
    return AppConfig.from_dict(data)


__all__ = [
    "AppConfig",
    "BackendSettings",
    "CaptureSettings",
    "HistorySettings",
    "OracleSettings",
    "SchedulerSettings",
    "ServerSettings",
    "load_config",
]
