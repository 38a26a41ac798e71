from __future__ import annotations

import argparse
import logging
import os
import platform
import sys
import time
from pathlib import Path
from typing import Sequence

import uvicorn
from dotenv import load_dotenv

from device.aggregator import HistoryEntry, ResultAggregator
from device.capture import FrameSource, OpenCVFrameSource, StubFrameSource
from device.config_loader import AppConfig, CaptureSettings, load_config
from device.harness import FrameSourceFactory, GestureMonitor
from device.scheduler import SchedulerConfig
from device.session import SessionPhase
from oracle import Classification, Classifier, InferenceGateway
from oracle.gemini_client import GeminiGestureClassifier
from oracle.mock import MockGestureClassifier
from oracle.openai_client import OpenAIGestureClassifier

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/gesture.json"


def parse_resolution(value: str | None) -> tuple[int, int] | None:
    if value is None:
        return None
    parts = value.lower().split("x")
    if len(parts) != 2:
        raise argparse.ArgumentTypeError("resolution must be WIDTHxHEIGHT")
    width, height = parts
    try:
        return int(width), int(height)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("resolution must be numeric") from exc


def parse_backend(value: str | None) -> str | int | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return value


def build_frame_source_factory(settings: CaptureSettings) -> FrameSourceFactory:
    if settings.kind == "opencv":
        try:
            converted_source: int | str = int(settings.source)
        except ValueError:
            converted_source = settings.source
        resolution = parse_resolution(settings.resolution)
        backend = parse_backend(settings.backend)

        def open_opencv() -> FrameSource:
            backend_to_use = backend
            preferred_attempted = False
            if backend_to_use is None and platform.system().lower().startswith("win"):
                backend_to_use = "dshow"
                preferred_attempted = True
            try:
                return OpenCVFrameSource(
                    source=converted_source,
                    resolution=resolution,
                    backend=backend_to_use,
                    warmup_frames=settings.warmup_frames,
                    mirror=settings.mirror,
                    jpeg_quality=settings.jpeg_quality,
                )
            except RuntimeError:
                if not preferred_attempted:
                    raise
                return OpenCVFrameSource(
                    source=converted_source,
                    resolution=resolution,
                    backend=None,
                    warmup_frames=settings.warmup_frames,
                    mirror=settings.mirror,
                    jpeg_quality=settings.jpeg_quality,
                )

        return open_opencv

    sample = Path(settings.source) if settings.source else None

    def open_stub() -> FrameSource:
        return StubFrameSource(
            sample_path=sample if sample and sample.exists() else None,
            mirror=settings.mirror,
            jpeg_quality=settings.jpeg_quality,
        )

    return open_stub


def build_classifier(cfg: AppConfig) -> Classifier:
    backend = cfg.oracle.backend
    if backend == "mock":
        return MockGestureClassifier(latency=cfg.oracle.mock_latency)
    if backend == "gemini":
        settings = cfg.oracle.gemini
        key = os.environ.get(settings.api_key_env)
        if not key:
            logger.error("Environment variable %s must be set for the Gemini oracle", settings.api_key_env)
            sys.exit(1)
        return GeminiGestureClassifier(
            api_key=key,
            model=settings.model,
            base_url=settings.base_url,
            timeout=settings.timeout,
        )
    if backend == "openai":
        settings = cfg.oracle.openai
        key = os.environ.get(settings.api_key_env)
        if not key:
            logger.error("Environment variable %s must be set for the OpenAI oracle", settings.api_key_env)
            sys.exit(1)
        return OpenAIGestureClassifier(
            api_key=key,
            model=settings.model,
            base_url=settings.base_url,
            timeout=settings.timeout,
        )
    logger.error("Unsupported oracle backend '%s'", backend)
    sys.exit(1)


def build_monitor(cfg: AppConfig) -> GestureMonitor:
    save_dir = cfg.scheduler.save_frames_dir
    return GestureMonitor(
        frame_source_factory=build_frame_source_factory(cfg.capture),
        gateway=InferenceGateway(classifier=build_classifier(cfg)),
        aggregator=ResultAggregator(
            capacity=cfg.history.capacity,
            threshold=cfg.history.acceptance_threshold,
            error_streak_warning=cfg.history.error_streak_warning,
        ),
        scheduler_config=SchedulerConfig(
            interval_seconds=cfg.scheduler.interval_seconds,
            save_frames_dir=Path(save_dir) if save_dir else None,
        ),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the gesture monitor capture loop",
        epilog=f"Configuration is loaded from {DEFAULT_CONFIG_PATH}. "
        "CLI arguments override config file settings.",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to JSON configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--camera",
        choices=["stub", "opencv"],
        default=None,
        help="camera backend to use",
    )
    parser.add_argument(
        "--camera-source",
        default=None,
        help="camera source index or path (OpenCV) or sample image path (stub)",
    )
    parser.add_argument(
        "--camera-resolution",
        default=None,
        help="force camera resolution WIDTHxHEIGHT (only for OpenCV backend)",
    )
    parser.add_argument(
        "--camera-backend",
        default=None,
        help="preferred OpenCV backend (e.g. dshow, msmf, 700)",
    )
    parser.add_argument(
        "--oracle",
        choices=["gemini", "openai", "mock"],
        default=None,
        help="classification oracle to use",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="seconds between capture ticks",
    )
    parser.add_argument(
        "--save-frames-dir",
        default=None,
        help="directory to store captured frames (set empty string to disable)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="seconds to run before stopping (0 runs until Ctrl+C)",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="expose state and controls over HTTP instead of the console loop",
    )
    parser.add_argument("--host", default=None, help="Override server host")
    parser.add_argument("--port", type=int, default=None, help="Override server port")
    parser.add_argument(
        "--autostart",
        action="store_true",
        help="start sampling immediately when serving over HTTP",
    )
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def apply_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.camera:
        cfg.capture.kind = args.camera
    if args.camera_source is not None:
        cfg.capture.source = args.camera_source
    if args.camera_resolution is not None:
        parse_resolution(args.camera_resolution)
        cfg.capture.resolution = args.camera_resolution
    if args.camera_backend is not None:
        cfg.capture.backend = args.camera_backend
    if args.oracle:
        cfg.oracle.backend = args.oracle
    if args.interval is not None:
        cfg.scheduler.interval_seconds = args.interval
    if args.save_frames_dir is not None:
        cfg.scheduler.save_frames_dir = args.save_frames_dir or None
    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port
    cfg.validate()
    return cfg


def format_result(classification: Classification, entry: HistoryEntry | None) -> str:
    marker = "+" if entry is not None else " "
    line = (
        f"[device] {marker} {classification.glyph} {classification.label} "
        f"{classification.confidence:.0%} - {classification.description}"
    )
    if classification.suggested_action:
        line += f" (action: {classification.suggested_action})"
    return line


def run_console(monitor: GestureMonitor, duration: float) -> int:
    monitor.aggregator.add_listener(lambda c, entry: print(format_result(c, entry)))
    if not monitor.start():
        print(f"[device] Unable to start: {monitor.session.error}")
        return 1
    print("[device] Sampling started. Press Ctrl+C to stop.")
    deadline = time.monotonic() + duration if duration > 0 else None
    try:
        while deadline is None or time.monotonic() < deadline:
            if monitor.session.phase is SessionPhase.FAILED:
                print(f"[device] Camera failure: {monitor.session.error}")
                return 1
            time.sleep(0.2)
    except KeyboardInterrupt:
        print("[device] Sampling stopped by user")
    finally:
        monitor.stop()
        monitor.scheduler.wait_idle(timeout=5.0)
    history = monitor.aggregator.history
    print(f"[device] Accepted {len(history)} gesture(s):")
    for entry in history:
        result = entry.classification
        print(f"  ts={entry.timestamp_ms} {result.glyph} {result.label} {result.confidence:.2f}")
    return 0


def serve(monitor: GestureMonitor, cfg: AppConfig, autostart: bool) -> None:
    from web.server import create_app

    app = create_app(monitor)
    if monitor.open_device() and autostart:
        monitor.start()
    logger.info("Serving gesture monitor on %s:%d", cfg.server.host, cfg.server.port)
    config = uvicorn.Config(
        app,
        host=cfg.server.host,
        port=cfg.server.port,
        log_level="info",
        timeout_graceful_shutdown=1,
    )
    uvicorn.Server(config).run()


def main(argv: Sequence[str] | None = None) -> None:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(levelname)s [%(name)s] %(message)s",
        )

    try:
        cfg = load_config(args.config if Path(args.config).exists() else None)
        cfg = apply_overrides(cfg, args)
    except (ValueError, argparse.ArgumentTypeError) as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    logger.info(
        "Camera=%s source=%s oracle=%s interval=%.2fs",
        cfg.capture.kind,
        cfg.capture.source,
        cfg.oracle.backend,
        cfg.scheduler.interval_seconds,
    )

    monitor = build_monitor(cfg)
    exit_code = 0
    try:
        if args.serve:
            serve(monitor, cfg, args.autostart)
        else:
            exit_code = run_console(monitor, args.duration)
    finally:
        monitor.close()
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
