from __future__ import annotations

import io
import pathlib
import time
from dataclasses import dataclass
from typing import Protocol

from PIL import Image, ImageOps

DEFAULT_JPEG_QUALITY = 80


class DeviceUnavailable(RuntimeError):
    """The device is open but has no usable frame yet; skip this tick."""


class DeviceDenied(RuntimeError):
    """The device could not be acquired (permission denied or missing)."""


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Frame:
    """Container for a captured, encoded frame."""

    data: bytes
    width: int
    height: int
    captured_at_ms: int
    encoding: str = "jpeg"


class FrameSource(Protocol):
    def acquire(self) -> Frame: ...

    def is_active(self) -> bool: ...

    def release(self) -> None: ...


class StubFrameSource:
    """Serve a sample image (or a blank placeholder) as if it came from a webcam."""

    def __init__(
        self,
        sample_path: pathlib.Path | None = None,
        *,
        ready: bool = True,
        mirror: bool = True,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        placeholder_size: tuple[int, int] = (64, 48),
    ) -> None:
        self._sample_path = sample_path
        self._ready = ready
        self._active = True
        self._mirror = mirror
        self._jpeg_quality = jpeg_quality
        self._placeholder_size = placeholder_size
        self._image: Image.Image | None = None

    def mark_ready(self, ready: bool = True) -> None:
        self._ready = ready

    def is_active(self) -> bool:
        return self._active

    def acquire(self) -> Frame:
        if not self._active or not self._ready:
            raise DeviceUnavailable("Stub camera has not produced a frame yet")
        image = self._load()
        width, height = image.size
        if width == 0 or height == 0:
            raise DeviceUnavailable("Stub camera frame has zero dimensions")
        captured_at = now_ms()
        if self._mirror:
            image = ImageOps.mirror(image)
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=self._jpeg_quality)
        return Frame(
            data=buffer.getvalue(),
            width=width,
            height=height,
            captured_at_ms=captured_at,
        )

    def release(self) -> None:
        self._active = False

    def _load(self) -> Image.Image:
        if self._image is None:
            if self._sample_path and self._sample_path.exists():
                with Image.open(self._sample_path) as source:
                    self._image = source.convert("RGB")
            else:
                self._image = Image.new("RGB", self._placeholder_size, color=(24, 24, 24))
        return self._image


class OpenCVFrameSource:
    """Capture mirrored JPEG frames from an OpenCV-compatible source (USB/RTSP)."""

    _BACKEND_ALIASES = {
        "any": "CAP_ANY",
        "auto": "CAP_ANY",
        "dshow": "CAP_DSHOW",
        "directshow": "CAP_DSHOW",
        "msmf": "CAP_MSMF",
        "mediafoundation": "CAP_MSMF",
        "v4l2": "CAP_V4L2",
        "avfoundation": "CAP_AVFOUNDATION",
        "opencv": "CAP_ANY",
    }

    def __init__(
        self,
        source: int | str = 0,
        *,
        resolution: tuple[int, int] | None = None,
        backend: str | int | None = None,
        warmup_frames: int = 2,
        mirror: bool = True,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
    ) -> None:
        try:
            import cv2  # type: ignore
        except ImportError as exc:  # pragma: no cover - depends on optional dep
            raise RuntimeError("opencv-python is required for OpenCVFrameSource") from exc

        self._cv2 = cv2
        self._source = source
        self._mirror = mirror
        self._jpeg_quality = jpeg_quality
        self._cap = cv2.VideoCapture(source, self._resolve_backend(backend, cv2))
        if not self._cap.isOpened():
            self._cap.release()
            self._cap = None
            raise DeviceDenied(f"Camera access denied or unavailable: {source!r}")
        if resolution:
            width, height = resolution
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, float(width))
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, float(height))
        if warmup_frames > 0:
            self._warmup(warmup_frames)

    def _resolve_backend(self, backend: str | int | None, cv2_module) -> int:
        if backend is None:
            return cv2_module.CAP_ANY
        if isinstance(backend, int):
            return backend
        key = backend.strip().lower()
        attr_name = self._BACKEND_ALIASES.get(key)
        if attr_name is None:
            raise ValueError(f"Unknown OpenCV backend alias: {backend!r}")
        return getattr(cv2_module, attr_name, cv2_module.CAP_ANY)

    def _warmup(self, warmup_frames: int) -> None:
        for _ in range(warmup_frames):
            ok, _ = self._cap.read()
            if not ok:
                break

    def is_active(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def acquire(self) -> Frame:
        if not self.is_active():
            raise DeviceUnavailable("Camera is not active")
        ok, image = self._cap.read()
        if not ok or image is None:
            raise DeviceUnavailable("Camera has not produced a frame yet")
        height, width = image.shape[:2]
        if width == 0 or height == 0:
            raise DeviceUnavailable("Camera frame has zero dimensions")
        captured_at = now_ms()
        if self._mirror:
            image = self._cv2.flip(image, 1)
        success, buffer = self._cv2.imencode(
            ".jpg", image, [self._cv2.IMWRITE_JPEG_QUALITY, int(self._jpeg_quality)]
        )
        if not success:
            raise DeviceUnavailable("OpenCV failed to encode frame as jpeg")
        return Frame(
            data=buffer.tobytes(),
            width=int(width),
            height=int(height),
            captured_at_ms=captured_at,
        )

    def release(self) -> None:
        if getattr(self, "_cap", None) is not None:
            self._cap.release()
            self._cap = None

    def __del__(self) -> None:  # pragma: no cover - destructor best effort
        try:
            self.release()
        except Exception:
            pass


__all__ = [
    "DEFAULT_JPEG_QUALITY",
    "DeviceDenied",
    "DeviceUnavailable",
    "Frame",
    "FrameSource",
    "OpenCVFrameSource",
    "StubFrameSource",
    "now_ms",
]
