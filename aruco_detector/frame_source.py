"""Frame source abstraction for camera input.

Provides a unified interface for the inputs the detector can run from:
- Raw frame pipes (metadata header + pixel payload)
- Device cameras (USB via V4L2)
- In-memory replay of prepared images
"""

from __future__ import annotations

import re
import struct
import time
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

import cv2
import numpy as np

from .config import SourceConfig
from .errors import ConfigInvalid, FrameUnavailable, UnsupportedImageFormat
from .marker_types import RawFrame

# timestamp_ns, width, height, size_bytes
FRAME_HEADER = struct.Struct("<QIII")

SUPPORTED_FORMATS = ("gray8", "nv12")


def frame_to_gray(raw: RawFrame, image_format: str) -> np.ndarray:
    """
    Return the frame's luma plane as a (height, width) uint8 image.

    ``gray8`` buffers are used as-is; for ``nv12`` the leading Y plane is the
    gray image and the interleaved chroma plane is ignored.
    """
    fmt = (image_format or "").strip().lower()
    if fmt not in SUPPORTED_FORMATS:
        raise UnsupportedImageFormat(f"Unsupported image_format: {image_format}")

    if isinstance(raw.data, (bytes, bytearray, memoryview)):
        buf = np.frombuffer(raw.data, dtype=np.uint8)
    else:
        buf = np.asarray(raw.data, dtype=np.uint8).reshape(-1)

    need = int(raw.width) * int(raw.height)
    if need <= 0 or buf.size < need:
        raise FrameUnavailable(
            f"frame {raw.frame_id}: {buf.size} bytes for {raw.width}x{raw.height} {fmt}"
        )
    return buf[:need].reshape(int(raw.height), int(raw.width)).copy()


class FrameSource(ABC):
    """Abstract base class for frame sources."""

    @abstractmethod
    def start(self) -> None:
        """Start the frame source. Called before any read() calls."""
        ...

    @abstractmethod
    def read(self) -> Optional[RawFrame]:
        """Read the next frame.

        Blocks until a frame arrives. Returns None once the stream has ended and
        raises FrameUnavailable when a frame could not be read this time.
        """
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop the frame source and release resources."""
        ...


class PipeFrameSource(FrameSource):
    """Reads ``FRAME_HEADER`` + payload records from a FIFO or file."""

    def __init__(self, path: str):
        self.path = path
        self._fh: Any = None
        self.frame_id = 0

    def start(self) -> None:
        self._fh = open(self.path, "rb")
        self.frame_id = 0

    def _read_exact(self, n: int) -> bytes:
        chunks = []
        remaining = n
        while remaining > 0:
            chunk = self._fh.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def read(self) -> Optional[RawFrame]:
        if self._fh is None:
            raise FrameUnavailable("pipe not started")

        header = self._read_exact(FRAME_HEADER.size)
        if not header:
            return None
        if len(header) != FRAME_HEADER.size:
            raise FrameUnavailable("truncated frame header")

        timestamp_ns, width, height, size_bytes = FRAME_HEADER.unpack(header)
        payload = self._read_exact(size_bytes)
        if len(payload) != size_bytes:
            raise FrameUnavailable(f"truncated payload ({len(payload)}/{size_bytes} bytes)")

        self.frame_id += 1
        return RawFrame(payload, width, height, timestamp_ns, self.frame_id)

    def stop(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None


class DeviceCameraSource(FrameSource):
    """USB camera source using OpenCV's V4L2 interface, delivered as gray8."""

    def __init__(self, device: int | str, fps: int, width: int, height: int):
        self.device = device
        self.fps = fps
        self.width = width
        self.height = height
        self.cap: Any = None
        self.frame_id = 0

    def start(self) -> None:
        """Open the camera device."""
        if isinstance(self.device, int):
            self.cap = cv2.VideoCapture(self.device, cv2.CAP_V4L2)
        else:
            dev_str = str(self.device)
            match = re.match(r"^/dev/video(\d+)$", dev_str)
            if match:
                self.cap = cv2.VideoCapture(int(match.group(1)), cv2.CAP_V4L2)
            else:
                self.cap = cv2.VideoCapture(dev_str)

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.cap.set(cv2.CAP_PROP_FPS, self.fps)

        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open camera: {self.device}")

        self.frame_id = 0

    def read(self) -> Optional[RawFrame]:
        if self.cap is None:
            raise FrameUnavailable("camera not started")

        ok, img = self.cap.read()
        if not ok:
            raise FrameUnavailable(f"no frame from camera {self.device}")

        if img.ndim == 3:
            img = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        self.frame_id += 1
        h, w = img.shape[:2]
        return RawFrame(img, w, h, time.time_ns(), self.frame_id)

    def stop(self) -> None:
        """Release camera resources."""
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class ReplayFrameSource(FrameSource):
    """Serves prepared gray images (or RawFrames) in order, then ends."""

    def __init__(self, frames: Iterable[Any]):
        self._frames = list(frames)
        self._pos = 0
        self.frame_id = 0

    def start(self) -> None:
        self._pos = 0
        self.frame_id = 0

    def read(self) -> Optional[RawFrame]:
        if self._pos >= len(self._frames):
            return None
        item = self._frames[self._pos]
        self._pos += 1
        self.frame_id += 1
        if isinstance(item, RawFrame):
            return item
        img = np.asarray(item, dtype=np.uint8)
        h, w = img.shape[:2]
        return RawFrame(img, w, h, time.time_ns(), self.frame_id)

    def stop(self) -> None:
        return None


def build_source(config: SourceConfig) -> FrameSource:
    kind = (config.type or "").strip().lower()
    if kind == "pipe":
        if not config.path:
            raise ConfigInvalid("source.path (camera_pipe) is required for a pipe source")
        return PipeFrameSource(config.path)
    if kind in ("device", "v4l2"):
        return DeviceCameraSource(config.device, config.fps, config.width, config.height)
    raise ConfigInvalid(f"Unknown source type: {config.type!r}")
