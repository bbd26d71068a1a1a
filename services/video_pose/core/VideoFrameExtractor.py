import math
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import unquote, urlparse

import cv2
import numpy as np

from services.video_pose.core.Errors import (
    DecodeFailedError,
    DurationUnavailableError,
    OpenFailedError,
)
from services.video_pose.utils.logger import logger

CONTENT_SCHEME = "content://"
FILE_SCHEME = "file://"

# Seeking is slow with most containers; short forward gaps are cheaper to decode through.
MAX_GRAB_AHEAD = 8

ContentResolver = Callable[[str], str]


@dataclass
class FrameSample:
    timestamp_ms: int
    # Index of the decoded frame the sample came from (several timestamps can snap to one frame)
    frame_index: int
    # HxWx3 uint8, BGR as delivered by the decoder
    pixels: np.ndarray


class VideoSource:
    """An opened video. Decoder access is serialized; close() is idempotent and never waits on a read."""

    def __init__(self, uri: str, path: str, cap: "cv2.VideoCapture"):
        self.uri = uri
        self.path = path
        self._cap = cap
        # Held across seek + read so one worker decodes at a time.
        self._decode_lock = threading.Lock()
        # Guards _cap / _closing / _reading only; never held across a decoder call.
        self._state_lock = threading.Lock()
        self._closing = False
        self._reading = False
        self._next_index: Optional[int] = 0

        self.fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self.frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self.width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        self.height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        if self.fps <= 0:
            raise DurationUnavailableError(f"Decoder reported no frame rate for {uri}")
        if self.frame_count > 0:
            self.duration_ms = int(self.frame_count * 1000 / self.fps)
        else:
            # Some containers carry no frame count in their header.
            self.duration_ms = self._duration_from_end()
            self.frame_count = max(1, int(self.duration_ms * self.fps / 1000))

    def _duration_from_end(self) -> int:
        cap = self._cap
        try:
            moved = cap.set(cv2.CAP_PROP_POS_AVI_RATIO, 1.0)
            end_ms = float(cap.get(cv2.CAP_PROP_POS_MSEC) or 0.0) if moved else 0.0
            cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
        except cv2.error as e:
            raise DurationUnavailableError(f"Cannot seek to the end of {self.uri}: {e}") from e
        if end_ms <= 0:
            raise DurationUnavailableError(
                f"Decoder reported no usable duration for {self.uri} (fps={self.fps}, frames=0)"
            )
        logger.debug(f"{self.uri} has no frame count; duration {end_ms:.0f} ms found by seeking to the end")
        return int(end_ms)

    @property
    def closed(self) -> bool:
        return self._closing

    def frame_index_at(self, timestamp_ms: int) -> int:
        """Index of the last frame shown at or before `timestamp_ms`."""
        if timestamp_ms < 0:
            raise ValueError("timestamp_ms must be non-negative")
        # The decoder addresses frames, not milliseconds; this is the only unit conversion.
        idx = int(math.floor(timestamp_ms * self.fps / 1000.0 + 1e-6))
        return min(idx, max(self.frame_count - 1, 0))

    def _seek(self, idx: int) -> None:
        # None: decoder position unknown after a failed read
        gap = None if self._next_index is None else idx - self._next_index
        if gap == 0:
            return
        if gap is not None and 0 < gap <= MAX_GRAB_AHEAD:
            for _ in range(gap):
                if not self._cap.grab():
                    break
        else:
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, idx)

    def _decode(self, idx: int) -> Optional[np.ndarray]:
        try:
            self._seek(idx)
            ok, frame_bgr = self._cap.read()
        except cv2.error as e:
            self._next_index = None
            raise DecodeFailedError(f"Failed to decode frame {idx} of {self.uri}: {e}") from e
        if not ok or frame_bgr is None:
            self._next_index = None
            return None
        self._next_index = idx + 1
        return frame_bgr

    def frame_at(self, timestamp_ms: int) -> Optional[FrameSample]:
        """Decode the frame at or before `timestamp_ms`; None if the decoder has nothing there."""
        idx = self.frame_index_at(timestamp_ms)
        with self._decode_lock:
            with self._state_lock:
                if self._closing:
                    raise DecodeFailedError(f"Video source is closed: {self.uri}")
                self._reading = True
            try:
                frame_bgr = self._decode(idx)
            finally:
                self._end_read()
        if frame_bgr is None:
            return None
        return FrameSample(timestamp_ms=int(timestamp_ms), frame_index=idx, pixels=frame_bgr)

    def _end_read(self) -> None:
        with self._state_lock:
            self._reading = False
            cap = None
            if self._closing:
                # close() arrived mid-read and left the release to us.
                cap, self._cap = self._cap, None
        if cap is not None:
            cap.release()

    def close(self) -> None:
        with self._state_lock:
            self._closing = True
            if self._reading:
                return
            cap, self._cap = self._cap, None
        if cap is not None:
            cap.release()

    def __enter__(self) -> "VideoSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class VideoFrameExtractor:
    def __init__(self, resolver: Optional[ContentResolver] = None):
        """
        resolver: host hook mapping a content:// URI to a readable local path.
                  Without one, content:// URIs cannot be opened.
        """
        self.resolver = resolver

    def resolve(self, uri: str) -> str:
        if uri.startswith(CONTENT_SCHEME):
            if self.resolver is None:
                raise OpenFailedError(f"No content resolver configured for {uri}")
            try:
                return str(self.resolver(uri))
            except Exception as e:
                raise OpenFailedError(f"Content resolver failed for {uri}: {e}") from e
        if uri.startswith(FILE_SCHEME):
            return unquote(urlparse(uri).path)
        return uri

    def open(self, uri: str) -> VideoSource:
        path = self.resolve(uri)
        if not Path(path).exists():
            raise OpenFailedError(f"Video does not exist: {path}")

        cap = cv2.VideoCapture(path)
        if not cap.isOpened():
            cap.release()
            raise OpenFailedError(f"Cannot open video: {uri}")

        try:
            source = VideoSource(uri, path, cap)
        except Exception:
            cap.release()
            raise
        logger.debug(
            f"Opened {uri}: {source.width}x{source.height} @ {source.fps:.2f} fps, "
            f"{source.frame_count} frames, {source.duration_ms} ms"
        )
        return source
