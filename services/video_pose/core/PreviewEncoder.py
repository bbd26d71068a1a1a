import base64
from typing import Tuple

import cv2
import numpy as np

from services.video_pose.core.Errors import PoseVideoError

DATA_URI_PREFIX = "data:image/jpeg;base64,"


def fit_to_width(width: int, height: int, target_width: int) -> Tuple[int, int]:
    """(w, h) scaled to `target_width` with the aspect ratio kept; never upscales."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size {width}x{height}")
    if width <= target_width:
        return width, height
    return target_width, max(1, round(height * target_width / width))


def resize_to_width(frame: np.ndarray, target_width: int) -> np.ndarray:
    """Return a copy of `frame` scaled to `target_width`, aspect preserved."""
    h, w = frame.shape[:2]
    size = fit_to_width(w, h, target_width)
    if size == (w, h):
        return frame.copy()
    return cv2.resize(frame, size, interpolation=cv2.INTER_AREA)


class PreviewEncoder:
    def __init__(self, width: int = 480, height: int = 270, quality: int = 80):
        self.width = width
        # Nominal only: a 16:9 frame lands on it, other shapes follow their own aspect ratio.
        self.height = height
        self.quality = quality

    def encode_preview(self, frame_bgr: np.ndarray) -> bytes:
        """Downscale to the preview width and JPEG-encode. The input frame is left untouched."""
        h, w = frame_bgr.shape[:2]
        size = fit_to_width(w, h, self.width)
        if size == (w, h):
            preview = frame_bgr
        else:
            preview = cv2.resize(frame_bgr, size, interpolation=cv2.INTER_AREA)

        ok, buf = cv2.imencode(".jpg", preview, [cv2.IMWRITE_JPEG_QUALITY, int(self.quality)])
        if not ok:
            raise PoseVideoError("JPEG encoding of preview failed")
        return buf.tobytes()

    def encode_data_uri(self, frame_bgr: np.ndarray) -> str:
        return to_data_uri(self.encode_preview(frame_bgr))


def to_data_uri(jpeg_bytes: bytes) -> str:
    return DATA_URI_PREFIX + base64.b64encode(jpeg_bytes).decode("ascii")
