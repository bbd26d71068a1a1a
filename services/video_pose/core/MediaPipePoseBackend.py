import threading
from typing import Any, Callable, Optional
import numpy as np

from services.video_pose.core.BackendInterface import PoseBackend, RawPoseResult, RunningMode
from services.video_pose.core.Errors import (
    EngineBusyError,
    InferenceError,
    ModelLoadError,
    TimestampOutOfOrderError,
)
from services.video_pose.core.PipelineConfig import PoseLandmarkerConfig
from services.video_pose.utils.logger import logger


def create_landmarker(config: PoseLandmarkerConfig):
    """Build a MediaPipe Tasks PoseLandmarker session from `config`."""
    try:
        from mediapipe.tasks import python as mp_python  # type: ignore
        from mediapipe.tasks.python import vision as mp_vision  # type: ignore
    except ImportError as e:
        raise ModelLoadError("MediaPipe is not installed. Install it with: pip install mediapipe") from e

    running_mode = (
        mp_vision.RunningMode.VIDEO
        if config.running_mode == RunningMode.VIDEO
        else mp_vision.RunningMode.IMAGE
    )
    options = mp_vision.PoseLandmarkerOptions(
        base_options=mp_python.BaseOptions(model_asset_path=config.model_path),
        running_mode=running_mode,
        num_poses=config.num_poses,
        min_pose_detection_confidence=config.min_detection_confidence,
        min_pose_presence_confidence=config.min_presence_confidence,
        min_tracking_confidence=config.min_tracking_confidence,
        output_segmentation_masks=False,
    )
    return mp_vision.PoseLandmarker.create_from_options(options)


def to_mp_image(frame_rgb: np.ndarray):
    import mediapipe as mp  # type: ignore

    return mp.Image(image_format=mp.ImageFormat.SRGB, data=np.ascontiguousarray(frame_rgb))


class MediaPipePoseBackend(PoseBackend):
    def __init__(
        self,
        config: PoseLandmarkerConfig,
        landmarker_factory: Callable[[PoseLandmarkerConfig], Any] = create_landmarker,
        image_builder: Callable[[np.ndarray], Any] = to_mp_image,
    ):
        self.config = config
        self.running_mode = config.running_mode
        self._factory = landmarker_factory
        self._image_builder = image_builder
        # The landmarker graph is not documented as thread-safe; every call goes through this lock.
        self._lock = threading.Lock()
        self._last_timestamp_ms: Optional[int] = None
        self._landmarker = self._create()
        logger.info(
            f"Pose landmarker ready (mode={self.running_mode.value}, num_poses={config.num_poses}, "
            f"model={config.model_path})"
        )

    def _create(self):
        try:
            return self._factory(self.config)
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to load pose model {self.config.model_path!r}: {e}") from e

    def _require_mode(self, mode: RunningMode) -> None:
        if self.running_mode != mode:
            raise InferenceError(
                f"Engine was created in {self.running_mode.value} mode; "
                f"this call requires {mode.value} mode"
            )
        if self._landmarker is None:
            raise InferenceError("Pose landmarker is closed")

    def detect(self, frame_rgb: np.ndarray) -> RawPoseResult:
        with self._lock:
            self._require_mode(RunningMode.IMAGE)
            try:
                return self._landmarker.detect(self._image_builder(frame_rgb))
            except Exception as e:
                raise InferenceError(f"Pose detection failed: {e}") from e

    def detect_for_video(self, frame_rgb: np.ndarray, timestamp_ms: int) -> RawPoseResult:
        with self._lock:
            self._require_mode(RunningMode.VIDEO)
            timestamp_ms = int(timestamp_ms)
            if self._last_timestamp_ms is not None and timestamp_ms <= self._last_timestamp_ms:
                raise TimestampOutOfOrderError(
                    f"Timestamp {timestamp_ms} ms is not after {self._last_timestamp_ms} ms"
                )
            self._last_timestamp_ms = timestamp_ms
            try:
                return self._landmarker.detect_for_video(self._image_builder(frame_rgb), timestamp_ms)
            except Exception as e:
                raise InferenceError(f"Pose detection failed at {timestamp_ms} ms: {e}") from e

    def reset_session(self, timeout_s: Optional[float] = None) -> None:
        # A worker abandoned by a drain timeout can still be inside detect_for_video.
        if not self._lock.acquire(timeout=-1 if timeout_s is None else timeout_s):
            raise EngineBusyError(f"Pose landmarker still busy with a previous video after {timeout_s:.1f}s")
        try:
            if self.running_mode != RunningMode.VIDEO or self._last_timestamp_ms is None:
                return
            # Tracking state lives inside the landmarker; a fresh session is the only way to rewind.
            self._close_landmarker()
            self._landmarker = self._create()
            self._last_timestamp_ms = None
            logger.debug("Pose landmarker video session reset")
        finally:
            self._lock.release()

    def _close_landmarker(self) -> None:
        landmarker, self._landmarker = self._landmarker, None
        if landmarker is not None:
            landmarker.close()

    def close(self) -> None:
        with self._lock:
            self._close_landmarker()
            self._last_timestamp_ms = None
