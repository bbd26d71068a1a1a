from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional
import numpy as np


class RunningMode(str, Enum):
    IMAGE = "Image"
    VIDEO = "Video"


@dataclass(frozen=True)
class Landmark:
    name: str
    x: float
    y: float
    z: float
    visibility: float = 1.0
    presence: float = 1.0


@dataclass
class RawPoseResult:
    """Model output for one image: one list of normalized points per detected pose.

    Points only need x / y / z attributes; visibility and presence are optional.
    MediaPipe's PoseLandmarkerResult has the same shape and can be used directly.
    """

    pose_landmarks: List[List[Any]] = field(default_factory=list)


class PoseBackend(ABC):
    """Abstract base for an inference engine session (one running mode per session)."""

    running_mode: RunningMode

    @abstractmethod
    def detect(self, frame_rgb: np.ndarray) -> RawPoseResult:
        """Stateless inference on one RGB frame (Image mode)."""
        ...

    @abstractmethod
    def detect_for_video(self, frame_rgb: np.ndarray, timestamp_ms: int) -> RawPoseResult:
        """Tracked inference on one RGB frame (Video mode); timestamps must increase."""
        ...

    @abstractmethod
    def reset_session(self, timeout_s: Optional[float] = None) -> None:
        """Drop tracking state so the next video can start again at timestamp 0.

        Waits at most `timeout_s` for an in-flight call to finish (forever when None).
        """
        ...

    @abstractmethod
    def close(self) -> None:
        ...
