from typing import Any, List, Optional

from services.video_pose.core.BackendInterface import Landmark, RawPoseResult

# MediaPipe pose topology, index -> name
POSE_LANDMARK_NAMES = [
    "NOSE",
    "LEFT_EYE_INNER",
    "LEFT_EYE",
    "LEFT_EYE_OUTER",
    "RIGHT_EYE_INNER",
    "RIGHT_EYE",
    "RIGHT_EYE_OUTER",
    "LEFT_EAR",
    "RIGHT_EAR",
    "MOUTH_LEFT",
    "MOUTH_RIGHT",
    "LEFT_SHOULDER",
    "RIGHT_SHOULDER",
    "LEFT_ELBOW",
    "RIGHT_ELBOW",
    "LEFT_WRIST",
    "RIGHT_WRIST",
    "LEFT_PINKY",
    "RIGHT_PINKY",
    "LEFT_INDEX",
    "RIGHT_INDEX",
    "LEFT_THUMB",
    "RIGHT_THUMB",
    "LEFT_HIP",
    "RIGHT_HIP",
    "LEFT_KNEE",
    "RIGHT_KNEE",
    "LEFT_ANKLE",
    "RIGHT_ANKLE",
    "LEFT_HEEL",
    "RIGHT_HEEL",
    "LEFT_FOOT_INDEX",
    "RIGHT_FOOT_INDEX",
]

NUM_POSE_LANDMARKS = len(POSE_LANDMARK_NAMES)


def landmark_name(index: int) -> str:
    if 0 <= index < NUM_POSE_LANDMARKS:
        return POSE_LANDMARK_NAMES[index]
    return f"UNKNOWN_{index}"


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def _optional_score(point: Any, attr: str) -> float:
    # Models that do not report a score leave it unset; treat that as fully visible/present.
    value = getattr(point, attr, None)
    return 1.0 if value is None else _clamp01(float(value))


def extract(raw: Optional[RawPoseResult]) -> Optional[List[Landmark]]:
    """
    Map the first detected pose of `raw` to named landmarks.

    Returns None when the model found no pose. Only the first pose is used even
    when the engine was configured for more. x and y are clamped to [0, 1]
    because the model extrapolates off-frame joints slightly past the edges.
    """
    poses = getattr(raw, "pose_landmarks", None) if raw is not None else None
    if not poses:
        return None

    points = poses[0]
    if not points:
        return None

    return [
        Landmark(
            name=landmark_name(i),
            x=_clamp01(float(p.x)),
            y=_clamp01(float(p.y)),
            z=float(p.z),
            visibility=_optional_score(p, "visibility"),
            presence=_optional_score(p, "presence"),
        )
        for i, p in enumerate(points)
    ]
