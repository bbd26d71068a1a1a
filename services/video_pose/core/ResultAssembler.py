from dataclasses import dataclass
from typing import Iterable, List, Optional

from services.video_pose.core.BackendInterface import Landmark
from services.video_pose.utils.logger import logger


@dataclass(frozen=True)
class FrameResult:
    timestamp_ms: float
    preview_image_uri: str
    landmarks: List[Landmark]
    # Decoder frame the result was computed from; internal, not sent to the host.
    frame_index: Optional[int] = None


def assemble(frames: Iterable[FrameResult]) -> List[FrameResult]:
    """
    Order results by timestamp and drop duplicates.

    When the decoder snaps several requested timestamps onto one frame, only the
    earliest timestamp is kept for that frame.
    """
    ordered = sorted(frames, key=lambda f: f.timestamp_ms)
    seen_timestamps = set()
    seen_frames = set()
    result: List[FrameResult] = []

    for frame in ordered:
        if frame.timestamp_ms in seen_timestamps or (
            frame.frame_index is not None and frame.frame_index in seen_frames
        ):
            logger.debug(f"Dropping duplicate frame at {frame.timestamp_ms} ms (frame {frame.frame_index})")
            continue
        seen_timestamps.add(frame.timestamp_ms)
        if frame.frame_index is not None:
            seen_frames.add(frame.frame_index)
        result.append(frame)

    return result
