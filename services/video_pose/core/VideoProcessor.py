import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional

import cv2

from services.video_pose.core import LandmarkExtractor
from services.video_pose.core.BackendInterface import PoseBackend, RunningMode
from services.video_pose.core.Errors import (
    DecodeFailedError,
    EngineBusyError,
    InferenceError,
    ProcessingCancelledError,
    ProcessingTimeoutError,
)
from services.video_pose.core.PipelineConfig import SamplingConfig
from services.video_pose.core.PreviewEncoder import PreviewEncoder, resize_to_width
from services.video_pose.core.ResultAssembler import FrameResult, assemble
from services.video_pose.core.VideoFrameExtractor import VideoFrameExtractor, VideoSource
from services.video_pose.utils.logger import logger


class VideoProcessor:
    def __init__(
        self,
        pose_backend: PoseBackend,
        frame_extractor: Optional[VideoFrameExtractor] = None,
        sampling: Optional[SamplingConfig] = None,
        preview_encoder: Optional[PreviewEncoder] = None,
    ):
        self.pose_backend = pose_backend
        self.frame_extractor = frame_extractor or VideoFrameExtractor()
        self.sampling = sampling or SamplingConfig()
        self.preview_encoder = preview_encoder or PreviewEncoder()
        # One video at a time may drive a Video-mode engine.
        self._video_lane = threading.Lock()

    @property
    def video_mode(self) -> bool:
        return self.pose_backend.running_mode == RunningMode.VIDEO

    def plan_timestamps(self, duration_ms: int) -> List[int]:
        """Sampling schedule: 0, Δ, 2Δ, ... strictly below the duration."""
        return list(range(0, max(int(duration_ms), 0), self.sampling.sampling_interval_ms))

    def worker_count(self, n_tasks: int) -> int:
        # Video-mode tracking needs timestamps in order; a single FIFO worker guarantees it.
        if self.video_mode:
            return 1
        workers = self.sampling.max_workers or os.cpu_count() or 1
        return max(1, min(workers, n_tasks))

    def process_video(self, video_uri: str, cancel_event: Optional[threading.Event] = None) -> List[FrameResult]:
        """
        Sample `video_uri`, run pose inference on each sampled frame and return
        the frames with a detected pose, ordered by timestamp.

        Per-frame failures drop that frame only. Opening the video, the drain
        timeout and cancellation fail the whole call.
        """
        started = time.monotonic()
        source = self.frame_extractor.open(video_uri)
        try:
            timestamps = self.plan_timestamps(source.duration_ms)
            logger.info(
                f"Processing {video_uri}: {source.duration_ms} ms, {len(timestamps)} frames planned "
                f"({self.pose_backend.running_mode.value} mode)"
            )
            if not timestamps:
                return []

            if self.video_mode:
                # The holder lets go within its own drain timeout plus its session reset.
                lane_wait_s = self.sampling.drain_timeout_s + self.sampling.session_wait_s
                if not self._video_lane.acquire(timeout=lane_wait_s):
                    raise EngineBusyError(f"Another video is still using the pose engine; cannot start {video_uri}")
                try:
                    self.pose_backend.reset_session(timeout_s=self.sampling.session_wait_s)
                    collected = self._run_workers(source, timestamps, cancel_event)
                finally:
                    self._video_lane.release()
            else:
                collected = self._run_workers(source, timestamps, cancel_event)
        finally:
            # Does not wait on a worker still inside the decoder; that worker releases it.
            source.close()

        results = assemble(collected)
        logger.info(
            f"Finished {video_uri}: {len(results)} / {len(timestamps)} frames with a pose "
            f"in {time.monotonic() - started:.1f}s"
        )
        return results

    def _run_workers(
        self,
        source: VideoSource,
        timestamps: List[int],
        cancel_event: Optional[threading.Event],
    ) -> List[FrameResult]:
        collected: List[FrameResult] = []
        collect_lock = threading.Lock()
        abort = threading.Event()

        def emit(result: FrameResult) -> None:
            with collect_lock:
                collected.append(result)

        def should_stop() -> bool:
            return abort.is_set() or (cancel_event is not None and cancel_event.is_set())

        executor = ThreadPoolExecutor(
            max_workers=self.worker_count(len(timestamps)),
            thread_name_prefix="video-pose",
        )
        try:
            # FIFO submission in ascending order; with one worker this is also inference order.
            futures = [
                executor.submit(self._process_frame, source, t, emit, should_stop)
                for t in timestamps
            ]
            _, not_done = wait(futures, timeout=self.sampling.drain_timeout_s)
            if not_done:
                abort.set()
                raise ProcessingTimeoutError(
                    f"Processing {source.uri} exceeded {self.sampling.drain_timeout_s:.0f}s "
                    f"({len(not_done)} frames unfinished)"
                )
        finally:
            # After a timeout running workers are left to notice `abort`; never block on them.
            executor.shutdown(wait=not abort.is_set(), cancel_futures=True)

        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"Processing of {source.uri} cancelled; dropping {len(collected)} results")
            raise ProcessingCancelledError(f"Processing of {source.uri} was cancelled")

        with collect_lock:
            return list(collected)

    def _process_frame(
        self,
        source: VideoSource,
        timestamp_ms: int,
        emit: Callable[[FrameResult], None],
        should_stop: Callable[[], bool],
    ) -> None:
        if should_stop():
            return
        try:
            result = self._analyze_frame(source, timestamp_ms, should_stop)
        except (DecodeFailedError, InferenceError) as e:
            logger.warning(f"Dropping frame at {timestamp_ms} ms: {e}")
            return
        except Exception:
            logger.exception(f"Unexpected error at {timestamp_ms} ms; dropping frame")
            return
        if result is not None:
            emit(result)

    def _analyze_frame(
        self,
        source: VideoSource,
        timestamp_ms: int,
        should_stop: Callable[[], bool],
    ) -> Optional[FrameResult]:
        sample = source.frame_at(timestamp_ms)
        if sample is None:
            logger.debug(f"No frame decoded at {timestamp_ms} ms")
            return None
        if should_stop():
            return None

        working = resize_to_width(sample.pixels, self.sampling.inference_width_px)
        frame_rgb = cv2.cvtColor(working, cv2.COLOR_BGR2RGB)
        if self.video_mode:
            raw = self.pose_backend.detect_for_video(frame_rgb, timestamp_ms)
        else:
            raw = self.pose_backend.detect(frame_rgb)

        landmarks = LandmarkExtractor.extract(raw)
        if landmarks is None:
            logger.debug(f"No pose at {timestamp_ms} ms")
            return None

        return FrameResult(
            timestamp_ms=float(timestamp_ms),
            preview_image_uri=self.preview_encoder.encode_data_uri(sample.pixels),
            landmarks=landmarks,
            frame_index=sample.frame_index,
        )
