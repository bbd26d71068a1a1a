import threading
import time
import unittest
from unittest import mock

import numpy as np

from services.video_pose.core.BackendInterface import RawPoseResult, RunningMode
from services.video_pose.core.Errors import (
    EngineBusyError,
    InferenceError,
    ModelLoadError,
    TimestampOutOfOrderError,
)
from services.video_pose.core.MediaPipePoseBackend import MediaPipePoseBackend
from services.video_pose.core.PipelineConfig import PoseLandmarkerConfig


def _backend(mode, landmarker=None, factory=None):
    landmarker = landmarker or mock.Mock()
    landmarker.detect.return_value = RawPoseResult()
    landmarker.detect_for_video.return_value = RawPoseResult()
    factory = factory or mock.Mock(return_value=landmarker)
    backend = MediaPipePoseBackend(
        PoseLandmarkerConfig(model_path="/models/pose.task", running_mode=mode),
        landmarker_factory=factory,
        image_builder=lambda frame: frame,
    )
    return backend, landmarker, factory


class MediaPipePoseBackendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.frame = np.zeros((144, 256, 3), dtype=np.uint8)

    def test_factory_receives_config(self) -> None:
        _, _, factory = _backend(RunningMode.IMAGE)
        config = factory.call_args[0][0]
        self.assertEqual(config.model_path, "/models/pose.task")
        self.assertEqual(config.num_poses, 1)

    def test_factory_failure_is_model_load_error(self) -> None:
        factory = mock.Mock(side_effect=RuntimeError("bad flatbuffer"))
        with self.assertRaises(ModelLoadError):
            _backend(RunningMode.IMAGE, factory=factory)

    def test_image_mode_detect(self) -> None:
        backend, landmarker, _ = _backend(RunningMode.IMAGE)
        backend.detect(self.frame)
        landmarker.detect.assert_called_once()

    def test_mode_mismatch_is_rejected(self) -> None:
        image, _, _ = _backend(RunningMode.IMAGE)
        video, _, _ = _backend(RunningMode.VIDEO)
        with self.assertRaises(InferenceError):
            image.detect_for_video(self.frame, 0)
        with self.assertRaises(InferenceError):
            video.detect(self.frame)

    def test_video_timestamps_must_increase(self) -> None:
        backend, landmarker, _ = _backend(RunningMode.VIDEO)
        backend.detect_for_video(self.frame, 0)
        backend.detect_for_video(self.frame, 66)
        with self.assertRaises(TimestampOutOfOrderError):
            backend.detect_for_video(self.frame, 66)
        self.assertEqual([c.args[1] for c in landmarker.detect_for_video.call_args_list], [0, 66])

    def test_reset_session_recreates_landmarker(self) -> None:
        backend, first, factory = _backend(RunningMode.VIDEO)
        second = mock.Mock()
        factory.side_effect = [second]
        backend.detect_for_video(self.frame, 500)
        backend.reset_session()

        first.close.assert_called_once()
        backend.detect_for_video(self.frame, 0)
        second.detect_for_video.assert_called_once()

    def test_reset_gives_up_while_previous_call_holds_engine(self) -> None:
        backend, landmarker, _ = _backend(RunningMode.VIDEO)
        entered, release = threading.Event(), threading.Event()

        def stuck(image, timestamp_ms):
            entered.set()
            release.wait(5.0)
            return RawPoseResult()

        landmarker.detect_for_video.side_effect = stuck
        worker = threading.Thread(target=backend.detect_for_video, args=(self.frame, 0))
        worker.start()
        self.assertTrue(entered.wait(5.0))

        started = time.monotonic()
        with self.assertRaises(EngineBusyError):
            backend.reset_session(timeout_s=0.05)
        self.assertLess(time.monotonic() - started, 1.0)

        release.set()
        worker.join(timeout=5.0)
        backend.reset_session(timeout_s=0.05)
        landmarker.close.assert_called_once()

    def test_reset_without_history_keeps_session(self) -> None:
        backend, first, factory = _backend(RunningMode.VIDEO)
        backend.reset_session()
        self.assertEqual(factory.call_count, 1)
        first.close.assert_not_called()

    def test_engine_errors_become_inference_errors(self) -> None:
        backend, landmarker, _ = _backend(RunningMode.IMAGE)
        landmarker.detect.side_effect = RuntimeError("graph failed")
        with self.assertRaises(InferenceError):
            backend.detect(self.frame)

    def test_close_is_idempotent(self) -> None:
        backend, landmarker, _ = _backend(RunningMode.IMAGE)
        backend.close()
        backend.close()
        landmarker.close.assert_called_once()
        with self.assertRaises(InferenceError):
            backend.detect(self.frame)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
