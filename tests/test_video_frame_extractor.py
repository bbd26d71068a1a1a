import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest import mock

from fakes import CaptureFactory

from services.video_pose.core import VideoFrameExtractor as extractor_module
from services.video_pose.core.Errors import (
    DecodeFailedError,
    DurationUnavailableError,
    OpenFailedError,
)
from services.video_pose.core.VideoFrameExtractor import VideoFrameExtractor


class VideoFrameExtractorTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.NamedTemporaryFile(suffix=".mp4", delete=False)
        tmp.close()
        self.video_path = tmp.name
        self.addCleanup(Path(self.video_path).unlink)

    def _open(self, uri=None, resolver=None, **capture_kwargs):
        factory = CaptureFactory(**capture_kwargs)
        with mock.patch.object(extractor_module.cv2, "VideoCapture", factory):
            source = VideoFrameExtractor(resolver=resolver).open(uri or self.video_path)
        return source, factory

    def test_duration_from_frame_count_and_fps(self) -> None:
        source, _ = self._open(fps=30.0, frame_count=45)
        self.assertEqual(source.duration_ms, 1500)
        source.close()

    def test_content_uri_without_resolver_fails(self) -> None:
        with self.assertRaises(OpenFailedError):
            self._open(uri="content://media/video/42")

    def test_content_uri_resolver_errors_become_open_failures(self) -> None:
        def broken(uri):
            raise PermissionError("denied")

        with self.assertRaises(OpenFailedError):
            self._open(uri="content://media/video/42", resolver=broken)

    def test_file_uri_is_mapped_to_path(self) -> None:
        source, factory = self._open(uri=Path(self.video_path).as_uri())
        self.assertEqual(factory.captures[0].path, self.video_path)
        source.close()

    def test_unopened_capture_is_released(self) -> None:
        factory = CaptureFactory(opened=False)
        with mock.patch.object(extractor_module.cv2, "VideoCapture", factory):
            with self.assertRaises(OpenFailedError):
                VideoFrameExtractor().open(self.video_path)
        self.assertTrue(factory.captures[0].released)

    def test_missing_fps_is_duration_unavailable(self) -> None:
        factory = CaptureFactory(fps=0.0)
        with mock.patch.object(extractor_module.cv2, "VideoCapture", factory):
            with self.assertRaises(DurationUnavailableError):
                VideoFrameExtractor().open(self.video_path)
        self.assertTrue(factory.captures[0].released)

    def test_missing_frame_count_seeks_to_end_for_duration(self) -> None:
        source, factory = self._open(fps=30.0, frame_count=0, end_msec=2000.0)
        self.assertEqual(source.duration_ms, 2000)
        self.assertEqual(source.frame_count, 60)
        # The decoder is rewound to the first frame after measuring.
        self.assertEqual(factory.captures[0].seeks, [0])
        source.close()

    def test_missing_frame_count_without_seekable_end_is_duration_unavailable(self) -> None:
        factory = CaptureFactory(fps=30.0, frame_count=0)
        with mock.patch.object(extractor_module.cv2, "VideoCapture", factory):
            with self.assertRaises(DurationUnavailableError):
                VideoFrameExtractor().open(self.video_path)
        self.assertTrue(factory.captures[0].released)

    def test_frame_index_uses_closest_frame_at_or_before(self) -> None:
        source, _ = self._open(fps=30.0, frame_count=30)
        self.assertEqual(source.frame_index_at(0), 0)
        self.assertEqual(source.frame_index_at(66), 1)
        self.assertEqual(source.frame_index_at(200), 6)
        self.assertEqual(source.frame_index_at(5000), 29)
        source.close()

    def test_frame_at_returns_decoded_frame(self) -> None:
        source, factory = self._open(fps=30.0, frame_count=30)
        sample = source.frame_at(200)
        self.assertEqual(sample.timestamp_ms, 200)
        self.assertEqual(sample.frame_index, 6)
        self.assertEqual(int(sample.pixels[0, 0, 0]), 6)
        # Short forward gaps are decoded through, backwards requests seek.
        source.frame_at(266)
        source.frame_at(0)
        self.assertEqual(factory.captures[0].seeks, [0])
        source.close()

    def test_frame_at_returns_none_when_decoder_has_nothing(self) -> None:
        source, factory = self._open(fps=30.0, frame_count=30)
        factory.captures[0].frame_count = 5  # stream ends early
        self.assertIsNone(source.frame_at(500))
        source.close()

    def test_decoder_errors_raise_decode_failed(self) -> None:
        source, _ = self._open(fps=30.0, frame_count=30, fail_indices={0})
        with self.assertRaises(DecodeFailedError):
            source.frame_at(0)
        source.close()

    def test_close_is_idempotent_and_blocks_further_reads(self) -> None:
        source, factory = self._open()
        source.close()
        source.close()
        self.assertTrue(source.closed)
        self.assertTrue(factory.captures[0].released)
        with self.assertRaises(DecodeFailedError):
            source.frame_at(0)

    def test_close_during_read_does_not_wait_for_decoder(self) -> None:
        source, factory = self._open(read_delay_s=0.5)
        cap = factory.captures[0]
        reader = threading.Thread(target=source.frame_at, args=(0,))
        reader.start()
        time.sleep(0.1)

        started = time.monotonic()
        source.close()
        self.assertLess(time.monotonic() - started, 0.2)
        self.assertTrue(source.closed)
        self.assertFalse(cap.released)

        reader.join(timeout=5.0)
        self.assertTrue(cap.released)
        with self.assertRaises(DecodeFailedError):
            source.frame_at(0)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
