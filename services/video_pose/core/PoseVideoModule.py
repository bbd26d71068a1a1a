"""Host-facing entry points: initialize() once, then process_video(uri) as often as needed.

Failures reach the host as a single PoseModuleError carrying one of the codes
INIT_ERROR, NOT_INITIALIZED or PROCESS_ERROR plus a readable message.
"""

import dataclasses
import threading
from typing import Callable, List, Optional

from services.video_pose.core.AssetStager import AssetStager
from services.video_pose.core.BackendInterface import PoseBackend
from services.video_pose.core.Errors import (
    INIT_ERROR,
    NOT_INITIALIZED,
    PROCESS_ERROR,
    NotInitializedError,
    PoseModuleError,
)
from services.video_pose.core.MediaPipePoseBackend import MediaPipePoseBackend
from services.video_pose.core.PipelineConfig import PipelineConfig, PoseLandmarkerConfig, get_config
from services.video_pose.core.PreviewEncoder import PreviewEncoder
from services.video_pose.core.VideoFrameExtractor import ContentResolver, VideoFrameExtractor
from services.video_pose.core.VideoProcessor import VideoProcessor
from services.video_pose.schemas import to_host_payload
from services.video_pose.utils.logger import logger

INIT_OK_MESSAGE = "Pose engine initialized successfully"


class PoseVideoModule:
    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        resolver: Optional[ContentResolver] = None,
        backend_factory: Callable[[PoseLandmarkerConfig], PoseBackend] = MediaPipePoseBackend,
    ):
        self.config = config or get_config()
        self.resolver = resolver
        self._backend_factory = backend_factory
        self._lock = threading.Lock()
        self._backend: Optional[PoseBackend] = None
        self._processor: Optional[VideoProcessor] = None

    @property
    def ready(self) -> bool:
        return self._processor is not None

    def _model_path(self) -> str:
        # An explicit model_path skips staging (useful when running from a checkout).
        if self.config.landmarker.model_path:
            return self.config.landmarker.model_path
        stager = AssetStager(self.config.asset_bundle_dir, self.config.app_data_dir)
        return stager.stage(self.config.model_asset_name)

    def initialize(self) -> str:
        """Stage the model and create the engine. Later calls are no-ops."""
        with self._lock:
            if self._processor is not None:
                return INIT_OK_MESSAGE
            try:
                landmarker_config = dataclasses.replace(self.config.landmarker, model_path=self._model_path())
                backend = self._backend_factory(landmarker_config)
            except Exception as e:
                logger.exception("Failed to initialize pose engine")
                raise PoseModuleError(INIT_ERROR, f"Failed to initialize pose engine: {e}") from e

            self._backend = backend
            self._processor = VideoProcessor(
                pose_backend=backend,
                frame_extractor=VideoFrameExtractor(resolver=self.resolver),
                sampling=self.config.sampling,
                preview_encoder=PreviewEncoder(
                    width=self.config.preview.width_px,
                    height=self.config.preview.height_px,
                    quality=self.config.preview.quality,
                ),
            )
        return INIT_OK_MESSAGE

    def process_video(self, video_uri: str, cancel_event: Optional[threading.Event] = None) -> List[dict]:
        """Run the pipeline on `video_uri` and return host-shaped frame dicts, ordered by timestamp."""
        processor = self._processor
        if processor is None:
            err = NotInitializedError("Pose engine not initialized")
            raise PoseModuleError.from_exception(err, NOT_INITIALIZED, "Cannot process video") from err
        try:
            results = processor.process_video(video_uri, cancel_event=cancel_event)
        except Exception as e:
            logger.exception(f"Error processing video {video_uri}")
            # Past the readiness check every failure is PROCESS_ERROR, a failed session reset included.
            raise PoseModuleError(PROCESS_ERROR, f"Failed to process video: {e}") from e
        return to_host_payload(results)

    def close(self) -> None:
        with self._lock:
            backend, self._backend, self._processor = self._backend, None, None
        if backend is not None:
            backend.close()


_MODULE: Optional[PoseVideoModule] = None
_MODULE_LOCK = threading.Lock()


def get_module() -> PoseVideoModule:
    """Process-wide module instance, created on first use."""
    global _MODULE
    with _MODULE_LOCK:
        if _MODULE is None:
            _MODULE = PoseVideoModule()
        return _MODULE


def reset_module() -> None:
    global _MODULE
    with _MODULE_LOCK:
        module, _MODULE = _MODULE, None
    if module is not None:
        module.close()


def initialize() -> str:
    return get_module().initialize()


def process_video(video_uri: str) -> List[dict]:
    return get_module().process_video(video_uri)
