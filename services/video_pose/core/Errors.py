"""Error taxonomy for the video pose pipeline.

Every class carries the host error code it surfaces as. Per-frame errors
(DecodeFailedError, InferenceError) never reach the host; the pipeline
recovers them inside the worker.
"""

INIT_ERROR = "INIT_ERROR"
NOT_INITIALIZED = "NOT_INITIALIZED"
PROCESS_ERROR = "PROCESS_ERROR"


class PoseVideoError(RuntimeError):
    code = PROCESS_ERROR


# --- configuration ---
class AssetMissingError(PoseVideoError):
    """Raised when the model asset is not present in the application bundle."""

    code = INIT_ERROR


class AssetIOError(PoseVideoError):
    """Raised when the staged asset cannot be written."""

    code = INIT_ERROR


class ModelLoadError(PoseVideoError):
    code = INIT_ERROR


# --- precondition ---
class NotInitializedError(PoseVideoError):
    code = NOT_INITIALIZED


# --- input ---
class OpenFailedError(PoseVideoError):
    """Raised when a video cannot be opened by the decoder."""


class DurationUnavailableError(PoseVideoError):
    """Raised when the decoder reports no usable duration for an opened video."""


# --- transient, per frame ---
class DecodeFailedError(PoseVideoError):
    pass


class InferenceError(PoseVideoError):
    pass


# --- protocol ---
class TimestampOutOfOrderError(PoseVideoError):
    """Video-mode inference was called with a non-increasing timestamp."""


# --- resource ---
class ProcessingTimeoutError(PoseVideoError):
    pass


class ProcessingCancelledError(PoseVideoError):
    pass


class EngineBusyError(PoseVideoError):
    """A previous video session still holds the engine (e.g. a worker left behind by a timeout)."""


class PoseModuleError(Exception):
    """Single (code, message) rejection handed to the host application."""

    def __init__(self, code: str, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message

    @classmethod
    def from_exception(cls, exc: Exception, default_code: str, prefix: str) -> "PoseModuleError":
        code = exc.code if isinstance(exc, PoseVideoError) else default_code
        return cls(code, f"{prefix}: {exc}")
