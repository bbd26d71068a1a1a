"""Tunable parameters for staging, inference, sampling and previews.

Defaults match what the host application ships with. A JSON file with the same
nested keys can override any of them, e.g.::

    {"landmarker": {"running_mode": "Image", "num_poses": 1},
     "sampling": {"sampling_interval_ms": 100},
     "preview": {"quality": 70}}
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from services.video_pose.core.BackendInterface import RunningMode

DEFAULT_MODEL_ASSET = "pose_landmarker_lite.task"
CONFIG_ENV_VAR = "VIDEO_POSE_CONFIG"


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


@dataclass(frozen=True)
class PoseLandmarkerConfig:
    """Options for one inference engine session.

    running_mode is fixed for the life of a session; switching it means
    closing the engine and creating a new one.
    """

    model_path: str = ""
    running_mode: RunningMode = RunningMode.VIDEO
    num_poses: int = 1
    min_detection_confidence: float = 0.5
    min_presence_confidence: float = 0.5
    # Only consulted in Video mode.
    min_tracking_confidence: float = 0.5

    def __post_init__(self) -> None:
        if self.num_poses < 1:
            raise ValueError("num_poses must be >= 1")
        _check_unit_interval("min_detection_confidence", self.min_detection_confidence)
        _check_unit_interval("min_presence_confidence", self.min_presence_confidence)
        _check_unit_interval("min_tracking_confidence", self.min_tracking_confidence)


@dataclass(frozen=True)
class SamplingConfig:
    sampling_interval_ms: int = 66  # ~15 fps
    inference_width_px: int = 256
    # None -> os.cpu_count() in Image mode; Video mode always uses 1.
    max_workers: Optional[int] = None
    drain_timeout_s: float = 3600.0
    # How long a Video-mode call waits for a previous call to let go of the engine.
    session_wait_s: float = 5.0

    def __post_init__(self) -> None:
        if self.sampling_interval_ms <= 0:
            raise ValueError("sampling_interval_ms must be positive")
        if self.inference_width_px <= 0:
            raise ValueError("inference_width_px must be positive")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError("max_workers must be >= 1 when set")
        if self.drain_timeout_s <= 0:
            raise ValueError("drain_timeout_s must be positive")
        if self.session_wait_s <= 0:
            raise ValueError("session_wait_s must be positive")


@dataclass(frozen=True)
class PreviewConfig:
    width_px: int = 480
    height_px: int = 270
    quality: int = 80

    def __post_init__(self) -> None:
        if self.width_px <= 0 or self.height_px <= 0:
            raise ValueError("preview size must be positive")
        if not 1 <= self.quality <= 100:
            raise ValueError("preview quality must be within [1, 100]")


@dataclass(frozen=True)
class PipelineConfig:
    landmarker: PoseLandmarkerConfig = field(default_factory=PoseLandmarkerConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    preview: PreviewConfig = field(default_factory=PreviewConfig)
    model_asset_name: str = DEFAULT_MODEL_ASSET
    # Read-only bundle the model ships in, and the writable per-app directory it is staged to.
    asset_bundle_dir: str = "models"
    app_data_dir: str = str(Path.home() / ".video_pose")


_CONFIG_PATH: Optional[Path] = None
_CONFIG_CACHE: Optional[PipelineConfig] = None


def get_default_config_path() -> Path:
    return Path(os.getenv(CONFIG_ENV_VAR, "video_pose.json")).expanduser()


def set_config_path(path: str | Path) -> None:
    """Override the config path (must be called before first get_config())."""
    global _CONFIG_PATH
    global _CONFIG_CACHE
    _CONFIG_PATH = Path(path).expanduser().resolve()
    _CONFIG_CACHE = None


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key)
    return value if isinstance(value, dict) else {}


def _as_int(v: Any, default: Optional[int]) -> Optional[int]:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _as_float(v: Any, default: float) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _as_running_mode(v: Any, default: RunningMode) -> RunningMode:
    if isinstance(v, str):
        for mode in RunningMode:
            if v.strip().lower() == mode.value.lower():
                return mode
    return default


def config_from_dict(raw: Dict[str, Any]) -> PipelineConfig:
    """Build a PipelineConfig from a nested dict, keeping defaults for missing keys."""
    defaults = PipelineConfig()
    lm = _section(raw, "landmarker")
    smp = _section(raw, "sampling")
    prv = _section(raw, "preview")
    d_lm, d_smp, d_prv = defaults.landmarker, defaults.sampling, defaults.preview

    return PipelineConfig(
        landmarker=PoseLandmarkerConfig(
            model_path=str(lm.get("model_path") or d_lm.model_path),
            running_mode=_as_running_mode(lm.get("running_mode"), d_lm.running_mode),
            num_poses=_as_int(lm.get("num_poses"), d_lm.num_poses),
            min_detection_confidence=_as_float(lm.get("min_detection_confidence"), d_lm.min_detection_confidence),
            min_presence_confidence=_as_float(lm.get("min_presence_confidence"), d_lm.min_presence_confidence),
            min_tracking_confidence=_as_float(lm.get("min_tracking_confidence"), d_lm.min_tracking_confidence),
        ),
        sampling=SamplingConfig(
            sampling_interval_ms=_as_int(smp.get("sampling_interval_ms"), d_smp.sampling_interval_ms),
            inference_width_px=_as_int(smp.get("inference_width_px"), d_smp.inference_width_px),
            max_workers=_as_int(smp.get("max_workers"), d_smp.max_workers),
            drain_timeout_s=_as_float(smp.get("drain_timeout_s"), d_smp.drain_timeout_s),
            session_wait_s=_as_float(smp.get("session_wait_s"), d_smp.session_wait_s),
        ),
        preview=PreviewConfig(
            width_px=_as_int(prv.get("width_px"), d_prv.width_px),
            height_px=_as_int(prv.get("height_px"), d_prv.height_px),
            quality=_as_int(prv.get("quality"), d_prv.quality),
        ),
        model_asset_name=str(raw.get("model_asset_name") or defaults.model_asset_name),
        asset_bundle_dir=str(raw.get("asset_bundle_dir") or defaults.asset_bundle_dir),
        app_data_dir=str(raw.get("app_data_dir") or defaults.app_data_dir),
    )


def load_config(path: Optional[str | Path] = None) -> PipelineConfig:
    p = Path(path).expanduser() if path else (_CONFIG_PATH or get_default_config_path())
    if not p.exists():
        # Defaults-only config.
        return PipelineConfig()
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return PipelineConfig()
    if not isinstance(raw, dict):
        return PipelineConfig()
    return config_from_dict(raw)


def get_config() -> PipelineConfig:
    global _CONFIG_CACHE
    if _CONFIG_CACHE is None:
        _CONFIG_CACHE = load_config()
    return _CONFIG_CACHE
