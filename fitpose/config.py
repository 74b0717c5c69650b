"""
Pipeline configuration.

A single immutable PipelineConfig is loaded from YAML at startup and handed to
every stage constructor. Nothing in the pipeline mutates it.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "configs" / "pipeline_config.yaml"
CONFIG_ENV_VAR = "FITPOSE_CONFIG"


@dataclass(frozen=True)
class RuntimeConfig:
    max_concurrent_runs: int = 1
    queue_name: str = "pose-analysis"


@dataclass(frozen=True)
class ModelPaths:
    detector: str = "models/yolov8n.onnx"
    pose: str = "models/rtmpose-m_simcc-body7-256x192.onnx"
    lifter: str = "models/motionbert_h36m_27frm.onnx"


@dataclass(frozen=True)
class DetectorConfig:
    bbox_mode: str = "xywh"
    coords_origin: str = "top_left"
    rotation_correction_deg: int = 0
    channel_order: str = "RGB"
    imgsz: int = 640
    stride: int = 32
    pad_color: Tuple[int, int, int] = (114, 114, 114)
    score_threshold: float = 0.25
    nms_threshold: float = 0.45
    max_detections: int = 50


@dataclass(frozen=True)
class PoseConfig:
    rotation_override_deg: int = 0
    padding: float = 1.25
    input_width: int = 192
    input_height: int = 256
    simcc_ratio: float = 2.0
    means: Tuple[float, float, float] = (123.675, 116.28, 103.53)
    stds: Tuple[float, float, float] = (58.395, 57.12, 57.375)
    min_keypoint_score: float = 0.3
    person_selection: str = "bestScore"
    channel_order: str = "RGB"


@dataclass(frozen=True)
class EMAConfig:
    enabled: bool = True
    alpha: float = 0.6


@dataclass(frozen=True)
class ConfidenceConfig:
    min: float = 0.3
    floor: float = 0.0


@dataclass(frozen=True)
class GapFillConfig:
    max_interpolated_gap: int = 5


@dataclass(frozen=True)
class GlobalMotionConfig:
    enabled: bool = False
    window: int = 3


@dataclass(frozen=True)
class NormalizeConfig:
    enabled: bool = True
    root_joint: int = 0
    scale_joint_a: int = 0
    scale_joint_b: int = 8
    epsilon: float = 1e-6


@dataclass(frozen=True)
class PostprocessConfig:
    ema: EMAConfig = field(default_factory=EMAConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    gap_fill: GapFillConfig = field(default_factory=GapFillConfig)
    global_motion: GlobalMotionConfig = field(default_factory=GlobalMotionConfig)
    normalize: NormalizeConfig = field(default_factory=NormalizeConfig)


@dataclass(frozen=True)
class LifterConfig:
    temporal_window: int = 27
    center: int = 13
    stride: int = 1
    head_top_factor: float = 0.5
    skeleton: str = "h36m_17"


@dataclass(frozen=True)
class DebugConfig:
    verbose_logging: bool = False
    frame_log_stride: int = 10


@dataclass(frozen=True)
class PipelineConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    models: ModelPaths = field(default_factory=ModelPaths)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    pose: PoseConfig = field(default_factory=PoseConfig)
    postprocess: PostprocessConfig = field(default_factory=PostprocessConfig)
    lifter: LifterConfig = field(default_factory=LifterConfig)
    debug: DebugConfig = field(default_factory=DebugConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        data = data or {}
        post = data.get("postprocess", {}) or {}
        return cls(
            runtime=RuntimeConfig(**data.get("runtime", {})),
            models=ModelPaths(**data.get("models", {})),
            detector=_build(DetectorConfig, data.get("detector", {})),
            pose=_build(PoseConfig, data.get("pose", {})),
            postprocess=PostprocessConfig(
                ema=EMAConfig(**post.get("ema", {})),
                confidence=ConfidenceConfig(**post.get("confidence", {})),
                gap_fill=GapFillConfig(**post.get("gap_fill", {})),
                global_motion=GlobalMotionConfig(**post.get("global_motion", {})),
                normalize=NormalizeConfig(**post.get("normalize", {})),
            ),
            lifter=LifterConfig(**data.get("lifter", {})),
            debug=DebugConfig(**data.get("debug", {})),
        )

    @classmethod
    def from_yaml(cls, config_path) -> "PipelineConfig":
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Pipeline config not found: {config_path}")

        with open(config_path, 'r') as f:
            data = yaml.safe_load(f)

        logger.info(f"Loaded pipeline config from {config_path}")
        return cls.from_dict(data)


def _build(config_cls, values: Dict[str, Any]):
    """Instantiate a config section, freezing list values into tuples."""
    values = {k: tuple(v) if isinstance(v, list) else v for k, v in (values or {}).items()}
    return config_cls(**values)


def load_config(config_path: Optional[str] = None) -> PipelineConfig:
    """
    Load the pipeline configuration.

    Resolution order: explicit path, the FITPOSE_CONFIG env var, then the
    packaged default.
    """
    path = config_path or os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    return PipelineConfig.from_yaml(path)
