"""
Typed models for the detection overlay pipeline.

These are plain value types shared by the decoder, NMS, tracker and
pipeline; none of them depends on an inference runtime.
"""

from .frame import FrameData
from .detection import Detection, DetectionSet, DetectionSource, NormalizedBox
from .catalog import ClassCatalog, ASSEMBLY_CLASSES, COCO_CLASSES
from .label import TrackedLabel, LabelState, LabelEvent, LabelEventKind
from .status import PipelineState, CyclePhase, PipelineStats
from .config import (
    Config,
    ConfigError,
    ModelConfig,
    DecoderConfig,
    NmsConfig,
    ScheduleConfig,
    TrackingConfig,
    check_config,
)

__all__ = [
    # Frame
    "FrameData",
    # Detection
    "Detection",
    "DetectionSet",
    "DetectionSource",
    "NormalizedBox",
    # Catalog
    "ClassCatalog",
    "ASSEMBLY_CLASSES",
    "COCO_CLASSES",
    # Labels
    "TrackedLabel",
    "LabelState",
    "LabelEvent",
    "LabelEventKind",
    # Status
    "PipelineState",
    "CyclePhase",
    "PipelineStats",
    # Config
    "Config",
    "ConfigError",
    "ModelConfig",
    "DecoderConfig",
    "NmsConfig",
    "ScheduleConfig",
    "TrackingConfig",
    "check_config",
]
