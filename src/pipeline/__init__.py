"""
Pipeline module for the detection post-processing core.

The pipeline orchestrates the per-frame flow:
- Frame scheduling and interpolation (FrameSchedule)
- Decode and NMS on permitted frames
- Holding results across empty cycles (HoldPolicy)
- Optional label tracking
- The frame loop over an observation source (PipelineRunner)
"""

from .engine import (
    DetectionPipeline,
    InferenceError,
    StepResult,
    create_pipeline_from_config,
)
from .runner import PipelineRunner, RunnerConfig, RunnerStats
from .stages import FrameSchedule, HoldPolicy

__all__ = [
    "DetectionPipeline",
    "InferenceError",
    "StepResult",
    "create_pipeline_from_config",
    "PipelineRunner",
    "RunnerConfig",
    "RunnerStats",
    "FrameSchedule",
    "HoldPolicy",
]
