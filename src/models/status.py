"""
Pipeline state and runtime statistics models.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict


class PipelineState(str, Enum):
    """Session-level pipeline states."""
    AWAITING_CAMERA = "awaiting_camera"
    AWAITING_MODEL = "awaiting_model"
    RUNNING = "running"
    FAULTED = "faulted"
    CLOSED = "closed"


class CyclePhase(str, Enum):
    """Phase of the current inference cycle."""
    IDLE = "idle"
    DECODING = "decoding"
    SUPPRESSING = "suppressing"
    PUBLISHED = "published"


@dataclass
class PipelineStats:
    """
    Runtime statistics for the detection pipeline.

    Attributes:
        frame_count: Frames handed to step().
        cycle_count: Inference cycles that completed.
        skipped_frames: Frames that reused (or cleared) detections without inference.
        empty_cycles: Completed cycles that produced no detections.
        decode_errors: Cycles whose tensor could not be decoded.
        last_detection_count: Size of the most recently published set.
        last_inference_ms: Wall time of the last inference + decode + NMS.
        smoothed_fps: Exponentially smoothed step rate.
    """
    frame_count: int = 0
    cycle_count: int = 0
    skipped_frames: int = 0
    empty_cycles: int = 0
    decode_errors: int = 0
    last_detection_count: int = 0
    last_inference_ms: float = 0.0
    smoothed_fps: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
