"""
Pipeline stages for the detection pipeline.

Each stage handles one policy of the per-frame flow:
- schedule: which frames run inference
- hold: how long a result survives empty cycles
"""

from .schedule import FrameSchedule
from .hold import HoldPolicy

__all__ = ["FrameSchedule", "HoldPolicy"]
