"""
Temporal label tracking.
"""

from .tracker import LabelTracker, viewport_position

__all__ = ["LabelTracker", "viewport_position"]
