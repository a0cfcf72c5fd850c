"""
Hold policy for transient misses.

When a cycle produces nothing, the last non-empty result stays on screen
for up to hold_frames consecutive empty cycles before it is cleared.
"""

from __future__ import annotations

from typing import Optional

from models.config import ConfigError
from models.detection import DetectionSet, DetectionSource


class HoldPolicy:
    """
    Smooths flicker by holding the last non-empty DetectionSet.

    With hold_frames=None the policy is disabled and empty cycles publish
    an empty set immediately.
    """

    def __init__(self, hold_frames: Optional[int] = None):
        if hold_frames is not None and hold_frames < 1:
            raise ConfigError("hold_frames must be >= 1")
        self.hold_frames = hold_frames
        self._last_good: Optional[DetectionSet] = None
        self._empty_cycles = 0

    @property
    def enabled(self) -> bool:
        return self.hold_frames is not None

    @property
    def empty_cycles(self) -> int:
        """Consecutive empty cycles since the last non-empty one."""
        return self._empty_cycles

    @property
    def last_good(self) -> Optional[DetectionSet]:
        return self._last_good

    def apply(self, result: DetectionSet) -> DetectionSet:
        """
        Filter one cycle's result through the policy.

        Args:
            result: The fresh result of a completed cycle.

        Returns:
            The set to publish: the result itself, a held copy of the last
            non-empty set, or the (empty) result once the hold has expired.
        """
        if result:
            self._last_good = result
            self._empty_cycles = 0
            return result

        self._empty_cycles += 1
        if (
            self.enabled
            and self._last_good is not None
            and self._empty_cycles <= self.hold_frames
        ):
            return self._last_good.replace_source(DetectionSource.HELD, frame_index=result.frame_index)

        self._last_good = None
        return result

    def reset(self) -> None:
        self._last_good = None
        self._empty_cycles = 0
