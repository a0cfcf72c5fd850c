"""
Frame-skip schedule.

Inference runs on the first frame and then on every N-th frame; the
frames in between reuse (or clear) the previous result.
"""

from __future__ import annotations

from models.config import ConfigError


class FrameSchedule:
    """
    Decides which frame ticks run inference.

    Example:
        schedule = FrameSchedule(run_every_n_frames=3)
        [schedule.tick() for _ in range(5)]  # [True, False, False, True, False]
    """

    def __init__(self, run_every_n_frames: int = 1):
        if run_every_n_frames < 1:
            raise ConfigError("run_every_n_frames must be >= 1")
        self.run_every_n_frames = run_every_n_frames
        self._ticks = 0

    @property
    def ticks(self) -> int:
        return self._ticks

    def tick(self) -> bool:
        """Advance one frame; True when inference should run on it."""
        should_run = self._ticks % self.run_every_n_frames == 0
        self._ticks += 1
        return should_run

    def reset(self) -> None:
        self._ticks = 0
