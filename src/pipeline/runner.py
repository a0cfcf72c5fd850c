"""
Frame loop that feeds a FrameSource into a DetectionPipeline.

The runner owns the camera side of the loop (reading, retrying failed
reads, stopping); the pipeline owns everything about detection.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from models.frame import FrameData
from models.status import PipelineState
from observation import FrameSource
from pipeline.engine import DetectionPipeline, StepResult


@dataclass
class RunnerConfig:
    """
    Configuration for the frame loop.

    Attributes:
        max_consecutive_failures: Max frame read failures before stopping.
        retry_delay: Seconds to wait after a failed read.
        stats_log_interval: Seconds between status log messages.
        restart_on_fault: Reset the pipeline after an inference fault instead of stopping.
        max_frames: Stop after this many frames (None = until the source is exhausted).
    """
    max_consecutive_failures: int = 10
    retry_delay: float = 0.5
    stats_log_interval: float = 60.0
    restart_on_fault: bool = False
    max_frames: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunnerConfig":
        return cls(
            max_consecutive_failures=int(data.get("max_consecutive_failures", 10)),
            retry_delay=float(data.get("retry_delay", 0.5)),
            stats_log_interval=float(data.get("stats_log_interval", 60.0)),
            restart_on_fault=bool(data.get("restart_on_fault", False)),
            max_frames=data.get("max_frames"),
        )


@dataclass
class RunnerStats:
    """Loop-level statistics."""
    frames_read: int = 0
    consecutive_failures: int = 0
    restarts: int = 0
    start_time: float = field(default_factory=time.time)
    last_stats_log_time: float = field(default_factory=time.time)


class PipelineRunner:
    """
    Reads frames from a FrameSource and steps the pipeline on each one.

    Example:
        with OpenCVFileSource(SourceConfig(path="clip.mp4")) as source:
            runner = PipelineRunner(source, pipeline, RunnerConfig())
            runner.add_callback(lambda frame, result: draw(frame, result.detections))
            runner.run()
    """

    def __init__(
        self,
        source: FrameSource,
        pipeline: DetectionPipeline,
        config: Optional[RunnerConfig] = None,
    ):
        self.source = source
        self.pipeline = pipeline
        self.config = config or RunnerConfig()
        self.stats = RunnerStats()
        self._running = False
        self._callbacks: List[Callable[[FrameData, StepResult], None]] = []

    @property
    def is_running(self) -> bool:
        return self._running

    def add_callback(self, callback: Callable[[FrameData, StepResult], None]) -> None:
        """
        Add a callback to be called after each frame is processed.

        Args:
            callback: Function taking (frame_data, step_result) as arguments.
        """
        self._callbacks.append(callback)

    def run(self) -> RunnerStats:
        """
        Run the frame loop until stopped, exhausted, or faulted.

        Opens the source if needed and always closes it on exit.
        """
        self._running = True
        self.stats = RunnerStats()

        try:
            if not self.source.is_open:
                self.source.open()
            logging.info(f"Runner started: source={self.source.source_id}")

            while self._running:
                if self.config.max_frames is not None and self.stats.frames_read >= self.config.max_frames:
                    logging.info(f"Frame limit reached ({self.config.max_frames})")
                    break

                frame_data = self.source.read()
                if frame_data is None:
                    if self.source.exhausted:
                        logging.info("Source exhausted")
                        break
                    self.stats.consecutive_failures += 1
                    if self.stats.consecutive_failures >= self.config.max_consecutive_failures:
                        logging.error(
                            f"Too many consecutive failures ({self.stats.consecutive_failures}), stopping"
                        )
                        break
                    logging.warning(
                        f"Frame read failed ({self.stats.consecutive_failures}/"
                        f"{self.config.max_consecutive_failures})"
                    )
                    time.sleep(self.config.retry_delay)
                    continue

                self.stats.consecutive_failures = 0
                self.stats.frames_read += 1
                result = self.pipeline.step(frame_data)

                for callback in self._callbacks:
                    try:
                        callback(frame_data, result)
                    except Exception as e:
                        logging.warning(f"Callback error: {e}")

                if self.pipeline.state == PipelineState.FAULTED:
                    if not self.config.restart_on_fault:
                        logging.error(f"Pipeline faulted, stopping: {self.pipeline.last_error}")
                        break
                    self.pipeline.reset()
                    self.stats.restarts += 1

                self._handle_periodic_tasks()

        except KeyboardInterrupt:
            logging.info("Runner interrupted by user")
        finally:
            self._cleanup()

        return self.stats

    def stop(self) -> None:
        """Signal the loop to stop after the current frame."""
        self._running = False

    def _handle_periodic_tasks(self) -> None:
        now = time.time()
        if now - self.stats.last_stats_log_time >= self.config.stats_log_interval:
            stats = self.pipeline.stats
            logging.info(
                f"Pipeline stats: frames={stats.frame_count}, cycles={stats.cycle_count}, "
                f"skipped={stats.skipped_frames}, empty={stats.empty_cycles}, "
                f"decode_errors={stats.decode_errors}, fps={stats.smoothed_fps:.1f}"
            )
            self.stats.last_stats_log_time = now

    def _cleanup(self) -> None:
        self._running = False
        try:
            self.source.close()
        except Exception as e:
            logging.warning(f"Error closing source: {e}")
        logging.info(f"Runner stopped: frames={self.stats.frames_read}")
