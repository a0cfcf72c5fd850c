"""
Detection pipeline orchestrator.

Drives decode -> NMS once per permitted frame and owns the policies
around it:
- frame skipping, with interpolation of the previous result
- holding the last non-empty result across short runs of empty cycles
- optional label identity tracking
- halting the session when the inference collaborator fails

The step function is scheduler-agnostic: `step()` for synchronous
backends, `step_async()` when the backend returns an awaitable. Both are
meant to be called from a single task or thread; the pipeline is the only
writer of its cached state and hands out immutable DetectionSets.
"""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from detection.decoder import DecoderSettings, DetectionDecoder
from detection.nms import non_max_suppression
from detection.tensor_view import DecodeError
from models.catalog import ClassCatalog
from models.config import Config, ConfigError, check_config
from models.detection import DetectionSet, DetectionSource
from models.frame import FrameData
from models.label import LabelEvent
from models.status import CyclePhase, PipelineState, PipelineStats
from tracking.tracker import LabelTracker, PositionFn
from pipeline.stages.hold import HoldPolicy
from pipeline.stages.schedule import FrameSchedule

FPS_SMOOTHING = 0.1


class InferenceError(RuntimeError):
    """The inference collaborator failed; the session stops scheduling cycles."""


@dataclass(frozen=True)
class StepResult:
    """
    Outcome of one pipeline step.

    Attributes:
        detections: The set to present for this frame.
        events: Label create/update/remove events (tracking only).
        ran_inference: Whether a new inference cycle completed on this frame.
        error: Message when the step degraded (input not ready, decode or inference failure).
    """
    detections: DetectionSet
    events: Tuple[LabelEvent, ...] = ()
    ran_inference: bool = False
    error: Optional[str] = None


class DetectionPipeline:
    """
    Per-frame detection orchestrator.

    Example:
        pipeline = DetectionPipeline(config, catalog, backend)
        for frame_data in source:
            result = pipeline.step(frame_data)
            render(result.detections)
    """

    def __init__(
        self,
        config: Config,
        catalog: ClassCatalog,
        backend: Any = None,
        position_fn: Optional[PositionFn] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Typed configuration.
            catalog: Class names for the model.
            backend: Inference collaborator with `infer(image)`; may be attached later.
            position_fn: Position used for label matching (tracking only).

        Raises:
            ConfigError: If the configuration is out of range.
        """
        problem = check_config(config)
        if problem:
            raise ConfigError(problem)

        self.config = config
        self.catalog = catalog
        self.decoder = DetectionDecoder(DecoderSettings.from_config(config), catalog)
        self.schedule = FrameSchedule(config.schedule.run_every_n_frames)
        self.hold = HoldPolicy(config.schedule.hold_frames)
        self.tracker: Optional[LabelTracker] = None
        if config.tracking.enabled:
            self.tracker = LabelTracker(
                position_tolerance=config.tracking.position_tolerance,
                label_lifetime=config.tracking.label_lifetime,
                position_fn=position_fn,
            )

        self.stats = PipelineStats()
        self._backend = backend
        self._state = PipelineState.AWAITING_CAMERA
        self._phase = CyclePhase.IDLE
        self._session = 0
        self._cycle = 0
        self._in_flight = False
        self._published = DetectionSet.empty()
        self._last_cycle_set = DetectionSet.empty()
        self._last_error: Optional[str] = None
        self._fault_error: Optional[InferenceError] = None
        self._last_frame_time: Optional[float] = None
        self._callbacks: List[Callable[[StepResult], None]] = []

        logging.info(
            f"Detection pipeline initialized: classes={len(catalog)}, "
            f"score_mode={config.decoder.score_mode}, "
            f"run_every_n_frames={config.schedule.run_every_n_frames}"
        )

    # ------------------------------------------------------------------
    # Properties

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def phase(self) -> CyclePhase:
        return self._phase

    @property
    def cycle(self) -> int:
        return self._cycle

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def fault(self) -> Optional[InferenceError]:
        """The InferenceError that faulted the session, chained to its cause."""
        return self._fault_error

    @property
    def published(self) -> DetectionSet:
        """The most recently published set."""
        return self._published

    @property
    def last_detections(self) -> DetectionSet:
        """Result of the last completed cycle; untouched by faults and skipped frames."""
        return self._last_cycle_set

    @property
    def is_busy(self) -> bool:
        """True while an inference result is pending."""
        return self._in_flight

    @property
    def backend(self) -> Any:
        return self._backend

    def attach_backend(self, backend: Any) -> None:
        """Attach (or replace) the inference collaborator."""
        self._backend = backend
        logging.info("Inference backend attached")

    def add_callback(self, callback: Callable[[StepResult], None]) -> None:
        """
        Add a callback invoked with every published StepResult.

        Args:
            callback: Function taking the StepResult.
        """
        self._callbacks.append(callback)

    # ------------------------------------------------------------------
    # Stepping

    def step(self, frame: Optional[FrameData]) -> StepResult:
        """
        Process one frame tick synchronously.

        Args:
            frame: The current camera frame, or None if the camera is not ready.

        Returns:
            The StepResult published for this tick.
        """
        early = self._begin_step(frame)
        if early is not None:
            return early

        self._in_flight = True
        start = time.perf_counter()
        try:
            tensor = self._backend.infer(frame.frame)
            if inspect.isawaitable(tensor):
                if hasattr(tensor, "close"):
                    tensor.close()
                raise InferenceError("Backend returned an awaitable; use step_async()")
        except Exception as e:
            return self._fault(e, frame)
        finally:
            self._in_flight = False

        return self._complete_cycle(tensor, frame, start)

    async def step_async(self, frame: Optional[FrameData]) -> Optional[StepResult]:
        """
        Process one frame tick, awaiting the backend if it is asynchronous.

        Suspends only while the inference result is pending. A tick that
        arrives while a cycle is in flight is treated as a skipped frame.

        Returns:
            The StepResult, or None when the session was reset or closed
            while inference was pending (the result is discarded).
        """
        early = self._begin_step(frame)
        if early is not None:
            return early

        session = self._session
        self._in_flight = True
        start = time.perf_counter()
        try:
            tensor = self._backend.infer(frame.frame)
            if inspect.isawaitable(tensor):
                tensor = await tensor
        except Exception as e:
            if session != self._session:
                logging.debug(f"Discarding failure from a finished session: {e}")
                return None
            return self._fault(e, frame)
        finally:
            if session == self._session:
                self._in_flight = False

        if session != self._session or self._state == PipelineState.CLOSED:
            logging.debug("Discarding in-flight result from a finished session")
            return None

        return self._complete_cycle(tensor, frame, start)

    def process_tensor(self, tensor: Any, frame_index: int = 0) -> DetectionSet:
        """
        Decode and suppress one raw tensor without touching pipeline state.

        Malformed tensors yield an empty set.
        """
        candidates = self.decoder.decode(tensor)
        final = non_max_suppression(
            candidates,
            iou_threshold=self.config.nms.iou_threshold,
            max_detections=self.config.nms.max_detections,
        )
        return DetectionSet.fresh(final, cycle=0, frame_index=frame_index)

    # ------------------------------------------------------------------
    # Session control

    def reset(self) -> List[LabelEvent]:
        """
        Restart the session, e.g. after a fault.

        Any in-flight result is discarded. Cycle numbers keep increasing so
        published sets stay ordered across restarts.

        Returns:
            Removal events for labels that were live.
        """
        self._session += 1
        self._in_flight = False
        self._state = PipelineState.AWAITING_CAMERA
        self._phase = CyclePhase.IDLE
        self._last_error = None
        self._fault_error = None
        self._last_frame_time = None
        self.schedule.reset()
        self.hold.reset()
        self._last_cycle_set = DetectionSet.empty(cycle=self._cycle)
        self._published = self._last_cycle_set

        events: List[LabelEvent] = []
        if self.tracker is not None:
            events = self.tracker.clear()

        logging.info("Detection pipeline restarted")
        return events

    def close(self) -> None:
        """Tear down the session; no further cycles are scheduled."""
        if self._state == PipelineState.CLOSED:
            return
        self._session += 1
        self._in_flight = False
        self._state = PipelineState.CLOSED
        self._phase = CyclePhase.IDLE
        if self.tracker is not None:
            self.tracker.clear()

        if self._backend is not None and hasattr(self._backend, "close"):
            try:
                self._backend.close()
            except Exception as e:
                logging.warning(f"Error closing backend: {e}")

        logging.info(f"Detection pipeline closed: {self.stats.to_dict()}")

    # ------------------------------------------------------------------
    # Internals

    def _begin_step(self, frame: Optional[FrameData]) -> Optional[StepResult]:
        """Handle everything that does not need a new cycle; None means run inference."""
        if self._state == PipelineState.CLOSED:
            return StepResult(DetectionSet.empty(cycle=self._cycle), error="pipeline closed")

        self.stats.frame_count += 1
        frame_index = frame.frame_index if frame is not None else 0

        if self._state == PipelineState.FAULTED:
            return self._publish(StepResult(self._stale(frame_index)))

        if frame is None:
            self._state = PipelineState.AWAITING_CAMERA
            return self._publish(StepResult(
                DetectionSet.empty(cycle=self._cycle, frame_index=frame_index),
                error="camera not ready",
            ))

        if self._backend is None:
            self._state = PipelineState.AWAITING_MODEL
            return self._publish(StepResult(
                DetectionSet.empty(cycle=self._cycle, frame_index=frame_index),
                error="model not ready",
            ))

        if self._state != PipelineState.RUNNING:
            logging.info("Detection pipeline running")
        self._state = PipelineState.RUNNING
        self._update_fps(frame.timestamp)

        should_run = self.schedule.tick()
        if should_run and frame.has_new_data and not self._in_flight:
            return None
        return self._skip(frame)

    def _skip(self, frame: FrameData) -> StepResult:
        self.stats.skipped_frames += 1
        if self.config.schedule.interpolate_detections and self._last_cycle_set:
            detections = self._last_cycle_set.replace_source(
                DetectionSource.INTERPOLATED, frame_index=frame.frame_index
            )
        else:
            detections = DetectionSet.empty(cycle=self._cycle, frame_index=frame.frame_index)
        return self._publish(StepResult(detections))

    def _complete_cycle(self, tensor: Any, frame: FrameData, start: float) -> StepResult:
        self._phase = CyclePhase.DECODING
        try:
            candidates = self.decoder.decode_view(self.decoder.wrap(tensor))
        except DecodeError as e:
            self._cycle += 1
            self.stats.decode_errors += 1
            logging.warning(f"Cycle {self._cycle}: malformed output tensor: {e}")
            detections = DetectionSet.empty(cycle=self._cycle, frame_index=frame.frame_index)
            # A cleared screen must not bring back an older set
            self.hold.reset()
            self._last_cycle_set = detections
            self._phase = CyclePhase.PUBLISHED
            return self._publish(StepResult(detections, ran_inference=True, error=str(e)))

        self._phase = CyclePhase.SUPPRESSING
        final = non_max_suppression(
            candidates,
            iou_threshold=self.config.nms.iou_threshold,
            max_detections=self.config.nms.max_detections,
        )

        self._cycle += 1
        result = DetectionSet.fresh(final, cycle=self._cycle, frame_index=frame.frame_index)
        if not result:
            self.stats.empty_cycles += 1
        detections = self.hold.apply(result)

        events: Tuple[LabelEvent, ...] = ()
        if self.tracker is not None:
            events = tuple(self.tracker.update(final, now=frame.timestamp))

        self._last_cycle_set = detections
        self.stats.cycle_count += 1
        self.stats.last_inference_ms = (time.perf_counter() - start) * 1000.0
        self._phase = CyclePhase.PUBLISHED

        logging.debug(
            f"Cycle {self._cycle}: candidates={len(candidates)} final={len(final)} "
            f"published={detections.source.value} ({self.stats.last_inference_ms:.1f} ms)"
        )
        return self._publish(StepResult(detections, events=events, ran_inference=True))

    def _fault(self, exc: Exception, frame: FrameData) -> StepResult:
        self._state = PipelineState.FAULTED
        self._phase = CyclePhase.IDLE
        if isinstance(exc, InferenceError):
            fault = exc
        else:
            fault = InferenceError(f"Backend inference failed: {exc}")
            fault.__cause__ = exc
        self._fault_error = fault
        self._last_error = f"{type(exc).__name__}: {exc}"
        logging.error(f"Inference failed, detection halted until reset: {self._last_error}")
        return self._publish(StepResult(self._stale(frame.frame_index), error=self._last_error))

    def _stale(self, frame_index: int) -> DetectionSet:
        if self._last_cycle_set:
            return self._last_cycle_set.replace_source(DetectionSource.STALE, frame_index=frame_index)
        return DetectionSet.empty(cycle=self._cycle, frame_index=frame_index)

    def _publish(self, result: StepResult) -> StepResult:
        self._published = result.detections
        self.stats.last_detection_count = len(result.detections)
        for callback in self._callbacks:
            try:
                callback(result)
            except Exception as e:
                logging.warning(f"Callback error: {e}")
        return result

    def _update_fps(self, timestamp: float) -> None:
        if self._last_frame_time is not None:
            dt = timestamp - self._last_frame_time
            if dt > 0:
                fps = 1.0 / dt
                self.stats.smoothed_fps += (fps - self.stats.smoothed_fps) * FPS_SMOOTHING
        self._last_frame_time = timestamp


def create_pipeline_from_config(
    config: Dict[str, Any],
    backend: Any = None,
    position_fn: Optional[PositionFn] = None,
) -> DetectionPipeline:
    """
    Factory function to create a DetectionPipeline from a config dict.

    Args:
        config: Full application config dict (from load_config).
        backend: Optional inference collaborator.
        position_fn: Optional position function for label tracking.

    Raises:
        ConfigError: If the class catalog or any range is invalid.
    """
    typed = Config.from_dict(config)
    catalog = ClassCatalog.from_config(typed.classes)
    return DetectionPipeline(typed, catalog, backend=backend, position_fn=position_fn)
