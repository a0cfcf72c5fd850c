"""
Tests for the detection pipeline, its stages, and the frame runner.
"""

import asyncio
import logging

import numpy as np
import pytest
from unittest.mock import MagicMock

from models.config import Config, ConfigError
from models.detection import Detection, DetectionSet, DetectionSource, NormalizedBox
from models.frame import FrameData
from models.label import LabelEventKind
from models.status import CyclePhase, PipelineState
from observation.base import FrameSource, SourceConfig
from pipeline import (
    DetectionPipeline,
    FrameSchedule,
    HoldPolicy,
    InferenceError,
    PipelineRunner,
    RunnerConfig,
    create_pipeline_from_config,
)

ITEM_A = {"box": (0.3, 0.3, 0.2, 0.2), "obj": 0.9, "cls": 1, "score": 0.9}
ITEM_B = {"box": (0.7, 0.7, 0.2, 0.2), "obj": 0.9, "cls": 4, "score": 0.8}


def frame(index, timestamp=None, has_new_data=True):
    image = np.zeros((48, 64, 3), dtype=np.uint8)
    ts = float(index) if timestamp is None else timestamp
    return FrameData.from_numpy(image, timestamp=ts, frame_index=index, has_new_data=has_new_data)


class SequenceBackend:
    """Backend returning prepared tensors in order (the last one repeats)."""

    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.calls = 0
        self.closed = False

    def infer(self, image):
        output = self.outputs[min(self.calls, len(self.outputs) - 1)]
        self.calls += 1
        if isinstance(output, Exception):
            raise output
        return output

    def close(self):
        self.closed = True


class GatedAsyncBackend:
    """Async backend that waits for a gate before returning."""

    def __init__(self, output):
        self.output = output
        self.gate = asyncio.Event()
        self.calls = 0

    async def infer(self, image):
        self.calls += 1
        await self.gate.wait()
        return self.output


def make_pipeline(valid_config, backend=None, **schedule):
    valid_config["schedule"].update(schedule)
    return create_pipeline_from_config(valid_config, backend=backend)


class TestFrameSchedule:
    def test_first_frame_then_every_n(self):
        schedule = FrameSchedule(run_every_n_frames=3)
        assert [schedule.tick() for _ in range(7)] == [True, False, False, True, False, False, True]

    def test_every_frame(self):
        schedule = FrameSchedule(run_every_n_frames=1)
        assert all(schedule.tick() for _ in range(5))

    def test_reset(self):
        schedule = FrameSchedule(run_every_n_frames=2)
        schedule.tick()
        schedule.reset()

        assert schedule.ticks == 0
        assert schedule.tick() is True

    def test_invalid(self):
        with pytest.raises(ConfigError):
            FrameSchedule(run_every_n_frames=0)


class TestHoldPolicy:
    def _fresh(self, cycle):
        d = Detection(class_id=0, score=0.9, box=NormalizedBox(0.1, 0.1, 0.1, 0.1))
        return DetectionSet.fresh([d], cycle=cycle, frame_index=cycle)

    def test_disabled_passes_empty_through(self):
        hold = HoldPolicy()
        hold.apply(self._fresh(1))

        result = hold.apply(DetectionSet.empty(cycle=2))

        assert not result
        assert hold.enabled is False

    def test_holds_for_n_empty_cycles(self):
        hold = HoldPolicy(hold_frames=2)
        good = hold.apply(self._fresh(1))

        first = hold.apply(DetectionSet.empty(cycle=2, frame_index=2))
        second = hold.apply(DetectionSet.empty(cycle=3, frame_index=3))
        third = hold.apply(DetectionSet.empty(cycle=4, frame_index=4))

        assert first.source == DetectionSource.HELD
        assert first.detections == good.detections
        assert first.frame_index == 2
        assert second.source == DetectionSource.HELD
        assert not third
        assert hold.last_good is None

    def test_non_empty_resets_count(self):
        hold = HoldPolicy(hold_frames=1)
        hold.apply(self._fresh(1))
        hold.apply(DetectionSet.empty(cycle=2))
        hold.apply(self._fresh(3))

        assert hold.empty_cycles == 0
        assert hold.apply(DetectionSet.empty(cycle=4)).source == DetectionSource.HELD

    def test_invalid(self):
        with pytest.raises(ConfigError):
            HoldPolicy(hold_frames=0)


class TestDetectionPipeline:
    def test_invalid_config_rejected(self, valid_config, catalog):
        valid_config["nms"]["iou_threshold"] = 0.95
        with pytest.raises(ConfigError):
            DetectionPipeline(Config.from_dict(valid_config), catalog)

    def test_single_cycle(self, valid_config, make_output):
        backend = SequenceBackend([make_output([ITEM_A, ITEM_B])])
        pipeline = make_pipeline(valid_config, backend)

        result = pipeline.step(frame(1))

        assert result.ran_inference is True
        assert result.error is None
        assert result.detections.source == DetectionSource.FRESH
        assert result.detections.cycle == 1
        assert [d.class_id for d in result.detections] == [1, 4]
        assert pipeline.state == PipelineState.RUNNING
        assert pipeline.phase == CyclePhase.PUBLISHED
        assert pipeline.stats.cycle_count == 1
        assert pipeline.stats.last_detection_count == 2

    def test_skipped_frames_reuse_previous_cycle(self, valid_config, make_output):
        backend = SequenceBackend([make_output([ITEM_A]), make_output([ITEM_B])])
        pipeline = make_pipeline(valid_config, backend, run_every_n_frames=3, interpolate_detections=True)

        results = [pipeline.step(frame(i)) for i in range(1, 6)]

        first = results[0].detections
        assert first.is_fresh and first.cycle == 1
        for skipped in results[1:3]:
            assert skipped.ran_inference is False
            assert skipped.detections.source == DetectionSource.INTERPOLATED
            assert skipped.detections.detections == first.detections
            assert skipped.detections.cycle == 1
        assert results[3].detections.is_fresh
        assert results[3].detections.cycle == 2
        assert results[3].detections[0].class_id == 4
        assert results[4].detections.source == DetectionSource.INTERPOLATED
        assert backend.calls == 2
        assert pipeline.stats.skipped_frames == 3

    def test_skipped_frames_without_interpolation_are_empty(self, valid_config, make_output):
        backend = SequenceBackend([make_output([ITEM_A])])
        pipeline = make_pipeline(valid_config, backend, run_every_n_frames=2, interpolate_detections=False)

        pipeline.step(frame(1))
        skipped = pipeline.step(frame(2))

        assert not skipped.detections
        assert skipped.detections.source == DetectionSource.EMPTY
        assert pipeline.last_detections.is_fresh

    def test_frame_without_new_data_does_not_run(self, valid_config, make_output):
        backend = SequenceBackend([make_output([ITEM_A])])
        pipeline = make_pipeline(valid_config, backend)

        pipeline.step(frame(1))
        result = pipeline.step(frame(2, has_new_data=False))

        assert result.ran_inference is False
        assert result.detections.source == DetectionSource.INTERPOLATED
        assert backend.calls == 1

    def test_cycles_are_monotonic(self, valid_config, make_output):
        backend = SequenceBackend([make_output([ITEM_A])])
        pipeline = make_pipeline(valid_config, backend, run_every_n_frames=2)

        cycles = [pipeline.step(frame(i)).detections.cycle for i in range(1, 9)]

        assert cycles == sorted(cycles)
        assert cycles[-1] == 4

    def test_hold_frames(self, valid_config, make_output):
        empty = make_output([])
        backend = SequenceBackend([make_output([ITEM_A]), empty, empty, empty])
        pipeline = make_pipeline(valid_config, backend, hold_frames=2)

        sources = [pipeline.step(frame(i)).detections.source for i in range(1, 5)]

        assert sources == [
            DetectionSource.FRESH,
            DetectionSource.HELD,
            DetectionSource.HELD,
            DetectionSource.EMPTY,
        ]
        assert pipeline.stats.empty_cycles == 3

    def test_empty_cycle_without_hold_clears(self, valid_config, make_output):
        backend = SequenceBackend([make_output([ITEM_A]), make_output([])])
        pipeline = make_pipeline(valid_config, backend)

        pipeline.step(frame(1))
        result = pipeline.step(frame(2))

        assert result.ran_inference is True
        assert not result.detections

    def test_nms_applied_per_cycle(self, valid_config, make_output):
        overlapping = dict(ITEM_A, box=(0.31, 0.3, 0.2, 0.2), score=0.85)
        backend = SequenceBackend([make_output([ITEM_A, overlapping])])
        pipeline = make_pipeline(valid_config, backend)

        result = pipeline.step(frame(1))

        assert len(result.detections) == 1
        assert result.detections[0].score == pytest.approx(0.81, abs=1e-5)

    def test_camera_not_ready(self, valid_config, make_output):
        pipeline = make_pipeline(valid_config, SequenceBackend([make_output([ITEM_A])]))

        result = pipeline.step(None)

        assert pipeline.state == PipelineState.AWAITING_CAMERA
        assert not result.detections
        assert result.error == "camera not ready"

    def test_model_not_ready_then_attached(self, valid_config, make_output):
        pipeline = make_pipeline(valid_config)

        waiting = pipeline.step(frame(1))
        assert pipeline.state == PipelineState.AWAITING_MODEL
        assert waiting.error == "model not ready"

        pipeline.attach_backend(SequenceBackend([make_output([ITEM_A])]))
        result = pipeline.step(frame(2))

        assert pipeline.state == PipelineState.RUNNING
        assert result.detections.is_fresh

    def test_decode_error_is_recoverable(self, valid_config, make_output):
        bad = np.zeros((1, 30, 8400), dtype=np.float32)
        backend = SequenceBackend([make_output([ITEM_A]), bad, make_output([ITEM_B])])
        pipeline = make_pipeline(valid_config, backend)

        pipeline.step(frame(1))
        degraded = pipeline.step(frame(2))
        recovered = pipeline.step(frame(3))

        assert degraded.ran_inference is True
        assert degraded.error is not None
        assert not degraded.detections
        assert pipeline.stats.decode_errors == 1
        assert recovered.detections.is_fresh
        assert recovered.detections[0].class_id == 4
        assert pipeline.state == PipelineState.RUNNING

    def test_decode_error_counts_as_empty_for_hold(self, valid_config, make_output):
        bad = np.zeros((1, 30, 8400), dtype=np.float32)
        backend = SequenceBackend([make_output([ITEM_A]), bad, make_output([])])
        pipeline = make_pipeline(valid_config, backend, hold_frames=1)

        sources = [pipeline.step(frame(i)).detections.source for i in range(1, 4)]

        assert sources == [DetectionSource.FRESH, DetectionSource.EMPTY, DetectionSource.EMPTY]
        assert pipeline.hold.last_good is None

    def test_non_numeric_tensor_is_recoverable(self, valid_config, make_output):
        backend = SequenceBackend([np.full((1, 13, 8400), "x"), make_output([ITEM_A])])
        pipeline = make_pipeline(valid_config, backend)

        degraded = pipeline.step(frame(1))
        recovered = pipeline.step(frame(2))

        assert "numeric" in degraded.error
        assert not degraded.detections
        assert pipeline.stats.decode_errors == 1
        assert recovered.detections.is_fresh
        assert pipeline.state == PipelineState.RUNNING

    def test_inference_failure_faults_and_keeps_last_good(self, valid_config, make_output, caplog):
        backend = SequenceBackend([make_output([ITEM_A]), RuntimeError("device lost")])
        pipeline = make_pipeline(valid_config, backend)

        good = pipeline.step(frame(1)).detections
        with caplog.at_level(logging.ERROR):
            failed = pipeline.step(frame(2))
            after = pipeline.step(frame(3))

        assert pipeline.state == PipelineState.FAULTED
        assert "device lost" in failed.error
        assert "device lost" in pipeline.last_error
        assert isinstance(pipeline.fault, InferenceError)
        assert isinstance(pipeline.fault.__cause__, RuntimeError)
        assert "device lost" in str(pipeline.fault)
        assert failed.detections.source == DetectionSource.STALE
        assert failed.detections.detections == good.detections
        assert after.detections.source == DetectionSource.STALE
        assert after.error is None
        assert backend.calls == 2
        assert pipeline.last_detections == good
        assert len([r for r in caplog.records if "Inference failed" in r.getMessage()]) == 1

    def test_reset_after_fault(self, valid_config, make_output):
        backend = SequenceBackend([RuntimeError("boom"), make_output([ITEM_A])])
        pipeline = make_pipeline(valid_config, backend)

        pipeline.step(frame(1))
        assert pipeline.state == PipelineState.FAULTED

        pipeline.reset()
        assert pipeline.state == PipelineState.AWAITING_CAMERA
        assert pipeline.last_error is None
        assert pipeline.fault is None

        result = pipeline.step(frame(2))
        assert result.detections.is_fresh
        assert pipeline.state == PipelineState.RUNNING

    def test_sync_step_rejects_async_backend(self, valid_config, make_output):
        backend = GatedAsyncBackend(make_output([ITEM_A]))
        pipeline = make_pipeline(valid_config, backend)

        result = pipeline.step(frame(1))

        assert pipeline.state == PipelineState.FAULTED
        assert "InferenceError" in result.error
        assert pipeline.fault.__cause__ is None

    def test_close(self, valid_config, make_output):
        backend = SequenceBackend([make_output([ITEM_A])])
        pipeline = make_pipeline(valid_config, backend)
        pipeline.step(frame(1))

        pipeline.close()
        result = pipeline.step(frame(2))

        assert backend.closed is True
        assert pipeline.state == PipelineState.CLOSED
        assert result.error == "pipeline closed"
        assert backend.calls == 1

    def test_tracking_events(self, valid_config, make_output):
        valid_config["tracking"]["enabled"] = True
        moved = dict(ITEM_A, box=(0.35, 0.3, 0.2, 0.2))
        backend = SequenceBackend([make_output([ITEM_A]), make_output([moved]), make_output([])])
        pipeline = make_pipeline(valid_config, backend)

        created = pipeline.step(frame(1, timestamp=0.0))
        updated = pipeline.step(frame(2, timestamp=1.0))
        removed = pipeline.step(frame(3, timestamp=5.0))

        assert [(e.kind, e.key) for e in created.events] == [(LabelEventKind.CREATED, "Housing-0")]
        assert [(e.kind, e.key) for e in updated.events] == [(LabelEventKind.UPDATED, "Housing-0")]
        assert [(e.kind, e.key) for e in removed.events] == [(LabelEventKind.REMOVED, "Housing-0")]

    def test_callbacks(self, valid_config, make_output):
        backend = SequenceBackend([make_output([ITEM_A])])
        pipeline = make_pipeline(valid_config, backend)
        callback = MagicMock()
        broken = MagicMock(side_effect=ValueError("bad callback"))
        pipeline.add_callback(broken)
        pipeline.add_callback(callback)

        result = pipeline.step(frame(1))

        callback.assert_called_once_with(result)

    def test_smoothed_fps(self, valid_config, make_output):
        pipeline = make_pipeline(valid_config, SequenceBackend([make_output([ITEM_A])]))

        pipeline.step(frame(1, timestamp=0.0))
        pipeline.step(frame(2, timestamp=0.1))

        assert pipeline.stats.smoothed_fps == pytest.approx(1.0)

    def test_process_tensor_is_stateless(self, valid_config, make_output):
        pipeline = make_pipeline(valid_config)

        result = pipeline.process_tensor(make_output([ITEM_A, ITEM_B]), frame_index=7)

        assert len(result) == 2
        assert result.frame_index == 7
        assert pipeline.stats.cycle_count == 0
        assert pipeline.process_tensor(np.zeros((1, 3, 3))) == DetectionSet.empty(frame_index=0)


class TestDetectionPipelineAsync:
    def test_async_step(self, valid_config, make_output):
        backend = GatedAsyncBackend(make_output([ITEM_A]))
        backend.gate.set()
        pipeline = make_pipeline(valid_config, backend)

        result = asyncio.run(pipeline.step_async(frame(1)))

        assert result.detections.is_fresh
        assert pipeline.is_busy is False

    def test_async_step_accepts_sync_backend(self, valid_config, make_output):
        pipeline = make_pipeline(valid_config, SequenceBackend([make_output([ITEM_A])]))

        result = asyncio.run(pipeline.step_async(frame(1)))

        assert result.detections.is_fresh

    def test_no_new_cycle_while_in_flight(self, valid_config, make_output):
        backend = GatedAsyncBackend(make_output([ITEM_A]))
        pipeline = make_pipeline(valid_config, backend)

        async def scenario():
            task = asyncio.ensure_future(pipeline.step_async(frame(1)))
            await asyncio.sleep(0)
            busy = pipeline.is_busy
            overlapping = await pipeline.step_async(frame(2))
            backend.gate.set()
            return busy, overlapping, await task

        busy, overlapping, first = asyncio.run(scenario())

        assert busy is True
        assert overlapping.ran_inference is False
        assert backend.calls == 1
        assert first.detections.is_fresh

    def test_reset_discards_in_flight_result(self, valid_config, make_output):
        backend = GatedAsyncBackend(make_output([ITEM_A]))
        pipeline = make_pipeline(valid_config, backend)

        async def scenario():
            task = asyncio.ensure_future(pipeline.step_async(frame(1)))
            await asyncio.sleep(0)
            pipeline.reset()
            backend.gate.set()
            return await task

        result = asyncio.run(scenario())

        assert result is None
        assert not pipeline.published
        assert pipeline.stats.cycle_count == 0

    def test_close_discards_in_flight_result(self, valid_config, make_output):
        backend = GatedAsyncBackend(make_output([ITEM_A]))
        pipeline = make_pipeline(valid_config, backend)

        async def scenario():
            task = asyncio.ensure_future(pipeline.step_async(frame(1)))
            await asyncio.sleep(0)
            pipeline.close()
            backend.gate.set()
            return await task

        assert asyncio.run(scenario()) is None
        assert pipeline.state == PipelineState.CLOSED


class MockFrameSource(FrameSource):
    """Finite in-memory source; None entries simulate failed reads."""

    def __init__(self, frames):
        super().__init__(SourceConfig(source_id="mock"))
        self._frames = list(frames)
        self._pos = 0
        self.closed = False

    def open(self) -> None:
        self._is_open = True
        self._pos = 0

    def read(self):
        if self._pos >= len(self._frames):
            self._exhausted = True
            return None
        item = self._frames[self._pos]
        self._pos += 1
        if item is None:
            return None
        self._frame_index += 1
        return item

    def close(self) -> None:
        self._is_open = False
        self.closed = True


class TestPipelineRunner:
    def test_runs_until_exhausted(self, valid_config, make_output):
        pipeline = make_pipeline(valid_config, SequenceBackend([make_output([ITEM_A])]))
        source = MockFrameSource([frame(i) for i in range(1, 6)])
        runner = PipelineRunner(source, pipeline, RunnerConfig(retry_delay=0))
        callback = MagicMock()
        runner.add_callback(callback)

        stats = runner.run()

        assert stats.frames_read == 5
        assert callback.call_count == 5
        frame_data, result = callback.call_args[0]
        assert frame_data.frame_index == 5
        assert result.detections.is_fresh
        assert source.closed is True
        assert runner.is_running is False

    def test_stops_on_fault(self, valid_config, make_output):
        backend = SequenceBackend([make_output([ITEM_A]), RuntimeError("boom")])
        pipeline = make_pipeline(valid_config, backend)
        source = MockFrameSource([frame(i) for i in range(1, 6)])

        stats = PipelineRunner(source, pipeline, RunnerConfig(retry_delay=0)).run()

        assert stats.frames_read == 2
        assert pipeline.state == PipelineState.FAULTED

    def test_restart_on_fault(self, valid_config, make_output):
        backend = SequenceBackend([RuntimeError("boom"), make_output([ITEM_A])])
        pipeline = make_pipeline(valid_config, backend)
        source = MockFrameSource([frame(i) for i in range(1, 4)])

        stats = PipelineRunner(source, pipeline, RunnerConfig(retry_delay=0, restart_on_fault=True)).run()

        assert stats.frames_read == 3
        assert stats.restarts == 1
        assert pipeline.state == PipelineState.RUNNING

    def test_consecutive_read_failures_stop(self, valid_config, make_output):
        pipeline = make_pipeline(valid_config, SequenceBackend([make_output([ITEM_A])]))
        source = MockFrameSource([frame(1), None, None, None, frame(2)])

        stats = PipelineRunner(
            source, pipeline, RunnerConfig(max_consecutive_failures=3, retry_delay=0)
        ).run()

        assert stats.frames_read == 1
        assert stats.consecutive_failures == 3

    def test_max_frames(self, valid_config, make_output):
        pipeline = make_pipeline(valid_config, SequenceBackend([make_output([ITEM_A])]))
        source = MockFrameSource([frame(i) for i in range(1, 10)])

        stats = PipelineRunner(source, pipeline, RunnerConfig(max_frames=4)).run()

        assert stats.frames_read == 4

    def test_stop_from_callback(self, valid_config, make_output):
        pipeline = make_pipeline(valid_config, SequenceBackend([make_output([ITEM_A])]))
        source = MockFrameSource([frame(i) for i in range(1, 10)])
        runner = PipelineRunner(source, pipeline)
        runner.add_callback(lambda frame_data, result: runner.stop())

        stats = runner.run()

        assert stats.frames_read == 1

    def test_runner_config_from_dict(self):
        config = RunnerConfig.from_dict({"max_consecutive_failures": 3, "restart_on_fault": True})

        assert config.max_consecutive_failures == 3
        assert config.restart_on_fault is True
        assert config.max_frames is None
