"""
Command-line entry point for the YOLO detection post-processing pipeline.

Runs the decode -> NMS pipeline over saved output tensors, a folder of
images, or a video file, and emits the published detection sets as JSON.

Usage:
    python src/main.py --config config/config.yaml --tensor out.npy
    python src/main.py --config config/config.yaml --images frames/ --output detections.json
    python src/main.py --config config/config.yaml --video clip.mp4 --model yolo.onnx

Arguments:
    --config: Path to configuration file
    --tensor: One or more .npy or .npz files holding raw model output (no model needed)
    --images: Image directory or image files
    --video: Video file
    --model: ONNX model path (overrides model.path)
    --output: Write JSON here instead of stdout
"""

import os
import sys
import argparse
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import yaml

from models.catalog import ClassCatalog
from models.config import Config, ConfigError, check_config
from models.frame import FrameData
from ops.logging import setup_logging
from observation import OpenCVFileSource, SourceConfig
from pipeline import DetectionPipeline, PipelineRunner, RunnerConfig, StepResult


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        base_path = os.path.join(os.path.dirname(config_path), "default.yaml")
        base_cfg: Dict[str, Any] = {}
        if os.path.exists(base_path):
            with open(base_path, "r") as f:
                base_cfg = yaml.safe_load(f) or {}

        local_overrides_path = os.path.join(os.path.dirname(config_path), "config.yaml")
        local_cfg: Dict[str, Any] = {}
        if os.path.exists(local_overrides_path):
            with open(local_overrides_path, "r") as f:
                local_cfg = yaml.safe_load(f) or {}

        merged = _deep_merge(base_cfg, local_cfg)

        # Explicit config last, unless it is the local override file itself
        if os.path.exists(config_path) and os.path.abspath(config_path) != os.path.abspath(local_overrides_path):
            with open(config_path, "r") as f:
                explicit_cfg = yaml.safe_load(f) or {}
            merged = _deep_merge(merged, explicit_cfg)

        return merged
    except Exception as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    for section in ("model", "decoder", "nms", "schedule"):
        value = config.get(section, {})
        if value is not None and not isinstance(value, dict):
            return False, f"{section} must be a mapping"

    tracking = config.get("tracking", {})
    if tracking is not None and not isinstance(tracking, dict):
        return False, "tracking must be a mapping"

    classes = config.get("classes", "assembly")
    if not isinstance(classes, (str, list)):
        return False, "classes must be a preset name or a list of class names"
    if isinstance(classes, list) and not all(isinstance(c, str) and c for c in classes):
        return False, "classes entries must be non-empty strings"

    providers = (config.get("model") or {}).get("providers", ["CPUExecutionProvider"])
    if not isinstance(providers, list) or not providers:
        return False, "model.providers must be a non-empty list"

    try:
        typed = Config.from_dict(config)
        ClassCatalog.from_config(typed.classes)
    except ConfigError as e:
        return False, str(e)

    error = check_config(typed)
    if error:
        return False, error
    return True, None


def _load_tensor(path: str) -> np.ndarray:
    if path.endswith(".npz"):
        with np.load(path, allow_pickle=False) as npz:
            return npz[npz.files[0]]
    return np.load(path, allow_pickle=False)


def run_tensors(pipeline: DetectionPipeline, paths: List[str]) -> List[Dict[str, Any]]:
    """Decode saved output tensors; one entry per file."""
    results = []
    for index, path in enumerate(paths, start=1):
        tensor = _load_tensor(path)
        detections = pipeline.process_tensor(tensor, frame_index=index)
        logging.info(f"{path}: {len(detections)} detection(s)")
        entry = detections.to_dict()
        entry["file"] = path
        results.append(entry)
    return results


def run_frames(
    pipeline: DetectionPipeline,
    source_config: SourceConfig,
    runner_config: RunnerConfig,
) -> List[Dict[str, Any]]:
    """Step the pipeline over a file source; one entry per frame."""
    results: List[Dict[str, Any]] = []

    def collect(frame_data: FrameData, result: StepResult) -> None:
        entry = result.detections.to_dict()
        entry["frame_index"] = frame_data.frame_index
        entry["ran_inference"] = result.ran_inference
        if result.error:
            entry["error"] = result.error
        if result.events:
            entry["labels"] = [
                {"event": event.kind.value, "key": event.key, "class_name": event.label.class_name}
                for event in result.events
            ]
        results.append(entry)

    source = OpenCVFileSource(source_config)
    runner = PipelineRunner(source, pipeline, runner_config)
    runner.add_callback(collect)
    runner.run()
    return results


def _create_backend(config: Dict[str, Any]):
    from inference.onnx_backend import OnnxConfig, OnnxRuntimeBackend

    onnx_cfg = OnnxConfig.from_dict(config.get("model", {}) or {})
    if not onnx_cfg.model:
        raise ConfigError("model.path (or --model) is required for --images / --video")
    return OnnxRuntimeBackend(onnx_cfg)


def main(argv: Optional[List[str]] = None) -> int:
    """Main application function."""
    parser = argparse.ArgumentParser(description="YOLO detection post-processing pipeline")
    parser.add_argument("--config", type=str, default="config/config.yaml",
                        help="Path to configuration file")
    inputs = parser.add_mutually_exclusive_group(required=True)
    inputs.add_argument("--tensor", nargs="+", metavar="NPY",
                        help="Raw model output tensors saved with numpy")
    inputs.add_argument("--images", nargs="+", metavar="PATH",
                        help="Image directory or image files")
    inputs.add_argument("--video", type=str, help="Video file")
    parser.add_argument("--model", type=str, help="ONNX model path (overrides model.path)")
    parser.add_argument("--fps", type=float, help="Frame rate used for file timestamps")
    parser.add_argument("--max-frames", type=int, help="Stop after this many frames")
    parser.add_argument("--restart-on-fault", action="store_true",
                        help="Reset the pipeline after an inference failure instead of stopping")
    parser.add_argument("--output", type=str, help="Write JSON results to this file")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    if args.model:
        config.setdefault("model", {})["path"] = args.model

    is_valid, error_msg = validate_config(config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        return 1

    setup_logging(config.get("log_path", "logs/detection.log"), config.get("log_level", "INFO"))
    logging.info("Starting detection pipeline")

    typed = Config.from_dict(config)
    catalog = ClassCatalog.from_config(typed.classes)

    if args.tensor:
        pipeline = DetectionPipeline(typed, catalog)
        results = run_tensors(pipeline, args.tensor)
    else:
        try:
            backend = _create_backend(config)
        except (ConfigError, ImportError) as e:
            logging.error(str(e))
            return 1

        pipeline = DetectionPipeline(typed, catalog, backend=backend)
        if args.video:
            source_config = SourceConfig(source_id="video", path=args.video, fps=args.fps)
        elif len(args.images) == 1 and os.path.isdir(args.images[0]):
            source_config = SourceConfig(source_id="images", path=args.images[0], fps=args.fps)
        else:
            source_config = SourceConfig(source_id="images", images=list(args.images), fps=args.fps)

        runner_config = RunnerConfig.from_dict(config.get("runner", {}) or {})
        if args.max_frames is not None:
            runner_config.max_frames = args.max_frames
        if args.restart_on_fault:
            runner_config.restart_on_fault = True

        try:
            results = run_frames(pipeline, source_config, runner_config)
        except RuntimeError as e:
            logging.error(f"Failed to read input: {e}")
            return 1
        finally:
            pipeline.close()

    payload = json.dumps(results, indent=2)
    if args.output:
        out_dir = os.path.dirname(args.output)
        if out_dir and not os.path.exists(out_dir):
            os.makedirs(out_dir)
        with open(args.output, "w") as f:
            f.write(payload)
        logging.info(f"Wrote {len(results)} result(s) to {args.output}")
    else:
        print(payload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
