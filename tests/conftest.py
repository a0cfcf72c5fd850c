"""
Pytest configuration and shared fixtures.
"""

import os
import sys

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from models.catalog import ClassCatalog, ASSEMBLY_CLASSES  # noqa: E402
from models.config import Config  # noqa: E402


def build_output(
    entries,
    num_classes=8,
    objectness=True,
    num_detections=8400,
    channels_first=True,
    input_size=640,
):
    """
    Build a raw YOLO output tensor of zeros with a few filled rows.

    Each entry is a dict with pixel-space `box` (cx, cy, w, h) given as
    fractions of the input size, `cls`, `score` and optional `obj`/`index`.
    """
    channels = 4 + (1 if objectness else 0) + num_classes
    rows = np.zeros((num_detections, channels), dtype=np.float32)
    first_class = 5 if objectness else 4

    for i, entry in enumerate(entries):
        index = entry.get("index", i)
        cx, cy, w, h = entry["box"]
        rows[index, 0:4] = [cx * input_size, cy * input_size, w * input_size, h * input_size]
        if objectness:
            rows[index, 4] = entry.get("obj", 1.0)
        rows[index, first_class + entry["cls"]] = entry["score"]

    data = rows.T if channels_first else rows
    return data[np.newaxis, ...].copy()


@pytest.fixture
def make_output():
    """Factory for synthetic YOLO output tensors."""
    return build_output


@pytest.fixture
def catalog():
    """The 8-class assembly catalog."""
    return ClassCatalog(names=ASSEMBLY_CLASSES)


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "model": {
            "path": "",
            "input_size": 640,
            "coords_normalized": False,
            "apply_sigmoid": False,
            "providers": ["CPUExecutionProvider"],
        },
        "classes": "assembly",
        "decoder": {
            "confidence_threshold": 0.4,
            "score_mode": "objectness*class",
            "objectness_floor": 0.0,
            "candidate_guard": True,
        },
        "nms": {
            "iou_threshold": 0.5,
            "max_detections": 5,
        },
        "schedule": {
            "run_every_n_frames": 1,
            "interpolate_detections": True,
        },
        "tracking": {
            "enabled": False,
            "position_tolerance": 0.3,
            "label_lifetime": 3.0,
        },
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }


@pytest.fixture
def typed_config(valid_config):
    """Typed Config built from valid_config."""
    return Config.from_dict(valid_config)


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
model:
  input_size: 640
classes: assembly
decoder:
  confidence_threshold: 0.4
  score_mode: "objectness*class"
nms:
  iou_threshold: 0.5
  max_detections: 5
schedule:
  run_every_n_frames: 2
  interpolate_detections: true
log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir
