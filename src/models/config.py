"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


SCORE_MODES = ("objectness*class", "class_only")
SCORE_MODE_ALIASES = {
    "objectness*class": "objectness*class",
    "objectness_x_class": "objectness*class",
    "class_only": "class_only",
    "classonly": "class_only",
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Invalid or missing configuration; fatal at pipeline startup."""


def normalize_score_mode(value: str) -> str:
    """Map a configured score mode (or one of its aliases) to its canonical name."""
    mode = SCORE_MODE_ALIASES.get(str(value).strip().lower())
    if mode is None:
        raise ConfigError(
            f"Unknown score_mode '{value}', expected one of: {', '.join(SCORE_MODES)}"
        )
    return mode


@dataclass
class ModelConfig:
    """Model / inference collaborator configuration."""
    path: str = ""
    input_size: int = 640
    coords_normalized: bool = False
    apply_sigmoid: bool = False
    providers: List[str] = field(default_factory=lambda: ["CPUExecutionProvider"])

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModelConfig":
        return cls(
            path=d.get("path", ""),
            input_size=d.get("input_size", 640),
            coords_normalized=d.get("coords_normalized", False),
            apply_sigmoid=d.get("apply_sigmoid", False),
            providers=list(d.get("providers", ["CPUExecutionProvider"])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "input_size": self.input_size,
            "coords_normalized": self.coords_normalized,
            "apply_sigmoid": self.apply_sigmoid,
            "providers": list(self.providers),
        }


@dataclass
class DecoderConfig:
    """Candidate decoding configuration."""
    confidence_threshold: float = 0.4
    score_mode: str = "objectness*class"
    objectness_floor: float = 0.0
    candidate_guard: bool = True

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DecoderConfig":
        return cls(
            confidence_threshold=d.get("confidence_threshold", 0.4),
            score_mode=normalize_score_mode(d.get("score_mode", "objectness*class")),
            objectness_floor=d.get("objectness_floor", 0.0),
            candidate_guard=d.get("candidate_guard", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence_threshold": self.confidence_threshold,
            "score_mode": self.score_mode,
            "objectness_floor": self.objectness_floor,
            "candidate_guard": self.candidate_guard,
        }


@dataclass
class NmsConfig:
    """Non-maximum suppression configuration."""
    iou_threshold: float = 0.5
    max_detections: int = 5

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "NmsConfig":
        return cls(
            iou_threshold=d.get("iou_threshold", 0.5),
            max_detections=d.get("max_detections", 5),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iou_threshold": self.iou_threshold,
            "max_detections": self.max_detections,
        }


@dataclass
class ScheduleConfig:
    """Frame-skip and hold configuration."""
    run_every_n_frames: int = 2
    interpolate_detections: bool = True
    hold_frames: Optional[int] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ScheduleConfig":
        return cls(
            run_every_n_frames=d.get("run_every_n_frames", 2),
            interpolate_detections=d.get("interpolate_detections", True),
            hold_frames=d.get("hold_frames"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "run_every_n_frames": self.run_every_n_frames,
            "interpolate_detections": self.interpolate_detections,
        }
        if self.hold_frames is not None:
            d["hold_frames"] = self.hold_frames
        return d


@dataclass
class TrackingConfig:
    """Label identity tracking configuration."""
    enabled: bool = False
    position_tolerance: float = 0.3
    label_lifetime: float = 3.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TrackingConfig":
        return cls(
            enabled=d.get("enabled", False),
            position_tolerance=d.get("position_tolerance", 0.3),
            label_lifetime=d.get("label_lifetime", 3.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "position_tolerance": self.position_tolerance,
            "label_lifetime": self.label_lifetime,
        }


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    model: ModelConfig = field(default_factory=ModelConfig)
    classes: Union[str, List[str]] = "assembly"
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    nms: NmsConfig = field(default_factory=NmsConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    log_path: str = "logs/detection.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        return cls(
            model=ModelConfig.from_dict(d.get("model", {}) or {}),
            classes=d.get("classes", "assembly"),
            decoder=DecoderConfig.from_dict(d.get("decoder", {}) or {}),
            nms=NmsConfig.from_dict(d.get("nms", {}) or {}),
            schedule=ScheduleConfig.from_dict(d.get("schedule", {}) or {}),
            tracking=TrackingConfig.from_dict(d.get("tracking", {}) or {}),
            log_path=d.get("log_path", "logs/detection.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary (for saving or dumping as YAML)."""
        return {
            "model": self.model.to_dict(),
            "classes": self.classes if isinstance(self.classes, str) else list(self.classes),
            "decoder": self.decoder.to_dict(),
            "nms": self.nms.to_dict(),
            "schedule": self.schedule.to_dict(),
            "tracking": self.tracking.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def check_config(config: Config) -> Optional[str]:
    """
    Check the numeric ranges of a typed config.

    Returns:
        An error message, or None when the config is usable.
    """
    if not _is_int(config.model.input_size) or config.model.input_size <= 0:
        return "model.input_size must be a positive integer"

    conf = config.decoder.confidence_threshold
    if not _is_number(conf) or not (0.01 <= conf <= 0.99):
        return "decoder.confidence_threshold must be between 0.01 and 0.99"
    if config.decoder.score_mode not in SCORE_MODES:
        return f"decoder.score_mode must be one of: {', '.join(SCORE_MODES)}"
    floor = config.decoder.objectness_floor
    if not _is_number(floor) or not (0.0 <= floor < 1.0):
        return "decoder.objectness_floor must be in [0, 1)"

    iou = config.nms.iou_threshold
    if not _is_number(iou) or not (0.1 <= iou <= 0.9):
        return "nms.iou_threshold must be between 0.1 and 0.9"
    if not _is_int(config.nms.max_detections) or config.nms.max_detections < 1:
        return "nms.max_detections must be an integer >= 1"

    if not _is_int(config.schedule.run_every_n_frames) or config.schedule.run_every_n_frames < 1:
        return "schedule.run_every_n_frames must be an integer >= 1"
    hold = config.schedule.hold_frames
    if hold is not None and (not _is_int(hold) or hold < 1):
        return "schedule.hold_frames must be an integer >= 1"

    tol = config.tracking.position_tolerance
    if not _is_number(tol) or tol < 0:
        return "tracking.position_tolerance must be a non-negative number"
    lifetime = config.tracking.label_lifetime
    if not _is_number(lifetime) or lifetime < 0:
        return "tracking.label_lifetime must be a non-negative number"

    if config.log_level not in LOG_LEVELS:
        return f"log_level must be one of: {', '.join(LOG_LEVELS)}"
    return None
