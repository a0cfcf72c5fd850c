"""
YOLO output decoder.

Turns one raw inference output into candidate detections: reads the box,
scores every class, composes the final score and applies the confidence
gate. Overlap removal is left to the NMS stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

import numpy as np

from models.catalog import ClassCatalog
from models.config import Config, ConfigError, normalize_score_mode
from models.detection import Detection, NormalizedBox
from .tensor_view import DecodeError, TensorView

# Accepted candidates are capped at this multiple of max_detections
CANDIDATE_GUARD_FACTOR = 3


class ScoreMode(str, Enum):
    """How the final score is composed from objectness and class score."""
    OBJECTNESS_X_CLASS = "objectness*class"
    CLASS_ONLY = "class_only"

    @classmethod
    def parse(cls, value: Any) -> "ScoreMode":
        if isinstance(value, cls):
            return value
        return cls(normalize_score_mode(value))


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


@dataclass(frozen=True)
class DecoderSettings:
    """
    Decoder configuration.

    Attributes:
        input_size: Pixel size the box coordinates are relative to.
        confidence_threshold: Candidates must score strictly above this.
        score_mode: Score composition policy.
        coords_normalized: True when the model already emits [0, 1] boxes.
        apply_sigmoid: Apply a logistic activation to objectness/class channels.
        objectness_floor: Discard candidates whose objectness is below this (0 = off).
        max_detections: Used to size the candidate guard.
        candidate_guard: Stop scanning after CANDIDATE_GUARD_FACTOR * max_detections accepts.
    """
    input_size: int = 640
    confidence_threshold: float = 0.4
    score_mode: ScoreMode = ScoreMode.OBJECTNESS_X_CLASS
    coords_normalized: bool = False
    apply_sigmoid: bool = False
    objectness_floor: float = 0.0
    max_detections: int = 5
    candidate_guard: bool = True

    @classmethod
    def from_config(cls, config: Config) -> "DecoderSettings":
        return cls(
            input_size=config.model.input_size,
            confidence_threshold=config.decoder.confidence_threshold,
            score_mode=ScoreMode.parse(config.decoder.score_mode),
            coords_normalized=config.model.coords_normalized,
            apply_sigmoid=config.model.apply_sigmoid,
            objectness_floor=config.decoder.objectness_floor,
            max_detections=config.nms.max_detections,
            candidate_guard=config.decoder.candidate_guard,
        )

    @property
    def candidate_limit(self) -> Optional[int]:
        if not self.candidate_guard:
            return None
        return CANDIDATE_GUARD_FACTOR * self.max_detections


class DetectionDecoder:
    """
    Decode raw YOLO output tensors into candidate Detections.

    Example:
        decoder = DetectionDecoder(DecoderSettings(input_size=640), catalog)
        candidates = decoder.decode(output)  # [] on malformed tensors
    """

    def __init__(self, settings: DecoderSettings, catalog: ClassCatalog):
        if not (0.0 < settings.confidence_threshold < 1.0):
            raise ConfigError("confidence_threshold must be in (0, 1)")
        if settings.input_size <= 0:
            raise ConfigError("input_size must be positive")
        self.settings = settings
        self.catalog = catalog

    def decode(self, tensor: Any) -> List[Detection]:
        """
        Decode a tensor, reporting malformed input instead of raising.

        Args:
            tensor: Raw model output ([1, C, N] or [1, N, C]) or a TensorView.

        Returns:
            Unordered candidate detections; empty on a malformed tensor.
        """
        try:
            return self.decode_view(self.wrap(tensor))
        except DecodeError as e:
            logging.warning(f"Decode failed: {e}")
            return []

    def wrap(self, tensor: Any) -> TensorView:
        if isinstance(tensor, TensorView):
            return tensor
        return TensorView.from_array(tensor, num_classes=len(self.catalog))

    def decode_view(self, view: TensorView) -> List[Detection]:
        """
        Decode an already wrapped tensor.

        Raises:
            DecodeError: If the view's class count does not match the catalog.
        """
        schema = view.schema
        if schema.num_classes != len(self.catalog):
            raise DecodeError(
                f"Tensor has {schema.num_classes} class channels, catalog has {len(self.catalog)}"
            )

        s = self.settings
        rows = np.asarray(view.rows(), dtype=np.float64)
        if rows.shape[0] == 0:
            return []

        boxes = rows[:, :4]
        if not s.coords_normalized:
            boxes = boxes / float(s.input_size)
        cx, cy, w, h = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]

        # NaN compares false, so non-finite boxes drop out here too
        keep = (w > 0) & (h > 0)

        if schema.has_objectness:
            objectness = rows[:, schema.objectness_channel]
            if s.apply_sigmoid:
                objectness = _sigmoid(objectness)
            if s.objectness_floor > 0:
                keep &= objectness >= s.objectness_floor
        else:
            objectness = np.ones(rows.shape[0], dtype=np.float64)

        first = schema.first_class_channel
        class_scores = rows[:, first:first + schema.num_classes]
        if s.apply_sigmoid:
            class_scores = _sigmoid(class_scores)

        # argmax returns the lowest index on ties
        best_class = np.argmax(class_scores, axis=1)
        best_score = class_scores[np.arange(rows.shape[0]), best_class]
        keep &= best_score > 0

        if s.score_mode == ScoreMode.OBJECTNESS_X_CLASS:
            final_score = objectness * best_score
        else:
            final_score = best_score
        keep &= final_score > s.confidence_threshold

        indices = np.flatnonzero(keep)
        limit = s.candidate_limit
        if limit is not None and len(indices) > limit:
            indices = indices[:limit]

        detections: List[Detection] = []
        for i in indices:
            class_id = int(best_class[i])
            detections.append(
                Detection(
                    class_id=class_id,
                    score=float(final_score[i]),
                    box=NormalizedBox.from_center(float(cx[i]), float(cy[i]), float(w[i]), float(h[i])),
                    class_name=self.catalog.name_for(class_id),
                )
            )

        logging.debug(
            f"Decoded {len(detections)} candidates from {view!r} (mode={s.score_mode.value})"
        )
        return detections
