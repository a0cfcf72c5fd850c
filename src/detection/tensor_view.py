"""
Layout-independent access to a raw YOLO output tensor.

Export tools disagree on axis order: some emit [1, channels, detections]
(e.g. [1, 12, 8400]), others [1, detections, channels]. The view resolves
the order once per tensor and then addresses values by
(detection, channel) regardless of the physical layout.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

BOX_CHANNELS = 4


class DecodeError(ValueError):
    """Raw output tensor does not match any expected schema."""


class TensorLayout(str, Enum):
    CHANNELS_FIRST = "channels_first"
    DETECTIONS_FIRST = "detections_first"


@dataclass(frozen=True)
class TensorSchema:
    """
    Channel schema of a detection head.

    Attributes:
        num_classes: Number of class score channels.
        has_objectness: Whether channel 4 is an objectness score.
    """
    num_classes: int
    has_objectness: bool

    @property
    def num_channels(self) -> int:
        return BOX_CHANNELS + (1 if self.has_objectness else 0) + self.num_classes

    @property
    def objectness_channel(self) -> int:
        return BOX_CHANNELS

    @property
    def first_class_channel(self) -> int:
        return BOX_CHANNELS + (1 if self.has_objectness else 0)

    @classmethod
    def for_channels(cls, channels: int, num_classes: int) -> "TensorSchema":
        """Resolve the schema from the channel count, or raise DecodeError."""
        if channels == BOX_CHANNELS + num_classes:
            return cls(num_classes=num_classes, has_objectness=False)
        if channels == BOX_CHANNELS + 1 + num_classes:
            return cls(num_classes=num_classes, has_objectness=True)
        raise DecodeError(
            f"Channel count {channels} does not match {num_classes} classes "
            f"(expected {BOX_CHANNELS + num_classes} or {BOX_CHANNELS + 1 + num_classes})"
        )


class TensorView:
    """
    Uniform (detection, channel) accessor over a raw output tensor.

    Example:
        view = TensorView.from_array(output, num_classes=8)
        cx = view.value(i, 0)
        rows = view.rows()  # (N, C) view, no copy
    """

    def __init__(self, data: np.ndarray, layout: TensorLayout, schema: TensorSchema):
        self._data = data
        self.layout = layout
        self.schema = schema

    @classmethod
    def from_array(cls, tensor: Any, num_classes: int) -> "TensorView":
        """
        Wrap a raw tensor.

        Args:
            tensor: Array-like of shape [1, A, B] (or [A, B]).
            num_classes: Size of the class catalog.

        Raises:
            DecodeError: If the shape or channel count is not recognised.
        """
        if tensor is None:
            raise DecodeError("No output tensor")
        arr = np.asarray(tensor)
        if not np.issubdtype(arr.dtype, np.number):
            raise DecodeError(f"Expected a numeric tensor, got dtype {arr.dtype}")

        if arr.ndim == 3:
            if arr.shape[0] != 1:
                raise DecodeError(f"Expected batch size 1, got shape {arr.shape}")
            arr = arr[0]
        elif arr.ndim != 2:
            raise DecodeError(f"Expected a 3-dimensional tensor [1, A, B], got shape {arr.shape}")

        a, b = arr.shape
        if a == 0 or b == 0:
            raise DecodeError(f"Empty output tensor, shape {arr.shape}")

        # The larger axis is the detection count
        if a > b:
            layout = TensorLayout.DETECTIONS_FIRST
            channels = b
        else:
            layout = TensorLayout.CHANNELS_FIRST
            channels = a

        schema = TensorSchema.for_channels(channels, num_classes)
        return cls(arr, layout, schema)

    @property
    def num_detections(self) -> int:
        if self.layout == TensorLayout.DETECTIONS_FIRST:
            return self._data.shape[0]
        return self._data.shape[1]

    @property
    def num_channels(self) -> int:
        return self.schema.num_channels

    def value(self, detection_index: int, channel_index: int) -> float:
        if self.layout == TensorLayout.DETECTIONS_FIRST:
            return float(self._data[detection_index, channel_index])
        return float(self._data[channel_index, detection_index])

    def rows(self) -> np.ndarray:
        """Return the tensor as an (N, C) array; a transposed view when channels-first."""
        if self.layout == TensorLayout.DETECTIONS_FIRST:
            return self._data
        return self._data.T

    def __repr__(self) -> str:
        return (
            f"TensorView(layout={self.layout.value}, detections={self.num_detections}, "
            f"channels={self.num_channels}, objectness={self.schema.has_objectness})"
        )
