"""
Detection post-processing.

Decodes raw YOLO output tensors and reduces the candidates with NMS:
- tensor_view: layout-independent access to the raw tensor
- decoder: box/score decoding and the confidence gate
- nms: greedy per-class suppression
"""

from .geometry import iou
from .tensor_view import DecodeError, TensorLayout, TensorSchema, TensorView
from .decoder import DecoderSettings, DetectionDecoder, ScoreMode
from .nms import non_max_suppression

__all__ = [
    "iou",
    "DecodeError",
    "TensorLayout",
    "TensorSchema",
    "TensorView",
    "DecoderSettings",
    "DetectionDecoder",
    "ScoreMode",
    "non_max_suppression",
]
