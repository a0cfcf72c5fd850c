"""
Frame preprocessing for square-input YOLO models.
"""

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np


def input_buffer(input_size: int) -> np.ndarray:
    """Allocate a (1, 3, S, S) float32 input tensor."""
    return np.zeros((1, 3, input_size, input_size), dtype=np.float32)


def to_input_tensor(
    image_bgr: np.ndarray,
    input_size: int,
    out: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Convert a BGR frame to a normalized NCHW float32 tensor.

    The frame is stretched to input_size x input_size (no letterbox), so
    decoded boxes divided by input_size map straight back onto the frame.

    Args:
        image_bgr: HxWx3 uint8 frame (grayscale HxW is also accepted).
        input_size: Square model input size in pixels.
        out: Optional preallocated (1, 3, S, S) float32 buffer, reused across frames.

    Returns:
        The filled input tensor (`out` when given).
    """
    if image_bgr is None or image_bgr.size == 0:
        raise ValueError("Empty frame")
    if input_size <= 0:
        raise ValueError("input_size must be positive")

    if image_bgr.ndim == 2:
        image_bgr = cv2.cvtColor(image_bgr, cv2.COLOR_GRAY2BGR)

    resized = cv2.resize(image_bgr, (input_size, input_size), interpolation=cv2.INTER_LINEAR)
    rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)

    if out is None:
        out = input_buffer(input_size)
    elif out.shape != (1, 3, input_size, input_size) or out.dtype != np.float32:
        raise ValueError(f"Input buffer has shape {out.shape}, expected (1, 3, {input_size}, {input_size})")

    np.divide(np.transpose(rgb, (2, 0, 1)), 255.0, out=out[0], casting="unsafe")
    return out
