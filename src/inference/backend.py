"""
Inference backend interface.

Backends turn a camera frame into the raw YOLO output tensor that the
detection decoder consumes. Decoding and NMS are never done here.
"""

from __future__ import annotations

from typing import Any, Awaitable, Protocol, Union

import numpy as np

TensorLike = Union[np.ndarray, Any]


class InferenceBackend(Protocol):
    def infer(self, image: np.ndarray) -> Union[TensorLike, Awaitable[TensorLike]]:
        """Run the model on one BGR frame and return its output tensor."""
        ...

    def close(self) -> None:
        ...
