"""
ONNX Runtime inference backend.

Requires the optional `onnxruntime` package (`pip install .[onnx]`).
The session returns the raw output tensor; decoding happens in the pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .backend import InferenceBackend
from .preprocess import input_buffer, to_input_tensor


@dataclass(frozen=True)
class OnnxConfig:
    model: str
    input_size: int = 640
    providers: Sequence[str] = field(default_factory=lambda: ["CPUExecutionProvider"])
    output_index: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OnnxConfig":
        return cls(
            model=data.get("path", ""),
            input_size=int(data.get("input_size", 640)),
            providers=list(data.get("providers") or ["CPUExecutionProvider"]),
            output_index=int(data.get("output_index", 0)),
        )


def select_providers(requested: Sequence[str], available: Sequence[str]) -> List[str]:
    """Keep requested providers that are installed, always ending with CPU."""
    providers = [p for p in requested if p in available]
    if "CPUExecutionProvider" not in providers:
        providers.append("CPUExecutionProvider")
    return providers


class OnnxRuntimeBackend(InferenceBackend):
    def __init__(self, cfg: OnnxConfig):
        self.cfg = cfg
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is not installed. Install with `pip install onnxruntime` "
                "or `pip install .[onnx]`."
            ) from e

        providers = select_providers(cfg.providers, ort.get_available_providers())
        self._session: Optional[Any] = ort.InferenceSession(cfg.model, providers=providers)
        self._input_name = self._session.get_inputs()[0].name
        self._buffer = input_buffer(cfg.input_size)

        logging.info(
            f"ONNX model loaded: {cfg.model} (input={self._input_name}, "
            f"size={cfg.input_size}, providers={providers})"
        )

    def infer(self, image: np.ndarray) -> np.ndarray:
        if self._session is None:
            raise RuntimeError("ONNX session is closed")
        tensor = to_input_tensor(image, self.cfg.input_size, out=self._buffer)
        outputs = self._session.run(None, {self._input_name: tensor})
        return np.asarray(outputs[self.cfg.output_index], dtype=np.float32)

    def close(self) -> None:
        self._session = None
