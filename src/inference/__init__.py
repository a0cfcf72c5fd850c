from .backend import InferenceBackend
from .preprocess import input_buffer, to_input_tensor
from .onnx_backend import OnnxConfig, OnnxRuntimeBackend, select_providers

__all__ = [
    "InferenceBackend",
    "input_buffer",
    "to_input_tensor",
    "OnnxConfig",
    "OnnxRuntimeBackend",
    "select_providers",
]
