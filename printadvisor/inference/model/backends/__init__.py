# inference/model/backends/__init__.py

"""
Inference backend implementations.
"""

from .base import Feeds, InferenceBackend, Outputs
from .onnx_backend import OnnxBackend
from .torchscript_backend import TorchScriptBackend

__all__ = [
    "Feeds",
    "InferenceBackend",
    "Outputs",
    "OnnxBackend",
    "TorchScriptBackend",
]
