# inference/model/factory.py

"""
Selects an inference backend for a model artifact.
"""

from __future__ import annotations

import os
from typing import Union

from printadvisor.utils import get_logger

from ..modelType import ModelType
from .backends.base import InferenceBackend

logger = get_logger(__name__)

ModelSource = Union[str, os.PathLike, bytes]


def make_backend(model_source: ModelSource, device: str = "cpu") -> InferenceBackend:
    """Factory function to create the backend matching a model artifact.

    Args:
        model_source: Path to the model file, or its serialized bytes. For a
            path the extension selects the runtime:
            - .onnx / .ort → ONNX Runtime backend
            - .torchscript / .pts / .ptl / .pt → TorchScript backend
            For bytes, zip archives go to TorchScript and anything else to
            ONNX Runtime.
        device: Target device ("cpu" or "cuda").

    Returns:
        InferenceBackend: Initialized backend owning the native handle.

    Raises:
        FileNotFoundError: If ``model_source`` is a path that does not exist.
        ValueError: If the file extension is not recognised.

    Example:
        >>> backend = make_backend("advisor.onnx", "cpu")
        >>> backend = make_backend(open("advisor.onnx", "rb").read(), "cpu")
    """
    if not isinstance(model_source, (bytes, bytearray)):
        model_source = os.fspath(model_source)
        if not os.path.exists(model_source):
            raise FileNotFoundError(f"Model file not found: {model_source}")
        logger.info(f"Creating backend for model: {model_source}")
    else:
        model_source = bytes(model_source)
        logger.info(f"Creating backend for in-memory model ({len(model_source)} bytes)")

    model_type = ModelType.from_source(model_source)
    logger.info(f"Detected model type: {model_type}")

    if model_type == ModelType.ONNX:
        from .backends.onnx_backend import OnnxBackend

        backend = OnnxBackend(model_source, device)
        logger.info("ONNX backend created successfully")
        return backend

    if model_type == ModelType.TORCHSCRIPT:
        from .backends.torchscript_backend import TorchScriptBackend

        backend = TorchScriptBackend(model_source, device)
        logger.info("TorchScript backend created successfully")
        return backend

    raise NotImplementedError(f"ModelType {model_type} is not supported.")
