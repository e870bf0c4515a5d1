# inference/model/backends/torchscript_backend.py

"""
TorchScript backend implementation.
"""

from __future__ import annotations

import io
import os
from typing import Union

import numpy as np
import torch

from printadvisor.utils import get_logger

from .base import Feeds, InferenceBackend, Outputs

logger = get_logger(__name__)


class TorchScriptBackend(InferenceBackend):
    """Inference backend based on TorchScript.

    TorchScript archives carry no tensor metadata, so the session must be
    given an explicit contract; inputs are passed positionally in feed order.
    """

    def __init__(
        self,
        model_source: Union[str, os.PathLike, bytes],
        device: str = "cpu",
        *,
        num_threads: int | None = None,
    ):
        """Initialize TorchScript backend.

        Args:
            model_source: Path to a TorchScript archive or its bytes.
            device (str, optional): Target device. Falls back to CPU if CUDA
                unavailable. Defaults to "cpu".
            num_threads (int | None, optional): Number of CPU threads for inference.
                Only applied when using CPU device.
        """

        self.device = torch.device(device if torch.cuda.is_available() else "cpu")

        if num_threads and self.device.type == "cpu":
            torch.set_num_threads(num_threads)

        logger.info("Loading TorchScript model with device=%s", self.device)

        if isinstance(model_source, (bytes, bytearray)):
            model_source = io.BytesIO(model_source)
        self.model = torch.jit.load(model_source, map_location=self.device)
        self.model.eval()

    def input_specs(self):
        return None

    def output_specs(self):
        return None

    def run(self, feeds: Feeds) -> Outputs:
        """Run the scripted module on the feeds, in insertion order.

        Single-tensor, tuple and list outputs are all returned as a list of
        numpy arrays.
        """
        tensors = [
            torch.from_numpy(np.array(arr, copy=True)).to(self.device)
            for arr in feeds.values()
        ]

        with torch.no_grad():
            outputs = self.model(*tensors)

        if not isinstance(outputs, (list, tuple)):
            outputs = [outputs]

        result = [out.detach().cpu().numpy() for out in outputs]
        logger.debug("TorchScript output shapes: %s", [r.shape for r in result])
        return result

    def close(self) -> None:
        """Release TorchScript model and clear GPU cache."""

        self.model = None
        if self.device.type == "cuda":
            torch.cuda.empty_cache()

    def warmup(self, feeds: Feeds, runs: int = 1) -> None:
        """Warm up TorchScript model with initial forward passes."""

        for _ in range(max(1, runs)):
            self.run(feeds)

        logger.info("TorchScriptBackend warm-up completed (runs=%d).", runs)
