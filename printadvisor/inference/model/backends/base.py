# inference/model/backends/base.py

"""
Abstract base protocol for inference backends.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol

import numpy as np

from ...tensor import TensorSpec

Feeds = Dict[str, np.ndarray]
Outputs = List[np.ndarray]


class InferenceBackend(Protocol):
    """Protocol for all inference backend classes.

    A backend owns one native model handle. It is driven by a
    ``ModelSession`` and never shared outside of it.
    """

    def input_specs(self) -> Optional[List[TensorSpec]]:
        """Inputs declared by the model, or None when the format has no metadata."""
        ...

    def output_specs(self) -> Optional[List[TensorSpec]]:
        """Outputs declared by the model, or None when the format has no metadata."""
        ...

    def run(self, feeds: Feeds) -> Outputs:
        """Run one inference call. Blocks until the native call returns."""
        ...

    def warmup(self, feeds: Feeds, runs: int = 1) -> None:
        """Force lazy native allocations before serving."""
        ...

    def close(self) -> None:
        """Release backend resources."""
        ...
