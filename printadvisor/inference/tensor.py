# inference/tensor.py

"""
Tensor descriptors and shape/type contracts exchanged with the runtime.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np

Dim = Optional[int]


class ElementType(Enum):
    FLOAT16 = "float16"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    INT8 = "int8"
    INT32 = "int32"
    INT64 = "int64"
    UINT8 = "uint8"
    BOOL = "bool"

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype(self.value)

    @property
    def itemsize(self) -> int:
        return self.numpy_dtype.itemsize

    @classmethod
    def from_numpy(cls, dtype) -> "ElementType":
        dtype = np.dtype(dtype)
        for member in cls:
            if member.numpy_dtype == dtype:
                return member
        raise ValueError(f"Unsupported element type: {dtype}")

    @classmethod
    def from_onnx(cls, type_str: str) -> "ElementType":
        """Map an ONNX Runtime type string such as ``tensor(float)``."""
        onnx_map = {
            "tensor(float16)": cls.FLOAT16,
            "tensor(float)": cls.FLOAT32,
            "tensor(double)": cls.FLOAT64,
            "tensor(int8)": cls.INT8,
            "tensor(int32)": cls.INT32,
            "tensor(int64)": cls.INT64,
            "tensor(uint8)": cls.UINT8,
            "tensor(bool)": cls.BOOL,
        }
        element_type = onnx_map.get(type_str)
        if element_type is None:
            raise ValueError(
                f"Unsupported ONNX type: {type_str}. Supported: {list(onnx_map.keys())}"
            )
        return element_type


def _normalize_dim(dim: Any) -> Dim:
    # symbolic ("batch"), None and -1 all mean dynamic
    if dim is None or isinstance(dim, str):
        return None
    dim = int(dim)
    if dim == -1:
        return None
    if dim <= 0:
        raise ValueError(f"Dimensions must be positive, got {dim}")
    return dim


@dataclass(frozen=True)
class TensorSpec:
    """Declared name, shape and element type of one model input or output.

    A ``None`` dimension is dynamic and matches any positive size.
    """

    name: str
    shape: Tuple[Dim, ...]
    dtype: ElementType = ElementType.FLOAT32

    def __post_init__(self):
        object.__setattr__(self, "shape", tuple(_normalize_dim(d) for d in self.shape))
        if not isinstance(self.dtype, ElementType):
            object.__setattr__(self, "dtype", ElementType(str(self.dtype)))

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "TensorSpec":
        return cls(
            name=cfg["name"],
            shape=tuple(cfg.get("shape", ())),
            dtype=ElementType(cfg.get("dtype", "float32")),
        )

    @property
    def is_fixed(self) -> bool:
        return all(d is not None for d in self.shape)

    @property
    def element_count(self) -> Optional[int]:
        if not self.is_fixed:
            return None
        return math.prod(self.shape)

    def matches(self, shape: Sequence[int]) -> bool:
        if len(shape) != len(self.shape):
            return False
        return all(d is None or d == s for d, s in zip(self.shape, shape))

    def concrete_shape(self, fill: int = 1) -> Tuple[int, ...]:
        return tuple(fill if d is None else d for d in self.shape)

    def compatible_with(self, other: "TensorSpec") -> bool:
        if self.dtype != other.dtype or len(self.shape) != len(other.shape):
            return False
        return all(
            a is None or b is None or a == b for a, b in zip(self.shape, other.shape)
        )


@dataclass(frozen=True)
class TensorContract:
    """Input and output specs a model is expected to honour."""

    inputs: Tuple[TensorSpec, ...]
    outputs: Tuple[TensorSpec, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "outputs", tuple(self.outputs))

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "TensorContract":
        return cls(
            inputs=tuple(TensorSpec.from_config(c) for c in cfg.get("inputs", [])),
            outputs=tuple(TensorSpec.from_config(c) for c in cfg.get("outputs", [])),
        )

    @property
    def input_names(self) -> List[str]:
        return [spec.name for spec in self.inputs]

    @property
    def output_names(self) -> List[str]:
        return [spec.name for spec in self.outputs]

    def input_spec(self, name: Optional[str] = None) -> TensorSpec:
        return self._find(self.inputs, name, "input")

    def output_spec(self, name: Optional[str] = None) -> TensorSpec:
        return self._find(self.outputs, name, "output")

    @staticmethod
    def _find(specs, name, kind) -> TensorSpec:
        if not specs:
            raise KeyError(f"Contract declares no {kind}s")
        if name is None:
            return specs[0]
        for spec in specs:
            if spec.name == name:
                return spec
        raise KeyError(f"Unknown {kind} '{name}'")

    def mismatches(self, declared: "TensorContract") -> List[str]:
        """List the ways ``declared`` (read from a model) disagrees with this contract."""
        problems = []
        for kind, ours, theirs in (
            ("input", self.inputs, declared.inputs),
            ("output", self.outputs, declared.outputs),
        ):
            if not ours:
                continue
            if len(ours) != len(theirs):
                problems.append(
                    f"expected {len(ours)} {kind}s, model declares {len(theirs)}"
                )
                continue
            for spec, other in zip(ours, theirs):
                if spec.name != other.name:
                    problems.append(f"{kind} name '{spec.name}' != '{other.name}'")
                elif not spec.compatible_with(other):
                    problems.append(
                        f"{kind} '{spec.name}': {spec.shape}/{spec.dtype.value} "
                        f"incompatible with {other.shape}/{other.dtype.value}"
                    )
        return problems


@dataclass(frozen=True)
class TensorDescriptor:
    """Contiguous raw buffer plus the shape and element type describing it.

    ``len(buffer) == prod(shape) * dtype.itemsize`` always holds.
    """

    shape: Tuple[int, ...]
    dtype: ElementType
    buffer: bytes = field(repr=False)
    name: Optional[str] = None

    def __post_init__(self):
        shape = tuple(int(d) for d in self.shape)
        if any(d <= 0 for d in shape):
            raise ValueError(f"Tensor shape must be positive, got {shape}")
        object.__setattr__(self, "shape", shape)
        if not isinstance(self.buffer, bytes):
            object.__setattr__(self, "buffer", bytes(self.buffer))
        expected = math.prod(shape) * self.dtype.itemsize
        if len(self.buffer) != expected:
            raise ValueError(
                f"Buffer holds {len(self.buffer)} bytes, shape {shape} of "
                f"{self.dtype.value} needs {expected}"
            )

    @classmethod
    def from_array(cls, array: np.ndarray, name: Optional[str] = None) -> "TensorDescriptor":
        arr = np.ascontiguousarray(array)
        return cls(
            shape=arr.shape,
            dtype=ElementType.from_numpy(arr.dtype),
            buffer=arr.tobytes(),
            name=name,
        )

    def to_array(self) -> np.ndarray:
        """Read-only view of the buffer with the descriptor's shape."""
        return np.frombuffer(self.buffer, dtype=self.dtype.numpy_dtype).reshape(
            self.shape
        )

    @property
    def nbytes(self) -> int:
        return len(self.buffer)
