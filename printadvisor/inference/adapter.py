# inference/adapter.py

"""
Conversion between domain values and runtime tensor descriptors.

``TensorAdapter.encode`` turns arrays, sequences, torch tensors and PIL images
into descriptors matching a model's declared inputs; ``decode`` validates the
descriptors a model returns against its declared outputs and hands back numpy
arrays. Both directions are pure.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import torch
from PIL import Image

from printadvisor.utils import get_logger

from .errors import ShapeMismatchError, TypeConversionError, UnexpectedShapeError
from .tensor import TensorContract, TensorDescriptor, TensorSpec

logger = get_logger(__name__)

_NUMERIC_KINDS = "biuf"


class TensorAdapter:
    """Encodes domain inputs and decodes model outputs for one contract.

    Example:
        >>> adapter = TensorAdapter(contract)
        >>> descriptor = adapter.encode(np.zeros(20))      # reshaped to (1, 20)
        >>> outputs = adapter.decode_all(session.run([descriptor]))
    """

    def __init__(self, contract: TensorContract):
        self.contract = contract

    # ------------------------------------------------------------------
    # encode
    # ------------------------------------------------------------------

    def encode(self, value: Any, name: Optional[str] = None) -> TensorDescriptor:
        """Encode one domain value for the input ``name`` (first input by default).

        Raises:
            ShapeMismatchError: the value cannot be coerced to the declared shape.
            TypeConversionError: the value is not numeric, or casting it to the
                declared element type would change any value.
        """
        spec = self.contract.input_spec(name)
        arr = self._to_array(value, spec)
        arr = self._coerce_shape(arr, spec)
        arr = self._coerce_dtype(arr, spec)
        logger.debug(
            "Encoded input '%s' shape=%s dtype=%s", spec.name, arr.shape, arr.dtype
        )
        return TensorDescriptor.from_array(arr, name=spec.name)

    def encode_all(
        self, values: Union[Mapping[str, Any], Sequence[Any]]
    ) -> List[TensorDescriptor]:
        """Encode every declared input, in contract order."""
        names = self.contract.input_names
        if isinstance(values, Mapping):
            missing = [n for n in names if n not in values]
            if missing:
                raise ShapeMismatchError(f"Missing inputs: {missing}")
            return [self.encode(values[n], n) for n in names]

        values = list(values)
        if len(values) != len(names):
            raise ShapeMismatchError(
                f"Expected {len(names)} inputs, got {len(values)}"
            )
        return [self.encode(v, n) for v, n in zip(values, names)]

    def _to_array(self, value: Any, spec: TensorSpec) -> np.ndarray:
        if isinstance(value, TensorDescriptor):
            arr = value.to_array()
        elif isinstance(value, torch.Tensor):
            arr = value.detach().cpu().numpy()
        elif isinstance(value, Image.Image):
            arr = self._image_to_array(value, spec)
        else:
            try:
                arr = np.asarray(value)
            except ValueError as exc:
                # ragged nested sequences
                raise ShapeMismatchError(
                    f"Input '{spec.name}' is not a rectangular array"
                ) from exc

        if arr.dtype.kind not in _NUMERIC_KINDS:
            raise TypeConversionError(
                f"Input '{spec.name}' has non-numeric dtype {arr.dtype}"
            )
        return arr

    @staticmethod
    def _image_to_array(image: Image.Image, spec: TensorSpec) -> np.ndarray:
        if len(spec.shape) == 4:
            channels, height, width = spec.shape[1:]
        elif len(spec.shape) == 3:
            channels, height, width = spec.shape
        else:
            raise ShapeMismatchError(
                f"Image input needs a CHW or NCHW spec, '{spec.name}' is {spec.shape}"
            )
        if channels not in (1, 3) or height is None or width is None:
            raise ShapeMismatchError(
                f"Image input '{spec.name}' needs fixed 1/3 channels and H, W; got {spec.shape}"
            )

        mode = "L" if channels == 1 else "RGB"
        resized = image.convert(mode).resize((width, height), Image.BILINEAR)
        arr = np.asarray(resized)
        if arr.ndim == 2:
            arr = arr[..., np.newaxis]
        arr = arr.transpose(2, 0, 1)

        if spec.dtype.numpy_dtype.kind == "f":
            arr = arr.astype(np.float32) / 255.0
        return arr

    @staticmethod
    def _coerce_shape(arr: np.ndarray, spec: TensorSpec) -> np.ndarray:
        if spec.matches(arr.shape):
            return arr

        # value is a single sample of a batched input
        if (
            len(spec.shape) == arr.ndim + 1
            and spec.shape[0] in (None, 1)
            and all(d is None or d == s for d, s in zip(spec.shape[1:], arr.shape))
        ):
            return arr[np.newaxis, ...]

        if spec.is_fixed and arr.size == spec.element_count:
            return arr.reshape(spec.shape)

        raise ShapeMismatchError(
            f"Input '{spec.name}' of shape {arr.shape} cannot be coerced to {spec.shape}"
        )

    @staticmethod
    def _coerce_dtype(arr: np.ndarray, spec: TensorSpec) -> np.ndarray:
        target = spec.dtype.numpy_dtype
        if arr.dtype == target:
            return arr
        # numpy calls int64 -> float64 "safe" although it rounds past 2**53
        int_to_float = arr.dtype.kind in "iu" and target.kind == "f"
        if not int_to_float and np.can_cast(arr.dtype, target, casting="safe"):
            return arr.astype(target)

        with np.errstate(over="ignore", invalid="ignore"):
            converted = arr.astype(target)
            if target.kind == "f" and arr.dtype.kind == "f":
                # narrowing rounds; only overflow to inf counts as loss
                lost = np.isfinite(arr) & ~np.isfinite(converted)
            else:
                lost = converted.astype(arr.dtype) != arr

        if np.any(lost):
            raise TypeConversionError(
                f"Converting input '{spec.name}' from {arr.dtype} to {target} "
                f"would change {int(np.count_nonzero(lost))} value(s)"
            )
        return converted

    # ------------------------------------------------------------------
    # decode
    # ------------------------------------------------------------------

    def decode(
        self, descriptor: TensorDescriptor, name: Optional[str] = None
    ) -> np.ndarray:
        """Validate one output descriptor and return it as a numpy array.

        Raises:
            UnexpectedShapeError: shape or element type disagree with the
                declared output.
        """
        if not self.contract.outputs:
            return descriptor.to_array().copy()

        try:
            spec = self.contract.output_spec(
                name if name is not None else descriptor.name
            )
        except KeyError as exc:
            raise UnexpectedShapeError(str(exc)) from exc

        if descriptor.dtype != spec.dtype or not spec.matches(descriptor.shape):
            raise UnexpectedShapeError(
                f"Output '{spec.name}' is {descriptor.shape}/{descriptor.dtype.value}, "
                f"declared {spec.shape}/{spec.dtype.value}"
            )
        return descriptor.to_array().copy()

    def decode_all(self, descriptors: Sequence[TensorDescriptor]) -> Dict[str, np.ndarray]:
        """Decode all outputs into a name → array mapping.

        Outputs are matched by name when the runtime named them, by position
        otherwise.
        """
        specs = self.contract.outputs
        if not specs:
            return {
                d.name or f"output_{i}": d.to_array().copy()
                for i, d in enumerate(descriptors)
            }

        if len(descriptors) != len(specs):
            raise UnexpectedShapeError(
                f"Expected {len(specs)} outputs, runtime returned {len(descriptors)}"
            )

        names = set(self.contract.output_names)
        decoded = {}
        for spec, descriptor in zip(specs, descriptors):
            name = descriptor.name if descriptor.name in names else spec.name
            decoded[name] = self.decode(descriptor, name)
        return decoded
