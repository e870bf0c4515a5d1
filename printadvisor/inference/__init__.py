"""
Inference core: tensor adaptation, model sessions, dispatch and caching.
"""

from .adapter import TensorAdapter
from .cache import ResultCache, fingerprint
from .dispatcher import (
    InferenceDispatcher,
    InferenceHandle,
    InferenceRequest,
    InferenceResult,
    Priority,
    ResultStatus,
)
from .errors import (
    InferenceCoreError,
    InferenceError,
    ModelLoadError,
    RequestCancelledError,
    RequestTimeoutError,
    SessionClosedError,
    SessionNotReadyError,
    ShapeMismatchError,
    TypeConversionError,
    UnexpectedShapeError,
)
from .session import ModelSession, SessionState
from .tensor import ElementType, TensorContract, TensorDescriptor, TensorSpec
