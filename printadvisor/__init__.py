import logging

# Add NullHandler to prevent logs when used as library
logging.getLogger(__name__).addHandler(logging.NullHandler())

"""
Recommends 3D-print settings for OBJ meshes with an ONNX model served by a
managed inference session.
"""

from .history import HistoryEntry, HistoryStore
from .inference import (
    ElementType,
    InferenceDispatcher,
    InferenceHandle,
    InferenceRequest,
    InferenceResult,
    ModelSession,
    Priority,
    ResultCache,
    SessionState,
    TensorAdapter,
    TensorContract,
    TensorDescriptor,
    TensorSpec,
)
from .mesh import MeshAnalysis, MeshFeatures, ObjMesh, compute_features, load_obj, parse_obj
from .recommend import (
    Recommendation,
    Recommender,
    RequirementProfile,
    build_input_vector,
    decode_prediction,
    recommendation_contract,
)
from .utils import get_logger  # Export for users
from .utils import setup_logging  # Export for users who want to enable logging
from .utils import disable_logging, enable_logging
