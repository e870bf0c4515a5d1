"""
Print-setting recommendations from mesh descriptors and user requirements.

The recommendation model takes one 20-element float vector (ten mesh
descriptors followed by ten requirement flags) and returns five softmax heads:
filament, infill percentage, infill pattern, nozzle and layer height.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from printadvisor.inference.adapter import TensorAdapter
from printadvisor.inference.dispatcher import (
    InferenceDispatcher,
    InferenceHandle,
    InferenceResult,
    Priority,
)
from printadvisor.inference.errors import UnexpectedShapeError
from printadvisor.inference.tensor import ElementType, TensorContract, TensorSpec
from printadvisor.mesh import MeshFeatures
from printadvisor.utils import get_logger

logger = get_logger(__name__)

INPUT_NAME = "input"
INPUT_SIZE = 20

FILAMENT_LABELS = ("ABS", "ASA", "PC", "PETG", "PLA", "TPU")
INFILL_PERCENT_LABELS = (
    "0-15%",
    "16-30%",
    "31-45%",
    "46-60%",
    "61-75%",
    "76-90%",
    "91-100%",
)
INFILL_PATTERN_LABELS = ("concentric", "cubic", "gyroid", "lines", "triangle")
NOZZLE_LABELS = ("0.2", "0.3", "0.4", "0.6", "0.8")
LAYER_HEIGHT_LABELS = ("0.1", "0.15", "0.2", "0.25", "0.3")

# model output order
OUTPUT_HEADS = (
    ("filament", FILAMENT_LABELS),
    ("infill_percent", INFILL_PERCENT_LABELS),
    ("infill_pattern", INFILL_PATTERN_LABELS),
    ("nozzle", NOZZLE_LABELS),
    ("layer_height", LAYER_HEIGHT_LABELS),
)


def recommendation_contract() -> TensorContract:
    """Input contract of the recommendation model; outputs come from the model."""
    return TensorContract(
        inputs=(TensorSpec(INPUT_NAME, (1, INPUT_SIZE), ElementType.FLOAT32),)
    )


@dataclass(frozen=True)
class RequirementProfile:
    """Functional requirements collected from the user.

    ``force``, ``friction`` and ``weight_support`` only apply to functional
    parts and are cleared otherwise. Heat, pressure and chemical resistance
    are not collected and always read False.
    """

    functional: bool = False
    decorative: bool = False
    force: bool = False
    friction: bool = False
    weight_support: bool = False
    outdoor: bool = False
    detail: bool = False

    def __post_init__(self):
        if not self.functional:
            object.__setattr__(self, "force", False)
            object.__setattr__(self, "friction", False)
            object.__setattr__(self, "weight_support", False)

    @property
    def heat(self) -> bool:
        return False

    @property
    def pressure(self) -> bool:
        return False

    @property
    def chemical(self) -> bool:
        return False

    def flags(self) -> List[float]:
        return [
            float(flag)
            for flag in (
                self.functional,
                self.force,
                self.heat,
                self.friction,
                self.pressure,
                self.weight_support,
                self.outdoor,
                self.chemical,
                self.detail,
                self.decorative,
            )
        ]


def _round3(value: float) -> float:
    # half-up, matching how the model's training data was rounded
    return float(np.floor(value * 1000.0 + 0.5) / 1000.0)


def build_input_vector(features: MeshFeatures, profile: RequirementProfile) -> np.ndarray:
    values = features.as_list()
    values[0] = _round3(values[0])
    return np.asarray(values + profile.flags(), dtype=np.float32)


@dataclass(frozen=True)
class Recommendation:
    filament: str
    infill_percent: str
    infill_pattern: str
    nozzle: str
    layer_height: str
    confidence: float
    profile: RequirementProfile
    scores: Dict[str, np.ndarray] = field(default_factory=dict, repr=False, compare=False)

    def suggestions(self) -> List[str]:
        tips = []
        if self.profile.force or self.profile.weight_support:
            tips.append("Consider increasing the infill density.")
        if self.profile.friction:
            tips.append("Higher infill can improve friction support.")
        if self.profile.decorative:
            tips.append("A lower infill density may be more efficient.")
        if self.profile.detail:
            tips.append("A finer nozzle and layer height could improve surface detail.")
        if self.profile.functional:
            tips.append("Ensure adequate infill for functional parts.")
        return tips

    def format_summary(self) -> str:
        lines = [
            f"Filament: {self.filament}",
            f"Infill percentage: {self.infill_percent}",
            f"Infill pattern: {self.infill_pattern}",
            f"Nozzle: {self.nozzle}",
            f"Layer Height: {self.layer_height}",
            f"Confidence: {self.confidence * 100.0:.2f}%",
        ]
        tips = self.suggestions()
        if tips:
            lines.append("Recommendations:")
            lines.extend(f" - {tip}" for tip in tips)
        else:
            lines.append("Recommendations: None")
        return "\n".join(lines) + "\n"

    def format_details(self) -> str:
        lines = []
        for head, labels in OUTPUT_HEADS:
            scores = self.scores.get(head)
            if scores is None:
                continue
            ranked = ", ".join(
                f"{label}={score:.3f}" for label, score in zip(labels, scores)
            )
            lines.append(f"{head}: {ranked}")
        return "\n".join(lines)

    def to_history_payload(
        self, features: Optional[MeshFeatures] = None
    ) -> Dict[str, str]:
        """Flat string map stored in the history file.

        Holds the chosen labels, the requirement flags and, when given, the
        mesh descriptors the prediction was made from.
        """
        payload = {
            "Filament": self.filament,
            "InfillPercent": self.infill_percent,
            "InfillPattern": self.infill_pattern,
            "Nozzle": self.nozzle,
            "LayerHeight": self.layer_height,
            "Confidence": f"{self.confidence * 100:.2f}",
        }
        profile = self.profile
        for key, flag in (
            ("Functional", profile.functional),
            ("Force", profile.force),
            ("Friction", profile.friction),
            ("WeightSupport", profile.weight_support),
            ("Outdoor", profile.outdoor),
            ("Detail", profile.detail),
            ("Decorative", profile.decorative),
        ):
            payload[key] = "true" if flag else "false"

        if features is not None:
            for key, value in (
                ("Linearity", features.linearity),
                ("Planarity", features.planarity),
                ("Sphericity", features.sphericity),
                ("Anisotropy", features.anisotropy),
                ("Curvature", features.curvature),
                ("Compactness", features.compactness),
                ("AspectRatio", features.aspect_ratio),
                ("Convexity", features.convexity),
                ("LocalDensity", features.local_density),
            ):
                payload[key] = f"{value:.4f}"
            payload["EulerNumber"] = f"{features.euler_number:.2f}"
        return payload


def decode_prediction(
    outputs: Union[Mapping[str, np.ndarray], Sequence[np.ndarray]],
    profile: RequirementProfile,
) -> Recommendation:
    """Pick the arg-max label of every head.

    The confidence is the product of the winning probabilities.

    Raises:
        UnexpectedShapeError: fewer than five heads, or a head whose width
            does not match its label set.
    """
    arrays = list(outputs.values()) if isinstance(outputs, Mapping) else list(outputs)
    if len(arrays) < len(OUTPUT_HEADS):
        raise UnexpectedShapeError(
            f"Expected {len(OUTPUT_HEADS)} output heads, got {len(arrays)}"
        )

    chosen = {}
    scores = {}
    confidence = 1.0
    for (head, labels), arr in zip(OUTPUT_HEADS, arrays):
        row = np.atleast_2d(np.asarray(arr, dtype=np.float32))[0]
        if row.shape[0] != len(labels):
            raise UnexpectedShapeError(
                f"Head '{head}' has {row.shape[0]} scores for {len(labels)} labels"
            )
        idx = int(np.argmax(row))
        chosen[head] = labels[idx]
        scores[head] = row
        confidence *= float(row[idx])

    return Recommendation(confidence=confidence, profile=profile, scores=scores, **chosen)


class Recommender:
    """Runs the recommendation model through a dispatcher.

    The dispatcher's session must be loaded: the adapter is built from the
    session's resolved contract.
    """

    def __init__(
        self, dispatcher: InferenceDispatcher, adapter: Optional[TensorAdapter] = None
    ):
        self.dispatcher = dispatcher
        self.adapter = adapter or TensorAdapter(dispatcher.session.contract)

    def submit(
        self,
        features: MeshFeatures,
        profile: RequirementProfile,
        *,
        priority: Priority = Priority.NORMAL,
        timeout: Optional[float] = None,
    ) -> InferenceHandle:
        descriptor = self.adapter.encode(build_input_vector(features, profile), INPUT_NAME)
        return self.dispatcher.submit([descriptor], priority=priority, timeout=timeout)

    def decode(self, result: InferenceResult, profile: RequirementProfile) -> Recommendation:
        outputs = self.adapter.decode_all(result.unwrap())
        return decode_prediction(outputs, profile)

    def recommend(
        self,
        features: MeshFeatures,
        profile: RequirementProfile,
        timeout: Optional[float] = None,
    ) -> Recommendation:
        handle = self.submit(features, profile, timeout=timeout)
        recommendation = self.decode(handle.result(), profile)
        logger.info(
            "Recommended %s, %s infill (confidence %.2f%%)",
            recommendation.filament,
            recommendation.infill_percent,
            recommendation.confidence * 100,
        )
        return recommendation
