"""
OBJ mesh loading and the geometric descriptors used as model features.
"""

import math
from dataclasses import astuple, dataclass
from pathlib import Path
from typing import List, Sequence, Tuple, Union

import numpy as np

from printadvisor.utils import get_logger

logger = get_logger(__name__)

_EPS = 1e-6
_DENSITY_DIVISIONS = 10


@dataclass(frozen=True)
class ObjMesh:
    """Vertices as an (N, 3) array and faces as tuples of zero-based indices."""

    vertices: np.ndarray
    faces: Tuple[Tuple[int, ...], ...]

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def face_count(self) -> int:
        return len(self.faces)


@dataclass(frozen=True)
class MeshFeatures:
    linearity: float
    planarity: float
    sphericity: float
    anisotropy: float
    curvature: float
    euler_number: float
    compactness: float
    aspect_ratio: float
    convexity: float
    local_density: float

    def as_list(self) -> List[float]:
        return list(astuple(self))

    def __str__(self):
        return (
            f"Linearity: {self.linearity:.4f}\n"
            f"Planarity: {self.planarity:.4f}\n"
            f"Sphericity: {self.sphericity:.4f}\n"
            f"Anisotropy: {self.anisotropy:.4f}\n"
            f"Curvature: {self.curvature:.4f}\n"
            f"Euler: {self.euler_number:.2f}\n"
            f"Compactness: {self.compactness:.4f}\n"
            f"Aspect Ratio: {self.aspect_ratio:.4f}\n"
            f"Convexity: {self.convexity:.4f}\n"
            f"Local Density: {self.local_density:.4f}"
        )


@dataclass(frozen=True)
class MeshAnalysis:
    features: MeshFeatures
    vertex_count: int
    face_count: int
    surface_area: float
    volume: float

    def describe(self) -> str:
        return (
            f"Vertices: {self.vertex_count}\n"
            f"Faces: {self.face_count}\n"
            f"Surface area: {self.surface_area:.4f}\n"
            f"Volume: {self.volume:.4f}\n\n"
            f"{self.features}"
        )


def parse_obj(content: str) -> ObjMesh:
    """Parse the ``v`` and ``f`` statements of an OBJ document.

    Malformed coordinates and out-of-range indices are skipped, negative
    indices count back from the vertices read so far, and faces left with
    fewer than three indices are dropped.
    """
    vertices = []
    faces = []
    skipped = 0

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        if line.startswith("v "):
            parts = line.split()
            if len(parts) < 4:
                skipped += 1
                continue
            try:
                vertices.append((float(parts[1]), float(parts[2]), float(parts[3])))
            except ValueError:
                skipped += 1

        elif line.startswith("f "):
            face = []
            for token in line.split()[1:]:
                head = token.split("/")[0]
                try:
                    index = int(head)
                except ValueError:
                    skipped += 1
                    continue
                index = len(vertices) + index if index < 0 else index - 1
                if 0 <= index < len(vertices):
                    face.append(index)
            if len(face) >= 3:
                faces.append(tuple(face))

    if skipped:
        logger.debug("Skipped %d malformed OBJ token(s)", skipped)

    return ObjMesh(
        vertices=np.asarray(vertices, dtype=np.float64).reshape(-1, 3),
        faces=tuple(faces),
    )


def load_obj(path: Union[str, Path]) -> ObjMesh:
    content = Path(path).read_text(encoding="utf-8")
    if not content.strip():
        raise ValueError(f"OBJ file is empty: {path}")
    mesh = parse_obj(content)
    logger.info(
        "Loaded %s: %d vertices, %d faces", path, mesh.vertex_count, mesh.face_count
    )
    return mesh


def _fan_triangles(faces: Sequence[Tuple[int, ...]]) -> np.ndarray:
    tris = [
        (face[0], face[i], face[i + 1])
        for face in faces
        for i in range(1, len(face) - 1)
    ]
    return np.asarray(tris, dtype=np.int64).reshape(-1, 3)


def _edge_count(faces: Sequence[Tuple[int, ...]]) -> int:
    edges = set()
    for face in faces:
        for a, b in zip(face, face[1:] + face[:1]):
            edges.add((min(a, b), max(a, b)))
    return len(edges)


def _face_normals(vertices: np.ndarray, faces: Sequence[Tuple[int, ...]]) -> np.ndarray:
    first = np.asarray([face[:3] for face in faces], dtype=np.int64)
    v0, v1, v2 = (vertices[first[:, i]] for i in range(3))
    normals = np.cross(v1 - v0, v2 - v0)
    lengths = np.linalg.norm(normals, axis=1)
    normals[lengths < _EPS] = 0.0
    valid = lengths >= _EPS
    normals[valid] /= lengths[valid, np.newaxis]
    return normals


def _anisotropy(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> float:
    e1, e2 = b - a, c - a
    len1 = np.linalg.norm(e1, axis=1)
    len2 = np.linalg.norm(e2, axis=1)
    valid = (len1 >= _EPS) & (len2 >= _EPS)
    if not np.any(valid):
        return 0.0
    cos = np.einsum("ij,ij->i", e1[valid], e2[valid]) / (len1[valid] * len2[valid])
    angles = np.arccos(np.clip(cos, -1.0, 1.0))
    return float(np.sqrt(np.mean((angles - math.pi / 2) ** 2)))


def _local_density(vertices: np.ndarray, mins: np.ndarray, spans: np.ndarray) -> int:
    cell = np.maximum(spans / _DENSITY_DIVISIONS, _EPS)
    idx = np.floor((vertices - mins) / cell).astype(np.int64)
    idx = np.clip(idx, 0, _DENSITY_DIVISIONS - 1)
    _, counts = np.unique(idx, axis=0, return_counts=True)
    return int(counts.max())


def compute_features(mesh: ObjMesh) -> MeshAnalysis:
    """Compute the ten shape descriptors plus area and volume of a mesh.

    Args:
        mesh: Parsed mesh with at least one vertex and one face.

    Returns:
        MeshAnalysis with the descriptors and summary counts.

    Raises:
        ValueError: If the mesh has no vertices or no faces.
    """
    vertices, faces = mesh.vertices, mesh.faces
    if len(vertices) == 0 or len(faces) == 0:
        raise ValueError("Mesh must contain vertices and faces")

    mins, maxs = vertices.min(axis=0), vertices.max(axis=0)
    spans = maxs - mins
    max_span, min_span = float(spans.max()), float(spans.min())

    tris = _fan_triangles(faces)
    a, b, c = vertices[tris[:, 0]], vertices[tris[:, 1]], vertices[tris[:, 2]]
    surface_area = float(0.5 * np.linalg.norm(np.cross(b - a, c - a), axis=1).sum())
    # divergence theorem over the fan triangles
    volume = abs(float(np.einsum("ij,ij->i", a, np.cross(b, c)).sum()) / 6.0)

    centroid = vertices.mean(axis=0)
    planarity = float(np.linalg.norm(vertices - centroid, axis=1).mean())

    if surface_area > 0 and volume > 0:
        sphericity = math.pi ** (1 / 3) * (6 * volume) ** (2 / 3) / surface_area
    else:
        sphericity = 0.0

    if len(faces) >= 2:
        normals = _face_normals(vertices, faces)
        dots = np.clip(np.einsum("ij,ij->i", normals[:-1], normals[1:]), -1.0, 1.0)
        curvature = float(np.arccos(dots).mean())
    else:
        curvature = 0.0

    bbox_volume = max(float(np.prod(spans)), _EPS)

    features = MeshFeatures(
        linearity=max_span / min_span if min_span > _EPS else 0.0,
        planarity=planarity,
        sphericity=sphericity,
        anisotropy=_anisotropy(a, b, c),
        curvature=curvature,
        euler_number=float(len(vertices) - _edge_count(faces) + len(faces)),
        compactness=surface_area / len(faces),
        aspect_ratio=max_span / max(min_span, _EPS),
        convexity=volume / bbox_volume if volume > 0 else 0.0,
        local_density=float(_local_density(vertices, mins, spans)),
    )
    return MeshAnalysis(
        features=features,
        vertex_count=len(vertices),
        face_count=len(faces),
        surface_area=surface_area,
        volume=volume,
    )
