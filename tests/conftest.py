# tests/conftest.py
"""
Pytest configuration and shared fixtures for printadvisor tests.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import tempfile
import threading
import time
from pathlib import Path
from typing import Iterator

import numpy as np
import onnx
import pytest
from onnx import TensorProto, helper, numpy_helper

from printadvisor.inference import (
    ElementType,
    InferenceDispatcher,
    ModelSession,
    TensorSpec,
)
from printadvisor.recommend import INPUT_NAME, INPUT_SIZE, OUTPUT_HEADS

# ---------------------------------------------------------------------------
# Model builders
# ---------------------------------------------------------------------------


def _serialize(graph) -> bytes:
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    # keep the IR version within what released onnxruntime builds accept
    model.ir_version = 8
    onnx.checker.check_model(model)
    return model.SerializeToString()


def build_recommender_model(seed: int = 0) -> bytes:
    """Five softmax heads over a linear projection of the 20-element input."""
    rng = np.random.default_rng(seed)
    nodes, initializers, outputs = [], [], []
    for head, labels in OUTPUT_HEADS:
        weight = rng.normal(size=(INPUT_SIZE, len(labels))).astype(np.float32)
        initializers.append(numpy_helper.from_array(weight, name=f"{head}_weight"))
        nodes.append(
            helper.make_node("MatMul", [INPUT_NAME, f"{head}_weight"], [f"{head}_logits"])
        )
        nodes.append(helper.make_node("Softmax", [f"{head}_logits"], [head], axis=-1))
        outputs.append(
            helper.make_tensor_value_info(head, TensorProto.FLOAT, [1, len(labels)])
        )

    graph = helper.make_graph(
        nodes,
        "recommender",
        [helper.make_tensor_value_info(INPUT_NAME, TensorProto.FLOAT, [1, INPUT_SIZE])],
        outputs,
        initializer=initializers,
    )
    return _serialize(graph)


def build_identity_model() -> bytes:
    """y = x for a dynamic batch of 4-element float rows."""
    graph = helper.make_graph(
        [helper.make_node("Identity", ["x"], ["y"])],
        "identity",
        [helper.make_tensor_value_info("x", TensorProto.FLOAT, ["batch", 4])],
        [helper.make_tensor_value_info("y", TensorProto.FLOAT, ["batch", 4])],
    )
    return _serialize(graph)


# ---------------------------------------------------------------------------
# Fake backend
# ---------------------------------------------------------------------------


class FakeBackend:
    """Scriptable stand-in for a native backend.

    Doubles its single input, counts native calls, and can be slowed down,
    held on an event, or made to fail.
    """

    def __init__(self, delay: float = 0.0, fail_with: Exception = None, gate=None):
        self.delay = delay
        self.fail_with = fail_with
        self.gate = gate
        self.calls = 0
        self.warmups = 0
        self.closed = False
        self.active = 0
        self.max_active = 0
        self.seen = []
        self._lock = threading.Lock()

    def input_specs(self):
        return [TensorSpec("x", (None, 4), ElementType.FLOAT32)]

    def output_specs(self):
        return [TensorSpec("y", (None, 4), ElementType.FLOAT32)]

    def run(self, feeds):
        assert not self.closed, "run() on a released backend"
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.seen.append(feeds["x"].copy())
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            if self.delay:
                time.sleep(self.delay)
            if self.fail_with is not None:
                raise self.fail_with
            return [feeds["x"] * 2]
        finally:
            with self._lock:
                self.active -= 1

    def warmup(self, feeds, runs=1):
        self.warmups += runs

    def close(self):
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def temp_model_dir() -> Iterator[Path]:
    """Temporary directory for model artifacts."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture(scope="session")
def recommender_model_bytes() -> bytes:
    return build_recommender_model()


@pytest.fixture(scope="session")
def recommender_model_path(temp_model_dir: Path, recommender_model_bytes: bytes) -> Path:
    path = temp_model_dir / "advisor.onnx"
    path.write_bytes(recommender_model_bytes)
    return path


@pytest.fixture(scope="session")
def identity_model_path(temp_model_dir: Path) -> Path:
    path = temp_model_dir / "identity.onnx"
    path.write_bytes(build_identity_model())
    return path


@pytest.fixture
def make_session():
    """Build a READY session around a FakeBackend; returns (session, backend)."""
    sessions = []

    def _factory(**backend_kwargs):
        backend = FakeBackend(**backend_kwargs)
        session = ModelSession(backend_factory=lambda source, device: backend)
        session.load(b"fake-model-v1")
        sessions.append(session)
        return session, backend

    yield _factory

    for session in sessions:
        if session.is_accepting:
            session.close(timeout=5)


@pytest.fixture
def make_dispatcher():
    """Build dispatchers that are shut down after the test."""
    dispatchers = []

    def _factory(session, **kwargs):
        dispatcher = InferenceDispatcher(session, **kwargs)
        dispatchers.append(dispatcher)
        return dispatcher

    yield _factory

    for dispatcher in dispatchers:
        dispatcher.shutdown(wait=True, cancel_pending=True)


@pytest.fixture
def cube_obj() -> str:
    """Unit cube with outward-facing quads."""
    return "\n".join(
        [
            "# unit cube",
            "v 0 0 0",
            "v 1 0 0",
            "v 1 1 0",
            "v 0 1 0",
            "v 0 0 1",
            "v 1 0 1",
            "v 1 1 1",
            "v 0 1 1",
            "f 1 4 3 2",
            "f 5 6 7 8",
            "f 1 2 6 5",
            "f 3 4 8 7",
            "f 1 5 8 4",
            "f 2 3 7 6",
        ]
    )


@pytest.fixture
def cube_obj_path(tmp_path: Path, cube_obj: str) -> Path:
    path = tmp_path / "cube.obj"
    path.write_text(cube_obj, encoding="utf-8")
    return path
