# inference/session.py

"""
Lifecycle owner for one loaded model.

A ``ModelSession`` moves through ``UNLOADED → LOADING → READY → CLOSING →
CLOSED``. It holds the only reference to the backend (the native model
handle), counts the calls running on it, and releases it only once every
admitted call has returned.
"""

from __future__ import annotations

import os
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from printadvisor.general import Profiler
from printadvisor.utils import artifact_digest, get_logger

from .errors import (
    InferenceCoreError,
    InferenceError,
    ModelLoadError,
    SessionClosedError,
    SessionNotReadyError,
    ShapeMismatchError,
    UnexpectedShapeError,
)
from .model import make_backend
from .model.backends.base import InferenceBackend
from .tensor import TensorContract, TensorDescriptor

logger = get_logger(__name__)

ModelSource = Union[str, os.PathLike, bytes]
BackendFactory = Callable[[ModelSource, str], InferenceBackend]


class SessionState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"


class ModelSession:
    """
    Owns one model handle and serves synchronous ``run()`` calls on it.

    Args:
        contract: Expected input/output specs. When omitted, the specs the
            model declares are used; formats without metadata (TorchScript)
            require one.
        device: Device string passed to the backend ("cpu" or "cuda").
        warmup_runs: Zero-filled inference passes run during ``load()``.
        backend_factory: Callable building a backend from a model source.

    Example:
        >>> with ModelSession(device="cpu") as session:
        ...     session.load("advisor.onnx")
        ...     outputs = session.run([descriptor])
    """

    def __init__(
        self,
        contract: Optional[TensorContract] = None,
        device: str = "cpu",
        *,
        warmup_runs: int = 1,
        backend_factory: BackendFactory = make_backend,
    ):
        self.device = device
        self.warmup_runs = warmup_runs
        self._configured_contract = contract
        self._contract = contract
        self._backend_factory = backend_factory

        self._cond = threading.Condition()
        self._state = SessionState.UNLOADED
        self._backend: Optional[InferenceBackend] = None
        self._model_version: Optional[str] = None
        self._in_flight = 0
        self._native_calls = 0
        self.load_profiler = Profiler()

    # ------------------------------------------------------------------
    # introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def contract(self) -> Optional[TensorContract]:
        return self._contract

    @property
    def model_version(self) -> Optional[str]:
        """SHA-256 of the loaded artifact, None when nothing is loaded."""
        return self._model_version

    @property
    def native_calls(self) -> int:
        """Number of native inference calls issued by ``run()``."""
        return self._native_calls

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def is_accepting(self) -> bool:
        return self._state is SessionState.READY

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(state={self._state.value}, "
            f"device={self.device!r}, version={self._model_version})"
        )

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def load(self, source: ModelSource) -> "ModelSession":
        """Load a model artifact and warm it up.

        Raises:
            ModelLoadError: for any failure while loading or warming up; the
                session is back in ``UNLOADED`` and ``load()`` may be retried.
            RuntimeError: if the session is not ``UNLOADED``.
        """
        with self._cond:
            if self._state is not SessionState.UNLOADED:
                raise RuntimeError(
                    f"load() requires an unloaded session, state is {self._state.value}"
                )
            self._state = SessionState.LOADING

        label = (
            f"<{len(source)} bytes>"
            if isinstance(source, (bytes, bytearray))
            else os.fspath(source)
        )
        logger.info("Loading model from %s on %s", label, self.device)

        backend = None
        try:
            with self.load_profiler:
                backend = self._backend_factory(source, self.device)
                contract = self._resolve_contract(backend)
                self._warmup(backend, contract)
                version = artifact_digest(source)
        except Exception as exc:
            if backend is not None:
                self._close_backend(backend)
            with self._cond:
                self._state = SessionState.UNLOADED
                self._cond.notify_all()
            logger.error("Failed to load model from %s: %s", label, exc)
            if isinstance(exc, ModelLoadError):
                raise
            raise ModelLoadError(f"Failed to load model from {label}: {exc}") from exc

        with self._cond:
            self._backend = backend
            self._contract = contract
            self._model_version = version
            self._state = SessionState.READY
            self._cond.notify_all()

        logger.info(
            "Model ready (version=%s, load=%.2f ms)",
            version[:12],
            self.load_profiler.elapsed_time * 1000,
        )
        return self

    def close(self, timeout: Optional[float] = None) -> bool:
        """Stop admitting calls, wait for in-flight ones, release the handle.

        Idempotent. Returns True once the session is ``CLOSED``, False if
        ``timeout`` expired first; the handle is then released by the last
        in-flight call.
        """
        with self._cond:
            if not self._cond.wait_for(
                lambda: self._state is not SessionState.LOADING, timeout
            ):
                return False

            if self._state is SessionState.UNLOADED:
                self._state = SessionState.CLOSED
                self._cond.notify_all()
                return True

            if self._state is SessionState.READY:
                self._state = SessionState.CLOSING
                logger.info(
                    "Closing session, %d call(s) in flight", self._in_flight
                )
                if self._in_flight == 0:
                    self._release_locked()

            return self._cond.wait_for(
                lambda: self._state is SessionState.CLOSED, timeout
            )

    def reset(self) -> None:
        """Return a ``CLOSED`` session to ``UNLOADED`` so another model can be loaded."""
        with self._cond:
            if self._state is not SessionState.CLOSED:
                raise RuntimeError(
                    f"reset() requires a closed session, state is {self._state.value}"
                )
            self._state = SessionState.UNLOADED
            self._contract = self._configured_contract
            self._model_version = None
            self._cond.notify_all()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    # ------------------------------------------------------------------
    # inference
    # ------------------------------------------------------------------

    def run(self, inputs: Sequence[TensorDescriptor]) -> List[TensorDescriptor]:
        """Run one native inference call from the calling thread.

        Raises:
            SessionClosedError: the session is closing or closed. No native
                call is made.
            SessionNotReadyError: no model is loaded.
            ShapeMismatchError: the inputs do not line up with the contract.
            InferenceError: the runtime failed; the native exception is the
                ``__cause__``.
            UnexpectedShapeError: the runtime returned something that cannot
                be described as a tensor.
        """
        with self._cond:
            if self._state in (SessionState.CLOSING, SessionState.CLOSED):
                raise SessionClosedError(f"Session is {self._state.value}")
            if self._state is not SessionState.READY:
                raise SessionNotReadyError(f"Session is {self._state.value}")
            self._in_flight += 1
            backend = self._backend
            contract = self._contract

        try:
            feeds = self._feeds(inputs, contract)
            with self._cond:
                self._native_calls += 1
            outputs = backend.run(feeds)
        except InferenceError as exc:
            if exc.fatal:
                self._abandon(exc)
            raise
        except InferenceCoreError:
            raise
        except Exception as exc:
            raise InferenceError(f"Native inference failed: {exc}") from exc
        finally:
            with self._cond:
                self._in_flight -= 1
                if self._state is SessionState.CLOSING and self._in_flight == 0:
                    self._release_locked()
                self._cond.notify_all()

        names = contract.output_names
        if len(names) != len(outputs):
            names = [None] * len(outputs)
        try:
            return [
                TensorDescriptor.from_array(np.asarray(arr), name)
                for arr, name in zip(outputs, names)
            ]
        except ValueError as exc:
            raise UnexpectedShapeError(f"Runtime returned an invalid tensor: {exc}") from exc

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _resolve_contract(self, backend: InferenceBackend) -> TensorContract:
        configured = self._configured_contract
        declared_inputs = backend.input_specs()

        if declared_inputs is None:
            if configured is None or not configured.inputs:
                raise ModelLoadError(
                    "Model format carries no tensor metadata; a contract is required"
                )
            return configured

        declared = TensorContract(declared_inputs, backend.output_specs() or ())
        if configured is None:
            return declared

        problems = configured.mismatches(declared)
        if problems:
            raise ModelLoadError(
                "Model does not match the configured contract: " + "; ".join(problems)
            )
        if not configured.outputs:
            return TensorContract(configured.inputs, declared.outputs)
        return configured

    def _warmup(self, backend: InferenceBackend, contract: TensorContract) -> None:
        if self.warmup_runs <= 0:
            return
        feeds = {
            spec.name: np.zeros(spec.concrete_shape(), dtype=spec.dtype.numpy_dtype)
            for spec in contract.inputs
        }
        backend.warmup(feeds, runs=self.warmup_runs)

    @staticmethod
    def _feeds(
        inputs: Sequence[TensorDescriptor], contract: TensorContract
    ) -> Dict[str, np.ndarray]:
        inputs = list(inputs)
        specs = contract.inputs
        if len(inputs) != len(specs):
            raise ShapeMismatchError(
                f"Model takes {len(specs)} input(s), got {len(inputs)}"
            )

        # named descriptors go to their input, the rest fill the gaps; feeds
        # keep contract order since TorchScript passes them positionally
        names = contract.input_names
        by_name = {}
        unnamed = []
        for descriptor in inputs:
            if descriptor.name in names:
                if descriptor.name in by_name:
                    raise ShapeMismatchError(f"Input '{descriptor.name}' given twice")
                by_name[descriptor.name] = descriptor
            else:
                unnamed.append(descriptor)

        positional = iter(unnamed)
        return {
            spec.name: (
                by_name[spec.name] if spec.name in by_name else next(positional)
            ).to_array()
            for spec in specs
        }

    def _abandon(self, exc: InferenceError) -> None:
        with self._cond:
            if self._state is SessionState.READY:
                logger.error("Unrecoverable runtime failure, closing session: %s", exc)
                self._state = SessionState.CLOSING
                self._cond.notify_all()

    def _release_locked(self) -> None:
        backend, self._backend = self._backend, None
        if backend is not None:
            self._close_backend(backend)
        self._state = SessionState.CLOSED
        self._cond.notify_all()
        logger.info("Session closed, model handle released")

    @staticmethod
    def _close_backend(backend: InferenceBackend) -> None:
        try:
            backend.close()
        except Exception:
            logger.exception("Error while releasing model backend")
