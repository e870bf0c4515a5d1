# inference/dispatcher.py

"""
Concurrent access to a ready ``ModelSession``.

Callers submit requests and get an ``InferenceHandle`` back immediately.
Admitted requests wait in a priority queue (``HIGH`` before ``NORMAL``,
submission order within a class) and are run by a pool of at most
``max_concurrency`` worker threads, each calling ``session.run()``. Queue
deadlines are enforced by a single watcher thread shared by all requests.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from printadvisor.utils import get_logger

from .cache import ResultCache, fingerprint
from .errors import (
    InferenceCoreError,
    InferenceError,
    RequestCancelledError,
    RequestTimeoutError,
    SessionClosedError,
    SessionNotReadyError,
)
from .session import ModelSession, SessionState
from .tensor import TensorDescriptor

logger = get_logger(__name__)


class Priority(IntEnum):
    NORMAL = 0
    HIGH = 1


class ResultStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class InferenceRequest:
    """Inputs plus routing metadata for one inference call.

    ``timeout`` is measured from submission; ``None`` means the dispatcher
    default applies.
    """

    inputs: Tuple[TensorDescriptor, ...]
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    priority: Priority = Priority.NORMAL
    timeout: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "priority", Priority(self.priority))
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")


@dataclass(frozen=True)
class InferenceResult:
    correlation_id: str
    status: ResultStatus
    outputs: Tuple[TensorDescriptor, ...] = ()
    error: Optional[BaseException] = None
    late: bool = False
    cached: bool = False

    @classmethod
    def success(
        cls, correlation_id: str, outputs: Sequence[TensorDescriptor], late: bool = False
    ) -> "InferenceResult":
        return cls(correlation_id, ResultStatus.SUCCESS, tuple(outputs), late=late)

    @classmethod
    def failure(cls, correlation_id: str, error: BaseException) -> "InferenceResult":
        return cls(correlation_id, ResultStatus.FAILURE, error=error)

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    def unwrap(self) -> List[TensorDescriptor]:
        """Return the outputs, or raise the error the request failed with."""
        if self.error is not None:
            raise self.error
        return list(self.outputs)


class _HandleState(Enum):
    NEW = "new"
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"


class InferenceHandle:
    """Future-like handle for one submitted request.

    Resolves exactly once to an ``InferenceResult``; failures (including
    timeouts and pre-dispatch cancellation) are carried on the result.
    """

    def __init__(self, request: InferenceRequest, dispatcher: "InferenceDispatcher"):
        self.request = request
        self._dispatcher = dispatcher
        self._future: "Future[InferenceResult]" = Future()
        self._state = _HandleState.NEW
        self._cancel_requested = False
        self._dispatched = False
        self._deadline: Optional[float] = None
        self._cache_key: Optional[str] = None

    @property
    def correlation_id(self) -> str:
        return self.request.correlation_id

    def cancel(self) -> bool:
        """Cancel the request.

        Returns True when the request was still queued: it is dropped and no
        native call is made. Once dispatched, cancellation only marks the
        handle; the result is still delivered.
        """
        return self._dispatcher._cancel(self)

    def cancelled(self) -> bool:
        return self._cancel_requested

    def dispatched(self) -> bool:
        """True once a worker has started the native call for this request."""
        return self._dispatched

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> InferenceResult:
        """Block until resolved. Raises ``TimeoutError`` if ``timeout`` passes first."""
        return self._future.result(timeout)

    def on_complete(self, callback: Callable[[InferenceResult], None]) -> None:
        """Call ``callback(result)`` on resolution, right away if already resolved.

        Callbacks run on the resolving thread; exceptions they raise are
        logged and do not reach other requests.
        """
        self._future.add_done_callback(lambda future: callback(future.result()))

    def __repr__(self):
        return (
            f"InferenceHandle(id={self.correlation_id}, state={self._state.value}, "
            f"cancelled={self._cancel_requested})"
        )


class InferenceDispatcher:
    """
    Serializes or bounds concurrent inference against one session.

    Args:
        session: A ``ModelSession``; requests are rejected unless it is ready.
        max_concurrency: Upper bound on simultaneous ``session.run()`` calls.
            The default of 1 fully serializes access.
        cache: Optional ``ResultCache`` consulted before queueing.
        default_timeout: Queueing deadline in seconds for requests that do
            not carry their own.

    Example:
        >>> dispatcher = InferenceDispatcher(session, max_concurrency=1)
        >>> handle = dispatcher.submit([descriptor])
        >>> handle.on_complete(lambda result: print(result.status))
    """

    def __init__(
        self,
        session: ModelSession,
        max_concurrency: int = 1,
        *,
        cache: Optional[ResultCache] = None,
        default_timeout: Optional[float] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.session = session
        self.max_concurrency = max_concurrency
        self.cache = cache
        self.default_timeout = default_timeout

        self._lock = threading.Lock()
        self._queue: List[Tuple[int, int, InferenceHandle]] = []
        # one watcher thread expires queued requests, earliest deadline first
        self._deadlines: List[Tuple[float, int, InferenceHandle]] = []
        self._deadline_cond = threading.Condition(self._lock)
        self._watcher: Optional[threading.Thread] = None
        self._seq = itertools.count()
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrency, thread_name_prefix="printadvisor-infer"
        )
        self._closed = False
        self._stats = {
            "submitted": 0,
            "completed": 0,
            "failed": 0,
            "cancelled": 0,
            "timed_out": 0,
            "late": 0,
            "cache_hits": 0,
        }

    # ------------------------------------------------------------------
    # submission
    # ------------------------------------------------------------------

    def submit(
        self,
        request: Union[InferenceRequest, Sequence[TensorDescriptor]],
        *,
        priority: Priority = Priority.NORMAL,
        timeout: Optional[float] = None,
        correlation_id: Optional[str] = None,
    ) -> InferenceHandle:
        """Submit a request without blocking on inference.

        ``request`` is an ``InferenceRequest`` or a sequence of input
        descriptors; in the latter case the keyword arguments build the
        request.
        """
        if not isinstance(request, InferenceRequest):
            kwargs = {"inputs": tuple(request), "priority": priority, "timeout": timeout}
            if correlation_id is not None:
                kwargs["correlation_id"] = correlation_id
            request = InferenceRequest(**kwargs)

        handle = InferenceHandle(request, self)
        self._count("submitted")

        rejection = self._rejection()
        if rejection is not None:
            handle._state = _HandleState.DONE
            self._resolve(handle, InferenceResult.failure(request.correlation_id, rejection))
            return handle

        if self.cache is not None and self.session.model_version:
            handle._cache_key = fingerprint(request.inputs, self.session.model_version)
            hit = self.cache.lookup(handle._cache_key)
            if hit is not None:
                logger.debug("Cache hit for request %s", request.correlation_id)
                self._count("cache_hits")
                handle._state = _HandleState.DONE
                self._resolve(
                    handle,
                    replace(
                        hit,
                        correlation_id=request.correlation_id,
                        cached=True,
                        late=False,
                    ),
                )
                return handle

        timeout = request.timeout if request.timeout is not None else self.default_timeout
        with self._lock:
            if self._closed:
                handle._state = _HandleState.DONE
                rejected = True
            else:
                rejected = False
                handle._state = _HandleState.QUEUED
                seq = next(self._seq)
                if timeout is not None:
                    handle._deadline = time.monotonic() + timeout
                    self._watch_locked(handle, seq)
                heapq.heappush(self._queue, (-int(request.priority), seq, handle))
                self._executor.submit(self._work)

        if rejected:
            self._resolve(
                handle,
                InferenceResult.failure(
                    request.correlation_id, SessionClosedError("Dispatcher is shut down")
                ),
            )
            return handle

        logger.debug(
            "Queued request %s (priority=%s, timeout=%s)",
            request.correlation_id,
            request.priority.name,
            timeout,
        )
        return handle

    def infer(
        self,
        inputs: Sequence[TensorDescriptor],
        *,
        priority: Priority = Priority.NORMAL,
        timeout: Optional[float] = None,
    ) -> List[TensorDescriptor]:
        """Blocking convenience for batch callers: submit, wait, unwrap."""
        return self.submit(inputs, priority=priority, timeout=timeout).result().unwrap()

    def _rejection(self) -> Optional[InferenceCoreError]:
        if self._closed:
            return SessionClosedError("Dispatcher is shut down")
        state = self.session.state
        if state in (SessionState.CLOSING, SessionState.CLOSED):
            return SessionClosedError(f"Session is {state.value}")
        if state is not SessionState.READY:
            return SessionNotReadyError(f"Session is {state.value}")
        return None

    # ------------------------------------------------------------------
    # workers
    # ------------------------------------------------------------------

    def _work(self) -> None:
        expired = []
        handle = None
        with self._lock:
            now = time.monotonic()
            while self._queue:
                _, _, candidate = heapq.heappop(self._queue)
                if candidate._state is not _HandleState.QUEUED:
                    continue
                if candidate._deadline is not None and now >= candidate._deadline:
                    candidate._state = _HandleState.DONE
                    expired.append(candidate)
                    continue
                handle = candidate
                handle._state = _HandleState.RUNNING
                handle._dispatched = True
                break

        for stale in expired:
            self._resolve_timeout(stale)
        if handle is None:
            return

        request = handle.request
        logger.debug("Dispatching request %s", request.correlation_id)
        try:
            outputs = self.session.run(request.inputs)
        except InferenceCoreError as exc:
            result = InferenceResult.failure(request.correlation_id, exc)
        except Exception as exc:
            logger.exception("Unexpected error running request %s", request.correlation_id)
            error = InferenceError(f"Unexpected dispatcher failure: {exc}")
            error.__cause__ = exc
            result = InferenceResult.failure(request.correlation_id, error)
        else:
            late = handle._deadline is not None and time.monotonic() > handle._deadline
            result = InferenceResult.success(request.correlation_id, outputs, late=late)
            if late:
                self._count("late")
                logger.warning(
                    "Request %s finished after its deadline", request.correlation_id
                )
            if self.cache is not None and handle._cache_key is not None:
                self.cache.insert(handle._cache_key, result)

        with self._lock:
            handle._state = _HandleState.DONE
        self._resolve(handle, result)

    def _watch_locked(self, handle: InferenceHandle, seq: int) -> None:
        heapq.heappush(self._deadlines, (handle._deadline, seq, handle))
        if self._watcher is None:
            self._watcher = threading.Thread(
                target=self._watch_deadlines,
                name="printadvisor-deadlines",
                daemon=True,
            )
            self._watcher.start()
        self._deadline_cond.notify()

    def _watch_deadlines(self) -> None:
        while True:
            expired = []
            with self._lock:
                # dispatched and cancelled entries are dropped lazily
                while (
                    self._deadlines
                    and self._deadlines[0][2]._state is not _HandleState.QUEUED
                ):
                    heapq.heappop(self._deadlines)

                if not self._deadlines:
                    if self._closed:
                        self._watcher = None
                        return
                    self._deadline_cond.wait()
                    continue

                now = time.monotonic()
                while self._deadlines and self._deadlines[0][0] <= now:
                    _, _, handle = heapq.heappop(self._deadlines)
                    if handle._state is _HandleState.QUEUED:
                        handle._state = _HandleState.DONE
                        expired.append(handle)
                if not expired:
                    self._deadline_cond.wait(self._deadlines[0][0] - now)

            for handle in expired:
                self._resolve_timeout(handle)

    def _resolve_timeout(self, handle: InferenceHandle) -> None:
        self._count("timed_out")
        logger.warning(
            "Request %s timed out before dispatch", handle.correlation_id
        )
        self._resolve(
            handle,
            InferenceResult.failure(
                handle.correlation_id,
                RequestTimeoutError(
                    f"Request {handle.correlation_id} was not dispatched before its deadline"
                ),
            ),
        )

    def _cancel(self, handle: InferenceHandle) -> bool:
        with self._lock:
            handle._cancel_requested = True
            if handle._state is not _HandleState.QUEUED:
                return False
            handle._state = _HandleState.DONE

        self._count("cancelled")
        logger.debug("Cancelled queued request %s", handle.correlation_id)
        self._resolve(
            handle,
            InferenceResult.failure(
                handle.correlation_id,
                RequestCancelledError(f"Request {handle.correlation_id} was cancelled"),
            ),
        )
        return True

    def _resolve(self, handle: InferenceHandle, result: InferenceResult) -> None:
        if result.ok:
            self._count("completed")
        elif not isinstance(result.error, (RequestCancelledError, RequestTimeoutError)):
            self._count("failed")
            logger.debug(
                "Request %s failed: %r", result.correlation_id, result.error
            )
        handle._future.set_result(result)

    def _count(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, int]:
        with self._lock:
            stats = dict(self._stats)
            stats["queued"] = sum(
                1 for _, _, h in self._queue if h._state is _HandleState.QUEUED
            )
        return stats

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        """Stop accepting requests and stop the worker pool.

        Queued requests still run unless ``cancel_pending`` is set, in which
        case they resolve to ``SessionClosedError`` without a native call.
        """
        with self._lock:
            self._closed = True
            dropped = []
            if cancel_pending:
                for _, _, handle in self._queue:
                    if handle._state is _HandleState.QUEUED:
                        handle._state = _HandleState.DONE
                        dropped.append(handle)
            self._deadline_cond.notify_all()

        for handle in dropped:
            self._resolve(
                handle,
                InferenceResult.failure(
                    handle.correlation_id, SessionClosedError("Dispatcher is shut down")
                ),
            )

        logger.info("Dispatcher shutting down (dropped=%d)", len(dropped))
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.shutdown()
