# inference/cache.py

"""
LRU memo of inference results keyed by input fingerprint and model version.
"""

from __future__ import annotations

import hashlib
import itertools
import threading
from typing import TYPE_CHECKING, Dict, Optional, Sequence

from printadvisor.utils import get_logger

from .tensor import TensorDescriptor

if TYPE_CHECKING:
    from .dispatcher import InferenceResult

logger = get_logger(__name__)


def fingerprint(inputs: Sequence[TensorDescriptor], model_version: str) -> str:
    """Content key for a set of inputs under one model version.

    Covers the version, and every input's name, element type, shape and
    bytes, so equal keys imply equal requests to the same model.
    """
    digest = hashlib.sha256()
    digest.update(model_version.encode("utf-8"))
    for descriptor in inputs:
        digest.update(b"\x00")
        digest.update((descriptor.name or "").encode("utf-8"))
        digest.update(descriptor.dtype.value.encode("ascii"))
        digest.update(repr(descriptor.shape).encode("ascii"))
        digest.update(descriptor.buffer)
    return digest.hexdigest()


class _Entry:
    __slots__ = ("result", "nbytes", "last_used")

    def __init__(self, result: "InferenceResult", nbytes: int, last_used: int):
        self.result = result
        self.nbytes = nbytes
        self.last_used = last_used


class ResultCache:
    """
    Thread-safe LRU cache of ``InferenceResult`` objects.

    Writers are serialized by a lock and publish a fresh mapping on every
    insert or eviction. Readers never take the write lock: they read whichever
    mapping is current, so a lookup racing a write sees the old or the new
    entry, never a partial one. Hit, miss and eviction counters sit behind a
    separate lock of their own.

    Args:
        max_entries: Entry count bound.
        max_bytes: Optional bound on the summed output bytes.
    """

    def __init__(self, max_entries: int = 128, max_bytes: Optional[int] = None):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self._entries: Dict[str, _Entry] = {}
        self._write_lock = threading.Lock()
        self._clock = itertools.count()
        # counters only; never held while touching the mapping
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def lookup(self, key: str) -> Optional["InferenceResult"]:
        entry = self._entries.get(key)
        with self._stats_lock:
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
        entry.last_used = next(self._clock)
        return entry.result

    def insert(self, key: str, result: "InferenceResult") -> None:
        """Store ``result`` under ``key``, replacing any previous value."""
        nbytes = sum(o.nbytes for o in result.outputs)
        if self.max_bytes is not None and nbytes > self.max_bytes:
            logger.debug("Result of %d bytes exceeds cache budget, not cached", nbytes)
            return

        with self._write_lock:
            entries = dict(self._entries)
            entries[key] = _Entry(result, nbytes, next(self._clock))
            self._evict(entries)
            self._entries = entries

    def _evict(self, entries: Dict[str, _Entry]) -> None:
        total = sum(e.nbytes for e in entries.values())
        while len(entries) > self.max_entries or (
            self.max_bytes is not None and total > self.max_bytes
        ):
            oldest = min(entries, key=lambda k: entries[k].last_used)
            total -= entries.pop(oldest).nbytes
            with self._stats_lock:
                self._evictions += 1
            logger.debug("Evicted cache entry %s", oldest[:12])

    def invalidate(self, key: str) -> bool:
        with self._write_lock:
            if key not in self._entries:
                return False
            entries = dict(self._entries)
            del entries[key]
            self._entries = entries
            return True

    def clear(self) -> None:
        with self._write_lock:
            self._entries = {}
        logger.info("Result cache cleared")

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return key in self._entries

    @property
    def nbytes(self) -> int:
        return sum(e.nbytes for e in self._entries.values())

    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            counters = {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
        counters.update(entries=len(self._entries), bytes=self.nbytes)
        return counters
