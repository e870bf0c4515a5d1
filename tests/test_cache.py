# tests/test_cache.py
"""
Tests for the result cache and input fingerprints.
"""
import threading

import numpy as np
import pytest

from printadvisor.inference import InferenceResult, ResultCache, TensorDescriptor, fingerprint


def _result(tag: str, size: int = 4) -> InferenceResult:
    outputs = [TensorDescriptor.from_array(np.zeros(size, dtype=np.float32), "y")]
    return InferenceResult.success(tag, outputs)


def _inputs(value: float, name: str = "x"):
    return [TensorDescriptor.from_array(np.full((1, 4), value, dtype=np.float32), name)]


class TestFingerprint:
    """Test content keys."""

    def test_equal_inputs_equal_keys(self):
        assert fingerprint(_inputs(1.0), "v1") == fingerprint(_inputs(1.0), "v1")

    def test_model_version_scopes_key(self):
        assert fingerprint(_inputs(1.0), "v1") != fingerprint(_inputs(1.0), "v2")

    def test_content_name_and_dtype_matter(self):
        base = fingerprint(_inputs(1.0), "v1")
        assert fingerprint(_inputs(2.0), "v1") != base
        assert fingerprint(_inputs(1.0, name="z"), "v1") != base

        as_int = [TensorDescriptor.from_array(np.ones((1, 4), dtype=np.int32), "x")]
        assert fingerprint(as_int, "v1") != base

    def test_shape_matters(self):
        flat = [TensorDescriptor.from_array(np.ones(4, dtype=np.float32), "x")]
        square = [TensorDescriptor.from_array(np.ones((2, 2), dtype=np.float32), "x")]
        assert fingerprint(flat, "v1") != fingerprint(square, "v1")


class TestResultCache:
    """Test LRU behaviour and bounds."""

    def test_lookup_miss_and_hit(self):
        cache = ResultCache(max_entries=4)
        assert cache.lookup("a") is None

        cache.insert("a", _result("a"))
        assert cache.lookup("a").correlation_id == "a"
        assert "a" in cache
        assert cache.stats()["hits"] == 1
        assert cache.stats()["misses"] == 1

    def test_least_recently_used_evicted(self):
        cache = ResultCache(max_entries=2)
        cache.insert("a", _result("a"))
        cache.insert("b", _result("b"))
        cache.lookup("a")
        cache.insert("c", _result("c"))

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache
        assert cache.stats()["evictions"] == 1

    def test_insert_overwrites(self):
        cache = ResultCache(max_entries=2)
        cache.insert("a", _result("first"))
        cache.insert("a", _result("second"))

        assert len(cache) == 1
        assert cache.lookup("a").correlation_id == "second"

    def test_byte_budget(self):
        # each result holds 16 bytes
        cache = ResultCache(max_entries=10, max_bytes=40)
        for key in "abc":
            cache.insert(key, _result(key))

        assert len(cache) == 2
        assert cache.nbytes == 32
        assert "a" not in cache

    def test_oversized_result_not_cached(self):
        cache = ResultCache(max_entries=10, max_bytes=8)
        cache.insert("big", _result("big"))
        assert len(cache) == 0

    def test_invalidate_and_clear(self):
        cache = ResultCache()
        cache.insert("a", _result("a"))
        cache.insert("b", _result("b"))

        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        cache.clear()
        assert len(cache) == 0

    def test_invalid_bound(self):
        with pytest.raises(ValueError):
            ResultCache(max_entries=0)

    def test_lookups_during_writes(self):
        cache = ResultCache(max_entries=16)
        cache.insert("stable", _result("stable"))
        stop = threading.Event()
        errors = []

        def reader():
            while not stop.is_set():
                hit = cache.lookup("stable")
                if hit is None or hit.correlation_id != "stable":
                    errors.append(hit)

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for t in readers:
            t.start()
        for i in range(500):
            cache.insert(f"k{i % 8}", _result(str(i)))
            cache.lookup("stable")
        stop.set()
        for t in readers:
            t.join(timeout=5)

        assert errors == []
        assert len(cache) <= 16

    def test_counters_exact_under_concurrent_lookups(self):
        cache = ResultCache(max_entries=4)
        cache.insert("present", _result("present"))
        start = threading.Barrier(8)

        def reader():
            start.wait()
            for _ in range(2000):
                cache.lookup("present")
                cache.lookup("absent")

        readers = [threading.Thread(target=reader) for _ in range(8)]
        for t in readers:
            t.start()
        for t in readers:
            t.join(timeout=30)

        stats = cache.stats()
        assert stats["hits"] == 8 * 2000
        assert stats["misses"] == 8 * 2000
