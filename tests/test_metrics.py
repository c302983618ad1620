from __future__ import annotations

import pytest

from safe_js_runner.metrics import BoundedCache, MetricsRecorder


def test_cache_evicts_oldest_entry() -> None:
    cache: BoundedCache[str, int] = BoundedCache(capacity=2, name="test")
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("c", 3)
    assert cache.keys() == ["b", "c"]
    assert "a" not in cache
    assert len(cache) == 2
    assert cache.stats()["evictions"] == 1


def test_cache_update_keeps_position() -> None:
    cache: BoundedCache[str, int] = BoundedCache(capacity=2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("a", 10)
    cache.put("c", 3)
    assert cache.keys() == ["b", "c"]
    assert cache.get("a") is None


def test_cache_counts_hits_and_misses() -> None:
    cache: BoundedCache[str, str] = BoundedCache(capacity=4)
    cache.put("k", "v")
    assert cache.get("k") == "v"
    assert cache.get("missing") is None
    assert cache.stats() == {"size": 1, "capacity": 4, "hits": 1, "misses": 1, "evictions": 0}
    cache.clear()
    assert cache.stats()["hits"] == 0
    assert len(cache) == 0


def test_cache_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError):
        BoundedCache(capacity=0)


def test_recorder_running_means() -> None:
    recorder = MetricsRecorder()
    recorder.record("javascript", 10.0, success=True)
    recorder.record("javascript", 30.0, success=False)
    recorder.record("typescript", 50.0, success=False, timeout=True)

    metrics = recorder.snapshot()
    assert metrics.total_executions == 3
    assert metrics.successful_executions == 1
    assert metrics.failed_executions == 2
    assert metrics.timed_out_executions == 1
    assert metrics.average_execution_time_ms == pytest.approx(30.0)
    assert metrics.per_language["javascript"].executions == 2
    assert metrics.per_language["javascript"].average_execution_time_ms == pytest.approx(20.0)
    assert metrics.per_language["typescript"].failed == 1


def test_snapshot_is_independent_and_reset_zeroes() -> None:
    recorder = MetricsRecorder()
    recorder.record("jsx", 5.0, success=True, cancelled=True)
    snapshot = recorder.snapshot()
    snapshot.total_executions = 99
    snapshot.per_language.clear()
    assert recorder.snapshot().total_executions == 1
    assert recorder.snapshot().cancelled_executions == 1
    assert "jsx" in recorder.snapshot().per_language

    recorder.reset()
    assert recorder.snapshot().total_executions == 0
    assert recorder.snapshot().per_language == {}
