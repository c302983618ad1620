from __future__ import annotations

import copy
import logging
from collections import OrderedDict
from typing import Generic, Hashable, TypeVar

from .execution.types import ExecutionMetrics, LanguageStats

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedCache(Generic[K, V]):
    """Capacity-bounded mapping with insertion-order (FIFO) eviction.

    Example:
        ```python
        cache = BoundedCache[str, str](capacity=50)
        cache.put("k", "v")
        ```
    """

    def __init__(self, capacity: int = 50, *, name: str = "cache") -> None:
        """Create an empty cache.

        Example:
            ```python
            cache = BoundedCache(capacity=2, name="transform")
            ```
        """
        if int(capacity) <= 0:
            raise ValueError("cache capacity must be positive")
        self._capacity = int(capacity)
        self._name = name
        self._entries: OrderedDict[K, V] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def capacity(self) -> int:
        """Maximum number of entries.

        Example:
            ```python
            assert cache.capacity == 50
            ```
        """
        return self._capacity

    def get(self, key: K) -> V | None:
        """Return a cached value or None, counting hits and misses.

        Example:
            ```python
            value = cache.get("k")
            ```
        """
        if key in self._entries:
            self._hits += 1
            return self._entries[key]
        self._misses += 1
        return None

    def put(self, key: K, value: V) -> None:
        """Insert a value, evicting the oldest entry when full.

        Existing keys are updated in place and keep their position.

        Example:
            ```python
            cache.put("k", "v")
            ```
        """
        if key in self._entries:
            self._entries[key] = value
            return
        while len(self._entries) >= self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("%s cache evicted %r", self._name, evicted)
        self._entries[key] = value

    def clear(self) -> None:
        """Drop every entry and reset counters.

        Example:
            ```python
            cache.clear()
            ```
        """
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def keys(self) -> list[K]:
        """Keys in insertion order, oldest first.

        Example:
            ```python
            oldest = cache.keys()[0]
            ```
        """
        return list(self._entries.keys())

    def stats(self) -> dict[str, int]:
        """Size, capacity and hit counters.

        Example:
            ```python
            stats = cache.stats()
            ```
        """
        return {
            "size": len(self._entries),
            "capacity": self._capacity,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }

    def __contains__(self, key: object) -> bool:
        """Membership test without touching hit counters.

        Example:
            ```python
            assert "k" in cache
            ```
        """
        return key in self._entries

    def __len__(self) -> int:
        """Number of cached entries.

        Example:
            ```python
            assert len(cache) <= cache.capacity
            ```
        """
        return len(self._entries)


def _running_mean(previous: float, count: int, sample: float) -> float:
    """Fold one sample into a mean over `count` samples (sample included).

    Example:
        ```python
        avg = _running_mean(10.0, 2, 20.0)  # 15.0
        ```
    """
    return (previous * (count - 1) + sample) / count


class MetricsRecorder:
    """Running execution statistics, global and per language.

    Example:
        ```python
        recorder = MetricsRecorder()
        recorder.record("javascript", 12.0, success=True)
        ```
    """

    def __init__(self) -> None:
        """Start with zeroed statistics.

        Example:
            ```python
            recorder = MetricsRecorder()
            ```
        """
        self._metrics = ExecutionMetrics()

    def record(
        self,
        language: str,
        execution_time_ms: float,
        *,
        success: bool,
        timeout: bool = False,
        cancelled: bool = False,
    ) -> None:
        """Account one terminal execution.

        Example:
            ```python
            recorder.record("typescript", 40.0, success=False, timeout=True)
            ```
        """
        m = self._metrics
        m.total_executions += 1
        if success:
            m.successful_executions += 1
        else:
            m.failed_executions += 1
        if timeout:
            m.timed_out_executions += 1
        if cancelled:
            m.cancelled_executions += 1
        m.average_execution_time_ms = _running_mean(
            m.average_execution_time_ms, m.total_executions, execution_time_ms
        )

        stats = m.per_language.setdefault(language, LanguageStats())
        stats.executions += 1
        if success:
            stats.successful += 1
        else:
            stats.failed += 1
        stats.average_execution_time_ms = _running_mean(
            stats.average_execution_time_ms, stats.executions, execution_time_ms
        )

    def snapshot(self) -> ExecutionMetrics:
        """Return an independent copy of the current statistics.

        Example:
            ```python
            metrics = recorder.snapshot()
            ```
        """
        return copy.deepcopy(self._metrics)

    def reset(self) -> None:
        """Zero every counter.

        Example:
            ```python
            recorder.reset()
            ```
        """
        self._metrics = ExecutionMetrics()
