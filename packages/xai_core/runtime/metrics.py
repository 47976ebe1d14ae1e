import threading
from collections import deque
from dataclasses import dataclass

from packages.contracts.payloads import MetricsSnapshot


@dataclass
class _Outcome:
    elapsed_ms: float
    success: bool
    cache_hit: bool


class MetricsTracker:
    """
    Lifetime counters plus a rolling window of recent calls.
    Health is judged on the window only.
    """

    def __init__(self, window_size: int, max_error_rate: float):
        self.window_size = window_size
        self.max_error_rate = max_error_rate
        self._window: deque = deque(maxlen=window_size)
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._cache_hits = 0
        self._lock = threading.Lock()

    def record(self, elapsed_ms: float, success: bool, cache_hit: bool = False):
        with self._lock:
            self._window.append(_Outcome(elapsed_ms, success, cache_hit))
            self._total += 1
            if success:
                self._successful += 1
            else:
                self._failed += 1
            if cache_hit:
                self._cache_hits += 1

    def _rolling(self):
        n = len(self._window)
        if n == 0:
            return 0.0, 0.0
        errors = sum(1 for o in self._window if not o.success)
        avg_ms = sum(o.elapsed_ms for o in self._window) / n
        return errors / n, avg_ms

    def snapshot(self, in_flight: int = 0, cache_size: int = 0) -> MetricsSnapshot:
        with self._lock:
            error_rate, avg_ms = self._rolling()
            return MetricsSnapshot(
                total_explanations=self._total,
                successful=self._successful,
                failed=self._failed,
                cache_hits=self._cache_hits,
                cache_hit_rate=self._cache_hits / self._total if self._total else 0.0,
                error_rate=error_rate,
                avg_computation_ms=avg_ms,
                window_size=len(self._window),
                in_flight=in_flight,
                cache_size=cache_size,
            )

    def is_healthy(self, timeout_ms: float) -> bool:
        with self._lock:
            error_rate, avg_ms = self._rolling()
        return error_rate < self.max_error_rate and avg_ms < timeout_ms

    def reset(self):
        with self._lock:
            self._window.clear()
            self._total = self._successful = self._failed = self._cache_hits = 0
