from __future__ import annotations

from typing import Sequence

import numpy as np

from .types import PerformanceMetrics

PERCENTILES = (50, 95, 99)


def _percentile_index(n: int, p: int) -> int:
    return min(n * p // 100, n - 1)


def measure_latencies(durations: Sequence[float]) -> PerformanceMetrics:
    """Summarize per-operation durations (seconds) into percentile and throughput stats.

    Percentiles use the nearest-rank index ``floor(n * p / 100)`` clamped to the
    last element, so results stay identical to recorded baselines instead of
    following numpy's interpolating ``percentile``.
    """
    n = len(durations)
    if n == 0:
        return PerformanceMetrics()

    values = np.asarray(durations, dtype=np.float64)
    ordered = np.sort(values, kind="stable")
    total = float(np.sum(values))
    avg = total / n
    qps = 1.0 / avg if avg > 0 else 0.0

    p50, p95, p99 = (float(ordered[_percentile_index(n, p)]) for p in PERCENTILES)
    return PerformanceMetrics(
        p50_latency=p50,
        p95_latency=p95,
        p99_latency=p99,
        min_latency=float(ordered[0]),
        max_latency=float(ordered[-1]),
        avg_latency=avg,
        qps=qps,
        total_time=total,
        count=n,
    )


def format_duration(seconds: float) -> str:
    if seconds < 1e-3:
        return f"{seconds * 1e6:.0f}µs"
    if seconds < 1.0:
        return f"{seconds * 1e3:.3f}ms"
    return f"{seconds:.3f}s"


__all__ = ["PERCENTILES", "format_duration", "measure_latencies"]
