from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from numpy.typing import NDArray

from .backends_impl import SearchIndex
from .builder import IndexBuilderLike
from .errors import StageError
from .latency import measure_latencies
from .orchestrator import EvaluationCache, release_index
from .types import PerformanceMetrics, SyntheticSpec

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConcurrentLoadConfig:
    name: str
    builder: IndexBuilderLike
    dim: int = 128
    metric: str = "euclidean"
    initial_size: int = 50_000
    duration_s: float = 10.0
    insert_rate: float = 1000.0
    query_rate: float = 100.0
    k: int = 10
    n_queries: int = 1000
    distribution: str = "normalized"
    seed: int = 42
    needs_training: bool = False
    train_size: int = 0
    min_rate_fraction: float = 0.95
    warn_p99_ms: float = 10.0

    @property
    def expected_inserts(self) -> int:
        return int(self.insert_rate * self.duration_s)

    @property
    def expected_queries(self) -> int:
        return int(self.query_rate * self.duration_s)


@dataclass(slots=True)
class StreamStats:
    inserted: int = 0
    insert_errors: int = 0
    queries: int = 0
    query_errors: int = 0
    elapsed_s: float = 0.0
    latencies: list[float] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return self.insert_errors + self.query_errors


@dataclass(slots=True)
class ConcurrentLoadResult:
    config: ConcurrentLoadConfig
    stats: StreamStats = field(default_factory=StreamStats)
    perf: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    initial_count: int = 0
    final_count: int = 0
    passed: bool = False
    violations: list[str] = field(default_factory=list)
    error: StageError | None = None

    @property
    def insert_rate_achieved(self) -> float:
        return self.stats.inserted / self.stats.elapsed_s if self.stats.elapsed_s > 0 else 0.0

    @property
    def query_rate_achieved(self) -> float:
        return self.stats.queries / self.stats.elapsed_s if self.stats.elapsed_s > 0 else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.config.name,
            "passed": self.passed,
            "duration_s": self.config.duration_s,
            "target_insert_rate": self.config.insert_rate,
            "target_query_rate": self.config.query_rate,
            "inserted": self.stats.inserted,
            "insert_errors": self.stats.insert_errors,
            "queries": self.stats.queries,
            "query_errors": self.stats.query_errors,
            "elapsed_s": self.stats.elapsed_s,
            "insert_rate": self.insert_rate_achieved,
            "query_rate": self.query_rate_achieved,
            "initial_count": self.initial_count,
            "final_count": self.final_count,
            "perf": self.perf.as_dict(),
            "violations": list(self.violations),
            "error": None if self.error is None else str(self.error),
        }


class _Ticker:
    """Fixed-rate tick source; ticks missed while the caller was busy are dropped."""

    def __init__(self, rate: float, start: float):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.interval = 1.0 / rate
        self._next = start + self.interval

    def wait(self) -> None:
        now = time.perf_counter()
        if self._next > now:
            time.sleep(self._next - now)
            self._next += self.interval
            return
        missed = (now - self._next) // self.interval
        self._next += (missed + 1) * self.interval


class _SharedState:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.counts: Counter[str] = Counter()
        self.latencies: list[float] = []

    def incr(self, key: str) -> None:
        with self._lock:
            self.counts[key] += 1

    def record_latency(self, seconds: float) -> None:
        with self._lock:
            self.counts["queries"] += 1
            self.latencies.append(seconds)


def _insert_loop(
    index: SearchIndex,
    stream: NDArray[np.float32],
    rate: float,
    start: float,
    duration_s: float,
    state: _SharedState,
) -> None:
    ticker = _Ticker(rate, start)
    position = 0
    while time.perf_counter() - start < duration_s:
        ticker.wait()
        if position >= stream.shape[0]:
            break
        try:
            index.add(stream[position : position + 1])
        except Exception as exc:
            logger.debug("insert %d failed: %s", position, exc)
            state.incr("insert_errors")
        else:
            state.incr("inserted")
        position += 1


def _query_loop(
    index: SearchIndex,
    queries: NDArray[np.float32],
    k: int,
    rate: float,
    start: float,
    duration_s: float,
    state: _SharedState,
) -> None:
    ticker = _Ticker(rate, start)
    position = 0
    while time.perf_counter() - start < duration_s:
        ticker.wait()
        if position >= queries.shape[0]:
            position = 0
        query_start = time.perf_counter()
        try:
            index.search(queries[position : position + 1], k)
        except Exception as exc:
            logger.debug("query %d failed: %s", position, exc)
            state.incr("query_errors")
        else:
            state.record_latency(time.perf_counter() - query_start)
        position += 1


def stream_load(
    index: SearchIndex,
    stream_vectors: NDArray[np.float32],
    queries: NDArray[np.float32],
    k: int,
    duration_s: float,
    insert_rate: float,
    query_rate: float,
) -> StreamStats:
    """Insert and query ``index`` concurrently at fixed rates for ``duration_s`` seconds.

    Each worker checks the elapsed time before every tick and stops on its
    own once the duration has passed. Failed operations are counted rather
    than raised.
    """
    if queries.shape[0] == 0:
        raise ValueError("stream_load needs at least one query")
    state = _SharedState()
    start = time.perf_counter()
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="recallgate-load") as pool:
        inserts = pool.submit(_insert_loop, index, stream_vectors, insert_rate, start, duration_s, state)
        searches = pool.submit(_query_loop, index, queries, k, query_rate, start, duration_s, state)
        inserts.result()
        searches.result()
    elapsed = time.perf_counter() - start

    return StreamStats(
        inserted=state.counts["inserted"],
        insert_errors=state.counts["insert_errors"],
        queries=state.counts["queries"],
        query_errors=state.counts["query_errors"],
        elapsed_s=elapsed,
        latencies=list(state.latencies),
    )


def _validate(config: ConcurrentLoadConfig, result: ConcurrentLoadResult, stream_size: int) -> list[str]:
    violations: list[str] = []
    stats = result.stats
    if stats.errors:
        violations.append(f"{stats.errors} errors during streaming ({stats.insert_errors} insert, {stats.query_errors} query)")

    expected_inserts = min(config.expected_inserts, stream_size)
    min_inserts = int(expected_inserts * config.min_rate_fraction)
    if stats.inserted < min_inserts:
        violations.append(f"insert throughput too low: {stats.inserted} (target ~{expected_inserts})")
    min_queries = int(config.expected_queries * config.min_rate_fraction)
    if stats.queries < min_queries:
        violations.append(f"query throughput too low: {stats.queries} (target ~{config.expected_queries})")

    expected_count = result.initial_count + stats.inserted
    if result.final_count != expected_count:
        violations.append(f"final element count {result.final_count} != expected {expected_count}")
    return violations


def run_concurrent_load(
    config: ConcurrentLoadConfig,
    *,
    cache: EvaluationCache | None = None,
) -> ConcurrentLoadResult:
    cache = cache or EvaluationCache()
    result = ConcurrentLoadResult(config=config)
    stream_size = max(1, config.expected_inserts)
    spec = SyntheticSpec(
        n=config.initial_size + stream_size,
        dim=config.dim,
        n_queries=config.n_queries,
        distribution=config.distribution,
        seed=config.seed,
    )
    bundle = cache.synthetic(spec, config.metric)
    initial = bundle.vectors[: config.initial_size]
    stream = bundle.vectors[config.initial_size :]

    logger.info(
        "[%s] concurrent load: initial=%d, duration=%.1fs, insert_rate=%.0f/s, query_rate=%.0f/s",
        config.name,
        initial.shape[0],
        config.duration_s,
        config.insert_rate,
        config.query_rate,
    )

    index: SearchIndex | None = None
    stage = "build"
    try:
        index = config.builder.build(bundle.dim, bundle.metric)
        if config.needs_training:
            stage = "train"
            subset = initial[: config.train_size] if config.train_size > 0 else initial
            index.train(subset)
            if not index.is_trained:
                raise RuntimeError("index does not report itself trained after training")
        stage = "populate"
        if initial.shape[0] > 0:
            index.add(initial)
        result.initial_count = index.ntotal

        stage = "stream"
        result.stats = stream_load(
            index,
            stream,
            bundle.queries,
            config.k,
            config.duration_s,
            config.insert_rate,
            config.query_rate,
        )
        result.final_count = index.ntotal
    except Exception as exc:
        logger.error("[%s] %s failed: %s", config.name, stage, exc)
        result.error = StageError(stage, str(exc) or type(exc).__name__, cause=exc)
    finally:
        if index is not None:
            close_error = release_index(index, config.name)
            if result.error is None:
                result.error = close_error
    if result.error is not None:
        result.passed = False
        return result

    result.perf = measure_latencies(result.stats.latencies)
    result.violations = _validate(config, result, stream.shape[0])
    result.passed = not result.violations

    logger.info(
        "[%s] inserted %d (%.0f/s), queries %d (%.0f/s), errors %d, final size %d",
        config.name,
        result.stats.inserted,
        result.insert_rate_achieved,
        result.stats.queries,
        result.query_rate_achieved,
        result.stats.errors,
        result.final_count,
    )
    logger.info("[%s] %s", config.name, result.perf.summary())
    if config.warn_p99_ms > 0 and result.perf.p99_ms > config.warn_p99_ms:
        logger.warning("[%s] P99 latency %.3fms is high during streaming", config.name, result.perf.p99_ms)
    for violation in result.violations:
        logger.warning("[%s] %s", config.name, violation)
    return result


__all__ = [
    "ConcurrentLoadConfig",
    "ConcurrentLoadResult",
    "StreamStats",
    "run_concurrent_load",
    "stream_load",
]
