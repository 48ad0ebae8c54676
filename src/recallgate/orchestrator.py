from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import numpy as np
import psutil
from numpy.typing import NDArray

from .backends_impl import SearchIndex
from .dataset import load_named_dataset
from .errors import DatasetNotFoundError, StageError
from .ground_truth import GroundTruthCache, ground_truth_from_neighbors
from .latency import format_duration, measure_latencies
from .metrics import calculate_all_metrics, canonical_metric
from .synthetic import generate_synthetic
from .tracking import TrackingSink
from .types import (
    DatasetBundle,
    GroundTruth,
    PerformanceMetrics,
    RecallMetrics,
    SearchResult,
    SyntheticSpec,
    TestConfiguration,
    TestResult,
    Thresholds,
)

logger = logging.getLogger(__name__)

DEFAULT_METRIC = "euclidean"


class EvaluationCache:
    """Datasets and ground truth shared by every run of one sweep.

    Cached values are treated as read-only by the runs that receive them.
    """

    def __init__(self, ground_truth: GroundTruthCache | None = None):
        self.ground_truth = ground_truth or GroundTruthCache()
        self._datasets: dict[tuple[Any, ...], DatasetBundle] = {}
        self._truth: dict[tuple[Any, ...], list[GroundTruth]] = {}

    @staticmethod
    def dataset_key(config: TestConfiguration) -> tuple[Any, ...]:
        metric = _requested_metric(config)
        if config.synthetic is not None:
            return ("synthetic", config.synthetic, metric or DEFAULT_METRIC)
        return ("named", config.dataset, config.data_dir, metric, config.max_train, config.max_queries)

    def dataset(self, config: TestConfiguration) -> DatasetBundle:
        if config.synthetic is not None:
            return self.synthetic(config.synthetic, config.metric or DEFAULT_METRIC)
        key = self.dataset_key(config)
        bundle = self._datasets.get(key)
        if bundle is None:
            bundle = _acquire_dataset(config)
            self._datasets[key] = bundle
        return bundle

    def synthetic(self, spec: SyntheticSpec, metric: str) -> DatasetBundle:
        key = ("synthetic", spec, canonical_metric(metric))
        bundle = self._datasets.get(key)
        if bundle is None:
            logger.info("generating synthetic %s data: n=%d, nq=%d, dim=%d", spec.distribution, spec.n, spec.n_queries, spec.dim)
            bundle = generate_synthetic(spec, metric=canonical_metric(metric))
            self._datasets[key] = bundle
        return bundle

    def ground_truth_for(self, config: TestConfiguration, bundle: DatasetBundle) -> list[GroundTruth]:
        key = (*self.dataset_key(config), config.k)
        truth = self._truth.get(key)
        if truth is None:
            if bundle.ground_truth is not None:
                logger.info("[%s] using ground truth shipped with %s", config.name, bundle.name)
                truth = ground_truth_from_neighbors(bundle.ground_truth, config.k)
            else:
                self.ground_truth.batch_size = config.gt_batch_size
                truth = self.ground_truth.get_or_compute(bundle.vectors, bundle.queries, config.k, bundle.metric)
            self._truth[key] = truth
        return truth


def _requested_metric(config: TestConfiguration) -> str | None:
    return canonical_metric(config.metric) if config.metric else None


def _acquire_dataset(config: TestConfiguration) -> DatasetBundle:
    metric = _requested_metric(config)
    if not config.dataset:
        raise ValueError("configuration needs either a dataset name or synthetic parameters")
    data_dir = Path(config.data_dir) if config.data_dir else Path("data")
    return load_named_dataset(
        config.dataset,
        data_dir,
        metric=metric,
        max_train=config.max_train,
        max_queries=config.max_queries,
    )


@contextmanager
def _stage(name: str, config: TestConfiguration) -> Iterator[None]:
    try:
        yield
    except StageError:
        raise
    except Exception as exc:
        logger.error("[%s] %s failed: %s", config.name, name, exc)
        raise StageError(name, str(exc) or type(exc).__name__, cause=exc) from exc


def _rss_bytes() -> int:
    return int(psutil.Process().memory_info().rss)


def measure_footprint(index: SearchIndex, rss_before: int) -> int:
    usage = getattr(index, "memory_usage", None)
    if callable(usage):
        try:
            return int(usage())
        except Exception as exc:
            logger.debug("memory_usage() failed, falling back to RSS delta: %s", exc)
    return max(0, _rss_bytes() - rss_before)


def search_with_timing(
    index: SearchIndex,
    queries: NDArray[np.float32],
    k: int,
) -> tuple[list[SearchResult], list[float]]:
    results: list[SearchResult] = []
    latencies: list[float] = []
    for i in range(queries.shape[0]):
        query = queries[i : i + 1]
        start = time.perf_counter()
        distances, ids = index.search(query, k)
        latencies.append(time.perf_counter() - start)
        results.append(SearchResult(ids=np.asarray(ids[0], dtype=np.int64), distances=np.asarray(distances[0])))
    return results, latencies


def validate_targets(
    thresholds: Thresholds,
    metrics: RecallMetrics,
    perf: PerformanceMetrics,
) -> list[str]:
    violations: list[str] = []
    recall_checks = (
        ("Recall@1", metrics.recall_at_1, thresholds.min_recall_at_1),
        ("Recall@10", metrics.recall_at_10, thresholds.min_recall_at_10),
        ("Recall@100", metrics.recall_at_100, thresholds.min_recall_at_100),
    )
    for label, measured, minimum in recall_checks:
        if minimum > 0 and measured < minimum:
            violations.append(f"{label} {measured:.4f} below target {minimum:.4f}")
    if thresholds.max_p99_latency_ms > 0 and perf.p99_ms > thresholds.max_p99_latency_ms:
        violations.append(f"P99 latency {perf.p99_ms:.3f}ms above target {thresholds.max_p99_latency_ms:.3f}ms")
    if thresholds.min_qps > 0 and perf.qps < thresholds.min_qps:
        violations.append(f"QPS {perf.qps:.1f} below target {thresholds.min_qps:.1f}")
    return violations


def release_index(index: SearchIndex, name: str) -> StageError | None:
    """Close ``index`` and return the failure instead of raising it."""
    try:
        index.close()
    except Exception as exc:
        logger.error("[%s] close failed: %s", name, exc)
        return StageError("close", str(exc) or type(exc).__name__, cause=exc)
    return None


def _train_subset(config: TestConfiguration, vectors: NDArray[np.float32]) -> NDArray[np.float32]:
    if config.train_size > 0 and config.train_size < vectors.shape[0]:
        return vectors[: config.train_size]
    return vectors


def _measure(
    config: TestConfiguration,
    bundle: DatasetBundle,
    ground_truth: list[GroundTruth],
    result: TestResult,
) -> tuple[RecallMetrics, PerformanceMetrics]:
    index: SearchIndex | None = None
    completed = False
    try:
        build_start = time.perf_counter()
        with _stage("build", config):
            rss_before = _rss_bytes()
            logger.info("[%s] building index: dim=%d, metric=%s", config.name, bundle.dim, bundle.metric)
            index = config.builder.build(bundle.dim, bundle.metric)

        if config.needs_training:
            with _stage("train", config):
                subset = _train_subset(config, bundle.vectors)
                logger.info("[%s] training on %d vectors", config.name, subset.shape[0])
                index.train(subset)
                if not index.is_trained:
                    raise RuntimeError("index does not report itself trained after training")

        with _stage("populate", config):
            logger.info("[%s] adding %d vectors", config.name, bundle.n)
            index.add(bundle.vectors)
            if index.ntotal != bundle.n:
                raise RuntimeError(f"expected {bundle.n} vectors after populate, index reports {index.ntotal}")
        result.build_time_s = time.perf_counter() - build_start
        with _stage("footprint", config):
            result.memory_bytes = measure_footprint(index, rss_before)

        with _stage("search", config):
            logger.info("[%s] searching %d queries with k=%d", config.name, bundle.nq, config.k)
            observed, latencies = search_with_timing(index, bundle.queries, config.k)

        with _stage("metrics", config):
            metrics = calculate_all_metrics(ground_truth, observed, config.k)
            perf = measure_latencies(latencies)
        completed = True
    finally:
        # A close failure never replaces the error of an earlier stage.
        close_error = release_index(index, config.name) if index is not None else None
        if completed and close_error is not None:
            raise close_error

    logger.info("[%s] %s", config.name, metrics.summary())
    logger.info("[%s] %s", config.name, perf.summary())
    return metrics, perf


def run_evaluation(
    config: TestConfiguration,
    *,
    cache: EvaluationCache | None = None,
    tracking_sink: TrackingSink | None = None,
    sweep: str | None = None,
) -> TestResult:
    """Run one configuration end to end and return its finalized result.

    A missing named dataset yields a skipped result when ``skip_if_no_data``
    is set. Any stage failure is attached to the result as a ``StageError``
    and leaves ``metrics``/``perf`` unset; threshold violations are all
    collected and mark the run failed without stopping it.
    """
    cache = cache or EvaluationCache()
    result = TestResult(config=config)
    run_start = time.perf_counter()

    try:
        with _stage("acquire", config):
            logger.info("[%s] acquiring data", config.name)
            try:
                bundle = cache.dataset(config)
            except DatasetNotFoundError as exc:
                if not config.skip_if_no_data:
                    raise
                logger.warning("[%s] skipped: %s", config.name, exc)
                result.skipped = True
                result.skip_reason = str(exc)
                return result
            logger.info(
                "[%s] dataset %s: n=%d, nq=%d, dim=%d, metric=%s",
                config.name,
                bundle.name,
                bundle.n,
                bundle.nq,
                bundle.dim,
                bundle.metric,
            )
            result.metric = bundle.metric
            ground_truth = cache.ground_truth_for(config, bundle)

        metrics, perf = _measure(config, bundle, ground_truth, result)
        result.metrics = metrics
        result.perf = perf

        logger.info("[%s] validating targets", config.name)
        result.violations = validate_targets(config.thresholds, metrics, perf)
        for violation in result.violations:
            logger.warning("[%s] target missed: %s", config.name, violation)
        result.passed = not result.violations
    except StageError as exc:
        result.error = exc
        result.stage = exc.stage
        result.metrics = None
        result.perf = None
        result.passed = False
    finally:
        logger.info(
            "[%s] finished with status=%s in %s",
            config.name,
            result.status,
            format_duration(time.perf_counter() - run_start),
        )
        if tracking_sink is not None:
            tracking_sink.log_result(sweep=sweep, result=result)
    return result


__all__ = [
    "EvaluationCache",
    "measure_footprint",
    "release_index",
    "run_evaluation",
    "search_with_timing",
    "validate_targets",
]
