from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from .builder import IndexBuilderLike


@dataclass(slots=True)
class GroundTruth:
    ids: Sequence[int] | NDArray[np.int64]
    distances: Sequence[float] | NDArray[np.float32] | None = None


@dataclass(slots=True)
class SearchResult:
    ids: Sequence[int] | NDArray[np.int64]
    distances: Sequence[float] | NDArray[np.float32] | None = None


@dataclass(slots=True)
class RecallMetrics:
    recall_at_1: float = 0.0
    recall_at_10: float = 0.0
    recall_at_100: float = 0.0
    recall_at_k: float = 0.0
    precision: float = 0.0
    mrr: float = 0.0
    ndcg: float = 0.0
    k: int = 0

    def summary(self) -> str:
        return (
            f"Recall@1={self.recall_at_1:.4f}, Recall@10={self.recall_at_10:.4f}, "
            f"Recall@100={self.recall_at_100:.4f}, Recall@{self.k}={self.recall_at_k:.4f}, "
            f"Precision={self.precision:.4f}, MRR={self.mrr:.4f}, NDCG={self.ndcg:.4f}"
        )


@dataclass(slots=True)
class PerformanceMetrics:
    # All latencies are in seconds.
    p50_latency: float = 0.0
    p95_latency: float = 0.0
    p99_latency: float = 0.0
    min_latency: float = 0.0
    max_latency: float = 0.0
    avg_latency: float = 0.0
    qps: float = 0.0
    total_time: float = 0.0
    count: int = 0

    @property
    def p99_ms(self) -> float:
        return self.p99_latency * 1000.0

    def as_dict(self) -> dict[str, float]:
        return {
            "p50_ms": self.p50_latency * 1000.0,
            "p95_ms": self.p95_latency * 1000.0,
            "p99_ms": self.p99_latency * 1000.0,
            "min_ms": self.min_latency * 1000.0,
            "max_ms": self.max_latency * 1000.0,
            "avg_ms": self.avg_latency * 1000.0,
            "qps": self.qps,
            "total_time_s": self.total_time,
            "count": float(self.count),
        }

    def summary(self) -> str:
        return (
            f"QPS={self.qps:.0f}, P50={self.p50_latency * 1000.0:.3f}ms, "
            f"P95={self.p95_latency * 1000.0:.3f}ms, P99={self.p99_latency * 1000.0:.3f}ms, "
            f"Avg={self.avg_latency * 1000.0:.3f}ms"
        )


@dataclass(slots=True)
class DatasetBundle:
    vectors: NDArray[np.float32]
    queries: NDArray[np.float32]
    metric: str
    ground_truth: NDArray[np.int64] | None = None
    name: str | None = None

    @property
    def n(self) -> int:
        return int(self.vectors.shape[0])

    @property
    def nq(self) -> int:
        return int(self.queries.shape[0])

    @property
    def dim(self) -> int:
        return int(self.vectors.shape[1])


@dataclass(slots=True, frozen=True)
class SyntheticSpec:
    n: int
    dim: int
    n_queries: int
    distribution: str = "uniform"
    seed: int = 42
    num_clusters: int | None = None
    sparsity: float = 0.8
    # Standard deviation of the noise added to corpus rows to form queries; None draws fresh queries.
    query_noise: float | None = None


@dataclass(slots=True)
class Thresholds:
    min_recall_at_1: float = 0.0
    min_recall_at_10: float = 0.0
    min_recall_at_100: float = 0.0
    max_p99_latency_ms: float = 0.0
    min_qps: float = 0.0


TARGET_PRESETS: dict[str, Thresholds] = {
    "high-precision": Thresholds(min_recall_at_1=0.99, min_recall_at_10=0.99, min_recall_at_100=0.98),
    "balanced": Thresholds(min_recall_at_1=0.95, min_recall_at_10=0.95, min_recall_at_100=0.90),
    "high-throughput": Thresholds(min_recall_at_1=0.80, min_recall_at_10=0.85, min_recall_at_100=0.80),
    "approximate": Thresholds(min_recall_at_1=0.70, min_recall_at_10=0.75, min_recall_at_100=0.70),
}


@dataclass(slots=True)
class TestConfiguration:
    name: str
    builder: IndexBuilderLike
    k: int = 10
    # None takes the distance recorded in the dataset file, else euclidean.
    metric: str | None = None
    needs_training: bool = False
    train_size: int = 0
    dataset: str | None = None
    data_dir: str | None = None
    synthetic: SyntheticSpec | None = None
    thresholds: Thresholds = field(default_factory=Thresholds)
    skip_if_no_data: bool = False
    max_train: int | None = None
    max_queries: int | None = None
    gt_batch_size: int = 64

    # Keep pytest from collecting this record as a test class.
    __test__ = False


@dataclass(slots=True)
class TestResult:
    config: TestConfiguration
    metrics: RecallMetrics | None = None
    perf: PerformanceMetrics | None = None
    memory_bytes: int = 0
    build_time_s: float = 0.0
    passed: bool = False
    skipped: bool = False
    skip_reason: str | None = None
    error: BaseException | None = None
    stage: str | None = None
    violations: list[str] = field(default_factory=list)
    # Distance actually used for the run once the dataset is known.
    metric: str | None = None

    __test__ = False

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        if self.error is not None:
            return "error"
        return "passed" if self.passed else "failed"

    def as_dict(self) -> dict[str, Any]:
        builder = self.config.builder
        describe = getattr(builder, "describe", None)
        return {
            "name": self.config.name,
            "status": self.status,
            "builder": describe() if callable(describe) else repr(builder),
            "k": self.config.k,
            "metric": self.metric or self.config.metric,
            "metrics": None if self.metrics is None else {
                "recall_at_1": self.metrics.recall_at_1,
                "recall_at_10": self.metrics.recall_at_10,
                "recall_at_100": self.metrics.recall_at_100,
                "recall_at_k": self.metrics.recall_at_k,
                "precision": self.metrics.precision,
                "mrr": self.metrics.mrr,
                "ndcg": self.metrics.ndcg,
            },
            "perf": None if self.perf is None else self.perf.as_dict(),
            "memory_bytes": int(self.memory_bytes),
            "build_time_s": float(self.build_time_s),
            "violations": list(self.violations),
            "skip_reason": self.skip_reason,
            "error": None if self.error is None else str(self.error),
            "stage": self.stage,
        }
