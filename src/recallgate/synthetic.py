from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from .backends_impl.utils import _normalize_rows
from .types import DatasetBundle, SyntheticSpec

DISTRIBUTIONS = ("uniform", "gaussian_clustered", "power_law", "normalized", "sparse")

CLUSTER_SPREAD = 100.0
CLUSTER_NOISE = 5.0
POWER_LAW_ALPHA = 1.5
POWER_LAW_SCALE = 100.0


def _uniform(rng: np.random.Generator, n: int, dim: int) -> NDArray[np.float32]:
    return rng.random((n, dim), dtype=np.float32)


def _clustered(
    rng: np.random.Generator, centers: NDArray[np.float32], n: int
) -> tuple[NDArray[np.float32], NDArray[np.int64]]:
    labels = rng.integers(0, centers.shape[0], size=n)
    noise = rng.normal(scale=CLUSTER_NOISE, size=(n, centers.shape[1])).astype(np.float32)
    return centers[labels] + noise, labels.astype(np.int64)


def _power_law(rng: np.random.Generator, n: int, dim: int) -> NDArray[np.float32]:
    # Row i sits at distance 100 * i^-1.5 from the origin, row 0 at the origin.
    directions = rng.uniform(-1.0, 1.0, size=(n, dim)).astype(np.float32)
    directions = _normalize_rows(directions)
    ranks = np.arange(n, dtype=np.float64)
    radius = np.zeros(n, dtype=np.float64)
    radius[1:] = np.power(ranks[1:], -POWER_LAW_ALPHA) * POWER_LAW_SCALE
    out = directions * radius[:, None].astype(np.float32)
    if n > 0:
        out[0] = 0.0
    return out


def _normalized(rng: np.random.Generator, n: int, dim: int) -> NDArray[np.float32]:
    return _normalize_rows(rng.normal(size=(n, dim)).astype(np.float32))


def _sparse(rng: np.random.Generator, n: int, dim: int, sparsity: float) -> NDArray[np.float32]:
    values = rng.random((n, dim), dtype=np.float32)
    mask = rng.random((n, dim)) >= sparsity
    return np.where(mask, values, np.float32(0.0)).astype(np.float32)


def _validate(spec: SyntheticSpec) -> None:
    if spec.n <= 0:
        raise ValueError("synthetic n must be > 0")
    if spec.dim <= 0:
        raise ValueError("synthetic dim must be > 0")
    if spec.n_queries <= 0:
        raise ValueError("synthetic n_queries must be > 0")
    if spec.distribution not in DISTRIBUTIONS:
        raise ValueError(f"Unknown distribution '{spec.distribution}'. Expected one of: {', '.join(DISTRIBUTIONS)}")
    if not (0.0 <= spec.sparsity < 1.0):
        raise ValueError("sparsity must be in [0, 1)")
    if spec.query_noise is not None and spec.query_noise < 0:
        raise ValueError("query_noise must be >= 0")


def generate_synthetic(spec: SyntheticSpec, metric: str = "euclidean") -> DatasetBundle:
    """Generate a reproducible corpus and query set for ``spec``.

    Queries are drawn from the same distribution as the corpus. Clustered
    queries reuse the corpus cluster centers, and power-law queries fall back
    to uniform vectors since that distribution is defined by corpus rank.
    With ``query_noise`` set, queries are instead noisy copies of corpus rows.
    """
    _validate(spec)
    rng = np.random.default_rng(spec.seed)

    if spec.distribution == "uniform":
        vectors = _uniform(rng, spec.n, spec.dim)
        queries = _uniform(rng, spec.n_queries, spec.dim)
    elif spec.distribution == "gaussian_clustered":
        num_clusters = spec.num_clusters or max(1, spec.n // 10)
        centers = (rng.random((num_clusters, spec.dim), dtype=np.float32) * CLUSTER_SPREAD).astype(np.float32)
        vectors, _ = _clustered(rng, centers, spec.n)
        queries, _ = _clustered(rng, centers, spec.n_queries)
    elif spec.distribution == "power_law":
        vectors = _power_law(rng, spec.n, spec.dim)
        queries = _uniform(rng, spec.n_queries, spec.dim)
    elif spec.distribution == "normalized":
        vectors = _normalized(rng, spec.n, spec.dim)
        queries = _normalized(rng, spec.n_queries, spec.dim)
    else:
        vectors = _sparse(rng, spec.n, spec.dim, spec.sparsity)
        queries = _sparse(rng, spec.n_queries, spec.dim, spec.sparsity)

    if spec.query_noise is not None:
        queries = perturbed_queries(vectors, spec.n_queries, spec.query_noise, seed=spec.seed + 1)

    return DatasetBundle(
        vectors=np.ascontiguousarray(vectors, dtype=np.float32),
        queries=np.ascontiguousarray(queries, dtype=np.float32),
        metric=metric,
        name=f"synthetic-{spec.distribution}-{spec.n}x{spec.dim}",
    )


def perturbed_queries(
    vectors: NDArray[np.float32],
    n_queries: int,
    noise_level: float,
    seed: int = 42,
) -> NDArray[np.float32]:
    """Queries built as noisy copies of corpus rows spread evenly across the corpus."""
    n, dim = vectors.shape
    if n == 0:
        raise ValueError("cannot perturb an empty corpus")
    rng = np.random.default_rng(seed)
    base = (np.arange(n_queries, dtype=np.int64) * n) // n_queries
    offsets = rng.integers(0, max(1, n // n_queries), size=n_queries)
    src = (base + offsets) % n
    noise = rng.normal(scale=noise_level, size=(n_queries, dim)).astype(np.float32)
    return np.ascontiguousarray(vectors[src] + noise, dtype=np.float32)


__all__ = ["DISTRIBUTIONS", "generate_synthetic", "perturbed_queries"]
