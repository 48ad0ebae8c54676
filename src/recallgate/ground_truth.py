from __future__ import annotations

import hashlib
import logging
from pathlib import Path

import numpy as np
from numpy.typing import NDArray

from .backends_impl.flat import FlatIndex
from .metrics import canonical_metric
from .types import GroundTruth

logger = logging.getLogger(__name__)

CACHE_VERSION = 1
CACHE_FILE_PREFIX = "gt_cache_"


def compute_ground_truth(
    vectors: NDArray[np.float32],
    queries: NDArray[np.float32],
    k: int,
    metric: str,
    batch_size: int = 64,
) -> list[GroundTruth]:
    if k <= 0:
        raise ValueError("k must be positive")
    if vectors.ndim != 2 or queries.ndim != 2:
        raise ValueError("vectors and queries must be 2-D arrays")
    if vectors.shape[1] != queries.shape[1]:
        raise ValueError("vectors and queries must share dimensionality")

    metric = canonical_metric(metric)
    if metric not in {"euclidean", "angular", "dot"}:
        raise ValueError(f"Unsupported metric for exact search: {metric}")

    k = min(k, vectors.shape[0])
    index = FlatIndex(vectors.shape[1], metric, batch_size=batch_size)
    try:
        index.add(vectors)
        distances, ids = index.search(queries, k)
    finally:
        index.close()
    return [GroundTruth(ids=ids[i].copy(), distances=distances[i].copy()) for i in range(ids.shape[0])]


def ground_truth_from_neighbors(neighbors: NDArray[np.int64], k: int | None = None) -> list[GroundTruth]:
    array = np.asarray(neighbors, dtype=np.int64)
    if array.ndim != 2:
        raise ValueError("neighbors must be a 2-D array")
    if k is not None:
        array = array[:, :k]
    return [GroundTruth(ids=row.copy()) for row in array]


def ground_truth_key(
    vectors: NDArray[np.float32],
    queries: NDArray[np.float32],
    k: int,
    metric: str,
) -> str:
    hasher = hashlib.sha256()
    hasher.update(np.ascontiguousarray(vectors, dtype=np.float32).tobytes())
    hasher.update(np.ascontiguousarray(queries, dtype=np.float32).tobytes())
    hasher.update(f"_d{vectors.shape[1]}_k{k}_m{canonical_metric(metric)}".encode("utf-8"))
    return hasher.hexdigest()[:16]


class GroundTruthCache:
    """Memoizes exact search results so each dataset is scanned once per run.

    With ``cache_dir`` set, results are also persisted as ``.npz`` files and
    reused across processes when the data digest, shape and metric match.
    """

    def __init__(self, cache_dir: str | Path | None = None, batch_size: int = 64):
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self.batch_size = batch_size
        self._memory: dict[str, list[GroundTruth]] = {}
        self.computed = 0

    @staticmethod
    def _path(cache_dir: Path, key: str) -> Path:
        return cache_dir / f"{CACHE_FILE_PREFIX}{key}.npz"

    def _load(self, key: str, nq: int, k: int, metric: str) -> list[GroundTruth] | None:
        cache_dir = self.cache_dir
        if cache_dir is None:
            return None
        path = self._path(cache_dir, key)
        if not path.exists():
            return None
        try:
            with np.load(path) as data:
                version = int(data["version"])
                cached_metric = str(data["metric"])
                ids = np.asarray(data["ids"], dtype=np.int64)
                distances = np.asarray(data["distances"], dtype=np.float32)
        except (OSError, KeyError, ValueError) as exc:
            logger.warning("ignoring unreadable ground-truth cache %s: %s", path, exc)
            return None
        if version != CACHE_VERSION or cached_metric != metric or ids.shape[0] != nq or ids.shape[1] != k:
            logger.info("ground-truth cache %s is stale; recomputing", path.name)
            return None
        return [GroundTruth(ids=ids[i], distances=distances[i]) for i in range(ids.shape[0])]

    def _save(self, key: str, ground_truth: list[GroundTruth], metric: str) -> None:
        cache_dir = self.cache_dir
        if cache_dir is None or not ground_truth:
            return
        cache_dir.mkdir(parents=True, exist_ok=True)
        ids = np.stack([np.asarray(gt.ids, dtype=np.int64) for gt in ground_truth])
        distances = np.stack([np.asarray(gt.distances, dtype=np.float32) for gt in ground_truth])
        np.savez(
            self._path(cache_dir, key),
            version=np.int64(CACHE_VERSION),
            metric=np.str_(metric),
            ids=ids,
            distances=distances,
        )

    def get_or_compute(
        self,
        vectors: NDArray[np.float32],
        queries: NDArray[np.float32],
        k: int,
        metric: str,
    ) -> list[GroundTruth]:
        metric = canonical_metric(metric)
        effective_k = min(k, vectors.shape[0])
        key = ground_truth_key(vectors, queries, effective_k, metric)
        cached = self._memory.get(key)
        if cached is not None:
            return cached

        cached = self._load(key, queries.shape[0], effective_k, metric)
        if cached is None:
            logger.info(
                "computing exact ground truth: n=%d, nq=%d, k=%d, metric=%s",
                vectors.shape[0],
                queries.shape[0],
                effective_k,
                metric,
            )
            cached = compute_ground_truth(vectors, queries, effective_k, metric, batch_size=self.batch_size)
            self.computed += 1
            self._save(key, cached, metric)
        self._memory[key] = cached
        return cached

    def clear(self) -> int:
        self._memory.clear()
        if self.cache_dir is None or not self.cache_dir.exists():
            return 0
        removed = 0
        for path in self.cache_dir.glob(f"{CACHE_FILE_PREFIX}*.npz"):
            path.unlink()
            removed += 1
        return removed


__all__ = [
    "GroundTruthCache",
    "compute_ground_truth",
    "ground_truth_from_neighbors",
    "ground_truth_key",
]
