from __future__ import annotations

import threading
from typing import Any

import numpy as np
from numpy.typing import NDArray

from .base import IndexBackend, SearchIndex
from .utils import _as_matrix, _pad_results


class AnnoyIndex:
    """Annoy forests are immutable once built, so inserts mark the forest stale
    and the next search rebuilds it."""

    def __init__(self, dim: int, metric: str, *, n_trees: int, search_k: int):
        self._dim = int(dim)
        self.metric = metric
        self.n_trees = int(n_trees)
        self.search_k = int(search_k)
        self._annoy_metric = {"angular": "angular", "euclidean": "euclidean", "dot": "dot"}[metric]
        self._index: Any = self._new_index()
        self._count = 0
        self._built = False
        self._lock = threading.Lock()

    def _new_index(self) -> Any:
        from annoy import AnnoyIndex as _Annoy

        return _Annoy(self._dim, self._annoy_metric)

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def ntotal(self) -> int:
        return self._count

    @property
    def is_trained(self) -> bool:
        return True

    def train(self, vectors: NDArray[np.float32]) -> None:
        _as_matrix(vectors, self._dim)

    def add(self, vectors: NDArray[np.float32]) -> None:
        data = _as_matrix(vectors, self._dim)
        with self._lock:
            if self._built:
                self._index.unbuild()
                self._built = False
            for offset, vector in enumerate(data):
                self._index.add_item(self._count + offset, vector.tolist())
            self._count += data.shape[0]

    def search(self, queries: NDArray[np.float32], k: int) -> tuple[NDArray[np.float32], NDArray[np.int64]]:
        if k <= 0:
            raise ValueError("k must be positive")
        q = _as_matrix(queries, self._dim)
        with self._lock:
            if not self._built and self._count > 0:
                self._index.build(self.n_trees)
                self._built = True
            ids = np.full((q.shape[0], k), -1, dtype=np.int64)
            distances = np.full((q.shape[0], k), np.inf, dtype=np.float32)
            if not self._built:
                return distances, ids
            for row, vector in enumerate(q):
                found, dist = self._index.get_nns_by_vector(
                    vector.tolist(), k, search_k=self.search_k, include_distances=True
                )
                ids[row, : len(found)] = found
                distances[row, : len(dist)] = dist
        return _pad_results(distances, ids, k, float("inf"))

    def close(self) -> None:
        with self._lock:
            self._index.unload()


class AnnoyBackend(IndexBackend):
    name = "annoy"
    module_name = "annoy"

    def _create(self, dim: int, metric: str) -> SearchIndex:
        return AnnoyIndex(
            dim,
            metric,
            n_trees=self._int_param("n_trees", 100),
            search_k=self._int_param("search_k", -1),
        )


__all__ = ["AnnoyBackend", "AnnoyIndex"]
