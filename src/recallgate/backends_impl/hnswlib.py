from __future__ import annotations

import threading
from typing import Any

import numpy as np
from numpy.typing import NDArray

from .base import IndexBackend, SearchIndex
from .utils import _as_matrix, _pad_results


class HnswlibIndex:
    def __init__(
        self,
        dim: int,
        metric: str,
        *,
        M: int,
        ef_construction: int,
        ef_search: int,
        initial_capacity: int,
        num_threads: int,
    ):
        import hnswlib

        space = {"euclidean": "l2", "angular": "cosine", "dot": "ip"}[metric]
        self._dim = int(dim)
        self.metric = metric
        self.ef_search = int(ef_search)
        self._capacity = max(1, int(initial_capacity))
        self._index: Any = hnswlib.Index(space=space, dim=self._dim)
        self._index.init_index(max_elements=self._capacity, ef_construction=int(ef_construction), M=int(M))
        self._index.set_ef(self.ef_search)
        self._index.set_num_threads(int(num_threads))
        # hnswlib does not allow resize_index while queries are running.
        self._lock = threading.RLock()

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def ntotal(self) -> int:
        return int(self._index.get_current_count())

    @property
    def is_trained(self) -> bool:
        return True

    def train(self, vectors: NDArray[np.float32]) -> None:
        _as_matrix(vectors, self._dim)

    def add(self, vectors: NDArray[np.float32]) -> None:
        data = _as_matrix(vectors, self._dim)
        with self._lock:
            start = self.ntotal
            needed = start + data.shape[0]
            if needed > self._capacity:
                self._capacity = max(needed, self._capacity * 2)
                self._index.resize_index(self._capacity)
            self._index.add_items(data, np.arange(start, needed, dtype=np.int64))

    def search(self, queries: NDArray[np.float32], k: int) -> tuple[NDArray[np.float32], NDArray[np.int64]]:
        if k <= 0:
            raise ValueError("k must be positive")
        q = _as_matrix(queries, self._dim)
        with self._lock:
            count = self.ntotal
            if count == 0:
                return (
                    np.full((q.shape[0], k), np.inf, dtype=np.float32),
                    np.full((q.shape[0], k), -1, dtype=np.int64),
                )
            kk = min(k, count)
            # ef must cover k or hnswlib refuses the query.
            self._index.set_ef(max(self.ef_search, kk))
            labels, distances = self._index.knn_query(q, k=kk)
        return _pad_results(
            np.asarray(distances, dtype=np.float32),
            np.asarray(labels, dtype=np.int64),
            k,
            float("inf"),
        )

    def close(self) -> None:
        with self._lock:
            self._index = None


class HnswlibBackend(IndexBackend):
    name = "hnswlib"
    module_name = "hnswlib"

    def _create(self, dim: int, metric: str) -> SearchIndex:
        m = self._int_param("M", 16)
        return HnswlibIndex(
            dim,
            metric,
            M=m,
            ef_construction=max(self._int_param("ef_construction", 200), 2 * m),
            ef_search=self._int_param("ef_search", 64),
            initial_capacity=self._int_param("initial_capacity", 1024),
            num_threads=self._int_param("num_threads", 1),
        )


__all__ = ["HnswlibBackend", "HnswlibIndex"]
