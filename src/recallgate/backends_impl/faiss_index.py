from __future__ import annotations

import threading
from typing import Any

import numpy as np
from numpy.typing import NDArray

from .base import IndexBackend, SearchIndex
from .utils import _as_matrix, _normalize_rows, _pad_results, _worst_distance


class FaissIndex:
    """Wraps any index built from a faiss ``index_factory`` description."""

    def __init__(self, dim: int, metric: str, factory: str, search_params: dict[str, Any]):
        import faiss

        self._dim = int(dim)
        self.metric = metric
        self.factory = factory
        faiss_metric = faiss.METRIC_L2 if metric == "euclidean" else faiss.METRIC_INNER_PRODUCT
        self._index: Any = faiss.index_factory(self._dim, factory, faiss_metric)
        space = faiss.ParameterSpace()
        for key, value in search_params.items():
            space.set_index_parameter(self._index, key, value)
        # faiss indexes are not safe for concurrent add + search.
        self._lock = threading.Lock()

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def ntotal(self) -> int:
        return int(self._index.ntotal)

    @property
    def is_trained(self) -> bool:
        return bool(self._index.is_trained)

    def _prepare(self, vectors: NDArray[np.float32]) -> NDArray[np.float32]:
        data = _as_matrix(vectors, self._dim)
        if self.metric == "angular":
            data = _normalize_rows(data.copy())
        return data

    def train(self, vectors: NDArray[np.float32]) -> None:
        data = self._prepare(vectors)
        with self._lock:
            self._index.train(data)

    def add(self, vectors: NDArray[np.float32]) -> None:
        data = self._prepare(vectors)
        with self._lock:
            self._index.add(data)

    def search(self, queries: NDArray[np.float32], k: int) -> tuple[NDArray[np.float32], NDArray[np.int64]]:
        if k <= 0:
            raise ValueError("k must be positive")
        q = self._prepare(queries)
        with self._lock:
            distances, ids = self._index.search(q, k)
        return _pad_results(
            np.asarray(distances, dtype=np.float32),
            np.asarray(ids, dtype=np.int64),
            k,
            _worst_distance(self.metric),
        )

    def close(self) -> None:
        with self._lock:
            self._index.reset()


class FaissBackend(IndexBackend):
    name = "faiss"
    module_name = "faiss"

    def _create(self, dim: int, metric: str) -> SearchIndex:
        factory = str(self.params.get("factory", "Flat"))
        search_params: dict[str, Any] = {}
        if "nprobe" in self.params:
            search_params["nprobe"] = self._int_param("nprobe", 1)
        if "ef_search" in self.params:
            search_params["efSearch"] = self._int_param("ef_search", 16)
        for key, value in dict(self.params.get("search_params", {})).items():
            search_params[str(key)] = value
        return FaissIndex(dim, metric, factory, search_params)


__all__ = ["FaissBackend", "FaissIndex"]
