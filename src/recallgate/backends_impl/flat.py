from __future__ import annotations

import threading

import numpy as np
from numpy.typing import NDArray

from .base import IndexBackend, SearchIndex
from .utils import _as_matrix, _normalize_rows, _pad_results, _worst_distance


class FlatIndex:
    """Exact linear-scan index over numpy arrays.

    Euclidean search reports squared L2 distances (ascending); dot and angular
    search report similarity scores (descending). Angular vectors are stored
    normalized so the score is the cosine similarity.
    """

    def __init__(self, dim: int, metric: str = "euclidean", batch_size: int = 64):
        self._dim = int(dim)
        self.metric = metric
        self.batch_size = max(1, int(batch_size))
        self._write_lock = threading.Lock()
        self._buffer = np.empty((0, self._dim), dtype=np.float32)
        self._buffer_sq = np.empty((0,), dtype=np.float32)
        # Readers only look at rows below the published count; rows past it
        # are written before the count moves.
        self._count = 0

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def ntotal(self) -> int:
        return self._count

    def _snapshot(self) -> tuple[NDArray[np.float32], NDArray[np.float32]]:
        with self._write_lock:
            count = self._count
            return self._buffer[:count], self._buffer_sq[:count]

    def _reserve(self, extra: int) -> None:
        needed = self._count + extra
        capacity = self._buffer.shape[0]
        if needed <= capacity:
            return
        new_capacity = max(needed, capacity * 2, 1024)
        buffer = np.empty((new_capacity, self._dim), dtype=np.float32)
        buffer_sq = np.empty((new_capacity,), dtype=np.float32)
        buffer[: self._count] = self._buffer[: self._count]
        buffer_sq[: self._count] = self._buffer_sq[: self._count]
        self._buffer, self._buffer_sq = buffer, buffer_sq

    @property
    def is_trained(self) -> bool:
        return True

    def train(self, vectors: NDArray[np.float32]) -> None:
        _as_matrix(vectors, self._dim)

    def add(self, vectors: NDArray[np.float32]) -> None:
        data = _as_matrix(vectors, self._dim)
        if self.metric == "angular":
            data = _normalize_rows(data.copy())
        sq = np.sum(data * data, axis=1)
        with self._write_lock:
            self._reserve(data.shape[0])
            end = self._count + data.shape[0]
            self._buffer[self._count : end] = data
            self._buffer_sq[self._count : end] = sq
            self._count = end

    def search(self, queries: NDArray[np.float32], k: int) -> tuple[NDArray[np.float32], NDArray[np.int64]]:
        if k <= 0:
            raise ValueError("k must be positive")
        q_all = _as_matrix(queries, self._dim)
        data, data_sq = self._snapshot()
        nq = q_all.shape[0]
        fill = _worst_distance(self.metric)
        if data.shape[0] == 0:
            return (
                np.full((nq, k), fill, dtype=np.float32),
                np.full((nq, k), -1, dtype=np.int64),
            )

        kk = min(k, data.shape[0])
        out_ids = np.empty((nq, kk), dtype=np.int64)
        out_dist = np.empty((nq, kk), dtype=np.float32)
        for start in range(0, nq, self.batch_size):
            end = min(start + self.batch_size, nq)
            q = q_all[start:end]

            if self.metric in {"angular", "dot"}:
                if self.metric == "angular":
                    q = _normalize_rows(q.copy())
                scores = q @ data.T
                partial = np.argpartition(-scores, kth=kk - 1, axis=1)[:, :kk]
                rows = np.arange(partial.shape[0])[:, None]
                ranking = np.argsort(-scores[rows, partial], axis=1, kind="stable")
                chosen = partial[rows, ranking]
                out_ids[start:end] = chosen
                out_dist[start:end] = scores[rows, chosen]
                continue

            # Squared Euclidean distance.
            q_sq = np.sum(q * q, axis=1, keepdims=True)
            distances = np.maximum(q_sq + data_sq[None, :] - (2.0 * (q @ data.T)), 0.0)
            partial = np.argpartition(distances, kth=kk - 1, axis=1)[:, :kk]
            rows = np.arange(partial.shape[0])[:, None]
            ranking = np.argsort(distances[rows, partial], axis=1, kind="stable")
            chosen = partial[rows, ranking]
            out_ids[start:end] = chosen
            out_dist[start:end] = distances[rows, chosen]

        return _pad_results(out_dist, out_ids, k, fill)

    def memory_usage(self) -> int:
        return int(self._buffer.nbytes + self._buffer_sq.nbytes)

    def close(self) -> None:
        with self._write_lock:
            self._buffer = np.empty((0, self._dim), dtype=np.float32)
            self._buffer_sq = np.empty((0,), dtype=np.float32)
            self._count = 0


class FlatBackend(IndexBackend):
    name = "flat"
    module_name = "numpy"

    def _create(self, dim: int, metric: str) -> SearchIndex:
        return FlatIndex(dim, metric, batch_size=self._int_param("batch_size", 64))


__all__ = ["FlatBackend", "FlatIndex"]
