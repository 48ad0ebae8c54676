from __future__ import annotations

import numpy as np
from numpy.typing import NDArray


def _as_matrix(vectors: NDArray[np.float32], dim: int) -> NDArray[np.float32]:
    # Flat buffers are accepted and split into rows of `dim` components.
    data = np.asarray(vectors, dtype=np.float32)
    if data.ndim == 1:
        if data.size % dim != 0:
            raise ValueError(f"flat buffer of size {data.size} is not a multiple of dim={dim}")
        data = data.reshape(-1, dim)
    if data.ndim != 2 or data.shape[1] != dim:
        raise ValueError(f"expected vectors of dimension {dim}, got shape {data.shape}")
    return np.ascontiguousarray(data, dtype=np.float32)


def _normalize_rows(x: NDArray[np.float32]) -> NDArray[np.float32]:
    norms = np.linalg.norm(x, axis=1, keepdims=True)
    # Keep zero vectors unchanged.
    np.divide(x, norms, out=x, where=norms > 0)
    return x


def _pad_results(
    distances: NDArray[np.float32],
    ids: NDArray[np.int64],
    k: int,
    fill_distance: float,
) -> tuple[NDArray[np.float32], NDArray[np.int64]]:
    if ids.shape[1] >= k:
        return distances[:, :k], ids[:, :k]
    nq = ids.shape[0]
    padded_ids = np.full((nq, k), -1, dtype=np.int64)
    padded_dist = np.full((nq, k), fill_distance, dtype=np.float32)
    padded_ids[:, : ids.shape[1]] = ids
    padded_dist[:, : distances.shape[1]] = distances
    return padded_dist, padded_ids


def _worst_distance(metric: str) -> float:
    # Euclidean distances grow with dissimilarity; similarity scores shrink.
    return float("inf") if metric == "euclidean" else float("-inf")


__all__ = ["_as_matrix", "_normalize_rows", "_pad_results", "_worst_distance"]
