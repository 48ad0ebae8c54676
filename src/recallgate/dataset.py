from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import h5py
import numpy as np
from numpy.typing import NDArray

from .errors import DatasetNotFoundError
from .metrics import canonical_metric
from .types import DatasetBundle

logger = logging.getLogger(__name__)

DATASET_SUFFIXES = (".hdf5", ".h5", ".npz", ".npy", ".fvecs")


@dataclass(slots=True, frozen=True)
class DatasetInfo:
    name: str
    description: str
    base_file: str
    query_file: str
    gt_file: str
    n: int
    nq: int
    dim: int


KNOWN_DATASETS: dict[str, DatasetInfo] = {
    "SIFT10K": DatasetInfo(
        name="SIFT10K",
        description="10K SIFT descriptors (subset of SIFT1M)",
        base_file="sift10k_base.fvecs",
        query_file="sift10k_query.fvecs",
        gt_file="sift10k_groundtruth.ivecs",
        n=10_000,
        nq=100,
        dim=128,
    ),
    "SIFT1M": DatasetInfo(
        name="SIFT1M",
        description="1M SIFT descriptors (128-dim)",
        base_file="sift1m_base.fvecs",
        query_file="sift1m_query.fvecs",
        gt_file="sift1m_groundtruth.ivecs",
        n=1_000_000,
        nq=10_000,
        dim=128,
    ),
    "GIST1M": DatasetInfo(
        name="GIST1M",
        description="1M GIST descriptors (960-dim)",
        base_file="gist1m_base.fvecs",
        query_file="gist1m_query.fvecs",
        gt_file="gist1m_groundtruth.ivecs",
        n=1_000_000,
        nq=1_000,
        dim=960,
    ),
}


def _read_vecs(path: str | Path, dtype: type[np.generic]) -> NDArray:
    raw = np.fromfile(path, dtype=np.int32)
    if raw.size == 0:
        return np.empty((0, 0), dtype=dtype)
    dim = int(raw[0])
    if dim <= 0 or raw.size % (dim + 1) != 0:
        raise ValueError(f"{path}: file size does not match record dimension {dim}")
    records = raw.reshape(-1, dim + 1)
    if not np.all(records[:, 0] == dim):
        bad = int(np.argmax(records[:, 0] != dim))
        raise ValueError(f"{path}: dimension mismatch at record {bad}: expected {dim}, got {int(records[bad, 0])}")
    return np.ascontiguousarray(records[:, 1:]).view(dtype)


def read_fvecs(path: str | Path) -> NDArray[np.float32]:
    return _read_vecs(path, np.float32).astype(np.float32, copy=False)


def read_ivecs(path: str | Path) -> NDArray[np.int64]:
    return _read_vecs(path, np.int32).astype(np.int64)


def _write_vecs(path: str | Path, array: NDArray, dtype: type[np.generic]) -> None:
    data = np.ascontiguousarray(array, dtype=dtype)
    if data.ndim != 2:
        raise ValueError("array must be 2-D")
    header = np.full((data.shape[0], 1), data.shape[1], dtype=np.int32)
    records = np.hstack([header, data.view(np.int32)])
    records.tofile(path)


def write_fvecs(path: str | Path, vectors: NDArray[np.float32]) -> None:
    _write_vecs(path, vectors, np.float32)


def write_ivecs(path: str | Path, ids: NDArray[np.int64]) -> None:
    _write_vecs(path, ids, np.int32)


def _decode_attr(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if hasattr(value, "item"):
        try:
            scalar = value.item()  # type: ignore[call-arg]
        except (TypeError, ValueError):
            scalar = value
        if isinstance(scalar, bytes):
            return scalar.decode("utf-8")
        return str(scalar)
    return str(value)


def _split_train_queries(
    array: NDArray[np.float32], query_fraction: float, seed: int
) -> tuple[NDArray[np.float32], NDArray[np.float32]]:
    if not (0.0 < query_fraction < 1.0):
        raise ValueError("query_fraction must be in (0, 1)")
    n = array.shape[0]
    if n < 2:
        raise ValueError("dataset must contain at least 2 vectors")
    query_count = max(1, int(n * query_fraction))
    rng = np.random.default_rng(seed)
    query_idx = rng.choice(n, size=query_count, replace=False)
    train_mask = np.ones(n, dtype=bool)
    train_mask[query_idx] = False
    return array[train_mask], array[query_idx]


def _maybe_sample(
    data: NDArray[np.float32],
    max_rows: int | None,
    seed: int,
) -> NDArray[np.float32]:
    if max_rows is None or data.shape[0] <= max_rows:
        return data
    rng = np.random.default_rng(seed)
    idx = rng.choice(data.shape[0], size=max_rows, replace=False)
    return data[idx]


def _sample_indices(size: int, max_rows: int, seed: int) -> NDArray[np.int64]:
    rng = np.random.default_rng(seed)
    idx = rng.choice(size, size=max_rows, replace=False)
    return np.asarray(idx, dtype=np.int64)


def _first_present(container: Any, keys: tuple[str, ...]) -> str | None:
    return next((key for key in keys if key in container), None)


def _read_container(
    container: Any,
    kind: str,
    query_fraction: float,
    seed: int,
) -> tuple[NDArray[np.float32], NDArray[np.float32], NDArray[np.int64] | None]:
    """Read ann-benchmarks style arrays from an open HDF5 file or NPZ archive."""
    if "train" not in container:
        raise ValueError(f"{kind} dataset must contain 'train'")
    train = np.asarray(container["train"], dtype=np.float32)

    query_key = _first_present(container, ("test", "queries"))
    if query_key is None:
        train, queries = _split_train_queries(train, query_fraction, seed)
    else:
        queries = np.asarray(container[query_key], dtype=np.float32)

    gt_key = _first_present(container, ("neighbors", "ground_truth"))
    ground_truth = None if gt_key is None else np.asarray(container[gt_key], dtype=np.int64)
    return train, queries, ground_truth


def _fvecs_siblings(source: Path) -> tuple[Path | None, Path | None]:
    # TEXMEX layout: <prefix>_base.fvecs, <prefix>_query.fvecs, <prefix>_groundtruth.ivecs
    stem = source.stem
    if not stem.endswith("_base"):
        return None, None
    prefix = stem[: -len("_base")]
    query = source.with_name(f"{prefix}_query.fvecs")
    gt = source.with_name(f"{prefix}_groundtruth.ivecs")
    return (query if query.exists() else None), (gt if gt.exists() else None)


def load_dataset(
    path: str | Path,
    metric: str | None = None,
    query_fraction: float = 0.1,
    seed: int = 42,
    max_train: int | None = None,
    max_queries: int | None = None,
    name: str | None = None,
) -> DatasetBundle:
    source = Path(path)
    suffix = source.suffix.lower()

    train: NDArray[np.float32]
    queries: NDArray[np.float32]
    ground_truth: NDArray[np.int64] | None = None
    inferred_metric: str | None = None

    if suffix in {".hdf5", ".h5"}:
        with h5py.File(source, "r") as f:
            train, queries, ground_truth = _read_container(f, "HDF5", query_fraction, seed)
            inferred_metric = _decode_attr(f.attrs.get("distance"))
    elif suffix == ".npz":
        with np.load(source) as data:
            train, queries, ground_truth = _read_container(data, "NPZ", query_fraction, seed)
            if "distance" in data:
                inferred_metric = _decode_attr(data["distance"])
    elif suffix == ".npy":
        all_vectors = np.asarray(np.load(source), dtype=np.float32)
        if all_vectors.ndim != 2:
            raise ValueError("NPY dataset must be a 2-D array of vectors")
        train, queries = _split_train_queries(all_vectors, query_fraction, seed)
    elif suffix == ".fvecs":
        train = read_fvecs(source)
        query_path, gt_path = _fvecs_siblings(source)
        if query_path is not None:
            queries = read_fvecs(query_path)
            if gt_path is not None:
                ground_truth = read_ivecs(gt_path)[: queries.shape[0]]
        else:
            train, queries = _split_train_queries(train, query_fraction, seed)
    else:
        raise ValueError(f"Unsupported dataset format: {suffix}")

    if train.ndim != 2 or queries.ndim != 2:
        raise ValueError("train and queries must be 2-D arrays")
    if train.shape[1] != queries.shape[1]:
        raise ValueError("train and queries dimensionality mismatch")

    metric_value = canonical_metric(metric or inferred_metric or "euclidean")
    train = _maybe_sample(train, max_train, seed)

    if ground_truth is not None:
        if max_train is not None:
            # Ground-truth indices point to the original train set, so they are invalid after sampling.
            ground_truth = None
        elif max_queries is not None and queries.shape[0] > max_queries:
            idx = _sample_indices(queries.shape[0], max_queries, seed + 1)
            queries = queries[idx]
            ground_truth = ground_truth[idx]
    else:
        queries = _maybe_sample(queries, max_queries, seed + 1)

    return DatasetBundle(
        vectors=np.ascontiguousarray(train, dtype=np.float32),
        queries=np.ascontiguousarray(queries, dtype=np.float32),
        metric=metric_value,
        ground_truth=ground_truth,
        name=name or source.stem,
    )


def resolve_dataset_path(name: str, data_dir: str | Path) -> Path:
    root = Path(data_dir)
    info = KNOWN_DATASETS.get(name)
    if info is not None:
        base = root / "embeddings" / info.base_file
        if base.exists():
            return base
        raise DatasetNotFoundError(name, f"missing {base}")

    candidates = [root / name]
    candidates.extend(root / f"{name}{suffix}" for suffix in DATASET_SUFFIXES)
    for candidate in candidates:
        if candidate.is_file() and candidate.suffix.lower() in DATASET_SUFFIXES:
            return candidate
    raise DatasetNotFoundError(name, f"no dataset file under {root}")


def load_named_dataset(
    name: str,
    data_dir: str | Path,
    metric: str | None = None,
    max_train: int | None = None,
    max_queries: int | None = None,
    seed: int = 42,
) -> DatasetBundle:
    path = resolve_dataset_path(name, data_dir)
    logger.info("loading dataset %s from %s", name, path)
    bundle = load_dataset(
        path,
        metric=metric,
        seed=seed,
        max_train=max_train,
        max_queries=max_queries,
        name=name,
    )
    info = KNOWN_DATASETS.get(name)
    if info is not None and bundle.dim != info.dim:
        raise ValueError(f"dataset {name}: expected dim={info.dim}, got {bundle.dim}")
    return bundle


def is_dataset_available(name: str, data_dir: str | Path) -> bool:
    try:
        resolve_dataset_path(name, data_dir)
    except DatasetNotFoundError:
        return False
    return True


__all__ = [
    "DatasetInfo",
    "KNOWN_DATASETS",
    "is_dataset_available",
    "load_dataset",
    "load_named_dataset",
    "read_fvecs",
    "read_ivecs",
    "resolve_dataset_path",
    "write_fvecs",
    "write_ivecs",
]
