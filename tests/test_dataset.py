import h5py
import numpy as np
import pytest

from recallgate.dataset import (
    KNOWN_DATASETS,
    is_dataset_available,
    load_dataset,
    load_named_dataset,
    read_fvecs,
    read_ivecs,
    write_fvecs,
    write_ivecs,
)
from recallgate.errors import DatasetNotFoundError


def test_load_dataset_keeps_query_ground_truth_alignment(tmp_path):
    train = np.zeros((20, 4), dtype=np.float32)
    queries = np.array([[float(i), 1.0, 2.0, 3.0] for i in range(10)], dtype=np.float32)
    neighbors = np.array([[i, (i + 1) % 20, (i + 2) % 20] for i in range(10)], dtype=np.int64)
    dataset_path = tmp_path / "toy.npz"
    np.savez(dataset_path, train=train, queries=queries, neighbors=neighbors, distance="euclidean")

    bundle = load_dataset(dataset_path, metric=None, max_queries=4, seed=123)
    assert bundle.ground_truth is not None
    assert bundle.queries.shape[0] == 4
    assert bundle.ground_truth.shape[0] == 4
    assert bundle.metric == "euclidean"

    for query_vec, gt in zip(bundle.queries, bundle.ground_truth):
        row_id = int(query_vec[0])
        assert gt[0] == row_id


def test_load_dataset_hdf5_reads_distance_attr(tmp_path):
    path = tmp_path / "toy.hdf5"
    with h5py.File(path, "w") as f:
        f.create_dataset("train", data=np.ones((12, 3), dtype=np.float32))
        f.create_dataset("test", data=np.ones((2, 3), dtype=np.float32))
        f.attrs["distance"] = "cosine"

    bundle = load_dataset(path)
    assert bundle.metric == "angular"
    assert bundle.n == 12
    assert bundle.nq == 2
    assert bundle.ground_truth is None


def test_load_dataset_npy_splits_queries(tmp_path):
    path = tmp_path / "vectors.npy"
    np.save(path, np.arange(200, dtype=np.float32).reshape(50, 4))
    bundle = load_dataset(path, query_fraction=0.2)
    assert bundle.nq == 10
    assert bundle.n == 40
    assert bundle.dim == 4


def test_fvecs_and_ivecs_round_trip(tmp_path):
    vectors = np.arange(12, dtype=np.float32).reshape(3, 4) / 7.0
    ids = np.array([[3, 1], [0, 2]], dtype=np.int64)
    write_fvecs(tmp_path / "a.fvecs", vectors)
    write_ivecs(tmp_path / "a.ivecs", ids)
    np.testing.assert_array_equal(read_fvecs(tmp_path / "a.fvecs"), vectors)
    np.testing.assert_array_equal(read_ivecs(tmp_path / "a.ivecs"), ids)


def test_read_fvecs_rejects_truncated_file(tmp_path):
    path = tmp_path / "bad.fvecs"
    write_fvecs(path, np.ones((2, 4), dtype=np.float32))
    raw = path.read_bytes()
    path.write_bytes(raw[:-4])
    with pytest.raises(ValueError):
        read_fvecs(path)


def test_load_named_dataset_uses_texmex_layout(tmp_path):
    info = KNOWN_DATASETS["SIFT10K"]
    embeddings = tmp_path / "embeddings"
    embeddings.mkdir()
    rng = np.random.default_rng(0)
    write_fvecs(embeddings / info.base_file, rng.random((30, info.dim), dtype=np.float32))
    write_fvecs(embeddings / info.query_file, rng.random((4, info.dim), dtype=np.float32))
    write_ivecs(embeddings / info.gt_file, np.tile(np.arange(5, dtype=np.int64), (4, 1)))

    bundle = load_named_dataset("SIFT10K", tmp_path)
    assert bundle.name == "SIFT10K"
    assert bundle.n == 30
    assert bundle.nq == 4
    assert bundle.ground_truth is not None
    assert bundle.ground_truth.shape == (4, 5)
    assert is_dataset_available("SIFT10K", tmp_path)


def test_load_named_dataset_by_file_name(tmp_path):
    np.savez(tmp_path / "toy.npz", train=np.ones((10, 2), dtype=np.float32), queries=np.ones((2, 2), dtype=np.float32))
    bundle = load_named_dataset("toy", tmp_path)
    assert bundle.n == 10
    assert bundle.name == "toy"


def test_missing_named_dataset_raises_not_found(tmp_path):
    with pytest.raises(DatasetNotFoundError) as excinfo:
        load_named_dataset("SIFT1M", tmp_path)
    assert excinfo.value.name == "SIFT1M"
    assert isinstance(excinfo.value, FileNotFoundError)
    assert not is_dataset_available("nope", tmp_path)
