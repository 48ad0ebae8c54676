import numpy as np
import pytest

from recallgate.ground_truth import (
    GroundTruthCache,
    compute_ground_truth,
    ground_truth_from_neighbors,
    ground_truth_key,
)


def _brute_force(vectors: np.ndarray, queries: np.ndarray, k: int) -> np.ndarray:
    d = ((queries[:, None, :] - vectors[None, :, :]) ** 2).sum(axis=2)
    return np.argsort(d, axis=1, kind="stable")[:, :k]


def test_compute_ground_truth_euclidean():
    vectors = np.array([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]], dtype=np.float32)
    queries = np.array([[0.2, 0.1], [1.8, 1.9]], dtype=np.float32)
    gt = compute_ground_truth(vectors, queries, k=2, metric="euclidean", batch_size=1)
    assert len(gt) == 2
    assert list(gt[0].ids) == [0, 1]
    assert list(gt[1].ids) == [2, 1]
    assert gt[0].distances is not None
    assert gt[0].distances[0] == pytest.approx(0.05, abs=1e-5)


def test_compute_ground_truth_matches_brute_force():
    rng = np.random.default_rng(3)
    vectors = rng.normal(size=(300, 8)).astype(np.float32)
    queries = rng.normal(size=(20, 8)).astype(np.float32)
    gt = compute_ground_truth(vectors, queries, k=5, metric="l2", batch_size=7)
    expected = _brute_force(vectors, queries, 5)
    for row, want in zip(gt, expected):
        assert set(int(x) for x in row.ids) == set(int(x) for x in want)


def test_compute_ground_truth_angular_prefers_direction():
    vectors = np.array([[10.0, 0.0], [0.0, 1.0], [-1.0, 0.0]], dtype=np.float32)
    queries = np.array([[1.0, 0.1]], dtype=np.float32)
    gt = compute_ground_truth(vectors, queries, k=1, metric="cosine")
    assert int(gt[0].ids[0]) == 0


def test_compute_ground_truth_clamps_k_to_corpus():
    vectors = np.eye(3, dtype=np.float32)
    queries = np.eye(3, dtype=np.float32)[:1]
    gt = compute_ground_truth(vectors, queries, k=10, metric="euclidean")
    assert len(gt[0].ids) == 3
    assert int(gt[0].ids[0]) == 0


def test_compute_ground_truth_rejects_bad_input():
    vectors = np.zeros((4, 3), dtype=np.float32)
    with pytest.raises(ValueError):
        compute_ground_truth(vectors, np.zeros((2, 2), dtype=np.float32), k=1, metric="euclidean")
    with pytest.raises(ValueError):
        compute_ground_truth(vectors, np.zeros((2, 3), dtype=np.float32), k=0, metric="euclidean")
    with pytest.raises(ValueError):
        compute_ground_truth(vectors, np.zeros((2, 3), dtype=np.float32), k=1, metric="hamming")


def test_ground_truth_from_neighbors_truncates():
    neighbors = np.array([[1, 2, 3], [4, 5, 6]], dtype=np.int64)
    gt = ground_truth_from_neighbors(neighbors, k=2)
    assert [list(row.ids) for row in gt] == [[1, 2], [4, 5]]
    assert gt[0].distances is None


def test_cache_computes_once_per_dataset():
    rng = np.random.default_rng(0)
    vectors = rng.normal(size=(50, 4)).astype(np.float32)
    queries = rng.normal(size=(5, 4)).astype(np.float32)
    cache = GroundTruthCache()
    first = cache.get_or_compute(vectors, queries, 3, "euclidean")
    second = cache.get_or_compute(vectors, queries, 3, "euclidean")
    assert first is second
    assert cache.computed == 1

    cache.get_or_compute(vectors, queries, 4, "euclidean")
    assert cache.computed == 2


def test_cache_persists_to_disk(tmp_path):
    rng = np.random.default_rng(1)
    vectors = rng.normal(size=(40, 4)).astype(np.float32)
    queries = rng.normal(size=(6, 4)).astype(np.float32)

    writer = GroundTruthCache(cache_dir=tmp_path)
    original = writer.get_or_compute(vectors, queries, 5, "euclidean")
    files = list(tmp_path.glob("gt_cache_*.npz"))
    assert len(files) == 1

    reader = GroundTruthCache(cache_dir=tmp_path)
    loaded = reader.get_or_compute(vectors, queries, 5, "euclidean")
    assert reader.computed == 0
    for a, b in zip(original, loaded):
        assert list(a.ids) == list(b.ids)

    assert reader.clear() == 1
    assert not list(tmp_path.glob("gt_cache_*.npz"))


def test_ground_truth_key_depends_on_parameters():
    vectors = np.zeros((4, 2), dtype=np.float32)
    queries = np.ones((1, 2), dtype=np.float32)
    base = ground_truth_key(vectors, queries, 2, "euclidean")
    assert base == ground_truth_key(vectors, queries, 2, "l2")
    assert base != ground_truth_key(vectors, queries, 3, "euclidean")
    assert base != ground_truth_key(vectors, queries, 2, "dot")


def test_memory_only_cache_writes_nothing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    rng = np.random.default_rng(2)
    vectors = rng.normal(size=(30, 4)).astype(np.float32)
    queries = rng.normal(size=(3, 4)).astype(np.float32)
    cache = GroundTruthCache()
    cache.get_or_compute(vectors, queries, 2, "euclidean")
    cache.get_or_compute(vectors, queries, 2, "euclidean")
    assert cache.computed == 1
    assert cache.clear() == 0
    assert list(tmp_path.iterdir()) == []
