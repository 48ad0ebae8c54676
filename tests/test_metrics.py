import math

import pytest

from recallgate.metrics import (
    calculate_all_metrics,
    canonical_metric,
    mean_reciprocal_rank,
    ndcg_at_k,
    precision_at_k,
    recall_at_k,
)
from recallgate.types import GroundTruth, RecallMetrics, SearchResult


def _pairs(truth: list[list[int]], observed: list[list[int]]) -> tuple[list[GroundTruth], list[SearchResult]]:
    return [GroundTruth(ids=row) for row in truth], [SearchResult(ids=row) for row in observed]


def test_exact_match_scores_one():
    gt, res = _pairs([[1, 2, 3, 4, 5]], [[1, 2, 3, 4, 5]])
    assert recall_at_k(gt, res, 5) == 1.0
    assert mean_reciprocal_rank(gt, res) == 1.0
    assert precision_at_k(gt, res, 5) == 1.0
    assert ndcg_at_k(gt, res, 5) == pytest.approx(1.0)


def test_single_match_at_rank_three():
    gt, res = _pairs([[1, 2, 3, 4, 5]], [[9, 8, 1, 7, 6]])
    assert recall_at_k(gt, res, 5) == pytest.approx(0.2)
    assert mean_reciprocal_rank(gt, res) == pytest.approx(1.0 / 3.0)


def test_no_overlap_scores_zero():
    gt, res = _pairs([[1, 2, 3], [4, 5, 6]], [[7, 8, 9], [10, 11, 12]])
    for k in (1, 2, 3, 10):
        assert recall_at_k(gt, res, k) == 0.0
    assert mean_reciprocal_rank(gt, res) == 0.0
    assert ndcg_at_k(gt, res, 3) == 0.0


def test_exact_match_for_every_k_up_to_length():
    gt, res = _pairs([[3, 1, 4, 15, 9, 2]], [[3, 1, 4, 15, 9, 2]])
    for k in range(1, 7):
        assert recall_at_k(gt, res, k) == 1.0
        assert precision_at_k(gt, res, k) == 1.0
        assert ndcg_at_k(gt, res, k) == pytest.approx(1.0)


def test_recall_uses_effective_k_when_results_are_short():
    # Index holding two elements returns padding for the rest.
    gt, res = _pairs([[4, 7]], [[4, 7, -1, -1, -1]])
    assert recall_at_k(gt, res, 5) == 1.0
    assert precision_at_k(gt, res, 5) == 1.0


def test_recall_skips_queries_without_results():
    gt, res = _pairs([[1, 2], [3, 4]], [[1, 2], []])
    # The empty query is excluded from the average rather than scored as zero.
    assert recall_at_k(gt, res, 2) == 1.0
    # MRR still averages over every query.
    assert mean_reciprocal_rank(gt, res) == pytest.approx(0.5)


def test_recall_averages_over_queries():
    gt, res = _pairs([[1, 2, 3], [4, 5, 6]], [[1, 9, 8], [4, 5, 7]])
    assert recall_at_k(gt, res, 3) == pytest.approx((1 / 3 + 2 / 3) / 2)


def test_recall_is_bounded_and_grows_with_k_for_prefix_results():
    gt, res = _pairs([[1, 2, 3, 4, 5, 6, 7, 8]], [[1, 2, 3, 9, 10, 11, 12, 13]])
    values = [recall_at_k(gt, res, k) for k in range(1, 9)]
    assert all(0.0 <= v <= 1.0 for v in values)
    assert values[0] == 1.0
    assert values[-1] == pytest.approx(3 / 8)


def test_precision_divides_by_retrieved_count():
    gt, res = _pairs([[1, 2, 3, 4]], [[1, 9]])
    assert precision_at_k(gt, res, 4) == pytest.approx(0.5)


def test_ndcg_penalizes_reordering():
    gt, res = _pairs([[1, 2, 3]], [[3, 2, 1]])
    dcg = 1.0 / math.log2(2) + 2.0 / math.log2(3) + 3.0 / math.log2(4)
    idcg = 3.0 / math.log2(2) + 2.0 / math.log2(3) + 1.0 / math.log2(4)
    assert ndcg_at_k(gt, res, 3) == pytest.approx(dcg / idcg)
    assert ndcg_at_k(gt, res, 3) < 1.0


def test_mismatched_lengths_raise():
    gt, res = _pairs([[1, 2], [3, 4]], [[1, 2]])
    with pytest.raises(ValueError):
        recall_at_k(gt, res, 2)
    with pytest.raises(ValueError):
        mean_reciprocal_rank(gt, res)
    with pytest.raises(ValueError):
        calculate_all_metrics(gt, res, 2)


def test_non_positive_k_raises():
    gt, res = _pairs([[1]], [[1]])
    with pytest.raises(ValueError):
        recall_at_k(gt, res, 0)


def test_empty_inputs_yield_zero_record():
    metrics = calculate_all_metrics([], [], 10)
    assert metrics == RecallMetrics(k=10)
    assert recall_at_k([], [], 5) == 0.0
    assert mean_reciprocal_rank([], []) == 0.0


def test_calculate_all_metrics_bundles_every_score():
    gt, res = _pairs([[1, 2, 3, 4, 5]], [[9, 8, 1, 7, 6]])
    metrics = calculate_all_metrics(gt, res, 5)
    assert metrics.k == 5
    assert metrics.recall_at_1 == 0.0
    assert metrics.recall_at_k == pytest.approx(0.2)
    # Recall@10 and Recall@100 clamp to the five available ids.
    assert metrics.recall_at_10 == pytest.approx(0.2)
    assert metrics.recall_at_100 == pytest.approx(0.2)
    assert metrics.mrr == pytest.approx(1.0 / 3.0)
    assert 0.0 < metrics.ndcg < 1.0
    assert "Recall@5=0.2000" in metrics.summary()


def test_canonical_metric_aliases():
    assert canonical_metric("L2") == "euclidean"
    assert canonical_metric("cosine") == "angular"
    assert canonical_metric("inner_product") == "dot"
    assert canonical_metric("angular") == "angular"
