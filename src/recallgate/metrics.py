from __future__ import annotations

import math
from typing import Iterable, Sequence

from .types import GroundTruth, RecallMetrics, SearchResult


def canonical_metric(metric: str) -> str:
    normalized = metric.lower().strip()
    aliases = {
        "l2": "euclidean",
        "cosine": "angular",
        "ip": "dot",
        "inner_product": "dot",
    }
    return aliases.get(normalized, normalized)


def _valid_ids(ids: Iterable[int]) -> list[int]:
    # Negative ids are padding emitted by indexes that hold fewer than k vectors.
    return [int(x) for x in ids if int(x) >= 0]


def _check_inputs(
    ground_truth: Sequence[GroundTruth],
    results: Sequence[SearchResult],
    k: int | None = None,
) -> bool:
    if k is not None and k <= 0:
        raise ValueError("k must be positive")
    if len(ground_truth) != len(results):
        raise ValueError(
            f"mismatched lengths: ground_truth={len(ground_truth)}, results={len(results)}"
        )
    return len(ground_truth) > 0


def recall_at_k(ground_truth: Sequence[GroundTruth], results: Sequence[SearchResult], k: int) -> float:
    if not _check_inputs(ground_truth, results, k):
        return 0.0

    total = 0.0
    counted = 0
    for gt, res in zip(ground_truth, results):
        truth = _valid_ids(gt.ids)
        observed = _valid_ids(res.ids)
        effective_k = min(k, len(observed), len(truth))
        if effective_k == 0:
            continue
        truth_set = set(truth[:k])
        hits = sum(1 for pid in set(observed[:k]) if pid in truth_set)
        total += hits / effective_k
        counted += 1
    if counted == 0:
        return 0.0
    return float(total / counted)


def precision_at_k(ground_truth: Sequence[GroundTruth], results: Sequence[SearchResult], k: int) -> float:
    if not _check_inputs(ground_truth, results, k):
        return 0.0

    total = 0.0
    counted = 0
    for gt, res in zip(ground_truth, results):
        retrieved = _valid_ids(res.ids)[:k]
        if not retrieved:
            continue
        truth_set = set(_valid_ids(gt.ids)[:k])
        relevant = sum(1 for pid in set(retrieved) if pid in truth_set)
        total += relevant / len(retrieved)
        counted += 1
    if counted == 0:
        return 0.0
    return float(total / counted)


def mean_reciprocal_rank(ground_truth: Sequence[GroundTruth], results: Sequence[SearchResult]) -> float:
    if not _check_inputs(ground_truth, results):
        return 0.0

    total = 0.0
    for gt, res in zip(ground_truth, results):
        truth_set = set(_valid_ids(gt.ids))
        for rank, pid in enumerate(res.ids, start=1):
            pid = int(pid)
            if pid >= 0 and pid in truth_set:
                total += 1.0 / float(rank)
                break
    return float(total / len(ground_truth))


def ndcg_at_k(ground_truth: Sequence[GroundTruth], results: Sequence[SearchResult], k: int) -> float:
    if not _check_inputs(ground_truth, results, k):
        return 0.0

    total = 0.0
    counted = 0
    for gt, res in zip(ground_truth, results):
        truth = _valid_ids(gt.ids)
        # The closest true neighbor carries the highest grade.
        relevance: dict[int, float] = {}
        for position, pid in enumerate(truth):
            relevance.setdefault(pid, float(len(truth) - position))

        dcg = 0.0
        for position, pid in enumerate(list(res.ids)[:k]):
            dcg += relevance.get(int(pid), 0.0) / math.log2(position + 2)

        idcg = 0.0
        for position in range(min(k, len(truth))):
            idcg += float(len(truth) - position) / math.log2(position + 2)

        if idcg <= 0.0:
            continue
        total += dcg / idcg
        counted += 1
    if counted == 0:
        return 0.0
    return float(total / counted)


def calculate_all_metrics(
    ground_truth: Sequence[GroundTruth],
    results: Sequence[SearchResult],
    k: int,
) -> RecallMetrics:
    _check_inputs(ground_truth, results, k)
    return RecallMetrics(
        recall_at_1=recall_at_k(ground_truth, results, 1),
        recall_at_10=recall_at_k(ground_truth, results, 10),
        recall_at_100=recall_at_k(ground_truth, results, 100),
        recall_at_k=recall_at_k(ground_truth, results, k),
        precision=precision_at_k(ground_truth, results, k),
        mrr=mean_reciprocal_rank(ground_truth, results),
        ndcg=ndcg_at_k(ground_truth, results, k),
        k=k,
    )


__all__ = [
    "calculate_all_metrics",
    "canonical_metric",
    "mean_reciprocal_rank",
    "ndcg_at_k",
    "precision_at_k",
    "recall_at_k",
]
