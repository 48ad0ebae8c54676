import json
from pathlib import Path

from recallgate.builder import IndexBuilder
from recallgate.concurrent_load import ConcurrentLoadConfig, ConcurrentLoadResult, StreamStats
from recallgate.errors import StageError
from recallgate.report import serialize_sweep_payload, write_comparison_reports
from recallgate.sweep import SweepResult
from recallgate.types import PerformanceMetrics, RecallMetrics, TestConfiguration, TestResult


def _result(name: str, recall: float, p99_ms: float, qps: float) -> TestResult:
    return TestResult(
        config=TestConfiguration(name=name, builder=IndexBuilder("flat")),
        metrics=RecallMetrics(recall_at_1=recall, recall_at_10=recall, recall_at_100=recall, ndcg=recall, mrr=recall, k=10),
        perf=PerformanceMetrics(p99_latency=p99_ms / 1000.0, qps=qps, count=100),
        memory_bytes=4 * 1024 * 1024,
        passed=True,
    )


def _sweep() -> SweepResult:
    broken = TestResult(
        config=TestConfiguration(name="faiss-ivf", builder=IndexBuilder("faiss")),
        error=StageError("train", "not enough training points"),
        stage="train",
    )
    return SweepResult(
        name="ef-search",
        results=[
            _result("hnsw-ef16", 0.92, 0.10, 9000.0),
            _result("hnsw-ef64", 0.98, 0.20, 5000.0),
            broken,
            _result("hnsw-ef32", 0.91, 0.30, 4000.0),
        ],
    )


def _load() -> ConcurrentLoadResult:
    return ConcurrentLoadResult(
        config=ConcurrentLoadConfig(name="stream", builder=IndexBuilder("flat"), duration_s=1.0),
        stats=StreamStats(inserted=990, queries=99, elapsed_s=1.0),
        initial_count=50_000,
        final_count=50_990,
        passed=True,
    )


def test_serialize_sweep_payload():
    payload = serialize_sweep_payload([_sweep()], {"metric": "euclidean"}, load_result=_load())
    assert payload["metadata"]["metric"] == "euclidean"
    sweep = payload["sweeps"][0]
    assert sweep["name"] == "ef-search"
    assert sweep["counts"] == {"passed": 3, "failed": 0, "skipped": 0, "error": 1}
    assert [row["status"] for row in sweep["results"]] == ["passed", "passed", "error", "passed"]
    assert sweep["results"][2]["stage"] == "train"
    assert sweep["results"][2]["metrics"] is None
    assert payload["concurrent_load"]["inserted"] == 990
    json.dumps(payload)


def test_write_comparison_reports(tmp_path: Path):
    output_json = tmp_path / "results.json"
    output_json.write_text("{}", encoding="utf-8")

    md_path, html_path = write_comparison_reports(
        output_json_path=output_json,
        sweeps=[_sweep()],
        metadata={
            "generated_at": "2026-02-14T00:00:00+00:00",
            "scenario_name": "smoke",
            "dataset": "SIFT10K",
            "metric": "euclidean",
            "k": 10,
        },
        load_result=_load(),
    )
    assert md_path.name == "results.comparison.md"
    assert html_path.name == "results.comparison.html"

    md = md_path.read_text(encoding="utf-8")
    html = html_path.read_text(encoding="utf-8")
    assert "## sweep: ef-search" in md
    assert "| hnsw-ef64 | 0.9800 | 0.9800 | 0.9800 | 5000 | 0.200 | PASS |" in md
    assert "| faiss-ivf | - | - | - | - | - | ERROR |" in md
    assert "- faiss-ivf: error in train: train: not enough training points" in md
    # hnsw-ef32 is dominated by hnsw-ef16 (lower recall, higher p99).
    assert "- hnsw-ef64: recall@10=0.9800, p99=0.2000ms" in md
    assert "- hnsw-ef16: recall@10=0.9200, p99=0.1000ms" in md
    assert "- hnsw-ef32: recall@10" not in md
    ranked = md.split("## completed configurations")[1]
    assert ranked.index("hnsw-ef64") < ranked.index("hnsw-ef16") < ranked.index("hnsw-ef32")
    assert "## concurrent load: stream" in md
    assert "- final size: 50990 (initial 50000)" in md

    assert "pareto scatter" in html
    assert "comparison table" in html
    assert "faiss-ivf" in html
    assert "<tr class='error'>" in html


def test_write_comparison_reports_without_completed_rows(tmp_path: Path):
    output_json = tmp_path / "empty.json"
    sweep = SweepResult(name="nothing", results=[])
    md_path, html_path = write_comparison_reports(output_json_path=output_json, sweeps=[sweep], metadata={})
    md = md_path.read_text(encoding="utf-8")
    assert "- none" in md
    assert "<svg" in html_path.read_text(encoding="utf-8")


def test_rows_without_latency_are_left_out_of_ranking(tmp_path: Path):
    partial = TestResult(
        config=TestConfiguration(name="no-latency", builder=IndexBuilder("flat")),
        metrics=RecallMetrics(recall_at_10=0.99, k=10),
        passed=True,
    )
    sweep = SweepResult(name="partial", results=[_result("hnsw-ef16", 0.92, 0.10, 9000.0), partial])
    md_path, _ = write_comparison_reports(output_json_path=tmp_path / "partial.json", sweeps=[sweep], metadata={})
    ranked = md_path.read_text(encoding="utf-8").split("## completed configurations")[1]
    assert "hnsw-ef16" in ranked
    assert "no-latency" not in ranked.split("## pareto front")[0]
