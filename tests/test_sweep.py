from recallgate.backends_impl import FlatIndex
from recallgate.builder import IndexBuilder
from recallgate.orchestrator import EvaluationCache
from recallgate.sweep import format_sweep_table, run_parameter_sweep
from recallgate.tracking import TrackingSink
from recallgate.types import SyntheticSpec, TestConfiguration, TestResult, Thresholds

SPEC = SyntheticSpec(n=200, dim=6, n_queries=10, seed=3)


class SummarySink(TrackingSink):
    def __init__(self):
        self.summaries = []

    def log_sweep_summary(self, *, sweep, rows):
        self.summaries.append((sweep, [row["status"] for row in rows]))


class CloseFailsIndex(FlatIndex):
    def close(self):
        raise RuntimeError("close exploded")


class CloseFailsBuilder:
    def build(self, dim, metric):
        return CloseFailsIndex(dim, metric)


def _configs():
    return [
        TestConfiguration(name="flat-a", builder=IndexBuilder("flat"), synthetic=SPEC),
        TestConfiguration(name="broken", builder=IndexBuilder("no-such-backend"), synthetic=SPEC),
        TestConfiguration(name="flat-b", builder=IndexBuilder("flat", {"batch_size": 3}), synthetic=SPEC),
    ]


def test_failing_configuration_does_not_stop_sweep():
    sink = SummarySink()
    cache = EvaluationCache()
    sweep = run_parameter_sweep("flat-batches", _configs(), cache=cache, tracking_sink=sink)

    assert [r.config.name for r in sweep.results] == ["flat-a", "broken", "flat-b"]
    broken = sweep.results[1]
    assert broken.status == "error"
    assert broken.stage == "build"
    assert broken.metrics is None

    completed = sweep.completed()
    assert [r.config.name for r in completed] == ["flat-a", "flat-b"]
    assert all(r.metrics.recall_at_10 == 1.0 for r in completed)
    assert not sweep.all_passed
    assert sweep.counts() == {"passed": 2, "failed": 0, "skipped": 0, "error": 1}
    assert cache.ground_truth.computed == 1
    assert sink.summaries == [("flat-batches", ["passed", "error", "passed"])]


def test_sweep_table_marks_every_status():
    sweep = run_parameter_sweep("table", _configs())
    table = sweep.table
    assert table.splitlines()[0] == "=== Parameter sweep: table ==="
    assert "Configuration" in table and "Recall@10" in table and "P99" in table
    assert "PASS" in table
    assert "broken: ERROR in build:" in table


def test_format_sweep_table_handles_skips_and_failures():
    skipped = TestResult(
        config=TestConfiguration(name="sift", builder=IndexBuilder("flat")),
        skipped=True,
        skip_reason="dataset 'SIFT1M' not available",
    )
    failed = TestResult(
        config=TestConfiguration(name="strict", builder=IndexBuilder("flat"), thresholds=Thresholds(min_qps=1e9)),
        violations=["QPS 10.0 below target 1000000000.0"],
    )
    table = format_sweep_table("mixed", [skipped, failed])
    lines = table.splitlines()
    sift_row = next(line for line in lines if line.startswith("sift "))
    assert "SKIP" in sift_row
    assert sift_row.count("-") >= 5
    assert "strict: FAIL: QPS 10.0 below target" in table
    assert "sift: SKIP: dataset 'SIFT1M' not available" in table


def test_all_passed_ignores_skipped_rows(tmp_path):
    configs = [
        TestConfiguration(name="flat", builder=IndexBuilder("flat"), synthetic=SPEC),
        TestConfiguration(
            name="missing",
            builder=IndexBuilder("flat"),
            dataset="GIST1M",
            data_dir=str(tmp_path),
            skip_if_no_data=True,
        ),
    ]
    sweep = run_parameter_sweep("with-skip", configs)
    assert sweep.all_passed
    assert sweep.counts()["skipped"] == 1
    assert [r.config.name for r in sweep.completed()] == ["flat"]


def test_close_failure_is_recorded_and_sweep_continues():
    configs = [
        TestConfiguration(name="close-fails", builder=CloseFailsBuilder(), synthetic=SPEC),
        TestConfiguration(name="flat", builder=IndexBuilder("flat"), synthetic=SPEC),
    ]
    sweep = run_parameter_sweep("close", configs)
    assert [r.status for r in sweep.results] == ["error", "passed"]
    assert sweep.results[0].stage == "close"
    assert "close-fails: ERROR in close: close: close exploded" in sweep.table
    assert [r.config.name for r in sweep.completed()] == ["flat"]
