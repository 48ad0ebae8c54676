import pytest

from recallgate.latency import format_duration, measure_latencies
from recallgate.types import PerformanceMetrics


def test_five_durations():
    perf = measure_latencies([0.010, 0.020, 0.030, 0.040, 0.050])
    assert perf.p50_latency == pytest.approx(0.030)
    assert perf.min_latency == pytest.approx(0.010)
    assert perf.max_latency == pytest.approx(0.050)
    assert perf.avg_latency == pytest.approx(0.030)
    assert perf.qps == pytest.approx(33.333, rel=1e-3)
    assert perf.count == 5
    assert perf.total_time == pytest.approx(0.150)


def test_unsorted_input_gives_same_percentiles():
    perf = measure_latencies([0.050, 0.010, 0.040, 0.030, 0.020])
    assert perf.p50_latency == pytest.approx(0.030)
    assert perf.p95_latency == pytest.approx(0.050)
    assert perf.p99_latency == pytest.approx(0.050)


def test_single_duration_fills_every_field():
    perf = measure_latencies([0.007])
    for value in (perf.min_latency, perf.max_latency, perf.p50_latency, perf.p95_latency, perf.p99_latency):
        assert value == pytest.approx(0.007)
    assert perf.qps == pytest.approx(1.0 / 0.007)


def test_empty_durations_yield_zero_record():
    assert measure_latencies([]) == PerformanceMetrics()


def test_zero_durations_do_not_divide_by_zero():
    perf = measure_latencies([0.0, 0.0, 0.0])
    assert perf.qps == 0.0
    assert perf.avg_latency == 0.0


def test_percentile_ordering_and_nearest_rank_index():
    durations = [float(i) / 1000.0 for i in range(1, 101)]
    perf = measure_latencies(durations)
    assert perf.min_latency <= perf.p50_latency <= perf.p95_latency <= perf.p99_latency <= perf.max_latency
    # floor(100 * p / 100) picks the element after the p-th.
    assert perf.p50_latency == pytest.approx(0.051)
    assert perf.p95_latency == pytest.approx(0.096)
    assert perf.p99_latency == pytest.approx(0.100)
    assert perf.qps == pytest.approx(1.0 / perf.avg_latency)


def test_as_dict_reports_milliseconds():
    perf = measure_latencies([0.010, 0.020, 0.030, 0.040, 0.050])
    row = perf.as_dict()
    assert row["p50_ms"] == pytest.approx(30.0)
    assert row["max_ms"] == pytest.approx(50.0)
    assert perf.p99_ms == pytest.approx(50.0)


def test_format_duration_units():
    assert format_duration(0.0005) == "500µs"
    assert format_duration(0.0125) == "12.500ms"
    assert format_duration(2.5) == "2.500s"
