from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from .orchestrator import EvaluationCache, run_evaluation
from .tracking import TrackingSink
from .types import TestConfiguration, TestResult

logger = logging.getLogger(__name__)

STATUS_MARKERS = {
    "passed": "PASS",
    "failed": "FAIL",
    "skipped": "SKIP",
    "error": "ERROR",
}


@dataclass(slots=True)
class SweepResult:
    name: str
    results: list[TestResult] = field(default_factory=list)
    table: str = ""

    def completed(self) -> list[TestResult]:
        """Rows that produced metrics and can be compared on quality."""
        return [r for r in self.results if not r.skipped and r.error is None and r.metrics is not None]

    @property
    def all_passed(self) -> bool:
        return all(r.passed or r.skipped for r in self.results)

    def counts(self) -> dict[str, int]:
        out = {status: 0 for status in STATUS_MARKERS}
        for r in self.results:
            out[r.status] += 1
        return out

    def as_rows(self) -> list[dict[str, Any]]:
        return [r.as_dict() for r in self.results]


def _fmt(value: float | None, spec: str) -> str:
    return "-" if value is None else format(value, spec)


def format_sweep_table(name: str, results: Sequence[TestResult]) -> str:
    headers = ["Configuration", "Recall@1", "Recall@10", "Recall@100", "QPS", "P99", "Status"]
    rows: list[list[str]] = []
    for r in results:
        m, p = r.metrics, r.perf
        rows.append(
            [
                r.config.name,
                _fmt(None if m is None else m.recall_at_1, ".4f"),
                _fmt(None if m is None else m.recall_at_10, ".4f"),
                _fmt(None if m is None else m.recall_at_100, ".4f"),
                _fmt(None if p is None else p.qps, ".0f"),
                "-" if p is None else f"{p.p99_ms:.3f}ms",
                STATUS_MARKERS[r.status],
            ]
        )

    widths = [len(h) for h in headers]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]

    def _line(cells: Sequence[str]) -> str:
        first = cells[0].ljust(widths[0])
        rest = [cell.rjust(width) for cell, width in zip(cells[1:], widths[1:])]
        return "  ".join([first, *rest])

    rule = "-" * len(_line(headers))
    lines = [f"=== Parameter sweep: {name} ===", _line(headers), rule]
    lines.extend(_line(row) for row in rows)
    lines.append(rule)

    notes = []
    for r in results:
        if r.error is not None:
            notes.append(f"{r.config.name}: ERROR in {r.stage or 'unknown'}: {r.error}")
        elif r.skipped:
            notes.append(f"{r.config.name}: SKIP: {r.skip_reason}")
        elif r.violations:
            notes.append(f"{r.config.name}: FAIL: {'; '.join(r.violations)}")
    lines.extend(notes)
    return "\n".join(lines)


def run_parameter_sweep(
    name: str,
    configs: Sequence[TestConfiguration],
    *,
    cache: EvaluationCache | None = None,
    tracking_sink: TrackingSink | None = None,
) -> SweepResult:
    """Evaluate every configuration in order and build the comparison table.

    Each configuration builds and closes its own index; only datasets and
    ground truth are shared through ``cache``. A failing configuration never
    stops the remaining ones.
    """
    cache = cache or EvaluationCache()
    sweep = SweepResult(name=name)
    logger.info("starting sweep %s with %d configurations", name, len(configs))
    for position, config in enumerate(configs, start=1):
        logger.info("sweep %s: configuration %d/%d: %s", name, position, len(configs), config.name)
        try:
            result = run_evaluation(config, cache=cache, tracking_sink=tracking_sink, sweep=name)
        except Exception as exc:
            logger.exception("sweep %s: configuration %s raised outside its stages", name, config.name)
            result = TestResult(config=config, error=exc, stage="unknown")
        sweep.results.append(result)

    sweep.table = format_sweep_table(name, sweep.results)
    logger.info("\n%s", sweep.table)
    if tracking_sink is not None:
        tracking_sink.log_sweep_summary(sweep=name, rows=sweep.as_rows())
    return sweep


__all__ = ["STATUS_MARKERS", "SweepResult", "format_sweep_table", "run_parameter_sweep"]
