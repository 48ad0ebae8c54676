from __future__ import annotations

from html import escape
from pathlib import Path
from typing import Any, Sequence

from .concurrent_load import ConcurrentLoadResult
from .sweep import STATUS_MARKERS, SweepResult


def _comparison_rows(sweeps: Sequence[SweepResult]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for sweep in sweeps:
        for result in sweep.completed():
            if result.metrics is None or result.perf is None:
                continue
            rows.append(
                {
                    "sweep": sweep.name,
                    "name": result.config.name,
                    "status": result.status,
                    "recall_at_1": result.metrics.recall_at_1,
                    "recall_at_10": result.metrics.recall_at_10,
                    "recall_at_100": result.metrics.recall_at_100,
                    "ndcg": result.metrics.ndcg,
                    "mrr": result.metrics.mrr,
                    "qps": result.perf.qps,
                    "p99_ms": result.perf.p99_ms,
                    "memory_mb": result.memory_bytes / (1024.0 * 1024.0),
                    "build_time_s": result.build_time_s,
                }
            )
    rows.sort(key=lambda row: (-row["recall_at_10"], row["p99_ms"], row["build_time_s"]))
    return rows


def _pareto_front_indices(rows: list[dict[str, Any]]) -> list[int]:
    # Objectives: maximize Recall@10, minimize p99 latency.
    frontier: list[int] = []
    for i, cand in enumerate(rows):
        dominated = False
        for j, other in enumerate(rows):
            if i == j:
                continue
            recall_ok = other["recall_at_10"] >= cand["recall_at_10"]
            latency_ok = other["p99_ms"] <= cand["p99_ms"]
            strictly_better = other["recall_at_10"] > cand["recall_at_10"] or other["p99_ms"] < cand["p99_ms"]
            if recall_ok and latency_ok and strictly_better:
                dominated = True
                break
        if not dominated:
            frontier.append(i)
    return frontier


def _is_finite_number(value: Any) -> bool:
    try:
        x = float(value)
    except (TypeError, ValueError):
        return False
    return x == x and x not in (float("inf"), float("-inf"))


def _fmt_number(value: Any, decimals: int = 4) -> str:
    if not _is_finite_number(value):
        return "-"
    return f"{float(value):.{decimals}f}"


def _append_sweep_markdown(lines: list[str], sweep: SweepResult) -> None:
    counts = sweep.counts()
    lines.extend(
        [
            f"## sweep: {sweep.name}",
            "",
            "- " + ", ".join(f"{STATUS_MARKERS[status].lower()}: {n}" for status, n in counts.items()),
            "",
            "| configuration | recall@1 | recall@10 | recall@100 | qps | p99_ms | status |",
            "| --- | ---: | ---: | ---: | ---: | ---: | --- |",
        ]
    )
    for result in sweep.results:
        m, p = result.metrics, result.perf
        lines.append(
            "| "
            f"{result.config.name} | "
            f"{_fmt_number(None if m is None else m.recall_at_1)} | "
            f"{_fmt_number(None if m is None else m.recall_at_10)} | "
            f"{_fmt_number(None if m is None else m.recall_at_100)} | "
            f"{_fmt_number(None if p is None else p.qps, decimals=0)} | "
            f"{_fmt_number(None if p is None else p.p99_ms, decimals=3)} | "
            f"{STATUS_MARKERS[result.status]} |"
        )

    notes: list[str] = []
    for result in sweep.results:
        if result.error is not None:
            notes.append(f"- {result.config.name}: error in {result.stage}: {result.error}")
        elif result.skipped:
            notes.append(f"- {result.config.name}: skipped: {result.skip_reason}")
        elif result.violations:
            notes.append(f"- {result.config.name}: " + "; ".join(result.violations))
    if notes:
        lines.extend(["", "### issues", ""])
        lines.extend(notes)
    lines.append("")


def _append_load_markdown(lines: list[str], load: ConcurrentLoadResult) -> None:
    cfg = load.config
    lines.extend(
        [
            f"## concurrent load: {cfg.name}",
            "",
            f"- status: {'PASS' if load.passed else 'FAIL'}",
            f"- duration: {cfg.duration_s:.1f}s (elapsed {load.stats.elapsed_s:.2f}s)",
            f"- inserted: {load.stats.inserted} ({load.insert_rate_achieved:.0f}/s, target {cfg.insert_rate:.0f}/s)",
            f"- queries: {load.stats.queries} ({load.query_rate_achieved:.0f}/s, target {cfg.query_rate:.0f}/s)",
            f"- errors: {load.stats.errors}",
            f"- final size: {load.final_count} (initial {load.initial_count})",
            f"- latency: p50={load.perf.p50_latency * 1000.0:.3f}ms, p95={load.perf.p95_latency * 1000.0:.3f}ms, p99={load.perf.p99_ms:.3f}ms",
        ]
    )
    if load.error is not None:
        lines.append(f"- error: {load.error}")
    for violation in load.violations:
        lines.append(f"- violation: {violation}")
    lines.append("")


def _build_markdown(
    sweeps: Sequence[SweepResult],
    rows: list[dict[str, Any]],
    pareto_indices: list[int],
    metadata: dict[str, Any],
    load_result: ConcurrentLoadResult | None = None,
) -> str:
    lines = [
        "# recallgate evaluation report",
        "",
        f"- generated_at: {metadata.get('generated_at')}",
        f"- scenario: {metadata.get('scenario_name')}",
        f"- dataset: {metadata.get('dataset')}",
        f"- metric: {metadata.get('metric')}",
        f"- k: {metadata.get('k')}",
        "",
    ]
    for sweep in sweeps:
        _append_sweep_markdown(lines, sweep)

    lines.extend(
        [
            "## completed configurations (ranked by recall@10)",
            "",
            "| sweep | configuration | recall@10 | ndcg | mrr | p99_ms | qps | memory_mb | pareto |",
            "| --- | --- | ---: | ---: | ---: | ---: | ---: | ---: | --- |",
        ]
    )
    pareto_set = set(pareto_indices)
    if rows:
        for i, row in enumerate(rows):
            lines.append(
                "| "
                f"{row['sweep']} | {row['name']} | {row['recall_at_10']:.4f} | {row['ndcg']:.4f} | "
                f"{row['mrr']:.4f} | {row['p99_ms']:.4f} | {row['qps']:.0f} | {row['memory_mb']:.1f} | "
                f"{'yes' if i in pareto_set else 'no'} |"
            )
    else:
        lines.append("| - | - | - | - | - | - | - | - | - |")

    lines.extend(["", "## pareto front (recall@10 up, p99 down)", ""])
    if pareto_indices:
        for i in pareto_indices:
            row = rows[i]
            lines.append(f"- {row['name']}: recall@10={row['recall_at_10']:.4f}, p99={row['p99_ms']:.4f}ms")
    else:
        lines.append("- none")
    lines.append("")

    if load_result is not None:
        _append_load_markdown(lines, load_result)
    return "\n".join(lines)


def _build_svg(rows: list[dict[str, Any]], pareto_indices: list[int]) -> str:
    width = 900
    height = 420
    margin_left = 80
    margin_right = 40
    margin_top = 30
    margin_bottom = 70

    if not rows:
        return "<svg width='900' height='420' xmlns='http://www.w3.org/2000/svg'></svg>"

    x_values = [row["p99_ms"] for row in rows]
    y_values = [row["recall_at_10"] for row in rows]
    x_min = min(0.0, min(x_values))
    x_max = max(x_values)
    if x_max <= x_min:
        x_max = x_min + 1.0
    y_min = min(0.0, min(y_values))
    y_max = max(1.0, max(y_values))

    plot_w = width - margin_left - margin_right
    plot_h = height - margin_top - margin_bottom

    def x_px(value: float) -> float:
        return margin_left + ((value - x_min) / (x_max - x_min)) * plot_w

    def y_px(value: float) -> float:
        return margin_top + (1.0 - ((value - y_min) / (y_max - y_min))) * plot_h

    pareto_set = set(pareto_indices)
    parts: list[str] = [
        f"<svg width='{width}' height='{height}' xmlns='http://www.w3.org/2000/svg'>",
        "<rect x='0' y='0' width='100%' height='100%' fill='#f8fafc'/>",
        f"<line x1='{margin_left}' y1='{height-margin_bottom}' x2='{width-margin_right}' y2='{height-margin_bottom}' stroke='#334155' stroke-width='1'/>",
        f"<line x1='{margin_left}' y1='{margin_top}' x2='{margin_left}' y2='{height-margin_bottom}' stroke='#334155' stroke-width='1'/>",
        f"<text x='{width/2}' y='{height-20}' text-anchor='middle' font-size='13' fill='#0f172a'>p99 query latency (ms)</text>",
        f"<text x='18' y='{height/2}' text-anchor='middle' transform='rotate(-90 18 {height/2})' font-size='13' fill='#0f172a'>recall@10</text>",
    ]
    for i, row in enumerate(rows):
        cx = x_px(row["p99_ms"])
        cy = y_px(row["recall_at_10"])
        on_front = i in pareto_set
        parts.append(f"<circle cx='{cx:.2f}' cy='{cy:.2f}' r='{7 if on_front else 5}' fill='{'#dc2626' if on_front else '#334155'}'/>")
        parts.append(f"<text x='{cx+8:.2f}' y='{cy-8:.2f}' font-size='12' fill='#0f172a'>{escape(str(row['name']))}</text>")
    parts.append("</svg>")
    return "".join(parts)


def _build_html(
    sweeps: Sequence[SweepResult],
    rows: list[dict[str, Any]],
    pareto_indices: list[int],
    metadata: dict[str, Any],
) -> str:
    table_rows: list[str] = []
    for sweep in sweeps:
        for result in sweep.results:
            m, p = result.metrics, result.perf
            table_rows.append(
                f"<tr class='{result.status}'>"
                f"<td>{escape(sweep.name)}</td>"
                f"<td>{escape(result.config.name)}</td>"
                f"<td>{_fmt_number(None if m is None else m.recall_at_1)}</td>"
                f"<td>{_fmt_number(None if m is None else m.recall_at_10)}</td>"
                f"<td>{_fmt_number(None if m is None else m.recall_at_100)}</td>"
                f"<td>{_fmt_number(None if p is None else p.qps, decimals=0)}</td>"
                f"<td>{_fmt_number(None if p is None else p.p99_ms, decimals=3)}</td>"
                f"<td>{STATUS_MARKERS[result.status]}</td>"
                "</tr>"
            )
    svg = _build_svg(rows, pareto_indices)
    return (
        "<!doctype html><html><head><meta charset='utf-8'/>"
        "<title>recallgate evaluation report</title>"
        "<style>"
        "body{font-family:ui-sans-serif,system-ui,sans-serif;background:#eef2ff;color:#111827;margin:0;padding:24px;}"
        ".card{background:#fff;border-radius:12px;padding:16px 18px;margin-bottom:16px;box-shadow:0 6px 20px rgba(15,23,42,0.08);}"
        "table{border-collapse:collapse;width:100%;font-size:14px;}"
        "th,td{padding:8px 10px;border-bottom:1px solid #e5e7eb;text-align:left;}"
        "th{background:#f8fafc;}"
        "tr.failed td,tr.error td{color:#b91c1c;}"
        "tr.skipped td{color:#6b7280;}"
        "h1,h2{margin:0 0 12px 0;}"
        "</style></head><body>"
        "<div class='card'>"
        "<h1>recallgate evaluation report</h1>"
        f"<div>scenario: {escape(str(metadata.get('scenario_name')))}</div>"
        f"<div>dataset: {escape(str(metadata.get('dataset')))} | metric: {escape(str(metadata.get('metric')))} | k: {escape(str(metadata.get('k')))}</div>"
        f"<div>generated_at: {escape(str(metadata.get('generated_at')))}</div>"
        "</div>"
        "<div class='card'>"
        "<h2>pareto scatter</h2>"
        f"{svg}"
        "</div>"
        "<div class='card'>"
        "<h2>comparison table</h2>"
        "<table><thead><tr>"
        "<th>sweep</th><th>configuration</th><th>recall@1</th><th>recall@10</th><th>recall@100</th><th>qps</th><th>p99_ms</th><th>status</th>"
        "</tr></thead><tbody>"
        + "".join(table_rows)
        + "</tbody></table></div></body></html>"
    )


def write_comparison_reports(
    *,
    output_json_path: Path,
    sweeps: Sequence[SweepResult],
    metadata: dict[str, Any],
    load_result: ConcurrentLoadResult | None = None,
) -> tuple[Path, Path]:
    rows = _comparison_rows(sweeps)
    pareto_indices = _pareto_front_indices(rows)

    md_path = output_json_path.with_suffix(".comparison.md")
    html_path = output_json_path.with_suffix(".comparison.html")
    md_path.write_text(
        _build_markdown(sweeps, rows, pareto_indices, metadata, load_result=load_result),
        encoding="utf-8",
    )
    html_path.write_text(_build_html(sweeps, rows, pareto_indices, metadata), encoding="utf-8")
    return md_path, html_path


def serialize_sweep_payload(
    sweeps: Sequence[SweepResult],
    metadata: dict[str, Any],
    load_result: ConcurrentLoadResult | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "metadata": metadata,
        "sweeps": [
            {
                "name": sweep.name,
                "counts": sweep.counts(),
                "results": sweep.as_rows(),
            }
            for sweep in sweeps
        ],
    }
    if load_result is not None:
        payload["concurrent_load"] = load_result.as_dict()
    return payload


__all__ = ["serialize_sweep_payload", "write_comparison_reports"]
