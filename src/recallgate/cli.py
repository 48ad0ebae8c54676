from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from .backends import available_backends
from .concurrent_load import ConcurrentLoadResult, run_concurrent_load
from .dataset import KNOWN_DATASETS, is_dataset_available
from .ground_truth import GroundTruthCache
from .orchestrator import EvaluationCache
from .report import serialize_sweep_payload, write_comparison_reports
from .scenario import build_configurations, build_load_config, dataset_meta, load_scenario
from .sweep import SweepResult, run_parameter_sweep
from .tracking import build_tracking_sink

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="recallgate",
        description="Evaluate ANN index configurations for recall and latency against exact search",
    )
    parser.add_argument("--scenario", default=None, help="Scenario YAML file path")
    parser.add_argument("--data-dir", default=None, help="Directory holding datasets (embeddings/ for named sets)")
    parser.add_argument("--dataset", default=None, help="Override the scenario's named dataset")
    parser.add_argument(
        "--metric",
        default=None,
        choices=["euclidean", "angular", "cosine", "dot", "l2", "ip", "inner_product"],
        help="Distance metric",
    )
    parser.add_argument("--k", type=int, default=None, help="Neighbors per query")
    parser.add_argument("--max-queries", type=int, default=None, help="Optional cap for query vectors")
    parser.add_argument("--output", default=None, help="Output JSON file path")
    parser.add_argument("--gt-cache-dir", default=None, help="Persist exact ground truth under this directory")
    parser.add_argument("--skip-load", action="store_true", help="Do not run the concurrent load scenario")
    parser.add_argument("--list-backends", action="store_true", help="Print backend availability and exit")
    parser.add_argument(
        "--list-datasets",
        action="store_true",
        help="Print which registered datasets are present under --data-dir and exit",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    parser.add_argument("--wandb", action="store_true", help="Enable Weights & Biases tracking")
    parser.add_argument("--wandb-project", default=None, help="WandB project name")
    parser.add_argument("--wandb-entity", default=None, help="WandB entity/team")
    parser.add_argument("--wandb-run-name", default=None, help="WandB run name")
    parser.add_argument("--wandb-group", default=None, help="WandB run group")
    parser.add_argument("--wandb-job-type", default=None, help="WandB job type")
    parser.add_argument("--wandb-mode", default=None, help="WandB mode (online/offline/disabled)")
    parser.add_argument("--wandb-tags", nargs="+", default=None, help="WandB tags")
    return parser.parse_args(argv)


def _build_runtime_config(args: argparse.Namespace) -> dict[str, Any]:
    if not args.scenario:
        raise ValueError("--scenario is required")
    runtime = load_scenario(args.scenario)

    if args.data_dir is not None:
        runtime["data_dir"] = str(args.data_dir)
    if args.dataset is not None:
        runtime["dataset_name"] = str(args.dataset)
        runtime["synthetic"] = None
    if args.metric is not None:
        runtime["metric"] = args.metric
    if args.k is not None:
        if args.k <= 0:
            raise ValueError("--k must be positive")
        runtime["k"] = int(args.k)
    if args.max_queries is not None:
        runtime["max_queries"] = int(args.max_queries)
    if args.output is not None:
        runtime["output"] = str(args.output)
    if args.gt_cache_dir is not None:
        runtime["gt_cache_dir"] = str(args.gt_cache_dir)
    if args.skip_load:
        load = dict(runtime.get("concurrent_load", {}))
        load["enabled"] = False
        runtime["concurrent_load"] = load

    wandb_cfg = dict(runtime.get("wandb", {}))
    if args.wandb:
        wandb_cfg["enabled"] = True
    if args.wandb_project is not None:
        wandb_cfg["project"] = args.wandb_project
    if args.wandb_entity is not None:
        wandb_cfg["entity"] = args.wandb_entity
    if args.wandb_run_name is not None:
        wandb_cfg["run_name"] = args.wandb_run_name
    if args.wandb_group is not None:
        wandb_cfg["group"] = args.wandb_group
    if args.wandb_job_type is not None:
        wandb_cfg["job_type"] = args.wandb_job_type
    if args.wandb_mode is not None:
        wandb_cfg["mode"] = args.wandb_mode
    if args.wandb_tags is not None:
        wandb_cfg["tags"] = [str(x) for x in args.wandb_tags]
    runtime["wandb"] = wandb_cfg
    return runtime


def _print_backends() -> None:
    available, skipped = available_backends()
    for name in available:
        print(f"- {name}: available")
    for name, reason in skipped.items():
        print(f"- {name}: unavailable ({reason})")


def _print_datasets(data_dir: Path) -> None:
    for name, info in KNOWN_DATASETS.items():
        state = "available" if is_dataset_available(name, data_dir) else f"missing (expects embeddings/{info.base_file})"
        print(f"- {name}: {state} [{info.n} x {info.dim}, {info.nq} queries]")


def _print_summary(sweep: SweepResult, load_result: ConcurrentLoadResult | None) -> None:
    print("")
    print(sweep.table)
    counts = sweep.counts()
    print(
        f"\n{len(sweep.results)} configurations: {counts['passed']} passed, {counts['failed']} failed, "
        f"{counts['error']} errored, {counts['skipped']} skipped"
    )
    if load_result is not None:
        print(
            f"concurrent load {load_result.config.name}: {'PASS' if load_result.passed else 'FAIL'} "
            f"inserted={load_result.stats.inserted} ({load_result.insert_rate_achieved:.0f}/s), "
            f"queries={load_result.stats.queries} ({load_result.query_rate_achieved:.0f}/s), "
            f"errors={load_result.stats.errors}, p99={load_result.perf.p99_ms:.3f}ms"
        )


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.list_backends:
        _print_backends()
        return 0
    if args.list_datasets:
        _print_datasets(Path(args.data_dir or "data"))
        return 0

    runtime = _build_runtime_config(args)
    configs = build_configurations(runtime)
    load_config = build_load_config(runtime)

    metadata = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "scenario_path": runtime.get("scenario_path"),
        "scenario_name": runtime.get("scenario_name"),
        "scenario_version": runtime.get("scenario_version"),
        "dataset": runtime.get("dataset_name") or "synthetic",
        "data_dir": runtime.get("data_dir"),
        "synthetic": runtime.get("synthetic"),
        "metric": runtime.get("metric"),
        "k": int(runtime["k"]),
        "targets": runtime.get("targets", {}),
        "configurations": [c.builder.describe() | {"name": c.name} for c in configs],
        "wandb": runtime.get("wandb", {}),
    }
    cache = EvaluationCache(
        GroundTruthCache(cache_dir=runtime.get("gt_cache_dir"), batch_size=int(runtime["gt_batch_size"]))
    )
    tracking_sink = build_tracking_sink(runtime=runtime, dataset_meta=dataset_meta(runtime))
    try:
        sweep = run_parameter_sweep(
            str(runtime["scenario_name"]),
            configs,
            cache=cache,
            tracking_sink=tracking_sink,
        )

        load_result: ConcurrentLoadResult | None = None
        if load_config is not None:
            load_result = run_concurrent_load(load_config, cache=cache)
            tracking_sink.log_load_result(name=load_config.name, payload=load_result.as_dict())

        if metadata["metric"] is None:
            metadata["metric"] = next((r.metric for r in sweep.results if r.metric), None)
        metadata["ground_truth_computations"] = cache.ground_truth.computed
        payload = serialize_sweep_payload([sweep], metadata, load_result=load_result)
        output = Path(runtime["output"])
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

        report_base = output
        if runtime.get("report_dir"):
            report_dir = Path(runtime["report_dir"])
            report_dir.mkdir(parents=True, exist_ok=True)
            report_base = report_dir / output.name
        report_md, report_html = write_comparison_reports(
            output_json_path=report_base,
            sweeps=[sweep],
            metadata=metadata,
            load_result=load_result,
        )

        _print_summary(sweep, load_result)
        print(f"\nresults written: {output.resolve()}")
        print(f"comparison report (markdown): {report_md.resolve()}")
        print(f"comparison report (html): {report_html.resolve()}")
        tracking_sink.log_run_summary(metadata=metadata)
    finally:
        tracking_sink.finish()

    failed = any(r.status in {"failed", "error"} for r in sweep.results)
    if load_result is not None and not load_result.passed:
        failed = True
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
