from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .types import TestResult


def _flatten_dict(data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    flattened: dict[str, Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            flattened.update(_flatten_dict(value, prefix=full_key))
        else:
            flattened[full_key] = value
    return flattened


class TrackingSink:
    def log_result(self, *, sweep: str | None, result: TestResult) -> None:
        del sweep, result

    def log_sweep_summary(self, *, sweep: str, rows: list[dict[str, Any]]) -> None:
        del sweep, rows

    def log_load_result(self, *, name: str, payload: dict[str, Any]) -> None:
        del name, payload

    def log_run_summary(self, *, metadata: dict[str, Any]) -> None:
        del metadata

    def finish(self) -> None:
        return


class NullTrackingSink(TrackingSink):
    pass


@dataclass(slots=True)
class WandbConfig:
    enabled: bool = False
    project: str | None = None
    entity: str | None = None
    run_name: str | None = None
    group: str | None = None
    job_type: str | None = None
    tags: list[str] | None = None
    mode: str | None = None


class WandbTrackingSink(TrackingSink):
    def __init__(
        self,
        *,
        config: WandbConfig,
        runtime: dict[str, Any],
        dataset_meta: dict[str, Any],
    ):
        try:
            import wandb
        except Exception as exc:  # pragma: no cover - depends on env
            raise RuntimeError(
                "WandB is enabled but 'wandb' is not installed. "
                "Install with: pip install -e '.[wandb]'"
            ) from exc

        if not config.project:
            raise ValueError("WandB is enabled but project is missing")

        self._wandb = wandb
        self._run = wandb.init(
            project=config.project,
            entity=config.entity,
            name=config.run_name,
            group=config.group,
            job_type=config.job_type,
            tags=config.tags,
            mode=config.mode,
            config={"runtime": runtime, "dataset": dataset_meta},
        )

    def log_result(self, *, sweep: str | None, result: TestResult) -> None:
        prefix = f"{sweep}/{result.config.name}" if sweep else result.config.name
        row = result.as_dict()
        payload: dict[str, Any] = {
            "configuration": result.config.name,
            "status": result.status,
            f"{prefix}/memory_bytes": row["memory_bytes"],
            f"{prefix}/build_time_s": row["build_time_s"],
        }
        if row["metrics"]:
            payload.update(_flatten_dict(row["metrics"], prefix=f"{prefix}/metrics"))
        if row["perf"]:
            payload.update(_flatten_dict(row["perf"], prefix=f"{prefix}/perf"))
        if row["violations"]:
            payload[f"{prefix}/violations"] = "; ".join(row["violations"])
        if row["error"]:
            payload[f"{prefix}/error"] = row["error"]
        if isinstance(row["builder"], dict):
            payload.update(_flatten_dict(row["builder"], prefix=f"{prefix}/builder"))
        self._wandb.log(payload)

    def log_sweep_summary(self, *, sweep: str, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        columns = ["configuration", "status", "recall_at_1", "recall_at_10", "recall_at_100", "qps", "p99_ms"]
        data = []
        for row in rows:
            metrics = row.get("metrics") or {}
            perf = row.get("perf") or {}
            data.append(
                [
                    row["name"],
                    row["status"],
                    metrics.get("recall_at_1"),
                    metrics.get("recall_at_10"),
                    metrics.get("recall_at_100"),
                    perf.get("qps"),
                    perf.get("p99_ms"),
                ]
            )
        table = self._wandb.Table(columns=columns, data=data)
        self._wandb.log({f"{sweep}/comparison": table})
        counts: dict[str, int] = {}
        for row in rows:
            counts[row["status"]] = counts.get(row["status"], 0) + 1
        self._run.summary[f"{sweep}_status_counts_json"] = json.dumps(counts, ensure_ascii=False)

    def log_load_result(self, *, name: str, payload: dict[str, Any]) -> None:
        self._wandb.log(_flatten_dict(payload, prefix=f"load/{name}"))
        self._run.summary[f"load_{name}_passed"] = bool(payload.get("passed", False))

    def log_run_summary(self, *, metadata: dict[str, Any]) -> None:
        for key, value in metadata.items():
            if isinstance(value, (str, int, float, bool)) or value is None:
                self._run.summary[f"run_{key}"] = value
            else:
                self._run.summary[f"run_{key}_json"] = json.dumps(value, ensure_ascii=False)

    def finish(self) -> None:
        self._run.finish()


def build_tracking_sink(
    *,
    runtime: dict[str, Any],
    dataset_meta: dict[str, Any],
) -> TrackingSink:
    wandb_cfg_raw = dict(runtime.get("wandb", {}))
    config = WandbConfig(
        enabled=bool(wandb_cfg_raw.get("enabled", False)),
        project=wandb_cfg_raw.get("project"),
        entity=wandb_cfg_raw.get("entity"),
        run_name=wandb_cfg_raw.get("run_name"),
        group=wandb_cfg_raw.get("group"),
        job_type=wandb_cfg_raw.get("job_type"),
        tags=list(wandb_cfg_raw.get("tags", [])) if wandb_cfg_raw.get("tags") else None,
        mode=wandb_cfg_raw.get("mode"),
    )
    if not config.enabled:
        return NullTrackingSink()
    return WandbTrackingSink(config=config, runtime=runtime, dataset_meta=dataset_meta)


__all__ = [
    "NullTrackingSink",
    "TrackingSink",
    "WandbConfig",
    "WandbTrackingSink",
    "build_tracking_sink",
]
