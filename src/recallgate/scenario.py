from __future__ import annotations

from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

import yaml

from .builder import IndexBuilder
from .concurrent_load import ConcurrentLoadConfig
from .synthetic import DISTRIBUTIONS
from .types import TARGET_PRESETS, SyntheticSpec, TestConfiguration, Thresholds

# Backends whose indexes must see training vectors before add().
TRAINING_BACKENDS = frozenset({"faiss"})

DEFAULT_LOAD: dict[str, Any] = {
    "enabled": False,
    "name": "concurrent-load",
    "backend": "flat",
    "params": {},
    "dim": 128,
    "metric": "euclidean",
    "initial_size": 50_000,
    "duration_s": 10.0,
    "insert_rate": 1000.0,
    "query_rate": 100.0,
    "k": 10,
    "n_queries": 1000,
    "distribution": "normalized",
    "seed": 42,
    "train": None,
    "train_size": 0,
    "min_rate_fraction": 0.95,
    "warn_p99_ms": 10.0,
}

DEFAULT_RUNTIME: dict[str, Any] = {
    "dataset_name": None,
    "data_dir": "data",
    "synthetic": None,
    "metric": None,
    "skip_if_missing": True,
    "max_train": None,
    "max_queries": None,
    "k": 10,
    "gt_batch_size": 64,
    "gt_cache_dir": None,
    "targets": {},
    "configurations": [],
    "concurrent_load": dict(DEFAULT_LOAD),
    "output": "recallgate-results.json",
    "report_dir": None,
    "wandb": {
        "enabled": False,
        "project": None,
        "entity": None,
        "run_name": None,
        "group": None,
        "job_type": None,
        "tags": [],
        "mode": None,
    },
}

_THRESHOLD_KEYS = {f.name for f in fields(Thresholds)}
_THRESHOLD_ALIASES = {
    "max_p99_ms": "max_p99_latency_ms",
    "min_recall_1": "min_recall_at_1",
    "min_recall_10": "min_recall_at_10",
    "min_recall_100": "min_recall_at_100",
}


def _as_dict(value: Any, *, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"scenario: '{name}' must be a mapping")
    return dict(value)


def _as_list(value: Any, *, name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"scenario: '{name}' must be a list")
    return list(value)


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _normalize_targets(raw: Any, *, name: str) -> dict[str, float]:
    if raw is None:
        return {}
    if isinstance(raw, str):
        preset = TARGET_PRESETS.get(raw)
        if preset is None:
            raise ValueError(f"scenario: '{name}' preset '{raw}' is unknown (known: {', '.join(TARGET_PRESETS)})")
        return {key: float(value) for key, value in asdict(preset).items()}

    targets: dict[str, float] = {}
    for key, value in _as_dict(raw, name=name).items():
        if value is None:
            continue
        canonical = _THRESHOLD_ALIASES.get(str(key), str(key))
        if canonical not in _THRESHOLD_KEYS:
            raise ValueError(f"scenario: '{name}.{key}' is not a known target")
        # Keep explicit canonical values if both alias and canonical are provided.
        if str(key) in _THRESHOLD_ALIASES and canonical in targets:
            continue
        targets[canonical] = float(value)
    return targets


def _normalize_synthetic(raw: Any) -> dict[str, Any] | None:
    if raw is None:
        return None
    synthetic = _as_dict(raw, name="dataset.synthetic")
    for key in ("n", "dim", "n_queries"):
        if key not in synthetic:
            raise ValueError(f"scenario: dataset.synthetic.{key} is required")
    distribution = str(synthetic.get("distribution", "uniform"))
    if distribution not in DISTRIBUTIONS:
        raise ValueError(f"scenario: dataset.synthetic.distribution must be one of: {', '.join(DISTRIBUTIONS)}")
    return {
        "n": int(synthetic["n"]),
        "dim": int(synthetic["dim"]),
        "n_queries": int(synthetic["n_queries"]),
        "distribution": distribution,
        "seed": int(synthetic.get("seed", 42)),
        "num_clusters": _optional_int(synthetic.get("num_clusters")),
        "sparsity": float(synthetic.get("sparsity", 0.8)),
        "query_noise": _optional_float(synthetic.get("query_noise")),
    }


def _normalize_configuration(raw: Any, index: int) -> dict[str, Any]:
    name = f"configurations[{index}]"
    entry = _as_dict(raw, name=name)
    if "backend" not in entry:
        raise ValueError(f"scenario: {name}.backend is required")
    backend = str(entry["backend"])
    train = entry.get("train")
    return {
        "name": str(entry.get("name", f"{backend}-{index}")),
        "backend": backend,
        "params": _as_dict(entry.get("params"), name=f"{name}.params"),
        "train": backend in TRAINING_BACKENDS if train is None else bool(train),
        "train_size": int(entry.get("train_size", 0)),
        "targets": _normalize_targets(entry.get("targets"), name=f"{name}.targets"),
    }


def _normalize_load(raw: Any) -> dict[str, Any]:
    load = _as_dict(raw, name="concurrent_load")
    unknown = set(load) - set(DEFAULT_LOAD)
    if unknown:
        raise ValueError(f"scenario: unknown concurrent_load keys: {', '.join(sorted(unknown))}")
    cfg = dict(DEFAULT_LOAD)
    cfg.update(load)
    cfg["enabled"] = bool(cfg["enabled"])
    cfg["params"] = _as_dict(cfg["params"], name="concurrent_load.params")
    for key in ("dim", "initial_size", "k", "n_queries", "seed", "train_size"):
        cfg[key] = int(cfg[key])
    for key in ("duration_s", "insert_rate", "query_rate", "min_rate_fraction", "warn_p99_ms"):
        cfg[key] = float(cfg[key])
    if cfg["insert_rate"] <= 0 or cfg["query_rate"] <= 0:
        raise ValueError("scenario: concurrent_load rates must be positive")
    if cfg["train"] is None:
        cfg["train"] = str(cfg["backend"]) in TRAINING_BACKENDS
    return cfg


def _normalize_wandb(raw: dict[str, Any]) -> dict[str, Any]:
    cfg = {
        "enabled": bool(raw.get("enabled", False)),
        "project": raw.get("project"),
        "entity": raw.get("entity"),
        "run_name": raw.get("run_name"),
        "group": raw.get("group"),
        "job_type": raw.get("job_type"),
        "mode": raw.get("mode"),
    }
    tags = raw.get("tags")
    if tags is None:
        cfg["tags"] = []
    elif isinstance(tags, list):
        cfg["tags"] = [str(x) for x in tags]
    else:
        raise ValueError("scenario: 'wandb.tags' must be a list")
    return cfg


def load_scenario(path: str | Path) -> dict[str, Any]:
    scenario_path = Path(path)
    raw_loaded = yaml.safe_load(scenario_path.read_text(encoding="utf-8"))
    raw = _as_dict(raw_loaded, name="root")

    dataset = _as_dict(raw.get("dataset"), name="dataset")
    synthetic = _normalize_synthetic(dataset.get("synthetic"))
    if synthetic is None and "name" not in dataset:
        raise ValueError("scenario: dataset.name or dataset.synthetic is required")

    evaluation = _as_dict(raw.get("evaluation"), name="evaluation")
    output = _as_dict(raw.get("output"), name="output")
    wandb = _as_dict(raw.get("wandb"), name="wandb")
    configurations = [
        _normalize_configuration(entry, i)
        for i, entry in enumerate(_as_list(raw.get("configurations"), name="configurations"))
    ]
    if not configurations:
        raise ValueError("scenario: at least one entry under 'configurations' is required")

    cfg = dict(DEFAULT_RUNTIME)
    cfg.update(
        {
            "dataset_name": None if synthetic is not None else str(dataset["name"]),
            "data_dir": str(dataset.get("data_dir", cfg["data_dir"])),
            "synthetic": synthetic,
            "metric": _optional_str(dataset.get("metric", cfg["metric"])),
            "skip_if_missing": bool(dataset.get("skip_if_missing", cfg["skip_if_missing"])),
            "max_train": _optional_int(dataset.get("max_train", cfg["max_train"])),
            "max_queries": _optional_int(dataset.get("max_queries", cfg["max_queries"])),
            "k": int(evaluation.get("k", cfg["k"])),
            "gt_batch_size": int(evaluation.get("gt_batch_size", cfg["gt_batch_size"])),
            "gt_cache_dir": evaluation.get("gt_cache_dir", cfg["gt_cache_dir"]),
            "targets": _normalize_targets(raw.get("targets"), name="targets"),
            "configurations": configurations,
            "concurrent_load": _normalize_load(raw.get("concurrent_load")),
            "output": str(output.get("path", cfg["output"])),
            "report_dir": output.get("report_dir", cfg["report_dir"]),
            "wandb": _normalize_wandb(wandb),
            "scenario_path": str(scenario_path.resolve()),
            "scenario_name": str(raw.get("name", scenario_path.stem)),
            "scenario_version": int(raw.get("version", 1)),
        }
    )
    if cfg["k"] <= 0:
        raise ValueError("scenario: evaluation.k must be positive")
    return cfg


def build_configurations(runtime: dict[str, Any]) -> list[TestConfiguration]:
    synthetic_raw = runtime.get("synthetic")
    synthetic = SyntheticSpec(**synthetic_raw) if synthetic_raw else None
    shared_targets = dict(runtime.get("targets") or {})

    configs: list[TestConfiguration] = []
    for entry in runtime.get("configurations", []):
        targets = dict(shared_targets)
        targets.update(entry.get("targets") or {})
        configs.append(
            TestConfiguration(
                name=entry["name"],
                builder=IndexBuilder(entry["backend"], dict(entry.get("params") or {})),
                k=int(runtime["k"]),
                metric=runtime.get("metric"),
                needs_training=bool(entry.get("train", False)),
                train_size=int(entry.get("train_size", 0)),
                dataset=runtime.get("dataset_name"),
                data_dir=runtime.get("data_dir"),
                synthetic=synthetic,
                thresholds=Thresholds(**targets),
                skip_if_no_data=bool(runtime.get("skip_if_missing", True)),
                max_train=runtime.get("max_train"),
                max_queries=runtime.get("max_queries"),
                gt_batch_size=int(runtime.get("gt_batch_size", 64)),
            )
        )
    return configs


def build_load_config(runtime: dict[str, Any]) -> ConcurrentLoadConfig | None:
    load = runtime.get("concurrent_load") or {}
    if not load.get("enabled"):
        return None
    return ConcurrentLoadConfig(
        name=str(load["name"]),
        builder=IndexBuilder(str(load["backend"]), dict(load["params"])),
        dim=int(load["dim"]),
        metric=str(load["metric"]),
        initial_size=int(load["initial_size"]),
        duration_s=float(load["duration_s"]),
        insert_rate=float(load["insert_rate"]),
        query_rate=float(load["query_rate"]),
        k=int(load["k"]),
        n_queries=int(load["n_queries"]),
        distribution=str(load["distribution"]),
        seed=int(load["seed"]),
        needs_training=bool(load["train"]),
        train_size=int(load["train_size"]),
        min_rate_fraction=float(load["min_rate_fraction"]),
        warn_p99_ms=float(load["warn_p99_ms"]),
    )


def dataset_meta(runtime: dict[str, Any]) -> dict[str, Any]:
    return {
        "dataset": runtime.get("dataset_name"),
        "data_dir": runtime.get("data_dir"),
        "synthetic": runtime.get("synthetic"),
        "metric": runtime.get("metric"),
        "k": runtime.get("k"),
    }


__all__ = [
    "DEFAULT_LOAD",
    "DEFAULT_RUNTIME",
    "TRAINING_BACKENDS",
    "build_configurations",
    "build_load_config",
    "dataset_meta",
    "load_scenario",
]
