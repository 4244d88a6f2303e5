"""Configuration loading utilities for tissue annotation runs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from facsannot.core.types import ClusterParams, QCThresholds


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a JSON object from disk."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


def _build_params(cls, raw: Any, where: str):
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"'{where}' must be a JSON object, got {type(raw).__name__}.")
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise ValueError(f"Unknown key(s) in '{where}': {', '.join(unknown)}")
    return cls(**raw)


def _require(cfg: dict[str, Any], key: str, where: str = "config") -> Any:
    if key not in cfg or cfg[key] in (None, ""):
        raise ValueError(f"Missing required key '{key}' in {where}.")
    return cfg[key]


@dataclass(frozen=True)
class SubclusterConfig:
    """One finer-grained pass over a subset of top-level clusters."""

    name: str
    clusters: tuple[int, ...]
    labels: str | dict[str, Any]
    clustering: ClusterParams = field(default_factory=ClusterParams)


@dataclass(frozen=True)
class TissueConfig:
    tissue: str
    counts_path: str
    metadata_path: str
    ontology_source: str
    labels: str | dict[str, Any]
    outdir: str = "."
    qc: QCThresholds = field(default_factory=QCThresholds)
    clustering: ClusterParams = field(default_factory=ClusterParams)
    subclusters: tuple[SubclusterConfig, ...] = ()


def _parse_subcluster(raw: Any, idx: int) -> SubclusterConfig:
    where = f"subclusters[{idx}]"
    if not isinstance(raw, dict):
        raise ValueError(f"'{where}' must be a JSON object.")
    clusters = _require(raw, "clusters", where)
    if not isinstance(clusters, list) or not clusters:
        raise ValueError(f"'{where}.clusters' must be a non-empty list of cluster ids.")
    return SubclusterConfig(
        name=str(raw.get("name", f"subcluster_{idx}")),
        clusters=tuple(int(c) for c in clusters),
        labels=_require(raw, "labels", where),
        clustering=_build_params(
            ClusterParams, raw.get("clustering"), f"{where}.clustering"
        ),
    )


def load_tissue_config(path: str | Path) -> TissueConfig:
    """Load a tissue run config (strict JSON) into a TissueConfig."""
    cfg = load_json_config(path)
    subclusters = cfg.get("subclusters", [])
    if not isinstance(subclusters, list):
        raise ValueError("'subclusters' must be a list.")
    parsed = tuple(_parse_subcluster(raw, i) for i, raw in enumerate(subclusters))
    names = [s.name for s in parsed]
    if len(set(names)) != len(names):
        raise ValueError(f"Subcluster names must be unique, got {names}.")
    return TissueConfig(
        tissue=str(_require(cfg, "tissue")),
        counts_path=str(_require(cfg, "counts_path")),
        metadata_path=str(_require(cfg, "metadata_path")),
        ontology_source=str(_require(cfg, "ontology_source")),
        labels=_require(cfg, "labels"),
        outdir=str(cfg.get("outdir", ".")),
        qc=_build_params(QCThresholds, cfg.get("qc"), "qc"),
        clustering=_build_params(ClusterParams, cfg.get("clustering"), "clustering"),
        subclusters=parsed,
    )
