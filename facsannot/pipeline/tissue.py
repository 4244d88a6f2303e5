"""Per-tissue orchestration: ingest -> QC -> cluster -> annotate -> export."""

from __future__ import annotations

import importlib.metadata as importlib_metadata
import logging
import platform
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import anndata as ad
import numpy as np
import pandas as pd

from facsannot._version import __version__
from facsannot.clustering import embed_and_cluster, subset_clusters
from facsannot.config import SubclusterConfig, TissueConfig, load_tissue_config
from facsannot.core.annotation import (
    annotation_summary,
    apply_cluster_labels,
    merge_subcluster_annotations,
)
from facsannot.core.metadata import merge_plate_metadata
from facsannot.core.types import CLUSTER_KEY, OntologyVocabulary
from facsannot.errors import FacsAnnotError
from facsannot.pipeline.io import (
    build_anndata,
    export_annotations,
    load_vocabulary,
    read_count_matrix,
    read_label_map,
    read_plate_metadata,
    setup_logger,
    write_annotated,
    write_json,
)
from facsannot.qc import compute_qc_metrics, filter_cells, remove_ercc


@dataclass(frozen=True)
class TissueResult:
    """Paths and counts produced by one tissue run."""

    tissue: str
    n_cells_raw: int
    n_cells_annotated: int
    n_clusters: int
    subclusters: tuple[str, ...]
    h5ad_path: str
    csv_path: str
    summary_path: str


def _now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _package_version(name: str) -> str:
    try:
        return importlib_metadata.version(name)
    except importlib_metadata.PackageNotFoundError:
        return "unknown"


def ingest_tissue(
    counts: pd.DataFrame,
    plate_metadata: pd.DataFrame,
    cfg: TissueConfig,
    logger: logging.Logger,
) -> tuple[ad.AnnData, dict[str, Any]]:
    """Merge metadata, compute QC metrics, drop ERCC rows and filter cells."""
    counts_sorted, cells = merge_plate_metadata(counts, plate_metadata)
    adata = build_anndata(counts_sorted, cells)
    adata = compute_qc_metrics(adata)
    adata = remove_ercc(adata)
    adata, qc_report = filter_cells(adata, cfg.qc)
    logger.info(
        "%s: %d/%d cells pass QC over %d genes",
        cfg.tissue,
        qc_report["n_cells_after"],
        qc_report["n_cells_before"],
        adata.n_vars,
    )
    return adata, qc_report


def annotate_pass(
    adata: ad.AnnData,
    labels: Any,
    vocabulary: OntologyVocabulary,
    pass_name: str,
    logger: logging.Logger,
) -> ad.AnnData:
    label_map = read_label_map(labels)
    annotated = apply_cluster_labels(adata, label_map, vocabulary)
    n_undetermined = int(annotated.obs["cell_ontology_class"].isna().sum())
    logger.info(
        "%s: labelled %d clusters; %d cells without an ontology class",
        pass_name,
        int(annotated.obs[CLUSTER_KEY].nunique()),
        n_undetermined,
    )
    return annotated


def run_subcluster_pass(
    parent: ad.AnnData,
    sub_cfg: SubclusterConfig,
    vocabulary: OntologyVocabulary,
    logger: logging.Logger,
) -> tuple[ad.AnnData, ad.AnnData]:
    """Recluster selected parent clusters and merge their labels back.

    Returns ``(merged_parent, subcluster)``.
    """
    sub = subset_clusters(parent, sub_cfg.clusters)
    sub = embed_and_cluster(sub, sub_cfg.clustering)
    sub = annotate_pass(sub, sub_cfg.labels, vocabulary, sub_cfg.name, logger)
    merged = merge_subcluster_annotations(parent, sub)
    logger.info(
        "%s: merged %d subcluster cells into parent of %d cells",
        sub_cfg.name,
        sub.n_obs,
        merged.n_obs,
    )
    return merged, sub


def _run(cfg: TissueConfig, logger: logging.Logger) -> TissueResult:
    outdir = Path(cfg.outdir)

    counts = read_count_matrix(cfg.counts_path)
    plate_metadata = read_plate_metadata(cfg.metadata_path)
    vocabulary = load_vocabulary(cfg.ontology_source)

    adata, qc_report = ingest_tissue(counts, plate_metadata, cfg, logger)
    adata = embed_and_cluster(adata, cfg.clustering)
    adata = annotate_pass(adata, cfg.labels, vocabulary, cfg.tissue, logger)

    subs: list[tuple[SubclusterConfig, ad.AnnData]] = []
    for sub_cfg in cfg.subclusters:
        adata, sub = run_subcluster_pass(adata, sub_cfg, vocabulary, logger)
        subs.append((sub_cfg, sub))

    # outputs are written only once every pass has succeeded
    sub_rows: list[dict[str, Any]] = []
    for sub_cfg, sub in subs:
        sub_path = write_annotated(
            sub, outdir / f"{cfg.tissue}_{sub_cfg.name}_subcluster.h5ad"
        )
        sub_rows.append(
            {
                "name": sub_cfg.name,
                "parent_clusters": list(sub_cfg.clusters),
                "n_cells": int(sub.n_obs),
                "n_clusters": int(sub.obs[CLUSTER_KEY].nunique()),
                "h5ad_path": sub_path.as_posix(),
            }
        )

    h5ad_path = write_annotated(adata, outdir / f"{cfg.tissue}_annotated.h5ad")
    csv_path = outdir / f"{cfg.tissue}_cell_ontology_class.csv"
    export_annotations(adata, csv_path)
    annotation_summary(adata).to_csv(
        outdir / f"{cfg.tissue}_annotation_summary.csv", index=False
    )

    summary_path = outdir / "run_summary.json"
    write_json(
        summary_path,
        {
            "timestamp_utc": _now_utc_iso(),
            "tissue": cfg.tissue,
            "qc": qc_report,
            "n_cells_annotated": int(adata.n_obs),
            "n_genes": int(adata.n_vars),
            "n_clusters": int(adata.obs[CLUSTER_KEY].nunique()),
            "n_ontology_terms": len(vocabulary),
            "clustering": asdict(cfg.clustering),
            "subclusters": sub_rows,
            "facsannot_version": __version__,
            "python_version": platform.python_version(),
            "versions": {
                "scanpy": _package_version("scanpy"),
                "anndata": _package_version("anndata"),
                "numpy": np.__version__,
                "pandas": pd.__version__,
            },
        },
    )
    logger.info("Tissue %s complete. Results in %s", cfg.tissue, outdir.as_posix())
    return TissueResult(
        tissue=cfg.tissue,
        n_cells_raw=int(counts.shape[1]),
        n_cells_annotated=int(adata.n_obs),
        n_clusters=int(adata.obs[CLUSTER_KEY].nunique()),
        subclusters=tuple(s.name for s in cfg.subclusters),
        h5ad_path=h5ad_path.as_posix(),
        csv_path=csv_path.as_posix(),
        summary_path=summary_path.as_posix(),
    )


def run_tissue(config_path: str | Path) -> TissueResult:
    """Run the full annotation pipeline for one tissue config."""
    cfg = load_tissue_config(config_path)
    # package-level handlers so module loggers land in the run log too
    setup_logger(Path(cfg.outdir) / "logs" / f"{cfg.tissue}.log", "facsannot")
    logger = logging.getLogger(f"facsannot.{cfg.tissue}")
    try:
        return _run(cfg, logger)
    except FacsAnnotError as exc:
        logger.error("%s aborted: %s", cfg.tissue, exc)
        raise
