"""Per-cell QC metrics, ERCC spike-in removal and cell filtering."""

from __future__ import annotations

import logging
from typing import Any

import anndata as ad
import numpy as np
import scipy.sparse as sp

from facsannot.core.types import QCThresholds

logger = logging.getLogger(__name__)

ERCC_PREFIX = "ERCC-"
RIBO_PATTERN = r"^Rp[sl][0-9]"


def _row_sum(X: Any, mask: np.ndarray) -> np.ndarray:
    if not np.any(mask):
        return np.zeros(X.shape[0], dtype=float)
    sub = X[:, np.flatnonzero(mask)]
    return np.asarray(sub.sum(axis=1)).ravel().astype(float)


def _row_detected(X: Any, mask: np.ndarray) -> np.ndarray:
    sub = X[:, np.flatnonzero(mask)]
    if sp.issparse(sub):
        return np.asarray((sub > 0).sum(axis=1)).ravel().astype(np.int64)
    return np.asarray((np.asarray(sub) > 0).sum(axis=1)).ravel().astype(np.int64)


def _safe_fraction(num: np.ndarray, denom: np.ndarray) -> np.ndarray:
    out = np.zeros_like(num, dtype=float)
    np.divide(num, denom, out=out, where=denom > 0)
    return out


def ercc_mask(adata: ad.AnnData) -> np.ndarray:
    return np.asarray(adata.var_names.str.startswith(ERCC_PREFIX), dtype=bool)


def ribo_mask(adata: ad.AnnData) -> np.ndarray:
    return np.asarray(
        adata.var_names.str.contains(RIBO_PATTERN, regex=True), dtype=bool
    )


def compute_qc_metrics(adata: ad.AnnData) -> ad.AnnData:
    """Return a copy of ``adata`` with QC columns added to ``obs``.

    - ``percent_ercc``: ERCC counts over all counts (fraction).
    - ``percent_ribo``: ribosomal protein gene counts over non-ERCC counts.
    - ``n_reads``: non-ERCC counts.
    - ``n_genes``: non-ERCC genes with a nonzero count.
    """
    out = adata.copy()
    X = out.X
    ercc = ercc_mask(out)
    genes = ~ercc

    total = _row_sum(X, np.ones(out.n_vars, dtype=bool))
    ercc_counts = _row_sum(X, ercc)
    gene_counts = _row_sum(X, genes)
    ribo_counts = _row_sum(X, ribo_mask(out) & genes)

    out.obs["percent_ercc"] = _safe_fraction(ercc_counts, total)
    out.obs["percent_ribo"] = _safe_fraction(ribo_counts, gene_counts)
    out.obs["n_reads"] = gene_counts
    out.obs["n_genes"] = _row_detected(X, genes)
    logger.info(
        "QC metrics: %d cells, %d ERCC spike-ins, median n_reads=%.0f",
        out.n_obs,
        int(ercc.sum()),
        float(np.median(gene_counts)) if gene_counts.size else float("nan"),
    )
    return out


def remove_ercc(adata: ad.AnnData) -> ad.AnnData:
    """Drop ERCC spike-in rows; run after ``compute_qc_metrics``."""
    mask = ercc_mask(adata)
    if mask.any() and "percent_ercc" not in adata.obs.columns:
        raise ValueError("percent_ercc must be computed before ERCC genes are removed.")
    return adata[:, ~mask].copy()


def filter_cells(
    adata: ad.AnnData, thresholds: QCThresholds
) -> tuple[ad.AnnData, dict[str, Any]]:
    """Keep cells passing minimum gene and read thresholds."""
    missing = [c for c in ("n_genes", "n_reads") if c not in adata.obs.columns]
    if missing:
        raise KeyError(
            f"QC metrics missing ({', '.join(missing)}); run compute_qc_metrics first."
        )
    obs = adata.obs
    mask = (obs["n_genes"] >= thresholds.min_genes) & (
        obs["n_reads"] >= thresholds.min_reads
    )
    adata_f = adata[mask.to_numpy()].copy()
    report = {
        "n_cells_before": int(adata.n_obs),
        "n_cells_after": int(adata_f.n_obs),
        "min_genes": int(thresholds.min_genes),
        "min_reads": int(thresholds.min_reads),
    }
    logger.info(
        "QC filter kept %d of %d cells (min_genes=%d, min_reads=%d)",
        report["n_cells_after"],
        report["n_cells_before"],
        thresholds.min_genes,
        thresholds.min_reads,
    )
    if adata_f.n_obs == 0:
        raise ValueError("No cells passed QC filtering; check thresholds.")
    return adata_f, report
