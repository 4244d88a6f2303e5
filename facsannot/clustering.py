"""Normalization, embedding and clustering delegated to scanpy."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Iterable

import anndata as ad
import numpy as np

from facsannot.core.annotation import cluster_ids_of
from facsannot.core.types import CLUSTER_KEY, ClusterParams

logger = logging.getLogger(__name__)

# var columns written by sc.pp.highly_variable_genes
HVG_VAR_COLUMNS = ("highly_variable", "means", "dispersions", "dispersions_norm")

COUNTS_LAYER = "counts"
CLUSTER_METHODS = ("leiden", "louvain")


def _get_scanpy():
    import scanpy as sc

    return sc


def embed_and_cluster(
    adata: ad.AnnData,
    params: ClusterParams,
    key_added: str = CLUSTER_KEY,
) -> ad.AnnData:
    """Cluster and embed one population; returns a new AnnData.

    ``adata.X`` must hold raw counts. The result keeps them in
    ``layers["counts"]``, stores log-normalized values in ``X``, integer
    cluster ids in ``obs[key_added]`` and the t-SNE embedding in
    ``obsm["X_tsne"]``.
    """
    if params.method not in CLUSTER_METHODS:
        raise ValueError(
            f"Unknown clustering method '{params.method}'. Use one of {CLUSTER_METHODS}."
        )
    if adata.n_obs < 3:
        raise ValueError(f"Need at least 3 cells to cluster, got {adata.n_obs}.")

    sc = _get_scanpy()
    out = adata.copy()
    out.layers[COUNTS_LAYER] = out.X.copy()
    sc.pp.normalize_total(out, target_sum=params.target_sum)
    sc.pp.log1p(out)

    n_top = min(int(params.n_top_genes), out.n_vars)
    sc.pp.highly_variable_genes(out, n_top_genes=n_top, flavor="seurat")
    work = out[:, out.var["highly_variable"].to_numpy()].copy()
    sc.pp.scale(work, max_value=10)

    n_comps = min(int(params.n_pcs), max(2, min(work.n_obs - 1, work.n_vars - 1)))
    sc.tl.pca(work, n_comps=n_comps, svd_solver="arpack", random_state=params.seed)
    sc.pp.neighbors(
        work,
        n_neighbors=min(int(params.n_neighbors), work.n_obs - 1),
        n_pcs=n_comps,
        random_state=params.seed,
    )
    if params.method == "leiden":
        sc.tl.leiden(
            work,
            resolution=params.resolution,
            random_state=params.seed,
            key_added=key_added,
        )
    else:
        sc.tl.louvain(
            work,
            resolution=params.resolution,
            random_state=params.seed,
            key_added=key_added,
        )
    # t-SNE requires perplexity < n_obs
    perplexity = min(float(params.perplexity), max(1.0, (work.n_obs - 1) / 3.0))
    sc.tl.tsne(
        work, n_pcs=n_comps, perplexity=perplexity, random_state=params.seed
    )

    out.obs[key_added] = cluster_ids_of(work.obs, key_added)
    out.obsm["X_pca"] = np.asarray(work.obsm["X_pca"])
    out.obsm["X_tsne"] = np.asarray(work.obsm["X_tsne"])
    out.uns["clustering"] = asdict(params)
    logger.info(
        "%s clustering (resolution=%.2f, n_pcs=%d): %d clusters over %d cells",
        params.method,
        params.resolution,
        n_comps,
        int(out.obs[key_added].nunique()),
        out.n_obs,
    )
    return out


def subset_clusters(
    adata: ad.AnnData,
    cluster_ids: Iterable[int],
    cluster_key: str = CLUSTER_KEY,
) -> ad.AnnData:
    """Raw-count copy of the cells in ``cluster_ids`` for a subcluster pass."""
    wanted = sorted({int(c) for c in cluster_ids})
    if not wanted:
        raise ValueError("Subcluster selection needs at least one cluster id.")
    present = cluster_ids_of(adata.obs, cluster_key)
    absent = [c for c in wanted if c not in set(present.tolist())]
    if absent:
        raise KeyError(f"Cluster(s) {absent} not present in '{cluster_key}'.")

    mask = np.isin(present, wanted)
    sub = adata[mask].copy()
    if COUNTS_LAYER in sub.layers:
        sub.X = sub.layers[COUNTS_LAYER].copy()
        del sub.layers[COUNTS_LAYER]
    parent_key = f"parent_{cluster_key}"
    sub.obs = sub.obs.drop(columns=[parent_key], errors="ignore").rename(
        columns={cluster_key: parent_key}
    )
    for key in ("X_pca", "X_tsne"):
        sub.obsm.pop(key, None)
    for key in ("clustering", "log1p", "hvg"):
        sub.uns.pop(key, None)
    sub.var = sub.var.drop(columns=list(HVG_VAR_COLUMNS), errors="ignore")
    logger.info("Selected %d cells from clusters %s for subclustering", sub.n_obs, wanted)
    return sub
