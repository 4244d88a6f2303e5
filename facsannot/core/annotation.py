"""Cluster label propagation onto per-cell annotation columns."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import anndata as ad
import numpy as np
import pandas as pd

from facsannot.core.ontology import resolve_label, validate_labels
from facsannot.core.types import (
    ANNOTATION_COLUMNS,
    CELL_ONTOLOGY_CLASS,
    CELL_ONTOLOGY_ID,
    CLUSTER_KEY,
    FREE_ANNOTATION,
    ClusterLabel,
    ClusterLabelMap,
    OntologyVocabulary,
    is_null,
)
from facsannot.errors import ForeignCellError, UnmappedClusterError

logger = logging.getLogger(__name__)


def _obs_frame(table: ad.AnnData | pd.DataFrame) -> pd.DataFrame:
    if isinstance(table, ad.AnnData):
        return table.obs
    if isinstance(table, pd.DataFrame):
        return table
    raise TypeError(
        f"Expected AnnData or DataFrame cell table, got {type(table).__name__}."
    )


def _with_obs(
    table: ad.AnnData | pd.DataFrame, obs: pd.DataFrame
) -> ad.AnnData | pd.DataFrame:
    if isinstance(table, ad.AnnData):
        out = table.copy()
        out.obs = obs
        return out
    return obs


def _null_to_none(value: Any) -> str | None:
    return None if is_null(value) else str(value)


def coerce_cluster_label(value: Any) -> ClusterLabel:
    """Accept a ClusterLabel, ``(free, class)`` pair, mapping or None."""
    if isinstance(value, ClusterLabel):
        return value
    if value is None:
        return ClusterLabel()
    if isinstance(value, Mapping):
        unknown = set(value) - {FREE_ANNOTATION, CELL_ONTOLOGY_CLASS}
        if unknown:
            raise ValueError(f"Unknown cluster label field(s): {sorted(unknown)}")
        return ClusterLabel(
            free_annotation=_null_to_none(value.get(FREE_ANNOTATION)),
            cell_ontology_class=_null_to_none(value.get(CELL_ONTOLOGY_CLASS)),
        )
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return ClusterLabel(
            free_annotation=_null_to_none(value[0]),
            cell_ontology_class=_null_to_none(value[1]),
        )
    raise ValueError(f"Cannot interpret cluster label: {value!r}")


def coerce_label_map(label_map: Mapping[Any, Any]) -> ClusterLabelMap:
    """Normalize keys to int cluster ids and values to ClusterLabel."""
    out: ClusterLabelMap = {}
    for key, value in label_map.items():
        try:
            cluster_id = int(key)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Cluster id {key!r} is not an integer.") from exc
        if cluster_id in out:
            raise ValueError(f"Cluster id {cluster_id} is labelled more than once.")
        out[cluster_id] = coerce_cluster_label(value)
    return out


def cluster_ids_of(obs: pd.DataFrame, cluster_key: str = CLUSTER_KEY) -> np.ndarray:
    """Integer cluster id per cell (scanpy stores them as string categories)."""
    if cluster_key not in obs.columns:
        raise KeyError(f"Cell table has no '{cluster_key}' column.")
    col = obs[cluster_key]
    if col.isna().any():
        raise ValueError(f"Column '{cluster_key}' contains missing cluster ids.")
    values = pd.to_numeric(col.astype(str), errors="raise")
    ints = values.astype(np.int64)
    if not np.array_equal(ints.to_numpy(), values.to_numpy()):
        raise ValueError(f"Column '{cluster_key}' contains non-integer cluster ids.")
    return ints.to_numpy()


def apply_cluster_labels(
    cells: ad.AnnData | pd.DataFrame,
    label_map: Mapping[Any, Any],
    vocabulary: OntologyVocabulary,
    cluster_key: str = CLUSTER_KEY,
) -> ad.AnnData | pd.DataFrame:
    """Set per-cell annotation columns from a cluster -> label map.

    Returns a new table of the same kind as ``cells``; the input is left
    unchanged. Ontology classes used by the present clusters are validated
    before any column is written.

    Raises:
        UnmappedClusterError: if a cluster present in ``cells`` has no entry.
        OntologyValidationError: if a mapped ontology class is unknown.
    """
    obs = _obs_frame(cells)
    labels = coerce_label_map(label_map)
    cluster_ids = cluster_ids_of(obs, cluster_key)

    present = sorted(set(int(c) for c in cluster_ids))
    missing = [c for c in present if c not in labels]
    if missing:
        raise UnmappedClusterError(missing)
    unused = sorted(set(labels) - set(present))
    if unused:
        logger.warning(
            "Label map has entries for clusters absent from the data: %s", unused
        )

    validate_labels([labels[c].cell_ontology_class for c in present], vocabulary)
    term_ids = {
        c: resolve_label(labels[c].cell_ontology_class, vocabulary) for c in present
    }

    out = obs.copy()
    out[FREE_ANNOTATION] = pd.Series(
        [labels[c].free_annotation for c in cluster_ids], index=out.index, dtype=object
    )
    out[CELL_ONTOLOGY_CLASS] = pd.Series(
        [labels[c].cell_ontology_class for c in cluster_ids],
        index=out.index,
        dtype=object,
    )
    out[CELL_ONTOLOGY_ID] = pd.Series(
        [term_ids[c] for c in cluster_ids], index=out.index, dtype=object
    )
    logger.info(
        "Applied labels for %d clusters to %d cells", len(present), len(out)
    )
    return _with_obs(cells, out)


def merge_subcluster_annotations(
    parent: ad.AnnData | pd.DataFrame,
    subcluster: ad.AnnData | pd.DataFrame,
    columns: tuple[str, ...] = ANNOTATION_COLUMNS,
) -> ad.AnnData | pd.DataFrame:
    """Overwrite parent annotations with subcluster annotations.

    Only rows whose cell id appears in ``subcluster`` change; every other
    parent row keeps its values. Returns a new table of the parent's kind.

    Raises:
        ForeignCellError: if ``subcluster`` holds cells absent from ``parent``.
    """
    p_obs = _obs_frame(parent)
    s_obs = _obs_frame(subcluster)

    foreign = s_obs.index[~s_obs.index.isin(p_obs.index)]
    if len(foreign) > 0:
        raise ForeignCellError(list(foreign))
    if s_obs.index.has_duplicates:
        raise ValueError("Subcluster table has duplicate cell ids.")
    missing_cols = [c for c in columns if c not in s_obs.columns]
    if missing_cols:
        raise KeyError(
            f"Subcluster table missing annotation column(s): {', '.join(missing_cols)}"
        )

    out = p_obs.copy()
    for col in columns:
        if col in out.columns:
            out[col] = out[col].astype(object)
        else:
            out[col] = pd.Series(None, index=out.index, dtype=object)
        values = [_null_to_none(v) for v in s_obs[col].tolist()]
        out.loc[s_obs.index, col] = pd.Series(values, index=s_obs.index, dtype=object)

    logger.info(
        "Merged subcluster annotations for %d of %d cells", len(s_obs), len(out)
    )
    return _with_obs(parent, out)


def annotation_summary(
    cells: ad.AnnData | pd.DataFrame, cluster_key: str = CLUSTER_KEY
) -> pd.DataFrame:
    """Cell counts per (cluster, annotation) combination."""
    obs = _obs_frame(cells)
    keys = [cluster_key, *[c for c in ANNOTATION_COLUMNS if c in obs.columns]]
    frame = obs[keys].astype(object).where(obs[keys].notna(), "NA")
    return (
        frame.groupby(keys, sort=True, observed=True)
        .size()
        .rename("n_cells")
        .reset_index()
    )
