"""Pipeline I/O, logging, and utility helpers."""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import anndata as ad
import numpy as np
import pandas as pd
import requests
import scipy.sparse as sp

from facsannot.config import load_json_config
from facsannot.core.annotation import coerce_label_map
from facsannot.core.types import (
    ANNOTATION_COLUMNS,
    CELL_ID,
    CELL_ONTOLOGY_CLASS,
    CELL_ONTOLOGY_ID,
    FREE_ANNOTATION,
    PLATE_BARCODE,
    ClusterLabelMap,
    OntologyVocabulary,
)

logger = logging.getLogger(__name__)

ONTOLOGY_TIMEOUT_S = 60
EXPORT_COLUMNS: tuple[str, ...] = (
    CELL_ID,
    PLATE_BARCODE,
    CELL_ONTOLOGY_CLASS,
    CELL_ONTOLOGY_ID,
    FREE_ANNOTATION,
    "tSNE_1",
    "tSNE_2",
)


def ensure_dir(path: str | Path) -> None:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)


def write_json(path: str | Path, payload: dict[str, Any]) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)


def setup_logger(log_path: Path, logger_name: str) -> logging.Logger:
    ensure_dir(log_path.parent)
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


def _sep_for(name: str) -> str:
    lower = name.lower()
    if lower.endswith((".tsv", ".tsv.gz", ".txt", ".txt.gz", ".tab")):
        return "\t"
    return ","


def _require_file(path: str | Path, what: str) -> Path:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"{what} not found: {p}")
    return p


def read_count_matrix(path: str | Path) -> pd.DataFrame:
    """Read a gene x cell count table (first column genes, first row cells)."""
    p = _require_file(path, "Count matrix")
    sep = _sep_for(p.name)
    # read_csv mangles repeated headers ("x" -> "x.1"), so check the raw row
    header = pd.read_csv(p, sep=sep, header=None, nrows=1, dtype=str)
    cells = pd.Index(header.iloc[0, 1:].astype(str))
    if cells.has_duplicates:
        dup = sorted(set(cells[cells.duplicated()]))
        raise ValueError(f"Duplicate cell ids in count matrix: {dup[:10]}")
    counts = pd.read_csv(p, sep=sep, index_col=0)
    counts.index = counts.index.astype(str)
    counts.index.name = "gene"
    if counts.index.has_duplicates:
        dup = sorted(set(counts.index[counts.index.duplicated()]))
        raise ValueError(f"Duplicate gene names in count matrix: {dup[:10]}")
    non_numeric = [c for c in counts.columns if not pd.api.types.is_numeric_dtype(counts[c])]
    if non_numeric:
        raise ValueError(f"Non-numeric count column(s): {non_numeric[:10]}")
    if counts.isna().to_numpy().any():
        raise ValueError("Count matrix contains missing values.")
    if (counts.to_numpy() < 0).any():
        raise ValueError("Count matrix contains negative counts.")
    logger.info("Read count matrix %s: %d genes x %d cells", p, *counts.shape)
    return counts


def read_plate_metadata(path: str | Path) -> pd.DataFrame:
    """Read plate metadata; the first column becomes ``plate.barcode``."""
    p = _require_file(path, "Plate metadata")
    meta = pd.read_csv(p, sep=_sep_for(p.name), dtype=str)
    if meta.shape[1] == 0:
        raise ValueError(f"Plate metadata '{p}' has no columns.")
    meta = meta.rename(columns={meta.columns[0]: PLATE_BARCODE})
    logger.info("Read plate metadata %s: %d plates", p, len(meta))
    return meta


def parse_obo_terms(text: str, include_obsolete: bool = True) -> OntologyVocabulary:
    """Collect ``(name, id)`` for each ``[Term]`` stanza in file order."""
    pairs: list[tuple[str, str]] = []
    in_term = False
    term: dict[str, str] = {}

    def _flush() -> None:
        if "id" in term and "name" in term:
            if include_obsolete or term.get("is_obsolete") != "true":
                pairs.append((term["name"], term["id"]))

    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("[") and line.endswith("]"):
            if in_term:
                _flush()
            in_term = line == "[Term]"
            term = {}
            continue
        if not in_term or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        if key in {"id", "name", "is_obsolete"} and key not in term:
            term[key] = value.split(" ! ")[0].strip()
    if in_term:
        _flush()
    if not pairs:
        raise ValueError("No [Term] stanzas with id and name found in OBO text.")
    return OntologyVocabulary.from_pairs(pairs)


def _vocabulary_from_text(text: str, name: str) -> OntologyVocabulary:
    lower = name.lower()
    if lower.endswith(".obo"):
        return parse_obo_terms(text)
    if lower.endswith((".csv", ".tsv", ".txt")):
        frame = pd.read_csv(io.StringIO(text), sep=_sep_for(lower), dtype=str)
        return OntologyVocabulary.from_frame(frame)
    raise ValueError(
        f"Unsupported ontology source '{name}'. Use .obo, .csv or .tsv."
    )


def load_vocabulary(source: str | Path) -> OntologyVocabulary:
    """Load the ontology vocabulary from a local file or an http(s) URL."""
    src = str(source)
    parsed = urlparse(src)
    if parsed.scheme in {"http", "https"}:
        logger.info("Fetching ontology from %s", src)
        resp = requests.get(src, timeout=ONTOLOGY_TIMEOUT_S)
        resp.raise_for_status()
        vocab = _vocabulary_from_text(resp.text, parsed.path)
    else:
        p = _require_file(src, "Ontology source")
        vocab = _vocabulary_from_text(p.read_text(encoding="utf-8"), p.name)
    logger.info("Loaded ontology vocabulary with %d terms", len(vocab))
    return vocab


def read_label_map(source: str | Path | Mapping[str, Any]) -> ClusterLabelMap:
    """Read a cluster label map from an inline mapping, JSON or CSV/TSV file.

    JSON: ``{"0": {"free_annotation": ..., "cell_ontology_class": ...}, ...}``.
    CSV: columns ``cluster``, ``free_annotation``, ``cell_ontology_class``;
    empty cells are null.
    """
    if isinstance(source, Mapping):
        return coerce_label_map(source)
    p = _require_file(source, "Label map")
    if p.suffix.lower() == ".json":
        return coerce_label_map(load_json_config(p))
    frame = pd.read_csv(p, sep=_sep_for(p.name), dtype=str)
    missing = [c for c in ("cluster", FREE_ANNOTATION, CELL_ONTOLOGY_CLASS) if c not in frame.columns]
    if missing:
        raise KeyError(f"Label map '{p}' missing column(s): {', '.join(missing)}")
    if frame["cluster"].duplicated().any():
        dup = sorted(set(frame.loc[frame["cluster"].duplicated(), "cluster"]))
        raise ValueError(f"Label map '{p}' repeats cluster id(s): {dup}")
    rows = {
        row["cluster"]: (row[FREE_ANNOTATION], row[CELL_ONTOLOGY_CLASS])
        for _, row in frame.iterrows()
    }
    return coerce_label_map(rows)


def build_anndata(counts: pd.DataFrame, cells: pd.DataFrame) -> ad.AnnData:
    """Cells x genes AnnData from a merged gene x cell matrix and cell table.

    Annotation columns are created empty.
    """
    if list(counts.columns) != list(cells.index):
        raise ValueError("Count matrix columns and cell table index are not aligned.")
    X = sp.csr_matrix(counts.to_numpy(dtype=np.float32).T)
    obs = cells.copy()
    for col in ANNOTATION_COLUMNS:
        obs[col] = pd.Series(None, index=obs.index, dtype=object)
    var = pd.DataFrame(index=pd.Index(counts.index.astype(str), name=None))
    obs.index.name = None
    return ad.AnnData(X=X, obs=obs, var=var)


def write_annotated(adata: ad.AnnData, path: str | Path) -> Path:
    """Persist the full annotated object as ``.h5ad``."""
    out = Path(path)
    ensure_dir(out.parent)
    to_write = adata.copy()
    for col in ANNOTATION_COLUMNS:
        if col in to_write.obs.columns:
            to_write.obs[col] = pd.Categorical(to_write.obs[col].astype(object))
    to_write.write_h5ad(out)
    logger.info("Wrote annotated object to %s", out)
    return out


def export_annotations(
    adata: ad.AnnData,
    path: str | Path,
    embedding_key: str = "X_tsne",
) -> pd.DataFrame:
    """Write the per-cell annotation CSV and return the exported table."""
    if embedding_key not in adata.obsm:
        raise KeyError(f"adata.obsm['{embedding_key}'] missing; cannot export coordinates.")
    missing = [c for c in (PLATE_BARCODE, *ANNOTATION_COLUMNS) if c not in adata.obs.columns]
    if missing:
        raise KeyError(f"adata.obs missing column(s) for export: {', '.join(missing)}")
    emb = np.asarray(adata.obsm[embedding_key], dtype=float)
    if emb.ndim != 2 or emb.shape[1] < 2:
        raise ValueError(f"adata.obsm['{embedding_key}'] must have shape (N, 2+).")

    table = pd.DataFrame(
        {
            CELL_ID: adata.obs_names.astype(str),
            PLATE_BARCODE: adata.obs[PLATE_BARCODE].astype(object).to_numpy(),
            CELL_ONTOLOGY_CLASS: adata.obs[CELL_ONTOLOGY_CLASS].astype(object).to_numpy(),
            CELL_ONTOLOGY_ID: adata.obs[CELL_ONTOLOGY_ID].astype(object).to_numpy(),
            FREE_ANNOTATION: adata.obs[FREE_ANNOTATION].astype(object).to_numpy(),
            "tSNE_1": emb[:, 0],
            "tSNE_2": emb[:, 1],
        },
        columns=list(EXPORT_COLUMNS),
    )
    out = Path(path)
    ensure_dir(out.parent)
    table.to_csv(out, index=False)
    logger.info("Exported %d cell annotations to %s", len(table), out)
    return table
