"""Plate metadata join and canonical cell ordering."""

from __future__ import annotations

import logging

import pandas as pd

from facsannot.core.types import CELL_ID, PLATE_BARCODE
from facsannot.errors import MetadataJoinError

logger = logging.getLogger(__name__)


def plate_barcode_from_cell_id(cell_id: str) -> str:
    """Derive the plate barcode from a FACS cell identifier.

    The identifier is split on ``_`` and the first token split on ``.``; the
    barcode is the second token of that inner split, e.g.
    ``"A1.B000126.3_39_F.1.1" -> "B000126"``.

    Raises:
        MetadataJoinError: if either delimiter level is missing.
    """
    cid = str(cell_id)
    if "_" not in cid:
        raise MetadataJoinError([cid], reason="no '_' delimiter in cell identifier")
    parts = cid.split("_", 1)[0].split(".")
    if len(parts) < 2 or parts[1] == "":
        raise MetadataJoinError([cid], reason="no '.'-delimited plate token")
    return parts[1]


def merge_plate_metadata(
    counts: pd.DataFrame,
    plate_metadata: pd.DataFrame,
    barcode_col: str = PLATE_BARCODE,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Join plate metadata onto cells and sort cells by identifier.

    Args:
        counts: Gene x cell count matrix; columns are cell identifiers.
        plate_metadata: One row per plate keyed by ``barcode_col``.
        barcode_col: Name of the plate key column.

    Returns:
        ``(counts_sorted, cells)`` where ``cells`` has one row per input cell,
        indexed by cell id in ascending order, and ``counts_sorted`` has its
        columns in the same order. Neither input is modified.

    Raises:
        MetadataJoinError: if any identifier is malformed or any plate barcode
            has no metadata row. All offending cells are reported at once.
    """
    if barcode_col not in plate_metadata.columns:
        raise KeyError(f"Plate metadata has no '{barcode_col}' column.")

    cell_ids = pd.Index(counts.columns).astype(str)
    if cell_ids.has_duplicates:
        dup = sorted(set(cell_ids[cell_ids.duplicated()]))
        raise ValueError(f"Duplicate cell identifiers in count matrix: {dup[:10]}")

    keys = plate_metadata[barcode_col].astype(str)
    if keys.duplicated().any():
        dup = sorted(set(keys[keys.duplicated()]))
        raise ValueError(f"Duplicate plate barcodes in plate metadata: {dup[:10]}")

    barcodes: list[str | None] = []
    malformed: list[str] = []
    for cid in cell_ids:
        try:
            barcodes.append(plate_barcode_from_cell_id(cid))
        except MetadataJoinError:
            malformed.append(cid)
            barcodes.append(None)
    if malformed:
        raise MetadataJoinError(malformed, reason="a malformed cell identifier")

    cells = pd.DataFrame(
        {barcode_col: barcodes}, index=pd.Index(cell_ids, name=CELL_ID)
    )
    meta = plate_metadata.drop(columns=[barcode_col]).set_index(
        pd.Index(keys, name=barcode_col)
    )

    unmatched = cells.index[~cells[barcode_col].isin(meta.index)]
    if len(unmatched) > 0:
        raise MetadataJoinError(list(unmatched))

    joined = cells.join(meta, on=barcode_col)
    joined = joined.sort_index(kind="mergesort")
    if len(joined) != len(cell_ids):
        raise RuntimeError(
            f"Metadata join changed cell count: {len(cell_ids)} -> {len(joined)}."
        )

    counts_sorted = counts.copy()
    counts_sorted.columns = cell_ids
    counts_sorted = counts_sorted.loc[:, joined.index]

    logger.info(
        "Merged plate metadata for %d cells across %d plates",
        len(joined),
        joined[barcode_col].nunique(),
    )
    return counts_sorted, joined
