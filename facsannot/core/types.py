"""Typed containers shared by the merge, ontology and annotation steps."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

import pandas as pd

CELL_ID = "cell"
PLATE_BARCODE = "plate.barcode"
CLUSTER_KEY = "cluster"
FREE_ANNOTATION = "free_annotation"
CELL_ONTOLOGY_CLASS = "cell_ontology_class"
CELL_ONTOLOGY_ID = "cell_ontology_id"
ANNOTATION_COLUMNS: tuple[str, ...] = (
    FREE_ANNOTATION,
    CELL_ONTOLOGY_CLASS,
    CELL_ONTOLOGY_ID,
)


def is_null(value: Any) -> bool:
    """True for None and float/pandas missing values."""
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


@dataclass(frozen=True)
class OntologyVocabulary:
    """Ordered, read-only set of ontology ``(name, id)`` pairs.

    Names are not required to be unique. Lookups by name always return the
    first entry in enumeration order.
    """

    names: tuple[str, ...]
    ids: tuple[str, ...]
    _first_id: dict[str, str] = field(
        init=False, repr=False, compare=False, default_factory=dict
    )

    def __post_init__(self) -> None:
        names = tuple(str(n) for n in self.names)
        ids = tuple(str(i) for i in self.ids)
        if len(names) != len(ids):
            raise ValueError(
                f"Vocabulary names/ids length mismatch: {len(names)} vs {len(ids)}."
            )
        first: dict[str, str] = {}
        for name, term_id in zip(names, ids):
            first.setdefault(name, term_id)
        object.__setattr__(self, "names", names)
        object.__setattr__(self, "ids", ids)
        object.__setattr__(self, "_first_id", first)

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str]]) -> "OntologyVocabulary":
        pairs = list(pairs)
        return cls(
            names=tuple(name for name, _ in pairs),
            ids=tuple(term_id for _, term_id in pairs),
        )

    @classmethod
    def from_frame(
        cls, frame: pd.DataFrame, name_col: str = "name", id_col: str = "id"
    ) -> "OntologyVocabulary":
        missing = [c for c in (name_col, id_col) if c not in frame.columns]
        if missing:
            raise KeyError(f"Vocabulary table missing column(s): {', '.join(missing)}")
        rows = frame[[name_col, id_col]].dropna()
        return cls(
            names=tuple(rows[name_col].astype(str)),
            ids=tuple(rows[id_col].astype(str)),
        )

    def __len__(self) -> int:
        return len(self.names)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name in self._first_id

    def first_id(self, name: str) -> str | None:
        return self._first_id.get(name)

    def ids_for(self, name: str) -> tuple[str, ...]:
        return tuple(i for n, i in zip(self.names, self.ids) if n == name)


@dataclass(frozen=True)
class ClusterLabel:
    """Analyst-authored label for one cluster; both fields may be null."""

    free_annotation: str | None = None
    cell_ontology_class: str | None = None


ClusterLabelMap = dict[int, ClusterLabel]


@dataclass(frozen=True)
class QCThresholds:
    min_genes: int = 500
    min_reads: int = 50000


@dataclass(frozen=True)
class ClusterParams:
    """Parameters forwarded to the scanpy embedding/clustering calls."""

    n_top_genes: int = 2000
    n_pcs: int = 20
    n_neighbors: int = 15
    resolution: float = 1.0
    method: str = "leiden"
    target_sum: float = 1e4
    perplexity: float = 30.0
    seed: int = 10
