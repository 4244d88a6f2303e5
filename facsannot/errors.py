"""Exception taxonomy for metadata merging and label propagation.

Every error here reflects a data or authoring mistake that the analyst has to
fix; none are retried and no partial result is returned alongside them.
"""

from __future__ import annotations

from typing import Iterable


def _preview(items: tuple[str, ...], limit: int = 20) -> str:
    shown = ", ".join(repr(x) for x in items[:limit])
    if len(items) > limit:
        shown += f", ... ({len(items) - limit} more)"
    return shown


class FacsAnnotError(ValueError):
    """Base class for fatal annotation-pipeline errors."""


class MetadataJoinError(FacsAnnotError):
    """Cells whose plate barcode cannot be derived or has no plate metadata."""

    def __init__(self, cell_ids: Iterable[str], reason: str = "no matching plate metadata"):
        self.cell_ids = tuple(str(c) for c in cell_ids)
        self.reason = reason
        super().__init__(
            f"{len(self.cell_ids)} cell(s) with {reason}: {_preview(self.cell_ids)}"
        )


class OntologyValidationError(FacsAnnotError):
    """Labels that are not names in the ontology vocabulary."""

    def __init__(self, invalid_labels: Iterable[str]):
        self.invalid_labels = tuple(str(x) for x in invalid_labels)
        super().__init__(
            "Labels not found in ontology vocabulary: "
            f"{_preview(self.invalid_labels, limit=len(self.invalid_labels))}"
        )


class OntologyResolutionError(FacsAnnotError):
    """Resolution attempted on a label that was never validated."""

    def __init__(self, label: str):
        self.label = str(label)
        super().__init__(
            f"No ontology identifier for label {self.label!r}; "
            "labels must pass validation before resolution."
        )


class UnmappedClusterError(FacsAnnotError):
    """Cluster ids present in the data but absent from the label map."""

    def __init__(self, cluster_ids: Iterable[int]):
        self.cluster_ids = tuple(cluster_ids)
        super().__init__(
            "Clusters without a label entry: "
            + ", ".join(str(c) for c in self.cluster_ids)
        )


class ForeignCellError(FacsAnnotError):
    """Subcluster cells that do not belong to the parent population."""

    def __init__(self, cell_ids: Iterable[str]):
        self.cell_ids = tuple(str(c) for c in cell_ids)
        super().__init__(
            f"{len(self.cell_ids)} subcluster cell(s) not present in parent: "
            f"{_preview(self.cell_ids)}"
        )
