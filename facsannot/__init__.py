"""facsannot public API."""

from facsannot._version import __version__
from facsannot.core.annotation import apply_cluster_labels, merge_subcluster_annotations
from facsannot.core.metadata import merge_plate_metadata, plate_barcode_from_cell_id
from facsannot.core.ontology import resolve_label, resolve_labels, validate_labels
from facsannot.core.types import ClusterLabel, OntologyVocabulary
from facsannot.errors import (
    FacsAnnotError,
    ForeignCellError,
    MetadataJoinError,
    OntologyResolutionError,
    OntologyValidationError,
    UnmappedClusterError,
)


def run_tissue(*args, **kwargs):
    """Lazy wrapper to avoid importing scanpy at import time."""
    from facsannot.pipeline.tissue import run_tissue as _run_tissue

    return _run_tissue(*args, **kwargs)


__all__ = [
    "__version__",
    "ClusterLabel",
    "OntologyVocabulary",
    "FacsAnnotError",
    "ForeignCellError",
    "MetadataJoinError",
    "OntologyResolutionError",
    "OntologyValidationError",
    "UnmappedClusterError",
    "apply_cluster_labels",
    "merge_plate_metadata",
    "merge_subcluster_annotations",
    "plate_barcode_from_cell_id",
    "resolve_label",
    "resolve_labels",
    "validate_labels",
    "run_tissue",
]
