"""Core merge, ontology and annotation subpackage."""

from facsannot.core.annotation import (
    annotation_summary,
    apply_cluster_labels,
    coerce_label_map,
    merge_subcluster_annotations,
)
from facsannot.core.metadata import merge_plate_metadata, plate_barcode_from_cell_id
from facsannot.core.ontology import (
    find_invalid_labels,
    resolve_label,
    resolve_labels,
    validate_labels,
)
from facsannot.core.types import (
    ClusterLabel,
    ClusterLabelMap,
    ClusterParams,
    OntologyVocabulary,
    QCThresholds,
)

__all__ = [
    "ClusterLabel",
    "ClusterLabelMap",
    "ClusterParams",
    "OntologyVocabulary",
    "QCThresholds",
    "annotation_summary",
    "apply_cluster_labels",
    "coerce_label_map",
    "find_invalid_labels",
    "merge_plate_metadata",
    "merge_subcluster_annotations",
    "plate_barcode_from_cell_id",
    "resolve_label",
    "resolve_labels",
    "validate_labels",
]
