"""Cell ontology label validation and identifier resolution."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from facsannot.core.types import OntologyVocabulary, is_null
from facsannot.errors import OntologyResolutionError, OntologyValidationError

logger = logging.getLogger(__name__)


def find_invalid_labels(
    labels: Iterable[Any], vocabulary: OntologyVocabulary
) -> list[str]:
    """Return non-null labels absent from the vocabulary, first-seen order."""
    invalid: list[str] = []
    seen: set[str] = set()
    for label in labels:
        if is_null(label):
            continue
        if label in vocabulary:
            continue
        key = str(label)
        if key not in seen:
            seen.add(key)
            invalid.append(key)
    return invalid


def validate_labels(labels: Iterable[Any], vocabulary: OntologyVocabulary) -> None:
    """Check that every non-null label is an exact vocabulary name.

    Raises:
        OntologyValidationError: listing every invalid label found.
    """
    invalid = find_invalid_labels(labels, vocabulary)
    if invalid:
        raise OntologyValidationError(invalid)


def resolve_label(label: Any, vocabulary: OntologyVocabulary) -> str | None:
    """Map a validated label to its ontology id.

    Null passes through as ``None``. When a name occurs more than once, the
    id of its first entry in vocabulary order is returned.
    """
    if is_null(label):
        return None
    if not isinstance(label, str):
        raise OntologyResolutionError(label)
    term_id = vocabulary.first_id(label)
    if term_id is None:
        raise OntologyResolutionError(label)
    candidates = vocabulary.ids_for(label)
    if len(candidates) > 1:
        logger.info(
            "Ontology name %r maps to %d ids %s; using %s",
            label,
            len(candidates),
            list(candidates),
            term_id,
        )
    return term_id


def resolve_labels(
    labels: Iterable[Any], vocabulary: OntologyVocabulary
) -> list[str | None]:
    return [resolve_label(label, vocabulary) for label in labels]
