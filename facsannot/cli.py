"""Command-line interface for tissue annotation runs."""

from __future__ import annotations

import argparse
import logging
from typing import Iterable

from facsannot.core.ontology import find_invalid_labels
from facsannot.pipeline.io import load_vocabulary, read_label_map


def run_main(argv: Iterable[str] | None = None) -> int:
    """Run the full annotation pipeline for one tissue.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success).
    """
    parser = argparse.ArgumentParser(description="Annotate one FACS tissue")
    parser.add_argument("--config", required=True, help="Path to tissue JSON config.")
    args = parser.parse_args(list(argv) if argv is not None else None)

    from facsannot.pipeline.tissue import run_tissue

    result = run_tissue(args.config)
    print(f"tissue={result.tissue}")
    print(f"n_cells_annotated={result.n_cells_annotated}")
    print(f"n_clusters={result.n_clusters}")
    print(f"csv={result.csv_path}")
    return 0


def validate_labels_main(argv: Iterable[str] | None = None) -> int:
    """Check a label map's ontology classes against the vocabulary.

    Returns:
        0 when every class is valid, 1 otherwise.
    """
    parser = argparse.ArgumentParser(description="Validate a cluster label map")
    parser.add_argument("--labels", required=True, help="Label map (.json or .csv).")
    parser.add_argument(
        "--ontology", required=True, help="Ontology source (.obo/.csv path or URL)."
    )
    args = parser.parse_args(list(argv) if argv is not None else None)

    label_map = read_label_map(args.labels)
    vocabulary = load_vocabulary(args.ontology)
    invalid = find_invalid_labels(
        [label.cell_ontology_class for label in label_map.values()], vocabulary
    )
    if invalid:
        for label in invalid:
            print(f"invalid_label={label}")
        return 1
    print(f"labels_ok={len(label_map)}")
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code.
    """
    parser = argparse.ArgumentParser(description="facsannot CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run the tissue annotation pipeline")
    sub.add_parser("validate-labels", help="Validate a label map against an ontology")

    args, remainder = parser.parse_known_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
    if args.command == "run":
        return run_main(remainder)
    if args.command == "validate-labels":
        return validate_labels_main(remainder)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
