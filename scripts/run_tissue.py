#!/usr/bin/env python3
"""CLI entrypoint for a single-tissue annotation run."""

from __future__ import annotations

import argparse

from facsannot.pipeline.tissue import run_tissue


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the FACS tissue annotation pipeline."
    )
    parser.add_argument(
        "--config", required=True, help="Path to JSON config for the tissue."
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    run_tissue(str(args.config))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
