"""Command-line interface for checking the law firm network dataset."""

import argparse
import sys
from pathlib import Path

from lawfirm_networks.config import CATEGORICAL_ATTRIBUTES, DATA_DIR, EDGE_FILES, LAYERS
from lawfirm_networks.loader import DataIntegrityError, load_dataset


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="lawfirm-data",
        description="Validate the law firm network CSVs and print a dataset summary.",
    )
    parser.add_argument(
        "data_dir",
        nargs="?",
        type=Path,
        default=DATA_DIR,
        help=f"Directory holding the four input CSVs (default: {DATA_DIR}/)",
    )
    parser.add_argument(
        "--layer",
        choices=LAYERS,
        action="append",
        default=None,
        help="Only summarize this layer (repeatable; default: all layers)",
    )
    parser.add_argument(
        "--no-attributes",
        action="store_true",
        help="Skip the attribute distribution summary",
    )

    args = parser.parse_args(argv)

    try:
        data = load_dataset(args.data_dir)
    except DataIntegrityError as exc:
        print(f"Validation failed: {exc}", file=sys.stderr)
        return 1

    layers = args.layer or list(LAYERS)
    n = data.n_nodes
    possible = n * (n - 1)

    print(f"Dataset: {args.data_dir}")
    print(f"  Lawyers: {n}")
    print()
    print("  Ties per layer:")
    for layer in layers:
        n_ties = data.n_ties(layer)
        density = n_ties / possible if possible else 0.0
        print(f"    {layer:12s}  {n_ties:5d} ties  density={density:.4f}  ({EDGE_FILES[layer]})")

    if not args.no_attributes:
        print()
        print("  Attributes:")
        for col in CATEGORICAL_ATTRIBUTES:
            counts = data.attributes[col].value_counts(sort=True)
            parts = ", ".join(f"{row[col]}={row['count']}" for row in counts.iter_rows(named=True))
            print(f"    {col:10s}  {parts}")
        ages = data.attributes["age"]
        print(f"    {'age':10s}  min={ages.min()}, median={ages.median()}, max={ages.max()}")

    print()
    print("  OK: all edge endpoints present in the attribute table")
    return 0
