"""CSV loading and validation for the law firm network dataset.

Reads three directed edge lists (advice, co-work, friendship) and one node
attribute table, recodes the integer-coded attributes to labels, and checks that
every edge endpoint exists in the attribute table. Any problem raises
DataIntegrityError naming the file and row, so a bad input aborts the run before
any graph is built.

The files are CSV conversions of Lazega's law firm data (ELadv, ELwork, ELfriend,
ELattr); the Inputs section of analysis/network.py describes the source and layout.
"""

from pathlib import Path

import polars as pl

from lawfirm_networks.config import (
    ATTRIBUTE_FILE,
    ATTRIBUTE_LABELS,
    DATA_DIR,
    EDGE_FILES,
    LAYERS,
    OPTIONAL_ATTRIBUTE_COLUMNS,
    REQUIRED_ATTRIBUTE_COLUMNS,
)
from lawfirm_networks.models import LawFirmData


class DataIntegrityError(ValueError):
    """An input file is missing, malformed, or inconsistent with the others."""


def _first_bad_row(df: pl.DataFrame, raw_col: str, parsed_col: str) -> int | None:
    """Return the 1-based data row where ``raw_col`` did not parse, or None."""
    bad = (
        df.with_row_index("_row", offset=1)
        .filter(pl.col(parsed_col).is_null())
        .select("_row", raw_col)
    )
    if bad.height == 0:
        return None
    return int(bad["_row"][0])


def read_edge_list(path: Path) -> pl.DataFrame:
    """Read a two-column edge list into a DataFrame with Int64 ``from``/``to``.

    The first row is a header; its column names are not interpreted. Extra
    columns beyond the first two are ignored.
    """
    if not path.exists():
        msg = f"Edge list not found: {path}"
        raise DataIntegrityError(msg)

    raw = pl.read_csv(path, has_header=True, infer_schema_length=0)
    if len(raw.columns) < 2:
        msg = f"{path.name}: expected at least 2 columns (from, to), found {len(raw.columns)}"
        raise DataIntegrityError(msg)

    raw = raw.select(raw.columns[:2])
    raw.columns = ["from_raw", "to_raw"]
    parsed = raw.with_columns(
        pl.col("from_raw").str.strip_chars().cast(pl.Int64, strict=False).alias("from"),
        pl.col("to_raw").str.strip_chars().cast(pl.Int64, strict=False).alias("to"),
    )

    for raw_col, col in [("from_raw", "from"), ("to_raw", "to")]:
        row = _first_bad_row(parsed, raw_col, col)
        if row is not None:
            value = parsed[raw_col][row - 1]
            msg = f"{path.name}, row {row}: '{col}' is not an integer node id (got {value!r})"
            raise DataIntegrityError(msg)

    return parsed.select("from", "to")


def read_attributes(path: Path) -> pl.DataFrame:
    """Read the node attribute table with integer-coded columns.

    Column names are matched case-insensitively. Required columns are listed in
    ``REQUIRED_ATTRIBUTE_COLUMNS``; ``law_school`` is kept when present.
    """
    if not path.exists():
        msg = f"Attribute table not found: {path}"
        raise DataIntegrityError(msg)

    raw = pl.read_csv(path, has_header=True, infer_schema_length=0)
    raw.columns = [c.strip().lower() for c in raw.columns]

    missing = [c for c in REQUIRED_ATTRIBUTE_COLUMNS if c not in raw.columns]
    if missing:
        msg = f"{path.name}: missing required column(s) {', '.join(missing)}"
        raise DataIntegrityError(msg)

    keep = list(REQUIRED_ATTRIBUTE_COLUMNS) + [
        c for c in OPTIONAL_ATTRIBUTE_COLUMNS if c in raw.columns
    ]
    df = raw.select(keep)
    parsed = df.with_columns(
        [pl.col(c).str.strip_chars().cast(pl.Int64, strict=False).alias(c) for c in keep]
    )

    for col in keep:
        row = _first_bad_row(
            df.with_columns(parsed[col].alias(f"_{col}")),
            col,
            f"_{col}",
        )
        if row is not None:
            value = df[col][row - 1]
            msg = f"{path.name}, row {row}: column '{col}' must be an integer (got {value!r})"
            raise DataIntegrityError(msg)

    dupes = parsed.filter(pl.col("id").is_duplicated())["id"].unique().sort().to_list()
    if dupes:
        msg = f"{path.name}: duplicate node id(s) {dupes}"
        raise DataIntegrityError(msg)

    return parsed


def recode_attributes(attributes: pl.DataFrame, source: str = ATTRIBUTE_FILE) -> pl.DataFrame:
    """Replace integer codes with their documented labels.

    Status {1=Partner, 2=Associate}; Gender {1=Male, 2=Female};
    Office {1=Boston, 2=Hartford, 3=Providence}; Practice {1=Litigation, 2=Corporate};
    Law school {1=Harvard/Yale, 2=UConn, 3=Other}.
    """
    out = attributes
    for col, mapping in ATTRIBUTE_LABELS.items():
        if col not in out.columns:
            continue
        unmapped = (
            out.with_row_index("_row", offset=1)
            .filter(~pl.col(col).is_in(list(mapping.keys())))
            .select("_row", col)
        )
        if unmapped.height > 0:
            row = int(unmapped["_row"][0])
            value = unmapped[col][0]
            msg = (
                f"{source}, row {row}: unknown {col} code {value} "
                f"(expected one of {sorted(mapping)})"
            )
            raise DataIntegrityError(msg)
        out = out.with_columns(pl.col(col).replace_strict(mapping, return_dtype=pl.Utf8))
    return out


def validate_edges(edges: pl.DataFrame, attribute_ids: set[int], source: str) -> None:
    """Raise DataIntegrityError if any edge endpoint is absent from the attribute table."""
    ids = list(attribute_ids)
    bad = (
        edges.with_row_index("_row", offset=1)
        .filter(~pl.col("from").is_in(ids) | ~pl.col("to").is_in(ids))
    )
    if bad.height == 0:
        return
    row = bad.row(0, named=True)
    missing_id = row["from"] if row["from"] not in attribute_ids else row["to"]
    msg = (
        f"{source}, row {row['_row']}: node id {missing_id} is referenced in an edge "
        f"but absent from the attribute table ({bad.height} offending row(s))"
    )
    raise DataIntegrityError(msg)


def clean_edges(edges: pl.DataFrame) -> tuple[pl.DataFrame, int, int]:
    """Drop self-loops and duplicate rows, keeping first-seen order.

    Returns (cleaned, n_self_loops, n_duplicates).
    """
    no_loops = edges.filter(pl.col("from") != pl.col("to"))
    n_loops = edges.height - no_loops.height
    deduped = no_loops.unique(subset=["from", "to"], keep="first", maintain_order=True)
    n_dupes = no_loops.height - deduped.height
    return deduped, n_loops, n_dupes


def load_dataset(data_dir: Path = DATA_DIR) -> LawFirmData:
    """Load, recode and validate all four input tables from ``data_dir``."""
    attributes = recode_attributes(read_attributes(data_dir / ATTRIBUTE_FILE))
    attribute_ids = set(attributes["id"].to_list())

    edges: dict[str, pl.DataFrame] = {}
    self_loops: dict[str, int] = {}
    duplicates: dict[str, int] = {}
    for layer in LAYERS:
        filename = EDGE_FILES[layer]
        raw = read_edge_list(data_dir / filename)
        # Validate before cleaning so reported rows match the file
        validate_edges(raw, attribute_ids, filename)
        cleaned, n_loops, n_dupes = clean_edges(raw)
        edges[layer] = cleaned
        self_loops[layer] = n_loops
        duplicates[layer] = n_dupes
        if n_loops:
            print(f"  WARNING: {filename}: dropped {n_loops} self-loop row(s)")
        if n_dupes:
            print(f"  {filename}: collapsed {n_dupes} duplicate row(s) into single ties")

    return LawFirmData(
        attributes=attributes,
        edges=edges,
        data_dir=data_dir,
        dropped_self_loops=self_loops,
        dropped_duplicates=duplicates,
    )
