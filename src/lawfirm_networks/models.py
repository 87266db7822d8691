"""Data classes for the loaded dataset."""

from dataclasses import dataclass, field
from pathlib import Path

import polars as pl


@dataclass(frozen=True)
class LawFirmData:
    """Validated node attributes plus one edge table per layer.

    ``attributes`` has an ``id`` column followed by label-recoded categorical
    columns and integer numeric columns. Each edge table has ``from``/``to``
    columns, no self-loops and no duplicate rows.
    """

    attributes: pl.DataFrame
    edges: dict[str, pl.DataFrame]
    data_dir: Path | None = None
    dropped_self_loops: dict[str, int] = field(default_factory=dict)
    dropped_duplicates: dict[str, int] = field(default_factory=dict)

    @property
    def node_ids(self) -> list[int]:
        return self.attributes["id"].to_list()

    @property
    def n_nodes(self) -> int:
        return self.attributes.height

    def n_ties(self, layer: str) -> int:
        return self.edges[layer].height
