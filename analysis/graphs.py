"""Graph construction, descriptive metrics and assortativity for the law firm layers.

Pure functions shared by the network script, the null model and community
detection. Graphs are networkx DiGraphs whose vertex set and order match the
attribute table; node attributes carry the recoded labels (gender, office, ...).
"""

from __future__ import annotations

import networkx as nx
import numpy as np
import polars as pl

from lawfirm_networks.loader import validate_edges

DESCRIPTIVE_METRICS = ["density", "mean_path_length", "reciprocity", "transitivity"]


# ── Graph Builder ───────────────────────────────────────────────────────────


def _add_attribute_nodes(G: nx.DiGraph, attributes: pl.DataFrame) -> None:
    for row in attributes.iter_rows(named=True):
        node_id = row.pop("id")
        G.add_node(node_id, **row)


def build_layer_graph(
    attributes: pl.DataFrame,
    edges: pl.DataFrame,
    layer: str = "",
) -> nx.DiGraph:
    """Build one directed layer over the full attribute vertex set.

    Isolated lawyers stay in the graph. Edge endpoints missing from the
    attribute table raise DataIntegrityError rather than silently adding nodes.
    """
    validate_edges(edges, set(attributes["id"].to_list()), layer or "edge list")

    G = nx.DiGraph(name=layer)
    _add_attribute_nodes(G, attributes)
    G.add_edges_from(
        (u, v) for u, v in zip(edges["from"].to_list(), edges["to"].to_list()) if u != v
    )
    return G


def build_layer_graphs(
    attributes: pl.DataFrame,
    edges_by_layer: dict[str, pl.DataFrame],
) -> dict[str, nx.DiGraph]:
    return {
        layer: build_layer_graph(attributes, edges, layer)
        for layer, edges in edges_by_layer.items()
    }


def tag_edges(edges_by_layer: dict[str, pl.DataFrame]) -> pl.DataFrame:
    """Stack per-layer edge tables into one (from, to, layer) table, one row per tie."""
    frames = [
        edges.select("from", "to").with_columns(pl.lit(layer).alias("layer"))
        for layer, edges in edges_by_layer.items()
    ]
    if not frames:
        return pl.DataFrame(schema={"from": pl.Int64, "to": pl.Int64, "layer": pl.Utf8})
    return pl.concat(frames).unique(maintain_order=True)


def build_aggregate_edges(edges_by_layer: dict[str, pl.DataFrame]) -> pl.DataFrame:
    """Group tagged ties by (from, to).

    weight = number of distinct layers holding the tie (1..len(layers)).
    layers = layer names joined with "+" in the order the layers were given.
    """
    order = {layer: i for i, layer in enumerate(edges_by_layer)}
    tagged = tag_edges(edges_by_layer)
    if tagged.height == 0:
        return pl.DataFrame(
            schema={"from": pl.Int64, "to": pl.Int64, "weight": pl.UInt32, "layers": pl.Utf8}
        )

    return (
        tagged.with_columns(
            pl.col("layer").replace_strict(order, return_dtype=pl.Int64).alias("layer_order")
        )
        .group_by("from", "to")
        .agg(
            pl.col("layer").n_unique().alias("weight"),
            pl.col("layer").sort_by("layer_order").alias("layer_list"),
        )
        .with_columns(pl.col("layer_list").list.join("+").alias("layers"))
        .select("from", "to", "weight", "layers")
        .sort("from", "to")
    )


def build_aggregate_graph(
    attributes: pl.DataFrame,
    edges_by_layer: dict[str, pl.DataFrame],
) -> nx.DiGraph:
    """Union of all layers; each edge carries ``weight`` and ``layers``."""
    aggregate = build_aggregate_edges(edges_by_layer)
    validate_edges(aggregate, set(attributes["id"].to_list()), "aggregate")

    G = nx.DiGraph(name="aggregate")
    _add_attribute_nodes(G, attributes)
    for row in aggregate.iter_rows(named=True):
        G.add_edge(row["from"], row["to"], weight=int(row["weight"]), layers=row["layers"])
    return G


def layer_overlap_table(edges_by_layer: dict[str, pl.DataFrame]) -> pl.DataFrame:
    """Count aggregate ties by layer combination (e.g. "advice+cowork")."""
    aggregate = build_aggregate_edges(edges_by_layer)
    return (
        aggregate.group_by("layers", "weight")
        .len(name="n_ties")
        .sort(["weight", "n_ties"], descending=[True, True])
    )


# ── Descriptive Metrics ─────────────────────────────────────────────────────


def density(G: nx.DiGraph) -> float:
    """|E| / (|V|(|V|-1)) for a directed graph."""
    n = G.number_of_nodes()
    if n < 2:
        return 0.0
    return G.number_of_edges() / (n * (n - 1))


def mean_path_length(G: nx.DiGraph) -> float:
    """Mean directed shortest-path length over ordered pairs with a finite path.

    Unreachable pairs are excluded from the average rather than counted as
    infinite. Returns 0.0 when no pair is connected.
    """
    total = 0
    count = 0
    for source, lengths in nx.all_pairs_shortest_path_length(G):
        for target, dist in lengths.items():
            if target != source:
                total += dist
                count += 1
    return total / count if count else 0.0


def reciprocity(G: nx.DiGraph) -> float:
    """Fraction of edges u->v whose reverse v->u also exists."""
    if G.number_of_edges() == 0:
        return 0.0
    return float(nx.overall_reciprocity(G))


def transitivity(G: nx.DiGraph) -> float:
    """Global clustering coefficient of the undirected projection."""
    undirected = nx.Graph(G)
    if undirected.number_of_edges() == 0:
        return 0.0
    return float(nx.transitivity(undirected))


def compute_descriptive_metrics(G: nx.DiGraph) -> dict[str, float]:
    return {
        "density": density(G),
        "mean_path_length": mean_path_length(G),
        "reciprocity": reciprocity(G),
        "transitivity": transitivity(G),
    }


def compute_network_summary(G: nx.DiGraph) -> dict:
    """Size, connectivity and the four descriptive metrics for one graph."""
    n_nodes = G.number_of_nodes()
    n_edges = G.number_of_edges()
    out_degrees = [d for _, d in G.out_degree()]
    in_degrees = [d for _, d in G.in_degree()]

    summary = {
        "n_nodes": n_nodes,
        "n_edges": n_edges,
        "n_isolates": nx.number_of_isolates(G),
        "n_weak_components": nx.number_weakly_connected_components(G) if n_nodes else 0,
        "n_strong_components": nx.number_strongly_connected_components(G) if n_nodes else 0,
        "mean_degree": float(np.mean(out_degrees)) if out_degrees else 0.0,
        "max_in_degree": max(in_degrees) if in_degrees else 0,
        "max_out_degree": max(out_degrees) if out_degrees else 0,
    }
    summary.update(compute_descriptive_metrics(G))
    return summary


def summarize_layers(graphs: dict[str, nx.DiGraph]) -> pl.DataFrame:
    """One summary row per graph (layers plus aggregate)."""
    rows = []
    for name, G in graphs.items():
        row = {"network": name}
        row.update(compute_network_summary(G))
        rows.append(row)
    return pl.DataFrame(rows)


# ── Assortativity ───────────────────────────────────────────────────────────


def nominal_assortativity(G: nx.Graph, attr: str) -> float | None:
    """Newman's categorical assortativity (edge direction respected for DiGraphs).

    Returns None when undefined: no edges, or every edge endpoint shares one
    category so the expected same-category share is already 1.
    """
    if G.number_of_edges() == 0:
        return None
    with np.errstate(divide="ignore", invalid="ignore"):
        r = nx.attribute_assortativity_coefficient(G, attr)
    r = float(r)
    return r if np.isfinite(r) else None


def numeric_assortativity(G: nx.Graph, attr: str) -> float | None:
    """Pearson correlation of ``attr`` across the two endpoints of every edge."""
    if G.number_of_edges() == 0:
        return None
    with np.errstate(divide="ignore", invalid="ignore"):
        r = nx.numeric_assortativity_coefficient(G, attr)
    r = float(r)
    return r if np.isfinite(r) else None


def compute_assortativity_table(
    graphs: dict[str, nx.DiGraph],
    categorical: list[str] | tuple[str, ...],
    numeric: list[str] | tuple[str, ...],
) -> pl.DataFrame:
    rows = []
    for name, G in graphs.items():
        for attr in categorical:
            rows.append(
                {
                    "network": name,
                    "attribute": attr,
                    "kind": "nominal",
                    "assortativity": nominal_assortativity(G, attr),
                }
            )
        for attr in numeric:
            rows.append(
                {
                    "network": name,
                    "attribute": attr,
                    "kind": "numeric",
                    "assortativity": numeric_assortativity(G, attr),
                }
            )
    return pl.DataFrame(
        rows,
        schema={
            "network": pl.Utf8,
            "attribute": pl.Utf8,
            "kind": pl.Utf8,
            "assortativity": pl.Float64,
        },
    )
