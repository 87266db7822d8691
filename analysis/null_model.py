"""Degree-preserving configuration-model baseline for the directed layers.

Each replicate is a simple directed graph (no self-loops, no multi-edges) with
exactly the same in- and out-degree at every node as the empirical layer, so
isolates stay isolates. Replicates come from igraph's degree-sequence game with
the "edge_switching_simple" method: a simple realization of the degree sequence
followed by degree-preserving edge switches. Replicate seeds are derived from one
base seed, so the whole baseline is reproducible; the reported values are Monte
Carlo estimates over ``n_replicates`` graphs.
"""

from __future__ import annotations

import random
from collections.abc import Iterator
from contextlib import contextmanager

import igraph as ig
import networkx as nx
import numpy as np
import polars as pl
from tqdm import tqdm

try:
    from analysis.graphs import DESCRIPTIVE_METRICS, compute_descriptive_metrics
except ModuleNotFoundError:
    from graphs import DESCRIPTIVE_METRICS, compute_descriptive_metrics  # type: ignore[no-redef]

N_REPLICATES = 100
RANDOM_SEED = 42
REWIRING_METHOD = "edge_switching_simple"


@contextmanager
def seeded_igraph(seed: int) -> Iterator[None]:
    """Route igraph's RNG through a seeded ``random.Random`` for the duration."""
    ig.set_random_number_generator(random.Random(seed))
    try:
        yield
    finally:
        ig.set_random_number_generator(random)


def degree_sequences(G: nx.DiGraph) -> tuple[list, list[int], list[int]]:
    """Return (nodes, out_degrees, in_degrees) in graph node order."""
    nodes = list(G.nodes())
    out_deg = [G.out_degree(n) for n in nodes]
    in_deg = [G.in_degree(n) for n in nodes]
    return nodes, out_deg, in_deg


def configuration_replicate(G: nx.DiGraph, seed: int) -> nx.DiGraph:
    """One uniformly rewired simple digraph with G's exact in/out degrees."""
    nodes, out_deg, in_deg = degree_sequences(G)

    R = nx.DiGraph(name=f"{G.name}_null" if G.name else "null")
    R.add_nodes_from(G.nodes(data=True))
    if sum(out_deg) == 0:
        return R

    with seeded_igraph(seed):
        g = ig.Graph.Degree_Sequence(out_deg, in_deg, method=REWIRING_METHOD)

    R.add_edges_from((nodes[s], nodes[t]) for s, t in g.get_edgelist())

    if [R.out_degree(n) for n in nodes] != out_deg or [R.in_degree(n) for n in nodes] != in_deg:
        msg = f"Configuration replicate (seed={seed}) did not preserve the degree sequence"
        raise RuntimeError(msg)
    return R


def replicate_seeds(n_replicates: int, seed: int = RANDOM_SEED) -> list[int]:
    rng = np.random.default_rng(seed)
    return [int(s) for s in rng.integers(0, 2**31 - 1, size=n_replicates)]


def generate_replicates(
    G: nx.DiGraph,
    n_replicates: int = N_REPLICATES,
    seed: int = RANDOM_SEED,
) -> list[nx.DiGraph]:
    return [configuration_replicate(G, s) for s in replicate_seeds(n_replicates, seed)]


def null_model_comparison(
    G: nx.DiGraph,
    n_replicates: int = N_REPLICATES,
    seed: int = RANDOM_SEED,
    label: str = "",
) -> tuple[dict, list[dict[str, float]]]:
    """Compare G's descriptive metrics against configuration-model replicates.

    Returns:
        comparison: {metric: {empirical, null_mean, null_sd, z_score}}
        replicate_metrics: one metrics dict per replicate
    """
    empirical = compute_descriptive_metrics(G)
    replicate_metrics = []
    for s in tqdm(
        replicate_seeds(n_replicates, seed),
        desc=f"  {label or 'null'} replicates",
        unit="graph",
        leave=False,
    ):
        replicate_metrics.append(compute_descriptive_metrics(configuration_replicate(G, s)))

    comparison: dict[str, dict] = {}
    for metric in DESCRIPTIVE_METRICS:
        values = np.array([m[metric] for m in replicate_metrics])
        mean = float(values.mean()) if values.size else float("nan")
        sd = float(values.std(ddof=1)) if values.size > 1 else 0.0
        comparison[metric] = {
            "empirical": empirical[metric],
            "null_mean": mean,
            "null_sd": sd,
            "z_score": (empirical[metric] - mean) / sd if sd > 0 else None,
        }
    return comparison, replicate_metrics


def run_null_models(
    graphs: dict[str, nx.DiGraph],
    n_replicates: int = N_REPLICATES,
    seed: int = RANDOM_SEED,
) -> tuple[pl.DataFrame, pl.DataFrame]:
    """Null-model comparison for every layer.

    Returns:
        summary_df: (network, metric, empirical, null_mean, null_sd, z_score)
        replicate_df: (network, replicate, metric columns) for distribution plots
    """
    summary_rows = []
    replicate_rows = []
    for name, G in graphs.items():
        comparison, replicate_metrics = null_model_comparison(G, n_replicates, seed, label=name)
        for metric, vals in comparison.items():
            summary_rows.append({"network": name, "metric": metric, **vals})
        for i, m in enumerate(replicate_metrics):
            replicate_rows.append({"network": name, "replicate": i, **m})

        line = ", ".join(
            f"{m}={v['empirical']:.3f} (null {v['null_mean']:.3f})" for m, v in comparison.items()
        )
        print(f"  {name}: {line}")

    summary_df = pl.DataFrame(
        summary_rows,
        schema={
            "network": pl.Utf8,
            "metric": pl.Utf8,
            "empirical": pl.Float64,
            "null_mean": pl.Float64,
            "null_sd": pl.Float64,
            "z_score": pl.Float64,
        },
    )
    return summary_df, pl.DataFrame(replicate_rows)
