"""Community detection on the aggregate (all-layer) graph.

Three candidates are run and compared:
  - Infomap (information flow) on the directed, weighted aggregate graph
  - Louvain (greedy multilevel modularity) on the undirected collapse
  - Leiden (Louvain plus a refinement step) on the undirected collapse

Leiden is the final partition: its refinement phase guarantees every community
is internally connected, which Louvain does not. Partition quality is reported
as weighted modularity, purity against each categorical attribute, and nominal
assortativity of each attribute on the undirected graph. A single-community
result is reported as "no partition signal", never forced into a split.
"""

from __future__ import annotations

from collections import Counter

import community as community_louvain  # python-louvain
import igraph as ig
import leidenalg
import networkx as nx
import polars as pl
from sklearn.metrics import adjusted_rand_score, normalized_mutual_info_score

try:
    from analysis.graphs import nominal_assortativity
    from analysis.null_model import seeded_igraph
except ModuleNotFoundError:
    from graphs import nominal_assortativity  # type: ignore[no-redef]
    from null_model import seeded_igraph  # type: ignore[no-redef]

RANDOM_SEED = 42
INFOMAP_TRIALS = 10
FINAL_METHOD = "leiden"
METHODS = ["infomap", "louvain", "leiden"]


def to_undirected_weighted(G: nx.DiGraph, weight: str = "weight") -> nx.Graph:
    """Collapse a weighted digraph: u->v and v->u merge into one edge, weights summed."""
    U = nx.Graph(name=f"{G.name}_undirected" if G.name else "undirected")
    U.add_nodes_from(G.nodes(data=True))
    for u, v, d in G.edges(data=True):
        w = d.get(weight, 1)
        if U.has_edge(u, v):
            U[u][v]["weight"] += w
        else:
            U.add_edge(u, v, weight=w)
    return U


def relabel_by_size(partition: dict) -> dict:
    """Renumber communities 1..k by decreasing size (ties: smallest member first)."""
    members: dict[int, list] = {}
    for node, comm in partition.items():
        members.setdefault(comm, []).append(node)
    ordered = sorted(members.values(), key=lambda m: (-len(m), min(m)))
    return {node: label for label, group in enumerate(ordered, start=1) for node in group}


def _singletons(G: nx.Graph) -> dict:
    return {n: i for i, n in enumerate(G.nodes())}


def _membership_to_partition(ig_graph: ig.Graph, membership: list[int]) -> dict:
    names = ig_graph.vs["_nx_name"]
    return {names[i]: membership[i] for i in range(ig_graph.vcount())}


def detect_infomap(G: nx.DiGraph, seed: int = RANDOM_SEED, trials: int = INFOMAP_TRIALS) -> dict:
    """Infomap on the directed graph, using edge weights as flow."""
    if G.number_of_edges() == 0:
        return relabel_by_size(_singletons(G))
    ig_graph = ig.Graph.from_networkx(G)
    with seeded_igraph(seed):
        clusters = ig_graph.community_infomap(edge_weights="weight", trials=trials)
    return relabel_by_size(_membership_to_partition(ig_graph, clusters.membership))


def detect_louvain(G_und: nx.Graph, seed: int = RANDOM_SEED, resolution: float = 1.0) -> dict:
    partition = community_louvain.best_partition(
        G_und, weight="weight", resolution=resolution, random_state=seed
    )
    return relabel_by_size(partition)


def detect_leiden(G_und: nx.Graph, seed: int = RANDOM_SEED) -> dict:
    if G_und.number_of_edges() == 0:
        return relabel_by_size(_singletons(G_und))
    ig_graph = ig.Graph.from_networkx(G_und)
    part = leidenalg.find_partition(
        ig_graph,
        leidenalg.ModularityVertexPartition,
        weights="weight",
        n_iterations=-1,
        seed=seed,
    )
    return relabel_by_size(_membership_to_partition(ig_graph, part.membership))


def detect_all_methods(G_agg: nx.DiGraph, seed: int = RANDOM_SEED) -> dict[str, dict]:
    """Run every candidate method; returns {method: partition}."""
    G_und = to_undirected_weighted(G_agg)
    return {
        "infomap": detect_infomap(G_agg, seed=seed),
        "louvain": detect_louvain(G_und, seed=seed),
        "leiden": detect_leiden(G_und, seed=seed),
    }


# ── Partition Quality ────────────────────────────────────────────────────────


def n_communities(partition: dict) -> int:
    return len(set(partition.values()))


def partition_modularity(partition: dict, G_und: nx.Graph) -> float:
    """Weighted modularity; 0.0 for an edgeless graph where it is undefined."""
    if G_und.number_of_edges() == 0:
        return 0.0
    return float(community_louvain.modularity(partition, G_und, weight="weight"))


def purity(partition: dict, labels: dict) -> float:
    """Share of nodes whose category equals their community's majority category."""
    if not partition:
        return 0.0
    by_community: dict[int, Counter] = {}
    for node, comm in partition.items():
        by_community.setdefault(comm, Counter())[labels[node]] += 1
    majority_total = sum(c.most_common(1)[0][1] for c in by_community.values())
    return majority_total / len(partition)


def partition_sizes_table(partitions: dict[str, dict], G_und: nx.Graph) -> pl.DataFrame:
    rows = []
    for method, partition in partitions.items():
        sizes = sorted(Counter(partition.values()).values(), reverse=True)
        rows.append(
            {
                "method": method,
                "n_communities": len(sizes),
                "modularity": partition_modularity(partition, G_und),
                "largest": sizes[0] if sizes else 0,
                "sizes": ", ".join(str(s) for s in sizes),
                "single_community": len(sizes) == 1,
            }
        )
    return pl.DataFrame(rows)


def contingency_table(
    partition_a: dict,
    partition_b: dict,
    name_a: str = "a",
    name_b: str = "b",
) -> pl.DataFrame:
    """Cross-tabulate two partitions: rows = communities of a, columns = communities of b."""
    counts = Counter((partition_a[n], partition_b[n]) for n in partition_a if n in partition_b)
    rows_a = sorted({a for a, _ in counts})
    cols_b = sorted({b for _, b in counts})
    data: dict[str, list] = {name_a: rows_a}
    for b in cols_b:
        data[f"{name_b} {b}"] = [counts.get((a, b), 0) for a in rows_a]
    return pl.DataFrame(data)


def compare_partitions(partitions: dict[str, dict], reference: str = FINAL_METHOD) -> pl.DataFrame:
    """NMI and ARI of every method against the reference partition."""
    ref = partitions[reference]
    nodes = list(ref)
    ref_labels = [ref[n] for n in nodes]
    rows = []
    for method, partition in partitions.items():
        if method == reference:
            continue
        labels = [partition[n] for n in nodes]
        rows.append(
            {
                "method": method,
                "reference": reference,
                "nmi": round(float(normalized_mutual_info_score(ref_labels, labels)), 4),
                "ari": round(float(adjusted_rand_score(ref_labels, labels)), 4),
            }
        )
    return pl.DataFrame(rows)


def evaluate_partition(
    partition: dict,
    G_und: nx.Graph,
    attributes: list[str] | tuple[str, ...],
) -> dict:
    """Modularity, degeneracy flag, and per-attribute purity/assortativity."""
    k = n_communities(partition)
    labelled = G_und.copy()
    nx.set_node_attributes(labelled, partition, "community")

    rows = []
    for attr in attributes:
        labels = nx.get_node_attributes(G_und, attr)
        rows.append(
            {
                "attribute": attr,
                "n_categories": len(set(labels.values())),
                "purity": purity(partition, labels),
                "assortativity": nominal_assortativity(G_und, attr),
            }
        )

    degenerate = k == 1
    if degenerate:
        print("  Single community: no partition signal")

    return {
        "n_communities": k,
        "modularity": partition_modularity(partition, G_und),
        "community_assortativity": nominal_assortativity(labelled, "community"),
        "degenerate": degenerate,
        "attributes": pl.DataFrame(
            rows,
            schema={
                "attribute": pl.Utf8,
                "n_categories": pl.Int64,
                "purity": pl.Float64,
                "assortativity": pl.Float64,
            },
        ),
    }


def community_composition(
    partition: dict,
    G: nx.Graph,
    attributes: list[str] | tuple[str, ...],
) -> pl.DataFrame:
    """Size and majority category (with its share) of each community."""
    rows = []
    for comm in sorted(set(partition.values())):
        members = [n for n, c in partition.items() if c == comm]
        row: dict = {"community": comm, "size": len(members)}
        for attr in attributes:
            counts = Counter(G.nodes[m].get(attr) for m in members)
            label, count = counts.most_common(1)[0]
            row[f"{attr}_majority"] = str(label)
            row[f"{attr}_share"] = count / len(members)
        rows.append(row)
    return pl.DataFrame(rows)
