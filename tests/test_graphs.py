"""
Tests for graph construction, descriptive metrics and assortativity in
analysis/graphs.py, using small synthetic layers with known answers.

Run: uv run pytest tests/test_graphs.py -v
"""

import sys
from pathlib import Path

import networkx as nx
import numpy as np
import polars as pl
import pytest

# Add project root to path so we can import analysis.graphs
sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.graphs import (
    build_aggregate_edges,
    build_aggregate_graph,
    build_layer_graph,
    build_layer_graphs,
    compute_assortativity_table,
    compute_descriptive_metrics,
    compute_network_summary,
    density,
    layer_overlap_table,
    mean_path_length,
    nominal_assortativity,
    numeric_assortativity,
    reciprocity,
    summarize_layers,
    tag_edges,
    transitivity,
)
from lawfirm_networks.loader import DataIntegrityError

# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def attributes() -> pl.DataFrame:
    """Four lawyers A..D as ids 1..4, plus an isolate (5)."""
    return pl.DataFrame(
        {
            "id": [1, 2, 3, 4, 5],
            "status": ["Partner", "Partner", "Associate", "Associate", "Associate"],
            "office": ["Boston", "Boston", "Hartford", "Hartford", "Boston"],
            "age": [60, 58, 35, 33, 40],
        }
    )


@pytest.fixture
def toy_layers() -> dict[str, pl.DataFrame]:
    """Three 2-edge layers sharing one common edge 1->2 (A->B)."""
    return {
        "advice": pl.DataFrame({"from": [1, 3], "to": [2, 4]}),
        "cowork": pl.DataFrame({"from": [1, 2], "to": [2, 3]}),
        "friendship": pl.DataFrame({"from": [1, 4], "to": [2, 1]}),
    }


def digraph(edges: list[tuple], nodes: list | None = None) -> nx.DiGraph:
    G = nx.DiGraph()
    G.add_nodes_from(nodes or [])
    G.add_edges_from(edges)
    return G


# ── Graph builder ────────────────────────────────────────────────────────────


class TestBuildLayerGraph:
    def test_vertex_set_matches_attributes(self, attributes, toy_layers):
        G = build_layer_graph(attributes, toy_layers["advice"], "advice")
        assert list(G.nodes()) == [1, 2, 3, 4, 5]
        assert G.number_of_edges() == 2

    def test_isolate_kept(self, attributes, toy_layers):
        G = build_layer_graph(attributes, toy_layers["advice"])
        assert G.degree(5) == 0

    def test_node_attributes_attached(self, attributes, toy_layers):
        G = build_layer_graph(attributes, toy_layers["advice"])
        assert G.nodes[3]["office"] == "Hartford"
        assert G.nodes[1]["age"] == 60
        assert "id" not in G.nodes[1]

    def test_unknown_endpoint_raises(self, attributes):
        edges = pl.DataFrame({"from": [1], "to": [9]})
        with pytest.raises(DataIntegrityError, match="node id 9"):
            build_layer_graph(attributes, edges, "advice")

    def test_all_layers_share_vertex_order(self, attributes, toy_layers):
        graphs = build_layer_graphs(attributes, toy_layers)
        orders = {name: list(G.nodes()) for name, G in graphs.items()}
        assert len({tuple(o) for o in orders.values()}) == 1
        assert graphs["cowork"].name == "cowork"


class TestAggregate:
    def test_tag_edges(self, toy_layers):
        tagged = tag_edges(toy_layers)
        assert tagged.height == 6
        assert set(tagged["layer"].unique()) == {"advice", "cowork", "friendship"}

    def test_common_edge_weight_three(self, toy_layers):
        """Three toy layers sharing A->B yield one aggregate edge of weight 3."""
        agg = build_aggregate_edges(toy_layers)
        common = agg.filter((pl.col("from") == 1) & (pl.col("to") == 2))
        assert common.height == 1
        assert common["weight"][0] == 3
        assert common["layers"][0] == "advice+cowork+friendship"

    def test_single_layer_edges(self, toy_layers):
        agg = build_aggregate_edges(toy_layers)
        row = agg.filter((pl.col("from") == 4) & (pl.col("to") == 1)).row(0, named=True)
        assert row["weight"] == 1
        assert row["layers"] == "friendship"

    def test_one_row_per_pair(self, toy_layers):
        agg = build_aggregate_edges(toy_layers)
        assert agg.height == agg.select("from", "to").unique().height == 4

    def test_layer_order_follows_input(self):
        layers = {
            "friendship": pl.DataFrame({"from": [1], "to": [2]}),
            "advice": pl.DataFrame({"from": [1], "to": [2]}),
        }
        assert build_aggregate_edges(layers)["layers"][0] == "friendship+advice"

    def test_aggregate_graph_edge_data(self, attributes, toy_layers):
        G = build_aggregate_graph(attributes, toy_layers)
        assert G[1][2]["weight"] == 3
        assert G[1][2]["layers"] == "advice+cowork+friendship"
        assert G.number_of_nodes() == 5

    def test_overlap_table(self, toy_layers):
        overlap = layer_overlap_table(toy_layers)
        assert overlap["n_ties"].sum() == 4
        assert overlap.filter(pl.col("weight") == 3)["n_ties"][0] == 1

    def test_empty_layers(self):
        empty = {"advice": pl.DataFrame(schema={"from": pl.Int64, "to": pl.Int64})}
        assert build_aggregate_edges(empty).height == 0


# ── Descriptive metrics ──────────────────────────────────────────────────────


class TestDensity:
    def test_formula(self):
        G = digraph([(1, 2), (2, 3), (3, 1)], nodes=[1, 2, 3, 4])
        assert density(G) == pytest.approx(3 / (4 * 3))

    def test_matches_edge_count_for_random_graphs(self):
        for seed in range(5):
            G = nx.gnp_random_graph(12, 0.2, seed=seed, directed=True)
            n = G.number_of_nodes()
            assert density(G) == pytest.approx(G.number_of_edges() / (n * (n - 1)))

    def test_tiny_graph(self):
        assert density(digraph([], nodes=[1])) == 0.0


class TestReciprocity:
    def test_mutual_pair_is_one(self):
        """A->B and B->A only: reciprocity 1.0."""
        assert reciprocity(digraph([("A", "B"), ("B", "A")])) == 1.0

    def test_half(self):
        G = digraph([(1, 2), (2, 1), (2, 3), (3, 4)])
        assert reciprocity(G) == pytest.approx(0.5)

    def test_edgeless(self):
        assert reciprocity(digraph([], nodes=[1, 2])) == 0.0


class TestTransitivity:
    def test_closed_triangle_ignores_direction(self):
        G = digraph([(1, 2), (2, 3), (1, 3)])
        assert transitivity(G) == pytest.approx(1.0)

    def test_open_path(self):
        assert transitivity(digraph([(1, 2), (2, 3)])) == 0.0

    def test_edgeless(self):
        assert transitivity(digraph([], nodes=[1, 2, 3])) == 0.0


class TestMeanPathLength:
    def test_chain_reachable_pairs_only(self):
        # 1->2->3: pairs (1,2)=1, (2,3)=1, (1,3)=2; reverse pairs unreachable
        G = digraph([(1, 2), (2, 3)])
        assert mean_path_length(G) == pytest.approx(4 / 3)

    def test_no_reachable_pairs(self):
        assert mean_path_length(digraph([], nodes=[1, 2])) == 0.0


class TestMetricBounds:
    def test_random_graphs_in_unit_interval(self):
        for seed in range(10):
            G = nx.gnp_random_graph(15, 0.15, seed=seed, directed=True)
            m = compute_descriptive_metrics(G)
            assert 0.0 <= m["density"] <= 1.0
            assert 0.0 <= m["reciprocity"] <= 1.0
            assert 0.0 <= m["transitivity"] <= 1.0
            assert m["mean_path_length"] >= 0.0


class TestNetworkSummary:
    def test_counts(self):
        G = digraph([(1, 2), (2, 1), (3, 4)], nodes=[1, 2, 3, 4, 5])
        s = compute_network_summary(G)
        assert s["n_nodes"] == 5
        assert s["n_edges"] == 3
        assert s["n_isolates"] == 1
        assert s["n_weak_components"] == 3
        assert s["n_strong_components"] == 4
        assert s["mean_degree"] == pytest.approx(3 / 5)

    def test_summarize_layers_one_row_per_graph(self):
        graphs = {"a": digraph([(1, 2)]), "b": digraph([(1, 2), (2, 1)])}
        df = summarize_layers(graphs)
        assert df["network"].to_list() == ["a", "b"]
        assert df["reciprocity"].to_list() == [0.0, 1.0]


# ── Assortativity ────────────────────────────────────────────────────────────


def labelled(edges: list[tuple], labels: dict, attr: str = "group") -> nx.DiGraph:
    G = digraph(edges, nodes=list(labels))
    nx.set_node_attributes(G, labels, attr)
    return G


class TestNominalAssortativity:
    def test_all_within_category_is_one(self):
        labels = {1: "x", 2: "x", 3: "y", 4: "y"}
        G = labelled([(1, 2), (2, 1), (3, 4), (4, 3)], labels)
        assert nominal_assortativity(G, "group") == pytest.approx(1.0)

    def test_alternating_categories_negative(self):
        labels = {1: "x", 2: "y", 3: "x", 4: "y"}
        G = labelled([(1, 2), (2, 3), (3, 4), (4, 1)], labels)
        assert nominal_assortativity(G, "group") < 0

    def test_no_edges_undefined(self):
        assert nominal_assortativity(labelled([], {1: "x", 2: "y"}), "group") is None

    def test_single_category_undefined(self):
        G = labelled([(1, 2), (2, 3)], {1: "x", 2: "x", 3: "x"})
        assert nominal_assortativity(G, "group") is None


class TestNumericAssortativity:
    def test_similar_ages_positive(self):
        ages = {1: 30, 2: 31, 3: 60, 4: 61}
        G = labelled([(1, 2), (2, 1), (3, 4), (4, 3)], ages, attr="age")
        assert numeric_assortativity(G, "age") > 0.9

    def test_young_old_ties_negative(self):
        ages = {1: 30, 2: 60, 3: 31, 4: 61}
        G = labelled([(1, 2), (2, 3), (3, 4), (4, 1)], ages, attr="age")
        assert numeric_assortativity(G, "age") < 0

    def test_no_edges_undefined(self):
        assert numeric_assortativity(labelled([], {1: 30}, attr="age"), "age") is None


class TestAssortativityTable:
    def test_rows_per_layer_and_attribute(self, attributes, toy_layers):
        graphs = build_layer_graphs(attributes, toy_layers)
        df = compute_assortativity_table(graphs, ["status", "office"], ["age"])
        assert df.height == 3 * 3
        assert set(df["kind"].unique()) == {"nominal", "numeric"}
        values = df["assortativity"].drop_nulls().to_numpy()
        assert np.all((values >= -1.0 - 1e-9) & (values <= 1.0 + 1e-9))
