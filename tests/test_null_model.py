"""
Tests for the degree-preserving configuration model in analysis/null_model.py.

The key property is exact preservation of every node's in- and out-degree, with
simple graphs (no self-loops, no multi-edges) and reproducible seeds.

Run: uv run pytest tests/test_null_model.py -v
"""

import sys
from pathlib import Path

import networkx as nx
import pytest

# Add project root to path so we can import analysis.null_model
sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.graphs import DESCRIPTIVE_METRICS
from analysis.null_model import (
    configuration_replicate,
    degree_sequences,
    generate_replicates,
    null_model_comparison,
    replicate_seeds,
    run_null_models,
)

# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def four_cycle() -> nx.DiGraph:
    """4 nodes, out-degree [1,1,1,1] and in-degree [1,1,1,1]."""
    G = nx.DiGraph(name="cycle")
    G.add_edges_from([(0, 1), (1, 2), (2, 3), (3, 0)])
    return G


@pytest.fixture
def skewed() -> nx.DiGraph:
    """A hub, a few reciprocated ties, and two isolates."""
    G = nx.DiGraph(name="skewed")
    G.add_nodes_from(range(10))
    G.add_edges_from(
        [(0, k) for k in range(1, 6)]
        + [(1, 0), (2, 0), (3, 4), (4, 3), (5, 6), (6, 7), (7, 5), (6, 1)]
    )
    nx.set_node_attributes(G, {n: "Boston" if n < 5 else "Hartford" for n in G}, "office")
    return G


def assert_same_degrees(G: nx.DiGraph, R: nx.DiGraph) -> None:
    assert list(R.nodes()) == list(G.nodes())
    for n in G.nodes():
        assert R.out_degree(n) == G.out_degree(n)
        assert R.in_degree(n) == G.in_degree(n)


# ── Degree preservation ──────────────────────────────────────────────────────


class TestConfigurationReplicate:
    def test_four_node_cycle_hundred_seeds(self, four_cycle):
        """Out/in-degree [1,1,1,1]: always 4 edges with the same degree sequence."""
        for seed in range(100):
            R = configuration_replicate(four_cycle, seed)
            assert R.number_of_edges() == 4
            assert_same_degrees(four_cycle, R)
            assert nx.number_of_selfloops(R) == 0

    def test_skewed_degrees_preserved(self, skewed):
        for R in generate_replicates(skewed, n_replicates=25, seed=7):
            assert_same_degrees(skewed, R)
            assert R.number_of_edges() == skewed.number_of_edges()
            assert nx.number_of_selfloops(R) == 0

    def test_isolates_preserved(self, skewed):
        R = configuration_replicate(skewed, 3)
        assert set(nx.isolates(R)) == set(nx.isolates(skewed)) == {8, 9}

    def test_node_attributes_copied(self, skewed):
        R = configuration_replicate(skewed, 3)
        assert R.nodes[7]["office"] == "Hartford"

    def test_edgeless_graph(self):
        G = nx.DiGraph()
        G.add_nodes_from([1, 2, 3])
        R = configuration_replicate(G, 0)
        assert R.number_of_nodes() == 3
        assert R.number_of_edges() == 0

    def test_same_seed_same_graph(self, skewed):
        a = configuration_replicate(skewed, 11)
        b = configuration_replicate(skewed, 11)
        assert sorted(a.edges()) == sorted(b.edges())


class TestSeeds:
    def test_deterministic(self):
        assert replicate_seeds(5, seed=42) == replicate_seeds(5, seed=42)

    def test_distinct_base_seeds(self):
        assert replicate_seeds(5, seed=1) != replicate_seeds(5, seed=2)

    def test_count(self):
        assert len(replicate_seeds(100)) == 100


def test_degree_sequences_order(four_cycle):
    nodes, out_deg, in_deg = degree_sequences(four_cycle)
    assert nodes == [0, 1, 2, 3]
    assert out_deg == in_deg == [1, 1, 1, 1]


# ── Comparison ───────────────────────────────────────────────────────────────


class TestNullModelComparison:
    def test_all_metrics_reported(self, skewed):
        comparison, replicates = null_model_comparison(skewed, n_replicates=10, seed=1)
        assert set(comparison) == set(DESCRIPTIVE_METRICS)
        assert len(replicates) == 10
        for vals in comparison.values():
            assert set(vals) == {"empirical", "null_mean", "null_sd", "z_score"}

    def test_density_identical_in_every_replicate(self, skewed):
        comparison, _ = null_model_comparison(skewed, n_replicates=10, seed=1)
        d = comparison["density"]
        assert d["null_mean"] == pytest.approx(d["empirical"])
        assert d["null_sd"] == pytest.approx(0.0)
        assert d["z_score"] is None

    def test_replicate_metrics_in_unit_interval(self, skewed):
        _, replicates = null_model_comparison(skewed, n_replicates=10, seed=1)
        for m in replicates:
            assert 0.0 <= m["reciprocity"] <= 1.0
            assert 0.0 <= m["transitivity"] <= 1.0
            assert 0.0 <= m["density"] <= 1.0

    def test_run_null_models_frames(self, skewed, four_cycle):
        summary, replicates = run_null_models(
            {"skewed": skewed, "cycle": four_cycle}, n_replicates=5, seed=3
        )
        assert summary.height == 2 * len(DESCRIPTIVE_METRICS)
        assert replicates.height == 2 * 5
        assert set(summary["network"].unique()) == {"skewed", "cycle"}
