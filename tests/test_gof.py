"""
Tests for ERGM goodness-of-fit distributions and tables in analysis/gof.py.

Run: uv run pytest tests/test_gof.py -v
"""

import dataclasses
import sys
from pathlib import Path

import networkx as nx
import numpy as np
import pytest

# Add project root to path so we can import analysis.gof
sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.ergm import fit_ergm
from analysis.gof import (
    GOF_STATISTICS,
    INF_LABEL,
    degree_distributions,
    distance_distribution,
    dsp_distribution,
    esp_distribution,
    gof_statistics,
    gof_summary,
    gof_table,
    observed_gof,
    plot_gof,
    run_gof,
)

# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def transitive_triple() -> np.ndarray:
    """0->1, 1->2, 0->2."""
    Y = np.zeros((3, 3), dtype=np.int8)
    Y[0, 1] = Y[1, 2] = Y[0, 2] = 1
    return Y


@pytest.fixture
def random_graph() -> nx.DiGraph:
    G = nx.gnp_random_graph(15, 0.2, seed=8, directed=True)
    nx.set_node_attributes(G, {n: "Boston" if n < 8 else "Hartford" for n in G}, "office")
    G.name = "random"
    return G


# ── Distributions ────────────────────────────────────────────────────────────


class TestDistributions:
    def test_transitive_triple_by_hand(self, transitive_triple):
        idegree, odegree = degree_distributions(transitive_triple)
        assert idegree.tolist() == [1, 1, 1]
        assert odegree.tolist() == [1, 1, 1]
        # only 0->2 has a partner (via 1)
        assert esp_distribution(transitive_triple).tolist() == [2, 1]
        assert dsp_distribution(transitive_triple).tolist() == [5, 1]
        # three ties at distance 1, none at 2, three unreachable pairs
        assert distance_distribution(transitive_triple).tolist() == [3, 0, 3]

    def test_totals(self, random_graph):
        stats = observed_gof(random_graph)
        n = random_graph.number_of_nodes()
        m = random_graph.number_of_edges()
        assert stats["idegree"].sum() == n
        assert stats["odegree"].sum() == n
        assert (stats["idegree"] * np.arange(n)).sum() == m
        assert stats["esp"].sum() == m
        assert stats["dsp"].sum() == n * (n - 1)
        assert stats["distance"].sum() == n * (n - 1)
        assert stats["distance"][0] == m

    def test_lengths(self, random_graph):
        stats = observed_gof(random_graph)
        n = random_graph.number_of_nodes()
        assert len(stats["idegree"]) == n
        assert len(stats["esp"]) == n - 1
        assert len(stats["distance"]) == n

    def test_every_statistic_present(self, transitive_triple):
        assert list(gof_statistics(transitive_triple)) == GOF_STATISTICS


# ── Tables ───────────────────────────────────────────────────────────────────


class TestGofTable:
    def test_observed_matching_every_simulation(self):
        observed = np.array([3, 2, 1])
        table = gof_table("idegree", observed, np.tile(observed, (10, 1)))
        assert table["p_value"].to_list() == [1.0, 1.0, 1.0]

    def test_observed_outside_constant_simulations(self):
        simulated = np.tile(np.array([3, 2, 1]), (10, 1))
        table = gof_table("idegree", np.array([0, 2, 4]), simulated)
        assert table["p_value"].to_list() == [0.0, 1.0, 0.0]

    def test_columns(self):
        table = gof_table("esp", np.array([1, 2]), np.array([[1, 2], [2, 1]]))
        assert table.columns == [
            "statistic",
            "value",
            "observed",
            "sim_mean",
            "sim_min",
            "sim_max",
            "q025",
            "q975",
            "p_value",
        ]

    def test_trailing_zero_rows_dropped(self):
        observed = np.array([2, 1, 0, 0])
        simulated = np.array([[2, 1, 0, 0], [1, 1, 1, 0]])
        table = gof_table("odegree", observed, simulated)
        assert table["value"].to_list() == ["0", "1", "2"]

    def test_distance_keeps_unreachable_row(self):
        observed = np.array([3, 0, 0])
        table = gof_table("distance", observed, np.zeros((4, 3)))
        assert table["value"].to_list() == ["1", "2", INF_LABEL]

    def test_summary_counts_values_outside_band(self):
        simulated = np.tile(np.array([3, 2, 1]), (10, 1))
        tables = {"idegree": gof_table("idegree", np.array([0, 2, 4]), simulated)}
        summary = gof_summary(tables, network="advice")
        row = summary.row(0, named=True)
        assert row["network"] == "advice"
        assert row["n_values"] == 3
        assert row["n_outside_95"] == 2
        assert row["min_p_value"] == 0.0


# ── Simulation ───────────────────────────────────────────────────────────────


class TestRunGof:
    def test_tables_for_dyad_independent_fit(self, random_graph):
        fit = fit_ergm(random_graph, ["edges", "nodematch(office)"])
        tables = run_gof(fit, n_sims=20, seed=1)
        assert list(tables) == GOF_STATISTICS
        assert tables["distance"].height == random_graph.number_of_nodes()
        for table in tables.values():
            p = table["p_value"].to_numpy()
            assert np.all((p >= 0.0) & (p <= 1.0))
            assert np.all(table["q025"].to_numpy() <= table["q975"].to_numpy())

    def test_fit_without_model(self, random_graph):
        fit = dataclasses.replace(fit_ergm(random_graph, ["edges"]), model=None)
        with pytest.raises(ValueError, match="no model"):
            run_gof(fit)

    def test_plot_written(self, random_graph, tmp_path):
        fit = fit_ergm(random_graph, ["edges"])
        out = tmp_path / "gof.png"
        plot_gof(run_gof(fit, n_sims=10, seed=2), "random", out)
        assert out.exists()
