"""Goodness of fit for ERGMs: observed vs simulated network statistic distributions.

For a fitted model, networks are simulated at the estimated coefficients and five
distributions are compared with the observed network:
  - idegree:  in-degree distribution (count of nodes with in-degree k)
  - odegree:  out-degree distribution
  - esp:      edgewise shared partners (outgoing two-paths between tied pairs)
  - dsp:      dyadwise shared partners (the same count over every ordered pair)
  - distance: geodesic distance distribution over ordered pairs, "inf" = unreachable

Every value gets the simulated mean, min/max, 95% interval, and a Monte Carlo
p-value: the share of simulations at least as far from the simulated median as
the observed count.
"""

from __future__ import annotations

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np
import polars as pl
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import shortest_path

try:
    from analysis.ergm import RANDOM_SEED, ErgmFit, ErgmModel, adjacency, two_paths
except ModuleNotFoundError:
    from ergm import RANDOM_SEED, ErgmFit, ErgmModel, adjacency, two_paths  # type: ignore[no-redef]

GOF_STATISTICS = ["idegree", "odegree", "esp", "dsp", "distance"]
GOF_SIMULATIONS = 100
GOF_BURNIN = 16384
GOF_INTERVAL = 1024
INF_LABEL = "inf"

STAT_LABELS = {
    "idegree": "In-degree",
    "odegree": "Out-degree",
    "esp": "Edgewise shared partners",
    "dsp": "Dyadwise shared partners",
    "distance": "Geodesic distance",
}


def degree_distributions(Y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """(in-degree counts, out-degree counts), each indexed 0..n-1."""
    n = Y.shape[0]
    return (
        np.bincount(Y.sum(axis=0).astype(int), minlength=n)[:n],
        np.bincount(Y.sum(axis=1).astype(int), minlength=n)[:n],
    )


def esp_distribution(Y: np.ndarray) -> np.ndarray:
    """Edges by number of outgoing shared partners (i->k->j for edge i->j), 0..n-2."""
    n = Y.shape[0]
    shared = two_paths(Y)[Y == 1]
    return np.bincount(shared.astype(int), minlength=n - 1)[: n - 1]


def dsp_distribution(Y: np.ndarray) -> np.ndarray:
    """Ordered pairs (tied or not) by number of outgoing shared partners, 0..n-2."""
    n = Y.shape[0]
    shared = two_paths(Y)[~np.eye(n, dtype=bool)]
    return np.bincount(shared.astype(int), minlength=n - 1)[: n - 1]


def distance_distribution(Y: np.ndarray) -> np.ndarray:
    """Ordered pairs at geodesic distance 1..n-1, with unreachable pairs last."""
    n = Y.shape[0]
    dist = shortest_path(csr_matrix(Y), directed=True, unweighted=True)
    off = ~np.eye(n, dtype=bool)
    d = dist[off]
    finite = d[np.isfinite(d)].astype(int)
    counts = np.bincount(finite, minlength=n)[1:n]
    return np.append(counts, np.count_nonzero(~np.isfinite(d)))


def gof_statistics(Y: np.ndarray) -> dict[str, np.ndarray]:
    idegree, odegree = degree_distributions(Y)
    return {
        "idegree": idegree,
        "odegree": odegree,
        "esp": esp_distribution(Y),
        "dsp": dsp_distribution(Y),
        "distance": distance_distribution(Y),
    }


def _value_labels(statistic: str, length: int) -> list[str]:
    if statistic == "distance":
        return [str(k) for k in range(1, length)] + [INF_LABEL]
    return [str(k) for k in range(length)]


def observed_gof(G: nx.DiGraph) -> dict[str, np.ndarray]:
    return gof_statistics(adjacency(G, list(G.nodes())))


def simulate_gof(
    model: ErgmModel,
    theta: np.ndarray,
    n_sims: int = GOF_SIMULATIONS,
    burnin: int = GOF_BURNIN,
    interval: int = GOF_INTERVAL,
    seed: int = RANDOM_SEED,
) -> dict[str, np.ndarray]:
    """Simulate n_sims networks at theta; returns {statistic: (n_sims, n_values) array}."""
    sim = model.simulate(
        theta,
        n_samples=n_sims,
        burnin=burnin,
        interval=interval,
        seed=seed,
        keep_networks=True,
    )
    per_network = [gof_statistics(Y) for Y in sim.networks or []]
    return {s: np.vstack([g[s] for g in per_network]) for s in GOF_STATISTICS}


def _trim_trailing_zeros(table: pl.DataFrame, statistic: str) -> pl.DataFrame:
    """Drop the tail of all-zero rows (observed and every simulation); keep distance's inf row."""
    if statistic == "distance" or table.height == 0:
        return table
    nonzero = (table["observed"] > 0) | (table["sim_max"] > 0)
    idx = np.flatnonzero(nonzero.to_numpy())
    last = int(idx[-1]) if idx.size else 0
    return table.head(last + 1)


def gof_table(statistic: str, observed: np.ndarray, simulated: np.ndarray) -> pl.DataFrame:
    """Per-value comparison of the observed count against the simulated counts."""
    median = np.median(simulated, axis=0)
    p_value = (np.abs(simulated - median) >= np.abs(observed - median)[None, :]).mean(axis=0)
    table = pl.DataFrame(
        {
            "statistic": [statistic] * observed.size,
            "value": _value_labels(statistic, observed.size),
            "observed": observed.astype(np.int64),
            "sim_mean": simulated.mean(axis=0),
            "sim_min": simulated.min(axis=0).astype(np.int64),
            "sim_max": simulated.max(axis=0).astype(np.int64),
            "q025": np.quantile(simulated, 0.025, axis=0),
            "q975": np.quantile(simulated, 0.975, axis=0),
            "p_value": p_value,
        }
    )
    return _trim_trailing_zeros(table, statistic)


def run_gof(
    fit: ErgmFit,
    n_sims: int = GOF_SIMULATIONS,
    seed: int = RANDOM_SEED,
) -> dict[str, pl.DataFrame]:
    """GOF tables for a fitted model: {statistic: table}."""
    if fit.model is None:
        msg = f"Fit for {fit.network} carries no model to simulate from"
        raise ValueError(msg)
    observed = gof_statistics(fit.model.y_obs)
    simulated = simulate_gof(fit.model, fit.estimates, n_sims=n_sims, seed=seed)
    return {s: gof_table(s, observed[s], simulated[s]) for s in GOF_STATISTICS}


def gof_summary(tables: dict[str, pl.DataFrame], network: str = "") -> pl.DataFrame:
    """Per statistic: how many observed values fall outside the simulated 95% band."""
    rows = []
    for statistic, table in tables.items():
        outside = table.filter(
            (pl.col("observed") < pl.col("q025")) | (pl.col("observed") > pl.col("q975"))
        ).height
        rows.append(
            {
                "network": network,
                "statistic": statistic,
                "n_values": table.height,
                "n_outside_95": outside,
                "min_p_value": float(table["p_value"].min()) if table.height else None,
            }
        )
    return pl.DataFrame(
        rows,
        schema={
            "network": pl.Utf8,
            "statistic": pl.Utf8,
            "n_values": pl.Int64,
            "n_outside_95": pl.Int64,
            "min_p_value": pl.Float64,
        },
    )


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


def plot_gof(tables: dict[str, pl.DataFrame], network: str, out_path: Path) -> None:
    """One panel per statistic: simulated 95% band and mean vs the observed line."""
    fig, axes = plt.subplots(1, len(tables), figsize=(5 * len(tables), 4.2), squeeze=False)
    for ax, (statistic, table) in zip(axes[0], tables.items()):
        x = np.arange(table.height)
        ax.fill_between(
            x,
            table["q025"].to_numpy(),
            table["q975"].to_numpy(),
            color="#bbbbbb",
            alpha=0.6,
            label="Simulated 95%",
        )
        ax.plot(
            x,
            table["sim_mean"].to_numpy(),
            color="#555555",
            linestyle="--",
            label="Simulated mean",
        )
        ax.plot(
            x,
            table["observed"].to_numpy(),
            color="#1f4e79",
            marker="o",
            markersize=3,
            label="Observed",
        )
        ax.set_xticks(x)
        ax.set_xticklabels(table["value"].to_list(), fontsize=6, rotation=90)
        ax.set_title(STAT_LABELS.get(statistic, statistic), fontsize=10)
        ax.set_ylabel("Count")
        ax.grid(True, alpha=0.3)
    axes[0][0].legend(fontsize=7, loc="upper right")
    fig.suptitle(f"{network}: Goodness of Fit", fontsize=13, fontweight="bold")
    fig.tight_layout()
    save_fig(fig, out_path)
