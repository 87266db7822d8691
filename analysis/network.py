"""
Law Firm Multiplex Network Analysis

Loads the advice, co-work and friendship layers among the firm's lawyers, builds
the three directed graphs plus an aggregate graph, compares descriptive metrics
against a degree-preserving null model, measures attribute assortativity, detects
communities on the aggregate graph, fits ERGMs and checks their goodness of fit.

Usage:
  uv run python analysis/network.py [--data-dir data] [--replicates 100]
      [--gof-sims 100] [--skip-ergm] [--skip-multiplex]

Outputs (in results/lazega/network/<date>/):
  - data/:   Parquet files (layer summary, null model, assortativity, communities,
             ERGM coefficients, goodness of fit)
  - plots/:  PNG visualizations (layers, degrees, null model, communities, ERGM)
  - filtering_manifest.json, run_info.json, run_log.txt
  - network_report.html
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np
import polars as pl
from matplotlib.patches import Patch

from lawfirm_networks.config import (
    ATTRIBUTE_FILE,
    CATEGORICAL_ATTRIBUTES,
    DATA_DIR,
    EDGE_FILES,
    LAYERS,
    NUMERIC_ATTRIBUTES,
)
from lawfirm_networks.loader import load_dataset

try:
    from analysis.run_context import RunContext
except ModuleNotFoundError:
    from run_context import RunContext  # type: ignore[no-redef]

try:
    from analysis.community import (
        FINAL_METHOD,
        community_composition,
        compare_partitions,
        contingency_table,
        detect_all_methods,
        evaluate_partition,
        partition_sizes_table,
        to_undirected_weighted,
    )
    from analysis.ergm import (
        ATTRIBUTE_MODEL,
        CONVERGENCE_PVALUE,
        GWESP_DECAY,
        MAX_ITERATIONS,
        MCMC_SAMPLE_SIZE,
        MULTIPLEX_MODEL,
        coefficient_table,
        fit_model_suite,
        plot_odds_ratios,
    )
    from analysis.gof import GOF_SIMULATIONS, gof_summary, plot_gof, run_gof
    from analysis.graphs import (
        build_aggregate_graph,
        build_layer_graphs,
        compute_assortativity_table,
        layer_overlap_table,
        summarize_layers,
    )
    from analysis.null_model import N_REPLICATES, RANDOM_SEED, run_null_models
except ModuleNotFoundError:
    from community import (  # type: ignore[no-redef]
        FINAL_METHOD,
        community_composition,
        compare_partitions,
        contingency_table,
        detect_all_methods,
        evaluate_partition,
        partition_sizes_table,
        to_undirected_weighted,
    )
    from ergm import (  # type: ignore[no-redef]
        ATTRIBUTE_MODEL,
        CONVERGENCE_PVALUE,
        GWESP_DECAY,
        MAX_ITERATIONS,
        MCMC_SAMPLE_SIZE,
        MULTIPLEX_MODEL,
        coefficient_table,
        fit_model_suite,
        plot_odds_ratios,
    )
    from gof import GOF_SIMULATIONS, gof_summary, plot_gof, run_gof  # type: ignore[no-redef]
    from graphs import (  # type: ignore[no-redef]
        build_aggregate_graph,
        build_layer_graphs,
        compute_assortativity_table,
        layer_overlap_table,
        summarize_layers,
    )
    from null_model import N_REPLICATES, RANDOM_SEED, run_null_models  # type: ignore[no-redef]

try:
    from analysis.network_report import build_network_report
except ModuleNotFoundError:
    from network_report import build_network_report  # type: ignore[no-redef]


# ── Constants ────────────────────────────────────────────────────────────────

DATASET = "lazega"
OFFICE_COLORS = {"Boston": "#1f77b4", "Hartford": "#ff7f0e", "Providence": "#2ca02c"}
LAYER_COLORS = {
    "advice": "#1f4e79",
    "cowork": "#7f6000",
    "friendship": "#a61c00",
    "aggregate": "#444444",
}
COMMUNITY_CMAP = "tab10"

NETWORK_PRIMER = """\
# Law Firm Network Analysis

## Purpose

Describes the relational structure of one corporate law firm through three
directed networks among its lawyers: who asks whom for advice, who has worked
with whom, and who socializes with whom. The analysis asks how dense and
clustered each layer is compared with chance, whether ties follow office,
practice, status and gender lines, which cohesive subgroups exist, and which
attributes and structural tendencies predict tie formation.

## Method

### Networks
- **Nodes:** Lawyers from the attribute table (status, gender, office, age,
  practice, seniority). All layers share the same vertex set; isolates are kept.
- **Layers:** advice, cowork, friendship (directed, unweighted).
- **Aggregate:** union of the layers; edge weight = number of layers (1-3)
  holding the tie, plus a label naming those layers.

### Descriptive Metrics and Null Model
Density, mean directed shortest path (reachable pairs only), reciprocity, and
transitivity of the undirected projection. Each layer is compared with 100
configuration-model replicates that preserve every node's in- and out-degree
exactly (seed 42). Values are Monte Carlo estimates.

### Assortativity
Nominal assortativity for gender, office, status, practice; numeric
assortativity for age and seniority. Direction is respected.

### Communities
Infomap (directed aggregate), Louvain and Leiden (undirected aggregate, weights
summed over both directions). Leiden is the final partition. Quality: modularity,
purity against each attribute, attribute assortativity, NMI/ARI across methods.

### ERGMs
Per-layer attribute model: edges + nodecov(age) + nodeifactor(status) +
nodeofactor(status) + nodematch(gender, office, practice). These models are
dyad-independent, so the pseudo-likelihood estimate is the exact MLE.
Advice multiplex model: adds edgecov(cowork), edgecov(friendship), mutual and
gwesp(0.5), fitted by Markov-chain Monte Carlo MLE. Networks are sampled every
n(n-1)/10 dyad toggles; the fit has converged when a batch-means Hotelling T²
test cannot tell the simulated statistics from the observed ones (p ≥ 0.5).
A fit that does not converge is reported as a failure, never as estimates.

### Goodness of Fit
100 networks simulated from each fitted model; in-degree, out-degree, edgewise
and dyadwise shared partners and geodesic distance distributions compared with
the observed network.

## Inputs

Lazega's law firm data (E. Lazega, *The Collegial Phenomenon*, Oxford
University Press, 2001): 71 lawyers of a New England corporate law firm,
1988-1991. The distributed version is Tom Snijders' `ELadv.dat`, `ELwork.dat`,
`ELfriend.dat` (71 x 71 adjacency matrices, row = sender) and `ELattr.dat`
(one row per lawyer, columns in the order below), published at
https://www.stats.ox.ac.uk/~snijders/siena/Lazega_lawyers_data.htm. Convert
each matrix to an edge list with one `from,to` row per 1 entry (ids are the
1-based row/column numbers) and the attribute file to CSV with a header row,
then place all four files in `data/` (or pass `--data-dir`).
`lawfirm-data data` validates the result.

| File | Contents |
|------|----------|
| `advice.csv` | Advice ties (from, to) |
| `cowork.csv` | Co-work ties (from, to) |
| `friendship.csv` | Friendship ties (from, to) |
| `attributes.csv` | id, status, gender, office, seniority, age, practice [, law_school] |

Attribute codes: status 1=Partner 2=Associate; gender 1=Male 2=Female;
office 1=Boston 2=Hartford 3=Providence; practice 1=Litigation 2=Corporate;
law_school 1=Harvard/Yale 2=UConn 3=Other. Seniority is years with the firm.

## Outputs

| File | Contents |
|------|----------|
| `layer_summary.parquet` | Size, connectivity and descriptive metrics per graph |
| `aggregate_edges.parquet` | Aggregate ties with weight and layer label |
| `layer_overlap.parquet` | Tie counts by layer combination |
| `null_model_summary.parquet` | Empirical vs null mean/sd/z per layer and metric |
| `null_model_replicates.parquet` | Metrics of every null replicate |
| `assortativity.parquet` | Assortativity per layer and attribute |
| `communities.parquet` | Community labels per lawyer for every method |
| `community_sizes.parquet` | Partition sizes and modularity per method |
| `community_attributes.parquet` | Purity and assortativity per attribute |
| `community_composition.parquet` | Size and majority categories per community |
| `ergm_coefficients.parquet` | Estimates, SEs, p-values, odds ratios |
| `gof_{model}.parquet` | Goodness-of-fit tables per fitted model |
| `network_report.html` | Self-contained HTML report |

## Interpretation Guide

- **Empirical far above null (large z)** = structure beyond what degrees explain
- **Assortativity > 0** = ties concentrate within categories
- **Purity near 1 for an attribute** = communities follow that attribute
- **Odds ratio > 1** = the term raises the odds of a tie, holding the rest fixed
- **Observed outside the simulated band** = the model misses that feature

## Caveats

- ~70 nodes is small; p-values and z-scores are indicative, not decisive
- Null-model and MCMC results are Monte Carlo estimates (fixed seed)
- Infomap, Louvain and Leiden are stochastic; seeds are fixed
- ERGM fits with dyad-dependent terms can be near-degenerate
"""


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Law Firm Multiplex Network Analysis")
    parser.add_argument(
        "--data-dir", default=str(DATA_DIR), help=f"Input CSV directory (default: {DATA_DIR})"
    )
    parser.add_argument(
        "--replicates",
        type=int,
        default=N_REPLICATES,
        help=f"Configuration-model replicates per layer (default: {N_REPLICATES})",
    )
    parser.add_argument(
        "--gof-sims",
        type=int,
        default=GOF_SIMULATIONS,
        help=f"Networks simulated per model for goodness of fit (default: {GOF_SIMULATIONS})",
    )
    parser.add_argument(
        "--skip-ergm",
        action="store_true",
        help="Skip ERGM fitting and goodness of fit",
    )
    parser.add_argument(
        "--skip-multiplex",
        action="store_true",
        help="Skip the advice multiplex (MCMLE) model",
    )
    return parser.parse_args()


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


def ergm_model_specs(graphs: dict[str, nx.DiGraph], include_multiplex: bool = True) -> dict:
    """Per-layer attribute models, plus the advice multiplex model."""
    specs: dict[str, dict] = {
        f"{layer}_attributes": {"graph": graphs[layer], "formula": ATTRIBUTE_MODEL}
        for layer in LAYERS
    }
    if include_multiplex:
        specs["advice_multiplex"] = {
            "graph": graphs["advice"],
            "formula": MULTIPLEX_MODEL,
            "covariates": {"cowork": graphs["cowork"], "friendship": graphs["friendship"]},
        }
    return specs


def partitions_frame(partitions: dict[str, dict], G: nx.DiGraph) -> pl.DataFrame:
    nodes = list(G.nodes())
    data: dict[str, list] = {"id": nodes}
    for method, partition in partitions.items():
        data[method] = [partition[n] for n in nodes]
    data["office"] = [G.nodes[n].get("office") for n in nodes]
    data["practice"] = [G.nodes[n].get("practice") for n in nodes]
    data["status"] = [G.nodes[n].get("status") for n in nodes]
    return pl.DataFrame(data)


# ── Plots ────────────────────────────────────────────────────────────────────


def compute_layout(G: nx.Graph) -> dict:
    """Seeded spring layout shared by every layer plot so nodes stay in place."""
    if G.number_of_nodes() == 0:
        return {}
    return nx.spring_layout(
        nx.Graph(G),
        weight="weight",
        seed=RANDOM_SEED,
        k=2.0 / np.sqrt(G.number_of_nodes()),
        iterations=100,
    )


def _office_legend() -> list[Patch]:
    return [Patch(facecolor=c, label=office) for office, c in OFFICE_COLORS.items()]


def plot_layer_networks(graphs: dict[str, nx.DiGraph], pos: dict, out_path: Path) -> None:
    """2x2 panel of the layers and the aggregate in one shared layout."""
    fig, axes = plt.subplots(2, 2, figsize=(16, 14))
    for ax, (name, G) in zip(axes.flat, graphs.items()):
        nodes = list(G.nodes())
        in_deg = dict(G.in_degree())
        max_deg = max(in_deg.values()) if in_deg and max(in_deg.values()) > 0 else 1
        widths = [0.3 + 0.6 * d.get("weight", 1) for _, _, d in G.edges(data=True)]
        nx.draw_networkx_edges(
            G,
            pos,
            ax=ax,
            alpha=0.25,
            width=widths,
            edge_color=LAYER_COLORS.get(name, "#888888"),
            arrows=True,
            arrowsize=6,
        )
        nx.draw_networkx_nodes(
            G,
            pos,
            ax=ax,
            node_color=[OFFICE_COLORS.get(G.nodes[n].get("office"), "#999999") for n in nodes],
            node_size=[40 + 260 * in_deg[n] / max_deg for n in nodes],
            alpha=0.9,
            edgecolors="white",
            linewidths=0.5,
        )
        ax.set_title(
            f"{name.title()} ({G.number_of_edges()} ties)", fontsize=13, fontweight="bold"
        )
        ax.axis("off")
    axes.flat[0].legend(handles=_office_legend(), loc="upper left", fontsize=9)
    fig.suptitle("Law Firm Networks (node size = in-degree)", fontsize=15, fontweight="bold")
    fig.tight_layout()
    save_fig(fig, out_path)


def plot_degree_distributions(graphs: dict[str, nx.DiGraph], out_path: Path) -> None:
    fig, axes = plt.subplots(1, 2, figsize=(14, 5))
    for ax, kind in zip(axes, ["in", "out"]):
        for name, G in graphs.items():
            degrees = [d for _, d in (G.in_degree() if kind == "in" else G.out_degree())]
            if not degrees:
                continue
            counts = np.bincount(degrees)
            ax.plot(
                np.arange(counts.size),
                counts,
                marker="o",
                markersize=3,
                label=name,
                color=LAYER_COLORS.get(name, "#888888"),
            )
        ax.set_xlabel(f"{kind.title()}-degree")
        ax.set_ylabel("Number of lawyers")
        ax.set_title(f"{kind.title()}-degree Distribution", fontsize=12, fontweight="bold")
        ax.grid(True, alpha=0.3)
        ax.legend(fontsize=9)
    fig.tight_layout()
    save_fig(fig, out_path)


def plot_null_distributions(
    replicates: pl.DataFrame,
    summary: pl.DataFrame,
    out_path: Path,
) -> None:
    """Histogram of replicate metrics per (layer, metric) with the empirical value marked."""
    layers = summary["network"].unique(maintain_order=True).to_list()
    metrics = summary["metric"].unique(maintain_order=True).to_list()
    if not layers or replicates.height == 0:
        return
    fig, axes = plt.subplots(
        len(layers), len(metrics), figsize=(4 * len(metrics), 3 * len(layers)), squeeze=False
    )
    for r, layer in enumerate(layers):
        reps = replicates.filter(pl.col("network") == layer)
        for c, metric in enumerate(metrics):
            ax = axes[r][c]
            row = summary.filter((pl.col("network") == layer) & (pl.col("metric") == metric))
            ax.hist(reps[metric].to_numpy(), bins=20, color="#bbbbbb", edgecolor="white")
            if row.height:
                ax.axvline(row["empirical"][0], color="#c0392b", linewidth=2, label="Empirical")
            ax.set_title(f"{layer}: {metric}", fontsize=9)
            ax.tick_params(labelsize=7)
    axes[0][0].legend(fontsize=7)
    fig.suptitle(
        "Empirical Metrics vs Configuration-Model Replicates", fontsize=13, fontweight="bold"
    )
    fig.tight_layout()
    save_fig(fig, out_path)


def plot_assortativity(assortativity: pl.DataFrame, out_path: Path) -> None:
    attributes = assortativity["attribute"].unique(maintain_order=True).to_list()
    networks = assortativity["network"].unique(maintain_order=True).to_list()
    if not attributes:
        return
    fig, ax = plt.subplots(figsize=(12, 5))
    width = 0.8 / max(len(networks), 1)
    x = np.arange(len(attributes))
    for k, network in enumerate(networks):
        sub = assortativity.filter(pl.col("network") == network)
        lookup = dict(zip(sub["attribute"].to_list(), sub["assortativity"].to_list()))
        values = [lookup.get(a) if lookup.get(a) is not None else np.nan for a in attributes]
        ax.bar(
            x + k * width - 0.4 + width / 2,
            values,
            width,
            label=network,
            color=LAYER_COLORS.get(network, "#888888"),
        )
    ax.axhline(0, color="black", linewidth=0.8)
    ax.set_xticks(x)
    ax.set_xticklabels(attributes)
    ax.set_ylabel("Assortativity coefficient")
    ax.set_title("Attribute Assortativity by Layer", fontsize=13, fontweight="bold")
    ax.legend(fontsize=9)
    ax.grid(True, axis="y", alpha=0.3)
    save_fig(fig, out_path)


def plot_community_network(
    G_und: nx.Graph,
    partition: dict,
    pos: dict,
    out_path: Path,
    method: str = FINAL_METHOD,
) -> None:
    """Side-by-side: office colors vs community colors in the same layout."""
    if G_und.number_of_nodes() == 0:
        return
    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(22, 10))
    nodes = list(G_und.nodes())
    widths = [0.3 + 0.5 * d.get("weight", 1) for _, _, d in G_und.edges(data=True)]

    for ax in (ax1, ax2):
        nx.draw_networkx_edges(G_und, pos, ax=ax, alpha=0.15, width=widths, edge_color="#888888")

    nx.draw_networkx_nodes(
        G_und,
        pos,
        ax=ax1,
        node_color=[OFFICE_COLORS.get(G_und.nodes[n].get("office"), "#999999") for n in nodes],
        node_size=120,
        alpha=0.9,
        edgecolors="white",
        linewidths=0.5,
    )
    ax1.legend(handles=_office_legend(), loc="upper left", fontsize=9)
    ax1.set_title("Office", fontsize=14, fontweight="bold")
    ax1.axis("off")

    cmap = plt.get_cmap(COMMUNITY_CMAP)
    communities = sorted(set(partition.values()))
    nx.draw_networkx_nodes(
        G_und,
        pos,
        ax=ax2,
        node_color=[cmap((partition[n] - 1) % cmap.N) for n in nodes],
        node_size=120,
        alpha=0.9,
        edgecolors="white",
        linewidths=0.5,
    )
    ax2.legend(
        handles=[
            Patch(facecolor=cmap((c - 1) % cmap.N), label=f"Community {c}") for c in communities
        ],
        loc="upper left",
        fontsize=9,
    )
    ax2.set_title(f"Communities ({method})", fontsize=14, fontweight="bold")
    ax2.axis("off")

    fig.suptitle(
        "Aggregate Network: Office vs Detected Communities", fontsize=15, fontweight="bold"
    )
    fig.tight_layout()
    save_fig(fig, out_path)


# ── Main ─────────────────────────────────────────────────────────────────────


def main() -> None:
    args = parse_args()
    data_dir = Path(args.data_dir)

    with RunContext(
        dataset=DATASET,
        analysis_name="network",
        params=vars(args),
        primer=NETWORK_PRIMER,
        title="Law Firm Network Report",
        seed=RANDOM_SEED,
    ) as ctx:
        print("Law Firm Multiplex Network Analysis")
        print(f"Data:        {data_dir}")
        print(f"Output:      {ctx.run_dir}")
        print(f"Replicates:  {args.replicates}")
        print(f"Seed:        {RANDOM_SEED}")

        results: dict = {}

        # ── Phase 1: Load data ──
        print_header("PHASE 1: LOADING DATA")
        data = load_dataset(data_dir)
        results["data"] = data
        ctx.record_inputs(
            [data_dir / ATTRIBUTE_FILE] + [data_dir / EDGE_FILES[layer] for layer in LAYERS]
        )
        print(f"  Lawyers: {data.n_nodes}")
        for layer in LAYERS:
            print(f"  {layer}: {data.n_ties(layer)} ties")

        categorical = list(CATEGORICAL_ATTRIBUTES)
        if "law_school" in data.attributes.columns:
            categorical.append("law_school")
        numeric = list(NUMERIC_ATTRIBUTES)
        results["categorical"] = categorical
        results["numeric"] = numeric

        # ── Phase 2: Build graphs ──
        print_header("PHASE 2: GRAPH CONSTRUCTION")
        layer_graphs = build_layer_graphs(data.attributes, data.edges)
        aggregate = build_aggregate_graph(data.attributes, data.edges)
        graphs = {**layer_graphs, "aggregate": aggregate}
        results["graphs"] = graphs

        overlap = layer_overlap_table(data.edges)
        overlap.write_parquet(ctx.data_dir / "layer_overlap.parquet")
        print("  Saved: layer_overlap.parquet")
        results["overlap"] = overlap

        aggregate_edges = pl.DataFrame(
            [
                {"from": u, "to": v, "weight": d["weight"], "layers": d["layers"]}
                for u, v, d in aggregate.edges(data=True)
            ],
            schema={"from": pl.Int64, "to": pl.Int64, "weight": pl.Int64, "layers": pl.Utf8},
        )
        aggregate_edges.write_parquet(ctx.data_dir / "aggregate_edges.parquet")
        print("  Saved: aggregate_edges.parquet")
        for row in overlap.iter_rows(named=True):
            print(f"    {row['layers']}: {row['n_ties']}")

        # ── Phase 3: Descriptive metrics ──
        print_header("PHASE 3: DESCRIPTIVE METRICS")
        layer_summary = summarize_layers(graphs)
        layer_summary.write_parquet(ctx.data_dir / "layer_summary.parquet")
        print("  Saved: layer_summary.parquet")
        results["layer_summary"] = layer_summary
        for row in layer_summary.iter_rows(named=True):
            print(
                f"  {row['network']}: density={row['density']:.4f}, "
                f"path={row['mean_path_length']:.3f}, reciprocity={row['reciprocity']:.3f}, "
                f"transitivity={row['transitivity']:.3f}"
            )

        # ── Phase 4: Null model ──
        print_header("PHASE 4: CONFIGURATION-MODEL BASELINE")
        null_summary, null_replicates = run_null_models(
            layer_graphs, n_replicates=args.replicates, seed=RANDOM_SEED
        )
        null_summary.write_parquet(ctx.data_dir / "null_model_summary.parquet")
        null_replicates.write_parquet(ctx.data_dir / "null_model_replicates.parquet")
        print("  Saved: null_model_summary.parquet, null_model_replicates.parquet")
        results["null_summary"] = null_summary

        # ── Phase 5: Assortativity ──
        print_header("PHASE 5: ASSORTATIVITY")
        assortativity = compute_assortativity_table(graphs, categorical, numeric)
        assortativity.write_parquet(ctx.data_dir / "assortativity.parquet")
        print("  Saved: assortativity.parquet")
        results["assortativity"] = assortativity
        for row in assortativity.filter(pl.col("network") != "aggregate").iter_rows(named=True):
            value = row["assortativity"]
            shown = f"{value:+.3f}" if value is not None else "undefined"
            print(f"  {row['network']:<11} {row['attribute']:<11} {shown}")

        # ── Phase 6: Community detection ──
        print_header("PHASE 6: COMMUNITY DETECTION")
        G_und = to_undirected_weighted(aggregate)
        partitions = detect_all_methods(aggregate, seed=RANDOM_SEED)
        results["partitions"] = partitions

        sizes = partition_sizes_table(partitions, G_und)
        sizes.write_parquet(ctx.data_dir / "community_sizes.parquet")
        print("  Saved: community_sizes.parquet")
        results["community_sizes"] = sizes
        for row in sizes.iter_rows(named=True):
            print(
                f"  {row['method']}: {row['n_communities']} communities "
                f"(modularity {row['modularity']:.3f}; sizes {row['sizes']})"
            )

        results["contingency"] = {
            method: contingency_table(
                partitions[FINAL_METHOD], partitions[method], FINAL_METHOD, method
            )
            for method in partitions
            if method != FINAL_METHOD
        }
        comparison = compare_partitions(partitions, reference=FINAL_METHOD)
        results["partition_comparison"] = comparison

        final = partitions[FINAL_METHOD]
        evaluation = evaluate_partition(final, G_und, categorical)
        evaluation["attributes"].write_parquet(ctx.data_dir / "community_attributes.parquet")
        print("  Saved: community_attributes.parquet")
        results["community_evaluation"] = evaluation

        composition = community_composition(final, aggregate, categorical)
        composition.write_parquet(ctx.data_dir / "community_composition.parquet")
        print("  Saved: community_composition.parquet")
        results["community_composition"] = composition

        partitions_frame(partitions, aggregate).write_parquet(ctx.data_dir / "communities.parquet")
        print("  Saved: communities.parquet")

        # ── Phase 7: ERGM ──
        fits: dict = {}
        failures: dict[str, str] = {}
        if args.skip_ergm:
            print_header("PHASE 7: ERGM (SKIPPED)")
        else:
            print_header("PHASE 7: ERGM")
            specs = ergm_model_specs(layer_graphs, include_multiplex=not args.skip_multiplex)
            fits, failures = fit_model_suite(specs, seed=RANDOM_SEED)
            if fits:
                coefficients = pl.concat([coefficient_table(f) for f in fits.values()])
                coefficients.write_parquet(ctx.data_dir / "ergm_coefficients.parquet")
                print("  Saved: ergm_coefficients.parquet")
        results["ergm_fits"] = fits
        results["ergm_failures"] = failures

        # ── Phase 8: Goodness of fit ──
        gof_results: dict[str, dict[str, pl.DataFrame]] = {}
        if fits:
            print_header("PHASE 8: GOODNESS OF FIT")
            for name, fit in fits.items():
                print(f"  {name}: simulating {args.gof_sims} networks")
                tables = run_gof(fit, n_sims=args.gof_sims, seed=RANDOM_SEED)
                gof_results[name] = tables
                pl.concat(list(tables.values())).write_parquet(
                    ctx.data_dir / f"gof_{name}.parquet"
                )
                print(f"  Saved: gof_{name}.parquet")
            results["gof_summary"] = pl.concat(
                [gof_summary(tables, network=name) for name, tables in gof_results.items()]
            )
        results["gof"] = gof_results

        # ── Phase 9: Plots ──
        print_header("PHASE 9: PLOTS")
        pos = compute_layout(aggregate)
        plot_layer_networks(graphs, pos, ctx.plots_dir / "layer_networks.png")
        plot_degree_distributions(layer_graphs, ctx.plots_dir / "degree_distributions.png")
        plot_null_distributions(
            null_replicates, null_summary, ctx.plots_dir / "null_model_distributions.png"
        )
        plot_assortativity(assortativity, ctx.plots_dir / "assortativity.png")
        plot_community_network(G_und, final, pos, ctx.plots_dir / "community_network.png")
        if fits:
            plot_odds_ratios(fits, ctx.plots_dir / "ergm_odds_ratios.png")
        for name, tables in gof_results.items():
            plot_gof(tables, name, ctx.plots_dir / f"gof_{name}.png")

        # ── Filtering manifest ──
        print_header("FILTERING MANIFEST")
        manifest: dict = {
            "dataset": DATASET,
            "data_dir": str(data_dir),
            "random_seed": RANDOM_SEED,
            "n_replicates": args.replicates,
            "gof_simulations": args.gof_sims,
            "gwesp_decay": GWESP_DECAY,
            "mcmc_sample_size": MCMC_SAMPLE_SIZE,
            "max_iterations": MAX_ITERATIONS,
            "convergence_pvalue": CONVERGENCE_PVALUE,
            "n_nodes": data.n_nodes,
            "dropped_self_loops": data.dropped_self_loops,
            "dropped_duplicates": data.dropped_duplicates,
            "final_community_method": FINAL_METHOD,
            "n_communities": evaluation["n_communities"],
            "modularity": evaluation["modularity"],
            "single_community": evaluation["degenerate"],
            "ergm_fitted": sorted(fits),
            "ergm_failed": failures,
        }
        for row in layer_summary.iter_rows(named=True):
            manifest[f"{row['network']}_n_edges"] = row["n_edges"]
            manifest[f"{row['network']}_density"] = row["density"]
        manifest_path = ctx.run_dir / "filtering_manifest.json"
        with open(manifest_path, "w") as f:
            json.dump(manifest, f, indent=2, default=str)
        print("  Saved: filtering_manifest.json")

        # ── HTML report ──
        print_header("HTML REPORT")
        build_network_report(
            ctx.report,
            results=results,
            plots_dir=ctx.plots_dir,
            n_replicates=args.replicates,
            gof_sims=args.gof_sims,
            skip_ergm=args.skip_ergm,
            skip_multiplex=args.skip_multiplex,
        )

        print_header("DONE")
        print(f"  All outputs in: {ctx.run_dir}")


if __name__ == "__main__":
    main()
