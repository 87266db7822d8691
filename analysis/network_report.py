"""Network-specific HTML report builder.

Builds the sections (tables, figures, and text) of the law firm network report.
Each section is a small function that slices/aggregates polars DataFrames and calls
make_gt() or FigureSection.from_file().

Usage (called from network.py):
    from analysis.network_report import build_network_report
    build_network_report(ctx.report, results=results, plots_dir=ctx.plots_dir)
"""

from __future__ import annotations

import html as html_lib
from pathlib import Path

import polars as pl

try:
    from analysis.ergm import CONVERGENCE_PVALUE, GWESP_DECAY, RANDOM_SEED, coefficient_table
    from analysis.report import FigureSection, ReportBuilder, TableSection, TextSection, make_gt
except ModuleNotFoundError:
    from ergm import (  # type: ignore[no-redef]
        CONVERGENCE_PVALUE,
        GWESP_DECAY,
        RANDOM_SEED,
        coefficient_table,
    )
    from report import (  # type: ignore[no-redef]
        FigureSection,
        ReportBuilder,
        TableSection,
        TextSection,
        make_gt,
    )

METRIC_LABELS = {
    "density": "Density",
    "mean_path_length": "Mean Path Length",
    "reciprocity": "Reciprocity",
    "transitivity": "Transitivity",
}

MODEL_TITLES = {
    "advice_attributes": "Advice: Attribute Model",
    "cowork_attributes": "Co-work: Attribute Model",
    "friendship_attributes": "Friendship: Attribute Model",
    "advice_multiplex": "Advice: Multiplex Structural Model",
}


def term_label(term: str) -> str:
    """Plain-English label for an ERGM term name."""
    parts = term.split(".")
    kind = parts[0]
    if kind == "edges":
        return "Baseline tie propensity (edges)"
    if kind == "mutual":
        return "Reciprocity (mutual)"
    if kind == "gwesp":
        return f"Triadic closure (GWESP, decay {'.'.join(parts[2:])})"
    if kind == "nodecov":
        return f"{parts[1].title()} (sum over both lawyers)"
    if kind == "nodeofactor":
        return f"Sender is {'.'.join(parts[2:])} ({parts[1]})"
    if kind == "nodeifactor":
        return f"Receiver is {'.'.join(parts[2:])} ({parts[1]})"
    if kind == "nodematch":
        return f"Same {parts[1]}"
    if kind == "edgecov":
        return f"{parts[1].title()} tie present"
    return term


def build_network_report(
    report: ReportBuilder,
    *,
    results: dict,
    plots_dir: Path,
    n_replicates: int = 100,
    gof_sims: int = 100,
    skip_ergm: bool = False,
    skip_multiplex: bool = False,
) -> None:
    """Build the full network HTML report by adding sections to the ReportBuilder."""
    _add_data_summary(report, results)
    _add_how_to_read(report)

    # Layers
    _add_layer_summary(report, results)
    _add_figure(
        report,
        plots_dir / "layer_networks.png",
        "fig-layers",
        "Network Layers",
        "All four graphs in one shared spring layout. Node color = office; "
        "node size = in-degree; aggregate edge width = number of layers.",
    )
    _add_layer_overlap(report, results)
    _add_figure(
        report,
        plots_dir / "degree_distributions.png",
        "fig-degrees",
        "Degree Distributions",
        "Number of lawyers at each in- and out-degree, per layer.",
    )

    # Null model
    _add_null_model(report, results, n_replicates)
    _add_figure(
        report,
        plots_dir / "null_model_distributions.png",
        "fig-null-model",
        "Null Model Distributions",
        f"Grey histograms: metric values across {n_replicates} degree-preserving "
        "replicates. Red line: empirical value.",
    )

    # Assortativity
    _add_assortativity(report, results)
    _add_figure(
        report,
        plots_dir / "assortativity.png",
        "fig-assortativity",
        "Assortativity by Layer",
        "Positive bars: ties concentrate among lawyers sharing the attribute "
        "(or, for age/seniority, of similar value). Missing bars are undefined coefficients.",
    )

    # Communities
    _add_community_sizes(report, results)
    _add_community_contingency(report, results)
    _add_community_agreement(report, results)
    _add_community_quality(report, results)
    _add_community_composition(report, results)
    _add_figure(
        report,
        plots_dir / "community_network.png",
        "fig-communities",
        "Communities vs Office",
        "Left: office. Right: final (Leiden) communities on the undirected aggregate graph.",
    )
    _add_community_interpretation(report, results)

    # ERGM
    if skip_ergm:
        report.add(
            TextSection(
                id="ergm-skipped",
                title="ERGM",
                html="<p>ERGM fitting was skipped for this run (<code>--skip-ergm</code>).</p>",
            )
        )
    else:
        _add_ergm_failures(report, results)
        _add_ergm_tables(report, results)
        _add_ergm_fit_statistics(report, results)
        _add_figure(
            report,
            plots_dir / "ergm_odds_ratios.png",
            "fig-ergm-odds",
            "ERGM Odds Ratios",
            "Odds ratios with 95% Wald intervals on a log scale. Dark points are significant "
            "at p < 0.05; the dashed line marks no effect (odds ratio 1). Baseline omitted.",
        )

        # Goodness of fit
        _add_gof_summary(report, results, gof_sims)
        for name in results.get("gof", {}):
            _add_figure(
                report,
                plots_dir / f"gof_{name}.png",
                f"fig-gof-{name}",
                f"Goodness of Fit: {MODEL_TITLES.get(name, name)}",
                f"Grey band: 95% range over {gof_sims} simulated networks; dashed line: "
                "simulated mean; blue: observed network.",
            )

    _add_key_findings(report, results)
    _add_analysis_parameters(report, n_replicates, gof_sims, skip_ergm, skip_multiplex)

    print(f"  Report: {len(report.section_ids)} sections added")


# ── Private section builders ─────────────────────────────────────────────────


def _add_figure(report: ReportBuilder, path: Path, id: str, title: str, caption: str) -> None:
    if path.exists():
        report.add(FigureSection.from_file(id, title, path, caption=caption))


def _add_data_summary(report: ReportBuilder, results: dict) -> None:
    data = results["data"]
    rows = [
        {
            "Layer": layer,
            "Ties": data.n_ties(layer),
            "Self-loops Dropped": data.dropped_self_loops.get(layer, 0),
            "Duplicates Collapsed": data.dropped_duplicates.get(layer, 0),
        }
        for layer in data.edges
    ]
    df = pl.DataFrame(rows)
    html = make_gt(
        df,
        title="Input Data Summary",
        subtitle=f"{data.n_nodes} lawyers; every edge endpoint present in the attribute table",
    )
    report.add(TableSection(id="data-summary", title="Data Summary", html=html))


def _add_how_to_read(report: ReportBuilder) -> None:
    html = """
    <p>This report describes advice, co-work and friendship ties among the lawyers of
    one firm. Key concepts:</p>
    <ul>
    <li><strong>Layer:</strong> one directed relation. A tie A&rarr;B means A named B
    (asked B for advice, worked with B, or counts B as a friend).</li>
    <li><strong>Aggregate graph:</strong> all three layers combined; a tie's weight is
    the number of layers (1&ndash;3) in which it appears.</li>
    <li><strong>Null model:</strong> random networks in which every lawyer keeps exactly
    the same number of incoming and outgoing ties. A large z-score means the observed
    value is unlikely to arise from degrees alone.</li>
    <li><strong>Assortativity:</strong> +1 = ties only within a category, 0 = random
    mixing, negative = ties preferentially across categories.</li>
    <li><strong>Community:</strong> a group of lawyers more densely tied among themselves
    than to others. <em>Purity</em> is the share of lawyers whose office (or practice,
    status, ...) matches their community's majority.</li>
    <li><strong>ERGM:</strong> a model of the odds that a tie exists given lawyer
    attributes and the surrounding ties. An odds ratio of 2 doubles the odds of a tie.</li>
    </ul>
    """
    report.add(TextSection(id="how-to-read", title="How to Read This Report", html=html))


def _add_layer_summary(report: ReportBuilder, results: dict) -> None:
    df = results["layer_summary"].select(
        "network",
        "n_nodes",
        "n_edges",
        "n_isolates",
        "n_weak_components",
        "n_strong_components",
        "mean_degree",
        "density",
        "mean_path_length",
        "reciprocity",
        "transitivity",
    )
    html = make_gt(
        df,
        title="Descriptive Network Metrics",
        subtitle="Mean path length averages reachable ordered pairs only",
        column_labels={
            "network": "Network",
            "n_nodes": "Nodes",
            "n_edges": "Ties",
            "n_isolates": "Isolates",
            "n_weak_components": "Weak Comp.",
            "n_strong_components": "Strong Comp.",
            "mean_degree": "Mean Degree",
            **METRIC_LABELS,
        },
        number_formats={
            "mean_degree": ".2f",
            "density": ".4f",
            "mean_path_length": ".3f",
            "reciprocity": ".3f",
            "transitivity": ".3f",
        },
    )
    report.add(TableSection(id="layer-summary", title="Layer Summary", html=html))


def _add_layer_overlap(report: ReportBuilder, results: dict) -> None:
    df = results["overlap"]
    html = make_gt(
        df,
        title="Multiplex Overlap",
        subtitle="Directed pairs by the combination of layers that contain them",
        column_labels={"layers": "Layers", "weight": "Weight", "n_ties": "Ties"},
    )
    report.add(TableSection(id="layer-overlap", title="Layer Overlap", html=html))


def _add_null_model(report: ReportBuilder, results: dict, n_replicates: int) -> None:
    df = results["null_summary"].with_columns(
        pl.col("metric").replace(METRIC_LABELS).alias("metric")
    )
    html = make_gt(
        df,
        title="Empirical vs Configuration Model",
        subtitle=f"{n_replicates} degree-preserving replicates per layer (Monte Carlo estimates)",
        column_labels={
            "network": "Layer",
            "metric": "Metric",
            "empirical": "Empirical",
            "null_mean": "Null Mean",
            "null_sd": "Null SD",
            "z_score": "z",
        },
        number_formats={
            "empirical": ".4f",
            "null_mean": ".4f",
            "null_sd": ".4f",
            "z_score": ".2f",
        },
        source_note="z is undefined (blank) when the replicates show no variation.",
    )
    report.add(TableSection(id="null-model", title="Null Model Comparison", html=html))


def _add_assortativity(report: ReportBuilder, results: dict) -> None:
    df = (
        results["assortativity"]
        .pivot(on="attribute", index="network", values="assortativity")
        .sort("network")
    )
    attrs = [c for c in df.columns if c != "network"]
    html = make_gt(
        df,
        title="Attribute Assortativity",
        subtitle="Nominal coefficient for categories; Pearson coefficient for age and seniority",
        column_labels={"network": "Network", **{a: a.replace("_", " ").title() for a in attrs}},
        number_formats={a: ".3f" for a in attrs},
        source_note="Blank = undefined (no ties, or a single category among tie endpoints).",
    )
    report.add(TableSection(id="assortativity", title="Assortativity", html=html))


def _add_community_sizes(report: ReportBuilder, results: dict) -> None:
    df = results["community_sizes"]
    html = make_gt(
        df,
        title="Community Detection Methods",
        subtitle="Infomap on the directed aggregate; Louvain and Leiden on its undirected collapse",
        column_labels={
            "method": "Method",
            "n_communities": "Communities",
            "modularity": "Modularity",
            "largest": "Largest",
            "sizes": "Sizes",
            "single_community": "Single Community",
        },
        number_formats={"modularity": ".3f"},
    )
    report.add(TableSection(id="community-sizes", title="Community Partitions", html=html))


def _add_community_contingency(report: ReportBuilder, results: dict) -> None:
    for method, table in results.get("contingency", {}).items():
        html = make_gt(
            table,
            title=f"Leiden vs {method.title()}",
            subtitle="Rows: Leiden communities; columns: communities of the other method",
        )
        report.add(
            TableSection(
                id=f"community-contingency-{method}",
                title=f"Contingency: Leiden vs {method.title()}",
                html=html,
            )
        )


def _add_community_agreement(report: ReportBuilder, results: dict) -> None:
    df = results.get("partition_comparison")
    if df is None or df.height == 0:
        return
    html = make_gt(
        df,
        title="Agreement with the Final Partition",
        subtitle="1.0 = identical partitions; ARI near 0 = chance agreement",
        column_labels={"method": "Method", "reference": "Reference", "nmi": "NMI", "ari": "ARI"},
        number_formats={"nmi": ".3f", "ari": ".3f"},
    )
    report.add(TableSection(id="community-agreement", title="Partition Agreement", html=html))


def _add_community_quality(report: ReportBuilder, results: dict) -> None:
    evaluation = results["community_evaluation"]
    df = evaluation["attributes"]
    subtitle = (
        f"{evaluation['n_communities']} communities, modularity {evaluation['modularity']:.3f}"
    )
    html = make_gt(
        df,
        title="Final Partition vs Lawyer Attributes",
        subtitle=subtitle,
        column_labels={
            "attribute": "Attribute",
            "n_categories": "Categories",
            "purity": "Purity",
            "assortativity": "Assortativity (undirected)",
        },
        number_formats={"purity": ".3f", "assortativity": ".3f"},
    )
    report.add(TableSection(id="community-quality", title="Community Quality", html=html))


def _add_community_composition(report: ReportBuilder, results: dict) -> None:
    df = results["community_composition"]
    share_cols = [c for c in df.columns if c.endswith("_share")]
    labels = {"community": "Community", "size": "Size"}
    for c in df.columns:
        if c.endswith("_majority"):
            labels[c] = f"{c.removesuffix('_majority').replace('_', ' ').title()} (majority)"
        elif c.endswith("_share"):
            labels[c] = "Share"
    html = make_gt(
        df,
        title="Community Composition",
        subtitle="Majority category and its share within each community",
        column_labels=labels,
        number_formats={c: ".0%" for c in share_cols},
    )
    report.add(TableSection(id="community-composition", title="Community Composition", html=html))


def _add_community_interpretation(report: ReportBuilder, results: dict) -> None:
    evaluation = results["community_evaluation"]
    if evaluation["degenerate"]:
        body = (
            "<p><strong>Single community: no partition signal.</strong> The final method "
            "placed every lawyer in one group, so the aggregate network has no modular "
            "structure to report.</p>"
        )
    else:
        attrs = evaluation["attributes"].sort("purity", descending=True)
        best = attrs.row(0, named=True)
        body = (
            f"<p>The final partition has <strong>{evaluation['n_communities']}</strong> "
            f"communities with modularity {evaluation['modularity']:.3f}. Communities align "
            f"most closely with <strong>{html_lib.escape(best['attribute'])}</strong> "
            f"(purity {best['purity']:.2f}). Purity is bounded below by the share of the "
            "largest category, so compare it with the category balance before reading it "
            "as alignment.</p>"
        )
    report.add(TextSection(id="community-interpretation", title="Community Findings", html=body))


def _add_ergm_failures(report: ReportBuilder, results: dict) -> None:
    failures = results.get("ergm_failures", {})
    if not failures:
        return
    items = "\n".join(
        f"<li><strong>{html_lib.escape(MODEL_TITLES.get(name, name))}:</strong> "
        f"{html_lib.escape(message)}</li>"
        for name, message in failures.items()
    )
    html = (
        '<div class="warning"><p><strong>Fit failed.</strong> The models below did not '
        "produce usable estimates and are excluded from every table and figure.</p>"
        f"<ul>{items}</ul></div>"
    )
    report.add(TextSection(id="ergm-failures", title="ERGM Fit Failures", html=html))


def _add_ergm_tables(report: ReportBuilder, results: dict) -> None:
    for name, fit in results.get("ergm_fits", {}).items():
        df = coefficient_table(fit).with_columns(
            pl.col("term").map_elements(term_label, return_dtype=pl.Utf8).alias("term")
        )
        df = df.drop("network")
        if fit.method == "MCMLE":
            subtitle = (
                f"MCMLE, converged after {fit.iterations} iteration(s) "
                f"(Hotelling p = {fit.convergence_pvalue:.3f})"
            )
        else:
            subtitle = "Dyad-independent: pseudo-likelihood estimate is the exact MLE"
        html = make_gt(
            df,
            title=MODEL_TITLES.get(name, name),
            subtitle=subtitle,
            column_labels={
                "term": "Term",
                "estimate": "Estimate",
                "std_error": "SE",
                "z_value": "z",
                "p_value": "p",
                "signif": "",
                "odds_ratio": "Odds Ratio",
                "ci_low": "95% CI Low",
                "ci_high": "95% CI High",
            },
            number_formats={
                "estimate": ".3f",
                "std_error": ".3f",
                "z_value": ".2f",
                "p_value": ".4f",
                "odds_ratio": ".3f",
                "ci_low": ".3f",
                "ci_high": ".3f",
            },
            source_note="*** p<0.001, ** p<0.01, * p<0.05, . p<0.1 (two-sided Wald test)",
        )
        report.add(
            TableSection(
                id=f"ergm-{name}",
                title=f"ERGM: {MODEL_TITLES.get(name, name)}",
                html=html,
            )
        )


def _add_ergm_fit_statistics(report: ReportBuilder, results: dict) -> None:
    fits = results.get("ergm_fits", {})
    if not fits:
        return
    rows = [
        {
            "Model": MODEL_TITLES.get(name, name),
            "Method": fit.method,
            "Terms": len(fit.terms),
            "Iterations": fit.iterations,
            "Hotelling p": fit.convergence_pvalue,
            "Log-likelihood": fit.log_likelihood,
            "AIC": fit.aic,
            "BIC": fit.bic,
        }
        for name, fit in fits.items()
    ]
    schema = {
        "Model": pl.Utf8,
        "Method": pl.Utf8,
        "Terms": pl.Int64,
        "Iterations": pl.Int64,
        "Hotelling p": pl.Float64,
        "Log-likelihood": pl.Float64,
        "AIC": pl.Float64,
        "BIC": pl.Float64,
    }
    html = make_gt(
        pl.DataFrame(rows, schema=schema),
        title="ERGM Fit Statistics",
        number_formats={
            "Hotelling p": ".3f",
            "Log-likelihood": ".2f",
            "AIC": ".2f",
            "BIC": ".2f",
        },
        source_note=(
            "Likelihood-based statistics are exact only for dyad-independent models. "
            "Hotelling p tests simulated against observed statistics at the MCMLE."
        ),
    )
    report.add(TableSection(id="ergm-fit-stats", title="ERGM Fit Statistics", html=html))


def _add_gof_summary(report: ReportBuilder, results: dict, gof_sims: int) -> None:
    df = results.get("gof_summary")
    if df is None or df.height == 0:
        return
    df = df.with_columns(pl.col("network").replace(MODEL_TITLES).alias("network"))
    html = make_gt(
        df,
        title="Goodness of Fit Overview",
        subtitle=f"Observed values outside the 95% range of {gof_sims} simulated networks",
        column_labels={
            "network": "Model",
            "statistic": "Statistic",
            "n_values": "Values",
            "n_outside_95": "Outside 95%",
            "min_p_value": "Smallest p",
        },
        number_formats={"min_p_value": ".3f"},
        source_note="No pass/fail verdict: read the figures for where the model diverges.",
    )
    report.add(TableSection(id="gof-summary", title="Goodness of Fit", html=html))


def _add_key_findings(report: ReportBuilder, results: dict) -> None:
    findings = []

    null = results.get("null_summary")
    if null is not None and null.height:
        strong = null.filter(pl.col("z_score").abs() > 2)
        for row in strong.filter(pl.col("metric") == "transitivity").iter_rows(named=True):
            direction = "more" if row["z_score"] > 0 else "less"
            findings.append(
                f"<strong>{row['network'].title()}</strong> is {direction} clustered than its "
                f"degree sequence implies (transitivity {row['empirical']:.3f} vs "
                f"{row['null_mean']:.3f}, z = {row['z_score']:.1f})."
            )
        for row in strong.filter(pl.col("metric") == "reciprocity").iter_rows(named=True):
            findings.append(
                f"<strong>{row['network'].title()}</strong> reciprocity is "
                f"{row['empirical']:.3f} against a null mean of {row['null_mean']:.3f} "
                f"(z = {row['z_score']:.1f})."
            )

    assort = results.get("assortativity")
    if assort is not None and assort.height:
        layers = assort.filter(
            (pl.col("network") != "aggregate") & pl.col("assortativity").is_not_null()
        )
        if layers.height:
            top = layers.sort("assortativity", descending=True).row(0, named=True)
            findings.append(
                f"The strongest homophily is on <strong>{top['attribute']}</strong> in the "
                f"{top['network']} layer (assortativity {top['assortativity']:.3f})."
            )

    evaluation = results.get("community_evaluation")
    if evaluation is not None:
        if evaluation["degenerate"]:
            findings.append("Community detection found a single community: no partition signal.")
        else:
            findings.append(
                f"The final partition has {evaluation['n_communities']} communities "
                f"(modularity {evaluation['modularity']:.3f})."
            )

    for name, fit in results.get("ergm_fits", {}).items():
        table = coefficient_table(fit).filter(
            (pl.col("term") != "edges") & (pl.col("p_value") < 0.05)
        )
        if table.height == 0:
            continue
        top = table.sort("z_value", descending=True, nulls_last=True).row(0, named=True)
        findings.append(
            f"In the {MODEL_TITLES.get(name, name).lower()}, "
            f"<em>{html_lib.escape(term_label(top['term']))}</em> has the largest positive "
            f"effect (odds ratio {top['odds_ratio']:.2f})."
        )

    failures = results.get("ergm_failures", {})
    if failures:
        findings.append(
            f"{len(failures)} ERGM fit(s) failed and are reported as failures, not estimates."
        )

    if not findings:
        findings.append("No effect stood out against the baselines in this run.")

    items = "\n".join(f"    <li>{f}</li>" for f in findings)
    html = f"""
    <p><strong>Key findings:</strong></p>
    <ul>
{items}
    </ul>
    """
    report.add(TextSection(id="key-findings", title="Key Findings", html=html))


def _add_analysis_parameters(
    report: ReportBuilder,
    n_replicates: int,
    gof_sims: int,
    skip_ergm: bool,
    skip_multiplex: bool,
) -> None:
    rows = [
        {"Parameter": "Null Model Replicates", "Value": str(n_replicates)},
        {"Parameter": "Null Model", "Value": "Directed configuration (edge switching, simple)"},
        {"Parameter": "Community Methods", "Value": "Infomap, Louvain, Leiden (final)"},
        {"Parameter": "GOF Simulations", "Value": str(gof_sims)},
        {"Parameter": "GWESP Decay", "Value": f"{GWESP_DECAY} (fixed)"},
        {
            "Parameter": "MCMLE Convergence",
            "Value": f"Hotelling T² p-value ≥ {CONVERGENCE_PVALUE} (batch-means covariance)",
        },
        {"Parameter": "Random Seed", "Value": str(RANDOM_SEED)},
        {"Parameter": "Skip ERGM", "Value": str(skip_ergm)},
        {"Parameter": "Skip Multiplex Model", "Value": str(skip_multiplex)},
    ]
    df = pl.DataFrame(rows)
    html = make_gt(df, title="Analysis Parameters")
    report.add(TableSection(id="analysis-params", title="Analysis Parameters", html=html))
