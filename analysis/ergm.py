"""Exponential random graph models (ERGMs) for the directed law firm layers.

A model is a list of R-style term strings, e.g.

    ["edges", "nodecov(age)", "nodeifactor(status)", "nodematch(office)",
     "edgecov(friendship)", "mutual", "gwesp(0.5)"]

Supported terms (directed graphs):
  edges               number of ties
  nodecov(attr)       sum of attr over both endpoints of every tie
  nodeofactor(attr)   ties sent by nodes in each non-base level of attr
  nodeifactor(attr)   ties received by nodes in each non-base level of attr
  nodematch(attr)     ties between nodes sharing the same attr value
  edgecov(name)       ties that co-occur with a tie in covariate network `name`
  mutual              reciprocated pairs
  gwesp(decay)        geometrically weighted edgewise shared partners
                      (outgoing two-path partners, fixed decay)

Factor levels are sorted and the first level is the base category.

Estimation:
  - Dyad-independent models (no mutual/gwesp): the maximum pseudo-likelihood
    estimate is the exact MLE; it is a statsmodels logistic regression of each
    dyad's tie indicator on its change statistics.
  - Otherwise: Markov-chain Monte Carlo MLE. Start at the MPLE and simulate
    networks at the current guess with a dyad-toggle Metropolis-Hastings
    sampler, keeping one network per ~n(n-1)/10 proposals. Each iteration pulls
    the target statistics toward the sample mean until they sit inside the
    sample's 95% ellipsoid (Hummel et al. step length), then moves theta to the
    maximizer of the importance-sampling estimate of the log-likelihood ratio.
    Once the target is the observed network itself, steps are damped so theta
    settles instead of chasing sampling noise.
  - Convergence is a Hotelling T^2 test of mean(Z) = g_obs with covariance from
    batch means, which accounts for autocorrelation in the chain. The fit stops
    once the test's p-value reaches CONVERGENCE_PVALUE. Failing to get there, or
    collapsing to empty/complete networks, raises instead of returning a fit.
"""

from __future__ import annotations

import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np
import polars as pl
import statsmodels.api as sm
from scipy import stats
from scipy.optimize import minimize
from scipy.special import logsumexp, softmax
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    PerfectSeparationError,
    PerfectSeparationWarning,
)

# ── Constants ────────────────────────────────────────────────────────────────

RANDOM_SEED = 42
GWESP_DECAY = 0.5

MCMC_SAMPLE_SIZE = 1024
MCMC_MIN_INTERVAL = 64
DYADS_PER_INTERVAL = 10  # thinning interval is n(n-1) / DYADS_PER_INTERVAL proposals
BURNIN_INTERVALS = 16
MAX_ITERATIONS = 30
CONVERGENCE_PVALUE = 0.5
HOTELLING_BATCHES = 32
MIN_STEP_GAIN = 0.25
MIN_IMPORTANCE_ESS = 0.1  # share of the sample that must carry the reweighted step
STEP_CONFIDENCE = 0.95  # Newton targets stay inside this chi-square ellipsoid of the sample
MAX_ABS_ESTIMATE = 25.0  # larger MPLE coefficients mean separation, not an estimate
DEGENERATE_DENSITY_LOW = 0.001
DEGENERATE_DENSITY_HIGH = 0.99
DEGENERATE_SHARE = 0.9

Z_95 = 1.959963984540054

ATTRIBUTE_MODEL = [
    "edges",
    "nodecov(age)",
    "nodeifactor(status)",
    "nodeofactor(status)",
    "nodematch(gender)",
    "nodematch(office)",
    "nodematch(practice)",
]

MULTIPLEX_MODEL = [
    *ATTRIBUTE_MODEL,
    "edgecov(cowork)",
    "edgecov(friendship)",
    "mutual",
    f"gwesp({GWESP_DECAY})",
]

DYAD_DEPENDENT_TERMS = {"mutual", "gwesp"}
_TERM_PATTERN = re.compile(r"^\s*([a-z]+)\s*(?:\(\s*([^()]*?)\s*\))?\s*$")


class ErgmConvergenceError(RuntimeError):
    """The estimation did not reach a usable fit."""


class ErgmDegeneracyError(ErgmConvergenceError):
    """Simulated networks collapsed (near-empty/complete) or a statistic never varies."""


@dataclass(frozen=True)
class Term:
    kind: str
    attr: str | None = None
    level: str | None = None
    decay: float | None = None

    @property
    def name(self) -> str:
        if self.kind in ("edges", "mutual"):
            return self.kind
        if self.kind == "gwesp":
            return f"gwesp.fixed.{self.decay:g}"
        if self.level is not None:
            return f"{self.kind}.{self.attr}.{self.level}"
        return f"{self.kind}.{self.attr}"

    @property
    def dyad_independent(self) -> bool:
        return self.kind not in DYAD_DEPENDENT_TERMS


@dataclass(frozen=True)
class McmcSettings:
    """MCMLE sampler and stopping settings; burnin/interval of None scale with the network."""

    sample_size: int = MCMC_SAMPLE_SIZE
    burnin: int | None = None
    interval: int | None = None
    max_iterations: int = MAX_ITERATIONS
    min_pvalue: float = CONVERGENCE_PVALUE

    def chain_lengths(self, n_dyads: int) -> tuple[int, int]:
        """(burnin, interval) in proposals for a network with n_dyads ordered dyads."""
        interval = self.interval or max(MCMC_MIN_INTERVAL, n_dyads // DYADS_PER_INTERVAL)
        burnin = self.burnin if self.burnin is not None else BURNIN_INTERVALS * interval
        return burnin, interval


@dataclass
class SimulationResult:
    stats: np.ndarray
    edge_counts: np.ndarray
    acceptance_rate: float
    networks: list[np.ndarray] | None = None


# ── Model Terms ──────────────────────────────────────────────────────────────


def _node_values(G: nx.DiGraph, nodes: list, attr: str) -> list:
    values = []
    for n in nodes:
        if attr not in G.nodes[n]:
            msg = f"Node {n} has no attribute '{attr}'"
            raise ValueError(msg)
        values.append(G.nodes[n][attr])
    return values


def parse_formula(
    formula: list[str],
    G: nx.DiGraph,
    covariates: dict[str, nx.DiGraph] | None = None,
) -> list[Term]:
    """Resolve term strings against G; factor terms expand to one Term per non-base level."""
    covariates = covariates or {}
    terms: list[Term] = []
    for spec in formula:
        m = _TERM_PATTERN.match(spec)
        if m is None:
            msg = f"Cannot parse ERGM term {spec!r}"
            raise ValueError(msg)
        kind, arg = m.group(1), m.group(2)

        if kind in ("edges", "mutual"):
            terms.append(Term(kind))
        elif kind == "gwesp":
            decay = float(arg) if arg else GWESP_DECAY
            terms.append(Term(kind, decay=decay))
        elif kind in ("nodecov", "nodematch"):
            _node_values(G, list(G.nodes()), arg)
            terms.append(Term(kind, attr=arg))
        elif kind in ("nodeofactor", "nodeifactor"):
            levels = sorted({str(v) for v in _node_values(G, list(G.nodes()), arg)})
            terms.extend(Term(kind, attr=arg, level=level) for level in levels[1:])
        elif kind == "edgecov":
            if arg not in covariates:
                msg = f"edgecov({arg}) needs a covariate network named '{arg}'"
                raise ValueError(msg)
            terms.append(Term(kind, attr=arg))
        else:
            msg = f"Unsupported ERGM term '{kind}' in {spec!r}"
            raise ValueError(msg)

    for kind in DYAD_DEPENDENT_TERMS:
        if sum(t.kind == kind for t in terms) > 1:
            msg = f"At most one '{kind}' term is supported"
            raise ValueError(msg)
    return terms


def gwesp_weights(shared_partners: np.ndarray, decay: float) -> np.ndarray:
    """e^a * (1 - (1 - e^-a)^sp): the GWESP contribution of an edge with sp partners."""
    return np.exp(decay) * (1.0 - (1.0 - np.exp(-decay)) ** shared_partners)


def two_paths(Y: np.ndarray) -> np.ndarray:
    """Outgoing two-path counts: TP[i, j] = #k with i->k and k->j."""
    Y64 = Y.astype(np.int64)
    return Y64 @ Y64


def adjacency(G: nx.DiGraph, nodes: list) -> np.ndarray:
    Y = nx.to_numpy_array(G, nodelist=nodes, weight=None, dtype=np.int8)
    np.fill_diagonal(Y, 0)
    return Y


class ErgmModel:
    """A directed ERGM specification bound to one observed network."""

    def __init__(
        self,
        G: nx.DiGraph,
        formula: list[str],
        covariates: dict[str, nx.DiGraph] | None = None,
        name: str | None = None,
    ) -> None:
        self.name = name if name is not None else (G.name or "network")
        self.formula = list(formula)
        self.nodes = list(G.nodes())
        self.n = len(self.nodes)
        if self.n < 3:
            msg = f"ERGM needs at least 3 nodes, got {self.n}"
            raise ValueError(msg)

        self.y_obs = adjacency(G, self.nodes)
        self.terms = parse_formula(formula, G, covariates)
        self.term_names = [t.name for t in self.terms]
        self.n_dyads = self.n * (self.n - 1)

        self._dyad_change = self._build_dyad_change(G, covariates or {})
        self._mutual_idx: int | None = None
        self._gwesp_idx: int | None = None
        self._gwesp_decay = GWESP_DECAY
        for k, t in enumerate(self.terms):
            if t.kind == "mutual":
                self._mutual_idx = k
            elif t.kind == "gwesp":
                self._gwesp_idx = k
                self._gwesp_decay = float(t.decay)
        self._gwesp_r = 1.0 - np.exp(-self._gwesp_decay)

        self.obs_stats = self.statistics(self.y_obs)

    @property
    def p(self) -> int:
        return len(self.terms)

    @property
    def dyad_independent(self) -> bool:
        return all(t.dyad_independent for t in self.terms)

    @property
    def needs_two_paths(self) -> bool:
        return self._gwesp_idx is not None

    def _build_dyad_change(self, G: nx.DiGraph, covariates: dict[str, nx.DiGraph]) -> np.ndarray:
        """Change statistics of dyad-independent terms for every (i, j); 0 for the rest."""
        n = self.n
        D = np.zeros((n, n, len(self.terms)))
        for k, t in enumerate(self.terms):
            if t.kind == "edges":
                D[:, :, k] = 1.0
            elif t.kind == "nodecov":
                x = np.array(_node_values(G, self.nodes, t.attr), dtype=float)
                D[:, :, k] = x[:, None] + x[None, :]
            elif t.kind in ("nodeofactor", "nodeifactor"):
                ind = np.array(
                    [str(v) == t.level for v in _node_values(G, self.nodes, t.attr)], dtype=float
                )
                D[:, :, k] = ind[:, None] if t.kind == "nodeofactor" else ind[None, :]
            elif t.kind == "nodematch":
                vals = np.array([str(v) for v in _node_values(G, self.nodes, t.attr)])
                D[:, :, k] = (vals[:, None] == vals[None, :]).astype(float)
            elif t.kind == "edgecov":
                cov = covariates[t.attr]
                missing = [v for v in self.nodes if v not in cov]
                if missing:
                    msg = f"Covariate network '{t.attr}' lacks node(s) {missing[:5]}"
                    raise ValueError(msg)
                D[:, :, k] = adjacency(cov, self.nodes).astype(float)
        idx = np.arange(n)
        D[idx, idx, :] = 0.0
        return D

    # ── Statistics ──

    def statistics(self, Y: np.ndarray) -> np.ndarray:
        """Sufficient statistics g(Y) for every term."""
        Yf = Y.astype(float)
        g = np.einsum("ij,ijk->k", Yf, self._dyad_change)
        if self._mutual_idx is not None:
            g[self._mutual_idx] = float((Yf * Yf.T).sum() / 2.0)
        if self._gwesp_idx is not None:
            tp = two_paths(Y)
            g[self._gwesp_idx] = float(gwesp_weights(tp[Y == 1], self._gwesp_decay).sum())
        return g

    def change_statistics(
        self,
        Y: np.ndarray,
        tp: np.ndarray | None,
        i: int,
        j: int,
    ) -> np.ndarray:
        """g(Y + i->j) - g(Y) for a dyad that is currently empty (Y[i, j] == 0)."""
        delta = self._dyad_change[i, j].copy()
        if self._mutual_idx is not None:
            delta[self._mutual_idx] = float(Y[j, i])
        if self._gwesp_idx is not None:
            r = self._gwesp_r
            # the new edge's own shared partners
            own = np.exp(self._gwesp_decay) * (1.0 - r ** tp[i, j])
            # edges i->b gain partner j when j->b
            out_mask = (Y[i] & Y[j]).astype(bool)
            # edges a->j gain partner i when a->i
            in_mask = (Y[:, i] & Y[:, j]).astype(bool)
            delta[self._gwesp_idx] = (
                own + float((r ** tp[i, out_mask]).sum()) + float((r ** tp[in_mask, j]).sum())
            )
        return delta

    @staticmethod
    def _update_two_paths(Y: np.ndarray, tp: np.ndarray, i: int, j: int, sign: int) -> None:
        tp[i, :] += sign * Y[j, :]
        tp[:, j] += sign * Y[:, i]

    # ── Pseudo-likelihood ──

    def mple_design(self) -> tuple[np.ndarray, np.ndarray]:
        """Change-statistic design matrix and tie indicators over all ordered dyads."""
        n = self.n
        off = ~np.eye(n, dtype=bool)
        y = self.y_obs[off].astype(float)
        if self.dyad_independent:
            return self._dyad_change[off], y

        Y = self.y_obs.copy()
        tp = two_paths(Y) if self.needs_two_paths else None
        rows = []
        for i in range(n):
            for j in range(n):
                if i == j:
                    continue
                present = Y[i, j] == 1
                if present:
                    Y[i, j] = 0
                    if tp is not None:
                        self._update_two_paths(Y, tp, i, j, -1)
                rows.append(self.change_statistics(Y, tp, i, j))
                if present:
                    Y[i, j] = 1
                    if tp is not None:
                        self._update_two_paths(Y, tp, i, j, 1)
        return np.array(rows), y

    # ── MCMC ──

    def simulate(
        self,
        theta: np.ndarray,
        n_samples: int,
        burnin: int,
        interval: int,
        seed: int = RANDOM_SEED,
        keep_networks: bool = False,
        start: np.ndarray | None = None,
    ) -> SimulationResult:
        """Metropolis-Hastings with uniform random dyad toggles.

        Starts from the observed network (or ``start``), discards ``burnin``
        proposals, then records the statistics every ``interval`` proposals.
        """
        theta = np.asarray(theta, dtype=float)
        rng = np.random.default_rng(seed)
        n = self.n

        Y = (self.y_obs if start is None else start).astype(np.int8).copy()
        np.fill_diagonal(Y, 0)
        tp = two_paths(Y) if self.needs_two_paths else None
        current = self.statistics(Y)
        n_edges = int(Y.sum())

        total = burnin + n_samples * interval
        tails = rng.integers(0, n, size=total)
        heads = rng.integers(0, n - 1, size=total)
        heads = heads + (heads >= tails)
        log_u = np.log(rng.random(total))

        samples = np.empty((n_samples, self.p))
        edge_counts = np.empty(n_samples, dtype=np.int64)
        networks: list[np.ndarray] | None = [] if keep_networks else None
        accepted = 0
        k = 0

        for step in range(total):
            i = int(tails[step])
            j = int(heads[step])
            present = Y[i, j] == 1
            if present:
                Y[i, j] = 0
                if tp is not None:
                    self._update_two_paths(Y, tp, i, j, -1)

            delta = self.change_statistics(Y, tp, i, j)
            log_ratio = float(theta @ delta)
            if present:
                log_ratio = -log_ratio

            if log_u[step] < log_ratio:
                accepted += 1
                if present:
                    current -= delta
                    n_edges -= 1
                else:
                    Y[i, j] = 1
                    if tp is not None:
                        self._update_two_paths(Y, tp, i, j, 1)
                    current += delta
                    n_edges += 1
            elif present:
                Y[i, j] = 1
                if tp is not None:
                    self._update_two_paths(Y, tp, i, j, 1)

            if step >= burnin and (step - burnin + 1) % interval == 0:
                samples[k] = current
                edge_counts[k] = n_edges
                if networks is not None:
                    networks.append(Y.copy())
                k += 1

        return SimulationResult(
            stats=samples,
            edge_counts=edge_counts,
            acceptance_rate=accepted / total if total else 0.0,
            networks=networks,
        )


# ── Estimation ──────────────────────────────────────────────────────────────


@dataclass(eq=False)
class ErgmFit:
    """Estimates for one (network, term set); immutable once returned."""

    network: str
    formula: tuple[str, ...]
    terms: tuple[str, ...]
    estimates: np.ndarray
    std_errors: np.ndarray
    observed: np.ndarray
    method: str
    iterations: int
    converged: bool
    n_dyads: int
    t_ratios: np.ndarray | None = None
    convergence_pvalue: float | None = None
    log_likelihood: float | None = None
    model: ErgmModel | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        for arr in (self.estimates, self.std_errors, self.observed, self.t_ratios):
            if arr is not None:
                arr.setflags(write=False)

    @property
    def aic(self) -> float | None:
        if self.log_likelihood is None:
            return None
        return 2 * len(self.terms) - 2 * self.log_likelihood

    @property
    def bic(self) -> float | None:
        if self.log_likelihood is None:
            return None
        return len(self.terms) * np.log(self.n_dyads) - 2 * self.log_likelihood


def fit_mple(
    X: np.ndarray,
    y: np.ndarray,
    term_names: list[str],
) -> tuple[np.ndarray, np.ndarray, float]:
    """Logistic regression of tie indicators on change statistics (statsmodels Logit).

    Returns (estimates, standard errors, maximized log pseudo-likelihood).
    """
    constant = [
        name for k, name in enumerate(term_names) if np.ptp(X[:, k]) == 0 and name != "edges"
    ]
    if constant:
        msg = f"Term(s) {constant} have the same change statistic for every dyad (not identifiable)"
        raise ErgmDegeneracyError(msg)

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            warnings.simplefilter("ignore", PerfectSeparationWarning)
            result = sm.Logit(y, X).fit(disp=0)
    except PerfectSeparationError as exc:
        msg = "Tie indicators are perfectly separated by the change statistics"
        raise ErgmDegeneracyError(msg) from exc
    except np.linalg.LinAlgError as exc:
        msg = "Pseudo-likelihood Hessian is singular; terms are collinear"
        raise ErgmDegeneracyError(msg) from exc

    theta = np.asarray(result.params, dtype=float)
    if not np.all(np.isfinite(theta)):
        msg = "Pseudo-likelihood optimization produced non-finite estimates"
        raise ErgmConvergenceError(msg)
    if np.any(np.abs(theta) > MAX_ABS_ESTIMATE):
        diverged = [term_names[k] for k in np.flatnonzero(np.abs(theta) > MAX_ABS_ESTIMATE)]
        msg = f"Estimates diverged for {diverged} (perfect separation; model is near-degenerate)"
        raise ErgmDegeneracyError(msg)
    if not result.mle_retvals["converged"]:
        msg = "Pseudo-likelihood optimization did not converge"
        raise ErgmConvergenceError(msg)

    se = np.asarray(result.bse, dtype=float)
    if not np.all(np.isfinite(se)):
        msg = "Pseudo-likelihood Hessian is singular; terms are collinear"
        raise ErgmDegeneracyError(msg)
    return theta, se, float(result.llf)


def _check_sample(sim: SimulationResult, model: ErgmModel) -> np.ndarray:
    """Raise on degenerate samples; return the sample covariance of the statistics."""
    densities = sim.edge_counts / model.n_dyads
    if np.mean(densities <= DEGENERATE_DENSITY_LOW) > DEGENERATE_SHARE:
        msg = f"{model.name}: simulated networks collapsed to (near-)empty graphs"
        raise ErgmDegeneracyError(msg)
    if np.mean(densities >= DEGENERATE_DENSITY_HIGH) > DEGENERATE_SHARE:
        msg = f"{model.name}: simulated networks collapsed to (near-)complete graphs"
        raise ErgmDegeneracyError(msg)

    sd = sim.stats.std(axis=0, ddof=1)
    frozen = [model.term_names[k] for k in np.flatnonzero(sd == 0)]
    if frozen:
        msg = f"{model.name}: statistic(s) {frozen} never varied in the MCMC sample"
        raise ErgmDegeneracyError(msg)

    cov = np.atleast_2d(np.cov(sim.stats, rowvar=False))
    if np.linalg.matrix_rank(cov) < model.p:
        msg = f"{model.name}: covariance of simulated statistics is singular"
        raise ErgmDegeneracyError(msg)
    return cov


def hotelling_test(
    samples: np.ndarray,
    target: np.ndarray,
    n_batches: int = HOTELLING_BATCHES,
) -> tuple[float, float]:
    """Hotelling T^2 test of mean(samples) == target for an autocorrelated chain.

    Consecutive samples are grouped into batches; the spread of the batch means
    estimates the variance of the overall mean. Returns (T^2, p-value).
    """
    n_samples, p = samples.shape
    n_batches = min(n_batches, n_samples)
    if n_batches <= p:
        msg = f"Hotelling test of {p} statistics needs more than {p} batches, got {n_batches}"
        raise ValueError(msg)

    per_batch = n_samples // n_batches
    batch_means = samples[: per_batch * n_batches].reshape(n_batches, per_batch, p).mean(axis=1)
    diff = batch_means.mean(axis=0) - target
    cov = np.atleast_2d(np.cov(batch_means, rowvar=False))
    t2 = float(n_batches * diff @ np.linalg.pinv(cov) @ diff)
    f_stat = (n_batches - p) / (p * (n_batches - 1)) * t2
    return t2, float(stats.f.sf(f_stat, p, n_batches - p))


def _importance_step(centered: np.ndarray, target: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """Step d maximizing target.d - log mean(exp(Z.d)) over the centered sample Z.

    That is the importance-sampling estimate of the log-likelihood ratio when the
    observed statistics are replaced by ``target`` (relative to the sample mean).
    Falls back to the log-normal step cov^-1 target when the reweighted sample is
    too thin to trust.
    """
    sd = np.sqrt(np.diag(cov))
    Z = centered / sd
    t = target / sd
    lognormal = np.linalg.solve(cov / np.outer(sd, sd), t)

    def objective(d: np.ndarray) -> float:
        return float(logsumexp(Z @ d) - t @ d)

    def gradient(d: np.ndarray) -> np.ndarray:
        return softmax(Z @ d) @ Z - t

    def hessian(d: np.ndarray) -> np.ndarray:
        w = softmax(Z @ d)
        m = w @ Z
        return (Z * w[:, None]).T @ Z - np.outer(m, m)

    result = minimize(objective, lognormal, jac=gradient, hess=hessian, method="trust-exact")
    if not result.success or not np.all(np.isfinite(result.x)):
        return lognormal / sd
    weights = softmax(Z @ result.x)
    if 1.0 / np.sum(weights**2) < MIN_IMPORTANCE_ESS * len(Z):
        return lognormal / sd
    return result.x / sd


def fit_mcmle(
    model: ErgmModel,
    theta0: np.ndarray,
    settings: McmcSettings,
    seed: int = RANDOM_SEED,
) -> tuple[np.ndarray, np.ndarray, int, np.ndarray, float]:
    """Markov-chain Monte Carlo MLE from a starting value (usually the MPLE).

    Returns (theta, covariance of simulated statistics at theta, iterations,
    t-ratios, Hotelling p-value).
    """
    theta = np.asarray(theta0, dtype=float).copy()
    obs = model.obs_stats
    burnin, interval = settings.chain_lengths(model.n_dyads)
    step_limit = stats.chi2.ppf(STEP_CONFIDENCE, df=model.p)
    full_steps = 0
    pvalue = 0.0
    print(f"    MCMC: {settings.sample_size} samples, interval {interval}, burn-in {burnin}")

    for iteration in range(1, settings.max_iterations + 1):
        sim = model.simulate(
            theta,
            n_samples=settings.sample_size,
            burnin=burnin,
            interval=interval,
            seed=seed + iteration,
        )
        cov = _check_sample(sim, model)
        mean = sim.stats.mean(axis=0)
        t_ratios = (mean - obs) / np.sqrt(np.diag(cov))
        _, pvalue = hotelling_test(sim.stats, obs)
        print(
            f"    Iteration {iteration}: Hotelling p = {pvalue:.3f}, "
            f"max |t| = {np.abs(t_ratios).max():.3f}, acceptance = {sim.acceptance_rate:.3f}"
        )

        if pvalue >= settings.min_pvalue:
            return theta, cov, iteration, t_ratios, pvalue

        diff = obs - mean
        # squared Mahalanobis distance of the observed statistics from the sample mean
        distance = float(diff @ np.linalg.solve(cov, diff))
        if distance <= step_limit:
            gamma = 1.0
            full_steps += 1
            gain = max(1.0 / full_steps, MIN_STEP_GAIN)
        else:
            gamma = float(np.sqrt(step_limit / distance))
            gain = 1.0
        theta = theta + gain * _importance_step(sim.stats - mean, gamma * diff, cov)

    msg = (
        f"{model.name}: MCMLE did not converge after {settings.max_iterations} iterations "
        f"(Hotelling p = {pvalue:.3f}, required {settings.min_pvalue})"
    )
    raise ErgmConvergenceError(msg)


def fit_ergm(
    G: nx.DiGraph,
    formula: list[str],
    covariates: dict[str, nx.DiGraph] | None = None,
    name: str | None = None,
    settings: McmcSettings | None = None,
    seed: int = RANDOM_SEED,
) -> ErgmFit:
    """Fit an ERGM; raises ErgmConvergenceError when no usable fit is reached."""
    settings = settings or McmcSettings()
    model = ErgmModel(G, formula, covariates, name=name)
    print(f"  {model.name}: {' + '.join(formula)}")

    X, y = model.mple_design()
    theta, se, log_pl = fit_mple(X, y, model.term_names)

    if model.dyad_independent:
        print(f"    Dyad-independent: MPLE is the MLE (log-likelihood {log_pl:.2f})")
        return ErgmFit(
            network=model.name,
            formula=tuple(formula),
            terms=tuple(model.term_names),
            estimates=theta,
            std_errors=se,
            observed=model.obs_stats.copy(),
            method="MLE (dyad-independent)",
            iterations=1,
            converged=True,
            n_dyads=model.n_dyads,
            log_likelihood=log_pl,
            model=model,
        )

    theta, cov, iterations, t_ratios, pvalue = fit_mcmle(model, theta, settings, seed=seed)
    try:
        fisher_inv = np.linalg.inv(cov)
    except np.linalg.LinAlgError as exc:
        msg = f"{model.name}: information matrix is singular at the MCMLE"
        raise ErgmDegeneracyError(msg) from exc

    print(f"    Converged after {iterations} iteration(s) (Hotelling p = {pvalue:.3f})")
    return ErgmFit(
        network=model.name,
        formula=tuple(formula),
        terms=tuple(model.term_names),
        estimates=theta,
        std_errors=np.sqrt(np.diag(fisher_inv)),
        observed=model.obs_stats.copy(),
        method="MCMLE",
        iterations=iterations,
        converged=True,
        n_dyads=model.n_dyads,
        t_ratios=t_ratios,
        convergence_pvalue=pvalue,
        model=model,
    )


def _significance_stars(p: float) -> str:
    if p < 0.001:
        return "***"
    if p < 0.01:
        return "**"
    if p < 0.05:
        return "*"
    if p < 0.1:
        return "."
    return ""


def coefficient_table(fit: ErgmFit) -> pl.DataFrame:
    """Per-term estimate, SE, Wald z, two-sided p, odds ratio and its 95% CI."""
    est = np.asarray(fit.estimates, dtype=float)
    se = np.asarray(fit.std_errors, dtype=float)
    z = est / se
    p = 2.0 * stats.norm.sf(np.abs(z))
    return pl.DataFrame(
        {
            "network": [fit.network] * len(est),
            "term": list(fit.terms),
            "estimate": est,
            "std_error": se,
            "z_value": z,
            "p_value": p,
            "signif": [_significance_stars(float(v)) for v in p],
            "odds_ratio": np.exp(est),
            "ci_low": np.exp(est - Z_95 * se),
            "ci_high": np.exp(est + Z_95 * se),
        }
    )


def fit_model_suite(
    specs: dict[str, dict],
    settings: McmcSettings | None = None,
    seed: int = RANDOM_SEED,
) -> tuple[dict[str, ErgmFit], dict[str, str]]:
    """Fit several named models, keeping going past individual failures.

    specs: {model_name: {"graph": G, "formula": [...], "covariates": {...}}}
    Returns (fits, failures) where failures maps model name -> error message.
    A failed model is never returned as a fit.
    """
    fits: dict[str, ErgmFit] = {}
    failures: dict[str, str] = {}
    for model_name, spec in specs.items():
        try:
            fits[model_name] = fit_ergm(
                spec["graph"],
                spec["formula"],
                covariates=spec.get("covariates"),
                name=model_name,
                settings=settings,
                seed=seed,
            )
        except ErgmConvergenceError as exc:
            failures[model_name] = f"{type(exc).__name__}: {exc}"
            print(f"    FIT FAILED: {failures[model_name]}")
    return fits, failures


# ── Plots ────────────────────────────────────────────────────────────────────


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


def plot_odds_ratios(fits: dict[str, ErgmFit], out_path: Path) -> None:
    """Forest plot of odds ratios (log scale) with 95% Wald intervals, one panel per model."""
    if not fits:
        return
    tables = {
        name: coefficient_table(fit).filter(pl.col("term") != "edges") for name, fit in fits.items()
    }
    n_panels = len(tables)
    max_terms = max(t.height for t in tables.values())
    fig, axes = plt.subplots(
        1, n_panels, figsize=(5.5 * n_panels, 0.45 * max_terms + 2), squeeze=False
    )

    for ax, (name, table) in zip(axes[0], tables.items()):
        y = np.arange(table.height)[::-1]
        odds = table["odds_ratio"].to_numpy()
        lo = table["ci_low"].to_numpy()
        hi = table["ci_high"].to_numpy()
        significant = (table["p_value"] < 0.05).to_numpy()
        colors = np.where(significant, "#1f4e79", "#999999")

        ax.hlines(y, lo, hi, color=colors, linewidth=2)
        ax.scatter(odds, y, color=colors, zorder=3, s=30)
        ax.axvline(1.0, color="#c0392b", linestyle="--", linewidth=1)
        ax.set_xscale("log")
        ax.set_yticks(y)
        ax.set_yticklabels(table["term"].to_list(), fontsize=8)
        ax.set_xlabel("Odds ratio (log scale)")
        ax.set_title(name, fontsize=11, fontweight="bold")
        ax.grid(True, axis="x", alpha=0.3)

    fig.suptitle("ERGM Odds Ratios with 95% Wald Intervals", fontsize=13, fontweight="bold")
    fig.tight_layout()
    save_fig(fig, out_path)
