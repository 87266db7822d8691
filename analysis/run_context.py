"""Structured, reproducible output for one analysis run.

Each run of an analysis script writes into

    results/<dataset>/<analysis>/<YYYY-MM-DD>/
        plots/            PNG figures
        data/             parquet tables
        run_log.txt       everything printed during the run
        run_info.json     status, timings, git commit, seed, parameters, input checksums
        <analysis>_report.html   (only when the run completed and sections were added)

and points results/<dataset>/<analysis>/latest at the newest date directory.
A rerun on the same day overwrites that day's directory.

Usage:
    with RunContext(dataset="lazega", analysis_name="network", params=vars(args),
                    seed=RANDOM_SEED, primer=NETWORK_PRIMER) as ctx:
        ctx.record_inputs([data_dir / "advice.csv", data_dir / "attributes.csv"])
        df.write_parquet(ctx.data_dir / "layer_summary.parquet")
        ctx.report.add(...)
"""

from __future__ import annotations

import hashlib
import io
import json
import re
import subprocess
import sys
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType

try:
    from analysis.report import ReportBuilder
except ModuleNotFoundError:
    from report import ReportBuilder  # type: ignore[no-redef]

DEFAULT_DATASET = "lazega"
RESULTS_ROOT = Path("results")


class _ConsoleCapture:
    """Stand-in for sys.stdout that echoes to the console and keeps a copy."""

    def __init__(self) -> None:
        self._console: io.TextIOBase | None = None
        self._copy = io.StringIO()

    def start(self) -> None:
        self._console = sys.stdout
        sys.stdout = self  # type: ignore[assignment]

    def stop(self) -> str:
        if self._console is not None:
            sys.stdout = self._console  # type: ignore[assignment]
            self._console = None
        return self._copy.getvalue()

    def write(self, data: str) -> int:
        if self._console is not None:
            self._console.write(data)
        self._copy.write(data)
        return len(data)

    def flush(self) -> None:
        if self._console is not None:
            self._console.flush()


def _dataset_slug(dataset: str) -> str:
    """Directory-safe dataset label.

    Examples:
        "Lazega"           -> "lazega"
        "lazega law firm"  -> "lazega_law_firm"
        "lazega/2001"      -> "lazega_2001"
    """
    slug = re.sub(r"[^a-z0-9_-]+", "_", dataset.strip().lower())
    return slug.strip("_") or DEFAULT_DATASET


def _git_commit_hash() -> str:
    """Current commit hash, or 'unknown' outside a git checkout."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return "unknown"
    return result.stdout.strip() if result.returncode == 0 else "unknown"


def file_fingerprint(path: Path) -> dict:
    """Size and SHA-256 of an input file."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 16), b""):
            digest.update(chunk)
    return {"bytes": path.stat().st_size, "sha256": digest.hexdigest()}


class RunContext:
    """Context manager owning the output tree, console log and metadata of a run.

    Attributes:
        dataset: Directory-safe dataset label (e.g. "lazega").
        analysis_name: Name of the analysis (e.g. "network").
        params: Script parameters recorded in run_info.json.
        seed: Random seed recorded in run_info.json, if the run is stochastic.
        inputs: {file name: fingerprint} for files passed to record_inputs().
        run_dir / plots_dir / data_dir: Output directories for this run.
        report: ReportBuilder collecting sections for the HTML report.
    """

    def __init__(
        self,
        dataset: str,
        analysis_name: str,
        params: dict | None = None,
        results_root: Path | None = None,
        primer: str | None = None,
        title: str | None = None,
        seed: int | None = None,
    ) -> None:
        self.dataset = _dataset_slug(dataset)
        self.analysis_name = analysis_name
        self.params = params or {}
        self.seed = seed
        self.inputs: dict[str, dict] = {}

        self._run_date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        self._analysis_dir = (results_root or RESULTS_ROOT) / self.dataset / analysis_name
        self.run_dir = self._analysis_dir / self._run_date
        self.plots_dir = self.run_dir / "plots"
        self.data_dir = self.run_dir / "data"

        self._primer = primer
        self._capture = _ConsoleCapture()
        self._started: datetime | None = None

        self.report = ReportBuilder(
            title=title or f"{analysis_name.title()} Report",
            dataset=self.dataset,
        )

    def __enter__(self) -> RunContext:
        self.setup()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.finalize(failed=exc_type is not None)

    def setup(self) -> None:
        """Create the directory tree, write the primer, and start capturing stdout."""
        for directory in (self.plots_dir, self.data_dir):
            directory.mkdir(parents=True, exist_ok=True)
        if self._primer:
            # one primer per analysis, shared by every dated run
            (self._analysis_dir / "README.md").write_text(self._primer, encoding="utf-8")
        self._capture.start()
        self._started = datetime.now(timezone.utc)

    def record_inputs(self, paths: Iterable[Path]) -> None:
        """Fingerprint input files so run_info.json pins the exact data used."""
        for path in paths:
            path = Path(path)
            self.inputs[path.name] = file_fingerprint(path)

    def finalize(self, failed: bool = False) -> None:
        """Write the log and run_info.json, the report on success, then move `latest`."""
        log_text = self._capture.stop()
        (self.run_dir / "run_log.txt").write_text(log_text, encoding="utf-8")

        git_commit = _git_commit_hash()
        self._write_run_info(git_commit, failed)
        if not failed and self.report.has_sections:
            self.report.git_hash = git_commit
            self.report.write(self.run_dir / f"{self.analysis_name}_report.html")
        self._point_latest()

    def _write_run_info(self, git_commit: str, failed: bool) -> None:
        finished = datetime.now(timezone.utc)
        elapsed = (finished - self._started).total_seconds() if self._started else None
        run_info = {
            "analysis": self.analysis_name,
            "dataset": self.dataset,
            "run_date": self._run_date,
            "status": "failed" if failed else "completed",
            "timestamp_start": self._started.isoformat() if self._started else None,
            "timestamp_end": finished.isoformat(),
            "elapsed_seconds": round(elapsed, 2) if elapsed is not None else None,
            "git_commit": git_commit,
            "python_version": sys.version,
            "seed": self.seed,
            "params": self.params,
            "inputs": self.inputs,
        }
        with open(self.run_dir / "run_info.json", "w") as f:
            json.dump(run_info, f, indent=2, default=str)

    def _point_latest(self) -> None:
        latest = self._analysis_dir / "latest"
        if latest.is_symlink() or latest.exists():
            latest.unlink()
        # relative target keeps the results tree relocatable
        latest.symlink_to(self._run_date)
