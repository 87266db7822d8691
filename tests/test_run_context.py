"""
Tests for the structured run output in analysis/run_context.py.

Run: uv run pytest tests/test_run_context.py -v
"""

import json
import sys
from pathlib import Path

import pytest

# Add project root to path so we can import analysis.run_context
sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.report import TextSection
from analysis.run_context import RunContext, _dataset_slug, file_fingerprint


def _section() -> TextSection:
    return TextSection(id="intro", title="Introduction", html="<p>hi</p>")


# ── Dataset labels ───────────────────────────────────────────────────────────


class TestNormalizeDataset:
    @pytest.mark.parametrize(
        "label, expected",
        [
            ("Lazega", "lazega"),
            ("lazega law firm", "lazega_law_firm"),
            ("lazega/2001", "lazega_2001"),
            ("  ", "lazega"),
        ],
    )
    def test_labels(self, label, expected):
        assert _dataset_slug(label) == expected


# ── Successful run ───────────────────────────────────────────────────────────


class TestCompletedRun:
    def test_directories_created(self, tmp_path):
        with RunContext("Lazega", "network", results_root=tmp_path) as ctx:
            assert ctx.plots_dir.is_dir()
            assert ctx.data_dir.is_dir()
        assert ctx.run_dir.parent == tmp_path / "lazega" / "network"

    def test_log_captures_stdout(self, tmp_path):
        with RunContext("lazega", "network", results_root=tmp_path) as ctx:
            print("Phase 1: Loading data")
        log = (ctx.run_dir / "run_log.txt").read_text(encoding="utf-8")
        assert "Phase 1: Loading data" in log

    def test_run_info(self, tmp_path):
        params = {"replicates": 100, "skip_ergm": False}
        with RunContext("lazega", "network", params=params, results_root=tmp_path) as ctx:
            pass
        info = json.loads((ctx.run_dir / "run_info.json").read_text())
        assert info["status"] == "completed"
        assert info["analysis"] == "network"
        assert info["params"] == params

    def test_report_written(self, tmp_path):
        with RunContext("lazega", "network", results_root=tmp_path, title="Network") as ctx:
            ctx.report.add(_section())
        report = ctx.run_dir / "network_report.html"
        assert report.exists()
        assert "Introduction" in report.read_text(encoding="utf-8")

    def test_no_sections_no_report(self, tmp_path):
        with RunContext("lazega", "network", results_root=tmp_path) as ctx:
            pass
        assert not (ctx.run_dir / "network_report.html").exists()

    def test_primer_written(self, tmp_path):
        with RunContext("lazega", "network", results_root=tmp_path, primer="# Primer"):
            pass
        assert (tmp_path / "lazega" / "network" / "README.md").read_text() == "# Primer"

    def test_latest_symlink(self, tmp_path):
        with RunContext("lazega", "network", results_root=tmp_path) as ctx:
            pass
        latest = tmp_path / "lazega" / "network" / "latest"
        assert latest.is_symlink()
        assert latest.resolve() == ctx.run_dir.resolve()

    def test_seed_and_inputs_recorded(self, tmp_path):
        csv_path = tmp_path / "advice.csv"
        csv_path.write_text("from,to\n1,2\n")
        with RunContext("lazega", "network", results_root=tmp_path / "out", seed=42) as ctx:
            ctx.record_inputs([csv_path])
        info = json.loads((ctx.run_dir / "run_info.json").read_text())
        assert info["seed"] == 42
        assert info["inputs"]["advice.csv"] == file_fingerprint(csv_path)
        assert info["inputs"]["advice.csv"]["bytes"] == len("from,to\n1,2\n")
        assert info["elapsed_seconds"] >= 0

    def test_rerun_same_day_replaces_symlink(self, tmp_path):
        for _ in range(2):
            with RunContext("lazega", "network", results_root=tmp_path):
                pass
        assert (tmp_path / "lazega" / "network" / "latest").is_symlink()


# ── Failed run ───────────────────────────────────────────────────────────────


class TestFailedRun:
    def test_status_failed_and_no_report(self, tmp_path):
        with pytest.raises(RuntimeError, match="boom"):
            with RunContext("lazega", "network", results_root=tmp_path) as ctx:
                ctx.report.add(_section())
                raise RuntimeError("boom")
        info = json.loads((ctx.run_dir / "run_info.json").read_text())
        assert info["status"] == "failed"
        assert not (ctx.run_dir / "network_report.html").exists()

    def test_stdout_restored(self, tmp_path):
        before = sys.stdout
        with pytest.raises(ValueError):
            with RunContext("lazega", "network", results_root=tmp_path):
                raise ValueError("bad input")
        assert sys.stdout is before


def test_fingerprint_changes_with_content(tmp_path):
    path = tmp_path / "attributes.csv"
    path.write_text("id,age\n1,64\n")
    first = file_fingerprint(path)
    path.write_text("id,age\n1,65\n")
    assert file_fingerprint(path)["sha256"] != first["sha256"]
