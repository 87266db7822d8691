"""
Tests for the lawfirm-data command in cli.py.

Writes synthetic CSVs into tmp_path and checks the exit code and printed
summary for valid data, invalid data, and the --layer / --no-attributes flags.

Run: uv run pytest tests/test_cli.py -v
"""

from pathlib import Path

import pytest

from lawfirm_networks.cli import main

ATTRIBUTES = """\
id,status,gender,office,seniority,age,practice
1,1,1,1,31,64,1
2,1,2,2,20,55,2
3,2,1,3,5,38,1
"""

# ── Helpers ──────────────────────────────────────────────────────────────────


@pytest.fixture
def data_dir(tmp_path) -> Path:
    (tmp_path / "attributes.csv").write_text(ATTRIBUTES)
    (tmp_path / "advice.csv").write_text("from,to\n1,2\n2,3\n")
    (tmp_path / "cowork.csv").write_text("from,to\n1,3\n")
    (tmp_path / "friendship.csv").write_text("from,to\n3,1\n1,3\n")
    return tmp_path


# ── Valid data ───────────────────────────────────────────────────────────────


class TestValidData:
    def test_exit_code_zero(self, data_dir):
        assert main([str(data_dir)]) == 0

    def test_prints_tie_counts(self, data_dir, capsys):
        main([str(data_dir)])
        out = capsys.readouterr().out
        assert "Lawyers: 3" in out
        assert "advice" in out
        assert "2 ties" in out
        assert "OK: all edge endpoints present" in out

    def test_density(self, data_dir, capsys):
        main([str(data_dir)])
        # cowork: 1 tie over 3 * 2 ordered pairs
        assert "density=0.1667" in capsys.readouterr().out

    def test_attribute_summary(self, data_dir, capsys):
        main([str(data_dir)])
        out = capsys.readouterr().out
        assert "Partner=2" in out
        assert "age" in out

    def test_no_attributes_flag(self, data_dir, capsys):
        main([str(data_dir), "--no-attributes"])
        assert "Partner=2" not in capsys.readouterr().out

    def test_layer_filter(self, data_dir, capsys):
        main([str(data_dir), "--layer", "cowork"])
        out = capsys.readouterr().out
        assert "cowork.csv" in out
        assert "advice.csv" not in out

    def test_invalid_layer_choice(self, data_dir):
        with pytest.raises(SystemExit):
            main([str(data_dir), "--layer", "mentoring"])


# ── Invalid data ─────────────────────────────────────────────────────────────


class TestInvalidData:
    def test_unknown_endpoint_exit_code_one(self, data_dir, capsys):
        (data_dir / "advice.csv").write_text("from,to\n1,2\n2,42\n")
        assert main([str(data_dir)]) == 1
        err = capsys.readouterr().err
        assert "Validation failed" in err
        assert "advice.csv, row 2" in err
        assert "42" in err

    def test_missing_directory(self, tmp_path, capsys):
        assert main([str(tmp_path / "absent")]) == 1
        assert "not found" in capsys.readouterr().err
