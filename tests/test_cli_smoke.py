import json
import runpy
import sys

import pytest

from scripts.evaluation import cost_field_report, cubic_path_sweep

SCRIPTS = [
    "scripts.evaluation.cubic_path_sweep",
    "scripts.evaluation.cost_field_report",
]


@pytest.mark.parametrize("mod", SCRIPTS)
def test_help_runs(mod, monkeypatch):
    # argparse exits cleanly on --help
    monkeypatch.setattr(sys, "argv", [mod.rsplit(".", 1)[-1], "--help"])
    with pytest.raises(SystemExit):
        runpy.run_module(mod, run_name="__main__")


def test_sweep_single_step(tmp_path, capsys):
    out = tmp_path / "sweep.json"
    assert cubic_path_sweep.main(["--steps", "1", "--out", str(out)]) == 0
    summary = json.loads(out.read_text())
    assert summary["steps"] == 1 and summary["count"] == 32
    assert "Final count: 32" in capsys.readouterr().out


def test_report_with_explicit_obstacle(tmp_path):
    out = tmp_path / "report.md"
    rc = cost_field_report.main(
        ["--workers", "1", "--repeats", "1", "--obstacle", "30,0,1,1", "--out", str(out)]
    )
    assert rc == 0
    txt = out.read_text()
    assert "- Obstacles: 1" in txt
    assert "Lethal band on centerline: [" in txt


def test_report_rejects_malformed_obstacle(tmp_path):
    with pytest.raises(SystemExit):
        cost_field_report.main(["--obstacle", "1,2,3", "--out", str(tmp_path / "r.md")])
