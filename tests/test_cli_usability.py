import gzip
import json
import subprocess
import sys
from pathlib import Path

from scclonemix.cli import build_parser
from scclonemix.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "scclonemix"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def _assign_args(toy: dict, outdir: Path) -> list[str]:
    return [
        "assign",
        "--alt",
        toy["alt"],
        "--depth",
        toy["depth"],
        "--config",
        toy["config"],
        "--prior",
        toy["prior"],
        "--outdir",
        str(outdir),
    ]


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "scclonemix make-toy-data" in cp.stdout
    assert "scclonemix assign" in cp.stdout


def test_assign_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy", n_cells=20)
    outdir = tmp_path / "assign"
    cp = _run_cli(_assign_args(toy, outdir) + ["--dry-run"])
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert "Cells: 20" in cp.stdout
    assert not (outdir / "summary.json").exists()


def test_make_toy_data_and_assign(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir), "--n-cells", "30"])
    assert cp.returncode == 0
    toy = json.loads(cp.stdout)

    outdir = tmp_path / "out"
    cp = _run_cli(_assign_args(toy, outdir) + ["--nboot", "3", "--seed", "1"])
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "assignments.tsv.gz").exists()
    assert (outdir / "bootstrap.tsv.gz").exists()

    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["n_cells"] == 30
    assert summary["bootstrap"]["nboot"] == 3

    with gzip.open(outdir / "assignments.tsv.gz", "rt") as fh:
        header = fh.readline().rstrip("\n").split("\t")
        rows = fh.read().splitlines()
    assert header[:2] == ["cell", "best_clone"]
    assert "prob_clone1" in header
    assert len(rows) == 30


def test_assign_resume_skips_existing(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy", n_cells=15)
    outdir = tmp_path / "out"
    assert _run_cli(_assign_args(toy, outdir)).returncode == 0
    before = (outdir / "summary.json").stat().st_mtime_ns

    cp = _run_cli(_assign_args(toy, outdir) + ["--resume"])
    assert cp.returncode == 0
    assert (outdir / "summary.json").stat().st_mtime_ns == before


def test_missing_config_variant_message(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy", n_variants=10, n_cells=10)
    lines = Path(toy["config"]).read_text().splitlines()
    short = tmp_path / "config_short.tsv"
    short.write_text("\n".join(lines[:-1]) + "\n")
    toy["config"] = str(short)

    cp = _run_cli(_assign_args(toy, tmp_path / "out"))
    assert cp.returncode == 2
    assert "InvalidInputError: Config is missing variants" in cp.stderr


def test_burn_in_accepts_fraction_or_count() -> None:
    base = ["assign", "--alt", ".", "--depth", ".", "--config", ".", "--outdir", "out"]
    assert build_parser().parse_args(base).burn_in == 0.25
    frac = build_parser().parse_args(base + ["--burn-in", "0.1"]).burn_in
    assert isinstance(frac, float) and frac == 0.1
    count = build_parser().parse_args(base + ["--burn-in", "100"]).burn_in
    assert isinstance(count, int) and count == 100


def test_assign_gibbs_with_burn_in_count(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy", n_variants=20, n_cells=12)
    outdir = tmp_path / "out"
    cp = _run_cli(
        _assign_args(toy, outdir) + ["--method", "gibbs", "--n-iter", "40", "--burn-in", "10", "--seed", "2"]
    )
    assert cp.returncode == 0, cp.stderr
    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["method"] == "gibbs"
    assert summary["n_iter"] == 40
