from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np

from . import __version__
from .errors import InvalidInputError
from .models import CloneConfiguration, ReadCounts
from .pipeline import PipelineResult, run_pipeline
from .toy_data import make_toy_data
from .utils import ensure_outdir, jsonable, match_labels, open_textmaybe_gzip, read_matrix_tsv, read_vector_tsv, write_json


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _burn_in(value: str) -> Union[int, float]:
    """Fraction when the value has a decimal point or exponent, else an iteration count."""
    try:
        if any(c in value for c in ".eE"):
            return float(value)
        return int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid burn-in: {value}") from None


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    sys.stderr.write(f"{err.__class__.__name__}: {err}\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="scclonemix",
        description=(
            "scclonemix: assign single cells to phylogeny-derived clones from sparse allele read counts "
            "(Bernoulli/Binomial mixtures fit by EM or Gibbs sampling)."
        ),
    )
    p.add_argument("--version", action="version", version=f"scclonemix {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Simulate a small clone tree and single-cell read counts for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--n-variants", type=int, default=50, help="Number of variants.")
    t.add_argument("--n-clones", type=int, default=3, help="Number of clones.")
    t.add_argument("--n-cells", type=int, default=100, help="Number of cells.")
    t.add_argument("--coverage", type=float, default=0.6, help="Fraction of (variant, cell) pairs covered.")
    t.add_argument("--seed", type=int, default=7, help="Random seed.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # assign
    # -----------------
    a = sub.add_parser(
        "assign",
        help="Assign cells to clones from alt/depth matrices and a clone configuration.",
    )
    a.add_argument("--alt", required=True, type=_path_exists, help="Alt read counts TSV (variants x cells).")
    a.add_argument("--depth", required=True, type=_path_exists, help="Total depth TSV (variants x cells).")
    a.add_argument("--config", required=True, type=_path_exists, help="Clone configuration TSV (variants x clones, 0/1).")
    a.add_argument("--prior", default=None, type=_path_exists, help="Optional clone prior TSV (clone<TAB>prior).")
    a.add_argument("--outdir", required=True, help="Output directory.")

    # Model
    a.add_argument("--method", choices=["em", "gibbs"], default="em", help="Fitting algorithm.")
    a.add_argument("--model", choices=["binomial", "bernoulli"], default="binomial", help="Base distribution.")
    a.add_argument("--max-iter", type=int, default=1000, help="EM iterations cap.")
    a.add_argument("--n-iter", type=int, default=1000, help="Gibbs iterations.")
    a.add_argument(
        "--burn-in",
        type=_burn_in,
        default=0.25,
        help="Gibbs burn-in: a fraction (0.25) or an iteration count (200).",
    )

    # Assignment and merging
    a.add_argument("--threshold", type=float, default=0.25, help="Assignable iff p1 > (1+threshold)*p2.")
    a.add_argument("--target-k", type=int, default=2, help="Number of clusters after merging.")
    a.add_argument("--ratio", type=float, default=1.5, help="Merged-cluster assignment ratio p_in/p_out.")

    # Bootstrap
    a.add_argument("--nboot", type=int, default=0, help="Bootstrap replicates (0 disables).")
    a.add_argument("--n-jobs", type=int, default=1, help="Worker threads for bootstrap replicates.")
    a.add_argument("--seed", type=int, default=None, help="Random seed for Gibbs/bootstrap.")

    a.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    a.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    a.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Input loading
# -----------------

def load_inputs(
    alt_path: str, depth_path: str, config_path: str, prior_path: Optional[str]
) -> Tuple[ReadCounts, CloneConfiguration, Optional[np.ndarray]]:
    """Read TSV matrices and align Config rows to the read-count variant order."""
    alt, var_ids, cell_ids = read_matrix_tsv(alt_path)
    depth, var_ids_d, cell_ids_d = read_matrix_tsv(depth_path)
    if var_ids != var_ids_d or cell_ids != cell_ids_d:
        raise InvalidInputError("Alt and depth matrices must share identical variant rows and cell columns")

    conf_mat, conf_var_ids, clone_ids = read_matrix_tsv(config_path)
    try:
        rows = match_labels(var_ids, conf_var_ids)
    except KeyError as e:
        raise InvalidInputError(f"Config is missing variants present in the read counts: {e}") from None

    reads = ReadCounts.from_arrays(alt, depth, variant_ids=var_ids, cell_ids=cell_ids)
    config = CloneConfiguration.from_array(conf_mat[rows], labels=clone_ids)
    psi = read_vector_tsv(prior_path, order=clone_ids) if prior_path else None
    return reads, config, psi


def write_assignments(path: Path, res: PipelineResult) -> None:
    labels = res.config.labels
    prob = res.fit.prob
    header = [
        "cell",
        "best_clone",
        "p1",
        "p2",
        "assignable",
        "assigned",
        "best_identifiable",
        "cluster",
        "merged_assigned",
    ] + [f"prob_{lab}" for lab in labels]
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write("\t".join(header) + "\n")
        for a, m in zip(res.assignments, res.merged):
            fields: List[str] = [
                res.reads.cell_ids[a.cell],
                a.best_label,
                f"{a.p1:.6f}",
                f"{a.p2:.6f}",
                str(int(a.assignable)),
                a.final_label,
                str(int(res.identifiable[a.cell, a.best_index])),
                str(m.cluster),
                m.label,
            ]
            fields.extend(f"{x:.6f}" for x in prob[a.cell])
            fh.write("\t".join(fields) + "\n")


def write_bootstrap(path: Path, res: PipelineResult) -> None:
    bands = res.bands
    assert bands is not None
    cols = ["min", "q1", "median", "q3", "max", "whisk_min", "whisk_max"]
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write("\t".join(["cell", "clone"] + cols) + "\n")
        for cell, cell_id in enumerate(res.reads.cell_ids):
            for k, lab in enumerate(res.config.labels):
                b = bands.band(cell, k)
                fh.write("\t".join([cell_id, lab] + [f"{b[c]:.6f}" for c in cols]) + "\n")


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "scclonemix quickstart (copy/paste):",
        "",
        "1) Try it on simulated data:",
        "   scclonemix make-toy-data --outdir toy/",
        "   scclonemix assign \\",
        "     --alt toy/alt.tsv.gz --depth toy/depth.tsv.gz \\",
        "     --config toy/config.tsv --prior toy/prior.tsv \\",
        "     --outdir results/",
        "   Outputs: results/assignments.tsv.gz, results/summary.json",
        "",
        "2) Full posterior with Gibbs sampling:",
        "   scclonemix assign --method gibbs --n-iter 1000 --burn-in 0.25 \\",
        "     --alt A.tsv --depth D.tsv --config config.tsv --outdir gibbs/",
        "",
        "3) Bootstrap confidence bands (500 variant resamples, 4 threads):",
        "   scclonemix assign --nboot 500 --n-jobs 4 \\",
        "     --alt A.tsv --depth D.tsv --config config.tsv --outdir boot/",
        "   Outputs: boot/bootstrap.tsv.gz in addition to the above",
        "",
        "Tip: use --dry-run to validate inputs without fitting.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir)
    if args.dry_run:
        print(f"Dry-run: would write toy data to {outdir.resolve()}")
        return 0
    try:
        summary = make_toy_data(
            outdir=outdir,
            seed=int(args.seed),
            n_variants=int(args.n_variants),
            n_clones=int(args.n_clones),
            n_cells=int(args.n_cells),
            coverage=float(args.coverage),
        )
    except Exception as e:
        return _handle_error(e)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_assign(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "assign.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("scclonemix")
    logger.info("scclonemix %s", __version__)

    try:
        reads, config, psi = load_inputs(args.alt, args.depth, args.config, args.prior)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Variants: {reads.n_variants}  Cells: {reads.n_cells}  Clones: {config.n_clones}")
            print(f"Covered entries: {int(reads.coverage.sum())}")
            print("Planned outputs:")
            print(f"  assignments.tsv.gz -> {outdir / 'assignments.tsv.gz'}")
            if args.nboot > 0:
                print(f"  bootstrap.tsv.gz -> {outdir / 'bootstrap.tsv.gz'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            return 0

        outdir = ensure_outdir(outdir)

        if args.resume and (outdir / "summary.json").exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(outdir / "summary.json"))
            return 0

        if args.method == "gibbs":
            fit_kwargs = {"n_iter": int(args.n_iter), "burn_in": args.burn_in}
        else:
            fit_kwargs = {"max_iter": int(args.max_iter)}

        res = run_pipeline(
            reads,
            None,
            config,
            psi,
            method=args.method,
            model=args.model,
            threshold=float(args.threshold),
            target_k=int(args.target_k),
            ratio=float(args.ratio),
            nboot=int(args.nboot),
            n_jobs=int(args.n_jobs),
            seed=args.seed,
            progress=True,
            fit_kwargs=fit_kwargs,
        )

        write_assignments(outdir / "assignments.tsv.gz", res)
        if res.bands is not None:
            write_bootstrap(outdir / "bootstrap.tsv.gz", res)

        summary = res.summary()
        summary["inputs"] = {"alt": args.alt, "depth": args.depth, "config": args.config, "prior": args.prior}
        write_json(outdir / "summary.json", jsonable(summary))

        logger.info("Summary written: %s", outdir / "summary.json")
        print(str(outdir / "summary.json"))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "assign":
        return cmd_assign(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
