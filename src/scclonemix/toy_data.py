from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .models import CloneConfiguration, ReadCounts
from .utils import ensure_outdir, write_json, write_matrix_tsv


@dataclass(frozen=True)
class ToyData:
    reads: ReadCounts
    config: CloneConfiguration
    psi: np.ndarray
    true_clone: np.ndarray  # per cell, clone index
    theta: Tuple[float, float]


def simulate_configuration(n_variants: int, n_clones: int, rng: np.random.Generator) -> np.ndarray:
    """Random rooted tree over clones; each variant arises on one clone and is inherited.

    Clone 0 is the root, so variants placed on it are carried by every clone.
    """
    parent = [-1] + [int(rng.integers(0, k)) for k in range(1, n_clones)]
    ancestors = []
    for k in range(n_clones):
        chain = {k}
        p = parent[k]
        while p >= 0:
            chain.add(p)
            p = parent[p]
        ancestors.append(chain)

    # every clone gets at least one private variant so that columns are distinct
    origin = np.concatenate([np.arange(n_clones), rng.integers(0, n_clones, size=max(n_variants - n_clones, 0))])
    origin = origin[:n_variants]
    rng.shuffle(origin)

    config = np.zeros((n_variants, n_clones), dtype=np.int8)
    for i, o in enumerate(origin):
        for k in range(n_clones):
            if o in ancestors[k]:
                config[i, k] = 1
    return config


def simulate_clonal_data(
    *,
    n_variants: int = 50,
    n_clones: int = 3,
    n_cells: int = 100,
    mean_depth: float = 5.0,
    coverage: float = 0.6,
    theta: Tuple[float, float] = (0.01, 0.45),
    psi: Optional[Sequence[float]] = None,
    seed: int = 0,
) -> ToyData:
    """Simulate sparse single-cell allele counts for cells drawn from a clone tree.

    Alternate reads are Binomial(depth, theta[Config[i, k]]); each
    (variant, cell) pair is covered with probability ``coverage`` and
    depths are Poisson(``mean_depth``). Uncovered entries are NaN.
    """
    rng = np.random.default_rng(seed)
    config = simulate_configuration(n_variants, n_clones, rng)
    prior = np.full(n_clones, 1.0 / n_clones) if psi is None else np.asarray(psi, dtype=float)
    true_clone = rng.choice(n_clones, size=n_cells, p=prior)

    depth = rng.poisson(mean_depth, size=(n_variants, n_cells)).astype(float)
    covered = (rng.random((n_variants, n_cells)) < coverage) & (depth > 0)
    rate = np.where(config[:, true_clone] == 1, theta[1], theta[0])
    alt = rng.binomial(np.where(covered, depth, 0).astype(np.int64), rate).astype(float)

    alt[~covered] = np.nan
    depth[~covered] = np.nan

    return ToyData(
        reads=ReadCounts.from_arrays(alt, depth),
        config=CloneConfiguration.from_array(config),
        psi=prior,
        true_clone=true_clone,
        theta=(float(theta[0]), float(theta[1])),
    )


def make_toy_data(*, outdir: str | Path, seed: int = 7, **kwargs) -> Dict[str, str]:
    """Write a small simulated dataset as TSV matrices suitable for quick demos/tests.

    The outputs include:
    - alt.tsv.gz / depth.tsv.gz (variants x cells, NA = missing)
    - config.tsv (variants x clones)
    - prior.tsv (clone prior) and truth.tsv (simulated clone per cell)

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    toy = simulate_clonal_data(seed=seed, **kwargs)
    reads, conf = toy.reads, toy.config

    paths = {
        "alt": outdir_p / "alt.tsv.gz",
        "depth": outdir_p / "depth.tsv.gz",
        "config": outdir_p / "config.tsv",
        "prior": outdir_p / "prior.tsv",
        "truth": outdir_p / "truth.tsv",
    }
    write_matrix_tsv(paths["alt"], reads.alt, row_ids=reads.variant_ids, col_ids=reads.cell_ids, corner="variant")
    write_matrix_tsv(paths["depth"], reads.depth, row_ids=reads.variant_ids, col_ids=reads.cell_ids, corner="variant")
    write_matrix_tsv(paths["config"], conf.matrix, row_ids=reads.variant_ids, col_ids=conf.labels, corner="variant")

    with open(paths["prior"], "wt", encoding="utf-8") as fh:
        fh.write("clone\tprior\n")
        for lab, p in zip(conf.labels, toy.psi):
            fh.write(f"{lab}\t{float(p)!r}\n")
    with open(paths["truth"], "wt", encoding="utf-8") as fh:
        fh.write("cell\tclone\n")
        for cell, k in zip(reads.cell_ids, toy.true_clone):
            fh.write(f"{cell}\t{conf.labels[int(k)]}\n")

    summary = {key: str(p) for key, p in paths.items()}
    summary["outdir"] = str(outdir_p)
    write_json(outdir_p / "toy_summary.json", summary)
    return summary
