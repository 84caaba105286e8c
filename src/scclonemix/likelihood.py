"""Shared likelihood machinery for the Bernoulli and Binomial mixture models.

Both models reduce to the same four per-(cell, clone) counts:

- ``s0`` / ``f0``: successes / failures at variants the clone does NOT carry
- ``s1`` / ``f1``: successes / failures at variants the clone carries

For the Binomial model a success is an alternate read and a failure a
reference read; for the Bernoulli model each covered variant contributes one
trial whose success is "any alternate read observed". Uncovered entries
contribute nothing (missing at random).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from scipy.special import gammaln, logsumexp

from .errors import DegenerateFitError, InvalidInputError
from .models import CloneConfiguration, ReadCounts
from .validation import check_alignment, check_discriminating, check_model, check_prior

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObservationStats:
    """Per (variant, cell) success/failure counts for one base model."""

    success: np.ndarray  # variants x cells
    failure: np.ndarray  # variants x cells
    log_const: np.ndarray  # per cell, log binomial coefficients (0 for Bernoulli)
    n_observed: np.ndarray  # per cell, number of covered variants


@dataclass(frozen=True)
class CloneCounts:
    """Per (cell, clone) counts split by Config[i, k]."""

    s0: np.ndarray
    f0: np.ndarray
    s1: np.ndarray
    f1: np.ndarray

    def at(self, assignment: np.ndarray) -> Tuple[float, float, float, float]:
        """Totals when each cell is hard-assigned to ``assignment[cell]``."""
        rows = np.arange(len(assignment))
        return (
            float(self.s0[rows, assignment].sum()),
            float(self.f0[rows, assignment].sum()),
            float(self.s1[rows, assignment].sum()),
            float(self.f1[rows, assignment].sum()),
        )


def observation_stats(reads: ReadCounts, model: str) -> ObservationStats:
    cov = reads.coverage
    alt = np.where(cov, reads.alt, 0.0)
    depth = np.where(cov, reads.depth, 0.0)

    if model == "bernoulli":
        success = (cov & (alt > 0)).astype(float)
        failure = (cov & (alt == 0)).astype(float)
        log_const = np.zeros(reads.n_cells)
    else:
        success = alt
        failure = depth - alt
        log_const = (gammaln(depth + 1.0) - gammaln(alt + 1.0) - gammaln(depth - alt + 1.0)).sum(axis=0)

    return ObservationStats(
        success=success,
        failure=failure,
        log_const=log_const,
        n_observed=cov.sum(axis=0),
    )


def clone_counts(stats: ObservationStats, config: np.ndarray) -> CloneCounts:
    c1 = np.asarray(config, dtype=float)
    c0 = 1.0 - c1
    return CloneCounts(
        s0=stats.success.T @ c0,
        f0=stats.failure.T @ c0,
        s1=stats.success.T @ c1,
        f1=stats.failure.T @ c1,
    )


def loglik_grid(counts: CloneCounts, theta: np.ndarray, log_const: np.ndarray) -> np.ndarray:
    """Log-likelihood of each cell under each clone hypothesis (cells x clones)."""
    t0, t1 = float(theta[0]), float(theta[1])
    grid = (
        counts.s0 * np.log(t0)
        + counts.f0 * np.log1p(-t0)
        + counts.s1 * np.log(t1)
        + counts.f1 * np.log1p(-t1)
    )
    return grid + log_const[:, None]


def posterior(grid: np.ndarray, psi: np.ndarray) -> Tuple[np.ndarray, float]:
    """Normalise ``psi * likelihood`` per cell.

    Returns the cells x clones posterior and the total marginal log-likelihood.
    """
    with np.errstate(divide="ignore"):
        joint = grid + np.log(psi)[None, :]
    cell_ll = logsumexp(joint, axis=1)
    prob = np.exp(joint - cell_ll[:, None])
    return prob, float(cell_ll.sum())


def clamp_theta(theta, eps: float) -> np.ndarray:
    return np.clip(np.asarray(theta, dtype=float), eps, 1.0 - eps)


@dataclass(frozen=True)
class FitInputs:
    """Validated, aligned inputs plus the counts every fitting routine needs."""

    reads: ReadCounts
    config: CloneConfiguration
    psi: np.ndarray
    model: str
    stats: ObservationStats
    counts: CloneCounts


def coerce_reads(alt, depth) -> ReadCounts:
    if isinstance(alt, ReadCounts):
        if depth is not None:
            raise InvalidInputError("Pass either a ReadCounts object or A and D arrays, not both")
        return alt
    if depth is None:
        raise InvalidInputError("D is required when A is an array")
    return ReadCounts.from_arrays(alt, depth)


def coerce_config(config) -> CloneConfiguration:
    if isinstance(config, CloneConfiguration):
        return config
    return CloneConfiguration.from_array(config)


def prepare_fit(alt, depth, config, psi, model: str) -> FitInputs:
    model = check_model(model)
    reads = coerce_reads(alt, depth)
    conf = coerce_config(config)
    check_alignment(reads.n_variants, conf.n_variants)
    check_discriminating(conf.matrix)
    prior = check_prior(psi, conf.n_clones)

    stats = observation_stats(reads, model)
    if int(stats.n_observed.sum()) == 0:
        raise DegenerateFitError(
            "No cell has any covered variant; nothing to fit",
            guard="zero_coverage",
            detail={"n_cells": reads.n_cells, "n_variants": reads.n_variants},
        )
    n_empty = int((stats.n_observed == 0).sum())
    if n_empty:
        logger.debug("%d of %d cells have no covered variant; their posterior equals Psi", n_empty, reads.n_cells)

    return FitInputs(
        reads=reads,
        config=conf,
        psi=prior,
        model=model,
        stats=stats,
        counts=clone_counts(stats, conf.matrix),
    )
