from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import scipy.sparse

from .errors import InvalidInputError

logger = logging.getLogger(__name__)

_PROB_TOL = 1e-6


def as_count_matrix(x, *, name: str) -> np.ndarray:
    """Convert a dense or scipy.sparse count matrix to a float array; NaN marks missing.

    For sparse input, unstored entries become 0, which for depth means "no coverage".
    """
    if scipy.sparse.issparse(x):
        x = x.toarray()
    try:
        arr = np.asarray(x, dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"{name} is not numeric: {e}") from e
    if arr.ndim != 2:
        raise InvalidInputError(f"{name} must be a 2-D variants x cells matrix, got shape {arr.shape}")
    if np.isinf(arr).any():
        raise InvalidInputError(f"{name} contains infinite values; use NaN for missing observations")
    finite = arr[np.isfinite(arr)]
    if (finite < 0).any():
        raise InvalidInputError(f"{name} contains negative read counts")
    if (finite != np.floor(finite)).any():
        raise InvalidInputError(f"{name} contains non-integer read counts")
    return arr


def check_read_counts(alt: np.ndarray, depth: np.ndarray) -> None:
    if alt.shape != depth.shape:
        raise InvalidInputError(f"A and D shapes differ: {alt.shape} vs {depth.shape}")
    both = np.isfinite(alt) & np.isfinite(depth)
    if (alt[both] > depth[both]).any():
        n_bad = int((alt[both] > depth[both]).sum())
        raise InvalidInputError(f"A exceeds D at {n_bad} observed entries")


def check_config_matrix(config) -> np.ndarray:
    if scipy.sparse.issparse(config):
        config = config.toarray()
    try:
        arr = np.asarray(config, dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Config is not numeric: {e}") from e
    if arr.ndim != 2:
        raise InvalidInputError(f"Config must be a 2-D variants x clones matrix, got shape {arr.shape}")
    if not np.isfinite(arr).all():
        raise InvalidInputError("Config contains non-finite values")
    if not np.isin(arr, (0.0, 1.0)).all():
        raise InvalidInputError("Config must be binary (0/1)")
    return arr.astype(np.int8)


def check_alignment(n_variants_reads: int, n_variants_config: int) -> None:
    if n_variants_reads != n_variants_config:
        raise InvalidInputError(
            f"Read counts have {n_variants_reads} variant rows but Config has {n_variants_config}; "
            "rows must be aligned 1:1 before fitting"
        )


def check_discriminating(matrix: np.ndarray) -> None:
    """Require at least two clones and at least one variant separating them."""
    n_clones = matrix.shape[1]
    if n_clones < 2:
        raise InvalidInputError(f"Need at least 2 clones to assign cells, got {n_clones}")
    discriminating = matrix.min(axis=1) != matrix.max(axis=1)
    if not discriminating.any():
        raise InvalidInputError(
            "No variant discriminates between clones (all Config columns are identical); "
            "the clone posterior is under-determined"
        )
    n_const = int((~discriminating).sum())
    if n_const:
        logger.debug("%d of %d variants are shared by all clones and carry no clone signal", n_const, len(discriminating))


def check_prior(psi, n_clones: int) -> np.ndarray:
    """Validate the clone prior; ``None`` means uniform."""
    if psi is None:
        return np.full(n_clones, 1.0 / n_clones)
    arr = np.asarray(psi, dtype=float).ravel()
    if arr.shape[0] != n_clones:
        raise InvalidInputError(f"Psi has length {arr.shape[0]} but Config has {n_clones} clones")
    if not np.isfinite(arr).all() or (arr < 0).any():
        raise InvalidInputError("Psi must be finite and non-negative")
    if abs(arr.sum() - 1.0) > _PROB_TOL:
        raise InvalidInputError(f"Psi must sum to 1, sums to {arr.sum():.6g}")
    return arr


def check_prob_matrix(prob, *, n_clones: Optional[int] = None) -> np.ndarray:
    """Validate a cells x clones probability matrix whose rows sum to 1."""
    arr = np.asarray(prob, dtype=float)
    if arr.ndim != 2:
        raise InvalidInputError(f"P must be a 2-D cells x clones matrix, got shape {arr.shape}")
    if n_clones is not None and arr.shape[1] != n_clones:
        raise InvalidInputError(f"P has {arr.shape[1]} clone columns, expected {n_clones}")
    if not np.isfinite(arr).all():
        raise InvalidInputError("P contains non-finite values")
    if (arr < -_PROB_TOL).any() or (arr > 1 + _PROB_TOL).any():
        raise InvalidInputError("P entries must lie in [0, 1]")
    if arr.shape[0] and np.abs(arr.sum(axis=1) - 1.0).max() > _PROB_TOL:
        raise InvalidInputError("Rows of P must sum to 1")
    return arr


def check_model(model: str) -> str:
    m = str(model).lower()
    if m not in ("bernoulli", "binomial"):
        raise InvalidInputError(f"Unknown model {model!r}; expected 'bernoulli' or 'binomial'")
    return m
