"""Which clones can a cell tell apart, given only the variants it covers?

A clone is identifiable for a cell when, restricted to the cell's covered
variants, its Config column differs from every other clone's column. Two
clones with identical restricted columns are both unidentifiable for that
cell, whatever the posterior says.
"""

from __future__ import annotations

import logging

import numpy as np

from .errors import InvalidInputError
from .likelihood import coerce_config
from .models import ReadCounts

logger = logging.getLogger(__name__)


def _mismatch_counts(mask: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """cells x clones x clones count of covered variants where two clone columns differ."""
    differ = (matrix[:, :, None] != matrix[:, None, :]).astype(float)  # variants x K x K
    return np.einsum("vn,vkl->nkl", mask.astype(float), differ)


def check_identifiability(coverage_mask, config) -> np.ndarray:
    """Per-clone identifiability for one cell.

    Parameters
    ----------
    coverage_mask:
        Boolean vector over variants, True where the cell has coverage.
    config:
        Variants x clones binary matrix or :class:`CloneConfiguration`.

    Returns
    -------
    numpy.ndarray
        Boolean vector of length K. All False when nothing is covered.
    """
    matrix = coerce_config(config).matrix
    mask = np.asarray(coverage_mask, dtype=bool).ravel()
    if mask.shape[0] != matrix.shape[0]:
        raise InvalidInputError(f"Coverage mask has {mask.shape[0]} entries for {matrix.shape[0]} variants")
    return identifiability_matrix(mask[:, None], matrix)[0]


def identifiability_matrix(coverage, config) -> np.ndarray:
    """Cells x clones boolean identifiability matrix.

    ``coverage`` is either a variants x cells boolean mask or a
    :class:`ReadCounts`, whose ``coverage`` is used.
    """
    if isinstance(coverage, ReadCounts):
        coverage = coverage.coverage
    else:
        coverage = np.asarray(coverage, dtype=bool)
    matrix = coerce_config(config).matrix
    if coverage.ndim != 2 or coverage.shape[0] != matrix.shape[0]:
        raise InvalidInputError(
            f"Coverage shape {coverage.shape} does not match {matrix.shape[0]} Config variants"
        )

    n_clones = matrix.shape[1]
    mismatch = _mismatch_counts(coverage, matrix)
    # A clone is compared against every other clone, never itself.
    off_diag = ~np.eye(n_clones, dtype=bool)
    distinct = (mismatch > 0) | ~off_diag[None, :, :]
    ident = distinct.all(axis=2)
    ident &= coverage.any(axis=0)[:, None]
    logger.debug(
        "Identifiability: %d of %d cells can distinguish every clone",
        int(ident.all(axis=1).sum()),
        ident.shape[0],
    )
    return ident
