from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidInputError
from .validation import as_count_matrix, check_config_matrix, check_read_counts

UNASSIGNED = "unassigned"


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, copy=True)
    arr.setflags(write=False)
    return arr


def _default_ids(prefix: str, n: int) -> Tuple[str, ...]:
    return tuple(f"{prefix}{i + 1}" for i in range(n))


@dataclass(frozen=True)
class ReadCounts:
    """Alternate and total read counts, variants (rows) x cells (columns).

    Missing observations are NaN. A depth of zero also counts as "no usable
    observation", so ``coverage`` is the single source of truth for which
    (variant, cell) pairs contribute to the likelihood.

    Attributes
    ----------
    alt:
        Alternate-allele read counts (float array, NaN = missing).
    depth:
        Total read depth (float array, NaN = missing).
    variant_ids / cell_ids:
        Row and column identifiers, aligned by an upstream collaborator.
    """

    alt: np.ndarray
    depth: np.ndarray
    variant_ids: Tuple[str, ...]
    cell_ids: Tuple[str, ...]

    @classmethod
    def from_arrays(
        cls,
        alt,
        depth,
        *,
        variant_ids: Optional[Sequence[str]] = None,
        cell_ids: Optional[Sequence[str]] = None,
    ) -> "ReadCounts":
        a = as_count_matrix(alt, name="A")
        d = as_count_matrix(depth, name="D")
        check_read_counts(a, d)
        n_var, n_cell = a.shape
        vids = tuple(str(v) for v in variant_ids) if variant_ids is not None else _default_ids("var", n_var)
        cids = tuple(str(c) for c in cell_ids) if cell_ids is not None else _default_ids("cell", n_cell)
        if len(vids) != n_var:
            raise InvalidInputError(f"Got {len(vids)} variant ids for {n_var} variant rows")
        if len(cids) != n_cell:
            raise InvalidInputError(f"Got {len(cids)} cell ids for {n_cell} cell columns")
        return cls(alt=_frozen(a), depth=_frozen(d), variant_ids=vids, cell_ids=cids)

    @property
    def n_variants(self) -> int:
        return int(self.alt.shape[0])

    @property
    def n_cells(self) -> int:
        return int(self.alt.shape[1])

    @property
    def coverage(self) -> np.ndarray:
        """Boolean mask (variants x cells) of usable observations."""
        with np.errstate(invalid="ignore"):
            return np.isfinite(self.alt) & np.isfinite(self.depth) & (self.depth > 0)

    def take_variants(self, rows: np.ndarray) -> "ReadCounts":
        """Return the read counts restricted to (possibly repeated) variant rows."""
        rows = np.asarray(rows, dtype=np.int64)
        return ReadCounts(
            alt=_frozen(self.alt[rows]),
            depth=_frozen(self.depth[rows]),
            variant_ids=tuple(self.variant_ids[i] for i in rows),
            cell_ids=self.cell_ids,
        )


@dataclass(frozen=True)
class CloneConfiguration:
    """Binary variant x clone matrix with ordered clone labels.

    Labels are resolved to integer indices once, here; everything downstream
    works on indices 0..K-1.
    """

    matrix: np.ndarray
    labels: Tuple[str, ...]

    @classmethod
    def from_array(cls, config, *, labels: Optional[Sequence[str]] = None) -> "CloneConfiguration":
        mat = check_config_matrix(config)
        n_clones = mat.shape[1]
        labs = tuple(str(x) for x in labels) if labels is not None else _default_ids("clone", n_clones)
        if len(labs) != n_clones:
            raise InvalidInputError(f"Got {len(labs)} clone labels for {n_clones} clone columns")
        if len(set(labs)) != len(labs):
            raise InvalidInputError("Clone labels must be unique")
        return cls(matrix=_frozen(mat), labels=labs)

    @property
    def n_variants(self) -> int:
        return int(self.matrix.shape[0])

    @property
    def n_clones(self) -> int:
        return int(self.matrix.shape[1])

    @property
    def discriminating_rows(self) -> np.ndarray:
        """True for variant rows that are not constant across clones."""
        return self.matrix.min(axis=1) != self.matrix.max(axis=1)

    def take_variants(self, rows: np.ndarray) -> "CloneConfiguration":
        rows = np.asarray(rows, dtype=np.int64)
        return CloneConfiguration(matrix=_frozen(self.matrix[rows]), labels=self.labels)


@dataclass(frozen=True)
class EMResult:
    """Point estimate from Expectation-Maximization."""

    prob: np.ndarray  # cells x clones posterior
    theta: np.ndarray  # (theta0, theta1)
    loglik: np.ndarray  # trajectory, one entry per E-step
    model: str
    converged: bool
    clone_labels: Tuple[str, ...]

    @property
    def n_iter(self) -> int:
        return int(len(self.loglik))


@dataclass(frozen=True)
class GibbsResult:
    """Full chain from the Gibbs sampler plus the post-burn-in posterior."""

    prob: np.ndarray  # cells x clones, post-burn-in assignment frequency
    theta_chain: np.ndarray  # iterations x 2
    loglik_chain: np.ndarray  # iterations
    assignment_chain: np.ndarray  # iterations x cells, clone indices
    burn_in: int
    model: str
    geweke_z: float
    clone_labels: Tuple[str, ...]
    interrupted: bool = False

    @property
    def n_iter(self) -> int:
        return int(len(self.loglik_chain))

    @property
    def theta(self) -> np.ndarray:
        """Posterior mean of theta over the post-burn-in samples."""
        return self.theta_chain[self.burn_in :].mean(axis=0)

    @property
    def converged(self) -> bool:
        return bool(np.isfinite(self.geweke_z) and abs(self.geweke_z) <= 2.0)


@dataclass(frozen=True)
class CellAssignment:
    """Confidence-thresholded assignment for one cell."""

    cell: int
    best_index: int
    best_label: str
    p1: float
    p2: float
    assignable: bool
    final_label: str


@dataclass(frozen=True)
class ClusterAssignment:
    """Cluster id per cell after affinity propagation and the hierarchy cut.

    ``exemplars`` are the affinity-propagation exemplar cells (before the
    cut); ``labels`` are the final cluster ids, numbered in order of first
    appearance across cells.
    """

    labels: np.ndarray
    exemplars: Tuple[int, ...]
    n_ap_clusters: int

    @property
    def n_clusters(self) -> int:
        return int(len(np.unique(self.labels))) if len(self.labels) else 0

    @property
    def members(self) -> Dict[int, List[int]]:
        out: Dict[int, List[int]] = {}
        for cell, cl in enumerate(self.labels.tolist()):
            out.setdefault(int(cl), []).append(cell)
        return out


@dataclass(frozen=True)
class MergedAssignment:
    """Cluster-level assignment of one cell to a (possibly multi-clone) set."""

    cell: int
    cluster: int
    clones: Tuple[int, ...]
    p_in: float
    p_out: float
    assignable: bool
    label: str


@dataclass(frozen=True)
class BootstrapBands:
    """Per (cell, clone) spread of posterior probabilities across resamples.

    All summary arrays are cells x clones. ``probs`` keeps the raw
    cells x clones x replicates stack; failed replicates are NaN slices and
    are listed in ``failed``.
    """

    probs: np.ndarray
    minimum: np.ndarray
    q1: np.ndarray
    median: np.ndarray
    q3: np.ndarray
    maximum: np.ndarray
    whisk_min: np.ndarray
    whisk_max: np.ndarray
    n_ok: int
    failed: Tuple[int, ...] = field(default_factory=tuple)
    interrupted: bool = False

    @property
    def nboot(self) -> int:
        return int(self.probs.shape[2])

    def band(self, cell: int, clone: int) -> Dict[str, float]:
        return {
            "min": float(self.minimum[cell, clone]),
            "q1": float(self.q1[cell, clone]),
            "median": float(self.median[cell, clone]),
            "q3": float(self.q3[cell, clone]),
            "max": float(self.maximum[cell, clone]),
            "whisk_min": float(self.whisk_min[cell, clone]),
            "whisk_max": float(self.whisk_max[cell, clone]),
        }
