from __future__ import annotations

import logging
from typing import Dict, List, Sequence

import numpy as np

from .errors import InvalidInputError
from .likelihood import coerce_config
from .models import UNASSIGNED, CellAssignment
from .utils import top_two
from .validation import check_prob_matrix

logger = logging.getLogger(__name__)


def assign_cells(prob, config, threshold: float = 0.25) -> List[CellAssignment]:
    """Turn a cells x clones posterior into confidence-aware hard calls.

    A cell is assignable when its top probability ``p1`` exceeds
    ``(1 + threshold) * p2``, ``p2`` being the runner-up. Non-assignable
    cells get the final label ``"unassigned"``; their best clone is still
    reported.
    """
    if threshold < 0:
        raise InvalidInputError(f"threshold must be >= 0, got {threshold}")
    conf = coerce_config(config)
    p = check_prob_matrix(prob, n_clones=conf.n_clones)

    best, p1, p2 = top_two(p)
    assignable = p1 > (1.0 + threshold) * p2

    out: List[CellAssignment] = []
    for cell in range(p.shape[0]):
        label = conf.labels[int(best[cell])]
        out.append(
            CellAssignment(
                cell=cell,
                best_index=int(best[cell]),
                best_label=label,
                p1=float(p1[cell]),
                p2=float(p2[cell]),
                assignable=bool(assignable[cell]),
                final_label=label if assignable[cell] else UNASSIGNED,
            )
        )

    logger.info(
        "Assigned %d of %d cells (threshold=%.3g)",
        int(assignable.sum()),
        len(out),
        threshold,
    )
    return out


def summarize_assignments(assignments: Sequence[CellAssignment], labels: Sequence[str]) -> Dict[str, int]:
    """Cell counts per final label, including ``unassigned``, in clone order."""
    counts = {lab: 0 for lab in labels}
    counts[UNASSIGNED] = 0
    for a in assignments:
        counts[a.final_label] = counts.get(a.final_label, 0) + 1
    return counts


def best_labels(assignments: Sequence[CellAssignment]) -> np.ndarray:
    return np.asarray([a.best_index for a in assignments], dtype=np.int64)
