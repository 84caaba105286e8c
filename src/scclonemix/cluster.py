"""Merge statistically indistinguishable clones by clustering cell probability profiles.

Cells are clustered on their posterior rows with affinity propagation
(similarity = negative squared Euclidean distance). The exemplar clusters
are then joined by average-linkage agglomeration and cut at ``target_k``.
Each clone votes for the cluster holding most of the cells whose best clone
it is; clones landing in the same cluster form one composite label.
"""

from __future__ import annotations

import logging
import warnings
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.cluster.hierarchy import fcluster, linkage
from scipy.spatial.distance import pdist
from sklearn.cluster import AffinityPropagation
from sklearn.exceptions import ConvergenceWarning

from .assigner import best_labels
from .errors import InvalidInputError
from .likelihood import coerce_config
from .models import UNASSIGNED, CellAssignment, ClusterAssignment, MergedAssignment
from .validation import check_prob_matrix

logger = logging.getLogger(__name__)


def profile_similarity(prob: np.ndarray) -> np.ndarray:
    """Negative squared Euclidean distance between every pair of cell profiles."""
    sq = (prob * prob).sum(axis=1)
    d2 = sq[:, None] + sq[None, :] - 2.0 * prob @ prob.T
    return -np.maximum(d2, 0.0)


def _renumber_by_first_appearance(raw: np.ndarray) -> np.ndarray:
    _, first_idx, inverse = np.unique(raw, return_index=True, return_inverse=True)
    rank = np.empty(len(first_idx), dtype=np.int64)
    rank[np.argsort(first_idx)] = np.arange(len(first_idx))
    return rank[inverse.ravel()]


def _affinity_propagation(
    sim: np.ndarray,
    *,
    damping: float,
    preference: Optional[float],
    max_iter: int,
    seed: int,
) -> Tuple[np.ndarray, np.ndarray]:
    ap = AffinityPropagation(
        affinity="precomputed",
        damping=damping,
        preference=preference,
        max_iter=max_iter,
        random_state=seed,
    )
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ConvergenceWarning)
        ap.fit(sim)
    labels = np.asarray(ap.labels_, dtype=np.int64)
    exemplars = np.asarray(ap.cluster_centers_indices_, dtype=np.int64)
    if len(exemplars) == 0 or (labels < 0).any():
        n = sim.shape[0]
        logger.warning("Affinity propagation did not converge; clustering %d cells directly", n)
        return np.arange(n), np.arange(n)
    return labels, exemplars


def cluster_merge(
    prob,
    target_k: int = 2,
    *,
    damping: float = 0.5,
    preference: Optional[float] = None,
    max_iter: int = 200,
    linkage_method: str = "average",
    seed: int = 0,
) -> ClusterAssignment:
    """Cluster cells on their clone-probability profiles and cut to ``target_k`` clusters.

    When affinity propagation already yields ``target_k`` clusters or fewer,
    no agglomeration is applied.
    """
    if target_k < 1:
        raise InvalidInputError(f"target_k must be >= 1, got {target_k}")
    p = check_prob_matrix(prob)
    n_cells = p.shape[0]
    if n_cells == 0:
        raise InvalidInputError("P has no cells to cluster")
    if n_cells == 1:
        return ClusterAssignment(labels=np.zeros(1, dtype=np.int64), exemplars=(0,), n_ap_clusters=1)

    ap_labels, exemplars = _affinity_propagation(
        profile_similarity(p),
        damping=damping,
        preference=preference,
        max_iter=max_iter,
        seed=seed,
    )
    n_ap = len(exemplars)

    if n_ap > target_k:
        tree = linkage(pdist(p[exemplars], metric="euclidean"), method=linkage_method)
        cut = fcluster(tree, t=target_k, criterion="maxclust")
        raw = cut[ap_labels]
    else:
        raw = ap_labels

    labels = _renumber_by_first_appearance(raw)
    res = ClusterAssignment(labels=labels, exemplars=tuple(int(e) for e in exemplars), n_ap_clusters=n_ap)
    logger.info(
        "Affinity propagation found %d clusters; %d after cutting at target_k=%d",
        n_ap,
        res.n_clusters,
        target_k,
    )
    return res


def vote_clone_to_cluster(
    assignments: Sequence[CellAssignment],
    clusters: ClusterAssignment,
    config,
) -> Dict[int, Optional[int]]:
    """Map each clone index to the cluster holding most cells whose best clone it is.

    Ties go to the lowest cluster id, i.e. the cluster encountered first
    when scanning cells in order. A clone that is nobody's best clone maps
    to None.
    """
    conf = coerce_config(config)
    if len(assignments) != len(clusters.labels):
        raise InvalidInputError(
            f"{len(assignments)} assignments but {len(clusters.labels)} clustered cells"
        )
    n_clusters = int(clusters.labels.max()) + 1 if len(clusters.labels) else 0
    votes = np.zeros((conf.n_clones, n_clusters), dtype=np.int64)
    np.add.at(votes, (best_labels(assignments), clusters.labels), 1)

    mapping: Dict[int, Optional[int]] = {}
    for clone in range(conf.n_clones):
        if votes[clone].sum() == 0:
            mapping[clone] = None
            continue
        mapping[clone] = int(np.argmax(votes[clone]))
        logger.debug("Clone %s -> cluster %d (votes %s)", conf.labels[clone], mapping[clone], votes[clone].tolist())
    return mapping


def clones_by_cluster(mapping: Dict[int, Optional[int]]) -> Dict[int, Tuple[int, ...]]:
    out: Dict[int, List[int]] = {}
    for clone, cl in sorted(mapping.items()):
        if cl is not None:
            out.setdefault(cl, []).append(clone)
    return {cl: tuple(clones) for cl, clones in out.items()}


def reassign_merged(
    prob,
    clusters: ClusterAssignment,
    mapping: Dict[int, Optional[int]],
    config,
    *,
    ratio: float = 1.5,
    sep: str = "+",
) -> List[MergedAssignment]:
    """Assign each cell to the clone set its cluster was voted to.

    With ``S`` the clones mapped to the cell's cluster, ``p_in`` is the
    summed probability over ``S`` and ``p_out`` the largest probability of
    any clone outside ``S``. The cell is unassigned when
    ``p_in < ratio * p_out`` or when its cluster received no clone.
    """
    conf = coerce_config(config)
    p = check_prob_matrix(prob, n_clones=conf.n_clones)
    if p.shape[0] != len(clusters.labels):
        raise InvalidInputError(f"P has {p.shape[0]} cells but {len(clusters.labels)} were clustered")

    groups = clones_by_cluster(mapping)
    n_clusters = int(clusters.labels.max()) + 1
    member = np.zeros((n_clusters, conf.n_clones), dtype=bool)
    for cl, clones in groups.items():
        member[cl, list(clones)] = True

    in_set = member[clusters.labels]
    p_in = (p * in_set).sum(axis=1)
    p_out = np.where(in_set, -np.inf, p).max(axis=1)
    p_out = np.maximum(p_out, 0.0)
    assignable = in_set.any(axis=1) & (p_in >= ratio * p_out)

    out: List[MergedAssignment] = []
    for cell in range(p.shape[0]):
        cl = int(clusters.labels[cell])
        clones = groups.get(cl, ())
        out.append(
            MergedAssignment(
                cell=cell,
                cluster=cl,
                clones=clones,
                p_in=float(p_in[cell]),
                p_out=float(p_out[cell]),
                assignable=bool(assignable[cell]),
                label=sep.join(conf.labels[k] for k in clones) if assignable[cell] else UNASSIGNED,
            )
        )
    logger.info("Cluster-level assignment: %d of %d cells assigned", int(assignable.sum()), len(out))
    return out
