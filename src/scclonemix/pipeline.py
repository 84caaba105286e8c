"""Left-to-right orchestration: fit -> assign -> identifiability -> cluster-merge -> bootstrap."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import numpy as np

from .assigner import assign_cells, summarize_assignments
from .bootstrap import bootstrap
from .cluster import cluster_merge, reassign_merged, vote_clone_to_cluster
from .em import fit_em
from .errors import InvalidInputError
from .gibbs import fit_gibbs
from .identifiability import identifiability_matrix
from .likelihood import coerce_config, coerce_reads
from .models import (
    UNASSIGNED,
    BootstrapBands,
    CellAssignment,
    CloneConfiguration,
    ClusterAssignment,
    EMResult,
    GibbsResult,
    MergedAssignment,
    ReadCounts,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    reads: ReadCounts
    config: CloneConfiguration
    fit: Union[EMResult, GibbsResult]
    assignments: List[CellAssignment]
    identifiable: np.ndarray  # cells x clones
    clusters: ClusterAssignment
    clone_to_cluster: Dict[int, Optional[int]]
    merged: List[MergedAssignment]
    bands: Optional[BootstrapBands]
    runtime_seconds: float

    def summary(self) -> Dict[str, Any]:
        labels = self.config.labels
        merged_counts: Dict[str, int] = {}
        for m in self.merged:
            merged_counts[m.label] = merged_counts.get(m.label, 0) + 1
        out: Dict[str, Any] = {
            "n_cells": self.reads.n_cells,
            "n_variants": self.reads.n_variants,
            "clones": list(labels),
            "model": self.fit.model,
            "method": "gibbs" if isinstance(self.fit, GibbsResult) else "em",
            "theta": [float(x) for x in self.fit.theta],
            "converged": bool(self.fit.converged),
            "n_iter": int(self.fit.n_iter),
            "assignment_counts": summarize_assignments(self.assignments, labels),
            "n_fully_identifiable": int(self.identifiable.all(axis=1).sum()),
            "n_clusters": int(self.clusters.n_clusters),
            "n_ap_clusters": int(self.clusters.n_ap_clusters),
            "clone_to_cluster": {
                labels[k]: (None if cl is None else int(cl)) for k, cl in self.clone_to_cluster.items()
            },
            "merged_counts": merged_counts,
            "runtime_seconds": float(self.runtime_seconds),
        }
        if self.bands is not None:
            out["bootstrap"] = {
                "nboot": self.bands.nboot,
                "n_ok": self.bands.n_ok,
                "failed": list(self.bands.failed),
                "interrupted": self.bands.interrupted,
            }
        return out


def run_pipeline(
    A,
    D,
    config,
    psi=None,
    *,
    method: str = "em",
    model: str = "binomial",
    threshold: float = 0.25,
    target_k: int = 2,
    ratio: float = 1.5,
    nboot: int = 0,
    bootstrap_model: str = "bernoulli",
    n_jobs: int = 1,
    seed: Optional[int] = None,
    progress: bool = False,
    stop_event: Optional[threading.Event] = None,
    fit_kwargs: Optional[Dict[str, Any]] = None,
) -> PipelineResult:
    """Run every analysis step on one donor and return all intermediate results.

    ``nboot=0`` skips the bootstrap. ``fit_kwargs`` are passed through to
    :func:`fit_em` or :func:`fit_gibbs`.
    """
    t0 = time.time()
    reads = coerce_reads(A, D)
    conf = coerce_config(config)
    extra = dict(fit_kwargs or {})

    if method == "em":
        fit: Union[EMResult, GibbsResult] = fit_em(reads, None, conf, psi, model=model, **extra)
    elif method == "gibbs":
        fit = fit_gibbs(reads, None, conf, psi, model=model, seed=seed, stop_event=stop_event, **extra)
    else:
        raise InvalidInputError(f"Unknown method {method!r}; expected 'em' or 'gibbs'")

    assignments = assign_cells(fit.prob, conf, threshold=threshold)
    identifiable = identifiability_matrix(reads.coverage, conf)
    n_weak = sum(
        1 for a in assignments if a.final_label != UNASSIGNED and not identifiable[a.cell, a.best_index]
    )
    if n_weak:
        logger.info("%d assigned cells do not cover a variant that identifies their clone", n_weak)

    clusters = cluster_merge(fit.prob, target_k=target_k, seed=0 if seed is None else seed)
    mapping = vote_clone_to_cluster(assignments, clusters, conf)
    merged = reassign_merged(fit.prob, clusters, mapping, conf, ratio=ratio)

    bands = None
    if nboot > 0:
        bands = bootstrap(
            reads,
            None,
            conf,
            psi,
            nboot,
            model=bootstrap_model,
            n_jobs=n_jobs,
            seed=seed,
            progress=progress,
            stop_event=stop_event,
        )

    return PipelineResult(
        reads=reads,
        config=conf,
        fit=fit,
        assignments=assignments,
        identifiable=identifiable,
        clusters=clusters,
        clone_to_cluster=mapping,
        merged=merged,
        bands=bands,
        runtime_seconds=time.time() - t0,
    )
