"""Variant-resampling bootstrap for assignment robustness.

Each replicate draws variant rows with replacement (jointly for A, D and
Config), refits the mixture by EM and keeps the cells x clones posterior.
Replicates are independent: each one owns a numpy Generator spawned from a
single SeedSequence, so the result does not depend on worker scheduling.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from tqdm import tqdm

from .em import initial_theta, run_em
from .errors import DegenerateFitError, InvalidInputError
from .likelihood import prepare_fit
from .models import BootstrapBands, CloneConfiguration, ReadCounts
from .utils import five_number_summary, tukey_whiskers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Replicate:
    index: int
    prob: Optional[np.ndarray]
    attempts: int
    converged: bool = True
    skipped: bool = False


def _run_replicate(
    index: int,
    *,
    reads: ReadCounts,
    config: CloneConfiguration,
    psi: np.ndarray,
    model: str,
    seed_seq: np.random.SeedSequence,
    theta: np.ndarray,
    max_iter: int,
    tol: float,
    theta_eps: float,
    max_retries: int,
    stop_event: Optional[threading.Event],
) -> _Replicate:
    rng = np.random.default_rng(seed_seq)
    n_var = reads.n_variants

    for attempt in range(1, max_retries + 2):
        if stop_event is not None and stop_event.is_set():
            return _Replicate(index=index, prob=None, attempts=attempt - 1, skipped=True)

        rows = rng.integers(0, n_var, size=n_var)
        sub_config = config.take_variants(rows)
        try:
            if not sub_config.discriminating_rows.any():
                raise DegenerateFitError(
                    "Resample holds no variant that discriminates between clones",
                    guard="no_discriminating_variant",
                )
            inputs = prepare_fit(reads.take_variants(rows), None, sub_config, psi, model)
            res = run_em(inputs, theta=theta, max_iter=max_iter, tol=tol, theta_eps=theta_eps, warn=False)
        except DegenerateFitError as e:
            logger.debug("Replicate %d attempt %d degenerate (%s); resampling", index, attempt, e.guard)
            continue
        return _Replicate(index=index, prob=res.prob, attempts=attempt, converged=res.converged)

    logger.warning("Replicate %d failed after %d resamples", index, max_retries + 1)
    return _Replicate(index=index, prob=None, attempts=max_retries + 1)


def bootstrap(
    A,
    D,
    config,
    psi=None,
    nboot: int = 500,
    *,
    model: str = "bernoulli",
    theta_init: Optional[Sequence[float]] = None,
    max_iter: int = 1000,
    tol: float = 1e-6,
    theta_eps: float = 1e-6,
    max_retries: int = 10,
    n_jobs: int = 1,
    seed: Optional[int] = None,
    progress: bool = False,
    stop_event: Optional[threading.Event] = None,
) -> BootstrapBands:
    """Resample variants ``nboot`` times, refit by EM and summarise each (cell, clone).

    A replicate whose resample yields a degenerate fit is redrawn up to
    ``max_retries`` times, then recorded as failed. With ``n_jobs > 1``
    replicates run on a thread pool. Setting ``stop_event`` stops new
    replicates from starting; completed ones are still aggregated.

    Returns
    -------
    BootstrapBands
        Five-number summary plus Tukey whiskers per (cell, clone), and the raw
        cells x clones x nboot probability stack.
    """
    if nboot < 1:
        raise InvalidInputError(f"nboot must be >= 1, got {nboot}")
    if max_retries < 0:
        raise InvalidInputError(f"max_retries must be >= 0, got {max_retries}")
    if n_jobs < 1:
        raise InvalidInputError(f"n_jobs must be >= 1, got {n_jobs}")

    # Fatal input problems surface here, once, rather than per replicate.
    full = prepare_fit(A, D, config, psi, model)
    reads, conf = full.reads, full.config
    theta = initial_theta(full.model, theta_init, None, theta_eps)
    seeds = np.random.SeedSequence(seed).spawn(nboot)

    kwargs = dict(
        reads=reads,
        config=conf,
        psi=full.psi,
        model=full.model,
        theta=theta,
        max_iter=max_iter,
        tol=tol,
        theta_eps=theta_eps,
        max_retries=max_retries,
        stop_event=stop_event,
    )

    probs = np.full((reads.n_cells, conf.n_clones, nboot), np.nan)
    results: List[_Replicate] = []
    bar = tqdm(total=nboot, unit="replicate", desc="Bootstrap", disable=not progress)
    try:
        if n_jobs == 1:
            for b in range(nboot):
                rep = _run_replicate(b, seed_seq=seeds[b], **kwargs)
                results.append(rep)
                bar.update(1)
                if rep.skipped:
                    break
        else:
            with ThreadPoolExecutor(max_workers=n_jobs) as ex:
                futures = [ex.submit(_run_replicate, b, seed_seq=seeds[b], **kwargs) for b in range(nboot)]
                for fut in as_completed(futures):
                    results.append(fut.result())
                    bar.update(1)
    finally:
        bar.close()

    failed = []
    n_skipped = 0
    n_unconverged = 0
    for rep in results:
        if rep.skipped:
            n_skipped += 1
        elif rep.prob is None:
            failed.append(rep.index)
        else:
            probs[:, :, rep.index] = rep.prob
            n_unconverged += int(not rep.converged)
    interrupted = n_skipped > 0 or len(results) < nboot

    ok = ~np.isnan(probs[0, 0, :])
    n_ok = int(ok.sum())
    if n_ok == 0:
        raise DegenerateFitError(
            "No bootstrap replicate produced a usable fit",
            guard="all_replicates_failed",
            detail={"nboot": nboot, "failed": len(failed), "interrupted": interrupted},
        )
    if interrupted:
        logger.warning("Bootstrap interrupted: %d of %d replicates completed", n_ok + len(failed), nboot)
    if n_unconverged:
        logger.warning("%d bootstrap replicates hit max_iter=%d before converging", n_unconverged, max_iter)

    minimum, q1, median, q3, maximum = five_number_summary(probs[:, :, ok], axis=2)
    whisk_min, whisk_max = tukey_whiskers(minimum, q1, q3, maximum)

    logger.info("Bootstrap: %d usable replicates, %d failed", n_ok, len(failed))
    return BootstrapBands(
        probs=probs,
        minimum=minimum,
        q1=q1,
        median=median,
        q3=q3,
        maximum=maximum,
        whisk_min=whisk_min,
        whisk_max=whisk_max,
        n_ok=n_ok,
        failed=tuple(sorted(failed)),
        interrupted=interrupted,
    )
