from __future__ import annotations

import logging
import threading
import warnings
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .em import initial_theta
from .errors import DegenerateFitError, InvalidInputError, NonConvergenceWarning
from .likelihood import clamp_theta, loglik_grid, posterior, prepare_fit
from .models import GibbsResult
from .utils import geweke_z

logger = logging.getLogger(__name__)


def sample_categorical(prob: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Draw one column index per row of a row-stochastic matrix."""
    cum = np.cumsum(prob, axis=1)
    u = rng.random(prob.shape[0]) * cum[:, -1]
    idx = (cum < u[:, None]).sum(axis=1)
    return np.minimum(idx, prob.shape[1] - 1)


def resolve_burn_in(burn_in: Union[float, int], n_iter: int) -> int:
    """Fraction in [0, 1) or an absolute iteration count; always keeps one sample."""
    if isinstance(burn_in, float):
        if not 0.0 <= burn_in < 1.0:
            raise InvalidInputError(f"burn_in fraction must be in [0, 1), got {burn_in}")
        n_burn = int(np.floor(burn_in * n_iter))
    else:
        n_burn = int(burn_in)
        if n_burn < 0:
            raise InvalidInputError(f"burn_in must be >= 0, got {burn_in}")
    return min(n_burn, max(n_iter - 1, 0))


def assignment_frequency(chain: np.ndarray, n_clones: int) -> np.ndarray:
    """Fraction of samples in which each cell sat in each clone (cells x clones)."""
    n_samples, n_cells = chain.shape
    flat = (np.arange(n_cells)[None, :] * n_clones + chain).ravel()
    counts = np.bincount(flat, minlength=n_cells * n_clones).reshape(n_cells, n_clones)
    return counts / float(n_samples)


def fit_gibbs(
    A,
    D,
    config,
    psi=None,
    *,
    model: str = "binomial",
    n_iter: int = 1000,
    burn_in: Union[float, int] = 0.25,
    prior0: Tuple[float, float] = (0.2, 99.8),
    prior1: Tuple[float, float] = (0.45, 0.55),
    theta_init: Optional[Sequence[float]] = None,
    theta_eps: float = 1e-6,
    seed: Optional[int] = None,
    stop_event: Optional[threading.Event] = None,
) -> GibbsResult:
    """Sample (cell assignments, theta) from the clone mixture posterior.

    Each sweep draws every cell's clone from ``psi * likelihood`` at the
    current theta, then draws theta0 ~ Beta(prior0 + counts at Config == 0)
    and theta1 ~ Beta(prior1 + counts at Config == 1) given those
    assignments. Iteration ``t`` records the theta that generated its
    assignments and the marginal log-likelihood at that theta.

    ``stop_event`` is checked between sweeps; when set, the chain collected
    so far is returned with ``interrupted=True``.
    """
    if n_iter < 1:
        raise InvalidInputError("n_iter must be >= 1")
    for name, prior in (("prior0", prior0), ("prior1", prior1)):
        if len(prior) != 2 or min(prior) <= 0:
            raise InvalidInputError(f"{name} must be two positive Beta parameters, got {prior!r}")

    inputs = prepare_fit(A, D, config, psi, model)
    counts = inputs.counts
    log_const = inputs.stats.log_const
    n_cells = inputs.reads.n_cells
    n_clones = inputs.config.n_clones

    rng = np.random.default_rng(seed)
    theta = initial_theta(inputs.model, theta_init, None, theta_eps)

    theta_chain = np.empty((n_iter, 2))
    loglik_chain = np.empty(n_iter)
    assignment_chain = np.empty((n_iter, n_cells), dtype=np.int32)

    n_done = 0
    interrupted = False
    for it in range(n_iter):
        if stop_event is not None and stop_event.is_set():
            interrupted = True
            logger.warning("Gibbs sampling interrupted after %d of %d iterations", it, n_iter)
            break

        prob, ll = posterior(loglik_grid(counts, theta, log_const), inputs.psi)
        if not np.isfinite(ll):
            raise DegenerateFitError(
                f"Log-likelihood became non-finite at iteration {it}",
                guard="non_finite_loglik",
                detail={"theta": theta.tolist(), "iteration": it},
            )
        z = sample_categorical(prob, rng)

        theta_chain[it] = theta
        loglik_chain[it] = ll
        assignment_chain[it] = z
        n_done = it + 1

        s0, f0, s1, f1 = counts.at(z)
        theta = clamp_theta(
            [rng.beta(prior0[0] + s0, prior0[1] + f0), rng.beta(prior1[0] + s1, prior1[1] + f1)],
            theta_eps,
        )

    if n_done == 0:
        raise DegenerateFitError("Gibbs chain holds no samples", guard="no_samples")

    theta_chain = theta_chain[:n_done]
    loglik_chain = loglik_chain[:n_done]
    assignment_chain = assignment_chain[:n_done]

    n_burn = resolve_burn_in(burn_in, n_done)
    z_score = geweke_z(loglik_chain[n_burn:])
    if not interrupted and not (np.isfinite(z_score) and abs(z_score) <= 2.0):
        warnings.warn(
            f"Gibbs log-likelihood chain fails the Geweke check (z={z_score:.2f}); consider more iterations",
            NonConvergenceWarning,
            stacklevel=2,
        )

    res = GibbsResult(
        prob=assignment_frequency(assignment_chain[n_burn:], n_clones),
        theta_chain=theta_chain,
        loglik_chain=loglik_chain,
        assignment_chain=assignment_chain,
        burn_in=n_burn,
        model=inputs.model,
        geweke_z=float(z_score),
        clone_labels=inputs.config.labels,
        interrupted=interrupted,
    )
    logger.info(
        "Gibbs (%s): %d iterations (%d burn-in), theta=(%.4g, %.4g), Geweke z=%.2f",
        res.model,
        res.n_iter,
        res.burn_in,
        res.theta[0],
        res.theta[1],
        res.geweke_z,
    )
    return res
