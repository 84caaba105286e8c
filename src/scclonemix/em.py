from __future__ import annotations

import logging
import warnings
from typing import Optional, Sequence

import numpy as np

from .errors import DegenerateFitError, InvalidInputError, NonConvergenceWarning
from .likelihood import CloneCounts, FitInputs, clamp_theta, loglik_grid, posterior, prepare_fit
from .models import EMResult

logger = logging.getLogger(__name__)

DEFAULT_THETA = {
    "bernoulli": (0.1, 0.6),
    "binomial": (0.05, 0.4),
}

# Relative slack for "non-decreasing" log-likelihood checks.
_LL_SLACK = 1e-9


def initial_theta(model: str, theta_init: Optional[Sequence[float]], seed: Optional[int], eps: float) -> np.ndarray:
    """Starting theta: explicit, seeded random, or the model default."""
    if theta_init is not None:
        theta = np.asarray(theta_init, dtype=float).ravel()
        if theta.shape != (2,) or not np.isfinite(theta).all():
            raise InvalidInputError(f"theta_init must hold two finite values, got {theta_init!r}")
        if ((theta <= 0) | (theta >= 1)).any():
            raise InvalidInputError("theta_init values must lie strictly between 0 and 1")
    elif seed is not None:
        rng = np.random.default_rng(seed)
        theta = np.array([rng.uniform(0.01, 0.2), rng.uniform(0.3, 0.7)])
    else:
        theta = np.array(DEFAULT_THETA[model], dtype=float)
    return clamp_theta(theta, eps)


def m_step(counts: CloneCounts, prob: np.ndarray, theta: np.ndarray, eps: float) -> np.ndarray:
    """Probability-weighted error/mutation rates; a component with no evidence keeps its value."""
    new = np.array(theta, dtype=float)
    for j, (s, f) in enumerate(((counts.s0, counts.f0), (counts.s1, counts.f1))):
        num = float((prob * s).sum())
        den = float((prob * (s + f)).sum())
        if den > 0:
            new[j] = num / den
        else:
            logger.debug("M-step: no evidence for theta[%d], keeping %.4g", j, new[j])
    return clamp_theta(new, eps)


def run_em(
    inputs: FitInputs,
    *,
    theta: np.ndarray,
    max_iter: int,
    tol: float,
    theta_eps: float,
    warn: bool = True,
) -> EMResult:
    counts = inputs.counts
    log_const = inputs.stats.log_const

    prob, ll = posterior(loglik_grid(counts, theta, log_const), inputs.psi)
    if not np.isfinite(ll):
        raise DegenerateFitError(
            "Initial log-likelihood is not finite", guard="non_finite_loglik", detail={"theta": theta.tolist()}
        )
    trajectory = [ll]
    converged = False

    for it in range(1, max_iter):
        theta_new = m_step(counts, prob, theta, theta_eps)
        prob_new, ll_new = posterior(loglik_grid(counts, theta_new, log_const), inputs.psi)
        if not np.isfinite(ll_new):
            raise DegenerateFitError(
                f"Log-likelihood became non-finite at iteration {it}",
                guard="non_finite_loglik",
                detail={"theta": theta_new.tolist(), "iteration": it},
            )
        if ll_new < ll - _LL_SLACK * max(1.0, abs(ll)):
            # EM cannot decrease the likelihood; keep the better iterate.
            logger.warning("Log-likelihood decreased at iteration %d (%.6f -> %.6f)", it, ll, ll_new)
            break

        trajectory.append(ll_new)
        delta = ll_new - ll
        theta, prob, ll = theta_new, prob_new, ll_new
        logger.debug("EM iter %d: loglik=%.6f theta=(%.4g, %.4g)", it, ll, theta[0], theta[1])
        if delta < tol:
            converged = True
            break

    if not converged and warn:
        warnings.warn(
            f"EM stopped after {len(trajectory)} iterations without reaching tol={tol:g}",
            NonConvergenceWarning,
            stacklevel=3,
        )

    return EMResult(
        prob=prob,
        theta=np.asarray(theta, dtype=float),
        loglik=np.asarray(trajectory, dtype=float),
        model=inputs.model,
        converged=converged,
        clone_labels=inputs.config.labels,
    )


def fit_em(
    A,
    D,
    config,
    psi=None,
    *,
    model: str = "binomial",
    theta_init: Optional[Sequence[float]] = None,
    max_iter: int = 1000,
    tol: float = 1e-6,
    theta_eps: float = 1e-6,
    seed: Optional[int] = None,
) -> EMResult:
    """Fit the clone mixture by Expectation-Maximization.

    Parameters
    ----------
    A, D:
        Alternate and total read counts (variants x cells), NaN for missing.
        ``A`` may also be a :class:`ReadCounts`, in which case ``D`` is None.
    config:
        Variants x clones binary matrix or :class:`CloneConfiguration`.
    psi:
        Prior over clones (sums to 1); uniform when omitted.
    model:
        ``"bernoulli"`` (alt read present/absent) or ``"binomial"`` (alt read counts).
    theta_init:
        Starting (theta0, theta1). When omitted, ``seed`` draws a random start;
        without a seed the model default is used, so repeated calls are identical.
    theta_eps:
        theta is clamped to ``[theta_eps, 1 - theta_eps]`` after every update.

    Returns
    -------
    EMResult
        Posterior ``prob`` (cells x clones), ``theta`` and the log-likelihood
        trajectory, which is non-decreasing.
    """
    if max_iter < 1:
        raise InvalidInputError("max_iter must be >= 1")
    inputs = prepare_fit(A, D, config, psi, model)
    theta = initial_theta(inputs.model, theta_init, seed, theta_eps)

    res = run_em(inputs, theta=theta, max_iter=max_iter, tol=tol, theta_eps=theta_eps)
    logger.info(
        "EM (%s): %d cells, %d clones, %d iterations, loglik=%.4f, theta=(%.4g, %.4g)%s",
        res.model,
        inputs.reads.n_cells,
        inputs.config.n_clones,
        res.n_iter,
        res.loglik[-1],
        res.theta[0],
        res.theta[1],
        "" if res.converged else " [not converged]",
    )
    return res
