import threading
import warnings

import numpy as np
import pytest

from scclonemix.errors import DegenerateFitError, InvalidInputError, NonConvergenceWarning
from scclonemix.gibbs import assignment_frequency, fit_gibbs, resolve_burn_in, sample_categorical
from scclonemix.utils import geweke_z


class _StopAfter(threading.Event):
    """Event that reports itself set after ``n`` checks."""

    def __init__(self, n: int) -> None:
        super().__init__()
        self.n = n
        self.calls = 0

    def is_set(self) -> bool:
        self.calls += 1
        return self.calls > self.n


def test_gibbs_noiseless_recovers_clones(noiseless):
    res = fit_gibbs(noiseless["A"], noiseless["D"], noiseless["config"], n_iter=200, seed=1)
    assert res.n_iter == 200
    assert res.burn_in == 50
    assert res.theta_chain.shape == (200, 2)
    assert res.assignment_chain.shape == (200, 10)
    np.testing.assert_allclose(res.prob.sum(axis=1), 1.0, atol=1e-6)
    assert res.prob.argmax(axis=1).tolist() == noiseless["truth"].tolist()
    assert res.theta[0] < 0.05
    assert res.theta[1] > 0.9


def test_gibbs_bernoulli_model(noiseless):
    res = fit_gibbs(noiseless["A"], noiseless["D"], noiseless["config"], model="bernoulli", n_iter=100, seed=2)
    assert res.model == "bernoulli"
    assert res.prob.argmax(axis=1).tolist() == noiseless["truth"].tolist()


def test_gibbs_seed_reproducible(noiseless):
    r1 = fit_gibbs(noiseless["A"], noiseless["D"], noiseless["config"], n_iter=50, seed=9)
    r2 = fit_gibbs(noiseless["A"], noiseless["D"], noiseless["config"], n_iter=50, seed=9)
    np.testing.assert_array_equal(r1.theta_chain, r2.theta_chain)
    np.testing.assert_array_equal(r1.assignment_chain, r2.assignment_chain)


def test_gibbs_interrupt_returns_partial_chain(noiseless):
    res = fit_gibbs(
        noiseless["A"], noiseless["D"], noiseless["config"], n_iter=100, seed=0, stop_event=_StopAfter(20)
    )
    assert res.interrupted
    assert res.n_iter == 20
    assert res.burn_in == 5


def test_gibbs_interrupt_before_first_iteration(noiseless):
    stop = threading.Event()
    stop.set()
    with pytest.raises(DegenerateFitError) as exc:
        fit_gibbs(noiseless["A"], noiseless["D"], noiseless["config"], n_iter=10, stop_event=stop)
    assert exc.value.guard == "no_samples"


def test_gibbs_rejects_bad_prior(noiseless):
    with pytest.raises(InvalidInputError):
        fit_gibbs(noiseless["A"], noiseless["D"], noiseless["config"], prior0=(0.0, 1.0))


def test_resolve_burn_in():
    assert resolve_burn_in(0.25, 1000) == 250
    assert resolve_burn_in(100, 1000) == 100
    assert resolve_burn_in(5000, 1000) == 999
    with pytest.raises(InvalidInputError):
        resolve_burn_in(1.5, 10)


def test_sample_categorical_and_frequency():
    rng = np.random.default_rng(0)
    prob = np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    chain = np.stack([sample_categorical(prob, rng) for _ in range(10)])
    assert (chain[:, 0] == 0).all()
    assert (chain[:, 1] == 2).all()
    freq = assignment_frequency(chain, 3)
    np.testing.assert_array_equal(freq, prob)


def test_geweke_z_flat_and_drifting():
    assert geweke_z(np.ones(100)) == 0.0
    rng = np.random.default_rng(1)
    stationary = rng.normal(size=2000)
    assert abs(geweke_z(stationary)) < 4
    drifting = np.linspace(0, 100, 2000) + rng.normal(size=2000)
    assert abs(geweke_z(drifting)) > 4


def test_gibbs_warns_on_failed_geweke_check(noiseless, monkeypatch):
    monkeypatch.setattr("scclonemix.gibbs.geweke_z", lambda chain: 5.0)
    with pytest.warns(NonConvergenceWarning, match="Geweke"):
        res = fit_gibbs(noiseless["A"], noiseless["D"], noiseless["config"], n_iter=30, seed=3)
    assert not res.converged
    assert res.geweke_z == 5.0
    np.testing.assert_allclose(res.prob.sum(axis=1), 1.0, atol=1e-6)


def test_gibbs_interrupted_chain_does_not_warn(noiseless, monkeypatch):
    monkeypatch.setattr("scclonemix.gibbs.geweke_z", lambda chain: 5.0)
    with warnings.catch_warnings():
        warnings.simplefilter("error", NonConvergenceWarning)
        res = fit_gibbs(
            noiseless["A"], noiseless["D"], noiseless["config"], n_iter=50, seed=3, stop_event=_StopAfter(10)
        )
    assert res.interrupted
    assert res.n_iter == 10
