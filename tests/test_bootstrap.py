import logging
import threading

import numpy as np
import pytest

from scclonemix.bootstrap import bootstrap
from scclonemix.errors import DegenerateFitError, InvalidInputError


def test_bootstrap_bands_are_ordered(noiseless):
    bands = bootstrap(noiseless["A"], noiseless["D"], noiseless["config"], nboot=20, seed=0)
    assert bands.probs.shape == (10, 3, 20)
    assert bands.nboot == 20
    assert bands.n_ok == 20
    assert bands.failed == ()
    assert not bands.interrupted

    tol = 1e-12
    assert (bands.minimum <= bands.whisk_min + tol).all()
    assert (bands.whisk_min <= bands.q1 + tol).all()
    assert (bands.q1 <= bands.median + tol).all()
    assert (bands.median <= bands.q3 + tol).all()
    assert (bands.q3 <= bands.whisk_max + tol).all()
    assert (bands.whisk_max <= bands.maximum + tol).all()

    band = bands.band(0, 0)
    assert set(band) == {"min", "q1", "median", "q3", "max", "whisk_min", "whisk_max"}


def test_bootstrap_does_not_depend_on_workers(noiseless):
    args = (noiseless["A"], noiseless["D"], noiseless["config"])
    serial = bootstrap(*args, nboot=8, seed=42, n_jobs=1)
    threaded = bootstrap(*args, nboot=8, seed=42, n_jobs=2)
    np.testing.assert_array_equal(serial.probs, threaded.probs)
    np.testing.assert_array_equal(serial.median, threaded.median)


def test_bootstrap_degenerate_resamples_are_marked_failed():
    # Only the last variant separates the two clones; a resample missing it
    # cannot be fitted.
    config = np.array([[1, 1]] * 19 + [[1, 0]])
    truth = np.array([0, 0, 1, 1])
    D = np.full((20, 4), 10.0)
    A = config[:, truth] * D

    bands = bootstrap(A, D, config, nboot=30, max_retries=0, seed=1)
    assert len(bands.failed) > 0
    assert bands.n_ok + len(bands.failed) == 30
    for b in bands.failed:
        assert np.isnan(bands.probs[:, :, b]).all()
    assert np.isfinite(bands.median).all()


def test_bootstrap_retries_degenerate_resamples(caplog):
    config = np.array([[1, 1]] * 19 + [[1, 0]])
    truth = np.array([0, 0, 1, 1])
    D = np.full((20, 4), 10.0)
    A = config[:, truth] * D

    no_retry = bootstrap(A, D, config, nboot=30, max_retries=0, seed=1)
    with caplog.at_level(logging.DEBUG, logger="scclonemix.bootstrap"):
        retried = bootstrap(A, D, config, nboot=30, max_retries=10, seed=1)

    assert len(retried.failed) < len(no_retry.failed)
    assert retried.failed == ()
    assert retried.n_ok == 30
    assert any("attempt 1 degenerate" in r.getMessage() for r in caplog.records)
    # Replicates whose first resample was usable are unchanged by retrying.
    for b in range(30):
        if b not in no_retry.failed:
            np.testing.assert_array_equal(retried.probs[:, :, b], no_retry.probs[:, :, b])


def test_bootstrap_stopped_before_start():
    stop = threading.Event()
    stop.set()
    D = np.full((4, 2), 5.0)
    A = np.array([[5, 0], [0, 5], [5, 5], [0, 0]], dtype=float)
    config = np.array([[1, 0], [0, 1], [1, 1], [0, 0]])
    with pytest.raises(DegenerateFitError) as exc:
        bootstrap(A, D, config, nboot=5, stop_event=stop)
    assert exc.value.guard == "all_replicates_failed"


def test_bootstrap_rejects_bad_arguments(noiseless):
    args = (noiseless["A"], noiseless["D"], noiseless["config"])
    with pytest.raises(InvalidInputError):
        bootstrap(*args, nboot=0)
    with pytest.raises(InvalidInputError):
        bootstrap(*args, nboot=2, max_retries=-1)
    with pytest.raises(InvalidInputError):
        bootstrap(*args, nboot=2, model="poisson")
