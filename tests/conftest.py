from __future__ import annotations

from typing import Dict

import numpy as np
import pytest

# Variants 0-3 are carried by every clone; the rest separate the clones.
CONFIG_3 = np.array(
    [[1, 1, 1]] * 4
    + [[1, 0, 0]] * 6
    + [[0, 1, 1]] * 5
    + [[0, 0, 1]] * 5,
    dtype=int,
)

TRUE_CLONE = np.array([0, 0, 0, 1, 1, 1, 2, 2, 2, 2])


def make_noiseless(depth: int = 10) -> Dict[str, np.ndarray]:
    """Full coverage, every read consistent with the cell's clone."""
    D = np.full((CONFIG_3.shape[0], len(TRUE_CLONE)), float(depth))
    A = CONFIG_3[:, TRUE_CLONE] * D
    return {"A": A, "D": D, "config": CONFIG_3.copy(), "truth": TRUE_CLONE.copy()}


@pytest.fixture
def noiseless() -> Dict[str, np.ndarray]:
    return make_noiseless()
