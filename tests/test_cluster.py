import numpy as np
import pytest

from scclonemix.assigner import assign_cells
from scclonemix.cluster import (
    cluster_merge,
    clones_by_cluster,
    profile_similarity,
    reassign_merged,
    vote_clone_to_cluster,
)
from scclonemix.errors import InvalidInputError
from scclonemix.models import ClusterAssignment

CONFIG = np.array([[1, 0, 0], [0, 1, 0], [0, 1, 1], [0, 0, 1]])


def _rows(base, n, jitter, rng):
    out = []
    for _ in range(n):
        r = np.asarray(base, dtype=float) + rng.uniform(0, jitter, size=len(base))
        out.append(r / r.sum())
    return out


def _three_groups():
    rng = np.random.default_rng(0)
    rows = (
        _rows([0.95, 0.03, 0.02], 6, 0.02, rng)
        + _rows([0.05, 0.60, 0.35], 6, 0.02, rng)
        + _rows([0.05, 0.35, 0.60], 6, 0.02, rng)
    )
    return np.array(rows)


def test_profile_similarity_is_negative_squared_distance():
    p = np.array([[1.0, 0.0], [0.0, 1.0], [0.5, 0.5]])
    sim = profile_similarity(p)
    assert sim[0, 1] == pytest.approx(-2.0)
    assert sim[0, 2] == pytest.approx(-0.5)
    np.testing.assert_allclose(np.diag(sim), 0.0, atol=1e-12)


def test_cluster_merge_cuts_to_target_k():
    prob = _three_groups()
    res = cluster_merge(prob, target_k=2)
    assert res.n_clusters == 2
    labels = res.labels
    # first group is cluster 0 (numbered by first appearance)
    assert (labels[:6] == 0).all()
    assert (labels[6:] == 1).all()
    members = res.members
    assert members[0] == list(range(6))
    assert members[1] == list(range(6, 18))


def test_cluster_merge_three_clusters():
    prob = _three_groups()
    res = cluster_merge(prob, target_k=3)
    assert res.n_clusters == 3
    assert len(set(res.labels[:6].tolist())) == 1
    assert len(set(res.labels[6:12].tolist())) == 1
    assert len(set(res.labels[12:].tolist())) == 1


def test_cluster_merge_single_cell_and_bad_k():
    res = cluster_merge(np.array([[0.2, 0.8]]))
    assert res.labels.tolist() == [0]
    with pytest.raises(InvalidInputError):
        cluster_merge(np.array([[0.2, 0.8]]), target_k=0)


def test_vote_tie_goes_to_first_cluster():
    prob = np.array(
        [
            [0.8, 0.1, 0.1],
            [0.7, 0.2, 0.1],
            [0.1, 0.8, 0.1],
            [0.1, 0.8, 0.1],
        ]
    )
    calls = assign_cells(prob, CONFIG)
    clusters = ClusterAssignment(labels=np.array([0, 0, 0, 1]), exemplars=(0, 3), n_ap_clusters=2)
    mapping = vote_clone_to_cluster(calls, clusters, CONFIG)
    assert mapping == {0: 0, 1: 0, 2: None}
    assert clones_by_cluster(mapping) == {0: (0, 1)}


def test_vote_majority():
    prob = np.array(
        [
            [0.8, 0.1, 0.1],
            [0.1, 0.8, 0.1],
            [0.1, 0.1, 0.8],
            [0.1, 0.8, 0.1],
        ]
    )
    calls = assign_cells(prob, CONFIG)
    clusters = ClusterAssignment(labels=np.array([0, 1, 1, 1]), exemplars=(0, 1), n_ap_clusters=2)
    assert vote_clone_to_cluster(calls, clusters, CONFIG) == {0: 0, 1: 1, 2: 1}


def test_reassign_merged_composite_labels():
    prob = np.array(
        [
            [0.9, 0.05, 0.05],
            [0.1, 0.45, 0.45],
            [0.5, 0.3, 0.2],
            [0.2, 0.2, 0.6],
        ]
    )
    clusters = ClusterAssignment(labels=np.array([0, 1, 1, 1]), exemplars=(0, 1), n_ap_clusters=2)
    mapping = {0: 0, 1: 1, 2: 1}
    merged = reassign_merged(prob, clusters, mapping, CONFIG)

    assert merged[0].label == "clone1"
    assert merged[0].p_out == pytest.approx(0.05)
    assert merged[1].label == "clone2+clone3"
    assert merged[1].p_in == pytest.approx(0.9)
    # p_in = 0.5 < 1.5 * 0.5
    assert not merged[2].assignable
    assert merged[2].label == "unassigned"
    assert merged[3].assignable


def test_reassign_cluster_without_clone_is_unassigned():
    prob = np.array([[0.9, 0.05, 0.05], [0.1, 0.8, 0.1]])
    clusters = ClusterAssignment(labels=np.array([0, 1]), exemplars=(0, 1), n_ap_clusters=2)
    merged = reassign_merged(prob, clusters, {0: 0, 1: 0, 2: None}, CONFIG, ratio=2.0, sep="|")
    assert merged[0].label == "clone1|clone2"
    assert merged[1].clones == ()
    assert merged[1].label == "unassigned"
