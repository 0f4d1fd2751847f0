"""Tests for the mutual-reachability MST builders."""

import numpy as np
import pytest

from density_clusterer.exceptions import IllegalClusterStateError
from density_clusterer.mst import (
    BoruvkaAlgorithm,
    core_distances_from_matrix,
    mst_linkage_core,
    mst_linkage_core_vector,
    mutual_reachability,
)
from density_clusterer.trees import BallTree, KDTree

from .conftest import brute_distances


def _assert_spanning(mst, n):
    assert mst.shape == (n - 1, 3)
    uf_nodes = set(mst[:, 0].astype(int)) | set(mst[:, 1].astype(int))
    assert uf_nodes == set(range(n))


def test_mutual_reachability_scenario():
    D = np.array([[1.0, 2, 3], [4, 5, 6], [7, 8, 9]])
    expected = np.array([[7.0, 8, 9], [8, 8, 9], [9, 9, 9]])
    np.testing.assert_allclose(mutual_reachability(D, min_points=3), expected)
    np.testing.assert_allclose(core_distances_from_matrix(D, 3), [7.0, 8.0, 9.0])


def test_mutual_reachability_scales_by_alpha(random_points):
    D = brute_distances(random_points)
    core = core_distances_from_matrix(D, 5)
    mr = mutual_reachability(D, min_points=5, alpha=2.0)
    expected = np.maximum(np.maximum(D / 2.0, core[np.newaxis, :]), core[:, np.newaxis])
    np.testing.assert_allclose(mr, expected)


def test_dense_prim_scenario():
    mr = np.array([[0.1, 0.6, 0.3], [0.6, 0.6, 0.6], [12.1, 13.1, 11.8]])
    np.testing.assert_allclose(mst_linkage_core(mr), [[0, 2, 0.3], [2, 1, 0.6]])


def test_vector_prim_matches_dense_prim(random_points):
    D = brute_distances(random_points)
    dense = mst_linkage_core(mutual_reachability(D, min_points=5))

    core = core_distances_from_matrix(D, 5)
    vector = mst_linkage_core_vector(random_points, core, 'euclidean')

    _assert_spanning(vector, random_points.shape[0])
    assert vector[:, 2].sum() == pytest.approx(dense[:, 2].sum())


@pytest.mark.parametrize('tree_cls', [KDTree, BallTree])
@pytest.mark.parametrize('alpha', [0.25, 0.5, 1.0, 1.5])
def test_boruvka_matches_dense_prim(tree_cls, alpha, random_points):
    D = brute_distances(random_points)
    dense = mst_linkage_core(mutual_reachability(D, min_points=5, alpha=alpha))

    boruvka = BoruvkaAlgorithm(
        tree_cls(random_points, leaf_size=6),
        min_samples=5,
        leaf_size=3,
        approx_min_span_tree=False,
        alpha=alpha,
    )
    edges = boruvka.spanning_tree()

    _assert_spanning(edges, random_points.shape[0])
    assert edges[:, 2].sum() == pytest.approx(dense[:, 2].sum())
    np.testing.assert_allclose(boruvka.core_distances, core_distances_from_matrix(D, 5))


@pytest.mark.parametrize('tree_cls', [KDTree, BallTree])
@pytest.mark.parametrize('alpha', [0.25, 0.5])
def test_boruvka_with_small_alpha_on_a_larger_sample(tree_cls, alpha):
    X = np.random.default_rng(5).normal(size=(200, 3))
    D = brute_distances(X)
    dense = mst_linkage_core(mutual_reachability(D, min_points=5, alpha=alpha))

    edges = BoruvkaAlgorithm(
        tree_cls(X, leaf_size=40), min_samples=5, leaf_size=13, approx_min_span_tree=False, alpha=alpha
    ).spanning_tree()

    _assert_spanning(edges, X.shape[0])
    assert edges[:, 2].sum() == pytest.approx(dense[:, 2].sum())


def test_approximate_boruvka_still_spans(random_points):
    boruvka = BoruvkaAlgorithm(KDTree(random_points, leaf_size=6), min_samples=3, approx_min_span_tree=True)
    _assert_spanning(boruvka.spanning_tree(), random_points.shape[0])


def test_boruvka_raises_when_exact_round_stalls(random_points, monkeypatch):
    boruvka = BoruvkaAlgorithm(KDTree(random_points), min_samples=3, approx_min_span_tree=False)
    monkeypatch.setattr(boruvka, '_dual_tree_traversal', lambda node1, node2: None)
    with pytest.raises(IllegalClusterStateError):
        boruvka.spanning_tree()
