"""Tests for KD-tree / Ball-tree construction and snapshots."""

import numpy as np
import pytest

from density_clusterer.exceptions import ConfigurationError, DataError, DimensionMismatchError
from density_clusterer.trees import (
    BallTree,
    KDTree,
    SpatialTree,
    find_node_split_dim,
    get_tree_class,
)

TREE_CLASSES = [KDTree, BallTree]


def test_find_node_split_dim(small_matrix):
    assert find_node_split_dim(small_matrix, np.array([0, 1, 2])) == 2


@pytest.mark.parametrize('tree_cls', TREE_CLASSES)
def test_layout_is_a_complete_binary_tree(tree_cls, random_points):
    tree = tree_cls(random_points, leaf_size=5)

    m = random_points.shape[0]
    expected_levels = int(np.log2(max(1, (m - 1) // 5))) + 1
    assert tree.n_levels == expected_levels
    assert tree.n_nodes == 2 ** expected_levels - 1

    node_data = tree.get_node_data()
    assert node_data['idx_start'][0] == 0
    assert node_data['idx_end'][0] == m
    for i in range(tree.n_nodes):
        if not node_data['is_leaf'][i]:
            left, right = 2 * i + 1, 2 * i + 2
            assert node_data['idx_start'][left] == node_data['idx_start'][i]
            assert node_data['idx_end'][left] == node_data['idx_start'][right]
            assert node_data['idx_end'][right] == node_data['idx_end'][i]


@pytest.mark.parametrize('tree_cls', TREE_CLASSES)
def test_index_array_is_a_permutation(tree_cls, random_points):
    tree = tree_cls(random_points, leaf_size=4)
    np.testing.assert_array_equal(np.sort(tree.get_index_array()), np.arange(random_points.shape[0]))


def test_kd_split_orders_points_along_split_dimension(random_points):
    tree = KDTree(random_points, leaf_size=10)
    data = tree.data
    left = tree.node_points(1)
    right = tree.node_points(2)
    dim = find_node_split_dim(data, np.arange(data.shape[0]))
    assert data[left, dim].max() <= data[right, dim].min()


def test_training_data_is_read_only(random_points):
    tree = KDTree(random_points)
    with pytest.raises(ValueError):
        tree.data[0, 0] = 1.0
    # The caller's array is copied, not frozen
    random_points[0, 0] = 1.0


def test_ball_radius_covers_node_points(random_points):
    tree = BallTree(random_points, leaf_size=5)
    centroids = tree.get_node_bounds()[0]
    for i in range(tree.n_nodes):
        idx = tree.node_points(i)
        if idx.size == 0:
            continue
        dists = np.sqrt(((tree.data[idx] - centroids[i]) ** 2).sum(axis=1))
        assert dists.max() <= tree.node_data['radius'][i] + 1e-12


@pytest.mark.parametrize('leaf_size', [0, -3])
def test_invalid_leaf_size(leaf_size, random_points):
    with pytest.raises(ConfigurationError):
        KDTree(random_points, leaf_size=leaf_size)


def test_nan_input_is_rejected():
    X = np.array([[0.0, 1.0], [np.nan, 2.0]])
    with pytest.raises(DataError):
        KDTree(X)


def test_empty_input_is_rejected():
    with pytest.raises(ConfigurationError):
        BallTree(np.zeros((0, 3)))


def test_invalid_metric_falls_back_to_euclidean(random_points):
    tree = KDTree(random_points, metric='braycurtis')
    assert tree.metric.name == 'euclidean'
    assert len(tree.warnings_) == 1

    ball = BallTree(random_points, metric='braycurtis')
    assert ball.metric.name == 'braycurtis'
    assert ball.warnings_ == []


def test_query_dimension_mismatch(random_points):
    tree = KDTree(random_points)
    with pytest.raises(DimensionMismatchError):
        tree.query(np.zeros((2, 5)), k=1)


def test_get_tree_class():
    assert get_tree_class('kd_tree') is KDTree
    assert get_tree_class('BallTree') is BallTree
    with pytest.raises(ConfigurationError):
        get_tree_class('octree')


@pytest.mark.parametrize('tree_cls', TREE_CLASSES)
def test_snapshot_restores_equivalent_tree(tree_cls, random_points):
    tree = tree_cls(random_points, leaf_size=6, metric='manhattan')
    restored = SpatialTree.from_snapshot(tree.snapshot())

    assert type(restored) is tree_cls
    assert restored.metric == tree.metric
    np.testing.assert_array_equal(restored.get_index_array(), tree.get_index_array())

    original = tree.query(random_points[:10], k=4)
    again = restored.query(random_points[:10], k=4)
    np.testing.assert_allclose(again.distances, original.distances)
    np.testing.assert_array_equal(again.indices, original.indices)


def test_snapshot_of_wrong_type_is_rejected(random_points):
    state = KDTree(random_points).snapshot()
    with pytest.raises(ConfigurationError):
        BallTree.from_snapshot(state)
    del state['node_data']
    with pytest.raises(ConfigurationError):
        SpatialTree.from_snapshot(state)


def test_query_counters_accumulate(random_points):
    tree = BallTree(random_points, leaf_size=5)
    tree.query(random_points[:5], k=3)
    assert tree.get_n_calls() > 0
    assert sum(tree.get_tree_stats()) > 0
    tree.reset_n_calls()
    assert tree.get_n_calls() == 0
