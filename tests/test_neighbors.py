"""Tests for the fitted neighbour models."""

import numpy as np
import pytest

from density_clusterer.exceptions import DimensionMismatchError, ModelNotFitError
from density_clusterer.neighbors import NearestNeighbors, RadiusNeighbors, _BaseNeighborsModel
from density_clusterer.parallel import ExecutionContext
from density_clusterer.trees import BallTree, KDTree

from .conftest import brute_distances


def _brute_self_excluded(X, k):
    D = brute_distances(X)
    np.fill_diagonal(D, np.inf)
    idx = np.argsort(D, axis=1)[:, :k]
    return np.take_along_axis(D, idx, axis=1), idx


@pytest.mark.parametrize('algorithm', ['auto', 'kd_tree', 'ball_tree'])
def test_fitted_neighbors_exclude_self(algorithm, random_points):
    model = NearestNeighbors(n_neighbors=4, algorithm=algorithm, leaf_size=5).fit(random_points)
    distances, indices = model.get_neighbors()

    expected_d, expected_i = _brute_self_excluded(random_points, 4)
    np.testing.assert_allclose(distances, expected_d)
    np.testing.assert_array_equal(indices, expected_i)
    assert not np.any(indices == np.arange(random_points.shape[0])[:, np.newaxis])


def test_auto_picks_tree_by_metric(random_points):
    assert isinstance(NearestNeighbors().fit(random_points).tree_, KDTree)
    assert isinstance(NearestNeighbors(metric='braycurtis').fit(random_points).tree_, BallTree)


def test_duplicates_drop_the_first_column():
    X = np.array([[0.0, 0.0], [0.0, 0.0], [0.0, 0.0], [5.0, 5.0]])
    model = NearestNeighbors(n_neighbors=2).fit(X)
    distances, indices = model.get_neighbors()
    assert distances.shape == (4, 2)
    for i in range(3):
        assert i not in indices[i].tolist()


def test_too_few_points_records_a_warning():
    X = np.array([[0.0], [1.0], [3.0]])
    model = NearestNeighbors(n_neighbors=5).fit(X)
    distances, _ = model.get_neighbors()
    assert distances.shape == (3, 2)
    assert len(model.warnings_) == 1


def test_query_new_points_in_parallel(random_points):
    context = ExecutionContext(allow_parallel=True, n_jobs=2, chunk_size=4, force_parallel=True)
    model = NearestNeighbors(n_neighbors=3, execution=context).fit(random_points)
    queries = random_points[:10] + 0.01
    distances, indices = model.get_neighbors(queries)

    D = brute_distances(queries, random_points)
    np.testing.assert_array_equal(indices, np.argsort(D, axis=1)[:, :3])


def test_get_neighbors_with_larger_k(random_points):
    model = NearestNeighbors(n_neighbors=2).fit(random_points)
    distances, indices = model.get_neighbors(k=6)
    expected_d, _ = _brute_self_excluded(random_points, 6)
    np.testing.assert_allclose(distances, expected_d)
    assert model.get_neighbors(k=1).indices.shape == (60, 1)


def test_fit_is_a_no_op_when_fit(random_points):
    model = NearestNeighbors(n_neighbors=2).fit(random_points)
    tree = model.tree_
    model.fit(random_points[:10])
    assert model.tree_ is tree
    model.fit(random_points[:10], refit=True)
    assert model.tree_.n_samples == 10


def test_not_fit_errors(random_points):
    with pytest.raises(ModelNotFitError):
        NearestNeighbors().get_neighbors()
    with pytest.raises(ModelNotFitError):
        RadiusNeighbors().get_neighbors()


def test_dimension_mismatch(random_points):
    model = NearestNeighbors().fit(random_points)
    with pytest.raises(DimensionMismatchError):
        model.get_neighbors(np.zeros((2, 7)))


def test_radius_neighbors_exclude_self(random_points):
    radius = 1.0
    model = RadiusNeighbors(radius=radius).fit(random_points)
    distances, indices = model.get_neighbors()

    D = brute_distances(random_points)
    for i in range(random_points.shape[0]):
        expected = set(np.flatnonzero(D[i] <= radius).tolist()) - {i}
        assert set(indices[i].tolist()) == expected
        np.testing.assert_allclose(np.sort(distances[i]), np.sort(D[i, sorted(expected)]))


def test_radius_neighbors_warn_about_isolated_records():
    X = np.array([[0.0, 0.0], [0.1, 0.0], [50.0, 50.0]])
    model = RadiusNeighbors(radius=1.0).fit(X)
    _, indices = model.get_neighbors()
    assert indices[2].size == 0
    assert any('1 record has' in w for w in model.warnings_)


def test_radius_neighbors_new_points_and_radius(random_points):
    model = RadiusNeighbors(radius=0.5).fit(random_points)
    result = model.get_neighbors(random_points[:3], radius=2.0)
    D = brute_distances(random_points[:3], random_points)
    np.testing.assert_array_equal(result.counts, (D <= 2.0).sum(axis=1))

    wider = model.get_neighbors(radius=2.0)
    assert np.all(wider.counts >= model.get_neighbors().counts)


def test_base_model_requires_a_neighbourhood_strategy():
    with pytest.raises(TypeError):
        _BaseNeighborsModel()
