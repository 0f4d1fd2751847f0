"""Tests for the distance metric registry and kernels."""

import numpy as np
import pytest

from density_clusterer.exceptions import ConfigurationError, DimensionMismatchError
from density_clusterer.metrics import (
    CosineSimilarity,
    EuclideanDistance,
    HaversineDistance,
    MinkowskiDistance,
    get_metric,
    valid_metric_names,
)

from .conftest import brute_distances


def test_euclidean_pairwise_matches_numpy(random_points):
    metric = get_metric('euclidean')
    np.testing.assert_allclose(metric.pairwise(random_points), brute_distances(random_points))


@pytest.mark.parametrize('name', ['euclidean', 'manhattan', 'chebyshev', 'minkowski', 'braycurtis', 'canberra'])
def test_partial_distance_round_trips_to_distance(name, random_points):
    metric = get_metric(name)
    a, b = random_points[0], random_points[1]
    assert metric.partial_to_distance(metric.partial_distance(a, b)) == pytest.approx(metric.distance(a, b))
    assert metric.distance_to_partial(metric.distance(a, b)) == pytest.approx(metric.partial_distance(a, b))


def test_manhattan_and_chebyshev_values():
    a = np.array([0.0, 0.0])
    b = np.array([3.0, -4.0])
    assert get_metric('manhattan').distance(a, b) == pytest.approx(7.0)
    assert get_metric('chebyshev').distance(a, b) == pytest.approx(4.0)
    assert get_metric('euclidean').distance(a, b) == pytest.approx(5.0)


def test_minkowski_uses_p():
    metric = get_metric('minkowski', p=3)
    assert isinstance(metric, MinkowskiDistance)
    assert metric.p == 3.0
    assert metric.distance(np.array([0.0, 0.0]), np.array([1.0, 1.0])) == pytest.approx(2 ** (1 / 3))


def test_minkowski_rejects_p_below_one():
    with pytest.raises(ConfigurationError):
        get_metric('minkowski', p=0.5)


def test_haversine_quarter_circle():
    metric = HaversineDistance()
    d = metric.distance(np.array([0.0, 0.0]), np.array([0.0, 90.0]))
    assert d == pytest.approx(np.pi / 2 * HaversineDistance.EARTH_RADIUS_KM)


def test_haversine_requires_two_columns():
    with pytest.raises(DimensionMismatchError):
        HaversineDistance().distance(np.zeros(3), np.ones(3))


def test_cosine_is_a_similarity():
    metric = get_metric('cosine')
    assert isinstance(metric, CosineSimilarity)
    assert metric.is_similarity
    assert metric.similarity(np.array([1.0, 0.0]), np.array([2.0, 0.0])) == pytest.approx(1.0)
    assert metric.similarity(np.array([1.0, 0.0]), np.array([0.0, 3.0])) == pytest.approx(0.0)


def test_binary_metrics_are_flagged():
    assert get_metric('hamming').is_binary
    assert not get_metric('euclidean').is_binary


def test_hamming_counts_disagreements():
    metric = get_metric('hamming')
    assert metric.distance(np.array([1, 0, 1, 0]), np.array([1, 1, 0, 0])) == pytest.approx(0.5)


def test_get_metric_is_case_insensitive_and_passes_instances_through():
    assert isinstance(get_metric('  Euclidean '), EuclideanDistance)
    instance = MinkowskiDistance(4)
    assert get_metric(instance) is instance


def test_unknown_metric_raises():
    with pytest.raises(ConfigurationError):
        get_metric('no-such-metric')


def test_metric_equality_uses_parameters():
    assert get_metric('minkowski', p=3) == get_metric('minkowski', p=3)
    assert get_metric('minkowski', p=3) != get_metric('minkowski', p=4)


def test_registry_lists_presets():
    names = valid_metric_names()
    assert 'haversine_km' in names
    assert 'euclidean' in names
