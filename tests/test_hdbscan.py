"""End-to-end tests for the HDBSCAN engine."""

import numpy as np
import pytest

from density_clusterer import HDBSCAN, FitState
from density_clusterer.config import HDBSCAN_ALGORITHMS
from density_clusterer.exceptions import (
    ConfigurationError,
    DataError,
    DimensionMismatchError,
    ModelNotFitError,
)
from density_clusterer.parallel import ExecutionContext

ALGORITHMS = [a for a in HDBSCAN_ALGORITHMS if a != 'auto']


@pytest.mark.parametrize('algorithm', HDBSCAN_ALGORITHMS)
def test_small_matrix_is_all_noise(algorithm, small_matrix):
    model = HDBSCAN(min_cluster_size=1, algorithm=algorithm)
    np.testing.assert_array_equal(model.fit_predict(small_matrix), [-1, -1, -1])


@pytest.mark.parametrize('algorithm', HDBSCAN_ALGORITHMS)
def test_blobs_give_three_clusters(algorithm, blobs):
    X, truth = blobs
    model = HDBSCAN(min_cluster_size=15, algorithm=algorithm, approx_min_span_tree=False)
    labels = model.fit_predict(X)

    assert model.n_clusters_ == 3
    assert model.n_noise_ < X.shape[0] * 0.2
    assert model.state_ == FitState.LABELS_EXTRACTED
    for blob in range(3):
        blob_labels = labels[(truth == blob) & (labels >= 0)]
        assert len(set(blob_labels.tolist())) == 1


def test_labels_follow_first_appearance(blobs):
    X, _ = blobs
    labels = HDBSCAN(min_cluster_size=15).fit_predict(X)
    first_seen = [int(v) for v in dict.fromkeys(labels.tolist()) if v >= 0]
    assert first_seen == list(range(len(first_seen)))


def test_all_algorithms_build_equal_weight_trees(blobs):
    X, _ = blobs
    weights = []
    for algorithm in ALGORITHMS:
        model = HDBSCAN(min_samples=4, algorithm=algorithm, approx_min_span_tree=False).fit(X)
        weights.append(model.min_spanning_tree_[:, 2].sum())
        np.testing.assert_allclose(
            model.core_distances_, HDBSCAN(min_samples=4, algorithm='generic').fit(X).core_distances_
        )
    assert weights == pytest.approx([weights[0]] * len(weights))


def test_fit_is_deterministic(random_points):
    first = HDBSCAN(min_cluster_size=5).fit_predict(random_points)
    second = HDBSCAN(min_cluster_size=5).fit_predict(random_points)
    np.testing.assert_array_equal(first, second)


def test_parallel_execution_gives_the_same_labels(blobs):
    X, _ = blobs
    context = ExecutionContext(allow_parallel=True, n_jobs=2, chunk_size=10, force_parallel=True)
    for algorithm in ('generic', 'prims_kdtree'):
        serial = HDBSCAN(min_cluster_size=15, algorithm=algorithm).fit_predict(X)
        parallel = HDBSCAN(min_cluster_size=15, algorithm=algorithm, execution=context).fit_predict(X)
        np.testing.assert_array_equal(parallel, serial)


def test_identical_points_form_a_single_group():
    X = np.ones((12, 3))
    labels = HDBSCAN(min_cluster_size=5).fit_predict(X)
    assert len(set(labels.tolist())) == 1


def test_fewer_points_than_min_cluster_size_is_noise(random_points):
    labels = HDBSCAN(min_cluster_size=10).fit_predict(random_points[:6])
    np.testing.assert_array_equal(labels, np.full(6, -1))


def test_single_point():
    model = HDBSCAN().fit(np.array([[1.0, 2.0]]))
    np.testing.assert_array_equal(model.labels_, [-1])
    assert model.n_clusters_ == 0
    assert model.min_spanning_tree_.shape == (0, 3)


def test_second_fit_is_a_no_op_unless_refit(blobs, random_points):
    X, _ = blobs
    model = HDBSCAN(min_cluster_size=15).fit(X)
    model.fit(random_points)
    assert model.labels_.shape == (X.shape[0],)
    model.fit(random_points, refit=True)
    assert model.labels_.shape == (random_points.shape[0],)


def test_accessors_before_fit():
    model = HDBSCAN()
    assert model.state_ == FitState.UNFIT
    for name in (
        'labels_', 'n_clusters_', 'n_noise_', 'core_distances_', 'min_spanning_tree_',
        'single_linkage_tree_', 'condensed_tree_', 'cluster_stability_',
    ):
        with pytest.raises(ModelNotFitError):
            getattr(model, name)
    with pytest.raises(ModelNotFitError):
        model.condensed_tree_frame()
    with pytest.raises(ModelNotFitError):
        model.predict(np.zeros((1, 2)))


def test_predict_checks_then_refuses(blobs):
    X, _ = blobs
    model = HDBSCAN(min_cluster_size=15).fit(X)
    with pytest.raises(DimensionMismatchError):
        model.predict(np.zeros((2, 3)))
    with pytest.raises(NotImplementedError):
        model.predict(X[:2])


@pytest.mark.parametrize('params', [
    {'min_samples': 0},
    {'min_cluster_size': 0},
    {'alpha': 0.0},
    {'leaf_size': 0},
    {'algorithm': 'dbscan'},
    {'metric': 'no-such-metric'},
    {'unknown': 1},
])
def test_invalid_parameters(params):
    with pytest.raises(ConfigurationError):
        HDBSCAN(**params)


def test_non_finite_input_is_rejected():
    X = np.array([[0.0, 1.0], [np.inf, 1.0], [2.0, 2.0]])
    with pytest.raises(DataError):
        HDBSCAN().fit(X)


def test_tree_metric_fallback_is_recorded(blobs):
    X, _ = blobs
    model = HDBSCAN(min_cluster_size=15, algorithm='prims_kdtree', metric='braycurtis').fit(X)
    assert model.warnings_
    assert 'euclidean' in model.warnings_[0]
    assert model.metric.name == 'euclidean'


@pytest.mark.parametrize('metric, expected', [
    ('euclidean', 'prims_kdtree'),
    ('braycurtis', 'prims_balltree'),
    ('canberra', 'generic'),
    ('cosine', 'generic'),
])
def test_auto_algorithm_selection(metric, expected, blobs):
    X, _ = blobs
    model = HDBSCAN(min_cluster_size=15, metric=metric).fit(X + 30.0)
    assert model.algorithm_ == expected
    assert model.labels_.shape == (X.shape[0],)


def test_auto_prefers_boruvka_for_wide_data():
    X = np.random.default_rng(3).normal(size=(40, 8))
    model = HDBSCAN(boruvka_feature_threshold=4).fit(X)
    assert model.algorithm_ == 'boruvka_kdtree'


def test_condensed_tree_and_summary_frames(blobs):
    X, _ = blobs
    model = HDBSCAN(min_cluster_size=15).fit(X)

    frame = model.condensed_tree_frame()
    assert list(frame.columns) == ['parent', 'child', 'lambda_val', 'child_size']
    assert len(frame) == model.condensed_tree_.shape[0]

    summary = model.fit_summary()
    assert summary['count'].sum() == X.shape[0]
    assert summary['percentage'].sum() == pytest.approx(100.0)


@pytest.mark.parametrize('alpha', [0.25, 0.5])
def test_small_alpha_gives_equal_weight_trees(alpha, random_points):
    weights = [
        HDBSCAN(min_samples=5, alpha=alpha, algorithm=algorithm, approx_min_span_tree=False)
        .fit(random_points)
        .min_spanning_tree_[:, 2]
        .sum()
        for algorithm in ALGORITHMS
    ]
    assert weights == pytest.approx([weights[0]] * len(weights))
