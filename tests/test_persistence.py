"""Tests for saving and restoring fitted models and trees."""

import numpy as np
import pytest

from density_clusterer import HDBSCAN
from density_clusterer.exceptions import ModelNotFitError
from density_clusterer.persistence import load_model_components, load_tree, save_tree
from density_clusterer.trees import BallTree


def test_model_round_trip(blobs, tmp_path):
    X, _ = blobs
    model = HDBSCAN(min_cluster_size=15, leaf_size=10).fit(X)
    model.save_model(tmp_path / 'model')

    assert (tmp_path / 'model' / 'config.pkl').exists()
    assert (tmp_path / 'model' / 'arrays.npz').exists()
    assert (tmp_path / 'model' / 'state.pkl').exists()

    restored = HDBSCAN.load_model(tmp_path / 'model')
    assert restored.is_fit
    assert restored.config == model.config
    assert restored.algorithm_ == model.algorithm_
    assert restored.n_features_in_ == 2
    np.testing.assert_array_equal(restored.labels_, model.labels_)
    np.testing.assert_allclose(restored.core_distances_, model.core_distances_)
    np.testing.assert_allclose(restored.single_linkage_tree_, model.single_linkage_tree_)
    np.testing.assert_array_equal(restored.condensed_tree_, model.condensed_tree_)
    assert list(restored.cluster_stability_) == list(model.cluster_stability_)
    np.testing.assert_allclose(
        list(restored.cluster_stability_.values()), list(model.cluster_stability_.values())
    )
    assert restored.n_clusters_ == model.n_clusters_


def test_saving_an_unfit_model_fails(tmp_path):
    with pytest.raises(ModelNotFitError):
        HDBSCAN().save_model(tmp_path / 'model')


def test_loading_missing_model_fails(tmp_path):
    with pytest.raises(FileNotFoundError):
        HDBSCAN.load_model(tmp_path / 'missing')

    (tmp_path / 'partial').mkdir()
    with pytest.raises(FileNotFoundError):
        load_model_components(tmp_path / 'partial')


def test_tree_round_trip(random_points, tmp_path):
    tree = BallTree(random_points, leaf_size=7, metric='chebyshev')
    save_tree(tree, tmp_path / 'trees' / 'ball.pkl')
    restored = load_tree(tmp_path / 'trees' / 'ball.pkl')

    assert isinstance(restored, BallTree)
    assert restored.metric.name == 'chebyshev'
    original = tree.query_radius(random_points[:5], 1.0, sort_results=True)
    again = restored.query_radius(random_points[:5], 1.0, sort_results=True)
    for a, b in zip(original.indices, again.indices):
        np.testing.assert_array_equal(a, b)


def test_loading_missing_tree_fails(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_tree(tmp_path / 'nope.pkl')


def test_restored_model_reports_the_fallback_metric(blobs, tmp_path):
    X, _ = blobs
    model = HDBSCAN(min_cluster_size=15, algorithm='prims_kdtree', metric='braycurtis').fit(X)
    model.save_model(tmp_path / 'fallback')

    restored = HDBSCAN.load_model(tmp_path / 'fallback')
    assert restored.metric.name == 'euclidean'
    assert restored.config.tree.metric == 'braycurtis'
