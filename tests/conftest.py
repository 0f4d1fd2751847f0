"""
Shared fixtures for the density_clusterer test-suite.
"""

import numpy as np
import pytest

BLOB_CENTERS = np.array([[0.0, 0.0], [20.0, 0.0], [0.0, 20.0]])
BLOB_SIZE = 30


@pytest.fixture
def blobs():
    """Three well-separated Gaussian blobs; returns (X, true_labels)."""
    rng = np.random.default_rng(42)
    X = np.vstack([
        center + rng.normal(scale=0.5, size=(BLOB_SIZE, 2))
        for center in BLOB_CENTERS
    ])
    truth = np.repeat(np.arange(len(BLOB_CENTERS)), BLOB_SIZE)
    return X, truth


@pytest.fixture
def small_matrix():
    """Three 4-feature points, two close together and one far away."""
    return np.array([[0, 1, 0, 2], [0, 0, 1, 2], [5, 6, 7, 4]], dtype=np.float64)


@pytest.fixture
def random_points():
    """60 points in 3 dimensions with no duplicate distances."""
    rng = np.random.default_rng(0)
    return rng.normal(size=(60, 3))


def brute_distances(X, Y=None):
    """Euclidean distance matrix computed directly with NumPy."""
    Y = X if Y is None else Y
    return np.sqrt(((X[:, np.newaxis, :] - Y[np.newaxis, :, :]) ** 2).sum(axis=-1))
