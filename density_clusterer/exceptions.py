# density_clusterer/exceptions.py
"""
Exception taxonomy for the density clustering toolkit.

Every error raised deliberately by this package derives from `ClusteringError`,
and additionally from the builtin exception a caller would naturally expect
(`ValueError` for bad arguments or data, `RuntimeError` for state problems).
This lets callers either catch the package-wide base class or keep using the
builtin types they already handle.

Categories:
    - ConfigurationError: invalid construction parameters (leaf size, k, radius,
      min_cluster_size, alpha, kernel, bandwidth, metric names).
    - DimensionMismatchError: query data whose width differs from the fitted data.
    - ModelNotFitError: fitted-state accessors invoked before `fit()` completes.
    - DataError: NaN/Inf or malformed (non-2D, empty) input matrices.
    - IllegalClusterStateError: an internal invariant was broken.

Degenerate-but-valid outcomes (all noise, one cluster, empty neighbourhoods) are
never signalled through exceptions.
"""


class ClusteringError(Exception):
    """Base class for all errors raised by density_clusterer."""


class ConfigurationError(ClusteringError, ValueError):
    """Raised when a parameter is out of its valid range at construction time."""


class DimensionMismatchError(ClusteringError, ValueError):
    """Raised when query data does not match the fitted dimensionality."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f'Dimension mismatch: model was fit on {expected} features '
            f'but received {actual}'
        )


class ModelNotFitError(ClusteringError, RuntimeError):
    """Raised when a fitted attribute is requested from an unfitted model."""


class DataError(ClusteringError, ValueError):
    """Raised when an input matrix contains NaN/Inf values or has a bad shape."""


class IllegalClusterStateError(ClusteringError, RuntimeError):
    """Raised when an internal structure is found in an impossible state."""


__all__ = [
    'ClusteringError',
    'ConfigurationError',
    'DimensionMismatchError',
    'ModelNotFitError',
    'DataError',
    'IllegalClusterStateError',
]
