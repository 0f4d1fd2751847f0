# density_clusterer/metrics.py
"""
Pluggable Distance Metrics for Spatial Search and Density Clustering.

Every metric exposes two views of the same quantity:

- the full distance, `distance(a, b)`, and
- a cheaper, monotone "reduced" (partial) distance, `partial_distance(a, b)`,
  such as the squared Euclidean distance,

plus the two conversions between them. Tree traversals compare reduced
distances throughout and only convert back at the end, which is safe because
`partial_to_distance(partial_distance(a, b)) == distance(a, b)` and the reduced
distance is monotone in the full one.

Key Features:
    - Vectorised row-to-point kernels (`partial_to_point`, `distance_to_point`)
      used by leaf scans and by the MST builders
    - Minkowski exponent `p` published for the KD-tree bound computations
    - Binary (boolean) distances flagged with `is_binary`
    - A similarity metric (cosine) flagged with `is_similarity`, accepted by the
      dense generic path only
    - A name registry (`get_metric`) so configurations can refer to metrics by string

Dependencies:
    - numpy: Vectorised arithmetic over sample matrices
"""

import logging
from typing import Any, Dict, List, Type

import numpy as np

from .exceptions import ConfigurationError, DimensionMismatchError

# Set up a logger for this module.
logger = logging.getLogger(__name__)

DEFAULT_P = 2.0


def _nan_to_inf(values: np.ndarray) -> np.ndarray:
    """Maps NaN results of 0/0 style ratios to +inf."""
    return np.where(np.isnan(values), np.inf, values)


class DistanceMetric:
    """
    Base class for all metrics.

    Subclasses implement `_partial_rows(X, y)`, returning the reduced distance
    from every row of `X` to the point `y`, and override the conversion pair when
    the reduced distance differs from the full one.
    """

    name: str = 'distance'
    is_binary: bool = False
    is_similarity: bool = False

    @property
    def p(self) -> float:
        """The Minkowski exponent used by axis-aligned bound computations."""
        return DEFAULT_P

    # --- Core kernel ---------------------------------------------------------

    def _partial_rows(self, X: np.ndarray, y: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    # --- Conversions ---------------------------------------------------------

    def partial_to_distance(self, d):
        return d

    def distance_to_partial(self, d):
        return d

    # --- Scalar API ----------------------------------------------------------

    def partial_distance(self, a: np.ndarray, b: np.ndarray) -> float:
        a = np.asarray(a, dtype=np.float64)
        b = np.asarray(b, dtype=np.float64)
        if a.shape[-1] != b.shape[-1]:
            raise DimensionMismatchError(a.shape[-1], b.shape[-1])
        return float(self._partial_rows(a[np.newaxis, :], b)[0])

    def distance(self, a: np.ndarray, b: np.ndarray) -> float:
        return float(self.partial_to_distance(self.partial_distance(a, b)))

    # --- Vectorised API ------------------------------------------------------

    def partial_to_point(self, X: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Reduced distances from each row of X to y."""
        if X.shape[1] != y.shape[-1]:
            raise DimensionMismatchError(X.shape[1], y.shape[-1])
        return self._partial_rows(X, y)

    def distance_to_point(self, X: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Full distances from each row of X to y."""
        return self.partial_to_distance(self.partial_to_point(X, y))

    def pairwise(self, X: np.ndarray, Y: np.ndarray | None = None) -> np.ndarray:
        """
        Computes the full distance matrix between the rows of X and Y.

        Args:
            X: Array of shape (n_x, n_features).
            Y: Array of shape (n_y, n_features); defaults to X.

        Returns:
            Array of shape (n_x, n_y).
        """
        X = np.asarray(X, dtype=np.float64)
        Y = X if Y is None else np.asarray(Y, dtype=np.float64)
        if X.shape[1] != Y.shape[1]:
            raise DimensionMismatchError(X.shape[1], Y.shape[1])

        result = np.empty((X.shape[0], Y.shape[0]), dtype=np.float64)
        for i in range(X.shape[0]):
            result[i] = self.distance_to_point(Y, X[i])
        return result

    # --- Identity ------------------------------------------------------------

    def _params(self) -> Dict[str, Any]:
        return {}

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self._params() == other._params()

    def __hash__(self) -> int:
        return hash((type(self).__name__, tuple(sorted(self._params().items()))))

    def __repr__(self) -> str:
        params = ', '.join(f'{k}={v!r}' for k, v in self._params().items())
        return f'{type(self).__name__}({params})'


# ======================================================================================
# Real-valued metrics
# ======================================================================================


class EuclideanDistance(DistanceMetric):
    name = 'euclidean'

    def _partial_rows(self, X, y):
        diff = X - y
        return np.einsum('ij,ij->i', diff, diff)

    def partial_to_distance(self, d):
        return np.sqrt(d)

    def distance_to_partial(self, d):
        return np.square(d)


class ManhattanDistance(DistanceMetric):
    name = 'manhattan'

    @property
    def p(self) -> float:
        return 1.0

    def _partial_rows(self, X, y):
        return np.abs(X - y).sum(axis=1)


class ChebyshevDistance(DistanceMetric):
    name = 'chebyshev'

    @property
    def p(self) -> float:
        return np.inf

    def _partial_rows(self, X, y):
        return np.abs(X - y).max(axis=1)


class MinkowskiDistance(DistanceMetric):
    """Minkowski distance of order p >= 1; the reduced form omits the final root."""

    name = 'minkowski'

    def __init__(self, p: float = DEFAULT_P):
        if p is None or not np.isfinite(p) or p < 1:
            raise ConfigurationError(f'Minkowski distance requires a finite p >= 1, got {p}')
        self._p = float(p)

    @property
    def p(self) -> float:
        return self._p

    def _partial_rows(self, X, y):
        return np.power(np.abs(X - y), self._p).sum(axis=1)

    def partial_to_distance(self, d):
        return np.power(d, 1.0 / self._p)

    def distance_to_partial(self, d):
        return np.power(d, self._p)

    def _params(self):
        return {'p': self._p}


class CanberraDistance(DistanceMetric):
    name = 'canberra'

    def _partial_rows(self, X, y):
        numer = np.abs(X - y)
        denom = np.abs(X) + np.abs(y)
        with np.errstate(divide='ignore', invalid='ignore'):
            ratio = _nan_to_inf(numer / denom)
        return np.where(numer == 0, 0.0, ratio).sum(axis=1)


class BrayCurtisDistance(DistanceMetric):
    name = 'braycurtis'

    def _partial_rows(self, X, y):
        sum_diff = np.abs(X - y).sum(axis=1)
        sum_total = np.abs(X + y).sum(axis=1)
        with np.errstate(divide='ignore', invalid='ignore'):
            ratio = _nan_to_inf(sum_diff / sum_total)
        return np.where(sum_diff == 0, 0.0, ratio)


class HaversineDistance(DistanceMetric):
    """
    Great-circle distance between [latitude, longitude] pairs given in degrees.

    The reduced distance equals the full distance.
    """

    name = 'haversine'

    EARTH_RADIUS_KM = 6371.0
    EARTH_RADIUS_MI = 3959.0

    def __init__(self, radius: float = EARTH_RADIUS_KM):
        if radius <= 0:
            raise ConfigurationError(f'Haversine radius must be positive, got {radius}')
        self.radius = float(radius)

    def _partial_rows(self, X, y):
        if X.shape[1] != 2:
            raise DimensionMismatchError(2, X.shape[1])
        lat1 = np.radians(X[:, 0])
        lat2 = np.radians(y[0])
        d_lat = np.radians(y[0] - X[:, 0])
        d_lon = np.radians(y[1] - X[:, 1])
        a = np.sin(d_lat / 2.0) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(d_lon / 2.0) ** 2
        a = np.clip(a, 0.0, 1.0)
        return 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a)) * self.radius

    def _params(self):
        return {'radius': self.radius}


# ======================================================================================
# Binary metrics (inputs are treated as booleans: non-zero is True)
# ======================================================================================


def _boolean_counts(X: np.ndarray, y: np.ndarray):
    """Returns per-row (n_tt, n_tf, n_ft, n_ff) agreement counts."""
    xb = X != 0
    yb = y != 0
    ctt = (xb & yb).sum(axis=1).astype(np.float64)
    ctf = (xb & ~yb).sum(axis=1).astype(np.float64)
    cft = (~xb & yb).sum(axis=1).astype(np.float64)
    cff = (~xb & ~yb).sum(axis=1).astype(np.float64)
    return ctt, ctf, cft, cff


class _BinaryDistance(DistanceMetric):
    is_binary = True


class HammingDistance(_BinaryDistance):
    name = 'hamming'

    def _partial_rows(self, X, y):
        return (X != y).mean(axis=1)


class DiceDistance(_BinaryDistance):
    name = 'dice'

    def _partial_rows(self, X, y):
        ctt, ctf, cft, _ = _boolean_counts(X, y)
        numer = ctf + cft
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.where(numer == 0, 0.0, numer / (2 * ctt + cft + ctf))


class KulsinskiDistance(_BinaryDistance):
    name = 'kulsinski'

    def _partial_rows(self, X, y):
        ctt, ctf, cft, _ = _boolean_counts(X, y)
        n = X.shape[1]
        return (ctf + cft - ctt + n) / (cft + ctf + n)


class RogersTanimotoDistance(_BinaryDistance):
    name = 'rogerstanimoto'

    def _partial_rows(self, X, y):
        ctt, ctf, cft, cff = _boolean_counts(X, y)
        r = 2 * (cft + ctf)
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.where(r == 0, 0.0, _nan_to_inf(r / (ctt + cff + r)))


class RussellRaoDistance(_BinaryDistance):
    name = 'russellrao'

    def _partial_rows(self, X, y):
        ctt, _, _, _ = _boolean_counts(X, y)
        n = float(X.shape[1])
        return (n - ctt) / n


class SokalSneathDistance(_BinaryDistance):
    name = 'sokalsneath'

    def _partial_rows(self, X, y):
        ctt, ctf, cft, _ = _boolean_counts(X, y)
        r = 2 * (cft + ctf)
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.where(r == 0, 0.0, _nan_to_inf(r / (ctt + r)))


class YuleDistance(_BinaryDistance):
    name = 'yule'

    def _partial_rows(self, X, y):
        ctt, ctf, cft, cff = _boolean_counts(X, y)
        r = 2 * cft * ctf
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.where(r == 0, 0.0, _nan_to_inf(r / (ctt * cff + cft * ctf)))


# ======================================================================================
# Similarity metrics
# ======================================================================================


class CosineSimilarity(DistanceMetric):
    """
    Cosine similarity. Higher means closer, so `distance` is the negated similarity.

    Tree-based search rejects similarity metrics; the dense generic HDBSCAN path
    accepts them.
    """

    name = 'cosine'
    is_similarity = True

    def similarity_to_point(self, X: np.ndarray, y: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(X, axis=1) * np.linalg.norm(y)
        dots = X @ y
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.where(norms == 0, 0.0, dots / norms)

    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        a = np.asarray(a, dtype=np.float64)
        return float(self.similarity_to_point(a[np.newaxis, :], np.asarray(b, dtype=np.float64))[0])

    def _partial_rows(self, X, y):
        return -self.similarity_to_point(X, y)


# ======================================================================================
# Registry
# ======================================================================================

_METRIC_REGISTRY: Dict[str, Type[DistanceMetric]] = {
    'euclidean': EuclideanDistance,
    'l2': EuclideanDistance,
    'manhattan': ManhattanDistance,
    'cityblock': ManhattanDistance,
    'l1': ManhattanDistance,
    'chebyshev': ChebyshevDistance,
    'infinity': ChebyshevDistance,
    'minkowski': MinkowskiDistance,
    'canberra': CanberraDistance,
    'braycurtis': BrayCurtisDistance,
    'haversine': HaversineDistance,
    'hamming': HammingDistance,
    'dice': DiceDistance,
    'kulsinski': KulsinskiDistance,
    'rogerstanimoto': RogersTanimotoDistance,
    'russellrao': RussellRaoDistance,
    'sokalsneath': SokalSneathDistance,
    'yule': YuleDistance,
    'cosine': CosineSimilarity,
}

_PRESETS: Dict[str, DistanceMetric] = {
    'haversine_km': HaversineDistance(HaversineDistance.EARTH_RADIUS_KM),
    'haversine_mi': HaversineDistance(HaversineDistance.EARTH_RADIUS_MI),
}


def valid_metric_names() -> List[str]:
    """Lists every metric name accepted by `get_metric`."""
    return sorted(list(_METRIC_REGISTRY) + list(_PRESETS))


def get_metric(metric: str | DistanceMetric = 'euclidean', **params: Any) -> DistanceMetric:
    """
    Resolves a metric name or instance to a DistanceMetric.

    Args:
        metric: A registered name (case-insensitive) or a DistanceMetric instance.
        **params: Constructor arguments for parameterised metrics (e.g. p=3).

    Returns:
        A DistanceMetric instance.

    Raises:
        ConfigurationError: If the name is unknown or the parameters are invalid.
    """
    if isinstance(metric, DistanceMetric):
        return metric

    if not isinstance(metric, str):
        raise ConfigurationError(
            f'metric must be a name or a DistanceMetric, not {type(metric).__name__}'
        )

    key = metric.strip().lower()
    if key in _PRESETS and not params:
        return _PRESETS[key]

    metric_cls = _METRIC_REGISTRY.get(key)
    if metric_cls is None:
        raise ConfigurationError(
            f"Unknown metric '{metric}'. Must be one of {valid_metric_names()}"
        )

    try:
        return metric_cls(**params)
    except TypeError as e:
        raise ConfigurationError(f"Invalid parameters for metric '{metric}': {e}") from e


__all__ = [
    'DistanceMetric',
    'EuclideanDistance',
    'ManhattanDistance',
    'ChebyshevDistance',
    'MinkowskiDistance',
    'CanberraDistance',
    'BrayCurtisDistance',
    'HaversineDistance',
    'HammingDistance',
    'DiceDistance',
    'KulsinskiDistance',
    'RogersTanimotoDistance',
    'RussellRaoDistance',
    'SokalSneathDistance',
    'YuleDistance',
    'CosineSimilarity',
    'get_metric',
    'valid_metric_names',
]
