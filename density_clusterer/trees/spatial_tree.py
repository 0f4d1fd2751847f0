# density_clusterer/trees/spatial_tree.py
"""
Space-partitioning trees for fast neighbour search.

`SpatialTree` is a single traversal core. Its geometry is supplied by a
bounds object (`KDNodeBounds` or `BallNodeBounds`), and `KDTree` and `BallTree`
are thin subclasses that bind a bounds type to the set of metrics it supports.

Tree layout:
    The tree is a complete binary tree stored in flat arrays. Node `i` has
    children `2i+1` and `2i+2`. The number of levels is fixed up front from the
    sample count and the leaf size, so no node is ever allocated dynamically:

        n_levels = floor(log2(max(1, (m - 1) // leaf_size))) + 1
        n_nodes  = 2 ** n_levels - 1

    The training data is copied once into a read-only array and never moved.
    Only `idx_array` is permuted during construction, so that every node owns the
    contiguous slice `idx_array[idx_start:idx_end]`.

Key Features:
    - Median split on the dimension of largest spread (`numpy.argpartition`)
    - Per-node metadata in a NumPy structured array (`NODE_DATA_DTYPE`)
    - Snapshots for persistence without rebuilding (`snapshot` / `from_snapshot`)
    - Query-time diagnostics (`n_trims`, `n_leaves`, `n_splits`, `n_calls`)

Dependencies:
    - numpy: Array storage, partitioning and bound arithmetic
"""

import logging
from typing import Any, Dict, FrozenSet, Optional, Tuple, Type

import numpy as np

from ..exceptions import ConfigurationError
from ..metrics import DistanceMetric, EuclideanDistance, get_metric
from ..utils.validation import validate_matrix
from . import query as _query
from .bounds import BallNodeBounds, KDNodeBounds

# Set up a logger for this module.
logger = logging.getLogger(__name__)

NODE_DATA_DTYPE = np.dtype([
    ('idx_start', np.intp),
    ('idx_end', np.intp),
    ('is_leaf', np.bool_),
    ('radius', np.float64),
])

DEFAULT_LEAF_SIZE = 40


def find_node_split_dim(data: np.ndarray, node_indices: np.ndarray) -> int:
    """
    Finds the dimension with the largest spread among the given points.

    Args:
        data: Array of shape (n_samples, n_features).
        node_indices: Row indices of the points belonging to the node.

    Returns:
        The index of the dimension whose (max - min) is largest.

    Example:
        >>> data = np.array([[0, 1, 0, 2], [0, 0, 1, 2], [5, 6, 7, 4]])
        >>> find_node_split_dim(data, np.array([0, 1, 2]))
        2
    """
    points = data[node_indices]
    spread = points.max(axis=0) - points.min(axis=0)
    return int(np.argmax(spread))


def partition_node_indices(
    data: np.ndarray,
    idx_array: np.ndarray,
    split_dim: int,
    idx_start: int,
    idx_end: int,
    split_index: int,
) -> None:
    """
    Partially sorts `idx_array[idx_start:idx_end]` in place along `split_dim`.

    After the call, the point at relative position `split_index` holds the value
    it would have in a full sort, every earlier point is no larger, and every
    later point is no smaller.
    """
    node_indices = idx_array[idx_start:idx_end]
    order = np.argpartition(data[node_indices, split_dim], split_index, kind='introselect')
    idx_array[idx_start:idx_end] = node_indices[order]


class SpatialTree:
    """
    A binary space-partitioning tree over a fixed sample matrix.

    Subclasses set `bounds_type` and `VALID_METRICS`. Queries are provided by
    `query`, `query_radius`, `kernel_density` and `two_point_correlation`.

    Attributes:
        data: Read-only float64 copy of the training matrix.
        idx_array: Permutation of row indices; node `i` owns a contiguous slice.
        node_data: Structured array with fields idx_start, idx_end, is_leaf, radius.
        node_bounds: Bounding volumes, shape depends on the bounds type.
        metric: The resolved DistanceMetric.
        warnings_: Human-readable warnings raised during construction.
    """

    bounds_type: Type = KDNodeBounds
    VALID_METRICS: FrozenSet[str] = frozenset()

    def __init__(
        self,
        X: Any,
        leaf_size: int = DEFAULT_LEAF_SIZE,
        metric: str | DistanceMetric = 'euclidean',
        **metric_params: Any,
    ):
        if leaf_size is None or int(leaf_size) < 1:
            raise ConfigurationError(f'leaf_size must be greater than or equal to 1, got {leaf_size}')

        data = validate_matrix(X, copy=True, allow_empty=True)
        if data.shape[0] == 0:
            raise ConfigurationError('Cannot build a spatial tree on an empty matrix')
        data.setflags(write=False)

        self.data = data
        self.leaf_size = int(leaf_size)
        self.warnings_: list = []
        self.metric = self._resolve_metric(metric, metric_params)
        self.bounds = self.bounds_type()

        n_samples, n_features = data.shape
        self.n_levels = int(np.log2(max(1, (n_samples - 1) // self.leaf_size))) + 1
        self.n_nodes = 2 ** self.n_levels - 1

        self.idx_array = np.arange(n_samples, dtype=np.intp)
        self.node_data = np.zeros(self.n_nodes, dtype=NODE_DATA_DTYPE)
        # Nodes that are never reached during the build stay empty leaves
        self.node_data['is_leaf'] = True
        self.node_bounds = self.bounds.allocate(self.n_nodes, n_features)

        self.n_trims = 0
        self.n_leaves = 0
        self.n_splits = 0
        self.n_calls = 0

        self._recursive_build(0, 0, n_samples)
        self._cache_node_fields()

        logger.debug(
            f'Built {type(self).__name__} over {n_samples:,} points '
            f'({n_features} features): {self.n_levels} levels, {self.n_nodes:,} nodes, '
            f"metric='{self.metric.name}'"
        )

    # ==================================================================================
    # Construction
    # ==================================================================================

    @classmethod
    def is_valid_metric(cls, metric: DistanceMetric) -> bool:
        return metric.name in cls.VALID_METRICS

    def _resolve_metric(self, metric, metric_params: Dict[str, Any]) -> DistanceMetric:
        resolved = get_metric(metric, **metric_params)
        if not self.is_valid_metric(resolved):
            message = (
                f"Metric '{resolved.name}' is not valid for {type(self).__name__}; "
                f"falling back to 'euclidean'"
            )
            logger.warning(message)
            self.warnings_.append(message)
            resolved = EuclideanDistance()
        return resolved

    def _recursive_build(self, i_node: int, idx_start: int, idx_end: int) -> None:
        n_points = idx_end - idx_start
        self.node_data['idx_start'][i_node] = idx_start
        self.node_data['idx_end'][i_node] = idx_end
        self.node_data['radius'][i_node] = self.bounds.init_node(self, i_node, idx_start, idx_end)

        if 2 * i_node + 1 >= self.n_nodes or n_points < 2:
            self.node_data['is_leaf'][i_node] = True
            if n_points > 2 * self.leaf_size:
                logger.warning(
                    f'Leaf node {i_node} holds {n_points:,} points, more than twice '
                    f'leaf_size={self.leaf_size}'
                )
            return

        self.node_data['is_leaf'][i_node] = False
        split_dim = find_node_split_dim(self.data, self.idx_array[idx_start:idx_end])
        n_mid = n_points // 2
        partition_node_indices(self.data, self.idx_array, split_dim, idx_start, idx_end, n_mid)

        self._recursive_build(2 * i_node + 1, idx_start, idx_start + n_mid)
        self._recursive_build(2 * i_node + 2, idx_start + n_mid, idx_end)

    def _cache_node_fields(self) -> None:
        """Copies node fields to plain lists, which are faster to index in loops."""
        self.node_start = self.node_data['idx_start'].tolist()
        self.node_end = self.node_data['idx_end'].tolist()
        self.node_is_leaf = self.node_data['is_leaf'].tolist()
        self.node_radius = self.node_data['radius'].tolist()

    # ==================================================================================
    # Accessors
    # ==================================================================================

    @property
    def n_samples(self) -> int:
        return self.data.shape[0]

    @property
    def n_features(self) -> int:
        return self.data.shape[1]

    def get_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Returns (data, idx_array, node_data, node_bounds)."""
        return self.data, self.idx_array, self.node_data, self.node_bounds

    def get_index_array(self) -> np.ndarray:
        return self.idx_array

    def get_node_data(self) -> np.ndarray:
        return self.node_data

    def get_node_bounds(self) -> np.ndarray:
        return self.node_bounds

    def get_tree_stats(self) -> Tuple[int, int, int]:
        """Returns (n_trims, n_leaves, n_splits) accumulated by queries."""
        return self.n_trims, self.n_leaves, self.n_splits

    def get_n_calls(self) -> int:
        return self.n_calls

    def reset_n_calls(self) -> None:
        self.n_calls = 0

    def _reset_stats(self) -> None:
        self.n_trims = 0
        self.n_leaves = 0
        self.n_splits = 0

    def node_count(self, i_node: int) -> int:
        return self.node_end[i_node] - self.node_start[i_node]

    def node_points(self, i_node: int) -> np.ndarray:
        """Row indices of the training points in node `i_node`."""
        return self.idx_array[self.node_start[i_node]:self.node_end[i_node]]

    def __repr__(self) -> str:
        return (
            f'{type(self).__name__}(n_samples={self.n_samples}, n_features={self.n_features}, '
            f'leaf_size={self.leaf_size}, metric={self.metric!r})'
        )

    # ==================================================================================
    # Snapshots
    # ==================================================================================

    def snapshot(self) -> Dict[str, Any]:
        """
        Captures the built tree as a flat dictionary of arrays and metadata.

        The dictionary is picklable and can be passed to `from_snapshot` to
        rebuild an equivalent tree without repeating the construction.
        """
        return {
            'tree_type': type(self).__name__,
            'data': np.array(self.data),
            'idx_array': self.idx_array.copy(),
            'node_data': self.node_data.copy(),
            'node_bounds': self.node_bounds.copy(),
            'leaf_size': self.leaf_size,
            'n_levels': self.n_levels,
            'n_nodes': self.n_nodes,
            'metric': self.metric,
            'warnings': list(self.warnings_),
        }

    @classmethod
    def from_snapshot(cls, state: Dict[str, Any]) -> 'SpatialTree':
        """
        Restores a tree from `snapshot()` output.

        When called on `SpatialTree` itself, the concrete class is chosen from
        the snapshot's `tree_type`.

        Raises:
            ConfigurationError: If the snapshot is incomplete or of another tree type.
        """
        missing = {'tree_type', 'data', 'idx_array', 'node_data', 'node_bounds', 'leaf_size', 'metric'} - set(state)
        if missing:
            raise ConfigurationError(f'Tree snapshot is missing keys: {sorted(missing)}')

        tree_cls = TREE_TYPES.get(state['tree_type'])
        if tree_cls is None or not issubclass(tree_cls, cls):
            raise ConfigurationError(
                f"Cannot restore a '{state['tree_type']}' snapshot as {cls.__name__}"
            )

        tree = tree_cls.__new__(tree_cls)
        data = np.array(state['data'], dtype=np.float64)
        data.setflags(write=False)
        tree.data = data
        tree.idx_array = np.asarray(state['idx_array'], dtype=np.intp).copy()
        tree.node_data = np.asarray(state['node_data'], dtype=NODE_DATA_DTYPE).copy()
        tree.node_bounds = np.asarray(state['node_bounds'], dtype=np.float64).copy()
        tree.leaf_size = int(state['leaf_size'])
        tree.n_nodes = tree.node_data.shape[0]
        tree.n_levels = int(state.get('n_levels', int(np.log2(tree.n_nodes + 1))))
        tree.metric = get_metric(state['metric'])
        tree.bounds = tree_cls.bounds_type()
        tree.warnings_ = list(state.get('warnings', []))
        tree.n_trims = tree.n_leaves = tree.n_splits = tree.n_calls = 0
        tree._cache_node_fields()
        return tree

    # ==================================================================================
    # Queries
    # ==================================================================================

    def query(self, X: Any, k: int = 1, dual_tree: bool = False, sort_results: bool = True):
        """
        Finds the k nearest training points of every row of X.

        Args:
            X: Query points, shape (n_queries, n_features). A 1D array is treated
                as a single point.
            k: Number of neighbours, 1 <= k <= n_samples.
            dual_tree: Build a second tree on X and traverse both together.
            sort_results: Sort each row by ascending distance.

        Returns:
            A Neighborhood with (n_queries, k) distances and indices.

        Raises:
            DimensionMismatchError: If X's width differs from the training data.
            ConfigurationError: If k is out of range.
        """
        return _query.query_knn(self, X, k, dual_tree=dual_tree, sort_results=sort_results)

    def query_radius(
        self,
        X: Any,
        radius: Any,
        sort_results: bool = False,
        return_distance: bool = True,
    ):
        """
        Finds every training point within `radius` of each row of X.

        Args:
            X: Query points, shape (n_queries, n_features).
            radius: A positive scalar, or one positive radius per query row.
            sort_results: Sort each row by ascending distance (needs distances).
            return_distance: If False, only indices are computed.

        Returns:
            A ragged Neighborhood: object arrays holding one 1D array per query.
        """
        return _query.query_radius(
            self, X, radius, sort_results=sort_results, return_distance=return_distance
        )

    def kernel_density(
        self,
        X: Any,
        bandwidth: float,
        kernel: str = 'gaussian',
        atol: float = 0.0,
        rtol: float = 1e-8,
        breadth_first: bool = True,
        return_log: bool = False,
    ) -> np.ndarray:
        """Estimates the kernel density of the training data at each row of X."""
        return _query.kernel_density(
            self, X, bandwidth, kernel=kernel, atol=atol, rtol=rtol,
            breadth_first=breadth_first, return_log=return_log,
        )

    def two_point_correlation(self, X: Any, r: Any, dual_tree: bool = False) -> np.ndarray:
        """Counts the (query, training) pairs closer than each radius in `r`."""
        return _query.two_point_correlation(self, X, r, dual_tree=dual_tree)


class KDTree(SpatialTree):
    """KD-tree: axis-aligned boxes, valid for the Minkowski family of metrics."""

    bounds_type = KDNodeBounds
    VALID_METRICS = frozenset({'euclidean', 'manhattan', 'chebyshev', 'minkowski'})


class BallTree(SpatialTree):
    """Ball-tree: centroid/radius spheres, valid for any true distance metric."""

    bounds_type = BallNodeBounds
    VALID_METRICS = frozenset({
        'euclidean', 'manhattan', 'chebyshev', 'minkowski', 'braycurtis', 'haversine',
    })


TREE_TYPES: Dict[str, Type[SpatialTree]] = {
    'KDTree': KDTree,
    'BallTree': BallTree,
}


def get_tree_class(name: Optional[str]) -> Type[SpatialTree]:
    """Maps 'kd_tree' / 'ball_tree' (or class names) to a tree class."""
    key = (name or 'kd_tree').lower()
    if key in ('kd_tree', 'kdtree'):
        return KDTree
    if key in ('ball_tree', 'balltree'):
        return BallTree
    raise ConfigurationError(f"Unknown tree type '{name}'. Must be 'kd_tree' or 'ball_tree'")


__all__ = [
    'SpatialTree',
    'KDTree',
    'BallTree',
    'NODE_DATA_DTYPE',
    'TREE_TYPES',
    'find_node_split_dim',
    'partition_node_indices',
    'get_tree_class',
]
