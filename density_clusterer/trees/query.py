# density_clusterer/trees/query.py
"""
Traversal algorithms shared by every SpatialTree.

The functions here implement the four query families of the trees using only
the node bounds interface (`min_rdist`, `min_max_dist`, `min_rdist_dual`, ...),
so the same code serves the KD-tree and the Ball-tree:

    - k-nearest neighbours, single-tree (depth-first, nearest child first)
      and dual-tree (a second tree built on the queries, per-query-node bounds)
    - radius neighbours, with whole-node acceptance when a node is provably
      inside the radius
    - kernel density estimation, breadth-first (a NodeHeap ordered by lower
      distance bound) or depth-first, resolving nodes once their density
      bounds are within tolerance
    - two-point correlation counts, single- and dual-tree

Pruning always compares reduced distances; results are converted back to true
distances once, at the end of a query.

Public API:
    - Neighborhood: Result value of k-NN and radius queries.
    - query_knn, query_radius, kernel_density, two_point_correlation
"""

import logging
import math
from typing import Any, Iterator, List, Optional

import numpy as np

from ..exceptions import ConfigurationError
from ..heaps import NeighborsHeap, NodeHeap, NodeHeapData
from ..utils.validation import check_dimensions, check_positive, validate_matrix
from .kernels import (
    log_kernel,
    log_kernel_array,
    log_kernel_norm,
    logaddexp,
    logsubexp,
    validate_kernel,
)

# Set up a logger for this module.
logger = logging.getLogger(__name__)

LOG_2 = math.log(2.0)

# Relative slack on node lower bounds; a ball bound can overshoot a boundary point by an ulp.
_BOUND_RTOL = 1e-12


class Neighborhood:
    """
    Result of a neighbour query.

    For k-NN queries `distances` and `indices` are (n_queries, k) arrays. For
    radius queries they are object arrays holding one 1D array per query
    (`shape_is_ragged` is True). `distances` is None when distances were not
    requested. A Neighborhood unpacks as `(distances, indices)`.
    """

    def __init__(self, distances: Optional[np.ndarray], indices: np.ndarray):
        self.distances = distances
        self.indices = indices

    @property
    def shape_is_ragged(self) -> bool:
        return self.indices.dtype == object

    @property
    def counts(self) -> np.ndarray:
        """Number of neighbours found for each query."""
        if self.shape_is_ragged:
            return np.array([len(row) for row in self.indices], dtype=np.intp)
        return np.full(self.indices.shape[0], self.indices.shape[1], dtype=np.intp)

    def __iter__(self) -> Iterator[np.ndarray]:
        yield self.distances
        yield self.indices

    def __len__(self) -> int:
        return self.indices.shape[0]

    def __repr__(self) -> str:
        kind = 'ragged' if self.shape_is_ragged else f'k={self.indices.shape[1]}'
        return f'Neighborhood(n_queries={len(self)}, {kind})'


def _as_object_array(rows: List[np.ndarray]) -> np.ndarray:
    out = np.empty(len(rows), dtype=object)
    for i, row in enumerate(rows):
        out[i] = row
    return out


def _prepare_queries(tree, X: Any) -> np.ndarray:
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        X = X.reshape(1, -1)
    X = validate_matrix(X, allow_empty=True)
    check_dimensions(tree.n_features, X)
    return X


def _logsumexp(values: np.ndarray) -> float:
    if values.size == 0:
        return -math.inf
    vmax = float(values.max())
    if vmax == -math.inf:
        return -math.inf
    return vmax + math.log(float(np.exp(values - vmax).sum()))


# ======================================================================================
# k-nearest neighbours
# ======================================================================================


def query_knn(tree, X: Any, k: int = 1, dual_tree: bool = False, sort_results: bool = True) -> Neighborhood:
    X = _prepare_queries(tree, X)
    if k is None or int(k) != k or not 1 <= k <= tree.n_samples:
        raise ConfigurationError(
            f'k must satisfy 1 <= k <= n_samples ({tree.n_samples:,}), got {k}'
        )
    k = int(k)

    heap = NeighborsHeap(X.shape[0], k)
    if X.shape[0] > 0:
        if dual_tree:
            other = type(tree)(X, leaf_size=tree.leaf_size, metric=tree.metric)
            bounds = np.full(other.n_nodes, np.inf)
            reduced_dist_lb = tree.bounds.min_rdist_dual(tree, 0, other, 0)
            _knn_dual(tree, 0, other, 0, bounds, heap, reduced_dist_lb)
        else:
            for i in range(X.shape[0]):
                pt = X[i]
                reduced_dist_lb = tree.bounds.min_rdist(tree, 0, pt)
                _knn_single(tree, 0, pt, i, heap, reduced_dist_lb)

    distances, indices = heap.get_arrays(sort=sort_results)
    distances = tree.metric.partial_to_distance(distances)
    return Neighborhood(np.asarray(distances, dtype=np.float64), indices)


def _knn_single(tree, i_node: int, pt: np.ndarray, i_pt: int, heap: NeighborsHeap, reduced_dist_lb: float) -> None:
    if reduced_dist_lb > heap.largest(i_pt):
        tree.n_trims += 1
    elif tree.node_is_leaf[i_node]:
        tree.n_leaves += 1
        idx = tree.node_points(i_node)
        if idx.size == 0:
            return
        tree.n_calls += idx.size
        heap.push_many(i_pt, tree.metric.partial_to_point(tree.data[idx], pt), idx)
    else:
        tree.n_splits += 1
        i1 = 2 * i_node + 1
        i2 = i1 + 1
        lb1 = tree.bounds.min_rdist(tree, i1, pt)
        lb2 = tree.bounds.min_rdist(tree, i2, pt)
        if lb1 <= lb2:
            _knn_single(tree, i1, pt, i_pt, heap, lb1)
            _knn_single(tree, i2, pt, i_pt, heap, lb2)
        else:
            _knn_single(tree, i2, pt, i_pt, heap, lb2)
            _knn_single(tree, i1, pt, i_pt, heap, lb1)


def _knn_dual(tree, i_node1: int, other, i_node2: int, bounds: np.ndarray, heap: NeighborsHeap, reduced_dist_lb: float) -> None:
    """
    Dual-tree k-NN. `bounds[i]` is the largest heap bound of any query in node i
    of `other`; a node pair is pruned when its lower bound exceeds it.
    """
    if reduced_dist_lb > bounds[i_node2]:
        tree.n_trims += 1
        return

    leaf1 = tree.node_is_leaf[i_node1]
    leaf2 = other.node_is_leaf[i_node2]

    if leaf1 and leaf2:
        tree.n_leaves += 1
        idx1 = tree.node_points(i_node1)
        points1 = tree.data[idx1]
        node_bound = 0.0
        for i_pt in other.node_points(i_node2):
            if idx1.size and heap.largest(i_pt) > reduced_dist_lb:
                tree.n_calls += idx1.size
                heap.push_many(i_pt, tree.metric.partial_to_point(points1, other.data[i_pt]), idx1)
            node_bound = max(node_bound, heap.largest(i_pt))
        bounds[i_node2] = node_bound

        # Tighten the bounds of the ancestors of the query node
        while i_node2 > 0:
            i_parent = (i_node2 - 1) // 2
            bound_max = max(bounds[2 * i_parent + 1], bounds[2 * i_parent + 2])
            if bound_max < bounds[i_parent]:
                bounds[i_parent] = bound_max
                i_node2 = i_parent
            else:
                break

    elif leaf1 or (not leaf2 and other.node_radius[i_node2] > tree.node_radius[i_node1]):
        # Split the query node
        tree.n_splits += 1
        c1 = 2 * i_node2 + 1
        c2 = c1 + 1
        lb1 = tree.bounds.min_rdist_dual(tree, i_node1, other, c1)
        lb2 = tree.bounds.min_rdist_dual(tree, i_node1, other, c2)
        if lb1 < lb2:
            _knn_dual(tree, i_node1, other, c1, bounds, heap, lb1)
            _knn_dual(tree, i_node1, other, c2, bounds, heap, lb2)
        else:
            _knn_dual(tree, i_node1, other, c2, bounds, heap, lb2)
            _knn_dual(tree, i_node1, other, c1, bounds, heap, lb1)

    else:
        # Split the reference node
        tree.n_splits += 1
        c1 = 2 * i_node1 + 1
        c2 = c1 + 1
        lb1 = tree.bounds.min_rdist_dual(tree, c1, other, i_node2)
        lb2 = tree.bounds.min_rdist_dual(tree, c2, other, i_node2)
        if lb1 < lb2:
            _knn_dual(tree, c1, other, i_node2, bounds, heap, lb1)
            _knn_dual(tree, c2, other, i_node2, bounds, heap, lb2)
        else:
            _knn_dual(tree, c2, other, i_node2, bounds, heap, lb2)
            _knn_dual(tree, c1, other, i_node2, bounds, heap, lb1)


# ======================================================================================
# Radius neighbours
# ======================================================================================


def query_radius(
    tree,
    X: Any,
    radius: Any,
    sort_results: bool = False,
    return_distance: bool = True,
) -> Neighborhood:
    X = _prepare_queries(tree, X)
    if sort_results and not return_distance:
        raise ConfigurationError('return_distance must be True when sort_results is True')

    radii = np.asarray(radius, dtype=np.float64)
    if radii.ndim == 0:
        radii = np.full(X.shape[0], float(radii))
    elif radii.shape != (X.shape[0],):
        raise ConfigurationError(
            f'radius must be a scalar or have one value per query row ({X.shape[0]:,}), '
            f'got shape {radii.shape}'
        )
    if radii.size and not (np.all(np.isfinite(radii)) and np.all(radii > 0)):
        raise ConfigurationError('radius must be strictly positive and finite')

    all_indices: List[np.ndarray] = []
    all_distances: List[np.ndarray] = []
    for i in range(X.shape[0]):
        r = float(radii[i])
        idx_parts: List[np.ndarray] = []
        dist_parts: List[np.ndarray] = []
        _radius_single(tree, 0, X[i], r, idx_parts, dist_parts, return_distance)

        indices = np.concatenate(idx_parts) if idx_parts else np.empty(0, dtype=np.intp)
        if return_distance:
            distances = np.concatenate(dist_parts) if dist_parts else np.empty(0, dtype=np.float64)
            if sort_results:
                order = np.argsort(distances, kind='stable')
                indices = indices[order]
                distances = distances[order]
            all_distances.append(distances)
        all_indices.append(indices)

    return Neighborhood(
        _as_object_array(all_distances) if return_distance else None,
        _as_object_array(all_indices),
    )


def _radius_single(tree, i_node, pt, r, idx_parts, dist_parts, return_distance) -> None:
    dist_lb, dist_ub = tree.bounds.min_max_dist(tree, i_node, pt)

    if dist_lb > r * (1.0 + _BOUND_RTOL):
        tree.n_trims += 1
    elif dist_ub <= r:
        # Every point of the node is inside the radius
        idx = tree.node_points(i_node)
        idx_parts.append(idx)
        if return_distance:
            tree.n_calls += idx.size
            dist_parts.append(tree.metric.distance_to_point(tree.data[idx], pt))
    elif tree.node_is_leaf[i_node]:
        tree.n_leaves += 1
        idx = tree.node_points(i_node)
        tree.n_calls += idx.size
        # Compare true distances so points exactly at r survive the reduced round trip
        distances = tree.metric.partial_to_distance(tree.metric.partial_to_point(tree.data[idx], pt))
        mask = distances <= r
        idx_parts.append(idx[mask])
        if return_distance:
            dist_parts.append(distances[mask])
    else:
        tree.n_splits += 1
        _radius_single(tree, 2 * i_node + 1, pt, r, idx_parts, dist_parts, return_distance)
        _radius_single(tree, 2 * i_node + 2, pt, r, idx_parts, dist_parts, return_distance)


# ======================================================================================
# Kernel density estimation
# ======================================================================================


def kernel_density(
    tree,
    X: Any,
    bandwidth: float,
    kernel: str = 'gaussian',
    atol: float = 0.0,
    rtol: float = 1e-8,
    breadth_first: bool = True,
    return_log: bool = False,
) -> np.ndarray:
    """
    Sum of kernel contributions of every training point at each query point.

    The result is normalised by the kernel's volume but not by the number of
    training points. Each estimate is within `atol + rtol * density` of the
    exact sum.

    Raises:
        ConfigurationError: On an unknown kernel, a non-positive bandwidth or
            negative tolerances.
    """
    kernel = validate_kernel(kernel)
    check_positive('bandwidth', bandwidth)
    check_positive('atol', atol, allow_zero=True)
    check_positive('rtol', rtol, allow_zero=True)
    X = _prepare_queries(tree, X)

    h = float(bandwidth)
    log_atol = math.log(atol) if atol > 0 else -math.inf
    log_rtol = math.log(rtol) if rtol > 0 else -math.inf
    log_knorm = log_kernel_norm(h, tree.n_features, kernel)

    log_density = np.empty(X.shape[0], dtype=np.float64)
    if breadth_first:
        nodeheap = NodeHeap(size_guess=tree.n_levels + 1)
        node_log_min_bounds = np.full(tree.n_nodes, -np.inf)
        node_log_bound_spreads = np.full(tree.n_nodes, -np.inf)
        for i in range(X.shape[0]):
            log_density[i] = _kde_breadth_first(
                tree, X[i], kernel, h, log_knorm, log_atol, log_rtol,
                nodeheap, node_log_min_bounds, node_log_bound_spreads,
            )
    else:
        log_n = math.log(tree.n_samples)
        for i in range(X.shape[0]):
            pt = X[i]
            dist_lb, dist_ub = tree.bounds.min_max_dist(tree, 0, pt)
            log_min_bound = log_n + log_kernel(dist_ub, h, kernel)
            log_max_bound = log_n + log_kernel(dist_lb, h, kernel)
            state = [log_min_bound, logsubexp(log_max_bound, log_min_bound)]
            _kde_depth_first(
                tree, 0, pt, kernel, h, log_knorm, log_atol, log_rtol,
                state[0], state[1], state,
            )
            log_density[i] = logaddexp(state[0], state[1] - LOG_2)

    log_density += log_knorm
    if return_log:
        return log_density
    return np.exp(log_density)


def _tolerance_met(log_knorm, log_spread, log_min, log_atol, log_rtol) -> bool:
    return log_knorm + log_spread <= logaddexp(log_atol, log_rtol + log_knorm + log_min)


def _leaf_log_density(tree, i_node: int, pt: np.ndarray, h: float, kernel: str) -> float:
    idx = tree.node_points(i_node)
    tree.n_calls += idx.size
    dists = tree.metric.distance_to_point(tree.data[idx], pt)
    return _logsumexp(log_kernel_array(dists, h, kernel))


def _child_bounds(tree, i_node: int, pt, h: float, kernel: str):
    n_node = tree.node_count(i_node)
    log_n_node = math.log(n_node) if n_node else -math.inf
    dist_lb, dist_ub = tree.bounds.min_max_dist(tree, i_node, pt)
    log_min = log_n_node + log_kernel(dist_ub, h, kernel)
    log_max = log_n_node + log_kernel(dist_lb, h, kernel)
    return dist_lb, log_min, logsubexp(log_max, log_min)


def _kde_breadth_first(
    tree, pt, kernel, h, log_knorm, log_atol, log_rtol,
    nodeheap: NodeHeap, node_log_min_bounds: np.ndarray, node_log_bound_spreads: np.ndarray,
) -> float:
    log_n = math.log(tree.n_samples)
    nodeheap.clear()

    dist_lb, global_log_min, global_log_spread = _child_bounds(tree, 0, pt, h, kernel)
    node_log_min_bounds[0] = global_log_min
    node_log_bound_spreads[0] = global_log_spread
    nodeheap.push(NodeHeapData(dist_lb, 0, 0))

    while len(nodeheap):
        i_node = nodeheap.pop().i1
        n_node = max(tree.node_count(i_node), 1)

        # The node's own bounds are tight enough for its share of the points
        if _tolerance_met(
            log_knorm, node_log_bound_spreads[i_node] - math.log(n_node) + log_n,
            node_log_min_bounds[i_node], log_atol, log_rtol,
        ):
            continue

        # The whole estimate is within tolerance
        if _tolerance_met(log_knorm, global_log_spread, global_log_min, log_atol, log_rtol):
            break

        if tree.node_is_leaf[i_node]:
            tree.n_leaves += 1
            global_log_min = logsubexp(global_log_min, node_log_min_bounds[i_node])
            global_log_spread = logsubexp(global_log_spread, node_log_bound_spreads[i_node])
            global_log_min = logaddexp(global_log_min, _leaf_log_density(tree, i_node, pt, h, kernel))
            continue

        tree.n_splits += 1
        global_log_min = logsubexp(global_log_min, node_log_min_bounds[i_node])
        global_log_spread = logsubexp(global_log_spread, node_log_bound_spreads[i_node])
        for i_child in (2 * i_node + 1, 2 * i_node + 2):
            child_lb, child_min, child_spread = _child_bounds(tree, i_child, pt, h, kernel)
            node_log_min_bounds[i_child] = child_min
            node_log_bound_spreads[i_child] = child_spread
            global_log_min = logaddexp(global_log_min, child_min)
            global_log_spread = logaddexp(global_log_spread, child_spread)
            nodeheap.push(NodeHeapData(child_lb, i_child, 0))

    nodeheap.clear()
    return logaddexp(global_log_min, global_log_spread - LOG_2)


def _kde_depth_first(
    tree, i_node, pt, kernel, h, log_knorm, log_atol, log_rtol,
    local_log_min, local_log_spread, state: List[float],
) -> None:
    """`state` holds the running [global_log_min, global_log_spread] pair."""
    log_n = math.log(tree.n_samples)
    n_node = max(tree.node_count(i_node), 1)

    if _tolerance_met(log_knorm, local_log_spread - math.log(n_node) + log_n, local_log_min, log_atol, log_rtol):
        return
    if _tolerance_met(log_knorm, state[1], state[0], log_atol, log_rtol):
        return

    state[0] = logsubexp(state[0], local_log_min)
    state[1] = logsubexp(state[1], local_log_spread)

    if tree.node_is_leaf[i_node]:
        tree.n_leaves += 1
        state[0] = logaddexp(state[0], _leaf_log_density(tree, i_node, pt, h, kernel))
        return

    tree.n_splits += 1
    i1 = 2 * i_node + 1
    i2 = i1 + 1
    _, min1, spread1 = _child_bounds(tree, i1, pt, h, kernel)
    _, min2, spread2 = _child_bounds(tree, i2, pt, h, kernel)
    state[0] = logaddexp(logaddexp(state[0], min1), min2)
    state[1] = logaddexp(logaddexp(state[1], spread1), spread2)

    _kde_depth_first(tree, i1, pt, kernel, h, log_knorm, log_atol, log_rtol, min1, spread1, state)
    _kde_depth_first(tree, i2, pt, kernel, h, log_knorm, log_atol, log_rtol, min2, spread2, state)


# ======================================================================================
# Two-point correlation
# ======================================================================================


def two_point_correlation(tree, X: Any, r: Any, dual_tree: bool = False) -> np.ndarray:
    """
    Counts, for each radius in `r`, the (query, training) pairs within it.

    Counts are cumulative: `result[j]` is the number of pairs with distance
    <= r[j]. Radii are sorted internally and the result follows the input order.
    """
    X = _prepare_queries(tree, X)
    r = np.atleast_1d(np.asarray(r, dtype=np.float64)).ravel()
    if r.size == 0:
        return np.zeros(0, dtype=np.intp)

    order = np.argsort(r, kind='stable')
    r_sorted = r[order]
    counts = np.zeros(r.size, dtype=np.intp)

    if X.shape[0] > 0:
        if dual_tree:
            other = type(tree)(X, leaf_size=tree.leaf_size, metric=tree.metric)
            _two_point_dual(tree, 0, other, 0, r_sorted, counts, 0, r.size)
        else:
            for i in range(X.shape[0]):
                _two_point_single(tree, 0, X[i], r_sorted, counts, 0, r.size)

    result = np.empty_like(counts)
    result[order] = counts
    return result


def _two_point_single(tree, i_node, pt, r, counts, i_min, i_max) -> None:
    dist_lb, dist_ub = tree.bounds.min_max_dist(tree, i_node, pt)
    n_node = tree.node_count(i_node)

    while i_min < i_max and dist_lb > r[i_min]:
        i_min += 1
    while i_max > i_min and dist_ub <= r[i_max - 1]:
        counts[i_max - 1] += n_node
        i_max -= 1
    if i_min >= i_max:
        return

    if tree.node_is_leaf[i_node]:
        idx = tree.node_points(i_node)
        tree.n_calls += idx.size
        dists = tree.metric.distance_to_point(tree.data[idx], pt)
        counts[i_min:i_max] += (dists[:, np.newaxis] <= r[np.newaxis, i_min:i_max]).sum(axis=0)
    else:
        _two_point_single(tree, 2 * i_node + 1, pt, r, counts, i_min, i_max)
        _two_point_single(tree, 2 * i_node + 2, pt, r, counts, i_min, i_max)


def _two_point_dual(tree, i_node1, other, i_node2, r, counts, i_min, i_max) -> None:
    dist_lb = tree.bounds.min_dist_dual(tree, i_node1, other, i_node2)
    dist_ub = tree.bounds.max_dist_dual(tree, i_node1, other, i_node2)
    n_pairs = tree.node_count(i_node1) * other.node_count(i_node2)

    while i_min < i_max and dist_lb > r[i_min]:
        i_min += 1
    while i_max > i_min and dist_ub <= r[i_max - 1]:
        counts[i_max - 1] += n_pairs
        i_max -= 1
    if i_min >= i_max:
        return

    leaf1 = tree.node_is_leaf[i_node1]
    leaf2 = other.node_is_leaf[i_node2]
    if leaf1 and leaf2:
        points1 = tree.data[tree.node_points(i_node1)]
        for i_pt in other.node_points(i_node2):
            tree.n_calls += points1.shape[0]
            dists = tree.metric.distance_to_point(points1, other.data[i_pt])
            counts[i_min:i_max] += (dists[:, np.newaxis] <= r[np.newaxis, i_min:i_max]).sum(axis=0)
    elif leaf1:
        for c in (2 * i_node2 + 1, 2 * i_node2 + 2):
            _two_point_dual(tree, i_node1, other, c, r, counts, i_min, i_max)
    elif leaf2:
        for c in (2 * i_node1 + 1, 2 * i_node1 + 2):
            _two_point_dual(tree, c, other, i_node2, r, counts, i_min, i_max)
    else:
        for c1 in (2 * i_node1 + 1, 2 * i_node1 + 2):
            for c2 in (2 * i_node2 + 1, 2 * i_node2 + 2):
                _two_point_dual(tree, c1, other, c2, r, counts, i_min, i_max)


__all__ = [
    'Neighborhood',
    'query_knn',
    'query_radius',
    'kernel_density',
    'two_point_correlation',
]
