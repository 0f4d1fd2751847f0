# density_clusterer/trees/bounds.py
"""
Node bounding-volume capabilities for the spatial trees.

A `SpatialTree` owns one of these objects and delegates every geometric question
to it: how to compute a node's bounding volume at build time, and how to bound
the distance between a query point (or another node) and every point a node can
contain. The traversal algorithms in `query.py` are written purely against this
interface, so the KD-tree and the Ball-tree share all of their search code.

Two implementations are provided:

- `KDNodeBounds`: axis-aligned bounding boxes, stored as an array of shape
  (2, n_nodes, n_features) holding the lower and upper corners. Bounds are
  computed per dimension and combined with the metric's Minkowski exponent `p`,
  so they are only valid for the Minkowski family (Euclidean, Manhattan,
  Chebyshev, general Minkowski).
- `BallNodeBounds`: hyperspheres, stored as centroids in an array of shape
  (1, n_nodes, n_features) plus the per-node radius kept in the node data. Bounds
  follow from the triangle inequality, so any true metric works.

All lower bounds are admissible (never larger than the true minimum distance),
and all upper bounds never fall below the true maximum.
"""

import logging
from typing import Tuple

import numpy as np

# Set up a logger for this module.
logger = logging.getLogger(__name__)


def _reduce_axis_distances(d: np.ndarray, p: float) -> float:
    """Combines per-dimension distances into a reduced Minkowski distance."""
    if np.isinf(p):
        return float(d.max()) if d.size else 0.0
    if p == 2.0:
        return float(np.dot(d, d))
    if p == 1.0:
        return float(d.sum())
    return float(np.power(d, p).sum())


class KDNodeBounds:
    """Axis-aligned bounding boxes for KD-trees."""

    n_bound_arrays = 2

    def allocate(self, n_nodes: int, n_features: int) -> np.ndarray:
        return np.zeros((2, n_nodes, n_features), dtype=np.float64)

    def init_node(self, tree, i_node: int, idx_start: int, idx_end: int) -> float:
        """
        Computes the bounding box of a node and returns its radius.

        The radius is half the Minkowski length of the box diagonal.
        """
        points = tree.data[tree.idx_array[idx_start:idx_end]]
        lower = points.min(axis=0)
        upper = points.max(axis=0)
        tree.node_bounds[0, i_node] = lower
        tree.node_bounds[1, i_node] = upper

        half_span = 0.5 * np.abs(upper - lower)
        p = tree.metric.p
        if np.isinf(p):
            return float(half_span.max())
        return float(np.power(np.power(half_span, p).sum(), 1.0 / p))

    # --- Point-to-node bounds ------------------------------------------------

    def min_rdist(self, tree, i_node: int, pt: np.ndarray) -> float:
        d_lo = tree.node_bounds[0, i_node] - pt
        d_hi = pt - tree.node_bounds[1, i_node]
        # Each term is 2*d when the point lies outside the box on that axis, else 0
        d = (d_lo + np.abs(d_lo)) + (d_hi + np.abs(d_hi))
        return _reduce_axis_distances(0.5 * d, tree.metric.p)

    def max_rdist(self, tree, i_node: int, pt: np.ndarray) -> float:
        d_lo = np.abs(pt - tree.node_bounds[0, i_node])
        d_hi = np.abs(pt - tree.node_bounds[1, i_node])
        return _reduce_axis_distances(np.maximum(d_lo, d_hi), tree.metric.p)

    def min_dist(self, tree, i_node: int, pt: np.ndarray) -> float:
        return float(tree.metric.partial_to_distance(self.min_rdist(tree, i_node, pt)))

    def max_dist(self, tree, i_node: int, pt: np.ndarray) -> float:
        return float(tree.metric.partial_to_distance(self.max_rdist(tree, i_node, pt)))

    def min_max_dist(self, tree, i_node: int, pt: np.ndarray) -> Tuple[float, float]:
        return self.min_dist(tree, i_node, pt), self.max_dist(tree, i_node, pt)

    # --- Node-to-node bounds -------------------------------------------------

    def min_rdist_dual(self, tree1, i_node1: int, tree2, i_node2: int) -> float:
        d1 = tree1.node_bounds[0, i_node1] - tree2.node_bounds[1, i_node2]
        d2 = tree2.node_bounds[0, i_node2] - tree1.node_bounds[1, i_node1]
        d = (d1 + np.abs(d1)) + (d2 + np.abs(d2))
        return _reduce_axis_distances(0.5 * d, tree1.metric.p)

    def max_rdist_dual(self, tree1, i_node1: int, tree2, i_node2: int) -> float:
        d1 = np.abs(tree1.node_bounds[0, i_node1] - tree2.node_bounds[1, i_node2])
        d2 = np.abs(tree1.node_bounds[1, i_node1] - tree2.node_bounds[0, i_node2])
        return _reduce_axis_distances(np.maximum(d1, d2), tree1.metric.p)

    def min_dist_dual(self, tree1, i_node1: int, tree2, i_node2: int) -> float:
        return float(tree1.metric.partial_to_distance(
            self.min_rdist_dual(tree1, i_node1, tree2, i_node2)))

    def max_dist_dual(self, tree1, i_node1: int, tree2, i_node2: int) -> float:
        return float(tree1.metric.partial_to_distance(
            self.max_rdist_dual(tree1, i_node1, tree2, i_node2)))


class BallNodeBounds:
    """Centroid + radius bounding spheres for Ball-trees."""

    n_bound_arrays = 1

    def allocate(self, n_nodes: int, n_features: int) -> np.ndarray:
        return np.zeros((1, n_nodes, n_features), dtype=np.float64)

    def init_node(self, tree, i_node: int, idx_start: int, idx_end: int) -> float:
        """Stores the node centroid and returns the farthest member distance."""
        points = tree.data[tree.idx_array[idx_start:idx_end]]
        centroid = points.mean(axis=0)
        tree.node_bounds[0, i_node] = centroid
        return float(tree.metric.distance_to_point(points, centroid).max())

    def _center_dist(self, tree, i_node: int, pt: np.ndarray) -> float:
        tree.n_calls += 1
        return tree.metric.distance(pt, tree.node_bounds[0, i_node])

    # --- Point-to-node bounds ------------------------------------------------

    def min_dist(self, tree, i_node: int, pt: np.ndarray) -> float:
        return max(0.0, self._center_dist(tree, i_node, pt) - tree.node_radius[i_node])

    def max_dist(self, tree, i_node: int, pt: np.ndarray) -> float:
        return self._center_dist(tree, i_node, pt) + tree.node_radius[i_node]

    def min_rdist(self, tree, i_node: int, pt: np.ndarray) -> float:
        return float(tree.metric.distance_to_partial(self.min_dist(tree, i_node, pt)))

    def max_rdist(self, tree, i_node: int, pt: np.ndarray) -> float:
        return float(tree.metric.distance_to_partial(self.max_dist(tree, i_node, pt)))

    def min_max_dist(self, tree, i_node: int, pt: np.ndarray) -> Tuple[float, float]:
        dist_pt = self._center_dist(tree, i_node, pt)
        rad = tree.node_radius[i_node]
        return max(0.0, dist_pt - rad), dist_pt + rad

    # --- Node-to-node bounds -------------------------------------------------

    def min_dist_dual(self, tree1, i_node1: int, tree2, i_node2: int) -> float:
        dist_pt = tree1.metric.distance(tree2.node_bounds[0, i_node2], tree1.node_bounds[0, i_node1])
        return max(0.0, dist_pt - tree1.node_radius[i_node1] - tree2.node_radius[i_node2])

    def max_dist_dual(self, tree1, i_node1: int, tree2, i_node2: int) -> float:
        dist_pt = tree1.metric.distance(tree2.node_bounds[0, i_node2], tree1.node_bounds[0, i_node1])
        return dist_pt + tree1.node_radius[i_node1] + tree2.node_radius[i_node2]

    def min_rdist_dual(self, tree1, i_node1: int, tree2, i_node2: int) -> float:
        return float(tree1.metric.distance_to_partial(
            self.min_dist_dual(tree1, i_node1, tree2, i_node2)))

    def max_rdist_dual(self, tree1, i_node1: int, tree2, i_node2: int) -> float:
        return float(tree1.metric.distance_to_partial(
            self.max_dist_dual(tree1, i_node1, tree2, i_node2)))


__all__ = ['KDNodeBounds', 'BallNodeBounds']
