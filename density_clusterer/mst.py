# density_clusterer/mst.py
"""
Minimum Spanning Tree Construction over Mutual-Reachability Distances.

HDBSCAN's hierarchy is the single-linkage dendrogram of the mutual-reachability
graph, whose edge weights are

    mr(a, b) = max(d(a, b) / alpha, core(a), core(b))

where `core(x)` is the distance from `x` to its `min_points`-th nearest
neighbour (counting `x` itself as the first). This module provides three
interchangeable ways to compute the minimum spanning tree of that graph:

1.  **Dense generic** (`mutual_reachability` + `mst_linkage_core`): Materialise
    the full m x m mutual-reachability matrix, then run Prim's algorithm on it.
    Accepts any metric, including similarities, at O(m^2) memory.
2.  **Tree-pruned Prim** (`mst_linkage_core_vector`): Prim's algorithm on the
    raw data with core distances from a spatial tree. Each step only re-scores
    the vertices whose current best edge could still improve.
3.  **Dual-tree Boruvka** (`BoruvkaAlgorithm`): Repeated dual-tree traversals
    that find every component's cheapest outgoing edge at once, merging
    components through a `TreeUnionFind` until one remains.

All builders return an (m - 1, 3) float array of `[from, to, weight]` rows and
produce spanning trees of the same total weight.
"""

import logging
from typing import Optional

import numpy as np

from .exceptions import IllegalClusterStateError
from .metrics import DistanceMetric, get_metric
from .trees.spatial_tree import BallTree, KDTree, SpatialTree
from .union_find import TreeUnionFind

# Set up a logger for this module.
logger = logging.getLogger(__name__)


# ======================================================================================
# Dense generic path
# ======================================================================================


def mutual_reachability(distance_matrix: np.ndarray, min_points: int = 5, alpha: float = 1.0) -> np.ndarray:
    """
    Computes the mutual-reachability distance matrix.

    The core distance of each point is its `min(m - 1, min_points)`-th smallest
    distance (the zero self-distance is entry 0).

    Args:
        distance_matrix: A square (m, m) distance matrix.
        min_points: Neighbourhood size defining core distances.
        alpha: Distance scaling; raw distances are divided by alpha.

    Returns:
        The (m, m) mutual-reachability matrix.

    Example:
        >>> mutual_reachability(np.array([[1., 2, 3], [4, 5, 6], [7, 8, 9]]), 3)
        array([[7., 8., 9.],
               [8., 8., 9.],
               [9., 9., 9.]])
    """
    distance_matrix = np.asarray(distance_matrix, dtype=np.float64)
    size = distance_matrix.shape[0]
    min_points = min(size - 1, min_points)

    core_distances = np.sort(distance_matrix, axis=0)[min_points]

    if alpha != 1.0:
        distance_matrix = distance_matrix / alpha

    stage1 = np.maximum(distance_matrix, core_distances[np.newaxis, :])
    return np.maximum(stage1, core_distances[:, np.newaxis])


def core_distances_from_matrix(distance_matrix: np.ndarray, min_points: int) -> np.ndarray:
    """The core distance column used by `mutual_reachability`."""
    size = distance_matrix.shape[0]
    return np.sort(distance_matrix, axis=0)[min(size - 1, min_points)]


def mst_linkage_core(distance_matrix: np.ndarray) -> np.ndarray:
    """
    Prim's algorithm over a dense (mutual-reachability) matrix.

    Starting from vertex 0, keeps the cheapest known edge to every unvisited
    vertex and repeatedly moves to the closest one.

    Returns:
        An (m - 1, 3) array of [from, to, weight] rows, in visiting order.
    """
    distance_matrix = np.asarray(distance_matrix, dtype=np.float64)
    n = distance_matrix.shape[0]
    result = np.zeros((max(n - 1, 0), 3), dtype=np.float64)

    current_labels = np.arange(n, dtype=np.intp)
    current_distances = np.full(n, np.inf)
    current_node = 0

    for i in range(1, n):
        label_filter = current_labels != current_node
        current_labels = current_labels[label_filter]
        left = current_distances[label_filter]
        right = distance_matrix[current_node][current_labels]
        current_distances = np.where(left < right, left, right)

        new_node_index = int(np.argmin(current_distances))
        new_node = int(current_labels[new_node_index])
        result[i - 1] = (current_node, new_node, current_distances[new_node_index])
        current_node = new_node

    return result


# ======================================================================================
# Tree-pruned Prim
# ======================================================================================


def mst_linkage_core_vector(
    raw_data: np.ndarray,
    core_distances: np.ndarray,
    dist_metric: str | DistanceMetric = 'euclidean',
    alpha: float = 1.0,
) -> np.ndarray:
    """
    Prim's algorithm on raw data using precomputed core distances.

    A vertex `j`'s best edge can only improve through the new vertex when both
    the new vertex's core distance and `core(j)` are below j's current best,
    so distances are computed only for those vertices, in one vectorised pass.

    Args:
        raw_data: The (m, n_features) sample matrix.
        core_distances: Core distance of each point, shape (m,).
        dist_metric: Metric name or instance.
        alpha: Distance scaling.

    Returns:
        An (m - 1, 3) array of [source, target, weight] rows.
    """
    metric = get_metric(dist_metric)
    raw_data = np.asarray(raw_data, dtype=np.float64)
    core_distances = np.asarray(core_distances, dtype=np.float64)
    n = raw_data.shape[0]
    result = np.zeros((max(n - 1, 0), 3), dtype=np.float64)

    in_tree = np.zeros(n, dtype=bool)
    current_distances = np.full(n, np.inf)
    current_sources = np.zeros(n, dtype=np.intp)
    current_node = 0

    for i in range(1, n):
        in_tree[current_node] = True
        current_core = core_distances[current_node]

        candidates = np.flatnonzero(
            ~in_tree
            & (current_distances >= current_core)
            & (current_distances >= core_distances)
        )
        if candidates.size:
            left = metric.distance_to_point(raw_data[candidates], raw_data[current_node])
            if alpha != 1.0:
                left = left / alpha
            mr = np.maximum(np.maximum(left, core_distances[candidates]), current_core)
            improved = mr < current_distances[candidates]
            current_distances[candidates[improved]] = mr[improved]
            current_sources[candidates[improved]] = current_node

        remaining = np.flatnonzero(~in_tree)
        new_node = int(remaining[np.argmin(current_distances[remaining])])
        result[i - 1] = (current_sources[new_node], new_node, current_distances[new_node])
        current_node = new_node

    return result


# ======================================================================================
# Dual-tree Boruvka
# ======================================================================================


class BoruvkaAlgorithm:
    """
    Dual-tree Boruvka MST over mutual-reachability distances.

    The algorithm builds its own tree of the same type as `tree` (leaf size
    `leaf_size`) and keeps, per round:

        - component_of_point / component_of_node: the current component of
          every point, and of every node whose points all share one component
          (negative otherwise)
        - candidate_point / candidate_neighbor / candidate_distance: the
          cheapest outgoing edge found so far for each component
        - bounds: per query node, the largest candidate distance of any of its
          points; node pairs farther apart than that are pruned

    With `approx_min_span_tree=True` node bounds are additionally tightened
    with radius-based estimates, which prunes more but may return a slightly
    heavier tree. Edge weights are true (not reduced) distances.

    Example:
        >>> tree = KDTree(X, leaf_size=40)
        >>> edges = BoruvkaAlgorithm(tree, min_samples=5).spanning_tree()
    """

    INIT_VAL = -1

    def __init__(
        self,
        tree: SpatialTree,
        min_samples: int = 5,
        metric: str | DistanceMetric | None = None,
        leaf_size: int = 20,
        approx_min_span_tree: bool = True,
        alpha: float = 1.0,
    ):
        self.core_dist_tree = tree
        self.metric = tree.metric if metric is None else get_metric(metric)
        self.min_samples = int(min_samples)
        self.leaf_size = max(int(leaf_size), 1)
        self.approx_min_span_tree = approx_min_span_tree
        self.alpha = float(alpha)
        self.is_ball_tree = isinstance(tree, BallTree)

        tree_cls = BallTree if self.is_ball_tree else KDTree
        self.tree = tree_cls(tree.data, leaf_size=self.leaf_size, metric=self.metric)

        self.num_points = self.tree.n_samples
        self.num_nodes = self.tree.n_nodes

        self.components = np.arange(self.num_points, dtype=np.intp)
        self.bounds = np.full(self.num_nodes, np.inf)
        self.component_of_point = np.arange(self.num_points, dtype=np.intp)
        self.component_of_node = -(np.arange(self.num_nodes, dtype=np.intp) + 1)
        self.candidate_neighbor = np.full(self.num_points, self.INIT_VAL, dtype=np.intp)
        self.candidate_point = np.full(self.num_points, self.INIT_VAL, dtype=np.intp)
        self.candidate_distance = np.full(self.num_points, np.inf)
        self.component_union_find = TreeUnionFind(self.num_points)
        self.edges = np.zeros((max(self.num_points - 1, 0), 3), dtype=np.float64)
        self.num_edges = 0
        self._use_heuristic_bounds = approx_min_span_tree

        self.core_distances = self._compute_bounds()

    def _compute_bounds(self) -> np.ndarray:
        """
        Computes core distances and seeds each point's candidate edge from its
        own k-NN list, then merges those edges.

        A neighbour m seeds n only when the edge weighs exactly core(n), the
        lower bound of every edge leaving n. With alpha < 1 the scaled distance
        can exceed core(n); such points are left to the first traversal.
        """
        k = min(self.min_samples + 1, self.num_points)
        knn_dist, knn_indices = self.core_dist_tree.query(self.tree.data, k=k, dual_tree=True)
        core_distances = knn_dist[:, k - 1].copy()

        for n in range(self.num_points):
            for j, m in enumerate(knn_indices[n]):
                if m == n:
                    continue
                if knn_dist[n, j] / self.alpha > core_distances[n]:
                    break
                if core_distances[m] <= core_distances[n]:
                    self.candidate_point[n] = n
                    self.candidate_neighbor[n] = m
                    self.candidate_distance[n] = core_distances[n]
                    break

        self._core = core_distances
        self.update_components()
        self.bounds[:] = np.inf
        return core_distances

    def spanning_tree(self) -> np.ndarray:
        """Runs Boruvka rounds until one component remains; returns the edges."""
        num_components = len(self.components)
        rounds = 0
        while num_components > 1:
            edges_before = self.num_edges
            self._dual_tree_traversal(0, 0)
            num_components = self.update_components()
            rounds += 1

            if self.num_edges == edges_before and num_components > 1:
                if not self._use_heuristic_bounds:
                    raise IllegalClusterStateError(
                        f'Boruvka round {rounds} added no edges with {num_components} components left'
                    )
                logger.debug('Heuristic bounds stalled Boruvka; continuing with exact bounds')
                self._use_heuristic_bounds = False
                self.bounds[:] = np.inf

        logger.debug(f'Boruvka MST completed in {rounds} rounds with {self.num_edges:,} edges')
        return self.edges

    def update_components(self) -> int:
        """
        Adds each component's candidate edge, merges components, and refreshes
        the per-point and per-node component labels.

        Returns:
            The number of components remaining.
        """
        for component in self.components:
            source = self.candidate_point[component]
            sink = self.candidate_neighbor[component]
            if source == self.INIT_VAL or sink == self.INIT_VAL:
                continue

            current_source_component = self.component_union_find.find(source)
            current_sink_component = self.component_union_find.find(sink)
            if current_source_component == current_sink_component:
                # Already joined through another component's edge
                self.candidate_point[component] = self.INIT_VAL
                self.candidate_neighbor[component] = self.INIT_VAL
                self.candidate_distance[component] = np.inf
                continue

            self.edges[self.num_edges] = (source, sink, self.candidate_distance[component])
            self.num_edges += 1
            self.component_union_find.union(source, sink)
            self.candidate_distance[component] = np.inf

            if self.num_edges == self.num_points - 1:
                self.components = self.component_union_find.components()
                return len(self.components)

        for n in range(self.num_points):
            self.component_of_point[n] = self.component_union_find.find(n)

        for n in range(self.num_nodes - 1, -1, -1):
            if self.tree.node_is_leaf[n]:
                points = self.tree.node_points(n)
                if points.size == 0:
                    continue
                node_components = self.component_of_point[points]
                if np.all(node_components == node_components[0]):
                    self.component_of_node[n] = node_components[0]
            else:
                child1 = 2 * n + 1
                child2 = 2 * n + 2
                if self.component_of_node[child1] == self.component_of_node[child2]:
                    self.component_of_node[n] = self.component_of_node[child1]

        last_num_components = len(self.components)
        self.components = self.component_union_find.components()
        if not self.approx_min_span_tree or len(self.components) == last_num_components:
            self.bounds[:] = np.inf

        return len(self.components)

    def _node_distance(self, node1: int, node2: int) -> float:
        dist = self.tree.bounds.min_dist_dual(self.tree, node1, self.tree, node2)
        return dist / self.alpha if self.alpha != 1.0 else dist

    def _dual_tree_traversal(self, node1: int, node2: int) -> None:
        node_dist = self._node_distance(node1, node2)
        if node_dist >= self.bounds[node1]:
            return
        if self.component_of_node[node1] == self.component_of_node[node2] and self.component_of_node[node1] >= 0:
            return

        tree = self.tree
        leaf1 = tree.node_is_leaf[node1]
        leaf2 = tree.node_is_leaf[node2]

        if leaf1 and leaf2:
            self._scan_leaf_pair(node1, node2)
        elif leaf1 or (not leaf2 and tree.node_radius[node2] > tree.node_radius[node1]):
            left = 2 * node2 + 1
            right = left + 1
            if self._node_distance(node1, left) < self._node_distance(node1, right):
                self._dual_tree_traversal(node1, left)
                self._dual_tree_traversal(node1, right)
            else:
                self._dual_tree_traversal(node1, right)
                self._dual_tree_traversal(node1, left)
        else:
            left = 2 * node1 + 1
            right = left + 1
            if self._node_distance(left, node2) < self._node_distance(right, node2):
                self._dual_tree_traversal(left, node2)
                self._dual_tree_traversal(right, node2)
            else:
                self._dual_tree_traversal(right, node2)
                self._dual_tree_traversal(left, node2)

    def _scan_leaf_pair(self, node1: int, node2: int) -> None:
        tree = self.tree
        points1 = tree.node_points(node1)
        points2 = tree.node_points(node2)
        if points1.size == 0 or points2.size == 0:
            return

        core = self._core
        core2 = core[points2]
        components2 = self.component_of_point[points2]
        data2 = tree.data[points2]

        new_upper_bound = 0.0
        new_lower_bound = np.inf
        for p in points1:
            component1 = self.component_of_point[p]
            if core[p] <= self.candidate_distance[component1]:
                valid = (components2 != component1) & (core2 <= self.candidate_distance[component1])
                if valid.any():
                    tree.n_calls += int(valid.sum())
                    d = self.metric.distance_to_point(data2[valid], tree.data[p])
                    if self.alpha != 1.0:
                        d = d / self.alpha
                    mr = np.maximum(d, np.maximum(core[p], core2[valid]))
                    j = int(np.argmin(mr))
                    if mr[j] < self.candidate_distance[component1]:
                        self.candidate_distance[component1] = mr[j]
                        self.candidate_neighbor[component1] = points2[valid][j]
                        self.candidate_point[component1] = p

            new_upper_bound = max(new_upper_bound, self.candidate_distance[component1])
            new_lower_bound = min(new_lower_bound, self.candidate_distance[component1])

        if self._use_heuristic_bounds:
            new_bound = min(new_upper_bound, new_lower_bound + 2 * tree.node_radius[node1])
        else:
            new_bound = new_upper_bound

        if new_bound < self.bounds[node1]:
            self.bounds[node1] = new_bound
            self._propagate_bounds(node1)

    def _propagate_bounds(self, node: int) -> None:
        radius = self.tree.node_radius
        while node > 0:
            parent = (node - 1) // 2
            left = 2 * parent + 1
            right = left + 1

            new_bound = max(self.bounds[left], self.bounds[right])
            if self.is_ball_tree and self._use_heuristic_bounds:
                bound_min = min(
                    self.bounds[left] + 2 * (radius[parent] - radius[left]),
                    self.bounds[right] + 2 * (radius[parent] - radius[right]),
                )
                if bound_min > 0:
                    new_bound = min(new_bound, bound_min)

            if new_bound < self.bounds[parent]:
                self.bounds[parent] = new_bound
                node = parent
            else:
                break


__all__ = [
    'mutual_reachability',
    'core_distances_from_matrix',
    'mst_linkage_core',
    'mst_linkage_core_vector',
    'BoruvkaAlgorithm',
]
