# density_clusterer/linkage.py
"""
From Minimum Spanning Tree to Flat Cluster Labels.

This module turns the mutual-reachability MST into HDBSCAN's final labels in
four steps:

1.  **Single linkage** (`label`): Replay the weight-sorted MST edges through a
    `UnionFind`, producing a scipy-style dendrogram whose rows are
    `[left, right, distance, size]` and whose merge nodes are numbered m, m+1, ...
2.  **Condensing** (`condense_tree`): Walk the dendrogram top-down, keeping a
    split only when both sides have at least `min_cluster_size` points. Smaller
    sides "fall out" of their parent cluster as individual points at
    `lambda = 1 / distance`.
3.  **Stability** (`compute_stability`): For every condensed cluster, sum
    `(lambda_point - lambda_birth) * size` over everything leaving it.
4.  **Selection** (`get_labels`): Excess-of-mass selection, bottom-up: a cluster
    is kept unless its descendants are jointly more stable. Points are then
    resolved to their selected ancestor (`do_labeling`), or to noise (-1).

Condensed trees are NumPy structured arrays with the fields
`parent, child, lambda_val, child_size` (`CONDENSED_DTYPE`).
"""

import logging
from typing import Dict, List, Set, Tuple

import numpy as np

from .exceptions import IllegalClusterStateError
from .union_find import TreeUnionFind, UnionFind
from .utils.labels import NOISE_LABEL

# Set up a logger for this module.
logger = logging.getLogger(__name__)

CONDENSED_DTYPE = np.dtype([
    ('parent', np.intp),
    ('child', np.intp),
    ('lambda_val', np.float64),
    ('child_size', np.intp),
])


# ======================================================================================
# Single-linkage dendrogram
# ======================================================================================


def label(mst: np.ndarray) -> np.ndarray:
    """
    Converts weight-sorted MST edges into a single-linkage dendrogram.

    Args:
        mst: (m - 1, 3) rows of [from, to, weight], sorted ascending by weight.

    Returns:
        (m - 1, 4) rows of [left, right, distance, size].

    Example:
        >>> label(np.array([[0, 2, 0.3], [2, 1, 0.6]]))
        array([[0. , 2. , 0.3, 2. ],
               [3. , 1. , 0.6, 3. ]])
    """
    mst = np.asarray(mst, dtype=np.float64).reshape(-1, 3)
    n_edges = mst.shape[0]
    result = np.zeros((n_edges, 4), dtype=np.float64)
    union_find = UnionFind(n_edges + 1)

    for index in range(n_edges):
        a = int(mst[index, 0])
        b = int(mst[index, 1])
        delta = mst[index, 2]

        aa = union_find.fast_find(a)
        bb = union_find.fast_find(b)

        result[index] = (aa, bb, delta, union_find.size[aa] + union_find.size[bb])
        union_find.union(aa, bb)

    return result


def bfs_from_hierarchy(hierarchy: np.ndarray, bfs_root: int) -> List[int]:
    """Breadth-first list of the dendrogram nodes under `bfs_root` (inclusive)."""
    dim = hierarchy.shape[0]
    num_points = dim + 1

    to_process = [bfs_root]
    result: List[int] = []
    while to_process:
        result.extend(to_process)
        merge_rows = [x - num_points for x in to_process if x >= num_points]
        if merge_rows:
            to_process = hierarchy[merge_rows, :2].ravel().astype(np.intp).tolist()
        else:
            to_process = []
    return result


# ======================================================================================
# Condensing
# ======================================================================================


def condense_tree(hierarchy: np.ndarray, min_cluster_size: int = 10) -> np.ndarray:
    """
    Condenses a single-linkage dendrogram by a minimum cluster size.

    Args:
        hierarchy: (m - 1, 4) dendrogram from `label`.
        min_cluster_size: Smallest split side that still counts as a cluster.

    Returns:
        A CONDENSED_DTYPE structured array, in breadth-first order. The root
        cluster is labelled m; new clusters get m + 1, m + 2, ...
    """
    hierarchy = np.asarray(hierarchy, dtype=np.float64).reshape(-1, 4)
    root = 2 * hierarchy.shape[0]
    num_points = hierarchy.shape[0] + 1
    next_label = num_points + 1

    node_list = bfs_from_hierarchy(hierarchy, root)

    relabel = np.zeros(root + 1, dtype=np.intp)
    relabel[root] = num_points
    ignore = np.zeros(root + 1, dtype=bool)
    result_list: List[Tuple[int, int, float, int]] = []

    def _node_size(node: int) -> int:
        return int(hierarchy[node - num_points, 3]) if node >= num_points else 1

    def _fall_out(parent_label: int, sub_root: int, lambda_value: float) -> None:
        for sub_node in bfs_from_hierarchy(hierarchy, sub_root):
            if sub_node < num_points:
                result_list.append((parent_label, sub_node, lambda_value, 1))
            ignore[sub_node] = True

    for node in node_list:
        if ignore[node] or node < num_points:
            continue

        left, right, distance, _ = hierarchy[node - num_points]
        left = int(left)
        right = int(right)
        lambda_value = 1.0 / distance if distance > 0.0 else np.inf

        left_count = _node_size(left)
        right_count = _node_size(right)

        if left_count >= min_cluster_size and right_count >= min_cluster_size:
            relabel[left] = next_label
            next_label += 1
            result_list.append((relabel[node], relabel[left], lambda_value, left_count))

            relabel[right] = next_label
            next_label += 1
            result_list.append((relabel[node], relabel[right], lambda_value, right_count))

        elif left_count < min_cluster_size and right_count < min_cluster_size:
            _fall_out(relabel[node], left, lambda_value)
            _fall_out(relabel[node], right, lambda_value)

        elif left_count < min_cluster_size:
            relabel[right] = relabel[node]
            _fall_out(relabel[node], left, lambda_value)

        else:
            relabel[left] = relabel[node]
            _fall_out(relabel[node], right, lambda_value)

    return np.array(result_list, dtype=CONDENSED_DTYPE)


# ======================================================================================
# Stability
# ======================================================================================


def compute_stability(condensed_tree: np.ndarray) -> Dict[int, float]:
    """
    Computes the stability of every cluster in a condensed tree.

    A cluster's birth lambda is the smallest lambda at which it appears as a
    child. The root never appears as a child: when its id lies beyond every
    child id its birth is taken as 0, otherwise it has no birth and its
    stability is NaN. The root is never selected, so this does not affect labels.

    Returns:
        {cluster_id: stability}, ordered by cluster id.
    """
    if condensed_tree.shape[0] == 0:
        return {}

    parents = condensed_tree['parent']
    children = condensed_tree['child']
    lambdas = condensed_tree['lambda_val']
    sizes = condensed_tree['child_size']

    births = np.full(int(children.max()) + 1, np.nan)
    np.fmin.at(births, children, lambdas)

    smallest_cluster = int(parents.min())
    largest_cluster = int(parents.max())
    stability = np.zeros(largest_cluster - smallest_cluster + 1, dtype=np.float64)

    parent_births = np.where(
        parents < births.shape[0],
        births[np.minimum(parents, births.shape[0] - 1)],
        0.0,
    )
    # Zero-distance merges give inf - inf here
    with np.errstate(invalid='ignore'):
        contributions = (lambdas - parent_births) * sizes
    np.add.at(stability, parents - smallest_cluster, contributions)

    return {
        cluster: float(stability[cluster - smallest_cluster])
        for cluster in range(smallest_cluster, largest_cluster + 1)
    }


# ======================================================================================
# Cluster selection and labelling
# ======================================================================================


def bfs_from_cluster_tree(cluster_tree: np.ndarray, bfs_root: int) -> List[int]:
    result: List[int] = []
    to_process = np.array([bfs_root], dtype=np.intp)
    while to_process.size > 0:
        result.extend(to_process.tolist())
        to_process = cluster_tree['child'][np.isin(cluster_tree['parent'], to_process)]
    return result


def do_labeling(
    condensed_tree: np.ndarray,
    clusters: Set[int],
    cluster_label_map: Dict[int, int],
) -> np.ndarray:
    """
    Assigns each point the label of its selected ancestor cluster, or -1.

    Rows whose child is not a selected cluster are merged into their parent,
    top-down, so the root of every set is its topmost member.
    """
    if condensed_tree.shape[0] == 0:
        return np.zeros(0, dtype=np.intp)

    parents = condensed_tree['parent']
    children = condensed_tree['child']
    root_cluster = int(parents.min())

    union_find = TreeUnionFind(int(max(parents.max(), children.max())) + 1)
    for parent, child in zip(parents.tolist(), children.tolist()):
        if child not in clusters:
            union_find.union(parent, child)

    result = np.full(root_cluster, NOISE_LABEL, dtype=np.intp)
    for n in range(root_cluster):
        cluster = union_find.find(n)
        if cluster <= root_cluster:
            continue
        if cluster not in cluster_label_map:
            raise IllegalClusterStateError(
                f'Point {n} resolved to cluster {cluster}, which was not selected'
            )
        result[n] = cluster_label_map[cluster]
    return result


def get_labels(condensed_tree: np.ndarray, stability: Dict[int, float]) -> np.ndarray:
    """
    Selects clusters by excess of mass and labels every point.

    Clusters are visited from the largest id down, excluding the root. A
    cluster whose children are jointly more stable is replaced by them (and
    takes their summed stability); otherwise all of its descendants are
    deselected. Selected clusters map to 0..n-1 in ascending id order.
    """
    stability = dict(stability)
    if not stability:
        return np.zeros(0, dtype=np.intp)

    node_list = sorted(stability.keys(), reverse=True)[:-1]
    cluster_tree = condensed_tree[condensed_tree['child_size'] > 1]
    is_cluster = {cluster: True for cluster in node_list}

    for node in node_list:
        child_selection = cluster_tree['parent'] == node
        subtree_stability = sum(
            stability[child] for child in cluster_tree['child'][child_selection].tolist()
        )
        if subtree_stability > stability[node]:
            is_cluster[node] = False
            stability[node] = subtree_stability
        else:
            for sub_node in bfs_from_cluster_tree(cluster_tree, node):
                if sub_node != node:
                    is_cluster[sub_node] = False

    clusters = {cluster for cluster, selected in is_cluster.items() if selected}
    cluster_map = {cluster: n for n, cluster in enumerate(sorted(clusters))}
    logger.debug(f'Selected {len(clusters)} clusters out of {len(node_list)} candidates')
    return do_labeling(condensed_tree, clusters, cluster_map)


def tree_to_labels(
    single_linkage_tree: np.ndarray,
    min_cluster_size: int = 10,
) -> Tuple[np.ndarray, np.ndarray, Dict[int, float]]:
    """Condenses a dendrogram and extracts labels; returns (labels, condensed, stability)."""
    condensed = condense_tree(single_linkage_tree, min_cluster_size)
    stability = compute_stability(condensed)
    labels = get_labels(condensed, stability)
    return labels, condensed, stability


__all__ = [
    'CONDENSED_DTYPE',
    'label',
    'bfs_from_hierarchy',
    'condense_tree',
    'compute_stability',
    'bfs_from_cluster_tree',
    'get_labels',
    'do_labeling',
    'tree_to_labels',
]
