# density_clusterer/union_find.py
"""
Disjoint-set structures used while building and cutting the cluster hierarchy.

- `UnionFind`: the dendrogram builder's structure. Every union creates a new
  node labelled `next_label`, so after `N - 1` unions the parent array encodes
  the full binary merge tree over `2N - 1` nodes.
- `TreeUnionFind`: a classic union-by-rank forest with path compression, used
  to track components during Boruvka MST construction and to resolve each
  point's selected cluster during label extraction.

Both accept Python-style negative indices, which wrap from the end.
"""

import logging
from typing import List

import numpy as np

# Set up a logger for this module.
logger = logging.getLogger(__name__)


class UnionFind:
    """
    Union-find over N points that labels every merge with a fresh node id.

    Attributes:
        parent: Parent of each of the 2N-1 nodes, -1 for a root.
        size: Number of points under each node (0 for unused merge nodes).
        next_label: Id given to the next merge node.
    """

    def __init__(self, N: int):
        self.parent = np.full(2 * N - 1, -1, dtype=np.intp)
        self.size = np.hstack((np.ones(N, dtype=np.intp), np.zeros(N - 1, dtype=np.intp)))
        self.next_label = N

    def _wrap(self, x: int) -> int:
        return int(x) % self.parent.shape[0]

    def union(self, m: int, n: int) -> None:
        m = self._wrap(m)
        n = self._wrap(n)
        self.parent[m] = self.next_label
        self.parent[n] = self.next_label
        self.size[self.next_label] = self.size[m] + self.size[n]
        self.next_label += 1

    def find(self, n: int) -> int:
        """Returns the root of `n` without modifying the structure."""
        n = self._wrap(n)
        while self.parent[n] != -1:
            n = int(self.parent[n])
        return n

    def fast_find(self, n: int) -> int:
        """Returns the root of `n` and points every node on the way directly at it."""
        n = self._wrap(n)
        p = n
        while self.parent[n] != -1:
            n = int(self.parent[n])
        # Path compression
        while p != n:
            next_p = int(self.parent[p])
            self.parent[p] = n
            p = next_p
        return n


class TreeUnionFind:
    """
    Union-by-rank forest with iterative path compression.

    `data[i]` holds `[parent, rank]`. `is_component[i]` stays True only while
    `i` is the root of its set.
    """

    def __init__(self, size: int):
        self.data = np.zeros((size, 2), dtype=np.intp)
        self.data[:, 0] = np.arange(size)
        self.is_component = np.ones(size, dtype=bool)

    def _wrap(self, x: int) -> int:
        return int(x) % self.data.shape[0]

    def union(self, x: int, y: int) -> None:
        x_root = self.find(x)
        y_root = self.find(y)
        if x_root == y_root:
            return

        if self.data[x_root, 1] < self.data[y_root, 1]:
            self.data[x_root, 0] = y_root
            self.is_component[x_root] = False
        elif self.data[x_root, 1] > self.data[y_root, 1]:
            self.data[y_root, 0] = x_root
            self.is_component[y_root] = False
        else:
            self.data[y_root, 0] = x_root
            self.data[x_root, 1] += 1
            self.is_component[y_root] = False

    def find(self, x: int) -> int:
        x = self._wrap(x)
        root = x
        while self.data[root, 0] != root:
            root = int(self.data[root, 0])

        while x != root:
            next_x = int(self.data[x, 0])
            self.data[x, 0] = root
            self.is_component[x] = False
            x = next_x
        return root

    def is_component_root(self, x: int) -> bool:
        return bool(self.is_component[self._wrap(x)])

    def components(self) -> np.ndarray:
        return np.flatnonzero(self.is_component)

    def n_components(self) -> int:
        return int(self.is_component.sum())

    def component_labels(self) -> List[int]:
        """Root of every element, compressing all paths."""
        return [self.find(i) for i in range(self.data.shape[0])]


__all__ = ['UnionFind', 'TreeUnionFind']
