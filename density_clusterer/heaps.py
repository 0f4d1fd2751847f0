# density_clusterer/heaps.py
"""
Priority queues driving the tree traversals.

- `NeighborsHeap`: one bounded max-heap per query point. Row `i` always holds
  the `k` smallest (reduced) distances pushed for query `i`, and its root,
  `largest(i)`, is the current k-th best distance, which is the pruning
  threshold of k-NN search.
- `NodeHeap`: a global min-priority queue of `(lower_bound, node1, node2)`
  records. It orders breadth-first kernel density estimation so that nodes are
  refined closest-first.

Both structures are plain array-backed binary heaps; neither depends on
anything beyond NumPy and the standard library.
"""

import heapq
import logging
from typing import List, NamedTuple, Tuple

import numpy as np

# Set up a logger for this module.
logger = logging.getLogger(__name__)


class NeighborsHeap:
    """
    A fixed-capacity max-heap of (distance, index) pairs for each of `n_pts` rows.

    Distances are initialised to +inf so that the first `k` pushes always land.

    Attributes:
        distances: Array of shape (n_pts, n_nbrs).
        indices: Array of shape (n_pts, n_nbrs).
    """

    def __init__(self, n_pts: int, n_nbrs: int):
        self.distances = np.full((n_pts, n_nbrs), np.inf, dtype=np.float64)
        self.indices = np.zeros((n_pts, n_nbrs), dtype=np.intp)

    @property
    def n_nbrs(self) -> int:
        return self.distances.shape[1]

    def largest(self, row: int) -> float:
        """Returns the largest distance held for `row` (the heap root)."""
        return self.distances[row, 0]

    def push(self, row: int, val: float, i_val: int) -> None:
        """
        Offers `(val, i_val)` to row `row`; kept only if it beats the current root.
        """
        dist_arr = self.distances[row]
        ind_arr = self.indices[row]
        size = dist_arr.shape[0]

        # The new value is not among the k smallest seen so far
        if val >= dist_arr[0]:
            return

        # Replace the root, then sift the new value down into place
        i = 0
        while True:
            ic1 = 2 * i + 1
            ic2 = ic1 + 1

            if ic1 >= size:
                break
            elif ic2 >= size:
                if dist_arr[ic1] > val:
                    i_swap = ic1
                else:
                    break
            elif dist_arr[ic1] >= dist_arr[ic2]:
                if val < dist_arr[ic1]:
                    i_swap = ic1
                else:
                    break
            else:
                if val < dist_arr[ic2]:
                    i_swap = ic2
                else:
                    break

            dist_arr[i] = dist_arr[i_swap]
            ind_arr[i] = ind_arr[i_swap]
            i = i_swap

        dist_arr[i] = val
        ind_arr[i] = i_val

    def push_many(self, row: int, vals: np.ndarray, idxs: np.ndarray) -> None:
        """Pushes a batch of candidates, skipping those that cannot enter the heap."""
        candidates = np.flatnonzero(vals < self.distances[row, 0])
        for j in candidates:
            self.push(row, vals[j], idxs[j])

    def get_arrays(self, sort: bool = True) -> Tuple[np.ndarray, np.ndarray]:
        """
        Returns the (distances, indices) arrays, each row sorted ascending if `sort`.
        """
        if sort:
            order = np.argsort(self.distances, axis=1, kind='stable')
            return (
                np.take_along_axis(self.distances, order, axis=1),
                np.take_along_axis(self.indices, order, axis=1),
            )
        return self.distances.copy(), self.indices.copy()


class NodeHeapData(NamedTuple):
    """A traversal candidate: a lower bound and the node (or node pair) it bounds."""
    val: float
    i1: int
    i2: int


class NodeHeap:
    """
    Min-priority queue of NodeHeapData ordered by `val`.

    Popped values are non-decreasing, so a node is only explored after every
    candidate with a smaller lower bound.
    """

    def __init__(self, size_guess: int = 100):
        if size_guess < 1:
            size_guess = 1
        self._capacity = size_guess
        self._data: List[NodeHeapData] = []

    def __len__(self) -> int:
        return len(self._data)

    @property
    def capacity(self) -> int:
        return self._capacity

    def resize(self, new_size: int) -> None:
        """Grows the nominal capacity; shrinking below the current size is an error."""
        if new_size < len(self._data):
            raise ValueError(
                f'Cannot resize NodeHeap to {new_size}; it holds {len(self._data)} items'
            )
        self._capacity = new_size

    def push(self, data: NodeHeapData) -> None:
        if len(self._data) >= self._capacity:
            self.resize(2 * self._capacity)
        heapq.heappush(self._data, NodeHeapData(*data))

    def peek(self) -> NodeHeapData:
        if not self._data:
            raise IndexError('peek from an empty NodeHeap')
        return self._data[0]

    def pop(self) -> NodeHeapData:
        if not self._data:
            raise IndexError('pop from an empty NodeHeap')
        return heapq.heappop(self._data)

    def clear(self) -> None:
        self._data = []


__all__ = ['NeighborsHeap', 'NodeHeap', 'NodeHeapData']
