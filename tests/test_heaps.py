"""Tests for the neighbour and node priority queues."""

import numpy as np
import pytest

from density_clusterer.heaps import NeighborsHeap, NodeHeap, NodeHeapData


def test_neighbors_heap_keeps_k_smallest():
    rng = np.random.default_rng(1)
    values = rng.random(50)

    heap = NeighborsHeap(1, 5)
    for i, value in enumerate(values):
        heap.push(0, value, i)

    distances, indices = heap.get_arrays(sort=True)
    expected = np.argsort(values)[:5]
    np.testing.assert_allclose(distances[0], values[expected])
    np.testing.assert_array_equal(indices[0], expected)


def test_neighbors_heap_root_is_largest():
    heap = NeighborsHeap(2, 3)
    assert heap.largest(0) == np.inf
    for i, value in enumerate([4.0, 1.0, 3.0, 2.0]):
        heap.push(0, value, i)
    assert heap.largest(0) == 3.0
    # Row 1 is untouched
    assert heap.largest(1) == np.inf


def test_push_many_matches_push():
    rng = np.random.default_rng(2)
    values = rng.random(30)
    idx = np.arange(30)

    one = NeighborsHeap(1, 4)
    for v, i in zip(values, idx):
        one.push(0, v, i)
    many = NeighborsHeap(1, 4)
    many.push_many(0, values, idx)

    np.testing.assert_array_equal(one.get_arrays()[1], many.get_arrays()[1])


def test_node_heap_pops_in_ascending_order():
    heap = NodeHeap(size_guess=2)
    for val in [5.0, 1.0, 3.0, 4.0, 2.0]:
        heap.push(NodeHeapData(val, int(val), 0))

    assert len(heap) == 5
    assert heap.capacity >= 5
    assert heap.peek().val == 1.0
    popped = [heap.pop().val for _ in range(5)]
    assert popped == sorted(popped)


def test_node_heap_empty_errors():
    heap = NodeHeap()
    with pytest.raises(IndexError):
        heap.pop()
    with pytest.raises(IndexError):
        heap.peek()


def test_node_heap_resize_and_clear():
    heap = NodeHeap(size_guess=4)
    heap.push(NodeHeapData(1.0, 0, 0))
    heap.push(NodeHeapData(2.0, 1, 0))
    with pytest.raises(ValueError):
        heap.resize(1)
    heap.clear()
    assert len(heap) == 0
