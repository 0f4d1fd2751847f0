"""Tests for the dendrogram and rank-based union-find structures."""

import numpy as np

from density_clusterer.union_find import TreeUnionFind, UnionFind


def test_union_find_labels_merges_with_fresh_nodes():
    uf = UnionFind(5)
    uf.union(3, 4)
    uf.union(-1, -2)

    np.testing.assert_array_equal(uf.parent, [-1, -1, -1, 5, 5, -1, -1, 6, 6])
    np.testing.assert_array_equal(uf.size, [1, 1, 1, 1, 1, 2, 0, 0, 0])
    assert uf.next_label == 7
    assert uf.find(6) == 6
    assert uf.find(3) == 5


def test_fast_find_compresses_paths():
    uf = UnionFind(4)
    uf.union(0, 1)          # -> 4
    uf.union(4, 2)          # -> 5
    uf.union(5, 3)          # -> 6

    assert uf.find(0) == 6
    assert uf.fast_find(0) == 6
    assert uf.parent[0] == 6
    assert uf.parent[4] == 6
    assert uf.size[6] == 4


def test_union_find_accepts_negative_indices():
    uf = UnionFind(3)
    uf.union(0, 1)
    assert uf.find(-2) == uf.find(3)


def test_tree_union_find_scenario():
    uf = TreeUnionFind(5)
    uf.union(3, 2)
    uf.union(4, 3)

    np.testing.assert_array_equal(uf.data, [[0, 0], [1, 0], [3, 0], [3, 1], [3, 0]])
    np.testing.assert_array_equal(uf.components(), [0, 1, 3])
    assert uf.n_components() == 3
    assert uf.is_component_root(3)
    assert not uf.is_component_root(2)


def test_tree_union_find_is_idempotent():
    uf = TreeUnionFind(4)
    uf.union(0, 1)
    before = uf.data.copy()
    uf.union(1, 0)
    uf.union(0, 1)
    np.testing.assert_array_equal(uf.data, before)
    assert uf.find(0) == uf.find(1)


def test_component_labels_compress_every_path():
    uf = TreeUnionFind(6)
    uf.union(0, 1)
    uf.union(2, 3)
    uf.union(0, 2)
    uf.union(4, 5)

    labels = uf.component_labels()
    assert len(set(labels[:4])) == 1
    assert labels[4] == labels[5]
    assert labels[0] != labels[4]
    assert uf.n_components() == 2
