"""Tests for chunked parallel execution."""

import numpy as np
import pytest

from density_clusterer.exceptions import ConfigurationError, IllegalClusterStateError
from density_clusterer.config import ParallelConfig
from density_clusterer.parallel import (
    Chunk,
    ExecutionContext,
    NeighborQueryTask,
    PairwiseDistanceTask,
    ParallelChunkingTask,
    SequentialPool,
    SimpleChunkingStrategy,
)
from density_clusterer.trees import KDTree

from .conftest import brute_distances

PARALLEL = ExecutionContext(allow_parallel=True, n_jobs=2, chunk_size=7, force_parallel=True)


def test_simple_chunking_covers_all_rows():
    X = np.arange(23 * 2, dtype=np.float64).reshape(23, 2)
    strategy = SimpleChunkingStrategy(chunk_size=5)
    chunks = strategy.map(X)

    assert len(chunks) == strategy.n_chunks(23) == 5
    assert [c.start for c in chunks] == [0, 5, 10, 15, 20]
    assert chunks[-1].size == 3
    assert chunks[-1].stop == 23
    np.testing.assert_array_equal(np.vstack([c.data for c in chunks]), X)


def test_chunk_size_must_be_positive():
    with pytest.raises(ConfigurationError):
        SimpleChunkingStrategy(chunk_size=0)


def test_execution_context_decisions():
    assert not ExecutionContext().should_parallelize(10 ** 9)
    context = ExecutionContext(allow_parallel=True, n_jobs=4, min_elements=100)
    assert context.should_parallelize(100)
    assert not context.should_parallelize(99)
    assert ExecutionContext(allow_parallel=True, n_jobs=4, force_parallel=True).should_parallelize(1)
    assert not ExecutionContext(allow_parallel=True, n_jobs=1, force_parallel=True).should_parallelize(10 ** 9)


def test_execution_context_from_config():
    context = ExecutionContext.from_config(ParallelConfig(allow_parallel=True, n_jobs=3, chunk_size=50))
    assert context.allow_parallel
    assert context.n_jobs == 3
    assert context.chunk_size == 50


def test_execution_context_rejects_zero_jobs():
    with pytest.raises(ConfigurationError):
        ExecutionContext(n_jobs=0)


def test_sequential_pool_runs_jobs_in_order():
    pool = SequentialPool()
    assert pool([(pow, (2, 3), {}), (max, (1, 4), {})]) == [8, 4]


def test_pairwise_parallel_equals_serial(random_points):
    task = PairwiseDistanceTask(random_points)
    serial = task.run()
    parallel = task.run(PARALLEL)
    np.testing.assert_allclose(serial, brute_distances(random_points))
    np.testing.assert_array_equal(parallel, serial)


def test_pairwise_against_second_matrix(random_points):
    Y = random_points[:11]
    result = PairwiseDistanceTask(random_points, 'manhattan', Y=Y).run(PARALLEL)
    expected = np.abs(random_points[:, np.newaxis, :] - Y[np.newaxis, :, :]).sum(axis=-1)
    np.testing.assert_allclose(result, expected)


def test_neighbor_query_parallel_equals_serial(random_points):
    tree = KDTree(random_points, leaf_size=5)
    serial = NeighborQueryTask(tree, random_points, k=4).run()
    parallel = NeighborQueryTask(tree, random_points, k=4).run(PARALLEL)
    np.testing.assert_array_equal(parallel.indices, serial.indices)
    np.testing.assert_allclose(parallel.distances, serial.distances)


class _RowSums(ParallelChunkingTask):
    def reduce(self, chunk: Chunk):
        return chunk.data.sum(axis=1)

    def combine(self, results):
        out = np.empty(self.X.shape[0])
        for chunk, sums in results:
            out[chunk.start:chunk.stop] = sums
        return out


class _FailingReduce(_RowSums):
    def reduce(self, chunk: Chunk):
        raise ValueError('bad chunk')


class _PoolFailure(_RowSums):
    def run(self, context=None):
        raise MemoryError('pool rejected the work')


def test_worker_errors_propagate(random_points):
    with pytest.raises(ValueError, match='bad chunk'):
        _FailingReduce(random_points).run(PARALLEL)


def test_run_with_fallback_recovers_from_resource_errors(random_points):
    result = _PoolFailure(random_points).run_with_fallback(PARALLEL)
    np.testing.assert_allclose(result, random_points.sum(axis=1))


def test_run_with_fallback_does_not_hide_other_errors(random_points):
    with pytest.raises(ValueError):
        _FailingReduce(random_points).run_with_fallback(PARALLEL)


def test_custom_strategy_is_used(random_points):
    result = _RowSums(random_points, strategy=SimpleChunkingStrategy(3)).run(PARALLEL)
    np.testing.assert_allclose(result, random_points.sum(axis=1))


class _BrokenInvariant(_RowSums):
    calls = 0

    def run(self, context=None):
        type(self).calls += 1
        raise IllegalClusterStateError('component labels diverged')

    def run_serial(self):
        type(self).calls += 1
        return super().run_serial()


def test_run_with_fallback_reraises_package_errors(random_points):
    with pytest.raises(IllegalClusterStateError):
        _BrokenInvariant(random_points).run_with_fallback(PARALLEL)
    assert _BrokenInvariant.calls == 1


def test_parallel_query_counters_match_serial(random_points):
    tree = KDTree(random_points, leaf_size=4)
    NeighborQueryTask(tree, random_points, k=3).run()
    serial_counts = (tree.get_n_calls(), tree.get_tree_stats())

    tree = KDTree(random_points, leaf_size=4)
    NeighborQueryTask(tree, random_points, k=3).run(PARALLEL)
    assert (tree.get_n_calls(), tree.get_tree_stats()) == serial_counts
    assert serial_counts[0] > 0
