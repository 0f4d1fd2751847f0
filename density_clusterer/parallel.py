# density_clusterer/parallel.py
"""
Chunked Parallel Execution for Row-Wise Workloads.

Neighbour queries and dense distance matrices are embarrassingly parallel over
query rows. This module splits such work into contiguous row chunks, runs a
per-chunk `reduce` through a joblib thread pool, and writes every chunk's result
into its own slice of a pre-allocated output in `combine`.

Whether work is parallelised is decided by an `ExecutionContext`, an immutable
value passed explicitly to each task, never by global state:

    - parallelism must be allowed (`allow_parallel`) and more than one worker
      must be available, and
    - the workload must be large enough (`min_elements`), unless
      `force_parallel` is set.

Key Features:
    - Threads (`prefer='threads'`) so NumPy releases the GIL and no data is copied
    - Deterministic output: each chunk owns a disjoint row range
    - `run_with_fallback` degrades to serial execution on pool/resource errors

Dependencies:
    - joblib: Thread pool execution (`Parallel`, `delayed`, `cpu_count`)
    - numpy: Chunk slicing and result buffers
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed
from joblib.parallel import cpu_count

from .exceptions import ClusteringError, ConfigurationError
from .metrics import DistanceMetric, get_metric
from .trees.query import Neighborhood

# Set up a logger for this module.
logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500
DEFAULT_MIN_ELEMENTS = 15000

# Diagnostic counters a SpatialTree accumulates while answering queries.
QUERY_COUNTERS = ('n_trims', 'n_leaves', 'n_splits', 'n_calls')


# ======================================================================================
# Execution context
# ======================================================================================


@dataclass(frozen=True)
class ExecutionContext:
    """
    Immutable description of how chunked work may be executed.

    Attributes
    ----------
    allow_parallel : bool
        Master switch; when False everything runs serially.
    n_jobs : int
        Worker count. Negative values count back from the number of cores
        (-1 means all cores), as in joblib.
    chunk_size : int
        Rows per chunk.
    min_elements : int
        Smallest workload (rows x columns) worth parallelising.
    force_parallel : bool
        Parallelise regardless of `min_elements`.
    """
    allow_parallel: bool = False
    n_jobs: int = -1
    chunk_size: int = DEFAULT_CHUNK_SIZE
    min_elements: int = DEFAULT_MIN_ELEMENTS
    force_parallel: bool = False

    def __post_init__(self):
        if self.n_jobs == 0:
            raise ConfigurationError('n_jobs must be a non-zero integer')
        if self.chunk_size < 1:
            raise ConfigurationError(f'chunk_size must be at least 1, got {self.chunk_size}')
        if self.min_elements < 0:
            raise ConfigurationError(f'min_elements must be non-negative, got {self.min_elements}')

    @classmethod
    def from_config(cls, config) -> 'ExecutionContext':
        """Builds a context from a `ParallelConfig`."""
        return cls(
            allow_parallel=config.allow_parallel,
            n_jobs=config.n_jobs,
            chunk_size=config.chunk_size,
            min_elements=config.min_elements,
            force_parallel=config.force_parallel,
        )

    @classmethod
    def serial(cls) -> 'ExecutionContext':
        return cls(allow_parallel=False)

    @property
    def effective_n_jobs(self) -> int:
        if self.n_jobs < 0:
            return max(cpu_count() + 1 + self.n_jobs, 1)
        return self.n_jobs

    def should_parallelize(self, n_elements: int) -> bool:
        if not self.allow_parallel or self.effective_n_jobs < 2:
            return False
        return self.force_parallel or n_elements >= self.min_elements


# ======================================================================================
# Chunking
# ======================================================================================


@dataclass
class Chunk:
    """A contiguous block of rows and the position of its first row."""
    data: np.ndarray
    start: int

    @property
    def size(self) -> int:
        return self.data.shape[0]

    @property
    def stop(self) -> int:
        return self.start + self.size


class ChunkingStrategy(ABC):
    """Splits a matrix into row chunks."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ConfigurationError(f'chunk_size must be at least 1, got {chunk_size}')
        self.chunk_size = chunk_size

    def n_chunks(self, n_rows: int) -> int:
        return -(-n_rows // self.chunk_size)

    @abstractmethod
    def map(self, X: np.ndarray) -> List[Chunk]:
        raise NotImplementedError


class SimpleChunkingStrategy(ChunkingStrategy):
    """Consecutive chunks of `chunk_size` rows; the last one may be shorter."""

    def map(self, X: np.ndarray) -> List[Chunk]:
        return [
            Chunk(X[start:start + self.chunk_size], start)
            for start in range(0, X.shape[0], self.chunk_size)
        ]


class SequentialPool:
    """API of a joblib Parallel pool, executed sequentially."""

    def __init__(self):
        self.n_jobs = 1

    def __call__(self, jobs):
        return [fun(*args, **kwargs) for (fun, args, kwargs) in jobs]


# ======================================================================================
# Tasks
# ======================================================================================


class ParallelChunkingTask(ABC):
    """
    Base class for row-parallel work.

    Subclasses implement `reduce` (one chunk in, one partial result out) and
    `combine` (partial results in, final output out). `run` handles chunking
    and dispatch.
    """

    # Errors that indicate the pool could not run, not that the work is wrong.
    # ClusteringError subclasses are re-raised even when they are RuntimeErrors.
    FALLBACK_ERRORS: Tuple[type, ...] = (MemoryError, RuntimeError, OSError)

    def __init__(self, X: np.ndarray, strategy: ChunkingStrategy | None = None):
        self.X = X
        self.strategy = strategy

    @abstractmethod
    def reduce(self, chunk: Chunk) -> Any:
        raise NotImplementedError

    @abstractmethod
    def combine(self, results: Sequence[Tuple[Chunk, Any]]) -> Any:
        raise NotImplementedError

    def n_elements(self) -> int:
        """Workload size compared against `ExecutionContext.min_elements`."""
        return int(np.prod(self.X.shape))

    def _reduce_with_chunk(self, chunk: Chunk) -> Tuple[Chunk, Any]:
        return chunk, self.reduce(chunk)

    def _chunks(self, context: ExecutionContext) -> List[Chunk]:
        strategy = self.strategy or SimpleChunkingStrategy(context.chunk_size)
        return strategy.map(self.X)

    def run(self, context: ExecutionContext | None = None) -> Any:
        """
        Executes the task, in parallel when the context allows it.

        Worker exceptions propagate unchanged.
        """
        context = context or ExecutionContext.serial()
        if not context.should_parallelize(self.n_elements()):
            return self.run_serial()

        chunks = self._chunks(context)
        if len(chunks) < 2:
            return self.run_serial()

        n_jobs = min(context.effective_n_jobs, len(chunks))
        logger.debug(
            f'{type(self).__name__}: dispatching {len(chunks):,} chunks to {n_jobs} threads'
        )
        pool = Parallel(n_jobs=n_jobs, prefer='threads')
        results = pool(delayed(self._reduce_with_chunk)(chunk) for chunk in chunks)
        return self.combine(results)

    def run_serial(self) -> Any:
        chunk = Chunk(self.X, 0)
        pool = SequentialPool()
        return self.combine(pool([(self._reduce_with_chunk, (chunk,), {})]))

    def run_with_fallback(self, context: ExecutionContext | None = None) -> Any:
        """Runs in parallel, re-running serially if the pool fails for resource reasons."""
        try:
            return self.run(context)
        except ClusteringError:
            raise
        except self.FALLBACK_ERRORS as e:
            logger.warning(
                f'{type(self).__name__}: parallel execution failed ({type(e).__name__}: {e}); '
                f'falling back to serial execution'
            )
            return self.run_serial()


class PairwiseDistanceTask(ParallelChunkingTask):
    """Dense distance matrix between the rows of X and Y (Y defaults to X)."""

    def __init__(
        self,
        X: np.ndarray,
        metric: str | DistanceMetric = 'euclidean',
        Y: np.ndarray | None = None,
        strategy: ChunkingStrategy | None = None,
    ):
        super().__init__(X, strategy)
        self.metric = get_metric(metric)
        self.Y = X if Y is None else Y

    def n_elements(self) -> int:
        return self.X.shape[0] * self.Y.shape[0]

    def reduce(self, chunk: Chunk) -> np.ndarray:
        return self.metric.pairwise(chunk.data, self.Y)

    def combine(self, results):
        out = np.empty((self.X.shape[0], self.Y.shape[0]), dtype=np.float64)
        for chunk, block in results:
            out[chunk.start:chunk.stop] = block
        return out


class NeighborQueryTask(ParallelChunkingTask):
    """k-NN query of X against a built SpatialTree, chunked over query rows."""

    def __init__(
        self,
        tree,
        X: np.ndarray,
        k: int,
        dual_tree: bool = False,
        sort_results: bool = True,
        strategy: ChunkingStrategy | None = None,
    ):
        super().__init__(X, strategy)
        self.tree = tree
        self.k = k
        self.dual_tree = dual_tree
        self.sort_results = sort_results

    def n_elements(self) -> int:
        return self.X.shape[0] * self.tree.n_samples

    def reduce(self, chunk: Chunk):
        # Each chunk counts on its own shallow copy; arrays stay shared and read-only
        worker_tree = copy.copy(self.tree)
        for counter in QUERY_COUNTERS:
            setattr(worker_tree, counter, 0)

        neighborhood = worker_tree.query(
            chunk.data, k=self.k, dual_tree=self.dual_tree, sort_results=self.sort_results
        )
        return neighborhood, {counter: getattr(worker_tree, counter) for counter in QUERY_COUNTERS}

    def combine(self, results):
        distances = np.empty((self.X.shape[0], self.k), dtype=np.float64)
        indices = np.empty((self.X.shape[0], self.k), dtype=np.intp)
        for chunk, (neighborhood, counts) in results:
            distances[chunk.start:chunk.stop] = neighborhood.distances
            indices[chunk.start:chunk.stop] = neighborhood.indices
            for counter, value in counts.items():
                setattr(self.tree, counter, getattr(self.tree, counter) + value)
        return Neighborhood(distances, indices)


__all__ = [
    'ExecutionContext',
    'Chunk',
    'ChunkingStrategy',
    'SimpleChunkingStrategy',
    'SequentialPool',
    'ParallelChunkingTask',
    'PairwiseDistanceTask',
    'NeighborQueryTask',
]
