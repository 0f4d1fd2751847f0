# density_clusterer/neighbors.py
"""
Fitted neighbour models built on the spatial trees.

`NearestNeighbors` and `RadiusNeighbors` own a tree over their training data
and precompute, at fit time, every training point's neighbourhood *excluding
the point itself*. New data can then be queried against the same tree.

Both models:
    - resolve 'auto' to a KD-tree when the metric supports it, else a Ball-tree
    - fit under a lock; a second `fit` is a no-op unless `refit=True`
    - record metric fallbacks and empty neighbourhoods in `warnings_`
    - raise ModelNotFitError from every fitted accessor before `fit`
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import numpy as np

from .config import ClustererConfig, resolve_config
from .exceptions import ModelNotFitError
from .metrics import get_metric
from .parallel import ExecutionContext, NeighborQueryTask
from .trees import BallTree, KDTree, Neighborhood, SpatialTree
from .utils.logging_setup import log_timing, setup_logging
from .utils.validation import check_dimensions, validate_matrix

# Set up a logger for this module.
logger = logging.getLogger(__name__)


def _drop_self_columns(neighborhood: Neighborhood) -> Neighborhood:
    """
    Removes each row's own index from a training-set k-NN result.

    When duplicates push a point out of its own neighbour list, the first
    column (a zero-distance duplicate) is dropped instead.
    """
    distances, indices = neighborhood
    n_rows, n_cols = indices.shape
    if n_cols == 0:
        return neighborhood

    is_self = indices == np.arange(n_rows)[:, np.newaxis]
    drop_col = np.where(is_self.any(axis=1), is_self.argmax(axis=1), 0)
    keep = np.ones(indices.shape, dtype=bool)
    keep[np.arange(n_rows), drop_col] = False

    return Neighborhood(
        distances[keep].reshape(n_rows, n_cols - 1),
        indices[keep].reshape(n_rows, n_cols - 1),
    )


class _BaseNeighborsModel(ABC):
    """Shared fitting machinery: config, tree selection, fit lock."""

    def __init__(
        self,
        config: Optional[ClustererConfig] = None,
        execution: Optional[ExecutionContext] = None,
        **overrides: Any,
    ):
        overrides = {key: value for key, value in overrides.items() if value is not None}
        self.config = resolve_config(config, primary='neighbors', **overrides)
        self.execution = execution or ExecutionContext.from_config(self.config.parallel)
        setup_logging(self.config.output.log_level)

        self.tree_: Optional[SpatialTree] = None
        self.warnings_: List[str] = []
        self._fit_lock = threading.Lock()

    @property
    def is_fit(self) -> bool:
        return self.tree_ is not None

    @property
    def n_features_in_(self) -> int:
        self._check_is_fit()
        return self.tree_.n_features

    def _check_is_fit(self) -> None:
        if not self.is_fit:
            raise ModelNotFitError(f'{type(self).__name__} has not been fit; call fit(X) first.')

    def _tree_class(self) -> type:
        algorithm = self.config.neighbors.algorithm
        if algorithm == 'kd_tree':
            return KDTree
        if algorithm == 'ball_tree':
            return BallTree
        metric = get_metric(self.config.tree.metric, **self.config.tree.metric_params)
        return KDTree if KDTree.is_valid_metric(metric) else BallTree

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings_.append(message)

    def fit(self, X: Any, refit: bool = False):
        """
        Builds the tree on X and precomputes each training point's neighbours.

        Args:
            X: Training matrix of shape (n_samples, n_features).
            refit: Rebuild even if the model is already fit.

        Returns:
            self
        """
        with self._fit_lock:
            if self.is_fit and not refit:
                logger.debug(f'{type(self).__name__} is already fit; skipping')
                return self

            X = validate_matrix(X)
            tree_cls = self._tree_class()
            tree = tree_cls(
                X,
                leaf_size=self.config.tree.leaf_size,
                metric=self.config.tree.metric,
                **self.config.tree.metric_params,
            )
            self.warnings_ = list(tree.warnings_)

            logger.info(
                f'Fitting {type(self).__name__} on {X.shape[0]:,} records '
                f'with a {tree_cls.__name__}'
            )
            self._fit_neighborhoods(tree, X)
            self.tree_ = tree
            return self

    @abstractmethod
    def _fit_neighborhoods(self, tree: SpatialTree, X: np.ndarray) -> None:
        raise NotImplementedError

    def _prepare_queries(self, X: Any) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        X = validate_matrix(X, allow_empty=True)
        check_dimensions(self.tree_.n_features, X)
        return X


class NearestNeighbors(_BaseNeighborsModel):
    """
    k-nearest-neighbour model.

    Example:
        >>> model = NearestNeighbors(n_neighbors=3).fit(X)
        >>> distances, indices = model.get_neighbors()      # training set, self excluded
        >>> distances, indices = model.get_neighbors(X_new)  # new points
    """

    def __init__(
        self,
        n_neighbors: Optional[int] = None,
        algorithm: Optional[str] = None,
        leaf_size: Optional[int] = None,
        metric: Optional[str] = None,
        execution: Optional[ExecutionContext] = None,
        config: Optional[ClustererConfig] = None,
    ):
        super().__init__(
            config,
            execution,
            n_neighbors=n_neighbors,
            algorithm=algorithm,
            leaf_size=leaf_size,
            metric=metric,
        )
        self._fit_result: Optional[Neighborhood] = None

    @property
    def n_neighbors(self) -> int:
        return self.config.neighbors.n_neighbors

    @log_timing('nearest neighbour fit')
    def _fit_neighborhoods(self, tree: SpatialTree, X: np.ndarray) -> None:
        k_query = min(self.n_neighbors + 1, X.shape[0])
        task = NeighborQueryTask(
            tree, X, k_query,
            dual_tree=self.config.neighbors.dual_tree,
            sort_results=True,
        )
        self._fit_result = _drop_self_columns(task.run_with_fallback(self.execution))

        if self._fit_result.indices.shape[1] < self.n_neighbors:
            self._warn(
                f'Only {self._fit_result.indices.shape[1]} neighbours exist per record; '
                f'requested n_neighbors={self.n_neighbors}'
            )

    def get_neighbors(self, X: Any = None, k: Optional[int] = None) -> Neighborhood:
        """
        Returns neighbours of the training set (X=None) or of new points.

        Args:
            X: Query points, or None for the fitted self-excluded neighbourhoods.
            k: Number of neighbours; defaults to n_neighbors.

        Raises:
            ModelNotFitError: Before fit.
            DimensionMismatchError: If X's width differs from the training data.
        """
        self._check_is_fit()
        k = self.n_neighbors if k is None else k

        if X is None:
            distances, indices = self._fit_result
            if k > indices.shape[1]:
                # More than were precomputed: query again and drop self
                task = NeighborQueryTask(self.tree_, self.tree_.data, min(k + 1, self.tree_.n_samples))
                return _drop_self_columns(task.run_with_fallback(self.execution))
            return Neighborhood(distances[:, :k].copy(), indices[:, :k].copy())

        X = self._prepare_queries(X)
        task = NeighborQueryTask(
            self.tree_, X, k,
            dual_tree=self.config.neighbors.dual_tree,
            sort_results=self.config.neighbors.sort_results,
        )
        return task.run_with_fallback(self.execution)


class RadiusNeighbors(_BaseNeighborsModel):
    """
    Fixed-radius neighbour model.

    Neighbourhoods are ragged: each row holds however many points fall within
    the radius. Records with empty neighbourhoods are reported in `warnings_`.
    """

    def __init__(
        self,
        radius: Optional[float] = None,
        algorithm: Optional[str] = None,
        leaf_size: Optional[int] = None,
        metric: Optional[str] = None,
        execution: Optional[ExecutionContext] = None,
        config: Optional[ClustererConfig] = None,
    ):
        super().__init__(
            config,
            execution,
            radius=radius,
            algorithm=algorithm,
            leaf_size=leaf_size,
            metric=metric,
        )
        self._fit_result: Optional[Neighborhood] = None

    @property
    def radius(self) -> float:
        return self.config.neighbors.radius

    @log_timing('radius neighbour fit')
    def _fit_neighborhoods(self, tree: SpatialTree, X: np.ndarray) -> None:
        distances, indices = tree.query_radius(
            X, self.radius, sort_results=self.config.neighbors.sort_results
        )
        for i in range(X.shape[0]):
            own = np.flatnonzero(indices[i] == i)
            if own.size:
                indices[i] = np.delete(indices[i], own[0])
                distances[i] = np.delete(distances[i], own[0])
        self._fit_result = Neighborhood(distances, indices)

        n_empty = int(sum(1 for row in indices if row.size == 0))
        if n_empty:
            self._warn(
                f"{n_empty:,} record{'s have' if n_empty != 1 else ' has'} "
                f'no records within radius={self.radius}'
            )

    def get_neighbors(self, X: Any = None, radius: Optional[float] = None) -> Neighborhood:
        """Returns radius neighbourhoods of the training set (X=None) or of new points."""
        self._check_is_fit()
        if X is None and radius is None:
            return self._fit_result

        radius = self.radius if radius is None else radius
        if X is None:
            fitted = RadiusNeighbors(radius=radius, config=self.config, execution=self.execution)
            return fitted.fit(self.tree_.data).get_neighbors()

        X = self._prepare_queries(X)
        return self.tree_.query_radius(X, radius, sort_results=self.config.neighbors.sort_results)


__all__ = ['NearestNeighbors', 'RadiusNeighbors']
