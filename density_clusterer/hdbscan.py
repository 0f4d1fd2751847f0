# density_clusterer/hdbscan.py
"""
HDBSCAN: Hierarchical Density-Based Clustering.

This module provides the `HDBSCAN` engine, which orchestrates the full
clustering pipeline over a numeric sample matrix:

    Step 1/5: Core distances (distance to each point's min_samples-th neighbour)
    Step 2/5: Minimum spanning tree of the mutual-reachability graph
    Step 3/5: Single-linkage dendrogram from the weight-sorted MST
    Step 4/5: Condensed tree by `min_cluster_size`
    Step 5/5: Cluster stability, excess-of-mass selection and labelling

The MST strategy is chosen by `algorithm`:
    - 'generic': dense pairwise matrix + Prim. Any metric, O(m^2) memory.
    - 'prims_kdtree' / 'prims_balltree': tree core distances + pruned Prim.
    - 'boruvka_kdtree' / 'boruvka_balltree': dual-tree Boruvka.
    - 'auto': generic for similarity, binary and canberra metrics; otherwise a
      KD-tree when the metric allows it (else a Ball-tree), with Boruvka above
      `boruvka_feature_threshold` features and Prim below.

Progress is tracked by a `FitState`; every fitted accessor raises
`ModelNotFitError` until the labels have been extracted.
"""

import enum
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from . import persistence, reporter
from .config import ClustererConfig, resolve_config
from .exceptions import ModelNotFitError
from .linkage import CONDENSED_DTYPE, compute_stability, condense_tree, get_labels, label
from .metrics import DistanceMetric, get_metric
from .mst import (
    BoruvkaAlgorithm,
    core_distances_from_matrix,
    mst_linkage_core,
    mst_linkage_core_vector,
    mutual_reachability,
)
from .parallel import ExecutionContext, NeighborQueryTask, PairwiseDistanceTask
from .trees import BallTree, KDTree
from .utils.labels import NOISE_LABEL, NoiseyLabelEncoder
from .utils.logging_setup import log_timing, setup_logging
from .utils.validation import check_dimensions, validate_matrix

# Set up a logger for this module.
logger = logging.getLogger(__name__)

# Metrics whose geometry the trees cannot bound; 'auto' sends them to the dense path.
_GENERIC_ONLY_METRICS = frozenset({'canberra'})


class FitState(enum.IntEnum):
    """Pipeline stages, in the order a fit passes through them."""
    UNFIT = 0
    CORE_DISTANCES_COMPUTED = 1
    MST_BUILT = 2
    DENDROGRAM_LABELED = 3
    CONDENSED = 4
    STABILITY_COMPUTED = 5
    LABELS_EXTRACTED = 6


class HDBSCAN:
    """
    Hierarchical density-based clustering with excess-of-mass cluster selection.

    Parameters may be given as a config object, as flat keyword overrides, or
    both (overrides win):

        >>> model = HDBSCAN(min_cluster_size=10, metric='manhattan')
        >>> labels = model.fit_predict(X)
        >>> model.n_clusters_, model.n_noise_

    Attributes:
        config (ClustererConfig): The validated configuration.
        execution (ExecutionContext): Parallel execution policy for chunked passes.
        state_ (FitState): The furthest pipeline stage reached.
        algorithm_ (str): The concrete MST strategy used by the last fit.
        warnings_ (List[str]): Metric fallbacks and similar degradations.
    """

    __version__ = '0.1.0'

    def __init__(
        self,
        config: Optional[ClustererConfig] = None,
        *,
        execution: Optional[ExecutionContext] = None,
        **overrides: Any,
    ):
        self.config = resolve_config(config, primary='hdbscan', **overrides)
        self.execution = execution or ExecutionContext.from_config(self.config.parallel)
        setup_logging(self.config.output.log_level)

        self._fit_lock = threading.Lock()
        self._reset()
        logger.debug(f'Initialized HDBSCAN v{self.__version__} with {self.config.hdbscan!r}')

    def _reset(self) -> None:
        # Unknown metric names fail here rather than mid-fit
        self._metric = get_metric(self.config.tree.metric, **self.config.tree.metric_params)
        self.state_ = FitState.UNFIT
        self.algorithm_: Optional[str] = None
        self.warnings_: List[str] = []
        self.n_features_in_: Optional[int] = None
        self._core_distances: Optional[np.ndarray] = None
        self._min_spanning_tree: Optional[np.ndarray] = None
        self._single_linkage_tree: Optional[np.ndarray] = None
        self._condensed_tree: Optional[np.ndarray] = None
        self._cluster_stability: Optional[Dict[int, float]] = None
        self._labels: Optional[np.ndarray] = None

    # ==================================================================================
    # Fitting
    # ==================================================================================

    @property
    def is_fit(self) -> bool:
        return self.state_ == FitState.LABELS_EXTRACTED

    def fit(self, X: Any, refit: bool = False) -> 'HDBSCAN':
        """
        Clusters X.

        Args:
            X: Sample matrix of shape (n_samples, n_features). NaN and Inf are rejected.
            refit: Re-run the pipeline even if the model is already fit.

        Returns:
            self

        Raises:
            DataError: If X is not a finite, non-empty 2D numeric matrix.
        """
        with self._fit_lock:
            if self.is_fit and not refit:
                logger.debug('HDBSCAN is already fit; call fit(X, refit=True) to rebuild')
                return self

            X = validate_matrix(X)
            self._reset()
            self.n_features_in_ = X.shape[1]

            logger.info(f'{"=" * 60}')
            logger.info(f'Starting HDBSCAN on {X.shape[0]:,} records with {X.shape[1]:,} features')
            logger.info(f'{"=" * 60}')

            if X.shape[0] == 1:
                self._fit_single_point()
            else:
                self._execute_pipeline(X)

            logger.info(f'{"=" * 60}')
            logger.info(
                f'HDBSCAN complete: {self.n_clusters_:,} clusters, '
                f'{self.n_noise_:,} noise points'
            )
            logger.info(f'{"=" * 60}')
            return self

    def fit_predict(self, X: Any) -> np.ndarray:
        """Fits the model and returns the cluster label of every point."""
        return self.fit(X).labels_

    def _fit_single_point(self) -> None:
        """A lone point has no neighbours and forms no cluster."""
        self.algorithm_ = 'generic'
        self._core_distances = np.zeros(1, dtype=np.float64)
        self._min_spanning_tree = np.zeros((0, 3), dtype=np.float64)
        self._single_linkage_tree = np.zeros((0, 4), dtype=np.float64)
        self._condensed_tree = np.zeros(0, dtype=CONDENSED_DTYPE)
        self._cluster_stability = {}
        self._labels = np.full(1, NOISE_LABEL, dtype=np.intp)
        self.state_ = FitState.LABELS_EXTRACTED

    def _execute_pipeline(self, X: np.ndarray) -> None:
        params = self.config.hdbscan
        builder, tree_cls = self._select_algorithm(X.shape[1])
        self.algorithm_ = builder if tree_cls is None else f'{builder}_{tree_cls.__name__.lower()}'
        logger.debug(f"Using MST strategy '{self.algorithm_}'")

        # Steps 1 & 2: core distances and the mutual-reachability MST
        logger.info(f'Step 1/5: Computing core distances (min_samples={params.min_samples})...')
        if builder == 'generic':
            core_distances, mst = self._generic_mst(X)
        elif builder == 'prims':
            core_distances, mst = self._prims_mst(X, tree_cls)
        else:
            core_distances, mst = self._boruvka_mst(X, tree_cls)
        self._core_distances = core_distances
        self._min_spanning_tree = mst
        self.state_ = FitState.MST_BUILT

        # Step 3: single-linkage dendrogram
        logger.info('Step 3/5: Building the single-linkage tree...')
        order = np.argsort(mst[:, 2], kind='mergesort')
        self._single_linkage_tree = label(mst[order])
        self.state_ = FitState.DENDROGRAM_LABELED

        # Step 4: condensing
        logger.info(f'Step 4/5: Condensing the tree (min_cluster_size={params.min_cluster_size})...')
        self._condensed_tree = condense_tree(self._single_linkage_tree, params.min_cluster_size)
        self.state_ = FitState.CONDENSED

        # Step 5: stability and labels
        logger.info('Step 5/5: Selecting clusters by stability and labelling points...')
        self._cluster_stability = compute_stability(self._condensed_tree)
        self.state_ = FitState.STABILITY_COMPUTED

        raw_labels = get_labels(self._condensed_tree, self._cluster_stability)
        self._labels = NoiseyLabelEncoder().fit_transform(raw_labels)
        self.state_ = FitState.LABELS_EXTRACTED

    def _select_algorithm(self, n_features: int) -> Tuple[str, Optional[type]]:
        """Resolves `algorithm` into a builder name and a tree class (None for generic)."""
        algorithm = self.config.hdbscan.algorithm
        if algorithm == 'generic':
            return 'generic', None
        if algorithm != 'auto':
            builder, tree_name = algorithm.split('_')
            return builder, KDTree if tree_name == 'kdtree' else BallTree

        metric = self._metric
        if metric.is_similarity or metric.is_binary or metric.name in _GENERIC_ONLY_METRICS:
            return 'generic', None
        if KDTree.is_valid_metric(metric):
            tree_cls = KDTree
        elif BallTree.is_valid_metric(metric):
            tree_cls = BallTree
        else:
            return 'generic', None

        if n_features > self.config.hdbscan.boruvka_feature_threshold:
            return 'boruvka', tree_cls
        return 'prims', tree_cls

    def _build_tree(self, X: np.ndarray, tree_cls: type, leaf_size: int):
        tree = tree_cls(X, leaf_size=leaf_size, metric=self._metric)
        self.warnings_.extend(tree.warnings_)
        # The tree may have swapped in its fallback metric
        self._metric = tree.metric
        return tree

    @log_timing('generic MST construction')
    def _generic_mst(self, X: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        distances = PairwiseDistanceTask(X, self._metric).run_with_fallback(self.execution)
        if self._metric.is_similarity:
            # Negated similarity -> 1 - similarity, so self-distances are zero
            distances = np.maximum(1.0 + distances, 0.0)

        params = self.config.hdbscan
        core_distances = core_distances_from_matrix(distances, params.min_samples)
        self.state_ = FitState.CORE_DISTANCES_COMPUTED

        logger.info('Step 2/5: Building the minimum spanning tree (dense generic)...')
        mutual = mutual_reachability(distances, params.min_samples, params.alpha)
        return core_distances, mst_linkage_core(mutual)

    @log_timing('Prim MST construction')
    def _prims_mst(self, X: np.ndarray, tree_cls: type) -> Tuple[np.ndarray, np.ndarray]:
        tree = self._build_tree(X, tree_cls, self.config.tree.leaf_size)
        min_points = min(X.shape[0] - 1, self.config.hdbscan.min_samples)

        neighborhood = NeighborQueryTask(tree, X, min_points + 1).run_with_fallback(self.execution)
        core_distances = neighborhood.distances[:, -1].copy()
        self.state_ = FitState.CORE_DISTANCES_COMPUTED

        logger.info(f'Step 2/5: Building the minimum spanning tree (Prim, {tree_cls.__name__})...')
        mst = mst_linkage_core_vector(X, core_distances, tree.metric, self.config.hdbscan.alpha)
        return core_distances, mst

    @log_timing('Boruvka MST construction')
    def _boruvka_mst(self, X: np.ndarray, tree_cls: type) -> Tuple[np.ndarray, np.ndarray]:
        leaf_size = self.config.tree.leaf_size
        tree = self._build_tree(X, tree_cls, leaf_size)
        params = self.config.hdbscan

        boruvka = BoruvkaAlgorithm(
            tree,
            min_samples=min(X.shape[0] - 1, params.min_samples),
            metric=tree.metric,
            leaf_size=max(leaf_size, 3) // 3,
            approx_min_span_tree=params.approx_min_span_tree,
            alpha=params.alpha,
        )
        self.state_ = FitState.CORE_DISTANCES_COMPUTED

        logger.info(f'Step 2/5: Building the minimum spanning tree (Boruvka, {tree_cls.__name__})...')
        return boruvka.core_distances, boruvka.spanning_tree()

    # ==================================================================================
    # Fitted accessors
    # ==================================================================================

    def _check_is_fit(self) -> None:
        if not self.is_fit:
            raise ModelNotFitError(
                f'HDBSCAN has not been fit (state: {self.state_.name}); call fit(X) first.'
            )

    @property
    def labels_(self) -> np.ndarray:
        self._check_is_fit()
        return self._labels

    @property
    def n_clusters_(self) -> int:
        self._check_is_fit()
        return int(np.unique(self._labels[self._labels != NOISE_LABEL]).size)

    @property
    def n_noise_(self) -> int:
        self._check_is_fit()
        return int(np.count_nonzero(self._labels == NOISE_LABEL))

    @property
    def core_distances_(self) -> np.ndarray:
        self._check_is_fit()
        return self._core_distances

    @property
    def min_spanning_tree_(self) -> np.ndarray:
        self._check_is_fit()
        return self._min_spanning_tree

    @property
    def single_linkage_tree_(self) -> np.ndarray:
        self._check_is_fit()
        return self._single_linkage_tree

    @property
    def condensed_tree_(self) -> np.ndarray:
        self._check_is_fit()
        return self._condensed_tree

    @property
    def cluster_stability_(self) -> Dict[int, float]:
        self._check_is_fit()
        return dict(self._cluster_stability)

    @property
    def metric(self) -> DistanceMetric:
        return self._metric

    def condensed_tree_frame(self) -> pd.DataFrame:
        """The condensed tree as a DataFrame (parent, child, lambda_val, child_size)."""
        return reporter.condensed_tree_to_frame(self.condensed_tree_)

    def fit_summary(self) -> pd.DataFrame:
        """Per-label point counts and percentages, noise included."""
        return reporter.fit_summary_frame(self.labels_)

    def predict(self, X: Any) -> np.ndarray:
        """
        Out-of-sample prediction is not supported.

        The input is still checked against the fitted model first, so a call on
        an unfitted model or with the wrong width fails with the usual error.

        Raises:
            ModelNotFitError: Before fit.
            DimensionMismatchError: If X's width differs from the training data.
            NotImplementedError: Always, once the checks pass.
        """
        self._check_is_fit()
        X = validate_matrix(X)
        check_dimensions(self.n_features_in_, X)
        raise NotImplementedError(
            'HDBSCAN does not support predicting labels for new points; refit on the combined data.'
        )

    # ==================================================================================
    # Persistence
    # ==================================================================================

    def get_fit_arrays(self) -> Dict[str, np.ndarray]:
        """The fitted arrays, keyed by the names used on disk."""
        self._check_is_fit()
        return {
            'labels': self._labels,
            'core_distances': self._core_distances,
            'min_spanning_tree': self._min_spanning_tree,
            'single_linkage_tree': self._single_linkage_tree,
            'condensed_tree': self._condensed_tree,
        }

    def get_fit_state(self) -> Dict[str, Any]:
        """The fitted scalar state (stability, metadata, warnings)."""
        self._check_is_fit()
        return {
            'cluster_stability': dict(self._cluster_stability),
            'n_features_in': self.n_features_in_,
            'algorithm': self.algorithm_,
            'metric': self._metric.name,
            'n_clusters': self.n_clusters_,
            'n_noise': self.n_noise_,
            'warnings': list(self.warnings_),
        }

    def _restore_fit_state(self, components: Dict[str, Any]) -> None:
        arrays = components['arrays']
        state = components['state']

        self._labels = np.asarray(arrays['labels'], dtype=np.intp)
        self._core_distances = np.asarray(arrays['core_distances'], dtype=np.float64)
        self._min_spanning_tree = np.asarray(arrays['min_spanning_tree'], dtype=np.float64)
        self._single_linkage_tree = np.asarray(arrays['single_linkage_tree'], dtype=np.float64)
        self._condensed_tree = np.asarray(arrays['condensed_tree'], dtype=CONDENSED_DTYPE)
        self._cluster_stability = dict(state['cluster_stability'])
        self.n_features_in_ = state['n_features_in']
        self.algorithm_ = state['algorithm']
        if state.get('metric', self._metric.name) != self._metric.name:
            self._metric = get_metric(state['metric'])
        self.warnings_ = list(state.get('warnings', []))
        self.state_ = FitState.LABELS_EXTRACTED

    def save_model(self, directory_path: str) -> None:
        """
        Saves the fitted model to a directory for later use without refitting.

        Raises:
            ModelNotFitError: If the model has not been fit.
        """
        self._check_is_fit()
        logger.info(f'Saving HDBSCAN model to {directory_path}')
        persistence.save_model(self, directory_path)

    @classmethod
    def load_model(cls, directory_path: str) -> 'HDBSCAN':
        """
        Loads a model saved with `save_model`.

        Raises:
            FileNotFoundError: If the directory or one of its files is missing.
        """
        logger.info(f'Loading HDBSCAN model from {directory_path}')
        components = persistence.load_model_components(directory_path)

        model = cls(config=components['config'])
        model._restore_fit_state(components)
        logger.info(f'Model successfully loaded from {directory_path}')
        return model

    def __repr__(self) -> str:
        params = self.config.hdbscan
        return (
            f'HDBSCAN(min_samples={params.min_samples}, '
            f'min_cluster_size={params.min_cluster_size}, alpha={params.alpha}, '
            f"algorithm='{params.algorithm}', metric='{self._metric.name}', "
            f'state={self.state_.name})'
        )


__all__ = ['HDBSCAN', 'FitState']
