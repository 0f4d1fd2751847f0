# density_clusterer/config/schema.py
"""
Pydantic Schema for the Density Clustering Toolkit Configuration.

This module is the single source of truth for every tunable parameter of the
spatial search trees, the neighbour models, the HDBSCAN engine and the chunked
parallel executor. It leverages Pydantic to define a hierarchical, type-safe
schema:

1.  **Type Safety & Validation**: Values are parsed, validated and cast when a
    configuration object is built, so invalid leaf sizes, non-positive alphas or
    unknown algorithm names are rejected before any computation starts.
2.  **Rich Error Messages**: Pydantic pinpoints exactly which parameter is wrong.
3.  **Self-Documentation**: Field descriptions double as parameter documentation.
4.  **Serialization**: Configurations round-trip through YAML (see `loader.py`).
5.  **Strictness**: `extra='forbid'` rejects misspelled parameter names.

The primary entry point is `ClustererConfig`, which aggregates the stage-specific
configurations (`TreeConfig`, `HdbscanConfig`, `NeighborsConfig`,
`ParallelConfig`, `OutputConfig`).
"""

# ======================================================================================
# Core Library Imports
# ======================================================================================

from typing import Any, Dict, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

# ======================================================================================
# Shared Validators
# ======================================================================================

_LOG_LEVEL_MAP = {'DEBUG': 10, 'INFO': 20, 'WARNING': 30, 'ERROR': 40, 'CRITICAL': 50}

HDBSCAN_ALGORITHMS = (
    'auto',
    'generic',
    'prims_kdtree',
    'prims_balltree',
    'boruvka_kdtree',
    'boruvka_balltree',
)

NEIGHBORS_ALGORITHMS = ('auto', 'kd_tree', 'ball_tree')


def _normalize_metric_name(v: Any) -> Any:
    """Lower-cases metric names so 'Euclidean' and 'euclidean' are equivalent."""
    if isinstance(v, str):
        return v.strip().lower()
    return v


# ======================================================================================
# Search Tree Configuration
# ======================================================================================


class TreeConfig(BaseModel):
    """
    Configuration for the KD-tree / Ball-tree spatial indexes.

    These values are shared by every component that builds a tree: the neighbour
    models, the tree-based MST builders, and kernel density estimation.
    """

    model_config = ConfigDict(extra='forbid')

    leaf_size: int = Field(
        default=40,
        ge=1,
        description=(
            'Maximum number of points held by a leaf node before it is split. '
            'Smaller leaves mean deeper trees and more bound computations; larger '
            'leaves mean more brute-force distance evaluations per leaf.'
        ),
    )

    metric: str = Field(
        default='euclidean',
        description=(
            "Name of the distance metric (e.g. 'euclidean', 'manhattan', "
            "'chebyshev', 'minkowski', 'haversine_km'). Metrics not supported by "
            'the selected tree type fall back to Euclidean with a recorded warning.'
        ),
    )

    metric_params: Dict[str, Any] = Field(
        default_factory=dict,
        description="Keyword arguments for the metric, e.g. {'p': 3} for minkowski.",
    )

    @field_validator('metric', mode='before')
    @classmethod
    def normalize_metric(cls, v: Any) -> Any:
        """Strips and lower-cases the metric name."""
        return _normalize_metric_name(v)


# ======================================================================================
# HDBSCAN Configuration
# ======================================================================================


class HdbscanConfig(BaseModel):
    """
    Parameters governing a single HDBSCAN fit.

    `min_samples` controls how conservative the density estimate is (the core
    distance is the distance to the `min_samples`-th neighbour), while
    `min_cluster_size` controls which splits of the condensed tree survive as
    clusters in their own right.
    """

    model_config = ConfigDict(extra='forbid')

    min_samples: int = Field(
        default=5,
        ge=1,
        description='Neighbourhood size used to compute each point\'s core distance.',
    )

    min_cluster_size: int = Field(
        default=5,
        ge=1,
        description=(
            'Smallest group of points the condensed tree treats as a cluster. '
            'Splits producing smaller children are absorbed into their parent.'
        ),
    )

    alpha: float = Field(
        default=1.0,
        gt=0.0,
        description='Scaling applied to raw distances before mutual reachability.',
    )

    algorithm: str = Field(
        default='auto',
        description=(
            'MST strategy: one of '
            "'auto', 'generic', 'prims_kdtree', 'prims_balltree', "
            "'boruvka_kdtree', 'boruvka_balltree'."
        ),
    )

    approx_min_span_tree: bool = Field(
        default=True,
        description=(
            'Allow the Boruvka builder to keep node bounds between rounds when no '
            'components merged, trading exactness of tie handling for speed.'
        ),
    )

    boruvka_feature_threshold: int = Field(
        default=60,
        ge=1,
        description='Feature count above which `auto` prefers Boruvka over Prim.',
    )

    @field_validator('algorithm', mode='before')
    @classmethod
    def validate_algorithm(cls, v: Any) -> str:
        """Normalizes algorithm names to lower case and checks them."""
        if not isinstance(v, str):
            raise TypeError(f'algorithm must be a string, not {type(v).__name__}')
        normalized = v.strip().lower()
        if normalized not in HDBSCAN_ALGORITHMS:
            raise ValueError(
                f"Unknown HDBSCAN algorithm '{v}'. Must be one of {list(HDBSCAN_ALGORITHMS)}"
            )
        return normalized


# ======================================================================================
# Neighbour Model Configuration
# ======================================================================================


class NeighborsConfig(BaseModel):
    """Configuration for the `NearestNeighbors` and `RadiusNeighbors` models."""

    model_config = ConfigDict(extra='forbid')

    n_neighbors: int = Field(
        default=5,
        ge=1,
        description='Number of neighbours returned by k-NN queries.',
    )

    radius: float = Field(
        default=1.0,
        gt=0.0,
        description='Search radius used by radius-neighbour queries.',
    )

    algorithm: Literal['auto', 'kd_tree', 'ball_tree'] = Field(
        default='auto',
        description="Tree type: 'kd_tree', 'ball_tree', or 'auto' (KD when the metric allows).",
    )

    dual_tree: bool = Field(
        default=False,
        description='Use dual-tree traversal for batch k-NN queries.',
    )

    sort_results: bool = Field(
        default=True,
        description='Return each neighbour row sorted by ascending distance.',
    )


# ======================================================================================
# Parallel Execution Configuration
# ======================================================================================


class ParallelConfig(BaseModel):
    """
    Configuration for row-chunked parallel execution.

    These values are converted once into an immutable `ExecutionContext` that is
    passed explicitly to every task able to parallelize.
    """

    model_config = ConfigDict(extra='forbid')

    allow_parallel: bool = Field(
        default=False,
        description='Permit chunked parallel execution of the heavy numeric passes.',
    )

    n_jobs: int = Field(
        default=-1,
        description=(
            'Worker count for joblib. Negative values count back from the number '
            'of available cores (-1 means all cores).'
        ),
    )

    chunk_size: int = Field(
        default=500,
        ge=1,
        description='Number of rows handed to each worker at a time.',
    )

    min_elements: int = Field(
        default=15000,
        ge=0,
        description='Minimum matrix size (rows x columns) before parallelism is used.',
    )

    force_parallel: bool = Field(
        default=False,
        description='Parallelize even below `min_elements` (requires allow_parallel).',
    )

    @field_validator('n_jobs')
    @classmethod
    def validate_n_jobs(cls, v: int) -> int:
        """Rejects a worker count of zero, which joblib cannot honour."""
        if v == 0:
            raise ValueError('n_jobs must be a positive count or a negative offset, not 0.')
        return v


# ======================================================================================
# Output / Logging Configuration
# ======================================================================================


class OutputConfig(BaseModel):
    """Configuration for logging verbosity."""

    model_config = ConfigDict(extra='forbid')

    log_level: int | str = Field(
        default='INFO',
        description=(
            'The logging verbosity level. Can be specified as a standard logging integer '
            'or a case-insensitive string:\n'
            "- 'DEBUG' (10): Detailed per-stage timings and tree statistics.\n"
            "- 'INFO' (20): Stage banners and cluster counts (recommended default).\n"
            "- 'WARNING' (30): Metric fallbacks and parallel fallbacks only.\n"
            "- 'ERROR' (40): Only error messages.\n"
            "- 'CRITICAL' (50): Only critical failures that halt execution."
        ),
    )

    @field_validator('log_level', mode='before')
    @classmethod
    def validate_and_normalize_log_level(cls, v: int | str) -> int:
        """Converts string log levels to their integer equivalents and validates them."""
        if isinstance(v, str):
            upper_v = v.upper()
            if upper_v in _LOG_LEVEL_MAP:
                return _LOG_LEVEL_MAP[upper_v]
            raise ValueError(
                f"Invalid log level string: '{v}'. Must be one of {list(_LOG_LEVEL_MAP.keys())}"
            )

        if isinstance(v, int):
            if v in _LOG_LEVEL_MAP.values():
                return v
            raise ValueError(
                f'Invalid log level integer: {v}. Must be one of {list(_LOG_LEVEL_MAP.values())}'
            )

        raise TypeError(f'log_level must be a string or an integer, not {type(v).__name__}')


# ======================================================================================
# Master Configuration
# ======================================================================================


class ClustererConfig(BaseModel):
    """
    Master configuration for the density clustering toolkit.

    Usage:
        # Load from YAML file
        config = load_config('clusterer.yaml')

        # Or create with custom parameters
        config = ClustererConfig(
            hdbscan=HdbscanConfig(min_cluster_size=10),
            tree=TreeConfig(leaf_size=20),
        )

        model = HDBSCAN(config=config)

    The configuration follows a hierarchical structure:
    - tree: Spatial index construction (leaf size, metric)
    - hdbscan: Density clustering parameters
    - neighbors: k-NN / radius model parameters
    - parallel: Chunked parallel execution policy
    - output: Logging verbosity
    """

    model_config = ConfigDict(extra='forbid')

    tree: TreeConfig = Field(
        default_factory=TreeConfig,
        description='Configuration for KD-tree / Ball-tree construction.',
    )

    hdbscan: HdbscanConfig = Field(
        default_factory=HdbscanConfig,
        description='Configuration for the HDBSCAN engine.',
    )

    neighbors: NeighborsConfig = Field(
        default_factory=NeighborsConfig,
        description='Configuration for the neighbour models.',
    )

    parallel: ParallelConfig = Field(
        default_factory=ParallelConfig,
        description='Configuration for chunked parallel execution.',
    )

    output: OutputConfig = Field(
        default_factory=OutputConfig,
        description='Configuration for logging verbosity.',
    )

    @model_validator(mode='after')
    def check_minkowski_params(self) -> 'ClustererConfig':
        """
        Ensures a Minkowski metric carries a usable exponent.

        The exponent defaults to 2 when omitted; values below 1 do not define a
        metric and are rejected here rather than at tree construction.
        """
        if self.tree.metric == 'minkowski':
            p: Optional[float] = self.tree.metric_params.get('p', 2.0)
            if p is None or float(p) < 1.0:
                raise ValueError(f"minkowski metric requires p >= 1, got p={p}")
        return self


# === Public API ===
__all__ = [
    # Main configuration
    'ClustererConfig',
    # Sub-configurations
    'TreeConfig',
    'HdbscanConfig',
    'NeighborsConfig',
    'ParallelConfig',
    'OutputConfig',
    # Constants
    'HDBSCAN_ALGORITHMS',
    'NEIGHBORS_ALGORITHMS',
]
