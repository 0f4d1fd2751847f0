# Expose the main classes to the top level of the package
from .config import ClustererConfig, load_config
from .exceptions import (
    ClusteringError,
    ConfigurationError,
    DataError,
    DimensionMismatchError,
    IllegalClusterStateError,
    ModelNotFitError,
)
from .hdbscan import HDBSCAN, FitState
from .metrics import DistanceMetric, get_metric
from .neighbors import NearestNeighbors, RadiusNeighbors
from .parallel import ExecutionContext
from .trees import BallTree, KDTree

# Define the package version
__version__ = '0.1.0'

__all__ = [
    'HDBSCAN',
    'FitState',
    'NearestNeighbors',
    'RadiusNeighbors',
    'KDTree',
    'BallTree',
    'DistanceMetric',
    'get_metric',
    'ExecutionContext',
    'ClustererConfig',
    'load_config',
    'ClusteringError',
    'ConfigurationError',
    'DataError',
    'DimensionMismatchError',
    'IllegalClusterStateError',
    'ModelNotFitError',
]
