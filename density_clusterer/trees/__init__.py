# density_clusterer/trees/__init__.py
"""
Spatial search trees and the query engine built on them.
"""

from .bounds import BallNodeBounds, KDNodeBounds
from .kernels import VALID_KERNELS, log_kernel_norm
from .query import Neighborhood
from .spatial_tree import (
    NODE_DATA_DTYPE,
    TREE_TYPES,
    BallTree,
    KDTree,
    SpatialTree,
    find_node_split_dim,
    get_tree_class,
)

# === Public API ===
__all__ = [
    'SpatialTree',
    'KDTree',
    'BallTree',
    'KDNodeBounds',
    'BallNodeBounds',
    'Neighborhood',
    'NODE_DATA_DTYPE',
    'TREE_TYPES',
    'VALID_KERNELS',
    'find_node_split_dim',
    'get_tree_class',
    'log_kernel_norm',
]
