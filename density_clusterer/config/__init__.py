# density_clusterer/config/__init__.py
"""
Initializes the config sub-package.

This file makes the most important components of the configuration system
directly available when importing from `density_clusterer.config`, simplifying
access for other parts of the package.
"""

from .loader import load_config, load_raw_config, resolve_config, save_config
from .schema import (
    HDBSCAN_ALGORITHMS,
    NEIGHBORS_ALGORITHMS,
    ClustererConfig,
    HdbscanConfig,
    NeighborsConfig,
    OutputConfig,
    ParallelConfig,
    TreeConfig,
)

# Defines the public API of this sub-package.
__all__ = [
    'ClustererConfig',
    'TreeConfig',
    'HdbscanConfig',
    'NeighborsConfig',
    'ParallelConfig',
    'OutputConfig',
    'HDBSCAN_ALGORITHMS',
    'NEIGHBORS_ALGORITHMS',
    'load_config',
    'load_raw_config',
    'save_config',
    'resolve_config',
]
