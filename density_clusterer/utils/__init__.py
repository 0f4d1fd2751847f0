# density_clusterer/utils/__init__.py
"""
Utility Package for the Density Clustering Toolkit.

This package consolidates the low-level helpers shared by the trees, the
neighbour models and the HDBSCAN engine, exposing them for convenient access,
e.g., `from density_clusterer.utils import validate_matrix`.

Modules:
- validation: Input matrix coercion and parameter checks.
- labels: Noise-preserving label re-encoding.
- logging_setup: Package logger configuration and stage timing.
"""

# Input validation
from .validation import (
    check_dimensions,
    check_positive,
    validate_matrix,
)

# Label encoding
from .labels import (
    NOISE_LABEL,
    NoiseyLabelEncoder,
)

# Logging
from .logging_setup import (
    PACKAGE_LOGGER_NAME,
    log_timing,
    setup_logging,
)

__all__ = [
    # Validation
    'validate_matrix',
    'check_dimensions',
    'check_positive',
    # Labels
    'NOISE_LABEL',
    'NoiseyLabelEncoder',
    # Logging
    'PACKAGE_LOGGER_NAME',
    'setup_logging',
    'log_timing',
]
