# density_clusterer/utils/validation.py
"""
Input validation helpers shared by the trees, neighbour models and HDBSCAN.

The toolkit assumes an upstream validator hands it rectangular, finite matrices,
but it must never silently compute garbage when that assumption is broken. These
helpers convert inputs into contiguous float64 NumPy arrays and raise the
package's typed errors when the data or the arguments are unusable.

Key Functions:
- validate_matrix: Coerce to a finite 2D float64 array (raises DataError).
- check_dimensions: Compare a query matrix's width against the fitted width.
- check_positive: Reject non-positive scalar parameters (raises ConfigurationError).
"""

import logging
from typing import Any

import numpy as np

from ..exceptions import ConfigurationError, DataError, DimensionMismatchError

# Set up a logger for this module
logger = logging.getLogger(__name__)


def validate_matrix(
    X: Any,
    *,
    copy: bool = False,
    allow_empty: bool = False,
    name: str = 'X',
) -> np.ndarray:
    """
    Validates an input matrix and returns it as a 2D float64 array.

    Args:
        X: Array-like input of shape (n_samples, n_features).
        copy: If True, always return a fresh copy rather than a view.
        allow_empty: If False (default), a matrix with zero rows is rejected.
        name: Name used in error messages.

    Returns:
        A C-contiguous float64 ndarray.

    Raises:
        DataError: If the input cannot be converted, is not 2D, has no columns,
            is empty (unless allowed), or contains NaN/Inf values.
    """
    try:
        if copy:
            matrix = np.array(X, dtype=np.float64, order='C')
        else:
            matrix = np.ascontiguousarray(X, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise DataError(f'{name} could not be converted to a numeric matrix: {e}') from e

    if matrix.ndim != 2:
        raise DataError(f'{name} must be 2D, got an array with shape {matrix.shape}')

    if matrix.shape[0] == 0 and not allow_empty:
        raise DataError(f'{name} must contain at least one row')

    if matrix.shape[1] == 0:
        raise DataError(f'{name} has zero feature columns')

    if not np.isfinite(matrix).all():
        n_nan = int(np.isnan(matrix).sum())
        n_inf = int(np.isinf(matrix).sum())
        raise DataError(f'{name} contains {n_nan} NaN and {n_inf} Inf values')

    logger.debug(f'Validated {name} with shape {matrix.shape}')
    return matrix


def check_dimensions(expected_features: int, X: np.ndarray) -> None:
    """
    Raises DimensionMismatchError if X's width differs from the fitted width.

    Args:
        expected_features: Number of features the model or tree was fit on.
        X: Query matrix (already validated as 2D).
    """
    if X.shape[1] != expected_features:
        raise DimensionMismatchError(expected_features, X.shape[1])


def check_positive(name: str, value: float, *, allow_zero: bool = False) -> float:
    """
    Validates that a scalar parameter is strictly positive (or non-negative).

    Args:
        name: Parameter name for the error message.
        value: The value to check.
        allow_zero: Accept zero as valid.

    Returns:
        The value, unchanged, for convenient inline use.

    Raises:
        ConfigurationError: If the value is NaN or out of range.
    """
    if value is None or np.isnan(value):
        raise ConfigurationError(f'{name} must be a number, got {value!r}')
    if value < 0 or (value == 0 and not allow_zero):
        qualifier = 'non-negative' if allow_zero else 'strictly positive'
        raise ConfigurationError(f'{name} must be {qualifier}, got {value}')
    return value
