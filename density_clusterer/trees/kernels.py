# density_clusterer/trees/kernels.py
"""
Smoothing kernels for tree-based kernel density estimation.

All kernels are evaluated in log space so that sums of many tiny contributions
can be accumulated with `logaddexp` without underflow. `log_kernel_norm`
returns the log of the constant that turns a kernel sum into a density in
`n_features` dimensions; volumes of unit balls come from `math.lgamma`.
"""

import math

import numpy as np

from ..exceptions import ConfigurationError

LOG_PI = math.log(math.pi)
LOG_2PI = math.log(2 * math.pi)

VALID_KERNELS = ('gaussian', 'tophat', 'epanechnikov', 'exponential', 'linear', 'cosine')


def validate_kernel(kernel: str) -> str:
    key = str(kernel).lower()
    if key not in VALID_KERNELS:
        raise ConfigurationError(f"Unknown kernel '{kernel}'. Must be one of {list(VALID_KERNELS)}")
    return key


def log_kernel(dist: float, h: float, kernel: str) -> float:
    """Log of the (unnormalised) kernel value at distance `dist`."""
    if kernel == 'gaussian':
        return -0.5 * (dist * dist) / (h * h)
    if kernel == 'exponential':
        return -dist / h
    if dist >= h:
        return -math.inf
    if kernel == 'tophat':
        return 0.0
    if kernel == 'epanechnikov':
        return math.log(1.0 - (dist * dist) / (h * h))
    if kernel == 'linear':
        return math.log(1.0 - dist / h)
    # cosine
    return math.log(math.cos(0.5 * math.pi * dist / h))


def log_kernel_array(dist: np.ndarray, h: float, kernel: str) -> np.ndarray:
    """Vectorised `log_kernel`."""
    dist = np.asarray(dist, dtype=np.float64)
    if kernel == 'gaussian':
        return -0.5 * (dist * dist) / (h * h)
    if kernel == 'exponential':
        return -dist / h

    inside = dist < h
    out = np.full(dist.shape, -np.inf)
    d = dist[inside]
    if kernel == 'tophat':
        out[inside] = 0.0
    elif kernel == 'epanechnikov':
        out[inside] = np.log(1.0 - (d * d) / (h * h))
    elif kernel == 'linear':
        out[inside] = np.log(1.0 - d / h)
    else:
        out[inside] = np.log(np.cos(0.5 * np.pi * d / h))
    return out


def _log_vn(n: int) -> float:
    """Log volume of the unit ball in n dimensions."""
    return 0.5 * n * LOG_PI - math.lgamma(0.5 * n + 1)


def _log_sn(n: int) -> float:
    """Log surface area of the unit sphere embedded in n + 1 dimensions."""
    return LOG_2PI + _log_vn(n - 1)


def log_kernel_norm(h: float, d: int, kernel: str) -> float:
    """
    Log normalisation constant of a kernel of bandwidth `h` in `d` dimensions.
    """
    if kernel == 'gaussian':
        factor = 0.5 * d * LOG_2PI
    elif kernel == 'tophat':
        factor = _log_vn(d)
    elif kernel == 'epanechnikov':
        factor = _log_vn(d) + math.log(2.0 / (d + 2.0))
    elif kernel == 'exponential':
        factor = _log_sn(d - 1) + math.lgamma(d)
    elif kernel == 'linear':
        factor = _log_vn(d) - math.log(d + 1.0)
    else:
        # cosine: closed form of the radial integral of cos(pi x / 2) x^(d-1)
        factor = 0.0
        tmp = 2.0 / math.pi
        for k in range(1, d + 1, 2):
            factor += tmp
            tmp *= -(d - k) * (d - k - 1) * (2.0 / math.pi) ** 2
        factor = math.log(factor) + _log_sn(d - 1)
    return -factor - d * math.log(h)


def logaddexp(x: float, y: float) -> float:
    if x == -math.inf:
        return y
    if y == -math.inf:
        return x
    if x >= y:
        return x + math.log1p(math.exp(y - x))
    return y + math.log1p(math.exp(x - y))


def logsubexp(x: float, y: float) -> float:
    """log(exp(x) - exp(y)); -inf when y >= x."""
    if y >= x:
        return -math.inf
    t = math.exp(y - x)
    # y within an ulp of x rounds t up to 1.0
    if t >= 1.0:
        return -math.inf
    return x + math.log1p(-t)
