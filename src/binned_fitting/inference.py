from __future__ import annotations

import math
from typing import Any

import numpy as np
from scipy.special import gammaln

# Expectations at or above this value use the Gaussian limit of the Poisson term.
POISSON_GAUSS_THRESHOLD = 899.0

_LOG_SQRT_2PI = 0.5 * math.log(2.0 * math.pi)


def log_gaus(x: float, mean: float, sigma: float) -> float:
    """Log of a normalized Gaussian density. Returns nan for sigma <= 0."""
    if sigma <= 0.0:
        return math.nan
    dx = (x - mean) / sigma
    return -0.5 * dx * dx - _LOG_SQRT_2PI - math.log(sigma)


def log_poisson(x: float, lam: float) -> float:
    """Log of the Poisson probability of observing x given expectation lam.

    Undefined inputs (negative x or lam, or x > 0 with lam == 0) give -inf.
    """
    if lam < 0.0 or x < 0.0:
        return -math.inf
    if lam == 0.0:
        return 0.0 if x == 0.0 else -math.inf
    if x == 0.0:
        return -lam
    if lam < POISSON_GAUSS_THRESHOLD:
        return x * math.log(lam) - lam - float(gammaln(x + 1.0))
    return log_gaus(x, lam, math.sqrt(lam))


def log_exp(x: float, limit: float, quantile: float = 0.9, offset: float = 0.0) -> float:
    """Log-density of an exponential starting at `offset`.

    The rate is chosen so that the cumulative probability at `limit` equals
    `quantile`:  a = -ln(1 - quantile) / (limit - offset).
    Requires 0 < quantile < 1, limit > offset and x >= offset; nan otherwise.
    """
    if not 0.0 < quantile < 1.0:
        return math.nan
    if limit <= offset:
        return math.nan
    if x < offset:
        return math.nan
    a = -math.log(1.0 - quantile) / (limit - offset)
    return math.log(a) - a * (x - offset)


def log_poisson_array(x: Any, lam: Any) -> np.ndarray:
    """Element-wise log_poisson with the same edge-case policy."""
    x = np.asarray(x, dtype=float)
    lam = np.asarray(lam, dtype=float)
    x, lam = np.broadcast_arrays(x, lam)

    out = np.full(x.shape, -np.inf, dtype=float)
    valid = (x >= 0.0) & (lam >= 0.0)

    empty = valid & (lam == 0.0) & (x == 0.0)
    out[empty] = 0.0

    positive = valid & (lam > 0.0)
    zero_obs = positive & (x == 0.0)
    out[zero_obs] = -lam[zero_obs]

    exact = positive & (x > 0.0) & (lam < POISSON_GAUSS_THRESHOLD)
    xe = x[exact]
    le = lam[exact]
    out[exact] = xe * np.log(le) - le - gammaln(xe + 1.0)

    gauss = positive & (x > 0.0) & (lam >= POISSON_GAUSS_THRESHOLD)
    xg = x[gauss]
    lg = lam[gauss]
    out[gauss] = -0.5 * (xg - lg) ** 2 / lg - _LOG_SQRT_2PI - 0.5 * np.log(lg)
    return out


def neg_loglike_poisson(observed: Any, expected: Any) -> float:
    """Total Poisson negative log-likelihood summed over all entries."""
    return float(-np.sum(log_poisson_array(observed, expected)))
