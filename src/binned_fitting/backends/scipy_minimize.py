from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import minimize

from .common import NLL_ERRORDEF, EngineStat, Objective

STATUS_OK = 0
STATUS_FAILED = 4

# Minuit-style method names mapped onto scipy.optimize.minimize methods.
_METHOD_ALIASES: Dict[str, str] = {
    "MIGRAD": "L-BFGS-B",
    "MINIMIZE": "L-BFGS-B",
    "SIMPLEX": "Nelder-Mead",
}

_CALL_OPTION: Dict[str, str] = {
    "L-BFGS-B": "maxfun",
    "TNC": "maxfun",
    "Nelder-Mead": "maxfev",
    "Powell": "maxfev",
}


def _numdiff_hessian(func, x0, lo, hi, step: Optional[float] = None) -> Optional[np.ndarray]:
    """Central-difference Hessian, with steps shrunk to stay inside the bounds."""
    x0 = np.asarray(x0, dtype=float)
    npar = int(x0.shape[0])
    step = 1e-4 if step is None else float(step)
    eps = step * (np.abs(x0) + 1.0)

    for i in range(npar):
        if np.isfinite(lo[i]):
            eps[i] = min(eps[i], 0.5 * max(0.0, x0[i] - lo[i]))
        if np.isfinite(hi[i]):
            eps[i] = min(eps[i], 0.5 * max(0.0, hi[i] - x0[i]))
        if eps[i] <= 0.0:
            return None

    f0 = float(func(x0))
    hess = np.zeros((npar, npar), dtype=float)
    for i in range(npar):
        ei = np.zeros(npar, dtype=float)
        ei[i] = eps[i]
        fpp = float(func(x0 + ei))
        fmm = float(func(x0 - ei))
        hess[i, i] = (fpp - 2.0 * f0 + fmm) / (eps[i] ** 2)
        for j in range(i + 1, npar):
            ej = np.zeros(npar, dtype=float)
            ej[j] = eps[j]
            fpp = float(func(x0 + ei + ej))
            fpm = float(func(x0 + ei - ej))
            fmp = float(func(x0 - ei + ej))
            fmm = float(func(x0 - ei - ej))
            hij = (fpp - fpm - fmp + fmm) / (4.0 * eps[i] * eps[j])
            hess[i, j] = hij
            hess[j, i] = hij
    return hess


class ScipyEngine:
    """Engine delegating to scipy.optimize.minimize.

    MIGRAD and MINIMIZE map to L-BFGS-B, SIMPLEX to Nelder-Mead; any other
    name is forwarded to scipy as a method name. HESSE only recomputes the
    covariance. Errors come from a numeric Hessian of the objective at the
    minimum: cov = 2 * errordef * H^-1. The tolerance argument is accepted for
    interface compatibility; scipy's own convergence criteria are used.
    """

    name = "scipy"

    def __init__(
        self,
        *,
        errordef: float = NLL_ERRORDEF,
        print_level: int = 0,
        cov_step: Optional[float] = None,
        cov_jitter: float = 1e-10,
    ) -> None:
        self.owner: Optional[Any] = None
        self.errordef = float(errordef)
        self.print_level = int(print_level)
        self.cov_step = cov_step
        self.cov_jitter = float(cov_jitter)
        self._objective: Optional[Objective] = None
        self._names: Tuple[str, ...] = ()
        self._values = np.zeros(0)
        self._steps = np.zeros(0)
        self._lo = np.zeros(0)
        self._hi = np.zeros(0)
        self._fixed = np.zeros(0, dtype=bool)
        self._errors = np.zeros(0)
        self._cov: Optional[np.ndarray] = None
        self._fmin = math.nan
        self._edm = math.nan
        self._cov_qual = 0

    # ---- definition ----
    def bind(self, objective: Objective, names: Sequence[str]) -> None:
        names = tuple(names)
        if not names:
            raise ValueError("ScipyEngine: cannot bind an objective without parameters.")
        n = len(names)
        self._objective = objective
        self._names = names
        self._values = np.zeros(n)
        self._steps = np.full(n, 0.1)
        self._lo = np.full(n, -np.inf)
        self._hi = np.full(n, np.inf)
        self._fixed = np.zeros(n, dtype=bool)
        self._errors = np.zeros(n)
        self._cov = None
        self._fmin = math.nan
        self._edm = math.nan
        self._cov_qual = 0

    def define_parameter(
        self,
        index: int,
        name: str,
        value: float,
        step: float,
        lo: Optional[float],
        hi: Optional[float],
    ) -> None:
        self._values[index] = float(value)
        self._steps[index] = float(step) if step > 0.0 else 0.1
        self._lo[index] = -np.inf if lo is None else float(lo)
        self._hi[index] = np.inf if hi is None else float(hi)
        self._fixed[index] = False

    def set_value(self, index: int, value: float) -> None:
        self._values[index] = float(value)

    def fix(self, index: int) -> None:
        self._fixed[index] = True

    def release(self, index: int) -> None:
        self._fixed[index] = False

    # ---- running ----
    def _full(self, theta_free: np.ndarray) -> np.ndarray:
        full = self._values.copy()
        full[~self._fixed] = theta_free
        return full

    def _free_objective(self):
        assert self._objective is not None
        objective = self._objective

        def f(theta_free: np.ndarray) -> float:
            v = float(objective(self._full(np.asarray(theta_free, dtype=float))))
            # Non-finite values are a large penalty for the solver only.
            return v if math.isfinite(v) else 1e300

        return f

    def minimize(self, method: str, max_calls: int, tolerance: float) -> int:
        if self._objective is None:
            raise RuntimeError("ScipyEngine: bind() must be called before use.")
        free = ~self._fixed
        f = self._free_objective()
        self._errors = np.zeros(len(self._names))

        if not free.any():
            self._fmin = float(self._objective(self._values.copy()))
            self._edm = 0.0
            self._cov = None
            self._cov_qual = 0
            return STATUS_OK

        status = STATUS_OK
        if method.upper() != "HESSE":
            scipy_method = _METHOD_ALIASES.get(method.upper(), method)
            options: Dict[str, Any] = {}
            if max_calls and max_calls > 0 and scipy_method in _CALL_OPTION:
                options[_CALL_OPTION[scipy_method]] = int(max_calls)
            bounds: List[Tuple[Optional[float], Optional[float]]] = [
                (None if not np.isfinite(lo) else float(lo), None if not np.isfinite(hi) else float(hi))
                for lo, hi in zip(self._lo[free], self._hi[free])
            ]
            try:
                res = minimize(
                    f,
                    self._values[free],
                    method=scipy_method,
                    bounds=bounds,
                    options=options,
                )
            except ValueError as e:
                raise ValueError(f"Unknown minimization method {method!r} for engine {self.name!r}.") from e
            self._values[free] = np.asarray(res.x, dtype=float)
            status = STATUS_OK if res.success else STATUS_FAILED

        self._fmin = float(self._objective(self._values.copy()))
        if not math.isfinite(self._fmin):
            self._cov = None
            self._cov_qual = 0
            self._edm = math.nan
            return STATUS_FAILED
        self._update_covariance(f, free)
        return status

    def _update_covariance(self, f, free: np.ndarray) -> None:
        x0 = self._values[free]
        hess = _numdiff_hessian(f, x0, self._lo[free], self._hi[free], self.cov_step)
        self._cov = None
        self._cov_qual = 0
        self._edm = math.nan
        if hess is None or not np.all(np.isfinite(hess)):
            return

        cov_qual = 3
        try:
            np.linalg.cholesky(hess)
        except np.linalg.LinAlgError:
            hess = hess + self.cov_jitter * np.eye(hess.shape[0])
            cov_qual = 2
        cov_free = 2.0 * self.errordef * np.linalg.pinv(hess)

        n = len(self._names)
        cov = np.zeros((n, n))
        idx = np.flatnonzero(free)
        cov[np.ix_(idx, idx)] = cov_free
        self._cov = cov
        self._cov_qual = cov_qual
        self._errors[free] = np.sqrt(np.clip(np.diag(cov_free), 0.0, None))

        # Estimated distance to minimum from a central-difference gradient.
        eps = 1e-6 * (np.abs(x0) + 1.0)
        grad = np.zeros_like(x0)
        for i in range(x0.size):
            e = np.zeros_like(x0)
            e[i] = eps[i]
            grad[i] = (f(x0 + e) - f(x0 - e)) / (2.0 * eps[i])
        self._edm = float(0.5 * grad @ cov_free @ grad / (2.0 * self.errordef))

    # ---- results ----
    def result(self, index: int) -> Tuple[float, float]:
        return float(self._values[index]), float(self._errors[index])

    def limits(self, index: int) -> Optional[Tuple[float, float]]:
        return None

    def stat(self) -> EngineStat:
        n_free = int((~self._fixed).sum())
        return EngineStat(self._fmin, self._edm, self.errordef, n_free, len(self._names), self._cov_qual)

    def covariance(self) -> Optional[np.ndarray]:
        return None if self._cov is None else self._cov.copy()
