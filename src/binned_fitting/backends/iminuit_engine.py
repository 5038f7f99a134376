from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Tuple

import numpy as np
from iminuit import Minuit

from .common import NLL_ERRORDEF, EngineStat, Objective, bounds_or_inf

logger = logging.getLogger(__name__)

# Status codes follow the Minuit convention: 0 ok, 4 abnormal termination.
STATUS_OK = 0
STATUS_FAILED = 4


class MinuitEngine:
    """Engine backed by iminuit.

    Methods: MIGRAD, SIMPLEX, MINIMIZE (MIGRAD, then SIMPLEX + MIGRAD if the
    first attempt is not valid), HESSE, MINOS and SCAN.
    """

    name = "iminuit"

    def __init__(self, *, errordef: float = NLL_ERRORDEF, print_level: int = 0) -> None:
        self.owner: Optional[Any] = None
        self.errordef = float(errordef)
        self._print_level = int(print_level)
        self._m: Optional[Minuit] = None
        self._objective: Optional[Objective] = None
        self._names: Tuple[str, ...] = ()
        self._fval_fixed: Optional[float] = None

    @property
    def print_level(self) -> int:
        return self._print_level

    @print_level.setter
    def print_level(self, level: int) -> None:
        self._print_level = int(level)
        if self._m is not None:
            self._m.print_level = max(0, min(self._print_level, 3))

    def _minuit(self) -> Minuit:
        if self._m is None:
            raise RuntimeError("MinuitEngine: bind() must be called before use.")
        return self._m

    # ---- definition ----
    def bind(self, objective: Objective, names: Sequence[str]) -> None:
        names = tuple(names)
        if not names:
            raise ValueError("MinuitEngine: cannot bind an objective without parameters.")

        def fcn(*theta: float) -> float:
            return float(objective(np.asarray(theta, dtype=float)))

        m = Minuit(fcn, *np.zeros(len(names)), name=names)
        m.errordef = self.errordef
        m.print_level = max(0, min(self._print_level, 3))
        self._m = m
        self._objective = objective
        self._names = names
        self._fval_fixed = None

    def define_parameter(
        self,
        index: int,
        name: str,
        value: float,
        step: float,
        lo: Optional[float],
        hi: Optional[float],
    ) -> None:
        m = self._minuit()
        m.fixed[index] = False
        m.limits[index] = bounds_or_inf(lo, hi)
        m.values[index] = float(value)
        if step > 0.0:
            m.errors[index] = float(step)

    def set_value(self, index: int, value: float) -> None:
        self._minuit().values[index] = float(value)

    def fix(self, index: int) -> None:
        self._minuit().fixed[index] = True

    def release(self, index: int) -> None:
        self._minuit().fixed[index] = False

    # ---- running ----
    def minimize(self, method: str, max_calls: int, tolerance: float) -> int:
        m = self._minuit()
        method = method.upper()
        ncall = int(max_calls) if max_calls and max_calls > 0 else None
        if tolerance and tolerance > 0.0:
            m.tol = float(tolerance)

        self._fval_fixed = None
        if m.nfit == 0:
            # Nothing free: the minimum is the objective at the current values.
            assert self._objective is not None
            self._fval_fixed = float(self._objective(np.asarray(m.values, dtype=float)))
            return STATUS_OK

        if method == "MIGRAD":
            m.migrad(ncall=ncall)
            return self._status()
        if method == "SIMPLEX":
            m.simplex(ncall=ncall)
            return self._status()
        if method == "MINIMIZE":
            m.migrad(ncall=ncall)
            if not m.valid:
                logger.debug("MINIMIZE: migrad not valid, retrying after simplex")
                m.simplex(ncall=ncall)
                m.migrad(ncall=ncall)
            return self._status()
        if method == "HESSE":
            m.hesse(ncall=ncall)
            return STATUS_OK if m.covariance is not None else STATUS_FAILED
        if method == "MINOS":
            try:
                m.minos(ncall=ncall)
            except RuntimeError as e:
                # iminuit refuses to run MINOS from an invalid minimum.
                logger.warning("MINOS not run: %s", str(e).splitlines()[0])
                return STATUS_FAILED
            ok = all(me.is_valid for me in m.merrors.values())
            return STATUS_OK if ok else STATUS_FAILED
        if method == "SCAN":
            m.scan(ncall=ncall)
            return self._status()
        raise ValueError(
            f"Unknown minimization method {method!r} for engine {self.name!r}. "
            "Available: ('MIGRAD', 'SIMPLEX', 'MINIMIZE', 'HESSE', 'MINOS', 'SCAN')"
        )

    def _status(self) -> int:
        fmin = self._minuit().fmin
        if fmin is None or not fmin.is_valid:
            return STATUS_FAILED
        return STATUS_OK

    # ---- results ----
    def result(self, index: int) -> Tuple[float, float]:
        m = self._minuit()
        value = float(m.values[index])
        if m.fixed[index]:
            return value, 0.0
        return value, float(m.errors[index])

    def limits(self, index: int) -> Optional[Tuple[float, float]]:
        m = self._minuit()
        name = self._names[index]
        if name not in m.merrors:
            return None
        me = m.merrors[name]
        value = float(m.values[index])
        return value + float(me.lower), value + float(me.upper)

    def stat(self) -> EngineStat:
        m = self._minuit()
        fmin = m.fmin
        if self._fval_fixed is not None:
            return EngineStat(self._fval_fixed, 0.0, self.errordef, 0, len(self._names), 0)
        if fmin is None:
            return EngineStat(float("nan"), float("nan"), self.errordef, int(m.nfit), len(self._names), 0)
        if m.covariance is None:
            cov_qual = 0
        elif fmin.has_accurate_covar:
            cov_qual = 3
        elif fmin.has_made_posdef_covar:
            cov_qual = 2
        else:
            cov_qual = 1
        return EngineStat(float(fmin.fval), float(fmin.edm), self.errordef, int(m.nfit), len(self._names), cov_qual)

    def covariance(self) -> Optional[np.ndarray]:
        cov = self._minuit().covariance
        if cov is None:
            return None
        return np.array(cov, dtype=float)

