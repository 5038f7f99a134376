from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Sequence, Tuple

import numpy as np

Objective = Callable[[np.ndarray], float]

# Errordef of a negative log-likelihood: one sigma is where it rises by 0.5.
NLL_ERRORDEF = 0.5


@dataclass(frozen=True)
class EngineStat:
    """Global diagnostics of the last engine call."""

    fmin: float
    edm: float
    errordef: float
    n_free: int
    n_total: int
    cov_qual: int  # 0 not computed, 1 approximate, 2 forced positive-definite, 3 accurate


class Engine(Protocol):
    """External minimizer driven through a flat, positionally indexed parameter vector.

    `bind` (re)creates the engine state for a new objective and parameter list;
    every parameter must then be defined before minimizing. `owner` records the
    Minimizer that last bound the engine.
    """

    name: str
    owner: Optional[Any]
    errordef: float
    print_level: int

    def bind(self, objective: Objective, names: Sequence[str]) -> None: ...

    def define_parameter(
        self,
        index: int,
        name: str,
        value: float,
        step: float,
        lo: Optional[float],
        hi: Optional[float],
    ) -> None: ...

    def set_value(self, index: int, value: float) -> None: ...

    def fix(self, index: int) -> None: ...

    def release(self, index: int) -> None: ...

    def minimize(self, method: str, max_calls: int, tolerance: float) -> int: ...

    def result(self, index: int) -> Tuple[float, float]: ...

    def limits(self, index: int) -> Optional[Tuple[float, float]]: ...

    def stat(self) -> EngineStat: ...

    def covariance(self) -> Optional[np.ndarray]: ...


def bounds_or_inf(lo: Optional[float], hi: Optional[float]) -> Tuple[float, float]:
    return (-np.inf if lo is None else float(lo), np.inf if hi is None else float(hi))
