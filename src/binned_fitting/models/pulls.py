from __future__ import annotations

import math
from typing import Any, Callable, Dict, Sequence

from ..inference import log_exp, log_gaus
from ..model import Model
from ..params import Parameter, ParameterRegistry, qualified_name


class PullModel(Model):
    """Penalty on one existing global parameter, independent of any dataset.

    The target `global.<name>` must already be registered; the pull registers
    it as its only (global) parameter and so shares the existing entry.
    """

    def __init__(self, name: str, registry: ParameterRegistry, target: str) -> None:
        super().__init__(name, registry)
        self.target = str(target)
        self.declare_parameters()

    def declare_parameters(self) -> None:
        full = qualified_name(self.name, self.target, True)
        if full not in self.registry:
            raise KeyError(f"Pull {self.name!r}: global parameter {full!r} is not registered.")
        self.add_parameter(Parameter(self.target, is_global=True))

    def target_value(self, theta: Sequence[float]) -> float:
        return self.value(theta, self.target)


class GaussianPull(PullModel):
    """NLL = -log N(value | centroid, sigma)."""

    def __init__(
        self,
        name: str,
        registry: ParameterRegistry,
        target: str,
        *,
        centroid: float,
        sigma: float,
    ) -> None:
        if not sigma > 0.0:
            raise ValueError(f"Gaussian pull {name!r}: sigma must be positive, got {sigma}.")
        self.centroid = float(centroid)
        self.sigma = float(sigma)
        super().__init__(name, registry, target)

    def nll(self, theta: Sequence[float]) -> float:
        return -log_gaus(self.target_value(theta), self.centroid, self.sigma)


class ExponentialPull(PullModel):
    """NLL = -log Exp(value | limit, quantile, offset).

    The exponential starts at `offset` and its cumulative probability at
    `limit` equals `quantile`.
    """

    def __init__(
        self,
        name: str,
        registry: ParameterRegistry,
        target: str,
        *,
        limit: float,
        quantile: float = 0.9,
        offset: float = 0.0,
    ) -> None:
        if not 0.0 < quantile < 1.0:
            raise ValueError(f"Exponential pull {name!r}: quantile must be in (0, 1), got {quantile}.")
        if not limit > offset:
            raise ValueError(f"Exponential pull {name!r}: limit ({limit}) must exceed offset ({offset}).")
        self.limit = float(limit)
        self.quantile = float(quantile)
        self.offset = float(offset)
        super().__init__(name, registry, target)

    def nll(self, theta: Sequence[float]) -> float:
        value = self.target_value(theta)
        if value < self.offset:
            # Outside the support: forbid the region.
            return math.inf
        return -log_exp(value, self.limit, self.quantile, self.offset)


_PULLS: Dict[str, Callable[..., PullModel]] = {
    "gauss": GaussianPull,
    "exp": ExponentialPull,
}

AVAILABLE_PULLS = tuple(_PULLS.keys())


def build_pull(
    kind: str,
    name: str,
    registry: ParameterRegistry,
    target: str,
    **constants: Any,
) -> PullModel:
    """Construct a pull model from its type string ("gauss" or "exp")."""
    try:
        cls = _PULLS[kind]
    except KeyError as e:
        raise ValueError(f"Unknown pull type {kind!r}. Available: {AVAILABLE_PULLS}") from e
    return cls(name, registry, target, **constants)
