from __future__ import annotations

import warnings
from typing import List, Sequence, Tuple

import numpy as np

from .params import GLOBAL_PREFIX, Parameter, ParameterRegistry, qualified_name

__all__ = ["Model"]


class Model:
    """A named contribution to the total negative log-likelihood.

    Subclasses implement `nll(theta)`, where `theta` is the flat parameter
    vector laid out in registry order, and may override `declare_parameters()`
    to register what they need. All models of one fit share one registry.
    """

    def __init__(
        self,
        name: str,
        registry: ParameterRegistry,
        *,
        exposure: float = 1.0,
    ) -> None:
        if not name:
            raise ValueError("Models need a non-empty name.")
        if name == GLOBAL_PREFIX:
            raise ValueError(f"{GLOBAL_PREFIX!r} is reserved and cannot be used as a model name.")
        self.name = str(name)
        self.registry = registry
        self.exposure = float(exposure)
        self._local_names: List[str] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, parameters={self._local_names})"

    # ---- registration ----
    def declare_parameters(self) -> None:
        """Register the parameters this model needs. Optional hook."""

    def add_parameter(self, parameter: Parameter) -> bool:
        """Register `parameter` (given by its bare name) for this model.

        The stored name is rewritten to its qualified form. If the qualified
        name is already in the registry (a global declared by another model)
        the new object is discarded and the existing entry is shared.
        Returns True if the registry took ownership of `parameter`.
        """
        bare = parameter.name
        if bare in self._local_names:
            warnings.warn(
                f"Parameter {bare!r} already registered in model {self.name!r}; ignoring duplicate.",
                UserWarning,
                stacklevel=2,
            )
            return False

        full = qualified_name(self.name, bare, parameter.is_global)
        if not parameter.is_global and full in self.registry:
            raise ValueError(
                f"Local parameter {full!r} is already registered by another model named {self.name!r}."
            )
        self._local_names.append(bare)
        parameter.name = full
        return self.registry.insert(parameter)

    @property
    def local_names(self) -> Tuple[str, ...]:
        """Bare names in registration order."""
        return tuple(self._local_names)

    # ---- lookup ----
    def resolve_name(self, name: str) -> str:
        """Qualified name of `name`: the global entry wins over a local one."""
        for full in (qualified_name(self.name, name, True), qualified_name(self.name, name, False)):
            if full in self.registry:
                return full
        raise KeyError(f"Parameter {name!r} not found for model {self.name!r}.")

    def get_parameter(self, name: str) -> Parameter:
        return self.registry[self.resolve_name(name)]

    def parameter_index(self, name: str) -> int:
        return self.registry.index(self.resolve_name(name))

    def value(self, theta: Sequence[float], name: str) -> float:
        """Value of the parameter `name` in the flat vector `theta`."""
        return float(theta[self.parameter_index(name)])

    def local_values(self, theta: Sequence[float]) -> np.ndarray:
        return np.array([self.value(theta, n) for n in self._local_names], dtype=float)

    def best_values(self) -> np.ndarray:
        return np.array([self.get_parameter(n).best_value for n in self._local_names], dtype=float)

    # ---- likelihood ----
    def nll(self, theta: Sequence[float]) -> float:
        raise NotImplementedError

    def __call__(self, theta: Sequence[float]) -> float:
        return self.nll(theta)
