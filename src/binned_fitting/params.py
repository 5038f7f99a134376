from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Mapping, Optional, Tuple

__all__ = [
    "GLOBAL_PREFIX",
    "Parameter",
    "ParameterKind",
    "ParameterRegistry",
    "qualified_name",
]

GLOBAL_PREFIX = "global"


def qualified_name(owner: str, name: str, is_global: bool = False) -> str:
    """Return the registry key of `name` declared by the model `owner`."""
    return f"{GLOBAL_PREFIX if is_global else owner}.{name}"


class ParameterKind(Enum):
    UNDEFINED = 0
    POI = 1
    NUISANCE = 2
    INPUT = 3


@dataclass
class Parameter:
    """A named, range-bounded scalar fit quantity.

    Unset range edges are stored as None. The fit start value defaults to the
    midpoint of the range and the start step to 1/100 of its width.
    """

    name: str
    range_min: Optional[float] = None
    range_max: Optional[float] = None
    start_value: Optional[float] = None
    step: Optional[float] = None
    fixed: bool = False
    is_global: bool = False
    kind: ParameterKind = ParameterKind.UNDEFINED

    # Fit results
    best_value: float = 0.0
    best_error: float = 0.0
    lower_limit: float = 0.0
    upper_limit: float = 0.0

    # ---- range ----
    def set_range(self, lo: Optional[float], hi: Optional[float]) -> "Parameter":
        self.range_min = None if lo is None else float(lo)
        self.range_max = None if hi is None else float(hi)
        return self

    @property
    def has_range(self) -> bool:
        return self.range_min is not None and self.range_max is not None

    @property
    def range_width(self) -> float:
        if not self.has_range:
            return 0.0
        return float(self.range_max) - float(self.range_min)  # type: ignore[arg-type]

    def in_range(self, value: float) -> bool:
        """True if value lies within the set range edges (unset edges are open)."""
        if self.range_min is not None and value < self.range_min:
            return False
        if self.range_max is not None and value > self.range_max:
            return False
        return True

    def is_at_limit(self, value: float) -> bool:
        return self.has_range and value in (self.range_min, self.range_max)

    # ---- start values ----
    @property
    def fit_start_value(self) -> float:
        if self.start_value is not None:
            return float(self.start_value)
        if self.has_range:
            return 0.5 * (float(self.range_min) + float(self.range_max))  # type: ignore[arg-type]
        return 0.0

    @property
    def fit_start_step(self) -> float:
        if self.step:
            return float(self.step)
        width = self.range_width
        if width > 0.0:
            return width / 100.0
        return 0.01 * max(abs(self.fit_start_value), 1.0)

    # ---- fixing ----
    def fix_to(self, value: float) -> None:
        self.fixed = True
        self.start_value = float(value)

    def release(self) -> None:
        self.fixed = False

    # ---- results ----
    def reset_fit_result(self) -> None:
        self.best_value = 0.0
        self.best_error = 0.0
        self.lower_limit = 0.0
        self.upper_limit = 0.0

    def copy(self) -> "Parameter":
        return copy.copy(self)

    def summary(self, digits: int = 6) -> str:
        tags = [
            "kTypeUndefined" if self.kind is ParameterKind.UNDEFINED else f"k{self.kind.name.title()}",
            "global" if self.is_global else "local",
        ]
        if self.fixed:
            tags.append("fixed")
        return (
            f"{self.name} [ {' : '.join(tags)} ]"
            f" [ best value {self.best_value:.{digits}g} +- {self.best_error:.{digits}g} ]"
            f" [ interval {self.lower_limit:.{digits}g} , {self.upper_limit:.{digits}g} ]"
        )


class ParameterRegistry(Mapping[str, Parameter]):
    """Mapping fully-qualified name -> Parameter, shared by all models.

    Iteration order is insertion order; the position of a name is the column
    it occupies in the flat parameter vector handed to the minimizer engine.
    New names are appended, so positions of existing names never move.
    """

    def __init__(self) -> None:
        self._params: Dict[str, Parameter] = {}
        self._index: Optional[Dict[str, int]] = None

    def __getitem__(self, key: str) -> Parameter:
        try:
            return self._params[key]
        except KeyError:
            raise KeyError(f"Parameter {key!r} is not registered.") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def __repr__(self) -> str:
        return f"ParameterRegistry({list(self._params)})"

    def insert(self, parameter: Parameter) -> bool:
        """Insert a parameter under its (already qualified) name.

        Returns False and leaves the registry untouched if the name exists.
        """
        if parameter.name in self._params:
            return False
        self._params[parameter.name] = parameter
        self._index = None
        return True

    def index(self, name: str) -> int:
        if self._index is None:
            self._index = {n: i for i, n in enumerate(self._params)}
        try:
            return self._index[name]
        except KeyError:
            raise KeyError(f"Parameter {name!r} is not registered.") from None

    def names(self) -> Tuple[str, ...]:
        return tuple(self._params)

    def snapshot(self) -> Dict[str, Parameter]:
        """Independent copies of every parameter, keyed by name."""
        return {n: p.copy() for n, p in self._params.items()}

    def best_values(self) -> Dict[str, Tuple[float, float]]:
        return {n: (p.best_value, p.best_error) for n, p in self._params.items()}

    def summary(self, digits: int = 6) -> str:
        return "\n".join(p.summary(digits) for p in self._params.values())
