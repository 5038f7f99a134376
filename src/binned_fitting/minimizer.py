from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .backends import Engine, get_backend
from .model import Model
from .params import Parameter, ParameterRegistry
from .results import FitResult, build_fit_result

logger = logging.getLogger(__name__)

__all__ = ["Minimizer", "MinimizerStep"]

DEFAULT_MAX_CALLS = 5000
DEFAULT_TOLERANCE = 0.1


@dataclass(frozen=True)
class MinimizerStep:
    """One stage of a staged minimization."""

    method: str = "MIGRAD"
    reset: bool = False
    max_calls: int = DEFAULT_MAX_CALLS
    tolerance: float = DEFAULT_TOLERANCE
    verbosity: int = 0


class Minimizer:
    """Drives an engine over the sum of the NLL contributions of its models.

    The registry is shared with every model. Before each engine call the
    registry is synchronized incrementally into the engine: only parameters
    that are new or whose definition changed since the previous sync are
    pushed. If another Minimizer bound the same engine in between, or the set
    of registered names changed, everything is pushed again.
    """

    def __init__(
        self,
        models: Iterable[Model] = (),
        registry: Optional[ParameterRegistry] = None,
        *,
        engine: Union[str, Engine] = "iminuit",
        verbosity: int = 0,
    ) -> None:
        self.registry = registry
        self._models: List[Model] = []
        self.engine: Engine = get_backend(engine) if isinstance(engine, str) else engine
        self.verbosity = int(verbosity)
        self.engine.print_level = self.verbosity

        self._local: Dict[str, Parameter] = {}
        self._bound_names: Optional[Tuple[str, ...]] = None

        self.n_minimizations = 0
        self.n_fails = 0
        self.status = 0
        self.min_nll = float("nan")
        self.edm = float("nan")
        self.cov_qual = 0

        for m in models:
            self.add_model(m)

    def __repr__(self) -> str:
        return f"Minimizer(engine={self.engine.name!r}, models={[m.name for m in self._models]})"

    # ---- models ----
    def add_model(self, model: Model) -> None:
        """Take ownership of `model`; all models must share one registry."""
        if self.registry is None:
            self.registry = model.registry
        elif model.registry is not self.registry:
            raise ValueError(f"Model {model.name!r} does not share the minimizer's parameter registry.")
        if any(m.name == model.name for m in self._models):
            raise ValueError(f"A model named {model.name!r} is already attached.")
        self._models.append(model)

    @property
    def models(self) -> Tuple[Model, ...]:
        return tuple(self._models)

    def get_model(self, name: str) -> Model:
        for m in self._models:
            if m.name == name:
                return m
        raise KeyError(f"No model named {name!r}.")

    def _registry(self) -> ParameterRegistry:
        if not self._models or self.registry is None:
            raise ValueError("Minimizer has no models.")
        return self.registry

    def parameter(self, name: str) -> Parameter:
        """Registry entry by fully-qualified name."""
        return self._registry()[name]

    # ---- objective ----
    def objective(self, theta: Sequence[float]) -> float:
        """Sum of the NLL contributions of every model at `theta`."""
        return float(sum(m.nll(theta) for m in self._models))

    def start_vector(self) -> np.ndarray:
        return np.array([p.fit_start_value for p in self._registry().values()], dtype=float)

    def best_vector(self) -> np.ndarray:
        return np.array([p.best_value for p in self._registry().values()], dtype=float)

    # ---- synchronization ----
    def set_verbosity(self, level: int) -> None:
        self.engine.print_level = int(level)

    def sync_fit_parameters(self, reset_start_values: bool = False) -> None:
        """Push registry changes since the previous sync into the engine."""
        registry = self._registry()
        names = registry.names()
        if not names:
            raise ValueError("No parameters registered; nothing to fit.")

        force = False
        if self.engine.owner is not self or names != self._bound_names:
            self.engine.bind(self.objective, names)
            self.engine.owner = self
            self._bound_names = names
            force = True

        for i, (name, par) in enumerate(registry.items()):
            old = self._local.get(name)
            if old is None or force:
                self._define(i, par)
                if par.fixed:
                    self.engine.fix(i)
                logger.debug("%s: synced all fields", name)
                continue

            if par.fixed:
                if par.fit_start_value != old.fit_start_value:
                    self.engine.set_value(i, par.fit_start_value)
                    logger.debug("%s: synced starting value", name)
                if not old.fixed:
                    self.engine.fix(i)
                    logger.debug("%s: fixed", name)
            else:
                if old.fixed:
                    self.engine.release(i)
                    logger.debug("%s: released", name)
                if reset_start_values or _definition_changed(par, old):
                    self._define(i, par)
                    logger.debug("%s: synced all fields", name)

        self._local = registry.snapshot()

    def _define(self, index: int, par: Parameter) -> None:
        self.engine.define_parameter(
            index,
            par.name,
            par.fit_start_value,
            par.fit_start_step,
            par.range_min,
            par.range_max,
        )

    # ---- minimization ----
    def minimize(
        self,
        method: str = "MIGRAD",
        reset_start_values: bool = False,
        max_calls: int = DEFAULT_MAX_CALLS,
        tolerance: float = DEFAULT_TOLERANCE,
    ) -> int:
        """Run one engine call and store the results in the registry.

        Returns the engine status; non-zero values are counted in `n_fails`.
        """
        self.sync_fit_parameters(reset_start_values)
        status = int(self.engine.minimize(method, max_calls, tolerance))
        self.status = status
        self.n_minimizations += 1
        if status != 0:
            self.n_fails += 1
            logger.debug("%s returned status %d", method, status)

        for i, par in enumerate(self._registry().values()):
            par.best_value, par.best_error = self.engine.result(i)
            limits = self.engine.limits(i)
            if limits is not None:
                par.lower_limit, par.upper_limit = limits

        st = self.engine.stat()
        self.min_nll = st.fmin
        self.edm = st.edm
        self.cov_qual = st.cov_qual
        return status

    def run_steps(self, steps: Iterable[MinimizerStep]) -> int:
        """Run a staged minimization; returns the status of the last stage.

        The engine print level of each stage is the larger of the stage's own
        verbosity and the minimizer's.
        """
        status = 0
        for step in steps:
            self.set_verbosity(max(step.verbosity, self.verbosity))
            status = self.minimize(step.method, step.reset, step.max_calls, step.tolerance)
        if status != 0:
            logger.warning(
                "minimizer returned status=%d, indicating problems in the convergence of the fit",
                status,
            )
        return status

    # ---- results ----
    def result(self) -> FitResult:
        return build_fit_result(
            self._registry(),
            status=self.status,
            min_nll=self.min_nll,
            edm=self.edm,
            cov_qual=self.cov_qual,
            n_fails=self.n_fails,
            engine=self.engine.name,
            cov=self.engine.covariance(),
        )

    def summary(self, digits: int = 6) -> str:
        return self._registry().summary(digits)


def _definition_changed(new: Parameter, old: Parameter) -> bool:
    return (
        new.fit_start_value != old.fit_start_value
        or new.fit_start_step != old.fit_start_step
        or new.range_min != old.range_min
        or new.range_max != old.range_max
    )
