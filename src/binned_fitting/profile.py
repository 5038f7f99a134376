from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .minimizer import Minimizer, MinimizerStep

logger = logging.getLogger(__name__)

__all__ = ["ProfileCurve", "ProfileScanner"]


@dataclass(frozen=True)
class ProfileCurve:
    """Minimized NLL vs. clamped parameter value, shifted so its minimum is 0."""

    name: str
    x: np.ndarray
    nll: np.ndarray
    abs_min_nll: float
    best_value: float
    best_error: float

    def __len__(self) -> int:
        return int(self.x.size)

    def interval(self, delta_nll: float) -> Tuple[float, float]:
        """Range of scanned values whose profile lies below `delta_nll`."""
        inside = self.x[self.nll <= delta_nll]
        if inside.size == 0:
            return (float("nan"), float("nan"))
        return (float(inside.min()), float(inside.max()))


class ProfileScanner:
    """Profile likelihood scans driven by a Minimizer and its step sequence."""

    def __init__(self, minimizer: Minimizer, steps: Sequence[MinimizerStep] = (MinimizerStep(),)) -> None:
        self.minimizer = minimizer
        self.steps = tuple(steps)

    def profile(self, name: str, delta_nll: float, n_points: int = 10) -> ProfileCurve:
        """Scan `name` outward from its best fit until the NLL rises by `delta_nll`.

        The step is 2 * best_error / n_points; each direction is capped at
        10 * n_points steps and stops when leaving the parameter range. All
        best-fit values and errors are restored afterwards and the parameter is
        released.
        """
        fitter = self.minimizer
        registry = fitter.registry
        poi = fitter.parameter(name)
        if n_points < 1:
            raise ValueError(f"n_points must be positive, got {n_points}.")

        saved: Dict[str, Tuple[float, float]] = registry.best_values()  # type: ignore[union-attr]
        saved_start = poi.start_value
        saved_diag = (fitter.status, fitter.min_nll, fitter.edm, fitter.cov_qual)

        best = poi.best_value
        err = poi.best_error
        step = 2.0 * err / float(n_points)
        if not step > 0.0:
            raise ValueError(f"Cannot profile {name!r}: best-fit error is {err}.")

        points: List[Tuple[float, float]] = []
        abs_min = np.inf
        max_steps = 10 * n_points

        def scan(value: float) -> bool:
            nonlocal abs_min
            if not poi.in_range(value):
                return False
            poi.fix_to(value)
            status = fitter.run_steps(self.steps)
            nll = fitter.min_nll
            points.append((value, nll))
            abs_min = min(abs_min, nll)
            if status != 0:
                logger.warning(
                    "profile: minimizer returned failed status [%d] while fitting with %s fixed to %g",
                    status,
                    name,
                    value,
                )
            return nll - abs_min <= delta_nll

        try:
            counter = 0
            fitter.sync_fit_parameters(True)
            while scan(best + counter * step) and counter < max_steps:
                counter += 1
            # Start one step below the best fit so the center is not scanned twice.
            counter = -1
            fitter.sync_fit_parameters(True)
            while scan(best + counter * step) and -counter < max_steps:
                counter -= 1
        finally:
            for n, (v, e) in saved.items():
                p = registry[n]  # type: ignore[index]
                p.best_value, p.best_error = v, e
            poi.start_value = saved_start
            poi.release()
            fitter.status, fitter.min_nll, fitter.edm, fitter.cov_qual = saved_diag

        points.sort(key=lambda p: p[0])
        x = np.array([p[0] for p in points], dtype=float)
        y = np.array([p[1] for p in points], dtype=float) - abs_min
        return ProfileCurve(
            name=name,
            x=x,
            nll=y,
            abs_min_nll=float(abs_min),
            best_value=float(best),
            best_error=float(err),
        )

    def profile_all(self, delta_nll: float, n_points: int = 10) -> Dict[str, ProfileCurve]:
        """Profile every free parameter of the registry."""
        curves: Dict[str, ProfileCurve] = {}
        for name, par in list(self.minimizer.registry.items()):  # type: ignore[union-attr]
            if par.fixed:
                continue
            try:
                curves[name] = self.profile(name, delta_nll, n_points)
            except ValueError as e:
                logger.warning("profile: skipping %s (%s)", name, e)
        return curves
