from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from ..composer import TemplateComposer
from ..histogram import Histogram
from ..inference import log_poisson_array
from ..model import Model
from ..params import Parameter, ParameterRegistry


class BinnedLikelihoodModel(Model):
    """Poisson likelihood of one binned dataset against a weighted template sum.

    Every local parameter is the weight of the composer template with the
    same bare name. The expected count map is `exposure * sum(w_i * T_i)`.
    The model exclusively owns its composer and dataset; assigning a new one
    replaces the previous object.
    """

    def __init__(
        self,
        name: str,
        registry: ParameterRegistry,
        *,
        composer: Optional[TemplateComposer] = None,
        dataset: Optional[Histogram] = None,
        exposure: float = 1.0,
        respect_user_range: bool = True,
    ) -> None:
        super().__init__(name, registry, exposure=exposure)
        self.respect_user_range = bool(respect_user_range)
        self._composer: Optional[TemplateComposer] = None
        self._dataset: Optional[Histogram] = None
        if composer is not None:
            self.composer = composer
        if dataset is not None:
            self.dataset = dataset

    # ---- owned objects ----
    @property
    def composer(self) -> TemplateComposer:
        if self._composer is None:
            raise RuntimeError(f"Model {self.name!r} has no template composer.")
        return self._composer

    @composer.setter
    def composer(self, composer: TemplateComposer) -> None:
        if self._dataset is not None:
            self._check_shape(composer, self._dataset)
        self._composer = composer

    @property
    def dataset(self) -> Histogram:
        if self._dataset is None:
            raise RuntimeError(f"Model {self.name!r} has no dataset.")
        return self._dataset

    @dataset.setter
    def dataset(self, dataset: Histogram) -> None:
        if self._composer is not None:
            self._check_shape(self._composer, dataset)
        self._dataset = dataset

    @property
    def has_dataset(self) -> bool:
        return self._dataset is not None

    @staticmethod
    def _check_shape(composer: TemplateComposer, dataset: Histogram) -> None:
        for name in composer:
            composer.template(name).check_compatible(dataset)
            break

    def add_component(
        self,
        name: str,
        *,
        is_global: bool = False,
        range_min: Optional[float] = None,
        range_max: Optional[float] = None,
        start_value: Optional[float] = None,
        step: Optional[float] = None,
        fixed: bool = False,
    ) -> bool:
        """Register the weight parameter of the template `name`."""
        if name not in self.composer:
            raise KeyError(f"Template {name!r} is not loaded in the composer of model {self.name!r}.")
        par = Parameter(
            name,
            range_min=range_min,
            range_max=range_max,
            start_value=start_value,
            step=step,
            fixed=fixed,
            is_global=is_global,
        )
        return self.add_parameter(par)

    # ---- likelihood ----
    def compose(self, weights: Sequence[float], label: str = "pdf") -> Histogram:
        """Weighted template sum for `weights` given in local-name order."""
        composer = self.composer
        composer.reset_composition()
        for name, w in zip(self.local_names, weights):
            composer.add_to_composition(name, float(w))
        return composer.get_composed_pdf(label)

    def nll(self, theta: Sequence[float]) -> float:
        pdf = self.compose(self.local_values(theta), label="tmp_pdf")
        data = self.dataset
        if self.respect_user_range:
            sl = data.likelihood_slices()
            observed = data.storage[sl]
            expected = self.exposure * pdf.storage[sl]
        else:
            observed = data.storage
            expected = self.exposure * pdf.storage
        return float(-np.sum(log_poisson_array(observed, expected)))

    # ---- best-fit densities ----
    def expected_counts(self, theta: Optional[Sequence[float]] = None, label: str = "tot") -> Histogram:
        """Expected counts at `theta`, or at the registry best-fit values."""
        weights = self.best_values() if theta is None else self.local_values(theta)
        return self.compose(self.exposure * weights, label=label)

    def component_counts(self, name: str, value: Optional[float] = None) -> Histogram:
        """Expected counts of a single component at `value` (default: best fit)."""
        if name not in self.local_names:
            raise KeyError(f"Model {self.name!r} has no component {name!r}.")
        if value is None:
            value = self.get_parameter(name).best_value
        composer = self.composer
        composer.reset_composition()
        composer.add_to_composition(name, self.exposure * float(value))
        return composer.get_composed_pdf(name)
