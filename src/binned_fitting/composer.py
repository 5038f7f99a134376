from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Iterator, Optional, Sequence, Union

import numpy as np

from .histogram import Histogram
from .io import TemplateSource, read_histogram

logger = logging.getLogger(__name__)

__all__ = ["CompositionState", "TemplateComposer"]


class CompositionState(Enum):
    EMPTY = "empty"  # no working density materialized yet
    ACCUMULATING = "accumulating"  # weighted templates added since the last retrieval
    CONSUMED = "consumed"  # retrieved; working density is all zero


class TemplateComposer:
    """Library of same-binning templates and one working weighted sum.

    `add_to_composition` accumulates `weight * template` into the working
    density; `get_composed_pdf` returns an independent copy and resets the
    accumulator. Retrieving twice without accumulating in between yields an
    all-zero density, or raises RuntimeError when `strict` is set.
    """

    def __init__(self, name: str = "", *, seed: Optional[int] = None, strict: bool = False) -> None:
        self.name = name
        self.strict = bool(strict)
        self._templates: Dict[str, Histogram] = {}
        self._working: Optional[Histogram] = None
        self._state = CompositionState.EMPTY
        self._rng = np.random.default_rng(seed)

    def __repr__(self) -> str:
        return f"TemplateComposer(name={self.name!r}, templates={list(self._templates)})"

    # ---- library ----
    def __contains__(self, name: str) -> bool:
        return name in self._templates

    def __iter__(self) -> Iterator[str]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)

    @property
    def state(self) -> CompositionState:
        return self._state

    def template(self, name: str) -> Histogram:
        try:
            return self._templates[name]
        except KeyError:
            raise KeyError(f"Template {name!r} is not loaded in composer {self.name!r}.") from None

    def _reference(self) -> Optional[Histogram]:
        if self._working is not None:
            return self._working
        return next(iter(self._templates.values()), None)

    def add_template(self, name: str, hist: Histogram) -> None:
        """Add an in-memory histogram to the library under `name`."""
        if name in self._templates:
            raise ValueError(f"Template {name!r} already loaded in composer {self.name!r}.")
        ref = self._reference()
        if ref is not None:
            ref.check_compatible(hist)
        self._templates[name] = hist.copy(name=name)

    def load_template(
        self,
        source: Union[TemplateSource, str],
        name: Optional[str] = None,
        *,
        object_name: Optional[str] = None,
        project_on: Optional[Sequence[int]] = None,
    ) -> None:
        """Read a template from file, optionally projected onto `project_on` axes."""
        if not isinstance(source, TemplateSource):
            if object_name is None:
                raise ValueError("object_name is required when loading from a path.")
            source = TemplateSource(str(source), object_name)
        name = source.object_name if name is None else name
        if name in self._templates:
            raise ValueError(f"Template {name!r} already loaded in composer {self.name!r}.")

        hist = read_histogram(source, name=name)
        if project_on is not None:
            hist = hist.project(project_on, name=name)
        logger.debug("composer %r: loaded template %r %s", self.name, name, hist.shape)
        self.add_template(name, hist)

    # ---- library-wide transformations ----
    def set_range_user(self, axis: int, lo: float, hi: float) -> None:
        for h in self._templates.values():
            if axis < h.ndim:
                h.set_range_user(axis, lo, hi)
        if self._working is not None and axis < self._working.ndim:
            self._working.set_range_user(axis, lo, hi)

    def rebin(self, groups: Sequence[int]) -> None:
        self._templates = {n: h.rebin(groups, name=n) for n, h in self._templates.items()}
        self._working = None
        self._state = CompositionState.EMPTY

    def normalize(self, *, user_range: bool = False) -> None:
        for h in self._templates.values():
            h.normalize(user_range=user_range)

    def set_seed(self, seed: Optional[int]) -> None:
        self._rng = np.random.default_rng(seed)

    # ---- composition ----
    def reset_composition(self) -> None:
        """Zero the working density in place, keeping its binning."""
        if self._working is not None:
            self._working.reset()

    def add_to_composition(self, name: str, weight: float = 1.0) -> None:
        template = self.template(name)
        if self._working is None:
            self._working = template.zeros_like(name="working")
        elif self._state is not CompositionState.ACCUMULATING:
            self._working.reset()
        self._working.add(template, weight)
        self._state = CompositionState.ACCUMULATING

    def get_composed_pdf(self, label: str = "pdf") -> Histogram:
        """Snapshot of the working density under `label`; resets the accumulator."""
        if self._state is not CompositionState.ACCUMULATING:
            if self.strict:
                raise RuntimeError(
                    f"Composer {self.name!r}: no pending composition to retrieve ({self._state.value})."
                )
            ref = self._reference()
            if ref is None:
                raise RuntimeError(f"Composer {self.name!r} has no templates loaded.")
            return ref.zeros_like(name=label)

        assert self._working is not None
        out = self._working.copy(name=label)
        self._working.reset()
        self._state = CompositionState.CONSUMED
        return out

    def draw_mc_realization(
        self,
        expected: float,
        poisson: bool = False,
        *,
        label: Optional[str] = None,
    ) -> Histogram:
        """Sample a dataset from the pending working density.

        The number of events is `expected` (rounded down), or a Poisson draw
        with that mean when `poisson` is set. The working density is not
        consumed.
        """
        if self._working is None or self._state is not CompositionState.ACCUMULATING:
            raise RuntimeError(f"Composer {self.name!r}: compose a density before sampling.")
        if expected < 0.0:
            raise ValueError(f"Expected number of events must be non-negative, got {expected}.")
        n = int(self._rng.poisson(expected)) if poisson else int(expected)
        return self._working.sample(n, self._rng, name=label or f"mc_{self.name}")
