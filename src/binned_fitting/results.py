from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import uncertainties

from .params import ParameterRegistry

logger = logging.getLogger(__name__)

__all__ = ["FitResult", "FitResultTable", "ParamView", "ParamsView", "build_fit_result"]

STATUS_COLUMN = "minuitStatus"
NLL_COLUMN = "absNLLMin"


@dataclass(frozen=True)
class ParamView:
    """Post-fit view of a single registry parameter."""

    name: str
    value: float
    stderr: float = 0.0
    fixed: bool = False
    bounds: Tuple[Optional[float], Optional[float]] = (None, None)
    interval: Tuple[float, float] = (0.0, 0.0)
    _u: Any = field(default=None, repr=False, compare=False)

    @property
    def error(self) -> float:
        return self.stderr

    @property
    def at_limit(self) -> bool:
        lo, hi = self.bounds
        return self.value == lo or self.value == hi

    @property
    def u(self):
        """ufloat carrying correlations with the other free parameters."""
        if self._u is not None:
            return self._u
        return uncertainties.ufloat(self.value, self.stderr)

    def __getitem__(self, key: str) -> Any:
        if key == "value":
            return self.value
        if key in ("error", "stderr"):
            return self.stderr
        if key == "fixed":
            return self.fixed
        if key == "bounds":
            return self.bounds
        raise KeyError(key)


class ParamsView(Mapping[str, ParamView]):
    """Mapping name -> ParamView; also indexable by position."""

    def __init__(self, items: Mapping[str, ParamView]):
        self._items = dict(items)
        self._names = tuple(self._items.keys())

    def __getitem__(self, key):  # type: ignore[override]
        if isinstance(key, int):
            return self._items[self._names[key]]
        return self._items[key]

    def __iter__(self):
        return iter(self._items)

    def __len__(self):
        return len(self._items)

    def as_dict(self) -> Dict[str, float]:
        """Return name->value."""
        return {k: v.value for k, v in self._items.items()}


@dataclass(frozen=True)
class FitResult:
    """Status, diagnostics and best-fit parameters of one minimization."""

    status: int
    min_nll: float
    edm: float
    cov_qual: int
    params: ParamsView
    free_names: Tuple[str, ...] = ()
    cov: Optional[np.ndarray] = None  # free-parameter covariance
    n_fails: int = 0
    engine: str = ""

    @property
    def ok(self) -> bool:
        return self.status == 0

    def summary(self, digits: int = 4) -> str:
        """Return a human-readable summary string for the result."""
        lines = [
            f"FitResult(engine={self.engine!r}, status={self.status}, "
            f"minNLL={self.min_nll:.{digits + 4}g}, edm={self.edm:.{digits}g}, covQual={self.cov_qual})"
        ]
        for name, pv in self.params.items():
            tag = " (fixed)" if pv.fixed else ""
            if pv.fixed:
                lines.append(f"  {name:>24s}: {pv.value:.{digits}g}{tag}")
            else:
                lines.append(f"  {name:>24s}: {pv.value:.{digits}g} ± {pv.stderr:.{digits}g}")
        return "\n".join(lines)

    def as_row(self) -> Dict[str, float]:
        """Flat record: absNLLMin, minuitStatus, then <name>, <name>Err per parameter."""
        row: Dict[str, float] = {NLL_COLUMN: float(self.min_nll), STATUS_COLUMN: int(self.status)}
        for name, pv in self.params.items():
            row[name] = float(pv.value)
            row[f"{name}Err"] = float(pv.stderr)
        return row

    def correlation(self) -> Optional[np.ndarray]:
        if self.cov is None:
            return None
        d = np.sqrt(np.clip(np.diag(self.cov), 0.0, None))
        with np.errstate(divide="ignore", invalid="ignore"):
            return self.cov / np.outer(d, d)


def build_fit_result(
    registry: ParameterRegistry,
    *,
    status: int,
    min_nll: float,
    edm: float,
    cov_qual: int,
    n_fails: int = 0,
    engine: str = "",
    cov: Optional[np.ndarray] = None,
) -> FitResult:
    """Snapshot the registry into a FitResult.

    `cov` is the engine's full covariance in registry order; rows of fixed
    parameters are dropped.
    """
    names = registry.names()
    free_idx = [i for i, n in enumerate(names) if not registry[n].fixed]
    free_names = tuple(names[i] for i in free_idx)

    cov_free = None
    correlated: Dict[str, Any] = {}
    if cov is not None and free_idx:
        cov = np.asarray(cov, dtype=float)
        if cov.shape == (len(names), len(names)):
            cov_free = cov[np.ix_(free_idx, free_idx)]
            values = [registry[n].best_value for n in free_names]
            try:
                correlated = dict(zip(free_names, uncertainties.correlated_values(values, cov_free)))
            except np.linalg.LinAlgError:
                logger.debug("covariance not usable for correlated values")

    items = {}
    for n in names:
        p = registry[n]
        items[n] = ParamView(
            name=n,
            value=float(p.best_value),
            stderr=float(p.best_error),
            fixed=bool(p.fixed),
            bounds=(p.range_min, p.range_max),
            interval=(float(p.lower_limit), float(p.upper_limit)),
            _u=correlated.get(n),
        )
    return FitResult(
        status=int(status),
        min_nll=float(min_nll),
        edm=float(edm),
        cov_qual=int(cov_qual),
        params=ParamsView(items),
        free_names=free_names,
        cov=cov_free,
        n_fails=int(n_fails),
        engine=engine,
    )


class FitResultTable:
    """Growable table of fit results with a schema fixed at creation.

    Columns are `absNLLMin`, `minuitStatus` and a value/error pair for every
    parameter. Rows with a different set of columns are rejected.
    """

    def __init__(self, parameter_names: Sequence[str]) -> None:
        cols: List[str] = [NLL_COLUMN, STATUS_COLUMN]
        for n in parameter_names:
            cols += [n, f"{n}Err"]
        self.columns: Tuple[str, ...] = tuple(cols)
        self._rows: List[Dict[str, float]] = []

    @classmethod
    def for_registry(cls, registry: ParameterRegistry) -> "FitResultTable":
        return cls(registry.names())

    def __len__(self) -> int:
        return len(self._rows)

    def append(self, row: Union[FitResult, Mapping[str, float]]) -> None:
        if isinstance(row, FitResult):
            row = row.as_row()
        if tuple(row.keys()) != self.columns:
            raise ValueError(
                f"Row columns {tuple(row.keys())} do not match the table schema {self.columns}."
            )
        self._rows.append(dict(row))

    def to_dataframe(self) -> pd.DataFrame:
        df = pd.DataFrame(self._rows, columns=list(self.columns))
        return df.astype({STATUS_COLUMN: int})

    def write_csv(self, path: Union[str, "os.PathLike[str]"], *, append: bool = False) -> None:
        """Write the rows as CSV; with `append`, add to an existing file of the same schema."""
        path = Path(path)
        df = self.to_dataframe()
        if append and path.is_file():
            header = tuple(pd.read_csv(path, nrows=0).columns)
            if header != self.columns:
                raise ValueError(f"Existing table {path} has columns {header}, expected {self.columns}.")
            df.to_csv(path, mode="a", header=False, index=False)
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(path, index=False)
        logger.debug("wrote %d row(s) to %s", len(df), path)

    @staticmethod
    def read_csv(path: Union[str, "os.PathLike[str]"]) -> pd.DataFrame:
        return pd.read_csv(path)
