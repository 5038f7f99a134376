"""JSON analysis configuration.

Layout (object key order is significant and preserved)::

    {
      "fittingModel": {
        "dataSets": {
          "<dataset>": {
            "exposure": 1.0,
            "components": {
              "<par>": {"global": false, "refVal": 10, "range": [0, 100],
                        "fitStep": 0, "pdf": ["file.npz", "hist"],
                        "injVal": 10, "color": 2, "fixed": false}
            },
            "projectOnAxis": [0],
            "axis": {"0": {"range": [0, 10], "rebin": 2}},
            "normalizePDFInUserRange": false
          }
        },
        "pulls": {"<par>": {"type": "gauss", "centroid": 1, "sigma": 0.1}}
      },
      "MinimizerSteps": {"migrad": {"method": "MIGRAD", "resetMinuit": false,
                                    "maxCall": 10000, "tolerance": 0.1, "verbosity": 0}},
      "MC": {"realizations": 10, "seed": 1, "enablePoissonFluctuations": true,
             "outputFile": ""}
    }
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match

from .minimizer import MinimizerStep

__all__ = [
    "AnalysisConfig",
    "AxisConfig",
    "CONFIG_SCHEMA",
    "ComponentConfig",
    "ConfigError",
    "DataSetConfig",
    "MCConfig",
    "MinimizerStep",
    "PDF_DIR_ENV",
    "PullConfig",
    "load_config",
    "parse_config",
    "resolve_pdf_dir",
    "validate_document",
]

PDF_DIR_ENV = "BINNED_FIT_PDF_DIR"


class ConfigError(ValueError):
    """Invalid configuration; `path` locates the offending key."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


@dataclass(frozen=True)
class AxisConfig:
    range: Optional[Tuple[float, float]] = None
    rebin: int = 1


@dataclass(frozen=True)
class ComponentConfig:
    name: str
    pdf_file: str
    pdf_name: str
    range: Tuple[float, float]
    ref_val: float
    is_global: bool = False
    fit_step: float = 0.0
    inj_val: float = 0.0
    color: int = 1
    fixed: bool = False

    @property
    def start_step(self) -> float:
        """fitStep, or 1/100 of the range width when fitStep is zero."""
        if self.fit_step:
            return self.fit_step
        return (self.range[1] - self.range[0]) / 100.0


@dataclass(frozen=True)
class DataSetConfig:
    name: str
    exposure: float
    components: Tuple[ComponentConfig, ...]
    project_on_axis: Optional[Tuple[int, ...]] = None
    axes: Dict[int, AxisConfig] = field(default_factory=dict)
    normalize_in_user_range: Optional[bool] = None

    def component(self, name: str) -> ComponentConfig:
        for c in self.components:
            if c.name == name:
                return c
        raise KeyError(f"Dataset {self.name!r} has no component {name!r}.")


@dataclass(frozen=True)
class PullConfig:
    name: str
    type: str
    constants: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class MCConfig:
    realizations: int = 1
    seed: Optional[int] = None
    poisson: bool = False
    output_file: str = ""


@dataclass(frozen=True)
class AnalysisConfig:
    datasets: Tuple[DataSetConfig, ...]
    steps: Tuple[MinimizerStep, ...]
    pulls: Tuple[PullConfig, ...] = ()
    mc: Optional[MCConfig] = None
    source: Optional[str] = None

    def dataset(self, name: str) -> DataSetConfig:
        for d in self.datasets:
            if d.name == name:
                return d
        raise KeyError(f"No dataset named {name!r}.")


# ---- schema ----
_RANGE = {"type": "array", "items": {"type": "number"}, "minItems": 2, "maxItems": 2}

_PULL = {
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {"enum": ["gauss", "exp"]},
        "centroid": {"type": "number"},
        "sigma": {"type": "number"},
        "limit": {"type": "number"},
        "quantile": {"type": "number"},
        "offset": {"type": "number"},
    },
    "allOf": [
        {"if": {"properties": {"type": {"const": "gauss"}}}, "then": {"required": ["centroid", "sigma"]}},
        {"if": {"properties": {"type": {"const": "exp"}}}, "then": {"required": ["limit"]}},
    ],
}

_PULLS = {"type": "object", "additionalProperties": {"$ref": "#/definitions/pull"}}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "definitions": {"pull": _PULL},
    "type": "object",
    "required": ["fittingModel", "MinimizerSteps"],
    "properties": {
        "fittingModel": {
            "type": "object",
            "required": ["dataSets"],
            "properties": {
                "dataSets": {
                    "type": "object",
                    "minProperties": 1,
                    "additionalProperties": {
                        "type": "object",
                        "required": ["exposure", "components"],
                        "properties": {
                            "exposure": {"type": "number"},
                            "components": {
                                "type": "object",
                                "minProperties": 1,
                                "additionalProperties": {
                                    "type": "object",
                                    "required": ["global", "refVal", "range", "pdf"],
                                    "properties": {
                                        "global": {"type": "boolean"},
                                        "refVal": {"type": "number"},
                                        "range": _RANGE,
                                        "fitStep": {"type": "number"},
                                        "pdf": {
                                            "type": "array",
                                            "items": {"type": "string"},
                                            "minItems": 2,
                                            "maxItems": 2,
                                        },
                                        "injVal": {"type": "number"},
                                        "color": {"type": "integer"},
                                        "fixed": {"type": "boolean"},
                                    },
                                },
                            },
                            "projectOnAxis": {"type": "array", "items": {"type": "integer"}, "minItems": 1},
                            "axis": {
                                "type": "object",
                                "additionalProperties": {
                                    "type": "object",
                                    "properties": {
                                        "range": _RANGE,
                                        "rebin": {"type": "integer", "minimum": 1},
                                    },
                                },
                            },
                            "normalizePDFInUserRange": {"type": "boolean"},
                        },
                    },
                },
                "pulls": _PULLS,
            },
        },
        "pulls": _PULLS,
        "MinimizerSteps": {
            "type": "object",
            "minProperties": 1,
            "additionalProperties": {
                "type": "object",
                "required": ["method", "resetMinuit", "maxCall"],
                "properties": {
                    "method": {"type": "string"},
                    "resetMinuit": {"type": "boolean"},
                    "maxCall": {"type": "number"},
                    "tolerance": {"type": "number"},
                    "tollerance": {"type": "number"},
                    "verbosity": {"type": "integer"},
                },
            },
        },
        "MC": {
            "type": "object",
            "required": ["realizations", "seed", "enablePoissonFluctuations"],
            "properties": {
                "realizations": {"type": "integer"},
                "seed": {"type": "integer"},
                "enablePoissonFluctuations": {"type": "boolean"},
                "outputFile": {"type": "string"},
            },
        },
    },
}

_VALIDATOR = Draft7Validator(CONFIG_SCHEMA)


def validate_document(raw: Any) -> None:
    """Raise ConfigError for the most relevant schema violation in `raw`."""
    error = best_match(_VALIDATOR.iter_errors(raw))
    if error is not None:
        raise ConfigError(error.json_path, error.message)


# ---- sections ----
def _range(value: Sequence[float], path: str) -> Tuple[float, float]:
    lo, hi = float(value[0]), float(value[1])
    if hi < lo:
        raise ConfigError(path, f"range [{lo}, {hi}] is inverted")
    return (lo, hi)


def _component(name: str, raw: Mapping[str, Any], path: str) -> ComponentConfig:
    file_name, hist_name = raw["pdf"]
    return ComponentConfig(
        name=name,
        pdf_file=file_name,
        pdf_name=hist_name,
        range=_range(raw["range"], f"{path}.range"),
        ref_val=float(raw["refVal"]),
        is_global=raw["global"],
        fit_step=float(raw.get("fitStep", 0.0)),
        inj_val=float(raw.get("injVal", 0.0)),
        color=int(raw.get("color", 1)),
        fixed=raw.get("fixed", False),
    )


def _axes(raw: Mapping[str, Any], path: str) -> Dict[int, AxisConfig]:
    axes: Dict[int, AxisConfig] = {}
    for key, value in raw.items():
        apath = f"{path}.{key}"
        try:
            idx = int(key)
        except ValueError:
            raise ConfigError(apath, "axis keys must be integer indices") from None
        rng = _range(value["range"], f"{apath}.range") if "range" in value else None
        axes[idx] = AxisConfig(range=rng, rebin=int(value.get("rebin", 1)))
    return axes


def _dataset(name: str, raw: Mapping[str, Any], path: str) -> DataSetConfig:
    components = tuple(
        _component(cname, craw, f"{path}.components.{cname}") for cname, craw in raw["components"].items()
    )
    project = tuple(int(v) for v in raw["projectOnAxis"]) if "projectOnAxis" in raw else None
    return DataSetConfig(
        name=name,
        exposure=float(raw["exposure"]),
        components=components,
        project_on_axis=project,
        axes=_axes(raw["axis"], f"{path}.axis") if "axis" in raw else {},
        normalize_in_user_range=raw.get("normalizePDFInUserRange"),
    )


# Constants per pull type; None marks a required key.
_PULL_KEYS = {
    "gauss": {"centroid": None, "sigma": None},
    "exp": {"limit": None, "quantile": 0.9, "offset": 0.0},
}


def _pull(name: str, raw: Mapping[str, Any]) -> PullConfig:
    kind = raw["type"]
    constants = {key: float(raw.get(key, default)) for key, default in _PULL_KEYS[kind].items()}
    return PullConfig(name=name, type=kind, constants=constants)


def _step(raw: Mapping[str, Any], path: str) -> MinimizerStep:
    # `tollerance` is the historical spelling of the key.
    tol = raw.get("tolerance", raw.get("tollerance"))
    if tol is None:
        raise ConfigError(path, "missing required key 'tolerance'")
    return MinimizerStep(
        method=raw["method"],
        reset=raw["resetMinuit"],
        max_calls=int(raw["maxCall"]),
        tolerance=float(tol),
        verbosity=int(raw.get("verbosity", 0)),
    )


def parse_config(raw: Any, *, source: Optional[str] = None) -> AnalysisConfig:
    """Validate a decoded JSON document into an AnalysisConfig."""
    validate_document(raw)
    model = raw["fittingModel"]
    datasets = tuple(
        _dataset(name, value, f"$.fittingModel.dataSets.{name}") for name, value in model["dataSets"].items()
    )
    pulls = [_pull(n, v) for container in (model, raw) for n, v in container.get("pulls", {}).items()]
    steps = tuple(_step(v, f"$.MinimizerSteps.{n}") for n, v in raw["MinimizerSteps"].items())

    mc = None
    if "MC" in raw:
        mc_raw = raw["MC"]
        mc = MCConfig(
            realizations=int(mc_raw["realizations"]),
            seed=int(mc_raw["seed"]),
            poisson=mc_raw["enablePoissonFluctuations"],
            output_file=mc_raw.get("outputFile", ""),
        )
    return AnalysisConfig(datasets=datasets, steps=steps, pulls=tuple(pulls), mc=mc, source=source)


def load_config(path: Union[str, "os.PathLike[str]"]) -> AnalysisConfig:
    """Read and validate a JSON configuration file."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    with open(path, "r", encoding="utf-8") as fh:
        try:
            raw = json.load(fh)
        except json.JSONDecodeError as e:
            raise ConfigError("$", f"invalid JSON ({e})") from e
    return parse_config(raw, source=os.fspath(path))


def resolve_pdf_dir(pdf_dir: Optional[str] = None) -> Optional[str]:
    """Template directory: explicit argument, else $BINNED_FIT_PDF_DIR, else None."""
    if pdf_dir:
        return pdf_dir
    return os.environ.get(PDF_DIR_ENV) or None
