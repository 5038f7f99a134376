"""Reading and writing histograms.

Histograms are stored in `.npz` archives, one group of arrays per histogram
(see `Histogram.to_arrays`). ROOT files with TH1/TH2/TH3 objects can be read
when the optional `uproot` dependency is installed.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Union

import numpy as np

from .histogram import Axis, Histogram

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


@dataclass(frozen=True)
class TemplateSource:
    """Where to find one histogram: a file and the object name inside it."""

    path: str
    object_name: str

    def resolved(self, directory: Optional[PathLike] = None) -> "TemplateSource":
        if directory is None or os.path.isabs(self.path):
            return self
        return TemplateSource(os.path.join(os.fspath(directory), self.path), self.object_name)


def _check_exists(path: Path) -> None:
    if not path.is_file():
        raise FileNotFoundError(f"Input file not found: {path}")


def _read_npz(path: Path, object_name: str, name: str) -> Histogram:
    with np.load(path) as arrays:
        try:
            return Histogram.from_arrays(arrays, object_name, name=name)
        except KeyError:
            raise ValueError(f"Histogram {object_name!r} not found in {path}.") from None


def _read_root(path: Path, object_name: str, name: str) -> Histogram:
    import uproot

    with uproot.open(path) as f:
        try:
            obj = f[object_name]
        except KeyError:
            raise ValueError(f"Histogram {object_name!r} not found in {path}.") from None
        try:
            storage = np.asarray(obj.values(flow=True), dtype=float)
            axes = [Axis(np.asarray(obj.axis(i).edges(), dtype=float)) for i in range(storage.ndim)]
        except AttributeError:
            raise ValueError(f"Object {object_name!r} in {path} is not a histogram.") from None
    return Histogram(axes, storage, name=name)


def read_histogram(
    source: Union[TemplateSource, PathLike],
    object_name: Optional[str] = None,
    *,
    name: Optional[str] = None,
) -> Histogram:
    """Read one histogram from an `.npz` archive or a ROOT file."""
    if not isinstance(source, TemplateSource):
        if object_name is None:
            raise ValueError("object_name is required when reading from a path.")
        source = TemplateSource(os.fspath(source), object_name)
    path = Path(source.path)
    _check_exists(path)
    name = source.object_name if name is None else name

    logger.debug("reading %r from %s", source.object_name, path)
    if path.suffix == ".root":
        return _read_root(path, source.object_name, name)
    return _read_npz(path, source.object_name, name)


def list_histograms(path: PathLike) -> List[str]:
    """Names of the histograms stored in an `.npz` archive."""
    path = Path(path)
    _check_exists(path)
    with np.load(path) as arrays:
        return [k[: -len("__storage")] for k in arrays.files if k.endswith("__storage")]


def write_histograms(
    path: PathLike,
    histograms: Union[Mapping[str, Histogram], Iterable[Histogram]],
    *,
    append: bool = False,
) -> None:
    """Store histograms in an `.npz` archive.

    With `append=True` the histograms already in the file are kept; entries
    with the same name are overwritten.
    """
    path = Path(path)
    if isinstance(histograms, Mapping):
        items = list(histograms.items())
    else:
        items = [(h.name, h) for h in histograms]

    arrays: Dict[str, np.ndarray] = {}
    if append and path.is_file():
        with np.load(path) as existing:
            arrays.update({k: existing[k] for k in existing.files})
    for key, h in items:
        if not key:
            raise ValueError("Histograms written to file need a name.")
        for k in [k for k in arrays if k.startswith(f"{key}__")]:
            del arrays[k]
        arrays.update(h.to_arrays(key))

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as fh:
        np.savez_compressed(fh, **arrays)
    logger.debug("wrote %d histogram(s) to %s", len(items), path)
