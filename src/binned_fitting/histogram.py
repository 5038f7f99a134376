from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

__all__ = ["Axis", "Histogram"]


@dataclass
class Axis:
    """Bin edges of one histogram axis plus an optional user sub-range.

    Bin numbering follows the storage layout: 0 is the underflow bin,
    1..n are the regular bins and n + 1 is the overflow bin. The user range
    is stored as an inclusive (first, last) pair of regular bin numbers.
    """

    edges: np.ndarray
    user_range: Optional[Tuple[int, int]] = None

    def __post_init__(self) -> None:
        self.edges = np.asarray(self.edges, dtype=float)
        if self.edges.ndim != 1 or self.edges.size < 2:
            raise ValueError("Axis edges must be a 1D array with at least two entries.")
        if np.any(np.diff(self.edges) <= 0.0):
            raise ValueError("Axis edges must be strictly increasing.")

    @classmethod
    def regular(cls, nbins: int, lo: float, hi: float) -> "Axis":
        return cls(np.linspace(float(lo), float(hi), int(nbins) + 1))

    @property
    def nbins(self) -> int:
        return int(self.edges.size - 1)

    @property
    def lo(self) -> float:
        return float(self.edges[0])

    @property
    def hi(self) -> float:
        return float(self.edges[-1])

    @property
    def centers(self) -> np.ndarray:
        return 0.5 * (self.edges[1:] + self.edges[:-1])

    @property
    def widths(self) -> np.ndarray:
        return np.diff(self.edges)

    @property
    def first(self) -> int:
        return 1 if self.user_range is None else self.user_range[0]

    @property
    def last(self) -> int:
        return self.nbins if self.user_range is None else self.user_range[1]

    def find_bin(self, x: float) -> int:
        """Storage bin number containing x (0 / n+1 for under/overflow)."""
        if x < self.edges[0]:
            return 0
        if x >= self.edges[-1]:
            return self.nbins + 1
        return int(np.searchsorted(self.edges, x, side="right"))

    def set_range_user(self, lo: float, hi: float) -> None:
        """Restrict to the bins covering [lo, hi]; the upper edge itself is excluded."""
        if hi < lo:
            raise ValueError(f"Invalid user range [{lo}, {hi}].")
        first = min(max(self.find_bin(lo), 1), self.nbins)
        last = self.find_bin(hi)
        if last <= self.nbins and last > first and np.isclose(self.edges[last - 1], hi):
            last -= 1
        last = min(max(last, 1), self.nbins)
        self.user_range = (first, last)

    def reset_range(self) -> None:
        self.user_range = None

    def same_binning(self, other: "Axis") -> bool:
        return self.edges.shape == other.edges.shape and bool(np.allclose(self.edges, other.edges))

    def copy(self) -> "Axis":
        return Axis(self.edges.copy(), self.user_range)


class Histogram:
    """Numpy-backed n-dimensional binned container.

    `storage` has shape (n_0 + 2, n_1 + 2, ...), one underflow and one overflow
    bin per axis. `values` is the view of the regular bins only.
    """

    def __init__(
        self,
        axes: Sequence[Any],
        storage: Optional[Any] = None,
        *,
        name: str = "",
    ) -> None:
        self.axes: Tuple[Axis, ...] = tuple(
            a.copy() if isinstance(a, Axis) else Axis(np.asarray(a, dtype=float)) for a in axes
        )
        if not self.axes:
            raise ValueError("A histogram needs at least one axis.")
        self.name = str(name)

        full = tuple(a.nbins + 2 for a in self.axes)
        if storage is None:
            self.storage = np.zeros(full, dtype=float)
            return

        arr = np.array(storage, dtype=float)
        if arr.shape == full:
            self.storage = arr
        elif arr.shape == self.shape:
            self.storage = np.zeros(full, dtype=float)
            self.storage[self._inner()] = arr
        else:
            raise ValueError(
                f"Content shape {arr.shape} does not match axes: expected {self.shape} or {full}."
            )

    @classmethod
    def from_values(cls, values: Any, edges: Optional[Sequence[Any]] = None, *, name: str = "") -> "Histogram":
        """Build from regular-bin contents; default edges are 0..n per axis."""
        values = np.asarray(values, dtype=float)
        if values.ndim == 0:
            values = values.reshape(1)
        if edges is None:
            edges = [np.arange(n + 1, dtype=float) for n in values.shape]
        return cls(edges, values, name=name)

    def __repr__(self) -> str:
        return f"Histogram(name={self.name!r}, shape={self.shape})"

    # ---- shape ----
    @property
    def ndim(self) -> int:
        return len(self.axes)

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(a.nbins for a in self.axes)

    @property
    def values(self) -> np.ndarray:
        return self.storage[self._inner()]

    @property
    def has_user_range(self) -> bool:
        return any(a.user_range is not None for a in self.axes)

    def _inner(self) -> Tuple[slice, ...]:
        return tuple(slice(1, a.nbins + 1) for a in self.axes)

    def _user(self) -> Tuple[slice, ...]:
        return tuple(slice(a.first, a.last + 1) for a in self.axes)

    def is_compatible(self, other: "Histogram") -> bool:
        return self.ndim == other.ndim and all(
            a.same_binning(b) for a, b in zip(self.axes, other.axes)
        )

    def check_compatible(self, other: "Histogram") -> None:
        if not self.is_compatible(other):
            raise ValueError(
                f"Histogram {other.name!r} {other.shape} is incompatible with {self.name!r} {self.shape}."
            )

    # ---- copies ----
    def copy(self, name: Optional[str] = None) -> "Histogram":
        h = Histogram(self.axes, self.storage.copy(), name=self.name if name is None else name)
        return h

    def zeros_like(self, name: Optional[str] = None) -> "Histogram":
        return Histogram(self.axes, None, name=self.name if name is None else name)

    def reset(self) -> None:
        self.storage.fill(0.0)

    # ---- bin access ----
    def _check_index(self, idx: Sequence[int]) -> Tuple[int, ...]:
        if len(idx) != self.ndim:
            raise IndexError(f"Expected {self.ndim} bin indices, got {len(idx)}.")
        out = []
        for i, a in zip(idx, self.axes):
            i = int(i)
            if i < 0 or i > a.nbins + 1:
                raise IndexError(f"Bin index {i} out of bounds for axis with {a.nbins} bins.")
            out.append(i)
        return tuple(out)

    def get_bin(self, *idx: int) -> float:
        return float(self.storage[self._check_index(idx)])

    def set_bin(self, *idx_and_value: float) -> None:
        *idx, value = idx_and_value
        self.storage[self._check_index(idx)] = float(value)

    def find_bin(self, *coords: float) -> Tuple[int, ...]:
        if len(coords) != self.ndim:
            raise IndexError(f"Expected {self.ndim} coordinates, got {len(coords)}.")
        return tuple(a.find_bin(float(x)) for a, x in zip(self.axes, coords))

    def fill(self, *coords: float, weight: float = 1.0) -> None:
        self.storage[self.find_bin(*coords)] += float(weight)

    # ---- arithmetic ----
    def add(self, other: "Histogram", scale: float = 1.0) -> None:
        self.check_compatible(other)
        self.storage += float(scale) * other.storage

    def scale(self, factor: float) -> None:
        self.storage *= float(factor)

    def integral(self, *, user_range: bool = True, flow: bool = False) -> float:
        """Sum of contents.

        With `flow=True` the full storage is summed. Otherwise the regular bins
        are summed, restricted to the user range when `user_range` is set.
        """
        if flow:
            return float(self.storage.sum())
        sl = self._user() if user_range else self._inner()
        return float(self.storage[sl].sum())

    def normalize(self, *, user_range: bool = False) -> None:
        total = self.integral(user_range=user_range)
        if total == 0.0:
            raise ValueError(f"Cannot normalize histogram {self.name!r} with zero integral.")
        self.storage /= total

    def likelihood_slices(self) -> Tuple[slice, ...]:
        """Storage slices entering a likelihood sum.

        Axes with a user range contribute their restricted bins, every other
        axis its full storage including the flow bins.
        """
        return tuple(
            slice(a.first, a.last + 1) if a.user_range is not None else slice(None)
            for a in self.axes
        )

    def copy_ranges_from(self, other: "Histogram") -> None:
        self.check_compatible(other)
        for mine, theirs in zip(self.axes, other.axes):
            mine.user_range = theirs.user_range

    # ---- axes ----
    def set_range_user(self, axis: int, lo: float, hi: float) -> None:
        self._axis(axis).set_range_user(lo, hi)

    def _axis(self, axis: int) -> Axis:
        if axis < 0 or axis >= self.ndim:
            raise IndexError(f"Axis {axis} out of bounds for {self.ndim}-dimensional histogram.")
        return self.axes[axis]

    def project(self, axes: Sequence[int], name: Optional[str] = None) -> "Histogram":
        """Sum over all axes not listed; the result's axis order follows `axes`."""
        axes = [int(a) for a in axes]
        for a in axes:
            self._axis(a)
        if len(set(axes)) != len(axes):
            raise ValueError(f"Duplicate axes in projection {axes}.")
        drop = tuple(i for i in range(self.ndim) if i not in axes)
        summed = self.storage.sum(axis=drop) if drop else self.storage
        kept = sorted(axes)
        summed = np.moveaxis(summed, [kept.index(a) for a in axes], list(range(len(axes))))
        return Histogram([self.axes[a] for a in axes], summed, name=self.name if name is None else name)

    def rebin(self, groups: Sequence[int], name: Optional[str] = None) -> "Histogram":
        """Merge `groups[i]` adjacent regular bins along axis i; flow bins are kept."""
        if len(groups) != self.ndim:
            raise ValueError(f"Expected {self.ndim} rebin factors, got {len(groups)}.")
        data = self.storage
        new_axes = []
        for i, (ax, g) in enumerate(zip(self.axes, groups)):
            g = int(g)
            if g < 1 or ax.nbins % g != 0:
                raise ValueError(f"Cannot rebin axis {i} with {ax.nbins} bins by {g}.")
            if g == 1:
                new_axes.append(ax.copy())
                continue
            n = ax.nbins // g
            inner = np.take(data, np.arange(1, ax.nbins + 1), axis=i)
            shape = list(inner.shape)
            shape[i : i + 1] = [n, g]
            merged = inner.reshape(shape).sum(axis=i + 1)
            data = np.concatenate(
                [np.take(data, [0], axis=i), merged, np.take(data, [ax.nbins + 1], axis=i)],
                axis=i,
            )
            new_axes.append(Axis(ax.edges[::g]))
        return Histogram(new_axes, data, name=self.name if name is None else name)

    # ---- sampling ----
    def sample(
        self,
        n_events: int,
        rng: np.random.Generator,
        *,
        name: Optional[str] = None,
    ) -> "Histogram":
        """Distribute `n_events` multinomially over the regular bins.

        Contents are treated as un-normalized rates. User ranges are ignored for
        the draw but copied onto the returned histogram; flow bins stay empty.
        """
        inner = self.values
        rates = np.clip(inner.ravel(), 0.0, None)
        total = rates.sum()
        out = self.zeros_like(name=name)
        if n_events <= 0:
            return out
        if total <= 0.0:
            raise ValueError(f"Cannot sample from histogram {self.name!r} with no positive content.")
        counts = rng.multinomial(int(n_events), rates / total)
        out.storage[out._inner()] = counts.reshape(inner.shape)
        return out

    # ---- serialization ----
    def to_arrays(self, prefix: Optional[str] = None) -> Dict[str, np.ndarray]:
        """Flat mapping of arrays describing this histogram (for np.savez)."""
        p = self.name if prefix is None else prefix
        out: Dict[str, np.ndarray] = {f"{p}__storage": self.storage}
        for i, a in enumerate(self.axes):
            out[f"{p}__edges{i}"] = a.edges
            if a.user_range is not None:
                out[f"{p}__range{i}"] = np.asarray(a.user_range, dtype=int)
        return out

    @classmethod
    def from_arrays(cls, arrays: Any, prefix: str, *, name: Optional[str] = None) -> "Histogram":
        keys = set(arrays.files) if hasattr(arrays, "files") else set(arrays)
        key = f"{prefix}__storage"
        if key not in keys:
            raise KeyError(f"No histogram {prefix!r} in archive.")
        storage = np.asarray(arrays[key], dtype=float)
        axes = []
        for i in range(storage.ndim):
            ax = Axis(np.asarray(arrays[f"{prefix}__edges{i}"], dtype=float))
            rk = f"{prefix}__range{i}"
            if rk in keys:
                lo, hi = (int(v) for v in np.asarray(arrays[rk]))
                ax.user_range = (lo, hi)
            axes.append(ax)
        return cls(axes, storage, name=prefix if name is None else name)
