from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import uncertainties

from .histogram import Histogram
from .models import BinnedLikelihoodModel
from .profile import ProfileCurve


def _steps(h: Histogram) -> Tuple[np.ndarray, np.ndarray]:
    """Edges and values of a 1D histogram, for ax.stairs."""
    return h.axes[0].edges, h.values


def _label(name: str, value: float, error: float) -> str:
    if error > 0.0 and np.isfinite(error):
        return f"{name} = {uncertainties.ufloat(value, error):.2uS}"
    return f"{name} = {value:.4g}"


def plot_model_fit(
    model: BinnedLikelihoodModel,
    axis: int = 0,
    *,
    ax: Optional[Any] = None,
    colors: Optional[Mapping[str, Any]] = None,
    logy: bool = True,
    data_kwargs: Optional[Mapping[str, Any]] = None,
    line_kwargs: Optional[Mapping[str, Any]] = None,
) -> Tuple[Any, Any]:
    """Plot the data projection on `axis`, each best-fit component and the total.

    Parameters
    ----------
    model : BinnedLikelihoodModel
        Model with a dataset and best-fit values in its registry.
    axis : int
        Histogram axis to project on.
    ax : matplotlib.axes.Axes, optional
        If None, a new figure/axes is created.
    colors : mapping, optional
        Component name -> matplotlib color.
    logy : bool
        Logarithmic y axis.
    data_kwargs, line_kwargs : dict, optional
        Styling kwargs for errorbar and stairs.
    """
    import matplotlib.pyplot as plt

    if ax is None:
        fig, ax = plt.subplots()
    else:
        fig = ax.figure

    colors = dict(colors or {})
    data_kwargs = dict(data_kwargs or {})
    line_kwargs = dict(line_kwargs or {})
    line_kwargs.setdefault("linewidth", 2)

    data = model.dataset.project([axis])
    centers = data.axes[0].centers
    counts = data.values

    for name in model.local_names:
        par = model.get_parameter(name)
        comp = model.component_counts(name).project([axis])
        edges, values = _steps(comp)
        ax.stairs(values, edges, color=colors.get(name), label=_label(name, par.best_value, par.best_error), **line_kwargs)

    total = model.expected_counts().project([axis])
    edges, values = _steps(total)
    ax.stairs(values, edges, color=colors.get("total", "green"), label="total", **line_kwargs)

    data_kwargs.setdefault("fmt", "o")
    data_kwargs.setdefault("ms", 3)
    data_kwargs.setdefault("color", "black")
    data_kwargs.setdefault("label", "data")
    ax.errorbar(centers, counts, yerr=np.sqrt(np.clip(counts, 0.0, None)), **data_kwargs)

    if logy:
        ax.set_yscale("log")
        ax.set_ylim(bottom=0.01)
    ax.set_title(f"{model.name} (axis {axis})")
    ax.set_xlabel(f"axis {axis}")
    ax.set_ylabel("counts")
    ax.legend(fontsize=8)
    return fig, ax


def plot_fit(
    minimizer: Any,
    *,
    colors: Optional[Mapping[str, Mapping[str, Any]]] = None,
    panel_size: Tuple[float, float] = (4.0, 4.0),
    logy: bool = True,
) -> Tuple[Any, np.ndarray]:
    """Grid of fit plots: one row per binned model, one column per dimension.

    `colors` maps model name -> component name -> color.
    """
    import matplotlib.pyplot as plt

    models = [m for m in minimizer.models if isinstance(m, BinnedLikelihoodModel) and m.has_dataset]
    if not models:
        raise ValueError("plot_fit requires at least one binned model with a dataset.")
    n_dim = max(m.dataset.ndim for m in models)
    fig, axes = plt.subplots(
        len(models),
        n_dim,
        figsize=(panel_size[0] * n_dim, panel_size[1] * len(models)),
        squeeze=False,
    )
    colors = dict(colors or {})
    for row, model in enumerate(models):
        for d in range(n_dim):
            ax = axes[row, d]
            if d >= model.dataset.ndim:
                ax.set_visible(False)
                continue
            plot_model_fit(model, d, ax=ax, colors=colors.get(model.name), logy=logy)
    fig.tight_layout()
    return fig, axes


def plot_profile(
    curve: ProfileCurve,
    *,
    ax: Optional[Any] = None,
    delta_nll: Optional[float] = None,
    line_kwargs: Optional[Mapping[str, Any]] = None,
) -> Tuple[Any, Any]:
    """Plot a profile curve; optionally mark the `delta_nll` level."""
    import matplotlib.pyplot as plt

    if ax is None:
        fig, ax = plt.subplots()
    else:
        fig = ax.figure

    line_kwargs = dict(line_kwargs or {})
    line_kwargs.setdefault("marker", "*")
    ax.plot(curve.x, curve.nll, **line_kwargs)
    if delta_nll is not None:
        ax.axhline(delta_nll, color="gray", linestyle="--", linewidth=1)
    ax.set_xlabel(curve.name)
    ax.set_ylabel("-log likelihood")
    ax.set_title(f"nll_{curve.name}")
    return fig, ax


def plot_profiles(
    curves: Mapping[str, ProfileCurve],
    *,
    ncols: int = 4,
    delta_nll: Optional[float] = None,
    panel_size: Tuple[float, float] = (4.0, 4.0),
) -> Tuple[Any, np.ndarray]:
    """All profile curves on a grid with `ncols` columns."""
    import matplotlib.pyplot as plt

    names: Sequence[str] = list(curves)
    n = max(1, len(names))
    ncols = max(1, min(ncols, n))
    nrows = int(np.ceil(n / ncols))
    fig, axes = plt.subplots(
        nrows, ncols, figsize=(panel_size[0] * ncols, panel_size[1] * nrows), squeeze=False
    )
    flat = axes.ravel()
    for ax, name in zip(flat, names):
        plot_profile(curves[name], ax=ax, delta_nll=delta_nll)
    for ax in flat[len(names):]:
        ax.set_visible(False)
    fig.tight_layout()
    return fig, axes


def component_colors(config: Any) -> Dict[str, Dict[str, str]]:
    """Model name -> component name -> matplotlib color from the integer color codes."""
    return {
        ds.name: {c.name: f"C{c.color % 10}" for c in ds.components}
        for ds in config.datasets
    }
