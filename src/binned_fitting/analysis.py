"""Composition root: build registry, composers, models and minimizer from a config."""
from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, Union

from scipy.stats import chi2

from .backends import Engine
from .composer import TemplateComposer
from .config import AnalysisConfig, ConfigError, DataSetConfig, resolve_pdf_dir
from .io import TemplateSource, read_histogram, write_histograms
from .minimizer import Minimizer
from .models import BinnedLikelihoodModel, build_pull
from .params import ParameterRegistry
from .profile import ProfileCurve, ProfileScanner

logger = logging.getLogger(__name__)

__all__ = [
    "binned_models",
    "build_profiles",
    "initialize_analysis",
    "run_minimizer_steps",
    "set_datasets_from_file",
    "set_datasets_from_mc",
    "store_datasets",
]


def _build_composer(ds: DataSetConfig, pdf_dir: Optional[str], seed: Optional[int]) -> TemplateComposer:
    # Every composer gets the same seed: identical datasets give identical realizations.
    composer = TemplateComposer(ds.name, seed=seed)
    for comp in ds.components:
        source = TemplateSource(comp.pdf_file, comp.pdf_name).resolved(pdf_dir)
        composer.load_template(source, comp.name, project_on=ds.project_on_axis)

    ndim = composer.template(ds.components[0].name).ndim
    for idx in ds.axes:
        if idx < 0 or idx >= ndim:
            raise ConfigError(
                f"$.fittingModel.dataSets.{ds.name}.axis.{idx}",
                f"axis index out of range for {ndim}-dimensional templates",
            )
    groups = [ds.axes[i].rebin if i in ds.axes else 1 for i in range(ndim)]
    if any(g != 1 for g in groups):
        composer.rebin(groups)
    for idx, ax in ds.axes.items():
        if ax.range is not None:
            composer.set_range_user(idx, *ax.range)
    if ds.normalize_in_user_range is not None:
        composer.normalize(user_range=ds.normalize_in_user_range)
    return composer


def initialize_analysis(
    config: AnalysisConfig,
    *,
    engine: Union[str, Engine] = "iminuit",
    pdf_dir: Optional[str] = None,
    verbosity: int = 0,
) -> Minimizer:
    """Build one binned model per dataset plus the pulls, and sync the engine once."""
    registry = ParameterRegistry()
    pdf_dir = resolve_pdf_dir(pdf_dir)
    seed = config.mc.seed if config.mc is not None else None
    fitter = Minimizer(registry=registry, engine=engine, verbosity=verbosity)

    for ds in config.datasets:
        composer = _build_composer(ds, pdf_dir, seed)
        model = BinnedLikelihoodModel(ds.name, registry, composer=composer, exposure=ds.exposure)
        for comp in ds.components:
            model.add_component(
                comp.name,
                is_global=comp.is_global,
                range_min=comp.range[0],
                range_max=comp.range[1],
                start_value=comp.ref_val,
                step=comp.start_step,
                fixed=comp.fixed,
            )
        fitter.add_model(model)
        logger.info(
            "dataset %s: %d component(s) %s",
            ds.name,
            len(ds.components),
            composer.template(ds.components[0].name).shape,
        )

    for pull in config.pulls:
        fitter.add_model(build_pull(pull.type, f"pull_{pull.name}", registry, pull.name, **pull.constants))

    fitter.sync_fit_parameters()
    return fitter


def binned_models(fitter: Minimizer) -> List[BinnedLikelihoodModel]:
    return [m for m in fitter.models if isinstance(m, BinnedLikelihoodModel)]


def set_datasets_from_file(fitter: Minimizer, path: Union[str, "os.PathLike[str]"]) -> None:
    """Load the data histogram of every binned model; objects are named after the models."""
    logger.info("loading input data from %s", path)
    for model in binned_models(fitter):
        hist = read_histogram(os.fspath(path), model.name, name=model.name)
        reference = model.composer.template(model.local_names[0]) if model.local_names else None
        if reference is not None:
            hist.copy_ranges_from(reference)
        model.dataset = hist


def set_datasets_from_mc(config: AnalysisConfig, fitter: Minimizer) -> None:
    """Draw a synthetic dataset for every binned model from the injected values."""
    poisson = config.mc.poisson if config.mc is not None else False
    for model in binned_models(fitter):
        ds = config.dataset(model.name)
        composer = model.composer
        composer.reset_composition()
        total = 0.0
        for name in model.local_names:
            inj = ds.component(name).inj_val
            composer.add_to_composition(name, inj)
            total += inj * model.exposure
        model.dataset = composer.draw_mc_realization(total, poisson, label=model.name)


def run_minimizer_steps(config: AnalysisConfig, fitter: Minimizer) -> int:
    return fitter.run_steps(config.steps)


def build_profiles(
    config: AnalysisConfig,
    fitter: Minimizer,
    cl: float = 0.95,
    n_points: int = 10,
) -> Dict[str, ProfileCurve]:
    """Profile every free parameter up to the chi2(1 dof) quantile of `cl`."""
    delta = float(chi2.ppf(cl, 1))
    return ProfileScanner(fitter, config.steps).profile_all(delta, n_points)


def store_datasets(
    fitter: Minimizer,
    path: Union[str, "os.PathLike[str]"],
    suffix: str = "",
    *,
    append: bool = True,
) -> None:
    """Write the current dataset of every binned model as `<model><suffix>`."""
    hists = {f"{m.name}{suffix}": m.dataset for m in binned_models(fitter) if m.has_dataset}
    write_histograms(path, hists, append=append)
