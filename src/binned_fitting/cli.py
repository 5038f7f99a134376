"""binned-fit: multivariate binned maximum-likelihood fits driven by a JSON config."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from scipy.stats import chi2

from . import __version__
from .analysis import (
    build_profiles,
    initialize_analysis,
    run_minimizer_steps,
    set_datasets_from_file,
    set_datasets_from_mc,
    store_datasets,
)
from .config import AnalysisConfig, load_config
from .results import FitResultTable

logger = logging.getLogger("binned_fitting.cli")

DESCRIPTION = "A tool for multivariate binned analysis with histogram templates"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="binned-fit", description=DESCRIPTION)
    p.add_argument("config", help="JSON configuration file")

    mode = p.add_mutually_exclusive_group(required=True)
    mode.add_argument("-s", "--single-fit", action="store_true", help="fit one dataset and plot it")
    mode.add_argument("-b", "--batch-fit", action="store_true", help="fit MC realizations in a loop")

    p.add_argument("-f", "--data-from-file", metavar="FILE", help="read datasets from FILE instead of MC")
    p.add_argument("-o", "--output-file", metavar="FILE", help="output table (default: MC.outputFile or <config>.csv)")

    p.add_argument("-p", "--build-profiles", action="store_true", help="build profile likelihoods")
    p.add_argument("-n", "--profile-npts", type=int, default=10, help="approx. points per profile (default: 10)")
    p.add_argument("-c", "--profile-cl", type=float, default=0.95, help="confidence level covered by profiles (default: 0.95)")

    p.add_argument("-d", "--store-data-sets", action="store_true", help="store the fitted datasets")
    p.add_argument("-t", "--store-fit-plot", action="store_true", help="store the fit plot of every realization")
    p.add_argument("-a", "--append-to-file", action="store_true", help="append to an existing output table")

    p.add_argument("-v", "--verbose", action="count", default=0, help="increase verbosity")
    p.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    return p


def output_path(args: argparse.Namespace, config: AnalysisConfig, config_path: str) -> Path:
    if args.output_file:
        return Path(args.output_file)
    if config.mc is not None and config.mc.output_file:
        return Path(config.mc.output_file)
    return Path(config_path).with_suffix(".csv")


def _sibling(path: Path, tag: str, ext: str) -> Path:
    return path.with_name(f"{path.stem}-{tag}{ext}")


def _set_datasets(args: argparse.Namespace, config: AnalysisConfig, fitter) -> None:
    if args.data_from_file:
        set_datasets_from_file(fitter, args.data_from_file)
    else:
        if config.mc is None:
            raise SystemExit("error: the configuration has no MC block; use -f to read data from file")
        set_datasets_from_mc(config, fitter)


def _save_plots(fitter, config: AnalysisConfig, path: Path, curves=None, delta=None) -> None:
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    from .plotting import component_colors, plot_fit, plot_profiles

    fig, _ = plot_fit(fitter, colors=component_colors(config))
    fig.savefig(_sibling(path, "fit", ".png"))
    plt.close(fig)
    if curves:
        fig, _ = plot_profiles(curves, delta_nll=delta)
        fig.savefig(_sibling(path, "profiles", ".png"))
        plt.close(fig)


def single_fit(args: argparse.Namespace, config: AnalysisConfig, out: Path) -> int:
    fitter = initialize_analysis(config, verbosity=args.verbose)
    _set_datasets(args, config, fitter)
    run_minimizer_steps(config, fitter)

    print(fitter.summary())
    print(f"MinNLL= {fitter.min_nll}")

    curves = None
    if args.build_profiles:
        curves = build_profiles(config, fitter, args.profile_cl, args.profile_npts)
    if args.store_data_sets:
        store_datasets(fitter, _sibling(out, "dataSets", ".npz"), append=args.append_to_file)
    _save_plots(fitter, config, out, curves, chi2.ppf(args.profile_cl, 1))
    return 0


def batch_fit(args: argparse.Namespace, config: AnalysisConfig, out: Path) -> int:
    fitter = initialize_analysis(config, verbosity=max(0, args.verbose - 1))
    table = FitResultTable.for_registry(fitter.registry)
    n_iter = 1 if args.data_from_file else config.mc.realizations if config.mc is not None else 1

    try:
        for i in range(n_iter):
            if not args.data_from_file:
                logger.info("processing MC realization %d of %d", i + 1, n_iter)
            _set_datasets(args, config, fitter)
            run_minimizer_steps(config, fitter)
            result = fitter.result()
            table.append(result)

            if args.verbose:
                print(result.summary())

            curves = None
            if args.build_profiles:
                curves = build_profiles(config, fitter, args.profile_cl, args.profile_npts)
            if args.store_fit_plot or curves:
                _save_plots(fitter, config, _sibling(out, str(i), out.suffix), curves, chi2.ppf(args.profile_cl, 1))
            if args.store_data_sets:
                store_datasets(fitter, _sibling(out, "dataSets", ".npz"), f"_{i}", append=True)
    except KeyboardInterrupt:
        logger.warning("interrupted after %d fit(s); writing partial results", len(table))

    table.write_csv(out, append=args.append_to_file)
    logger.info("wrote %d fit result(s) to %s", len(table), out)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    logger.info("loading configuration from %s", args.config)
    config = load_config(args.config)
    out = output_path(args, config, args.config)

    if args.single_fit:
        return single_fit(args, config, out)
    return batch_fit(args, config, out)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
