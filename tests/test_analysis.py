import numpy as np
import pytest

from binned_fitting import ConfigError, initialize_analysis
from binned_fitting.analysis import (
    binned_models,
    build_profiles,
    run_minimizer_steps,
    set_datasets_from_file,
    set_datasets_from_mc,
    store_datasets,
)
from binned_fitting.config import parse_config
from binned_fitting.io import list_histograms


def test_initialize_builds_models_from_config(raw_config, pdf_dir):
    cfg = parse_config(raw_config)
    fitter = initialize_analysis(cfg, pdf_dir=str(pdf_dir))
    assert fitter.registry.names() == ("global.sig", "d1.bkg")
    (model,) = binned_models(fitter)
    assert model.name == "d1"
    tmpl = model.composer.template("sig")
    assert tmpl.shape == (20,)
    assert tmpl.integral() == pytest.approx(1.0)
    assert fitter.parameter("global.sig").fit_start_value == 800.0
    assert fitter.parameter("d1.bkg").fit_start_step == pytest.approx(50.0)


def test_mc_fit_recovers_injected_values(raw_config, pdf_dir):
    cfg = parse_config(raw_config)
    fitter = initialize_analysis(cfg, pdf_dir=str(pdf_dir))
    set_datasets_from_mc(cfg, fitter)
    (model,) = binned_models(fitter)
    assert model.dataset.integral(flow=True) == 1500

    assert run_minimizer_steps(cfg, fitter) == 0
    assert fitter.parameter("global.sig").best_value == pytest.approx(1000.0, abs=150.0)
    assert fitter.parameter("d1.bkg").best_value == pytest.approx(500.0, abs=150.0)
    assert fitter.min_nll > 0.0


def test_pull_and_axis_settings(raw_config, pdf_dir):
    raw = raw_config
    ds = raw["fittingModel"]["dataSets"]["d1"]
    ds["axis"] = {"0": {"range": [4.0, 16.0], "rebin": 2}}
    raw["fittingModel"]["pulls"] = {"sig": {"type": "gauss", "centroid": 1000, "sigma": 10}}
    cfg = parse_config(raw)
    fitter = initialize_analysis(cfg, pdf_dir=str(pdf_dir))

    assert [m.name for m in fitter.models] == ["d1", "pull_sig"]
    tmpl = binned_models(fitter)[0].composer.template("bkg")
    assert tmpl.shape == (10,)
    assert tmpl.axes[0].user_range == (3, 8)

    set_datasets_from_mc(cfg, fitter)
    run_minimizer_steps(cfg, fitter)
    assert fitter.parameter("global.sig").best_value == pytest.approx(1000.0, abs=30.0)


def test_axis_index_out_of_range(raw_config, pdf_dir):
    raw = raw_config
    raw["fittingModel"]["dataSets"]["d1"]["axis"] = {"1": {"rebin": 2}}
    with pytest.raises(ConfigError):
        initialize_analysis(parse_config(raw), pdf_dir=str(pdf_dir))


def test_missing_template_file(raw_config, tmp_path):
    cfg = parse_config(raw_config)
    with pytest.raises(FileNotFoundError):
        initialize_analysis(cfg, pdf_dir=str(tmp_path))


def test_store_and_reload_datasets(raw_config, pdf_dir):
    cfg = parse_config(raw_config)
    fitter = initialize_analysis(cfg, pdf_dir=str(pdf_dir))
    set_datasets_from_mc(cfg, fitter)
    path = pdf_dir / "data.npz"
    store_datasets(fitter, path)
    store_datasets(fitter, pdf_dir / "sets.npz", "_0")
    store_datasets(fitter, pdf_dir / "sets.npz", "_1")
    assert sorted(list_histograms(pdf_dir / "sets.npz")) == ["d1_0", "d1_1"]

    other = initialize_analysis(cfg, pdf_dir=str(pdf_dir))
    set_datasets_from_file(other, path)
    np.testing.assert_allclose(binned_models(other)[0].dataset.storage, binned_models(fitter)[0].dataset.storage)


def test_build_profiles(raw_config, pdf_dir):
    cfg = parse_config(raw_config)
    fitter = initialize_analysis(cfg, pdf_dir=str(pdf_dir))
    set_datasets_from_mc(cfg, fitter)
    run_minimizer_steps(cfg, fitter)
    best = fitter.parameter("global.sig").best_value

    curves = build_profiles(cfg, fitter, cl=0.68, n_points=4)
    assert list(curves) == ["global.sig", "d1.bkg"]
    lo, hi = curves["global.sig"].interval(0.5)
    assert lo < best < hi
    assert fitter.parameter("global.sig").best_value == best
