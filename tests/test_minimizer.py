import math

import numpy as np
import pytest

from binned_fitting import (
    Histogram,
    Minimizer,
    MinimizerStep,
    Model,
    ParameterRegistry,
    TemplateComposer,
)
from binned_fitting.backends import AVAILABLE_BACKENDS, EngineStat, get_backend
from binned_fitting.models import BinnedLikelihoodModel, GaussianPull


def _two_bin_fit(engine="iminuit", *, is_global=False):
    reg = ParameterRegistry()
    c = TemplateComposer("d1")
    c.add_template("A", Histogram.from_values([1.0, 0.0]))
    c.add_template("B", Histogram.from_values([0.0, 1.0]))
    m = BinnedLikelihoodModel("d1", reg, composer=c, dataset=Histogram.from_values([10.0, 5.0]))
    m.add_component("A", is_global=is_global, range_min=0.0, range_max=100.0, start_value=8.0)
    m.add_component("B", range_min=0.0, range_max=100.0, start_value=4.0)
    return Minimizer([m], engine=engine), m


class RecordingEngine:
    """Engine double that records the calls made by the Minimizer."""

    name = "recording"

    def __init__(self):
        self.owner = None
        self.errordef = 0.5
        self.print_level = 0
        self.calls = []
        self.objective = None
        self.values = []

    def bind(self, objective, names):
        self.objective = objective
        self.values = [0.0] * len(names)
        self.calls.append(("bind", tuple(names)))

    def define_parameter(self, index, name, value, step, lo, hi):
        self.values[index] = value
        self.calls.append(("define", index))

    def set_value(self, index, value):
        self.values[index] = value
        self.calls.append(("set_value", index))

    def fix(self, index):
        self.calls.append(("fix", index))

    def release(self, index):
        self.calls.append(("release", index))

    def minimize(self, method, max_calls, tolerance):
        self.calls.append(("minimize", method))
        return 0

    def result(self, index):
        return self.values[index], 0.1

    def limits(self, index):
        return None

    def stat(self):
        return EngineStat(float(self.objective(np.asarray(self.values))), 0.0, 0.5, 0, len(self.values), 0)

    def covariance(self):
        return None


def test_backend_registry():
    assert AVAILABLE_BACKENDS == ("iminuit", "scipy")
    a = get_backend("iminuit")
    assert a is not get_backend("iminuit")
    with pytest.raises(ValueError, match="Unknown backend"):
        get_backend("nope")


def test_two_bin_fit_recovers_counts():
    fitter, _ = _two_bin_fit()
    status = fitter.minimize("MIGRAD")
    assert status == 0
    a = fitter.parameter("d1.A")
    b = fitter.parameter("d1.B")
    assert a.best_value == pytest.approx(10.0, rel=1e-2)
    assert b.best_value == pytest.approx(5.0, rel=1e-2)
    assert a.best_error == pytest.approx(math.sqrt(10.0), rel=0.05)
    assert b.best_error == pytest.approx(math.sqrt(5.0), rel=0.05)
    assert fitter.min_nll == pytest.approx(fitter.objective([10.0, 5.0]), abs=1e-3)
    assert fitter.n_fails == 0


def test_two_bin_fit_with_scipy_engine():
    fitter, _ = _two_bin_fit("scipy")
    assert fitter.run_steps([MinimizerStep("MIGRAD"), MinimizerStep("HESSE")]) == 0
    assert fitter.parameter("d1.A").best_value == pytest.approx(10.0, rel=1e-2)
    assert fitter.parameter("d1.B").best_value == pytest.approx(5.0, rel=1e-2)
    assert fitter.parameter("d1.A").best_error == pytest.approx(math.sqrt(10.0), rel=0.05)

    res = fitter.result()
    assert res.engine == "scipy"
    assert res.cov is not None and res.cov.shape == (2, 2)


def test_staged_steps_and_result():
    fitter, _ = _two_bin_fit()
    status = fitter.run_steps(
        [MinimizerStep("SIMPLEX", max_calls=500), MinimizerStep("MIGRAD", reset=True), MinimizerStep("HESSE")]
    )
    assert status == 0
    assert fitter.n_minimizations == 3

    res = fitter.result()
    assert res.ok
    assert res.free_names == ("d1.A", "d1.B")
    assert res.params["d1.A"].value == pytest.approx(10.0, rel=1e-2)
    assert list(res.as_row()) == ["absNLLMin", "minuitStatus", "d1.A", "d1.AErr", "d1.B", "d1.BErr"]

    with pytest.raises(ValueError, match="Unknown minimization method"):
        fitter.minimize("NEWTON")


def test_fixed_parameter_keeps_its_value():
    fitter, m = _two_bin_fit()
    m.get_parameter("B").fix_to(7.0)
    fitter.minimize()
    b = fitter.parameter("d1.B")
    assert b.best_value == pytest.approx(7.0)
    assert b.best_error == 0.0
    assert fitter.parameter("d1.A").best_value == pytest.approx(10.0, rel=1e-2)


def test_all_parameters_fixed():
    fitter, m = _two_bin_fit()
    m.get_parameter("A").fix_to(10.0)
    m.get_parameter("B").fix_to(5.0)
    assert fitter.minimize() == 0
    assert fitter.min_nll == pytest.approx(fitter.objective([10.0, 5.0]))


def test_gaussian_pull_constrains_global():
    fitter, m = _two_bin_fit(is_global=True)
    fitter.add_model(GaussianPull("pull_A", m.registry, "A", centroid=20.0, sigma=0.1))
    fitter.minimize()
    assert fitter.parameter("global.A").best_value == pytest.approx(20.0, abs=0.2)
    assert fitter.parameter("d1.B").best_value == pytest.approx(5.0, rel=1e-2)


def test_minimizer_without_models():
    fitter = Minimizer()
    with pytest.raises(ValueError, match="no models"):
        fitter.sync_fit_parameters()
    with pytest.raises(ValueError):
        fitter.minimize()

    empty = Minimizer([Model("empty", ParameterRegistry())])
    with pytest.raises(ValueError, match="No parameters"):
        empty.sync_fit_parameters()


def test_models_must_share_registry():
    fitter, _ = _two_bin_fit()
    with pytest.raises(ValueError):
        fitter.add_model(Model("other", ParameterRegistry()))
    with pytest.raises(ValueError):
        fitter.add_model(Model("d1", fitter.registry))


def test_incremental_sync_pushes_only_changes():
    engine = RecordingEngine()
    fitter, m = _two_bin_fit(engine)
    fitter.sync_fit_parameters()
    assert engine.calls == [("bind", ("d1.A", "d1.B")), ("define", 0), ("define", 1)]

    engine.calls.clear()
    fitter.sync_fit_parameters()
    assert engine.calls == []

    m.get_parameter("B").fix_to(3.0)
    fitter.sync_fit_parameters()
    assert engine.calls == [("set_value", 1), ("fix", 1)]

    engine.calls.clear()
    m.get_parameter("B").fix_to(4.0)
    fitter.sync_fit_parameters()
    assert engine.calls == [("set_value", 1)]

    engine.calls.clear()
    m.get_parameter("B").release()
    fitter.sync_fit_parameters()
    assert engine.calls == [("release", 1)]

    engine.calls.clear()
    m.get_parameter("A").set_range(0.0, 50.0)
    fitter.sync_fit_parameters()
    assert engine.calls == [("define", 0)]

    engine.calls.clear()
    fitter.sync_fit_parameters(reset_start_values=True)
    assert engine.calls == [("define", 0), ("define", 1)]


def test_shared_engine_resyncs_everything():
    engine = RecordingEngine()
    first, m1 = _two_bin_fit(engine)
    second, _ = _two_bin_fit(engine)
    m1.get_parameter("B").fix_to(2.0)

    first.sync_fit_parameters()
    second.sync_fit_parameters()
    assert engine.owner is second

    engine.calls.clear()
    first.minimize()
    assert engine.calls[0] == ("bind", ("d1.A", "d1.B"))
    assert engine.calls[1:4] == [("define", 0), ("define", 1), ("fix", 1)]
    assert engine.owner is first
    assert first.parameter("d1.B").best_value == 2.0


def test_new_parameter_triggers_rebind():
    engine = RecordingEngine()
    reg = ParameterRegistry()
    c = TemplateComposer()
    c.add_template("A", Histogram.from_values([1.0]))
    c.add_template("B", Histogram.from_values([1.0]))
    m = BinnedLikelihoodModel("d1", reg, composer=c, dataset=Histogram.from_values([3.0]))
    m.add_component("A", range_min=0.0, range_max=10.0)
    fitter = Minimizer([m], engine=engine)
    fitter.sync_fit_parameters()

    engine.calls.clear()
    m.add_component("B", range_min=0.0, range_max=10.0)
    fitter.sync_fit_parameters()
    assert engine.calls[0] == ("bind", ("d1.A", "d1.B"))


def test_minos_after_failed_migrad_is_counted_not_raised():
    fitter, m = _two_bin_fit()
    m.get_parameter("A").start_value = 80.0
    m.get_parameter("B").start_value = 80.0
    status = fitter.run_steps([MinimizerStep("MIGRAD", max_calls=3), MinimizerStep("MINOS")])
    assert status != 0
    assert fitter.status == status
    assert fitter.n_fails >= 1
    assert not fitter.result().ok

    # a converged MIGRAD lets MINOS run and fill the interval
    assert fitter.run_steps([MinimizerStep("MIGRAD", reset=True), MinimizerStep("MINOS")]) == 0
    a = fitter.parameter("d1.A")
    assert a.lower_limit < a.best_value < a.upper_limit


def test_infinite_nll_stays_visible_with_scipy_engine():
    reg = ParameterRegistry()
    c = TemplateComposer("d1")
    c.add_template("A", Histogram.from_values([1.0, 0.0]))
    m = BinnedLikelihoodModel("d1", reg, composer=c, dataset=Histogram.from_values([10.0, 5.0]))
    m.add_component("A", range_min=0.0, range_max=100.0, start_value=8.0)
    fitter = Minimizer([m], engine="scipy")

    assert fitter.minimize() != 0
    assert not math.isfinite(fitter.min_nll)
    assert fitter.n_fails == 1
