import copy
import json

import pytest

from binned_fitting import ConfigError, MinimizerStep, load_config
from binned_fitting.config import PDF_DIR_ENV, parse_config, resolve_pdf_dir

RAW = {
    "fittingModel": {
        "dataSets": {
            "phase1": {
                "exposure": 2.5,
                "components": {
                    "sig": {"global": True, "refVal": 10, "range": [0, 100], "pdf": ["pdfs.npz", "sig"], "injVal": 12},
                    "bkg": {
                        "global": False,
                        "refVal": 50,
                        "range": [0, 200],
                        "fitStep": 0.5,
                        "pdf": ["pdfs.npz", "bkg"],
                        "color": 4,
                        "fixed": True,
                    },
                },
                "projectOnAxis": [0],
                "axis": {"0": {"range": [1.0, 9.0], "rebin": 2}},
                "normalizePDFInUserRange": True,
            }
        },
        "pulls": {"sig": {"type": "gauss", "centroid": 10, "sigma": 1}},
    },
    "MinimizerSteps": {
        "simplex": {"method": "SIMPLEX", "resetMinuit": False, "maxCall": 1000, "tollerance": 1.0},
        "migrad": {"method": "MIGRAD", "resetMinuit": True, "maxCall": 10000, "tolerance": 0.1, "verbosity": 1},
    },
    "MC": {"realizations": 5, "seed": 42, "enablePoissonFluctuations": True, "outputFile": "out.csv"},
}


def test_parse_full_config():
    cfg = parse_config(RAW)
    ds = cfg.dataset("phase1")
    assert ds.exposure == 2.5
    assert [c.name for c in ds.components] == ["sig", "bkg"]
    sig, bkg = ds.components
    assert sig.is_global and sig.ref_val == 10.0 and sig.inj_val == 12.0
    assert sig.pdf_file == "pdfs.npz" and sig.pdf_name == "sig"
    assert sig.start_step == pytest.approx(1.0)
    assert bkg.start_step == 0.5 and bkg.fixed and bkg.color == 4
    assert ds.project_on_axis == (0,)
    assert ds.axes[0].range == (1.0, 9.0) and ds.axes[0].rebin == 2
    assert ds.normalize_in_user_range is True

    assert [s.method for s in cfg.steps] == ["SIMPLEX", "MIGRAD"]
    assert cfg.steps[0] == MinimizerStep("SIMPLEX", reset=False, max_calls=1000, tolerance=1.0)
    assert cfg.steps[1].verbosity == 1

    assert len(cfg.pulls) == 1
    assert cfg.pulls[0].type == "gauss"
    assert cfg.pulls[0].constants == {"centroid": 10.0, "sigma": 1.0}
    assert cfg.mc.realizations == 5 and cfg.mc.seed == 42 and cfg.mc.poisson
    assert cfg.mc.output_file == "out.csv"


def test_optional_sections():
    raw = copy.deepcopy(RAW)
    del raw["MC"]
    ds = raw["fittingModel"]["dataSets"]["phase1"]
    for key in ("projectOnAxis", "axis", "normalizePDFInUserRange"):
        del ds[key]
    pulls = raw["fittingModel"].pop("pulls")
    raw["pulls"] = {"sig": {"type": "exp", "limit": 20}}
    cfg = parse_config(raw)
    assert cfg.mc is None
    d = cfg.datasets[0]
    assert d.project_on_axis is None and d.axes == {} and d.normalize_in_user_range is None
    assert cfg.pulls[0].constants == {"limit": 20.0, "quantile": 0.9, "offset": 0.0}
    assert pulls


@pytest.mark.parametrize(
    "mutate, where",
    [
        (lambda r: r.pop("MinimizerSteps"), "$"),
        (lambda r: r["fittingModel"]["dataSets"]["phase1"].pop("exposure"), "$.fittingModel.dataSets.phase1"),
        (
            lambda r: r["fittingModel"]["dataSets"]["phase1"]["components"]["sig"].update(range=[5, 1]),
            "$.fittingModel.dataSets.phase1.components.sig.range",
        ),
        (
            lambda r: r["fittingModel"]["dataSets"]["phase1"]["components"]["sig"].update(pdf="x.npz"),
            "$.fittingModel.dataSets.phase1.components.sig.pdf",
        ),
        (lambda r: r["fittingModel"]["pulls"]["sig"].update(type="box"), "$.fittingModel.pulls.sig.type"),
        (lambda r: r["fittingModel"]["pulls"]["sig"].pop("sigma"), "$.fittingModel.pulls.sig"),
        (lambda r: r["MinimizerSteps"]["migrad"].pop("tolerance"), "$.MinimizerSteps.migrad"),
        (lambda r: r["MC"].update(seed="1"), "$.MC.seed"),
        (lambda r: r["fittingModel"]["dataSets"].clear(), "$.fittingModel.dataSets"),
        (
            lambda r: r["fittingModel"]["dataSets"]["phase1"]["axis"].update({"x": {"rebin": 1}}),
            "$.fittingModel.dataSets.phase1.axis.x",
        ),
        (
            lambda r: r["fittingModel"]["dataSets"]["phase1"]["axis"]["0"].update(rebin=0),
            "$.fittingModel.dataSets.phase1.axis.0.rebin",
        ),
        (
            lambda r: r["fittingModel"]["dataSets"]["phase1"]["components"]["bkg"].update(range=[0]),
            "$.fittingModel.dataSets.phase1.components.bkg.range",
        ),
        (
            lambda r: r["fittingModel"]["dataSets"]["phase1"].update(projectOnAxis=[]),
            "$.fittingModel.dataSets.phase1.projectOnAxis",
        ),
        (lambda r: r["fittingModel"]["pulls"].update(bkg={"type": "exp"}), "$.fittingModel.pulls.bkg"),
    ],
)
def test_invalid_config_reports_location(mutate, where):
    raw = copy.deepcopy(RAW)
    mutate(raw)
    with pytest.raises(ConfigError) as exc:
        parse_config(raw)
    assert exc.value.path == where


def test_load_config(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps(RAW), encoding="utf-8")
    cfg = load_config(path)
    assert cfg.source == str(path)

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(bad)
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.json")


def test_resolve_pdf_dir(monkeypatch):
    monkeypatch.delenv(PDF_DIR_ENV, raising=False)
    assert resolve_pdf_dir() is None
    monkeypatch.setenv(PDF_DIR_ENV, "/data/pdfs")
    assert resolve_pdf_dir() == "/data/pdfs"
    assert resolve_pdf_dir("/other") == "/other"
