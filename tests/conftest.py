import json

import numpy as np
import pytest

from binned_fitting import Histogram
from binned_fitting.io import write_histograms


def _templates():
    edges = [np.linspace(0.0, 20.0, 21), np.linspace(0.0, 2.0, 3)]
    x = 0.5 * (edges[0][1:] + edges[0][:-1])
    sig = np.exp(-0.5 * ((x - 10.0) / 2.0) ** 2)
    bkg = np.ones_like(x)
    return {
        "sig": Histogram(edges, np.outer(sig, [1.0, 1.0]), name="sig"),
        "bkg": Histogram(edges, np.outer(bkg, [1.0, 1.0]), name="bkg"),
    }


def analysis_dict(pdf_file="pdfs.npz", **mc):
    mc_block = {"realizations": 3, "seed": 1, "enablePoissonFluctuations": False, "outputFile": ""}
    mc_block.update(mc)
    return {
        "fittingModel": {
            "dataSets": {
                "d1": {
                    "exposure": 1.0,
                    "components": {
                        "sig": {"global": True, "refVal": 800, "range": [0, 5000], "pdf": [pdf_file, "sig"], "injVal": 1000},
                        "bkg": {"global": False, "refVal": 400, "range": [0, 5000], "pdf": [pdf_file, "bkg"], "injVal": 500},
                    },
                    "projectOnAxis": [0],
                    "normalizePDFInUserRange": False,
                }
            }
        },
        "MinimizerSteps": {
            "migrad": {"method": "MIGRAD", "resetMinuit": True, "maxCall": 10000, "tolerance": 0.1},
        },
        "MC": mc_block,
    }


@pytest.fixture
def raw_config():
    """Decoded analysis config; templates are looked up relative to the pdf directory."""
    return analysis_dict()


@pytest.fixture
def pdf_dir(tmp_path):
    """Directory holding pdfs.npz with a 2D `sig` peak and a flat `bkg`."""
    write_histograms(tmp_path / "pdfs.npz", _templates())
    return tmp_path


@pytest.fixture
def config_file(pdf_dir):
    """JSON analysis config referring to the templates by absolute path."""
    path = pdf_dir / "analysis.json"
    raw = analysis_dict(str(pdf_dir / "pdfs.npz"))
    path.write_text(json.dumps(raw), encoding="utf-8")
    return path
