import json
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
from binned_fitting import Histogram
from binned_fitting.cli import main
from binned_fitting.io import write_histograms

workdir = Path(tempfile.mkdtemp())
edges = [np.linspace(0.0, 10.0, 21)]
x = 0.5 * (edges[0][1:] + edges[0][:-1])
write_histograms(
    workdir / "pdfs.npz",
    {"sig": Histogram(edges, np.exp(-0.5 * (x - 5.0) ** 2)), "bkg": Histogram(edges, np.ones_like(x))},
)

pdfs = str(workdir / "pdfs.npz")
config = {
    "fittingModel": {
        "dataSets": {
            "ds": {
                "exposure": 1.0,
                "components": {
                    "sig": {"global": False, "refVal": 80, "range": [0, 1000], "pdf": [pdfs, "sig"], "injVal": 100},
                    "bkg": {"global": False, "refVal": 300, "range": [0, 2000], "pdf": [pdfs, "bkg"], "injVal": 400},
                },
                "normalizePDFInUserRange": False,
            }
        }
    },
    "MinimizerSteps": {"migrad": {"method": "MIGRAD", "resetMinuit": True, "maxCall": 10000, "tolerance": 0.1}},
    "MC": {"realizations": 5, "seed": 3, "enablePoissonFluctuations": True, "outputFile": str(workdir / "fits.csv")},
}
cfg_path = workdir / "analysis.json"
cfg_path.write_text(json.dumps(config), encoding="utf-8")

# Equivalent to: binned-fit analysis.json -b -d
main([str(cfg_path), "-b", "-d"])
print(pd.read_csv(workdir / "fits.csv"))
