import numpy as np
from binned_fitting import Histogram, Minimizer, ParameterRegistry, TemplateComposer
from binned_fitting.models import BinnedLikelihoodModel, GaussianPull

edges = np.linspace(0.0, 4.0, 21)
x = 0.5 * (edges[1:] + edges[:-1])
signal = np.exp(-0.5 * ((x - 2.0) / 0.2) ** 2)
background = np.ones_like(x)

registry = ParameterRegistry()
models = []
# Two detectors with different exposures see the same signal rate.
for name, exposure, seed in (("detA", 1.0, 1), ("detB", 3.0, 2)):
    composer = TemplateComposer(name, seed=seed)
    composer.add_template("sig", Histogram([edges], signal))
    composer.add_template("bkg", Histogram([edges], background))
    composer.normalize()
    composer.add_to_composition("sig", 20.0)
    composer.add_to_composition("bkg", 100.0)
    data = composer.draw_mc_realization(120.0 * exposure, poisson=True, label=name)

    model = BinnedLikelihoodModel(name, registry, composer=composer, dataset=data, exposure=exposure)
    model.add_component("sig", is_global=True, range_min=0.0, range_max=200.0)
    model.add_component("bkg", range_min=0.0, range_max=500.0)
    models.append(model)

# A side measurement constrains the signal rate to 18 +- 3.
pull = GaussianPull("pull_sig", registry, "sig", centroid=18.0, sigma=3.0)

for engine in ("iminuit", "scipy"):
    fitter = Minimizer([*models, pull], engine=engine)
    fitter.minimize("MIGRAD", reset_start_values=True)
    res = fitter.result()
    sig = res.params["global.sig"]
    print(f"{engine:>8s}: sig = {sig.u:.2uS}   minNLL = {res.min_nll:.3f}")
