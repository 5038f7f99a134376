import numpy as np
import matplotlib.pyplot as plt
from binned_fitting import Histogram, Minimizer, ParameterRegistry, ProfileScanner, TemplateComposer
from binned_fitting.models import BinnedLikelihoodModel
from binned_fitting.plotting import plot_model_fit, plot_profile

edges = np.linspace(0.0, 10.0, 41)
x = 0.5 * (edges[1:] + edges[:-1])

composer = TemplateComposer("spectrum", seed=0)
composer.add_template("peak", Histogram([edges], np.exp(-0.5 * ((x - 6.0) / 0.4) ** 2)))
composer.add_template("slope", Histogram([edges], np.exp(-x / 4.0)))
composer.normalize()

# Pseudo-data: 300 peak events on top of 2000 background events.
composer.add_to_composition("peak", 300.0)
composer.add_to_composition("slope", 2000.0)
data = composer.draw_mc_realization(2300.0, poisson=True, label="data")

registry = ParameterRegistry()
model = BinnedLikelihoodModel("spectrum", registry, composer=composer, dataset=data)
model.add_component("peak", range_min=0.0, range_max=1000.0, start_value=100.0)
model.add_component("slope", range_min=0.0, range_max=5000.0, start_value=1500.0)

fitter = Minimizer([model])
fitter.minimize("MIGRAD")
res = fitter.result()
print(res.summary(digits=4))

curve = ProfileScanner(fitter).profile("spectrum.peak", delta_nll=0.5, n_points=10)
print("peak 68% interval from the profile:", curve.interval(0.5))

fig, (ax0, ax1) = plt.subplots(1, 2, figsize=(9, 4))
plot_model_fit(model, ax=ax0, colors={"peak": "C3", "slope": "C0"}, logy=False)
plot_profile(curve, ax=ax1, delta_nll=0.5)
fig.tight_layout()
plt.show()
