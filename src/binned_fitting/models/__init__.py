"""Built-in likelihood contributions."""
from .binned import BinnedLikelihoodModel
from .pulls import AVAILABLE_PULLS, ExponentialPull, GaussianPull, PullModel, build_pull

__all__ = [
    "AVAILABLE_PULLS",
    "BinnedLikelihoodModel",
    "ExponentialPull",
    "GaussianPull",
    "PullModel",
    "build_pull",
]
