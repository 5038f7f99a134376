"""binned_fitting public API."""
import logging

from .histogram import Axis, Histogram
from .params import Parameter, ParameterKind, ParameterRegistry
from .composer import TemplateComposer
from .model import Model
from .minimizer import Minimizer, MinimizerStep
from .profile import ProfileCurve, ProfileScanner
from .results import FitResult, FitResultTable
from .config import AnalysisConfig, ConfigError, load_config
from .analysis import initialize_analysis
from . import models

__version__ = "1.5.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AnalysisConfig",
    "Axis",
    "ConfigError",
    "FitResult",
    "FitResultTable",
    "Histogram",
    "Minimizer",
    "MinimizerStep",
    "Model",
    "Parameter",
    "ParameterKind",
    "ParameterRegistry",
    "ProfileCurve",
    "ProfileScanner",
    "TemplateComposer",
    "initialize_analysis",
    "load_config",
    "models",
]
