from .base import (
    Diagnostics,
    InversionEngine,
    InversionOptions,
    ModelDims,
    Posterior,
    Priors,
    WarmStart,
)
from .defaults import default_population_priors, fill_in_priors, fill_population_priors
from .linear_gaussian import LinearGaussianEngine, LinearGaussianModel
