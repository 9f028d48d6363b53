from importlib import metadata

try:
    __version__ = metadata.version("hiervb")
except Exception:
    __version__ = "unknown"

from .blocks import BlockTag, BlockRegistry, GaussianMoments, GammaMoments, PopulationMoments
from .engines import (
    ModelDims,
    Priors,
    InversionOptions,
    Posterior,
    Diagnostics,
    WarmStart,
    LinearGaussianEngine,
    LinearGaussianModel,
)
from .opt import (
    MixedEffectsEstimator,
    MixedEffectsOptions,
    HyperparameterEstimator,
    HyperparameterOptions,
)
from .utils.logger import LoggerManager
