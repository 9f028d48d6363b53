#########################################################################################
##
##                   HIERARCHICAL VARIATIONAL BAYES: PUBLIC API
##                               (opt/__init__.py)
##
#########################################################################################

from .config import MixedEffectsOptions, HyperparameterOptions
from .convergence import ConvergenceMonitor, ConvergenceStatus
from .observers import (
    IterationObserver,
    IterationState,
    NullObserver,
    LoggingObserver,
    CallbackObserver,
)
from .priors import build_unit_priors, refresh_unit_priors
from .population import population_update, update_block
from .hyperparameters import update_precision, rescale_prior
from .free_energy import (
    group_correction,
    mixed_effects_free_energy,
    hyper_correction,
    hyperparameter_free_energy,
)
from .mixed_effects import MixedEffectsEstimator, MixedEffectsResult, UnitBaseline
from .hyperparameter_estimator import HyperparameterEstimator, HyperparameterResult
