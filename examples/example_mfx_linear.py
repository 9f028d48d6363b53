#########################################################################################
##
##              hiervb example: mixed-effects analysis of a group of units
##
##  Model:   y_i(t) = offset + slope_i * t + noise  (one linear model per unit)
##  Data:    Eight synthetic units sharing the offset, slopes drawn from a
##           population with mean 1.2 and standard deviation 0.3.
##  Fit:     offset (fixed effect, pooled over units)
##           slope  (random effect, population mean and variance learned)
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np
import matplotlib.pyplot as plt

from hiervb import (
    LinearGaussianEngine,
    LinearGaussianModel,
    LoggerManager,
    MixedEffectsEstimator,
    MixedEffectsOptions,
    ModelDims,
    PopulationMoments,
)


# DATA ==================================================================================

rng = np.random.default_rng(42)

n_units = 8
t = np.linspace(-1.0, 1.0, 30)
noise = 0.2

offset_true = 0.8
slopes_true = rng.normal(1.2, 0.3, size=n_units)

data = [offset_true + s * t + rng.normal(scale=noise, size=t.size) for s in slopes_true]


# MODEL DEFINITION ======================================================================

model = LinearGaussianModel(
    {"phi": np.column_stack([np.ones_like(t), t])},
    noise_var=noise ** 2,
)

dims = ModelDims(n_phi=2)

# a = inf, b = 0 marks the offset as a fixed effect
priors = {
    "phi": PopulationMoments(
        mu=[0.0, 0.0],
        sigma=np.diag([10.0, 10.0]),
        a=[np.inf, 1.0],
        b=[0.0, 1.0],
    )
}


# Run Example ===========================================================================

if __name__ == '__main__':

    LoggerManager().configure(level="INFO")

    est = MixedEffectsEstimator(
        LinearGaussianEngine(),
        model,
        dims,
        priors=priors,
        options=MixedEffectsOptions(tol_fun=1e-4, max_iter=32, display=True),
        max_workers=4,
    )

    result = est.fit(data)
    result.display()

    print(f"\ntrue offset {offset_true:.3f}, slope mean {slopes_true.mean():.3f}, "
          f"slope var {slopes_true.var():.3f}")

    fig, axes = result.plot()
    plt.show()
