#########################################################################################
##
##              hiervb example: empirical-Bayes prior precision for one unit
##
##  Model:   y = G @ phi + noise  with 6 observation parameters
##  Data:    One synthetic dataset, parameters drawn with standard deviation 2.
##  Fit:     phi and the precision of its prior, phi ~ N(0, Q / alpha) with
##           Q = I and alpha ~ Gamma(1, 1)
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np
import matplotlib.pyplot as plt

from hiervb import (
    BlockTag,
    GammaMoments,
    GaussianMoments,
    HyperparameterEstimator,
    InversionOptions,
    LinearGaussianEngine,
    LinearGaussianModel,
    ModelDims,
    Priors,
)


# DATA ==================================================================================

rng = np.random.default_rng(7)

n_phi = 6
n_obs = 40
noise = 0.5

G = rng.normal(size=(n_obs, n_phi))
phi_true = rng.normal(scale=2.0, size=n_phi)
y = G @ phi_true + rng.normal(scale=noise, size=n_obs)


# MODEL DEFINITION ======================================================================

model = LinearGaussianModel({"phi": G}, noise_var=noise ** 2)

dims = ModelDims(n=0, n_theta=0, n_phi=n_phi)

options = InversionOptions(
    priors=Priors(
        gaussian={BlockTag.PHI: GaussianMoments(mu=np.zeros(n_phi), sigma=np.eye(n_phi))},
        gamma={BlockTag.PHI: GammaMoments(a=1.0, b=1.0)},
    ),
    tol_fun=1e-4,
    max_iter=50,
)


# Run Example ===========================================================================

if __name__ == '__main__':

    est = HyperparameterEstimator(LinearGaussianEngine(), model, dims, options=options)

    result = est.fit(y)
    result.display()

    alpha = result.posterior.hyper[BlockTag.PHI]
    print(f"\nprior precision: {alpha.mean:.3f} (generating value {1 / 4:.3f})")
    print("phi (true / estimated):")
    for k, (p, q) in enumerate(zip(phi_true, result.posterior[BlockTag.PHI].mu)):
        print(f"  [{k}] {p: .3f}  {q: .3f}")

    fig, axes = result.plot()
    plt.show()
