#########################################################################################
##
##                        BLOCK PRECISION HYPERPARAMETER UPDATE
##                              (opt/hyperparameters.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np

from ..blocks.moments import GammaMoments


# UPDATES ===============================================================================

def update_precision(
    prior_gamma: GammaMoments,
    n: int,
    deviation,
    inv_template,
    posterior_sigma,
) -> GammaMoments:
    """Gamma posterior over the shared precision of one parameter block.

    Parameters
    ----------
    prior_gamma : GammaMoments
        Gamma hyperprior ``(a0, b0)`` of the block precision.
    n : int
        Number of active parameters in the block.
    deviation : array_like, shape (k,)
        Deviation between posterior and prior means of the block.
    inv_template : array_like, shape (k, k)
        Inverse of the block's template covariance ``Q``.
    posterior_sigma : array_like, shape (k, k)
        Unit posterior covariance of the block.

    Returns
    -------
    GammaMoments
        ``a = a0 + n/2`` and ``b = b0 + (d' Q^-1 d + tr(Q^-1 S)) / 2``.
    """
    d = np.asarray(deviation, dtype=float).reshape(-1)
    iQ = np.atleast_2d(np.asarray(inv_template, dtype=float))
    S = np.atleast_2d(np.asarray(posterior_sigma, dtype=float))

    expected_sq = float(d @ iQ @ d + np.trace(iQ @ S))
    return GammaMoments(
        a=prior_gamma.a + 0.5 * n,
        b=prior_gamma.b + 0.5 * expected_sq,
    )


def rescale_prior(template, gamma: GammaMoments) -> np.ndarray:
    """Template covariance scaled by the expected variance ``b / a``."""
    return (gamma.b / gamma.a) * np.asarray(template, dtype=float)
