#########################################################################################
##
##                        PRIOR PROPAGATION BETWEEN HIERARCHY LEVELS
##                                  (opt/priors.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Mapping

import numpy as np

from ..blocks.moments import GaussianMoments, PopulationMoments
from ..blocks.parameter_block import BlockRegistry, BlockTag
from ..engines.base import Priors


# PROPAGATION ===========================================================================

def build_unit_priors(
    population_priors: Mapping[BlockTag, PopulationMoments],
    registry: BlockRegistry,
    n_units: int,
    base: Priors | None = None,
) -> Priors:
    """Initial unit-level priors derived from the population priors.

    Every block starts from the population prior mean, with the population
    prior covariance inflated by the number of units so that no unit is
    over-confident before the population has been learned. Random effects are
    then set from the population priors through :func:`refresh_unit_priors`.

    Parameters
    ----------
    population_priors : mapping
        Population prior per block.
    registry : BlockRegistry
        Blocks of the model with their fixed / random partition.
    n_units : int
        Number of units in the group.
    base : Priors, optional
        Supplies the non-Gaussian entries (``gamma`` and ``extra``), which are
        copied through unchanged.

    Returns
    -------
    Priors
    """
    if n_units < 1:
        raise ValueError(f"n_units must be >= 1, got {n_units}")

    gaussian = {}
    for block in registry:
        prior = population_priors[block.tag]
        gaussian[block.tag] = GaussianMoments(
            mu=prior.mu.copy(),
            sigma=n_units * prior.sigma,
        )

    if base is not None:
        base = base.copy()
        unit = Priors(gaussian=gaussian, gamma=base.gamma, extra=base.extra)
    else:
        unit = Priors(gaussian=gaussian)

    return refresh_unit_priors(unit, population_priors, registry)


def refresh_unit_priors(
    unit_priors: Priors,
    population_posterior: Mapping[BlockTag, PopulationMoments],
    registry: BlockRegistry,
) -> Priors:
    """Unit-level priors re-centred on the current population posterior.

    For every random-effect index the prior mean becomes the population mean
    and the random-effect covariance block becomes ``diag(b / a)``, the
    expected population variance. Fixed-effect and inactive indices keep
    their current values.

    Returns
    -------
    Priors
        A new object; *unit_priors* is left untouched.
    """
    out = unit_priors.copy()
    for block in registry:
        rfx = block.rfx
        if rfx.size == 0:
            continue
        post = population_posterior[block.tag]
        g = out.gaussian[block.tag]
        g.mu[rfx] = post.mu[rfx]
        g.sigma[np.ix_(rfx, rfx)] = np.diag(post.b[rfx] / post.a[rfx])
    return out
