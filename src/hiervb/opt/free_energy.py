#########################################################################################
##
##                      FREE ENERGY OF THE HIERARCHICAL LEVEL
##                               (opt/free_energy.py)
##
##         The total free energy is the sum of the unit-level free energies
##         reported by the engine plus an analytic correction per parameter
##         block that accounts for the extra level of the hierarchy.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Iterable, Mapping

import numpy as np
from scipy.special import digamma, gammaln

from ..blocks.effects import is_fixed_effect
from ..blocks.moments import GammaMoments, PopulationMoments
from ..blocks.parameter_block import BlockRegistry, BlockTag, ParameterBlock
from ..utils.linalg import (
    LOG_2PI,
    gamma_entropy,
    gaussian_entropy,
    inv,
    kl_gamma,
    logdet,
)


# GROUP LEVEL ===========================================================================

def group_correction(
    ns: int,
    posterior: PopulationMoments,
    prior: PopulationMoments,
    block: ParameterBlock,
) -> float:
    """Free energy correction of one block of a mixed-effects model.

    Evaluated on the random-effect sub-block from the current population
    posterior and the fixed population prior.

    Parameters
    ----------
    ns : int
        Number of units.
    posterior : PopulationMoments
        Current population posterior of the block.
    prior : PopulationMoments
        Population prior of the block.
    block : ParameterBlock
        Block descriptor supplying the random / fixed partition.

    Returns
    -------
    float
    """
    rfx = block.rfx
    rr = np.ix_(rfx, rfx)
    n = rfx.size
    nffx = int(np.count_nonzero(is_fixed_effect(prior.a, prior.b)[block.active_indices]))

    e = posterior.mu[rfx] - prior.mu[rfx]
    V = posterior.sigma[rr]
    V0 = prior.sigma[rr]
    iV0 = inv(V0) if n else V0
    a = posterior.a[rfx]
    b = posterior.b[rfx]
    a0 = prior.a[rfx]
    b0 = prior.b[rfx]

    F = (
        -0.5 * ns * np.sum(np.log(a / b))
        + np.sum((a0 + 0.5 * ns - 1.0) * (digamma(a) - np.log(b)))
        - np.sum((0.5 * ns * np.diag(V) + b0) * a / b)
        + np.sum(a0 * np.log(b0) + gammaln(b0))
        - 0.5 * n * LOG_2PI
        - 0.5 * logdet(V0)
        - 0.5 * e @ iV0 @ e
        - 0.5 * np.trace(iV0 @ V)
        + np.sum(gamma_entropy(a, b))
        + (gaussian_entropy(V) if n else 0.0)
        + 0.5 * (ns - 1) * nffx * LOG_2PI
    )
    return float(F)


def mixed_effects_free_energy(
    unit_free_energies: Iterable[float],
    posterior: Mapping[BlockTag, PopulationMoments],
    priors: Mapping[BlockTag, PopulationMoments],
    registry: BlockRegistry,
) -> float:
    """Total free energy of a mixed-effects model.

    Sum of the unit free energies plus :func:`group_correction` for every
    registered block.
    """
    unit_free_energies = list(unit_free_energies)
    ns = len(unit_free_energies)

    F = float(np.sum(unit_free_energies))
    for block in registry:
        F += group_correction(ns, posterior[block.tag], priors[block.tag], block)
    return F


# HYPERPARAMETER LEVEL ==================================================================

def hyper_correction(a, a0, b, b0, n) -> float:
    """Free energy correction of one block precision.

    ``0.5 * n * (E[log lambda] - log E[lambda]) - KL(q(lambda) || p(lambda))``
    with ``q = Gamma(a, b)`` and ``p = Gamma(a0, b0)``.
    """
    m1 = a / b
    v1 = m1 / b
    m2 = a0 / b0
    v2 = m2 / b0
    kl = kl_gamma(m1, v1, m2, v2)
    elp = digamma(a) - np.log(b)
    return float(0.5 * n * (elp - np.log(m1)) - kl)


def hyperparameter_free_energy(
    engine_free_energy: float,
    hyper_posterior: Mapping[BlockTag, GammaMoments],
    hyper_prior: Mapping[BlockTag, GammaMoments],
    n_active: Mapping[BlockTag, int],
) -> float:
    """Engine free energy plus the precision correction of every block.

    Blocks with no active parameter contribute nothing.
    """
    F = float(engine_free_energy)
    for tag, n in n_active.items():
        if n == 0:
            continue
        q = hyper_posterior[tag]
        p = hyper_prior[tag]
        F += hyper_correction(q.a, p.a, q.b, p.b, n)
    return F
