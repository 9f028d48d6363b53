#########################################################################################
##
##                         POPULATION-LEVEL CONJUGATE UPDATE
##                                (opt/population.py)
##
##         Variational update of the population distribution of one parameter
##         block from the unit-level posteriors. Random effects get a
##         Normal-Gamma update of the population mean and precision; fixed
##         effects are pooled across units in information form.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Sequence

import numpy as np

from ..blocks.effects import is_fixed_effect
from ..blocks.moments import PopulationMoments
from ..utils.linalg import inv


# UPDATE ================================================================================

def population_update(
    m0,
    iV0,
    ms,
    Vs: Sequence,
    a,
    b,
    a0,
    b0,
    ffx,
    active,
) -> PopulationMoments:
    """One variational update of a block's population posterior.

    Parameters
    ----------
    m0 : array_like, shape (n,)
        Population prior mean.
    iV0 : array_like, shape (n, n)
        Population prior precision.
    ms : array_like, shape (n, ns)
        Unit posterior means, one column per unit.
    Vs : sequence of array_like, each (n, n)
        Unit posterior covariances.
    a, b : array_like, shape (n,)
        Current Gamma posterior over the population precision. The expected
        precision used for the mean update is taken from these values
        before they are overwritten.
    a0, b0 : array_like, shape (n,)
        Gamma prior over the population precision.
    ffx : array_like of int
        Indices flagged as fixed effects (only those in *active* are used).
    active : array_like of int or bool
        Indices (or mask) of the parameters estimated at all.

    Returns
    -------
    PopulationMoments
        New population posterior. Inactive indices keep the prior mean and a
        zero covariance; ``a`` and ``b`` outside the random effects keep their
        current values.

    Notes
    -----
    The fixed-effect block is obtained by summing the full unit precision
    matrices, cross terms with random effects included, and restricting the
    inverse of the sum to the fixed indices.

    Example
    -------
    .. code-block:: python

        # two units, one fixed scalar parameter
        post = population_update(
            m0=[0.0], iV0=[[1.0]], ms=[[2.0, 4.0]], Vs=[[[0.25]], [[1.0]]],
            a=[np.inf], b=[0.0], a0=[np.inf], b0=[0.0], ffx=[0], active=[0],
        )
        post.mu      # array([2.4])
        post.sigma   # array([[0.2]])
    """
    m0 = np.asarray(m0, dtype=float).reshape(-1)
    n = m0.size
    iV0 = np.atleast_2d(np.asarray(iV0, dtype=float))
    ms = np.asarray(ms, dtype=float).reshape(n, -1)
    ns = ms.shape[1]
    Vs = [np.atleast_2d(np.asarray(V, dtype=float)) for V in Vs]
    if len(Vs) != ns:
        raise ValueError(f"Got {ns} unit means but {len(Vs)} unit covariances")

    a = np.broadcast_to(np.asarray(a, dtype=float), (n,)).copy()
    b = np.broadcast_to(np.asarray(b, dtype=float), (n,)).copy()
    a0 = np.broadcast_to(np.asarray(a0, dtype=float), (n,))
    b0 = np.broadcast_to(np.asarray(b0, dtype=float), (n,))

    active = np.asarray(active)
    if active.dtype == bool:
        active = np.flatnonzero(active)
    active = active.astype(int).reshape(-1)
    fixed = np.asarray(ffx, dtype=int).reshape(-1)

    rfx = np.setdiff1d(active, fixed)
    ffx = np.intersect1d(active, fixed)

    m = m0.copy()
    V = np.zeros((n, n))

    # random effects
    if rfx.size:
        rr = np.ix_(rfx, rfx)
        iQ = np.diag(a[rfx] / b[rfx])

        sm = ms[rfx, :].sum(axis=1)
        e = ms[rfx, :] - m0[rfx, None]
        sv = np.sum(e ** 2, axis=1) + sum(np.diag(Vi)[rfx] for Vi in Vs)

        V[rr] = inv(iV0[rr] + ns * iQ)
        m[rfx] = V[rr] @ (iV0[rr] @ m0[rfx] + iQ @ sm)
        a[rfx] = a0[rfx] + 0.5 * ns
        b[rfx] = b0[rfx] + 0.5 * (sv + ns * np.diag(V[rr]))

    # fixed effects
    if ffx.size:
        ff = np.ix_(ffx, ffx)
        sP = np.zeros((n, n))
        wsm = np.zeros(n)
        for i, Vi in enumerate(Vs):
            Pi = inv(Vi)
            wsm += Pi @ ms[:, i]
            sP += Pi
        V[ff] = inv(sP)[ff]
        m[ffx] = V[ff] @ wsm[ffx]

    return PopulationMoments(mu=m, sigma=V, a=a, b=b)


def update_block(prior: PopulationMoments, posterior: PopulationMoments, block, unit_moments):
    """Population update of one registered block.

    Parameters
    ----------
    prior : PopulationMoments
        Population prior of the block.
    posterior : PopulationMoments
        Current population posterior of the block (supplies ``a``, ``b``).
    block : ParameterBlock
        Block descriptor.
    unit_moments : sequence of GaussianMoments
        Unit posteriors of this block, in unit order.
    """
    ms = np.column_stack([g.mu for g in unit_moments])
    Vs = [g.sigma for g in unit_moments]
    return population_update(
        m0=prior.mu,
        iV0=inv(prior.sigma),
        ms=ms,
        Vs=Vs,
        a=posterior.a,
        b=posterior.b,
        a0=prior.a,
        b0=prior.b,
        ffx=np.flatnonzero(is_fixed_effect(prior.a, prior.b)),
        active=block.active,
    )
