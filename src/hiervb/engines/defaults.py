#########################################################################################
##
##                              DEFAULT PRIOR PROVIDER
##                               (engines/defaults.py)
##
##         Standard normal priors over block means and Gamma(1, 1) priors over
##         block precisions, used wherever the caller leaves a prior out.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Mapping

import numpy as np

from ..blocks.moments import GammaMoments, GaussianMoments, PopulationMoments
from ..blocks.parameter_block import BLOCK_ORDER, BlockTag
from .base import Priors


# CONSTANTS =============================================================================

DEFAULT_SHAPE = 1.0
DEFAULT_RATE = 1.0


# POPULATION LEVEL ======================================================================

def default_population_priors(dims) -> dict[BlockTag, PopulationMoments]:
    """Population priors ``N(0, I)`` and ``Gamma(1, 1)`` for every present block."""
    priors = {}
    for tag in BLOCK_ORDER:
        n = dims.block_size(tag)
        if n == 0:
            continue
        priors[tag] = PopulationMoments(
            mu=np.zeros(n),
            sigma=np.eye(n),
            a=np.full(n, DEFAULT_SHAPE),
            b=np.full(n, DEFAULT_RATE),
        )
    return priors


def fill_population_priors(priors, dims) -> dict[BlockTag, PopulationMoments]:
    """Complete user-supplied population priors with defaults.

    Parameters
    ----------
    priors : mapping or None
        Keys are :class:`BlockTag` members or their string values. Values are
        either :class:`PopulationMoments` or mappings holding any subset of
        ``"mu"``, ``"sigma"``, ``"a"``, ``"b"``; missing fields take their
        default value.
    dims : ModelDims
        Model dimensions.

    Returns
    -------
    dict[BlockTag, PopulationMoments]
        One entry per present block, independent of the input objects.

    Raises
    ------
    ValueError
        If a supplied entry does not match the declared block size, or names
        a block the model does not have.
    """
    defaults = default_population_priors(dims)
    if priors is None:
        return defaults

    filled = dict(defaults)
    for key, value in priors.items():
        tag = BlockTag(key)
        if tag not in defaults:
            raise ValueError(
                f"Population prior given for '{tag.value}' but the model declares "
                f"{tag.dim_field}=0"
            )
        base = defaults[tag]
        if isinstance(value, PopulationMoments):
            entry = value.copy()
        elif isinstance(value, Mapping):
            unknown = set(value) - {"mu", "sigma", "a", "b"}
            if unknown:
                raise ValueError(
                    f"Unknown population prior fields for '{tag.value}': {sorted(unknown)}"
                )
            n = np.size(value.get("mu", base.mu))
            if n != base.n:
                raise ValueError(
                    f"Population prior for '{tag.value}' has {n} entries but the "
                    f"model declares {tag.dim_field}={base.n}"
                )
            entry = PopulationMoments(
                mu=value.get("mu", base.mu),
                sigma=value.get("sigma", base.sigma),
                a=value.get("a", base.a),
                b=value.get("b", base.b),
            )
        else:
            raise TypeError(
                f"Population prior for '{tag.value}' must be PopulationMoments or a "
                f"mapping, got {type(value).__name__}"
            )
        if entry.n != base.n:
            raise ValueError(
                f"Population prior for '{tag.value}' has {entry.n} entries but the "
                f"model declares {tag.dim_field}={base.n}"
            )
        filled[tag] = entry
    return filled


# UNIT LEVEL ============================================================================

def fill_in_priors(priors: Priors | None, dims) -> tuple[Priors, dict[BlockTag, np.ndarray]]:
    """Complete unit-level priors and list the parameters to estimate.

    Missing Gaussian block priors become ``N(0, I)``; missing block precision
    hyperpriors become ``Gamma(1, 1)``. Entries for blocks of size zero are
    dropped. Engine-specific ``extra`` entries are kept as they are.

    Returns
    -------
    priors : Priors
        A completed copy of *priors*.
    active : dict[BlockTag, np.ndarray]
        Indices of the parameters with nonzero prior variance, per block.

    Raises
    ------
    ValueError
        If a supplied prior does not match the declared block size.
    """
    src = priors.copy() if priors is not None else Priors()

    gaussian = {}
    gamma = {}
    active = {}
    for tag in BLOCK_ORDER:
        n = dims.block_size(tag)
        if n == 0:
            continue

        g = src.gaussian.get(tag)
        if g is None:
            g = GaussianMoments(mu=np.zeros(n), sigma=np.eye(n))
        elif g.n != n:
            raise ValueError(
                f"Prior for '{tag.value}' has {g.n} entries but the model declares "
                f"{tag.dim_field}={n}"
            )
        gaussian[tag] = g
        gamma[tag] = src.gamma.get(tag) or GammaMoments(a=DEFAULT_SHAPE, b=DEFAULT_RATE)
        active[tag] = np.flatnonzero(g.active)

    return Priors(gaussian=gaussian, gamma=gamma, extra=src.extra), active
