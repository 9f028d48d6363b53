#########################################################################################
##
##                          FIXED / RANDOM EFFECT CLASSIFIER
##                               (blocks/effects.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np


# CLASSIFIER ============================================================================

def is_fixed_effect(a, b):
    """Flag parameters treated as fixed effects.

    A parameter is a fixed effect iff its population precision hyperparameters
    are the sentinel pair ``a == +inf`` and ``b == 0``. The comparison is exact:
    a huge but finite shape, or a tiny but nonzero rate, is a random effect.

    Parameters
    ----------
    a : float or array_like
        Gamma shape(s) of the population precision.
    b : float or array_like
        Gamma rate(s) of the population precision.

    Returns
    -------
    bool or np.ndarray of bool
        Scalar inputs give a Python ``bool``, array inputs an elementwise mask.

    Example
    -------
    .. code-block:: python

        is_fixed_effect(np.inf, 0.0)     # True
        is_fixed_effect(np.inf, 1e-6)    # False
        is_fixed_effect([np.inf, 1.0], [0.0, 1.0])   # array([ True, False])
    """
    a_arr = np.asarray(a, dtype=float)
    b_arr = np.asarray(b, dtype=float)
    mask = np.isposinf(a_arr) & (b_arr == 0.0)
    if mask.ndim == 0:
        return bool(mask)
    return mask


def partition_effects(a, b, active) -> tuple[np.ndarray, np.ndarray]:
    """Split the active parameters of a block into fixed and random effects.

    Parameters
    ----------
    a, b : array_like, shape (n,)
        Population precision hyperparameters.
    active : array_like of bool, shape (n,)
        Mask of parameters that are estimated at all (nonzero prior variance).

    Returns
    -------
    ffx : np.ndarray of int
        Indices that are active and fixed.
    rfx : np.ndarray of int
        Indices that are active and random.
    """
    active = np.asarray(active, dtype=bool).reshape(-1)
    fixed = np.broadcast_to(is_fixed_effect(np.atleast_1d(a), np.atleast_1d(b)), active.shape)

    ffx = np.flatnonzero(active & fixed)
    rfx = np.flatnonzero(active & ~fixed)
    return ffx, rfx
