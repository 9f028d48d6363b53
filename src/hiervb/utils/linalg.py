#########################################################################################
##
##                     LINEAR ALGEBRA AND DISTRIBUTION PRIMITIVES
##                                 (utils/linalg.py)
##
##         Robust inverse / log-determinant restricted to the non-degenerate
##         subspace of a covariance matrix, plus Gaussian and Gamma entropies
##         and the Gamma Kullback-Leibler divergence used by the free energy.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import warnings

import numpy as np
from scipy.special import digamma, gammaln


# CONSTANTS =============================================================================

_EPS = np.finfo(float).eps

LOG_2PI = float(np.log(2.0 * np.pi))


# HELPERS ===============================================================================

def _as_square(A) -> np.ndarray:
    A = np.atleast_2d(np.asarray(A, dtype=float))
    if A.ndim != 2 or A.shape[0] != A.shape[1]:
        raise ValueError(f"Expected a square matrix, got shape {A.shape}")
    return A


def support(A) -> np.ndarray:
    """Indices of the non-degenerate diagonal entries of *A*.

    A zero (or non-finite) diagonal entry marks a dimension with no prior
    variance; such dimensions are excluded from inversion and determinants.
    """
    d = np.diag(_as_square(A))
    return np.flatnonzero(np.isfinite(d) & (d != 0.0))


# MATRIX PRIMITIVES =====================================================================

def inv(A) -> np.ndarray:
    """Inverse of *A* on its non-degenerate subspace.

    Rows/columns with a zero diagonal entry are left at zero in the result.
    The remaining sub-block is inverted directly; when it is singular or
    numerically ill-conditioned the Moore-Penrose pseudo-inverse is used
    instead and a ``RuntimeWarning`` is emitted.

    Parameters
    ----------
    A : array_like, shape (n, n)
        Symmetric (covariance or precision) matrix.

    Returns
    -------
    np.ndarray, shape (n, n)
    """
    A = _as_square(A)
    out = np.zeros_like(A)

    idx = support(A)
    if idx.size == 0:
        return out

    sub = A[np.ix_(idx, idx)]
    try:
        if np.linalg.cond(sub) > 1.0 / _EPS:
            raise np.linalg.LinAlgError("ill-conditioned matrix")
        isub = np.linalg.inv(sub)
    except np.linalg.LinAlgError:
        warnings.warn(
            f"inv: matrix of size {idx.size} is singular or ill-conditioned; "
            "falling back to the pseudo-inverse",
            RuntimeWarning,
            stacklevel=2,
        )
        isub = np.linalg.pinv(sub)

    out[np.ix_(idx, idx)] = isub
    return out


def logdet(A) -> float:
    """Log-determinant of *A* on its non-degenerate subspace.

    Eigenvalues with magnitude below machine precision are discarded, so a
    rank-deficient block contributes only through its non-null directions.
    An empty support yields ``0.0``.
    """
    A = _as_square(A)
    idx = support(A)
    if idx.size == 0:
        return 0.0

    sub = A[np.ix_(idx, idx)]
    ev = np.linalg.eigvalsh(0.5 * (sub + sub.T))
    ev = ev[np.abs(ev) > _EPS]
    return float(np.sum(np.log(np.abs(ev))))


# ENTROPIES =============================================================================

def gaussian_entropy(sigma) -> float:
    """Differential entropy of a multivariate Gaussian with covariance *sigma*."""
    sigma = _as_square(sigma)
    n = sigma.shape[0]
    return 0.5 * n * (1.0 + LOG_2PI) + 0.5 * logdet(sigma)


def gamma_entropy(a, b):
    """Differential entropy of Gamma(shape=a, rate=b), elementwise."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    return a - np.log(b) + gammaln(a) + (1.0 - a) * digamma(a)


def gamma_expected_log(a, b):
    """E[log x] under Gamma(shape=a, rate=b)."""
    return digamma(a) - np.log(b)


# DIVERGENCES ===========================================================================

def kl_gamma(m1, v1, m2, v2):
    """KL divergence KL(p1 || p2) between two Gamma densities.

    Both densities are given by their first two moments ``(mean, variance)``;
    shape and scale are recovered as ``scale = v/m`` and ``shape = m/scale``.

    Parameters
    ----------
    m1, v1 : float or array_like
        Mean and variance of the first (approximate posterior) density.
    m2, v2 : float or array_like
        Mean and variance of the second (prior) density.
    """
    m1, v1, m2, v2 = (np.asarray(x, dtype=float) for x in (m1, v1, m2, v2))

    s1 = v1 / m1
    s2 = v2 / m2
    k1 = m1 / s1
    k2 = m2 / s2

    return (
        (k1 - k2) * digamma(k1)
        - gammaln(k1)
        + gammaln(k2)
        + k2 * (np.log(s2) - np.log(s1))
        + k1 * (s1 - s2) / s2
    )
