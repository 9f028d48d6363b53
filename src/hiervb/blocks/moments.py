#########################################################################################
##
##                        SUFFICIENT STATISTICS CONTAINERS
##                               (blocks/moments.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import copy
from dataclasses import dataclass

import numpy as np

from ..utils.linalg import gamma_expected_log


# GAUSSIAN ==============================================================================

@dataclass
class GaussianMoments:
    """First two moments of a Gaussian density over one parameter block.

    Parameters
    ----------
    mu : array_like, shape (n,)
        Mean vector.
    sigma : array_like, shape (n, n)
        Covariance matrix. A zero diagonal entry marks a parameter that is
        held at its mean (no variance, excluded from estimation).
    """

    mu: np.ndarray
    sigma: np.ndarray


    def __post_init__(self) -> None:
        self.mu = np.asarray(self.mu, dtype=float).reshape(-1)
        self.sigma = np.atleast_2d(np.asarray(self.sigma, dtype=float))
        n = self.mu.size
        if self.sigma.shape != (n, n):
            raise ValueError(
                f"GaussianMoments: covariance shape {self.sigma.shape} does not "
                f"match mean of length {n}"
            )


    @property
    def n(self) -> int:
        """Block dimension."""
        return self.mu.size


    @property
    def active(self) -> np.ndarray:
        """Boolean mask of parameters with nonzero prior variance."""
        return np.diag(self.sigma) != 0.0


    def copy(self) -> "GaussianMoments":
        return GaussianMoments(mu=self.mu.copy(), sigma=self.sigma.copy())


# GAMMA =================================================================================

@dataclass
class GammaMoments:
    """Gamma density over a precision, in shape/rate parameterization.

    ``a`` and ``b`` are scalars for a block-wide precision, or vectors for
    per-parameter precisions. The pair ``(inf, 0)`` is a sentinel flagging a
    fixed effect and does not describe a proper density.
    """

    a: np.ndarray | float
    b: np.ndarray | float


    def __post_init__(self) -> None:
        a = np.asarray(self.a, dtype=float)
        b = np.asarray(self.b, dtype=float)
        if a.shape != b.shape:
            raise ValueError(
                f"GammaMoments: shape {a.shape} and rate {b.shape} differ in size"
            )
        self.a = float(a) if a.ndim == 0 else a
        self.b = float(b) if b.ndim == 0 else b


    @property
    def mean(self):
        """Expected precision ``a/b``."""
        return np.divide(self.a, self.b)


    @property
    def variance(self):
        """Precision variance ``a/b**2``."""
        return np.divide(self.mean, self.b)


    @property
    def expected_log(self):
        """Expected log precision ``digamma(a) - log(b)``."""
        return gamma_expected_log(self.a, self.b)


    def copy(self) -> "GammaMoments":
        return copy.deepcopy(self)


# POPULATION ============================================================================

@dataclass
class PopulationMoments:
    """Sufficient statistics of the population-level posterior of one block.

    Holds a Gaussian ``(mu, sigma)`` over the population mean and elementwise
    Gamma ``(a, b)`` over the population precision; ``a`` and ``b`` have the
    same length as ``mu``.

    Parameters
    ----------
    mu : array_like, shape (n,)
    sigma : array_like, shape (n, n)
    a : array_like, shape (n,)
        Gamma shapes. ``inf`` together with ``b == 0`` flags a fixed effect.
    b : array_like, shape (n,)
        Gamma rates.
    """

    mu: np.ndarray
    sigma: np.ndarray
    a: np.ndarray
    b: np.ndarray


    def __post_init__(self) -> None:
        self.mu = np.asarray(self.mu, dtype=float).reshape(-1)
        n = self.mu.size
        self.sigma = np.atleast_2d(np.asarray(self.sigma, dtype=float))
        self.a = np.broadcast_to(np.asarray(self.a, dtype=float), (n,)).copy()
        self.b = np.broadcast_to(np.asarray(self.b, dtype=float), (n,)).copy()
        if self.sigma.shape != (n, n):
            raise ValueError(
                f"PopulationMoments: covariance shape {self.sigma.shape} does not "
                f"match mean of length {n}"
            )


    @property
    def n(self) -> int:
        return self.mu.size


    @property
    def gaussian(self) -> GaussianMoments:
        return GaussianMoments(mu=self.mu, sigma=self.sigma)


    @property
    def gamma(self) -> GammaMoments:
        return GammaMoments(a=self.a, b=self.b)


    def copy(self) -> "PopulationMoments":
        return PopulationMoments(
            mu=self.mu.copy(),
            sigma=self.sigma.copy(),
            a=self.a.copy(),
            b=self.b.copy(),
        )
