#########################################################################################
##
##                       LINEAR-GAUSSIAN REFERENCE INVERSION ENGINE
##                            (engines/linear_gaussian.py)
##
##         Exact conjugate inversion of a linear observation model
##
##             vec(y) = sum_b  G_b @ theta_b + eps,      eps ~ N(0, noise_var * I)
##
##         with Gaussian priors over every parameter block. The posterior is
##         available in closed form, so the free energy reported at the
##         posterior is the log model evidence. Serves as the unit-level
##         engine in tests and examples.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Mapping

import numpy as np
from scipy.linalg import block_diag

from ..blocks.moments import GaussianMoments
from ..blocks.parameter_block import BLOCK_ORDER, BlockTag
from ..utils.linalg import LOG_2PI, inv, logdet
from .base import Diagnostics, InversionOptions, ModelDims, Posterior, WarmStart
from .defaults import fill_in_priors


# MODEL =================================================================================

class LinearGaussianModel:
    """Linear observation model with additive white Gaussian noise.

    Parameters
    ----------
    design : mapping
        Design matrix ``G_b`` of shape ``(N, n_b)`` per block, keyed by
        :class:`BlockTag` or its string value. ``N`` is the number of
        observations (all data entries, flattened row-major). A 1D array is
        taken as a single-column design.
    noise_var : float
        Measurement noise variance.

    Example
    -------
    .. code-block:: python

        t = np.linspace(0, 1, 50)
        model = LinearGaussianModel({"phi": np.column_stack([np.ones_like(t), t])}, noise_var=0.1)
    """

    def __init__(self, design: Mapping, noise_var: float = 1.0):
        if noise_var <= 0:
            raise ValueError(f"noise_var must be positive, got {noise_var}")

        self.design = {}
        for key, G in design.items():
            G = np.asarray(G, dtype=float)
            if G.ndim == 1:
                G = G[:, None]
            if G.ndim != 2:
                raise ValueError(
                    f"Design for '{BlockTag(key).value}' must be 1D or 2D, got {G.ndim}D"
                )
            self.design[BlockTag(key)] = G

        rows = {G.shape[0] for G in self.design.values()}
        if len(rows) > 1:
            raise ValueError(f"Design matrices disagree on the number of observations: {sorted(rows)}")

        self.noise_var = float(noise_var)


    @property
    def n_obs(self) -> int:
        return next(iter(self.design.values())).shape[0] if self.design else 0


    def design_matrix(self, dims) -> np.ndarray:
        """Stacked design ``[G_phi, G_theta, G_x0]`` over the blocks present in *dims*."""
        columns = []
        for tag in BLOCK_ORDER:
            n = dims.block_size(tag)
            if n == 0:
                continue
            if tag not in self.design:
                raise ValueError(f"No design matrix given for block '{tag.value}'")
            G = self.design[tag]
            if G.shape[1] != n:
                raise ValueError(
                    f"Design for '{tag.value}' has {G.shape[1]} columns but the model "
                    f"declares {tag.dim_field}={n}"
                )
            columns.append(G)
        if not columns:
            return np.zeros((self.n_obs, 0))
        return np.hstack(columns)


    def predict(self, params: Mapping) -> np.ndarray:
        """Noise-free prediction for block parameter vectors *params*."""
        y = np.zeros(self.n_obs)
        for key, theta in params.items():
            y += self.design[BlockTag(key)] @ np.asarray(theta, dtype=float)
        return y


# ENGINE ================================================================================

class LinearGaussianEngine:
    """Closed-form unit inversion for :class:`LinearGaussianModel`.

    With ``options.max_iter == 0`` the posterior is the prior itself and the
    reported free energy is the expected log-likelihood under the prior.
    Otherwise the exact posterior is returned. Parameters with zero prior
    variance are held at their prior mean.

    The engine is stateless and may be called from several threads at once.
    """

    def invert(
        self,
        data,
        inputs,
        model: LinearGaussianModel,
        dims: ModelDims,
        options: InversionOptions,
        warm_start: WarmStart | None = None,
    ) -> tuple[Posterior, Diagnostics]:
        """Invert one unit.

        Parameters
        ----------
        data : array_like
            Observations; flattened row-major to match the design rows.
        inputs : any
            Unused by a linear observation model.
        model : LinearGaussianModel
        dims : ModelDims
        options : InversionOptions
            ``options.priors`` is completed with defaults where missing.
        warm_start : WarmStart, optional
            Accepted for protocol compatibility; the closed-form solution
            does not depend on it.

        Returns
        -------
        posterior : Posterior
        diagnostics : Diagnostics
        """
        y = np.asarray(data, dtype=float).ravel()
        G = model.design_matrix(dims)
        if G.shape[0] != y.size:
            raise ValueError(
                f"Data has {y.size} entries but the design has {G.shape[0]} rows"
            )

        priors, _ = fill_in_priors(options.priors, dims)
        tags = [tag for tag in BLOCK_ORDER if dims.block_size(tag) > 0]
        sizes = [dims.block_size(tag) for tag in tags]

        if tags:
            m0 = np.concatenate([priors.gaussian[tag].mu for tag in tags])
            S0 = block_diag(*[priors.gaussian[tag].sigma for tag in tags])
        else:
            m0 = np.zeros(0)
            S0 = np.zeros((0, 0))

        idx = np.flatnonzero(np.diag(S0) != 0.0)
        held = np.setdiff1d(np.arange(m0.size), idx)
        ix = np.ix_(idx, idx)

        # parameters without prior variance enter as known offsets
        y_eff = y - G[:, held] @ m0[held]
        Ga = G[:, idx]
        s2 = model.noise_var

        m0_a = m0[idx]
        S0_a = S0[ix]
        iS0_a = inv(S0_a) if idx.size else S0_a

        if options.max_iter > 0 and idx.size:
            S_a = inv(iS0_a + Ga.T @ Ga / s2)
            mu_a = S_a @ (iS0_a @ m0_a + Ga.T @ y_eff / s2)
        else:
            S_a = S0_a.copy()
            mu_a = m0_a.copy()

        mu = m0.copy()
        mu[idx] = mu_a
        sigma = np.zeros_like(S0)
        sigma[ix] = S_a

        # free energy: expected log-likelihood minus KL(q || prior)
        resid = y_eff - Ga @ mu_a
        n_obs = y.size
        expected_llh = (
            -0.5 * n_obs * (LOG_2PI + np.log(s2))
            - 0.5 * (resid @ resid + np.trace(Ga @ S_a @ Ga.T)) / s2
        )
        kl = 0.0
        if idx.size:
            d = mu_a - m0_a
            kl = 0.5 * (
                np.trace(iS0_a @ S_a)
                + d @ iS0_a @ d
                - idx.size
                + logdet(S0_a)
                - logdet(S_a)
            )
        free_energy = float(expected_llh - kl)

        # per-block split
        moments = {}
        deviations = {}
        start = 0
        for tag, n in zip(tags, sizes):
            sl = slice(start, start + n)
            moments[tag] = GaussianMoments(mu=mu[sl].copy(), sigma=sigma[sl, sl].copy())
            deviations[tag] = m0[sl] - mu[sl]
            start += n

        y_hat = G @ mu
        ss_res = float(np.sum((y - y_hat) ** 2))
        ss_tot = float(np.sum((y - y.mean()) ** 2)) if y.size else 0.0
        r2 = 1.0 - ss_res / ss_tot if ss_tot > 0.0 else float("nan")

        posterior = Posterior(moments=moments)
        diagnostics = Diagnostics(
            free_energy=free_energy,
            deviations=deviations,
            fit={"R2": r2},
            options=options.copy(priors=priors),
            warm_started=warm_start is not None,
        )
        return posterior, diagnostics
