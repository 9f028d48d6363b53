#########################################################################################
##
##                       UNIT INVERSION ENGINE PROTOCOL AND RECORDS
##                                 (engines/base.py)
##
##         The hierarchical layers never look inside a unit-level inversion.
##         They hand an engine the data, the model, the dimensions and a set
##         of options carrying the priors, and read back a posterior and a
##         diagnostics record. Everything exchanged across that seam is
##         defined here.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Protocol, Sequence, runtime_checkable

import numpy as np

from ..blocks.moments import GaussianMoments
from ..blocks.parameter_block import BlockTag


# DIMENSIONS ============================================================================

@dataclass(frozen=True)
class ModelDims:
    """Dimensions of a state-space model.

    Parameters
    ----------
    n : int, optional
        Number of hidden states (size of the initial-condition block).
    n_theta : int, optional
        Number of evolution parameters.
    n_phi : int, optional
        Number of observation parameters.
    n_t : int or sequence of int, optional
        Number of time samples. The group estimator accepts one value per unit.
    p : int, optional
        Number of observation channels.

    Notes
    -----
    Fields left at ``None`` are "not declared". The group estimator treats an
    undeclared block size as zero; the hyperparameter estimator requires all
    three block sizes (see :meth:`require_blocks`).
    """

    n: int | None = None
    n_theta: int | None = None
    n_phi: int | None = None
    n_t: int | Sequence[int] | None = None
    p: int | None = None


    def __post_init__(self) -> None:
        for name in ("n", "n_theta", "n_phi", "p"):
            value = getattr(self, name)
            if value is not None and (int(value) != value or value < 0):
                raise ValueError(f"ModelDims.{name} must be a non-negative integer, got {value!r}")
        if self.n_t is not None and not np.isscalar(self.n_t):
            object.__setattr__(self, "n_t", tuple(int(v) for v in self.n_t))


    def block_size(self, tag) -> int:
        """Dimension of the block identified by *tag* (0 when undeclared)."""
        value = getattr(self, BlockTag(tag).dim_field)
        return int(value or 0)


    def require_blocks(self) -> None:
        """Raise if any of the three block sizes is undeclared."""
        missing = [name for name in ("n", "n_theta", "n_phi") if getattr(self, name) is None]
        if missing:
            raise ValueError(
                f"Model dimensions must declare {', '.join(missing)} "
                "(number of states, evolution and observation parameters)"
            )


    def for_unit(self, i: int) -> "ModelDims":
        """Dimensions of unit *i* when ``n_t`` is given per unit."""
        if self.n_t is None or np.isscalar(self.n_t):
            return self
        if not 0 <= i < len(self.n_t):
            raise IndexError(f"Unit index {i} out of range for {len(self.n_t)} time counts")
        return replace(self, n_t=self.n_t[i])


    def with_data_shape(self, data) -> "ModelDims":
        """Fill whichever of ``p`` and ``n_t`` is undeclared from a ``(p, n_t)`` data array."""
        if self.n_t is not None and self.p is not None:
            return self
        p, n_t = np.atleast_2d(np.asarray(data)).shape
        return replace(
            self,
            p=int(p) if self.p is None else self.p,
            n_t=int(n_t) if self.n_t is None else self.n_t,
        )


# PRIORS AND OPTIONS ====================================================================

@dataclass
class Priors:
    """Unit-level priors handed to an inversion engine.

    Parameters
    ----------
    gaussian : dict[BlockTag, GaussianMoments]
        Gaussian prior per parameter block.
    gamma : dict[BlockTag, GammaMoments]
        Gamma hyperprior over the precision of each block (hyperparameter
        estimation only).
    extra : dict
        Engine-specific entries (noise priors and the like), passed through
        unchanged by the hierarchical layers.
    """

    gaussian: dict = field(default_factory=dict)
    gamma: dict = field(default_factory=dict)
    extra: dict = field(default_factory=dict)


    def __post_init__(self) -> None:
        self.gaussian = {BlockTag(k): v for k, v in self.gaussian.items()}
        self.gamma = {BlockTag(k): v for k, v in self.gamma.items()}


    def copy(self) -> "Priors":
        return copy.deepcopy(self)


@dataclass
class InversionOptions:
    """Options of a single unit-level inversion.

    Parameters
    ----------
    priors : Priors, optional
        Priors to invert under; engines fill in what is missing.
    max_iter : int
        Inner iteration cap. ``0`` asks for the prior-only estimate.
    tol_fun : float
        Inner convergence tolerance on the free energy. The hyperparameter
        estimator reuses it for its own outer loop unless overridden.
    display, verbose : bool
        Display toggles; ignored by the hierarchical layers.
    extra : dict
        Engine-specific options, passed through.
    """

    priors: Priors | None = None
    max_iter: int = 32
    tol_fun: float = 2e-2
    display: bool = False
    verbose: bool = True
    extra: dict = field(default_factory=dict)


    def copy(self, **changes) -> "InversionOptions":
        """Deep copy with selected fields replaced."""
        return replace(copy.deepcopy(self), **changes)


# ENGINE OUTPUTS ========================================================================

@dataclass
class Posterior:
    """Unit-level posterior returned by an engine.

    ``moments`` holds the Gaussian posterior of every present block; ``hyper``
    holds Gamma posteriors over block precisions when those are estimated.
    """

    moments: dict = field(default_factory=dict)
    hyper: dict = field(default_factory=dict)


    def __getitem__(self, tag) -> GaussianMoments:
        return self.moments[BlockTag(tag)]


    def copy(self) -> "Posterior":
        return copy.deepcopy(self)


@dataclass
class Diagnostics:
    """Diagnostics of a unit-level inversion.

    Parameters
    ----------
    free_energy : float
        The unit's free energy (evidence lower bound).
    deviations : dict[BlockTag, np.ndarray]
        Prior mean minus posterior mean, per block.
    fit : dict
        Goodness-of-fit metrics (``"R2"`` at least).
    options : InversionOptions
        The options the engine actually ran with, priors filled in.
    warm_started : bool
        Whether the run was seeded from a previous one.
    """

    free_energy: float
    deviations: dict = field(default_factory=dict)
    fit: dict = field(default_factory=dict)
    options: InversionOptions | None = None
    warm_started: bool = False


@dataclass
class WarmStart:
    """Previous posterior and diagnostics used to seed a re-inversion."""

    posterior: Posterior
    diagnostics: Diagnostics


# ENGINE PROTOCOL =======================================================================

@runtime_checkable
class InversionEngine(Protocol):
    """Unit-level variational inversion.

    Implementations must be safe to call concurrently for different units
    when the group estimator fans out over threads.
    """

    def invert(
        self,
        data: np.ndarray,
        inputs: Any,
        model: Any,
        dims: ModelDims,
        options: InversionOptions,
        warm_start: WarmStart | None = None,
    ) -> tuple[Posterior, Diagnostics]:
        ...
