#########################################################################################
##
##                        PARAMETER BLOCK DESCRIPTORS & REGISTRY
##                            (blocks/parameter_block.py)
##
##         A state-space model carries up to three parameter blocks: observation
##         parameters, evolution parameters and initial conditions. Each block
##         is described once by its dimension, its active mask and its
##         fixed / random partition; the inference loops iterate over the
##         registry instead of branching per block.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Mapping

import numpy as np

from .effects import partition_effects
from .moments import GaussianMoments, PopulationMoments


# BLOCK TAGS ============================================================================

class BlockTag(str, Enum):
    """Identifier of a parameter block."""

    PHI = "phi"
    THETA = "theta"
    X0 = "x0"


    @property
    def dim_field(self) -> str:
        """Name of the :class:`ModelDims` field holding the block size."""
        return _DIM_FIELDS[self]


    @property
    def label(self) -> str:
        """Human-readable block name."""
        return _LABELS[self]


_DIM_FIELDS = {
    BlockTag.PHI: "n_phi",
    BlockTag.THETA: "n_theta",
    BlockTag.X0: "n",
}

_LABELS = {
    BlockTag.PHI: "observation parameters",
    BlockTag.THETA: "evolution parameters",
    BlockTag.X0: "initial conditions",
}

# Canonical iteration order
BLOCK_ORDER = (BlockTag.PHI, BlockTag.THETA, BlockTag.X0)


# BLOCK DESCRIPTOR ======================================================================

@dataclass(frozen=True)
class ParameterBlock:
    """Static description of one parameter block.

    Parameters
    ----------
    tag : BlockTag
        Which block this is.
    n : int
        Block dimension.
    active : np.ndarray of bool, shape (n,)
        True where the prior variance is nonzero.
    ffx : np.ndarray of int
        Active indices treated as fixed effects.
    rfx : np.ndarray of int
        Active indices treated as random effects.

    Notes
    -----
    ``ffx`` and ``rfx`` are disjoint and their union is the active set; this
    is checked on construction.
    """

    tag: BlockTag
    n: int
    active: np.ndarray
    ffx: np.ndarray
    rfx: np.ndarray


    def __post_init__(self) -> None:
        active = np.asarray(self.active, dtype=bool).reshape(-1)
        ffx = np.asarray(self.ffx, dtype=int).reshape(-1)
        rfx = np.asarray(self.rfx, dtype=int).reshape(-1)

        if active.size != self.n:
            raise ValueError(
                f"ParameterBlock '{self.tag.value}': active mask of length "
                f"{active.size} does not match dimension {self.n}"
            )
        if np.intersect1d(ffx, rfx).size:
            raise ValueError(
                f"ParameterBlock '{self.tag.value}': fixed and random indices overlap"
            )
        if not np.array_equal(np.union1d(ffx, rfx), np.flatnonzero(active)):
            raise ValueError(
                f"ParameterBlock '{self.tag.value}': fixed and random indices must "
                "partition the active set"
            )

        object.__setattr__(self, "active", active)
        object.__setattr__(self, "ffx", ffx)
        object.__setattr__(self, "rfx", rfx)


    @property
    def active_indices(self) -> np.ndarray:
        return np.flatnonzero(self.active)


    @property
    def n_active(self) -> int:
        return int(self.active.sum())


    @property
    def n_ffx(self) -> int:
        return self.ffx.size


    @property
    def n_rfx(self) -> int:
        return self.rfx.size


# REGISTRY ==============================================================================

class BlockRegistry:
    """Ordered collection of the parameter blocks present in a model.

    Only blocks with nonzero dimension are registered, so absence of a block
    is structural: loops over the registry never see an empty block.

    Parameters
    ----------
    blocks : iterable of ParameterBlock
        Block descriptors; registered in canonical order (phi, theta, x0).

    Example
    -------
    .. code-block:: python

        registry = BlockRegistry.from_population(priors, dims)
        for block in registry:
            print(block.tag, block.rfx, block.ffx)
    """

    def __init__(self, blocks):
        by_tag = {}
        for block in blocks:
            if block.tag in by_tag:
                raise ValueError(f"Duplicate parameter block '{block.tag.value}'")
            if block.n > 0:
                by_tag[block.tag] = block

        self._blocks = [by_tag[tag] for tag in BLOCK_ORDER if tag in by_tag]


    @classmethod
    def from_population(
        cls,
        priors: Mapping[BlockTag, PopulationMoments],
        dims,
    ) -> "BlockRegistry":
        """Build the registry of a group (mixed-effects) model.

        Active indices have a nonzero population prior variance; among them,
        parameters whose precision prior is the ``(inf, 0)`` sentinel are fixed
        effects and all others are random effects.
        """
        blocks = []
        for tag in BLOCK_ORDER:
            n = dims.block_size(tag)
            if n == 0:
                continue
            prior = priors[tag]
            _check_size(tag, n, prior.n)
            active = np.diag(prior.sigma) != 0.0
            ffx, rfx = partition_effects(prior.a, prior.b, active)
            blocks.append(ParameterBlock(tag=tag, n=n, active=active, ffx=ffx, rfx=rfx))
        return cls(blocks)


    @classmethod
    def from_priors(
        cls,
        priors: Mapping[BlockTag, GaussianMoments],
        dims,
    ) -> "BlockRegistry":
        """Build the registry of a single-unit model.

        There is no population layer, so every active parameter is treated as
        a random effect of its block-wide precision.
        """
        blocks = []
        for tag in BLOCK_ORDER:
            n = dims.block_size(tag)
            if n == 0:
                continue
            prior = priors[tag]
            _check_size(tag, n, prior.n)
            active = prior.active
            blocks.append(
                ParameterBlock(
                    tag=tag,
                    n=n,
                    active=active,
                    ffx=np.array([], dtype=int),
                    rfx=np.flatnonzero(active),
                )
            )
        return cls(blocks)


    def __iter__(self) -> Iterator[ParameterBlock]:
        return iter(self._blocks)


    def __len__(self) -> int:
        return len(self._blocks)


    def __contains__(self, tag) -> bool:
        return any(b.tag == tag for b in self._blocks)


    def __getitem__(self, tag) -> ParameterBlock:
        for b in self._blocks:
            if b.tag == tag:
                return b
        raise KeyError(f"No parameter block '{BlockTag(tag).value}' registered")


    @property
    def tags(self) -> list[BlockTag]:
        return [b.tag for b in self._blocks]


    def __repr__(self) -> str:
        parts = ", ".join(
            f"{b.tag.value}(n={b.n}, rfx={b.n_rfx}, ffx={b.n_ffx})" for b in self._blocks
        )
        return f"BlockRegistry({parts})"


# HELPERS ===============================================================================

def _check_size(tag: BlockTag, n: int, n_prior: int) -> None:
    if n != n_prior:
        raise ValueError(
            f"Prior for '{tag.value}' has {n_prior} entries but the model declares "
            f"{tag.dim_field}={n}"
        )
