#########################################################################################
##
##                          OPTIONS OF THE OUTER ESTIMATORS
##                                  (opt/config.py)
##
##         Options are validated once at construction. ``from_dict`` accepts
##         both the snake_case field names and the legacy camel-case keys
##         (``TolFun``, ``MaxIter``, ``DisplayWin``, ``verbose``).
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any

from ..utils.logger import LoggerManager

logger = LoggerManager().get_logger(__name__)


# CONSTANTS =============================================================================

LEGACY_KEYS = {
    "TolFun": "tol_fun",
    "MaxIter": "max_iter",
    "DisplayWin": "display",
    "verbose": "verbose",
}


# HELPERS ===============================================================================

def _normalize_keys(cls, config_dict: dict[str, Any]) -> dict[str, Any]:
    known = {f.name for f in fields(cls)}
    kwargs = {}
    for key, value in config_dict.items():
        name = LEGACY_KEYS.get(key, key)
        if name not in known:
            raise ValueError(
                f"Unknown option '{key}' for {cls.__name__}; "
                f"expected one of {sorted(known | set(LEGACY_KEYS))}"
            )
        if name in kwargs:
            raise ValueError(f"Option '{name}' given twice (as '{key}' and its alias)")
        if key != name:
            logger.debug(f"{cls.__name__}: mapping legacy option '{key}' to '{name}'")
        kwargs[name] = value
    return kwargs


def _check_tol(tol_fun) -> None:
    if tol_fun is not None and tol_fun < 0:
        raise ValueError(f"tol_fun must be >= 0, got {tol_fun}")


def _check_iter(name: str, value) -> None:
    if value is not None and (int(value) != value or value < 0):
        raise ValueError(f"{name} must be a non-negative integer, got {value}")


# GROUP ESTIMATOR =======================================================================

@dataclass
class MixedEffectsOptions:
    """Options of :class:`MixedEffectsEstimator`.

    Parameters
    ----------
    tol_fun : float
        Tolerance on the free-energy increment of the outer loop.
    max_iter : int
        Cap on outer iterations.
    display : bool
        Report every outer iteration through a logging observer when no
        observer is given explicitly.
    verbose : bool
        Log start and termination messages at INFO level.
    inner_max_iter : int
        Inner iteration cap handed to the engine after the baseline pass.
    """

    tol_fun: float = 2e-2
    max_iter: int = 16
    display: bool = False
    verbose: bool = True
    inner_max_iter: int = 32


    def __post_init__(self) -> None:
        _check_tol(self.tol_fun)
        _check_iter("max_iter", self.max_iter)
        _check_iter("inner_max_iter", self.inner_max_iter)
        self.display = bool(self.display)
        self.verbose = bool(self.verbose)


    @classmethod
    def from_dict(cls, config_dict: dict[str, Any] | None) -> "MixedEffectsOptions":
        """Create options from a dictionary; unknown keys raise ``ValueError``."""
        return cls(**_normalize_keys(cls, dict(config_dict or {})))


    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# HYPERPARAMETER ESTIMATOR ==============================================================

@dataclass
class HyperparameterOptions:
    """Options of :class:`HyperparameterEstimator`.

    ``tol_fun`` and ``max_iter`` default to ``None``, meaning the values
    carried by the engine options are used for the outer loop too.
    """

    tol_fun: float | None = None
    max_iter: int | None = None
    display: bool = False
    verbose: bool = True


    def __post_init__(self) -> None:
        _check_tol(self.tol_fun)
        _check_iter("max_iter", self.max_iter)
        self.display = bool(self.display)
        self.verbose = bool(self.verbose)


    @classmethod
    def from_dict(cls, config_dict: dict[str, Any] | None) -> "HyperparameterOptions":
        """Create options from a dictionary; unknown keys raise ``ValueError``."""
        return cls(**_normalize_keys(cls, dict(config_dict or {})))


    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
