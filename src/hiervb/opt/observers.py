#########################################################################################
##
##                          OUTER-ITERATION PROGRESS OBSERVERS
##                                (opt/observers.py)
##
##         The estimators report progress to an injected observer after every
##         outer iteration instead of driving a display themselves.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Protocol, runtime_checkable

from ..utils.logger import LoggerManager
from .convergence import ConvergenceStatus


# STATE SNAPSHOT ========================================================================

@dataclass(frozen=True)
class IterationState:
    """What an observer gets to see after an outer iteration.

    Parameters
    ----------
    status : ConvergenceStatus
        Loop state after the stopping rule was applied.
    delta : float
        Free-energy increment of this iteration (``nan`` for the baseline).
    posterior : dict
        Current population (or hyperparameter) posterior per block.
    """

    status: ConvergenceStatus
    delta: float
    posterior: dict = field(default_factory=dict)


# OBSERVERS =============================================================================

@runtime_checkable
class IterationObserver(Protocol):

    def on_iteration(self, index: int, free_energy: float, state: IterationState) -> None:
        ...


class NullObserver:
    """Observer that ignores every notification."""

    def on_iteration(self, index: int, free_energy: float, state: IterationState) -> None:
        pass


class LoggingObserver:
    """Log every outer iteration at INFO level.

    Parameters
    ----------
    name : str
        Label prefixed to every message.
    """

    def __init__(self, name: str = "VB"):
        self.name = name
        self.logger = LoggerManager().get_logger(__name__)


    def on_iteration(self, index: int, free_energy: float, state: IterationState) -> None:
        if index == 0:
            self.logger.info(f"{self.name} initialization: F = {free_energy:.6g}")
        else:
            self.logger.info(
                f"{self.name} iteration #{index}: F = {free_energy:.6g} "
                f"(dF = {state.delta:.3g}, {state.status.value})"
            )


class CallbackObserver:
    """Forward notifications to a plain callable ``fn(index, free_energy, state)``."""

    def __init__(self, fn: Callable[[int, float, IterationState], None]):
        if not callable(fn):
            raise TypeError(f"callback must be callable, got {type(fn).__name__}")
        self.fn = fn


    def on_iteration(self, index: int, free_energy: float, state: IterationState) -> None:
        self.fn(index, free_energy, state)


def resolve_observer(observer, display: bool):
    """Observer to use given the caller's choice and the display flag."""
    if observer is None:
        return LoggingObserver() if display else NullObserver()
    if callable(observer) and not isinstance(observer, IterationObserver):
        return CallbackObserver(observer)
    if not isinstance(observer, IterationObserver):
        raise TypeError(
            f"observer must implement on_iteration(index, free_energy, state), "
            f"got {type(observer).__name__}"
        )
    return observer
