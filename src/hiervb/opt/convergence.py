#########################################################################################
##
##                      OUTER-LOOP CONVERGENCE MONITOR
##                              (opt/convergence.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from enum import Enum


# STATES ================================================================================

class ConvergenceStatus(str, Enum):
    """State of an outer variational loop."""

    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max_iter_reached"


    @property
    def terminal(self) -> bool:
        return self in (ConvergenceStatus.CONVERGED, ConvergenceStatus.MAX_ITER_REACHED)


# MONITOR ===============================================================================

class ConvergenceMonitor:
    """Free-energy history and stopping rule of an outer loop.

    The first recorded value is the baseline ``F(0)``; each later value is
    ``F(it)`` for outer iteration ``it = 1, 2, ...``. The loop stops when
    ``|F(it) - F(it-1)| <= tol_fun`` or when ``it >= max_iter``. Hitting the
    iteration cap is a normal stop, not a failure.

    Parameters
    ----------
    tol_fun : float
        Absolute tolerance on the free-energy increment.
    max_iter : int
        Iteration cap.

    Example
    -------
    .. code-block:: python

        monitor = ConvergenceMonitor(tol_fun=1e-3, max_iter=10)
        monitor.record(F0)
        while True:
            ...
            monitor.record(F)
            if monitor.should_stop():
                break
        monitor.status    # CONVERGED or MAX_ITER_REACHED
    """

    def __init__(self, tol_fun: float = 2e-2, max_iter: int = 16):
        if tol_fun < 0:
            raise ValueError(f"tol_fun must be >= 0, got {tol_fun}")
        if max_iter < 0 or int(max_iter) != max_iter:
            raise ValueError(f"max_iter must be a non-negative integer, got {max_iter}")

        self.tol_fun = float(tol_fun)
        self.max_iter = int(max_iter)
        self.status = ConvergenceStatus.INIT
        self._history: list[float] = []


    def __repr__(self) -> str:
        return (
            f"ConvergenceMonitor(status={self.status.value}, n_iter={self.n_iter}, "
            f"tol_fun={self.tol_fun:g}, max_iter={self.max_iter})"
        )


    # PROPERTIES ------------------------------------------------------------------------

    @property
    def history(self) -> tuple[float, ...]:
        """Free energies recorded so far, baseline first."""
        return tuple(self._history)


    @property
    def n_iter(self) -> int:
        """Number of outer iterations recorded after the baseline."""
        return max(len(self._history) - 1, 0)


    @property
    def delta(self) -> float:
        """Latest free-energy increment (``nan`` before the first iteration)."""
        if len(self._history) < 2:
            return float("nan")
        return self._history[-1] - self._history[-2]


    @property
    def converged(self) -> bool:
        return self.status is ConvergenceStatus.CONVERGED


    # LOOP CONTROL ----------------------------------------------------------------------

    def record(self, free_energy: float) -> None:
        """Append a free-energy value."""
        if self.status.terminal:
            raise RuntimeError(f"Cannot record after the loop has stopped ({self.status.value})")
        self._history.append(float(free_energy))
        if len(self._history) > 1:
            self.status = ConvergenceStatus.ITERATING


    def should_stop(self, it: int | None = None) -> bool:
        """Apply the stopping rule after iteration *it* (default: the latest).

        Moves the monitor to a terminal state when the rule fires.
        """
        if len(self._history) < 2:
            return False
        if it is None:
            it = self.n_iter

        if abs(self.delta) <= self.tol_fun:
            self.status = ConvergenceStatus.CONVERGED
        elif it >= self.max_iter:
            self.status = ConvergenceStatus.MAX_ITER_REACHED
        return self.status.terminal
