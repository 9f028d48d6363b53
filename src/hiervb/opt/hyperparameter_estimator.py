#########################################################################################
##
##                  EMPIRICAL-BAYES ADJUSTMENT OF PRIOR PRECISIONS
##                         (opt/hyperparameter_estimator.py)
##
##         Single-unit variant of the hierarchical scheme: the prior
##         covariance of every parameter block is a fixed template scaled by
##         an unknown precision with a Gamma hyperprior. The outer loop
##         alternates an engine inversion with the conjugate update of these
##         precisions.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from ..engines.base import (
    Diagnostics,
    InversionEngine,
    InversionOptions,
    ModelDims,
    Posterior,
    WarmStart,
)
from ..engines.defaults import fill_in_priors
from ..utils.linalg import inv
from ..utils.logger import LoggerManager
from .config import HyperparameterOptions
from .convergence import ConvergenceMonitor, ConvergenceStatus
from .free_energy import hyperparameter_free_energy
from .hyperparameters import rescale_prior, update_precision
from .observers import IterationState, resolve_observer

logger = LoggerManager().get_logger(__name__)


# RESULT CONTAINER ======================================================================

@dataclass
class HyperparameterResult:
    """Outcome of a hyperparameter adjustment.

    ``posterior.hyper`` holds the Gamma posterior over each block precision.
    ``free_energy`` is evaluated from the final engine run and the final
    precisions; ``history`` holds the values that drove the stopping rule.
    ``hyper_history`` starts with the hyperpriors and has one entry per
    outer iteration.
    """

    posterior: Posterior
    diagnostics: Diagnostics
    history: tuple
    free_energy: float
    n_iter: int
    status: ConvergenceStatus
    hyper_prior: dict
    hyper_history: tuple = field(default_factory=tuple)
    elapsed: float = 0.0


    def __repr__(self) -> str:
        return (
            f"HyperparameterResult({self.status.value}, F={self.free_energy:.6g}, "
            f"n_iter={self.n_iter})"
        )


    @property
    def converged(self) -> bool:
        return self.status is ConvergenceStatus.CONVERGED


    def display(self) -> None:
        """Print the estimated block precisions."""
        print("=" * 60)
        print("Hyperparameter Adjustment Results")
        print("=" * 60)
        print(f"  status       {self.status.value} after {self.n_iter} iterations")
        print(f"  free energy  {self.free_energy:.6g}")
        print(f"  elapsed      {self.elapsed:.2f} s")
        print("\nBlock precisions (posterior mean, prior mean):")
        print("-" * 40)
        for tag, q in self.posterior.hyper.items():
            p = self.hyper_prior[tag]
            print(f"  {tag.label:32s}  {q.mean:.6g}  ({p.mean:.6g})")
        print("=" * 60)


    def plot(self, *, fig=None, grid: bool = True):
        """Plot the free energy and the log block precisions over iterations.

        Precision uncertainty is drawn as the interval
        ``log(E + sqrt(V)) - log(E)`` around ``log(E)``.
        """
        import matplotlib.pyplot as plt  # lazy import

        tags = list(self.hyper_prior)
        if fig is None:
            fig = plt.figure(figsize=(8, 3 * (1 + len(tags))))
        axes = fig.subplots(1 + len(tags), 1, squeeze=False)[:, 0].tolist()

        ax = axes[0]
        ax.plot(np.arange(len(self.history)), self.history, "ko")
        ax.set_title("F = log p(y|m)")
        ax.set_xlabel("VB meta-iterations")
        if grid:
            ax.grid(True, alpha=0.3)

        its = np.arange(len(self.hyper_history))
        for ax, tag in zip(axes[1:], tags):
            EP = np.array([h[tag].mean for h in self.hyper_history], dtype=float)
            VP = np.array([h[tag].variance for h in self.hyper_history], dtype=float)
            log_ci = np.log(EP + np.sqrt(VP)) - np.log(EP)
            ax.errorbar(its, np.log(EP), yerr=log_ci, fmt="o", capsize=3)
            ax.set_title(tag.value.upper())
            ax.set_xlabel("VB meta-iterations")
            if grid:
                ax.grid(True, axis="y", alpha=0.3)

        fig.tight_layout()
        return fig, axes


# ESTIMATOR =============================================================================

class HyperparameterEstimator:
    """Empirical-Bayes estimation of block prior precisions for one unit.

    Parameters
    ----------
    engine : InversionEngine
        Unit-level inversion.
    model : any
        Model specification passed to the engine untouched.
    dims : ModelDims
        Must declare ``n``, ``n_theta`` and ``n_phi``. ``n_t`` and ``p`` are
        read from the data shape when undeclared.
    options : InversionOptions, optional
        Engine options. ``options.priors.gaussian`` gives the template
        covariance ``Q`` of each block; ``options.priors.gamma`` the Gamma
        hyperprior of its precision. ``tol_fun`` and ``max_iter`` also
        control the outer loop unless *hyper_options* overrides them.
    hyper_options : HyperparameterOptions or dict, optional
        Outer-loop options.
    observer : IterationObserver or callable, optional
        Progress sink.

    Raises
    ------
    ValueError
        If *dims* leaves a block size undeclared.
    """

    def __init__(
        self,
        engine: InversionEngine,
        model: Any,
        dims: ModelDims,
        *,
        options: InversionOptions | None = None,
        hyper_options: HyperparameterOptions | dict | None = None,
        observer=None,
    ):
        if not isinstance(engine, InversionEngine):
            raise TypeError(
                f"engine must implement invert(data, inputs, model, dims, options, warm_start), "
                f"got {type(engine).__name__}"
            )
        dims.require_blocks()

        if hyper_options is None:
            hyper_options = HyperparameterOptions()
        elif isinstance(hyper_options, dict):
            hyper_options = HyperparameterOptions.from_dict(hyper_options)

        self.engine = engine
        self.model = model
        self.dims = dims
        self.options = options if options is not None else InversionOptions()
        self.hyper_options = hyper_options
        self.observer = resolve_observer(observer, hyper_options.display)


    def _stopping_rule(self, monitor: ConvergenceMonitor, engine_options: InversionOptions) -> None:
        """Take tolerance and cap from the engine options unless overridden."""
        hopts = self.hyper_options
        monitor.tol_fun = float(hopts.tol_fun if hopts.tol_fun is not None else engine_options.tol_fun)
        monitor.max_iter = int(hopts.max_iter if hopts.max_iter is not None else engine_options.max_iter)


    def fit(self, data, inputs=None) -> HyperparameterResult:
        """Run the hyperparameter adjustment on one unit's data.

        Returns
        -------
        HyperparameterResult
        """
        t_start = time.perf_counter()
        dims = self.dims.with_data_shape(data)
        verbose = self.hyper_options.verbose

        if verbose:
            logger.info("Hyperparameter adjustment: initialization (prior hyperparameters)")

        priors, active = fill_in_priors(self.options.priors, dims)
        n_active = {tag: idx.size for tag, idx in active.items()}

        templates = {tag: g.sigma.copy() for tag, g in priors.gaussian.items()}
        inv_templates = {tag: inv(Q) for tag, Q in templates.items()}
        hyper_prior = {tag: priors.gamma[tag].copy() for tag in templates}
        hyper = {tag: q.copy() for tag, q in hyper_prior.items()}

        for tag, Q in templates.items():
            priors.gaussian[tag].sigma = rescale_prior(Q, hyper_prior[tag])

        options = self.options.copy(priors=priors)
        posterior, diagnostics = self.engine.invert(data, inputs, self.model, dims, options)

        monitor = ConvergenceMonitor()
        self._stopping_rule(monitor, diagnostics.options or options)

        F = hyperparameter_free_energy(diagnostics.free_energy, hyper, hyper_prior, n_active)
        monitor.record(F)
        hyper_history = [{tag: q.copy() for tag, q in hyper.items()}]
        self._notify(0, F, monitor, hyper)

        it = 1
        while True:
            for tag, n in n_active.items():
                if n == 0:
                    continue
                hyper[tag] = update_precision(
                    hyper_prior[tag],
                    n,
                    diagnostics.deviations[tag],
                    inv_templates[tag],
                    posterior[tag].sigma,
                )

            F = hyperparameter_free_energy(diagnostics.free_energy, hyper, hyper_prior, n_active)
            monitor.record(F)
            hyper_history.append({tag: q.copy() for tag, q in hyper.items()})

            # propagate the learned precisions into the unit priors
            priors = options.priors.copy()
            for tag, n in n_active.items():
                if n > 0:
                    priors.gaussian[tag].sigma = rescale_prior(templates[tag], hyper[tag])
            options = options.copy(priors=priors)

            warm = WarmStart(posterior, diagnostics)
            posterior, diagnostics = self.engine.invert(
                data, inputs, self.model, dims, options, warm_start=warm
            )

            self._stopping_rule(monitor, diagnostics.options or options)
            stop = monitor.should_stop(it)
            logger.debug(f"hyperparameter iteration #{it}: F = {F:.6g} (dF = {monitor.delta:.3g})")
            self._notify(it, F, monitor, hyper)

            if stop:
                break
            it += 1

        final_F = hyperparameter_free_energy(diagnostics.free_energy, hyper, hyper_prior, n_active)
        posterior.hyper = {tag: q.copy() for tag, q in hyper.items()}

        if verbose:
            logger.info(
                f"Hyperparameter adjustment: done ({monitor.status.value} "
                f"after {it} iterations, F = {final_F:.6g})"
            )

        return HyperparameterResult(
            posterior=posterior,
            diagnostics=diagnostics,
            history=monitor.history,
            free_energy=final_F,
            n_iter=monitor.n_iter,
            status=monitor.status,
            hyper_prior=hyper_prior,
            hyper_history=tuple(hyper_history),
            elapsed=time.perf_counter() - t_start,
        )


    def _notify(self, index: int, F: float, monitor: ConvergenceMonitor, hyper: dict) -> None:
        state = IterationState(
            status=monitor.status,
            delta=monitor.delta,
            posterior={tag: q.copy() for tag, q in hyper.items()},
        )
        self.observer.on_iteration(index, F, state)
