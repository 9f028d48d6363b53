#########################################################################################
##
##                     MIXED-EFFECTS (GROUP-LEVEL) VARIATIONAL BAYES
##                               (opt/mixed_effects.py)
##
##         Several units share one model but have their own parameters, drawn
##         from a population distribution learned at the same time. The outer
##         loop alternates warm-started unit inversions under priors centred
##         on the population posterior with a conjugate update of that
##         posterior, until the total free energy stops moving.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

import numpy as np

from ..blocks.parameter_block import BlockRegistry
from ..engines.base import (
    Diagnostics,
    InversionEngine,
    InversionOptions,
    ModelDims,
    Posterior,
    WarmStart,
)
from ..engines.defaults import fill_population_priors
from ..utils.logger import LoggerManager
from .config import MixedEffectsOptions
from .convergence import ConvergenceMonitor, ConvergenceStatus
from .free_energy import mixed_effects_free_energy
from .observers import IterationState, resolve_observer
from .population import update_block
from .priors import build_unit_priors, refresh_unit_priors

logger = LoggerManager().get_logger(__name__)


__all__ = [
    "UnitBaseline",
    "MixedEffectsResult",
    "MixedEffectsEstimator",
]


# RESULT CONTAINERS =====================================================================

@dataclass
class UnitBaseline:
    """Unit inversions of the first outer iteration, kept for comparison."""

    posteriors: list[Posterior]
    diagnostics: list[Diagnostics]


@dataclass
class MixedEffectsResult:
    """Outcome of a mixed-effects analysis.

    Parameters
    ----------
    posterior : dict[BlockTag, PopulationMoments]
        Population posterior per block.
    priors : dict[BlockTag, PopulationMoments]
        Population priors the analysis ran with.
    unit_posteriors : list[Posterior]
        Final unit-level posteriors, in unit order.
    unit_diagnostics : list[Diagnostics]
        Final unit-level diagnostics, in unit order.
    history : tuple[float, ...]
        Free energy of the baseline and of every outer iteration.
    n_iter : int
        Number of outer iterations.
    status : ConvergenceStatus
        ``CONVERGED`` or ``MAX_ITER_REACHED``.
    registry : BlockRegistry
        Blocks and their fixed / random partition.
    init_units : UnitBaseline
        Unit inversions of the first outer iteration.
    within_fit : dict
        ``"F"``: final unit free energies, shape ``(ns,)``; ``"R2"``: final
        unit coefficients of determination, shape ``(ns, k)``.
    date : datetime
        Completion time.
    elapsed : float
        Wall-clock duration in seconds.
    """

    posterior: dict
    priors: dict
    unit_posteriors: list
    unit_diagnostics: list
    history: tuple
    n_iter: int
    status: ConvergenceStatus
    registry: BlockRegistry
    init_units: UnitBaseline
    within_fit: dict = field(default_factory=dict)
    date: datetime | None = None
    elapsed: float = 0.0


    def __repr__(self) -> str:
        return (
            f"MixedEffectsResult({self.status.value}, F={self.free_energy:.6g}, "
            f"n_iter={self.n_iter}, n_units={self.n_units})"
        )


    @property
    def free_energy(self) -> float:
        return self.history[-1]


    @property
    def converged(self) -> bool:
        return self.status is ConvergenceStatus.CONVERGED


    @property
    def n_units(self) -> int:
        return len(self.unit_posteriors)


    # RESULTS AND VISUALIZATION ---------------------------------------------------------

    def summary(self) -> str:
        """Multi-line text summary of the analysis."""
        lines = []
        date = self.date.strftime("%Y-%m-%d %H:%M:%S") if self.date else "-"
        if self.converged:
            outcome = f"converged in {self.n_iter} iterations"
        else:
            outcome = f"stopped after {self.n_iter} iterations (iteration cap)"

        lines.append(f"Date:               {date}")
        lines.append(f"Outer loop:         {outcome}")
        lines.append(f"Elapsed:            {_format_elapsed(self.elapsed)}")
        lines.append(f"Units:              {self.n_units}")
        lines.append(f"Free energy:        {self.free_energy:.6g}")

        F = self.within_fit.get("F")
        if F is not None and len(F):
            lines.append(
                f"Within-unit F:      mean {np.mean(F):.6g}  (min {np.min(F):.6g}, max {np.max(F):.6g})"
            )
        R2 = self.within_fit.get("R2")
        if R2 is not None and np.size(R2):
            lines.append(f"Within-unit R2:     mean {np.nanmean(R2):.4g}")

        for block in self.registry:
            post = self.posterior[block.tag]
            lines.append("")
            lines.append(
                f"{block.tag.label} ({block.tag.value}): "
                f"{block.n_rfx} random, {block.n_ffx} fixed, {block.n - block.n_active} inactive"
            )
            lines.append("-" * 40)
            std = np.sqrt(np.abs(np.diag(post.sigma)))
            for k in range(block.n):
                if k in block.rfx:
                    kind = "rfx"
                    var = post.b[k] / post.a[k]
                    extra = f"  pop. var = {var:.4g}"
                elif k in block.ffx:
                    kind = "ffx"
                    extra = ""
                else:
                    kind = "---"
                    extra = ""
                lines.append(
                    f"  [{k:2d}] {kind}  mean = {post.mu[k]: .6g} +/- {std[k]:.3g}{extra}"
                )
        return "\n".join(lines)


    def display(self) -> None:
        """Print :meth:`summary` framed as a report."""
        print("=" * 60)
        print("Mixed-Effects VB Results")
        print("=" * 60)
        print(self.summary())
        print("=" * 60)


    def plot(self, *, fig=None, grid: bool = True):
        """Plot the free-energy trajectory and the population means.

        Returns
        -------
        fig : matplotlib.figure.Figure
        axes : list[matplotlib.axes.Axes]
        """
        import matplotlib.pyplot as plt  # lazy import

        n_blocks = len(self.registry)
        if fig is None:
            fig = plt.figure(figsize=(8, 3 * (1 + n_blocks)))
        axes = fig.subplots(1 + n_blocks, 1, squeeze=False)[:, 0].tolist()

        ax = axes[0]
        ax.plot(np.arange(len(self.history)), self.history, "ko-")
        ax.set_title("Free energy")
        ax.set_xlabel("VB iteration")
        ax.set_ylabel("F")
        if grid:
            ax.grid(True, alpha=0.3)

        for ax, block in zip(axes[1:], self.registry):
            post = self.posterior[block.tag]
            x = np.arange(block.n)
            std = np.sqrt(np.abs(np.diag(post.sigma)))
            ax.errorbar(x, post.mu, yerr=std, fmt="o", capsize=3, label="population mean")
            for unit in self.unit_posteriors:
                ax.plot(x, unit[block.tag].mu, ".", color="gray", alpha=0.5)
            ax.set_title(block.tag.label)
            ax.set_xticks(x)
            if grid:
                ax.grid(True, alpha=0.3)
            ax.legend()

        fig.tight_layout()
        return fig, axes


# ESTIMATOR =============================================================================

class MixedEffectsEstimator:
    """Mixed-effects variational Bayes over a unit-level inversion engine.

    Parameters
    ----------
    engine : InversionEngine
        Unit-level inversion.
    model : any
        Model specification passed to the engine untouched.
    dims : ModelDims
        Model dimensions. ``n_t`` may be one value per unit.
    priors : mapping, optional
        Population priors per block (see :func:`fill_population_priors`).
        A parameter whose precision prior is ``a = inf, b = 0`` is a fixed
        effect; a zero prior variance removes it from estimation.
    options : MixedEffectsOptions or dict, optional
        Outer-loop options.
    unit_options : InversionOptions, optional
        Base options of the unit inversions; ``priors.gamma`` and
        ``priors.extra`` pass through to the units.
    observer : IterationObserver or callable, optional
        Progress sink called after the baseline and every outer iteration.
    max_workers : int, optional
        Number of threads for the unit inversions of one iteration. Units
        are inverted sequentially when unset or 1.

    Example
    -------
    .. code-block:: python

        from hiervb import MixedEffectsEstimator, LinearGaussianEngine, ModelDims

        est = MixedEffectsEstimator(LinearGaussianEngine(), model, ModelDims(n_phi=2))
        result = est.fit([y1, y2, y3])
        result.display()
    """

    def __init__(
        self,
        engine: InversionEngine,
        model: Any,
        dims: ModelDims,
        *,
        priors=None,
        options: MixedEffectsOptions | dict | None = None,
        unit_options: InversionOptions | None = None,
        observer=None,
        max_workers: int | None = None,
    ):
        if not isinstance(engine, InversionEngine):
            raise TypeError(
                f"engine must implement invert(data, inputs, model, dims, options, warm_start), "
                f"got {type(engine).__name__}"
            )
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")

        if options is None:
            options = MixedEffectsOptions()
        elif isinstance(options, dict):
            options = MixedEffectsOptions.from_dict(options)

        self.engine = engine
        self.model = model
        self.dims = dims
        self.options = options
        self.unit_options = unit_options if unit_options is not None else InversionOptions()
        self.max_workers = max_workers
        self.observer = resolve_observer(observer, options.display)

        self.population_priors = fill_population_priors(priors, dims)
        self.registry = BlockRegistry.from_population(self.population_priors, dims)


    # HELPERS ---------------------------------------------------------------------------

    def _unit_dims(self, ns: int) -> list[ModelDims]:
        n_t = self.dims.n_t
        if n_t is not None and not np.isscalar(n_t) and len(n_t) != ns:
            raise ValueError(f"Got {len(n_t)} time counts for {ns} units")
        return [self.dims.for_unit(i) for i in range(ns)]


    @staticmethod
    def _unit_inputs(inputs, ns: int) -> list:
        if inputs is None or isinstance(inputs, np.ndarray):
            return [inputs] * ns
        if isinstance(inputs, (list, tuple)):
            if len(inputs) != ns:
                raise ValueError(f"Got inputs for {len(inputs)} units but data for {ns}")
            return list(inputs)
        raise TypeError(
            f"inputs must be None, an array shared by all units or a sequence, "
            f"got {type(inputs).__name__}"
        )


    def _invert_all(
        self,
        data: Sequence,
        inputs: list,
        dims: list[ModelDims],
        options: list[InversionOptions],
        warm: list[WarmStart | None],
    ) -> list[tuple[Posterior, Diagnostics]]:
        """Invert every unit; results come back in unit order."""

        def _invert(i: int):
            return self.engine.invert(
                data[i], inputs[i], self.model, dims[i], options[i], warm_start=warm[i]
            )

        ns = len(data)
        if self.max_workers is None or self.max_workers == 1 or ns == 1:
            return [_invert(i) for i in range(ns)]

        with ThreadPoolExecutor(max_workers=min(self.max_workers, ns)) as pool:
            return list(pool.map(_invert, range(ns)))


    def _free_energy(self, results, posterior) -> float:
        return mixed_effects_free_energy(
            [diag.free_energy for _, diag in results],
            posterior,
            self.population_priors,
            self.registry,
        )


    def _notify(self, index: int, F: float, monitor: ConvergenceMonitor, posterior) -> None:
        state = IterationState(
            status=monitor.status,
            delta=monitor.delta,
            posterior={tag: p.copy() for tag, p in posterior.items()},
        )
        self.observer.on_iteration(index, F, state)


    # FIT -------------------------------------------------------------------------------

    def fit(self, data: Sequence, inputs=None) -> MixedEffectsResult:
        """Run the mixed-effects analysis.

        Parameters
        ----------
        data : sequence of array_like
            One observation array per unit.
        inputs : array_like or sequence, optional
            Inputs shared by all units (single array) or one entry per unit.

        Returns
        -------
        MixedEffectsResult
        """
        data = list(data)
        ns = len(data)
        if ns == 0:
            raise ValueError("Need data for at least one unit")

        t_start = time.perf_counter()
        inputs = self._unit_inputs(inputs, ns)
        dims = self._unit_dims(ns)
        priors = self.population_priors
        registry = self.registry
        opts = self.options

        if opts.verbose:
            logger.info(f"MFX analysis: initialization ({ns} units, {registry})")

        # baseline: prior-only unit inversions
        unit_priors = build_unit_priors(priors, registry, ns, base=self.unit_options.priors)
        init_options = self.unit_options.copy(
            priors=unit_priors, max_iter=0, display=False, verbose=False
        )
        results = self._invert_all(data, inputs, dims, [init_options] * ns, [None] * ns)

        unit_options = [
            (diag.options or init_options).copy(max_iter=opts.inner_max_iter)
            for _, diag in results
        ]

        posterior = {tag: p.copy() for tag, p in priors.items()}
        monitor = ConvergenceMonitor(tol_fun=opts.tol_fun, max_iter=opts.max_iter)

        F = self._free_energy(results, posterior)
        monitor.record(F)
        self._notify(0, F, monitor, posterior)

        if opts.verbose:
            logger.info("MFX analysis: main VB inversion")

        init_units = None
        it = 1
        while True:
            unit_options = [
                o.copy(priors=refresh_unit_priors(o.priors, posterior, registry))
                for o in unit_options
            ]
            warm = [WarmStart(post, diag) for post, diag in results]
            results = self._invert_all(data, inputs, dims, unit_options, warm)

            for block in registry:
                posterior[block.tag] = update_block(
                    priors[block.tag],
                    posterior[block.tag],
                    block,
                    [post[block.tag] for post, _ in results],
                )

            F = self._free_energy(results, posterior)
            monitor.record(F)

            if it == 1:
                init_units = UnitBaseline(
                    posteriors=[post for post, _ in results],
                    diagnostics=[diag for _, diag in results],
                )

            stop = monitor.should_stop(it)
            logger.debug(f"MFX iteration #{it}: F = {F:.6g} (dF = {monitor.delta:.3g})")
            if monitor.delta < 0:
                logger.debug(f"MFX iteration #{it}: free energy decreased by {-monitor.delta:.3g}")
            self._notify(it, F, monitor, posterior)

            if stop:
                break
            it += 1

        elapsed = time.perf_counter() - t_start
        within_fit = {
            "F": np.array([diag.free_energy for _, diag in results]),
            "R2": np.array(
                [np.atleast_1d(diag.fit.get("R2", np.nan)) for _, diag in results],
                dtype=float,
            ),
        }

        if opts.verbose:
            if monitor.converged:
                logger.info(f"MFX analysis: converged after {it} iterations (F = {F:.6g})")
            else:
                logger.info(f"MFX analysis: reached {opts.max_iter} iterations (F = {F:.6g})")

        return MixedEffectsResult(
            posterior=posterior,
            priors={tag: p.copy() for tag, p in priors.items()},
            unit_posteriors=[post for post, _ in results],
            unit_diagnostics=[diag for _, diag in results],
            history=monitor.history,
            n_iter=monitor.n_iter,
            status=monitor.status,
            registry=registry,
            init_units=init_units,
            within_fit=within_fit,
            date=datetime.now(),
            elapsed=elapsed,
        )


# HELPERS ===============================================================================

def _format_elapsed(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f} sec"
    return f"{int(seconds // 60)} min"
