########################################################################################
##
##                                  TESTS FOR
##                             'opt/convergence.py'
##
########################################################################################

# IMPORTS ==============================================================================

import math

import pytest

from hiervb.opt.convergence import ConvergenceMonitor, ConvergenceStatus


# TESTS ================================================================================

class TestConvergenceMonitor:

    def test_initial_state(self):
        m = ConvergenceMonitor()
        assert m.status is ConvergenceStatus.INIT
        assert m.tol_fun == 2e-2
        assert m.max_iter == 16
        assert m.history == ()
        assert math.isnan(m.delta)

    def test_baseline_keeps_init_state(self):
        m = ConvergenceMonitor()
        m.record(-100.0)
        assert m.status is ConvergenceStatus.INIT
        assert m.should_stop() is False
        assert m.n_iter == 0

    def test_converges_on_small_increment(self):
        m = ConvergenceMonitor(tol_fun=0.1, max_iter=10)
        for F in (-100.0, -50.0, -49.95):
            m.record(F)
        assert m.status is ConvergenceStatus.ITERATING
        assert m.should_stop(2) is True
        assert m.status is ConvergenceStatus.CONVERGED
        assert m.converged

    def test_tolerance_is_inclusive(self):
        m = ConvergenceMonitor(tol_fun=0.5, max_iter=10)
        m.record(1.0)
        m.record(1.5)
        assert m.should_stop() is True
        assert m.converged

    def test_decrease_counts_by_magnitude(self):
        m = ConvergenceMonitor(tol_fun=0.1, max_iter=10)
        m.record(0.0)
        m.record(-1.0)
        assert m.should_stop() is False
        assert m.status is ConvergenceStatus.ITERATING

    def test_iteration_cap_is_soft_stop(self):
        m = ConvergenceMonitor(tol_fun=1e-9, max_iter=3)
        m.record(0.0)
        stops = []
        for it, F in enumerate((1.0, 2.0, 3.0), start=1):
            m.record(F)
            stops.append(m.should_stop(it))
        assert stops == [False, False, True]
        assert m.status is ConvergenceStatus.MAX_ITER_REACHED
        assert not m.converged
        assert m.n_iter == 3

    def test_convergence_wins_at_cap(self):
        m = ConvergenceMonitor(tol_fun=1.0, max_iter=1)
        m.record(0.0)
        m.record(0.5)
        m.should_stop(1)
        assert m.status is ConvergenceStatus.CONVERGED

    def test_history_is_immutable_snapshot(self):
        m = ConvergenceMonitor()
        m.record(1.0)
        h = m.history
        m.record(2.0)
        assert h == (1.0,)
        assert isinstance(m.history, tuple)

    def test_record_after_stop_raises(self):
        m = ConvergenceMonitor(tol_fun=1.0)
        m.record(0.0)
        m.record(0.1)
        m.should_stop()
        with pytest.raises(RuntimeError, match="stopped"):
            m.record(0.2)

    def test_invalid_arguments(self):
        with pytest.raises(ValueError, match="tol_fun"):
            ConvergenceMonitor(tol_fun=-1.0)
        with pytest.raises(ValueError, match="max_iter"):
            ConvergenceMonitor(max_iter=2.5)
