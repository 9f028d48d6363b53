########################################################################################
##
##                                  TESTS FOR
##                             'opt/free_energy.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest
from scipy.special import digamma, gammaln

from hiervb.blocks.moments import GammaMoments, PopulationMoments
from hiervb.blocks.parameter_block import BlockRegistry, BlockTag
from hiervb.engines.base import ModelDims
from hiervb.opt.free_energy import (
    group_correction,
    hyper_correction,
    hyperparameter_free_energy,
    mixed_effects_free_energy,
)
from hiervb.utils.linalg import kl_gamma


LOG_2PI = np.log(2.0 * np.pi)


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _registry(prior, n):
    return BlockRegistry.from_population({BlockTag.PHI: prior}, ModelDims(n_phi=n))


def _scalar_correction(ns, mu, V, mu0, V0, a, b, a0, b0):
    """Scalar random-effect correction written out term by term."""
    e = mu - mu0
    gamma_h = a - np.log(b) + gammaln(a) + (1.0 - a) * digamma(a)
    gauss_h = 0.5 * (1.0 + LOG_2PI) + 0.5 * np.log(V)
    return (
        -0.5 * ns * np.log(a / b)
        + (a0 + 0.5 * ns - 1.0) * (digamma(a) - np.log(b))
        - (0.5 * ns * V + b0) * a / b
        + a0 * np.log(b0) + gammaln(b0)
        - 0.5 * LOG_2PI
        - 0.5 * np.log(V0)
        - 0.5 * e ** 2 / V0
        - 0.5 * V / V0
        + gamma_h
        + gauss_h
    )


# ═══════════════════════════════════════════════════════════════════════════
# Group level
# ═══════════════════════════════════════════════════════════════════════════

class TestGroupCorrection:

    def test_scalar_random_effect(self):
        prior = PopulationMoments(mu=[0.0], sigma=[[1.0]], a=[1.0], b=[1.0])
        post = PopulationMoments(mu=[1.55], sigma=[[0.25]], a=[2.5], b=[7.995])

        F = group_correction(3, post, prior, _registry(prior, 1)[BlockTag.PHI])
        expected = _scalar_correction(3, 1.55, 0.25, 0.0, 1.0, 2.5, 7.995, 1.0, 1.0)
        assert F == pytest.approx(expected, rel=1e-12)

    def test_rate_constant_uses_log_gamma_of_rate(self):
        # the constant term is a0*log(b0) + gammaln(b0); check with b0 != 1
        prior = PopulationMoments(mu=[0.0], sigma=[[2.0]], a=[3.0], b=[0.5])
        post = PopulationMoments(mu=[0.3], sigma=[[0.1]], a=[4.0], b=[1.5])

        F = group_correction(2, post, prior, _registry(prior, 1)[BlockTag.PHI])
        expected = _scalar_correction(2, 0.3, 0.1, 0.0, 2.0, 4.0, 1.5, 3.0, 0.5)
        assert F == pytest.approx(expected, rel=1e-12)

    def test_all_fixed_block(self):
        prior = PopulationMoments(mu=[0.0, 0.0], sigma=np.eye(2), a=np.inf, b=0.0)
        post = PopulationMoments(mu=[1.0, 2.0], sigma=0.1 * np.eye(2), a=np.inf, b=0.0)

        F = group_correction(4, post, prior, _registry(prior, 2)[BlockTag.PHI])
        assert F == pytest.approx(0.5 * 3 * 2 * LOG_2PI)

    def test_inactive_parameter_ignored(self):
        prior1 = PopulationMoments(mu=[0.0], sigma=[[1.0]], a=[1.0], b=[1.0])
        post1 = PopulationMoments(mu=[0.4], sigma=[[0.3]], a=[2.0], b=[3.0])
        prior2 = PopulationMoments(mu=[0.0, 5.0], sigma=np.diag([1.0, 0.0]), a=[1.0, 1.0], b=[1.0, 1.0])
        post2 = PopulationMoments(mu=[0.4, 5.0], sigma=np.diag([0.3, 0.0]), a=[2.0, 1.0], b=[3.0, 1.0])

        F1 = group_correction(3, post1, prior1, _registry(prior1, 1)[BlockTag.PHI])
        F2 = group_correction(3, post2, prior2, _registry(prior2, 2)[BlockTag.PHI])
        assert F1 == pytest.approx(F2)

    def test_fixed_parameters_add_constant(self):
        prior = PopulationMoments(mu=[0.0, 0.0], sigma=np.eye(2), a=[1.0, np.inf], b=[1.0, 0.0])
        post = PopulationMoments(mu=[0.4, 9.0], sigma=np.diag([0.3, 0.2]), a=[2.0, np.inf], b=[3.0, 0.0])
        F = group_correction(3, post, prior, _registry(prior, 2)[BlockTag.PHI])

        expected = _scalar_correction(3, 0.4, 0.3, 0.0, 1.0, 2.0, 3.0, 1.0, 1.0) + 0.5 * 2 * LOG_2PI
        assert F == pytest.approx(expected)


class TestMixedEffectsFreeEnergy:

    def test_sum_of_units_and_corrections(self):
        prior = PopulationMoments(mu=[0.0], sigma=[[1.0]], a=[1.0], b=[1.0])
        post = PopulationMoments(mu=[1.0], sigma=[[0.2]], a=[2.0], b=[2.5])
        registry = _registry(prior, 1)

        F = mixed_effects_free_energy([-10.0, -12.5], {BlockTag.PHI: post}, {BlockTag.PHI: prior}, registry)
        expected = -22.5 + group_correction(2, post, prior, registry[BlockTag.PHI])
        assert F == pytest.approx(expected)


# ═══════════════════════════════════════════════════════════════════════════
# Hyperparameter level
# ═══════════════════════════════════════════════════════════════════════════

class TestHyperCorrection:

    def test_posterior_equal_to_prior(self):
        a0, b0, n = 2.0, 3.0, 4
        assert hyper_correction(a0, a0, b0, b0, n) == pytest.approx(0.5 * n * (digamma(a0) - np.log(a0)))

    def test_general_value(self):
        a, a0, b, b0, n = 3.0, 1.0, 1.5, 1.0, 2
        m1, m2 = a / b, a0 / b0
        kl = kl_gamma(m1, m1 / b, m2, m2 / b0)
        expected = 0.5 * n * (digamma(a) - np.log(b) - np.log(m1)) - kl
        assert hyper_correction(a, a0, b, b0, n) == pytest.approx(expected)

    def test_total_skips_empty_blocks(self):
        prior = {BlockTag.PHI: GammaMoments(1.0, 1.0), BlockTag.X0: GammaMoments(1.0, 1.0)}
        post = {BlockTag.PHI: GammaMoments(2.0, 1.5), BlockTag.X0: GammaMoments(5.0, 0.1)}

        F = hyperparameter_free_energy(-3.0, post, prior, {BlockTag.PHI: 2, BlockTag.X0: 0})
        assert F == pytest.approx(-3.0 + hyper_correction(2.0, 1.0, 1.5, 1.0, 2))
