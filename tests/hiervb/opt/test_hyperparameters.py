########################################################################################
##
##                                  TESTS FOR
##                            'opt/hyperparameters.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from hiervb.blocks.moments import GammaMoments
from hiervb.opt.hyperparameters import rescale_prior, update_precision


# TESTS ================================================================================

class TestUpdatePrecision:

    def test_closed_form(self):
        prior = GammaMoments(a=1.0, b=2.0)
        Q = np.diag([2.0, 4.0])
        d = np.array([1.0, 2.0])
        S = np.diag([0.5, 1.0])

        q = update_precision(prior, 2, d, np.linalg.inv(Q), S)

        # d' Q^-1 d = 0.5 + 1.0 ; tr(Q^-1 S) = 0.25 + 0.25
        assert q.a == pytest.approx(2.0)
        assert q.b == pytest.approx(2.0 + 0.5 * (1.5 + 0.5))

    def test_deviation_sign_irrelevant(self):
        prior = GammaMoments(a=1.0, b=1.0)
        iQ = np.array([[2.0, 0.5], [0.5, 1.0]])
        S = np.eye(2) * 0.1
        d = np.array([0.3, -1.2])
        q1 = update_precision(prior, 2, d, iQ, S)
        q2 = update_precision(prior, 2, -d, iQ, S)
        assert q1.b == pytest.approx(q2.b)

    def test_prior_not_modified(self):
        prior = GammaMoments(a=1.0, b=1.0)
        update_precision(prior, 3, np.ones(3), np.eye(3), np.eye(3))
        assert prior.a == 1.0
        assert prior.b == 1.0


class TestRescalePrior:

    def test_scales_by_expected_variance(self):
        Q = np.array([[1.0, 0.2], [0.2, 2.0]])
        np.testing.assert_allclose(rescale_prior(Q, GammaMoments(a=4.0, b=2.0)), 0.5 * Q)

    def test_unit_gamma_keeps_template(self):
        Q = np.diag([3.0, 0.0])
        np.testing.assert_allclose(rescale_prior(Q, GammaMoments(a=1.0, b=1.0)), Q)
