########################################################################################
##
##                                  TESTS FOR
##                               'utils/linalg.py'
##
########################################################################################

# IMPORTS ==============================================================================

import warnings

import numpy as np
import pytest
from scipy.special import digamma, gammaln
from scipy.stats import gamma as gamma_dist

from hiervb.utils.linalg import (
    LOG_2PI,
    gamma_entropy,
    gamma_expected_log,
    gaussian_entropy,
    inv,
    kl_gamma,
    logdet,
    support,
)


# ═══════════════════════════════════════════════════════════════════════════
# Inverse and log-determinant
# ═══════════════════════════════════════════════════════════════════════════

class TestInv:

    def test_regular_matrix(self):
        A = np.array([[4.0, 1.0], [1.0, 3.0]])
        np.testing.assert_allclose(inv(A), np.linalg.inv(A))

    def test_zero_rows_are_left_out(self):
        A = np.diag([2.0, 0.0, 4.0])
        A[0, 2] = A[2, 0] = 1.0
        out = inv(A)

        sub = np.linalg.inv(A[np.ix_([0, 2], [0, 2])])
        np.testing.assert_allclose(out[np.ix_([0, 2], [0, 2])], sub)
        assert np.all(out[1, :] == 0.0)
        assert np.all(out[:, 1] == 0.0)

    def test_all_zero_matrix(self):
        np.testing.assert_array_equal(inv(np.zeros((3, 3))), np.zeros((3, 3)))

    def test_scalar_input(self):
        np.testing.assert_allclose(inv(4.0), [[0.25]])

    def test_singular_falls_back_to_pinv_with_warning(self):
        A = np.array([[1.0, 1.0], [1.0, 1.0]])
        with pytest.warns(RuntimeWarning, match="pseudo-inverse"):
            out = inv(A)
        np.testing.assert_allclose(out, np.linalg.pinv(A))

    def test_well_conditioned_does_not_warn(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            inv(np.eye(3))

    def test_non_square_raises(self):
        with pytest.raises(ValueError, match="square"):
            inv(np.ones((2, 3)))

    def test_support(self):
        np.testing.assert_array_equal(support(np.diag([1.0, 0.0, 2.0])), [0, 2])


class TestLogdet:

    def test_matches_numpy(self):
        A = np.array([[4.0, 1.0], [1.0, 3.0]])
        assert logdet(A) == pytest.approx(np.log(np.linalg.det(A)))

    def test_ignores_zero_rows(self):
        assert logdet(np.diag([2.0, 0.0, 5.0])) == pytest.approx(np.log(10.0))

    def test_empty_support_is_zero(self):
        assert logdet(np.zeros((2, 2))) == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# Entropies and divergences
# ═══════════════════════════════════════════════════════════════════════════

class TestEntropies:

    def test_gaussian_entropy_1d(self):
        expected = 0.5 * (1.0 + LOG_2PI) + 0.5 * np.log(2.0)
        assert gaussian_entropy([[2.0]]) == pytest.approx(expected)

    def test_gamma_entropy_matches_scipy(self):
        a, b = 3.0, 2.0
        assert gamma_entropy(a, b) == pytest.approx(gamma_dist(a, scale=1.0 / b).entropy())

    def test_gamma_entropy_elementwise(self):
        a = np.array([1.0, 2.5])
        b = np.array([0.5, 4.0])
        expected = [gamma_dist(ai, scale=1.0 / bi).entropy() for ai, bi in zip(a, b)]
        np.testing.assert_allclose(gamma_entropy(a, b), expected)

    def test_gamma_expected_log(self):
        assert gamma_expected_log(2.0, 3.0) == pytest.approx(digamma(2.0) - np.log(3.0))


class TestKLGamma:

    def test_zero_for_identical(self):
        m, v = 2.0, 0.5
        assert kl_gamma(m, v, m, v) == pytest.approx(0.0, abs=1e-12)

    def test_positive_for_different(self):
        assert kl_gamma(2.0, 0.5, 1.0, 1.0) > 0.0
        assert kl_gamma(1.0, 1.0, 2.0, 0.5) > 0.0

    def test_closed_form_shape_rate(self):
        # KL(Gamma(a1, b1) || Gamma(a2, b2)) in shape / rate form
        a1, b1, a2, b2 = 3.0, 2.0, 1.5, 0.5
        expected = (
            (a1 - a2) * digamma(a1)
            - gammaln(a1)
            + gammaln(a2)
            + a2 * (np.log(b1) - np.log(b2))
            + a1 * (b2 - b1) / b1
        )
        m1, m2 = a1 / b1, a2 / b2
        kl = kl_gamma(m1, m1 / b1, m2, m2 / b2)
        assert kl == pytest.approx(expected)
