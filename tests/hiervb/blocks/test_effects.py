########################################################################################
##
##                                  TESTS FOR
##                              'blocks/effects.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np

from hiervb.blocks.effects import is_fixed_effect, partition_effects


# TESTS ================================================================================

class TestIsFixedEffect:

    def test_sentinel_is_fixed(self):
        assert is_fixed_effect(np.inf, 0.0) is True

    def test_nonzero_rate_is_random(self):
        assert is_fixed_effect(np.inf, 1e-6) is False

    def test_finite_shape_is_random(self):
        assert is_fixed_effect(5.0, 0.0) is False

    def test_huge_finite_shape_is_random(self):
        assert is_fixed_effect(1e300, 0.0) is False

    def test_negative_infinity_is_random(self):
        assert is_fixed_effect(-np.inf, 0.0) is False

    def test_elementwise(self):
        a = np.array([np.inf, np.inf, 1.0, 5.0])
        b = np.array([0.0, 1e-6, 1.0, 0.0])
        np.testing.assert_array_equal(is_fixed_effect(a, b), [True, False, False, False])

    def test_list_input(self):
        np.testing.assert_array_equal(is_fixed_effect([np.inf, 1.0], [0.0, 1.0]), [True, False])


class TestPartitionEffects:

    def test_partition_restricted_to_active(self):
        a = np.array([np.inf, 1.0, np.inf, 1.0])
        b = np.array([0.0, 1.0, 0.0, 1.0])
        active = np.array([True, True, False, False])

        ffx, rfx = partition_effects(a, b, active)
        np.testing.assert_array_equal(ffx, [0])
        np.testing.assert_array_equal(rfx, [1])

    def test_scalar_hyperparameters_broadcast(self):
        ffx, rfx = partition_effects(1.0, 1.0, [True, True, False])
        assert ffx.size == 0
        np.testing.assert_array_equal(rfx, [0, 1])
