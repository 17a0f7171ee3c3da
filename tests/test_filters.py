from __future__ import annotations

import numpy as np
import pytest

from ppg_vitals.filters import AdaptiveFilterStage, BaselineNormalizer, moving_average


class TestMovingAverage:

    def test_constant_unchanged(self):
        out = moving_average(np.full(50, 3.0), 5)
        np.testing.assert_allclose(out, 3.0)

    def test_truncated_window_at_edges(self):
        out = moving_average(np.array([0.0, 0.0, 3.0, 0.0, 0.0]), 1)
        np.testing.assert_allclose(out, [0.0, 1.0, 1.0, 1.0, 0.0])

    def test_length_preserved(self):
        assert len(moving_average(np.arange(7.0), 10)) == 7

    def test_zero_width_is_copy(self):
        x = np.arange(5.0)
        out = moving_average(x, 0)
        np.testing.assert_array_equal(out, x)
        assert out is not x

    def test_attenuates_noise(self):
        rng = np.random.default_rng(0)
        noise = rng.normal(0, 1, 500)
        assert moving_average(noise, 5).std() < noise.std() / 2


class TestBaselineNormalizer:

    def test_first_value_is_baseline(self):
        bn = BaselineNormalizer()
        assert bn.update(100.0) == 0.0
        assert bn.baseline == 100.0

    def test_exponential_update(self):
        bn = BaselineNormalizer()
        bn.update(100.0)
        out = bn.update(110.0)
        assert bn.baseline == pytest.approx(100.5)
        assert out == pytest.approx(9.5 * 100.0 / 100.5)

    def test_small_baseline_does_not_blow_up(self):
        bn = BaselineNormalizer()
        bn.update(0.5)
        out = bn.update(0.6)
        # divided by max(|baseline|, 1) == 1
        assert out == pytest.approx((0.6 - 0.505) * 100.0)

    def test_reset(self):
        bn = BaselineNormalizer()
        bn.update(42.0)
        bn.reset()
        assert bn.baseline == 0.0


class TestAdaptiveFilterStage:

    def test_constant_window_normalizes_to_zero(self):
        stage = AdaptiveFilterStage()
        filtered, normalized = stage.process(np.full(30, 130.0))
        np.testing.assert_allclose(filtered, 130.0)
        assert normalized == 0.0

    def test_amplification_scales_output(self):
        plain, loud = AdaptiveFilterStage(), AdaptiveFilterStage()
        for stage in (plain, loud):
            stage.process(np.array([100.0]))
        _, a = plain.process(np.array([100.0, 110.0]), amplification=1.0)
        _, b = loud.process(np.array([100.0, 110.0]), amplification=2.0)
        assert a != 0.0
        assert b == pytest.approx(2 * a)

    def test_noise_reduction_widens_window(self):
        x = np.zeros(41)
        x[20] = 1.0
        narrow = AdaptiveFilterStage.lowpass(x, noise_reduction=1.0)
        wide = AdaptiveFilterStage.lowpass(x, noise_reduction=2.0)
        assert narrow[20] == pytest.approx(1 / 11)
        assert wide[20] == pytest.approx(1 / 21)
