from __future__ import annotations

import numpy as np
import pytest

from ppg_vitals.spo2 import OxygenationEstimator


def wave(mean: float, amp: float, n: int = 300, fps: float = 30.0, freq: float = 1.2):
    t = np.arange(n) / fps
    return mean + amp * np.sin(2 * np.pi * freq * t)


class TestOxygenationEstimator:

    def test_ratio_of_ratios(self):
        est = OxygenationEstimator()
        red, ir = wave(128, 20), wave(90, 20)
        r = est.ratio_of_ratios(red, ir)
        assert r == pytest.approx((40 / 128) / (40 / 90), rel=0.01)
        assert est.estimate(red, ir, quality=0.9) == pytest.approx(110 - 25 * r)

    def test_clamped_to_100(self):
        spo2 = OxygenationEstimator().estimate(wave(128, 1), wave(90, 20), quality=0.9)
        assert spo2 == 100.0

    def test_clamped_to_floor(self):
        spo2 = OxygenationEstimator().estimate(wave(128, 30), wave(90, 5), quality=0.9)
        assert spo2 == 75.0
        spo2 = OxygenationEstimator().estimate(
            wave(128, 30), wave(90, 5), quality=0.9, spo2_floor=85.0
        )
        assert spo2 == 85.0

    def test_low_quality_gives_no_reading(self):
        spo2 = OxygenationEstimator().estimate(wave(128, 20), wave(90, 20), quality=0.3)
        assert spo2 == 0.0

    def test_insufficient_data(self):
        spo2 = OxygenationEstimator().estimate(wave(128, 20, n=30), wave(90, 20, n=30), quality=0.9)
        assert spo2 == 0.0

    def test_degenerate_components(self):
        est = OxygenationEstimator()
        assert est.estimate(wave(128, 20), np.full(300, 90.0), quality=0.9) == 0.0
        assert est.ratio_of_ratios(np.zeros(10), wave(90, 20, n=10)) == 0.0

    def test_output_set(self):
        rng = np.random.default_rng(3)
        est = OxygenationEstimator()
        for _ in range(50):
            red = 128 + rng.normal(0, rng.uniform(0.1, 30), 300)
            ir = 90 + rng.normal(0, rng.uniform(0.1, 30), 300)
            spo2 = est.estimate(red, ir, quality=rng.uniform(0, 1))
            assert spo2 == 0.0 or 75.0 <= spo2 <= 100.0
