from __future__ import annotations

import numpy as np
import pytest

from ppg_vitals.frequency import FrequencyAnalyzer, bpm_from_intervals


def sine(freq_hz: float, n: int = 300, fps: float = 30.0, mean: float = 128.0, amp: float = 20.0):
    t = np.arange(n) / fps
    return mean + amp * np.sin(2 * np.pi * freq_hz * t)


class TestFrequencyAnalyzer:

    def test_dominant_frequency_72_bpm(self):
        est = FrequencyAnalyzer(fps=30.0).estimate(sine(1.2))
        assert est.is_valid
        assert abs(est.frequency_hz - 1.2) <= 0.1, f"Expected ~1.2 Hz, got {est.frequency_hz:.3f}"
        assert abs(est.bpm - 72.0) <= 6.0
        assert est.confidence > 0.5

    @pytest.mark.parametrize("bpm", [50.0, 90.0, 150.0])
    def test_other_rates(self, bpm):
        est = FrequencyAnalyzer(fps=30.0).estimate(sine(bpm / 60.0, n=450))
        assert abs(est.bpm - bpm) < 5.0, f"Expected ~{bpm} BPM, got {est.bpm:.1f}"

    def test_too_few_samples(self):
        est = FrequencyAnalyzer().estimate(sine(1.2, n=30), min_samples=60)
        assert not est.is_valid
        assert est.bpm == 0.0

    def test_flat_signal_is_degenerate(self):
        est = FrequencyAnalyzer().estimate(np.full(300, 128.0))
        assert not est.is_valid

    def test_fft_data_in_band(self):
        freqs, power = FrequencyAnalyzer(fps=30.0).get_fft_data(sine(1.2))
        assert len(freqs) == len(power) > 0
        assert freqs.min() >= 40.0
        assert freqs.max() <= 200.0

    def test_fft_data_empty_signal(self):
        freqs, power = FrequencyAnalyzer().get_fft_data(np.array([]))
        assert len(freqs) == 0 and len(power) == 0


class TestBpmFromIntervals:

    def test_mean_spacing(self):
        assert bpm_from_intervals([1000.0, 1000.0]) == pytest.approx(60.0)
        assert bpm_from_intervals([800.0, 900.0, 700.0]) == pytest.approx(75.0)

    def test_empty_or_invalid(self):
        assert bpm_from_intervals([]) == 0.0
        assert bpm_from_intervals([0.0, -5.0]) == 0.0
