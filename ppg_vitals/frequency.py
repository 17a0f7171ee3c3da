"""
Frequency-domain heart-rate estimation.

Algorithm
---------
1. Remove the mean of the filtered red window and apply a Hann window.
2. Compute the real FFT; frequencies come from the frame rate.
3. Restrict the power spectrum to the physiological band (40 – 200 BPM);
   DC never falls inside it.
4. The dominant bin, refined by parabolic interpolation, gives the
   heart rate: ``bpm = f_dominant * 60``.

The result is cross-checked against the mean peak spacing, but the FFT
estimate is what the pipeline reports: a single missed or doubled peak does
not move it.
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

MIN_BPM = 40.0
MAX_BPM = 200.0


class SpectrumEstimate(NamedTuple):
    bpm: float = 0.0
    frequency_hz: float = 0.0
    confidence: float = 0.0  # dominant-bin power / total in-band power

    @property
    def is_valid(self) -> bool:
        return self.bpm > 0.0


class FrequencyAnalyzer:
    """
    Dominant-frequency heart-rate estimator.

    Parameters
    ----------
    fps:
        Frames-per-second of the sample stream.  Must match the real capture
        rate for an accurate BPM.
    bpm_low, bpm_high:
        Search band in BPM.
    """

    def __init__(
        self,
        fps: float = 30.0,
        bpm_low: float = MIN_BPM,
        bpm_high: float = MAX_BPM,
    ) -> None:
        self.fps = fps
        self.bpm_low = bpm_low
        self.bpm_high = bpm_high

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def estimate(self, signal: np.ndarray, min_samples: int = 60) -> SpectrumEstimate:
        """
        Return the dominant-frequency estimate for *signal*.

        Returns an empty estimate when there are fewer than *min_samples*
        values or the in-band spectrum is degenerate (all zero).
        """
        signal = np.asarray(signal, dtype=np.float64)
        if len(signal) < max(min_samples, 4):
            return SpectrumEstimate()

        freqs, power = self.spectrum(signal)
        band_mask = (freqs >= self.bpm_low / 60.0) & (freqs <= self.bpm_high / 60.0)
        if not band_mask.any():
            return SpectrumEstimate()

        band_power = power[band_mask]
        band_freqs = freqs[band_mask]
        total = float(band_power.sum())
        if total <= 0.0 or not np.isfinite(total):
            return SpectrumEstimate()

        peak_idx = int(np.argmax(band_power))
        peak_freq = float(band_freqs[peak_idx])

        # Parabolic interpolation for sub-bin frequency resolution
        if 0 < peak_idx < len(band_power) - 1:
            alpha = band_power[peak_idx - 1]
            beta = band_power[peak_idx]
            gamma = band_power[peak_idx + 1]
            denom = alpha - 2 * beta + gamma
            if denom != 0:
                p = 0.5 * (alpha - gamma) / denom
                freq_step = band_freqs[1] - band_freqs[0]
                peak_freq = float(band_freqs[peak_idx] + p * freq_step)

        confidence = float(band_power[peak_idx] / total)
        return SpectrumEstimate(
            bpm=peak_freq * 60.0,
            frequency_hz=peak_freq,
            confidence=confidence,
        )

    def spectrum(self, signal: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(frequencies_hz, power)`` of the detrended, windowed signal."""
        signal = np.asarray(signal, dtype=np.float64)
        n = len(signal)
        if n == 0:
            return np.array([]), np.array([])
        windowed = (signal - signal.mean()) * np.hanning(n)
        freqs = np.fft.rfftfreq(n, d=1.0 / self.fps)
        power = np.abs(np.fft.rfft(windowed)) ** 2
        return freqs, power

    def get_fft_data(self, signal: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Return the in-band spectrum (frequencies in BPM, power).
        Returns empty arrays if the signal is empty.
        """
        freqs, power = self.spectrum(signal)
        freqs_bpm = freqs * 60.0
        band_mask = (freqs_bpm >= self.bpm_low) & (freqs_bpm <= self.bpm_high)
        return freqs_bpm[band_mask], power[band_mask]


def bpm_from_intervals(intervals_ms: Sequence[float]) -> float:
    """Mean-spacing heart rate; 0.0 when there are no positive intervals."""
    valid = [i for i in intervals_ms if i > 0]
    if not valid:
        return 0.0
    return 60000.0 / float(np.mean(valid))
