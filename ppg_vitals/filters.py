"""
Adaptive filter stage: low-pass smoothing and baseline normalization.

The low-pass is a symmetric moving average whose half-width scales with the
``noise_reduction`` setting.  Normalization tracks the slow baseline with an
exponential average and divides by it, which keeps the pulse amplitude
comparable across different ambient brightness levels.
"""

from __future__ import annotations

import numpy as np

BASE_HALF_WIDTH = 5
DISPLAY_AMPLITUDE = 100.0


def moving_average(signal: np.ndarray, half_width: int) -> np.ndarray:
    """
    Symmetric moving average over ``[i - half_width, i + half_width]``.

    Near the ends the window is truncated to the samples that exist, so the
    output has the same length as the input and no padding bias.
    """
    signal = np.asarray(signal, dtype=np.float64)
    n = len(signal)
    if n == 0 or half_width < 1:
        return signal.copy()
    csum = np.concatenate(([0.0], np.cumsum(signal)))
    idx = np.arange(n)
    lo = np.maximum(idx - half_width, 0)
    hi = np.minimum(idx + half_width + 1, n)
    return (csum[hi] - csum[lo]) / (hi - lo)


class BaselineNormalizer:
    """
    Exponential baseline tracker.

    ``baseline <- (1 - alpha) * baseline + alpha * value``; the output is
    ``(value - baseline) * scale / max(|baseline|, 1)``.
    """

    def __init__(self, alpha: float = 0.05) -> None:
        self.alpha = alpha
        self._baseline: float | None = None

    def update(self, value: float, scale: float = DISPLAY_AMPLITUDE) -> float:
        if self._baseline is None:
            self._baseline = value
        else:
            self._baseline = (1.0 - self.alpha) * self._baseline + self.alpha * value
        return (value - self._baseline) * scale / max(abs(self._baseline), 1.0)

    @property
    def baseline(self) -> float:
        return self._baseline if self._baseline is not None else 0.0

    def reset(self) -> None:
        self._baseline = None


class AdaptiveFilterStage:
    """Filter the raw red window and normalize its newest value."""

    def __init__(self, alpha: float = 0.05) -> None:
        self._normalizer = BaselineNormalizer(alpha)

    def process(
        self,
        raw_red: np.ndarray,
        noise_reduction: float = 1.0,
        amplification: float = 1.0,
    ) -> tuple[np.ndarray, float]:
        """
        Return ``(filtered_window, normalized_latest)``.

        Parameters
        ----------
        raw_red:
            Raw (Kalman-smoothed) red window, oldest first.  Must be non-empty.
        noise_reduction:
            Multiplier of the base moving-average half-width.
        amplification:
            Multiplier of the fixed display amplitude.
        """
        filtered = self.lowpass(raw_red, noise_reduction)
        normalized = self._normalizer.update(
            float(filtered[-1]), scale=DISPLAY_AMPLITUDE * amplification
        )
        return filtered, normalized

    @staticmethod
    def lowpass(raw_red: np.ndarray, noise_reduction: float = 1.0) -> np.ndarray:
        """Moving average with half-width ``round(5 * noise_reduction)`` (at least 1)."""
        half_width = max(1, int(round(BASE_HALF_WIDTH * noise_reduction)))
        return moving_average(raw_red, half_width)

    @property
    def baseline(self) -> float:
        return self._normalizer.baseline

    def reset(self) -> None:
        self._normalizer.reset()
