"""
Composite signal-quality score.

The overall score is the *minimum* of three normalized sub-scores, so one
weak factor (e.g. motion noise under otherwise perfect pixel coverage)
cannot be hidden by the others.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np


class QualityReport(NamedTuple):
    snr: float = 0.0
    coverage: float = 0.0
    stability: float = 0.0

    @property
    def overall(self) -> float:
        return min(self.snr, self.coverage, self.stability)


def _clamp01(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


class QualityScorer:
    """Combine window SNR, ROI coverage and trailing stability."""

    def score(self, window: np.ndarray, coverage: float, stability: float) -> QualityReport:
        """
        Parameters
        ----------
        window:
            Analysis window (filtered red), oldest first.
        coverage:
            Accepted share of the ROI pixels (0 – 1).
        stability:
            Trailing stability from the extractor (0 – 1).
        """
        return QualityReport(
            snr=self.snr(window),
            coverage=_clamp01(coverage),
            stability=_clamp01(stability),
        )

    @staticmethod
    def snr(window: np.ndarray) -> float:
        """``|mean| / std`` clamped to [0, 1]; a noise-free window scores 1."""
        window = np.asarray(window, dtype=np.float64)
        if len(window) == 0:
            return 0.0
        mean = abs(float(window.mean()))
        std = float(window.std())
        if std == 0.0:
            return 1.0 if mean > 0.0 else 0.0
        return _clamp01(mean / std)
