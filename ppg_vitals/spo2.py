"""
Ratio-of-ratios SpO2 estimate from the red and infrared-proxy windows.

    R    = (AC_red / DC_red) / (AC_ir / DC_ir)
    SpO2 = 110 - 25 * R

with AC = max - min and DC = mean of each window.  This is an approximation:
the infrared channel is a green/blue proxy and the linear model is the
common empirical one, not a device calibration.
"""

from __future__ import annotations

import numpy as np

SPO2_MAX = 100.0
MODEL_INTERCEPT = 110.0
MODEL_SLOPE = 25.0


class OxygenationEstimator:
    """
    Parameters
    ----------
    intercept, slope:
        Coefficients of ``SpO2 = intercept - slope * R``.
    """

    def __init__(self, intercept: float = MODEL_INTERCEPT, slope: float = MODEL_SLOPE) -> None:
        self.intercept = intercept
        self.slope = slope

    def estimate(
        self,
        red: np.ndarray,
        infrared: np.ndarray,
        quality: float,
        quality_floor: float = 0.5,
        spo2_floor: float = 75.0,
        min_samples: int = 60,
    ) -> float:
        """
        Return SpO2 in ``[spo2_floor, 100]``, or 0.0 for "no reading".

        No reading is produced when the windows are shorter than
        *min_samples*, when *quality* is below *quality_floor*, or when
        any AC/DC component is degenerate.
        """
        if quality < quality_floor:
            return 0.0
        red = np.asarray(red, dtype=np.float64)
        infrared = np.asarray(infrared, dtype=np.float64)
        if len(red) < min_samples or len(infrared) < min_samples:
            return 0.0

        ratio = self.ratio_of_ratios(red, infrared)
        if ratio <= 0.0:
            return 0.0

        spo2 = self.intercept - self.slope * ratio
        return float(max(spo2_floor, min(SPO2_MAX, spo2)))

    @staticmethod
    def ratio_of_ratios(red: np.ndarray, infrared: np.ndarray) -> float:
        """``(AC_red/DC_red) / (AC_ir/DC_ir)``; 0.0 on any zero denominator."""
        dc_red = float(np.mean(red))
        dc_ir = float(np.mean(infrared))
        if dc_red == 0.0 or dc_ir == 0.0:
            return 0.0
        ac_red = float(np.max(red) - np.min(red))
        ac_ir = float(np.max(infrared) - np.min(infrared))
        if ac_ir == 0.0:
            return 0.0
        ratio = (ac_red / dc_red) / (ac_ir / dc_ir)
        return ratio if np.isfinite(ratio) else 0.0
