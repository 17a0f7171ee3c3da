"""
Heart-rate variability and arrhythmia screening from inter-beat intervals.

Time-domain metrics follow the usual definitions (SDNN, RMSSD, pNN50).
The LF/HF figure is a proxy: the handful of intervals in the peak history
is resampled onto an even 4 Hz grid and its Welch spectrum split into the
0.04 – 0.15 Hz and 0.15 – 0.4 Hz bands.

Arrhythmia is flagged when the coefficient of variation of the intervals
exceeds 0.2.  Only ``Normal`` / ``Irregular`` are distinguished.
"""

from __future__ import annotations

from typing import NamedTuple, Sequence

import numpy as np
from scipy.signal import welch

CV_THRESHOLD = 0.2
NN50_MS = 50.0
RESAMPLE_HZ = 4.0
LF_BAND = (0.04, 0.15)
HF_BAND = (0.15, 0.40)

NORMAL = "Normal"
IRREGULAR = "Irregular"


class HRVMetrics(NamedTuple):
    sdnn: float = 0.0
    rmssd: float = 0.0
    pnn50: float = 0.0  # fraction of successive differences above 50 ms
    lfhf: float = 0.0


class HRVResult(NamedTuple):
    metrics: HRVMetrics = HRVMetrics()
    coefficient_of_variation: float = 0.0
    has_arrhythmia: bool = False
    arrhythmia_type: str = NORMAL


class HRVAnalyzer:
    """
    Interval statistics and the binary arrhythmia rule.

    Parameters
    ----------
    min_intervals:
        Fewer intervals than this give an empty (``Normal``) result.
    cv_threshold:
        Coefficient of variation above which the rhythm is ``Irregular``.
    """

    def __init__(self, min_intervals: int = 3, cv_threshold: float = CV_THRESHOLD) -> None:
        self.min_intervals = min_intervals
        self.cv_threshold = cv_threshold

    def analyze(self, intervals_ms: Sequence[float]) -> HRVResult:
        rr = np.asarray([i for i in intervals_ms if i > 0], dtype=np.float64)
        if len(rr) < max(self.min_intervals, 2):
            return HRVResult()

        mean = float(rr.mean())
        sdnn = float(rr.std())
        cv = sdnn / mean if mean > 0 else 0.0

        diffs = np.diff(rr)
        rmssd = float(np.sqrt(np.mean(diffs ** 2)))
        pnn50 = float(np.mean(np.abs(diffs) > NN50_MS))

        irregular = cv > self.cv_threshold
        return HRVResult(
            metrics=HRVMetrics(sdnn=sdnn, rmssd=rmssd, pnn50=pnn50, lfhf=lf_hf_ratio(rr)),
            coefficient_of_variation=cv,
            has_arrhythmia=irregular,
            arrhythmia_type=IRREGULAR if irregular else NORMAL,
        )


def lf_hf_ratio(intervals_ms: np.ndarray) -> float:
    """
    Low-/high-frequency power ratio of an interval series.

    Returns 0.0 when the series is too short to resample or when there is no
    high-frequency power.
    """
    rr = np.asarray(intervals_ms, dtype=np.float64)
    if len(rr) < 3:
        return 0.0

    beat_times = np.cumsum(rr) / 1000.0
    grid = np.arange(beat_times[0], beat_times[-1], 1.0 / RESAMPLE_HZ)
    if len(grid) < 8:
        return 0.0

    resampled = np.interp(grid, beat_times, rr)
    resampled -= resampled.mean()
    freqs, power = welch(resampled, fs=RESAMPLE_HZ, nperseg=len(resampled))

    lf = float(power[(freqs >= LF_BAND[0]) & (freqs < LF_BAND[1])].sum())
    hf = float(power[(freqs >= HF_BAND[0]) & (freqs < HF_BAND[1])].sum())
    if hf <= 0.0 or not np.isfinite(lf / hf):
        return 0.0
    return lf / hf
