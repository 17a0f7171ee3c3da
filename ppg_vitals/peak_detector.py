"""
Adaptive-threshold beat detection on the normalized PPG stream.

A sample is only known to be a peak once the following sample has been seen
(the waveform has to turn down), so each call evaluates the *previous*
sample as the candidate.  The candidate is accepted when all of these hold:

1. Refractory gate: at least ``min_peak_distance_ms`` since the last peak.
2. Local maximum: it exceeds its two immediate predecessors.
3. Adaptive threshold: it exceeds
   ``max(recent_mean * peak_threshold_factor, adaptive_threshold * 0.7)``.
4. Shape: over the last four samples the slope is positive into the
   candidate and negative after it, and the rise above the window minimum
   exceeds ``0.3 * adaptive_threshold``.

``adaptive_threshold`` follows accepted peaks with a slow exponential update.
"""

from __future__ import annotations

import logging
from typing import List, NamedTuple, Optional

import numpy as np

from ppg_vitals.ring_buffer import RingBuffer

logger = logging.getLogger(__name__)


class PeakEvent(NamedTuple):
    timestamp: float  # ms
    index: int        # frame index of the peak sample
    value: float = 0.0
    amplitude: float = 0.0  # peak minus the valley since the previous peak


class PeakDetector:
    """
    Streaming peak detector with bounded peak history.

    Parameters
    ----------
    buffer_size:
        Length of the sliding buffer of normalized values.
    history_size:
        Number of most recent accepted peaks kept.
    mean_window:
        Number of trailing samples averaged for the recent-mean threshold.
    """

    THRESHOLD_DECAY = 0.95
    THRESHOLD_FLOOR_FACTOR = 0.7
    MIN_AMPLITUDE_FACTOR = 0.3

    def __init__(
        self,
        buffer_size: int = 30,
        history_size: int = 10,
        mean_window: int = 5,
    ) -> None:
        self.mean_window = mean_window
        self._values: RingBuffer[float] = RingBuffer(buffer_size)
        self._times: RingBuffer[float] = RingBuffer(buffer_size)
        self._indices: RingBuffer[int] = RingBuffer(buffer_size)
        self._peaks: RingBuffer[PeakEvent] = RingBuffer(history_size)
        self._adaptive_threshold = 0.0
        self._valley: Optional[float] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def update(
        self,
        value: float,
        timestamp_ms: float,
        index: int,
        threshold_factor: float = 0.6,
        min_peak_distance_ms: float = 500.0,
    ) -> Optional[PeakEvent]:
        """
        Push one normalized sample.  Returns the accepted ``PeakEvent`` or None.
        """
        self._values.push(value)
        self._times.push(timestamp_ms)
        self._indices.push(index)

        peak = self._evaluate_candidate(threshold_factor, min_peak_distance_ms)

        if peak is None:
            if self._valley is None or value < self._valley:
                self._valley = value
            return None

        self._adaptive_threshold = (
            self.THRESHOLD_DECAY * self._adaptive_threshold
            + (1.0 - self.THRESHOLD_DECAY) * peak.value
        )
        self._peaks.push(peak)
        # The sample after the peak starts the next valley search.
        self._valley = value
        logger.debug("Peak at %.0f ms (value=%.2f)", peak.timestamp, peak.value)
        return peak

    def intervals_ms(self, max_interval_ms: float | None = None) -> List[float]:
        """Successive differences of the recorded peak times."""
        times = [p.timestamp for p in self._peaks]
        intervals = [b - a for a, b in zip(times, times[1:])]
        if max_interval_ms is not None:
            intervals = [i for i in intervals if i <= max_interval_ms]
        return intervals

    def reset(self) -> None:
        self._values.clear()
        self._times.clear()
        self._indices.clear()
        self._peaks.clear()
        self._adaptive_threshold = 0.0
        self._valley = None

    @property
    def peaks(self) -> List[PeakEvent]:
        return list(self._peaks)

    @property
    def adaptive_threshold(self) -> float:
        return self._adaptive_threshold

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _evaluate_candidate(
        self, threshold_factor: float, min_peak_distance_ms: float
    ) -> Optional[PeakEvent]:
        if len(self._values) < 4:
            return None

        candidate = self._values[-2]
        candidate_time = self._times[-2]

        if self._peaks and candidate_time - self._peaks[-1].timestamp < min_peak_distance_ms:
            return None

        if not (candidate > self._values[-3] and candidate > self._values[-4]):
            return None

        recent_mean = float(np.mean(self._values.tail(self.mean_window)))
        threshold = max(
            recent_mean * threshold_factor,
            self._adaptive_threshold * self.THRESHOLD_FLOOR_FACTOR,
        )
        if candidate <= threshold:
            return None

        window = self._values.tail(4)
        rising = window[2] - window[1] > 0
        falling = window[3] - window[2] < 0
        if not (rising and falling):
            return None
        if candidate - min(window) <= self.MIN_AMPLITUDE_FACTOR * self._adaptive_threshold:
            return None

        valley = self._valley if self._valley is not None else min(window)
        return PeakEvent(
            timestamp=candidate_time,
            index=self._indices[-2],
            value=candidate,
            amplitude=candidate - valley,
        )
