"""
Region-of-interest channel extraction and finger-presence gating.

When a fingertip covers the lens and the flash, the frame becomes:
  - Dominated by red (light transmitted through blood-perfused tissue).
  - Free of saturated or near-black pixels over most of the centre.

Each frame is reduced to one red and one infrared-proxy scalar by averaging
the accepted pixels of a centred square ROI.  The infrared proxy is the mean
of green and blue, since a phone or Pi camera has no IR channel.  Frames
that do not look like a finger yield an empty ``ChannelSample``; that is an
expected operating condition, not an error.
"""

from __future__ import annotations

import logging
import math
from typing import NamedTuple, Tuple

import numpy as np

from ppg_vitals.config import ProcessingConfig
from ppg_vitals.ring_buffer import RingBuffer

logger = logging.getLogger(__name__)


class ChannelSample(NamedTuple):
    """One frame reduced to scalars.  ``quality == 0`` means "no finger"."""

    red: float = 0.0
    infrared: float = 0.0
    quality: float = 0.0
    coverage: float = 0.0
    stability: float = 0.0
    perfusion_index: float = 0.0

    @property
    def finger_present(self) -> bool:
        return self.quality > 0.0


EMPTY_SAMPLE = ChannelSample()


class KalmanFilter1D:
    """
    Scalar Kalman filter for a slowly varying level.

    Parameters
    ----------
    process_noise:
        Variance added to the estimate each step (``q``).
    measurement_noise:
        Variance of a single measurement (``r``).  Keeping ``q`` well below
        ``r`` suppresses frame-level shot noise while following the pulse.
    """

    def __init__(self, process_noise: float = 0.1, measurement_noise: float = 0.8) -> None:
        self.q = process_noise
        self.r = measurement_noise
        self.reset()

    def update(self, measurement: float) -> float:
        if self.estimate is None:
            # Seed with the first measurement instead of ramping up from 0.
            self.estimate = measurement
            return measurement
        self.variance += self.q
        self.gain = self.variance / (self.variance + self.r)
        self.estimate += self.gain * (measurement - self.estimate)
        self.variance *= 1.0 - self.gain
        return self.estimate

    def reset(self) -> None:
        self.estimate: float | None = None
        self.variance = 1.0
        self.gain = 0.0


class ChannelExtractor:
    """
    Reduce BGR frames to smoothed red / infrared samples.

    Parameters
    ----------
    stability_window:
        Number of trailing smoothed red values used for the stability score.
    process_noise, measurement_noise:
        Kalman parameters shared by the red and infrared filters.
    """

    def __init__(
        self,
        stability_window: int = 10,
        process_noise: float = 0.1,
        measurement_noise: float = 0.8,
    ) -> None:
        self._red_filter = KalmanFilter1D(process_noise, measurement_noise)
        self._ir_filter = KalmanFilter1D(process_noise, measurement_noise)
        self._recent_red: RingBuffer[float] = RingBuffer(stability_window)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract(self, frame: np.ndarray, config: ProcessingConfig) -> ChannelSample:
        """
        Sample the centred ROI of *frame* and apply the finger gate.

        Parameters
        ----------
        frame:
            BGR image array (H × W × C, C >= 3).  Extra channels are ignored.
        config:
            Thresholds for this frame.
        """
        roi = self.roi(frame, int(config.roi_half_size))
        red = roi[:, :, 2].astype(np.float64)
        green = roi[:, :, 1].astype(np.float64)
        blue = roi[:, :, 0].astype(np.float64)

        total = red.size
        valid = (red > config.min_red_intensity) & (red < config.max_red_intensity)
        count = int(valid.sum())
        coverage = count / total if total else 0.0

        if count == 0 or coverage < config.min_valid_pixel_ratio:
            logger.debug("Too few valid pixels: %d / %d", count, total)
            return EMPTY_SAMPLE

        valid_red = red[valid]
        mean_red = float(valid_red.mean())
        mean_ir = float(((green[valid] + blue[valid]) / 2.0).mean())

        dominance = mean_red / mean_ir if mean_ir > 0 else math.inf
        if dominance < config.red_dominance_ratio:
            logger.debug("Red channel not dominant: %.2f", dominance)
            return EMPTY_SAMPLE

        smoothed_red = self._red_filter.update(mean_red)
        smoothed_ir = self._ir_filter.update(mean_ir)

        stability = self._update_stability(smoothed_red)
        max_red = float(valid_red.max())
        perfusion = (max_red - float(valid_red.min())) / max_red * 100.0

        return ChannelSample(
            red=smoothed_red,
            infrared=smoothed_ir,
            quality=min(coverage, stability),
            coverage=coverage,
            stability=stability,
            perfusion_index=perfusion,
        )

    def reset(self) -> None:
        """Drop filter state and the stability window."""
        self._red_filter.reset()
        self._ir_filter.reset()
        self._recent_red.clear()

    @staticmethod
    def roi(frame: np.ndarray, half_size: int) -> np.ndarray:
        """Return the centred square of side ``2 * half_size`` (clipped to the frame)."""
        if frame.ndim != 3 or frame.shape[2] < 3:
            raise ValueError(f"Expected an H x W x C frame with C >= 3, got shape {frame.shape}")
        y0, y1, x0, x1 = roi_bounds(frame.shape[:2], half_size)
        return frame[y0:y1, x0:x1]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _update_stability(self, value: float) -> float:
        """``1 - std/mean`` over the trailing window (1.0 until measurable)."""
        self._recent_red.push(value)
        if len(self._recent_red) < 2:
            return 1.0
        window = self._recent_red.to_array()
        mean = float(window.mean())
        if mean <= 0:
            return 0.0
        return 1.0 - min(1.0, float(window.std()) / mean)


def roi_bounds(shape: Tuple[int, int], half_size: int) -> Tuple[int, int, int, int]:
    """(y0, y1, x0, x1) of the centred ROI for a frame of ``(height, width)``."""
    height, width = shape
    cy, cx = height // 2, width // 2
    y0, y1 = max(0, cy - half_size), min(height, cy + half_size)
    x0, x1 = max(0, cx - half_size), min(width, cx + half_size)
    return y0, y1, x0, x1
