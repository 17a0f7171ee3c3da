"""
PPG vitals pipeline.

Algorithm
---------
One call to ``SignalProcessor.process`` per camera frame:

1. Reduce the centred ROI to a red and an infrared-proxy scalar, gating
   out frames that do not look like a fingertip over the flash.
2. Push both into rolling windows; low-pass the red window and normalize
   its newest value against a slow baseline.
3. Feed the normalized value to the adaptive peak detector.
4. Estimate heart rate from the dominant frequency of the filtered window;
   peak spacing drives HRV, arrhythmia screening and the cross-check.
5. Estimate SpO2 (ratio of ratios) and blood pressure (pulse morphology).
6. Score signal quality and assemble an immutable ``VitalsSnapshot``.

A rejected frame, or one whose composite quality falls below the configured
floor, is "no finger": every window is cleared and the all-zero snapshot is
returned.  Side effects (beep, persistence, adapter training) are returned
as descriptors and never executed here.

References
----------
- Allen J., "Photoplethysmography and its application in clinical
  physiological measurement." Physiol Meas, 2007.
- Webster J. G., "Design of Pulse Oximeters." 1997.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple

import numpy as np

from ppg_vitals.adapter import ParameterAdapter
from ppg_vitals.blood_pressure import CalibrationProfile, PressureEstimator
from ppg_vitals.channel_extractor import ChannelExtractor
from ppg_vitals.config import ConfigHolder, ProcessingConfig
from ppg_vitals.effects import AdaptParameters, NotifyPeak, RecordSnapshot
from ppg_vitals.filters import AdaptiveFilterStage
from ppg_vitals.frequency import MAX_BPM, MIN_BPM, FrequencyAnalyzer, bpm_from_intervals
from ppg_vitals.hrv import HRVAnalyzer
from ppg_vitals.peak_detector import PeakDetector, PeakEvent
from ppg_vitals.quality import QualityScorer
from ppg_vitals.ring_buffer import RingBuffer
from ppg_vitals.snapshot import FrameResult, Reading, VitalsSnapshot, empty_snapshot
from ppg_vitals.spo2 import OxygenationEstimator

logger = logging.getLogger(__name__)


def _in_bpm_range(bpm: float) -> bool:
    return MIN_BPM <= bpm <= MAX_BPM


class SignalProcessor:
    """
    Stateful per-session PPG pipeline.

    The instance owns every window and all adaptive state.  It is not
    reentrant: the caller delivers frames one at a time, in order.

    Parameters
    ----------
    fps:
        Frames-per-second of the incoming video stream.  Must match the
        camera's actual capture rate for accurate BPM computation; also
        drives the sample clock when no timestamps are supplied.
    window_size:
        Length of the raw / filtered analysis windows in samples
        (300 = 10 s at 30 fps).
    config:
        Initial thresholds.  Defaults to ``ProcessingConfig()``.
    calibration:
        Optional per-user blood-pressure profile; None selects the
        population model.
    quality_history:
        Number of recent quality scores averaged into ``signal_quality``.
    """

    def __init__(
        self,
        fps: float = 30.0,
        window_size: int = 300,
        config: ProcessingConfig | None = None,
        calibration: CalibrationProfile | None = None,
        quality_history: int = 60,
    ) -> None:
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        self.fps = fps
        self.window_size = window_size

        self._holder = ConfigHolder(config)
        self.adapter = ParameterAdapter(self._holder)

        self._extractor = ChannelExtractor()
        self._filter = AdaptiveFilterStage()
        self._peaks = PeakDetector()
        self._frequency = FrequencyAnalyzer(fps=fps)
        self._hrv = HRVAnalyzer()
        self._oxygen = OxygenationEstimator()
        self._pressure = PressureEstimator(calibration)
        self._quality = QualityScorer()

        self._raw_red: RingBuffer[float] = RingBuffer(window_size)
        self._raw_ir: RingBuffer[float] = RingBuffer(window_size)
        self._readings: RingBuffer[Reading] = RingBuffer(window_size)
        self._quality_history: RingBuffer[float] = RingBuffer(quality_history)

        self._frame_index = 0
        self._last_valid_bpm = 0.0
        self._last_snapshot: VitalsSnapshot = empty_snapshot()

        logger.info(
            "SignalProcessor ready (fps=%.1f, window=%d, calibrated=%s)",
            fps, window_size, self._pressure.is_calibrated,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, frame: np.ndarray, timestamp_ms: float | None = None) -> FrameResult:
        """
        Run the whole pipeline on one frame.

        Parameters
        ----------
        frame:
            BGR image array (H × W × C, C >= 3, uint8).
        timestamp_ms:
            Capture time in milliseconds.  Defaults to the sample clock
            ``frame_index * 1000 / fps``.

        Returns
        -------
        FrameResult
            The snapshot for this frame and the effects to dispatch.

        Raises
        ------
        ValueError
            If *frame* is not a 3-D array with at least three channels.
        """
        frame = np.asarray(frame)
        if frame.ndim != 3 or frame.shape[2] < 3:
            raise ValueError(f"Expected an H x W x C frame with C >= 3, got shape {frame.shape}")

        # One read per frame: an adapter update lands on the next frame.
        config = self._holder.current
        index = self._frame_index
        self._frame_index += 1
        timestamp = float(timestamp_ms) if timestamp_ms is not None else index * 1000.0 / self.fps

        sample = self._extractor.extract(frame, config)
        if not sample.finger_present:
            return self._no_finger(timestamp, index)

        self._raw_red.push(sample.red)
        self._raw_ir.push(sample.infrared)
        raw_red = self._raw_red.to_array()

        filtered, normalized = self._filter.process(
            raw_red, config.noise_reduction, config.signal_amplification
        )

        report = self._quality.score(filtered, sample.coverage, sample.stability)
        quality = report.overall
        if quality <= 0.0 or quality < config.min_signal_quality:
            logger.debug("Quality %.2f below floor %.2f", quality, config.min_signal_quality)
            return self._no_finger(timestamp, index)
        self._quality_history.push(quality)

        self._readings.push(Reading(timestamp, normalized))
        peak = self._peaks.update(
            normalized,
            timestamp,
            index,
            threshold_factor=config.peak_threshold_factor,
            min_peak_distance_ms=config.min_peak_distance_ms,
        )

        spectrum = self._frequency.estimate(filtered, min_samples=config.min_frames)
        if spectrum.is_valid and _in_bpm_range(spectrum.bpm):
            self._last_valid_bpm = spectrum.bpm
            bpm = spectrum.bpm
            spectral_confidence = spectrum.confidence
        else:
            bpm = self._last_valid_bpm
            spectral_confidence = 0.0

        intervals = self._peaks.intervals_ms(config.max_peak_distance_ms)
        rhythm = self._hrv.analyze(intervals)
        peak_bpm = bpm_from_intervals(intervals)
        if not _in_bpm_range(peak_bpm):
            peak_bpm = 0.0

        pressure = self._pressure.estimate(filtered, intervals, min_samples=config.min_frames)
        spo2 = self._oxygen.estimate(
            self._raw_red.to_array(),
            self._raw_ir.to_array(),
            quality,
            quality_floor=config.spo2_quality_floor,
            spo2_floor=config.spo2_floor,
            min_samples=config.min_frames,
        )

        signal_quality = float(np.mean(self._quality_history.to_array()))
        snapshot = VitalsSnapshot(
            bpm=float(bpm),
            spo2=spo2,
            systolic=pressure.systolic,
            diastolic=pressure.diastolic,
            has_arrhythmia=rhythm.has_arrhythmia,
            arrhythmia_type=rhythm.arrhythmia_type,
            signal_quality=signal_quality,
            confidence=quality * spectral_confidence,
            is_peak=peak is not None,
            hrv_metrics=rhythm.metrics,
            readings=tuple(self._readings),
            timestamp=timestamp,
            frame_index=index,
            peak_bpm=peak_bpm,
            perfusion_index=sample.perfusion_index,
            finger_present=True,
        )
        self._last_snapshot = snapshot
        return FrameResult(snapshot, self._effects_for(snapshot, peak, quality, config))

    def update_config(self, **changes: Any) -> ProcessingConfig:
        """
        Validate and publish threshold *changes*; applied from the next frame.

        Raises ``ConfigError`` for unknown fields or out-of-bounds values.
        """
        new_config = self._holder.update(**changes)
        logger.info("Configuration updated: %s", changes)
        return new_config

    def set_calibration(self, calibration: CalibrationProfile | None) -> None:
        """Switch the blood-pressure model (None = population default)."""
        self._pressure.calibration = calibration
        self._pressure.reset()
        logger.info("Blood-pressure calibration %s", "set" if calibration else "cleared")

    def reset(self) -> None:
        """Clear all windows and adaptive state; configuration is kept."""
        self._extractor.reset()
        self._filter.reset()
        self._peaks.reset()
        self._pressure.reset()
        self._raw_red.clear()
        self._raw_ir.clear()
        self._readings.clear()
        self._quality_history.clear()
        self._last_valid_bpm = 0.0
        self.adapter.reset()

    @property
    def config(self) -> ProcessingConfig:
        return self._holder.current

    @property
    def config_holder(self) -> ConfigHolder:
        return self._holder

    @property
    def calibration(self) -> Optional[CalibrationProfile]:
        return self._pressure.calibration

    @property
    def readings(self) -> List[Reading]:
        return list(self._readings)

    @property
    def peak_events(self) -> List[PeakEvent]:
        return self._peaks.peaks

    @property
    def buffer_fill_ratio(self) -> float:
        """How full the raw window is (0 – 1)."""
        return self._raw_red.fill_ratio

    @property
    def last_snapshot(self) -> VitalsSnapshot:
        return self._last_snapshot

    @property
    def frame_count(self) -> int:
        return self._frame_index

    def get_fft_data(self) -> Tuple[np.ndarray, np.ndarray]:
        """In-band spectrum of the current filtered window (BPM, power)."""
        if len(self._raw_red) == 0:
            return np.array([]), np.array([])
        filtered = self._filter.lowpass(self._raw_red.to_array(), self.config.noise_reduction)
        return self._frequency.get_fft_data(filtered)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _no_finger(self, timestamp: float, index: int) -> FrameResult:
        if self._raw_red or self._peaks.peaks:
            logger.info("Finger lost at frame %d, resetting signal state", index)
        self.reset()
        self._last_snapshot = empty_snapshot(timestamp, index)
        return FrameResult(self._last_snapshot)

    def _effects_for(
        self,
        snapshot: VitalsSnapshot,
        peak: Optional[PeakEvent],
        quality: float,
        config: ProcessingConfig,
    ) -> Tuple[Any, ...]:
        effects: List[Any] = []
        if peak is not None:
            effects.append(NotifyPeak(quality))
        effects.append(RecordSnapshot(snapshot))
        if self.adapter.should_sample(snapshot.frame_index):
            effects.append(
                AdaptParameters(
                    self.adapter.make_sample(snapshot.bpm, snapshot.spo2, quality, config)
                )
            )
        return tuple(effects)
