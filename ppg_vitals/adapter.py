"""
Background re-tuning of the detection thresholds.

Every ``interval_frames`` frames the pipeline hands over one
``TrainingSample``: the outcome triple ``(bpm, spo2, quality)`` together
with the thresholds that outcome calls for (``outcome_targets``):

* ``min_peak_distance_ms`` follows half the beat period, so the refractory
  gate tracks the wearer's heart rate;
* ``peak_threshold_factor`` tightens as quality drops and relaxes on a
  clean signal;
* the extractor thresholds carry over unchanged.

The adapter keeps the last 100 plausible samples, fits a small regression
from outcomes to targets (weighted by quality) and evaluates it at the
median recent outcome.  Each proposed value is applied only if it is
finite, inside its safe range and at least ``MIN_RELATIVE_STEP`` away from
the current value; everything else is left untouched.

The adapter runs off the frame-processing path.  It publishes through
``ConfigHolder.update``, so a frame sees either the old or the new set.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import deque
from typing import Deque, Dict, NamedTuple, Optional, Protocol, Sequence

import numpy as np

from ppg_vitals.config import SAFE_BOUNDS, ConfigError, ConfigHolder, ProcessingConfig

logger = logging.getLogger(__name__)

REFRACTORY_FRACTION = 0.5        # of the beat period
PEAK_FACTOR_AT_ZERO_QUALITY = 0.9
PEAK_FACTOR_QUALITY_SLOPE = 0.5  # factor = 0.9 - 0.5 * quality
MIN_RELATIVE_STEP = 0.02


class ThresholdSet(NamedTuple):
    """The thresholds the adapter is allowed to tune."""

    red_dominance_ratio: float
    min_valid_pixel_ratio: float
    peak_threshold_factor: float
    min_peak_distance_ms: float

    @classmethod
    def from_config(cls, config: ProcessingConfig) -> "ThresholdSet":
        return cls(*(float(getattr(config, name)) for name in cls._fields))


class TrainingSample(NamedTuple):
    bpm: float
    spo2: float
    quality: float
    target: ThresholdSet

    @property
    def features(self) -> np.ndarray:
        return np.array([self.bpm, self.spo2, self.quality], dtype=np.float64)


def _clip_to_bounds(name: str, value: float) -> float:
    low, high = SAFE_BOUNDS[name]
    return float(min(high, max(low, value)))


def outcome_targets(bpm: float, quality: float, config: ProcessingConfig) -> ThresholdSet:
    """
    Thresholds suggested by one outcome, clipped to ``SAFE_BOUNDS``.

    A non-finite or non-positive *bpm* (or non-finite *quality*) keeps the
    corresponding current value.
    """
    if math.isfinite(bpm) and bpm > 0:
        distance = _clip_to_bounds(
            "min_peak_distance_ms", REFRACTORY_FRACTION * 60000.0 / bpm
        )
    else:
        distance = float(config.min_peak_distance_ms)

    if math.isfinite(quality):
        q = min(1.0, max(0.0, quality))
        factor = _clip_to_bounds(
            "peak_threshold_factor",
            PEAK_FACTOR_AT_ZERO_QUALITY - PEAK_FACTOR_QUALITY_SLOPE * q,
        )
    else:
        factor = float(config.peak_threshold_factor)

    return ThresholdSet(
        red_dominance_ratio=float(config.red_dominance_ratio),
        min_valid_pixel_ratio=float(config.min_valid_pixel_ratio),
        peak_threshold_factor=factor,
        min_peak_distance_ms=distance,
    )


class ThresholdModel(Protocol):
    """Pluggable regression: outcome features -> threshold values."""

    def fit(self, samples: Sequence[TrainingSample]) -> np.ndarray: ...

    def predict(self, features: np.ndarray) -> Optional[ThresholdSet]: ...


class LinearThresholdModel:
    """
    Quality-weighted least squares with an intercept.

    ``fit`` returns the coefficient matrix (4 × n_thresholds); ``predict``
    returns None until the model has been fitted.
    """

    def __init__(self) -> None:
        self.coefficients: Optional[np.ndarray] = None

    def fit(self, samples: Sequence[TrainingSample]) -> np.ndarray:
        if not samples:
            raise ValueError("Cannot fit on an empty sample set")
        x = np.array([s.features for s in samples])
        y = np.array([s.target for s in samples], dtype=np.float64)
        weights = np.sqrt(np.clip([s.quality for s in samples], 1e-3, None))
        design = np.column_stack([np.ones(len(x)), x]) * weights[:, None]
        coefficients, *_ = np.linalg.lstsq(design, y * weights[:, None], rcond=None)
        self.coefficients = coefficients
        return coefficients

    def predict(self, features: np.ndarray) -> Optional[ThresholdSet]:
        if self.coefficients is None:
            return None
        row = np.concatenate(([1.0], np.asarray(features, dtype=np.float64)))
        return ThresholdSet(*(float(v) for v in row @ self.coefficients))


class ParameterAdapter:
    """
    Parameters
    ----------
    holder:
        Config publication point shared with the pipeline.
    model:
        Regression strategy (``LinearThresholdModel`` by default).
    interval_frames:
        How often the pipeline should submit a sample.
    history_size:
        Maximum number of retained samples (FIFO eviction).
    min_samples:
        Samples required before the first fit.
    """

    BPM_RANGE = (40.0, 200.0)
    SPO2_RANGE = (75.0, 100.0)

    def __init__(
        self,
        holder: ConfigHolder,
        model: ThresholdModel | None = None,
        interval_frames: int = 30,
        history_size: int = 100,
        min_samples: int = 20,
    ) -> None:
        self.holder = holder
        self.model: ThresholdModel = model or LinearThresholdModel()
        self.interval_frames = interval_frames
        self.min_samples = min_samples
        self._history: Deque[TrainingSample] = deque(maxlen=history_size)
        self._lock = threading.Lock()
        self.applied_updates = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def should_sample(self, frame_index: int) -> bool:
        return frame_index > 0 and frame_index % self.interval_frames == 0

    def make_sample(
        self, bpm: float, spo2: float, quality: float, config: ProcessingConfig
    ) -> TrainingSample:
        return TrainingSample(bpm, spo2, quality, outcome_targets(bpm, quality, config))

    def observe(self, sample: TrainingSample) -> Dict[str, float]:
        """
        Record *sample* and, once enough history exists, retrain and apply.

        Returns the threshold changes that were published (empty if none).
        """
        if not self.is_plausible(sample):
            logger.debug("Discarding implausible training sample %s", sample)
            return {}
        with self._lock:
            self._history.append(sample)
            enough = len(self._history) >= self.min_samples
        if not enough:
            return {}
        return self.retrain()

    def retrain(self) -> Dict[str, float]:
        with self._lock:
            samples = list(self._history)
        if not samples:
            return {}
        self.model.fit(samples)
        features = np.array([
            float(np.median([s.bpm for s in samples])),
            float(np.median([s.spo2 for s in samples])),
            float(np.median([s.quality for s in samples])),
        ])
        proposal = self.model.predict(features)
        if proposal is None:
            return {}

        current = self.holder.current
        changes: Dict[str, float] = {}
        for name, value in proposal._asdict().items():
            if not math.isfinite(value):
                logger.warning("Discarding non-finite prediction for %s", name)
                continue
            low, high = SAFE_BOUNDS[name]
            if not low <= value <= high:
                logger.debug("Prediction %s=%.3f outside safe range", name, value)
                continue
            if not math.isclose(value, getattr(current, name), rel_tol=MIN_RELATIVE_STEP):
                changes[name] = value

        if not changes:
            return {}
        try:
            self.holder.update(**changes)
        except ConfigError as exc:
            # Individually safe values can still conflict with each other.
            logger.warning("Adapter proposal rejected: %s", exc)
            return {}
        self.applied_updates += 1
        logger.info("Adapter applied thresholds: %s", changes)
        return changes

    def is_plausible(self, sample: TrainingSample) -> bool:
        values = (sample.bpm, sample.spo2, sample.quality)
        if not all(math.isfinite(v) for v in values):
            return False
        return (
            self.BPM_RANGE[0] <= sample.bpm <= self.BPM_RANGE[1]
            and self.SPO2_RANGE[0] <= sample.spo2 <= self.SPO2_RANGE[1]
            and 0.0 < sample.quality <= 1.0
        )

    def reset(self) -> None:
        with self._lock:
            self._history.clear()

    @property
    def history(self) -> list[TrainingSample]:
        with self._lock:
            return list(self._history)
