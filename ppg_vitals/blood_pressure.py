"""
Morphology-based blood-pressure estimate.

Three features are taken from the filtered red window and the peak spacing:

* ``perfusion_index`` – pulsatile amplitude relative to the mean level (%).
* ``heart_rate`` – BPM from the mean inter-peak interval.
* ``duty_cycle`` – share of the window above the mid level, a crude pulse
  width / shape proxy.

Both pressures are linear in these features.  The population model only
shifts a fixed baseline by the amplitude; a per-user ``CalibrationProfile``
may weight all three.  Outputs are clamped to physiological bands and a
reading where systolic does not exceed diastolic is replaced by the last
valid one.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, NamedTuple, Sequence

import numpy as np

from ppg_vitals.config import ConfigError

logger = logging.getLogger(__name__)

SYSTOLIC_RANGE = (90.0, 180.0)
DIASTOLIC_RANGE = (60.0, 120.0)
REFERENCE_HEART_RATE = 60.0
REFERENCE_DUTY_CYCLE = 0.5


class PulseFeatures(NamedTuple):
    perfusion_index: float
    heart_rate: float
    duty_cycle: float


class BloodPressure(NamedTuple):
    systolic: float = 0.0
    diastolic: float = 0.0

    @property
    def is_valid(self) -> bool:
        return self.systolic > self.diastolic > 0.0


@dataclass(frozen=True)
class CalibrationProfile:
    """
    Per-user regression constants.

    ``pressure = intercept + amplitude * PI + heart_rate * (HR - 60)
    + width * (duty_cycle - 0.5)`` for each of systolic and diastolic.
    """

    systolic_intercept: float = 110.0
    systolic_amplitude: float = 1.5
    systolic_heart_rate: float = 0.0
    systolic_width: float = 0.0
    diastolic_intercept: float = 70.0
    diastolic_amplitude: float = 0.75
    diastolic_heart_rate: float = 0.0
    diastolic_width: float = 0.0

    def predict(self, features: PulseFeatures) -> BloodPressure:
        dhr = features.heart_rate - REFERENCE_HEART_RATE
        dwidth = features.duty_cycle - REFERENCE_DUTY_CYCLE
        systolic = (
            self.systolic_intercept
            + self.systolic_amplitude * features.perfusion_index
            + self.systolic_heart_rate * dhr
            + self.systolic_width * dwidth
        )
        diastolic = (
            self.diastolic_intercept
            + self.diastolic_amplitude * features.perfusion_index
            + self.diastolic_heart_rate * dhr
            + self.diastolic_width * dwidth
        )
        return BloodPressure(systolic, diastolic)

    @classmethod
    def population(cls) -> "CalibrationProfile":
        """The default model used when no user profile is supplied."""
        return cls()

    @classmethod
    def from_reference(
        cls,
        systolic: float,
        diastolic: float,
        features: PulseFeatures,
        base: "CalibrationProfile | None" = None,
    ) -> "CalibrationProfile":
        """
        One-point calibration against a cuff reading.

        Shifts the intercepts of *base* (population model by default) so the
        model reproduces ``(systolic, diastolic)`` for *features*.
        """
        if not systolic > diastolic > 0:
            raise ConfigError(
                f"Reference reading {systolic}/{diastolic} must satisfy systolic > diastolic > 0"
            )
        base = base or cls.population()
        predicted = base.predict(features)
        return replace(
            base,
            systolic_intercept=base.systolic_intercept + systolic - predicted.systolic,
            diastolic_intercept=base.diastolic_intercept + diastolic - predicted.diastolic,
        )

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CalibrationProfile":
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key not in known:
                logger.warning("Ignoring unknown calibration key %r", key)
                continue
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigError(f"Calibration value {key}={value!r} must be a finite number")
            values[key] = float(value)
        return cls(**values)

    @classmethod
    def from_file(cls, path: str | Path) -> "CalibrationProfile":
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a JSON object")
        return cls.from_dict(data)


def extract_features(filtered: np.ndarray, intervals_ms: Sequence[float]) -> PulseFeatures | None:
    """
    Pulse features of *filtered*; None when the window or intervals are unusable.
    """
    filtered = np.asarray(filtered, dtype=np.float64)
    intervals = [i for i in intervals_ms if i > 0]
    if len(filtered) < 2 or not intervals:
        return None
    mean = float(filtered.mean())
    if mean <= 0.0:
        return None
    high, low = float(filtered.max()), float(filtered.min())
    perfusion = (high - low) / mean * 100.0
    mid = (high + low) / 2.0
    duty = float(np.mean(filtered > mid)) if high > low else REFERENCE_DUTY_CYCLE
    heart_rate = 60000.0 / float(np.mean(intervals))
    return PulseFeatures(perfusion, heart_rate, duty)


class PressureEstimator:
    """
    Stateful estimator holding the last valid reading.

    Parameters
    ----------
    calibration:
        Optional per-user profile.  ``None`` selects the population model.
    """

    def __init__(self, calibration: CalibrationProfile | None = None) -> None:
        self.calibration = calibration
        self._last_valid = BloodPressure()

    @property
    def is_calibrated(self) -> bool:
        return self.calibration is not None

    @property
    def last_valid(self) -> BloodPressure:
        return self._last_valid

    def estimate(
        self,
        filtered: np.ndarray,
        intervals_ms: Sequence[float],
        min_samples: int = 60,
    ) -> BloodPressure:
        """Estimate from a waveform; falls back to the last valid reading."""
        if len(filtered) < min_samples:
            return self._last_valid
        features = extract_features(filtered, intervals_ms)
        if features is None:
            return self._last_valid
        return self.estimate_from_features(features)

    def estimate_from_features(self, features: PulseFeatures) -> BloodPressure:
        model = self.calibration or CalibrationProfile.population()
        raw = model.predict(features)
        if not (math.isfinite(raw.systolic) and math.isfinite(raw.diastolic)):
            return self._last_valid

        systolic = float(round(np.clip(raw.systolic, *SYSTOLIC_RANGE)))
        diastolic = float(round(np.clip(raw.diastolic, *DIASTOLIC_RANGE)))
        if systolic <= diastolic:
            logger.debug(
                "Rejected pressure %.0f/%.0f, keeping %s", systolic, diastolic, self._last_valid
            )
            return self._last_valid

        self._last_valid = BloodPressure(systolic, diastolic)
        return self._last_valid

    def reset(self) -> None:
        self._last_valid = BloodPressure()
