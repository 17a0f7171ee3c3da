"""
Processing thresholds and the atomic configuration handoff.

``ProcessingConfig`` is immutable; every change produces a new validated
instance.  ``ConfigHolder`` publishes the current instance so that the
frame-processing thread and the background parameter adapter never share a
half-updated set of thresholds: the pipeline reads ``holder.current`` once at
the start of each frame and uses that object for the whole frame.
"""

from __future__ import annotations

import json
import logging
import math
import numbers
import threading
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised for out-of-range or unknown configuration values."""


# Hard (low, high) range per field.  Nothing may publish a value outside it,
# neither the caller nor the parameter adapter.
SAFE_BOUNDS: Dict[str, Tuple[float, float]] = {
    "min_red_intensity":      (0.0, 120.0),
    "max_red_intensity":      (150.0, 255.0),
    "red_dominance_ratio":    (1.0, 2.5),
    "min_valid_pixel_ratio":  (0.1, 0.95),
    "roi_half_size":          (4, 200),
    "peak_threshold_factor":  (0.2, 1.0),
    "min_peak_distance_ms":   (250.0, 1000.0),
    "max_peak_distance_ms":   (1200.0, 3000.0),
    "min_frames":             (10, 600),
    "spo2_floor":             (75.0, 90.0),
    "spo2_quality_floor":     (0.0, 1.0),
    "min_signal_quality":     (0.0, 0.9),
    "noise_reduction":        (0.2, 4.0),
    "signal_amplification":   (0.1, 10.0),
}

# Counts and pixel sizes; a fractional value is rejected rather than truncated.
INTEGER_FIELDS = frozenset({"roi_half_size", "min_frames"})


@dataclass(frozen=True)
class ProcessingConfig:
    """
    Named thresholds consumed by the pipeline stages.

    Extractor
        ``min_red_intensity`` / ``max_red_intensity`` bound the accepted red
        band (exclusive); ``red_dominance_ratio`` is the minimum
        red / infrared-proxy ratio for finger tissue;
        ``min_valid_pixel_ratio`` is the minimum accepted share of the ROI;
        ``roi_half_size`` is half the side of the centred ROI square.
    Filter stage
        ``noise_reduction`` scales the moving-average width;
        ``signal_amplification`` scales the normalized display amplitude.
    Peak detector
        ``peak_threshold_factor`` multiplies the recent mean;
        ``min_peak_distance_ms`` is the refractory gate;
        ``max_peak_distance_ms`` caps intervals accepted for HRV.
    Estimators
        ``min_frames`` before any computation, ``spo2_floor`` lower clamp
        of SpO2, ``spo2_quality_floor`` below which SpO2 is withheld,
        ``min_signal_quality`` below which the frame counts as "no finger".
    """

    min_red_intensity: float = 45.0
    max_red_intensity: float = 250.0
    red_dominance_ratio: float = 1.2
    min_valid_pixel_ratio: float = 0.5
    roi_half_size: int = 50
    peak_threshold_factor: float = 0.6
    min_peak_distance_ms: float = 500.0
    max_peak_distance_ms: float = 2000.0
    min_frames: int = 60
    spo2_floor: float = 75.0
    spo2_quality_floor: float = 0.5
    min_signal_quality: float = 0.1
    noise_reduction: float = 1.0
    signal_amplification: float = 1.0

    def validate(self) -> list[str]:
        """Validate all values.  Returns a list of error messages."""
        errors = []
        for f in fields(self):
            value = getattr(self, f.name)
            low, high = SAFE_BOUNDS[f.name]
            if not isinstance(value, numbers.Real) or isinstance(value, bool):
                errors.append(f"{f.name} ({value!r}) must be a number")
                continue
            if f.name in INTEGER_FIELDS and not isinstance(value, numbers.Integral):
                errors.append(f"{f.name} ({value!r}) must be an integer")
                continue
            if not math.isfinite(value):
                errors.append(f"{f.name} ({value}) must be finite")
            elif not low <= value <= high:
                errors.append(f"{f.name} ({value}) must be between {low} and {high}")

        if self.min_red_intensity >= self.max_red_intensity:
            errors.append(
                f"min_red_intensity ({self.min_red_intensity}) must be < "
                f"max_red_intensity ({self.max_red_intensity})"
            )
        if self.min_peak_distance_ms >= self.max_peak_distance_ms:
            errors.append(
                f"min_peak_distance_ms ({self.min_peak_distance_ms}) must be < "
                f"max_peak_distance_ms ({self.max_peak_distance_ms})"
            )
        return errors

    def replace(self, **changes: Any) -> "ProcessingConfig":
        """Return a validated copy with *changes* applied."""
        unknown = sorted(set(changes) - {f.name for f in fields(self)})
        if unknown:
            raise ConfigError(f"Unknown configuration fields: {', '.join(unknown)}")
        candidate = replace(self, **changes)
        errors = candidate.validate()
        if errors:
            raise ConfigError("; ".join(errors))
        return candidate

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProcessingConfig":
        """Build a config from a mapping; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        for key in data:
            if key not in known:
                logger.warning("Ignoring unknown config key %r", key)
        return cls().replace(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_file(cls, path: str | Path) -> "ProcessingConfig":
        """Load configuration from a JSON file."""
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a JSON object")
        return cls.from_dict(data)


class ConfigHolder:
    """
    Single-writer / many-reader publication point for ``ProcessingConfig``.

    Readers take ``current`` (a reference to an immutable object, so the read
    itself is atomic).  Writers build a complete replacement under a lock and
    publish it in one assignment.
    """

    def __init__(self, config: ProcessingConfig | None = None) -> None:
        config = config or ProcessingConfig()
        errors = config.validate()
        if errors:
            raise ConfigError("; ".join(errors))
        self._config = config
        self._lock = threading.Lock()
        self._version = 0

    @property
    def current(self) -> ProcessingConfig:
        return self._config

    @property
    def version(self) -> int:
        """Incremented on every published change."""
        return self._version

    def update(self, **changes: Any) -> ProcessingConfig:
        """Validate and publish *changes*.  Raises ``ConfigError`` if invalid."""
        with self._lock:
            new_config = self._config.replace(**changes)
            if new_config != self._config:
                self._config = new_config
                self._version += 1
            return self._config

    def set(self, config: ProcessingConfig) -> None:
        """Publish a complete replacement config."""
        errors = config.validate()
        if errors:
            raise ConfigError("; ".join(errors))
        with self._lock:
            if config != self._config:
                self._config = config
                self._version += 1
