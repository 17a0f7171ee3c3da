"""Immutable per-frame output of the pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, NamedTuple, Tuple

from ppg_vitals.hrv import NORMAL, HRVMetrics


class Reading(NamedTuple):
    timestamp: float  # ms
    value: float      # normalized PPG sample


@dataclass(frozen=True)
class VitalsSnapshot:
    bpm: float = 0.0
    spo2: float = 0.0
    systolic: float = 0.0
    diastolic: float = 0.0
    has_arrhythmia: bool = False
    arrhythmia_type: str = NORMAL
    signal_quality: float = 0.0
    confidence: float = 0.0
    is_peak: bool = False
    hrv_metrics: HRVMetrics = HRVMetrics()
    readings: Tuple[Reading, ...] = ()
    timestamp: float = 0.0
    frame_index: int = 0
    peak_bpm: float = 0.0
    perfusion_index: float = 0.0
    finger_present: bool = False

    @property
    def is_empty(self) -> bool:
        """True for the all-zero "no finger" reading."""
        return self.signal_quality == 0.0

    @property
    def quality_label(self) -> str:
        if self.signal_quality >= 0.8:
            return "excellent"
        if self.signal_quality >= 0.6:
            return "good"
        if self.signal_quality >= 0.4:
            return "fair"
        return "poor"

    def to_dict(self, include_readings: bool = True) -> Dict[str, Any]:
        """JSON-ready representation."""
        data: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "frame_index": self.frame_index,
            "bpm": self.bpm,
            "spo2": self.spo2,
            "systolic": self.systolic,
            "diastolic": self.diastolic,
            "has_arrhythmia": self.has_arrhythmia,
            "arrhythmia_type": self.arrhythmia_type,
            "signal_quality": self.signal_quality,
            "confidence": self.confidence,
            "is_peak": self.is_peak,
            "hrv": self.hrv_metrics._asdict(),
            "peak_bpm": self.peak_bpm,
            "perfusion_index": self.perfusion_index,
        }
        if include_readings:
            data["readings"] = [r._asdict() for r in self.readings]
        return data


def empty_snapshot(timestamp: float = 0.0, frame_index: int = 0) -> VitalsSnapshot:
    """The "no finger" reading: every vital at its zero/default value."""
    return VitalsSnapshot(timestamp=timestamp, frame_index=frame_index)


class FrameResult(NamedTuple):
    """What ``SignalProcessor.process`` returns for one frame."""

    snapshot: VitalsSnapshot
    effects: Tuple[Any, ...] = ()
