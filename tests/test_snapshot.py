from __future__ import annotations

import dataclasses
import json

import pytest

from ppg_vitals.hrv import HRVMetrics
from ppg_vitals.snapshot import FrameResult, Reading, VitalsSnapshot, empty_snapshot


class TestVitalsSnapshot:

    def test_empty_snapshot(self):
        s = empty_snapshot(timestamp=500.0, frame_index=15)
        assert s.is_empty
        assert s.bpm == s.spo2 == s.systolic == s.diastolic == 0.0
        assert s.readings == ()
        assert s.timestamp == 500.0
        assert s.frame_index == 15

    def test_immutable(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            VitalsSnapshot().bpm = 70.0  # type: ignore[misc]

    @pytest.mark.parametrize("quality, label", [
        (0.95, "excellent"), (0.7, "good"), (0.45, "fair"), (0.1, "poor"),
    ])
    def test_quality_label(self, quality, label):
        assert VitalsSnapshot(signal_quality=quality).quality_label == label

    def test_to_dict_is_json_ready(self):
        s = VitalsSnapshot(
            bpm=72.0,
            spo2=97.0,
            systolic=120.0,
            diastolic=80.0,
            signal_quality=0.8,
            hrv_metrics=HRVMetrics(sdnn=40.0, rmssd=30.0, pnn50=0.1, lfhf=1.5),
            readings=(Reading(0.0, 1.0), Reading(33.3, -1.0)),
        )
        data = json.loads(json.dumps(s.to_dict()))
        assert data["hrv"]["sdnn"] == 40.0
        assert data["readings"][1] == {"timestamp": 33.3, "value": -1.0}
        assert "readings" not in s.to_dict(include_readings=False)

    def test_frame_result_defaults(self):
        result = FrameResult(empty_snapshot())
        assert result.effects == ()
