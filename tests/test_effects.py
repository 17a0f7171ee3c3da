from __future__ import annotations

import json
import logging

from ppg_vitals.adapter import ThresholdSet, TrainingSample
from ppg_vitals.config import ProcessingConfig
from ppg_vitals.effects import (
    AdaptParameters,
    EffectDispatcher,
    JsonlSnapshotRecorder,
    LoggingNotifier,
    NotifyPeak,
    RecordSnapshot,
)
from ppg_vitals.snapshot import VitalsSnapshot


class ListNotifier:
    def __init__(self):
        self.qualities = []

    def notify_peak(self, quality):
        self.qualities.append(quality)


class ListRecorder:
    def __init__(self):
        self.snapshots = []

    def record_snapshot(self, snapshot):
        self.snapshots.append(snapshot)


class ListAdapter:
    def __init__(self):
        self.samples = []

    def observe(self, sample):
        self.samples.append(sample)
        return {}


class BrokenNotifier:
    def notify_peak(self, quality):
        raise RuntimeError("speaker unplugged")


def training_sample() -> TrainingSample:
    return TrainingSample(72.0, 97.0, 0.9, ThresholdSet.from_config(ProcessingConfig()))


class TestEffectDispatcher:

    def test_handle_routes_effects(self):
        notifier, recorder, adapter = ListNotifier(), ListRecorder(), ListAdapter()
        d = EffectDispatcher(notifier=notifier, recorder=recorder, adapter=adapter)
        snap = VitalsSnapshot(bpm=70.0, signal_quality=0.8)
        assert d.handle(NotifyPeak(0.8))
        assert d.handle(RecordSnapshot(snap))
        assert d.handle(AdaptParameters(training_sample()))
        assert notifier.qualities == [0.8]
        assert recorder.snapshots == [snap]
        assert adapter.samples == [training_sample()]
        assert d.handled == 3

    def test_missing_collaborators_are_noops(self):
        d = EffectDispatcher()
        assert d.handle(NotifyPeak(0.5))
        assert d.handle(RecordSnapshot(VitalsSnapshot()))

    def test_failure_is_logged_not_raised(self, caplog):
        d = EffectDispatcher(notifier=BrokenNotifier())
        with caplog.at_level(logging.WARNING):
            ok = d.handle(NotifyPeak(0.9))
        assert ok is False
        assert d.failed == 1
        assert "NotifyPeak failed" in caplog.text

    def test_unknown_effect(self):
        d = EffectDispatcher()
        assert d.handle("beep") is False  # type: ignore[arg-type]

    def test_worker_processes_in_order(self):
        notifier = ListNotifier()
        with EffectDispatcher(notifier=notifier) as d:
            assert d.is_running
            d.dispatch([NotifyPeak(0.1), NotifyPeak(0.2), NotifyPeak(0.3)])
        assert notifier.qualities == [0.1, 0.2, 0.3]
        assert not d.is_running

    def test_worker_survives_failures(self):
        recorder = ListRecorder()
        d = EffectDispatcher(notifier=BrokenNotifier(), recorder=recorder)
        d.start()
        snap = VitalsSnapshot(bpm=60.0, signal_quality=0.5)
        d.dispatch([NotifyPeak(0.5), RecordSnapshot(snap), NotifyPeak(0.5)])
        d.stop()
        assert recorder.snapshots == [snap]
        assert d.failed == 2

    def test_full_queue_drops_oldest(self):
        notifier = ListNotifier()
        d = EffectDispatcher(notifier=notifier, max_queue=2)
        d.dispatch([NotifyPeak(float(i)) for i in range(5)])
        assert d.dropped == 3
        d.start()
        d.stop()
        assert notifier.qualities == [3.0, 4.0]


class TestCollaborators:

    def test_jsonl_recorder(self, tmp_path):
        path = tmp_path / "vitals.jsonl"
        recorder = JsonlSnapshotRecorder(path)
        recorder.record_snapshot(VitalsSnapshot(bpm=72.0, spo2=97.0, signal_quality=0.9))
        recorder.record_snapshot(VitalsSnapshot(bpm=74.0, spo2=98.0, signal_quality=0.9))
        recorder.close()
        lines = path.read_text().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["bpm"] == 72.0
        assert "readings" not in first
        assert recorder.records_written == 2

    def test_jsonl_recorder_appends(self, tmp_path):
        path = tmp_path / "vitals.jsonl"
        for bpm in (60.0, 61.0):
            recorder = JsonlSnapshotRecorder(path, include_readings=True)
            recorder.record_snapshot(VitalsSnapshot(bpm=bpm, signal_quality=0.5))
            recorder.close()
        rows = [json.loads(line) for line in path.read_text().splitlines()]
        assert [r["bpm"] for r in rows] == [60.0, 61.0]
        assert rows[0]["readings"] == []

    def test_logging_notifier_counts(self, caplog):
        notifier = LoggingNotifier(level=logging.INFO)
        with caplog.at_level(logging.INFO):
            notifier.notify_peak(0.7)
            notifier.notify_peak(0.8)
        assert notifier.count == 2
        assert "Beat 2" in caplog.text
