"""
Side effects requested by the pipeline and the worker that performs them.

``SignalProcessor.process`` never performs I/O itself.  It returns effect
descriptors next to the snapshot; the caller hands them to an
``EffectDispatcher``, which runs them on its own thread:

    result = processor.process(frame)
    dispatcher.dispatch(result.effects)

Every failure inside a collaborator (or the parameter adapter) is logged and
swallowed by the worker, so it can never reach the frame loop.  The queue is
bounded; when it is full the oldest pending effect is dropped so that
``dispatch`` never blocks.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from pathlib import Path
from typing import Any, Iterable, NamedTuple, Optional, Protocol, Union

from ppg_vitals.adapter import ParameterAdapter, TrainingSample
from ppg_vitals.snapshot import VitalsSnapshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Effect descriptors
# ---------------------------------------------------------------------------

class NotifyPeak(NamedTuple):
    """A beat was accepted; *quality* is the frame's composite quality."""

    quality: float


class RecordSnapshot(NamedTuple):
    snapshot: VitalsSnapshot


class AdaptParameters(NamedTuple):
    sample: TrainingSample


Effect = Union[NotifyPeak, RecordSnapshot, AdaptParameters]


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

class PeakNotifier(Protocol):
    def notify_peak(self, quality: float) -> None: ...


class SnapshotRecorder(Protocol):
    def record_snapshot(self, snapshot: VitalsSnapshot) -> None: ...


class LoggingNotifier:
    """Headless stand-in for the audible beep: logs each accepted beat."""

    def __init__(self, level: int = logging.DEBUG) -> None:
        self.level = level
        self.count = 0

    def notify_peak(self, quality: float) -> None:
        self.count += 1
        logger.log(self.level, "Beat %d (quality %.2f)", self.count, quality)


class JsonlSnapshotRecorder:
    """
    Append each snapshot as one JSON object per line.

    Parameters
    ----------
    path:
        Output file; opened in append mode on first write.
    include_readings:
        Also store the readings history of every snapshot (large).
    """

    def __init__(self, path: str | Path, include_readings: bool = False) -> None:
        self.path = Path(path)
        self.include_readings = include_readings
        self._file: Optional[Any] = None
        self._lock = threading.Lock()
        self.records_written = 0

    def record_snapshot(self, snapshot: VitalsSnapshot) -> None:
        line = json.dumps(snapshot.to_dict(include_readings=self.include_readings))
        with self._lock:
            if self._file is None:
                self._file = open(self.path, "a", encoding="utf-8")
            self._file.write(line + "\n")
            self._file.flush()
            self.records_written += 1

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class EffectDispatcher:
    """
    Background worker executing effect descriptors.

    Parameters
    ----------
    notifier:
        Receives ``NotifyPeak``; ignored when None.
    recorder:
        Receives ``RecordSnapshot``; ignored when None.
    adapter:
        Receives ``AdaptParameters``; ignored when None.
    max_queue:
        Pending effects kept before the oldest is dropped.
    """

    def __init__(
        self,
        notifier: PeakNotifier | None = None,
        recorder: SnapshotRecorder | None = None,
        adapter: ParameterAdapter | None = None,
        max_queue: int = 256,
    ) -> None:
        self.notifier = notifier
        self.recorder = recorder
        self.adapter = adapter
        self._queue: queue.Queue[Optional[Effect]] = queue.Queue(maxsize=max_queue)
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._handled = 0
        self._failed = 0
        self._dropped = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._thread = threading.Thread(target=self._run, name="effect-dispatcher", daemon=True)
        self._thread.start()
        logger.info("Effect dispatcher started")

    def stop(self) -> None:
        """Process everything already queued, then stop the worker."""
        thread = self._thread
        if thread and thread.is_alive():
            self._put_control(None)
            thread.join()
        self._thread = None
        logger.info(
            "Effect dispatcher stopped (handled=%d failed=%d dropped=%d)",
            self.handled, self.failed, self.dropped,
        )

    def __enter__(self) -> "EffectDispatcher":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def dispatch(self, effects: Iterable[Effect]) -> None:
        """Queue *effects* without blocking."""
        for effect in effects:
            self._put_drop_oldest(effect)

    def handle(self, effect: Effect) -> bool:
        """
        Execute one effect on the calling thread.

        Returns False if the collaborator raised; the error is logged.
        """
        try:
            if isinstance(effect, NotifyPeak):
                if self.notifier is not None:
                    self.notifier.notify_peak(effect.quality)
            elif isinstance(effect, RecordSnapshot):
                if self.recorder is not None:
                    self.recorder.record_snapshot(effect.snapshot)
            elif isinstance(effect, AdaptParameters):
                if self.adapter is not None:
                    self.adapter.observe(effect.sample)
            else:
                raise TypeError(f"Unknown effect {effect!r}")
        except Exception:
            logger.warning("Effect %s failed", type(effect).__name__, exc_info=True)
            with self._lock:
                self._failed += 1
            return False
        with self._lock:
            self._handled += 1
        return True

    @property
    def handled(self) -> int:
        with self._lock:
            return self._handled

    @property
    def failed(self) -> int:
        with self._lock:
            return self._failed

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            effect = self._queue.get()
            if effect is None:
                break
            self.handle(effect)

    def _put_drop_oldest(self, item: Effect) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    return
                with self._lock:
                    self._dropped += 1

    def _put_control(self, item: None, timeout_s: float = 0.1) -> None:
        """Enqueue the shutdown marker without dropping queued effects."""
        while True:
            try:
                self._queue.put(item, timeout=timeout_s)
                return
            except queue.Full:
                continue
