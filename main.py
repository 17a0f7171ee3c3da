#!/usr/bin/env python3
"""
PPG Vitals – main entry point.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --source SRC         OpenCV camera index or video file (default: 0)
    --resolution WxH     Camera resolution (default: 640x480)
    --fps FLOAT          Capture frame rate (default: 30)
    --window INT         Analysis window in samples (default: 300)
    --config PATH        JSON file with processing thresholds
    --calibration PATH   JSON file with a blood-pressure calibration profile
    --record PATH        Append every snapshot to a JSONL file
    --max-frames INT     Stop after this many frames (0 = until the source ends)
    --wall-clock         Timestamp frames with the monotonic clock
    --log-level LEVEL    Logging level (default: INFO)

Press Ctrl+C to stop.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Iterator

import cv2
import numpy as np

from ppg_vitals.blood_pressure import CalibrationProfile
from ppg_vitals.config import ProcessingConfig
from ppg_vitals.effects import EffectDispatcher, JsonlSnapshotRecorder, LoggingNotifier
from ppg_vitals.signal_processor import SignalProcessor
from ppg_vitals.snapshot import VitalsSnapshot

logger = logging.getLogger("ppg_vitals")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Camera PPG vitals monitor (heart rate, SpO2, BP, HRV)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--source", default="0",
                        help="OpenCV camera index or path to a video file")
    parser.add_argument("--resolution", default="640x480",
                        help="Camera resolution, e.g. 640x480")
    parser.add_argument("--fps", type=float, default=30.0,
                        help="Capture frame rate")
    parser.add_argument("--window", type=int, default=300,
                        help="Analysis window in samples")
    parser.add_argument("--config", type=Path, default=None,
                        help="JSON file with processing thresholds")
    parser.add_argument("--calibration", type=Path, default=None,
                        help="JSON file with a blood-pressure calibration profile")
    parser.add_argument("--record", type=Path, default=None,
                        help="Append every snapshot to this JSONL file")
    parser.add_argument("--max-frames", type=int, default=0,
                        help="Stop after this many frames (0 = no limit)")
    parser.add_argument("--wall-clock", action="store_true",
                        help="Timestamp frames with the monotonic clock instead of the frame rate")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level")
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Frame source
# ---------------------------------------------------------------------------

def open_capture(source: str, resolution: tuple[int, int], fps: float) -> cv2.VideoCapture:
    """Open a camera index (all digits) or a video file."""
    cap = cv2.VideoCapture(int(source) if source.isdigit() else source)
    if not cap.isOpened():
        raise RuntimeError(f"Cannot open video source {source!r}")
    if source.isdigit():
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, resolution[0])
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, resolution[1])
        cap.set(cv2.CAP_PROP_FPS, fps)
    logger.info("Video source %s opened", source)
    return cap


def read_frames(cap: cv2.VideoCapture, max_frames: int = 0) -> Iterator[np.ndarray]:
    """Yield BGR frames until the source ends or *max_frames* is reached."""
    count = 0
    while max_frames <= 0 or count < max_frames:
        ok, frame = cap.read()
        if not ok:
            logger.info("Video source exhausted after %d frames", count)
            return
        count += 1
        yield frame


def format_snapshot(snapshot: VitalsSnapshot) -> str:
    if snapshot.is_empty:
        return "Waiting for finger…"
    if snapshot.bpm <= 0:
        return f"Acquiring signal…  quality={snapshot.signal_quality:.2f}"
    parts = [
        f"BPM={snapshot.bpm:.1f}",
        f"SpO2={snapshot.spo2:.0f}%" if snapshot.spo2 > 0 else "SpO2=--",
        f"BP={snapshot.systolic:.0f}/{snapshot.diastolic:.0f}" if snapshot.systolic > 0 else "BP=--",
        f"rhythm={snapshot.arrhythmia_type}",
        f"quality={snapshot.signal_quality:.2f} ({snapshot.quality_label})",
        f"conf={snapshot.confidence:.2f}",
    ]
    return "  ".join(parts)


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    try:
        res_w, res_h = (int(v) for v in args.resolution.lower().split("x"))
    except ValueError:
        logger.error("Invalid --resolution format.  Use WxH, e.g. 640x480.")
        return 1

    try:
        config = ProcessingConfig.from_file(args.config) if args.config else None
        calibration = CalibrationProfile.from_file(args.calibration) if args.calibration else None
    except (OSError, ValueError) as exc:
        # ConfigError and JSON decode errors are both ValueErrors
        logger.error("Invalid configuration: %s", exc)
        return 1

    try:
        cap = open_capture(args.source, (res_w, res_h), args.fps)
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1

    processor = SignalProcessor(
        fps=args.fps, window_size=args.window, config=config, calibration=calibration
    )
    recorder = JsonlSnapshotRecorder(args.record) if args.record else None
    dispatcher = EffectDispatcher(
        notifier=LoggingNotifier(),
        recorder=recorder,
        adapter=processor.adapter,
    )
    if recorder is not None:
        logger.info("Recording snapshots to %s", args.record)

    log_interval = max(1, int(round(args.fps)))  # log roughly once per second
    start = time.monotonic()

    logger.info("Starting vitals monitor.  Press Ctrl+C to quit.")
    try:
        with dispatcher:
            for frame_idx, frame in enumerate(read_frames(cap, args.max_frames)):
                timestamp = (time.monotonic() - start) * 1000.0 if args.wall_clock else None
                try:
                    result = processor.process(frame, timestamp)
                except ValueError as exc:
                    logger.error("Unusable frame %d: %s", frame_idx, exc)
                    return 1
                dispatcher.dispatch(result.effects)

                if frame_idx % log_interval == 0:
                    logger.info("%s", format_snapshot(result.snapshot))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        cap.release()
        if recorder is not None:
            recorder.close()

    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
