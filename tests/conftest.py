"""Shared synthetic-frame factories."""

from __future__ import annotations

import numpy as np
import pytest


def make_frame(red: float, ir: float = 90.0, size: int = 120) -> np.ndarray:
    """Uniform BGR frame; green and blue both carry the infrared proxy."""
    f = np.zeros((size, size, 3), dtype=np.uint8)
    f[:, :, 0] = int(np.clip(round(ir), 0, 255))
    f[:, :, 1] = int(np.clip(round(ir), 0, 255))
    f[:, :, 2] = int(np.clip(round(red), 0, 255))
    return f


def make_pulse_frames(
    n: int = 300,
    fps: float = 30.0,
    freq_hz: float = 1.2,
    mean: float = 128.0,
    amplitude: float = 20.0,
    ir: float = 80.0,
    ir_amplitude: float = 0.0,
) -> list[np.ndarray]:
    """
    Frames whose red channel follows ``mean + amplitude * sin(2π f t)``.

    The infrared proxy pulses in phase with ``ir_amplitude`` (flat by default).
    """
    t = np.arange(n) / fps
    wave = np.sin(2 * np.pi * freq_hz * t)
    red = mean + amplitude * wave
    infrared = ir + ir_amplitude * wave
    return [make_frame(r, i) for r, i in zip(red, infrared)]


@pytest.fixture
def finger_frame():
    return make_frame


@pytest.fixture
def pulse_frames():
    return make_pulse_frames
