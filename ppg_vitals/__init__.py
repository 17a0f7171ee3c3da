"""
PPG Vitals — camera-based heart rate, SpO2, blood pressure and rhythm.
Place a fingertip over the camera lens and flash; each frame is reduced
to a red / infrared-proxy sample and run through the vitals pipeline.
"""

from ppg_vitals.blood_pressure import CalibrationProfile
from ppg_vitals.config import ConfigError, ProcessingConfig
from ppg_vitals.effects import EffectDispatcher
from ppg_vitals.signal_processor import SignalProcessor
from ppg_vitals.snapshot import FrameResult, VitalsSnapshot

__version__ = "0.1.0"
__author__ = "ppg_vitals"

__all__ = [
    "CalibrationProfile",
    "ConfigError",
    "EffectDispatcher",
    "FrameResult",
    "ProcessingConfig",
    "SignalProcessor",
    "VitalsSnapshot",
]
