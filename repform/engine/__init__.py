# RepForm Engine Package
# Calibration and real-time form scoring for push-ups, sit-ups and pull-ups

from .core import CalibrationData, ExerciseType, PoseSnapshot
from .modules import CalibrationFrameCollector, CalibrationStrategySelector, RealTimeFormScorer
from .utils import EventChannel, SessionLogger

__all__ = [
    'CalibrationData',
    'ExerciseType',
    'PoseSnapshot',
    'CalibrationFrameCollector',
    'CalibrationStrategySelector',
    'RealTimeFormScorer',
    'EventChannel',
    'SessionLogger'
]
