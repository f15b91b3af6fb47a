"""
Core Package for the RepForm engine.

Data types, geometry helpers and device position classification.
"""

from .data_types import (
    ExerciseType, Joint, PoseSnapshot, MotionSample, CalibrationFrame, DevicePosition,
    PositionKind, CalibrationData, CalibrationQuality, CalibrationMode,
)
from .geometry import angle_at_vertex, filter_outliers_and_average
from .device_position import detect_position, detect_position_continuous

__all__ = [
    # Data types
    'ExerciseType', 'Joint', 'PoseSnapshot', 'MotionSample', 'CalibrationFrame',
    'DevicePosition', 'PositionKind', 'CalibrationData', 'CalibrationQuality', 'CalibrationMode',

    # Geometry
    'angle_at_vertex', 'filter_outliers_and_average',

    # Device position
    'detect_position', 'detect_position_continuous',
]
