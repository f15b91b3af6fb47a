"""
Modules Package for the RepForm engine.

Framing, frame collection, aggregation, strategies, rep counting,
feedback and form scoring.
"""

from .framing import FramingStatus, evaluate_framing
from .frame_collector import CalibrationFrameCollector, CollectorState
from .aggregator import CalibrationAggregator
from .strategies import CalibrationStrategySelector, DefaultCalibrationProfiles
from .rep_counter import RepCounter, MotionPhase
from .feedback import FeedbackDispatcher, FeedbackEvent
from .form_scorer import RealTimeFormScorer, FormAnalysis

__all__ = [
    # Framing
    'FramingStatus', 'evaluate_framing',

    # Calibration
    'CalibrationFrameCollector', 'CollectorState',
    'CalibrationAggregator',
    'CalibrationStrategySelector', 'DefaultCalibrationProfiles',

    # Scoring
    'RepCounter', 'MotionPhase',
    'FeedbackDispatcher', 'FeedbackEvent',
    'RealTimeFormScorer', 'FormAnalysis',
]
