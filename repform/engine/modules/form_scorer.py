"""
Real-Time Form Scorer for RepForm.

Scores live repetitions against a calibration profile:

    form_score = visibility x angle_accuracy x stability   (0..1)

Rep counting runs on every frame; scoring and feedback are throttled
to at most one evaluation per feedback interval (10 Hz).

Example:
    >>> scorer = RealTimeFormScorer()
    >>> scorer.start(ExerciseType.PUSHUP, calibration)
    >>> analysis = scorer.process_pose(pose)
    >>> if analysis:
    ...     print(analysis.form_score, analysis.rep_count)
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

from ..core.data_types import (
    CRITICAL_JOINTS, CalibrationData, ExerciseType, PoseSnapshot, VisibilityThresholds,
)
from .feedback import FeedbackDispatcher, FeedbackSeverity, ValidationError
from .rep_counter import ExerciseAnalyzer, FormCheck, MotionPhase, RepCounter, create_analyzer
from .strategies import DefaultCalibrationProfiles

logger = logging.getLogger(__name__)


# ==================== CONSTANTS ====================

FEEDBACK_INTERVAL = 0.1  # seconds
HISTORY_SIZE = 30
STABILITY_WINDOW = 3
STABILITY_JUMP = 0.3
STABILITY_PENALTY = 0.2
MAX_ANGLE_PENALTY = 0.5


@dataclass(frozen=True)
class FormAnalysis:
    """Result of one scored frame."""
    exercise: ExerciseType
    timestamp: float
    form_score: float
    visibility_score: float
    angle_accuracy: float
    stability_score: float
    raw_angles: Dict[str, float] = field(default_factory=dict)
    adjusted_angles: Dict[str, float] = field(default_factory=dict)
    errors: List[ValidationError] = field(default_factory=list)
    phase: MotionPhase = MotionPhase.IDLE
    rep_count: int = 0
    rep_completed: bool = False

    def to_dict(self) -> dict:
        return {
            "exercise": self.exercise.value,
            "timestamp": self.timestamp,
            "form_score": round(self.form_score, 3),
            "visibility_score": round(self.visibility_score, 3),
            "angle_accuracy": round(self.angle_accuracy, 3),
            "stability_score": round(self.stability_score, 3),
            "raw_angles": {k: round(v, 1) for k, v in self.raw_angles.items()},
            "adjusted_angles": {k: round(v, 1) for k, v in self.adjusted_angles.items()},
            "errors": [{"message": e.message, "severity": e.severity.value} for e in self.errors],
            "phase": self.phase.value,
            "rep_count": self.rep_count,
            "rep_completed": self.rep_completed,
        }


# ==================== SCORING FUNCTIONS ====================

def visibility_score(pose: PoseSnapshot, thresholds: VisibilityThresholds) -> float:
    """Full credit above the critical threshold, half above minimum; over detected critical joints."""
    total, count = 0.0, 0
    for joint in CRITICAL_JOINTS:
        sample = pose.get(joint)
        if sample is None:
            continue
        if sample.confidence >= thresholds.critical_joints:
            total += 1.0
        elif sample.confidence >= thresholds.minimum_confidence:
            total += 0.5
        count += 1
    return total / count if count else 0.0


def angle_accuracy(checks: List[FormCheck]) -> float:
    accuracy = 1.0
    for check in checks:
        if check.failed:
            accuracy -= min(MAX_ANGLE_PENALTY, check.deviation / (check.tolerance * 2))
    return max(0.0, accuracy)


def movement_stability(history: List[float]) -> float:
    """Penalize large score jumps across the last few feedback frames."""
    if len(history) < STABILITY_WINDOW:
        return 1.0
    recent = history[-STABILITY_WINDOW:]
    stability = 1.0
    for previous, current in zip(recent, recent[1:]):
        if abs(current - previous) > STABILITY_JUMP:
            stability -= STABILITY_PENALTY
    return max(0.0, stability)


# ==================== SCORER ====================

class RealTimeFormScorer:
    """
    Per-exercise live scoring session.

    Not thread-safe; feed it from a single consumer thread.
    """

    def __init__(
        self,
        dispatcher: Optional[FeedbackDispatcher] = None,
        feedback_interval: float = FEEDBACK_INTERVAL,
    ):
        self.dispatcher = dispatcher or FeedbackDispatcher()
        self.feedback_interval = feedback_interval

        self.exercise: Optional[ExerciseType] = None
        self.calibration: Optional[CalibrationData] = None
        self._analyzer: Optional[ExerciseAnalyzer] = None
        self._counter: Optional[RepCounter] = None
        self._history: Deque[float] = deque(maxlen=HISTORY_SIZE)
        self._last_feedback: Optional[float] = None
        self._pending_issues: List[str] = []
        self._pending_rep = False
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def rep_count(self) -> int:
        return self._counter.rep_count if self._counter else 0

    @property
    def score_history(self) -> List[float]:
        return list(self._history)

    def start(self, exercise: ExerciseType, calibration: Optional[CalibrationData] = None) -> bool:
        """
        Begin scoring ``exercise``.

        Without a calibration the exercise's default profile is used.
        Returns False when the exercise cannot be scored.
        """
        self.stop()
        analyzer = create_analyzer(exercise)
        if analyzer is None:
            logger.warning(f"Form scoring not supported for {exercise.value}")
            return False

        self.exercise = exercise
        self.calibration = calibration or DefaultCalibrationProfiles.get_default(exercise)
        self._analyzer = analyzer
        self._counter = RepCounter(analyzer, self.calibration.validation_ranges)
        self._active = True
        logger.info(
            f"Form scoring started: {exercise.value} "
            f"(calibration score {self.calibration.calibration_score:.0f})"
        )
        return True

    def stop(self) -> None:
        if self._active:
            logger.info(f"Form scoring stopped after {self.rep_count} reps")
        self._active = False
        self._history.clear()
        self._last_feedback = None
        self._pending_issues = []
        self._pending_rep = False
        self.dispatcher.reset()

    def process_pose(self, pose: Optional[PoseSnapshot], now: Optional[float] = None) -> Optional[FormAnalysis]:
        """
        Process one frame.

        Returns:
            A FormAnalysis on feedback frames; None when inactive,
            the exercise is unsupported, the pose lacks the measured
            joints, or the frame falls inside the feedback throttle.
        """
        if not self._active or self._analyzer is None or pose is None:
            return None

        now = time.monotonic() if now is None else now
        raw = self._analyzer.measure(pose)
        if raw is None:
            return None

        adjusted = self._analyzer.correct(raw, self.calibration)
        update = self._counter.update(adjusted)
        self._pending_issues.extend(update.form_issues)
        self._pending_rep = self._pending_rep or update.rep_completed

        if self._last_feedback is not None and now - self._last_feedback < self.feedback_interval:
            return None
        self._last_feedback = now

        ranges = self.calibration.validation_ranges
        checks = self._analyzer.form_checks(adjusted, ranges)

        visibility = visibility_score(pose, self.calibration.visibility_thresholds)
        accuracy = angle_accuracy(checks)
        stability = movement_stability(list(self._history))
        form_score = max(0.0, min(1.0, visibility * accuracy * stability))
        self._history.append(form_score)

        errors = [
            ValidationError(
                check.message,
                FeedbackSeverity.CRITICAL if check.critical else FeedbackSeverity.WARNING,
            )
            for check in checks if check.failed
        ]
        errors.extend(ValidationError(issue) for issue in dict.fromkeys(self._pending_issues))

        rep_completed = self._pending_rep
        self._pending_issues = []
        self._pending_rep = False

        self.dispatcher.process(form_score, errors, update.rep_count, rep_completed, now)

        return FormAnalysis(
            exercise=self.exercise,
            timestamp=now,
            form_score=form_score,
            visibility_score=visibility,
            angle_accuracy=accuracy,
            stability_score=stability,
            raw_angles=raw,
            adjusted_angles=adjusted,
            errors=errors,
            phase=update.phase,
            rep_count=update.rep_count,
            rep_completed=rep_completed,
        )
