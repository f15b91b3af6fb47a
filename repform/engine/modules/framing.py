"""
Framing Module for RepForm.

Checks whether the user is positioned well in the camera frame for a
given exercise and produces setup suggestions.

Apparent distance is derived from how much of the frame the required
joints span: a body filling 60% of the frame reads as 1.5 m.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..core.data_types import DevicePosition, ExerciseType, Joint, PoseSnapshot, PositionKind


# ==================== CONSTANTS ====================

VISIBLE_CONFIDENCE = 0.7
EXTENT_AT_ONE_METER = 0.9
DEFAULT_DISTANCE = 1.5
OPTIMAL_DISTANCE_MARGIN = 0.1
OPTIMAL_CENTER_MARGIN = 0.1

CENTER_JOINTS = (Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_HIP, Joint.RIGHT_HIP)


# ==================== TYPES ====================

class FramingStatus(Enum):
    UNKNOWN = "unknown"
    TOO_CLOSE = "too_close"
    TOO_FAR = "too_far"
    TOO_LEFT = "too_left"
    TOO_RIGHT = "too_right"
    TOO_HIGH = "too_high"
    TOO_LOW = "too_low"
    ACCEPTABLE = "acceptable"
    OPTIMAL = "optimal"

    @property
    def instruction(self) -> str:
        return FRAMING_INSTRUCTIONS[self]

    @property
    def is_acceptable(self) -> bool:
        return self in (FramingStatus.ACCEPTABLE, FramingStatus.OPTIMAL)


FRAMING_INSTRUCTIONS = {
    FramingStatus.UNKNOWN: "Position yourself in front of the camera",
    FramingStatus.TOO_CLOSE: "Step back from the device",
    FramingStatus.TOO_FAR: "Move closer to the device",
    FramingStatus.TOO_LEFT: "Move to the right",
    FramingStatus.TOO_RIGHT: "Move to the left",
    FramingStatus.TOO_HIGH: "Lower your position or raise the device",
    FramingStatus.TOO_LOW: "Raise your position or lower the device",
    FramingStatus.ACCEPTABLE: "Good positioning - ready to start",
    FramingStatus.OPTIMAL: "Perfect positioning!",
}


@dataclass(frozen=True)
class TargetFraming:
    """Where the user should appear in frame for an exercise."""
    body_parts: Tuple[Joint, ...]
    optimal_distance: float
    acceptable_distance: Tuple[float, float]
    vertical_center: Tuple[float, float]
    horizontal_center: Tuple[float, float]
    min_body_coverage: float


TARGET_FRAMING: Dict[ExerciseType, TargetFraming] = {
    ExerciseType.PUSHUP: TargetFraming(
        body_parts=(
            Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_ELBOW, Joint.RIGHT_ELBOW,
            Joint.LEFT_WRIST, Joint.RIGHT_WRIST, Joint.LEFT_HIP, Joint.RIGHT_HIP,
            Joint.LEFT_ANKLE, Joint.RIGHT_ANKLE,
        ),
        optimal_distance=1.5,
        acceptable_distance=(1.2, 2.0),
        vertical_center=(0.4, 0.6),
        horizontal_center=(0.2, 0.8),
        min_body_coverage=0.7,
    ),
    ExerciseType.SITUP: TargetFraming(
        body_parts=(
            Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_ELBOW, Joint.RIGHT_ELBOW,
            Joint.LEFT_HIP, Joint.RIGHT_HIP, Joint.LEFT_KNEE, Joint.RIGHT_KNEE, Joint.NOSE,
        ),
        optimal_distance=1.4,
        acceptable_distance=(1.1, 1.9),
        vertical_center=(0.25, 0.75),
        horizontal_center=(0.2, 0.8),
        min_body_coverage=0.65,
    ),
    ExerciseType.PULLUP: TargetFraming(
        body_parts=(
            Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_ELBOW, Joint.RIGHT_ELBOW,
            Joint.LEFT_WRIST, Joint.RIGHT_WRIST, Joint.LEFT_HIP, Joint.RIGHT_HIP,
            Joint.LEFT_KNEE, Joint.RIGHT_KNEE, Joint.NOSE,
        ),
        optimal_distance=1.6,
        acceptable_distance=(1.3, 2.2),
        vertical_center=(0.15, 0.85),
        horizontal_center=(0.2, 0.8),
        min_body_coverage=0.75,
    ),
}

PERMISSIVE_FRAMING = TargetFraming(
    body_parts=(),
    optimal_distance=1.0,
    acceptable_distance=(0.5, 10.0),
    vertical_center=(0.0, 1.0),
    horizontal_center=(0.0, 1.0),
    min_body_coverage=0.0,
)


def get_target_framing(exercise: ExerciseType) -> TargetFraming:
    return TARGET_FRAMING.get(exercise, PERMISSIVE_FRAMING)


# ==================== MEASUREMENTS ====================

def body_center(pose: PoseSnapshot) -> Tuple[float, float]:
    """Mean of confidently detected shoulders and hips, (0.5, 0.5) if none."""
    points = [pose.get(j).point for j in CENTER_JOINTS if pose.is_visible(j, VISIBLE_CONFIDENCE)]
    if not points:
        return (0.5, 0.5)
    center = np.mean(np.array(points), axis=0)
    return (float(center[0]), float(center[1]))


def body_extent(pose: PoseSnapshot, joints: Tuple[Joint, ...]) -> float:
    """Largest side of the bounding box around visible ``joints``."""
    points = [pose.get(j).point for j in joints if pose.is_visible(j, VISIBLE_CONFIDENCE)]
    if len(points) < 2:
        return 0.0
    arr = np.array(points)
    span = arr.max(axis=0) - arr.min(axis=0)
    return float(span.max())


def apparent_distance(pose: PoseSnapshot, exercise: ExerciseType) -> float:
    """Estimated user-to-camera distance in meters from apparent body size."""
    target = get_target_framing(exercise)
    extent = body_extent(pose, target.body_parts or tuple(pose.joints))
    if extent <= 0:
        return DEFAULT_DISTANCE
    return EXTENT_AT_ONE_METER / extent


def coverage(pose: PoseSnapshot, exercise: ExerciseType) -> float:
    """Fraction of the exercise's framing joints confidently visible."""
    parts = get_target_framing(exercise).body_parts
    if not parts:
        return 1.0
    return len(pose.visible_joints(parts, VISIBLE_CONFIDENCE)) / len(parts)


# ==================== EVALUATION ====================

def evaluate_framing(pose: Optional[PoseSnapshot], exercise: ExerciseType) -> FramingStatus:
    """
    Classify how well the user is framed for ``exercise``.

    Args:
        pose: Latest pose, or None when nobody is detected
        exercise: Exercise being calibrated

    Returns:
        A framing status; only ACCEPTABLE and OPTIMAL admit frames
    """
    if pose is None or not pose.joints:
        return FramingStatus.UNKNOWN

    target = get_target_framing(exercise)
    if coverage(pose, exercise) < target.min_body_coverage:
        return _diagnose_poor_coverage(pose, exercise, target)

    cx, cy = body_center(pose)
    dist = apparent_distance(pose, exercise)
    low, high = target.acceptable_distance

    if dist > high:
        return FramingStatus.TOO_FAR
    if dist < low:
        return FramingStatus.TOO_CLOSE

    if cx < target.horizontal_center[0]:
        return FramingStatus.TOO_LEFT
    if cx > target.horizontal_center[1]:
        return FramingStatus.TOO_RIGHT

    if cy < target.vertical_center[0]:
        return FramingStatus.TOO_HIGH
    if cy > target.vertical_center[1]:
        return FramingStatus.TOO_LOW

    optimal_size = abs(dist - target.optimal_distance) < OPTIMAL_DISTANCE_MARGIN
    optimal_position = abs(cx - 0.5) < OPTIMAL_CENTER_MARGIN and abs(cy - 0.5) < OPTIMAL_CENTER_MARGIN
    return FramingStatus.OPTIMAL if optimal_size and optimal_position else FramingStatus.ACCEPTABLE


def _diagnose_poor_coverage(
    pose: PoseSnapshot,
    exercise: ExerciseType,
    target: TargetFraming,
) -> FramingStatus:
    # distance problems take precedence when much of the body is missing
    dist = apparent_distance(pose, exercise)
    low, high = target.acceptable_distance
    if dist > high * 1.2:
        return FramingStatus.TOO_FAR
    if dist < low * 0.8:
        return FramingStatus.TOO_CLOSE

    cx, cy = body_center(pose)
    if cx < 0.2:
        return FramingStatus.TOO_LEFT
    if cx > 0.8:
        return FramingStatus.TOO_RIGHT
    if cy < 0.2:
        return FramingStatus.TOO_HIGH
    if cy > 0.8:
        return FramingStatus.TOO_LOW
    return FramingStatus.UNKNOWN


# ==================== SUGGESTIONS ====================

class SuggestionType(Enum):
    DEVICE_POSITION = "device_position"
    USER_POSITION = "user_position"
    LIGHTING = "lighting"
    STABILITY = "stability"
    BODY_VISIBILITY = "body_visibility"
    EXERCISE_SETUP = "exercise_setup"


class SuggestionPriority(Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    MINOR = "minor"


@dataclass(frozen=True)
class CalibrationSuggestion:
    type: SuggestionType
    message: str
    priority: SuggestionPriority
    action_required: bool = False

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "message": self.message,
            "priority": self.priority.value,
            "action_required": self.action_required,
        }


def generate_suggestions(
    pose: Optional[PoseSnapshot],
    framing: FramingStatus,
    stability: Optional[float],
    exercise: ExerciseType,
    position: Optional[DevicePosition] = None,
) -> List[CalibrationSuggestion]:
    """
    Setup hints for the current calibration state, most urgent first.

    ``stability`` is None when no motion data has been received; the
    stability hint is then skipped.
    """
    suggestions = []

    if not framing.is_acceptable:
        suggestions.append(CalibrationSuggestion(
            SuggestionType.USER_POSITION, framing.instruction,
            SuggestionPriority.CRITICAL, action_required=True,
        ))

    if position is not None and position.kind is PositionKind.HANDHELD:
        suggestions.append(CalibrationSuggestion(
            SuggestionType.DEVICE_POSITION, "Place device on stable surface for better calibration",
            SuggestionPriority.CRITICAL, action_required=True,
        ))
    elif position is not None and position.kind is PositionKind.UNKNOWN:
        suggestions.append(CalibrationSuggestion(
            SuggestionType.DEVICE_POSITION, "Detecting device position...",
            SuggestionPriority.MINOR,
        ))

    if stability is not None and stability < 0.7:
        suggestions.append(CalibrationSuggestion(
            SuggestionType.STABILITY, "Hold device steady during calibration",
            SuggestionPriority.IMPORTANT, action_required=True,
        ))

    if pose is not None and pose.joints:
        if pose.mean_confidence < 0.6:
            suggestions.append(CalibrationSuggestion(
                SuggestionType.LIGHTING, "Improve lighting conditions for better detection",
                SuggestionPriority.IMPORTANT,
            ))
        if coverage(pose, exercise) < 0.8:
            suggestions.append(CalibrationSuggestion(
                SuggestionType.BODY_VISIBILITY, "Ensure full body is visible in camera frame",
                SuggestionPriority.CRITICAL, action_required=True,
            ))

    return suggestions


def is_ready_for_next_phase(suggestions: List[CalibrationSuggestion]) -> bool:
    return not any(s.action_required for s in suggestions)
