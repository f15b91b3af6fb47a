"""
Calibration Strategies for RepForm.

Ordered chain of calibration strategies of decreasing strictness:
full body, partial body, key point and manual. The selector walks the
chain until a strategy can run with what the camera currently sees;
manual always succeeds.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.data_types import (
    AngleAdjustments, CalibrationData, CalibrationFrame, CalibrationMode, DevicePosition, ExerciseType,
    Joint, MotionSample, PoseNormalization, PoseSnapshot, ValidationRanges, VisibilityThresholds,
)
from .aggregator import CalibrationAggregator

logger = logging.getLogger(__name__)


# ==================== DEFAULT PROFILES ====================

DEFAULT_NORMALIZATION = PoseNormalization(
    shoulder_width=0.34, hip_width=0.26, arm_length=0.85, leg_length=0.9, head_size=0.22,
)
DEFAULT_THRESHOLDS = VisibilityThresholds(
    minimum_confidence=0.5, support_joints=0.6, critical_joints=0.65, face_joints=0.4,
)

# exercise -> (device height, angle, distance, body alignment/vertical, tolerances, position, movement)
_DEFAULT_SETUPS = {
    ExerciseType.PUSHUP: (
        0.3, 45.0, 1.5, {"pushup_body_alignment": 20.0},
        {"pushup_elbow": 15.0, "body_alignment": 25.0},
        {"horizontal_drift": 0.15, "vertical_drift": 0.15},
        {"max_speed": 30.0, "min_speed": 2.0},
    ),
    ExerciseType.SITUP: (
        0.3, 45.0, 1.8, {},
        {"situp_torso": 20.0, "knee_angle": 15.0},
        {"horizontal_drift": 0.2, "vertical_drift": 0.15},
        {"max_speed": 25.0, "min_speed": 3.0},
    ),
    ExerciseType.PULLUP: (
        1.0, 15.0, 2.0, {"pullup_body_vertical": 15.0},
        {"pullup_arm": 15.0, "body_vertical": 20.0},
        {"horizontal_drift": 0.25, "vertical_drift": 0.1},
        {"max_speed": 35.0, "min_speed": 2.0},
    ),
}


class DefaultCalibrationProfiles:
    """Fixed baseline profiles used when no measured calibration exists."""

    DEFAULT_SCORE = 75.0

    @classmethod
    def get_default(cls, exercise: ExerciseType) -> CalibrationData:
        height, angle, distance, angle_overrides, tolerances, position, movement = _DEFAULT_SETUPS.get(
            exercise,
            (0.8, 30.0, 1.5, {"pushup_body_alignment": 20.0}, {"default": 15.0},
             {"horizontal_drift": 0.15, "vertical_drift": 0.15}, {"max_speed": 30.0, "min_speed": 2.0}),
        )
        return CalibrationData(
            exercise=exercise,
            device_height=height,
            device_angle=angle,
            device_distance=distance,
            device_stability=0.8,
            user_height=1.7,
            arm_span=1.7,
            torso_length=0.6,
            leg_length=0.9,
            angle_adjustments=AngleAdjustments(**angle_overrides),
            visibility_thresholds=DEFAULT_THRESHOLDS,
            pose_normalization=DEFAULT_NORMALIZATION,
            calibration_score=cls.DEFAULT_SCORE,
            confidence_level=cls.DEFAULT_SCORE / 100.0,
            frame_count=0,
            validation_ranges=ValidationRanges(
                angle_tolerances=dict(tolerances),
                position_tolerances=dict(position),
                movement_thresholds=dict(movement),
            ),
        )


# ==================== MANUAL INPUTS ====================

class ExperienceLevel(Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


@dataclass(frozen=True)
class ManualCalibrationInputs:
    device_height: float = 0.8
    device_distance: float = 1.5
    user_height: float = 1.7
    experience: ExperienceLevel = ExperienceLevel.BEGINNER


# ==================== STRATEGIES ====================

FULL_BODY_JOINTS = (
    Joint.NOSE, Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_ELBOW, Joint.RIGHT_ELBOW,
    Joint.LEFT_WRIST, Joint.RIGHT_WRIST, Joint.LEFT_HIP, Joint.RIGHT_HIP, Joint.LEFT_KNEE,
    Joint.RIGHT_KNEE, Joint.LEFT_ANKLE, Joint.RIGHT_ANKLE,
)

PARTIAL_BODY_JOINTS: Dict[ExerciseType, Tuple[Joint, ...]] = {
    ExerciseType.PUSHUP: (
        Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_ELBOW, Joint.RIGHT_ELBOW,
        Joint.LEFT_WRIST, Joint.RIGHT_WRIST, Joint.LEFT_HIP, Joint.RIGHT_HIP,
    ),
    ExerciseType.SITUP: (
        Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_HIP, Joint.RIGHT_HIP,
        Joint.LEFT_KNEE, Joint.RIGHT_KNEE,
    ),
    ExerciseType.PULLUP: (
        Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_ELBOW, Joint.RIGHT_ELBOW,
        Joint.LEFT_WRIST, Joint.RIGHT_WRIST,
    ),
}

KEY_POINT_JOINTS: Dict[ExerciseType, Tuple[Joint, ...]] = {
    ExerciseType.PUSHUP: (Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_ELBOW, Joint.RIGHT_ELBOW),
    ExerciseType.SITUP: (Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER, Joint.LEFT_HIP, Joint.RIGHT_HIP),
    ExerciseType.PULLUP: (Joint.LEFT_WRIST, Joint.RIGHT_WRIST, Joint.LEFT_ELBOW, Joint.RIGHT_ELBOW),
}


class CalibrationStrategy:
    """Base strategy: a visibility predicate, a frame requirement and a performer."""

    name = "strategy"
    required_frames = 0
    minimum_confidence = 0.5
    score_ceiling = 100.0

    def __init__(self, exercise: ExerciseType, aggregator: CalibrationAggregator):
        self.exercise = exercise
        self.aggregator = aggregator

    @property
    def required_joints(self) -> Tuple[Joint, ...]:
        return ()

    def can_execute(self, pose: Optional[PoseSnapshot]) -> bool:
        raise NotImplementedError

    def perform_calibration(
        self,
        frames: Sequence[CalibrationFrame],
        motion: Optional[MotionSample] = None,
        position: Optional[DevicePosition] = None,
    ) -> Optional[CalibrationData]:
        raise NotImplementedError

    def get_instructions(self) -> str:
        return ""

    def _visible_count(self, pose: PoseSnapshot) -> int:
        return len(pose.visible_joints(self.required_joints, self.minimum_confidence))


class FullBodyCalibrationStrategy(CalibrationStrategy):
    name = "Full Body Calibration"
    required_frames = 60
    minimum_confidence = 0.5
    visibility_ratio = 0.85

    @property
    def required_joints(self) -> Tuple[Joint, ...]:
        return FULL_BODY_JOINTS

    def can_execute(self, pose: Optional[PoseSnapshot]) -> bool:
        if pose is None:
            return False
        return self._visible_count(pose) / len(self.required_joints) > self.visibility_ratio

    def perform_calibration(self, frames, motion=None, position=None):
        return self.aggregator.aggregate(
            self.exercise, frames, required_frames=self.required_frames, motion=motion, position=position,
        )

    def get_instructions(self) -> str:
        return (
            "Stand where your full body is visible in the camera frame. "
            "We'll analyze your body proportions for accurate exercise tracking."
        )


class PartialBodyCalibrationStrategy(CalibrationStrategy):
    name = "Partial Body Calibration"
    required_frames = 40
    minimum_confidence = 0.55
    visibility_ratio = 0.75
    score_ceiling = 75.0

    @property
    def required_joints(self) -> Tuple[Joint, ...]:
        return PARTIAL_BODY_JOINTS.get(self.exercise, ())

    def can_execute(self, pose: Optional[PoseSnapshot]) -> bool:
        if pose is None or not self.required_joints:
            return False
        return self._visible_count(pose) / len(self.required_joints) > self.visibility_ratio

    def perform_calibration(self, frames, motion=None, position=None):
        if len(frames) < self.required_frames:
            return None
        base = DefaultCalibrationProfiles.get_default(self.exercise)
        stability = sum(f.quality.stability for f in frames) / len(frames)
        return self.aggregator.synthesize(
            base, frames, self.score_ceiling,
            device_stability=stability,
            visibility_thresholds=VisibilityThresholds(
                minimum_confidence=0.5, support_joints=0.55, critical_joints=0.6, face_joints=0.4,
            ),
        )

    def get_instructions(self) -> str:
        return {
            ExerciseType.PUSHUP: (
                "Position your upper body and arms in the camera view. "
                "We'll use partial body tracking for calibration."
            ),
            ExerciseType.SITUP: (
                "Make sure your torso and knees are visible. "
                "We'll calibrate using your core body position."
            ),
            ExerciseType.PULLUP: (
                "Focus on showing your arms and shoulders. "
                "We'll calibrate based on upper body movement."
            ),
        }.get(self.exercise, "Position the relevant body parts for your exercise in view.")


class KeyPointCalibrationStrategy(CalibrationStrategy):
    name = "Key Point Calibration"
    required_frames = 20
    minimum_confidence = 0.6
    score_ceiling = 65.0

    RELAXED_ANGLES = AngleAdjustments(
        pushup_elbow_up=160, pushup_elbow_down=100, pushup_body_alignment=25,
        situp_torso_up=85, situp_torso_down=50, situp_knee_angle=85,
        pullup_arm_extended=160, pullup_arm_flexed=100, pullup_body_vertical=20,
    )

    @property
    def required_joints(self) -> Tuple[Joint, ...]:
        return KEY_POINT_JOINTS.get(self.exercise, ())

    def can_execute(self, pose: Optional[PoseSnapshot]) -> bool:
        if pose is None or not self.required_joints:
            return False
        return self._visible_count(pose) >= len(self.required_joints) // 2

    def perform_calibration(self, frames, motion=None, position=None):
        if len(frames) < self.required_frames:
            return None
        base = DefaultCalibrationProfiles.get_default(self.exercise)
        return self.aggregator.synthesize(
            base, frames, self.score_ceiling,
            device_stability=0.7,
            angle_adjustments=self.RELAXED_ANGLES,
            visibility_thresholds=VisibilityThresholds(
                minimum_confidence=0.55, support_joints=0.6, critical_joints=0.65, face_joints=0.45,
            ),
            validation_ranges=ValidationRanges(
                angle_tolerances={"default": 20.0},
                position_tolerances={"drift": 0.25},
                movement_thresholds={"speed": 35.0},
            ),
        )

    def get_instructions(self) -> str:
        return (
            f"Basic calibration mode - show only the key body parts needed for "
            f"{self.exercise.display_name}. Tracking may be less accurate."
        )


class ManualCalibrationStrategy(CalibrationStrategy):
    name = "Manual Calibration"
    required_frames = 0
    score_ceiling = 60.0

    CONSERVATIVE_ANGLES = AngleAdjustments(
        pushup_elbow_up=160, pushup_elbow_down=100, pushup_body_alignment=30,
        situp_torso_up=80, situp_torso_down=55, situp_knee_angle=80,
        pullup_arm_extended=160, pullup_arm_flexed=100, pullup_body_vertical=25,
    )

    def __init__(self, exercise: ExerciseType, aggregator: CalibrationAggregator):
        super().__init__(exercise, aggregator)
        self.user_inputs: Optional[ManualCalibrationInputs] = None

    def set_user_inputs(self, inputs: ManualCalibrationInputs) -> None:
        self.user_inputs = inputs

    def can_execute(self, pose: Optional[PoseSnapshot]) -> bool:
        return True

    def perform_calibration(self, frames=(), motion=None, position=None):
        inputs = self.user_inputs or ManualCalibrationInputs()
        base = DefaultCalibrationProfiles.get_default(self.exercise)
        return self.aggregator.synthesize(
            base, (), self.score_ceiling,
            device_height=inputs.device_height,
            device_angle=30.0,
            device_distance=inputs.device_distance,
            device_stability=0.5,
            user_height=inputs.user_height,
            arm_span=inputs.user_height * 1.0,
            torso_length=inputs.user_height * 0.35,
            leg_length=inputs.user_height * 0.53,
            angle_adjustments=self.CONSERVATIVE_ANGLES,
            visibility_thresholds=VisibilityThresholds(
                minimum_confidence=0.6, support_joints=0.65, critical_joints=0.7, face_joints=0.5,
            ),
            validation_ranges=ValidationRanges(
                angle_tolerances={"default": 25.0},
                position_tolerances={"drift": 0.3},
                movement_thresholds={"speed": 40.0},
            ),
        )

    def get_instructions(self) -> str:
        return (
            "Manual setup mode - We'll guide you through setting up your device position "
            "and entering basic information for exercise tracking."
        )


# ==================== SELECTOR ====================

class CalibrationStrategySelector:
    """
    Walks the strategy chain for one exercise.

    Example:
        >>> selector = CalibrationStrategySelector(ExerciseType.PUSHUP)
        >>> strategy = selector.select_strategy(pose)
        >>> profile = selector.perform_calibration(frames)
    """

    def __init__(
        self,
        exercise: ExerciseType,
        aggregator: Optional[CalibrationAggregator] = None,
        partial_ceiling: Optional[float] = None,
        key_point_ceiling: Optional[float] = None,
        manual_ceiling: Optional[float] = None,
    ):
        self.exercise = exercise
        self.aggregator = aggregator or CalibrationAggregator()
        self.strategies: List[CalibrationStrategy] = [
            FullBodyCalibrationStrategy(exercise, self.aggregator),
            PartialBodyCalibrationStrategy(exercise, self.aggregator),
            KeyPointCalibrationStrategy(exercise, self.aggregator),
            ManualCalibrationStrategy(exercise, self.aggregator),
        ]
        for strategy, ceiling in zip(self.strategies[1:], (partial_ceiling, key_point_ceiling, manual_ceiling)):
            if ceiling is not None:
                strategy.score_ceiling = ceiling
        self._index = 0

    @property
    def current_strategy(self) -> CalibrationStrategy:
        return self.strategies[self._index]

    @property
    def manual_strategy(self) -> ManualCalibrationStrategy:
        return self.strategies[-1]

    @property
    def is_terminal(self) -> bool:
        return self._index == len(self.strategies) - 1

    def select_strategy(self, pose: Optional[PoseSnapshot]) -> CalibrationStrategy:
        """Pick the strictest strategy the current pose supports."""
        for index, strategy in enumerate(self.strategies):
            if strategy.can_execute(pose):
                self._index = index
                logger.info(f"Calibration strategy selected: {strategy.name}")
                return strategy
        self._index = len(self.strategies) - 1
        return self.current_strategy

    def fallback_to_next_strategy(self) -> CalibrationStrategy:
        """Advance one step down the chain; stays on manual once there."""
        if not self.is_terminal:
            self._index += 1
            logger.info(f"Falling back to {self.current_strategy.name}")
        return self.current_strategy

    def apply_mode(self, mode: CalibrationMode, frame_cap: Optional[int] = None) -> None:
        """Cap every strategy's frame requirement at the mode's frame count."""
        cap = mode.required_frames if frame_cap is None else min(mode.required_frames, frame_cap)
        for strategy in self.strategies:
            strategy.required_frames = min(type(strategy).required_frames, cap)

    def reset(self) -> None:
        self._index = 0

    def perform_calibration(
        self,
        frames: Sequence[CalibrationFrame],
        motion: Optional[MotionSample] = None,
        position: Optional[DevicePosition] = None,
    ) -> Optional[CalibrationData]:
        return self.current_strategy.perform_calibration(frames, motion=motion, position=position)

    def get_instructions(self) -> str:
        return self.current_strategy.get_instructions()
