"""
Calibration Aggregator for RepForm.

Turns a batch of calibration frames into an immutable CalibrationData
profile: body measurements, device metrics, angle adjustments,
visibility thresholds and a calibration score.

The score is always computed here from frame quality; strategies
may only lower it through a ceiling.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

import numpy as np

from ..core.data_types import (
    AngleAdjustments, BASELINE_ANGLES, CalibrationData, CalibrationFrame, CalibrationQuality,
    DevicePosition, ExerciseType, MotionSample, PoseNormalization, PositionKind,
    ValidationRanges, VisibilityThresholds, Joint,
)
from ..core.device_position import (
    compute_pose_metrics, detect_position, estimate_device_angle, estimate_device_height,
)
from ..core.geometry import filter_outliers_and_average, joint_distance

logger = logging.getLogger(__name__)


# ==================== CONSTANTS ====================

# Body height is a normalized image span, not meters; the ratio against a
# 1.7 m reference is a coarse heuristic and usually lands in the short band.
REFERENCE_USER_HEIGHT = 1.7
TALL_FACTOR = 1.1
SHORT_FACTOR = 0.9
HEIGHT_ANGLE_SHIFT = 3.0

# (device height, distance) overrides per position; None keeps the estimate
POSITION_DEVICE_DEFAULTS = {
    PositionKind.GROUND: (0.1, 1.2),
    PositionKind.ELEVATED: (None, 1.5),
    PositionKind.TRIPOD: (None, 1.8),
    PositionKind.HANDHELD: (1.0, 1.0),
    PositionKind.UNKNOWN: (1.0, 1.5),
}

DEFAULT_VALIDATION_RANGES = ValidationRanges(
    angle_tolerances={
        "pushup_elbow": 10.0,
        "situp_torso": 15.0,
        "pullup_arm": 10.0,
        "body_alignment": 20.0,
        "default": 15.0,
    },
    position_tolerances={
        "horizontal_drift": 0.1,
        "vertical_drift": 0.1,
        "distance_variation": 0.2,
    },
    movement_thresholds={
        "max_speed": 30.0,
        "min_speed": 2.0,
        "stability_window": 5.0,
    },
)


# ==================== INTERMEDIATE TYPES ====================

@dataclass(frozen=True)
class BodyMeasurements:
    """Body segment lengths in normalized image units."""
    height: float = 0.0
    arm_span: float = 0.0
    torso_length: float = 0.0
    leg_length: float = 0.0


@dataclass(frozen=True)
class DeviceMetrics:
    height: float
    angle: float
    distance: float
    stability: float


# ==================== AGGREGATOR ====================

class CalibrationAggregator:
    """
    Statistical aggregation of calibration frames.

    Quality tier thresholds are configurable; everything else is a
    deterministic function of the frames.
    """

    def __init__(
        self,
        excellent: float = 90.0,
        good: float = 80.0,
        acceptable: float = 70.0,
        poor: float = 60.0,
    ):
        self.quality_thresholds = {
            "excellent": excellent,
            "good": good,
            "acceptable": acceptable,
            "poor": poor,
        }

    def aggregate(
        self,
        exercise: ExerciseType,
        frames: Sequence[CalibrationFrame],
        required_frames: int = 60,
        motion: Optional[MotionSample] = None,
        position: Optional[DevicePosition] = None,
    ) -> Optional[CalibrationData]:
        """
        Build a full calibration profile from ``frames``.

        Args:
            exercise: Exercise being calibrated
            frames: Accepted calibration frames
            required_frames: Minimum batch size
            motion: Latest motion reading, used to classify the position
            position: Known device position; classified from frames if None

        Returns:
            The new profile, or None when the batch is too small
        """
        if len(frames) < required_frames or not frames:
            logger.warning(f"Aggregation rejected: {len(frames)}/{required_frames} frames")
            return None

        if position is None:
            position = detect_position(frames, motion)

        body = self.measure_body(frames)
        device = self.device_metrics(frames, position)
        score = self.score(frames)

        profile = CalibrationData(
            exercise=exercise,
            device_height=device.height,
            device_angle=device.angle,
            device_distance=device.distance,
            device_stability=device.stability,
            user_height=body.height,
            arm_span=body.arm_span,
            torso_length=body.torso_length,
            leg_length=body.leg_length,
            angle_adjustments=self.angle_adjustments(position, device, body),
            visibility_thresholds=self.visibility_thresholds(device),
            pose_normalization=self.pose_normalization(body),
            calibration_score=score,
            confidence_level=score / 100.0,
            frame_count=len(frames),
            validation_ranges=DEFAULT_VALIDATION_RANGES,
        )

        logger.info(
            f"Calibration aggregated: {exercise.value} score={score:.1f} "
            f"quality={self.quality(score).value} position={position.kind.value}"
        )
        return profile

    def synthesize(
        self,
        base: CalibrationData,
        frames: Sequence[CalibrationFrame],
        score_ceiling: float,
        **overrides,
    ) -> CalibrationData:
        """
        Derive a profile from a baseline for the reduced strategies.

        The score is the frame-derived score capped at ``score_ceiling``;
        with no frames it is the ceiling itself.
        """
        if frames:
            score = min(score_ceiling, self.score(frames))
        else:
            score = score_ceiling

        return replace(
            base,
            calibration_score=score,
            confidence_level=score / 100.0,
            frame_count=len(frames),
            **overrides,
        )

    # ==================== MEASUREMENTS ====================

    def measure_body(self, frames: Sequence[CalibrationFrame]) -> BodyMeasurements:
        heights: List[float] = []
        arm_spans: List[float] = []
        torsos: List[float] = []
        legs: List[float] = []

        for frame in frames:
            pose = frame.pose

            nose = pose.get(Joint.NOSE)
            ankle_mid = pose.midpoint(Joint.LEFT_ANKLE, Joint.RIGHT_ANKLE)
            if nose is not None and ankle_mid is not None:
                heights.append(float(np.hypot(nose.x - ankle_mid[0], nose.y - ankle_mid[1])))

            span = joint_distance(pose, Joint.LEFT_WRIST, Joint.RIGHT_WRIST)
            if span is not None:
                arm_spans.append(span)

            shoulder_mid = pose.midpoint(Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER)
            hip_mid = pose.midpoint(Joint.LEFT_HIP, Joint.RIGHT_HIP)
            if shoulder_mid is not None and hip_mid is not None:
                torsos.append(float(np.hypot(shoulder_mid[0] - hip_mid[0], shoulder_mid[1] - hip_mid[1])))

            leg = joint_distance(pose, Joint.LEFT_HIP, Joint.LEFT_ANKLE)
            if leg is not None:
                legs.append(leg)

        return BodyMeasurements(
            height=filter_outliers_and_average(heights),
            arm_span=filter_outliers_and_average(arm_spans),
            torso_length=filter_outliers_and_average(torsos),
            leg_length=filter_outliers_and_average(legs),
        )

    def device_metrics(
        self,
        frames: Sequence[CalibrationFrame],
        position: DevicePosition,
    ) -> DeviceMetrics:
        """Device height, tilt, distance and stability adjusted for position."""
        motions = [frame.motion for frame in frames if frame.motion is not None]
        metrics = compute_pose_metrics([frame.pose for frame in frames])

        if motions:
            measured_angle = filter_outliers_and_average([abs(m.pitch_degrees) for m in motions])
        else:
            measured_angle = abs(estimate_device_angle(metrics))
        angle = position.angle if position.angle is not None else measured_angle

        stability = filter_outliers_and_average([frame.quality.stability for frame in frames])

        height_default, distance = POSITION_DEVICE_DEFAULTS[position.kind]
        if height_default is not None:
            height = height_default
        elif position.height is not None:
            height = position.height
        else:
            height = estimate_device_height(metrics)

        if position.kind is PositionKind.TRIPOD:
            stability = min(1.0, stability + 0.2)
        elif position.kind is PositionKind.HANDHELD:
            stability = max(0.3, stability - 0.3)

        return DeviceMetrics(height=height, angle=angle, distance=distance, stability=stability)

    def angle_adjustments(
        self,
        position: DevicePosition,
        device: DeviceMetrics,
        body: BodyMeasurements,
    ) -> AngleAdjustments:
        """Perturb the baseline target angles for viewpoint and body size."""
        angles = BASELINE_ANGLES.to_dict()
        angle = abs(device.angle)

        if position.kind is PositionKind.GROUND:
            if angle < 30:
                angles["pushup_elbow_down"] -= 5
                angles["situp_torso_down"] += 5
            elif angle > 45:
                angles["pushup_elbow_down"] += 5
                angles["situp_torso_down"] -= 5
        elif position.kind is PositionKind.ELEVATED:
            if device.height > 1.5:
                angles["pushup_elbow_down"] += 5
                angles["pullup_arm_flexed"] -= 5
            if angle > 60:
                angles["pushup_elbow_down"] += 5
                angles["situp_torso_down"] -= 5
        elif position.kind is PositionKind.TRIPOD:
            if angle > 45:
                angles["pushup_body_alignment"] += 5
                angles["situp_torso_down"] -= 3
        elif position.kind is PositionKind.HANDHELD:
            angles["pushup_body_alignment"] += 10
            angles["pullup_body_vertical"] += 5

        height_factor = body.height / REFERENCE_USER_HEIGHT
        if height_factor > TALL_FACTOR:
            angles["pushup_elbow_down"] += HEIGHT_ANGLE_SHIFT
            angles["situp_torso_down"] += HEIGHT_ANGLE_SHIFT
        elif height_factor < SHORT_FACTOR:
            angles["pushup_elbow_down"] -= HEIGHT_ANGLE_SHIFT
            angles["situp_torso_down"] -= HEIGHT_ANGLE_SHIFT

        return AngleAdjustments(**angles)

    def visibility_thresholds(self, device: DeviceMetrics) -> VisibilityThresholds:
        """
        Tiered confidence thresholds.

        A steadier, closer device lets thresholds rise; critical sits on
        the adjusted base with support and minimum stepping down.
        """
        distance_correction = float(np.clip((1.5 - device.distance) * 0.1, -0.1, 0.1))
        adjusted = 0.5 + device.stability * 0.2 + distance_correction

        return VisibilityThresholds(
            minimum_confidence=max(0.3, adjusted - 0.2),
            critical_joints=max(0.4, adjusted),
            support_joints=max(0.3, adjusted - 0.1),
            face_joints=max(0.2, adjusted - 0.3),
        ).normalized()

    def pose_normalization(self, body: BodyMeasurements) -> PoseNormalization:
        return PoseNormalization(
            shoulder_width=body.arm_span * 0.2,
            hip_width=body.arm_span * 0.15,
            arm_length=body.arm_span * 0.5,
            leg_length=body.leg_length,
            head_size=body.height * 0.13,
        )

    # ==================== SCORING ====================

    def score(self, frames: Sequence[CalibrationFrame]) -> float:
        """Weighted confidence, stability and completeness, 0-100."""
        if not frames:
            return 0.0
        confidence = np.mean([f.quality.overall_confidence for f in frames])
        stability = np.mean([f.quality.stability for f in frames])
        completeness = np.mean([f.quality.body_completeness for f in frames])
        raw = (confidence * 0.4 + stability * 0.3 + completeness * 0.3) * 100.0
        return float(np.clip(raw, 0.0, 100.0))

    def quality(self, score: float) -> CalibrationQuality:
        return CalibrationQuality.from_score(score, **self.quality_thresholds)
