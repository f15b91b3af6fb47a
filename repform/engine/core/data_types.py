"""
Core Data Types for RepForm.

Pose, motion and calibration data structures shared by the
calibration and real-time scoring engine.

Coordinates are normalized image coordinates in [0, 1] with y
pointing down, as produced by MediaPipe-style pose estimators.

Author: RepForm Team
Version: 1.0.0
"""

import time
import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np


# ==================== ENUMS ====================

class ExerciseType(Enum):
    """Exercises known to the engine."""
    PUSHUP = "pushup"
    SITUP = "situp"
    PULLUP = "pullup"
    RUN = "run"

    @property
    def is_calibratable(self) -> bool:
        return self in (ExerciseType.PUSHUP, ExerciseType.SITUP, ExerciseType.PULLUP)

    @property
    def display_name(self) -> str:
        return {
            ExerciseType.PUSHUP: "Push-ups",
            ExerciseType.SITUP: "Sit-ups",
            ExerciseType.PULLUP: "Pull-ups",
            ExerciseType.RUN: "Run",
        }[self]


class Joint(Enum):
    """
    Tracked body joints.

    Values are the MediaPipe Pose landmark indices so a raw landmark
    list can be indexed directly.
    """
    NOSE = 0
    LEFT_EYE = 2
    RIGHT_EYE = 5
    LEFT_EAR = 7
    RIGHT_EAR = 8
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28


FACE_JOINTS = (Joint.NOSE, Joint.LEFT_EYE, Joint.RIGHT_EYE, Joint.LEFT_EAR, Joint.RIGHT_EAR)

CRITICAL_JOINTS = (
    Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER,
    Joint.LEFT_ELBOW, Joint.RIGHT_ELBOW,
    Joint.LEFT_WRIST, Joint.RIGHT_WRIST,
    Joint.LEFT_HIP, Joint.RIGHT_HIP,
)


class PositionKind(Enum):
    GROUND = "ground"
    ELEVATED = "elevated"
    TRIPOD = "tripod"
    HANDHELD = "handheld"
    UNKNOWN = "unknown"


class CalibrationQuality(Enum):
    """Quality tier derived from a calibration score."""
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"
    INVALID = "invalid"

    @classmethod
    def from_score(
        cls,
        score: float,
        excellent: float = 90.0,
        good: float = 80.0,
        acceptable: float = 70.0,
        poor: float = 60.0,
    ) -> "CalibrationQuality":
        if score >= excellent:
            return cls.EXCELLENT
        if score >= good:
            return cls.GOOD
        if score >= acceptable:
            return cls.ACCEPTABLE
        if score >= poor:
            return cls.POOR
        return cls.INVALID

    @property
    def description(self) -> str:
        return {
            CalibrationQuality.EXCELLENT: "Excellent calibration - optimal accuracy expected",
            CalibrationQuality.GOOD: "Good calibration - high accuracy expected",
            CalibrationQuality.ACCEPTABLE: "Acceptable calibration - moderate accuracy",
            CalibrationQuality.POOR: "Poor calibration - consider recalibrating",
            CalibrationQuality.INVALID: "Invalid calibration - recalibration required",
        }[self]

    @property
    def is_usable(self) -> bool:
        return self is not CalibrationQuality.INVALID


class CalibrationMode(Enum):
    """How much data a calibration run collects."""
    QUICK = "quick"
    BASIC = "basic"
    FULL = "full"

    @property
    def required_frames(self) -> int:
        return {CalibrationMode.QUICK: 0, CalibrationMode.BASIC: 30, CalibrationMode.FULL: 60}[self]

    @property
    def minimum_confidence(self) -> float:
        return {CalibrationMode.QUICK: 0.6, CalibrationMode.BASIC: 0.55, CalibrationMode.FULL: 0.5}[self]


# ==================== POSE & MOTION ====================

@dataclass(frozen=True)
class JointSample:
    """A single detected joint in normalized image space."""
    joint: Joint
    x: float
    y: float
    confidence: float

    @property
    def point(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class PoseSnapshot:
    """
    All joints detected in one camera frame.

    Missing joints are simply absent from ``joints``.
    """
    joints: Dict[Joint, JointSample] = field(default_factory=dict)
    timestamp: float = 0.0

    def get(self, joint: Joint) -> Optional[JointSample]:
        return self.joints.get(joint)

    def confidence(self, joint: Joint) -> float:
        sample = self.joints.get(joint)
        return sample.confidence if sample is not None else 0.0

    def is_visible(self, joint: Joint, threshold: float) -> bool:
        return self.confidence(joint) > threshold

    def visible_joints(self, joints: Iterable[Joint], threshold: float) -> List[Joint]:
        return [j for j in joints if self.is_visible(j, threshold)]

    @property
    def mean_confidence(self) -> float:
        if not self.joints:
            return 0.0
        return float(np.mean([s.confidence for s in self.joints.values()]))

    def midpoint(self, a: Joint, b: Joint) -> Optional[Tuple[float, float]]:
        first, second = self.joints.get(a), self.joints.get(b)
        if first is None or second is None:
            return None
        return ((first.x + second.x) / 2, (first.y + second.y) / 2)

    def to_numpy(self, joints: Sequence[Joint]) -> np.ndarray:
        """(N, 3) array of x, y, confidence; NaN rows for missing joints."""
        rows = []
        for joint in joints:
            sample = self.joints.get(joint)
            rows.append([np.nan, np.nan, 0.0] if sample is None else [sample.x, sample.y, sample.confidence])
        return np.array(rows, dtype=float)

    @classmethod
    def from_points(
        cls,
        points: Dict[Joint, Tuple[float, float, float]],
        timestamp: Optional[float] = None,
    ) -> "PoseSnapshot":
        joints = {
            joint: JointSample(joint, float(x), float(y), float(conf))
            for joint, (x, y, conf) in points.items()
        }
        return cls(joints=joints, timestamp=time.time() if timestamp is None else timestamp)

    @classmethod
    def from_landmarks(
        cls,
        landmarks: Sequence[Any],
        timestamp: Optional[float] = None,
    ) -> "PoseSnapshot":
        """
        Build a snapshot from a MediaPipe-style landmark list.

        Each landmark needs ``x``, ``y`` and ``visibility`` attributes
        (NormalizedLandmark) or be an ``(x, y, visibility)`` tuple.
        Indices beyond the list length are treated as not detected.
        """
        joints = {}
        for joint in Joint:
            if joint.value >= len(landmarks):
                continue
            landmark = landmarks[joint.value]
            if landmark is None:
                continue
            if isinstance(landmark, (tuple, list)):
                x, y, visibility = landmark[0], landmark[1], landmark[2]
            else:
                x, y = landmark.x, landmark.y
                visibility = getattr(landmark, "visibility", 1.0)
            joints[joint] = JointSample(joint, float(x), float(y), float(visibility))
        return cls(joints=joints, timestamp=time.time() if timestamp is None else timestamp)


@dataclass(frozen=True)
class MotionSample:
    """
    One device-motion reading.

    Attitude angles are in radians; acceleration is user acceleration
    in g with gravity removed; rotation rate in rad/s.
    """
    pitch: float = 0.0
    roll: float = 0.0
    yaw: float = 0.0
    user_acceleration: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation_rate: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    timestamp: float = 0.0

    @property
    def acceleration_magnitude(self) -> float:
        return float(np.linalg.norm(self.user_acceleration))

    @property
    def rotation_magnitude(self) -> float:
        return float(np.linalg.norm(self.rotation_rate))

    @property
    def pitch_degrees(self) -> float:
        return float(np.degrees(self.pitch))

    @property
    def roll_degrees(self) -> float:
        return float(np.degrees(self.roll))


@dataclass(frozen=True)
class FrameQuality:
    overall_confidence: float
    joint_visibility: Dict[Joint, float]
    body_completeness: float
    stability: float
    lighting: float


@dataclass(frozen=True)
class CalibrationFrame:
    """A pose sample accepted for calibration, with its quality."""
    timestamp: float
    pose: PoseSnapshot
    quality: FrameQuality
    motion: Optional[MotionSample] = None


# ==================== DEVICE POSITION ====================

@dataclass(frozen=True)
class DevicePosition:
    """
    Where the capture device sits relative to the user.

    ``height`` is in meters and ``angle`` in degrees; both are coarse
    estimates and absent for handheld/unknown.
    """
    kind: PositionKind = PositionKind.UNKNOWN
    height: Optional[float] = None
    angle: Optional[float] = None

    @classmethod
    def ground(cls, angle: float) -> "DevicePosition":
        return cls(PositionKind.GROUND, None, angle)

    @classmethod
    def elevated(cls, height: float, angle: float) -> "DevicePosition":
        return cls(PositionKind.ELEVATED, height, angle)

    @classmethod
    def tripod(cls, height: float, angle: float) -> "DevicePosition":
        return cls(PositionKind.TRIPOD, height, angle)

    @classmethod
    def handheld(cls) -> "DevicePosition":
        return cls(PositionKind.HANDHELD)

    @classmethod
    def unknown(cls) -> "DevicePosition":
        return cls(PositionKind.UNKNOWN)

    @property
    def is_stable(self) -> bool:
        return self.kind in (PositionKind.GROUND, PositionKind.ELEVATED, PositionKind.TRIPOD)

    @property
    def description(self) -> str:
        if self.kind is PositionKind.GROUND:
            return f"On ground ({self.angle:.0f}° angle)"
        if self.kind is PositionKind.ELEVATED:
            return f"Elevated {self.height:.1f}m ({self.angle:.0f}° angle)"
        if self.kind is PositionKind.TRIPOD:
            return f"Tripod {self.height:.1f}m ({self.angle:.0f}° angle)"
        if self.kind is PositionKind.HANDHELD:
            return "Handheld (unstable)"
        return "Position unknown"


# ==================== CALIBRATION PROFILE ====================

@dataclass(frozen=True)
class AngleAdjustments:
    """Calibrated target angles (degrees) per exercise metric."""
    pushup_elbow_up: float = 170.0
    pushup_elbow_down: float = 90.0
    pushup_body_alignment: float = 15.0
    situp_torso_up: float = 90.0
    situp_torso_down: float = 45.0
    situp_knee_angle: float = 90.0
    pullup_arm_extended: float = 170.0
    pullup_arm_flexed: float = 90.0
    pullup_body_vertical: float = 10.0

    def get_adjustment(self, exercise: ExerciseType, metric: str) -> Optional[float]:
        return getattr(self, f"{exercise.value}_{metric}", None)

    def offsets_from(self, baseline: "AngleAdjustments") -> Dict[str, float]:
        mine, base = asdict(self), asdict(baseline)
        return {key: mine[key] - base[key] for key in mine}

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AngleAdjustments":
        known = {k: float(v) for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


BASELINE_ANGLES = AngleAdjustments()


@dataclass(frozen=True)
class VisibilityThresholds:
    """Per-class joint confidence thresholds."""
    minimum_confidence: float = 0.5
    critical_joints: float = 0.6
    support_joints: float = 0.55
    face_joints: float = 0.4

    FLOOR = 0.2
    CEILING = 0.8

    def normalized(self) -> "VisibilityThresholds":
        """Clamp into [0.2, 0.8] and restore minimum <= support <= critical."""
        def clamp(value: float) -> float:
            return float(np.clip(value, self.FLOOR, self.CEILING))

        critical = clamp(self.critical_joints)
        support = min(clamp(self.support_joints), critical)
        minimum = min(clamp(self.minimum_confidence), support)
        return VisibilityThresholds(
            minimum_confidence=minimum,
            critical_joints=critical,
            support_joints=support,
            face_joints=clamp(self.face_joints),
        )

    def to_dict(self) -> dict:
        return {
            "minimum_confidence": self.minimum_confidence,
            "critical_joints": self.critical_joints,
            "support_joints": self.support_joints,
            "face_joints": self.face_joints,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VisibilityThresholds":
        return cls(
            minimum_confidence=float(data.get("minimum_confidence", 0.5)),
            critical_joints=float(data.get("critical_joints", 0.6)),
            support_joints=float(data.get("support_joints", 0.55)),
            face_joints=float(data.get("face_joints", 0.4)),
        ).normalized()


@dataclass(frozen=True)
class PoseNormalization:
    """Body segment sizes in normalized image units."""
    shoulder_width: float = 0.3
    hip_width: float = 0.25
    arm_length: float = 0.8
    leg_length: float = 0.9
    head_size: float = 0.2

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PoseNormalization":
        known = {k: float(v) for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class ValidationRanges:
    angle_tolerances: Dict[str, float] = field(default_factory=dict)
    position_tolerances: Dict[str, float] = field(default_factory=dict)
    movement_thresholds: Dict[str, float] = field(default_factory=dict)

    DEFAULT_ANGLE_TOLERANCE = 15.0

    def angle_tolerance(self, key: str) -> float:
        if key in self.angle_tolerances:
            return self.angle_tolerances[key]
        return self.angle_tolerances.get("default", self.DEFAULT_ANGLE_TOLERANCE)

    def to_dict(self) -> dict:
        return {
            "angle_tolerances": dict(self.angle_tolerances),
            "position_tolerances": dict(self.position_tolerances),
            "movement_thresholds": dict(self.movement_thresholds),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ValidationRanges":
        return cls(
            angle_tolerances={k: float(v) for k, v in data.get("angle_tolerances", {}).items()},
            position_tolerances={k: float(v) for k, v in data.get("position_tolerances", {}).items()},
            movement_thresholds={k: float(v) for k, v in data.get("movement_thresholds", {}).items()},
        )


@dataclass(frozen=True)
class CalibrationData:
    """
    Immutable per-exercise calibration profile.

    A new calibration produces a new profile; existing ones are
    never edited in place.
    """
    exercise: ExerciseType
    device_height: float
    device_angle: float
    device_distance: float
    device_stability: float
    user_height: float
    arm_span: float
    torso_length: float
    leg_length: float
    angle_adjustments: AngleAdjustments
    visibility_thresholds: VisibilityThresholds
    pose_normalization: PoseNormalization
    calibration_score: float
    confidence_level: float
    frame_count: int
    validation_ranges: ValidationRanges
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)

    def quality(self, **thresholds) -> CalibrationQuality:
        return CalibrationQuality.from_score(self.calibration_score, **thresholds)

    @property
    def is_usable(self) -> bool:
        return self.calibration_score >= 60.0 and self.confidence_level >= 0.5

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "exercise": self.exercise.value,
            "device_height": self.device_height,
            "device_angle": self.device_angle,
            "device_distance": self.device_distance,
            "device_stability": self.device_stability,
            "user_height": self.user_height,
            "arm_span": self.arm_span,
            "torso_length": self.torso_length,
            "leg_length": self.leg_length,
            "angle_adjustments": self.angle_adjustments.to_dict(),
            "visibility_thresholds": self.visibility_thresholds.to_dict(),
            "pose_normalization": self.pose_normalization.to_dict(),
            "calibration_score": self.calibration_score,
            "confidence_level": self.confidence_level,
            "frame_count": self.frame_count,
            "validation_ranges": self.validation_ranges.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CalibrationData":
        return cls(
            id=str(data["id"]),
            timestamp=float(data["timestamp"]),
            exercise=ExerciseType(data["exercise"]),
            device_height=float(data["device_height"]),
            device_angle=float(data["device_angle"]),
            device_distance=float(data["device_distance"]),
            device_stability=float(data["device_stability"]),
            user_height=float(data["user_height"]),
            arm_span=float(data["arm_span"]),
            torso_length=float(data["torso_length"]),
            leg_length=float(data["leg_length"]),
            angle_adjustments=AngleAdjustments.from_dict(data.get("angle_adjustments", {})),
            visibility_thresholds=VisibilityThresholds.from_dict(data.get("visibility_thresholds", {})),
            pose_normalization=PoseNormalization.from_dict(data.get("pose_normalization", {})),
            calibration_score=float(data["calibration_score"]),
            confidence_level=float(data["confidence_level"]),
            frame_count=int(data["frame_count"]),
            validation_ranges=ValidationRanges.from_dict(data.get("validation_ranges", {})),
        )
