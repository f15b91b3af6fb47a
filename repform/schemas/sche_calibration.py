"""
Calibration Schemas - persisted document format.

Validates calibration JSON written by the repository and by the flat
key-value fallback store, including older documents that use camelCase
keys, ISO timestamps or hyphenated exercise names.

Author: RepForm Team
Version: 1.0.0
"""

from datetime import datetime
from typing import Dict, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from repform.engine.core.data_types import (
    AngleAdjustments, CalibrationData, ExerciseType, PoseNormalization, ValidationRanges,
    VisibilityThresholds,
)


class DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')


# ==================== SECTIONS ====================

class AngleAdjustmentsSchema(DocumentModel):
    pushup_elbow_up: float = 170.0
    pushup_elbow_down: float = 90.0
    pushup_body_alignment: float = 15.0
    situp_torso_up: float = 90.0
    situp_torso_down: float = 45.0
    situp_knee_angle: float = 90.0
    pullup_arm_extended: float = 170.0
    pullup_arm_flexed: float = 90.0
    pullup_body_vertical: float = 10.0


class VisibilityThresholdsSchema(DocumentModel):
    minimum_confidence: float = 0.5
    critical_joints: float = 0.6
    support_joints: float = 0.55
    face_joints: float = 0.4


class PoseNormalizationSchema(DocumentModel):
    shoulder_width: float = 0.3
    hip_width: float = 0.25
    arm_length: float = 0.8
    leg_length: float = 0.9
    head_size: float = 0.2


class ValidationRangesSchema(DocumentModel):
    angle_tolerances: Dict[str, float] = Field(default_factory=dict)
    position_tolerances: Dict[str, float] = Field(default_factory=dict)
    movement_thresholds: Dict[str, float] = Field(default_factory=dict)


# ==================== DOCUMENT ====================

class CalibrationDocument(DocumentModel):
    """A stored calibration profile."""
    id: str = Field(..., description="Profile identifier")
    timestamp: float = Field(..., description="Creation time, seconds since epoch")
    exercise: ExerciseType = Field(..., description="Calibrated exercise")
    device_height: float = 0.8
    device_angle: float = 30.0
    device_distance: float = 1.5
    device_stability: float = 0.5
    user_height: float = 1.7
    arm_span: float = 1.7
    torso_length: float = 0.6
    leg_length: float = 0.9
    angle_adjustments: AngleAdjustmentsSchema = Field(default_factory=AngleAdjustmentsSchema)
    visibility_thresholds: VisibilityThresholdsSchema = Field(default_factory=VisibilityThresholdsSchema)
    pose_normalization: PoseNormalizationSchema = Field(default_factory=PoseNormalizationSchema)
    calibration_score: float = Field(..., ge=0, le=100)
    confidence_level: float = Field(..., ge=0, le=1)
    frame_count: int = Field(0, ge=0)
    validation_ranges: ValidationRangesSchema = Field(default_factory=ValidationRangesSchema)

    @field_validator('timestamp', mode='before')
    @classmethod
    def parse_timestamp(cls, value: Union[float, int, str, datetime]) -> float:
        if isinstance(value, datetime):
            return value.timestamp()
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                return datetime.fromisoformat(value.replace('Z', '+00:00')).timestamp()
        return value

    @field_validator('exercise', mode='before')
    @classmethod
    def parse_exercise(cls, value):
        if isinstance(value, str):
            return value.strip().lower().replace('-', '').replace('_', '')
        return value

    @field_validator('id', mode='before')
    @classmethod
    def parse_id(cls, value):
        return str(value)

    @classmethod
    def from_domain(cls, profile: CalibrationData) -> "CalibrationDocument":
        return cls.model_validate(profile.to_dict())

    def to_domain(self) -> CalibrationData:
        return CalibrationData(
            id=self.id,
            timestamp=self.timestamp,
            exercise=self.exercise,
            device_height=self.device_height,
            device_angle=self.device_angle,
            device_distance=self.device_distance,
            device_stability=self.device_stability,
            user_height=self.user_height,
            arm_span=self.arm_span,
            torso_length=self.torso_length,
            leg_length=self.leg_length,
            angle_adjustments=AngleAdjustments(**self.angle_adjustments.model_dump()),
            visibility_thresholds=VisibilityThresholds(**self.visibility_thresholds.model_dump()).normalized(),
            pose_normalization=PoseNormalization(**self.pose_normalization.model_dump()),
            calibration_score=self.calibration_score,
            confidence_level=self.confidence_level,
            frame_count=self.frame_count,
            validation_ranges=ValidationRanges(
                angle_tolerances=dict(self.validation_ranges.angle_tolerances),
                position_tolerances=dict(self.validation_ranges.position_tolerances),
                movement_thresholds=dict(self.validation_ranges.movement_thresholds),
            ),
        )
