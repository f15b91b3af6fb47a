"""
Rep Counter Module for RepForm.

Per-exercise angle measurement, calibration correction and a phase
state machine that counts repetitions and flags form problems.

A full rep walks through four phases:
IDLE -> ECCENTRIC -> HOLD -> CONCENTRIC -> IDLE

Measured angles are first mapped into canonical space with the
profile's AngleAdjustments so that thresholds can be expressed
against the baseline targets regardless of camera viewpoint.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from ..core.data_types import (
    BASELINE_ANGLES, CalibrationData, ExerciseType, Joint, PoseSnapshot, ValidationRanges,
)
from ..core.geometry import incline_from_horizontal, joint_angle


class MotionPhase(Enum):
    IDLE = "idle"              # start position
    ECCENTRIC = "eccentric"    # moving away from start
    HOLD = "hold"              # target position reached
    CONCENTRIC = "concentric"  # returning to start


@dataclass(frozen=True)
class FormCheck:
    """One measured form metric against its tolerance."""
    name: str
    deviation: float
    tolerance: float
    message: str

    @property
    def failed(self) -> bool:
        return self.deviation > self.tolerance

    @property
    def critical(self) -> bool:
        return self.deviation > self.tolerance * 2


@dataclass
class RepUpdate:
    phase: MotionPhase
    rep_count: int
    rep_completed: bool = False
    form_issues: List[str] = field(default_factory=list)


def _mean_of(values: List[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return float(np.mean(present))


def _interpolated_offset(
    raw: float,
    calibrated_low: float,
    calibrated_high: float,
    baseline_low: float,
    baseline_high: float,
) -> float:
    """Additive correction blended between the two calibrated endpoints."""
    span = calibrated_high - calibrated_low
    t = 0.5 if span == 0 else float(np.clip((raw - calibrated_low) / span, 0.0, 1.0))
    low_offset = baseline_low - calibrated_low
    high_offset = baseline_high - calibrated_high
    return low_offset + (high_offset - low_offset) * t


# ==================== ANALYZERS ====================

class ExerciseAnalyzer:
    """Measures and corrects the angles one exercise is judged on."""

    exercise: ExerciseType
    primary_metric = ""
    primary_tolerance_key = "default"
    incomplete_rep_message = ""
    incomplete_return_message = ""

    def measure(self, pose: PoseSnapshot) -> Optional[Dict[str, float]]:
        raise NotImplementedError

    def correct(self, raw: Dict[str, float], calibration: CalibrationData) -> Dict[str, float]:
        raise NotImplementedError

    def form_checks(self, adjusted: Dict[str, float], ranges: ValidationRanges) -> List[FormCheck]:
        raise NotImplementedError

    def in_start(self, value: float, ranges: ValidationRanges) -> bool:
        raise NotImplementedError

    def in_target(self, value: float, ranges: ValidationRanges) -> bool:
        raise NotImplementedError


class PushupAnalyzer(ExerciseAnalyzer):
    exercise = ExerciseType.PUSHUP
    primary_metric = "elbow"
    primary_tolerance_key = "pushup_elbow"
    incomplete_rep_message = "Go lower"
    incomplete_return_message = "Extend arms fully"

    def measure(self, pose):
        elbow = _mean_of([
            joint_angle(pose, Joint.LEFT_SHOULDER, Joint.LEFT_ELBOW, Joint.LEFT_WRIST),
            joint_angle(pose, Joint.RIGHT_SHOULDER, Joint.RIGHT_ELBOW, Joint.RIGHT_WRIST),
        ])
        if elbow is None:
            return None
        alignment = _mean_of([
            joint_angle(pose, Joint.LEFT_SHOULDER, Joint.LEFT_HIP, Joint.LEFT_ANKLE),
            joint_angle(pose, Joint.RIGHT_SHOULDER, Joint.RIGHT_HIP, Joint.RIGHT_ANKLE),
        ])
        metrics = {"elbow": elbow}
        if alignment is not None:
            metrics["body_alignment"] = 180.0 - alignment
        return metrics

    def correct(self, raw, calibration):
        adj = calibration.angle_adjustments
        adjusted = dict(raw)
        adjusted["elbow"] = raw["elbow"] + _interpolated_offset(
            raw["elbow"], adj.pushup_elbow_down, adj.pushup_elbow_up,
            BASELINE_ANGLES.pushup_elbow_down, BASELINE_ANGLES.pushup_elbow_up,
        )
        if "body_alignment" in raw:
            adjusted["body_alignment"] = raw["body_alignment"] + (
                BASELINE_ANGLES.pushup_body_alignment - adj.pushup_body_alignment
            )
        return adjusted

    def form_checks(self, adjusted, ranges):
        checks = []
        if "body_alignment" in adjusted:
            checks.append(FormCheck(
                "body_alignment",
                max(0.0, adjusted["body_alignment"] - BASELINE_ANGLES.pushup_body_alignment),
                ranges.angle_tolerance("body_alignment"),
                "Keep body straight",
            ))
        return checks

    def in_start(self, value, ranges):
        return value >= BASELINE_ANGLES.pushup_elbow_up - ranges.angle_tolerance("pushup_elbow")

    def in_target(self, value, ranges):
        return value <= BASELINE_ANGLES.pushup_elbow_down + ranges.angle_tolerance("pushup_elbow")


class SitupAnalyzer(ExerciseAnalyzer):
    exercise = ExerciseType.SITUP
    primary_metric = "torso"
    primary_tolerance_key = "situp_torso"
    incomplete_rep_message = "Sit up higher"
    incomplete_return_message = "Lower shoulders to ground"

    def measure(self, pose):
        shoulder = pose.midpoint(Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER)
        hip = pose.midpoint(Joint.LEFT_HIP, Joint.RIGHT_HIP)
        if shoulder is None or hip is None:
            return None
        metrics = {"torso": incline_from_horizontal(hip, shoulder)}
        knee = _mean_of([
            joint_angle(pose, Joint.LEFT_HIP, Joint.LEFT_KNEE, Joint.LEFT_ANKLE),
            joint_angle(pose, Joint.RIGHT_HIP, Joint.RIGHT_KNEE, Joint.RIGHT_ANKLE),
        ])
        if knee is not None:
            metrics["knee"] = knee
        return metrics

    def correct(self, raw, calibration):
        adj = calibration.angle_adjustments
        adjusted = dict(raw)
        adjusted["torso"] = raw["torso"] + _interpolated_offset(
            raw["torso"], adj.situp_torso_down, adj.situp_torso_up,
            BASELINE_ANGLES.situp_torso_down, BASELINE_ANGLES.situp_torso_up,
        )
        if "knee" in raw:
            adjusted["knee"] = raw["knee"] + (BASELINE_ANGLES.situp_knee_angle - adj.situp_knee_angle)
        return adjusted

    def form_checks(self, adjusted, ranges):
        checks = []
        if "knee" in adjusted:
            checks.append(FormCheck(
                "knee",
                abs(adjusted["knee"] - BASELINE_ANGLES.situp_knee_angle),
                ranges.angle_tolerance("knee_angle"),
                "Keep knees at 90-degree angle",
            ))
        return checks

    def in_start(self, value, ranges):
        return value <= BASELINE_ANGLES.situp_torso_down - ranges.angle_tolerance("situp_torso")

    def in_target(self, value, ranges):
        return value >= BASELINE_ANGLES.situp_torso_up - ranges.angle_tolerance("situp_torso")


class PullupAnalyzer(ExerciseAnalyzer):
    exercise = ExerciseType.PULLUP
    primary_metric = "elbow"
    primary_tolerance_key = "pullup_arm"
    incomplete_rep_message = "Pull chin over bar"
    incomplete_return_message = "Extend arms fully"

    def measure(self, pose):
        elbow = _mean_of([
            joint_angle(pose, Joint.LEFT_SHOULDER, Joint.LEFT_ELBOW, Joint.LEFT_WRIST),
            joint_angle(pose, Joint.RIGHT_SHOULDER, Joint.RIGHT_ELBOW, Joint.RIGHT_WRIST),
        ])
        if elbow is None:
            return None
        metrics = {"elbow": elbow}
        shoulder = pose.midpoint(Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER)
        hip = pose.midpoint(Joint.LEFT_HIP, Joint.RIGHT_HIP)
        if shoulder is not None and hip is not None:
            metrics["body_vertical"] = 90.0 - incline_from_horizontal(hip, shoulder)
        return metrics

    def correct(self, raw, calibration):
        adj = calibration.angle_adjustments
        adjusted = dict(raw)
        adjusted["elbow"] = raw["elbow"] + _interpolated_offset(
            raw["elbow"], adj.pullup_arm_flexed, adj.pullup_arm_extended,
            BASELINE_ANGLES.pullup_arm_flexed, BASELINE_ANGLES.pullup_arm_extended,
        )
        if "body_vertical" in raw:
            adjusted["body_vertical"] = raw["body_vertical"] + (
                BASELINE_ANGLES.pullup_body_vertical - adj.pullup_body_vertical
            )
        return adjusted

    def form_checks(self, adjusted, ranges):
        checks = []
        if "body_vertical" in adjusted:
            checks.append(FormCheck(
                "body_vertical",
                max(0.0, adjusted["body_vertical"] - BASELINE_ANGLES.pullup_body_vertical),
                ranges.angle_tolerance("body_vertical"),
                "Minimize body swing",
            ))
        return checks

    def in_start(self, value, ranges):
        return value >= BASELINE_ANGLES.pullup_arm_extended - ranges.angle_tolerance("pullup_arm")

    def in_target(self, value, ranges):
        return value <= BASELINE_ANGLES.pullup_arm_flexed + ranges.angle_tolerance("pullup_arm")


ANALYZERS = {
    ExerciseType.PUSHUP: PushupAnalyzer,
    ExerciseType.SITUP: SitupAnalyzer,
    ExerciseType.PULLUP: PullupAnalyzer,
}


def create_analyzer(exercise: ExerciseType) -> Optional[ExerciseAnalyzer]:
    analyzer_cls = ANALYZERS.get(exercise)
    return analyzer_cls() if analyzer_cls is not None else None


# ==================== COUNTER ====================

class RepCounter:
    """
    Phase state machine over the exercise's primary canonical angle.

    Counting only starts once the user has been seen in the start
    position. Returning to start without reaching the target reports
    the exercise's incomplete-rep issue instead of counting.
    """

    def __init__(self, analyzer: ExerciseAnalyzer, ranges: ValidationRanges):
        self.analyzer = analyzer
        self.ranges = ranges
        self.phase = MotionPhase.IDLE
        self.rep_count = 0
        self._armed = False

    def update(self, adjusted: Dict[str, float]) -> RepUpdate:
        value = adjusted.get(self.analyzer.primary_metric)
        if value is None:
            return RepUpdate(self.phase, self.rep_count)

        in_start = self.analyzer.in_start(value, self.ranges)
        in_target = self.analyzer.in_target(value, self.ranges)
        completed = False
        issues: List[str] = []

        if not self._armed:
            if in_start:
                self._armed = True
                self.phase = MotionPhase.IDLE
            return RepUpdate(self.phase, self.rep_count)

        if self.phase is MotionPhase.IDLE:
            if not in_start:
                self.phase = MotionPhase.ECCENTRIC
        elif self.phase is MotionPhase.ECCENTRIC:
            if in_target:
                self.phase = MotionPhase.HOLD
            elif in_start:
                self.phase = MotionPhase.IDLE
                issues.append(self.analyzer.incomplete_rep_message)
        elif self.phase is MotionPhase.HOLD:
            if not in_target:
                self.phase = MotionPhase.CONCENTRIC
        elif self.phase is MotionPhase.CONCENTRIC:
            if in_start:
                self.phase = MotionPhase.IDLE
                self.rep_count += 1
                completed = True
            elif in_target:
                self.phase = MotionPhase.HOLD
                issues.append(self.analyzer.incomplete_return_message)

        return RepUpdate(self.phase, self.rep_count, completed, issues)

    def reset(self) -> None:
        self.phase = MotionPhase.IDLE
        self.rep_count = 0
        self._armed = False
