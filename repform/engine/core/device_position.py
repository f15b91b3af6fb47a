"""
Device Position Module for RepForm.

Infers where the capture device is placed (ground, elevated, tripod,
handheld) from device-motion readings and/or the apparent stability of
the user's skeleton across frames.

All functions are pure; the classifier keeps no state between calls.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .data_types import (
    CalibrationFrame, DevicePosition, Joint, MotionSample, PoseSnapshot, PositionKind
)
from .geometry import distance


# ==================== CONSTANTS ====================

STABILITY_THRESHOLD = 0.8
HANDSHAKE_THRESHOLD = 0.3
TRIPOD_STABILITY_THRESHOLD = 0.95
GROUND_ANGLE_THRESHOLD = 30.0       # degrees
ELEVATED_ANGLE_THRESHOLD = 20.0     # degrees
ELEVATED_HEIGHT_MIN = 0.5           # meters
POSE_VARIABILITY_THRESHOLD = 0.05
HANDHELD_DRIFT_THRESHOLD = 0.05     # normalized units per frame
ANALYSIS_WINDOW = 30                # frames

HEIGHT_RANGE = (0.3, 2.5)           # meters
ANGLE_RANGE = (-60.0, 60.0)         # degrees


# ==================== POSE METRICS ====================

@dataclass(frozen=True)
class PoseMetrics:
    """Averaged apparent body geometry over a window of frames."""
    average_scale: float = 0.5
    body_center: Tuple[float, float] = (0.5, 0.5)
    body_width: float = 0.3
    body_height: float = 0.8
    head_y: float = 0.2
    average_confidence: float = 0.0


def compute_pose_metrics(poses: Sequence[PoseSnapshot]) -> PoseMetrics:
    """
    Average body scale, center, bounds and head height.

    Poses missing either shoulder or hip are skipped; with no usable
    pose the neutral defaults are returned.
    """
    scales, centers, widths, heights, heads, confidences = [], [], [], [], [], []

    for pose in poses:
        ls, rs = pose.get(Joint.LEFT_SHOULDER), pose.get(Joint.RIGHT_SHOULDER)
        lh, rh = pose.get(Joint.LEFT_HIP), pose.get(Joint.RIGHT_HIP)
        if ls is None or rs is None or lh is None or rh is None:
            continue

        shoulder_width = distance(ls.point, rs.point)
        hip_width = distance(lh.point, rh.point)
        body_height = abs(ls.y - lh.y)

        centers.append(((ls.x + rs.x + lh.x + rh.x) / 4, (ls.y + rs.y + lh.y + rh.y) / 4))
        widths.append(max(shoulder_width, hip_width))
        heights.append(body_height)
        scales.append((shoulder_width + body_height) / 2)

        nose = pose.get(Joint.NOSE)
        heads.append(nose.y if nose is not None else ls.y - 0.1)
        confidences.append(pose.mean_confidence)

    if not scales:
        return PoseMetrics()

    center = np.mean(np.array(centers), axis=0)
    return PoseMetrics(
        average_scale=float(np.mean(scales)),
        body_center=(float(center[0]), float(center[1])),
        body_width=float(np.mean(widths)),
        body_height=float(np.mean(heights)),
        head_y=float(np.mean(heads)),
        average_confidence=float(np.mean(confidences)),
    )


def scale_variability(poses: Sequence[PoseSnapshot]) -> float:
    """Coefficient of variation of shoulder width across poses."""
    scales = []
    for pose in poses:
        ls, rs = pose.get(Joint.LEFT_SHOULDER), pose.get(Joint.RIGHT_SHOULDER)
        if ls is not None and rs is not None:
            scales.append(distance(ls.point, rs.point))
    if len(scales) < 2:
        return 0.0
    mean = float(np.mean(scales))
    if mean == 0:
        return 0.0
    return float(np.std(scales)) / mean


def position_drift(poses: Sequence[PoseSnapshot]) -> float:
    """Mean frame-to-frame movement of the shoulder midpoint."""
    positions = []
    for pose in poses:
        mid = pose.midpoint(Joint.LEFT_SHOULDER, Joint.RIGHT_SHOULDER)
        if mid is not None:
            positions.append(mid)
    if len(positions) < 2:
        return 0.0
    steps = np.diff(np.array(positions), axis=0)
    return float(np.mean(np.linalg.norm(steps, axis=1)))


# ==================== ESTIMATES ====================

def estimate_device_height(metrics: PoseMetrics) -> float:
    """
    Rough camera height in meters from apparent scale and head height.

    A low head in frame and a small body both suggest a higher camera.
    Approximate only; clamped to 0.3 m - 2.5 m.
    """
    height_factor = (1.0 - metrics.head_y) * 2.0 + (1.0 - metrics.average_scale)
    estimate = 0.3 + height_factor * 2.2
    return float(np.clip(estimate, *HEIGHT_RANGE))


def estimate_device_angle(metrics: PoseMetrics) -> float:
    """Rough camera tilt in degrees, clamped to [-60, 60]. Approximate only."""
    angle_factor = (0.5 - metrics.head_y) * 2.0 + (0.8 - metrics.body_height) * 0.5
    return float(np.clip(angle_factor * 60.0, *ANGLE_RANGE))


# ==================== STABILITY ====================

def motion_stability(motion: MotionSample) -> float:
    """Mean of acceleration and rotation stability for one reading, in [0, 1]."""
    acceleration_stability = 1.0 - min(motion.acceleration_magnitude, 1.0)
    rotation_stability = 1.0 - min(motion.rotation_magnitude / 2.0, 1.0)
    return (acceleration_stability + rotation_stability) / 2.0


def motion_history_stability(history: Sequence[MotionSample]) -> Optional[float]:
    if not history:
        return None
    return float(np.mean([motion_stability(m) for m in history]))


def pose_stability(poses: Sequence[PoseSnapshot]) -> float:
    return 1.0 - min(scale_variability(poses) + position_drift(poses), 1.0)


# ==================== CLASSIFICATION ====================

def classify(stability: float, angle: float, height: float) -> DevicePosition:
    """
    Threshold ladder shared by every detection path.

    Args:
        stability: Combined stability in [0, 1]
        angle: Device pitch in degrees; thresholds compare its magnitude,
            ground and elevated positions keep the sign
        height: Estimated device height in meters

    Returns:
        The classified device position
    """
    tilt = abs(angle)

    if stability > TRIPOD_STABILITY_THRESHOLD:
        return DevicePosition.tripod(height, tilt)

    if stability > STABILITY_THRESHOLD:
        if tilt < GROUND_ANGLE_THRESHOLD:
            return DevicePosition.ground(angle)
        if height > ELEVATED_HEIGHT_MIN:
            return DevicePosition.elevated(height, angle)
        return DevicePosition.ground(angle)

    if stability < HANDSHAKE_THRESHOLD:
        return DevicePosition.handheld()

    if height > ELEVATED_HEIGHT_MIN and tilt > ELEVATED_ANGLE_THRESHOLD:
        return DevicePosition.elevated(height, angle)
    return DevicePosition.ground(angle)


def classify_from_motion(
    motion: MotionSample,
    poses: Sequence[PoseSnapshot] = (),
) -> DevicePosition:
    """Classify from one motion reading; poses only feed the height estimate."""
    metrics = compute_pose_metrics(poses)
    return classify(
        stability=motion_stability(motion),
        angle=motion.pitch_degrees,
        height=estimate_device_height(metrics),
    )


def classify_from_pose(poses: Sequence[PoseSnapshot]) -> DevicePosition:
    """
    Classify without any motion data.

    Large apparent scale changes or a drifting body center mean the
    camera itself is moving, which is reported as handheld before the
    ladder is consulted.
    """
    window = list(poses)[-ANALYSIS_WINDOW:]
    if not window:
        return DevicePosition.unknown()

    variability = scale_variability(window)
    drift = position_drift(window)
    if drift > HANDHELD_DRIFT_THRESHOLD or variability > POSE_VARIABILITY_THRESHOLD * 3:
        return DevicePosition.handheld()

    metrics = compute_pose_metrics(window)
    return classify(
        stability=1.0 - min(variability + drift, 1.0),
        angle=estimate_device_angle(metrics),
        height=estimate_device_height(metrics),
    )


def detect_position(
    frames: Sequence[CalibrationFrame],
    motion: Optional[MotionSample] = None,
) -> DevicePosition:
    """Classify from collected frames and the latest motion reading, if any."""
    if not frames:
        return DevicePosition.unknown()

    poses = [frame.pose for frame in list(frames)[-ANALYSIS_WINDOW:]]
    if motion is not None:
        return classify_from_motion(motion, poses)
    return classify_from_pose(poses)


def detect_position_continuous(
    recent_frames: Sequence[CalibrationFrame],
    motion_history: Sequence[MotionSample],
) -> DevicePosition:
    """
    Classify from a rolling window of frames plus recent motion history.

    Motion stability and pose consistency are averaged when both exist.
    """
    if not recent_frames:
        return DevicePosition.unknown()

    poses = [frame.pose for frame in list(recent_frames)[-ANALYSIS_WINDOW:]]
    history = list(motion_history)[-ANALYSIS_WINDOW:]

    device_stability = motion_history_stability(history)
    if device_stability is None:
        return classify_from_pose(poses)

    combined = (device_stability + pose_stability(poses)) / 2.0
    metrics = compute_pose_metrics(poses)
    pitch = float(np.mean([m.pitch_degrees for m in history]))
    return classify(combined, pitch, estimate_device_height(metrics))


def position_suggestions(position: DevicePosition) -> List[str]:
    """Setup hints for the detected position, most important first."""
    suggestions = []
    if position.kind is PositionKind.HANDHELD:
        suggestions.append("Place device on stable surface for better calibration")
    elif position.kind is PositionKind.GROUND and position.angle is not None and abs(position.angle) > 45:
        suggestions.append(f"Adjust device angle for better viewing (currently {position.angle:.0f}°)")
    elif position.kind is PositionKind.ELEVATED and position.angle is not None and abs(position.angle) > 60:
        suggestions.append("Reduce device angle for more accurate pose detection")
    return suggestions
