"""
Synthetic pose generator for RepForm.

Builds side-view push-up and sit-up poses and front-view pull-up poses
from a single driving angle, positioned so they frame acceptably. Used
by the ``simulate`` command and the test-suite.
"""

from typing import Iterator, List, Optional

import numpy as np

from ..core.data_types import Joint, MotionSample, PoseSnapshot

ARM_SEGMENT = 0.1
SIDE_OFFSET = 0.02  # right-side joints are shifted so shoulder width is non-zero


def _mirror(points: dict, offset: float = SIDE_OFFSET) -> dict:
    pairs = {
        Joint.LEFT_SHOULDER: Joint.RIGHT_SHOULDER,
        Joint.LEFT_ELBOW: Joint.RIGHT_ELBOW,
        Joint.LEFT_WRIST: Joint.RIGHT_WRIST,
        Joint.LEFT_HIP: Joint.RIGHT_HIP,
        Joint.LEFT_KNEE: Joint.RIGHT_KNEE,
        Joint.LEFT_ANKLE: Joint.RIGHT_ANKLE,
    }
    mirrored = dict(points)
    for left, right in pairs.items():
        if left in points:
            x, y = points[left]
            mirrored[right] = (x + offset, y)
    return mirrored


def _snapshot(points: dict, confidence: float, timestamp: float, shift=(0.0, 0.0)) -> PoseSnapshot:
    dx, dy = shift
    return PoseSnapshot.from_points(
        {joint: (x + dx, y + dy, confidence) for joint, (x, y) in points.items()},
        timestamp=timestamp,
    )


def pushup_pose(
    elbow_angle: float = 180.0,
    confidence: float = 0.9,
    timestamp: float = 0.0,
    hip_sag: float = 0.0,
    shift=(0.0, 0.0),
) -> PoseSnapshot:
    """
    Side-view push-up with hands under the shoulders and feet at x=0.9.

    ``hip_sag`` lowers the hips (image y grows downward) to bend the
    shoulder-hip-ankle line.
    """
    half = np.radians(elbow_angle) / 2.0
    reach = 2.0 * ARM_SEGMENT * np.sin(half)
    wrist = (0.3, 0.65)
    shoulder = (0.3, 0.65 - reach)
    elbow = (0.3 + ARM_SEGMENT * np.cos(half), 0.65 - reach / 2.0)
    ankle = (0.9, 0.65)
    hip = ((shoulder[0] + ankle[0]) / 2.0, (shoulder[1] + ankle[1]) / 2.0 + hip_sag)
    points = _mirror({
        Joint.NOSE: (shoulder[0] - 0.06, shoulder[1] - 0.02),
        Joint.LEFT_SHOULDER: shoulder,
        Joint.LEFT_ELBOW: elbow,
        Joint.LEFT_WRIST: wrist,
        Joint.LEFT_HIP: hip,
        Joint.LEFT_KNEE: ((hip[0] + ankle[0]) / 2.0, (hip[1] + ankle[1]) / 2.0),
        Joint.LEFT_ANKLE: ankle,
    })
    return _snapshot(points, confidence, timestamp, shift)


def situp_pose(
    torso_angle: float = 0.0,
    confidence: float = 0.9,
    timestamp: float = 0.0,
    knee_angle: float = 90.0,
) -> PoseSnapshot:
    """Side-view sit-up; ``torso_angle`` is the torso incline from the floor."""
    torso = np.radians(torso_angle)
    hip = (0.5, 0.6)
    shoulder = (hip[0] - 0.3 * np.cos(torso), hip[1] - 0.3 * np.sin(torso))
    nose = (hip[0] - 0.38 * np.cos(torso), hip[1] - 0.38 * np.sin(torso))

    thigh = np.radians(45.0)
    knee = np.array([hip[0] + 0.21 * np.cos(thigh), hip[1] - 0.21 * np.sin(thigh)])
    to_hip = (np.array(hip) - knee) / 0.21
    turn = -np.radians(knee_angle)
    rotation = np.array([[np.cos(turn), -np.sin(turn)], [np.sin(turn), np.cos(turn)]])
    ankle = knee + 0.21 * rotation.dot(to_hip)

    points = _mirror({
        Joint.NOSE: nose,
        Joint.LEFT_SHOULDER: shoulder,
        Joint.LEFT_ELBOW: (shoulder[0] + 0.05, shoulder[1] + 0.05),
        Joint.LEFT_WRIST: (shoulder[0] + 0.08, shoulder[1]),
        Joint.LEFT_HIP: hip,
        Joint.LEFT_KNEE: (float(knee[0]), float(knee[1])),
        Joint.LEFT_ANKLE: (float(ankle[0]), float(ankle[1])),
    })
    return _snapshot(points, confidence, timestamp)


def pullup_pose(
    elbow_angle: float = 180.0,
    confidence: float = 0.9,
    timestamp: float = 0.0,
    swing: float = 0.0,
) -> PoseSnapshot:
    """Front-view pull-up hanging from a bar at y=0.15; ``swing`` shifts the hips sideways."""
    segment = 0.13
    half = np.radians(elbow_angle) / 2.0
    reach = 2.0 * segment * np.sin(half)
    bar_y = 0.15
    shoulder_y = bar_y + reach
    elbow_y = bar_y + reach / 2.0
    spread = segment * np.cos(half)
    hip_y = shoulder_y + 0.25
    points = {
        Joint.NOSE: (0.5, shoulder_y - 0.1),
        Joint.LEFT_SHOULDER: (0.42, shoulder_y),
        Joint.RIGHT_SHOULDER: (0.58, shoulder_y),
        Joint.LEFT_ELBOW: (0.42 - spread, elbow_y),
        Joint.RIGHT_ELBOW: (0.58 + spread, elbow_y),
        Joint.LEFT_WRIST: (0.42, bar_y),
        Joint.RIGHT_WRIST: (0.58, bar_y),
        Joint.LEFT_HIP: (0.45 + swing, hip_y),
        Joint.RIGHT_HIP: (0.55 + swing, hip_y),
        Joint.LEFT_KNEE: (0.45 + swing, hip_y + 0.1),
        Joint.RIGHT_KNEE: (0.55 + swing, hip_y + 0.1),
        Joint.LEFT_ANKLE: (0.45 + swing, hip_y + 0.2),
        Joint.RIGHT_ANKLE: (0.55 + swing, hip_y + 0.2),
    }
    return _snapshot(points, confidence, timestamp)


def rep_angles(start: float, target: float, reps: int, steps_per_half: int = 10) -> List[float]:
    """Driving angles for ``reps`` repetitions: start -> target -> start."""
    down = list(np.linspace(start, target, steps_per_half + 1))
    up = list(np.linspace(target, start, steps_per_half + 1))[1:]
    angles = [start]
    for _ in range(reps):
        angles.extend(down[1:] + up)
    return [float(a) for a in angles]


def oscillating_angles(count: int, high: float, low: float, period: int = 20) -> Iterator[float]:
    """``count`` angles sweeping high -> low -> high with the given period."""
    for i in range(count):
        phase = (i % period) / period
        yield float(high - (high - low) * (1.0 - abs(1.0 - 2.0 * phase)))


def still_motion(pitch_degrees: float = 10.0, timestamp: float = 0.0,
                 jitter: Optional[float] = None) -> MotionSample:
    """A device reading at rest, or shaking with ``jitter`` rad/s rotation."""
    rate = jitter or 0.0
    return MotionSample(
        pitch=float(np.radians(pitch_degrees)),
        roll=0.0,
        yaw=0.0,
        user_acceleration=(0.0, 0.0, 0.0),
        rotation_rate=(rate, rate, rate),
        timestamp=timestamp,
    )
