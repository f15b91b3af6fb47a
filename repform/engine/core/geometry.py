"""
Geometry Module for RepForm.

Angle, distance and robust-averaging helpers on normalized 2D points.
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from .data_types import Joint, PoseSnapshot

Point = Tuple[float, float]


def angle_at_vertex(a: Point, vertex: Point, c: Point) -> float:
    """
    Calculate the angle at ``vertex`` formed by a-vertex-c.

    Args:
        a: First point
        vertex: Middle point (angle vertex)
        c: Third point

    Returns:
        Angle in degrees in [0, 180]. 0 when either ray has zero length.
    """
    v1 = np.array(a, dtype=float) - np.array(vertex, dtype=float)
    v2 = np.array(c, dtype=float) - np.array(vertex, dtype=float)

    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    cos_angle = np.dot(v1, v2) / (norm1 * norm2)
    cos_angle = np.clip(cos_angle, -1, 1)

    return float(np.degrees(np.arccos(cos_angle)))


def distance(a: Point, b: Point) -> float:
    """Euclidean distance between two normalized points."""
    return float(np.linalg.norm(np.array(a, dtype=float) - np.array(b, dtype=float)))


def joint_angle(pose: PoseSnapshot, a: Joint, vertex: Joint, c: Joint) -> Optional[float]:
    """Angle at ``vertex`` for three joints of a pose, None if any is missing."""
    first, middle, last = pose.get(a), pose.get(vertex), pose.get(c)
    if first is None or middle is None or last is None:
        return None
    return angle_at_vertex(first.point, middle.point, last.point)


def joint_distance(pose: PoseSnapshot, a: Joint, b: Joint) -> Optional[float]:
    first, second = pose.get(a), pose.get(b)
    if first is None or second is None:
        return None
    return distance(first.point, second.point)


def incline_from_horizontal(a: Point, b: Point) -> float:
    """Angle of segment a-b above the horizontal, in degrees [0, 90]."""
    dx = abs(b[0] - a[0])
    dy = abs(b[1] - a[1])
    if dx == 0 and dy == 0:
        return 0.0
    return float(np.degrees(np.arctan2(dy, dx)))


def filter_outliers_and_average(values: Sequence[float]) -> float:
    """
    Mean of ``values`` after IQR outlier rejection.

    Quartiles are taken at sorted[n // 4] and sorted[3n // 4]; values
    outside [Q1 - 1.5 IQR, Q3 + 1.5 IQR] are dropped. Two or fewer
    samples are averaged directly, as is the full set if filtering
    would leave nothing. Empty input averages to 0.
    """
    if len(values) == 0:
        return 0.0

    data = np.sort(np.asarray(values, dtype=float))
    if len(data) <= 2:
        return float(np.mean(data))

    n = len(data)
    q1 = data[n // 4]
    q3 = data[(3 * n) // 4]
    iqr = q3 - q1
    lower = q1 - 1.5 * iqr
    upper = q3 + 1.5 * iqr

    kept = data[(data >= lower) & (data <= upper)]
    if len(kept) == 0:
        return float(np.mean(data))
    return float(np.mean(kept))
