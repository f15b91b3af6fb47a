"""Tests for angle measurement and the rep phase machine."""

from typing import Callable, List

import pytest

from repform.engine.core.data_types import ExerciseType, PoseSnapshot
from repform.engine.modules.rep_counter import (
    MotionPhase,
    PullupAnalyzer,
    PushupAnalyzer,
    RepCounter,
    SitupAnalyzer,
    create_analyzer,
)
from repform.engine.modules.strategies import DefaultCalibrationProfiles
from repform.engine.utils import simulation


def _run(exercise: ExerciseType, build_pose: Callable[[float], PoseSnapshot], angles: List[float]):
    analyzer = create_analyzer(exercise)
    profile = DefaultCalibrationProfiles.get_default(exercise)
    counter = RepCounter(analyzer, profile.validation_ranges)
    updates = []
    for angle in angles:
        adjusted = analyzer.correct(analyzer.measure(build_pose(angle)), profile)
        updates.append(counter.update(adjusted))
    return counter, updates


class TestMeasure:
    def test_pushup_straight_body(self) -> None:
        metrics = PushupAnalyzer().measure(simulation.pushup_pose(120.0))
        assert metrics["elbow"] == pytest.approx(120.0, abs=0.01)
        assert metrics["body_alignment"] == pytest.approx(0.0, abs=0.01)

    def test_pushup_sagging_hips(self) -> None:
        metrics = PushupAnalyzer().measure(simulation.pushup_pose(180.0, hip_sag=0.2))
        assert metrics["body_alignment"] == pytest.approx(63.43, abs=0.1)

    def test_situp(self) -> None:
        metrics = SitupAnalyzer().measure(simulation.situp_pose(30.0, knee_angle=90.0))
        assert metrics["torso"] == pytest.approx(30.0, abs=0.01)
        assert metrics["knee"] == pytest.approx(90.0, abs=0.01)

    def test_pullup(self) -> None:
        metrics = PullupAnalyzer().measure(simulation.pullup_pose(100.0))
        assert metrics["elbow"] == pytest.approx(100.0, abs=0.01)
        assert metrics["body_vertical"] == pytest.approx(0.0, abs=0.01)

    def test_missing_joints(self) -> None:
        assert PushupAnalyzer().measure(PoseSnapshot()) is None

    def test_run_has_no_analyzer(self) -> None:
        assert create_analyzer(ExerciseType.RUN) is None


@pytest.mark.parametrize(
    "exercise,build_pose,start,target",
    [
        (ExerciseType.PUSHUP, simulation.pushup_pose, 180.0, 85.0),
        (ExerciseType.SITUP, simulation.situp_pose, 5.0, 85.0),
        (ExerciseType.PULLUP, simulation.pullup_pose, 180.0, 80.0),
    ],
)
def test_counts_full_reps(exercise, build_pose, start: float, target: float) -> None:
    counter, updates = _run(exercise, build_pose, simulation.rep_angles(start, target, 3))
    assert counter.rep_count == 3
    assert sum(1 for u in updates if u.rep_completed) == 3
    assert counter.phase is MotionPhase.IDLE
    assert not any(u.form_issues for u in updates)


def test_phases_in_order() -> None:
    _, updates = _run(ExerciseType.PUSHUP, simulation.pushup_pose, simulation.rep_angles(180.0, 85.0, 1))
    phases = [u.phase for u in updates]
    seen = [p for i, p in enumerate(phases) if i == 0 or p is not phases[i - 1]]
    assert seen == [
        MotionPhase.IDLE, MotionPhase.ECCENTRIC, MotionPhase.HOLD, MotionPhase.CONCENTRIC, MotionPhase.IDLE,
    ]


def test_not_armed_until_start_position() -> None:
    counter, _ = _run(ExerciseType.PUSHUP, simulation.pushup_pose, [120.0, 85.0, 120.0, 85.0])
    assert counter.rep_count == 0
    assert counter.phase is MotionPhase.IDLE


def test_shallow_rep_is_flagged() -> None:
    counter, updates = _run(ExerciseType.PUSHUP, simulation.pushup_pose, [180.0, 150.0, 130.0, 150.0, 180.0])
    assert counter.rep_count == 0
    assert ["Go lower"] in [u.form_issues for u in updates]


def test_incomplete_return_is_flagged() -> None:
    counter, updates = _run(ExerciseType.PUSHUP, simulation.pushup_pose, [180.0, 130.0, 85.0, 130.0, 85.0])
    assert counter.rep_count == 0
    assert updates[-1].form_issues == ["Extend arms fully"]
    assert updates[-1].phase is MotionPhase.HOLD


def test_reset() -> None:
    counter, _ = _run(ExerciseType.PUSHUP, simulation.pushup_pose, simulation.rep_angles(180.0, 85.0, 1))
    counter.reset()
    assert counter.rep_count == 0
    assert counter.phase is MotionPhase.IDLE


def test_calibrated_offsets_shift_angles() -> None:
    profile = DefaultCalibrationProfiles.get_default(ExerciseType.PUSHUP)
    analyzer = PushupAnalyzer()
    adjusted = analyzer.correct({"elbow": 90.0, "body_alignment": 20.0}, profile)
    # default push-up profile keeps elbow targets at baseline and relaxes alignment by 5
    assert adjusted["elbow"] == pytest.approx(90.0)
    assert adjusted["body_alignment"] == pytest.approx(15.0)
