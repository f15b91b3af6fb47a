"""Tests for framing evaluation and setup suggestions."""

import pytest

from repform.engine.core.data_types import DevicePosition, ExerciseType, PoseSnapshot
from repform.engine.modules.framing import (
    FramingStatus,
    SuggestionPriority,
    SuggestionType,
    apparent_distance,
    evaluate_framing,
    generate_suggestions,
    is_ready_for_next_phase,
)
from repform.engine.utils import simulation


def _scaled(pose: PoseSnapshot, factor: float) -> PoseSnapshot:
    return PoseSnapshot.from_points(
        {
            joint: (0.5 + (s.x - 0.5) * factor, 0.5 + (s.y - 0.5) * factor, s.confidence)
            for joint, s in pose.joints.items()
        },
        timestamp=pose.timestamp,
    )


class TestEvaluateFraming:
    def test_centered_pushup_is_optimal(self) -> None:
        assert evaluate_framing(simulation.pushup_pose(), ExerciseType.PUSHUP) is FramingStatus.OPTIMAL

    def test_nobody_detected(self) -> None:
        assert evaluate_framing(None, ExerciseType.PUSHUP) is FramingStatus.UNKNOWN
        assert evaluate_framing(PoseSnapshot(), ExerciseType.PUSHUP) is FramingStatus.UNKNOWN

    def test_small_body_is_too_far(self) -> None:
        pose = _scaled(simulation.pushup_pose(), 0.5)
        assert apparent_distance(pose, ExerciseType.PUSHUP) > 2.0
        assert evaluate_framing(pose, ExerciseType.PUSHUP) is FramingStatus.TOO_FAR

    def test_large_body_is_too_close(self) -> None:
        pose = _scaled(simulation.pushup_pose(), 1.6)
        assert evaluate_framing(pose, ExerciseType.PUSHUP) is FramingStatus.TOO_CLOSE

    def test_off_center_left(self) -> None:
        pose = simulation.pushup_pose(shift=(-0.3, 0.0))
        assert evaluate_framing(pose, ExerciseType.PUSHUP) is FramingStatus.TOO_LEFT

    def test_low_confidence_cannot_be_framed(self) -> None:
        pose = simulation.pushup_pose(confidence=0.5)
        assert evaluate_framing(pose, ExerciseType.PUSHUP) is FramingStatus.UNKNOWN

    def test_run_uses_permissive_framing(self) -> None:
        assert evaluate_framing(simulation.pushup_pose(), ExerciseType.RUN).is_acceptable

    @pytest.mark.parametrize(
        "status,acceptable",
        [
            (FramingStatus.OPTIMAL, True),
            (FramingStatus.ACCEPTABLE, True),
            (FramingStatus.TOO_FAR, False),
            (FramingStatus.UNKNOWN, False),
        ],
    )
    def test_only_acceptable_statuses_admit_frames(self, status: FramingStatus, acceptable: bool) -> None:
        assert status.is_acceptable is acceptable
        assert status.instruction


class TestSuggestions:
    def test_good_setup_is_ready(self) -> None:
        pose = simulation.pushup_pose()
        suggestions = generate_suggestions(pose, FramingStatus.OPTIMAL, 0.9, ExerciseType.PUSHUP)
        assert suggestions == []
        assert is_ready_for_next_phase(suggestions)

    def test_bad_framing_and_shaking_block_progress(self) -> None:
        pose = simulation.pushup_pose()
        suggestions = generate_suggestions(pose, FramingStatus.TOO_FAR, 0.5, ExerciseType.PUSHUP)
        kinds = {s.type for s in suggestions}
        assert kinds == {SuggestionType.USER_POSITION, SuggestionType.STABILITY}
        assert suggestions[0].message == FramingStatus.TOO_FAR.instruction
        assert not is_ready_for_next_phase(suggestions)

    def test_dim_partial_pose(self) -> None:
        pose = simulation.pushup_pose(confidence=0.5)
        suggestions = generate_suggestions(pose, FramingStatus.ACCEPTABLE, 0.9, ExerciseType.PUSHUP)
        kinds = {s.type for s in suggestions}
        assert SuggestionType.LIGHTING in kinds
        assert SuggestionType.BODY_VISIBILITY in kinds

    def test_no_motion_data_skips_stability_hint(self) -> None:
        suggestions = generate_suggestions(simulation.pushup_pose(), FramingStatus.OPTIMAL, None, ExerciseType.PUSHUP)
        assert suggestions == []
        assert is_ready_for_next_phase(suggestions)

    def test_handheld_device_blocks_progress(self) -> None:
        suggestions = generate_suggestions(
            simulation.pushup_pose(), FramingStatus.OPTIMAL, None, ExerciseType.PUSHUP, DevicePosition.handheld(),
        )
        assert [s.type for s in suggestions] == [SuggestionType.DEVICE_POSITION]
        assert suggestions[0].priority is SuggestionPriority.CRITICAL
        assert not is_ready_for_next_phase(suggestions)

    def test_unknown_device_position_is_informational(self) -> None:
        suggestions = generate_suggestions(
            simulation.pushup_pose(), FramingStatus.OPTIMAL, 0.9, ExerciseType.PUSHUP, DevicePosition.unknown(),
        )
        assert [s.type for s in suggestions] == [SuggestionType.DEVICE_POSITION]
        assert is_ready_for_next_phase(suggestions)
