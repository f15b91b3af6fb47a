"""Shared fixtures for RepForm tests."""

import uuid
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import pytest

from repform.core.config import Settings
from repform.db.base import create_session_factory
from repform.engine.core.data_types import (
    CalibrationData, CalibrationFrame, ExerciseType, MotionSample, PoseSnapshot,
)
from repform.engine.modules.aggregator import CalibrationAggregator
from repform.engine.modules.frame_collector import assess_frame_quality
from repform.engine.modules.strategies import DefaultCalibrationProfiles
from repform.engine.utils import simulation
from repform.repository.kv_calibration import KeyValueCalibrationStore
from repform.services.srv_calibration import CalibrationService
from repform.services.srv_calibration_store import CalibrationStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_frames(
    poses: Iterable[PoseSnapshot],
    exercise: ExerciseType = ExerciseType.PUSHUP,
    motion: Optional[MotionSample] = None,
) -> List[CalibrationFrame]:
    return [
        CalibrationFrame(
            timestamp=pose.timestamp,
            pose=pose,
            quality=assess_frame_quality(pose, exercise, motion),
            motion=motion,
        )
        for pose in poses
    ]


def make_profile(
    exercise: ExerciseType = ExerciseType.PUSHUP,
    score: float = 81.0,
    timestamp: float = 1_700_000_000.0,
    confidence: Optional[float] = None,
) -> CalibrationData:
    return replace(
        DefaultCalibrationProfiles.get_default(exercise),
        id=str(uuid.uuid4()),
        timestamp=timestamp,
        calibration_score=score,
        confidence_level=score / 100.0 if confidence is None else confidence,
        frame_count=60,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def aggregator() -> CalibrationAggregator:
    return CalibrationAggregator()


@pytest.fixture
def static_pushup_frames() -> List[CalibrationFrame]:
    return make_frames(simulation.pushup_pose(180.0, timestamp=i * 0.05) for i in range(60))


@pytest.fixture
def oscillating_pushup_frames() -> List[CalibrationFrame]:
    angles = simulation.oscillating_angles(60, high=170.0, low=90.0)
    return make_frames(simulation.pushup_pose(a, timestamp=i * 0.05) for i, a in enumerate(angles))


@pytest.fixture
def profile_factory() -> Callable[..., CalibrationData]:
    return make_profile


@pytest.fixture
def session_factory():
    return create_session_factory("sqlite://")


@pytest.fixture
def store(session_factory) -> CalibrationStore:
    return CalibrationStore(session_factory)


@pytest.fixture
def kv_store(tmp_path: Path) -> KeyValueCalibrationStore:
    return KeyValueCalibrationStore(tmp_path / "fallback" / "calibrations.json")


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        DATABASE_URL="sqlite://",
        FALLBACK_STORE_PATH=str(tmp_path / "fallback" / "calibrations.json"),
        LOG_DIR=str(tmp_path / "logs"),
        SESSION_LOGS_ENABLED=False,
        FRAME_THROTTLE_INTERVAL=0.0,
    )


@pytest.fixture
def service(
    store: CalibrationStore,
    kv_store: KeyValueCalibrationStore,
    test_settings: Settings,
) -> CalibrationService:
    return CalibrationService(store=store, fallback_store=kv_store, config=test_settings)
