"""End-to-end tests for calibration runs and live feedback."""

from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

from repform.core.config import Settings
from repform.db.base import create_db_engine
from repform.engine.core.data_types import CalibrationMode, CalibrationQuality, ExerciseType
from repform.engine.modules.strategies import ManualCalibrationInputs
from repform.engine.utils import simulation
from repform.engine.utils.logger import SessionLogger
from repform.helpers.exception_handler import (
    CustomException, InsufficientFramesError, RepositoryOperation, UnsupportedExerciseError,
)
from repform.repository.kv_calibration import KeyValueCalibrationStore
from repform.services.srv_calibration import CalibrationService
from repform.services.srv_calibration_store import CalibrationStore
from repform.services.srv_feedback import FeedbackService


def _feed(service: CalibrationService, angle: float = 180.0, limit: int = 200) -> int:
    submitted = 0
    while service.collector.is_collecting and submitted < limit:
        service.submit_pose(simulation.pushup_pose(angle, timestamp=submitted * 0.05))
        submitted += 1
    return submitted


@pytest.fixture
def broken_store() -> CalibrationStore:
    return CalibrationStore(sessionmaker(bind=create_db_engine("sqlite://")))


class TestFullRun:
    @pytest.mark.asyncio
    async def test_calibrates_publishes_and_persists(self, service: CalibrationService,
                                                     store: CalibrationStore) -> None:
        published = []
        service.subscribe(published.append)

        service.begin(ExerciseType.PUSHUP, use_timer=False)
        assert service.collector.required_frames == 60
        _feed(service)
        outcome = await service.finalize()

        assert outcome is not None
        assert outcome.strategy == "Full Body Calibration"
        assert outcome.quality is CalibrationQuality.GOOD
        assert outcome.persisted and outcome.error is None
        assert not outcome.used_fallback_store
        assert outcome.profile.frame_count == 60
        assert service.profiles.latest is outcome.profile
        service.profiles.drain()
        assert published == [outcome.profile]
        assert await store.get_latest(ExerciseType.PUSHUP) == outcome.profile

    @pytest.mark.asyncio
    async def test_basic_mode_collects_fewer_frames(self, service: CalibrationService) -> None:
        service.begin(ExerciseType.PUSHUP, CalibrationMode.BASIC, use_timer=False)
        assert service.collector.required_frames == 30
        _feed(service)
        outcome = await service.finalize()
        assert outcome.profile.frame_count == 30

    @pytest.mark.asyncio
    async def test_configured_frame_count(self, store: CalibrationStore, kv_store: KeyValueCalibrationStore,
                                          test_settings: Settings) -> None:
        config = test_settings.model_copy(update={"REQUIRED_FRAMES": 45})
        service = CalibrationService(store=store, fallback_store=kv_store, config=config)
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        assert service.collector.required_frames == 45
        _feed(service)
        assert (await service.finalize()).profile.frame_count == 45

    def test_progress_snapshot_is_published(self, service: CalibrationService) -> None:
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        _feed(service, limit=15)

        progress = service.progress_snapshot()
        assert progress.collected == 15
        assert progress.progress == pytest.approx(0.25)
        assert service.progress.latest == progress
        assert isinstance(service.collector.device_setup_hints(), list)
        service.stop()

    @pytest.mark.asyncio
    async def test_wait_and_finalize(self, service: CalibrationService) -> None:
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        _feed(service)
        outcome = await service.wait_and_finalize(timeout=1.0)
        assert outcome is not None

    @pytest.mark.asyncio
    async def test_wait_times_out(self, service: CalibrationService) -> None:
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        assert await service.wait_and_finalize(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_session_log_written(self, store: CalibrationStore, kv_store: KeyValueCalibrationStore,
                                       test_settings: Settings, tmp_path: Path) -> None:
        session_logger = SessionLogger(str(tmp_path / "sessions"), console_output=False, async_write=False)
        service = CalibrationService(store, kv_store, config=test_settings, session_logger=session_logger)
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        _feed(service)
        await service.finalize()

        assert session_logger.session_id is None
        assert len(list((tmp_path / "sessions").rglob("calibration_*.json"))) == 1

    def test_restarted_run_closes_previous_session_log(self, store: CalibrationStore,
                                                       kv_store: KeyValueCalibrationStore,
                                                       test_settings: Settings, tmp_path: Path) -> None:
        session_logger = SessionLogger(str(tmp_path / "sessions"), console_output=False, async_write=True)
        service = CalibrationService(store, kv_store, config=test_settings, session_logger=session_logger)
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        first_handle = session_logger._file_handle

        service.begin(ExerciseType.PUSHUP, use_timer=False)
        assert first_handle.closed
        assert len(list((tmp_path / "sessions").rglob("calibration_*.json"))) == 1

        service.stop()
        assert session_logger.session_id is None
        assert len(list((tmp_path / "sessions").rglob("calibration_*.json"))) == 2

    @pytest.mark.asyncio
    async def test_failed_aggregation_closes_session_log(self, store: CalibrationStore,
                                                         kv_store: KeyValueCalibrationStore,
                                                         test_settings: Settings, tmp_path: Path) -> None:
        session_logger = SessionLogger(str(tmp_path / "sessions"), console_output=False, async_write=False)
        service = CalibrationService(store, kv_store, config=test_settings, session_logger=session_logger)

        def failing_calibration(*args, **kwargs):
            raise ValueError("aggregation failed")

        service.selector_for(ExerciseType.PUSHUP).perform_calibration = failing_calibration
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        first_handle = session_logger._file_handle
        _feed(service)

        with pytest.raises(ValueError):
            await service.finalize()
        assert first_handle.closed
        assert session_logger.session_id is None
        assert not service.collector.is_collecting
        assert len(list((tmp_path / "sessions").rglob("calibration_*.json"))) == 1
        assert service.profiles.latest is None


class TestRunControl:
    def test_run_cannot_be_calibrated(self, service: CalibrationService) -> None:
        with pytest.raises(UnsupportedExerciseError):
            service.begin(ExerciseType.RUN)

    def test_strategy_needs_active_run(self, service: CalibrationService) -> None:
        with pytest.raises(CustomException):
            service.select_strategy(None)

    @pytest.mark.asyncio
    async def test_incomplete_batch(self, service: CalibrationService) -> None:
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        _feed(service, limit=10)
        with pytest.raises(InsufficientFramesError):
            await service.finalize()

    @pytest.mark.asyncio
    async def test_stopped_run_cannot_finalize(self, service: CalibrationService) -> None:
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        _feed(service)
        service.stop()
        service.stop()
        with pytest.raises(InsufficientFramesError):
            await service.finalize()

    @pytest.mark.asyncio
    async def test_stop_during_aggregation_discards_result(self, service: CalibrationService,
                                                           store: CalibrationStore) -> None:
        selector = service.selector_for(ExerciseType.PUSHUP)
        perform = selector.perform_calibration

        def perform_then_cancel(*args, **kwargs):
            profile = perform(*args, **kwargs)
            service.stop()
            return profile

        selector.perform_calibration = perform_then_cancel
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        _feed(service)

        assert await service.finalize() is None
        assert service.profiles.latest is None
        assert await store.get_latest(ExerciseType.PUSHUP) is None


class TestStrategies:
    @pytest.mark.asyncio
    async def test_manual_when_nobody_visible(self, service: CalibrationService) -> None:
        service.begin(ExerciseType.SITUP, use_timer=False)
        service.set_manual_inputs(ExerciseType.SITUP, ManualCalibrationInputs(user_height=1.6))

        strategy = service.select_strategy(None)
        assert strategy.name == "Manual Calibration"
        assert service.collector.required_frames == 0

        outcome = await service.finalize()
        assert outcome.strategy == "Manual Calibration"
        assert outcome.profile.calibration_score == pytest.approx(60.0)
        assert outcome.profile.user_height == pytest.approx(1.6)
        assert outcome.quality is CalibrationQuality.POOR

    @pytest.mark.asyncio
    async def test_fallback_shrinks_batch(self, service: CalibrationService) -> None:
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        _feed(service, limit=45)
        assert service.collector.is_collecting

        strategy = service.fallback_to_next_strategy()
        assert strategy.name == "Partial Body Calibration"
        assert service.collector.required_frames == 40
        assert not service.collector.is_collecting

        outcome = await service.finalize()
        assert outcome.profile.calibration_score == pytest.approx(75.0)
        assert outcome.profile.frame_count == 40

    @pytest.mark.asyncio
    async def test_quick_mode(self, service: CalibrationService) -> None:
        outcome = await service.calibrate_quick(ExerciseType.PULLUP)
        assert outcome.strategy == "Quick Calibration"
        assert outcome.profile.calibration_score == pytest.approx(75.0)
        assert outcome.profile.frame_count == 0
        assert service.mode is CalibrationMode.QUICK


class TestPersistenceFallback:
    @pytest.mark.asyncio
    async def test_save_failure_uses_key_value_store(self, broken_store: CalibrationStore,
                                                     kv_store: KeyValueCalibrationStore,
                                                     test_settings: Settings) -> None:
        service = CalibrationService(broken_store, kv_store, config=test_settings)
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        _feed(service)
        outcome = await service.finalize()

        assert outcome.persisted
        assert outcome.used_fallback_store
        assert outcome.error.operation is RepositoryOperation.SAVE
        assert service.profiles.latest is outcome.profile
        assert kv_store.load(ExerciseType.PUSHUP) == outcome.profile
        assert outcome.to_dict()["error"]["code"] == "200"

    @pytest.mark.asyncio
    async def test_without_database(self, kv_store: KeyValueCalibrationStore, test_settings: Settings) -> None:
        service = CalibrationService(None, kv_store, config=test_settings)
        outcome = await service.calibrate_quick(ExerciseType.SITUP)
        assert outcome.persisted and outcome.error is None
        assert await service.load_calibration(ExerciseType.SITUP) == outcome.profile


class TestLoadCalibration:
    @pytest.mark.asyncio
    async def test_prefers_latest_usable(self, service: CalibrationService, store: CalibrationStore,
                                         profile_factory) -> None:
        await store.save(profile_factory(score=90.0, timestamp=1000.0))
        latest = await store.save(profile_factory(score=70.0, timestamp=2000.0))
        assert (await service.load_calibration(ExerciseType.PUSHUP)).id == latest.id

    @pytest.mark.asyncio
    async def test_unusable_latest_falls_back_to_best(self, service: CalibrationService,
                                                      store: CalibrationStore, profile_factory) -> None:
        best = await store.save(profile_factory(score=85.0, timestamp=1000.0))
        await store.save(profile_factory(score=40.0, timestamp=2000.0))
        assert (await service.load_calibration(ExerciseType.PUSHUP)).id == best.id

    @pytest.mark.asyncio
    async def test_migrates_key_value_profile(self, service: CalibrationService, store: CalibrationStore,
                                              kv_store: KeyValueCalibrationStore, profile_factory) -> None:
        legacy = profile_factory(ExerciseType.PULLUP)
        kv_store.save(legacy)

        assert await service.load_calibration(ExerciseType.PULLUP) == legacy
        assert kv_store.load(ExerciseType.PULLUP) is None
        assert await store.get(legacy.id) == legacy

    @pytest.mark.asyncio
    async def test_database_failure_reads_key_value_store(self, broken_store: CalibrationStore,
                                                          kv_store: KeyValueCalibrationStore,
                                                          test_settings: Settings, profile_factory) -> None:
        profile = profile_factory()
        kv_store.save(profile)
        service = CalibrationService(broken_store, kv_store, config=test_settings)
        assert await service.load_calibration(ExerciseType.PUSHUP) == profile

    @pytest.mark.asyncio
    async def test_nothing_stored(self, service: CalibrationService) -> None:
        assert await service.load_calibration(ExerciseType.SITUP) is None

    @pytest.mark.asyncio
    async def test_migrate_legacy(self, service: CalibrationService, kv_store: KeyValueCalibrationStore,
                                  profile_factory) -> None:
        kv_store.save(profile_factory(ExerciseType.SITUP))
        assert await service.migrate_legacy() == 1


class TestFeedbackService:
    @pytest.mark.asyncio
    async def test_workout_with_stored_calibration(self, service: CalibrationService,
                                                   test_settings: Settings) -> None:
        service.begin(ExerciseType.PUSHUP, use_timer=False)
        _feed(service)
        outcome = await service.finalize()

        feedback = FeedbackService(service, config=test_settings)
        assert await feedback.start(ExerciseType.PUSHUP)
        assert feedback.calibration.id == outcome.profile.id

        for i, angle in enumerate(simulation.rep_angles(180.0, 85.0, 2)):
            feedback.process_pose(simulation.pushup_pose(angle), now=i * 0.05)
        feedback.process_pose(simulation.pushup_pose(180.0), now=100.0)
        summary = feedback.stop()

        assert summary["exercise"] == "pushup"
        assert summary["reps"] == 2
        assert summary["calibration_id"] == outcome.profile.id
        assert 0.0 < summary["average_form_score"] <= 1.0

    @pytest.mark.asyncio
    async def test_default_profile_without_calibration(self, service: CalibrationService,
                                                       test_settings: Settings) -> None:
        feedback = FeedbackService(service, config=test_settings)
        assert await feedback.start(ExerciseType.SITUP)
        assert feedback.calibration.calibration_score == pytest.approx(75.0)

    @pytest.mark.asyncio
    async def test_run_is_rejected(self, service: CalibrationService, test_settings: Settings) -> None:
        feedback = FeedbackService(service, config=test_settings)
        assert not await feedback.start(ExerciseType.RUN)
        assert feedback.stop()["reps"] == 0

    @pytest.mark.asyncio
    async def test_feedback_is_logged(self, service: CalibrationService, test_settings: Settings,
                                      tmp_path: Path) -> None:
        session_logger = SessionLogger(str(tmp_path / "workouts"), console_output=False, async_write=False)
        feedback = FeedbackService(service, config=test_settings, session_logger=session_logger)
        await feedback.start(ExerciseType.PUSHUP)
        feedback.process_pose(simulation.pushup_pose(180.0, hip_sag=0.2), now=0.0)
        feedback.channel.drain()

        assert session_logger.get_summary()["total_entries"] > 1
        feedback.stop()
        assert len(list((tmp_path / "workouts").rglob("workout_pushup_*.json"))) == 1
