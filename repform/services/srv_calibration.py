"""
Calibration Service for RepForm.

Drives one calibration run end to end:

    begin -> submit_pose / submit_motion -> (select_strategy / fallback)
          -> finalize -> publish profile -> persist

At most one aggregation is in flight per exercise. A run stopped while
its batch is being aggregated is discarded, never published.

Author: RepForm Team
Version: 1.0.0
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from repform.core.config import Settings, settings
from repform.engine.core.data_types import (
    CalibrationData, CalibrationFrame, CalibrationMode, CalibrationQuality, DevicePosition, ExerciseType, MotionSample,
    PoseSnapshot,
)
from repform.engine.core.device_position import detect_position_continuous
from repform.engine.modules.aggregator import CalibrationAggregator
from repform.engine.modules.frame_collector import CalibrationFrameCollector, CollectionProgress
from repform.engine.modules.strategies import (
    CalibrationStrategy, CalibrationStrategySelector, DefaultCalibrationProfiles, ManualCalibrationInputs,
)
from repform.engine.utils.channel import EventChannel
from repform.engine.utils.logger import SessionLogger
from repform.helpers.exception_handler import (
    CalibrationRepositoryError, CustomException, UnsupportedExerciseError,
)
from repform.repository.kv_calibration import KeyValueCalibrationStore
from repform.services.srv_calibration_store import CalibrationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationOutcome:
    """A finished calibration and how it was stored."""
    profile: CalibrationData
    quality: CalibrationQuality
    strategy: str
    position: DevicePosition
    persisted: bool
    error: Optional[CalibrationRepositoryError] = None

    @property
    def used_fallback_store(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        return {
            "profile": self.profile.to_dict(),
            "quality": self.quality.value,
            "strategy": self.strategy,
            "position": self.position.description,
            "persisted": self.persisted,
            "error": self.error.to_dict() if self.error else None,
        }


class CalibrationService:
    def __init__(
        self,
        store: Optional[CalibrationStore] = None,
        fallback_store: Optional[KeyValueCalibrationStore] = None,
        config: Settings = settings,
        channel: Optional[EventChannel] = None,
        session_logger: Optional[SessionLogger] = None,
    ):
        self.config = config
        self.store = store
        self.fallback_store = fallback_store or KeyValueCalibrationStore(config.FALLBACK_STORE_PATH)
        self.profiles = channel or EventChannel(config.CHANNEL_CAPACITY, name="calibration")
        self.progress = EventChannel(config.CHANNEL_CAPACITY, name="calibration-progress")
        self.session_logger = session_logger
        if self.session_logger is None and config.SESSION_LOGS_ENABLED:
            self.session_logger = SessionLogger(config.LOG_DIR, console_output=False)

        self.aggregator = CalibrationAggregator(
            excellent=config.QUALITY_EXCELLENT,
            good=config.QUALITY_GOOD,
            acceptable=config.QUALITY_ACCEPTABLE,
            poor=config.QUALITY_POOR,
        )
        self.collector = CalibrationFrameCollector(
            frame_throttle_interval=config.FRAME_THROTTLE_INTERVAL,
            sample_interval=config.SAMPLE_INTERVAL,
            max_motion_history=config.MAX_MOTION_HISTORY,
            on_progress=self.progress.publish,
        )

        self._selectors: Dict[ExerciseType, CalibrationStrategySelector] = {}
        self._locks: Dict[ExerciseType, asyncio.Lock] = {}
        self._mode = CalibrationMode.FULL

    # ==================== HELPERS ====================

    def selector_for(self, exercise: ExerciseType) -> CalibrationStrategySelector:
        if exercise not in self._selectors:
            self._selectors[exercise] = CalibrationStrategySelector(
                exercise,
                self.aggregator,
                partial_ceiling=self.config.PARTIAL_BODY_SCORE_CEILING,
                key_point_ceiling=self.config.KEY_POINT_SCORE_CEILING,
                manual_ceiling=self.config.MANUAL_SCORE_CEILING,
            )
        return self._selectors[exercise]

    def _lock_for(self, exercise: ExerciseType) -> asyncio.Lock:
        if exercise not in self._locks:
            self._locks[exercise] = asyncio.Lock()
        return self._locks[exercise]

    def _current_selector(self) -> CalibrationStrategySelector:
        exercise = self.collector.exercise
        if exercise is None:
            raise CustomException(message="No calibration run in progress")
        return self.selector_for(exercise)

    @property
    def mode(self) -> CalibrationMode:
        return self._mode

    @property
    def current_strategy(self) -> Optional[CalibrationStrategy]:
        exercise = self.collector.exercise
        return self.selector_for(exercise).current_strategy if exercise else None

    # ==================== RUN LIFECYCLE ====================

    def begin(
        self,
        exercise: ExerciseType,
        mode: CalibrationMode = CalibrationMode.FULL,
        use_timer: bool = True,
    ) -> int:
        """
        Start a calibration run.

        Returns:
            The collector generation of the run

        Raises:
            UnsupportedExerciseError: If the exercise cannot be calibrated
        """
        if not exercise.is_calibratable:
            raise UnsupportedExerciseError(exercise)

        self._mode = mode
        selector = self.selector_for(exercise)
        selector.reset()
        selector.apply_mode(mode, self.config.REQUIRED_FRAMES)
        required = selector.current_strategy.required_frames

        generation = self.collector.start_calibration(exercise, required_frames=required, use_timer=use_timer)
        if self.session_logger is not None:
            self.session_logger.start_session(f"calibration_{uuid.uuid4().hex[:8]}", exercise.value)
            self.session_logger.log_strategy(selector.current_strategy.name, f"mode={mode.value}")
        logger.info(f"Calibration started: {exercise.value} mode={mode.value} frames={required}")
        return generation

    def submit_pose(self, pose: Optional[PoseSnapshot]) -> bool:
        return self.collector.submit_pose(pose)

    def submit_motion(self, motion: MotionSample) -> None:
        self.collector.submit_motion(motion)

    def set_manual_inputs(self, exercise: ExerciseType, inputs: ManualCalibrationInputs) -> None:
        self.selector_for(exercise).manual_strategy.set_user_inputs(inputs)

    def select_strategy(self, pose: Optional[PoseSnapshot]) -> CalibrationStrategy:
        """Pick the strategy the pose supports and resize the batch to match."""
        strategy = self._current_selector().select_strategy(pose)
        self._apply_strategy(strategy, "selected")
        return strategy

    def fallback_to_next_strategy(self) -> CalibrationStrategy:
        strategy = self._current_selector().fallback_to_next_strategy()
        self._apply_strategy(strategy, "fallback")
        return strategy

    def _apply_strategy(self, strategy: CalibrationStrategy, reason: str) -> None:
        self.collector.set_required_frames(strategy.required_frames)
        if self.session_logger is not None:
            self.session_logger.log_strategy(strategy.name, reason)

    def stop(self) -> None:
        """Cancel the active run; safe to call at any time."""
        self.collector.stop_calibration()
        self._end_session({"cancelled": True})

    # ==================== FINALIZE ====================

    async def wait_and_finalize(self, timeout: Optional[float] = None) -> Optional[CalibrationOutcome]:
        """Wait for the batch to fill, then finalize; None on timeout or cancellation."""
        timeout = self.config.CALIBRATION_TIMEOUT if timeout is None else timeout
        ready = await asyncio.to_thread(self.collector.wait_until_ready, timeout)
        if not ready:
            logger.info(f"Calibration batch not ready ({self.collector.frame_count}/{self.collector.required_frames})")
            return None
        return await self.finalize()

    async def finalize(self) -> Optional[CalibrationOutcome]:
        """
        Aggregate the collected batch, publish and persist the profile.

        Returns:
            The outcome, or None when the run was cancelled meanwhile

        Raises:
            InsufficientFramesError: If the batch is not complete

        A failure after the batch is taken cancels the run and closes its
        session log before re-raising.
        """
        exercise = self.collector.exercise
        if exercise is None:
            return None

        async with self._lock_for(exercise):
            generation = self.collector.generation
            frames = self.collector.take_batch()
            try:
                return await self._complete(exercise, generation, frames)
            except Exception as e:
                logger.error(f"Calibration for {exercise.value} failed: {e}")
                self.collector.stop_calibration()
                self._end_session({"error": str(e)})
                raise

    async def _complete(
        self,
        exercise: ExerciseType,
        generation: int,
        frames: List[CalibrationFrame],
    ) -> Optional[CalibrationOutcome]:
        motion = self.collector.latest_motion
        history = self.collector.motion_history
        selector = self.selector_for(exercise)

        position = detect_position_continuous(frames, history)
        if self._mode is CalibrationMode.QUICK:
            strategy_name = "Quick Calibration"
            profile = self.aggregator.synthesize(
                DefaultCalibrationProfiles.get_default(exercise), (), DefaultCalibrationProfiles.DEFAULT_SCORE,
            )
        else:
            strategy_name = selector.current_strategy.name
            profile = await asyncio.to_thread(selector.perform_calibration, frames, motion, position)

        if not self.collector.finish(generation):
            logger.info(f"Calibration for {exercise.value} cancelled during aggregation; result discarded")
            return None
        if profile is None:
            logger.warning(f"{strategy_name} produced no profile for {exercise.value}")
            self._end_session({"profile": None})
            return None

        quality = self.aggregator.quality(profile.calibration_score)
        self.profiles.publish(profile)
        if self.session_logger is not None:
            self.session_logger.log_position(position.kind.value, position.height, position.angle)
            self.session_logger.log_calibration(profile.to_dict(), quality.value)

        persisted, error = await self._persist(profile)
        outcome = CalibrationOutcome(profile, quality, strategy_name, position, persisted, error)
        self._end_session(outcome.to_dict())
        return outcome

    async def _persist(self, profile: CalibrationData) -> Tuple[bool, Optional[CalibrationRepositoryError]]:
        if self.store is not None:
            try:
                await self.store.save(profile)
                return True, None
            except CalibrationRepositoryError as e:
                error = e
                logger.error(f"{e.message}; saving {profile.exercise.value} calibration to key-value store")
                if self.session_logger is not None:
                    self.session_logger.log_storage_error(e.operation.value, e.message)
        else:
            error = None

        try:
            await asyncio.to_thread(self.fallback_store.save, profile)
        except OSError as e:
            logger.error(f"Key-value calibration save failed: {e}")
            return False, error
        return True, error

    def _end_session(self, report: dict) -> None:
        if self.session_logger is not None and self.session_logger.session_id is not None:
            self.session_logger.end_session(report)

    async def calibrate_quick(self, exercise: ExerciseType) -> Optional[CalibrationOutcome]:
        """Default profile without collecting frames."""
        self.begin(exercise, CalibrationMode.QUICK, use_timer=False)
        return await self.finalize()

    # ==================== LOADING ====================

    async def load_calibration(self, exercise: ExerciseType) -> Optional[CalibrationData]:
        """
        Profile to score ``exercise`` with.

        Latest stored profile (cache-first) if usable, else the best
        stored one; when the database has nothing or fails, the
        key-value store is consulted and its profile migrated.
        """
        if self.store is not None:
            try:
                profile = await self.store.get_latest(exercise)
                if profile is not None and not profile.is_usable:
                    profile = await self.store.get_best(exercise) or profile
                if profile is not None:
                    return profile
            except CalibrationRepositoryError as e:
                logger.warning(f"{e.message}; using key-value store")
                return await asyncio.to_thread(self.fallback_store.load, exercise)

        profile = await asyncio.to_thread(self.fallback_store.load, exercise)
        if profile is not None and self.store is not None:
            try:
                await self.store.save(profile)
                await asyncio.to_thread(self.fallback_store.remove, exercise)
                logger.info(f"Migrated {exercise.value} calibration from key-value store")
            except CalibrationRepositoryError as e:
                logger.warning(f"Legacy {exercise.value} calibration not migrated: {e.message}")
        return profile

    async def migrate_legacy(self) -> int:
        if self.store is None:
            return 0
        return await self.store.migrate_legacy(self.fallback_store)

    def subscribe(self, callback, replay: bool = True):
        """Receive published profiles; returns an unsubscribe function."""
        return self.profiles.subscribe(callback, replay=replay)

    def progress_snapshot(self) -> CollectionProgress:
        return self.collector.tick()
