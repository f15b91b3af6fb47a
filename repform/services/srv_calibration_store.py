"""
Calibration Store Service for RepForm.

Async facade over the calibration repository. Database work runs on
worker threads through ``asyncio.to_thread``; the latest profile per
exercise is cached in memory and served cache-first.

Author: RepForm Team
Version: 1.0.0
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, TypeVar

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from repform.engine.core.data_types import CalibrationData, CalibrationQuality, ExerciseType
from repform.helpers.exception_handler import CalibrationRepositoryError, RepositoryOperation
from repform.repository.kv_calibration import KeyValueCalibrationStore
from repform.repository.repo_calibration import CalibrationRepository, to_profile

logger = logging.getLogger(__name__)

T = TypeVar("T")

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class CalibrationStatistics:
    total: int = 0
    by_exercise: Dict[str, int] = field(default_factory=dict)
    by_quality: Dict[str, int] = field(default_factory=dict)
    average_score: float = 0.0
    average_confidence: float = 0.0
    usable: int = 0
    archived: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "by_exercise": dict(self.by_exercise),
            "by_quality": dict(self.by_quality),
            "average_score": round(self.average_score, 2),
            "average_confidence": round(self.average_confidence, 3),
            "usable": self.usable,
            "archived": self.archived,
        }


class CalibrationStore:
    """
    Persistent calibration store.

    Every public operation is a coroutine. Repository failures are
    raised as CalibrationRepositoryError tagged with the operation.

    Example:
        >>> store = CalibrationStore(create_session_factory("sqlite://"))
        >>> await store.save(profile)
        >>> best = await store.get_best(ExerciseType.PUSHUP)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        excellent: float = 90.0,
        good: float = 80.0,
        acceptable: float = 70.0,
        poor: float = 60.0,
    ):
        self._session_factory = session_factory
        self._quality_thresholds = {
            "excellent": excellent,
            "good": good,
            "acceptable": acceptable,
            "poor": poor,
        }
        self._cache: Dict[ExerciseType, CalibrationData] = {}
        self._cache_lock = threading.Lock()

    # ==================== INTERNALS ====================

    async def _run(self, operation: RepositoryOperation, work: Callable[[CalibrationRepository], T]) -> T:
        return await asyncio.to_thread(self._run_sync, operation, work)

    def _run_sync(self, operation: RepositoryOperation, work: Callable[[CalibrationRepository], T]) -> T:
        db: Session = self._session_factory()
        try:
            return work(CalibrationRepository(db))
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Calibration {operation.value} failed: {e}")
            raise CalibrationRepositoryError(operation, str(e)) from e
        except (ValidationError, ValueError) as e:
            logger.error(f"Stored calibration could not be read: {e}")
            raise CalibrationRepositoryError(operation, str(e)) from e
        finally:
            db.close()

    def _cache_put(self, profile: CalibrationData) -> None:
        with self._cache_lock:
            current = self._cache.get(profile.exercise)
            if current is None or profile.timestamp >= current.timestamp:
                self._cache[profile.exercise] = profile

    def _cache_advance(self, profile: CalibrationData) -> None:
        # an empty slot stays empty: the database may hold a newer profile
        with self._cache_lock:
            current = self._cache.get(profile.exercise)
            if current is not None and profile.timestamp >= current.timestamp:
                self._cache[profile.exercise] = profile

    def _cache_get(self, exercise: ExerciseType) -> Optional[CalibrationData]:
        with self._cache_lock:
            return self._cache.get(exercise)

    def invalidate(self, exercise: Optional[ExerciseType] = None) -> None:
        with self._cache_lock:
            if exercise is None:
                self._cache.clear()
            else:
                self._cache.pop(exercise, None)

    def quality_of(self, profile: CalibrationData) -> CalibrationQuality:
        return profile.quality(**self._quality_thresholds)

    # ==================== OPERATIONS ====================

    async def save(self, profile: CalibrationData) -> CalibrationData:
        quality = self.quality_of(profile)
        await self._run(RepositoryOperation.SAVE, lambda repo: repo.create(profile, quality))
        self._cache_advance(profile)
        logger.info(
            f"Saved {profile.exercise.value} calibration {profile.id} "
            f"(score {profile.calibration_score:.1f}, {quality.value})"
        )
        return profile

    async def get(self, calibration_id: str) -> Optional[CalibrationData]:
        def work(repo: CalibrationRepository) -> Optional[CalibrationData]:
            record = repo.get_by_id(calibration_id)
            return to_profile(record) if record else None
        return await self._run(RepositoryOperation.FETCH, work)

    async def get_latest(self, exercise: ExerciseType) -> Optional[CalibrationData]:
        cached = self._cache_get(exercise)
        if cached is not None:
            return cached

        def work(repo: CalibrationRepository) -> Optional[CalibrationData]:
            record = repo.get_latest(exercise)
            return to_profile(record) if record else None

        profile = await self._run(RepositoryOperation.FETCH, work)
        if profile is not None:
            self._cache_put(profile)
        return profile

    async def get_best(self, exercise: ExerciseType) -> Optional[CalibrationData]:
        """Most recent profile scoring 80 or more, else the highest scoring one."""
        def work(repo: CalibrationRepository) -> Optional[CalibrationData]:
            record = repo.get_best(exercise)
            return to_profile(record) if record else None
        return await self._run(RepositoryOperation.FETCH, work)

    async def get_usable(self, exercise: ExerciseType) -> List[CalibrationData]:
        return await self._run(
            RepositoryOperation.FETCH,
            lambda repo: [to_profile(r) for r in repo.get_usable(exercise)],
        )

    async def get_all(
        self,
        exercise: Optional[ExerciseType] = None,
        include_archived: bool = False,
    ) -> List[CalibrationData]:
        return await self._run(
            RepositoryOperation.FETCH,
            lambda repo: [to_profile(r) for r in repo.get_all(exercise, include_archived)],
        )

    async def delete(self, calibration_id: str) -> bool:
        deleted = await self._run(RepositoryOperation.DELETE, lambda repo: repo.delete(calibration_id))
        if deleted:
            self._drop_cached_id(calibration_id)
        return deleted

    async def archive(self, calibration_id: str) -> bool:
        archived = await self._run(RepositoryOperation.ARCHIVE, lambda repo: repo.archive(calibration_id))
        if archived:
            self._drop_cached_id(calibration_id)
        return archived

    async def delete_older_than(self, cutoff: float) -> int:
        deleted = await self._run(RepositoryOperation.CLEANUP, lambda repo: repo.delete_older_than(cutoff))
        if deleted:
            self.invalidate()
            logger.info(f"Deleted {deleted} calibrations older than {cutoff:.0f}")
        return deleted

    async def prune(self, retention_days: int) -> int:
        return await self.delete_older_than(time.time() - retention_days * SECONDS_PER_DAY)

    async def statistics(self) -> CalibrationStatistics:
        stats = await self._run(RepositoryOperation.FETCH, lambda repo: repo.statistics())
        return CalibrationStatistics(**stats)

    async def migrate_legacy(self, legacy: KeyValueCalibrationStore) -> int:
        """
        Import key-value profiles into the database.

        Entries are removed from the flat store only after a successful
        save; failures are logged and left in place.
        """
        migrated = 0
        profiles = await asyncio.to_thread(legacy.items)
        for exercise, profile in profiles.items():
            try:
                existing = await self._run(
                    RepositoryOperation.MIGRATION, lambda repo: repo.get_by_id(profile.id) is not None,
                )
                if not existing:
                    await self.save(profile)
            except CalibrationRepositoryError as e:
                logger.warning(f"Legacy {exercise.value} calibration not migrated: {e.message}")
                continue
            await asyncio.to_thread(legacy.remove, exercise)
            migrated += 1

        if migrated:
            logger.info(f"Migrated {migrated} legacy calibrations")
        return migrated

    def _drop_cached_id(self, calibration_id: str) -> None:
        with self._cache_lock:
            for exercise, profile in list(self._cache.items()):
                if profile.id == calibration_id:
                    del self._cache[exercise]
