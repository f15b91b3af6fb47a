import json
from collections import Counter
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from repform.engine.core.data_types import CalibrationData, CalibrationQuality, ExerciseType
from repform.models.model_calibration import CalibrationRecord
from repform.schemas.sche_calibration import CalibrationDocument

PREFERRED_SCORE = 80.0
USABLE_SCORE = 60.0
USABLE_CONFIDENCE = 0.5


class CalibrationRepository:
    def __init__(self, db_session: Session):
        self.db = db_session

    def create(self, profile: CalibrationData, quality: CalibrationQuality) -> CalibrationRecord:
        document = CalibrationDocument.from_domain(profile)
        record = CalibrationRecord(
            id=profile.id,
            exercise=profile.exercise.value,
            timestamp=profile.timestamp,
            calibration_score=profile.calibration_score,
            confidence_level=profile.confidence_level,
            quality=quality.value,
            frame_count=profile.frame_count,
            device_height=profile.device_height,
            device_angle=profile.device_angle,
            device_distance=profile.device_distance,
            device_stability=profile.device_stability,
            user_height=profile.user_height,
            is_archived=False,
            raw_data=document.model_dump_json(),
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def get_by_id(self, calibration_id: str) -> Optional[CalibrationRecord]:
        return self.db.query(CalibrationRecord).filter(CalibrationRecord.id == calibration_id).first()

    def get_latest(self, exercise: ExerciseType) -> Optional[CalibrationRecord]:
        return self.db.query(CalibrationRecord).filter(
            CalibrationRecord.exercise == exercise.value,
            CalibrationRecord.is_archived.is_(False)
        ).order_by(CalibrationRecord.timestamp.desc()).first()

    def get_best(self, exercise: ExerciseType) -> Optional[CalibrationRecord]:
        base = self.db.query(CalibrationRecord).filter(
            CalibrationRecord.exercise == exercise.value,
            CalibrationRecord.is_archived.is_(False)
        )
        preferred = base.filter(CalibrationRecord.calibration_score >= PREFERRED_SCORE).order_by(
            CalibrationRecord.timestamp.desc()
        ).first()
        if preferred:
            return preferred
        return base.order_by(
            CalibrationRecord.calibration_score.desc(), CalibrationRecord.timestamp.desc()
        ).first()

    def get_usable(self, exercise: ExerciseType) -> List[CalibrationRecord]:
        return self.db.query(CalibrationRecord).filter(
            CalibrationRecord.exercise == exercise.value,
            CalibrationRecord.is_archived.is_(False),
            CalibrationRecord.calibration_score >= USABLE_SCORE,
            CalibrationRecord.confidence_level >= USABLE_CONFIDENCE
        ).order_by(CalibrationRecord.timestamp.desc()).all()

    def get_all(self, exercise: Optional[ExerciseType] = None, include_archived: bool = False) -> List[CalibrationRecord]:
        query = self.db.query(CalibrationRecord)
        if exercise is not None:
            query = query.filter(CalibrationRecord.exercise == exercise.value)
        if not include_archived:
            query = query.filter(CalibrationRecord.is_archived.is_(False))
        return query.order_by(CalibrationRecord.timestamp.desc()).all()

    def delete(self, calibration_id: str) -> bool:
        deleted = self.db.query(CalibrationRecord).filter(CalibrationRecord.id == calibration_id).delete()
        self.db.commit()
        return deleted > 0

    def archive(self, calibration_id: str) -> bool:
        record = self.get_by_id(calibration_id)
        if not record:
            return False
        record.is_archived = True
        self.db.commit()
        return True

    def delete_older_than(self, cutoff: float) -> int:
        deleted = self.db.query(CalibrationRecord).filter(CalibrationRecord.timestamp < cutoff).delete()
        self.db.commit()
        return deleted

    def statistics(self) -> Dict:
        records = self.db.query(CalibrationRecord).all()
        active = [r for r in records if not r.is_archived]
        usable = [
            r for r in active
            if r.calibration_score >= USABLE_SCORE and r.confidence_level >= USABLE_CONFIDENCE
        ]
        count = len(records)
        return {
            "total": count,
            "by_exercise": dict(Counter(r.exercise for r in records)),
            "by_quality": dict(Counter(r.quality for r in records)),
            "average_score": sum(r.calibration_score for r in records) / count if count else 0.0,
            "average_confidence": sum(r.confidence_level for r in records) / count if count else 0.0,
            "usable": len(usable),
            "archived": count - len(active),
        }


def to_profile(record: CalibrationRecord) -> CalibrationData:
    return CalibrationDocument.model_validate(json.loads(record.raw_data)).to_domain()
