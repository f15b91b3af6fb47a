from sqlalchemy import Column, String, Integer, Float, Boolean, Text, Index
from repform.models.model_base import Base


class CalibrationRecord(Base):
    __tablename__ = "calibration"

    id = Column(String(36), primary_key=True)
    exercise = Column(String(32), nullable=False)
    timestamp = Column(Float, nullable=False)
    calibration_score = Column(Float, nullable=False)
    confidence_level = Column(Float, nullable=False)
    quality = Column(String(16), nullable=False)
    frame_count = Column(Integer, nullable=False, default=0)
    device_height = Column(Float)
    device_angle = Column(Float)
    device_distance = Column(Float)
    device_stability = Column(Float)
    user_height = Column(Float)
    is_archived = Column(Boolean, nullable=False, default=False)
    raw_data = Column(Text, nullable=False)

    __table_args__ = (
        Index("ix_calibration_exercise_timestamp", "exercise", "timestamp"),
    )
