"""
Feedback Service for RepForm.

Runs live form scoring for one exercise with the user's calibration
and forwards feedback events to an EventChannel.
"""

import logging
from typing import List, Optional

from repform.core.config import Settings, settings
from repform.engine.core.data_types import CalibrationData, ExerciseType, PoseSnapshot
from repform.engine.modules.feedback import FeedbackDispatcher
from repform.engine.modules.form_scorer import FormAnalysis, RealTimeFormScorer
from repform.engine.utils.channel import EventChannel
from repform.engine.utils.logger import SessionLogger
from repform.services.srv_calibration import CalibrationService

logger = logging.getLogger(__name__)


class FeedbackService:
    def __init__(
        self,
        calibration_service: CalibrationService,
        config: Settings = settings,
        channel: Optional[EventChannel] = None,
        session_logger: Optional[SessionLogger] = None,
    ):
        self.calibration_service = calibration_service
        self.channel = channel or EventChannel(config.CHANNEL_CAPACITY, name="feedback")
        self.dispatcher = FeedbackDispatcher(
            self.channel,
            min_audio_interval=config.MIN_AUDIO_INTERVAL,
            good_form_threshold=config.GOOD_FORM_THRESHOLD,
            poor_form_threshold=config.POOR_FORM_THRESHOLD,
        )
        self.scorer = RealTimeFormScorer(self.dispatcher, feedback_interval=config.FEEDBACK_INTERVAL)
        self.session_logger = session_logger
        if session_logger is not None:
            self.channel.subscribe(lambda event: session_logger.log_feedback(event.to_dict()), replay=False)
        self._scores: List[float] = []

    @property
    def calibration(self) -> Optional[CalibrationData]:
        return self.scorer.calibration

    async def start(self, exercise: ExerciseType) -> bool:
        """Load the exercise's calibration and start scoring; False if unsupported."""
        calibration = None
        if exercise.is_calibratable:
            calibration = await self.calibration_service.load_calibration(exercise)
            if calibration is None:
                logger.info(f"No stored {exercise.value} calibration; using default profile")

        self._scores = []
        started = self.scorer.start(exercise, calibration)
        if started and self.session_logger is not None:
            self.session_logger.start_session(f"workout_{exercise.value}", exercise.value)
        return started

    def process_pose(self, pose: Optional[PoseSnapshot], now: Optional[float] = None) -> Optional[FormAnalysis]:
        analysis = self.scorer.process_pose(pose, now)
        if analysis is None:
            return None

        self._scores.append(analysis.form_score)
        if analysis.rep_completed and self.session_logger is not None:
            self.session_logger.log_rep(
                analysis.rep_count, analysis.form_score, [e.message for e in analysis.errors],
            )
        return analysis

    def stop(self) -> dict:
        """Stop scoring and return a workout summary."""
        calibration = self.scorer.calibration
        summary = {
            "exercise": self.scorer.exercise.value if self.scorer.exercise else None,
            "reps": self.scorer.rep_count,
            "frames_scored": len(self._scores),
            "average_form_score": round(sum(self._scores) / len(self._scores), 3) if self._scores else 0.0,
            "calibration_id": calibration.id if calibration else None,
            "calibration_score": calibration.calibration_score if calibration else None,
        }
        self.scorer.stop()
        if self.session_logger is not None and self.session_logger.session_id is not None:
            self.session_logger.end_session(summary)
        logger.info(f"Workout finished: {summary['reps']} reps, average form {summary['average_form_score']}")
        return summary
