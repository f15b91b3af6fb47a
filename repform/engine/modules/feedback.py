"""
Feedback Module for RepForm.

Turns per-frame form scores and validation errors into discrete
feedback events (visual, haptic, audio) with hysteresis and rate
limiting, and publishes them to an EventChannel.

Rendering the events is up to the subscriber.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from ..utils.channel import EventChannel


# ==================== CONSTANTS ====================

GOOD_FORM_THRESHOLD = 0.8
POOR_FORM_THRESHOLD = 0.5
CONSECUTIVE_FRAMES_FOR_STABLE = 5
POOR_FORM_STREAK = CONSECUTIVE_FRAMES_FOR_STABLE * 2
MIN_AUDIO_INTERVAL = 3.0  # seconds
VISIBILITY_CORRECTION = "Adjust your position so your whole body is visible"

MILESTONE_MESSAGES: Dict[int, str] = {
    5: "Great start! Keep it up!",
    10: "Double digits! You're doing great!",
    15: "Halfway to 30! Stay strong!",
    20: "20 reps! Outstanding!",
    25: "25 and counting! Push through!",
    30: "30 reps! Military standard achieved!",
    40: "40 reps! You're crushing it!",
    50: "50 reps! Incredible performance!",
    60: "60 reps! Elite level!",
    70: "70 reps! You're a machine!",
    80: "80 reps! Maximum score territory!",
    90: "90 reps! Legendary!",
    100: "100 REPS! CHAMPION!",
}

ISSUE_CORRECTIONS: Dict[str, str] = {
    "Keep body straight": "Engage your core and keep your body in a straight line",
    "Extend arms fully": "Push all the way up until arms are straight",
    "Go lower": "Increase your range of motion by going deeper",
    "Minimize body swing": "Control your movement and avoid swinging",
    "Pull chin over bar": "Pull yourself higher until your chin clears the bar",
    "Sit up higher": "Bring your torso all the way up to vertical",
    "Lower shoulders to ground": "Lower all the way until your shoulders touch the ground",
    "Keep knees at 90-degree angle": "Keep your feet planted and knees bent at 90 degrees",
}


# ==================== TYPES ====================

class FeedbackKind(Enum):
    FORM_CORRECTION = "form_correction"
    MILESTONE = "milestone"
    ENCOURAGEMENT = "encouragement"
    REP_PROGRESS = "rep_progress"


class FeedbackSeverity(Enum):
    INFO = "info"
    MEDIUM = "medium"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def priority(self) -> int:
        return list(FeedbackSeverity).index(self)


class FeedbackModality(Enum):
    VISUAL = "visual"
    HAPTIC = "haptic"
    AUDIO = "audio"


class HapticType(Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ValidationError:
    """A form problem detected in one frame."""
    message: str
    severity: FeedbackSeverity = FeedbackSeverity.WARNING

    @property
    def correction(self) -> str:
        return ISSUE_CORRECTIONS.get(self.message, self.message)


@dataclass(frozen=True)
class FeedbackEvent:
    kind: FeedbackKind
    modality: FeedbackModality
    message: str
    severity: FeedbackSeverity = FeedbackSeverity.INFO
    timestamp: float = 0.0
    haptic: Optional[HapticType] = None
    data: Dict = field(default_factory=dict)

    @property
    def priority(self) -> int:
        return self.severity.priority

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "modality": self.modality.value,
            "message": self.message,
            "severity": self.severity.value,
            "priority": self.priority,
            "timestamp": self.timestamp,
            "haptic": self.haptic.value if self.haptic else None,
            "data": dict(self.data),
        }


# ==================== DISPATCHER ====================

class FeedbackDispatcher:
    """
    Hysteresis and rate limiting for feedback delivery.

    Haptics: any validation error triggers a warning pulse; a success
    pulse fires once, on the frame the good-form streak reaches 5.
    Audio: at most one utterance per ``min_audio_interval``, chosen by
    priority critical error > sustained poor form > milestone.
    """

    def __init__(
        self,
        channel: Optional[EventChannel] = None,
        min_audio_interval: float = MIN_AUDIO_INTERVAL,
        good_form_threshold: float = GOOD_FORM_THRESHOLD,
        poor_form_threshold: float = POOR_FORM_THRESHOLD,
    ):
        self.channel = channel or EventChannel(name="feedback")
        self.min_audio_interval = min_audio_interval
        self.good_form_threshold = good_form_threshold
        self.poor_form_threshold = poor_form_threshold
        self.reset()

    def reset(self) -> None:
        self.consecutive_good = 0
        self.consecutive_poor = 0
        self.last_audio_time: Optional[float] = None
        self._pending_milestone: Optional[int] = None
        self._last_error_messages: List[str] = []

    def process(
        self,
        form_score: float,
        errors: List[ValidationError],
        rep_count: int = 0,
        rep_completed: bool = False,
        now: Optional[float] = None,
    ) -> List[FeedbackEvent]:
        """
        Handle one feedback frame and publish the resulting events.

        Returns:
            The events published for this frame
        """
        now = time.monotonic() if now is None else now
        events: List[FeedbackEvent] = []

        self._update_streaks(form_score)

        messages = [e.message for e in errors]
        if messages != self._last_error_messages:
            for error in errors:
                events.append(FeedbackEvent(
                    FeedbackKind.FORM_CORRECTION, FeedbackModality.VISUAL, error.correction,
                    error.severity, now, data={"issue": error.message},
                ))
        self._last_error_messages = messages

        if rep_completed:
            events.append(FeedbackEvent(
                FeedbackKind.REP_PROGRESS, FeedbackModality.VISUAL, f"Rep {rep_count}",
                FeedbackSeverity.INFO, now, data={"rep_count": rep_count, "form_score": form_score},
            ))
            if rep_count in MILESTONE_MESSAGES:
                self._pending_milestone = rep_count
                events.append(FeedbackEvent(
                    FeedbackKind.MILESTONE, FeedbackModality.VISUAL, MILESTONE_MESSAGES[rep_count],
                    FeedbackSeverity.INFO, now, data={"rep_count": rep_count},
                ))

        haptic = self._haptic_for(form_score, errors, now)
        if haptic is not None:
            events.append(haptic)

        audio = self._audio_for(errors, now)
        if audio is not None:
            events.append(audio)

        for event in events:
            self.channel.publish(event)
        return events

    def _update_streaks(self, form_score: float) -> None:
        if form_score > self.good_form_threshold:
            self.consecutive_good += 1
            self.consecutive_poor = 0
        elif form_score < self.poor_form_threshold:
            self.consecutive_poor += 1
            self.consecutive_good = 0
        else:
            self.consecutive_good = 0
            self.consecutive_poor = 0

    def _haptic_for(self, form_score, errors, now) -> Optional[FeedbackEvent]:
        if errors:
            return FeedbackEvent(
                FeedbackKind.FORM_CORRECTION, FeedbackModality.HAPTIC, errors[0].message,
                FeedbackSeverity.WARNING, now, haptic=HapticType.WARNING,
            )
        if self.consecutive_good == CONSECUTIVE_FRAMES_FOR_STABLE:
            return FeedbackEvent(
                FeedbackKind.ENCOURAGEMENT, FeedbackModality.HAPTIC, "Good form",
                FeedbackSeverity.INFO, now, haptic=HapticType.SUCCESS,
                data={"form_score": form_score},
            )
        return None

    def _audio_for(self, errors, now) -> Optional[FeedbackEvent]:
        if self.last_audio_time is not None and now - self.last_audio_time < self.min_audio_interval:
            return None

        event = None
        critical = next((e for e in errors if e.severity is FeedbackSeverity.CRITICAL), None)
        if critical is not None:
            event = FeedbackEvent(
                FeedbackKind.FORM_CORRECTION, FeedbackModality.AUDIO, critical.correction,
                FeedbackSeverity.CRITICAL, now, data={"issue": critical.message},
            )
        elif self.consecutive_poor >= POOR_FORM_STREAK:
            issue = errors[0].message if errors else None
            message = errors[0].correction if errors else VISIBILITY_CORRECTION
            event = FeedbackEvent(
                FeedbackKind.FORM_CORRECTION, FeedbackModality.AUDIO, message,
                FeedbackSeverity.HIGH, now, data={"issue": issue},
            )
        elif self._pending_milestone is not None:
            reps = self._pending_milestone
            event = FeedbackEvent(
                FeedbackKind.MILESTONE, FeedbackModality.AUDIO, MILESTONE_MESSAGES[reps],
                FeedbackSeverity.INFO, now, data={"rep_count": reps},
            )
            self._pending_milestone = None

        if event is not None:
            self.last_audio_time = now
        return event
