"""Tests for feedback hysteresis and rate limiting."""

from typing import List

import pytest

from repform.engine.modules.feedback import (
    VISIBILITY_CORRECTION,
    FeedbackDispatcher,
    FeedbackEvent,
    FeedbackKind,
    FeedbackModality,
    FeedbackSeverity,
    HapticType,
    ValidationError,
)
from repform.engine.utils.channel import EventChannel


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel(capacity=256, name="feedback-test")


@pytest.fixture
def dispatcher(channel: EventChannel) -> FeedbackDispatcher:
    return FeedbackDispatcher(channel)


def _of(events: List[FeedbackEvent], modality: FeedbackModality) -> List[FeedbackEvent]:
    return [e for e in events if e.modality is modality]


class TestHaptics:
    def test_success_fires_once_at_fifth_good_frame(self, dispatcher: FeedbackDispatcher) -> None:
        fired = []
        for i in range(8):
            events = dispatcher.process(0.9, [], now=i * 0.1)
            fired.append([e.haptic for e in _of(events, FeedbackModality.HAPTIC)])
        assert fired == [[], [], [], [], [HapticType.SUCCESS], [], [], []]

    def test_streak_restarts_after_mediocre_frame(self, dispatcher: FeedbackDispatcher) -> None:
        for i in range(4):
            dispatcher.process(0.9, [], now=i)
        dispatcher.process(0.6, [], now=4)
        assert dispatcher.consecutive_good == 0
        events = []
        for i in range(5):
            events = dispatcher.process(0.9, [], now=5 + i)
        assert [e.haptic for e in _of(events, FeedbackModality.HAPTIC)] == [HapticType.SUCCESS]

    def test_error_triggers_warning(self, dispatcher: FeedbackDispatcher) -> None:
        events = dispatcher.process(0.9, [ValidationError("Keep body straight")], now=0.0)
        haptics = _of(events, FeedbackModality.HAPTIC)
        assert [e.haptic for e in haptics] == [HapticType.WARNING]


class TestAudio:
    def test_at_most_one_utterance_per_interval(self, dispatcher: FeedbackDispatcher) -> None:
        critical = [ValidationError("Keep body straight", FeedbackSeverity.CRITICAL)]
        audio = []
        for i in range(10):
            audio.extend(_of(dispatcher.process(0.2, critical, now=i * 0.1), FeedbackModality.AUDIO))
        assert len(audio) == 1
        assert audio[0].severity is FeedbackSeverity.CRITICAL
        assert audio[0].message == critical[0].correction

    def test_speaks_again_after_interval(self, dispatcher: FeedbackDispatcher) -> None:
        critical = [ValidationError("Go lower", FeedbackSeverity.CRITICAL)]
        first = dispatcher.process(0.2, critical, now=0.0)
        second = dispatcher.process(0.2, critical, now=3.0)
        assert len(_of(first, FeedbackModality.AUDIO)) == 1
        assert len(_of(second, FeedbackModality.AUDIO)) == 1

    def test_sustained_poor_form(self, dispatcher: FeedbackDispatcher) -> None:
        spoken = []
        for i in range(10):
            spoken.append(_of(dispatcher.process(0.3, [], now=i * 0.1), FeedbackModality.AUDIO))
        assert all(not events for events in spoken[:9])
        assert spoken[9][0].message == VISIBILITY_CORRECTION
        assert spoken[9][0].severity is FeedbackSeverity.HIGH

    def test_milestone(self, dispatcher: FeedbackDispatcher) -> None:
        events = dispatcher.process(0.9, [], rep_count=5, rep_completed=True, now=0.0)
        kinds = [(e.kind, e.modality) for e in events]
        assert (FeedbackKind.REP_PROGRESS, FeedbackModality.VISUAL) in kinds
        assert (FeedbackKind.MILESTONE, FeedbackModality.VISUAL) in kinds
        assert (FeedbackKind.MILESTONE, FeedbackModality.AUDIO) in kinds

    def test_rate_limited_milestone_is_spoken_later(self, dispatcher: FeedbackDispatcher) -> None:
        dispatcher.process(0.2, [ValidationError("Go lower", FeedbackSeverity.CRITICAL)], now=0.0)
        events = dispatcher.process(0.9, [], rep_count=10, rep_completed=True, now=1.0)
        assert not _of(events, FeedbackModality.AUDIO)
        later = dispatcher.process(0.9, [], now=3.5)
        assert [e.kind for e in _of(later, FeedbackModality.AUDIO)] == [FeedbackKind.MILESTONE]


class TestVisual:
    def test_same_errors_are_not_repeated(self, dispatcher: FeedbackDispatcher) -> None:
        errors = [ValidationError("Keep body straight")]
        first = dispatcher.process(0.6, errors, now=0.0)
        second = dispatcher.process(0.6, errors, now=0.1)
        assert len(_of(first, FeedbackModality.VISUAL)) == 1
        assert not _of(second, FeedbackModality.VISUAL)

    def test_correction_text(self) -> None:
        assert ValidationError("Go lower").correction == "Increase your range of motion by going deeper"
        assert ValidationError("Unmapped").correction == "Unmapped"


def test_events_are_published(dispatcher: FeedbackDispatcher, channel: EventChannel) -> None:
    events = dispatcher.process(0.9, [ValidationError("Go lower")], rep_count=1, rep_completed=True, now=0.0)
    assert channel.pending == len(events)
    assert channel.drain() == events


def test_event_to_dict() -> None:
    event = FeedbackEvent(
        FeedbackKind.ENCOURAGEMENT, FeedbackModality.HAPTIC, "Good form", haptic=HapticType.SUCCESS,
    )
    data = event.to_dict()
    assert data["haptic"] == "success"
    assert data["priority"] == 0
    assert data["modality"] == "haptic"
