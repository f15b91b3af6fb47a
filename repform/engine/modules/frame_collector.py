"""
Calibration Frame Collector for RepForm.

Accepts pose and motion samples from independent producer threads,
gates pose frames on framing quality and a ~30 fps time throttle, and
holds them until the required count is reached.

A single background timer ticks at ~10 Hz to refresh progress, the
device-position estimate and setup suggestions.

Example:
    >>> collector = CalibrationFrameCollector()
    >>> collector.start_calibration(ExerciseType.PUSHUP, required_frames=60)
    >>> collector.submit_pose(pose)          # from the camera thread
    >>> collector.submit_motion(motion)      # from the motion thread
    >>> collector.wait_until_ready(timeout=30)
    >>> frames = collector.take_batch()
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, List, Optional

from ..core.data_types import (
    CalibrationFrame, DevicePosition, ExerciseType, FrameQuality, MotionSample, PoseSnapshot
)
from ..core.device_position import detect_position_continuous, position_suggestions
from ...helpers.exception_handler import InsufficientFramesError
from .framing import (
    VISIBLE_CONFIDENCE, CalibrationSuggestion, FramingStatus, evaluate_framing,
    generate_suggestions, get_target_framing,
)

logger = logging.getLogger(__name__)


# ==================== CONSTANTS ====================

DEFAULT_REQUIRED_FRAMES = 60
FRAME_THROTTLE_INTERVAL = 0.033  # ~30 fps
SAMPLE_INTERVAL = 0.1            # ~10 Hz
MAX_MOTION_HISTORY = 30
NO_MOTION_STABILITY = 0.5


class CollectorState(Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    AGGREGATING = "aggregating"
    DONE = "done"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CollectionProgress:
    """Snapshot of collection status published on every tick."""
    state: CollectorState
    collected: int
    required: int
    framing: FramingStatus = FramingStatus.UNKNOWN
    position: DevicePosition = field(default_factory=DevicePosition.unknown)
    suggestions: List[CalibrationSuggestion] = field(default_factory=list)

    @property
    def progress(self) -> float:
        if self.required <= 0:
            return 1.0
        return min(1.0, self.collected / self.required)


# ==================== QUALITY ====================

def assess_frame_quality(
    pose: PoseSnapshot,
    exercise: ExerciseType,
    motion: Optional[MotionSample] = None,
) -> FrameQuality:
    """
    Score one pose frame for calibration.

    Confidence and completeness are measured over the exercise's
    framing joints; stability comes from the device rotation rate.
    """
    joints = get_target_framing(exercise).body_parts or tuple(pose.joints)
    visibility = {joint: pose.confidence(joint) for joint in joints}

    if visibility:
        overall = sum(visibility.values()) / len(visibility)
        completeness = sum(1 for c in visibility.values() if c > VISIBLE_CONFIDENCE) / len(visibility)
    else:
        overall, completeness = 0.0, 0.0

    if motion is not None:
        stability = max(0.0, 1.0 - motion.rotation_magnitude / 2.0)
    else:
        stability = NO_MOTION_STABILITY

    return FrameQuality(
        overall_confidence=overall,
        joint_visibility=visibility,
        body_completeness=completeness,
        stability=stability,
        lighting=min(1.0, overall * 1.2),
    )


# ==================== COLLECTOR ====================

class CalibrationFrameCollector:
    """
    Thread-safe calibration frame buffer.

    All mutable state is guarded by ``_lock``. ``stop_calibration`` turns
    acceptance off under that lock before anything is cleared, so no
    frame can land after it returns.
    """

    def __init__(
        self,
        frame_throttle_interval: float = FRAME_THROTTLE_INTERVAL,
        sample_interval: float = SAMPLE_INTERVAL,
        max_motion_history: int = MAX_MOTION_HISTORY,
        clock: Callable[[], float] = time.monotonic,
        on_progress: Optional[Callable[[CollectionProgress], None]] = None,
    ):
        self.frame_throttle_interval = frame_throttle_interval
        self.sample_interval = sample_interval
        self.max_motion_history = max_motion_history
        self._clock = clock
        self._on_progress = on_progress

        self._lock = threading.RLock()
        self._ready = threading.Event()
        self._stop_timer = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None

        self._state = CollectorState.IDLE
        self._accepting = False
        self._generation = 0
        self._exercise: Optional[ExerciseType] = None
        self._required = DEFAULT_REQUIRED_FRAMES
        self._frames: List[CalibrationFrame] = []
        self._motion_history: Deque[MotionSample] = deque(maxlen=max_motion_history)
        self._last_accepted: Optional[float] = None
        self._last_framing = FramingStatus.UNKNOWN
        self._last_pose: Optional[PoseSnapshot] = None
        self._position = DevicePosition.unknown()

    # ==================== PROPERTIES ====================

    @property
    def state(self) -> CollectorState:
        with self._lock:
            return self._state

    @property
    def exercise(self) -> Optional[ExerciseType]:
        return self._exercise

    @property
    def generation(self) -> int:
        """Incremented on every start and stop; stale batches carry an old value."""
        with self._lock:
            return self._generation

    @property
    def required_frames(self) -> int:
        return self._required

    @property
    def frame_count(self) -> int:
        with self._lock:
            return len(self._frames)

    @property
    def frames(self) -> List[CalibrationFrame]:
        with self._lock:
            return list(self._frames)

    @property
    def motion_history(self) -> List[MotionSample]:
        with self._lock:
            return list(self._motion_history)

    @property
    def latest_motion(self) -> Optional[MotionSample]:
        with self._lock:
            return self._motion_history[-1] if self._motion_history else None

    @property
    def latest_framing(self) -> FramingStatus:
        with self._lock:
            return self._last_framing

    @property
    def is_collecting(self) -> bool:
        with self._lock:
            return self._accepting

    # ==================== LIFECYCLE ====================

    def start_calibration(
        self,
        exercise: ExerciseType,
        required_frames: int = DEFAULT_REQUIRED_FRAMES,
        use_timer: bool = True,
    ) -> int:
        """
        Reset buffers and start collecting for ``exercise``.

        Args:
            exercise: Exercise being calibrated
            required_frames: Frames to collect before the batch is ready
            use_timer: Run the ~10 Hz progress timer thread

        Returns:
            The generation token for this run
        """
        self._shutdown_timer()

        with self._lock:
            self._generation += 1
            self._exercise = exercise
            self._required = max(0, int(required_frames))
            self._frames = []
            self._motion_history.clear()
            self._last_accepted = None
            self._last_framing = FramingStatus.UNKNOWN
            self._last_pose = None
            self._position = DevicePosition.unknown()
            self._ready.clear()
            self._state = CollectorState.COLLECTING
            self._accepting = self._required > 0
            if self._required == 0:
                self._ready.set()
            generation = self._generation

        logger.info(f"Calibration collection started: {exercise.value} ({self._required} frames)")

        if use_timer:
            self._start_timer()
        return generation

    def stop_calibration(self) -> None:
        """Cancel collection; idempotent and safe from any thread."""
        with self._lock:
            was_active = self._state in (CollectorState.COLLECTING, CollectorState.AGGREGATING)
            self._accepting = False
            if was_active:
                self._generation += 1
                self._state = CollectorState.CANCELLED
            self._frames = []
            self._motion_history.clear()
            self._last_pose = None
            self._ready.set()

        self._shutdown_timer()
        if was_active:
            logger.info("Calibration collection stopped")

    def set_required_frames(self, required_frames: int) -> None:
        """Change the batch size of the active run, e.g. after a strategy fallback."""
        with self._lock:
            self._required = max(0, int(required_frames))
            if self._state is not CollectorState.COLLECTING:
                return
            if len(self._frames) >= self._required:
                self._frames = self._frames[len(self._frames) - self._required:]
                self._accepting = False
                self._ready.set()
            else:
                self._accepting = True
                self._ready.clear()
        logger.info(f"Calibration batch size set to {self._required} frames")

    def take_batch(self) -> List[CalibrationFrame]:
        """
        Hand the collected frames to aggregation.

        Raises:
            InsufficientFramesError: If fewer than the required frames exist
        """
        with self._lock:
            if self._state is not CollectorState.COLLECTING or len(self._frames) < self._required:
                raise InsufficientFramesError(len(self._frames), self._required)
            self._accepting = False
            self._state = CollectorState.AGGREGATING
            return list(self._frames)

    def finish(self, generation: Optional[int] = None) -> bool:
        """
        Mark the run done and release buffers.

        Returns False when ``generation`` is stale, i.e. the run was
        cancelled or restarted after the batch was taken.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            if self._state is not CollectorState.AGGREGATING:
                return False
            self._state = CollectorState.DONE
            self._frames = []
        self._shutdown_timer()
        return True

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the batch is complete or collection is stopped."""
        self._ready.wait(timeout)
        with self._lock:
            return self._state is CollectorState.COLLECTING and len(self._frames) >= self._required

    # ==================== INPUT ====================

    def submit_pose(self, pose: Optional[PoseSnapshot]) -> bool:
        """
        Offer a pose frame; returns True when it was accepted.

        Frames are dropped when collection is inactive or full, the
        framing is not acceptable, or the last accepted frame is less
        than the throttle interval old.
        """
        if pose is None:
            return False

        with self._lock:
            self._last_pose = pose
            if not self._accepting or self._exercise is None:
                return False

            framing = evaluate_framing(pose, self._exercise)
            self._last_framing = framing
            if not framing.is_acceptable:
                return False

            now = self._clock()
            if self._last_accepted is not None and now - self._last_accepted < self.frame_throttle_interval:
                return False

            motion = self._motion_history[-1] if self._motion_history else None
            quality = assess_frame_quality(pose, self._exercise, motion)
            self._frames.append(CalibrationFrame(
                timestamp=pose.timestamp, pose=pose, quality=quality, motion=motion,
            ))
            self._last_accepted = now

            if len(self._frames) >= self._required:
                self._accepting = False
                self._ready.set()
                logger.info(f"Calibration batch ready: {len(self._frames)} frames")
            return True

    def submit_motion(self, motion: MotionSample) -> None:
        with self._lock:
            if self._state is CollectorState.COLLECTING:
                self._motion_history.append(motion)

    # ==================== TIMER ====================

    def tick(self) -> CollectionProgress:
        """Refresh position estimate and suggestions; called ~10 times a second."""
        with self._lock:
            exercise = self._exercise or ExerciseType.PUSHUP
            if self._frames:
                self._position = detect_position_continuous(self._frames, list(self._motion_history))

            stability = None
            if self._motion_history:
                stability = self._frames[-1].quality.stability if self._frames else NO_MOTION_STABILITY
            suggestions = generate_suggestions(
                self._last_pose, self._last_framing, stability, exercise, self._position,
            )
            progress = CollectionProgress(
                state=self._state,
                collected=len(self._frames),
                required=self._required,
                framing=self._last_framing,
                position=self._position,
                suggestions=suggestions,
            )

        if self._on_progress is not None:
            self._on_progress(progress)
        return progress

    def device_setup_hints(self) -> List[str]:
        with self._lock:
            return position_suggestions(self._position)

    def _start_timer(self) -> None:
        self._stop_timer.clear()
        self._timer_thread = threading.Thread(target=self._timer_loop, name="calibration-sampler")
        self._timer_thread.daemon = True
        self._timer_thread.start()

    def _timer_loop(self) -> None:
        while not self._stop_timer.wait(self.sample_interval):
            if self.state is not CollectorState.COLLECTING:
                break
            self.tick()

    def _shutdown_timer(self) -> None:
        self._stop_timer.set()
        thread = self._timer_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(1.0, self.sample_interval * 5))
        self._timer_thread = None
