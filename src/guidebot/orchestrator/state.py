"""State shared between orchestrator tasks: perception, interrupt flags, counters, UI observables."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from guidebot.perception.types import DistanceBucket, PerceptionSnapshot


class TourState(Enum):
    """Supervisory status of the tour subtree."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    RESTARTING = "restarting"


@dataclass(frozen=True)
class InterruptFlags:
    """Which interrupt conditions the current speech/navigation call has enabled."""

    user_missing: bool = False
    user_too_close: bool = False
    device_moved: bool = False

    @classmethod
    def all(cls) -> InterruptFlags:
        return cls(user_missing=True, user_too_close=True, device_moved=True)

    def any(self) -> bool:
        return self.user_missing or self.user_too_close or self.device_moved

    def as_dict(self) -> dict[str, bool]:
        return {
            "user_missing": self.user_missing,
            "user_too_close": self.user_too_close,
            "device_moved": self.device_moved,
        }


NO_INTERRUPTS = InterruptFlags()


@dataclass
class InteractionState:
    """One record for everything the concurrent loops share.

    Single-writer convention, no locks: perception is written only by the tracker,
    interrupt fields only by InterruptMonitor (consumers clear the resume flags they
    act on through the monitor), observables by the component they describe.
    """

    perception: PerceptionSnapshot = field(default_factory=PerceptionSnapshot)

    # Interrupt system
    interrupt_flags: InterruptFlags = NO_INTERRUPTS
    interrupt_triggered: bool = False
    warnings_armed: bool = False
    repeat_speech: bool = False
    repeat_navigation: bool = False
    interrupt_attempts: int = 0
    prevent_reset_from_idle: bool = False
    restart_count: int = 0

    # Observables for the UI
    is_talking: bool = False
    is_speaking: bool = False
    is_going: bool = False
    is_listening: bool = False
    is_thinking: bool = False
    is_greet_mode: bool = True
    is_idle_face_active: bool = False
    is_engaged: bool = False
    exit_requested: bool = False
    completion_error: bool = False
    tour_state: TourState = TourState.IDLE

    def set_perception(self, snapshot: PerceptionSnapshot) -> None:
        self.perception = snapshot

    @property
    def detection_bucket(self) -> DistanceBucket:
        return self.perception.distance

    @property
    def user_present(self) -> bool:
        return self.perception.distance is not DistanceBucket.MISSING

    def reset_interrupts(self) -> None:
        """Back to initial interrupt values (full restart)."""
        self.interrupt_flags = NO_INTERRUPTS
        self.interrupt_triggered = False
        self.warnings_armed = False
        self.repeat_speech = False
        self.repeat_navigation = False
        self.interrupt_attempts = 0

    def reset_activity(self) -> None:
        """Clear per-activity observables left behind by cancelled tasks."""
        self.is_talking = False
        self.is_speaking = False
        self.is_going = False
        self.is_listening = False
        self.is_thinking = False
        self.is_idle_face_active = False
        self.is_engaged = False
        self.exit_requested = False

    def status(self) -> dict[str, Any]:
        """JSON-safe snapshot for the UI / dashboard."""
        return {
            "is_talking": self.is_talking,
            "is_going": self.is_going,
            "is_listening": self.is_listening,
            "is_thinking": self.is_thinking,
            "is_greet_mode": self.is_greet_mode,
            "is_idle_face_active": self.is_idle_face_active,
            "detection_bucket": self.detection_bucket.value,
            "tour_state": self.tour_state.value,
            "interrupt_triggered": self.interrupt_triggered,
            "interrupt_attempts": self.interrupt_attempts,
            "interrupt_flags": self.interrupt_flags.as_dict(),
            "restart_count": self.restart_count,
            "completion_error": self.completion_error,
            "perception": self.perception.summary(),
        }
