"""Abstract robot capability interface - Protocol for swappable adapters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class TtsStatus(Enum):
    PENDING = "pending"
    STARTED = "started"
    COMPLETED = "completed"
    ERROR = "error"
    NOT_ALLOWED = "not_allowed"


class DetectionStatus(Enum):
    IDLE = "idle"
    DETECTED = "detected"
    LOST = "lost"


class LocationState(Enum):
    """Completion signal for go_to / go_to_pose requests."""

    PENDING = "pending"
    CALCULATING = "calculating"
    GOING = "going"
    OBSTACLE = "obstacle"
    COMPLETE = "complete"
    ABORT = "abort"


class MovementState(Enum):
    """Completion signal for turn_by requests."""

    PENDING = "pending"
    START = "start"
    GOING = "going"
    OBSTACLE = "obstacle"
    COMPLETE = "complete"
    ABORT = "abort"


TERMINAL_LOCATION_STATES = frozenset({LocationState.COMPLETE, LocationState.ABORT})
TERMINAL_MOVEMENT_STATES = frozenset({MovementState.COMPLETE, MovementState.ABORT})


class SpeedLevel(Enum):
    SLOW = "slow"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class DetectionData:
    """Latest person detection reading. angle in radians (left positive), distance in meters."""

    angle: float = 0.0
    distance: float = 0.0


@dataclass(frozen=True)
class Pose:
    """Explicit map pose. yaw in radians, tilt in degrees."""

    x: float
    y: float
    yaw: float
    tilt: int = 20


@runtime_checkable
class RobotInterface(Protocol):
    """Capability layer the orchestrator drives. Implementations: MockRobot, LocalRobot.

    Commands return immediately; completion is observed through the status accessors,
    which always return the latest value reported by the robot.
    """

    # Motion
    def go_to(self, location: str, backwards: bool = False) -> None:
        """Navigate to a named location saved on the robot map."""
        ...

    def go_to_pose(self, pose: Pose, speed: SpeedLevel | None = None) -> None:
        """Navigate to an explicit pose."""
        ...

    def turn_by(self, degrees: int, speed: float = 1.0) -> None:
        ...

    def stop(self) -> None:
        """Stop all motion (aborts any active navigation)."""
        ...

    def tilt(self, degrees: int) -> None:
        """Tilt the head/sensor to an absolute angle."""
        ...

    def follow(self) -> None:
        """Start the 'stay near' constrained follow behavior."""
        ...

    def set_go_to_speed(self, speed: SpeedLevel) -> None:
        ...

    def list_locations(self) -> list[str]:
        ...

    # Speech / listen
    def speak(self, text: str, buffer_ms: int = 100, show_face: bool = True) -> None:
        ...

    def wake_up(self) -> None:
        """Open a speech recognition session."""
        ...

    def finish_conversation(self) -> None:
        """Close any open recognition session."""
        ...

    # Telemetry
    def tts_status(self) -> TtsStatus:
        ...

    def detection_status(self) -> DetectionStatus:
        ...

    def detection_data(self) -> DetectionData:
        ...

    def movement_status(self) -> MovementState:
        ...

    def location_status(self) -> LocationState:
        ...

    def conversation_attached(self) -> bool:
        """True while a recognition session is open."""
        ...

    def pop_ask_result(self) -> str | None:
        """Return the latest final transcript once, then None until the next one."""
        ...

    def is_lifted(self) -> bool:
        ...

    def is_dragged(self) -> bool:
        ...

    def yaw(self) -> float:
        """Current heading in radians."""
        ...
