"""Mock robot implementation for dev/testing without hardware."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Iterable

from .robot_interface import (
    DetectionData,
    DetectionStatus,
    LocationState,
    MovementState,
    Pose,
    RobotInterface,
    SpeedLevel,
    TtsStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_LOCATIONS = ["home base", "entrance", "lab", "lecture hall"]


class MockRobot(RobotInterface):
    """Deterministic mock for testing. Simulates data and transitions.

    Asynchronous completions are driven by status reads instead of wall time: a speech
    request completes after ``tts_polls`` reads of ``tts_status()``, a navigation after
    ``nav_polls`` reads of ``location_status()`` (``None`` = never, until ``stop()``),
    and a listen session detaches after ``listen_polls`` reads of ``conversation_attached()``
    and yields the next scripted transcript.
    """

    def __init__(
        self,
        *,
        tts_polls: int = 2,
        nav_polls: int | None = 3,
        turn_polls: int = 2,
        listen_polls: int = 2,
        transcripts: Iterable[str | None] = (),
        locations: Iterable[str] = DEFAULT_LOCATIONS,
    ) -> None:
        self.tts_polls = tts_polls
        self.nav_polls = nav_polls
        self.turn_polls = turn_polls
        self.listen_polls = listen_polls
        self.history: list[tuple[str, Any]] = []
        self.spoken: list[str] = []
        self._locations = list(locations)
        self._transcripts: deque[str | None] = deque(transcripts)

        self._tts = TtsStatus.COMPLETED
        self._tts_remaining = 0
        self._location = LocationState.ABORT
        self._nav_remaining: int | None = 0
        self._abort_next = False
        self._movement = MovementState.ABORT
        self._turn_remaining = 0
        self._attached = False
        self._listen_remaining = 0
        self._ask_result: str | None = None

        self._detected = False
        self._lost = False
        self._data = DetectionData()
        self._lifted = False
        self._dragged = False
        self._yaw = 0.0
        self.tilt_angle = 0
        self.speed = SpeedLevel.MEDIUM

    # ---- scripting helpers (tests / demos) ----

    def set_person(self, distance: float, angle: float = 0.0) -> None:
        """Place a detected person at distance (m) / angle (rad)."""
        self._detected = True
        self._lost = False
        self._data = DetectionData(angle=angle, distance=distance)

    def clear_person(self) -> None:
        self._lost = self._detected
        self._detected = False
        self._data = DetectionData()

    def set_lifted(self, lifted: bool) -> None:
        self._lifted = lifted

    def set_dragged(self, dragged: bool) -> None:
        self._dragged = dragged

    def set_yaw(self, yaw: float) -> None:
        self._yaw = yaw

    def queue_transcripts(self, *transcripts: str | None) -> None:
        self._transcripts.extend(transcripts)

    def abort_next_navigation(self) -> None:
        self._abort_next = True

    def commands(self, name: str) -> list[Any]:
        """Arguments of every recorded call to `name`, in order."""
        return [args for cmd, args in self.history if cmd == name]

    def _record(self, name: str, args: Any = None) -> None:
        self.history.append((name, args))

    # ---- motion ----

    def go_to(self, location: str, backwards: bool = False) -> None:
        self._record("go_to", (location, backwards))
        logger.debug("go_to(%s, backwards=%s)", location, backwards)
        self._start_navigation()

    def go_to_pose(self, pose: Pose, speed: SpeedLevel | None = None) -> None:
        self._record("go_to_pose", pose)
        logger.debug("go_to_pose(%s, speed=%s)", pose, speed)
        self._start_navigation()

    def _start_navigation(self) -> None:
        if self._abort_next:
            self._abort_next = False
            self._location = LocationState.ABORT
            return
        self._location = LocationState.GOING
        self._nav_remaining = self.nav_polls

    def turn_by(self, degrees: int, speed: float = 1.0) -> None:
        self._record("turn_by", degrees)
        logger.debug("turn_by(%d, speed=%.2f)", degrees, speed)
        self._movement = MovementState.START
        self._turn_remaining = self.turn_polls

    def stop(self) -> None:
        self._record("stop")
        logger.debug("stop()")
        if self._location not in (LocationState.COMPLETE, LocationState.ABORT):
            self._location = LocationState.ABORT
        if self._movement not in (MovementState.COMPLETE, MovementState.ABORT):
            self._movement = MovementState.ABORT

    def tilt(self, degrees: int) -> None:
        self._record("tilt", degrees)
        self.tilt_angle = degrees

    def follow(self) -> None:
        self._record("follow")

    def set_go_to_speed(self, speed: SpeedLevel) -> None:
        self._record("set_go_to_speed", speed)
        self.speed = speed

    def list_locations(self) -> list[str]:
        return list(self._locations)

    # ---- speech ----

    def speak(self, text: str, buffer_ms: int = 100, show_face: bool = True) -> None:
        """Log instead of speaking."""
        self._record("speak", text)
        self.spoken.append(text)
        logger.info("TTS: %s", text)
        self._tts = TtsStatus.STARTED
        self._tts_remaining = self.tts_polls

    def wake_up(self) -> None:
        self._record("wake_up")
        self._attached = True
        self._listen_remaining = self.listen_polls

    def finish_conversation(self) -> None:
        if self._attached:
            self._record("finish_conversation")
        self._attached = False

    # ---- telemetry ----

    def tts_status(self) -> TtsStatus:
        if self._tts is TtsStatus.STARTED:
            self._tts_remaining -= 1
            if self._tts_remaining <= 0:
                self._tts = TtsStatus.COMPLETED
        return self._tts

    def detection_status(self) -> DetectionStatus:
        if self._detected:
            return DetectionStatus.DETECTED
        return DetectionStatus.LOST if self._lost else DetectionStatus.IDLE

    def detection_data(self) -> DetectionData:
        return self._data

    def movement_status(self) -> MovementState:
        if self._movement is MovementState.START:
            self._turn_remaining -= 1
            if self._turn_remaining <= 0:
                self._movement = MovementState.COMPLETE
        return self._movement

    def location_status(self) -> LocationState:
        if self._location is LocationState.GOING and self._nav_remaining is not None:
            self._nav_remaining -= 1
            if self._nav_remaining <= 0:
                self._location = LocationState.COMPLETE
        return self._location

    def conversation_attached(self) -> bool:
        if self._attached:
            self._listen_remaining -= 1
            if self._listen_remaining <= 0:
                self._attached = False
                self._ask_result = self._transcripts.popleft() if self._transcripts else None
                logger.debug("ASR result -> %r", self._ask_result)
        return self._attached

    def pop_ask_result(self) -> str | None:
        result, self._ask_result = self._ask_result, None
        return result

    def is_lifted(self) -> bool:
        return self._lifted

    def is_dragged(self) -> bool:
        return self._dragged

    def yaw(self) -> float:
        return self._yaw
