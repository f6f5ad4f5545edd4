"""NavigationDriver: drive to a named location or pose with interrupt hold and resume."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from guidebot.io.robot_interface import (
    TERMINAL_LOCATION_STATES,
    TERMINAL_MOVEMENT_STATES,
    LocationState,
    Pose,
    RobotInterface,
    SpeedLevel,
)
from guidebot.utils.event_logger import InteractionEventLogger

from .config import OrchestratorConfig
from .interrupts import InterruptMonitor
from .speech import SpeechArbiter, SpeechMode
from .state import NO_INTERRUPTS, InteractionState, InterruptFlags
from .sync import Cadence

logger = logging.getLogger(__name__)

# Fixed poses on the venue map, addressed by id from the UI and used by the patrol
NAMED_POSES: dict[int, Pose] = {
    1: Pose(x=1.009653, y=0.078262, yaw=-1.504654, tilt=20),
    2: Pose(x=0.830383, y=-7.916466, yaw=1.604749, tilt=20),
    3: Pose(x=1.769055, y=-5.273465, yaw=3.116918, tilt=20),
    4: Pose(x=1.916642, y=-2.222844, yaw=0.041969, tilt=20),
}


class NavigationOutcome(Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"  # robot gave up; not retried, not an error


@dataclass(frozen=True)
class NavigationTarget:
    """Either a named map location or an explicit pose."""

    location: str | None = None
    pose: Pose | None = None
    speed: SpeedLevel | None = None
    backwards: bool = False

    def __post_init__(self) -> None:
        if (self.location is None) == (self.pose is None):
            raise ValueError("NavigationTarget needs exactly one of location or pose")

    @classmethod
    def named(cls, location: str, *, backwards: bool = False, speed: SpeedLevel | None = None) -> NavigationTarget:
        return cls(location=location, speed=speed, backwards=backwards)

    @classmethod
    def at(cls, pose: Pose, speed: SpeedLevel | None = None) -> NavigationTarget:
        return cls(pose=pose, speed=speed)

    def describe(self) -> str:
        if self.location is not None:
            return self.location
        p = self.pose
        return f"pose({p.x:.2f}, {p.y:.2f}, yaw={p.yaw:.2f})"


class NavigationDriver:
    """Issues one move per attempt, holds while interrupted, re-issues once per resume."""

    def __init__(
        self,
        robot: RobotInterface,
        state: InteractionState,
        interrupts: InterruptMonitor,
        speech: SpeechArbiter,
        config: OrchestratorConfig,
        cadence: Cadence | None = None,
        event_log: InteractionEventLogger | None = None,
    ) -> None:
        self._robot = robot
        self._state = state
        self._interrupts = interrupts
        self._speech = speech
        self._cadence = cadence or Cadence(config.tick_s, config.poll_s)
        self._events = event_log

    async def go_to(
        self,
        target: NavigationTarget,
        speak_before: str | None = None,
        conditions: InterruptFlags = NO_INTERRUPTS,
        *,
        show_face: bool = True,
    ) -> NavigationOutcome:
        """Drive to `target`; returns once it completed (with no pending resume) or aborted."""
        self._state.is_going = True
        armed = conditions.any()
        if armed:
            self._interrupts.arm(conditions)
            self._interrupts.consume_navigation_resume()
        try:
            if speak_before:
                await self._speech.speak(speak_before, SpeechMode.BACKGROUND, conditions, show_face=show_face)
            outcome = await self._drive(target, conditions)
            if speak_before:
                await self._speech.wait_background()
            return outcome
        finally:
            # Only conditions armed by this call are cleared; an unarmed move made while
            # gated speech watches the user must leave that speech's conditions armed
            if armed:
                self._interrupts.disarm()
            self._state.is_going = False

    def _issue(self, target: NavigationTarget) -> None:
        if target.location is not None:
            if target.speed is not None:
                self._robot.set_go_to_speed(target.speed)
            self._robot.go_to(target.location, target.backwards)
        else:
            self._robot.go_to_pose(target.pose, target.speed)

    def _waiting(self, conditions: InterruptFlags) -> bool:
        return (
            self._robot.location_status() not in TERMINAL_LOCATION_STATES
            or self._interrupts.is_holding(conditions)
        )

    async def _drive(self, target: NavigationTarget, conditions: InterruptFlags) -> NavigationOutcome:
        issued = False
        reissues = 0
        while True:
            if not issued and not self._interrupts.is_holding(conditions):
                self._issue(target)
                issued = True
            await self._cadence.tick()
            await self._cadence.block_while(lambda: self._waiting(conditions))
            status = self._robot.location_status()
            if conditions.any() and self._interrupts.consume_navigation_resume():
                # Any number of resume signals during one wait collapse into one re-issue
                issued = False
                reissues += 1
                logger.info("Resuming navigation to %s", target.describe())
                continue
            if issued:
                break

        if status is LocationState.COMPLETE:
            outcome = NavigationOutcome.COMPLETED
            logger.info("Arrived at %s", target.describe())
        else:
            outcome = NavigationOutcome.ABORTED
            logger.warning("Navigation to %s aborted by robot", target.describe())
        if self._events:
            self._events.log_navigation(target.describe(), outcome.value, reissues)
        return outcome

    async def go_to_pose_id(self, pose_id: int) -> NavigationOutcome | None:
        """Drive to one of NAMED_POSES; unknown ids are ignored."""
        pose = NAMED_POSES.get(pose_id)
        if pose is None:
            logger.warning("Unknown pose id %s", pose_id)
            return None
        return await self.go_to(NavigationTarget.at(pose))

    async def turn_by(self, degrees: int, speed: float = 1.0) -> None:
        self._robot.turn_by(degrees, speed)
        await self._cadence.tick()
        await self._cadence.block_while(lambda: self._robot.movement_status() not in TERMINAL_MOVEMENT_STATES)
