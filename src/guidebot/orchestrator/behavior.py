"""Behaviour modes run by the supervisor alongside greet/patrol (constraint follow and friends)."""

from __future__ import annotations

import logging
import math
from enum import Enum

from guidebot.io.robot_interface import DetectionStatus, RobotInterface
from guidebot.perception.types import AngleBucket, DistanceBucket

from .config import OrchestratorConfig
from .navigation import NavigationDriver
from .state import InteractionState
from .sync import Cadence

logger = logging.getLogger(__name__)

SEARCH_TURN_DEG = 45
SEARCH_TURN_SPEED = 0.1


class BehaviorMode(Enum):
    TALK = "talk"
    DISTANCE = "distance"
    ANGLE = "angle"
    CONSTRAINT_FOLLOW = "constraint_follow"
    TEST_MOVEMENT = "test_movement"
    DETECTION_LOGIC = "detection_logic"
    TOUR = "tour"
    TEST = "test"
    NULL = "null"


class BehaviorResult(Enum):
    IDLE = "idle"
    HELD = "held"  # robot is being handled; no motion
    TURNED = "turned"
    SEARCHED = "searched"
    RECENTRED = "recentred"
    NOT_IMPLEMENTED = "not_implemented"


_IDLE_MODES = frozenset({BehaviorMode.NULL, BehaviorMode.TOUR})
_UNIMPLEMENTED_MODES = frozenset({
    BehaviorMode.TALK,
    BehaviorMode.DISTANCE,
    BehaviorMode.ANGLE,
    BehaviorMode.TEST_MOVEMENT,
    BehaviorMode.DETECTION_LOGIC,
    BehaviorMode.TEST,
})


def normalize_angle(angle: float) -> float:
    """Map any angle in degrees into [0, 360)."""
    return angle % 360.0


def directed_angle(target: float, current: float) -> float:
    """Signed shortest turn from `current` to `target`, in (-180, 180]."""
    difference = target - current
    if difference > 180:
        difference -= 360
    if difference < -180:
        difference += 360
    return difference


def clamp_turn_angle(current: float, turn: float, lower: float, upper: float) -> float:
    """Limit `turn` so the heading stays inside the [lower, upper] window (which may wrap past 0)."""
    new_angle = normalize_angle(current + turn)
    if lower < upper and lower <= new_angle <= upper:
        return turn
    if lower > upper and (new_angle >= lower or new_angle <= upper):
        return turn
    if lower < upper:
        return lower + 1 - current if new_angle < lower else upper - 1 - current
    if abs(upper - current) < abs(lower - current):
        return upper - 1 - current
    return lower + 1 - current


class BehaviorRunner:
    """Runs one step of the selected BehaviorMode per tick."""

    def __init__(
        self,
        robot: RobotInterface,
        state: InteractionState,
        navigation: NavigationDriver,
        config: OrchestratorConfig,
        mode: BehaviorMode = BehaviorMode.NULL,
        cadence: Cadence | None = None,
    ) -> None:
        self._robot = robot
        self._state = state
        self._navigation = navigation
        self._config = config
        self._cadence = cadence or Cadence(config.tick_s, config.poll_s)
        self._mode = mode
        self._reported_missing = False
        self._lost_side = AngleBucket.GONE

    @property
    def mode(self) -> BehaviorMode:
        return self._mode

    def set_mode(self, mode: BehaviorMode) -> None:
        if mode is not self._mode:
            logger.info("Behaviour mode: %s -> %s", self._mode.value, mode.value)
        self._mode = mode
        self._reported_missing = False

    async def run(self) -> None:
        while True:
            try:
                await self.step()
            except Exception as e:
                logger.warning("Behaviour step (%s) failed: %s", self._mode.value, e)
            await self._cadence.tick()

    async def step(self) -> BehaviorResult:
        mode = self._mode
        if mode in _IDLE_MODES:
            return BehaviorResult.IDLE
        if mode in _UNIMPLEMENTED_MODES:
            if not self._reported_missing:
                logger.warning("Behaviour mode %s is not implemented", mode.value)
                self._reported_missing = True
            return BehaviorResult.NOT_IMPLEMENTED
        return await self.constraint_follow_step()

    def _heading(self) -> float:
        return 180 + round(math.degrees(self._robot.yaw()))

    async def constraint_follow_step(self) -> BehaviorResult:
        """Face the user without leaving the allowed window; search where they were lost."""
        cfg = self._config
        if self._robot.is_lifted() or self._robot.is_dragged():
            return BehaviorResult.HELD

        current = self._heading()
        status = self._robot.detection_status()
        relative = round(math.degrees(self._robot.detection_data().angle)) / cfg.follow_angle_divisor
        if relative > 0:
            self._lost_side = AngleBucket.LEFT
        elif relative < 0:
            self._lost_side = AngleBucket.RIGHT

        default = cfg.follow_default_angle_deg
        boundary = cfg.follow_boundary_deg
        lower = normalize_angle(default - boundary)
        upper = normalize_angle(default + boundary)
        adjusted = clamp_turn_angle(current, float(int(relative)), lower, upper)

        if abs(adjusted) > 0.1 and self._state.detection_bucket is not DistanceBucket.CLOSE:
            await self._navigation.turn_by(int(adjusted), 1.0)
            return BehaviorResult.TURNED
        if status is DetectionStatus.LOST and default - boundary < current < default + boundary:
            side, self._lost_side = self._lost_side, AngleBucket.GONE
            if side is AngleBucket.LEFT:
                await self._navigation.turn_by(SEARCH_TURN_DEG, SEARCH_TURN_SPEED)
                return BehaviorResult.SEARCHED
            if side is AngleBucket.RIGHT:
                await self._navigation.turn_by(-SEARCH_TURN_DEG, SEARCH_TURN_SPEED)
                return BehaviorResult.SEARCHED
            return BehaviorResult.IDLE
        if status is DetectionStatus.IDLE and abs(default - current) > cfg.follow_recentre_threshold_deg:
            await self._navigation.turn_by(int(directed_angle(default, current)), 1.0)
            return BehaviorResult.RECENTRED
        return BehaviorResult.IDLE
