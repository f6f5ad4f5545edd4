"""
Greet mode: engage people who walk up, and patrol between fixed poses while nobody is engaged.

GreetLoop waits for a detection to persist, stops, follows, speaks a greeting from the
non-repeating pool, then watches the user for a bounded window (tilting down and holding
still while they stand close). A vanished user gets a grace period to come back; every
disengagement is followed by a cooldown so a flicker does not re-trigger immediately.
"""

from __future__ import annotations

import asyncio
import logging
import random

from guidebot.io.robot_interface import RobotInterface
from guidebot.perception.types import DistanceBucket
from guidebot.utils.event_logger import InteractionEventLogger

from .config import OrchestratorConfig
from .navigation import NAMED_POSES, NavigationDriver, NavigationOutcome, NavigationTarget
from .speech import SpeechArbiter
from .state import InteractionState
from .sync import Cadence

logger = logging.getLogger(__name__)

GREETINGS: tuple[str, ...] = (
    "Hello! How can I assist you today?",
    "Hi there! What can I do for you?",
    "Good day! How may I help you?",
    "Hey! Need any assistance?",
    "Welcome! What can I help you with?",
)


class GreetingPool:
    """Indices drawn without replacement, reshuffled when exhausted.

    The first draw after a reshuffle never repeats the draw right before it. A corrupted
    order is rebuilt instead of raising.
    """

    def __init__(self, size: int = len(GREETINGS), rng: random.Random | None = None) -> None:
        if size < 1:
            raise ValueError("GreetingPool needs at least one entry")
        self._size = size
        self._rng = rng or random.Random()
        self._order: list[int] = list(range(size))
        self._index = size  # exhausted: the first draw shuffles
        self._last: int | None = None

    @property
    def last(self) -> int | None:
        return self._last

    def _valid(self) -> bool:
        return sorted(self._order) == list(range(self._size)) and 0 <= self._index

    def _reshuffle(self) -> None:
        self._order = list(range(self._size))
        self._rng.shuffle(self._order)
        self._index = 0
        if self._size > 1 and self._order[0] == self._last:
            swap = self._rng.randrange(1, self._size)
            self._order[0], self._order[swap] = self._order[swap], self._order[0]

    def draw(self) -> int:
        if not self._valid():
            logger.warning("Greeting pool state invalid (index=%d); rebuilding", self._index)
            self._index = self._size
        if self._index >= self._size:
            self._reshuffle()
        choice = self._order[self._index]
        self._index += 1
        self._last = choice
        return choice


def next_patrol_pose(current: int, count: int, rng: random.Random) -> int:
    """Uniform pick among poses 1..count other than `current`."""
    if count < 2:
        return current
    nxt = rng.randint(1, count - 1)
    if nxt >= current:
        nxt += 1
    return nxt


class GreetLoop:
    """Presence-driven greeting behaviour, active while greet mode is on."""

    def __init__(
        self,
        robot: RobotInterface,
        state: InteractionState,
        speech: SpeechArbiter,
        config: OrchestratorConfig,
        pool: GreetingPool | None = None,
        cadence: Cadence | None = None,
        event_log: InteractionEventLogger | None = None,
    ) -> None:
        self._robot = robot
        self._state = state
        self._speech = speech
        self._config = config
        self._pool = pool or GreetingPool()
        self._cadence = cadence or Cadence(config.tick_s, config.poll_s)
        self._events = event_log
        self.parked = False  # tilted away, waiting for greet mode to come back
        self.engagements = 0

    def _wanted(self) -> bool:
        return self._state.user_present and self._state.is_greet_mode

    async def run(self) -> None:
        state = self._state
        logger.info("Greet loop started (greet_mode=%s)", state.is_greet_mode)
        self.parked = False
        while True:
            try:
                await self._step()
            except Exception as e:
                logger.warning("Greet step failed: %s", e)
                state.is_engaged = False
                state.is_idle_face_active = False
            await self._cadence.tick()

    async def _step(self) -> None:
        state = self._state
        if self._wanted():
            # Detection must persist for the detection delay before it counts
            await self._cadence.wait_until(lambda: not state.user_present, self._config.greet_detection_delay)
            if self._wanted():
                await self.engage()
        state.is_engaged = False
        state.is_idle_face_active = False
        if not state.is_greet_mode:
            await self._park()

    async def _park(self) -> None:
        """Stop, tilt away and wait for greet mode to come back."""
        self.parked = True
        try:
            self._robot.stop()
            self._robot.tilt(self._config.close_tilt_deg)
            logger.info("Greet mode off: idling")
            await self._cadence.block_while(lambda: not self._state.is_greet_mode)
        finally:
            self.parked = False
        logger.info("Greet mode back on")

    async def engage(self) -> None:
        """One engagement: greet, then watch the user until they leave or time runs out."""
        state = self._state
        cfg = self._config
        self._robot.stop()
        choice = self._pool.draw()
        text = GREETINGS[choice % len(GREETINGS)]
        self._robot.follow()
        state.is_engaged = True
        self.engagements += 1
        logger.info("Greeting user (choice=%d): %s", choice, text)
        if self._events:
            self._events.log_greeting(choice, text)
        await self._speech.speak(text)
        state.is_idle_face_active = True

        following = True
        cooldown = True
        for _ in range(cfg.greet_engage_ticks + 1):
            if not self._wanted():
                if not state.is_greet_mode:
                    cooldown = False
                    break
                await self._cadence.wait_until(lambda: state.user_present, cfg.greet_return_wait)
                if not self._wanted():
                    cooldown = state.is_greet_mode
                    logger.info("User left; disengaging")
                    break
            elif state.detection_bucket is DistanceBucket.CLOSE and following:
                self._robot.stop()
                self._robot.tilt(cfg.close_tilt_deg)
                following = False
            elif state.detection_bucket is not DistanceBucket.CLOSE and not following:
                self._robot.follow()
                following = True
            await self._cadence.tick()

        state.is_engaged = False
        state.is_idle_face_active = False
        if cooldown:
            await asyncio.sleep(cfg.greet_cooldown_s)


class PatrolLoop:
    """Cycle between NAMED_POSES while greet mode is on and nobody is engaged."""

    def __init__(
        self,
        navigation: NavigationDriver,
        state: InteractionState,
        config: OrchestratorConfig,
        rng: random.Random | None = None,
        cadence: Cadence | None = None,
    ) -> None:
        self._navigation = navigation
        self._state = state
        self._config = config
        self._rng = rng or random.Random()
        self._cadence = cadence or Cadence(config.tick_s, config.poll_s)
        self.current = self._rng.randint(1, len(NAMED_POSES))
        self.leg_active = False
        self.legs_completed = 0

    def _idle(self) -> bool:
        return not self._state.is_greet_mode or self._state.is_engaged

    async def run(self) -> None:
        state = self._state
        while True:
            if self._idle():
                await self._cadence.tick()
                continue
            self.leg_active = True
            try:
                outcome = await self._navigation.go_to(NavigationTarget.at(NAMED_POSES[self.current]))
            except Exception as e:
                logger.warning("Patrol leg failed: %s", e)
                outcome = NavigationOutcome.ABORTED
            finally:
                self.leg_active = False
            if outcome is NavigationOutcome.COMPLETED:
                self.legs_completed += 1
                if not self._idle():
                    await self._cadence.wait_until(
                        lambda: state.user_present and state.is_greet_mode, self._config.patrol_wait
                    )
                self.current = next_patrol_pose(self.current, len(NAMED_POSES), self._rng)
                logger.debug("Next patrol pose: %d", self.current)
            await self._cadence.tick()
