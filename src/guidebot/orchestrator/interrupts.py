"""
InterruptMonitor: detects "user missing / user too close / device mishandled",
escalates into a robot-wide interrupted mode, warns, and forces a full tour restart
after repeated failed recovery attempts.

Three loops share the interrupt fields of InteractionState:
- trigger loop: condition held for the full delay -> stage 1 (triggered, stop, tilt,
  resume flags); held for another half delay -> stage 2 (spoken warnings armed).
  Each stage fires at most once per continuous episode.
- warning loop: while triggered, speak the warning for the active condition every
  `warning_interval` polls and count attempts.
- idle branch: nobody around and nothing triggered also counts attempts, unless
  `prevent_reset_from_idle` is set.
Reaching `max_interrupt_attempts` runs the restart callback once and zeroes everything.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from guidebot.io.robot_interface import RobotInterface
from guidebot.perception.types import DistanceBucket
from guidebot.utils.event_logger import InteractionEventLogger

from .config import OrchestratorConfig
from .state import NO_INTERRUPTS, InteractionState, InterruptFlags
from .sync import Cadence

logger = logging.getLogger(__name__)

DEVICE_MOVED = "device_moved"
USER_MISSING = "user_missing"
USER_TOO_CLOSE = "user_too_close"

WARNINGS: dict[str, str] = {
    DEVICE_MOVED: "Hey, do not touch me.",
    USER_MISSING: "Sorry, I am unable to see you. Please come closer and I will start the tour again.",
    USER_TOO_CLOSE: "Hey, you are too close.",
}

# Order in which a simultaneous condition is reported
_WARNING_PRIORITY = (DEVICE_MOVED, USER_MISSING, USER_TOO_CLOSE)


class InterruptMonitor:
    """Owner of the interrupt fields in InteractionState."""

    def __init__(
        self,
        robot: RobotInterface,
        state: InteractionState,
        config: OrchestratorConfig,
        *,
        on_restart: Callable[[], Awaitable[None]],
        event_log: InteractionEventLogger | None = None,
        cadence: Cadence | None = None,
    ) -> None:
        self._robot = robot
        self._state = state
        self._config = config
        self._on_restart = on_restart
        self._events = event_log
        self._cadence = cadence or Cadence(config.tick_s, config.poll_s)
        self._episode_escalated = False

    # ---- API for speech / navigation ----

    def arm(self, flags: InterruptFlags) -> None:
        """Enable the conditions the current speech/navigation call wants watched."""
        self._state.interrupt_flags = flags

    def disarm(self) -> None:
        self._state.interrupt_flags = NO_INTERRUPTS

    def is_holding(self, flags: InterruptFlags) -> bool:
        """True while an interrupt is active and the caller opted into interrupts."""
        return self._state.interrupt_triggered and flags.any()

    def consume_speech_resume(self) -> bool:
        if self._state.repeat_speech:
            self._state.repeat_speech = False
            return True
        return False

    def consume_navigation_resume(self) -> bool:
        if self._state.repeat_navigation:
            self._state.repeat_navigation = False
            return True
        return False

    def set_prevent_reset_from_idle(self, prevent: bool) -> None:
        self._state.prevent_reset_from_idle = prevent

    # ---- condition evaluation ----

    def is_misuse(self) -> bool:
        """Robot reports being lifted or dragged."""
        try:
            return bool(self._robot.is_lifted() or self._robot.is_dragged())
        except Exception as e:
            logger.warning("Misuse state read failed: %s", e)
            return False

    def active_conditions(self) -> list[str]:
        """Enabled conditions that currently hold, in warning priority order."""
        flags = self._state.interrupt_flags
        bucket = self._state.perception.distance
        active = []
        if flags.device_moved and self.is_misuse():
            active.append(DEVICE_MOVED)
        if flags.user_missing and bucket is DistanceBucket.MISSING:
            active.append(USER_MISSING)
        if flags.user_too_close and bucket is DistanceBucket.CLOSE:
            active.append(USER_TOO_CLOSE)
        return active

    def trigger_active(self) -> bool:
        return bool(self.active_conditions())

    # ---- loops ----

    async def run(self) -> None:
        logger.info(
            "Interrupt monitor started (delay=%d polls, max attempts=%d)",
            self._config.interrupt_trigger_delay,
            self._config.max_interrupt_attempts,
        )
        await asyncio.gather(self._trigger_loop(), self._recovery_loop())

    async def _held_for(self, polls: int) -> bool:
        """Wait up to `polls`; True if the trigger never cleared at a poll."""
        cleared = await self._cadence.wait_until(lambda: not self.trigger_active(), polls)
        return not cleared

    async def _trigger_loop(self) -> None:
        state = self._state
        delay = self._config.interrupt_trigger_delay
        while True:
            if not self.trigger_active():
                if state.interrupt_triggered:
                    logger.info("Interrupt cleared")
                state.interrupt_triggered = False
                state.warnings_armed = False
                self._episode_escalated = False
                await self._cadence.tick()
                continue
            if self._episode_escalated:
                await self._cadence.tick()
                continue

            if not await self._held_for(delay):
                continue
            self._escalate()
            await self._cadence.tick()
            self._command("tilt", self._robot.tilt, self._config.interrupt_tilt_deg)

            if not await self._held_for(delay // 2):
                continue
            state.warnings_armed = True
            logger.info("Interrupt stage 2: warnings armed")
            if self._events:
                self._events.log_escalation(2, self._first_condition(), state.interrupt_flags.as_dict())

    def _command(self, name: str, call: Callable[..., None], *args: object) -> None:
        """Send a robot command; a driver failure is logged and the escalation carries on."""
        try:
            call(*args)
        except Exception as e:
            logger.warning("Robot %s failed during interrupt: %s", name, e)

    def _first_condition(self) -> str | None:
        active = self.active_conditions()
        return active[0] if active else None

    def _escalate(self) -> None:
        state = self._state
        condition = self._first_condition()
        logger.warning("Interrupt stage 1 (%s): stopping and holding speech/navigation", condition)
        state.interrupt_triggered = True
        state.repeat_speech = True
        state.repeat_navigation = True
        self._episode_escalated = True
        self._command("stop", self._robot.stop)
        if self._events:
            self._events.log_escalation(1, condition, state.interrupt_flags.as_dict())

    async def _recovery_loop(self) -> None:
        state = self._state
        cfg = self._config
        while True:
            # Reaching here means the robot is not interrupted and not idling: recovered
            state.interrupt_attempts = 0
            while state.interrupt_triggered:
                if state.warnings_armed:
                    if self._speak_warning():
                        state.interrupt_attempts += 1
                        if state.interrupt_attempts >= cfg.max_interrupt_attempts:
                            await self.full_restart("interrupt not resolved")
                            continue
                    await self._cadence.wait_until(lambda: not state.interrupt_triggered, cfg.warning_interval)
                await self._cadence.tick()
            while (
                not state.interrupt_triggered
                and not state.user_present
                and not state.prevent_reset_from_idle
            ):
                state.interrupt_attempts += 1
                if state.interrupt_attempts >= cfg.max_interrupt_attempts:
                    await self.full_restart("idle without user")
                    continue
                await self._cadence.wait_until(
                    lambda: state.interrupt_triggered or state.user_present or state.prevent_reset_from_idle,
                    cfg.idle_reset_interval,
                )
            await self._cadence.tick()

    def _speak_warning(self) -> bool:
        active = self.active_conditions()
        if not active:
            return False
        condition = active[0]
        try:
            self._robot.speak(WARNINGS[condition], int(self._config.tick_s * 1000))
        except Exception as e:
            logger.warning("Warning speech failed: %s", e)
        logger.info("Interrupt warning (%s), attempt %d", condition, self._state.interrupt_attempts + 1)
        if self._events:
            self._events.log_warning(condition, self._state.interrupt_attempts + 1)
        return True

    async def full_restart(self, reason: str) -> None:
        """Clear every interrupt field and relaunch the tour subtree."""
        state = self._state
        attempts = state.interrupt_attempts
        state.reset_interrupts()
        self._episode_escalated = False
        state.restart_count += 1
        logger.warning("Full restart #%d after %d attempts (%s)", state.restart_count, attempts, reason)
        if self._events:
            self._events.log_restart(reason, attempts, state.restart_count)
        try:
            await self._on_restart()
        except Exception as e:
            logger.exception("Restart callback failed: %s", e)
