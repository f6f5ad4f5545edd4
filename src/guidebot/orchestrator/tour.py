"""
TourOrchestrator: starts and cancels the whole behaviour subtree as one unit.

The subtree is perception sampling, greet loop, patrol, behaviour runner, plus any task
spawned into it (UI requests, scripted tours). stop() cancels every one of them and the
background speech slot before returning, so a restart never leaves a duplicate speaker
or navigation command behind.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Coroutine, Sequence

from guidebot.perception.tracker import PerceptionTracker

from .behavior import BehaviorRunner
from .config import OrchestratorConfig
from .dialogue import (
    NOT_UNDERSTOOD_REPLY,
    STEP_BACK_REPLY,
    TOUR_CONTINUE_REPLY,
    TOUR_GOODBYE,
    TOUR_QUESTION_PROMPT,
    TOUR_WAIT_REPLY,
    DialogueFlow,
)
from .greet import GreetLoop, PatrolLoop
from .llm_adapter import TOUR_CONTEXT_PROMPT
from .navigation import NavigationDriver, NavigationOutcome, NavigationTarget
from .speech import SpeechArbiter, SpeechMode
from .state import InteractionState, InterruptFlags, TourState
from .sync import Cadence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TourStop:
    """One stop of a scripted tour."""

    location: str
    script: str
    intro: str | None = None  # spoken while driving there
    ask_questions: bool = False
    step_back: bool = False  # wait for a close user to step back before the script
    confirm: str | None = None  # yes/no question asked before moving on


def load_tour(path: str | Path) -> list[TourStop]:
    """Read a JSON list of stops: [{"location": ..., "script": ..., "intro": ..., "confirm": ...}]; see TourStop."""
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise ValueError(f"{path}: expected a JSON list of tour stops")
    stops = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict) or not item.get("location") or "script" not in item:
            raise ValueError(f"{path}: stop {i} needs 'location' and 'script'")
        stops.append(
            TourStop(
                location=str(item["location"]),
                script=str(item["script"]),
                intro=item.get("intro"),
                ask_questions=bool(item.get("ask_questions", False)),
                step_back=bool(item.get("step_back", False)),
                confirm=item.get("confirm"),
            )
        )
    return stops


class TourOrchestrator:
    """Supervisor of the behaviour subtree; exposes start/stop (and restart = stop + start)."""

    def __init__(
        self,
        state: InteractionState,
        config: OrchestratorConfig,
        *,
        tracker: PerceptionTracker,
        speech: SpeechArbiter,
        navigation: NavigationDriver,
        dialogue: DialogueFlow,
        greet: GreetLoop,
        patrol: PatrolLoop | None = None,
        behavior: BehaviorRunner | None = None,
        cadence: Cadence | None = None,
    ) -> None:
        self._state = state
        self._config = config
        self._tracker = tracker
        self._speech = speech
        self._navigation = navigation
        self._dialogue = dialogue
        self._greet = greet
        self._patrol = patrol
        self._behavior = behavior
        self._cadence = cadence or Cadence(config.tick_s, config.poll_s)
        self._tasks: set[asyncio.Task] = set()
        self.starts = 0
        self.guest_name: str | None = None

    @property
    def running(self) -> bool:
        return self._state.tour_state is TourState.RUNNING

    @property
    def active_tasks(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def start(self) -> None:
        if self.running:
            logger.debug("Tour already running")
            return
        self._state.tour_state = TourState.STARTING
        self.spawn(self._tracker.run(), "perception")
        self.spawn(self._greet.run(), "greet")
        if self._patrol is not None:
            self.spawn(self._patrol.run(), "patrol")
        if self._behavior is not None:
            self.spawn(self._behavior.run(), "behavior")
        self.starts += 1
        self._state.tour_state = TourState.RUNNING
        logger.info("Tour started (start #%d)", self.starts)

    async def stop(self) -> None:
        if self._state.tour_state is TourState.IDLE and not self._tasks:
            return
        self._state.tour_state = TourState.STOPPING
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        await self._speech.cancel_background()
        self._state.tour_state = TourState.IDLE
        logger.info("Tour stopped (%d task(s) cancelled)", len(tasks))

    async def restart(self) -> None:
        """Tear the subtree down and relaunch it with fresh perception and activity state."""
        await self.stop()
        self._state.tour_state = TourState.RESTARTING
        self._tracker.reset()
        self._state.reset_activity()
        self._state.tour_state = TourState.IDLE
        self.start()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Run `coro` as part of the subtree so stop() cancels it."""
        task = asyncio.create_task(self._guard(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro: Coroutine[Any, Any, Any], name: str) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Tour task %s failed: %s", name, e)
            return None

    # ---- scripted tour ----

    def run_script(self, stops: Sequence[TourStop], *, ask_name: bool = False) -> asyncio.Task:
        return self.spawn(self.run_stops(stops, ask_name=ask_name), "tour_script")

    async def run_stops(self, stops: Sequence[TourStop], *, ask_name: bool = False) -> int:
        """Visit each stop with interrupts armed; greet mode is off for the duration. Returns stops reached."""
        state = self._state
        previous_greet_mode = state.is_greet_mode
        state.is_greet_mode = False
        # An exit requested during an earlier UI dialogue does not carry into the tour
        state.exit_requested = False
        watched = InterruptFlags.all()
        reached = 0
        try:
            # Let greet/patrol park before taking over the base
            await self._cadence.wait_until(self._base_free, self._config.greet_return_wait)
            self.guest_name = await self._dialogue.ask_name() if ask_name else None
            for stop in stops:
                logger.info("Tour stop: %s", stop.location)
                outcome = await self._navigation.go_to(
                    NavigationTarget.named(stop.location), speak_before=stop.intro, conditions=watched
                )
                if outcome is NavigationOutcome.ABORTED:
                    logger.warning("Skipping tour stop %s: navigation aborted", stop.location)
                    continue
                reached += 1
                if stop.step_back:
                    await self._dialogue.wait_for_user_to_step_back(close=STEP_BACK_REPLY)
                await self._speech.speak(stop.script, SpeechMode.GATED, watched)
                if stop.ask_questions:
                    await self._dialogue.ask_open_question(
                        TOUR_CONTEXT_PROMPT + stop.script, prompt=TOUR_QUESTION_PROMPT, show_face=True
                    )
                if stop.confirm and not await self._dialogue.get_confirmation(
                    stop.confirm,
                    rejected=TOUR_WAIT_REPLY,
                    confirmed=TOUR_CONTINUE_REPLY,
                    not_understood=NOT_UNDERSTOOD_REPLY,
                    after_rejected_delay_s=self._config.tour_confirm_retry_s,
                    conditions=watched,
                ):
                    logger.info("Tour ended at %s: nobody confirmed moving on", stop.location)
                    break
            if self.guest_name and reached:
                await self._speech.speak(TOUR_GOODBYE.format(name=self.guest_name), SpeechMode.GATED, watched)
            logger.info("Tour finished: %d/%d stops reached", reached, len(stops))
            return reached
        finally:
            state.is_greet_mode = previous_greet_mode

    def _base_free(self) -> bool:
        patrol_busy = self._patrol is not None and self._patrol.leg_active
        return self._greet.parked and not patrol_busy
