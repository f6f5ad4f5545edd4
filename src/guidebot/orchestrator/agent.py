"""Always-on interaction agent: interrupt monitor, tour subtree, UI entry points, status push. Clean shutdown on Ctrl+C."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Sequence

from guidebot.comms.status_client import StatusClient
from guidebot.io.mock_robot import MockRobot
from guidebot.io.robot_interface import RobotInterface
from guidebot.perception.tracker import PerceptionTracker
from guidebot.utils.event_logger import InteractionEventLogger

from .behavior import BehaviorMode, BehaviorRunner
from .config import OrchestratorConfig
from .dialogue import DialogueFlow
from .greet import GreetingPool, GreetLoop, PatrolLoop
from .interrupts import InterruptMonitor
from .llm_adapter import UI_CONTEXT_PROMPT, CompletionService, OpenAICompletionService
from .navigation import NavigationDriver
from .speech import SpeechArbiter
from .state import InteractionState
from .sync import Cadence
from .tour import TourOrchestrator, TourStop

logger = logging.getLogger(__name__)


def _create_robot(config: OrchestratorConfig) -> RobotInterface:
    if config.robot_adapter == "mock":
        return MockRobot()
    if config.robot_adapter == "local":
        from guidebot.io.local_robot import LocalRobot
        return LocalRobot()
    raise ValueError(f"Unknown robot_adapter: {config.robot_adapter}")


def _create_completion(config: OrchestratorConfig) -> CompletionService | None:
    if not config.openai_api_key:
        logger.info("No OpenAI API key; questions will be acknowledged but not answered")
        return None
    return OpenAICompletionService(config.openai_api_key, config.openai_model)


class OrchestratorAgent:
    """Owns the shared state and every component; runs until stop requested."""

    def __init__(
        self,
        config: OrchestratorConfig,
        *,
        robot: RobotInterface | None = None,
        completion: CompletionService | None = None,
        tour_stops: Sequence[TourStop] = (),
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self._stop_event = asyncio.Event()
        self._robot = robot if robot is not None else _create_robot(config)
        self._state = InteractionState(is_greet_mode=config.greet_mode)
        self._tour_stops = list(tour_stops)
        self._tasks: list[asyncio.Task] = []
        rng = rng or random.Random()
        cadence = Cadence(config.tick_s, config.poll_s)
        self._events = InteractionEventLogger(config.event_log_path) if config.event_log_path else None
        self._status_client = StatusClient(config.status_url)

        self.interrupts = InterruptMonitor(
            self._robot,
            self._state,
            config,
            on_restart=self._on_full_restart,
            event_log=self._events,
            cadence=cadence,
        )
        self.speech = SpeechArbiter(self._robot, self._state, self.interrupts, config, cadence)
        self.navigation = NavigationDriver(
            self._robot, self._state, self.interrupts, self.speech, config, cadence, self._events
        )
        self.dialogue = DialogueFlow(
            self._robot,
            self._state,
            self.speech,
            self.navigation,
            config,
            completion if completion is not None else _create_completion(config),
            rng=rng,
            cadence=cadence,
            event_log=self._events,
        )
        self.tracker = PerceptionTracker(self._robot, config, self._state.set_perception)
        self.greet = GreetLoop(
            self._robot, self._state, self.speech, config, GreetingPool(rng=rng), cadence, self._events
        )
        self.patrol = PatrolLoop(self.navigation, self._state, config, rng, cadence)
        self.behavior = BehaviorRunner(self._robot, self._state, self.navigation, config, cadence=cadence)
        self.tour = TourOrchestrator(
            self._state,
            config,
            tracker=self.tracker,
            speech=self.speech,
            navigation=self.navigation,
            dialogue=self.dialogue,
            greet=self.greet,
            patrol=self.patrol,
            behavior=self.behavior,
            cadence=cadence,
        )

    @property
    def robot(self) -> RobotInterface:
        return self._robot

    @property
    def state(self) -> InteractionState:
        return self._state

    def request_stop(self) -> None:
        self._stop_event.set()

    # ---- restart path (called by InterruptMonitor) ----

    async def _on_full_restart(self) -> None:
        logger.warning("Restarting tour subtree")
        await self.speech.cancel_background()
        await self.tour.restart()

    # ---- UI entry points ----

    def status(self) -> dict[str, Any]:
        data = self._state.status()
        data["behavior_mode"] = self.behavior.mode.value
        data["tour_tasks"] = self.tour.active_tasks
        return data

    def speak_for_ui(self, text: str) -> asyncio.Task:
        """Speak without the face overlay; runs inside the tour subtree."""
        return self.tour.spawn(self.speech.speak(text, show_face=False), "ui_speak")

    def ask_open_question_ui(self, context: str = UI_CONTEXT_PROMPT) -> asyncio.Task:
        self._state.exit_requested = False
        return self.tour.spawn(self.dialogue.ask_open_question(context), "ui_ask")

    def query_named_location(self, name: str) -> asyncio.Task:
        self._state.exit_requested = False
        known = self._robot.list_locations()
        if known and name not in known:
            logger.warning("Location %r not on the map (known: %s)", name, ", ".join(known))
        return self.tour.spawn(self.dialogue.query_named_location(name), "ui_query_location")

    def go_to_pose(self, pose_id: int) -> asyncio.Task:
        return self.tour.spawn(self.navigation.go_to_pose_id(pose_id), "ui_go_to_pose")

    def set_greet_mode(self, enabled: bool) -> None:
        if self._state.is_greet_mode != enabled:
            logger.info("Greet mode %s", "enabled" if enabled else "disabled")
        self._state.is_greet_mode = enabled

    def set_behavior_mode(self, mode: BehaviorMode) -> None:
        self.behavior.set_mode(mode)

    def request_exit(self) -> None:
        """End any blocking listen/dialogue early."""
        logger.info("Exit requested by UI")
        self._state.exit_requested = True
        self._robot.finish_conversation()

    def start_tour(self, stops: Sequence[TourStop] | None = None) -> asyncio.Task | None:
        stops = list(stops) if stops is not None else self._tour_stops
        if not stops:
            logger.warning("No tour stops configured")
            return None
        return self.tour.run_script(stops, ask_name=self.config.tour_ask_name)

    # ---- loops ----

    async def _telemetry_loop(self) -> None:
        """Push the status snapshot at telemetry_hz."""
        interval = 1.0 / self.config.telemetry_hz if self.config.telemetry_hz > 0 else 1.0
        loop = asyncio.get_running_loop()
        while not self._stop_event.is_set():
            await loop.run_in_executor(None, self._status_client.post_status, self.status())
            await asyncio.sleep(interval)

    async def run(self) -> None:
        """Run the interrupt monitor and the tour subtree until stop requested."""
        logger.info("Agent starting (robot=%s, greet_mode=%s). Ctrl+C to stop.",
                    self.config.robot_adapter, self._state.is_greet_mode)
        self._tasks = []
        try:
            self._tasks.append(asyncio.create_task(self.interrupts.run(), name="interrupts"))
            if self._status_client.enabled:
                self._tasks.append(asyncio.create_task(self._telemetry_loop(), name="telemetry"))
            self.tour.start()
            await self._stop_event.wait()
        finally:
            await self._shutdown()

    async def _shutdown(self) -> None:
        """Cancel tasks, stop the robot."""
        await self.tour.stop()
        for t in self._tasks:
            t.cancel()
        for t in self._tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        try:
            self._robot.stop()
        except Exception as e:
            logger.warning("Robot stop on shutdown failed: %s", e)
        close = getattr(self._robot, "close", None)
        if callable(close):
            close()
        logger.info("Agent stopped.")

