"""Shared fixtures: millisecond cadences and a wired speech/navigation/interrupt stack on MockRobot."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace

import pytest

from guidebot.io.mock_robot import MockRobot
from guidebot.orchestrator.config import OrchestratorConfig
from guidebot.orchestrator.interrupts import InterruptMonitor
from guidebot.orchestrator.navigation import NavigationDriver
from guidebot.orchestrator.speech import SpeechArbiter
from guidebot.orchestrator.state import InteractionState
from guidebot.perception.types import AngleBucket, DistanceBucket, PerceptionSnapshot


@pytest.fixture
def fast_config() -> OrchestratorConfig:
    return OrchestratorConfig(
        log_level="WARNING",
        event_log_path="",
        tick_s=0.001,
        poll_s=0.005,
        sample_interval_s=0.002,
        greet_cooldown_s=0.01,
        tour_confirm_retry_s=0.005,
        thinking_delay_min_s=0.0,
        thinking_delay_max_s=0.005,
    )


async def _eventually(predicate, timeout_s: float = 2.0) -> None:
    """Poll every millisecond until predicate() holds; fails the test on timeout."""
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout_s)


@pytest.fixture
def eventually():
    return _eventually


def snapshot(distance: DistanceBucket) -> PerceptionSnapshot:
    angle = AngleBucket.GONE if distance is DistanceBucket.MISSING else AngleBucket.MIDDLE
    return PerceptionSnapshot(distance=distance, angle=angle)


@dataclass
class Stack:
    config: OrchestratorConfig
    robot: MockRobot
    state: InteractionState
    interrupts: InterruptMonitor
    speech: SpeechArbiter
    navigation: NavigationDriver
    restarts: list[int] = field(default_factory=list)

    def place_user(self, distance: DistanceBucket) -> None:
        self.state.set_perception(snapshot(distance))


@pytest.fixture
def make_stack(fast_config):
    """Factory: make_stack(robot=None, **config_overrides) -> Stack."""

    def _make(robot: MockRobot | None = None, **overrides) -> Stack:
        config = fast_config
        if overrides:
            config = replace(fast_config, **overrides)
        robot = robot or MockRobot()
        state = InteractionState()
        restarts: list[int] = []

        async def on_restart() -> None:
            restarts.append(state.restart_count)

        interrupts = InterruptMonitor(robot, state, config, on_restart=on_restart)
        speech = SpeechArbiter(robot, state, interrupts, config)
        navigation = NavigationDriver(robot, state, interrupts, speech, config)
        return Stack(config, robot, state, interrupts, speech, navigation, restarts)

    return _make
