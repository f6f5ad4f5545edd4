"""OrchestratorAgent and TourOrchestrator on MockRobot: subtree lifecycle, greet, scripted tour."""

from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import replace

import pytest

from guidebot.io.mock_robot import MockRobot
from guidebot.orchestrator.agent import OrchestratorAgent
from guidebot.orchestrator.behavior import BehaviorMode
from guidebot.orchestrator.dialogue import (
    NAME_GREETING,
    STEP_BACK_REPLY,
    THANK_YOU,
    TOUR_CONTINUE_REPLY,
    TOUR_QUESTION_PROMPT,
    TOUR_WAIT_REPLY,
    DialogueOutcome,
)
from guidebot.orchestrator.greet import GREETINGS
from guidebot.orchestrator.state import InteractionState, TourState
from guidebot.orchestrator.tour import TourStop, load_tour
from guidebot.perception.types import DistanceBucket, PerceptionSnapshot

STOPS = [
    TourStop("lab", "This is the lab."),
    TourStop("entrance", "This is the entrance.", intro="Follow me."),
]


class FakeCompletion:
    async def complete(self, system_prompt: str, user_text: str) -> str:
        return "Robots are better."


def _agent(config, robot=None, **kwargs) -> OrchestratorAgent:
    return OrchestratorAgent(
        config, robot=robot or MockRobot(), completion=FakeCompletion(), rng=random.Random(1), **kwargs
    )


def test_unknown_robot_adapter(fast_config):
    with pytest.raises(ValueError):
        OrchestratorAgent(replace(fast_config, robot_adapter="warp"))


def test_status_snapshot(fast_config):
    agent = _agent(fast_config)
    status = agent.status()
    assert status["behavior_mode"] == "null"
    assert status["tour_tasks"] == 0
    assert status["tour_state"] == "idle"
    assert status["detection_bucket"] == "missing"
    assert status["is_greet_mode"] is True
    json.dumps(status)

    agent.set_behavior_mode(BehaviorMode.CONSTRAINT_FOLLOW)
    assert agent.status()["behavior_mode"] == "constraint_follow"


def test_start_and_stop_subtree(fast_config):
    agent = _agent(fast_config)
    seen = {}

    async def scenario():
        agent.tour.start()
        agent.tour.start()  # already running
        seen["running"] = agent.tour.running
        seen["tasks"] = agent.tour.active_tasks
        await asyncio.sleep(0.02)
        await agent.tour.stop()

    asyncio.run(scenario())
    assert seen == {"running": True, "tasks": 4}
    assert agent.tour.starts == 1
    assert agent.tour.active_tasks == 0
    assert agent.state.tour_state is TourState.IDLE


def test_restart_cancels_spawned_work(fast_config, eventually):
    robot = MockRobot(tts_polls=10**6)
    robot.set_person(1.2)
    agent = _agent(replace(fast_config, greet_mode=False), robot)

    async def scenario():
        agent.tour.start()
        await eventually(lambda: agent.state.detection_bucket is DistanceBucket.MIDRANGE)
        speaking = agent.speak_for_ui("This sentence never finishes.")
        await eventually(lambda: agent.state.is_talking)
        await agent.interrupts.full_restart("test")
        result = (speaking.cancelled(), agent.tour.active_tasks, agent.tour.running)
        await agent.tour.stop()
        return result

    cancelled, active, running = asyncio.run(scenario())
    assert cancelled
    assert active == 4
    assert running
    assert agent.tour.starts == 2
    assert agent.state.restart_count == 1
    assert not agent.state.is_talking


def test_greets_detected_person(fast_config, eventually):
    robot = MockRobot()
    robot.set_person(1.2)
    agent = _agent(replace(fast_config, greet_engage_ticks=5), robot)

    async def scenario():
        agent.tour.start()
        await eventually(lambda: agent.greet.engagements >= 1 and robot.spoken)
        await agent.tour.stop()

    asyncio.run(scenario())
    assert any(greeting.startswith(robot.spoken[0]) for greeting in GREETINGS)
    assert robot.commands("follow")


def test_greet_mode_off_parks(fast_config, eventually):
    robot = MockRobot()
    agent = _agent(fast_config, robot)

    async def scenario():
        agent.tour.start()
        agent.set_greet_mode(False)
        await eventually(lambda: agent.greet.parked)
        agent.set_greet_mode(True)
        await eventually(lambda: not agent.greet.parked)
        await agent.tour.stop()

    asyncio.run(scenario())
    assert fast_config.close_tilt_deg in robot.commands("tilt")


def test_scripted_tour(fast_config):
    robot = MockRobot(transcripts=["no"])
    stops = STOPS + [TourStop("lecture hall", "This is the lecture hall.", ask_questions=True)]
    agent = _agent(fast_config, robot, tour_stops=stops)

    async def scenario():
        agent.tour.start()
        reached = await agent.start_tour()
        await agent.tour.stop()
        return reached

    assert asyncio.run(scenario()) == 3
    assert robot.commands("go_to") == [("lab", False), ("entrance", False), ("lecture hall", False)]
    for line in ("This is the lab.", "Follow me.", "This is the entrance.", TOUR_QUESTION_PROMPT):
        assert line in robot.spoken
    assert agent.state.is_greet_mode is True


def test_tour_skips_aborted_stop(fast_config):
    robot = MockRobot()
    robot.abort_next_navigation()
    agent = _agent(fast_config, robot)

    reached = asyncio.run(agent.tour.run_stops(STOPS))
    assert reached == 1
    assert "This is the lab." not in robot.spoken
    assert "This is the entrance." in robot.spoken


def test_start_tour_without_stops(fast_config):
    agent = _agent(fast_config)
    assert agent.start_tour() is None


def test_ui_question_runs_in_subtree(fast_config):
    robot = MockRobot(transcripts=["no"])
    agent = _agent(fast_config, robot)
    agent.state.exit_requested = True

    async def scenario():
        return await agent.ask_open_question_ui()

    assert asyncio.run(scenario()) is DialogueOutcome.NO_QUESTION
    assert agent.state.exit_requested is False


def test_unknown_location_warns(fast_config, caplog):
    robot = MockRobot(transcripts=["no"])
    agent = _agent(fast_config, robot)

    async def scenario():
        return await agent.query_named_location("moon base")

    with caplog.at_level(logging.WARNING, logger="guidebot.orchestrator.agent"):
        outcome = asyncio.run(scenario())
    assert outcome is DialogueOutcome.DECLINED
    assert any("moon base" in r.getMessage() for r in caplog.records)


def test_request_exit_ends_listening(fast_config):
    robot = MockRobot()
    agent = _agent(fast_config, robot)
    robot.wake_up()
    agent.request_exit()
    assert agent.state.exit_requested
    assert robot.commands("finish_conversation") == [None]


def test_run_until_stop_requested(fast_config, eventually):
    robot = MockRobot()
    agent = _agent(fast_config, robot)

    async def scenario():
        runner = asyncio.create_task(agent.run())
        await eventually(lambda: agent.tour.running)
        agent.request_stop()
        await runner

    asyncio.run(scenario())
    assert agent.state.tour_state is TourState.IDLE
    assert agent.tour.active_tasks == 0
    assert robot.history[-1] == ("stop", None)


class FlakyGreetRobot(MockRobot):
    """The first stop() and follow() raise, like a driver hiccup."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = {"stop", "follow"}

    def stop(self) -> None:
        if "stop" in self.failing:
            self.failing.discard("stop")
            raise RuntimeError("driver hiccup")
        super().stop()

    def follow(self) -> None:
        if "follow" in self.failing:
            self.failing.discard("follow")
            raise RuntimeError("driver hiccup")
        super().follow()


def test_greet_survives_driver_failure(fast_config, eventually):
    robot = FlakyGreetRobot()
    robot.set_person(1.2)
    agent = _agent(replace(fast_config, greet_engage_ticks=5), robot)

    async def scenario():
        agent.tour.start()
        await eventually(lambda: robot.spoken and not robot.failing)
        alive = agent.tour.active_tasks
        await agent.tour.stop()
        return alive

    assert asyncio.run(scenario()) == 4
    assert robot.commands("follow")


def test_restart_while_parked_unparks(fast_config, eventually):
    agent = _agent(fast_config)

    async def scenario():
        agent.tour.start()
        agent.set_greet_mode(False)
        await eventually(lambda: agent.greet.parked)
        await agent.tour.restart()
        after_restart = agent.greet.parked
        agent.set_greet_mode(True)
        await asyncio.sleep(0.05)
        parked = agent.greet.parked
        await agent.tour.stop()
        return after_restart, parked

    assert asyncio.run(scenario()) == (False, False)


def test_tour_asks_questions_after_ui_exit(fast_config):
    robot = MockRobot(transcripts=["no"])
    agent = _agent(fast_config, robot)
    agent.request_exit()

    asyncio.run(agent.tour.run_stops([TourStop("lab", "This is the lab.", ask_questions=True)]))
    assert TOUR_QUESTION_PROMPT in robot.spoken
    assert agent.state.exit_requested is False


def test_reset_activity_clears_exit_request():
    state = InteractionState(exit_requested=True, is_talking=True)
    state.reset_activity()
    assert state.exit_requested is False
    assert state.is_talking is False


def _user_at(agent, distance: DistanceBucket) -> None:
    agent.state.set_perception(PerceptionSnapshot(distance=distance))


def test_tour_asks_name_and_says_goodbye(fast_config):
    robot = MockRobot(transcripts=["my name is Sarah"])
    agent = _agent(fast_config, robot)
    _user_at(agent, DistanceBucket.FAR)

    assert asyncio.run(agent.tour.run_stops(STOPS, ask_name=True)) == 2
    assert agent.tour.guest_name == "Sarah"
    assert robot.spoken[1] == NAME_GREETING.format(name="Sarah")
    assert robot.spoken[-1] == "Thank you for coming along, Sarah."


def test_tour_without_name_forgets_previous_guest(fast_config):
    agent = _agent(fast_config)
    agent.tour.guest_name = "Sarah"
    asyncio.run(agent.tour.run_stops(STOPS))
    assert agent.tour.guest_name is None
    assert not any("Sarah" in line for line in agent.robot.spoken)


def test_tour_waits_for_confirmation_to_move_on(fast_config):
    robot = MockRobot(transcripts=["not now", "yes"])
    agent = _agent(fast_config, robot)
    _user_at(agent, DistanceBucket.MIDRANGE)
    stops = [TourStop("lab", "This is the lab.", confirm="Shall we move on?"), STOPS[1]]

    assert asyncio.run(agent.tour.run_stops(stops)) == 2
    assert robot.spoken.count("Shall we move on?") == 2
    assert robot.spoken.index(TOUR_WAIT_REPLY) < robot.spoken.index(TOUR_CONTINUE_REPLY)
    assert "This is the entrance." in robot.spoken


def test_tour_ends_when_nobody_confirms(fast_config):
    robot = MockRobot()
    agent = _agent(fast_config, robot)
    stops = [TourStop("lab", "This is the lab.", confirm="Shall we move on?"), STOPS[1]]

    assert asyncio.run(agent.tour.run_stops(stops)) == 1
    assert robot.commands("go_to") == [("lab", False)]
    assert agent.state.is_greet_mode is True


def test_tour_waits_for_user_to_step_back(fast_config, eventually):
    robot = MockRobot()
    agent = _agent(fast_config, robot)
    _user_at(agent, DistanceBucket.CLOSE)

    async def scenario():
        task = asyncio.create_task(agent.tour.run_stops([TourStop("lab", "This is the lab.", step_back=True)]))
        await eventually(lambda: STEP_BACK_REPLY in robot.spoken)
        assert "This is the lab." not in robot.spoken
        _user_at(agent, DistanceBucket.MIDRANGE)
        return await task

    assert asyncio.run(scenario()) == 1
    assert robot.spoken[-3:] == [STEP_BACK_REPLY, THANK_YOU, "This is the lab."]


def test_load_tour(tmp_path):
    path = tmp_path / "tour.json"
    path.write_text(json.dumps([
        {"location": "lab", "script": "This is the lab.", "ask_questions": True},
        {"location": "entrance", "script": "Bye.", "intro": "Follow me."},
        {"location": "hall", "script": "The hall.", "step_back": True, "confirm": "Ready?"},
    ]))
    stops = load_tour(path)
    assert stops == [
        TourStop("lab", "This is the lab.", ask_questions=True),
        TourStop("entrance", "Bye.", intro="Follow me."),
        TourStop("hall", "The hall.", step_back=True, confirm="Ready?"),
    ]


@pytest.mark.parametrize(
    "payload",
    [{"location": "lab"}, [{"script": "x"}], [{"location": "", "script": "x"}], ["lab"]],
)
def test_load_tour_rejects_malformed(tmp_path, payload):
    path = tmp_path / "tour.json"
    path.write_text(json.dumps(payload))
    with pytest.raises(ValueError):
        load_tour(path)
