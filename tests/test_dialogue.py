"""DialogueFlow against scripted transcripts: open question, location query, confirmation gates."""

from __future__ import annotations

import asyncio
import json
import random

from guidebot.io.mock_robot import MockRobot
from guidebot.orchestrator.dialogue import (
    CONTINUE_REPLY,
    HEARING_ISSUE_REPLY,
    LOCATION_ARRIVED,
    LOCATION_DECLINED,
    NAME_GREETING,
    NAME_PROMPT,
    NO_QUESTION_REPLY,
    NOT_UNDERSTOOD_REPLY,
    THANK_YOU,
    THINKING_REPLY,
    TRY_AGAIN_REPLY,
    UNKNOWN_ANSWER_REPLY,
    DialogueFlow,
    DialogueOutcome,
)
from guidebot.orchestrator.llm_adapter import UI_CONTEXT_PROMPT, CompletionError
from guidebot.perception.types import DistanceBucket
from guidebot.utils.event_logger import InteractionEventLogger


class FakeCompletion:
    def __init__(self, answer: str = "It is upstairs.", error: str | None = None) -> None:
        self.answer = answer
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_text: str) -> str:
        self.calls.append((system_prompt, user_text))
        if self.error:
            raise CompletionError(self.error)
        return self.answer


def _dialogue(s, completion=None, event_log=None) -> DialogueFlow:
    return DialogueFlow(
        s.robot, s.state, s.speech, s.navigation, s.config, completion,
        rng=random.Random(0), event_log=event_log,
    )


class TestOpenQuestion:
    def test_confirmed_question_is_answered(self, make_stack):
        s = make_stack(MockRobot(transcripts=["where is the lab", "yes"]))
        s.place_user(DistanceBucket.MIDRANGE)
        completion = FakeCompletion()
        outcome = asyncio.run(_dialogue(s, completion).ask_open_question())

        assert outcome is DialogueOutcome.ANSWERED
        assert completion.calls == [(UI_CONTEXT_PROMPT, "where is the lab")]
        assert "Did you say where is the lab?" in s.robot.spoken
        assert THINKING_REPLY in s.robot.spoken
        assert s.robot.spoken[-1] == "It is upstairs."
        assert not s.state.is_thinking
        assert not s.state.completion_error

    def test_no_ends_without_question(self, make_stack):
        s = make_stack(MockRobot(transcripts=["no thanks"]))
        s.place_user(DistanceBucket.MIDRANGE)
        completion = FakeCompletion()
        outcome = asyncio.run(_dialogue(s, completion).ask_open_question())

        assert outcome is DialogueOutcome.NO_QUESTION
        assert s.robot.spoken[-1] == NO_QUESTION_REPLY
        assert completion.calls == []

    def test_rejected_read_back_asks_again(self, make_stack):
        s = make_stack(MockRobot(transcripts=["what time is it", "no", "where is the lab", "yes"]))
        s.place_user(DistanceBucket.MIDRANGE)
        completion = FakeCompletion()
        outcome = asyncio.run(_dialogue(s, completion).ask_open_question())

        assert outcome is DialogueOutcome.ANSWERED
        assert TRY_AGAIN_REPLY in s.robot.spoken
        assert s.robot.spoken.count("What is your Question?") == 2
        assert completion.calls == [(UI_CONTEXT_PROMPT, "where is the lab")]

    def test_unclear_confirmation_is_asked_again(self, make_stack):
        s = make_stack(MockRobot(transcripts=["where is the lab", "maybe", "yes"]))
        s.place_user(DistanceBucket.MIDRANGE)
        outcome = asyncio.run(_dialogue(s, FakeCompletion()).ask_open_question())

        assert outcome is DialogueOutcome.ANSWERED
        assert NOT_UNDERSTOOD_REPLY in s.robot.spoken
        assert s.robot.spoken.count("What is your Question?") == 1

    def test_completion_failure_is_flagged(self, make_stack):
        s = make_stack(MockRobot(transcripts=["where is the lab", "yes"]))
        s.place_user(DistanceBucket.MIDRANGE)
        outcome = asyncio.run(_dialogue(s, FakeCompletion(error="timeout")).ask_open_question())

        assert outcome is DialogueOutcome.COMPLETION_FAILED
        assert s.state.completion_error
        assert not s.state.is_thinking
        assert s.robot.spoken[-1] == THINKING_REPLY

    def test_missing_completion_service_counts_as_failure(self, make_stack):
        s = make_stack(MockRobot(transcripts=["where is the lab", "yes"]))
        s.place_user(DistanceBucket.MIDRANGE)
        outcome = asyncio.run(_dialogue(s, None).ask_open_question())
        assert outcome is DialogueOutcome.COMPLETION_FAILED
        assert s.state.completion_error

    def test_without_completion_request(self, make_stack):
        s = make_stack(MockRobot(transcripts=["where is the lab", "yes"]))
        s.place_user(DistanceBucket.MIDRANGE)
        completion = FakeCompletion()
        outcome = asyncio.run(_dialogue(s, completion).ask_open_question(ask_completion=False))

        assert outcome is DialogueOutcome.UNANSWERED
        assert s.robot.spoken[-1] == UNKNOWN_ANSWER_REPLY
        assert completion.calls == []

    def test_silence_with_user_gone_gives_up(self, make_stack):
        s = make_stack(MockRobot(transcripts=[None]))
        outcome = asyncio.run(_dialogue(s, FakeCompletion()).ask_open_question())
        assert outcome is DialogueOutcome.NO_QUESTION
        assert s.robot.spoken[-1] == CONTINUE_REPLY

    def test_silence_with_user_present_reprompts(self, make_stack):
        s = make_stack(MockRobot(transcripts=[None, "no"]))
        s.place_user(DistanceBucket.MIDRANGE)
        outcome = asyncio.run(_dialogue(s, FakeCompletion()).ask_open_question())

        assert outcome is DialogueOutcome.NO_QUESTION
        assert HEARING_ISSUE_REPLY in s.robot.spoken
        assert s.robot.spoken.count("What is your Question?") == 2

    def test_exit_request_cancels_listening(self, make_stack, eventually):
        s = make_stack(MockRobot(listen_polls=10**6))
        s.place_user(DistanceBucket.MIDRANGE)
        dialogue = _dialogue(s, FakeCompletion())

        async def scenario():
            task = asyncio.create_task(dialogue.ask_open_question())
            await eventually(lambda: s.state.is_listening)
            s.state.exit_requested = True
            return await task

        assert asyncio.run(scenario()) is DialogueOutcome.CANCELLED
        assert s.robot.commands("finish_conversation") == [None]
        assert not s.state.is_listening

    def test_outcome_written_to_event_log(self, make_stack, tmp_path):
        s = make_stack(MockRobot(transcripts=["no"]))
        s.place_user(DistanceBucket.MIDRANGE)
        log = InteractionEventLogger(tmp_path / "events.jsonl")
        asyncio.run(_dialogue(s, FakeCompletion(), log).ask_open_question())
        entry = json.loads((tmp_path / "events.jsonl").read_text().splitlines()[-1])
        assert entry["event"] == "dialogue"
        assert entry["outcome"] == "no_question"
        assert entry["transcript"] == "no"


class TestLocationQuery:
    def test_yes_walks_there_backwards(self, make_stack):
        s = make_stack(MockRobot(transcripts=["yes please"]))
        outcome = asyncio.run(_dialogue(s).query_named_location("lab"))

        assert outcome is DialogueOutcome.ARRIVED
        assert s.robot.commands("go_to") == [("lab", True)]
        assert s.robot.commands("tilt") == [s.config.close_tilt_deg]
        assert s.robot.spoken[-1] == LOCATION_ARRIVED

    def test_no_declines(self, make_stack):
        s = make_stack(MockRobot(transcripts=["no"]))
        outcome = asyncio.run(_dialogue(s).query_named_location("lab"))
        assert outcome is DialogueOutcome.DECLINED
        assert s.robot.commands("go_to") == []
        assert s.robot.spoken[-1] == LOCATION_DECLINED

    def test_silence_declines(self, make_stack):
        s = make_stack(MockRobot(transcripts=[None]))
        outcome = asyncio.run(_dialogue(s).query_named_location("lab"))
        assert outcome is DialogueOutcome.DECLINED
        assert s.robot.commands("go_to") == []

    def test_unclear_reply_repeats_offer(self, make_stack):
        s = make_stack(MockRobot(transcripts=["maybe later", "sure"]))
        outcome = asyncio.run(_dialogue(s).query_named_location("entrance"))
        assert outcome is DialogueOutcome.ARRIVED
        assert NOT_UNDERSTOOD_REPLY in s.robot.spoken
        assert s.robot.spoken.count("You have selected entrance.") == 2

    def test_aborted_navigation_is_reported(self, make_stack):
        s = make_stack(MockRobot(transcripts=["yes"]))
        s.robot.abort_next_navigation()
        outcome = asyncio.run(_dialogue(s).query_named_location("lab"))
        assert outcome is DialogueOutcome.NAVIGATION_ABORTED
        assert s.robot.commands("tilt") == []
        assert s.robot.spoken[-1] == "Please ask a member of staff for directions."


class TestGates:
    def test_confirmation_yes(self, make_stack):
        s = make_stack(MockRobot(transcripts=["okay"]))
        s.place_user(DistanceBucket.MIDRANGE)
        confirmed = asyncio.run(
            _dialogue(s).get_confirmation("Shall we go?", confirmed="Great.", rejected="Then we wait.")
        )
        assert confirmed is True
        assert s.robot.spoken == ["Shall we go?", "Great."]

    def test_confirmation_no_then_yes(self, make_stack):
        s = make_stack(MockRobot(transcripts=["not now", "yes"]))
        s.place_user(DistanceBucket.MIDRANGE)
        confirmed = asyncio.run(
            _dialogue(s).get_confirmation("Shall we go?", confirmed="Great.", rejected="Then we wait.")
        )
        assert confirmed is True
        assert s.robot.spoken == ["Shall we go?", "Then we wait.", "Shall we go?", "Great."]

    def test_confirmation_user_gone(self, make_stack):
        s = make_stack(MockRobot(transcripts=["yes"]))
        confirmed = asyncio.run(_dialogue(s).get_confirmation("Shall we go?", ignored="Goodbye then."))
        assert confirmed is False
        assert s.robot.spoken == ["Goodbye then."]
        assert s.robot.commands("wake_up") == []

    def test_step_back_when_not_close(self, make_stack):
        s = make_stack()
        s.place_user(DistanceBucket.FAR)
        asyncio.run(_dialogue(s).wait_for_user_to_step_back(close="Step back.", not_close="Perfect."))
        assert s.robot.spoken == ["Perfect."]

    def test_step_back_thanks_user(self, make_stack, eventually):
        s = make_stack()
        s.place_user(DistanceBucket.CLOSE)
        dialogue = _dialogue(s)

        async def scenario():
            task = asyncio.create_task(
                dialogue.wait_for_user_to_step_back(close="Step back.", not_close="Perfect.")
            )
            await eventually(lambda: "Step back." in s.robot.spoken)
            s.place_user(DistanceBucket.MIDRANGE)
            await task

        asyncio.run(scenario())
        assert s.robot.spoken == ["Step back.", THANK_YOU, "Perfect."]

    def test_ask_name(self, make_stack):
        s = make_stack(MockRobot(transcripts=["my name is Sarah"]))
        s.place_user(DistanceBucket.MIDRANGE)
        assert asyncio.run(_dialogue(s).ask_name()) == "Sarah"
        assert s.robot.spoken == [NAME_PROMPT, NAME_GREETING.format(name="Sarah")]

    def test_ask_name_retries_unclear_reply(self, make_stack):
        s = make_stack(MockRobot(transcripts=["42 42", "call me Mike"]))
        s.place_user(DistanceBucket.MIDRANGE)
        assert asyncio.run(_dialogue(s).ask_name()) == "Mike"
        assert s.robot.spoken.count(NAME_PROMPT) == 2
        assert NOT_UNDERSTOOD_REPLY in s.robot.spoken

    def test_ask_name_gives_up(self, make_stack):
        s = make_stack(MockRobot(transcripts=[None, None]))
        s.place_user(DistanceBucket.MIDRANGE)
        assert asyncio.run(_dialogue(s).ask_name()) is None
        assert len(s.robot.commands("wake_up")) == 2

    def test_ask_name_skipped_without_user(self, make_stack):
        s = make_stack(MockRobot(transcripts=["my name is Sarah"]))
        assert asyncio.run(_dialogue(s).ask_name()) is None
        assert s.robot.spoken == []
