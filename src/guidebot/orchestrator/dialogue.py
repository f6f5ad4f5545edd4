"""
DialogueFlow: spoken question/answer exchanges.

- listen(): one recognition session, ended by the robot or by an exit request
- ask_open_question(): prompt, read back, yes/no confirm, optional completion answer
- query_named_location(): offer to walk the user to a map location
- ask_name(), get_confirmation(), wait_for_user_to_step_back(): small gates used by the tour

Replies are classified with the ordered phrase matcher in phrases.py. Empty or unclear
replies re-prompt; every loop also ends once the user is gone or an exit is requested.
"""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum

from guidebot.io.robot_interface import RobotInterface
from guidebot.perception.types import DistanceBucket
from guidebot.utils.event_logger import InteractionEventLogger

from .config import OrchestratorConfig
from .llm_adapter import UI_CONTEXT_PROMPT, CompletionError, CompletionService
from .navigation import NavigationDriver, NavigationOutcome, NavigationTarget
from .phrases import ListenResult, classify_reply, extract_name
from .speech import SpeechArbiter
from .state import NO_INTERRUPTS, InteractionState, InterruptFlags
from .sync import Cadence

logger = logging.getLogger(__name__)

QUESTION_PROMPT = "What is your Question? Say no to cancel."
TOUR_QUESTION_PROMPT = "Does anyone have a question?"
NO_QUESTION_REPLY = "All good."
CONTINUE_REPLY = "All good, I will continue on."
HEARING_ISSUE_REPLY = "Sorry, I had an issue with hearing you."
READ_BACK = "Did you say {transcript}? Please just say yes or no."
TRY_AGAIN_REPLY = "Sorry, let's try this again."
THINKING_REPLY = "Great, let me think for a moment."
NOT_UNDERSTOOD_REPLY = "Sorry, I did not understand you."
UNKNOWN_ANSWER_REPLY = "Sorry, I do not actually know that question."

LOCATION_OFFER = "You have selected {location}. Would you like me to bring you there? Please just say yes or no."
LOCATION_DECLINED = "All good, just touch the screen when you are done and are looking to exit."
LOCATION_ACCEPTED = "Ok, I will show you to it now."
LOCATION_ARRIVED = (
    "We have made it to the location, if you need further help feel free to browse through my options."
)
LOCATION_FAILED = "Sorry, I could not get there. Please ask a member of staff for directions."
THANK_YOU = "Thank you."

NAME_PROMPT = "Before we start, what is your name?"
NAME_GREETING = "Nice to meet you, {name}."
STEP_BACK_REPLY = "Please take a step back so everyone can see."
TOUR_WAIT_REPLY = "No problem, take your time."
TOUR_CONTINUE_REPLY = "Great, let's keep going."
TOUR_GOODBYE = "That is the end of the tour. Thank you for coming along, {name}."


class DialogueOutcome(Enum):
    ANSWERED = "answered"
    UNANSWERED = "unanswered"  # confirmed question, completion not requested
    NO_QUESTION = "no_question"
    COMPLETION_FAILED = "completion_failed"
    CANCELLED = "cancelled"  # exit requested
    DECLINED = "declined"
    ARRIVED = "arrived"
    NAVIGATION_ABORTED = "navigation_aborted"


class DialogueFlow:
    """Question/answer exchanges on top of SpeechArbiter and the robot's recognition session."""

    def __init__(
        self,
        robot: RobotInterface,
        state: InteractionState,
        speech: SpeechArbiter,
        navigation: NavigationDriver,
        config: OrchestratorConfig,
        completion: CompletionService | None = None,
        rng: random.Random | None = None,
        cadence: Cadence | None = None,
        event_log: InteractionEventLogger | None = None,
    ) -> None:
        self._robot = robot
        self._state = state
        self._speech = speech
        self._navigation = navigation
        self._config = config
        self._completion = completion
        self._rng = rng or random.Random()
        self._cadence = cadence or Cadence(config.tick_s, config.poll_s)
        self._events = event_log

    @property
    def _exiting(self) -> bool:
        return self._state.exit_requested

    async def _say(self, text: str | None, show_face: bool, conditions: InterruptFlags = NO_INTERRUPTS) -> None:
        if text:
            await self._speech.speak(text, conditions=conditions, show_face=show_face)

    def _record(self, outcome: DialogueOutcome, transcript: str | None = None) -> DialogueOutcome:
        logger.info("Dialogue outcome: %s", outcome.value)
        if self._events:
            self._events.log_dialogue(outcome.value, transcript)
        return outcome

    # ---- listening ----

    async def listen(self) -> str | None:
        """Open a recognition session and block until it detaches or an exit is requested."""
        state = self._state
        state.is_listening = True
        try:
            self._robot.wake_up()
            await self._cadence.tick()
            await self._cadence.block_while(lambda: self._robot.conversation_attached() and not state.exit_requested)
            if state.exit_requested:
                self._robot.finish_conversation()
            transcript = self._robot.pop_ask_result()
            logger.debug("Heard: %r", transcript)
            return transcript
        finally:
            state.is_listening = False

    # ---- open question ----

    async def ask_open_question(
        self,
        context: str = UI_CONTEXT_PROMPT,
        *,
        prompt: str = QUESTION_PROMPT,
        ask_completion: bool = True,
        show_face: bool = False,
    ) -> DialogueOutcome:
        """Ask for a question, confirm it, then answer it through the completion service."""
        question: str | None = None
        while not self._exiting:
            await self._say(prompt, show_face)
            if self._exiting:
                break
            transcript = await self.listen()
            reply = classify_reply(transcript)

            if reply is ListenResult.EMPTY:
                if self._exiting:
                    break
                if not self._state.user_present:
                    await self._say(CONTINUE_REPLY, show_face)
                    return self._record(DialogueOutcome.NO_QUESTION)
                await self._say(HEARING_ISSUE_REPLY, show_face)
                await self._cadence.tick()
                continue
            if reply is ListenResult.REJECTED:
                await self._say(NO_QUESTION_REPLY, show_face)
                return self._record(DialogueOutcome.NO_QUESTION, transcript)

            await self._say(READ_BACK.format(transcript=transcript), show_face)
            confirmation = await self._confirm_question(show_face)
            if confirmation is ListenResult.CONFIRMED:
                question = transcript
                break
            if confirmation is None:
                break
            await self._cadence.tick()

        if question is None:
            return self._record(DialogueOutcome.CANCELLED if self._exiting else DialogueOutcome.NO_QUESTION)
        if not ask_completion:
            await self._say(UNKNOWN_ANSWER_REPLY, show_face)
            return self._record(DialogueOutcome.UNANSWERED, question)

        answer = await self.think(context, question)
        if answer is None:
            return self._record(DialogueOutcome.COMPLETION_FAILED, question)
        await self._say(answer, show_face)
        return self._record(DialogueOutcome.ANSWERED, question)

    async def _confirm_question(self, show_face: bool) -> ListenResult | None:
        """Yes/no loop after the read-back. None = gave up (exit or user gone)."""
        while not self._exiting:
            reply = classify_reply(await self.listen())
            if reply is ListenResult.REJECTED:
                await self._say(TRY_AGAIN_REPLY, show_face)
                return reply
            if reply is ListenResult.CONFIRMED:
                await self._say(THINKING_REPLY, show_face)
                return reply
            if reply is ListenResult.UNCLEAR:
                await self._say(NOT_UNDERSTOOD_REPLY, show_face)
            elif not self._state.user_present:
                return None
            await self._cadence.tick()
        return None

    async def think(self, context: str, question: str) -> str | None:
        """Completion request raced against the thinking delay; None if the service failed."""
        state = self._state
        state.completion_error = False
        state.is_thinking = True
        delay = self._rng.uniform(self._config.thinking_delay_min_s, self._config.thinking_delay_max_s)
        try:
            if self._completion is None:
                raise CompletionError("no completion service configured")
            answer, _ = await asyncio.gather(
                self._completion.complete(context, question),
                asyncio.sleep(delay),
            )
            return answer
        except CompletionError as e:
            state.completion_error = True
            logger.warning("Completion failed, skipping answer: %s", e)
            return None
        finally:
            state.is_thinking = False

    # ---- location query ----

    async def query_named_location(self, location: str) -> DialogueOutcome:
        """Offer to bring the user to `location`; navigate backwards to it on a yes."""
        show_face = False
        while not self._exiting:
            await self._say(LOCATION_OFFER.format(location=location), show_face)
            transcript = await self.listen()
            reply = classify_reply(transcript)
            if reply is ListenResult.REJECTED:
                if self._exiting:
                    break
                await self._say(LOCATION_DECLINED, show_face)
                return self._record(DialogueOutcome.DECLINED, transcript)
            if reply is ListenResult.CONFIRMED:
                await self._say(LOCATION_ACCEPTED, show_face)
                outcome = await self._navigation.go_to(NavigationTarget.named(location, backwards=True))
                if outcome is NavigationOutcome.ABORTED:
                    await self._say(LOCATION_FAILED, show_face)
                    return self._record(DialogueOutcome.NAVIGATION_ABORTED, transcript)
                self._robot.tilt(self._config.close_tilt_deg)
                await self._say(LOCATION_ARRIVED, show_face)
                return self._record(DialogueOutcome.ARRIVED, transcript)
            if transcript is None:
                await self._say(LOCATION_DECLINED, show_face)
                return self._record(DialogueOutcome.DECLINED)
            await self._say(NOT_UNDERSTOOD_REPLY, show_face)
            await self._cadence.tick()
        return self._record(DialogueOutcome.CANCELLED)

    # ---- tour gates ----

    async def get_confirmation(
        self,
        question: str | None = None,
        *,
        rejected: str | None = None,
        confirmed: str | None = None,
        not_understood: str | None = None,
        ignored: str | None = None,
        after_rejected_delay_s: float = 0.0,
        conditions: InterruptFlags = NO_INTERRUPTS,
    ) -> bool:
        """Ask until the user says yes. False once they are gone or an exit is requested."""
        while not self._exiting:
            if not self._state.user_present:
                if ignored:
                    await self._speech.forced_speak(ignored)
                return False
            await self._say(question, True, conditions)
            while not self._exiting:
                reply = classify_reply(await self.listen())
                if reply is ListenResult.REJECTED:
                    await self._say(rejected, True, conditions)
                    if after_rejected_delay_s > 0:
                        await asyncio.sleep(after_rejected_delay_s)
                    break
                if reply is ListenResult.CONFIRMED:
                    await self._say(confirmed, True, conditions)
                    return True
                if not self._state.user_present:
                    if ignored:
                        await self._speech.forced_speak(ignored)
                    return False
                await self._say(not_understood, True, conditions)
                await self._cadence.tick()
            await self._cadence.tick()
        return False

    async def wait_for_user_to_step_back(self, *, close: str | None = None, not_close: str | None = None) -> None:
        """Remind the user while they stand too close; thank them once they step back."""
        state = self._state
        while True:
            if state.detection_bucket is not DistanceBucket.CLOSE:
                await self._say(not_close, True)
                return
            await self._say(close, True)
            await self._cadence.wait_until(
                lambda: state.detection_bucket is not DistanceBucket.CLOSE, self._config.step_back_wait
            )
            if state.detection_bucket is not DistanceBucket.CLOSE:
                await self._say(THANK_YOU, True)

    async def ask_name(self, attempts: int = 2) -> str | None:
        """Ask who we are talking to; None once attempts run out or the user is gone."""
        for _ in range(attempts):
            if self._exiting or not self._state.user_present:
                return None
            await self._say(NAME_PROMPT, True)
            transcript = await self.listen()
            name = extract_name(transcript)
            if name:
                await self._say(NAME_GREETING.format(name=name), True)
                if self._events:
                    self._events.log_dialogue("name", name)
                return name
            if transcript:
                await self._say(NOT_UNDERSTOOD_REPLY, True)
            await self._cadence.tick()
        return None
