"""SpeechArbiter: text -> sentence queue -> robot TTS, gated or backgrounded, interruptible."""

from __future__ import annotations

import asyncio
import logging
import re
from enum import Enum

from guidebot.io.robot_interface import RobotInterface, TtsStatus

from .config import OrchestratorConfig
from .interrupts import InterruptMonitor
from .state import NO_INTERRUPTS, InteractionState, InterruptFlags
from .sync import Cadence

logger = logging.getLogger(__name__)

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")

# Statuses after which a request will make no further progress
_TTS_DONE = frozenset({TtsStatus.COMPLETED, TtsStatus.ERROR, TtsStatus.NOT_ALLOWED})


class SpeechMode(Enum):
    GATED = "gated"  # caller waits until every sentence was spoken
    BACKGROUND = "background"  # detached task, at most one at a time


def split_sentences(text: str | None) -> list[str]:
    """Split on terminal punctuation; blank pieces are dropped."""
    if not text:
        return []
    return [s.strip() for s in _SENTENCE_END.split(text) if s.strip()]


class SpeechArbiter:
    """Speaks sentence by sentence and resumes the interrupted sentence after recovery.

    The background slot is the task handle itself: a new background utterance is only
    started when no previous one is running, and cancelling means cancelling that task.
    """

    def __init__(
        self,
        robot: RobotInterface,
        state: InteractionState,
        interrupts: InterruptMonitor,
        config: OrchestratorConfig,
        cadence: Cadence | None = None,
    ) -> None:
        self._robot = robot
        self._state = state
        self._interrupts = interrupts
        self._cadence = cadence or Cadence(config.tick_s, config.poll_s)
        self._buffer_ms = int(config.tick_s * 1000)
        self._background: asyncio.Task | None = None

    @property
    def background_active(self) -> bool:
        return self._background is not None and not self._background.done()

    async def speak(
        self,
        text: str | None,
        mode: SpeechMode = SpeechMode.GATED,
        conditions: InterruptFlags = NO_INTERRUPTS,
        *,
        show_face: bool = True,
    ) -> None:
        """Speak `text`. Gated returns once spoken; background returns immediately."""
        self._state.is_speaking = True
        try:
            sentences = split_sentences(text)
            if not sentences:
                return
            if mode is SpeechMode.BACKGROUND:
                self.start_background(sentences, conditions, show_face=show_face)
                return
            armed = self._arm(conditions)
            try:
                await self._speak_sentences(sentences, conditions, show_face)
            finally:
                if armed:
                    self._interrupts.disarm()
        finally:
            self._state.is_speaking = False

    def start_background(
        self,
        sentences: list[str],
        conditions: InterruptFlags = NO_INTERRUPTS,
        *,
        show_face: bool = True,
    ) -> asyncio.Task | None:
        """Launch the background utterance, or do nothing if one is already running."""
        if self.background_active:
            logger.debug("Background speech already running; ignoring %d sentence(s)", len(sentences))
            return None
        self._background = asyncio.create_task(self._run_background(sentences, conditions, show_face))
        return self._background

    async def _run_background(self, sentences: list[str], conditions: InterruptFlags, show_face: bool) -> None:
        # Honour conditions armed by the caller; only arm them here when nobody else has
        armed = not self._state.interrupt_flags.any() and self._arm(conditions)
        try:
            await self._speak_sentences(sentences, conditions, show_face)
        finally:
            if armed and self._state.interrupt_flags == conditions:
                self._interrupts.disarm()

    async def cancel_background(self) -> None:
        task, self._background = self._background, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._state.is_talking = False
        logger.info("Background speech cancelled")

    async def wait_background(self) -> None:
        await self._cadence.block_while(lambda: self.background_active)

    def _arm(self, conditions: InterruptFlags) -> bool:
        if conditions.any():
            self._interrupts.arm(conditions)
            return True
        return False

    def _tts_pending(self) -> bool:
        return self._robot.tts_status() not in _TTS_DONE

    async def _speak_sentences(self, sentences: list[str], conditions: InterruptFlags, show_face: bool) -> None:
        interruptible = conditions.any()
        self._state.is_talking = True
        try:
            for sentence in sentences:
                while True:
                    if interruptible:
                        # A resume flag left over from before this sentence does not apply to it
                        self._interrupts.consume_speech_resume()
                    self._robot.speak(sentence, self._buffer_ms, show_face)
                    await self._cadence.tick()
                    await self._cadence.block_while(
                        lambda: self._tts_pending() or self._interrupts.is_holding(conditions)
                    )
                    if interruptible and self._interrupts.consume_speech_resume():
                        logger.info("Repeating interrupted sentence: %s", sentence)
                        continue
                    break
        finally:
            self._state.is_talking = False

    async def forced_speak(self, text: str, attempts: int = 5) -> None:
        """Re-issue until the robot accepts the utterance, then wait for it."""
        for _ in range(attempts):
            self._robot.speak(text, self._buffer_ms, True)
            await self._cadence.tick()
            if self._robot.tts_status() in (TtsStatus.STARTED, TtsStatus.COMPLETED):
                break
            logger.debug("TTS request not accepted, retrying: %s", text)
        await self._cadence.block_while(self._tts_pending)
