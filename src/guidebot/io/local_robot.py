"""Desktop robot: simulated base from MockRobot, real speech (pyttsx3) and microphone recognition (SpeechRecognition)."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor

from .mock_robot import MockRobot
from .robot_interface import TtsStatus

logger = logging.getLogger(__name__)

# Slower speech rate (words per minute). Default pyttsx3 is often ~200; ~130 is calmer.
TTS_RATE_WPM = 130


def _speak_pyttsx3(text: str) -> None:
    import pyttsx3

    engine = pyttsx3.init()
    try:
        engine.setProperty("rate", TTS_RATE_WPM)
    except Exception as e:
        logger.debug("pyttsx3 rate not applied: %s", e)
    engine.say(text)
    engine.runAndWait()


def _transcribe(audio, recognizer) -> str | None:
    """Google Speech API first; Whisper if that fails and is available."""
    import speech_recognition as sr

    try:
        text = recognizer.recognize_google(audio)
        return (text or "").strip() or None
    except (sr.UnknownValueError, sr.RequestError):
        pass
    if hasattr(recognizer, "recognize_whisper"):
        try:
            text = recognizer.recognize_whisper(audio, language="en", model="base")
            return (text or "").strip() or None
        except Exception as e:
            logger.debug("Whisper transcription failed: %s", e)
    return None


def _listen_microphone(timeout_s: float) -> str | None:
    """One phrase from the default mic; stops after ~1 s of silence or at the timeout."""
    import speech_recognition as sr

    r = sr.Recognizer()
    with sr.Microphone() as source:
        r.adjust_for_ambient_noise(source, duration=1.0)
        r.pause_threshold = 1.0
        try:
            audio = r.listen(source, timeout=timeout_s, phrase_time_limit=min(timeout_s, 35.0))
        except sr.WaitTimeoutError:
            return None
    return _transcribe(audio, r)


class LocalRobot(MockRobot):
    """MockRobot whose speech and recognition session are real.

    TTS and ASR block, so each runs on its own single worker thread; the status accessors
    report the worker's progress the same way a robot reports its asynchronous state.
    """

    def __init__(self, *, listen_timeout_s: float = 8.0, **kwargs) -> None:
        super().__init__(**kwargs)
        self._listen_timeout_s = listen_timeout_s
        self._tts_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tts")
        self._asr_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="asr")
        self._tts_future: Future | None = None
        self._asr_future: Future | None = None

    def speak(self, text: str, buffer_ms: int = 100, show_face: bool = True) -> None:
        self._record("speak", text)
        self.spoken.append(text)
        logger.info("TTS: %s", text)
        self._tts = TtsStatus.STARTED
        self._tts_future = self._tts_pool.submit(_speak_pyttsx3, text)

    def tts_status(self) -> TtsStatus:
        future = self._tts_future
        if self._tts is TtsStatus.STARTED and future is not None and future.done():
            error = future.exception()
            if error is not None:
                logger.warning("pyttsx3 TTS failed: %s", error)
            self._tts = TtsStatus.ERROR if error is not None else TtsStatus.COMPLETED
        return self._tts

    def wake_up(self) -> None:
        self._record("wake_up")
        self._attached = True
        self._ask_result = None
        self._asr_future = self._asr_pool.submit(_listen_microphone, self._listen_timeout_s)

    def conversation_attached(self) -> bool:
        future = self._asr_future
        if self._attached and future is not None and future.done():
            self._attached = False
            try:
                self._ask_result = future.result()
            except Exception as e:
                logger.warning("Microphone recognition failed: %s", e)
                self._ask_result = None
            logger.info("Heard: %r", self._ask_result)
        return self._attached

    def finish_conversation(self) -> None:
        # The blocking mic read cannot be interrupted; its result is dropped
        super().finish_conversation()
        self._asr_future = None

    def close(self) -> None:
        self._tts_pool.shutdown(wait=False)
        self._asr_pool.shutdown(wait=False)
