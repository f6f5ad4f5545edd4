"""
Completion adapter: one system prompt + one user utterance in, one short reply out.
Uses OpenAI chat completion. The dialogue treats any failure as "skip the answer".
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# Context for questions asked from the UI
UI_CONTEXT_PROMPT = (
    "Just be yourself, keep responses short. If the user says Tammy or Timmy they mean Temi, "
    "there is an issue with the text to speech system."
)

# Context for questions asked at a tour stop; the stop's script is appended
TOUR_CONTEXT_PROMPT = (
    "You are a robot who is currently giving out a tour and have just finished explaining details "
    "at a location and are asking the tour participants if they have any questions. Make your "
    "responses sarcastic and make comments about how you dislike humans and find them to be inferior "
    "to robot kinds, but keep the aesthetic like that of a robot. Ensure to keep responses very short "
    "so that it is not above 100 words and never ask the user if they would like to ask another "
    "question. This is the script you have just said and should use as reference: "
)


class CompletionError(Exception):
    """The remote completion service gave no usable answer."""


@runtime_checkable
class CompletionService(Protocol):
    async def complete(self, system_prompt: str, user_text: str) -> str:
        """Return the reply text or raise CompletionError."""
        ...


def request_completion(
    system_prompt: str,
    user_text: str,
    *,
    api_key: str,
    model: str = "gpt-4o-mini",
    max_retries: int = 1,
) -> str:
    """
    Blocking chat completion. Returns the reply text, raises CompletionError when
    every attempt failed or came back empty.

    Call from an executor, not directly on the event loop.
    """
    if not api_key:
        raise CompletionError("no OpenAI API key configured")
    from openai import OpenAI

    client = OpenAI(api_key=api_key)
    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_text},
    ]
    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            response = client.chat.completions.create(model=model, messages=messages)
            choice = response.choices and response.choices[0]
            content = getattr(choice.message, "content", None) if choice else None
            if content and content.strip():
                return content.strip()
            logger.warning("Completion returned empty content (attempt %s)", attempt + 1)
        except Exception as e:
            last_error = e
            logger.warning("Completion request failed (attempt %s): %s", attempt + 1, e)
    raise CompletionError(str(last_error) if last_error else "empty completion")


class OpenAICompletionService:
    """CompletionService backed by the OpenAI API, run in the default executor."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", max_retries: int = 1) -> None:
        self._api_key = api_key
        self._model = model
        self._max_retries = max_retries

    async def complete(self, system_prompt: str, user_text: str) -> str:
        loop = asyncio.get_running_loop()
        fn = partial(
            request_completion,
            system_prompt,
            user_text,
            api_key=self._api_key,
            model=self._model,
            max_retries=self._max_retries,
        )
        return await loop.run_in_executor(None, fn)
