"""
Parse spoken replies: ordered phrase matching, yes/no lexicons, name extraction.
"""

from __future__ import annotations

import re
import string
from enum import Enum
from typing import Iterable, Sequence

CONFIRMATION_PHRASES: tuple[str, ...] = (
    "Yes", "Okay", "Sure", "I'm willing", "Count me in", "Absolutely no problem",
    "Of course", "Right now", "Let's go", "I'll be there", "Sounds good", "I can join",
    "I'm ready", "It's settled", "Definitely", "On my way", "I'll come",
)

REJECT_PHRASES: tuple[str, ...] = (
    "No", "Not now", "Can't", "Not attending", "Can't make it", "Impossible", "Sorry",
    "I have plans", "Not going", "Unfortunately can't", "I can't do it", "Regretfully no",
    "No way", "No thanks", "I'm busy", "I need to decline",
)

# Tried in order; the first one that matches wins
_NAME_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"my name is ([A-Za-z]+)",
        r"i am ([A-Za-z]+)",
        r"it's ([A-Za-z]+)",
        r"this is ([A-Za-z]+)",
        r"call me ([A-Za-z]+)",
        r"name is ([A-Za-z]+)",
        r"is ([A-Za-z]+)",
        r"me ([A-Za-z]+)",
        r"i ([A-Za-z]+)",
        r"am ([A-Za-z]+)",
    )
]
_SINGLE_WORD = re.compile(r"^[A-Za-z]+$")


class ListenResult(Enum):
    """Classification of one transcript."""

    EMPTY = "empty"  # nothing recognised
    REJECTED = "rejected"
    CONFIRMED = "confirmed"
    UNCLEAR = "unclear"  # something was said but it is neither yes nor no


def _words(text: str) -> list[str]:
    return [w for w in (t.strip(string.punctuation).lower() for t in text.split()) if w]


def contains_phrase_in_order(transcript: str | None, phrase: str | Sequence[str]) -> bool:
    """
    True if every word of `phrase` occurs in `transcript` in the same order.
    Words in between are allowed; case and surrounding punctuation are ignored.
    """
    if not transcript:
        return False
    wanted = _words(phrase) if isinstance(phrase, str) else [w.lower() for w in phrase]
    if not wanted:
        return False
    remaining = _words(transcript)
    for word in wanted:
        try:
            idx = remaining.index(word)
        except ValueError:
            return False
        remaining = remaining[idx + 1:]
    return True


def matches_any(transcript: str | None, phrases: Iterable[str]) -> bool:
    return any(contains_phrase_in_order(transcript, p) for p in phrases)


def classify_reply(transcript: str | None) -> ListenResult:
    """Reject wins over confirm ("no, sure not" is a no)."""
    if transcript is None or not transcript.strip():
        return ListenResult.EMPTY
    if matches_any(transcript, REJECT_PHRASES):
        return ListenResult.REJECTED
    if matches_any(transcript, CONFIRMATION_PHRASES):
        return ListenResult.CONFIRMED
    return ListenResult.UNCLEAR


def extract_name(text: str | None) -> str | None:
    """Name from "my name is X", "call me X", ...; a lone word is taken as the name."""
    if not text:
        return None
    for pattern in _NAME_PATTERNS:
        m = pattern.search(text)
        if m:
            return m.group(1)
    text = text.strip()
    return text if _SINGLE_WORD.match(text) else None
