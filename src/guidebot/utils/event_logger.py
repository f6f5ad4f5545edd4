"""Lightweight JSONL event logger for the interaction timeline.

Each event is one JSON dict per line. Logs: interrupt escalations, warnings, full
restarts, navigation aborts, greeting engagements and dialogue outcomes.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class InteractionEventLogger:
    """Append-only JSONL logger.

    Usage:
        log = InteractionEventLogger("logs/interaction_events.jsonl")
        log.log("interrupt_escalated", {"stage": 1, "flags": {...}})
    """

    def __init__(self, path: str | Path = "logs/interaction_events.jsonl") -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._session_id = f"session_{int(time.time())}"
        self._seq = 0
        logger.info("Interaction timeline -> %s (session=%s)", self._path, self._session_id)

    @property
    def path(self) -> Path:
        return self._path

    def log(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        """Append one event line; the sequence number orders events within a session."""
        self._seq += 1
        line = json.dumps(
            {
                "session": self._session_id,
                "seq": self._seq,
                "event": event_type,
                "timestamp": time.time(),
                **(data or {}),
            },
            ensure_ascii=False,
            default=str,
        )
        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.warning("Event log write failed (%s): %s", event_type, e)

    def log_escalation(self, stage: int, condition: str | None, flags: dict[str, bool]) -> None:
        self.log("interrupt_escalated", {"stage": stage, "condition": condition, "flags": flags})

    def log_warning(self, condition: str, attempts: int) -> None:
        self.log("interrupt_warning", {"condition": condition, "attempts": attempts})

    def log_restart(self, reason: str, attempts: int, restart_count: int) -> None:
        self.log("full_restart", {"reason": reason, "attempts": attempts, "restart_count": restart_count})

    def log_navigation(self, target: str, outcome: str, reissues: int = 0) -> None:
        self.log("navigation", {"target": target, "outcome": outcome, "reissues": reissues})

    def log_greeting(self, choice: int, text: str) -> None:
        self.log("greeting", {"choice": choice, "text": text})

    def log_dialogue(self, outcome: str, transcript: str | None = None) -> None:
        self.log("dialogue", {"outcome": outcome, "transcript": transcript})
