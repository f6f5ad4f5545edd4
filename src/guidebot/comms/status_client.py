"""Status client - pushes the agent's status snapshot to a dashboard over HTTP."""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

logger = logging.getLogger(__name__)


class StatusClient:
    """Posts status snapshots to `<base_url>/status`. Fails gracefully if the dashboard is down."""

    def __init__(self, base_url: str | None, timeout: int = 5) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._timeout = timeout
        self._enabled = bool(self._base_url)
        self._last_error_log: float = 0.0
        self._error_log_interval_s: float = 60.0

    @property
    def enabled(self) -> bool:
        return self._enabled

    def post_status(self, payload: dict[str, Any]) -> bool:
        """POST JSON to /status. Returns False if disabled or request fails."""
        if not self._enabled:
            return False
        url = f"{self._base_url}/status"
        body = {"timestamp": time.time(), **payload}
        try:
            resp = requests.post(url, json=body, timeout=self._timeout)
            if resp.ok:
                logger.debug("Status posted: %s", resp.status_code)
            return resp.ok
        except Exception as e:
            now = time.monotonic()
            if now - self._last_error_log >= self._error_log_interval_s:
                logger.warning("Dashboard unreachable (post status): %s", e)
                self._last_error_log = now
            return False
