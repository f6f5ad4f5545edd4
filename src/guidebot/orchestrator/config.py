"""Orchestrator configuration - dataclasses, env vars, and CLI overrides.

Distances, angles, attempt counts and delays below are empirically tuned on the robot.
They are kept as named values, not derived from anything.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


# Load .env from the project root (and its parent) so OPENAI_API_KEY etc. are set
def _load_dotenv() -> None:
    # config.py lives in src/guidebot/orchestrator/ -> 4 levels up = project root
    base = Path(__file__).resolve().parent.parent.parent.parent
    load_dotenv(base / ".env")
    load_dotenv(base.parent / ".env")

_load_dotenv()


def _env(key: str, default: str) -> str:
    """Read env var with default."""
    return os.environ.get(key, default)


def load_config(
    *,
    robot_adapter: str | None = None,
    log_level: str | None = None,
    ui_host: str | None = None,
    ui_port: int | None = None,
    status_url: str | None = None,
    telemetry_hz: float | None = None,
    event_log_path: str | None = None,
    openai_api_key: str | None = None,
    openai_model: str | None = None,
    interrupt_trigger_delay: int | None = None,
    max_interrupt_attempts: int | None = None,
    greet_mode: bool | None = None,
    tour_ask_name: bool | None = None,
) -> OrchestratorConfig:
    """Load config. CLI/args override env vars."""
    def _str(k: str, d: str, override: str | None) -> str:
        return override if override is not None else _env(k, d)

    def _int(k: str, d: int, override: int | None) -> int:
        v = override
        if v is not None:
            return v
        return int(_env(k, str(d)))

    def _float(k: str, d: float, override: float | None) -> float:
        v = override
        if v is not None:
            return v
        return float(_env(k, str(d)))

    return OrchestratorConfig(
        robot_adapter=_str("GUIDEBOT_ROBOT_ADAPTER", "mock", robot_adapter),
        log_level=_str("GUIDEBOT_LOG_LEVEL", "INFO", log_level),
        ui_host=_str("GUIDEBOT_UI_HOST", "127.0.0.1", ui_host),
        ui_port=_int("GUIDEBOT_UI_PORT", 0, ui_port),
        status_url=_str("GUIDEBOT_STATUS_URL", "", status_url),
        telemetry_hz=_float("GUIDEBOT_TELEMETRY_HZ", 1.0, telemetry_hz),
        event_log_path=_str("GUIDEBOT_EVENT_LOG", "logs/interaction_events.jsonl", event_log_path),
        openai_api_key=_str("OPENAI_API_KEY", "", openai_api_key),
        openai_model=_str("GUIDEBOT_OPENAI_MODEL", "gpt-4o-mini", openai_model),
        interrupt_trigger_delay=_int("GUIDEBOT_INTERRUPT_DELAY", 10, interrupt_trigger_delay),
        max_interrupt_attempts=_int("GUIDEBOT_MAX_INTERRUPT_ATTEMPTS", 6, max_interrupt_attempts),
        greet_mode=greet_mode if greet_mode is not None else (_env("GUIDEBOT_GREET_MODE", "1") == "1"),
        tour_ask_name=(
            tour_ask_name if tour_ask_name is not None else (_env("GUIDEBOT_TOUR_ASK_NAME", "0") == "1")
        ),
    )


@dataclass(frozen=True)
class OrchestratorConfig:
    """Configuration for the orchestrator agent."""

    # Robot adapter: mock (MockRobot) | local (LocalRobot: desktop TTS + mic)
    robot_adapter: str = "mock"

    # Log level
    log_level: str = "INFO"

    # UI HTTP server (0 = disabled)
    ui_host: str = "127.0.0.1"
    ui_port: int = 0

    # Dashboard URL for status pushes (empty = no posting); push rate (Hz)
    status_url: str = ""
    telemetry_hz: float = 1.0

    # JSONL timeline of interrupts / restarts / dialogue outcomes (empty = disabled)
    event_log_path: str = "logs/interaction_events.jsonl"

    # Remote completion service (empty key = dialogue apologises instead of answering)
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    # ---- cadences (seconds) ----
    # Cooperative scheduling unit for every polling loop
    tick_s: float = 0.1
    # wait_until() poll period; delays below counted in polls are multiples of this
    poll_s: float = 1.0
    # Perception sampling interval
    sample_interval_s: float = 0.5

    # ---- perception ----
    close_distance_m: float = 1.0
    midrange_distance_m: float = 1.5
    angle_dead_zone_rad: float = 0.1
    # Lateral motion thresholds (rad) per distance bucket: far, midrange, close
    x_motion_far_rad: float = 0.07
    x_motion_midrange_rad: float = 0.12
    x_motion_close_rad: float = 0.17
    y_motion_threshold_m: float = 0.01

    # ---- interrupts ----
    # Polls the trigger must hold before escalating (second stage waits half of it)
    interrupt_trigger_delay: int = 10
    max_interrupt_attempts: int = 6
    # Polls between spoken warnings while interrupted
    warning_interval: int = 10
    # Polls between idle (nobody around) attempts
    idle_reset_interval: int = 10
    interrupt_tilt_deg: int = 20

    # ---- greet / patrol ----
    greet_mode: bool = True
    # Polls a detection must persist before greeting
    greet_detection_delay: int = 1
    # Ticks an engagement is monitored (100 ticks = 10 s)
    greet_engage_ticks: int = 100
    # Polls to wait for a vanished user to come back
    greet_return_wait: int = 5
    greet_cooldown_s: float = 5.0
    close_tilt_deg: int = 60
    patrol_wait: int = 5

    # ---- dialogue ----
    thinking_delay_min_s: float = 7.0
    thinking_delay_max_s: float = 15.0
    # Polls the user gets to step back before being reminded again
    step_back_wait: int = 50

    # ---- scripted tour ----
    # Ask the guest's name before the first stop
    tour_ask_name: bool = False
    # Pause after a "not yet" before asking to move on again
    tour_confirm_retry_s: float = 5.0

    # ---- constraint follow ----
    follow_default_angle_deg: float = 270.0
    follow_boundary_deg: float = 90.0
    follow_angle_divisor: float = 1.70
    follow_recentre_threshold_deg: float = 2.0
