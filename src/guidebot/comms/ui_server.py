"""UI FastAPI server - screen-side entry points into a running OrchestratorAgent."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from guidebot.orchestrator.behavior import BehaviorMode
from guidebot.orchestrator.navigation import NAMED_POSES

if TYPE_CHECKING:
    from guidebot.orchestrator.agent import OrchestratorAgent

logger = logging.getLogger(__name__)


def _accepted(**extra: Any) -> JSONResponse:
    return JSONResponse({"status": "ok", "accepted": True, **extra})


def _rejected(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse({"status": "error", "accepted": False, "detail": detail}, status_code=status_code)


def create_app(agent: OrchestratorAgent) -> FastAPI:
    """Build the UI app around `agent`. Must be served on the agent's event loop."""
    app = FastAPI(title="Guidebot UI")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/status")
    async def get_status() -> JSONResponse:
        """Observable flags for the screen (talking, going, listening, thinking, greet mode, ...)."""
        return JSONResponse(agent.status())

    @app.post("/speak")
    async def post_speak(payload: dict[str, Any]) -> JSONResponse:
        text = (payload.get("text") or "").strip()
        if not text:
            return _rejected(400, "text is required")
        agent.speak_for_ui(text)
        logger.info("UI speak: %s", text[:80])
        return _accepted()

    @app.post("/ask")
    async def post_ask(payload: dict[str, Any] | None = None) -> JSONResponse:
        context = ((payload or {}).get("context") or "").strip()
        if context:
            agent.ask_open_question_ui(context)
        else:
            agent.ask_open_question_ui()
        return _accepted()

    @app.post("/locations/{name}/query")
    async def post_query_location(name: str) -> JSONResponse:
        agent.query_named_location(name)
        return _accepted(location=name)

    @app.post("/poses/{pose_id}/go")
    async def post_go_to_pose(pose_id: int) -> JSONResponse:
        if pose_id not in NAMED_POSES:
            return _rejected(404, f"unknown pose {pose_id}")
        agent.go_to_pose(pose_id)
        return _accepted(pose_id=pose_id)

    @app.post("/greet-mode")
    async def post_greet_mode(payload: dict[str, Any]) -> JSONResponse:
        if not isinstance(payload.get("enabled"), bool):
            return _rejected(400, "enabled must be true or false")
        agent.set_greet_mode(payload["enabled"])
        return _accepted(is_greet_mode=payload["enabled"])

    @app.post("/behavior-mode")
    async def post_behavior_mode(payload: dict[str, Any]) -> JSONResponse:
        try:
            mode = BehaviorMode(str(payload.get("mode", "")).lower())
        except ValueError:
            return _rejected(400, f"unknown mode {payload.get('mode')!r}")
        agent.set_behavior_mode(mode)
        return _accepted(mode=mode.value)

    @app.post("/exit")
    async def post_exit() -> JSONResponse:
        agent.request_exit()
        return _accepted()

    @app.post("/tour/start")
    async def post_tour_start() -> JSONResponse:
        if agent.start_tour() is None:
            return _rejected(409, "no tour stops configured")
        return _accepted()

    return app
