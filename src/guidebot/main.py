"""Entrypoint for the guidebot interaction orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import Iterator

import uvicorn

from guidebot.orchestrator.agent import OrchestratorAgent
from guidebot.orchestrator.config import OrchestratorConfig, load_config
from guidebot.orchestrator.tour import TourStop, load_tour
from guidebot.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    p = argparse.ArgumentParser(
        description="Guidebot - social robot interaction orchestrator. Runs until Ctrl+C.",
    )
    p.add_argument(
        "--robot",
        choices=["mock", "local"],
        default=None,
        help="Robot adapter: mock (simulated) or local (simulated base, real TTS + microphone)",
    )
    p.add_argument("--ui-port", type=int, default=None, help="Serve the UI HTTP API on this port (0 = off)")
    p.add_argument("--ui-host", type=str, default=None, help="UI HTTP API bind address (default 127.0.0.1)")
    p.add_argument("--status-url", type=str, default=None, help="Dashboard base URL for status pushes")
    p.add_argument("--telemetry-hz", type=float, default=None, help="Status push rate Hz (default 1)")
    p.add_argument("--tour-file", type=str, default="", help="JSON file with the scripted tour stops")
    p.add_argument("--event-log", type=str, default=None, help="JSONL interaction timeline path ('' = off)")
    p.add_argument("--no-greet", action="store_false", dest="greet_mode", default=None,
                   help="Start with greet mode off")
    p.add_argument("--log-level", type=str, default=None, help="Log level")
    return p.parse_args(argv)


class UIServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the agent's loop handlers."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


async def _serve(agent: OrchestratorAgent, config: OrchestratorConfig) -> None:
    """Run the agent, plus the UI server on the same loop when a port is set."""
    if not config.ui_port:
        await agent.run()
        return

    from guidebot.comms.ui_server import create_app

    server = UIServer(
        uvicorn.Config(create_app(agent), host=config.ui_host, port=config.ui_port, log_level="warning")
    )
    ui_task = asyncio.create_task(server.serve(), name="ui_server")
    logger.info("UI server on http://%s:%d", config.ui_host, config.ui_port)
    try:
        await agent.run()
    finally:
        server.should_exit = True
        await ui_task


def main(argv: list[str] | None = None) -> int:
    """Run orchestrator. Returns 0 on success. Ctrl+C for clean shutdown."""
    args = parse_args(argv)
    config = load_config(
        robot_adapter=args.robot,
        log_level=args.log_level,
        ui_host=args.ui_host,
        ui_port=args.ui_port,
        status_url=args.status_url,
        telemetry_hz=args.telemetry_hz,
        event_log_path=args.event_log,
        greet_mode=args.greet_mode,
    )
    setup_logging(config.log_level)

    stops: list[TourStop] = []
    if args.tour_file:
        try:
            stops = load_tour(args.tour_file)
        except (OSError, ValueError) as e:
            print(f"Error: cannot load tour file: {e}")
            return 1
        logger.info("Loaded %d tour stop(s) from %s", len(stops), args.tour_file)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    agent = OrchestratorAgent(config, tour_stops=stops)

    def shutdown() -> None:
        agent.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown)
        except NotImplementedError:
            pass  # Windows

    try:
        loop.run_until_complete(_serve(agent, config))
    except KeyboardInterrupt:
        agent.request_stop()
        loop.run_until_complete(agent._shutdown())
    finally:
        loop.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
