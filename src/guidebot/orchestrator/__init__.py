"""Orchestrator module - shared state, interrupt system, speech, navigation, greet, dialogue, tour."""

from .config import OrchestratorConfig, load_config
from .state import InteractionState, InterruptFlags, TourState

__all__ = ["OrchestratorAgent", "OrchestratorConfig", "load_config", "InteractionState", "InterruptFlags", "TourState"]


def __getattr__(name: str):
    """Lazy-load OrchestratorAgent so the state machines can be used without the UI/HTTP stack."""
    if name == "OrchestratorAgent":
        from .agent import OrchestratorAgent
        return OrchestratorAgent
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
