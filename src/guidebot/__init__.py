"""guidebot - interaction orchestrator for a mobile social robot."""

__version__ = "0.3.0"
