"""OpsPilot - tool-calling agent orchestrator with pluggable skills."""

__version__ = "0.1.0"
