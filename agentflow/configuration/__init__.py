"""Configuration of the engine: settings and logging setup."""

from agentflow.configuration.config import Settings, get_settings
from agentflow.configuration.logging import setup_logging

__all__ = ["Settings", "get_settings", "setup_logging"]
