"""Core configuration and logging for the webhook engine."""

from .logging_config import setup_logging
from .settings import EngineSettings, MissingHandlerPolicy

__all__ = ["EngineSettings", "MissingHandlerPolicy", "setup_logging"]
