"""Webhook Engine - reliable ingestion and processing of inbound webhooks."""

from .core.settings import EngineSettings
from .webhooks.engine import WebhookEngine

__version__ = "0.1.0"

__all__ = ["EngineSettings", "WebhookEngine", "__version__"]
