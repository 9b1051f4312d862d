"""Webhooks module for reliable inbound webhook processing.

Provides a provider-agnostic ingestion engine with:
- Inbound receipt with fail-closed signature verification
- Handler registry keyed by (source, event_type) with wildcard fallback
- Concurrency-bounded dispatch, exponential backoff and a dead-letter queue
- Delivery history, statistics and health reporting
"""

from .engine import WebhookEngine
from .errors import (
    AuthenticationError,
    HandlerExecutionError,
    HandlerNotFoundError,
    NotFoundError,
    ProcessingTimeoutError,
    ValidationError,
    WebhookError,
)
from .models import (
    DeliveryAttempt,
    EventStatus,
    HandlerRegistration,
    HandlerResult,
    HealthStatus,
    ReceiveResult,
    RetryResult,
    RouteKey,
    WebhookEvent,
    WebhookSource,
    WebhookStats,
)
from .registry import HandlerRegistry
from .security import SignatureVerifierRegistry
from .store import EventStore, SqliteEventStore

__all__ = [
    "WebhookEngine",
    "WebhookError",
    "ValidationError",
    "AuthenticationError",
    "NotFoundError",
    "HandlerNotFoundError",
    "HandlerExecutionError",
    "ProcessingTimeoutError",
    "DeliveryAttempt",
    "EventStatus",
    "HandlerRegistration",
    "HandlerResult",
    "HealthStatus",
    "ReceiveResult",
    "RetryResult",
    "RouteKey",
    "WebhookEvent",
    "WebhookSource",
    "WebhookStats",
    "HandlerRegistry",
    "SignatureVerifierRegistry",
    "EventStore",
    "SqliteEventStore",
]
