"""Webhook data models.

Defines the Pydantic schemas for inbound webhook events, their
delivery-attempt history, handler outcomes and the read-side
projections (stats, health) used throughout the webhooks package.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


WILDCARD_EVENT_TYPE = "*"


def utcnow() -> datetime:
    """Timezone-aware current UTC time (the engine's default clock)."""
    return datetime.now(timezone.utc)


def generate_event_id() -> str:
    return f"wh_{uuid.uuid4().hex}"


class WebhookSource(str, Enum):
    """Platforms the engine accepts webhooks from."""

    STRIPE = "stripe"
    PAYPAL = "paypal"
    SHOPIFY = "shopify"
    MERCADOLIBRE = "mercadolibre"
    OXXO = "oxxo"
    MARKETPLACE = "marketplace"
    CUSTOM = "custom"


class EventStatus(str, Enum):
    """Lifecycle status of a webhook event."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    DEAD_LETTER = "dead_letter"


class WebhookEvent(BaseModel):
    """One inbound notification and its processing state."""

    id: str = Field(default_factory=generate_event_id)
    source: WebhookSource
    type: str = "unknown"
    payload: Dict[str, Any] = Field(default_factory=dict)
    signature: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    tenant_id: Optional[str] = None
    provider_event_id: Optional[str] = None

    # Retry policy, resolved at receipt time
    retry_count: int = 0
    max_retries: int = 3
    retry_delay_seconds: float = 30.0
    retryable: bool = True
    next_retry_at: Optional[datetime] = None

    status: EventStatus = EventStatus.PENDING
    processing_time_ms: Optional[float] = None
    error_message: Optional[str] = None

    received_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    dead_lettered_at: Optional[datetime] = None

    def is_ready(self, now: datetime) -> bool:
        """Pending and past its retry timer (if any)."""
        if self.status != EventStatus.PENDING:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now


class DeliveryAttempt(BaseModel):
    """Append-only record of one processing attempt."""

    model_config = ConfigDict(frozen=True)

    attempt_number: int
    timestamp: datetime = Field(default_factory=utcnow)
    success: bool
    error: Optional[str] = None
    response_time_ms: float = 0.0


class HandlerResult(BaseModel):
    """Explicit outcome of a handler invocation: success or failure-with-reason."""

    model_config = ConfigDict(frozen=True)

    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "HandlerResult":
        return cls(success=True)

    @classmethod
    def fail(cls, reason: str) -> "HandlerResult":
        return cls(success=False, error=reason)

    @classmethod
    def coerce(cls, value: Any) -> "HandlerResult":
        """Normalize whatever a handler returned into a HandlerResult.

        Accepts a HandlerResult, a ``{"success": ..., "error": ...}`` mapping,
        a bool, or None (a handler that returns normally succeeded).
        """
        if isinstance(value, HandlerResult):
            return value
        if value is None:
            return cls.ok()
        if isinstance(value, bool):
            return cls.ok() if value else cls.fail("Handler returned failure")
        if isinstance(value, dict):
            result = cls.model_validate(value)
            if not result.success and not result.error:
                return cls.fail("Handler returned failure")
            return result
        raise TypeError(f"Unsupported handler result type: {type(value).__name__}")


HandlerReturn = Union[HandlerResult, Dict[str, Any], bool, None]
WebhookHandler = Callable[[WebhookEvent], Union[Awaitable[HandlerReturn], HandlerReturn]]


class RouteKey(NamedTuple):
    """Typed routing key: (source, event_type)."""

    source: WebhookSource
    event_type: str

    @property
    def is_wildcard(self) -> bool:
        return self.event_type == WILDCARD_EVENT_TYPE

    def wildcard(self) -> "RouteKey":
        return RouteKey(self.source, WILDCARD_EVENT_TYPE)

    def __str__(self) -> str:
        return f"{self.source.value}:{self.event_type}"


class HandlerRegistration(BaseModel):
    """Binding of a route key to a handler and its retry policy."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    source: WebhookSource
    event_type: str
    handler: WebhookHandler
    retryable: bool = True
    max_retries: Optional[int] = Field(None, ge=0)
    retry_delay_seconds: Optional[float] = Field(None, ge=0)

    @property
    def key(self) -> RouteKey:
        return RouteKey(self.source, self.event_type)


class ReceiveResult(BaseModel):
    """Outcome of receive_webhook, returned to the HTTP layer."""

    success: bool
    event_id: Optional[str] = None
    duplicate: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None
    status_code: int = 200


class RetryResult(BaseModel):
    """Outcome of a manual dead-letter retry."""

    success: bool
    error: Optional[str] = None


class SourceStats(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0
    average_time_ms: float = 0.0


class WebhookStats(BaseModel):
    """Read-side aggregate over live and dead-letter events."""

    total_events: int = 0
    pending_events: int = 0
    processing_events: int = 0
    completed_events: int = 0
    dead_letter_events: int = 0
    retrying_events: int = 0
    average_processing_time_ms: float = 0.0
    success_rate: float = 0.0
    by_source: Dict[str, SourceStats] = Field(default_factory=dict)


class HealthState(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"


class HealthStatus(BaseModel):
    status: HealthState
    queue_size: int
    processing_count: int
    dead_letter_size: int
    is_running: bool
