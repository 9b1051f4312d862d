"""Audit and Monitoring Log.

Records security-relevant webhook activity (receipts, signature
rejections) and monitoring alerts (dead-lettered events):
- Tamper-evident event records
- Query by category, severity, action and event id
- Subscriber callbacks for real-time alerting
"""

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class EventSeverity(str, Enum):
    """How urgently an entry needs attention."""

    DEBUG = "debug"
    INFO = "info"
    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    ALERT = "alert"


class EventCategory(str, Enum):
    """Which part of the webhook pipeline produced an entry."""

    AUTHENTICATION = "authentication"
    SECURITY = "security"
    DELIVERY = "delivery"
    SYSTEM = "system"


_LOG_LEVELS = {
    EventSeverity.DEBUG: logging.DEBUG,
    EventSeverity.INFO: logging.INFO,
    EventSeverity.NOTICE: logging.INFO,
    EventSeverity.WARNING: logging.WARNING,
    EventSeverity.ERROR: logging.ERROR,
    EventSeverity.CRITICAL: logging.CRITICAL,
    EventSeverity.ALERT: logging.CRITICAL,
}


@dataclass
class AuditEvent:
    """A single audit log entry.

    Immutable record of an action or occurrence in the engine.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: EventSeverity = EventSeverity.INFO
    category: EventCategory = EventCategory.SYSTEM
    action: str = ""
    target_id: Optional[str] = None  # webhook event id, when there is one
    outcome: str = "success"  # success, failure, denied, error
    source_ip: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __post_init__(self):
        """Seal the entry with its hash."""
        self._hash = self._compute_hash()

    def _compute_hash(self) -> str:
        data = f"{self.id}:{self.timestamp.isoformat()}:{self.action}:{self.target_id}"
        return hashlib.sha256(data.encode()).hexdigest()[:16]

    @property
    def integrity_hash(self) -> str:
        return self._hash

    def to_dict(self) -> dict:
        """Plain-dict form for export."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "category": self.category.value,
            "action": self.action,
            "target_id": self.target_id,
            "outcome": self.outcome,
            "source_ip": self.source_ip,
            "details": self.details,
            "hash": self.integrity_hash,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class AuditLog:
    """In-memory audit log with query and subscription support.

    Every recorded event is also mirrored to this module's logger at a
    level matching its severity.

    Example:
        >>> log = AuditLog()
        >>> log.log("webhook.received", category=EventCategory.SECURITY, target_id="wh_1")
        >>> log.query(action="webhook.received")
    """

    def __init__(self, max_events: int = 10000) -> None:
        """Create an empty log.

        Args:
            max_events: Oldest entries are dropped beyond this size.
        """
        self.max_events = max_events
        self._events: list[AuditEvent] = []
        self._subscribers: list[Callable[[AuditEvent], None]] = []

    def record(self, event: AuditEvent) -> None:
        """Record an audit event and notify subscribers."""
        self._events.append(event)
        if len(self._events) > self.max_events:
            del self._events[: len(self._events) - self.max_events]

        logger.log(
            _LOG_LEVELS[event.severity],
            f"[{event.category.value}] {event.action} ({event.outcome}) {event.details}",
        )

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                logger.error(f"Audit subscriber {subscriber!r} failed: {e}")

    def log(
        self,
        action: str,
        severity: EventSeverity = EventSeverity.INFO,
        category: EventCategory = EventCategory.SYSTEM,
        **kwargs
    ) -> AuditEvent:
        """Build an AuditEvent from keyword fields and record it.

        Returns:
            AuditEvent: The recorded event.
        """
        event = AuditEvent(action=action, severity=severity, category=category, **kwargs)
        self.record(event)
        return event

    def query(
        self,
        action: Optional[str] = None,
        category: Optional[EventCategory] = None,
        severity: Optional[EventSeverity] = None,
        target_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Find recorded entries, oldest first.

        Args:
            action: Filter by action name.
            category: Filter by category.
            severity: Filter by minimum severity.
            target_id: Filter by webhook event id.
            limit: Maximum results (most recent last).

        Returns:
            list: Matching events.
        """
        severity_order = list(EventSeverity)
        results = []
        for event in self._events:
            if action and event.action != action:
                continue
            if category and event.category != category:
                continue
            if target_id and event.target_id != target_id:
                continue
            if severity and severity_order.index(event.severity) < severity_order.index(severity):
                continue
            results.append(event)
        return results[-limit:] if limit else results

    def subscribe(self, callback: Callable[[AuditEvent], None]) -> None:
        """Subscribe to new events."""
        self._subscribers.append(callback)

    @property
    def event_count(self) -> int:
        return len(self._events)
