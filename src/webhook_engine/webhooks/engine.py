"""Webhook engine service object.

Wires the receiver, handler registry, event store, processor, retry
controller and scheduler into one explicitly-owned service with a
start/stop lifecycle. Construct one per process (or per test) and
pass it to whoever needs it.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Union

from ..core.settings import EngineSettings
from ..security.audit import AuditLog
from .errors import NotFoundError, WebhookError
from .models import (
    DeliveryAttempt,
    EventStatus,
    HandlerRegistration,
    HealthStatus,
    ReceiveResult,
    RetryResult,
    WebhookEvent,
    WebhookHandler,
    WebhookSource,
    WebhookStats,
    utcnow,
)
from .processor import EventProcessor
from .receiver import WebhookReceiver
from .registry import HandlerRegistry
from .retry import RetryController
from .scheduler import DispatchScheduler
from .security import SignatureVerifier, SignatureVerifierRegistry, build_default_verifiers
from .stats import compute_health, compute_stats
from .store import EventStore, SqliteEventStore

logger = logging.getLogger(__name__)


class WebhookEngine:
    """Reliable webhook ingestion and processing engine.

    Features:
    - Fail-closed signature verification at receipt
    - Concurrency-bounded dispatch with per-event mutual exclusion
    - Exponential backoff retries and a dead-letter queue
    - Delivery history, statistics and health for monitoring

    Example:
        engine = WebhookEngine(EngineSettings(max_concurrent_processing=5))

        @engine.handler("stripe", "payment_intent.succeeded", max_retries=5)
        async def on_payment(event: WebhookEvent):
            await record_payment(event.payload)
            return HandlerResult.ok()

        await engine.start()
        result = engine.receive_webhook("stripe", raw_body, headers)
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        store: Optional[EventStore] = None,
        registry: Optional[HandlerRegistry] = None,
        verifiers: Optional[SignatureVerifierRegistry] = None,
        audit_log: Optional[AuditLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the engine.

        Args:
            settings: Engine configuration (defaults if omitted).
            store: Event store; defaults to SQLite when ``settings.store_path``
                is set, in-memory otherwise.
            registry: Handler registry.
            verifiers: Signature verifiers; defaults to the reference
                verifiers for every source in ``settings.secrets``.
            audit_log: Audit/monitoring log.
            clock: Source of the current UTC time.
        """
        self.settings = settings or EngineSettings()
        if store is None:
            store = SqliteEventStore(self.settings.store_path) if self.settings.store_path else EventStore()
        self.store = store
        self.registry = registry if registry is not None else HandlerRegistry()
        if verifiers is None:
            verifiers = build_default_verifiers(
                self.settings.secrets, self.settings.signature_tolerance_seconds
            )
        self.verifiers = verifiers
        self.audit_log = audit_log if audit_log is not None else AuditLog()
        self.clock = clock

        self.receiver = WebhookReceiver(
            self.settings, self.store, self.registry, self.verifiers, self.audit_log, clock
        )
        self.retry_controller = RetryController(self.store, self.audit_log, clock)
        self.processor = EventProcessor(
            self.settings, self.store, self.registry, self.retry_controller, clock
        )
        self.scheduler = DispatchScheduler(self.settings, self.store, self.processor, clock)

        logger.info("Webhook engine initialized")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_handler(
        self,
        source: Union[WebhookSource, str],
        event_type: str,
        handler: WebhookHandler,
        retryable: bool = True,
        max_retries: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
    ) -> HandlerRegistration:
        """Register a handler for ``(source, event_type)``; ``"*"`` is the source wildcard."""
        return self.registry.register(HandlerRegistration(
            source=WebhookSource(source),
            event_type=event_type,
            handler=handler,
            retryable=retryable,
            max_retries=max_retries,
            retry_delay_seconds=retry_delay_seconds,
        ))

    def handler(self, source: Union[WebhookSource, str], event_type: str, **policy):
        """Decorator form of register_handler.

        Example:
            @engine.handler("shopify", "orders/create")
            async def on_order(event):
                ...
        """
        def decorator(func: WebhookHandler) -> WebhookHandler:
            self.register_handler(source, event_type, func, **policy)
            return func
        return decorator

    def register_verifier(self, source: Union[WebhookSource, str], verifier: SignatureVerifier) -> None:
        self.verifiers.register(source, verifier)

    # ------------------------------------------------------------------
    # Receipt
    # ------------------------------------------------------------------

    def receive_webhook(
        self,
        source: Union[WebhookSource, str],
        raw_payload: Union[str, bytes],
        headers: Optional[Dict[str, str]] = None,
        tenant_id: Optional[str] = None,
    ) -> ReceiveResult:
        """Accept an inbound webhook.

        Receipt failures are returned, never raised: a ValidationError or
        AuthenticationError yields ``success=False`` and queues nothing.
        """
        try:
            event, duplicate = self.receiver.receive(source, raw_payload, headers, tenant_id)
        except WebhookError as e:
            return ReceiveResult(
                success=False,
                error=e.message,
                error_type=type(e).__name__,
                status_code=e.status_code,
            )
        return ReceiveResult(success=True, event_id=event.id, duplicate=duplicate)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.scheduler.start()

    async def stop(self, drain: bool = True) -> None:
        await self.scheduler.stop(drain=drain)

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    async def __aenter__(self) -> "WebhookEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    def close(self) -> None:
        """Release the store's resources (e.g. the SQLite connection)."""
        self.store.close()

    # ------------------------------------------------------------------
    # Manual recovery
    # ------------------------------------------------------------------

    def retry_event(self, event_id: str) -> RetryResult:
        """Move a dead-lettered event back to the queue with a fresh retry budget."""
        try:
            self._revive(event_id)
        except NotFoundError as e:
            return RetryResult(success=False, error=e.message)
        return RetryResult(success=True)

    def _revive(self, event_id: str) -> WebhookEvent:
        event = self.store.revive(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found in dead letter queue")
        logger.info(f"Event manually queued for retry: {event_id}")
        return event

    def list_dead_letters(self) -> List[WebhookEvent]:
        return self.store.dead_letter_events()

    def clear_dead_letter_queue(self) -> int:
        cleared = self.store.clear_dead_letters()
        logger.info(f"Cleared {cleared} events from dead letter queue")
        return cleared

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """Purge completed and dead-letter events older than the retention window.

        Returns:
            Number of events removed.
        """
        cutoff = (now or self.clock()) - timedelta(days=self.settings.retention_days)
        removed = self.store.purge_older_than(cutoff)
        if removed:
            logger.info(f"Cleaned up {removed} old webhook events")
        return removed

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_event(self, event_id: str) -> Optional[WebhookEvent]:
        event = self.store.get(event_id)
        return event.model_copy(deep=True) if event is not None else None

    def get_delivery_history(self, event_id: str) -> List[DeliveryAttempt]:
        return self.store.history(event_id)

    def get_stats(self) -> WebhookStats:
        return compute_stats(self.store.all_events())

    def get_health_status(self) -> HealthStatus:
        live = self.store.live_events()
        queue_size = sum(
            1 for e in live if e.status in (EventStatus.PENDING, EventStatus.PROCESSING)
        )
        return compute_health(
            self.settings,
            queue_size=queue_size,
            processing_count=self.store.in_flight_count,
            dead_letter_size=self.store.dead_letter_count,
            is_running=self.is_running,
        )
