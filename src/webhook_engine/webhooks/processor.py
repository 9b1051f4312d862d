"""Webhook event processor.

Runs one event through its matched handler under a timeout, records
the delivery attempt, and hands failures to the retry controller.
Handler exceptions are converted to failure results here so they
never reach the retry logic or the scheduler loop.
"""

import asyncio
import inspect
import logging
import time
from datetime import datetime
from typing import Callable

from ..core.settings import EngineSettings, MissingHandlerPolicy
from .errors import HandlerExecutionError, HandlerNotFoundError, ProcessingTimeoutError
from .models import (
    DeliveryAttempt,
    EventStatus,
    HandlerRegistration,
    HandlerResult,
    RouteKey,
    WebhookEvent,
    utcnow,
)
from .registry import HandlerRegistry
from .retry import RetryController
from .store import EventStore

logger = logging.getLogger(__name__)


class EventProcessor:
    """Executes single processing attempts.

    The caller (the scheduler) must have claimed the event in the
    store's in-flight set; the processor releases it once the attempt
    has fully resolved.
    """

    def __init__(
        self,
        settings: EngineSettings,
        store: EventStore,
        registry: HandlerRegistry,
        retry_controller: RetryController,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.registry = registry
        self.retry_controller = retry_controller
        self.clock = clock

    async def process(self, event: WebhookEvent) -> DeliveryAttempt:
        """Run one attempt for ``event``.

        Returns:
            The recorded delivery attempt.
        """
        event.status = EventStatus.PROCESSING
        self.store.save(event)
        logger.info(f"Processing webhook: {event.source.value}:{event.type} ({event.id})")

        started = time.perf_counter()
        attempt_number = len(self.store.history(event.id)) + 1
        try:
            registration = self.registry.resolve(event.source, event.type)
            if registration is None:
                error = HandlerNotFoundError(str(RouteKey(event.source, event.type)))
                result = HandlerResult.fail(error.message)
            else:
                result = await self._invoke(registration, event)

            elapsed_ms = (time.perf_counter() - started) * 1000
            attempt = DeliveryAttempt(
                attempt_number=attempt_number,
                timestamp=self.clock(),
                success=result.success,
                error=result.error,
                response_time_ms=elapsed_ms,
            )
            self.store.append_attempt(event.id, attempt)

            if result.success:
                event.status = EventStatus.COMPLETED
                event.processing_time_ms = elapsed_ms
                event.completed_at = self.clock()
                event.next_retry_at = None
                self.store.save(event)
                logger.info(f"Webhook processed successfully: {event.id} ({elapsed_ms:.1f}ms)")
            else:
                event.processing_time_ms = elapsed_ms
                logger.error(f"Webhook processing failed: {event.id} - {result.error}")
                self.retry_controller.handle_retry(
                    event,
                    result.error or "Handler returned failure",
                    registration,
                    retryable=self._missing_handler_retryable() if registration is None else None,
                )
            return attempt
        except asyncio.CancelledError:
            # Stopped mid-attempt: give the event back to the queue untouched
            if event.status == EventStatus.PROCESSING:
                event.status = EventStatus.PENDING
                self.store.save(event)
            raise
        finally:
            self.store.release(event.id)

    async def _invoke(self, registration: HandlerRegistration, event: WebhookEvent) -> HandlerResult:
        """Call the handler under the processing timeout; never raises (except cancellation)."""
        timeout = self.settings.processing_timeout_seconds
        try:
            outcome = await asyncio.wait_for(self._call(registration, event), timeout=timeout)
            return HandlerResult.coerce(outcome)
        except asyncio.TimeoutError:
            return HandlerResult.fail(ProcessingTimeoutError(timeout).message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = HandlerExecutionError(f"{type(e).__name__}: {e}")
            logger.debug(f"Handler for {registration.key} raised", exc_info=True)
            return HandlerResult.fail(error.message)

    @staticmethod
    async def _call(registration: HandlerRegistration, event: WebhookEvent):
        # Handlers get a copy; only the processor mutates the stored event
        event_copy = event.model_copy(deep=True)
        if inspect.iscoroutinefunction(registration.handler):
            outcome = await registration.handler(event_copy)
        else:
            # Plain functions run in a worker thread so the timeout can fire
            # and the loop keeps dispatching
            outcome = await asyncio.to_thread(registration.handler, event_copy)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    def _missing_handler_retryable(self) -> bool:
        return self.settings.missing_handler_policy == MissingHandlerPolicy.RETRY
