"""Retry controller.

Decides what happens to an event after a failed attempt: schedule a
retry with exponential backoff, or escalate to the dead-letter
collection. The decision itself is a pure function of the event's
retry state and policy.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, NamedTuple, Optional

from ..security.audit import AuditLog, EventCategory, EventSeverity
from .models import EventStatus, HandlerRegistration, WebhookEvent, utcnow
from .store import EventStore

logger = logging.getLogger(__name__)


class RetryDecision(NamedTuple):
    dead_letter: bool
    delay_seconds: float = 0.0


def backoff_delay(base_delay_seconds: float, retry_count: int) -> float:
    """Delay before the n-th retry: ``base * 2 ** (n - 1)``."""
    return base_delay_seconds * (2 ** max(retry_count - 1, 0))


def decide_retry(
    retry_count: int,
    max_retries: int,
    retryable: bool,
    base_delay_seconds: float,
) -> RetryDecision:
    """Decide the outcome of a failed attempt.

    Args:
        retry_count: The event's retry count, already incremented for this failure.
        max_retries: The event's retry budget.
        retryable: False dead-letters on the first failure.
        base_delay_seconds: Base of the exponential backoff.

    Returns:
        RetryDecision with the delay to wait when not dead-lettered.
    """
    if retry_count >= max_retries or not retryable:
        return RetryDecision(dead_letter=True)
    return RetryDecision(dead_letter=False, delay_seconds=backoff_delay(base_delay_seconds, retry_count))


class RetryController:
    """Applies retry decisions to events in the store."""

    def __init__(
        self,
        store: EventStore,
        audit_log: AuditLog,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.audit_log = audit_log
        self.clock = clock

    def handle_retry(
        self,
        event: WebhookEvent,
        error_message: str,
        registration: Optional[HandlerRegistration] = None,
        retryable: Optional[bool] = None,
    ) -> RetryDecision:
        """Record a failed attempt and schedule a retry or dead-letter the event.

        Args:
            event: The event whose attempt failed.
            error_message: Reason for the failure.
            registration: The handler matched for this attempt, if any.
            retryable: Explicit override (used for missing handlers).

        Returns:
            The decision that was applied.
        """
        event.retry_count += 1
        event.error_message = error_message

        if retryable is None:
            retryable = registration.retryable if registration is not None else event.retryable

        decision = decide_retry(
            event.retry_count,
            event.max_retries,
            retryable,
            event.retry_delay_seconds,
        )

        if decision.dead_letter:
            event.status = EventStatus.DEAD_LETTER
            event.next_retry_at = None
            event.dead_lettered_at = self.clock()
            self.store.move_to_dead_letter(event)

            logger.warning(
                f"Webhook moved to dead letter queue: {event.id} "
                f"({event.retry_count} attempts failed)"
            )
            self.audit_log.log(
                "webhook.dead_lettered",
                severity=EventSeverity.ALERT,
                category=EventCategory.DELIVERY,
                target_id=event.id,
                outcome="failure",
                details={
                    "event_id": event.id,
                    "source": event.source.value,
                    "type": event.type,
                    "retry_count": event.retry_count,
                    "retryable": retryable,
                    "error": error_message,
                },
            )
        else:
            event.next_retry_at = self.clock() + timedelta(seconds=decision.delay_seconds)
            event.status = EventStatus.PENDING
            self.store.save(event)

            logger.info(
                f"Webhook scheduled for retry: {event.id} "
                f"(attempt {event.retry_count}/{event.max_retries}) in {decision.delay_seconds:g}s"
            )

        return decision
