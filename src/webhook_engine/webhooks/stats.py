"""Read-side projections over the event store: statistics and health."""

from typing import Iterable

from ..core.settings import EngineSettings
from .models import (
    EventStatus,
    HealthState,
    HealthStatus,
    SourceStats,
    WebhookEvent,
    WebhookStats,
)


def compute_stats(events: Iterable[WebhookEvent]) -> WebhookStats:
    """Aggregate counts, success rate and timings over a snapshot of events."""
    stats = WebhookStats()
    completed_time = 0.0
    source_times: dict[str, float] = {}

    for event in events:
        stats.total_events += 1
        source = stats.by_source.setdefault(event.source.value, SourceStats())
        source.total += 1

        if event.status == EventStatus.PENDING:
            stats.pending_events += 1
            if event.retry_count > 0:
                stats.retrying_events += 1
        elif event.status == EventStatus.PROCESSING:
            stats.processing_events += 1
        elif event.status == EventStatus.COMPLETED:
            stats.completed_events += 1
            source.completed += 1
            completed_time += event.processing_time_ms or 0.0
            source_times[event.source.value] = (
                source_times.get(event.source.value, 0.0) + (event.processing_time_ms or 0.0)
            )
        elif event.status == EventStatus.DEAD_LETTER:
            stats.dead_letter_events += 1
            source.failed += 1

    if stats.completed_events:
        stats.average_processing_time_ms = completed_time / stats.completed_events
    if stats.total_events:
        stats.success_rate = stats.completed_events / stats.total_events

    for name, source in stats.by_source.items():
        if source.completed:
            source.average_time_ms = source_times[name] / source.completed

    return stats


def compute_health(
    settings: EngineSettings,
    queue_size: int,
    processing_count: int,
    dead_letter_size: int,
    is_running: bool,
) -> HealthStatus:
    """Derive a coarse health label from queue and dead-letter sizes."""
    if dead_letter_size > settings.dead_letter_error_threshold:
        status = HealthState.ERROR
    elif (
        queue_size > settings.queue_warning_threshold
        or dead_letter_size > settings.dead_letter_warning_threshold
    ):
        status = HealthState.WARNING
    else:
        status = HealthState.HEALTHY

    return HealthStatus(
        status=status,
        queue_size=queue_size,
        processing_count=processing_count,
        dead_letter_size=dead_letter_size,
        is_running=is_running,
    )
