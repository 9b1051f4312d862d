"""Webhook event storage.

The EventStore owns all shared mutable state of the engine: the live
event collection, the in-flight set, the dead-letter collection and
the per-event delivery history. Readers get copies so they never see
(or cause) partial mutation.

SqliteEventStore adds write-through durability so pending and
dead-letter events survive a process restart.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from .models import DeliveryAttempt, EventStatus, WebhookEvent

logger = logging.getLogger(__name__)


class EventStore:
    """In-memory event store.

    Live events are kept in insertion order, which is also the
    scheduler's dispatch order.
    """

    def __init__(self):
        self._events: Dict[str, WebhookEvent] = {}
        self._dead_letters: Dict[str, WebhookEvent] = {}
        self._in_flight: Set[str] = set()
        self._history: Dict[str, List[DeliveryAttempt]] = {}

    # -- persistence hooks (no-ops in memory) --------------------------------

    def _persist_event(self, event: WebhookEvent) -> None:
        pass

    def _persist_attempt(self, event_id: str, attempt: DeliveryAttempt) -> None:
        pass

    def _delete_event(self, event_id: str) -> None:
        pass

    # -- writes --------------------------------------------------------------

    def add(self, event: WebhookEvent) -> WebhookEvent:
        """Append a new event to the live collection."""
        if event.id in self._events or event.id in self._dead_letters:
            raise ValueError(f"Duplicate event id: {event.id}")
        self._events[event.id] = event
        self._persist_event(event)
        return event

    def save(self, event: WebhookEvent) -> None:
        """Record that an event's fields were mutated."""
        self._persist_event(event)

    def claim(self, event_id: str) -> bool:
        """Add an event to the in-flight set.

        Returns:
            False if it was already in flight.
        """
        if event_id in self._in_flight:
            return False
        self._in_flight.add(event_id)
        return True

    def release(self, event_id: str) -> None:
        self._in_flight.discard(event_id)

    def append_attempt(self, event_id: str, attempt: DeliveryAttempt) -> None:
        self._history.setdefault(event_id, []).append(attempt)
        self._persist_attempt(event_id, attempt)

    def move_to_dead_letter(self, event: WebhookEvent) -> None:
        """Move an event from the live collection to the dead-letter collection."""
        self._events.pop(event.id, None)
        self._dead_letters[event.id] = event
        self._persist_event(event)

    def revive(self, event_id: str) -> Optional[WebhookEvent]:
        """Move a dead-letter event back to the live collection.

        Resets its retry state. Returns None if it is not dead-lettered.
        """
        event = self._dead_letters.pop(event_id, None)
        if event is None:
            return None
        event.status = EventStatus.PENDING
        event.retry_count = 0
        event.next_retry_at = None
        event.error_message = None
        event.dead_lettered_at = None
        self._events[event.id] = event
        self._persist_event(event)
        return event

    def remove(self, event_id: str) -> bool:
        """Delete an event (live or dead-letter) and its history."""
        event = self._events.pop(event_id, None) or self._dead_letters.pop(event_id, None)
        if event is None:
            return False
        self._history.pop(event_id, None)
        self._delete_event(event_id)
        return True

    def clear_dead_letters(self) -> int:
        ids = list(self._dead_letters)
        for event_id in ids:
            self.remove(event_id)
        return len(ids)

    def purge_older_than(self, cutoff: datetime) -> int:
        """Remove completed and dead-letter events that ended before ``cutoff``.

        Returns:
            Number of events removed.
        """
        expired = [
            e.id for e in self._events.values()
            if e.status == EventStatus.COMPLETED
            and (e.completed_at or e.received_at) < cutoff
        ]
        expired += [
            e.id for e in self._dead_letters.values()
            if (e.dead_lettered_at or e.received_at) < cutoff
        ]
        for event_id in expired:
            self.remove(event_id)
        return len(expired)

    # -- reads ---------------------------------------------------------------

    def get(self, event_id: str) -> Optional[WebhookEvent]:
        """Return the stored event object (not a copy); None if unknown."""
        return self._events.get(event_id) or self._dead_letters.get(event_id)

    def get_dead_letter(self, event_id: str) -> Optional[WebhookEvent]:
        return self._dead_letters.get(event_id)

    def ready_events(self, now: datetime) -> List[WebhookEvent]:
        """Pending, not in flight, and past any retry timer, in insertion order."""
        return [
            e for e in list(self._events.values())
            if e.id not in self._in_flight and e.is_ready(now)
        ]

    def is_in_flight(self, event_id: str) -> bool:
        return event_id in self._in_flight

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def history(self, event_id: str) -> List[DeliveryAttempt]:
        return list(self._history.get(event_id, []))

    def live_events(self) -> List[WebhookEvent]:
        return [e.model_copy(deep=True) for e in list(self._events.values())]

    def dead_letter_events(self) -> List[WebhookEvent]:
        return [e.model_copy(deep=True) for e in list(self._dead_letters.values())]

    def all_events(self) -> List[WebhookEvent]:
        return self.live_events() + self.dead_letter_events()

    @property
    def live_count(self) -> int:
        return len(self._events)

    @property
    def dead_letter_count(self) -> int:
        return len(self._dead_letters)

    def close(self) -> None:
        pass


class SqliteEventStore(EventStore):
    """Event store with write-through persistence to SQLite.

    Every mutation is written to ``webhook_events`` (one row per event,
    full JSON document) and ``delivery_attempts`` (append-only). On
    construction the store re-hydrates from disk; events that were
    ``processing`` when the process died are reset to ``pending``.

    Example:
        store = SqliteEventStore("data/webhooks.db")
        engine = WebhookEngine(settings, store=store)
    """

    def __init__(self, db_path: Union[str, Path] = "data/webhooks.db"):
        super().__init__()
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_db()
        self._load()

    def _init_db(self):
        """Initialize the database schema."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS webhook_events (
                    id TEXT PRIMARY KEY,
                    seq INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    data TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS delivery_attempts (
                    event_id TEXT NOT NULL,
                    attempt_number INTEGER NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (event_id, attempt_number)
                )
            """)
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_webhook_events_status ON webhook_events(status)"
            )

    def _load(self):
        """Re-hydrate events and delivery history from disk."""
        recovered = 0
        rows = self._conn.execute("SELECT data FROM webhook_events ORDER BY seq").fetchall()
        for row in rows:
            event = WebhookEvent.model_validate_json(row["data"])
            if event.status == EventStatus.DEAD_LETTER:
                self._dead_letters[event.id] = event
                continue
            if event.status == EventStatus.PROCESSING:
                # The attempt died with the previous process
                event.status = EventStatus.PENDING
                self._persist_event(event)
                recovered += 1
            self._events[event.id] = event

        for row in self._conn.execute(
            "SELECT event_id, data FROM delivery_attempts ORDER BY event_id, attempt_number"
        ):
            self._history.setdefault(row["event_id"], []).append(
                DeliveryAttempt.model_validate_json(row["data"])
            )

        if rows:
            logger.info(
                f"Loaded {len(self._events)} live and {len(self._dead_letters)} dead-letter "
                f"webhook events from {self.db_path} ({recovered} interrupted attempts reset)"
            )

    def _persist_event(self, event: WebhookEvent) -> None:
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO webhook_events (id, seq, status, data)
                VALUES (?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM webhook_events), ?, ?)
                ON CONFLICT(id) DO UPDATE SET status = excluded.status, data = excluded.data
                """,
                (event.id, event.status.value, event.model_dump_json()),
            )

    def _persist_attempt(self, event_id: str, attempt: DeliveryAttempt) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO delivery_attempts (event_id, attempt_number, data) VALUES (?, ?, ?)",
                (event_id, attempt.attempt_number, attempt.model_dump_json()),
            )

    def _delete_event(self, event_id: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM webhook_events WHERE id = ?", (event_id,))
            self._conn.execute("DELETE FROM delivery_attempts WHERE event_id = ?", (event_id,))

    def close(self) -> None:
        self._conn.close()
