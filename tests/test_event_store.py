"""Tests for event storage.

Covers the in-memory EventStore bookkeeping and SQLite persistence
across restarts.
"""

import json
from datetime import timedelta

import pytest

from conftest import run_tick
from webhook_engine import EngineSettings, WebhookEngine
from webhook_engine.webhooks.models import DeliveryAttempt, EventStatus, WebhookEvent
from webhook_engine.webhooks.store import EventStore, SqliteEventStore


# ============================================================================
# In-Memory Store Tests
# ============================================================================

class TestEventStore:
    """Tests for the in-memory store."""

    def test_add_rejects_duplicate_id(self):
        """Test an event id can only be added once."""
        store = EventStore()
        event = store.add(WebhookEvent(source="custom"))

        with pytest.raises(ValueError):
            store.add(WebhookEvent(id=event.id, source="custom"))

    def test_claim_is_exclusive(self):
        """Test an event can be claimed once until released."""
        store = EventStore()
        event = store.add(WebhookEvent(source="custom"))

        assert store.claim(event.id) is True
        assert store.claim(event.id) is False
        assert store.is_in_flight(event.id)

        store.release(event.id)
        assert store.in_flight_count == 0
        assert store.claim(event.id) is True

    def test_ready_excludes_in_flight(self, clock):
        """Test claimed events are not ready."""
        store = EventStore()
        first = store.add(WebhookEvent(source="custom"))
        second = store.add(WebhookEvent(source="custom"))
        store.claim(first.id)

        assert [e.id for e in store.ready_events(clock())] == [second.id]

    def test_readers_get_copies(self):
        """Test snapshots cannot mutate stored events."""
        store = EventStore()
        event = store.add(WebhookEvent(source="custom", payload={"n": 1}))

        snapshot = store.live_events()[0]
        snapshot.payload["n"] = 2
        snapshot.status = EventStatus.COMPLETED

        assert event.payload["n"] == 1
        assert event.status == EventStatus.PENDING

    def test_dead_letter_and_revive(self):
        """Test moving between the live and dead-letter collections."""
        store = EventStore()
        event = store.add(WebhookEvent(source="custom", retry_count=3, error_message="boom"))
        event.status = EventStatus.DEAD_LETTER
        store.move_to_dead_letter(event)

        assert store.live_count == 0
        assert store.dead_letter_count == 1
        assert store.get_dead_letter(event.id) is event

        revived = store.revive(event.id)
        assert revived.status == EventStatus.PENDING
        assert revived.retry_count == 0
        assert revived.error_message is None
        assert store.live_count == 1
        assert store.revive(event.id) is None

    def test_remove_drops_history(self):
        """Test removing an event also removes its attempts."""
        store = EventStore()
        event = store.add(WebhookEvent(source="custom"))
        store.append_attempt(event.id, DeliveryAttempt(attempt_number=1, success=True))

        assert store.remove(event.id) is True
        assert store.history(event.id) == []
        assert store.remove(event.id) is False


# ============================================================================
# SQLite Persistence Tests
# ============================================================================

class TestSqliteEventStore:
    """Tests for the write-through SQLite store."""

    def test_creates_database(self, tmp_path):
        """Test the database file and parent directory are created."""
        db_path = tmp_path / "nested" / "webhooks.db"

        store = SqliteEventStore(db_path)
        store.close()

        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_events_survive_restart(self, tmp_path, clock):
        """Test pending, retrying and dead-letter events reload with their history."""
        settings = EngineSettings(store_path=str(tmp_path / "webhooks.db"), default_retry_delay_seconds=1)
        engine = WebhookEngine(settings, clock=clock)
        engine.register_handler("custom", "flaky", lambda e: False, max_retries=5)
        engine.register_handler("custom", "dead", lambda e: False, max_retries=1)

        flaky = engine.receive_webhook("custom", json.dumps({"type": "flaky"}), {}).event_id
        dead = engine.receive_webhook("custom", json.dumps({"type": "dead"}), {}).event_id
        await run_tick(engine)
        fresh = engine.receive_webhook("custom", json.dumps({"type": "fresh", "n": 1}), {}).event_id
        engine.close()

        reopened = WebhookEngine(settings, clock=clock)
        try:
            event = reopened.get_event(flaky)
            assert event.status == EventStatus.PENDING
            assert event.retry_count == 1
            assert event.max_retries == 5
            assert event.next_retry_at == clock.now + timedelta(seconds=1)
            assert len(reopened.get_delivery_history(flaky)) == 1

            assert [e.id for e in reopened.list_dead_letters()] == [dead]
            assert reopened.get_delivery_history(dead)[0].success is False

            assert reopened.get_event(fresh).payload == {"type": "fresh", "n": 1}
            assert reopened.get_stats().total_events == 3
        finally:
            reopened.close()

    @pytest.mark.asyncio
    async def test_reloaded_events_keep_retry_timer(self, tmp_path, clock):
        """Test a reloaded retry is only dispatched once its timer is due."""
        settings = EngineSettings(store_path=str(tmp_path / "webhooks.db"), default_retry_delay_seconds=10)
        engine = WebhookEngine(settings, clock=clock)
        engine.register_handler("custom", "flaky", lambda e: False)
        event_id = engine.receive_webhook("custom", json.dumps({"type": "flaky"}), {}).event_id
        await run_tick(engine)
        engine.close()

        reopened = WebhookEngine(settings, clock=clock)
        try:
            reopened.register_handler("custom", "flaky", lambda e: True)
            assert reopened.scheduler.tick() == []

            clock.advance(10)
            await run_tick(reopened)

            assert reopened.get_event(event_id).status == EventStatus.COMPLETED
            assert [a.attempt_number for a in reopened.get_delivery_history(event_id)] == [1, 2]
        finally:
            reopened.close()

    def test_duplicate_detected_after_restart(self, tmp_path):
        """Test a redelivery after reopening the store is still a duplicate."""
        settings = EngineSettings(store_path=str(tmp_path / "webhooks.db"))
        body = json.dumps({"id": "evt_1", "type": "charge.succeeded"})

        engine = WebhookEngine(settings)
        first = engine.receive_webhook("stripe", body, {})
        engine.close()

        reopened = WebhookEngine(settings)
        try:
            second = reopened.receive_webhook("stripe", body, {})

            assert second.duplicate is True
            assert second.event_id == first.event_id
            assert reopened.get_stats().total_events == 1
        finally:
            reopened.close()

    def test_reloaded_duplicate_window_is_bounded(self, tmp_path):
        """Test only the newest provider ids are remembered on reload."""
        settings = EngineSettings(store_path=str(tmp_path / "webhooks.db"), dedup_window_size=2)
        engine = WebhookEngine(settings)
        for n in range(3):
            engine.receive_webhook("stripe", json.dumps({"id": f"evt_{n}", "type": "charge.succeeded"}), {})
        engine.close()

        reopened = WebhookEngine(settings)
        try:
            assert reopened.receive_webhook("stripe", json.dumps({"id": "evt_2", "type": "charge.succeeded"}), {}).duplicate
            assert not reopened.receive_webhook("stripe", json.dumps({"id": "evt_0", "type": "charge.succeeded"}), {}).duplicate
        finally:
            reopened.close()

    def test_interrupted_attempt_reset_to_pending(self, tmp_path):
        """Test an event left processing by a dead process is requeued on load."""
        db_path = tmp_path / "webhooks.db"
        store = SqliteEventStore(db_path)
        event = store.add(WebhookEvent(source="stripe", type="charge.succeeded"))
        store.claim(event.id)
        event.status = EventStatus.PROCESSING
        store.save(event)
        store.close()

        reopened = SqliteEventStore(db_path)
        try:
            restored = reopened.get(event.id)
            assert restored.status == EventStatus.PENDING
            assert not reopened.is_in_flight(event.id)
        finally:
            reopened.close()

        # The reset itself was persisted
        again = SqliteEventStore(db_path)
        try:
            assert again.get(event.id).status == EventStatus.PENDING
        finally:
            again.close()

    def test_insertion_order_preserved(self, tmp_path, clock):
        """Test reloaded events keep their dispatch order after updates."""
        db_path = tmp_path / "webhooks.db"
        store = SqliteEventStore(db_path)
        events = [store.add(WebhookEvent(source="custom", payload={"n": n})) for n in range(3)]
        events[0].error_message = "touched"
        store.save(events[0])
        store.close()

        reopened = SqliteEventStore(db_path)
        try:
            assert [e.id for e in reopened.ready_events(clock())] == [e.id for e in events]
        finally:
            reopened.close()

    def test_removal_and_revive_persist(self, tmp_path):
        """Test deletes and revives are written through."""
        db_path = tmp_path / "webhooks.db"
        store = SqliteEventStore(db_path)
        kept = store.add(WebhookEvent(source="custom"))
        dropped = store.add(WebhookEvent(source="custom"))
        store.append_attempt(dropped.id, DeliveryAttempt(attempt_number=1, success=False, error="x"))
        kept.status = EventStatus.DEAD_LETTER
        store.move_to_dead_letter(kept)
        store.remove(dropped.id)
        store.revive(kept.id)
        store.close()

        reopened = SqliteEventStore(db_path)
        try:
            assert reopened.get(dropped.id) is None
            assert reopened.history(dropped.id) == []
            assert reopened.dead_letter_count == 0
            assert reopened.get(kept.id).status == EventStatus.PENDING
        finally:
            reopened.close()
