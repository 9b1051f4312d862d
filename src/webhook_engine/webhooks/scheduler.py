"""Dispatch scheduler.

A single asyncio loop that wakes every ``tick_interval_seconds``,
selects ready events and hands them to the processor as independent
tasks, bounded by ``max_concurrent_processing``.

The tick itself is synchronous: selecting an event and claiming it in
the in-flight set happen with no await in between, so no event can
be dispatched twice.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Set

from ..core.settings import EngineSettings
from .models import utcnow
from .processor import EventProcessor
from .store import EventStore

logger = logging.getLogger(__name__)


class DispatchScheduler:
    """Periodic dispatcher with an explicit start/stop lifecycle.

    Example:
        scheduler = DispatchScheduler(settings, store, processor)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        settings: EngineSettings,
        store: EventStore,
        processor: EventProcessor,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.processor = processor
        self.clock = clock
        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    def tick(self) -> List[asyncio.Task]:
        """Dispatch as many ready events as the concurrency limits allow.

        Must be called from within a running event loop.

        Returns:
            The processing tasks spawned by this tick.
        """
        ready = self.store.ready_events(self.clock())
        if not ready:
            return []

        available = max(0, self.settings.max_concurrent_processing - self.store.in_flight_count)
        selected = ready[: min(available, self.settings.batch_size)]

        spawned = []
        for event in selected:
            if not self.store.claim(event.id):
                continue
            task = asyncio.create_task(self._run(event), name=f"webhook-{event.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            spawned.append(task)

        if spawned:
            logger.debug(
                f"Dispatched {len(spawned)} webhook events "
                f"({len(ready) - len(spawned)} ready events waiting)"
            )
        return spawned

    async def _run(self, event) -> None:
        try:
            await self.processor.process(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # The processor already converts handler failures; this is a bug guard
            logger.exception(f"Unexpected error processing webhook {event.id}: {e}")
        finally:
            # Also covers a task cancelled before it first ran
            self.store.release(event.id)

    async def _loop(self) -> None:
        logger.info("Webhook processing started")
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.exception(f"Error processing webhook queue: {e}")

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.settings.tick_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass
        logger.info("Webhook processing stopped")

    async def start(self) -> None:
        """Start the tick loop. No-op if already running."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._loop(), name="webhook-scheduler")

    async def stop(self, drain: bool = True) -> None:
        """Stop the tick loop.

        Args:
            drain: Wait for in-flight attempts to resolve; when False they
                are cancelled and their events returned to pending.
        """
        if self._loop_task is not None:
            self._stop_event.set()
            await self._loop_task
            self._loop_task = None

        if not drain:
            for task in list(self._tasks):
                task.cancel()
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait until no processing task is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
