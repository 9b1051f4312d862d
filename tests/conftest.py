"""Shared fixtures for the webhook engine test suite."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from webhook_engine import EngineSettings, WebhookEngine


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> None:
        self.now += timedelta(seconds=seconds, **kwargs)


async def run_tick(engine: WebhookEngine) -> list:
    """Run one scheduler tick and wait for every attempt it dispatched."""
    tasks = engine.scheduler.tick()
    if tasks:
        await asyncio.gather(*tasks)
    return tasks


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> EngineSettings:
    """Fast settings: short timeout and tick, 1s retry base."""
    return EngineSettings(
        tick_interval_seconds=0.01,
        processing_timeout_seconds=1.0,
        default_retry_delay_seconds=1.0,
    )


@pytest.fixture()
def engine(settings, clock) -> WebhookEngine:
    """Engine on the fake clock; drive it with run_tick()."""
    return WebhookEngine(settings, clock=clock)
