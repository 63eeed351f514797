"""
Shared fixtures.
"""
from datetime import datetime, timedelta, timezone

import pytest

from usage_guard.config.loader import LimitsConfig
from usage_guard.core.analytics import LimitAnalytics
from usage_guard.storage.ledger import UsageLedger
from usage_guard.storage.store import InMemoryUsageStore


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


@pytest.fixture
def clock():
    """Clock fixed at 2024-03-15 12:00 UTC."""
    return FakeClock(datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryUsageStore()


@pytest.fixture
def ledger(store, clock):
    return UsageLedger(store, clock=clock)


@pytest.fixture
def analytics(clock):
    return LimitAnalytics(clock=clock)


@pytest.fixture
def config():
    """Default limits, independent of the environment."""
    return LimitsConfig()
