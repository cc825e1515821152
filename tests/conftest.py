"""
Pytest configuration and shared fixtures for Trade Router tests.
"""
import random

import pytest

from core.config.settings import (
    PaperTradingSettings,
    RateLimitSettings,
    RepairSettings,
    RoutingSettings,
    Settings,
)
from core.resilience import BrokenConnectionHandler, RateLimitManager
from core.resilience.models import ConnectionRecord
from tests.mocks.in_memory_storage import InMemoryTradingStorage


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested sleeps and advances the fake clock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)


@pytest.fixture
def test_settings():
    """Test settings configuration."""
    return Settings(
        environment="testing",
        state_backend="memory",
        rate_limit=RateLimitSettings(
            window_seconds=60,
            max_requests=100,
            base_delay_seconds=1,
            max_delay_seconds=60,
            jitter_max_seconds=1,
            max_retries=3,
        ),
        routing=RoutingSettings(),
        repair=RepairSettings(base_url="https://app.example.com"),
        paper_trading=PaperTradingSettings(fill_delay_seconds=0),
    )


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(fake_clock):
    return FakeSleep(fake_clock)


@pytest.fixture
def rate_limiter(test_settings, fake_clock, fake_sleep):
    return RateLimitManager(
        test_settings.rate_limit,
        clock=fake_clock,
        sleep=fake_sleep,
        rng=random.Random(42),
    )


@pytest.fixture
def storage():
    return InMemoryTradingStorage()


@pytest.fixture
def connection_record():
    return ConnectionRecord(
        connection_id=7,
        brokerage_auth_id="auth-123",
        brokerage_name="Robinhood",
        user_id="user-1",
    )


@pytest.fixture
def connection_handler(test_settings, storage, connection_record):
    storage.add_connection(connection_record)
    return BrokenConnectionHandler(test_settings.repair, storage)
