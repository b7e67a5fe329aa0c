"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timedelta

import pytest

from beacon.data.signal import Signal, SignalKind, SignalSource
from beacon.database.connection import Database
from beacon.database.models import User
from beacon.database.repository import UserRepository
from beacon.database.store import NotificationStore


class FakeClock:
    """Settable time source."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock fixed at noon on a weekday."""
    return FakeClock(datetime(2024, 3, 1, 12, 0, 0))


@pytest.fixture
def db():
    """Create in-memory database with schema."""
    db = Database(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def user_repo(db):
    return UserRepository(db)


@pytest.fixture
def store(db):
    return NotificationStore(db)


@pytest.fixture
def alice(user_repo):
    """User following BTC."""
    user = user_repo.create(User(id="alice", email="alice@example.com", name="Alice"))
    user_repo.follow_asset("alice", "BTC")
    return user


@pytest.fixture
def btc_price_signal():
    """BTC up 6.2%."""
    return Signal(
        asset_symbol="BTC",
        kind=SignalKind.PRICE,
        strength=72,
        sources=(SignalSource(price_change=6.2, current_price=65000, previous_price=61200),),
    )


def make_signal(kind="sentiment", strength=75, asset="BTC", **kwargs) -> Signal:
    """Build a signal with sensible defaults."""
    return Signal(asset_symbol=asset, kind=SignalKind(kind), strength=strength, **kwargs)


def make_price_signal(change: float, asset="BTC", strength=60) -> Signal:
    return Signal(
        asset_symbol=asset,
        kind=SignalKind.PRICE,
        strength=strength,
        sources=(SignalSource(price_change=change, current_price=100.0, previous_price=95.0),),
    )
