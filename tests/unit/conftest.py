"""Fixtures for the credits sync-engine unit tests."""

from datetime import timedelta

import pytest

from src.cr_credits.application.controller import ReconciliationController
from src.cr_credits.infrastructure.snapshot_store import SnapshotStore
from tests.unit.credits_fakes import CACHE_KEY, NOW, FakeCache, FakeSubscriber


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def fake_subscriber() -> FakeSubscriber:
    return FakeSubscriber()


@pytest.fixture
def controller(fake_cache: FakeCache, fake_subscriber: FakeSubscriber) -> ReconciliationController:
    return ReconciliationController(
        SnapshotStore(fake_cache),
        fake_subscriber,
        cache_key=CACHE_KEY,
        cache_expiry=timedelta(hours=24),
        clock=lambda: NOW,
    )
