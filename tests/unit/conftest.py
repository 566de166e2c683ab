"""Shared fixtures for the rewards backend unit tests."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from fake_chain import FakeChainReader, FixedClock

from rewards_server.accrual import AccrualEngine
from rewards_server.mining import PurchaseRecorder
from rewards_server.reconcile import ReconciliationService
from rewards_server.storage import StorageManager
from rewards_server.users import UserService


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def storage():
    sm = StorageManager(":memory:")
    await sm.initialize()
    yield sm
    await sm.close()


@pytest.fixture
def chain():
    return FakeChainReader()


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 15, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def accrual(storage, chain, clock):
    return AccrualEngine(storage, chain, clock=clock)


@pytest.fixture
def users(storage, chain, accrual):
    return UserService(storage, chain, accrual)


@pytest.fixture
def recorder(storage, chain, accrual, users):
    return PurchaseRecorder(storage, chain, accrual, users)


@pytest.fixture
def reconciler(storage, chain, accrual, users):
    return ReconciliationService(storage, chain, accrual, users)
