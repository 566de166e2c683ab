"""
Shared fixtures for rewards backend integration tests.

Provides:
 - a RewardsServer on in-memory SQLite wired to a FakeChainReader
 - a TestClient that runs the app lifespan (storage bootstrap)
 - freshly generated wallets, one of them the contract owner
"""

import pytest
from eth_account import Account
from fastapi.testclient import TestClient

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from unit.fake_chain import FakeChainReader

from rewards_server.server import RewardsServer


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def chain():
    return FakeChainReader()


@pytest.fixture
def admin(chain):
    """Wallet that owns the platform contract."""
    account = Account.create()
    chain.owner = account.address
    return account


@pytest.fixture
def alice():
    return Account.create()


@pytest.fixture
def bob():
    return Account.create()


@pytest.fixture
def server(chain):
    return RewardsServer(db_path=":memory:", chain=chain)


@pytest.fixture
def client(server):
    with TestClient(server.app) as c:
        yield c
