"""
fake_chain.py - In-memory stand-ins for the chain side of the backend.

Provides:
 - FakeChainReader: scripted registrations, purchases, owner and decimals
   behind the same async surface as rewards_server.chain.ChainReader
 - FixedClock: a controllable UTC "now" for the accrual engine
 - address / tx-hash constants and helpers shared by unit and integration tests
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from rewards_server.chain import ZERO_ADDRESS, ChainProfile, PurchaseEvent
from rewards_server.errors import (
    ChainReadFailure,
    EventNotFound,
    EventUserMismatch,
    NotAuthorized,
    TxNotFound,
)

# ── Constants ──────────────────────────────────────────────────────────────

CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
OWNER = "0x" + "0a" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20

ONE_TOKEN = 10 ** 18


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def unix_at(day: str) -> int:
    """Unix seconds of noon UTC on ``day`` (YYYY-MM-DD)."""
    d = datetime.strptime(day, "%Y-%m-%d").replace(hour=12, tzinfo=timezone.utc)
    return int(d.timestamp())


# ── Clock ──────────────────────────────────────────────────────────────────

class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def today(self) -> str:
        return self.now.date().isoformat()

    def days_ago(self, days: int) -> str:
        return (self.now - timedelta(days=days)).date().isoformat()

    def advance(self, days: int = 0, hours: int = 0):
        self.now = self.now + timedelta(days=days, hours=hours)


# ── Fake chain ─────────────────────────────────────────────────────────────

class FakeChainReader:
    """In-memory stand-in for ChainReader with the same async surface."""

    def __init__(self):
        self.contract_address = CONTRACT
        self.owner = OWNER
        self.decimals = 18
        self.fail_reads = False
        self.profiles: Dict[str, ChainProfile] = {}
        self.purchases: Dict[str, PurchaseEvent] = {}
        self.registrations: Dict[str, str] = {}
        self.fetch_calls = 0

    # -- scripting --------------------------------------------------------

    def register(self, address: str, user_id: str, referrer: str = ZERO_ADDRESS,
                 registration_tx: Optional[str] = None) -> ChainProfile:
        referrer_id = ""
        if referrer != ZERO_ADDRESS and referrer.lower() in self.profiles:
            referrer_id = self.profiles[referrer.lower()].user_id
        profile = ChainProfile(address=address, user_id=user_id,
                               referrer_address=referrer, referrer_id=referrer_id)
        self.profiles[address.lower()] = profile
        if registration_tx:
            self.registrations[registration_tx] = address
        return profile

    def add_purchase(self, user: str, amount: int, start_time: int, tx: str) -> PurchaseEvent:
        event = PurchaseEvent(user=user, amount=amount, start_time=start_time,
                              end_time=start_time + 30 * 86400, tx_hash=tx)
        self.purchases[tx] = event
        return event

    def _check(self):
        if self.fail_reads:
            raise ChainReadFailure("rpc down")

    # -- ChainReader surface ----------------------------------------------

    async def get_profile(self, address: str) -> Optional[ChainProfile]:
        self._check()
        return self.profiles.get(address.lower())

    async def get_owner(self) -> str:
        self._check()
        return self.owner

    async def require_owner(self, address: str):
        if (await self.get_owner()).lower() != address.lower():
            raise NotAuthorized(address)

    async def get_receipt(self, tx: str):
        self._check()
        if tx not in self.purchases and tx not in self.registrations:
            raise TxNotFound(tx)
        return {"transactionHash": tx, "status": 1}

    def find_registered_user(self, receipt) -> str:
        user = self.registrations.get(receipt["transactionHash"])
        if not user:
            raise EventNotFound("no registration event")
        return user

    async def fetch_purchase(self, tx: str, expected_user: Optional[str] = None) -> PurchaseEvent:
        self.fetch_calls += 1
        await self.get_receipt(tx)
        event = self.purchases.get(tx)
        if event is None:
            raise EventNotFound(tx)
        if expected_user and expected_user.lower() != event.user.lower():
            raise EventUserMismatch(tx)
        return event

    async def purchase_logs(self, address: str, lookback_days: int = 180) -> List[PurchaseEvent]:
        self._check()
        return [e for e in self.purchases.values() if e.user.lower() == address.lower()]

    async def token_decimals(self) -> int:
        return self.decimals

    async def chain_id(self) -> int:
        self._check()
        return 56


