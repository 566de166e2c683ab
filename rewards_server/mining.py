"""
mining.py - Recording on-chain miner purchases and listing them.
"""

import logging
from typing import TYPE_CHECKING, Optional

from .chain import normalize_address, normalize_tx_hash
from .daymath import add_days, days_between_inclusive
from .errors import DuplicateTransaction, NotRegisteredOnChain
from .storage import DEFAULT_TOTAL_DAYS

if TYPE_CHECKING:
    from .accrual import AccrualEngine
    from .chain import ChainReader
    from .storage import StorageManager
    from .users import UserService

logger = logging.getLogger("mining")


class PurchaseRecorder:
    def __init__(
        self,
        storage: "StorageManager",
        chain: "ChainReader",
        accrual: "AccrualEngine",
        users: "UserService",
    ):
        self._storage = storage
        self._chain = chain
        self._accrual = accrual
        self._users = users

    async def record_purchase(self, tx_hash: str, expected_user: Optional[str] = None) -> dict:
        """Record the MinerPurchased event of ``tx_hash`` and credit what is due.

        With ``expected_user`` the event's buyer must be that address. A
        transaction already on file is reported as a duplicate and changes
        nothing.
        """
        tx_hash = normalize_tx_hash(tx_hash)
        if expected_user is not None:
            expected_user = normalize_address(expected_user)

        event = await self._chain.fetch_purchase(tx_hash, expected_user)
        if await self._storage.purchases.exists(tx_hash):
            return {"ok": True, "duplicate": True}

        daily_coins = await self._accrual.rate_for_amount(event.amount)
        start_date = event.start_date
        if not await self._users.ensure_user(event.user):
            raise NotRegisteredOnChain(event.user)

        wallet = event.user.lower()
        try:
            row = await self._storage.purchases.insert(wallet, tx_hash, daily_coins, start_date)
        except DuplicateTransaction:
            return {"ok": True, "duplicate": True}
        logger.info("Recorded purchase %s for %s: %d/day from %s",
                    tx_hash, wallet, daily_coins, start_date)

        mining = await self._accrual.credit_pending_days(wallet)
        return {
            "ok": True,
            "id": row["id"],
            "daily_coins": daily_coins,
            "start_date": start_date,
            "credited_now": mining["credited_coins"],
        }

    async def history(self, address: str) -> dict:
        address = normalize_address(address)
        await self._users.ensure_user(address)

        today = self._accrual.today()
        items = []
        for row in await self._storage.purchases.list_for_wallet(address, newest_first=True):
            total_days = row["total_days"] or DEFAULT_TOTAL_DAYS
            end_date = add_days(row["start_date"], total_days)
            days_left = max(0, days_between_inclusive(today, end_date) - 1)
            items.append({
                "id": row["id"],
                "tx_hash": row["tx_hash"],
                "amount_usd": row["daily_coins"],
                "daily_coins": row["daily_coins"],
                "start_date": row["start_date"],
                "total_days": total_days,
                "credited_days": row["credited_days"],
                "end_date": end_date,
                "active": today < end_date,
                "days_left": days_left,
            })
        return {"items": items}
