import logging
import sqlite3
from typing import List, Optional

import aiosqlite

from ..errors import DuplicateTransaction
from ._tx import Transactor

logger = logging.getLogger("storage")

DEFAULT_TOTAL_DAYS = 30

_PURCHASE_COLUMNS = (
    "id", "wallet_address", "tx_hash", "daily_coins", "total_days",
    "credited_days", "start_date", "last_credit_date",
)
_PURCHASE_SELECT = f"SELECT {', '.join(_PURCHASE_COLUMNS)} FROM mining_purchases"


def _purchase_row(row) -> Optional[dict]:
    if row is None:
        return None
    p = dict(zip(_PURCHASE_COLUMNS, row))
    p["tx_hash"] = p["tx_hash"] or ""
    p["daily_coins"] = int(p["daily_coins"] or 0)
    p["total_days"] = int(p["total_days"] if p["total_days"] is not None else DEFAULT_TOTAL_DAYS)
    p["credited_days"] = int(p["credited_days"] or 0)
    return p


class PurchaseRepo:
    """CRUD operations for the mining_purchases table."""

    def __init__(self, db: aiosqlite.Connection, tx: Transactor):
        self._db = db
        self._tx = tx

    async def insert(
        self,
        wallet_address: str,
        tx_hash: Optional[str],
        daily_coins: int,
        start_date: str,
        total_days: int = DEFAULT_TOTAL_DAYS,
    ) -> dict:
        """Insert a new purchase row.

        Raises DuplicateTransaction when ``tx_hash`` is already recorded.
        An empty ``tx_hash`` is stored as NULL (admin-forced rows).
        """
        try:
            async with self._tx.atomic() as db:
                cursor = await db.execute(
                    "INSERT INTO mining_purchases "
                    "(wallet_address, tx_hash, daily_coins, total_days, credited_days, start_date) "
                    "VALUES (?, ?, ?, ?, 0, ?)",
                    (wallet_address.lower(), tx_hash or None, max(0, int(daily_coins)),
                     int(total_days), start_date),
                )
                row_id = cursor.lastrowid
        except sqlite3.IntegrityError:
            if tx_hash and await self.exists(tx_hash):
                raise DuplicateTransaction(tx_hash)
            raise
        return await self.get(row_id)

    async def get(self, purchase_id: int) -> Optional[dict]:
        async with self._db.execute(
            f"{_PURCHASE_SELECT} WHERE id = ?", (int(purchase_id),)
        ) as cursor:
            row = await cursor.fetchone()
        return _purchase_row(row)

    async def find_for_wallet(self, wallet_address: str, purchase_id: Optional[int] = None,
                              tx_hash: str = "") -> Optional[dict]:
        """Find one purchase of ``wallet_address`` by id, or else by tx hash."""
        if purchase_id:
            query, params = f"{_PURCHASE_SELECT} WHERE wallet_address = ? AND id = ?", (
                wallet_address.lower(), int(purchase_id))
        elif tx_hash:
            query, params = f"{_PURCHASE_SELECT} WHERE wallet_address = ? AND tx_hash = ?", (
                wallet_address.lower(), tx_hash)
        else:
            return None
        async with self._db.execute(query, params) as cursor:
            row = await cursor.fetchone()
        return _purchase_row(row)

    async def exists(self, tx_hash: str) -> bool:
        if not tx_hash:
            return False
        async with self._db.execute(
            "SELECT 1 FROM mining_purchases WHERE tx_hash = ?", (tx_hash,)
        ) as cursor:
            return await cursor.fetchone() is not None

    async def list_for_wallet(self, wallet_address: str, newest_first: bool = False) -> List[dict]:
        order = "DESC" if newest_first else "ASC"
        results = []
        async with self._db.execute(
            f"{_PURCHASE_SELECT} WHERE wallet_address = ? ORDER BY id {order}",
            (wallet_address.lower(),),
        ) as cursor:
            async for row in cursor:
                results.append(_purchase_row(row))
        return results

    async def set_daily_coins(self, purchase_id: int, daily_coins: int):
        async with self._tx.atomic() as db:
            await db.execute(
                "UPDATE mining_purchases SET daily_coins = ? WHERE id = ?",
                (int(daily_coins), int(purchase_id)),
            )

    async def update_rate_and_start(self, purchase_id: int, daily_coins: int, start_date: str):
        async with self._tx.atomic() as db:
            await db.execute(
                "UPDATE mining_purchases SET daily_coins = ?, start_date = ? WHERE id = ?",
                (int(daily_coins), start_date, int(purchase_id)),
            )

    async def advance_credited_days(self, purchase_id: int, expected_credited: int,
                                    pending_days: int, credit_date: str) -> bool:
        """Increment credited_days by ``pending_days`` if it still equals ``expected_credited``.

        Returns False when another writer already advanced the row or the
        increment would pass total_days.
        """
        async with self._tx.atomic() as db:
            cursor = await db.execute(
                "UPDATE mining_purchases "
                "SET credited_days = credited_days + ?, last_credit_date = ? "
                "WHERE id = ? AND credited_days = ? AND credited_days + ? <= total_days",
                (int(pending_days), credit_date, int(purchase_id),
                 int(expected_credited), int(pending_days)),
            )
        return cursor.rowcount == 1

    async def delete(self, purchase_id: int):
        async with self._tx.atomic() as db:
            await db.execute("DELETE FROM mining_purchases WHERE id = ?", (int(purchase_id),))

    async def mined_sum(self, wallet_address: str) -> int:
        """Coins already credited from mining: sum of daily_coins * credited_days."""
        async with self._db.execute(
            "SELECT SUM(daily_coins * credited_days) FROM mining_purchases WHERE wallet_address = ?",
            (wallet_address.lower(),),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0] or 0) if row else 0

    async def count_for_wallet(self, wallet_address: str) -> int:
        async with self._db.execute(
            "SELECT COUNT(*) FROM mining_purchases WHERE wallet_address = ?",
            (wallet_address.lower(),),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
