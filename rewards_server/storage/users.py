import logging
from typing import Optional

import aiosqlite

from ._tx import Transactor

logger = logging.getLogger("storage")

_USER_COLUMNS = ("id", "user_id", "wallet_address", "referrer_id", "is_active", "coin_balance", "created_at")
_USER_SELECT = f"SELECT {', '.join(_USER_COLUMNS)} FROM users"


def _user_row(row) -> Optional[dict]:
    if row is None:
        return None
    user = dict(zip(_USER_COLUMNS, row))
    user["coin_balance"] = int(user["coin_balance"] or 0)
    user["user_id"] = user["user_id"] or ""
    user["referrer_id"] = user["referrer_id"] or ""
    return user


class UserRepo:
    """CRUD operations for the users table.

    Wallet addresses are stored lower-case and user ids upper-case; every
    lookup canonicalizes its argument the same way.
    """

    def __init__(self, db: aiosqlite.Connection, tx: Transactor):
        self._db = db
        self._tx = tx

    async def upsert(self, wallet_address: str, user_id: str, referrer_id: str = "") -> dict:
        async with self._tx.atomic() as db:
            await db.execute(
                "INSERT INTO users (user_id, wallet_address, referrer_id, is_active) "
                "VALUES (?, ?, ?, 1) "
                "ON CONFLICT(wallet_address) DO UPDATE SET "
                "user_id = excluded.user_id, "
                "referrer_id = excluded.referrer_id, "
                "is_active = 1",
                (user_id.upper(), wallet_address.lower(), (referrer_id or "").upper()),
            )
        return await self.get_by_wallet(wallet_address)

    async def get_by_wallet(self, wallet_address: str) -> Optional[dict]:
        if not wallet_address:
            return None
        async with self._db.execute(
            f"{_USER_SELECT} WHERE wallet_address = ?", (wallet_address.lower(),)
        ) as cursor:
            row = await cursor.fetchone()
        return _user_row(row)

    async def get_by_user_id(self, user_id: str) -> Optional[dict]:
        if not user_id:
            return None
        async with self._db.execute(
            f"{_USER_SELECT} WHERE user_id = ?", (user_id.upper(),)
        ) as cursor:
            row = await cursor.fetchone()
        return _user_row(row)

    async def find(self, wallet: str = "", user_id: str = "") -> Optional[dict]:
        """Look up by wallet first, then by user id."""
        if wallet:
            user = await self.get_by_wallet(wallet)
            if user is not None:
                return user
        if user_id:
            return await self.get_by_user_id(user_id)
        return None

    async def exists(self, wallet_address: str) -> bool:
        async with self._db.execute(
            "SELECT 1 FROM users WHERE wallet_address = ?", (wallet_address.lower(),)
        ) as cursor:
            return await cursor.fetchone() is not None

    async def get_balance(self, wallet_address: str) -> int:
        async with self._db.execute(
            "SELECT coin_balance FROM users WHERE wallet_address = ?", (wallet_address.lower(),)
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0] or 0) if row else 0

    async def add_coins(self, wallet_address: str, delta: int) -> int:
        """Apply a signed delta. Returns the number of rows touched."""
        async with self._tx.atomic() as db:
            cursor = await db.execute(
                "UPDATE users SET coin_balance = coin_balance + ? WHERE wallet_address = ?",
                (int(delta), wallet_address.lower()),
            )
        return cursor.rowcount

    async def set_balance(self, wallet_address: str, balance: int):
        async with self._tx.atomic() as db:
            await db.execute(
                "UPDATE users SET coin_balance = ? WHERE wallet_address = ?",
                (int(balance), wallet_address.lower()),
            )

    async def count_referred(self, user_id: str) -> int:
        """Number of users whose referrer is ``user_id`` (level-1 referrals)."""
        if not user_id:
            return 0
        async with self._db.execute(
            "SELECT COUNT(*) FROM users WHERE referrer_id = ?", (user_id.upper(),)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM users") as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def total_coins(self) -> int:
        async with self._db.execute("SELECT SUM(coin_balance) FROM users") as cursor:
            row = await cursor.fetchone()
        return int(row[0] or 0) if row else 0
