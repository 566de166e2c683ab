import aiosqlite

from ._tx import Transactor


class LoginRepo:
    """Daily login ledger: one row per wallet per UTC calendar day."""

    def __init__(self, db: aiosqlite.Connection, tx: Transactor):
        self._db = db
        self._tx = tx

    async def record(self, wallet_address: str, login_date: str) -> bool:
        """Insert today's login row. Returns False if it already existed."""
        async with self._tx.atomic() as db:
            cursor = await db.execute(
                "INSERT OR IGNORE INTO logins (wallet_address, login_date) VALUES (?, ?)",
                (wallet_address.lower(), login_date),
            )
        return cursor.rowcount == 1

    async def has_login(self, wallet_address: str, login_date: str) -> bool:
        async with self._db.execute(
            "SELECT 1 FROM logins WHERE wallet_address = ? AND login_date = ?",
            (wallet_address.lower(), login_date),
        ) as cursor:
            return await cursor.fetchone() is not None

    async def count_for_wallet(self, wallet_address: str) -> int:
        async with self._db.execute(
            "SELECT COUNT(*) FROM logins WHERE wallet_address = ?", (wallet_address.lower(),)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0
