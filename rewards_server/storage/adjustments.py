from typing import List

import aiosqlite

from ._tx import Transactor

MAX_REASON_LENGTH = 200


class DeltaLogRepo:
    """Append-only log of manual integer deltas for a wallet.

    Backs both ``admin_coin_audit`` (direct balance edits) and
    ``mining_adjustments`` (edits to the displayed mining total). Rows are
    never updated or deleted; reconciliation sums them as ledgers.
    """

    TABLES = ("admin_coin_audit", "mining_adjustments")

    def __init__(self, db: aiosqlite.Connection, tx: Transactor, table: str):
        if table not in self.TABLES:
            raise ValueError(f"Unknown delta log table: {table}")
        self._db = db
        self._tx = tx
        self._table = table

    async def record(self, wallet_address: str, delta: int, reason: str, admin: str) -> int:
        async with self._tx.atomic() as db:
            cursor = await db.execute(
                f"INSERT INTO {self._table} (wallet_address, delta, reason, admin) VALUES (?, ?, ?, ?)",
                (wallet_address.lower(), int(delta), (reason or "")[:MAX_REASON_LENGTH], admin),
            )
        return cursor.lastrowid

    async def sum_for_wallet(self, wallet_address: str) -> int:
        async with self._db.execute(
            f"SELECT SUM(delta) FROM {self._table} WHERE wallet_address = ?",
            (wallet_address.lower(),),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0] or 0) if row else 0

    async def list_for_wallet(self, wallet_address: str) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT id, wallet_address, delta, reason, admin, created_at "
            f"FROM {self._table} WHERE wallet_address = ? ORDER BY id DESC",
            (wallet_address.lower(),),
        ) as cursor:
            async for row in cursor:
                results.append({
                    "id": row[0],
                    "wallet_address": row[1],
                    "delta": row[2],
                    "reason": row[3] or "",
                    "admin": row[4],
                    "created_at": row[5],
                })
        return results
