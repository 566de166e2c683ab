from typing import Optional

import aiosqlite

from ._tx import Transactor

REFERRAL_REWARD_COINS = 5


class ReferralRepo:
    """Referral rewards: at most one row per referred wallet."""

    def __init__(self, db: aiosqlite.Connection, tx: Transactor):
        self._db = db
        self._tx = tx

    async def record(self, referred_wallet: str, referrer_id: str,
                     reward_coins: int = REFERRAL_REWARD_COINS) -> bool:
        """Insert the reward row. Returns False if one already exists for the wallet."""
        async with self._tx.atomic() as db:
            cursor = await db.execute(
                "INSERT OR IGNORE INTO referral_rewards (referred_wallet, referrer_id, reward_coins) "
                "VALUES (?, ?, ?)",
                (referred_wallet.lower(), (referrer_id or "").upper(), reward_coins),
            )
        return cursor.rowcount == 1

    async def get(self, referred_wallet: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT id, referred_wallet, referrer_id, reward_coins, created_at "
            "FROM referral_rewards WHERE referred_wallet = ?",
            (referred_wallet.lower(),),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "id": row[0],
            "referred_wallet": row[1],
            "referrer_id": row[2],
            "reward_coins": row[3],
            "created_at": row[4],
        }

    async def sum_for_referrer(self, referrer_id: str) -> int:
        if not referrer_id:
            return 0
        async with self._db.execute(
            "SELECT SUM(reward_coins) FROM referral_rewards WHERE referrer_id = ?",
            (referrer_id.upper(),),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0] or 0) if row else 0
