"""
accrual.py - Mining accrual engine.

Turns recorded purchases into coins, one UTC calendar day at a time:
  - rate derivation: raw token amount / 10**decimals, floored to whole coins
  - self-heal: an implausible stored rate is re-derived from the purchase log
  - catch-up: pending days are credited with a conditional increment so a
    concurrent or repeated call never credits the same day twice
  - expected balance: the sum of every independent ledger for a wallet
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from .daymath import days_between_inclusive, today_iso, utcnow
from .errors import ChainError
from .storage import SQLITE_INT_MAX

if TYPE_CHECKING:
    from .chain import ChainReader
    from .storage import StorageManager

logger = logging.getLogger("accrual")

WEIRD_RATE_THRESHOLD = 100_000


def compute_daily_rate(raw_amount: int, decimals: int) -> int:
    """Whole coins per day for a purchase of ``raw_amount`` token base units.

    Exact integer floor of raw / 10**decimals. Anything that does not come
    out positive, or does not fit an SQLite integer, is 0, which callers
    treat as "rate unknown".
    """
    try:
        raw = int(raw_amount)
        dec = int(decimals)
    except (TypeError, ValueError):
        return 0
    if raw <= 0 or dec < 0:
        return 0
    rate = raw // (10 ** dec)
    return rate if 0 < rate <= SQLITE_INT_MAX else 0


def pending_days(row: dict, today: str) -> int:
    """Days of ``row`` that have elapsed but are not credited yet."""
    total_days = max(0, int(row.get("total_days") or 0))
    credited = max(0, int(row.get("credited_days") or 0))
    elapsed = days_between_inclusive(row.get("start_date") or "", today)
    eligible = min(elapsed, total_days)
    return max(0, eligible - credited)


class AccrualEngine:
    """Credits mining purchases and reconciles their ledgers."""

    def __init__(
        self,
        storage: "StorageManager",
        chain: "ChainReader",
        weird_rate_threshold: int = WEIRD_RATE_THRESHOLD,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._storage = storage
        self._chain = chain
        self.weird_rate_threshold = weird_rate_threshold
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> str:
        return today_iso(self._clock())

    def is_weird(self, daily_coins: Optional[int]) -> bool:
        coins = int(daily_coins or 0)
        return coins <= 0 or coins > self.weird_rate_threshold

    async def rate_for_amount(self, raw_amount: int) -> int:
        decimals = await self._chain.token_decimals()
        return compute_daily_rate(raw_amount, decimals)

    # -------------------------------------------------------------------
    # Rate self-heal
    # -------------------------------------------------------------------

    async def normalize_rate_if_needed(self, row: dict) -> int:
        """Re-derive an implausible ``daily_coins`` from the purchase's own log.

        Returns the rate now in effect for the row. Chain errors leave the
        stored value untouched.
        """
        coins = int(row.get("daily_coins") or 0)
        if not self.is_weird(coins):
            return coins
        tx_hash = row.get("tx_hash") or ""
        if not tx_hash:
            return coins

        try:
            event = await self._chain.fetch_purchase(tx_hash)
            corrected = await self.rate_for_amount(event.amount)
        except ChainError as e:
            logger.warning("Rate self-heal skipped for purchase %s (%s): %s",
                           row.get("id"), tx_hash, e)
            return coins

        if corrected <= 0:
            return coins
        if corrected != coins:
            await self._storage.purchases.set_daily_coins(row["id"], corrected)
            logger.info("Purchase %s rate corrected %d -> %d", row["id"], coins, corrected)
        row["daily_coins"] = corrected
        return corrected

    # -------------------------------------------------------------------
    # Crediting
    # -------------------------------------------------------------------

    async def credit_pending_days(self, wallet: str, normalize: bool = True) -> dict:
        """Credit every elapsed, uncredited day of ``wallet``'s purchases."""
        wallet = wallet.lower()
        purchases = self._storage.purchases
        rows = await purchases.list_for_wallet(wallet)
        if not rows:
            return {"credited_coins": 0, "purchases_credited": 0}

        if normalize:
            for row in rows:
                await self.normalize_rate_if_needed(row)

        today = self.today()
        credited_coins = 0
        purchases_credited = 0
        async with self._storage.atomic():
            # Re-read under the write lock; another caller may have credited.
            for row in await purchases.list_for_wallet(wallet):
                pending = pending_days(row, today)
                if pending <= 0:
                    continue
                advanced = await purchases.advance_credited_days(
                    row["id"], row["credited_days"], pending, today
                )
                if not advanced:
                    continue
                purchases_credited += 1
                credited_coins += pending * max(0, row["daily_coins"])
            if credited_coins:
                await self._storage.users.add_coins(wallet, credited_coins)

        if credited_coins:
            logger.info("Credited %d coins to %s across %d purchases",
                        credited_coins, wallet, purchases_credited)
        return {"credited_coins": credited_coins, "purchases_credited": purchases_credited}

    # -------------------------------------------------------------------
    # Ledgers
    # -------------------------------------------------------------------

    async def compute_expected_balance(self, wallet: str, user_id: str = "") -> dict:
        """Balance implied by the ledgers, each floored at 0."""
        s = self._storage
        breakdown = {
            "logins": max(0, await s.logins.count_for_wallet(wallet)),
            "referrals": max(0, await s.referrals.sum_for_referrer(user_id)),
            "mined": max(0, await s.purchases.mined_sum(wallet)),
            "admin_adjustments": max(0, await s.coin_audit.sum_for_wallet(wallet)),
            "mining_adjustments": max(0, await s.mining_adjustments.sum_for_wallet(wallet)),
        }
        breakdown["expected"] = sum(breakdown.values())
        return breakdown
