"""
reconcile.py - Admin reconciliation and manual override tools.

Everything here is invoked from owner-signed admin routes. Manual deltas
are written to their own append-only ledgers (admin_coin_audit and
mining_adjustments) in the same transaction as the balance change, so a
later reconcile_user() recomputes a balance that still includes them.
"""

import logging
from typing import TYPE_CHECKING, Optional

from web3 import Web3

from .chain import MAX_LOOKBACK_DAYS, normalize_address, normalize_tx_hash
from .daymath import is_iso_date
from .errors import DuplicateTransaction, EventNotFound, InvalidInput, NotFound
from .storage import DEFAULT_TOTAL_DAYS, SQLITE_INT_MAX, SQLITE_INT_MIN

if TYPE_CHECKING:
    from .accrual import AccrualEngine
    from .chain import ChainReader
    from .storage import StorageManager
    from .users import UserService

logger = logging.getLogger("reconcile")

DEFAULT_LOOKBACK_DAYS = 180


def clamp_lookback(days) -> int:
    try:
        days = int(days or DEFAULT_LOOKBACK_DAYS)
    except (TypeError, ValueError):
        raise InvalidInput("lookback_days must be an integer")
    return max(1, min(days, MAX_LOOKBACK_DAYS))


def _whole_number(value, field: str) -> int:
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be a number")
    if number != number or number in (float("inf"), float("-inf")):
        raise InvalidInput(f"{field} must be a number")
    number = int(number)
    if not SQLITE_INT_MIN <= number <= SQLITE_INT_MAX:
        raise InvalidInput(f"{field} is out of range")
    return number


class ReconciliationService:
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

    async def _find_user(self, wallet: str = "", user_id: str = "") -> dict:
        if not wallet and not user_id:
            raise InvalidInput("user_id or wallet required")
        if wallet and not Web3.is_address(wallet):
            if not user_id:
                raise InvalidInput("Invalid wallet")
            wallet = ""
        user = await self._storage.users.find(wallet=wallet, user_id=user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    async def _find_purchase(self, wallet: str, purchase_id: Optional[int], tx_hash: str) -> dict:
        if not purchase_id and not tx_hash:
            raise InvalidInput("id or tx_hash required")
        if tx_hash:
            tx_hash = normalize_tx_hash(tx_hash)
        row = await self._storage.purchases.find_for_wallet(wallet, purchase_id, tx_hash)
        if row is None:
            raise NotFound("Purchase not found")
        return row

    # -------------------------------------------------------------------
    # Chain-driven repair
    # -------------------------------------------------------------------

    async def import_from_logs(self, wallet: str, lookback_days: int = DEFAULT_LOOKBACK_DAYS) -> dict:
        """Insert MinerPurchased events for ``wallet`` that are not on file yet."""
        wallet = normalize_address(wallet).lower()
        events = await self._chain.purchase_logs(wallet, clamp_lookback(lookback_days))
        added = 0
        for event in events:
            if event.user.lower() != wallet:
                continue
            if await self._storage.purchases.exists(event.tx_hash):
                continue
            try:
                start_date = event.start_date
            except EventNotFound as e:
                logger.warning("Skipping purchase %s: %s", event.tx_hash, e)
                continue
            daily_coins = await self._accrual.rate_for_amount(event.amount)
            try:
                await self._storage.purchases.insert(wallet, event.tx_hash, daily_coins, start_date)
            except DuplicateTransaction:
                continue
            added += 1
        if added:
            logger.info("Imported %d purchases for %s from logs", added, wallet)
        return {"added": added}

    async def bulk_normalize(self, wallet: str) -> dict:
        wallet = normalize_address(wallet).lower()
        corrected = 0
        for row in await self._storage.purchases.list_for_wallet(wallet):
            before = row["daily_coins"]
            if await self._accrual.normalize_rate_if_needed(row) != before:
                corrected += 1
        return {"corrected": corrected}

    async def reconcile_user(self, wallet: str = "", user_id: str = "",
                             lookback_days: int = DEFAULT_LOOKBACK_DAYS) -> dict:
        """Import, normalize, credit, then force the balance to the ledger sum."""
        user = await self._find_user(wallet, user_id)
        wallet = user["wallet_address"]

        imported = await self.import_from_logs(wallet, lookback_days)
        normalized = await self.bulk_normalize(wallet)
        credit = await self._accrual.credit_pending_days(wallet, normalize=False)

        async with self._storage.atomic():
            prev_balance = await self._storage.users.get_balance(wallet)
            ledgers = await self._accrual.compute_expected_balance(wallet, user["user_id"])
            expected = ledgers["expected"]
            if prev_balance != expected:
                await self._storage.users.set_balance(wallet, expected)

        if prev_balance != expected:
            logger.info("Reconciled %s balance %d -> %d", wallet, prev_balance, expected)
        return {
            "ok": True,
            "wallet": wallet,
            "added_miners": imported["added"],
            "corrected_daily": normalized["corrected"],
            "credited_now": credit["credited_coins"],
            "prev_balance": prev_balance,
            "expected_balance": expected,
            "new_balance": expected,
            "ledgers": ledgers,
        }

    # -------------------------------------------------------------------
    # Manual overrides
    # -------------------------------------------------------------------

    async def adjust_coins(self, admin: str, delta, reason: str = "",
                           wallet: str = "", user_id: str = "") -> dict:
        delta = _whole_number(delta, "delta")
        if delta == 0:
            raise InvalidInput("delta must be non-zero integer")
        user = await self._find_user(wallet, user_id)
        wallet = user["wallet_address"]

        async with self._storage.atomic():
            await self._storage.coin_audit.record(wallet, delta, reason or "", admin)
            await self._storage.users.add_coins(wallet, delta)

        logger.info("Admin %s adjusted %s by %d: %s", admin, wallet, delta, reason)
        return {"ok": True, "wallet": wallet, "coin_balance": await self._storage.users.get_balance(wallet)}

    async def mining_edit(self, admin: str, wallet: str, set_to, reason: str = "") -> dict:
        """Set the displayed mining total by recording the difference as an adjustment."""
        wallet = normalize_address(wallet, "wallet").lower()
        set_to = _whole_number(set_to, "set_to")

        async with self._storage.atomic():
            mined = await self._storage.purchases.mined_sum(wallet)
            adjusted = await self._storage.mining_adjustments.sum_for_wallet(wallet)
            current = max(0, mined) + max(0, adjusted)
            delta = set_to - current
            if not SQLITE_INT_MIN <= delta <= SQLITE_INT_MAX:
                raise InvalidInput("set_to is out of range")
            if delta:
                await self._storage.mining_adjustments.record(wallet, delta, reason or "mining_edit", admin)
                await self._storage.users.add_coins(wallet, delta)

        if not delta:
            return {"ok": True, "wallet": wallet, "unchanged": True, "mining_total": current}
        logger.info("Admin %s set mining total of %s %d -> %d", admin, wallet, current, set_to)
        return {"ok": True, "wallet": wallet, "prev_total": current, "new_total": current + delta, "delta": delta}

    async def miner_add(self, admin: str, wallet: str, mode: str = "verify", tx_hash: str = "",
                        amount_usd=None, start_date: str = "", total_days=None) -> dict:
        """Add a purchase, either verified from its transaction or forced by hand."""
        address = normalize_address(wallet, "wallet")
        wallet = address.lower()
        if mode not in ("verify", "force"):
            raise InvalidInput("mode must be 'verify' or 'force'")
        if not await self._users.ensure_user(address):
            raise NotFound("User not found")

        days = DEFAULT_TOTAL_DAYS
        if total_days is not None:
            requested = _whole_number(total_days, "total_days")
            if requested > 0:
                days = requested

        if mode == "verify":
            if not tx_hash:
                raise InvalidInput("tx_hash required in verify mode")
            tx_hash = normalize_tx_hash(tx_hash)
            event = await self._chain.fetch_purchase(tx_hash, address)
            daily_coins = await self._accrual.rate_for_amount(event.amount)
            start = event.start_date
        else:
            if amount_usd is None or _whole_number(amount_usd, "amount_usd") <= 0:
                raise InvalidInput("amount_usd must be > 0")
            daily_coins = _whole_number(amount_usd, "amount_usd")
            start = start_date if is_iso_date(start_date) else self._accrual.today()
            tx_hash = normalize_tx_hash(tx_hash) if tx_hash else ""

        if tx_hash and await self._storage.purchases.exists(tx_hash):
            return {"ok": True, "duplicate": True, "note": "duplicate_tx"}
        try:
            row = await self._storage.purchases.insert(wallet, tx_hash or None, daily_coins, start, days)
        except DuplicateTransaction:
            return {"ok": True, "duplicate": True, "note": "duplicate_tx"}

        logger.info("Admin %s added %s miner %d for %s: %d/day x %d from %s",
                    admin, mode, row["id"], wallet, daily_coins, days, start)
        credit = await self._accrual.credit_pending_days(wallet)
        return {
            "ok": True,
            "id": row["id"],
            "wallet": wallet,
            "daily_coins": daily_coins,
            "total_days": days,
            "start_date": start,
            "credited_now": credit["credited_coins"],
            "mode": mode,
        }

    async def miner_remove(self, admin: str, wallet: str, purchase_id: Optional[int] = None,
                           tx_hash: str = "") -> dict:
        """Delete a purchase and take back what it has credited (balance floored at 0)."""
        wallet = normalize_address(wallet, "wallet").lower()
        row = await self._find_purchase(wallet, purchase_id, tx_hash)
        credited = max(0, row["daily_coins"]) * max(0, row["credited_days"])

        async with self._storage.atomic():
            if credited > 0:
                balance = await self._storage.users.get_balance(wallet)
                await self._storage.users.set_balance(wallet, max(0, balance - credited))
            await self._storage.purchases.delete(row["id"])

        logger.info("Admin %s removed miner %d of %s, deducted %d", admin, row["id"], wallet, credited)
        return {"ok": True, "deducted": credited}

    async def miner_fix(self, admin: str, wallet: str, purchase_id: Optional[int] = None,
                        tx_hash: str = "") -> dict:
        """Re-derive a purchase's rate and start date from its transaction."""
        address = normalize_address(wallet, "wallet")
        wallet = address.lower()
        row = await self._find_purchase(wallet, purchase_id, tx_hash)
        use_tx = row["tx_hash"] or (normalize_tx_hash(tx_hash) if tx_hash else "")
        if not use_tx:
            raise InvalidInput("This miner has no tx_hash; cannot verify on-chain")

        event = await self._chain.fetch_purchase(use_tx, address)
        corrected_daily = await self._accrual.rate_for_amount(event.amount)
        corrected_start = event.start_date

        changed = row["daily_coins"] != corrected_daily or row["start_date"] != corrected_start
        if changed:
            await self._storage.purchases.update_rate_and_start(row["id"], corrected_daily, corrected_start)
            logger.info("Admin %s fixed miner %d: %d/day from %s -> %d/day from %s",
                        admin, row["id"], row["daily_coins"], row["start_date"],
                        corrected_daily, corrected_start)

        credit = await self._accrual.credit_pending_days(wallet)
        fresh = await self._storage.purchases.get(row["id"])
        return {
            "ok": True,
            "corrected_daily": corrected_daily if changed else row["daily_coins"],
            "credited_now": credit["credited_coins"],
            "miner": {
                "id": fresh["id"],
                "tx_hash": fresh["tx_hash"],
                "daily_coins": fresh["daily_coins"],
                "start_date": fresh["start_date"],
                "total_days": fresh["total_days"],
                "credited_days": fresh["credited_days"],
            },
        }

    # -------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------

    async def user_info(self, wallet: str = "", user_id: str = "") -> dict:
        user = await self._find_user(wallet, user_id)
        wallet = user["wallet_address"]
        uid = user["user_id"]
        mined = await self._storage.purchases.mined_sum(wallet)
        adjustments = await self._storage.mining_adjustments.sum_for_wallet(wallet)
        return {
            "ok": True,
            "user": {
                "user_id": uid,
                "wallet_address": wallet,
                "coin_balance": user["coin_balance"],
                "logins": await self._storage.logins.count_for_wallet(wallet),
                "referral_coins": await self._storage.referrals.sum_for_referrer(uid),
                "l1_count": await self._storage.users.count_referred(uid),
                "mining": {
                    "purchases": await self._storage.purchases.count_for_wallet(wallet),
                    "mined_coins": mined,
                    "adjustments": adjustments,
                    "mining_total": mined + adjustments,
                },
                "created_at": user["created_at"],
            },
        }

    async def overview(self) -> dict:
        return {
            "ok": True,
            "total_users": await self._storage.users.count(),
            "total_coins": await self._storage.users.total_coins(),
        }
