"""
users.py - User mirroring, referral rewards, daily logins and stats.

Users exist in the database only after the contract confirms them; the
chain is the authority for user ids and referrers.
"""

import logging
from typing import TYPE_CHECKING

from .chain import normalize_address, normalize_tx_hash
from .daymath import next_utc_midnight_ms
from .errors import NotFound, NotRegisteredOnChain
from .storage import REFERRAL_REWARD_COINS

if TYPE_CHECKING:
    from .accrual import AccrualEngine
    from .chain import ChainReader
    from .storage import StorageManager

logger = logging.getLogger("users")

LOGIN_REWARD_COINS = 1


class UserService:
    def __init__(self, storage: "StorageManager", chain: "ChainReader", accrual: "AccrualEngine"):
        self._storage = storage
        self._chain = chain
        self._accrual = accrual

    async def ensure_user(self, address: str) -> bool:
        """True if the wallet has a row, creating it from the chain if needed."""
        if await self._storage.users.exists(address):
            return True
        profile = await self._chain.get_profile(address)
        if profile is None:
            return False
        await self._storage.users.upsert(profile.address, profile.user_id, profile.referrer_id)
        logger.info("Mirrored user %s (%s) from chain", profile.address, profile.user_id)
        return True

    async def sync_from_chain(self, address: str) -> dict:
        """Upsert the wallet from its on-chain profile and pay the referral reward once."""
        address = normalize_address(address)
        profile = await self._chain.get_profile(address)
        if profile is None:
            raise NotRegisteredOnChain(address)

        await self._storage.users.upsert(address, profile.user_id, profile.referrer_id)

        bonus = {"awarded": False, "referrer": ""}
        if profile.has_referrer:
            referrer_wallet = profile.referrer_address.lower()
            await self.ensure_user(profile.referrer_address)
            referrer_id = profile.referrer_id
            if not referrer_id:
                referrer = await self._storage.users.get_by_wallet(referrer_wallet)
                referrer_id = referrer["user_id"] if referrer else ""
            if not referrer_id:
                logger.warning("Referrer %s of %s has no user id; reward is unattributed",
                               referrer_wallet, address)

            async with self._storage.atomic():
                if await self._storage.referrals.record(address, referrer_id, REFERRAL_REWARD_COINS):
                    await self._storage.users.add_coins(referrer_wallet, REFERRAL_REWARD_COINS)
                    bonus = {"awarded": True, "referrer": referrer_wallet}
            if bonus["awarded"]:
                logger.info("Referral reward %d -> %s for %s",
                            REFERRAL_REWARD_COINS, referrer_wallet, address)

        return {
            "address": address.lower(),
            "userId": profile.user_id,
            "referrerId": profile.referrer_id,
            "referral_bonus": bonus,
        }

    async def register_lite(self, tx_hash: str) -> dict:
        """Sync the user named by a registration transaction's event."""
        receipt = await self._chain.get_receipt(normalize_tx_hash(tx_hash))
        user_address = self._chain.find_registered_user(receipt)
        return await self.sync_from_chain(user_address)

    async def daily_login(self, address: str) -> dict:
        address = normalize_address(address)
        if not await self.ensure_user(address):
            raise NotRegisteredOnChain(address)

        wallet = address.lower()
        today = self._accrual.today()
        async with self._storage.atomic():
            inserted = await self._storage.logins.record(wallet, today)
            if inserted:
                await self._storage.users.add_coins(wallet, LOGIN_REWARD_COINS)

        mining = await self._accrual.credit_pending_days(wallet)
        return {
            "ok": True,
            "total_login_days": await self._storage.logins.count_for_wallet(wallet),
            "login_credited": LOGIN_REWARD_COINS if inserted else 0,
            "mining_credited": mining["credited_coins"],
            "today_claimed": True,
            "next_reset_utc_ms": next_utc_midnight_ms(self._accrual.now()),
        }

    async def stats(self, address: str) -> dict:
        address = normalize_address(address)
        wallet = address.lower()
        await self.ensure_user(address)
        await self._accrual.credit_pending_days(wallet)

        user = await self._storage.users.get_by_wallet(wallet)
        if user is None:
            raise NotFound(f"User {wallet} not found")

        today = self._accrual.today()
        return {
            "userId": user["user_id"],
            "coin_balance": user["coin_balance"],
            "logins": {
                "total_login_days": await self._storage.logins.count_for_wallet(wallet),
                "today_claimed": await self._storage.logins.has_login(wallet, today),
                "today_date": today,
                "next_reset_utc_ms": next_utc_midnight_ms(self._accrual.now()),
            },
            "referrals": {"l1_count": await self._storage.users.count_referred(user["user_id"])},
        }
