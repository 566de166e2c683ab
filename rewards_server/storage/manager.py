import logging
from typing import Optional

import aiosqlite

from ._migrate import ensure_schema
from ._tx import Transactor
from .adjustments import DeltaLogRepo
from .logins import LoginRepo
from .purchases import PurchaseRepo
from .referrals import ReferralRepo
from .users import UserRepo

logger = logging.getLogger("storage")


class StorageManager:
    """Top-level manager: opens the database, bootstraps the schema, exposes repos."""

    def __init__(self, db_path: str = "rewards.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._tx: Optional[Transactor] = None
        self.users: Optional[UserRepo] = None
        self.logins: Optional[LoginRepo] = None
        self.referrals: Optional[ReferralRepo] = None
        self.purchases: Optional[PurchaseRepo] = None
        self.coin_audit: Optional[DeltaLogRepo] = None
        self.mining_adjustments: Optional[DeltaLogRepo] = None

    async def initialize(self):
        # Autocommit mode: transactions are opened explicitly by Transactor.
        self._db = await aiosqlite.connect(self.db_path, isolation_level=None)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await ensure_schema(self._db, logger)

        self._tx = Transactor(self._db)
        self.users = UserRepo(self._db, self._tx)
        self.logins = LoginRepo(self._db, self._tx)
        self.referrals = ReferralRepo(self._db, self._tx)
        self.purchases = PurchaseRepo(self._db, self._tx)
        self.coin_audit = DeltaLogRepo(self._db, self._tx, "admin_coin_audit")
        self.mining_adjustments = DeltaLogRepo(self._db, self._tx, "mining_adjustments")

        logger.info("Storage initialized: %s", self.db_path)

    def atomic(self):
        """Write transaction spanning several repo calls (all-or-nothing)."""
        return self._tx.atomic()

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Storage closed")
