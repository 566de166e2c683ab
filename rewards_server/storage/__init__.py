from ._schema import SCHEMA_VERSION, SCHEMA_SQL, SQLITE_INT_MAX, SQLITE_INT_MIN
from ._migrate import ensure_schema
from .users import UserRepo
from .logins import LoginRepo
from .referrals import ReferralRepo, REFERRAL_REWARD_COINS
from .purchases import PurchaseRepo, DEFAULT_TOTAL_DAYS
from .adjustments import DeltaLogRepo
from .manager import StorageManager

__all__ = [
    "SCHEMA_VERSION",
    "SCHEMA_SQL",
    "SQLITE_INT_MAX",
    "SQLITE_INT_MIN",
    "ensure_schema",
    "UserRepo",
    "LoginRepo",
    "ReferralRepo",
    "REFERRAL_REWARD_COINS",
    "PurchaseRepo",
    "DEFAULT_TOTAL_DAYS",
    "DeltaLogRepo",
    "StorageManager",
]
