"""Pydantic request models for the REST API."""

from typing import Optional
from pydantic import BaseModel


class SignedRequest(BaseModel):
    """Wallet address plus the signature over the auth message for it."""

    address: str = ""
    timestamp: int = 0
    signature: str = ""


class LoginRequest(BaseModel):
    timestamp: int = 0
    signature: str = ""


class RecordPurchaseRequest(SignedRequest):
    tx_hash: str = ""


class TxHashRequest(BaseModel):
    tx_hash: str = ""


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

class UserLookupRequest(SignedRequest):
    user_id: str = ""
    wallet: str = ""


class AdjustCoinsRequest(UserLookupRequest):
    delta: Optional[float] = None
    reason: str = ""


class ReconcileUserRequest(UserLookupRequest):
    lookback_days: Optional[int] = None


class WalletRequest(SignedRequest):
    wallet: str = ""
    lookback_days: Optional[int] = None


class MinerAddRequest(SignedRequest):
    wallet: str = ""
    mode: str = "verify"
    tx_hash: str = ""
    amount_usd: Optional[float] = None
    start_date: str = ""
    total_days: Optional[int] = None


class MinerRefRequest(SignedRequest):
    wallet: str = ""
    id: Optional[int] = None
    tx_hash: str = ""


class MiningEditRequest(SignedRequest):
    wallet: str = ""
    set_to: Optional[float] = None
    reason: str = ""
