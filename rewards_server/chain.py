"""
chain.py - Read-only client for the platform contract.

Wraps an AsyncWeb3 JSON-RPC client bound to a single contract:
 - registration profile (isRegistered / addressToUserId / referrerOf)
 - owner() gate for admin routes
 - transaction receipts and MinerPurchased event decoding
 - historical MinerPurchased log scans for a wallet
 - payment-token decimals discovery (usdtToken() -> decimals())

Every provider failure surfaces as ChainReadFailure so callers can tell
"the chain said no" (TxNotFound / EventNotFound / EventUserMismatch) apart
from "the chain could not be asked".
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from .daymath import iso_date_from_unix

from .errors import (
    ChainReadFailure,
    EventNotFound,
    EventUserMismatch,
    InvalidInput,
    NotAuthorized,
    TxNotFound,
)

logger = logging.getLogger("chain")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_TOKEN_DECIMALS = 18
BLOCKS_PER_DAY = 28800  # ~3s blocks
MAX_LOOKBACK_DAYS = 365
DEFAULT_RPC_TIMEOUT = 15.0

_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


# ---------------------------------------------------------------------------
# ABI
# ---------------------------------------------------------------------------

def _view(name: str, inputs: List[str], output: str) -> dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": [{"name": f"arg{i}", "type": t} for i, t in enumerate(inputs)],
        "outputs": [{"name": "", "type": output}],
    }


def _event(name: str, inputs: List[tuple]) -> dict:
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [{"name": n, "type": t, "indexed": idx} for n, t, idx in inputs],
    }


MINER_PURCHASED_EVENT = _event("MinerPurchased", [
    ("user", "address", True),
    ("amount", "uint256", False),
    ("startTime", "uint256", False),
    ("endTime", "uint256", False),
])

PLATFORM_ABI = [
    _view("isRegistered", ["address"], "bool"),
    _view("addressToUserId", ["address"], "string"),
    _view("referrerOf", ["address"], "address"),
    _view("owner", [], "address"),
    _view("usdtToken", [], "address"),
    MINER_PURCHASED_EVENT,
    _event("UserRegistered", [
        ("user", "address", True),
        ("userId", "string", False),
        ("referrer", "address", True),
    ]),
]

ERC20_ABI = [_view("decimals", [], "uint8")]

# Registration event shapes seen across contract versions (register-lite).
REGISTRATION_EVENTS = [
    _event("UserRegistered", [("user", "address", True), ("userId", "string", False), ("referrer", "address", True)]),
    _event("UserRegistered", [("user", "address", False), ("userId", "string", False), ("referrer", "address", False)]),
    _event("UserRegistered", [("user", "address", True), ("userId", "bytes32", False), ("referrer", "address", True)]),
    _event("Registered", [("user", "address", True), ("userId", "string", False), ("referrer", "address", True)]),
    _event("Registered", [("user", "address", True), ("userId", "bytes32", False), ("referrer", "address", True)]),
]


def event_topic(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature))


MINER_PURCHASED_TOPIC = event_topic("MinerPurchased(address,uint256,uint256,uint256)")

REGISTRATION_TOPICS = {
    event_topic(sig) for sig in (
        "UserRegistered(address,string,address)",
        "UserRegistered(address,bytes32,address)",
        "UserRegistered(address,string)",
        "UserRegistered(address,bytes32)",
        "Registered(address,string,address)",
        "Registered(address,bytes32,address)",
        "Registered(address,string)",
        "Registered(address,bytes32)",
    )
}


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------

def normalize_address(value: Any, field: str = "address") -> str:
    """Return the checksummed form of ``value`` or raise InvalidInput."""
    if not isinstance(value, str) or not Web3.is_address(value):
        raise InvalidInput(f"Invalid {field}")
    return Web3.to_checksum_address(value)


def normalize_tx_hash(value: Any) -> str:
    if not isinstance(value, str) or not _TX_HASH_RE.match(value):
        raise InvalidInput("Invalid tx_hash")
    return value.lower()


def address_topic(address: str) -> str:
    """Left-pad an address to a 32-byte indexed topic."""
    return "0x" + "0" * 24 + Web3.to_checksum_address(address).lower()[2:]


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return value.lower()
    return Web3.to_hex(value).lower()


def _same_address(a: str, b: str) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

@dataclass
class ChainProfile:
    address: str
    user_id: str
    referrer_address: str = ZERO_ADDRESS
    referrer_id: str = ""

    @property
    def has_referrer(self) -> bool:
        return bool(self.referrer_address) and not _same_address(self.referrer_address, ZERO_ADDRESS)


@dataclass
class PurchaseEvent:
    user: str
    amount: int
    start_time: int
    end_time: int
    tx_hash: str

    @property
    def start_date(self) -> str:
        try:
            return iso_date_from_unix(self.start_time)
        except (OverflowError, ValueError, OSError):
            raise EventNotFound(f"MinerPurchased startTime out of range: {self.start_time}")


class DecimalsCache:
    """Holds the payment token's decimals.

    A discovered value lives for ``ttl`` seconds (None: process lifetime).
    A fallback value (token unset or RPC failure) only lives for
    ``fallback_ttl`` so the next call retries discovery.
    """

    def __init__(self, ttl: Optional[float] = None, fallback_ttl: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.fallback_ttl = fallback_ttl
        self._clock = clock
        self._decimals: Optional[int] = None
        self._token_address = ""
        self._expires_at: Optional[float] = None

    def get(self) -> Optional[int]:
        if self._decimals is None:
            return None
        if self._expires_at is not None and self._clock() >= self._expires_at:
            self.invalidate()
            return None
        return self._decimals

    def set(self, decimals: int, token_address: str = "", fallback: bool = False):
        ttl = self.fallback_ttl if fallback else self.ttl
        self._decimals = int(decimals)
        self._token_address = token_address
        self._expires_at = None if ttl is None else self._clock() + ttl

    def invalidate(self):
        self._decimals = None
        self._token_address = ""
        self._expires_at = None

    @property
    def token_address(self) -> str:
        return self._token_address


# ---------------------------------------------------------------------------
# Chain reader
# ---------------------------------------------------------------------------

class ChainReader:
    """Read-only view of the platform contract over JSON-RPC."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        decimals_cache: Optional[DecimalsCache] = None,
        timeout: float = DEFAULT_RPC_TIMEOUT,
    ):
        self.rpc_url = (rpc_url or "").rstrip("/")
        self.contract_address = Web3.to_checksum_address(contract_address) if contract_address else ""
        self.decimals_cache = decimals_cache or DecimalsCache()
        self.timeout = timeout
        self._w3: Optional[AsyncWeb3] = None
        self._contract = None
        if self.rpc_url:
            self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.rpc_url))
            if self.contract_address:
                self._contract = self._w3.eth.contract(address=self.contract_address, abi=PLATFORM_ABI)
        else:
            logger.warning("No RPC URL configured; every chain read will fail")

    def _require_contract(self):
        if self._contract is None:
            raise ChainReadFailure("RPC URL or contract address is not configured")
        return self._contract

    async def _rpc(self, make_call: Callable[[], Any], what: str):
        try:
            return await asyncio.wait_for(make_call(), self.timeout)
        except ChainReadFailure:
            raise
        except Exception as e:
            logger.warning("RPC %s failed: %s", what, e)
            raise ChainReadFailure(f"{what}: {e}") from e

    # -------------------------------------------------------------------
    # Registration / ownership
    # -------------------------------------------------------------------

    async def get_profile(self, address: str) -> Optional[ChainProfile]:
        """Registration data for ``address``; None when it is not registered."""
        contract = self._require_contract()
        addr = Web3.to_checksum_address(address)
        registered, user_id, referrer = await self._rpc(
            lambda: asyncio.gather(
                contract.functions.isRegistered(addr).call(),
                contract.functions.addressToUserId(addr).call(),
                contract.functions.referrerOf(addr).call(),
            ),
            "get_profile",
        )
        if not registered or not user_id:
            return None

        profile = ChainProfile(address=addr, user_id=user_id, referrer_address=referrer or ZERO_ADDRESS)
        if profile.has_referrer:
            try:
                profile.referrer_id = await self._rpc(
                    lambda: contract.functions.addressToUserId(profile.referrer_address).call(),
                    "referrer_user_id",
                ) or ""
            except ChainReadFailure:
                profile.referrer_id = ""
        return profile

    async def get_owner(self) -> str:
        contract = self._require_contract()
        owner = await self._rpc(lambda: contract.functions.owner().call(), "owner")
        return Web3.to_checksum_address(owner)

    async def require_owner(self, address: str):
        owner = await self.get_owner()
        if not _same_address(owner, address):
            raise NotAuthorized(f"{address} is not the contract owner")

    async def chain_id(self) -> int:
        self._require_contract()
        return int(await self._rpc(lambda: self._w3.eth.chain_id, "chain_id"))

    # -------------------------------------------------------------------
    # Receipts and events
    # -------------------------------------------------------------------

    async def get_receipt(self, tx_hash: str):
        self._require_contract()
        try:
            receipt = await asyncio.wait_for(
                self._w3.eth.get_transaction_receipt(tx_hash), self.timeout
            )
        except TransactionNotFound:
            raise TxNotFound(tx_hash)
        except Exception as e:
            logger.warning("RPC get_transaction_receipt(%s) failed: %s", tx_hash, e)
            raise ChainReadFailure(f"get_transaction_receipt: {e}") from e
        if not receipt or receipt.get("status") != 1:
            raise TxNotFound(tx_hash)
        return receipt

    def decode_purchase_log(self, log) -> PurchaseEvent:
        contract = self._require_contract()
        parsed = contract.events.MinerPurchased().process_log(log)
        args = parsed["args"]
        event = PurchaseEvent(
            user=Web3.to_checksum_address(args["user"]),
            amount=int(args["amount"]),
            start_time=int(args["startTime"]),
            end_time=int(args["endTime"]),
            tx_hash=_hex(log["transactionHash"]),
        )
        event.start_date  # EventNotFound for an out-of-range startTime
        return event

    def find_purchase_event(self, receipt, expected_user: Optional[str] = None) -> PurchaseEvent:
        """Decode the MinerPurchased log the platform contract emitted in ``receipt``."""
        for log in receipt.get("logs") or []:
            topics = log.get("topics") or []
            if not log.get("address") or not topics:
                continue
            if not _same_address(log["address"], self.contract_address):
                continue
            if _hex(topics[0]) != MINER_PURCHASED_TOPIC:
                continue
            try:
                event = self.decode_purchase_log(log)
            except Exception as e:
                logger.warning("Undecodable MinerPurchased log in %s: %s", _hex(receipt.get("transactionHash", b"")), e)
                continue
            if expected_user and not _same_address(event.user, expected_user):
                raise EventUserMismatch(f"event user {event.user} != {expected_user}")
            return event
        raise EventNotFound("MinerPurchased event not found in tx")

    async def fetch_purchase(self, tx_hash: str, expected_user: Optional[str] = None) -> PurchaseEvent:
        receipt = await self.get_receipt(tx_hash)
        event = self.find_purchase_event(receipt, expected_user)
        if not event.tx_hash:
            event.tx_hash = tx_hash.lower()
        return event

    async def purchase_logs(self, address: str, lookback_days: int = 180) -> List[PurchaseEvent]:
        """MinerPurchased events for ``address`` over the last ``lookback_days``."""
        self._require_contract()
        days = max(1, min(int(lookback_days), MAX_LOOKBACK_DAYS))
        latest = int(await self._rpc(lambda: self._w3.eth.block_number, "block_number"))
        from_block = max(0, latest - days * BLOCKS_PER_DAY)
        logs = await self._rpc(
            lambda: self._w3.eth.get_logs({
                "address": self.contract_address,
                "fromBlock": from_block,
                "toBlock": latest,
                "topics": [MINER_PURCHASED_TOPIC, address_topic(address)],
            }),
            "get_logs",
        )
        events = []
        for log in logs:
            try:
                events.append(self.decode_purchase_log(log))
            except Exception as e:
                logger.warning("Skipping undecodable log %s: %s", _hex(log.get("transactionHash", b"")), e)
        return events

    def find_registered_user(self, receipt) -> str:
        """Checksummed user address from any known registration event shape."""
        logs = [lg for lg in (receipt.get("logs") or []) if lg.get("address") and lg.get("topics")]
        preferred = [lg for lg in logs if _hex(lg["topics"][0]) in REGISTRATION_TOPICS]
        for candidates in (preferred, logs):
            for log in candidates:
                user = self._decode_registration(log)
                if user:
                    return user
        raise EventNotFound("UserRegistered event not found in tx")

    def _decode_registration(self, log) -> str:
        for event_abi in REGISTRATION_EVENTS:
            contract = self._w3.eth.contract(abi=[event_abi])
            try:
                parsed = getattr(contract.events, event_abi["name"])().process_log(log)
            except Exception:
                continue
            user = parsed["args"].get("user")
            if user and Web3.is_address(user):
                return Web3.to_checksum_address(user)
        return ""

    # -------------------------------------------------------------------
    # Token decimals
    # -------------------------------------------------------------------

    async def token_decimals(self) -> int:
        """Payment-token decimals; falls back to 18 and never raises."""
        cached = self.decimals_cache.get()
        if cached is not None:
            return cached

        token = ""
        decimals, fallback = DEFAULT_TOKEN_DECIMALS, True
        try:
            contract = self._require_contract()
            token = await self._rpc(lambda: contract.functions.usdtToken().call(), "usdtToken")
        except ChainReadFailure:
            logger.warning("usdtToken() unavailable; assuming %d decimals", DEFAULT_TOKEN_DECIMALS)

        if token and not _same_address(token, ZERO_ADDRESS):
            erc20 = self._w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)
            try:
                decimals = int(await self._rpc(lambda: erc20.functions.decimals().call(), "decimals"))
                fallback = decimals <= 0
                decimals = decimals or DEFAULT_TOKEN_DECIMALS
            except ChainReadFailure:
                logger.warning("decimals() failed for token %s; assuming %d", token, DEFAULT_TOKEN_DECIMALS)

        self.decimals_cache.set(decimals, token or ZERO_ADDRESS, fallback=fallback)
        logger.info("Token decimals: %d (token=%s fallback=%s)", decimals, token or ZERO_ADDRESS, fallback)
        return decimals
