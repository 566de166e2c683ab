"""
auth.py - Wallet-signed (EIP-191) request authentication.

Two signed messages are accepted:
  1. User:  "I authorize the backend to sync my on-chain profile." + address + timestamp
  2. Admin: "Admin action authorization" + purpose + address + timestamp,
            additionally gated on the signer being the contract owner.

Timestamps are unix seconds and must lie within SIGNATURE_WINDOW_SEC of
server time. There is no nonce store; a signature is replayable inside
its window, which every signed route tolerates (they are idempotent).
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Optional

from eth_account import Account as EthAccount
from eth_account.messages import encode_defunct
from web3 import Web3

from .errors import InvalidInput, SignatureExpired, SignatureInvalid

if TYPE_CHECKING:
    from .chain import ChainReader

logger = logging.getLogger("auth")

SIGNATURE_WINDOW_SEC = 300  # 5 minutes either side

USER_AUTH_TEMPLATE = (
    "I authorize the backend to sync my on-chain profile.\n"
    "Address: {address}\n"
    "Timestamp: {timestamp}"
)
ADMIN_AUTH_TEMPLATE = (
    "Admin action authorization\n"
    "Purpose: {purpose}\n"
    "Address: {address}\n"
    "Timestamp: {timestamp}"
)


def _checksum(address: str) -> str:
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidInput("Invalid wallet address")
    return Web3.to_checksum_address(address)


def _timestamp(value: Any) -> int:
    try:
        ts = int(value)
    except (TypeError, ValueError):
        raise InvalidInput("Invalid timestamp")
    if ts <= 0:
        raise InvalidInput("Missing timestamp")
    return ts


def build_user_auth_message(address: str, timestamp: int) -> str:
    return USER_AUTH_TEMPLATE.format(address=_checksum(address), timestamp=_timestamp(timestamp))


def build_admin_action_message(purpose: str, address: str, timestamp: int) -> str:
    return ADMIN_AUTH_TEMPLATE.format(
        purpose=purpose, address=_checksum(address), timestamp=_timestamp(timestamp)
    )


def check_fresh(timestamp: Any, now: Optional[float] = None, window: int = SIGNATURE_WINDOW_SEC):
    """Raise SignatureExpired when ``timestamp`` is more than ``window`` seconds off."""
    ts = _timestamp(timestamp)
    now_sec = int(time.time() if now is None else now)
    if abs(now_sec - ts) > window:
        raise SignatureExpired(f"timestamp {ts} outside +/-{window}s of {now_sec}")


def recover_address(message: str, signature: str) -> str:
    """Checksummed signer of an EIP-191 personal message."""
    if not signature or not isinstance(signature, str):
        raise SignatureInvalid("Missing signature")
    try:
        recovered = EthAccount.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        raise SignatureInvalid(f"Unrecoverable signature: {e}") from e
    return Web3.to_checksum_address(recovered)


def verify_signed_message(expected_address: str, message: str, signature: str):
    recovered = recover_address(message, signature)
    if recovered != _checksum(expected_address):
        raise SignatureInvalid("Signature does not match address")


class AuthService:
    """Verifies user and admin signatures against the server clock."""

    def __init__(
        self,
        chain: "ChainReader",
        window: int = SIGNATURE_WINDOW_SEC,
        clock: Callable[[], float] = time.time,
    ):
        self._chain = chain
        self._window = window
        self._clock = clock

    def verify_user(self, address: str, timestamp: Any, signature: str) -> str:
        """Return the checksummed address that signed the user message."""
        address = _checksum(address)
        if not signature:
            raise InvalidInput("Missing timestamp/signature")
        check_fresh(timestamp, self._clock(), self._window)
        verify_signed_message(address, build_user_auth_message(address, timestamp), signature)
        return address

    async def verify_admin(self, purpose: str, address: str, timestamp: Any, signature: str) -> str:
        """Return the checksummed owner address that signed ``purpose``.

        Raises NotAuthorized when the signer is not the contract owner.
        """
        address = _checksum(address)
        if not signature:
            raise InvalidInput("Missing auth params")
        check_fresh(timestamp, self._clock(), self._window)
        message = build_admin_action_message(purpose, address, timestamp)
        verify_signed_message(address, message, signature)
        await self._chain.require_owner(address)
        logger.info("Admin %s authorized for %s", address, purpose)
        return address
