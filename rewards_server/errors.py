"""
errors.py - Error taxonomy.

Every error carries a short machine-stable ``reason`` string and the HTTP
status the API layer renders it with. Messages are for logs only; responses
never include them.
"""


class RewardsError(Exception):
    """Base class for all domain errors."""

    reason = "SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.reason)


class InvalidInput(RewardsError):
    """Malformed address/hash or missing fields."""

    reason = "INVALID_INPUT"
    status_code = 400


class NotFound(RewardsError):
    reason = "NOT_FOUND"
    status_code = 404


class SignatureInvalid(RewardsError):
    reason = "SIGNATURE_INVALID"
    status_code = 401


class SignatureExpired(RewardsError):
    reason = "SIGNATURE_EXPIRED"
    status_code = 401


class NotAuthorized(RewardsError):
    """Admin-only action attempted by an address that is not the contract owner."""

    reason = "NOT_AUTHORIZED"
    status_code = 403


class NotRegisteredOnChain(RewardsError):
    reason = "NOT_REGISTERED_ON_CHAIN"
    status_code = 400


class DuplicateTransaction(RewardsError):
    """A purchase with this transaction hash is already recorded.

    Callers treat this as an idempotent success, never as a failure.
    """

    reason = "DUPLICATE_TRANSACTION"
    status_code = 200


# ---------------------------------------------------------------------------
# Chain errors
# ---------------------------------------------------------------------------

class ChainError(RewardsError):
    """Anything that went wrong while reading or interpreting chain data."""

    reason = "CHAIN_ERROR"
    status_code = 400


class ChainReadFailure(ChainError):
    """RPC/provider error. Transient; safe to retry."""

    reason = "CHAIN_READ_FAILURE"
    status_code = 502


class TxNotFound(ChainError):
    reason = "TX_NOT_FOUND"
    status_code = 400


class EventNotFound(ChainError):
    reason = "EVENT_NOT_FOUND"
    status_code = 400


class EventUserMismatch(ChainError):
    reason = "EVENT_USER_MISMATCH"
    status_code = 400
