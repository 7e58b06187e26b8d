"""Exception taxonomy shared by the engines, the store and the API."""

from decimal import Decimal
from typing import Optional


class CustodexError(Exception):
    """Base class for all custodex errors."""


class ConfigurationError(CustodexError):
    """A required setting is missing; the process must not serve traffic."""


class ChainReadError(CustodexError):
    """A ledger client query failed (timeout, rate limit, malformed response)."""


class PersistenceError(CustodexError):
    """The store is unavailable or rejected a write."""


class ValidationError(CustodexError):
    """A withdrawal request is malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class LimitExceededError(CustodexError):
    """A withdrawal would breach the user's daily cap."""

    def __init__(self, message: str, remaining: Decimal):
        self.remaining = remaining
        super().__init__(message)


class BroadcastError(CustodexError):
    """Signing or sending an outbound transfer failed.

    ``retryable`` is only set when the failure happened before the signed
    transaction was handed to the network, so a second attempt cannot pay twice.
    """

    def __init__(self, message: str, retryable: bool = False, tx_hash: Optional[str] = None):
        self.retryable = retryable
        self.tx_hash = tx_hash
        super().__init__(message)
