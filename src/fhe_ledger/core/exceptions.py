# SPDX-License-Identifier: MPL-2.0
"""Custom exceptions for the FHE ledger engine.

Every failure the engine can report has its own exception type so callers can
decide on user-facing messaging. ``retryable`` tells the caller whether trying
the same operation again can succeed, or whether its view of the ledger is
stale and needs a refresh.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for all ledger engine errors."""

    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValueOutOfRange(LedgerError):
    """Raised when an amount cannot be encoded (magnitude, precision or NaN)."""

    pass


class MalformedCiphertext(LedgerError):
    """Raised when an encoded value was not produced by a known scheme."""

    pass


class UnsupportedOperation(LedgerError):
    """Raised when a homomorphic operation tag is not recognized."""

    pass


class AuthorizationDenied(LedgerError):
    """Raised when a reveal is attempted without a valid authorization."""

    retryable = True


class AuthorizationTimeout(AuthorizationDenied):
    """Raised when the external signer does not answer before the deadline."""

    pass


class NotAuthorized(LedgerError):
    """Raised when a caller is not allowed to classify a transaction."""

    pass


class InvalidTransition(LedgerError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    pass


class AlreadyClassified(InvalidTransition):
    """Raised when a transaction has already left the pending state."""

    pass


class StoreError(LedgerError):
    """Base exception for external ledger store failures."""

    retryable = True


class RecordWriteError(StoreError):
    """Raised when a transaction record could not be written."""

    pass


class IndexUpdateError(StoreError):
    """Raised when the transaction index could not be updated.

    The record itself was written; ``details["tx_id"]`` names the orphan so the
    caller can retry the index step on its own.
    """

    pass


class NotFound(LedgerError):
    """Raised when a referenced transaction id is absent from the store."""

    pass


class ConfigurationError(LedgerError):
    """Raised when configuration is invalid or missing."""

    pass


class MalformedRecord(StoreError):
    """Raised when a stored record or the index cannot be parsed."""

    retryable = False


class DuplicateTransaction(LedgerError):
    """Raised when submitting a transaction id that already has a record."""

    pass
