# SPDX-License-Identifier: MPL-2.0
"""Data models for the FHE ledger."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from fhe_ledger.core.codec import EncodedValue


class TransactionStatus(str, Enum):
    """Status of a transaction."""

    PENDING = "pending"
    CLEARED = "cleared"
    FLAGGED = "flagged"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


@dataclass(frozen=True)
class Transaction:
    """A single ledger entry. The amount is only ever held encoded."""

    id: str  # noqa: A003
    amount: EncodedValue
    sender: str
    receiver: str
    created_at: datetime
    status: TransactionStatus = TransactionStatus.PENDING
    aml_checked: bool = False


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of an AML classification."""

    flagged: bool
    threshold_used: Decimal


@dataclass(frozen=True)
class LedgerStats:
    """Per-status transaction counts."""

    total: int = 0
    pending: int = 0
    cleared: int = 0
    flagged: int = 0
