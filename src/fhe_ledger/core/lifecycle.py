# SPDX-License-Identifier: MPL-2.0
"""Transaction lifecycle.

``pending`` is the only non-terminal state. A classification moves a
transaction to ``cleared`` or ``flagged`` exactly once; there is no path back
and no re-classification. All functions here are pure and return new
:class:`Transaction` values.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import time
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from fhe_ledger.core.codec import DEFAULT_SCHEME_TAG, Amount, EncodingScheme, get_scheme
from fhe_ledger.core.exceptions import AlreadyClassified
from fhe_ledger.core.models import (
    ClassificationResult,
    LedgerStats,
    Transaction,
    TransactionStatus,
)

logger = logging.getLogger(__name__)


def new_transaction_id() -> str:
    """Return ``<unix millis>-<random hex>``."""
    return f"{int(time.time() * 1000)}-{os.urandom(4).hex()}"


def submit(
    amount: Amount,
    sender: str,
    receiver: str,
    tx_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
    scheme: Optional[EncodingScheme] = None,
) -> Transaction:
    """Encode ``amount`` and create a pending transaction.

    Raises:
        ValueOutOfRange: If the amount cannot be encoded.
        ValueError: If sender or receiver is empty.
    """
    if not sender or not receiver:
        raise ValueError("sender and receiver are required")
    encoded = (scheme or get_scheme(DEFAULT_SCHEME_TAG)).encode(amount)
    if created_at is None:
        created_at = datetime.now(timezone.utc).replace(microsecond=0)
    return Transaction(
        id=tx_id or new_transaction_id(),
        amount=encoded,
        sender=sender,
        receiver=receiver,
        created_at=created_at,
    )


def apply_classification(tx: Transaction, result: ClassificationResult) -> Transaction:
    """Move ``tx`` from pending to its terminal status.

    Raises:
        AlreadyClassified: If ``tx`` is no longer pending.
    """
    if tx.status is not TransactionStatus.PENDING:
        raise AlreadyClassified(
            f"Transaction {tx.id} is already {tx.status.value}",
            details={"tx_id": tx.id, "status": tx.status.value},
        )
    status = TransactionStatus.FLAGGED if result.flagged else TransactionStatus.CLEARED
    logger.debug("Transaction %s -> %s", tx.id, status.value)
    return dataclasses.replace(tx, status=status, aml_checked=True)


def summarize(transactions: Iterable[Transaction]) -> LedgerStats:
    counts = {status: 0 for status in TransactionStatus}
    total = 0
    for tx in transactions:
        counts[tx.status] += 1
        total += 1
    return LedgerStats(
        total=total,
        pending=counts[TransactionStatus.PENDING],
        cleared=counts[TransactionStatus.CLEARED],
        flagged=counts[TransactionStatus.FLAGGED],
    )


def filter_by_status(
    transactions: Iterable[Transaction], status: Optional[TransactionStatus] = None
) -> List[Transaction]:
    """Transactions with ``status``; all of them when ``status`` is None."""
    if status is None:
        return list(transactions)
    wanted = TransactionStatus(status)
    return [tx for tx in transactions if tx.status is wanted]
