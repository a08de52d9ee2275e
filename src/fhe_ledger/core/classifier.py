# SPDX-License-Identifier: MPL-2.0
"""AML classification over encoded amounts.

Classification is sender-initiated: only the sender of a pending transaction
may run the check, mirroring a self-reporting compliance model. The encoded
flag produced by the operator is decoded inside the engine; it is never
returned to the caller as plaintext amount data.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from fhe_ledger.core.exceptions import AlreadyClassified, NotAuthorized
from fhe_ledger.core.models import ClassificationResult, Transaction, TransactionStatus
from fhe_ledger.core.operator import (
    DEFAULT_AML_THRESHOLD,
    FLAG_TRUE,
    HomomorphicOperator,
    Operation,
)

logger = logging.getLogger(__name__)


def same_address(a: str, b: str) -> bool:
    """Hex addresses compare case-insensitively."""
    return a.strip().lower() == b.strip().lower()


class AmlClassifier:
    """Runs the threshold check and maps its encoded result to an outcome."""

    def __init__(self, operator: Optional[HomomorphicOperator] = None) -> None:
        self.operator = operator or HomomorphicOperator()

    @property
    def threshold(self) -> Decimal:
        return self.operator.aml_threshold

    def classify(self, transaction: Transaction, caller: str) -> ClassificationResult:
        """Classify ``transaction`` on behalf of ``caller``.

        Raises:
            AlreadyClassified: If the transaction is not pending.
            NotAuthorized: If ``caller`` is not the transaction's sender.
            MalformedCiphertext: If the stored amount cannot be decoded.
        """
        if transaction.status is not TransactionStatus.PENDING:
            raise AlreadyClassified(
                f"Transaction {transaction.id} is already {transaction.status.value}",
                details={"tx_id": transaction.id, "status": transaction.status.value},
            )
        if not caller or not same_address(caller, transaction.sender):
            raise NotAuthorized(
                "Only the sender may run the AML check",
                details={"tx_id": transaction.id},
            )

        encoded_flag = self.operator.apply(transaction.amount, Operation.aml_threshold_check())
        flagged = self.operator.scheme.decode(encoded_flag) == FLAG_TRUE
        logger.info(
            "AML check for %s: %s", transaction.id, "flagged" if flagged else "cleared"
        )
        return ClassificationResult(flagged=flagged, threshold_used=self.threshold)


def classify(
    transaction: Transaction,
    caller: str,
    threshold: Decimal = DEFAULT_AML_THRESHOLD,
) -> ClassificationResult:
    """Convenience wrapper around :class:`AmlClassifier`."""
    return AmlClassifier(HomomorphicOperator(aml_threshold=threshold)).classify(
        transaction, caller
    )
