# SPDX-License-Identifier: MPL-2.0
"""Core functionality for the FHE ledger."""
from fhe_ledger.core.codec import EncodedValue, EncodingScheme, decode, encode
from fhe_ledger.core.operator import HomomorphicOperator, Operation, OperationTag
from fhe_ledger.core.models import (
    ClassificationResult,
    LedgerStats,
    Transaction,
    TransactionStatus,
)
from fhe_ledger.core.lifecycle import apply_classification, submit
from fhe_ledger.core.classifier import AmlClassifier, classify
from fhe_ledger.core.authorization import (
    AuthorizationChallenge,
    AuthorizationSession,
    AuthorizationToken,
    authorize_decrypt,
    build_challenge,
    reveal,
)
from fhe_ledger.core.store import InMemoryLedgerStore, SqliteLedgerStore, TransactionLedger

__all__ = [
    "EncodedValue",
    "EncodingScheme",
    "encode",
    "decode",
    "HomomorphicOperator",
    "Operation",
    "OperationTag",
    "ClassificationResult",
    "LedgerStats",
    "Transaction",
    "TransactionStatus",
    "submit",
    "apply_classification",
    "AmlClassifier",
    "classify",
    "AuthorizationChallenge",
    "AuthorizationSession",
    "AuthorizationToken",
    "authorize_decrypt",
    "build_challenge",
    "reveal",
    "InMemoryLedgerStore",
    "SqliteLedgerStore",
    "TransactionLedger",
]
