# SPDX-License-Identifier: MPL-2.0
"""Tests for AML classification."""

import dataclasses
from decimal import Decimal

import pytest

from fhe_ledger.core.classifier import AmlClassifier, classify, same_address
from fhe_ledger.core.exceptions import AlreadyClassified, MalformedCiphertext, NotAuthorized
from fhe_ledger.core.lifecycle import apply_classification, submit
from fhe_ledger.core.models import ClassificationResult, TransactionStatus
from fhe_ledger.core.codec import EncodedValue
from fhe_ledger.core.operator import HomomorphicOperator

SENDER = "0xAbC0000000000000000000000000000000000001"
RECEIVER = "0x0000000000000000000000000000000000000002"


def test_above_threshold_is_flagged() -> None:
    tx = submit("10000.01", SENDER, RECEIVER)
    result = classify(tx, SENDER)
    assert result.flagged is True
    assert result.threshold_used == Decimal("10000")


def test_threshold_itself_is_cleared() -> None:
    tx = submit("10000.00", SENDER, RECEIVER)
    assert classify(tx, SENDER).flagged is False


def test_sender_match_ignores_case() -> None:
    tx = submit("5", SENDER, RECEIVER)
    assert classify(tx, SENDER.lower()).flagged is False
    assert same_address(SENDER, SENDER.upper())


def test_other_caller_is_not_authorized() -> None:
    tx = submit("50000", SENDER, RECEIVER)
    with pytest.raises(NotAuthorized):
        classify(tx, RECEIVER)
    assert tx.status is TransactionStatus.PENDING
    assert tx.aml_checked is False


def test_empty_caller_is_not_authorized() -> None:
    tx = submit("50000", SENDER, RECEIVER)
    with pytest.raises(NotAuthorized):
        classify(tx, "")


def test_classified_transaction_is_rejected() -> None:
    tx = submit("50000", SENDER, RECEIVER)
    done = apply_classification(tx, classify(tx, SENDER))
    with pytest.raises(AlreadyClassified):
        classify(done, SENDER)


def test_custom_threshold() -> None:
    classifier = AmlClassifier(HomomorphicOperator(aml_threshold=Decimal("500")))
    tx = submit("500.01", SENDER, RECEIVER)
    result = classifier.classify(tx, SENDER)
    assert result == ClassificationResult(flagged=True, threshold_used=Decimal("500"))


def test_corrupt_amount_aborts_classification() -> None:
    tx = submit("1", SENDER, RECEIVER)
    broken = dataclasses.replace(tx, amount=EncodedValue(scheme_tag="v1", payload="!!"))
    with pytest.raises(MalformedCiphertext):
        classify(broken, SENDER)
