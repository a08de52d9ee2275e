# SPDX-License-Identifier: MPL-2.0
"""Homomorphic operator.

Applies a closed set of operations to an :class:`EncodedValue` and returns a
new one. Decoding happens inside :meth:`HomomorphicOperator.apply` only, so a
caller never handles plaintext. A real FHE backend has to offer the same
``apply`` signature.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation, Overflow
from enum import Enum
from typing import Optional, Union

from fhe_ledger.core.codec import (
    DEFAULT_SCHEME_TAG,
    QUANTUM,
    Amount,
    EncodedValue,
    EncodingScheme,
    get_scheme,
    to_decimal,
)
from fhe_ledger.core.exceptions import UnsupportedOperation, ValueOutOfRange

DEFAULT_AML_THRESHOLD = Decimal("10000")

FLAG_TRUE = Decimal("1")
FLAG_FALSE = Decimal("0")


class OperationTag(str, Enum):
    """Recognized homomorphic operations."""

    AML_THRESHOLD_CHECK = "aml_threshold_check"
    SCALE = "scale"


@dataclass(frozen=True)
class Operation:
    """An operation tag plus its parameter, if any."""

    tag: OperationTag
    factor: Optional[Decimal] = None

    @classmethod
    def aml_threshold_check(cls) -> Operation:
        return cls(OperationTag.AML_THRESHOLD_CHECK)

    @classmethod
    def scale(cls, factor: Amount) -> Operation:
        return cls(OperationTag.SCALE, to_decimal(factor))

    @classmethod
    def from_tag(cls, tag: Union[str, OperationTag], factor: Optional[Amount] = None) -> Operation:
        """Build an operation from a tag name, rejecting unknown tags."""
        try:
            op_tag = OperationTag(tag)
        except ValueError:
            raise UnsupportedOperation(
                f"Unsupported operation: {tag!r}", details={"tag": str(tag)}
            ) from None
        if op_tag is OperationTag.SCALE:
            if factor is None:
                raise UnsupportedOperation("scale requires a factor")
            return cls.scale(factor)
        return cls(op_tag)


class HomomorphicOperator:
    """Computes over encoded values without handing plaintext to the caller."""

    def __init__(
        self,
        scheme: Optional[EncodingScheme] = None,
        aml_threshold: Decimal = DEFAULT_AML_THRESHOLD,
    ) -> None:
        self.scheme = scheme or get_scheme(DEFAULT_SCHEME_TAG)
        self.aml_threshold = aml_threshold

    def apply(self, value: EncodedValue, operation: Operation) -> EncodedValue:
        """Apply ``operation`` to ``value`` and return the encoded result.

        Raises:
            UnsupportedOperation: If ``operation`` is not a recognized operation.
            MalformedCiphertext: If ``value`` cannot be decoded.
            ValueOutOfRange: If the result leaves the encodable range.
        """
        if not isinstance(operation, Operation) or not isinstance(operation.tag, OperationTag):
            raise UnsupportedOperation(f"Unsupported operation: {operation!r}")

        x = self.scheme.decode(value)
        if operation.tag is OperationTag.AML_THRESHOLD_CHECK:
            result = FLAG_TRUE if x > self.aml_threshold else FLAG_FALSE
        elif operation.tag is OperationTag.SCALE:
            if operation.factor is None:
                raise UnsupportedOperation("scale requires a factor")
            try:
                result = x * operation.factor
                if abs(result) < self.scheme.max_magnitude:
                    result = result.quantize(QUANTUM, rounding=ROUND_HALF_EVEN)
            except (Overflow, InvalidOperation) as e:
                raise ValueOutOfRange(
                    "Scaled amount leaves the encodable range",
                    details={"factor": str(operation.factor)},
                ) from e
        else:
            raise UnsupportedOperation(f"Unsupported operation: {operation.tag.value}")
        return self.scheme.encode(result)
