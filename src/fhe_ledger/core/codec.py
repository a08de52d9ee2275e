# SPDX-License-Identifier: MPL-2.0
"""Encoded value codec.

Every amount on the ledger passes through this module. The default scheme
(``v1``) is a reversible stand-in for a homomorphic ciphertext: the amount is
rendered as a two-decimal string and base64-encoded behind an ``FHE-`` tag.
Swapping in a real cryptosystem means providing another
:class:`EncodingScheme`; callers only ever see :class:`EncodedValue`.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Union

from fhe_ledger.core.exceptions import MalformedCiphertext, ValueOutOfRange

Amount = Union[Decimal, int, str, float]

# Currency precision: two fractional digits.
QUANTUM = Decimal("0.01")

# Exclusive bound on |amount|.
DEFAULT_MAX_MAGNITUDE = Decimal(10) ** 15

# Largest bound for which two-decimal amounts fit the default 28-digit context.
MAX_SUPPORTED_MAGNITUDE = Decimal(10) ** 26


@dataclass(frozen=True)
class EncodedValue:
    """Opaque, immutable representation of an amount."""

    scheme_tag: str
    payload: str

    @property
    def text(self) -> str:
        """Textual form stored on the ledger."""
        return get_scheme(self.scheme_tag).to_text(self)

    @classmethod
    def parse(cls, text: str) -> EncodedValue:
        """Parse a stored textual form.

        Untagged input is rejected; there is no bare-number fallback.
        """
        if not isinstance(text, str):
            raise MalformedCiphertext("Encoded value must be a string")
        for scheme in _SCHEMES.values():
            if text.startswith(scheme.prefix):
                return scheme.from_text(text)
        raise MalformedCiphertext(
            "Encoded value has no recognized scheme prefix",
            details={"length": len(text)},
        )

    def __str__(self) -> str:
        return self.text


def to_decimal(amount: Amount) -> Decimal:
    """Convert a caller supplied amount to ``Decimal``.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")``.
    """
    if isinstance(amount, bool):
        raise ValueOutOfRange("Booleans are not amounts")
    if isinstance(amount, float):
        amount = str(amount)
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValueOutOfRange(f"Not a decimal amount: {amount!r}") from e
    if not value.is_finite():
        raise ValueOutOfRange("Amount must be finite")
    return value


class EncodingScheme(ABC):
    """Contract every encoding backend has to satisfy."""

    tag: str
    prefix: str

    def __init__(self, max_magnitude: Decimal = DEFAULT_MAX_MAGNITUDE) -> None:
        if not 0 < max_magnitude <= MAX_SUPPORTED_MAGNITUDE:
            raise ValueError(f"max_magnitude must be in (0, {MAX_SUPPORTED_MAGNITUDE}]")
        self.max_magnitude = max_magnitude

    def check_amount(self, amount: Amount) -> Decimal:
        """Validate an amount and return it as a ``Decimal``."""
        value = to_decimal(amount)
        if abs(value) >= self.max_magnitude:
            raise ValueOutOfRange(
                "Amount exceeds the safe magnitude range",
                details={"max_magnitude": str(self.max_magnitude)},
            )
        if value != value.quantize(QUANTUM):
            raise ValueOutOfRange(
                "Amount has more than two fractional digits",
                details={"exponent": value.as_tuple().exponent},
            )
        return value

    @abstractmethod
    def encode(self, amount: Amount) -> EncodedValue:
        """Encode ``amount``."""

    @abstractmethod
    def decode(self, value: EncodedValue) -> Decimal:
        """Decode ``value`` back into an amount."""

    def to_text(self, value: EncodedValue) -> str:
        return self.prefix + value.payload

    def from_text(self, text: str) -> EncodedValue:
        if not text.startswith(self.prefix):
            raise MalformedCiphertext(f"Missing {self.prefix!r} prefix")
        return EncodedValue(scheme_tag=self.tag, payload=text[len(self.prefix):])


class Base64DecimalScheme(EncodingScheme):
    """Default ``v1`` scheme: ``"FHE-" + base64(decimal_string)``."""

    tag = "v1"
    prefix = "FHE-"

    def encode(self, amount: Amount) -> EncodedValue:
        value = self.check_amount(amount)
        text = f"{value.quantize(QUANTUM):f}"
        payload = base64.b64encode(text.encode("ascii")).decode("ascii")
        return EncodedValue(scheme_tag=self.tag, payload=payload)

    def decode(self, value: EncodedValue) -> Decimal:
        if not isinstance(value, EncodedValue) or value.scheme_tag != self.tag:
            raise MalformedCiphertext("Unrecognized scheme tag")
        try:
            raw = base64.b64decode(value.payload, validate=True).decode("ascii")
            if raw != raw.strip():
                raise ValueError("whitespace around amount")
            result = Decimal(raw)
        except (binascii.Error, UnicodeDecodeError, InvalidOperation, ValueError) as e:
            raise MalformedCiphertext("Payload is not an encoded amount") from e
        if not result.is_finite():
            raise MalformedCiphertext("Payload decodes to a non-finite number")
        # Integer and one-decimal payloads are accepted; anything encode could
        # not have produced is not.
        if abs(result) >= self.max_magnitude:
            raise MalformedCiphertext(
                "Payload exceeds the encodable magnitude",
                details={"max_magnitude": str(self.max_magnitude)},
            )
        if result != result.quantize(QUANTUM):
            raise MalformedCiphertext("Payload has more than two fractional digits")
        return result


_SCHEMES: Dict[str, EncodingScheme] = {}


def register_scheme(scheme: EncodingScheme) -> None:
    """Make ``scheme`` available to :meth:`EncodedValue.parse` and :func:`decode`."""
    _SCHEMES[scheme.tag] = scheme


def get_scheme(tag: str) -> EncodingScheme:
    try:
        return _SCHEMES[tag]
    except KeyError:
        raise MalformedCiphertext(f"Unknown scheme tag: {tag!r}") from None


register_scheme(Base64DecimalScheme())

DEFAULT_SCHEME_TAG = Base64DecimalScheme.tag


def encode(amount: Amount, scheme: str = DEFAULT_SCHEME_TAG) -> EncodedValue:
    """Encode ``amount`` with the registered scheme ``scheme``."""
    return get_scheme(scheme).encode(amount)


def decode(value: EncodedValue) -> Decimal:
    """Decode ``value`` with the scheme named by its tag."""
    if not isinstance(value, EncodedValue):
        raise MalformedCiphertext("Expected an EncodedValue")
    return get_scheme(value.scheme_tag).decode(value)


def fingerprint(value: EncodedValue) -> str:
    """SHA-256 hex digest of the textual form, for log correlation."""
    return hashlib.sha256(value.text.encode("utf-8")).hexdigest()
