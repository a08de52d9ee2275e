# SPDX-License-Identifier: MPL-2.0
"""Cryptographic helpers for the ledger.

The engine itself never holds a wallet key: signatures over authorization
challenges come from an external signer. This module provides an Ed25519
:class:`KeyPair` that can be stored as a JWK file, and a :class:`KeyPairSigner`
that exposes the same interface as a wallet, for the CLI and for tests.
"""

from __future__ import annotations

import base64
import hashlib
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

# Length of the session public key, in hex digits.
PUBLIC_KEY_HEX_DIGITS = 2000

ADDRESS_BYTES = 20


def _random_kid() -> str:
    return f"wallet-{os.urandom(6).hex()}"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


@dataclass
class KeyPair:
    """Ed25519 signing key plus the identifier it is filed under."""

    private_key: ed25519.Ed25519PrivateKey
    kid: str = field(default_factory=_random_kid)

    @classmethod
    def generate(cls, kid: Optional[str] = None) -> KeyPair:
        return cls(ed25519.Ed25519PrivateKey.generate(), kid or _random_kid())

    @classmethod
    def from_seed(cls, seed: bytes, kid: Optional[str] = None) -> KeyPair:
        """Rebuild a key from its 32-byte private seed."""
        return cls(ed25519.Ed25519PrivateKey.from_private_bytes(seed), kid or _random_kid())

    @property
    def public_key(self) -> ed25519.Ed25519PublicKey:
        return self.private_key.public_key()

    def public_bytes(self) -> bytes:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def seed(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def sign(self, data: bytes) -> bytes:
        return self.private_key.sign(data)

    def verify(self, data: bytes, signature: bytes) -> bool:
        try:
            self.public_key.verify(signature, data)
        except InvalidSignature:
            return False
        return True

    def to_jwk(self, private: bool = False) -> Dict[str, Any]:
        """Serialize as an OKP/Ed25519 JSON Web Key.

        The private seed (``d``) is only included when ``private`` is true.
        """
        jwk: Dict[str, Any] = {
            "kty": "OKP",
            "crv": "Ed25519",
            "kid": self.kid,
            "x": _b64url(self.public_bytes()),
        }
        if private:
            jwk["d"] = _b64url(self.seed())
        return jwk

    @classmethod
    def from_jwk(cls, jwk: Dict[str, Any]) -> KeyPair:
        """Load a signing key from a private JWK.

        Raises:
            ValueError: If the JWK is not an Ed25519 key or has no ``d``.
        """
        if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
            raise ValueError("Only OKP/Ed25519 keys are supported")
        if "d" not in jwk:
            raise ValueError("JWK has no private key material; cannot sign with it")
        key_pair = cls.from_seed(_b64url_decode(jwk["d"]), jwk.get("kid"))
        if "x" in jwk and _b64url_decode(jwk["x"]) != key_pair.public_bytes():
            raise ValueError("JWK public key does not match its private key")
        return key_pair


class KeyPairSigner:
    """Local stand-in for a wallet: signs challenge text with a :class:`KeyPair`."""

    def __init__(self, key_pair: KeyPair) -> None:
        self.key_pair = key_pair

    @property
    def address(self) -> str:
        """Hex address derived from the public key."""
        return "0x" + hash_sha256(self.key_pair.public_bytes())[-ADDRESS_BYTES:].hex()

    async def sign_message(self, message: str) -> str:
        return self.key_pair.sign(message.encode("utf-8")).hex()

    def verify_message(self, message: str, signature: str) -> bool:
        try:
            raw = bytes.fromhex(signature)
        except ValueError:
            return False
        return self.key_pair.verify(message.encode("utf-8"), raw)


def hash_sha256(data: bytes) -> bytes:
    """Return the raw SHA-256 digest of ``data``."""
    return hashlib.sha256(data).digest()


def generate_public_key() -> str:
    """Random session public key: ``0x`` followed by 2000 hex digits."""
    return "0x" + os.urandom(PUBLIC_KEY_HEX_DIGITS // 2).hex()
