# SPDX-License-Identifier: MPL-2.0
"""Tests for the local signing helpers."""

import asyncio
import hashlib

import pytest

from fhe_ledger.core.crypto import KeyPair, KeyPairSigner, generate_public_key, hash_sha256


def test_keypair_sign_and_verify() -> None:
    key_pair = KeyPair.generate()
    signature = key_pair.sign(b"test data")
    assert key_pair.verify(b"test data", signature)
    assert not key_pair.verify(b"different data", signature)


def test_keypair_jwk_roundtrip() -> None:
    kp = KeyPair.generate(kid="jwk-test")
    jwk = kp.to_jwk(private=True)
    kp2 = KeyPair.from_jwk(jwk)
    assert kp2.kid == "jwk-test"
    assert kp2.public_bytes() == kp.public_bytes()
    assert kp.verify(b"hello", kp2.sign(b"hello"))


def test_public_jwk_cannot_be_loaded_as_signer() -> None:
    jwk = KeyPair.generate().to_jwk()
    assert "d" not in jwk
    with pytest.raises(ValueError):
        KeyPair.from_jwk(jwk)


def test_unsupported_jwk() -> None:
    with pytest.raises(ValueError):
        KeyPair.from_jwk({"kty": "RSA"})


def test_signer_signs_challenge_text() -> None:
    signer = KeyPairSigner(KeyPair.generate())
    signature = asyncio.run(signer.sign_message("publickey:0xabc"))
    assert signer.verify_message("publickey:0xabc", signature)
    assert not signer.verify_message("publickey:0xdef", signature)
    assert not signer.verify_message("publickey:0xabc", "zz")


def test_signer_address() -> None:
    signer = KeyPairSigner(KeyPair.generate())
    assert signer.address.startswith("0x")
    assert len(signer.address) == 42


def test_hash_sha256() -> None:
    assert hash_sha256(b"abc") == hashlib.sha256(b"abc").digest()


def test_generate_public_key() -> None:
    key = generate_public_key()
    assert key.startswith("0x")
    assert len(key) == 2002
    assert key != generate_public_key()
