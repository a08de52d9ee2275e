# SPDX-License-Identifier: MPL-2.0
"""Tests for the signature-gated reveal protocol."""

import asyncio
import time
from decimal import Decimal

import pytest

from fhe_ledger.core.authorization import (
    AuthorizationChallenge,
    AuthorizationSession,
    AuthorizationToken,
    authorize_decrypt,
    build_challenge,
    parse_challenge,
    reveal,
)
from fhe_ledger.core.codec import encode
from fhe_ledger.core.crypto import KeyPair, KeyPairSigner
from fhe_ledger.core.exceptions import AuthorizationDenied, AuthorizationTimeout

EXPECTED_CHALLENGE = (
    "publickey:0xabc\n"
    "contractAddresses:0x1\n"
    "contractsChainId:1\n"
    "startTimestamp:1000\n"
    "durationDays:30"
)


class RejectingSigner:
    """Signer that behaves like a user declining the request."""

    async def sign_message(self, message: str) -> str:
        raise RuntimeError("user rejected the request")


class SlowSigner:
    """Signer that answers after ``delay`` seconds."""

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.cancelled = False

    async def sign_message(self, message: str) -> str:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return "late-signature"


class EmptySigner:
    async def sign_message(self, message: str) -> str:
        return ""


def current_challenge(days: int = 30) -> str:
    return build_challenge(
        AuthorizationChallenge(
            public_key="0xabc",
            contract_address="0x1",
            chain_id=1,
            window_start=int(time.time()),
            window_duration_days=days,
        )
    )


@pytest.fixture
def signer() -> KeyPairSigner:
    return KeyPairSigner(KeyPair.generate("test-key"))


class TestChallenge:
    def test_exact_layout(self) -> None:
        params = AuthorizationChallenge(
            public_key="0xabc",
            contract_address="0x1",
            chain_id=1,
            window_start=1000,
            window_duration_days=30,
        )
        assert build_challenge(params) == EXPECTED_CHALLENGE

    def test_bytes_public_key_is_hex_encoded(self) -> None:
        params = AuthorizationChallenge(
            public_key=b"\xab\xcd",
            contract_address="0x1",
            chain_id=1,
            window_start=1000,
            window_duration_days=30,
        )
        assert build_challenge(params).splitlines()[0] == "publickey:0xabcd"

    def test_parse_inverts_build(self) -> None:
        params = parse_challenge(EXPECTED_CHALLENGE)
        assert params.chain_id == 1
        assert params.window_start == 1000
        assert params.expires_at == 1000 + 30 * 86400
        assert build_challenge(params) == EXPECTED_CHALLENGE

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "publickey:0xabc",
            EXPECTED_CHALLENGE.replace("contractsChainId:1", "contractsChainId:one"),
            EXPECTED_CHALLENGE.replace("durationDays", "days"),
        ],
    )
    def test_parse_rejects_malformed(self, text: str) -> None:
        with pytest.raises(AuthorizationDenied):
            parse_challenge(text)

    def test_different_parameters_give_different_challenges(self) -> None:
        a = AuthorizationSession(contract_address="0x1", chain_id=1, window_start=1000)
        b = AuthorizationSession(contract_address="0x1", chain_id=2, window_start=1000)
        assert a.challenge() != b.challenge()

    def test_session_generates_public_key(self) -> None:
        session = AuthorizationSession(contract_address="0x1", chain_id=1)
        first_line = session.challenge().splitlines()[0]
        assert first_line.startswith("publickey:0x")
        assert len(first_line) == len("publickey:0x") + 2000


class TestAuthorizeDecrypt:
    def test_success_returns_token(self, signer) -> None:
        challenge = current_challenge()
        token = asyncio.run(authorize_decrypt(challenge, signer))
        assert isinstance(token, AuthorizationToken)
        assert token.challenge == challenge
        assert signer.verify_message(challenge, token.signature)
        assert not token.consumed

    def test_rejection_is_denied(self) -> None:
        with pytest.raises(AuthorizationDenied):
            asyncio.run(authorize_decrypt(current_challenge(), RejectingSigner()))

    def test_empty_signature_is_denied(self) -> None:
        with pytest.raises(AuthorizationDenied):
            asyncio.run(authorize_decrypt(current_challenge(), EmptySigner()))

    def test_verifier_rejects_foreign_signature(self, signer) -> None:
        other = KeyPairSigner(KeyPair.generate("other"))
        with pytest.raises(AuthorizationDenied):
            asyncio.run(
                authorize_decrypt(current_challenge(), other, verifier=signer.verify_message)
            )

    def test_timeout_cancels_signer(self) -> None:
        slow = SlowSigner(delay=5)
        with pytest.raises(AuthorizationTimeout):
            asyncio.run(authorize_decrypt(current_challenge(), slow, timeout=0.05))
        assert slow.cancelled

    def test_timeout_is_an_authorization_denial(self) -> None:
        assert issubclass(AuthorizationTimeout, AuthorizationDenied)
        assert AuthorizationTimeout.retryable


class TestReveal:
    def test_reveal_without_token_is_denied(self) -> None:
        with pytest.raises(AuthorizationDenied):
            reveal(encode("10.00"), None)

    def test_reveal_with_wrong_object_is_denied(self) -> None:
        with pytest.raises(AuthorizationDenied):
            reveal(encode("10.00"), "signature")

    def test_reveal_after_authorization(self, signer) -> None:
        token = asyncio.run(authorize_decrypt(current_challenge(), signer))
        assert reveal(encode("10000.01"), token) == Decimal("10000.01")

    def test_token_is_single_use(self, signer) -> None:
        token = asyncio.run(authorize_decrypt(current_challenge(), signer))
        reveal(encode("1"), token)
        assert token.consumed
        with pytest.raises(AuthorizationDenied):
            reveal(encode("1"), token)

    def test_expired_token_is_denied(self, signer) -> None:
        token = asyncio.run(authorize_decrypt(current_challenge(days=1), signer))
        with pytest.raises(AuthorizationDenied):
            reveal(encode("1"), token, now=time.time() + 2 * 86400)

    def test_expired_token_is_not_consumed(self, signer) -> None:
        token = asyncio.run(authorize_decrypt(current_challenge(days=1), signer))
        with pytest.raises(AuthorizationDenied):
            reveal(encode("1"), token, now=time.time() + 2 * 86400)
        assert not token.consumed


class TestSession:
    def test_session_round_trip(self, signer) -> None:
        session = AuthorizationSession(
            contract_address="0x1", chain_id=1, verifier=signer.verify_message
        )
        token = asyncio.run(session.authorize(signer))
        assert token.session_id == session.session_id
        assert session.reveal(encode("-42.50"), token) == Decimal("-42.50")

    def test_token_from_other_session_is_denied(self, signer) -> None:
        first = AuthorizationSession(contract_address="0x1", chain_id=1)
        second = AuthorizationSession(contract_address="0x1", chain_id=1)
        token = asyncio.run(first.authorize(signer))
        with pytest.raises(AuthorizationDenied):
            second.reveal(encode("1"), token)
        assert not token.consumed

    def test_token_without_session_is_denied_by_session(self, signer) -> None:
        session = AuthorizationSession(contract_address="0x1", chain_id=1)
        token = asyncio.run(authorize_decrypt(session.challenge(), signer))
        with pytest.raises(AuthorizationDenied):
            session.reveal(encode("1"), token)

    def test_session_timeout(self) -> None:
        session = AuthorizationSession(contract_address="0x1", chain_id=1, timeout=0.05)
        with pytest.raises(AuthorizationTimeout):
            asyncio.run(session.authorize(SlowSigner(delay=5)))

    def test_session_reveal_without_token(self) -> None:
        session = AuthorizationSession(contract_address="0x1", chain_id=1)
        with pytest.raises(AuthorizationDenied):
            session.reveal(encode("1"), None)
