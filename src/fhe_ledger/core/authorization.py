# SPDX-License-Identifier: MPL-2.0
"""Signature-gated reveal of encoded amounts.

Showing an encoded amount is always allowed; turning it back into plaintext
requires an :class:`AuthorizationToken`. A token is obtained by having an
external signer (the user's wallet) sign a challenge built from the session
parameters. Tokens are single-use and expire with the challenge window.

Tokens are not bound to the value they reveal: a token obtained in a session
reveals any one value. The challenge carries no value fingerprint or nonce.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Protocol, Union

from fhe_ledger.core.codec import EncodedValue, EncodingScheme, decode
from fhe_ledger.core.crypto import generate_public_key
from fhe_ledger.core.exceptions import AuthorizationDenied, AuthorizationTimeout

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

# Field labels of the challenge text, in order.
CHALLENGE_FIELDS = (
    "publickey",
    "contractAddresses",
    "contractsChainId",
    "startTimestamp",
    "durationDays",
)

SignatureVerifier = Callable[[str, str], bool]


class ExternalSigner(Protocol):
    """Anything that can sign a message on the user's behalf, e.g. a wallet."""

    async def sign_message(self, message: str) -> str:
        ...


@dataclass(frozen=True)
class AuthorizationChallenge:
    """Parameters the challenge text is derived from."""

    public_key: str
    contract_address: str
    chain_id: int
    window_start: int
    window_duration_days: int

    def __post_init__(self) -> None:
        if self.chain_id < 0:
            raise ValueError("chain_id must be non-negative")
        if self.window_duration_days < 0:
            raise ValueError("window_duration_days must be non-negative")

    @property
    def expires_at(self) -> int:
        return self.window_start + self.window_duration_days * SECONDS_PER_DAY


def _public_key_text(public_key: Union[str, bytes]) -> str:
    if isinstance(public_key, bytes):
        return "0x" + public_key.hex()
    return public_key


def build_challenge(params: AuthorizationChallenge) -> str:
    """Render the challenge text that the external signer signs.

    The layout is fixed so independent verifiers reproduce the same bytes.
    """
    values = (
        _public_key_text(params.public_key),
        params.contract_address,
        int(params.chain_id),
        int(params.window_start),
        int(params.window_duration_days),
    )
    return "\n".join(f"{name}:{value}" for name, value in zip(CHALLENGE_FIELDS, values))


def parse_challenge(text: str) -> AuthorizationChallenge:
    """Inverse of :func:`build_challenge`.

    Raises:
        AuthorizationDenied: If ``text`` is not a well-formed challenge.
    """
    lines = text.split("\n")
    if len(lines) != len(CHALLENGE_FIELDS):
        raise AuthorizationDenied("Malformed authorization challenge")
    values = []
    for name, line in zip(CHALLENGE_FIELDS, lines):
        label, sep, value = line.partition(":")
        if label != name or not sep:
            raise AuthorizationDenied(
                "Malformed authorization challenge", details={"field": name}
            )
        values.append(value)
    try:
        return AuthorizationChallenge(
            public_key=values[0],
            contract_address=values[1],
            chain_id=int(values[2]),
            window_start=int(values[3]),
            window_duration_days=int(values[4]),
        )
    except ValueError as e:
        raise AuthorizationDenied("Malformed authorization challenge") from e


class AuthorizationToken:
    """Single-use capability for one reveal."""

    def __init__(
        self,
        challenge: str,
        signature: str,
        expires_at: int,
        session_id: Optional[str] = None,
    ) -> None:
        self.token_id = uuid.uuid4().hex
        self.challenge = challenge
        self.signature = signature
        self.expires_at = expires_at
        self.session_id = session_id
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self, now: Optional[float] = None) -> None:
        """Spend the token.

        Raises:
            AuthorizationDenied: If the token was already used or has expired.
        """
        if self._consumed:
            raise AuthorizationDenied(
                "Authorization token was already used", details={"token_id": self.token_id}
            )
        now = time.time() if now is None else now
        if now >= self.expires_at:
            raise AuthorizationDenied(
                "Authorization token has expired", details={"token_id": self.token_id}
            )
        self._consumed = True

    def __repr__(self) -> str:
        return f"AuthorizationToken(token_id={self.token_id!r}, consumed={self._consumed})"


async def authorize_decrypt(
    challenge: str,
    signer: ExternalSigner,
    timeout: Optional[float] = None,
    verifier: Optional[SignatureVerifier] = None,
    session_id: Optional[str] = None,
) -> AuthorizationToken:
    """Ask ``signer`` to sign ``challenge`` and return a reveal token.

    If ``timeout`` elapses, the pending signer call is cancelled and whatever
    it would have returned is discarded.

    Raises:
        AuthorizationTimeout: If the signer did not answer in time.
        AuthorizationDenied: If the signer refused, failed, or produced a
            signature ``verifier`` rejects.
    """
    params = parse_challenge(challenge)
    try:
        if timeout is None:
            signature = await signer.sign_message(challenge)
        else:
            signature = await asyncio.wait_for(signer.sign_message(challenge), timeout)
    except asyncio.TimeoutError as e:
        logger.warning("Authorization timed out after %ss", timeout)
        raise AuthorizationTimeout(
            "Signer did not respond in time", details={"timeout": timeout}
        ) from e
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning("Authorization denied by signer: %s", e)
        raise AuthorizationDenied(f"Signer rejected the challenge: {e}") from e

    if not isinstance(signature, str) or not signature:
        raise AuthorizationDenied("Signer returned an empty signature")
    if verifier is not None and not verifier(challenge, signature):
        logger.warning("Authorization signature failed verification")
        raise AuthorizationDenied("Signature does not match the challenge")

    token = AuthorizationToken(
        challenge=challenge,
        signature=signature,
        expires_at=params.expires_at,
        session_id=session_id,
    )
    logger.info("Authorization granted (token %s)", token.token_id)
    return token


def reveal(
    value: EncodedValue,
    token: Optional[AuthorizationToken],
    scheme: Optional[EncodingScheme] = None,
    now: Optional[float] = None,
) -> Decimal:
    """Return the plaintext of ``value``, spending ``token``.

    Raises:
        AuthorizationDenied: If ``token`` is missing, used or expired.
        MalformedCiphertext: If ``value`` cannot be decoded.
    """
    if not isinstance(token, AuthorizationToken):
        raise AuthorizationDenied("A valid authorization token is required")
    token.consume(now)
    if scheme is not None:
        return scheme.decode(value)
    return decode(value)


class AuthorizationSession:
    """One set of challenge parameters plus the tokens issued under it.

    ``reveal`` only accepts tokens produced by this session's ``authorize``.
    """

    def __init__(
        self,
        contract_address: str,
        chain_id: int,
        public_key: Optional[str] = None,
        window_start: Optional[int] = None,
        window_duration_days: int = 30,
        timeout: Optional[float] = None,
        verifier: Optional[SignatureVerifier] = None,
        scheme: Optional[EncodingScheme] = None,
    ) -> None:
        self.session_id = uuid.uuid4().hex
        self.params = AuthorizationChallenge(
            public_key=public_key or generate_public_key(),
            contract_address=contract_address,
            chain_id=chain_id,
            window_start=int(time.time()) if window_start is None else window_start,
            window_duration_days=window_duration_days,
        )
        self.timeout = timeout
        self.verifier = verifier
        self.scheme = scheme

    def challenge(self) -> str:
        return build_challenge(self.params)

    async def authorize(
        self, signer: ExternalSigner, timeout: Optional[float] = None
    ) -> AuthorizationToken:
        return await authorize_decrypt(
            self.challenge(),
            signer,
            timeout=self.timeout if timeout is None else timeout,
            verifier=self.verifier,
            session_id=self.session_id,
        )

    def reveal(
        self,
        value: EncodedValue,
        token: Optional[AuthorizationToken],
        now: Optional[float] = None,
    ) -> Decimal:
        if isinstance(token, AuthorizationToken) and token.session_id != self.session_id:
            raise AuthorizationDenied(
                "Authorization token belongs to another session",
                details={"token_id": token.token_id},
            )
        return reveal(value, token, scheme=self.scheme, now=now)
