# SPDX-License-Identifier: MPL-2.0
"""
FHE Ledger - Encrypted amounts with AML compliance checks.

This package stores transaction amounts in an encoded form, runs AML checks on
the encoded values, and only reveals plaintext after a signed authorization.
"""

import contextlib
from importlib.metadata import version

# Set up version
__version__ = "0.1.0"

with contextlib.suppress(Exception):
    __version__ = version("fhe-ledger")


# Core components
from fhe_ledger.core import (
    AuthorizationSession,
    TransactionLedger,
    build_challenge,
    classify,
    decode,
    encode,
    reveal,
)

# Public API
__all__ = [
    "encode",
    "decode",
    "classify",
    "build_challenge",
    "reveal",
    "AuthorizationSession",
    "TransactionLedger",
    "__version__",
]
