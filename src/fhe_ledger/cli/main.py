# SPDX-License-Identifier: MPL-2.0
"""Main CLI entry point."""
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, NoReturn, Optional, TypeVar

import click

from fhe_ledger.config import EngineSettings, configure_logging
from fhe_ledger.core.authorization import (
    AuthorizationChallenge,
    AuthorizationSession,
    build_challenge,
)
from fhe_ledger.core.codec import Base64DecimalScheme
from fhe_ledger.core.crypto import KeyPair, KeyPairSigner
from fhe_ledger.core.exceptions import LedgerError
from fhe_ledger.core.models import Transaction, TransactionStatus
from fhe_ledger.core.store import SqliteLedgerStore, TransactionLedger

T = TypeVar("T")

STATUS_CHOICES = [s.value for s in TransactionStatus]


def _fail(action: str, error: Exception) -> NoReturn:
    click.echo(f"Error {action}: {error}", err=True)
    sys.exit(1)


def _with_ledger(
    settings: EngineSettings, func: Callable[[TransactionLedger], Awaitable[T]]
) -> T:
    async def _main() -> T:
        async with SqliteLedgerStore(settings.database) as store:
            return await func(TransactionLedger(store, settings))

    return asyncio.run(_main())


def _format_tx(tx: Transaction) -> str:
    flag = "checked" if tx.aml_checked else "unchecked"
    return (
        f"{tx.id}  {tx.created_at:%Y-%m-%d}  {tx.sender} -> {tx.receiver}  "
        f"{tx.status.value:<8} {flag}  {tx.amount.text}"
    )


def load_keypair(key_file: str) -> KeyPair:
    """Load a key pair from a JWK file."""
    try:
        return KeyPair.from_jwk(json.loads(Path(key_file).read_text()))
    except (OSError, ValueError, KeyError) as e:
        _fail("loading key pair", e)


@click.group()  # type: ignore[misc]
@click.option(
    "--db",
    "database",
    envvar="FHE_LEDGER_DATABASE",
    default=None,
    help="Path to the ledger database.",
)
@click.option("--log-level", default=None, help="Logging level (default: INFO).")
@click.pass_context
def cli(ctx: click.Context, database: Optional[str], log_level: Optional[str]) -> None:
    """FHE Ledger CLI."""
    try:
        settings = EngineSettings.from_env()
        overrides: dict[str, Any] = {}
        if database:
            overrides["database"] = database
        if log_level:
            overrides["log_level"] = log_level
        if overrides:
            settings = EngineSettings(**{**settings.model_dump(), **overrides})
    except (LedgerError, ValueError) as e:
        _fail("loading configuration", e)
    configure_logging(settings.log_level)
    ctx.obj = settings


@cli.command()  # type: ignore[misc]
def version() -> None:
    """Show version information."""
    from fhe_ledger import __version__

    click.echo(f"FHE Ledger v{__version__}")


@cli.command()  # type: ignore[misc]
@click.argument("amount")
@click.pass_obj
def encode(settings: EngineSettings, amount: str) -> None:
    """Print the encoded form of AMOUNT."""
    try:
        value = Base64DecimalScheme(max_magnitude=settings.max_magnitude).encode(amount)
    except LedgerError as e:
        _fail("encoding amount", e)
    click.echo(value.text)


@cli.command()  # type: ignore[misc]
@click.option("--public-key", required=True, help="Session public key (hex).")
@click.option("--contract-address", required=True)
@click.option("--chain-id", type=int, required=True)
@click.option("--start", "window_start", type=int, required=True, help="Unix seconds.")
@click.option("--days", "duration_days", type=int, default=None)
@click.pass_obj
def challenge(
    settings: EngineSettings,
    public_key: str,
    contract_address: str,
    chain_id: int,
    window_start: int,
    duration_days: Optional[int],
) -> None:
    """Print the authorization challenge for the given parameters."""
    try:
        params = AuthorizationChallenge(
            public_key=public_key,
            contract_address=contract_address,
            chain_id=chain_id,
            window_start=window_start,
            window_duration_days=(
                settings.window_duration_days if duration_days is None else duration_days
            ),
        )
    except ValueError as e:
        _fail("building challenge", e)
    click.echo(build_challenge(params))


@cli.command()  # type: ignore[misc]
@click.option("--output", "-o", required=True, type=click.Path(dir_okay=False))
@click.option("--kid", default=None, help="Key identifier.")
def keygen(output: str, kid: Optional[str]) -> None:
    """Generate an Ed25519 signing key for local reveals."""
    key_pair = KeyPair.generate(kid)
    try:
        Path(output).write_text(json.dumps(key_pair.to_jwk(private=True), indent=2))
    except OSError as e:
        _fail("saving key pair", e)
    click.echo(f"Key pair saved to {output}")
    click.echo(f"Address: {KeyPairSigner(key_pair).address}")


@cli.command()  # type: ignore[misc]
@click.argument("amount")
@click.option("--sender", required=True)
@click.option("--receiver", required=True)
@click.option("--id", "tx_id", default=None, help="Transaction id (generated if omitted).")
@click.pass_obj
def submit(
    settings: EngineSettings, amount: str, sender: str, receiver: str, tx_id: Optional[str]
) -> None:
    """Encode AMOUNT and submit a pending transaction."""
    try:
        tx = _with_ledger(settings, lambda ledger: ledger.submit(amount, sender, receiver, tx_id))
    except (LedgerError, ValueError) as e:
        _fail("submitting transaction", e)
    click.echo(f"Submitted {tx.id} ({tx.amount.text})")


@cli.command(name="list")  # type: ignore[misc]
@click.option("--status", type=click.Choice(STATUS_CHOICES), default=None)
@click.pass_obj
def list_transactions(settings: EngineSettings, status: Optional[str]) -> None:
    """List transactions, newest first."""
    wanted = TransactionStatus(status) if status else None
    try:
        transactions = _with_ledger(settings, lambda ledger: ledger.load(wanted))
    except LedgerError as e:
        _fail("loading transactions", e)
    if not transactions:
        click.echo("No transactions found")
        return
    for tx in transactions:
        click.echo(_format_tx(tx))


@cli.command()  # type: ignore[misc]
@click.pass_obj
def stats(settings: EngineSettings) -> None:
    """Show transaction counts per status."""
    try:
        summary = _with_ledger(settings, lambda ledger: ledger.stats())
    except LedgerError as e:
        _fail("loading transactions", e)
    click.echo(f"Total: {summary.total}")
    click.echo(f"Pending: {summary.pending}")
    click.echo(f"Cleared: {summary.cleared}")
    click.echo(f"Flagged: {summary.flagged}")


@cli.command(name="aml-check")  # type: ignore[misc]
@click.argument("tx_id")
@click.option("--caller", required=True, help="Address running the check.")
@click.pass_obj
def aml_check(settings: EngineSettings, tx_id: str, caller: str) -> None:
    """Run the AML check on a pending transaction."""
    try:
        tx = _with_ledger(settings, lambda ledger: ledger.run_aml_check(tx_id, caller))
    except LedgerError as e:
        _fail("running AML check", e)
    if tx.status is TransactionStatus.FLAGGED:
        click.echo(f"AML check flagged transaction {tx.id}")
    else:
        click.echo(f"AML check cleared transaction {tx.id}")


@cli.command()  # type: ignore[misc]
@click.argument("tx_id")
@click.option("--key-file", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--contract-address", required=True)
@click.option("--chain-id", type=int, required=True)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds to wait for the signer.",
)
@click.pass_obj
def reveal(
    settings: EngineSettings,
    tx_id: str,
    key_file: str,
    contract_address: str,
    chain_id: int,
    timeout: Optional[float],
) -> None:
    """Sign the authorization challenge and print the plaintext amount."""
    signer = KeyPairSigner(load_keypair(key_file))

    async def _reveal(ledger: TransactionLedger) -> Any:
        tx = await ledger.get(tx_id)
        session = AuthorizationSession(
            contract_address=contract_address,
            chain_id=chain_id,
            window_duration_days=settings.window_duration_days,
            timeout=settings.authorization_timeout if timeout is None else timeout,
            verifier=signer.verify_message,
            scheme=ledger.scheme,
        )
        token = await session.authorize(signer)
        return session.reveal(tx.amount, token)

    try:
        amount = _with_ledger(settings, _reveal)
    except LedgerError as e:
        _fail("revealing amount", e)
    click.echo(f"{amount:.2f}")


if __name__ == "__main__":
    cli()
