# SPDX-License-Identifier: MPL-2.0
"""
Ledger persistence on top of an external key/value store.

The store only has to offer ``get`` and ``set``. Transactions are laid out
under two kinds of keys:

* ``transaction_keys`` holds a JSON array with every transaction id.
* ``transaction_<id>`` holds one JSON object per transaction with the fields
  ``amount, sender, receiver, timestamp, status, amlCheck``.

Writing a record and updating the index are separate calls. Either can fail on
its own, so :class:`TransactionLedger` reports them with different exceptions
and exposes :meth:`TransactionLedger.append_to_index` for retrying the second
step. Concurrent classification of one transaction is narrowed by re-reading
the record right before writing, but the ledger does not provide an atomic
compare-and-set; that is left to the store.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

import aiosqlite
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from fhe_ledger.config import EngineSettings
from fhe_ledger.core import lifecycle
from fhe_ledger.core.classifier import AmlClassifier
from fhe_ledger.core.codec import Amount, Base64DecimalScheme, EncodedValue
from fhe_ledger.core.exceptions import (
    AlreadyClassified,
    DuplicateTransaction,
    IndexUpdateError,
    LedgerError,
    MalformedCiphertext,
    MalformedRecord,
    NotFound,
    RecordWriteError,
    StoreError,
)
from fhe_ledger.core.models import LedgerStats, Transaction, TransactionStatus
from fhe_ledger.core.operator import HomomorphicOperator

logger = logging.getLogger(__name__)

INDEX_KEY = "transaction_keys"
RECORD_KEY_PREFIX = "transaction_"

SCHEMA = """
CREATE TABLE IF NOT EXISTS ledger_data (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL
)
"""


def record_key(tx_id: str) -> str:
    return f"{RECORD_KEY_PREFIX}{tx_id}"


class LedgerStore(Protocol):
    """Minimal contract of the external key/value store."""

    async def get(self, key: str) -> bytes:
        """Return the value under ``key``, or empty bytes if absent."""
        ...

    async def set(self, key: str, value: bytes) -> None:
        """Persist ``value`` under ``key``. Raises :class:`StoreError` on failure."""
        ...


class InMemoryLedgerStore:
    """Dictionary backed store, used by tests and as the HTTP default."""

    def __init__(self, data: Optional[Dict[str, bytes]] = None) -> None:
        self._data: Dict[str, bytes] = dict(data or {})

    async def get(self, key: str) -> bytes:
        return self._data.get(key, b"")

    async def set(self, key: str, value: bytes) -> None:
        if not isinstance(value, (bytes, bytearray)):
            raise StoreError("Store values must be bytes", details={"key": key})
        self._data[key] = bytes(value)

    def keys(self) -> List[str]:
        return sorted(self._data)


class SqliteLedgerStore:
    """
    SQLite backed store using aiosqlite.

    The connection is opened lazily and kept until :meth:`close`, so an
    in-memory database (the default) lives as long as the store object.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:") -> None:
        self.db_path = str(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            try:
                conn = await aiosqlite.connect(self.db_path)
            except sqlite3.Error as e:
                raise StoreError(
                    f"Failed to open ledger database: {e}", details={"path": self.db_path}
                ) from e
            try:
                await conn.execute(SCHEMA)
                await conn.commit()
            except sqlite3.Error as e:
                await conn.close()
                raise StoreError(
                    f"Failed to open ledger database: {e}", details={"path": self.db_path}
                ) from e
            self._conn = conn
        return self._conn

    async def get(self, key: str) -> bytes:
        conn = await self._connection()
        try:
            async with conn.execute(
                "SELECT value FROM ledger_data WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read {key}: {e}", details={"key": key}) from e
        return bytes(row[0]) if row else b""

    async def set(self, key: str, value: bytes) -> None:
        conn = await self._connection()
        try:
            await conn.execute(
                """
                INSERT INTO ledger_data (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, bytes(value)),
            )
            await conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to write {key}: {e}", details={"key": key}) from e

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> SqliteLedgerStore:
        await self._connection()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class TransactionRecord(BaseModel):
    """Wire format of a stored transaction."""

    model_config = ConfigDict(populate_by_name=True)

    amount: str
    sender: str
    receiver: str
    timestamp: int
    status: TransactionStatus = TransactionStatus.PENDING
    aml_check: bool = Field(default=False, alias="amlCheck")

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, v: Any) -> Any:
        return v or TransactionStatus.PENDING

    @field_validator("aml_check", mode="before")
    @classmethod
    def _default_aml_check(cls, v: Any) -> Any:
        return bool(v)

    @classmethod
    def from_transaction(cls, tx: Transaction) -> TransactionRecord:
        return cls(
            amount=tx.amount.text,
            sender=tx.sender,
            receiver=tx.receiver,
            timestamp=int(tx.created_at.timestamp()),
            status=tx.status,
            aml_check=tx.aml_checked,
        )

    def to_transaction(self, tx_id: str) -> Transaction:
        return Transaction(
            id=tx_id,
            amount=EncodedValue.parse(self.amount),
            sender=self.sender,
            receiver=self.receiver,
            created_at=datetime.fromtimestamp(self.timestamp, timezone.utc),
            status=self.status,
            aml_checked=self.aml_check,
        )

    def to_bytes(self) -> bytes:
        return json.dumps(self.model_dump(mode="json", by_alias=True)).encode("utf-8")


class TransactionLedger:
    """Submits, loads and classifies transactions held in a :class:`LedgerStore`."""

    def __init__(self, store: LedgerStore, settings: Optional[EngineSettings] = None) -> None:
        self.store = store
        self.settings = settings or EngineSettings()
        self.scheme = Base64DecimalScheme(max_magnitude=self.settings.max_magnitude)
        self.operator = HomomorphicOperator(self.scheme, self.settings.aml_threshold)
        self.classifier = AmlClassifier(self.operator)

    async def _read(self, key: str) -> bytes:
        try:
            return await self.store.get(key)
        except LedgerError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to read {key}: {e}", details={"key": key}) from e

    async def _write(self, key: str, value: bytes) -> None:
        try:
            await self.store.set(key, value)
        except LedgerError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to write {key}: {e}", details={"key": key}) from e

    async def transaction_ids(self) -> List[str]:
        """Ids listed in the index, in submission order.

        Raises:
            MalformedRecord: If the index is not a JSON array of strings.
        """
        raw = await self._read(INDEX_KEY)
        if not raw or not raw.strip():
            return []
        try:
            ids = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedRecord("Transaction index is not valid JSON") from e
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise MalformedRecord("Transaction index must be a JSON array of strings")
        return ids

    async def append_to_index(self, tx_id: str) -> None:
        """Add ``tx_id`` to the index unless it is already listed.

        Raises:
            IndexUpdateError: If the index could not be read or written.
        """
        try:
            ids = await self.transaction_ids()
            if tx_id in ids:
                return
            ids.append(tx_id)
            await self._write(INDEX_KEY, json.dumps(ids).encode("utf-8"))
        except StoreError as e:
            logger.error("Index update failed for %s: %s", tx_id, e)
            raise IndexUpdateError(
                f"Transaction {tx_id} was stored but not indexed: {e}",
                details={"tx_id": tx_id},
            ) from e

    async def write_transaction(self, tx: Transaction) -> None:
        """Persist the record of ``tx``.

        Raises:
            RecordWriteError: If the store rejects the write.
        """
        try:
            await self._write(record_key(tx.id), TransactionRecord.from_transaction(tx).to_bytes())
        except StoreError as e:
            raise RecordWriteError(
                f"Failed to write transaction {tx.id}: {e}", details={"tx_id": tx.id}
            ) from e

    async def submit(
        self,
        amount: Amount,
        sender: str,
        receiver: str,
        tx_id: Optional[str] = None,
    ) -> Transaction:
        """Encode ``amount``, store the record, then index it.

        Raises:
            ValueOutOfRange: If the amount cannot be encoded.
            DuplicateTransaction: If ``tx_id`` already has a record.
            RecordWriteError: If the record write failed; nothing was stored.
            IndexUpdateError: If the record was stored but the index was not
                updated; retry with :meth:`append_to_index`.
        """
        tx = lifecycle.submit(amount, sender, receiver, tx_id=tx_id, scheme=self.scheme)
        if record_key(tx.id) == INDEX_KEY:
            raise ValueError(f"Transaction id {tx.id!r} is reserved")
        if tx_id is not None and await self._read(record_key(tx.id)):
            raise DuplicateTransaction(
                f"Transaction {tx.id} already exists", details={"tx_id": tx.id}
            )
        await self.write_transaction(tx)
        await self.append_to_index(tx.id)
        logger.info("Submitted transaction %s from %s", tx.id, tx.sender)
        return tx

    async def get(self, tx_id: str) -> Transaction:
        """Load one transaction.

        Raises:
            NotFound: If no record exists for ``tx_id``.
            MalformedRecord: If the record cannot be parsed.
            MalformedCiphertext: If the stored amount has no known scheme prefix.
        """
        raw = await self._read(record_key(tx_id))
        if not raw:
            raise NotFound(f"Transaction {tx_id} not found", details={"tx_id": tx_id})
        try:
            record = TransactionRecord.model_validate_json(raw)
        except ValidationError as e:
            raise MalformedRecord(
                f"Unreadable record for transaction {tx_id}", details={"tx_id": tx_id}
            ) from e
        try:
            return record.to_transaction(tx_id)
        except (OverflowError, OSError, ValueError) as e:
            raise MalformedRecord(
                f"Timestamp out of range for transaction {tx_id}",
                details={"tx_id": tx_id, "timestamp": record.timestamp},
            ) from e

    async def load(self, status: Optional[TransactionStatus] = None) -> List[Transaction]:
        """All indexed transactions, newest first.

        Records that are missing or unreadable are logged and skipped.
        """
        transactions = []
        for tx_id in await self.transaction_ids():
            try:
                transactions.append(await self.get(tx_id))
            except NotFound:
                logger.warning("Indexed transaction %s has no record", tx_id)
            except (MalformedRecord, MalformedCiphertext) as e:
                logger.error("Skipping unreadable transaction %s: %s", tx_id, e)
        transactions.sort(key=lambda tx: tx.created_at, reverse=True)
        return lifecycle.filter_by_status(transactions, status)

    async def stats(self) -> LedgerStats:
        return lifecycle.summarize(await self.load())

    async def run_aml_check(self, tx_id: str, caller: str) -> Transaction:
        """Classify ``tx_id`` on behalf of ``caller`` and persist the outcome.

        Raises:
            NotFound: If the transaction does not exist.
            NotAuthorized: If ``caller`` is not the sender.
            AlreadyClassified: If the transaction was classified before, or
                while this check was running.
        """
        tx = await self.get(tx_id)
        result = self.classifier.classify(tx, caller)
        updated = lifecycle.apply_classification(tx, result)

        current = await self.get(tx_id)
        if current.status is not TransactionStatus.PENDING:
            raise AlreadyClassified(
                f"Transaction {tx_id} was classified concurrently",
                details={"tx_id": tx_id, "status": current.status.value},
            )
        await self.write_transaction(updated)
        return updated
