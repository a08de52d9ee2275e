# SPDX-License-Identifier: MPL-2.0
"""FastAPI application for the FHE ledger.

Amounts leave this API only in encoded form. Revealing plaintext needs a
wallet signature and happens client-side through
:class:`fhe_ledger.core.authorization.AuthorizationSession`.
"""

import logging
import os
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from fhe_ledger.config import EngineSettings, configure_logging
from fhe_ledger.core.exceptions import (
    AuthorizationDenied,
    DuplicateTransaction,
    InvalidTransition,
    LedgerError,
    MalformedCiphertext,
    NotAuthorized,
    NotFound,
    StoreError,
    UnsupportedOperation,
    ValueOutOfRange,
)
from fhe_ledger.core.models import Transaction, TransactionStatus
from fhe_ledger.core.store import InMemoryLedgerStore, TransactionLedger

logger = logging.getLogger(__name__)

# Most specific first.
ERROR_STATUS = [
    (NotFound, status.HTTP_404_NOT_FOUND),
    (NotAuthorized, status.HTTP_403_FORBIDDEN),
    (AuthorizationDenied, status.HTTP_401_UNAUTHORIZED),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (DuplicateTransaction, status.HTTP_409_CONFLICT),
    (ValueOutOfRange, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (MalformedCiphertext, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnsupportedOperation, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


class SubmitRequest(BaseModel):
    """Body of ``POST /transactions``."""

    amount: Decimal
    sender: str = Field(min_length=1)
    receiver: str = Field(min_length=1)
    id: Optional[str] = None  # noqa: A003


class AmlCheckRequest(BaseModel):
    """Body of ``POST /transactions/{id}/aml-check``."""

    caller: str = Field(min_length=1)


class TransactionResponse(BaseModel):
    id: str  # noqa: A003
    amount: str
    sender: str
    receiver: str
    created_at: datetime
    status: TransactionStatus
    aml_checked: bool

    @classmethod
    def from_transaction(cls, tx: Transaction) -> "TransactionResponse":
        return cls(
            id=tx.id,
            amount=tx.amount.text,
            sender=tx.sender,
            receiver=tx.receiver,
            created_at=tx.created_at,
            status=tx.status,
            aml_checked=tx.aml_checked,
        )


class StatsResponse(BaseModel):
    total: int
    pending: int
    cleared: int
    flagged: int


def error_status(exc: LedgerError) -> int:
    for exc_type, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(
    ledger: Optional[TransactionLedger] = None,
    settings: Optional[EngineSettings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or EngineSettings()
    ledger = ledger or TransactionLedger(InMemoryLedgerStore(), settings)

    app = FastAPI(
        title="FHE Ledger API",
        description="Encrypted transaction ledger with AML compliance checks",
        version="0.1.0",
    )
    app.state.ledger = ledger

    allowed_origins = os.getenv(
        "ALLOWED_ORIGINS",
        "http://localhost:3000,http://localhost:8000",
    ).split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(LedgerError)
    async def handle_ledger_error(request: Request, exc: LedgerError) -> JSONResponse:
        code = error_status(exc)
        if code >= 500:
            logger.error("Ledger error on %s: %s", request.url.path, exc.message)
        return JSONResponse(
            status_code=code,
            content={
                "detail": exc.message,
                "error": type(exc).__name__,
                "retryable": exc.retryable,
            },
        )

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for monitoring and load balancers."""
        return {"status": "healthy", "service": "fhe-ledger"}

    @app.post(
        "/transactions",
        response_model=TransactionResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Transactions"],
    )
    async def submit_transaction(body: SubmitRequest) -> TransactionResponse:
        try:
            tx = await ledger.submit(body.amount, body.sender, body.receiver, tx_id=body.id)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
        return TransactionResponse.from_transaction(tx)

    @app.get(
        "/transactions",
        response_model=List[TransactionResponse],
        tags=["Transactions"],
    )
    async def list_transactions(
        status_filter: Optional[TransactionStatus] = Query(None, alias="status"),
    ) -> List[TransactionResponse]:
        transactions = await ledger.load(status_filter)
        return [TransactionResponse.from_transaction(tx) for tx in transactions]

    @app.get(
        "/transactions/{tx_id}",
        response_model=TransactionResponse,
        tags=["Transactions"],
    )
    async def get_transaction(tx_id: str) -> TransactionResponse:
        return TransactionResponse.from_transaction(await ledger.get(tx_id))

    @app.post(
        "/transactions/{tx_id}/aml-check",
        response_model=TransactionResponse,
        tags=["Compliance"],
    )
    async def run_aml_check(tx_id: str, body: AmlCheckRequest) -> TransactionResponse:
        tx = await ledger.run_aml_check(tx_id, body.caller)
        return TransactionResponse.from_transaction(tx)

    @app.get("/stats", response_model=StatsResponse, tags=["Transactions"])
    async def get_stats() -> StatsResponse:
        summary = await ledger.stats()
        return StatsResponse(
            total=summary.total,
            pending=summary.pending,
            cleared=summary.cleared,
            flagged=summary.flagged,
        )

    return app


if __name__ == "__main__":
    import uvicorn

    env_settings = EngineSettings.from_env()
    configure_logging(env_settings.log_level)
    uvicorn.run(create_app(settings=env_settings), host="0.0.0.0", port=8000)
