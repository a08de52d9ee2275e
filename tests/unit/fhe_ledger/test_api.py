# SPDX-License-Identifier: MPL-2.0
"""Tests for the HTTP API."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from fhe_ledger.api.main import create_app, error_status
from fhe_ledger.core.exceptions import (
    AlreadyClassified,
    AuthorizationTimeout,
    IndexUpdateError,
    LedgerError,
    MalformedRecord,
)
from fhe_ledger.core.store import INDEX_KEY, InMemoryLedgerStore, TransactionLedger

SENDER = "0x1111111111111111111111111111111111111111"
RECEIVER = "0x2222222222222222222222222222222222222222"


class TestLedgerApi:
    @pytest.fixture
    def store(self):
        return InMemoryLedgerStore()

    @pytest.fixture
    def client(self, store):
        return TestClient(create_app(TransactionLedger(store)))

    def submit(self, client, amount, tx_id=None):
        body = {"amount": amount, "sender": SENDER, "receiver": RECEIVER}
        if tx_id:
            body["id"] = tx_id
        return client.post("/transactions", json=body)

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_submit_returns_encoded_amount(self, client):
        response = self.submit(client, "125.50", "tx-1")
        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "tx-1"
        assert data["amount"].startswith("FHE-")
        assert data["status"] == "pending"
        assert data["aml_checked"] is False
        assert "125.5" not in response.text

    def test_submit_rejects_bad_amount(self, client):
        response = self.submit(client, "1.005")
        assert response.status_code == 422
        assert response.json()["error"] == "ValueOutOfRange"

    def test_submit_rejects_reserved_id(self, client):
        assert self.submit(client, "1", "keys").status_code == 422

    def test_submit_duplicate(self, client):
        assert self.submit(client, "1", "tx-1").status_code == 201
        response = self.submit(client, "2", "tx-1")
        assert response.status_code == 409
        assert response.json()["error"] == "DuplicateTransaction"

    def test_get_missing(self, client):
        response = client.get("/transactions/nope")
        assert response.status_code == 404
        assert response.json()["retryable"] is False

    def test_aml_check_flow(self, client):
        self.submit(client, "10000.01", "tx-big")
        self.submit(client, "10000.00", "tx-edge")

        response = client.post("/transactions/tx-big/aml-check", json={"caller": SENDER})
        assert response.status_code == 200
        assert response.json()["status"] == "flagged"
        assert response.json()["aml_checked"] is True

        response = client.post("/transactions/tx-edge/aml-check", json={"caller": SENDER})
        assert response.json()["status"] == "cleared"

        response = client.post("/transactions/tx-big/aml-check", json={"caller": SENDER})
        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyClassified"

        assert client.get("/transactions/tx-big").json()["status"] == "flagged"
        flagged = client.get("/transactions", params={"status": "flagged"}).json()
        assert [tx["id"] for tx in flagged] == ["tx-big"]
        assert client.get("/stats").json() == {
            "total": 2,
            "pending": 0,
            "cleared": 1,
            "flagged": 1,
        }

    def test_aml_check_by_receiver_is_forbidden(self, client):
        self.submit(client, "50000", "tx-1")
        response = client.post("/transactions/tx-1/aml-check", json={"caller": RECEIVER})
        assert response.status_code == 403
        assert client.get("/transactions/tx-1").json()["status"] == "pending"

    def test_unknown_status_filter(self, client):
        assert client.get("/transactions", params={"status": "weird"}).status_code == 422

    def test_corrupt_index_is_unavailable(self, client, store):
        asyncio.run(store.set(INDEX_KEY, b"{"))
        response = client.get("/transactions")
        assert response.status_code == 503
        assert response.json()["error"] == "MalformedRecord"


@pytest.mark.parametrize(
    "exc,code",
    [
        (AlreadyClassified("x"), 409),
        (AuthorizationTimeout("x"), 401),
        (IndexUpdateError("x"), 503),
        (MalformedRecord("x"), 503),
        (LedgerError("x"), 500),
    ],
)
def test_error_status(exc, code):
    assert error_status(exc) == code
