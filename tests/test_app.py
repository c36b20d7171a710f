"""
Tests for the application shell and the HTTP error mapping.

These tests verify:
  - The health check responds
  - The lifespan configures logging and creates every table
  - Each error category maps to its HTTP status and JSON body
  - Fatal errors never leak their detail into the response
"""

import uuid
from decimal import Decimal
from unittest.mock import patch

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy import inspect

from bankcards import main
from bankcards.config import settings
from bankcards.exceptions import (
    BankCardsError,
    CardBlockedError,
    CardNotFoundError,
    CryptographyError,
    DuplicateCardError,
    InsufficientFundsError,
    InvalidAmountError,
    TransferFailedError,
    UnauthorizedAccessError,
    register_exception_handlers,
    status_code_for,
)


class TestHealth:
    async def test_health_check(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": settings.APP_VERSION}

    def test_domain_handler_registered(self):
        assert BankCardsError in main.app.exception_handlers


class TestLifespan:
    async def test_lifespan_creates_tables_and_configures_logging(self):
        with patch.object(main, "setup_logging") as mock_setup:
            async with main.lifespan(main.app):
                async with main.engine.connect() as conn:
                    tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

        mock_setup.assert_called_once_with(settings.LOG_LEVEL)
        assert {"users", "cards", "transactions"} <= set(tables)


@pytest_asyncio.fixture
async def error_client():
    """A bare app with the domain handlers and one route per error."""
    app = FastAPI()
    register_exception_handlers(app)

    errors = {
        "invalid-amount": InvalidAmountError(Decimal("-1"), "Amount must be greater than 0"),
        "not-found": CardNotFoundError(),
        "forbidden": UnauthorizedAccessError(),
        "duplicate": DuplicateCardError(),
        "blocked": CardBlockedError("source"),
        "funds": InsufficientFundsError(uuid.uuid4(), Decimal("100.00"), Decimal("42.50")),
        "crypto": CryptographyError("Decryption failed for key v2"),
        "transfer-failed": TransferFailedError(),
    }

    @app.get("/raise/{name}")
    async def raise_error(name: str):
        raise errors[name]

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestErrorResponses:
    """Each category of domain error maps to a fixed status code."""

    @pytest.mark.parametrize("name,status_code,error_type", [
        ("invalid-amount", 400, "invalid_amount"),
        ("not-found", 404, "card_not_found"),
        ("forbidden", 403, "unauthorized_access"),
        ("duplicate", 409, "duplicate_card"),
        ("blocked", 422, "card_blocked"),
        ("funds", 422, "insufficient_funds"),
        ("crypto", 500, "cryptography_error"),
        ("transfer-failed", 500, "transfer_failed"),
    ])
    async def test_status_codes(self, error_client, name, status_code, error_type):
        response = await error_client.get(f"/raise/{name}")
        assert response.status_code == status_code
        assert response.json()["error_type"] == error_type

    async def test_detail_is_returned(self, error_client):
        response = await error_client.get("/raise/blocked")
        assert response.json()["detail"] == "Source card is blocked"

    async def test_insufficient_funds_amounts(self, error_client):
        body = (await error_client.get("/raise/funds")).json()
        assert body["requested"] == "100.00"
        assert body["available"] == "42.50"

    async def test_fatal_detail_is_hidden(self, error_client):
        body = (await error_client.get("/raise/crypto")).json()
        assert body["detail"] == "Internal ledger error"
        assert "v2" not in str(body)

    def test_status_code_for_base_error(self):
        assert status_code_for(BankCardsError("generic")) == 400
