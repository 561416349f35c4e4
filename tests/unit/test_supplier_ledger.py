"""
Unit tests for trading_api/services/supplier_ledger.py
"""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from trading_api.exceptions import LedgerUnavailable
from trading_api.services.supplier_ledger import (
    LedgerEntry,
    SqlSupplierLedger,
    balances_by_currency,
)


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


def _last_row(balance):
    r = MagicMock()
    if balance is None:
        r.scalar_one_or_none.return_value = None
    else:
        row = MagicMock()
        row.balance = Decimal(balance)
        r.scalar_one_or_none.return_value = row
    return r


def _entry(transaction_type: str = "CREDIT", amount: str = "100", currency: str = "LYD"):
    return LedgerEntry(
        supplier_id=uuid.uuid4(),
        transaction_type=transaction_type,
        amount=Decimal(amount),
        currency=currency,
        reference_type="PURCHASE",
        reference_id=uuid.uuid4(),
        description="Purchase invoice INV-1",
    )


@pytest.mark.asyncio
async def test_first_credit_starts_from_zero():
    session = _mock_session()
    session.execute.return_value = _last_row(None)

    row = await SqlSupplierLedger().post(session, _entry("CREDIT", "250"))

    assert row.balance == Decimal("250")
    assert row.transaction_type == "CREDIT"
    session.add.assert_called_once_with(row)
    session.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_credit_accumulates_on_previous_balance():
    session = _mock_session()
    session.execute.return_value = _last_row("400")

    row = await SqlSupplierLedger().post(session, _entry("CREDIT", "100"))

    assert row.balance == Decimal("500")


@pytest.mark.asyncio
async def test_debit_reduces_balance():
    session = _mock_session()
    session.execute.return_value = _last_row("400")

    row = await SqlSupplierLedger().post(session, _entry("DEBIT", "150"))

    assert row.balance == Decimal("250")
    assert row.reference_type == "PURCHASE"


@pytest.mark.asyncio
async def test_previous_balance_is_read_from_latest_posting_locked():
    session = _mock_session()
    session.execute.return_value = _last_row("400")

    await SqlSupplierLedger().post(session, _entry("CREDIT", "100"))

    stmt = session.execute.await_args.args[0]
    sql = str(stmt.compile(dialect=postgresql.dialect()))
    # Entries posted in the same drain can share created_at; the identity
    # column is the only strict order
    assert "ORDER BY supplier_account_entries.entry_seq DESC" in sql
    assert "created_at DESC" not in sql
    assert "FOR UPDATE" in sql


@pytest.mark.asyncio
async def test_unknown_transaction_type():
    session = _mock_session()

    with pytest.raises(ValueError):
        await SqlSupplierLedger().post(session, _entry("REFUND"))
    session.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_operational_error_becomes_ledger_unavailable():
    session = _mock_session()
    session.execute.side_effect = OperationalError("SELECT", {}, Exception("connection reset"))

    with pytest.raises(LedgerUnavailable):
        await SqlSupplierLedger().post(session, _entry())
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_balances_are_reported_per_currency():
    session = _mock_session()
    result = MagicMock()
    result.all.return_value = [
        ("EUR", Decimal("10"), Decimal("0")),
        ("LYD", Decimal("500"), Decimal("120.5")),
    ]
    session.execute.return_value = result

    balances = await balances_by_currency(session, uuid.uuid4())

    assert set(balances) == {"EUR", "LYD"}
    assert balances["LYD"]["balance"] == Decimal("379.5")
    assert balances["LYD"]["debit"] == Decimal("120.5")
    assert balances["EUR"] == {
        "credit": Decimal("10"),
        "debit": Decimal("0"),
        "balance": Decimal("10"),
    }


@pytest.mark.asyncio
async def test_supplier_without_entries_has_no_balances():
    session = _mock_session()
    result = MagicMock()
    result.all.return_value = []
    session.execute.return_value = result

    assert await balances_by_currency(session, uuid.uuid4()) == {}
