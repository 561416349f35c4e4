"""
Unit tests for trading_api/services/product_cost_service.py
"""

import uuid
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from trading_api.exceptions import NotFound, ValidationError
from trading_api.models.cost import ProductCostLog
from trading_api.services.product_cost_service import (
    get_product_cost_preview,
    update_product_cost,
)


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


def _product(cost=None):
    p = MagicMock()
    p.id = uuid.uuid4()
    p.sku = "TEA-500"
    p.name = "Green tea 500g"
    p.cost = Decimal(cost) if cost else None
    p.created_by_company_id = uuid.uuid4()
    return p


def _purchase(currency: str = "LYD", total_expenses: str = "20"):
    p = MagicMock()
    p.id = uuid.uuid4()
    p.invoice_number = "INV-9"
    p.approved_at = datetime(2024, 5, 2, 12, 0)
    p.currency = currency
    p.total_expenses = Decimal(total_expenses)
    return p


def _line(product_id, qty: str, unit_price: str):
    line = MagicMock()
    line.id = uuid.uuid4()
    line.product_id = product_id
    line.qty = Decimal(qty)
    line.unit_price = Decimal(unit_price)
    line.sub_total = Decimal(qty) * Decimal(unit_price)
    return line


def _first(value):
    r = MagicMock()
    r.scalars.return_value.first.return_value = value
    return r


def _scalars(items):
    r = MagicMock()
    r.scalars.return_value.all.return_value = items
    return r


def _rows(rows):
    r = MagicMock()
    r.all.return_value = rows
    return r


def _expense_row(amount: str, currency: str = "LYD", actual: bool = True):
    e = MagicMock()
    e.amount = Decimal(amount)
    e.currency = currency
    e.amount_in_base = Decimal(amount)
    e.is_actual_expense = actual
    return e


# ---------------------------------------------------------------------------
# get_product_cost_preview
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_preview_unknown_product():
    session = _mock_session()
    session.get = AsyncMock(return_value=None)

    with pytest.raises(NotFound):
        await get_product_cost_preview(session, uuid.uuid4())


@pytest.mark.asyncio
async def test_preview_rejects_non_positive_rate():
    session = _mock_session()

    with pytest.raises(ValidationError):
        await get_product_cost_preview(session, uuid.uuid4(), exchange_rate=Decimal("0"))
    session.get.assert_not_awaited()


@pytest.mark.asyncio
async def test_preview_for_never_purchased_product():
    product = _product(cost="4.2")
    session = _mock_session()
    session.get = AsyncMock(return_value=product)
    session.execute.side_effect = [_first(None)]

    preview = await get_product_cost_preview(session, product.id)

    assert preview.current_cost == Decimal("4.2")
    assert preview.last_purchase is None


@pytest.mark.asyncio
async def test_preview_weights_expenses_by_line_value():
    product = _product()
    other = uuid.uuid4()
    purchase = _purchase()
    session = _mock_session()
    session.get = AsyncMock(return_value=product)
    session.execute.side_effect = [
        _first(purchase),
        _scalars([_line(product.id, "10", "5"), _line(other, "20", "2.5")]),
        _rows([(_expense_row("15"), "Freight"), (_expense_row("5", actual=False), "Handling")]),
    ]

    preview = await get_product_cost_preview(session, product.id)

    last = preview.last_purchase
    assert last.purchase_id == purchase.id
    assert last.quantity == Decimal("10")
    assert last.value_percentage == Decimal("50")
    assert last.expense_share == Decimal("10")
    assert last.cost_per_unit == Decimal("6")
    assert last.invoice_total_in_base == Decimal("100")
    assert last.allocation_strategy == "VALUE_WEIGHTED"
    assert [e.category_name for e in last.expenses] == ["Freight", "Handling"]
    assert last.expenses[1].is_actual_expense is False


@pytest.mark.asyncio
async def test_preview_applies_supplied_rate_to_foreign_invoice():
    product = _product()
    purchase = _purchase(currency="USD")
    session = _mock_session()
    session.get = AsyncMock(return_value=product)
    session.execute.side_effect = [
        _first(purchase),
        _scalars([_line(product.id, "10", "5"), _line(uuid.uuid4(), "20", "2.5")]),
        _rows([]),
    ]

    preview = await get_product_cost_preview(session, product.id, exchange_rate=Decimal("5"))

    last = preview.last_purchase
    assert last.exchange_rate == Decimal("5")
    assert last.unit_price == Decimal("5")
    assert last.unit_price_in_base == Decimal("25")
    assert last.line_value_in_base == Decimal("250")
    assert last.cost_per_unit == Decimal("26")


@pytest.mark.asyncio
async def test_preview_merges_repeated_lines_of_the_same_product():
    product = _product()
    session = _mock_session()
    session.get = AsyncMock(return_value=product)
    session.execute.side_effect = [
        _first(_purchase(total_expenses="0")),
        _scalars([_line(product.id, "4", "10"), _line(product.id, "6", "5")]),
        _rows([]),
    ]

    preview = await get_product_cost_preview(session, product.id)

    last = preview.last_purchase
    assert last.quantity == Decimal("10")
    assert last.unit_price == Decimal("7")
    assert last.cost_per_unit == Decimal("7")
    assert last.value_percentage == Decimal("100")


# ---------------------------------------------------------------------------
# update_product_cost
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("cost", ["0", "-3"])
async def test_update_cost_must_be_positive(cost):
    session = _mock_session()

    with pytest.raises(ValidationError):
        await update_product_cost(session, uuid.uuid4(), Decimal(cost), uuid.uuid4(), "user-1")
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_update_cost_requires_known_purchase():
    session = _mock_session()
    session.get = AsyncMock(side_effect=[_product(), None])

    with pytest.raises(NotFound):
        await update_product_cost(session, uuid.uuid4(), Decimal("5"), uuid.uuid4(), "user-1")


@pytest.mark.asyncio
async def test_update_cost_logs_old_and_new_values():
    product = _product(cost="5.5")
    purchase = _purchase()
    session = _mock_session()
    session.get = AsyncMock(side_effect=[product, purchase])

    entry = await update_product_cost(
        session, product.id, Decimal("6.12345"), purchase.id, "user-1", notes="after freight"
    )

    assert isinstance(entry, ProductCostLog)
    assert entry.old_cost == Decimal("5.5")
    assert entry.new_cost == Decimal("6.1235")
    assert entry.purchase_id == purchase.id
    assert entry.updated_by == "user-1"
    assert product.cost == Decimal("6.1235")
    logged = [c.args[0] for c in session.add.call_args_list]
    assert entry in logged
