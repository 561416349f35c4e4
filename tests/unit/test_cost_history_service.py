"""
Unit tests for trading_api/services/cost_history_service.py
"""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from trading_api.services.allocation_policy import AllocationLine, UniformPerUnitPolicy
from trading_api.services.cost_history_service import get_cost_history, record_cost_history


def _line(qty: str, unit_price: str):
    line = MagicMock()
    line.id = uuid.uuid4()
    line.product_id = uuid.uuid4()
    line.qty = Decimal(qty)
    line.unit_price = Decimal(unit_price)
    return line


@pytest.mark.asyncio
async def test_one_entry_per_purchase_line():
    purchase = MagicMock()
    purchase.id = uuid.uuid4()
    purchase.company_id = uuid.uuid4()
    lines = [_line("10", "5"), _line("20", "2.5")]
    policy = UniformPerUnitPolicy()
    allocations = policy.allocate(
        [AllocationLine(qty=l.qty, unit_price=l.unit_price, line_value=l.qty * l.unit_price) for l in lines],
        Decimal("30"),
    )
    session = AsyncMock()
    session.add = MagicMock()

    entries = await record_cost_history(session, purchase, lines, allocations, policy.name)

    assert len(entries) == 2
    assert session.add.call_count == 2
    assert [e.purchase_line_id for e in entries] == [l.id for l in lines]
    assert entries[0].expense_per_unit == Decimal("1")
    assert entries[0].total_cost_per_unit == Decimal("6")
    assert entries[1].total_cost_per_unit == Decimal("3.5")
    assert all(e.allocation_strategy == "UNIFORM_PER_UNIT" for e in entries)
    assert all(e.company_id == purchase.company_id for e in entries)
    session.flush.assert_not_awaited()


@pytest.mark.asyncio
async def test_history_is_capped_by_default_limit():
    rows = [MagicMock() for _ in range(3)]
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    session = AsyncMock()
    session.execute.return_value = result

    history = await get_cost_history(session, uuid.uuid4())

    assert history == rows
    stmt = session.execute.await_args.args[0]
    assert stmt._limit == 10
