"""
Unit tests for trading_api/services/ledger_reconstruction_service.py

build_ledger is pure and tested directly; reconstruct_ledger is tested with
the movement sources and stock counter patched out.
"""

import random
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from trading_api.exceptions import NotFound, ValidationError
from trading_api.services.ledger_reconstruction_service import (
    OPENING,
    build_ledger,
    reconstruct_ledger,
)
from trading_api.services.movement_sources import (
    SOURCE_DAMAGE,
    SOURCE_PURCHASE,
    SOURCE_RETURN,
    SOURCE_SALE,
    LedgerEvent,
)

T0 = datetime(2024, 1, 1, 9, 0, 0)


def _event(day: int, qty_in: str = "0", qty_out: str = "0", kind: str = SOURCE_PURCHASE, source_id: str = None):
    return LedgerEvent(
        timestamp=T0 + timedelta(days=day),
        qty_in=Decimal(qty_in),
        qty_out=Decimal(qty_out),
        description=f"{kind} on day {day}",
        source_kind=kind,
        source_id=source_id or str(uuid.uuid4()),
    )


def _history():
    """In 300, out 200; ends on a 15-unit sale."""
    return [
        _event(1, qty_in="150"),
        _event(2, qty_out="100", kind=SOURCE_SALE),
        _event(3, qty_in="150"),
        _event(4, qty_out="85", kind=SOURCE_SALE),
        _event(5, qty_out="15", kind=SOURCE_SALE),
    ]


# ---------------------------------------------------------------------------
# build_ledger
# ---------------------------------------------------------------------------


def test_initial_quantity_derived_from_current_stock():
    built = build_ledger(Decimal("120"), _history(), end_date=T0 + timedelta(days=30))

    assert built.initial_qty == Decimal("20")
    assert built.opening_balance == Decimal("20")
    assert built.closing_balance == Decimal("120")


def test_window_excluding_last_movement_closes_before_it():
    built = build_ledger(
        Decimal("120"),
        _history(),
        end_date=T0 + timedelta(days=4, hours=1),
    )

    assert built.closing_balance == Decimal("135")
    assert built.movements[0].balance == Decimal("135")
    assert built.movements[0].qty_out == Decimal("85")


def test_full_replay_lands_on_current_stock():
    built = build_ledger(Decimal("120"), _history(), end_date=T0 + timedelta(days=30))

    newest = built.movements[0]
    assert newest.balance == Decimal("120")
    assert newest.qty_out == Decimal("15")


def test_rows_newest_first_with_opening_row_last():
    built = build_ledger(Decimal("120"), _history(), end_date=T0 + timedelta(days=30))

    dated = [m.date for m in built.movements[:-1]]
    assert dated == sorted(dated, reverse=True)
    assert built.movements[-1].kind == OPENING
    assert len(built.movements) == 6


def test_opening_balance_for_window():
    start = T0 + timedelta(days=2, hours=12)
    end = T0 + timedelta(days=30)
    built = build_ledger(Decimal("120"), _history(), start_date=start, end_date=end)

    # 20 + 150 - 100 before the window
    assert built.opening_balance == Decimal("70")
    opening = built.movements[-1]
    assert opening.balance == Decimal("70")
    assert opening.date == start
    assert opening.qty_in == Decimal("0")
    assert opening.description == "Opening stock (selected period)"

    window = built.movements[:-1]
    assert len(window) == 3
    net = sum(m.qty_in - m.qty_out for m in window)
    assert built.opening_balance + net == built.closing_balance


def test_window_boundaries_are_inclusive():
    start = T0 + timedelta(days=2)
    end = T0 + timedelta(days=4)
    built = build_ledger(Decimal("120"), _history(), start_date=start, end_date=end)

    window_dates = {m.date for m in built.movements[:-1]}
    assert window_dates == {start, T0 + timedelta(days=3), end}


def test_zero_movements_returns_only_opening_row():
    created = datetime(2023, 6, 1)
    built = build_ledger(Decimal("42"), [], opening_date=created)

    assert len(built.movements) == 1
    opening = built.movements[0]
    assert opening.kind == OPENING
    assert opening.balance == Decimal("42")
    assert opening.date == created
    assert opening.qty_in == Decimal("42")
    assert opening.description == "Opening stock / initial balance"
    assert built.closing_balance == Decimal("42")


def test_opening_row_for_product_added_at_zero():
    built = build_ledger(
        Decimal("10"),
        [_event(1, qty_in="10")],
        opening_date=T0,
        end_date=T0 + timedelta(days=5),
    )

    opening = built.movements[-1]
    assert opening.qty_in == Decimal("0")
    assert opening.description == "Product added (zero balance)"


def test_negative_initial_quantity_is_reported_not_clamped():
    # Counter lower than the recorded history implies
    built = build_ledger(
        Decimal("0"),
        [_event(1, qty_in="5"), _event(2, qty_out="10", kind=SOURCE_DAMAGE)],
        end_date=T0 + timedelta(days=5),
    )

    assert built.initial_qty == Decimal("5")
    built = build_ledger(
        Decimal("0"),
        [_event(1, qty_in="10")],
        end_date=T0 + timedelta(days=5),
    )
    assert built.initial_qty == Decimal("-10")
    assert built.movements[-1].balance == Decimal("-10")
    assert built.movements[-1].qty_in == Decimal("0")


def test_result_independent_of_storage_order():
    history = _history() + [
        _event(3, qty_in="7", kind=SOURCE_RETURN, source_id="r-1"),
        _event(3, qty_out="7", kind=SOURCE_DAMAGE, source_id="d-1"),
    ]
    shuffled = list(history)
    random.Random(7).shuffle(shuffled)

    end = T0 + timedelta(days=30)
    a = build_ledger(Decimal("120"), history, end_date=end)
    b = build_ledger(Decimal("120"), shuffled, end_date=end)

    assert [(m.source_id, m.balance) for m in a.movements] == [
        (m.source_id, m.balance) for m in b.movements
    ]
    assert a.movements[0].balance == Decimal("120")


def test_events_after_end_date_still_count_towards_initial_quantity():
    built = build_ledger(Decimal("120"), _history(), end_date=T0 + timedelta(days=1, hours=1))

    assert built.initial_qty == Decimal("20")
    assert built.closing_balance == Decimal("170")
    assert len(built.movements) == 2


# ---------------------------------------------------------------------------
# reconstruct_ledger
# ---------------------------------------------------------------------------


def _product():
    p = MagicMock()
    p.id = uuid.uuid4()
    p.sku = "TILE-6060"
    p.name = "Porcelain tile"
    p.unit = "box"
    p.created_at = datetime(2023, 12, 1)
    return p


def _company():
    c = MagicMock()
    c.id = uuid.uuid4()
    c.is_parent = False
    return c


@pytest.mark.asyncio
async def test_reconstruct_rejects_inverted_window():
    session = AsyncMock()
    with pytest.raises(ValidationError):
        await reconstruct_ledger(
            session,
            uuid.uuid4(),
            uuid.uuid4(),
            start_date=datetime(2024, 2, 1),
            end_date=datetime(2024, 1, 1),
        )
    session.get.assert_not_awaited()


@pytest.mark.asyncio
async def test_reconstruct_unknown_product():
    session = AsyncMock()
    session.get = AsyncMock(return_value=None)
    with pytest.raises(NotFound):
        await reconstruct_ledger(session, uuid.uuid4(), uuid.uuid4())


@pytest.mark.asyncio
async def test_reconstruct_unknown_company():
    session = AsyncMock()
    session.get = AsyncMock(side_effect=[_product(), None])
    with pytest.raises(NotFound):
        await reconstruct_ledger(session, uuid.uuid4(), uuid.uuid4())


@pytest.mark.asyncio
async def test_reconstruct_uses_stock_counter_and_sources():
    product, company = _product(), _company()
    session = AsyncMock()
    session.get = AsyncMock(side_effect=[product, company])

    with patch(
        "trading_api.services.ledger_reconstruction_service.get_stock_quantity",
        AsyncMock(return_value=Decimal("120")),
    ), patch(
        "trading_api.services.ledger_reconstruction_service.collect_events",
        AsyncMock(return_value=_history()),
    ):
        report = await reconstruct_ledger(
            session,
            product.id,
            company.id,
            end_date=T0 + timedelta(days=4, hours=1),
        )

    assert report.current_stock == Decimal("120")
    assert report.initial_qty == Decimal("20")
    assert report.opening_balance == Decimal("20")
    assert report.closing_balance == Decimal("135")
    assert report.movements[-1].date == product.created_at
    assert report.product is product
