"""
Inventory ledger reconstruction.

There is no stored running-balance table. The stock counter is the only
ground truth, so the balance before the first recorded movement is derived
backwards from it:

    initial_qty = current_stock - (Σ qty_in - Σ qty_out)

and every movement is then replayed forwards from initial_qty. Replaying the
whole history always lands back on current_stock.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from trading_api.exceptions import NotFound, ValidationError
from trading_api.models.company import Company
from trading_api.models.product import Product
from trading_api.services.movement_sources import LedgerEvent, collect_events
from trading_api.services.stock_service import get_stock_quantity

logger = structlog.get_logger()

ZERO = Decimal("0")
OPENING = "OPENING"


@dataclass
class LedgerMovement:
    date: datetime
    kind: str
    description: str
    qty_in: Decimal
    qty_out: Decimal
    balance: Decimal
    source_id: Optional[str] = None


@dataclass
class LedgerBuild:
    initial_qty: Decimal
    opening_balance: Decimal
    closing_balance: Decimal
    movements: list[LedgerMovement] = field(default_factory=list)


@dataclass
class LedgerReport:
    product: Product
    company_id: uuid.UUID
    start_date: Optional[datetime]
    end_date: datetime
    opening_balance: Decimal
    closing_balance: Decimal
    current_stock: Decimal
    initial_qty: Decimal
    movements: list[LedgerMovement] = field(default_factory=list)


def _opening_description(start_date: Optional[datetime], initial_qty: Decimal) -> str:
    if start_date:
        return "Opening stock (selected period)"
    if initial_qty > 0:
        return "Opening stock / initial balance"
    return "Product added (zero balance)"


def build_ledger(
    current_stock: Decimal,
    events: Sequence[LedgerEvent],
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    opening_date: Optional[datetime] = None,
) -> LedgerBuild:
    """
    Pure replay. Rows come back newest first with the synthetic opening row
    last. Ties on timestamp are broken by source kind then source id so the
    running balances do not depend on storage order.
    """
    end = end_date or datetime.utcnow()
    ordered = sorted(events, key=lambda e: (e.timestamp, e.source_kind, e.source_id))

    total_net = sum((e.net for e in ordered), ZERO)
    initial_qty = current_stock - total_net

    opening_balance = initial_qty
    running = initial_qty
    window: list[LedgerMovement] = []
    for event in ordered:
        running += event.net
        if start_date and event.timestamp < start_date:
            opening_balance += event.net
            continue
        if event.timestamp > end:
            continue
        window.append(
            LedgerMovement(
                date=event.timestamp,
                kind=event.source_kind,
                description=event.description,
                qty_in=event.qty_in,
                qty_out=event.qty_out,
                balance=running,
                source_id=event.source_id,
            )
        )

    closing_balance = window[-1].balance if window else opening_balance

    opening_row = LedgerMovement(
        date=start_date or opening_date or end,
        kind=OPENING,
        description=_opening_description(start_date, initial_qty),
        qty_in=ZERO if start_date else max(initial_qty, ZERO),
        qty_out=ZERO,
        balance=opening_balance,
    )

    window.reverse()
    window.append(opening_row)
    return LedgerBuild(
        initial_qty=initial_qty,
        opening_balance=opening_balance,
        closing_balance=closing_balance,
        movements=window,
    )


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; bring aware inputs onto the same footing."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


async def reconstruct_ledger(
    session: AsyncSession,
    product_id: uuid.UUID,
    company_id: uuid.UUID,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> LedgerReport:
    """Read-only; takes no locks and may lag an in-flight approval."""
    start_date = _naive_utc(start_date)
    end_date = _naive_utc(end_date) or datetime.utcnow()
    if start_date and start_date > end_date:
        raise ValidationError("start_date must not be after end_date")

    product = await session.get(Product, product_id)
    if not product:
        raise NotFound("Product not found")
    company = await session.get(Company, company_id)
    if not company:
        raise NotFound("Company not found")

    current_stock = await get_stock_quantity(session, company.id, product.id)
    events = await collect_events(session, company, product.id)

    built = build_ledger(
        current_stock,
        events,
        start_date=start_date,
        end_date=end_date,
        opening_date=product.created_at,
    )

    logger.info(
        "ledger_reconstructed",
        product_id=str(product.id),
        company_id=str(company.id),
        events=len(events),
        window_rows=len(built.movements) - 1,
        current_stock=str(current_stock),
    )

    return LedgerReport(
        product=product,
        company_id=company.id,
        start_date=start_date,
        end_date=end_date,
        opening_balance=built.opening_balance,
        closing_balance=built.closing_balance,
        current_stock=current_stock,
        initial_qty=built.initial_qty,
        movements=built.movements,
    )
