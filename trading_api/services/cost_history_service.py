"""
Cost history store: write-once landed-cost rows per purchase line.

Rows are written only on a purchase's first approval and never updated.
"""

from typing import Optional, Sequence
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from trading_api.config import settings
from trading_api.models.cost import ProductCostHistory
from trading_api.models.purchase import Purchase, PurchaseLine
from trading_api.services.allocation_policy import LineAllocation

logger = structlog.get_logger()


async def record_cost_history(
    session: AsyncSession,
    purchase: Purchase,
    lines: Sequence[PurchaseLine],
    allocations: Sequence[LineAllocation],
    strategy: str,
) -> list[ProductCostHistory]:
    """
    Add one ProductCostHistory row per purchase line.

    `allocations` must be in the same order as `lines`. Caller owns the flush.
    """
    entries = []
    for line, alloc in zip(lines, allocations):
        entry = ProductCostHistory(
            product_id=line.product_id,
            purchase_id=purchase.id,
            purchase_line_id=line.id,
            company_id=purchase.company_id,
            purchase_price=line.unit_price,
            expense_per_unit=alloc.expense_per_unit,
            total_cost_per_unit=alloc.cost_per_unit,
            quantity=line.qty,
            allocation_strategy=strategy,
        )
        session.add(entry)
        entries.append(entry)

    logger.info(
        "cost_history_recorded",
        purchase_id=str(purchase.id),
        entries=len(entries),
        strategy=strategy,
    )
    return entries


async def get_cost_history(
    session: AsyncSession,
    product_id: uuid.UUID,
    company_id: Optional[uuid.UUID] = None,
    limit: Optional[int] = None,
) -> list[ProductCostHistory]:
    """Most recent entries first, capped at COST_HISTORY_LIMIT by default."""
    q = select(ProductCostHistory).where(
        ProductCostHistory.product_id == product_id
    )
    if company_id:
        q = q.where(ProductCostHistory.company_id == company_id)

    result = await session.execute(
        q.order_by(ProductCostHistory.created_at.desc()).limit(
            limit or settings.COST_HISTORY_LIMIT
        )
    )
    return list(result.scalars().all())
