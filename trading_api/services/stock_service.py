"""Stock counter access: the single ground-truth quantity per company/product."""

from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from trading_api.models.product import Stock

logger = structlog.get_logger()


async def get_stock_quantity(
    session: AsyncSession, company_id: uuid.UUID, product_id: uuid.UUID
) -> Decimal:
    """Current quantity, 0 when no counter row exists yet."""
    result = await session.execute(
        select(Stock.quantity).where(
            Stock.company_id == company_id,
            Stock.product_id == product_id,
        )
    )
    qty = result.scalar_one_or_none()
    return Decimal(str(qty)) if qty is not None else Decimal("0")


async def increment_stock(
    session: AsyncSession,
    company_id: uuid.UUID,
    product_id: uuid.UUID,
    qty: Decimal,
) -> None:
    """Atomic upsert-increment; a negative qty decrements."""
    now = datetime.utcnow()
    stmt = insert(Stock).values(
        id=uuid.uuid4(),
        company_id=company_id,
        product_id=product_id,
        quantity=qty,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Stock.company_id, Stock.product_id],
        set_={"quantity": Stock.quantity + stmt.excluded.quantity, "updated_at": now},
    )
    await session.execute(stmt)

    logger.debug(
        "stock_incremented",
        company_id=str(company_id),
        product_id=str(product_id),
        qty=str(qty),
    )
