from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from trading_api.database import get_db
from trading_api.middleware.auth import get_current_user
from trading_api.schemas.ledger import (
    LedgerMovementResponse,
    LedgerPeriod,
    LedgerProduct,
    ProductMovementReport,
)
from trading_api.services.ledger_reconstruction_service import reconstruct_ledger

router = APIRouter()


@router.get("/product-movements", response_model=ProductMovementReport)
async def product_movements(
    product_id: uuid.UUID = Query(...),
    company_id: uuid.UUID = Query(...),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    report = await reconstruct_ledger(
        db, product_id, company_id, start_date=start_date, end_date=end_date
    )
    p = report.product
    return ProductMovementReport(
        product=LedgerProduct(id=str(p.id), sku=p.sku, name=p.name, unit=p.unit),
        company_id=str(report.company_id),
        period=LedgerPeriod(
            start_date=report.start_date.isoformat() if report.start_date else None,
            end_date=report.end_date.isoformat(),
        ),
        opening_balance=report.opening_balance,
        closing_balance=report.closing_balance,
        current_stock=report.current_stock,
        movements=[
            LedgerMovementResponse(
                date=m.date.isoformat(),
                kind=m.kind,
                description=m.description,
                qty_in=m.qty_in,
                qty_out=m.qty_out,
                balance=m.balance,
                source_id=m.source_id,
            )
            for m in report.movements
        ],
    )
