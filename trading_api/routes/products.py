from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from trading_api.database import get_db
from trading_api.middleware.auth import get_current_user
from trading_api.models.cost import ProductCostHistory
from trading_api.schemas.cost import (
    CostHistoryResponse,
    CostPreviewResponse,
    ExpenseDetailResponse,
    LastPurchaseCostResponse,
    ProductCostLogResponse,
    ProductCostUpdate,
)
from trading_api.services.cost_history_service import get_cost_history
from trading_api.services.product_cost_service import (
    get_product_cost_preview,
    update_product_cost,
)

router = APIRouter()


def cost_history_to_response(h: ProductCostHistory) -> CostHistoryResponse:
    return CostHistoryResponse(
        id=str(h.id),
        product_id=str(h.product_id),
        purchase_id=str(h.purchase_id),
        company_id=str(h.company_id),
        purchase_price=h.purchase_price,
        expense_per_unit=h.expense_per_unit,
        total_cost_per_unit=h.total_cost_per_unit,
        quantity=h.quantity,
        allocation_strategy=h.allocation_strategy,
        created_at=h.created_at.isoformat() if h.created_at else "",
    )


@router.get("/{product_id}/cost-history", response_model=list[CostHistoryResponse])
async def cost_history(
    product_id: uuid.UUID,
    company_id: Optional[uuid.UUID] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    entries = await get_cost_history(db, product_id, company_id=company_id, limit=limit)
    return [cost_history_to_response(e) for e in entries]


@router.get("/{product_id}/cost-preview", response_model=CostPreviewResponse)
async def cost_preview(
    product_id: uuid.UUID,
    exchange_rate: Optional[Decimal] = Query(None, gt=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    preview = await get_product_cost_preview(db, product_id, exchange_rate=exchange_rate)

    last = None
    lp = preview.last_purchase
    if lp is not None:
        last = LastPurchaseCostResponse(
            purchase_id=str(lp.purchase_id),
            invoice_number=lp.invoice_number,
            approved_at=lp.approved_at.isoformat() if lp.approved_at else None,
            currency=lp.currency,
            exchange_rate=lp.exchange_rate,
            quantity=lp.quantity,
            unit_price=lp.unit_price,
            unit_price_in_base=lp.unit_price_in_base,
            line_value_in_base=lp.line_value_in_base,
            invoice_total_in_base=lp.invoice_total_in_base,
            value_percentage=lp.value_percentage,
            total_expenses=lp.total_expenses,
            expense_share=lp.expense_share,
            cost_per_unit=lp.cost_per_unit,
            allocation_strategy=lp.allocation_strategy,
            expenses=[
                ExpenseDetailResponse(
                    category_name=e.category_name,
                    amount=e.amount,
                    currency=e.currency,
                    amount_in_base=e.amount_in_base,
                    is_actual_expense=e.is_actual_expense,
                )
                for e in lp.expenses
            ],
        )

    return CostPreviewResponse(
        product_id=str(preview.product_id),
        sku=preview.sku,
        name=preview.name,
        current_cost=preview.current_cost,
        last_purchase=last,
    )


@router.put("/{product_id}/cost", response_model=ProductCostLogResponse)
async def commit_cost(
    product_id: uuid.UUID,
    body: ProductCostUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    entry = await update_product_cost(
        db,
        product_id,
        new_cost=body.new_cost,
        purchase_id=body.purchase_id,
        actor_id=current_user["user_id"],
        notes=body.notes,
    )
    return ProductCostLogResponse(
        id=str(entry.id),
        product_id=str(entry.product_id),
        old_cost=entry.old_cost,
        new_cost=entry.new_cost,
        purchase_id=str(entry.purchase_id),
        updated_by=entry.updated_by,
        notes=entry.notes,
        created_at=entry.created_at.isoformat() if entry.created_at else "",
    )
