"""
Product cost preview and explicit cost commits.

The preview is advisory and read-only: it re-prices the product's latest
approved purchase with the value-weighted formula, optionally at a
caller-supplied exchange rate that is never stored. Writing a cost onto the
product is a separate action (update_product_cost) and never touches cost
history.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from trading_api.exceptions import NotFound, ValidationError
from trading_api.models.cost import ProductCostLog
from trading_api.models.expense import ExpenseCategory, PurchaseExpense
from trading_api.models.product import Product
from trading_api.models.purchase import PURCHASE_APPROVED, Purchase, PurchaseLine
from trading_api.services.allocation_policy import (
    VALUE_WEIGHTED,
    AllocationLine,
    get_policy,
)
from trading_api.services.audit_service import create_audit_log
from trading_api.services.currency_service import effective_rate, quantize_money

logger = structlog.get_logger()

ZERO = Decimal("0")


@dataclass
class ExpenseDetail:
    category_name: Optional[str]
    amount: Decimal
    currency: str
    amount_in_base: Decimal
    is_actual_expense: bool


@dataclass
class LastPurchaseCost:
    purchase_id: uuid.UUID
    invoice_number: Optional[str]
    approved_at: Optional[datetime]
    currency: str
    exchange_rate: Decimal
    quantity: Decimal
    unit_price: Decimal
    unit_price_in_base: Decimal
    line_value_in_base: Decimal
    invoice_total_in_base: Decimal
    value_percentage: Decimal
    total_expenses: Decimal
    expense_share: Decimal
    cost_per_unit: Decimal
    allocation_strategy: str
    expenses: list[ExpenseDetail] = field(default_factory=list)


@dataclass
class CostPreview:
    product_id: uuid.UUID
    sku: str
    name: str
    current_cost: Optional[Decimal]
    last_purchase: Optional[LastPurchaseCost] = None


async def _latest_approved_purchase(
    session: AsyncSession, product_id: uuid.UUID
) -> Optional[Purchase]:
    result = await session.execute(
        select(Purchase)
        .join(PurchaseLine, PurchaseLine.purchase_id == Purchase.id)
        .where(
            PurchaseLine.product_id == product_id,
            Purchase.status == PURCHASE_APPROVED,
        )
        .order_by(Purchase.approved_at.desc(), Purchase.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


async def get_product_cost_preview(
    session: AsyncSession,
    product_id: uuid.UUID,
    exchange_rate: Optional[Decimal] = None,
) -> CostPreview:
    if exchange_rate is not None and exchange_rate <= 0:
        raise ValidationError("Exchange rate must be greater than zero")

    product = await session.get(Product, product_id)
    if not product:
        raise NotFound("Product not found")

    preview = CostPreview(
        product_id=product.id,
        sku=product.sku,
        name=product.name,
        current_cost=product.cost,
    )

    purchase = await _latest_approved_purchase(session, product.id)
    if purchase is None:
        return preview

    lines_result = await session.execute(
        select(PurchaseLine)
        .where(PurchaseLine.purchase_id == purchase.id)
        .order_by(PurchaseLine.line_number)
    )
    lines = list(lines_result.scalars().all())

    rate = effective_rate(purchase.currency, exchange_rate)
    total_expenses = purchase.total_expenses or ZERO

    alloc_lines = [
        AllocationLine(
            qty=line.qty,
            unit_price=line.unit_price * rate,
            line_value=line.sub_total * rate,
            product_id=str(line.product_id),
            line_id=str(line.id),
        )
        for line in lines
    ]
    policy = get_policy(VALUE_WEIGHTED)
    allocations = policy.allocate(alloc_lines, total_expenses)

    # A product can appear on more than one line of the same invoice
    mine = [a for a in allocations if a.line.product_id == str(product.id)]
    qty = sum((a.line.qty for a in mine), ZERO)
    value = sum((a.line.line_value for a in mine), ZERO)
    share = sum((a.expense_share for a in mine), ZERO)
    pct = sum((a.value_percentage for a in mine), ZERO)
    price_total = sum((line.unit_price * line.qty for line in lines if line.product_id == product.id), ZERO)

    expenses_result = await session.execute(
        select(PurchaseExpense, ExpenseCategory.name)
        .join(ExpenseCategory, ExpenseCategory.id == PurchaseExpense.category_id)
        .where(PurchaseExpense.purchase_id == purchase.id)
        .order_by(PurchaseExpense.created_at)
    )
    expenses = [
        ExpenseDetail(
            category_name=category_name,
            amount=exp.amount,
            currency=exp.currency,
            amount_in_base=exp.amount_in_base,
            is_actual_expense=exp.is_actual_expense,
        )
        for exp, category_name in expenses_result.all()
    ]

    preview.last_purchase = LastPurchaseCost(
        purchase_id=purchase.id,
        invoice_number=purchase.invoice_number,
        approved_at=purchase.approved_at,
        currency=purchase.currency,
        exchange_rate=rate,
        quantity=qty,
        unit_price=quantize_money(price_total / qty) if qty > 0 else ZERO,
        unit_price_in_base=quantize_money(price_total * rate / qty) if qty > 0 else ZERO,
        line_value_in_base=quantize_money(value),
        invoice_total_in_base=quantize_money(sum((a.line_value for a in alloc_lines), ZERO)),
        value_percentage=quantize_money(pct),
        total_expenses=total_expenses,
        expense_share=quantize_money(share),
        cost_per_unit=quantize_money((value + share) / qty) if qty > 0 else ZERO,
        allocation_strategy=policy.name,
        expenses=expenses,
    )
    return preview


async def update_product_cost(
    session: AsyncSession,
    product_id: uuid.UUID,
    new_cost: Decimal,
    purchase_id: uuid.UUID,
    actor_id: str,
    notes: Optional[str] = None,
) -> ProductCostLog:
    """Commit a cost onto Product.cost and log the change."""
    if new_cost is None or new_cost <= 0:
        raise ValidationError("Cost must be greater than zero")

    product = await session.get(Product, product_id, with_for_update=True)
    if not product:
        raise NotFound("Product not found")
    purchase = await session.get(Purchase, purchase_id)
    if not purchase:
        raise NotFound("Purchase not found")

    old_cost = product.cost
    new_cost = quantize_money(Decimal(str(new_cost)))
    entry = ProductCostLog(
        id=uuid.uuid4(),
        product_id=product.id,
        old_cost=old_cost,
        new_cost=new_cost,
        purchase_id=purchase.id,
        updated_by=actor_id,
        notes=notes,
        created_at=datetime.utcnow(),
    )
    session.add(entry)
    product.cost = new_cost
    product.updated_at = datetime.utcnow()
    await session.flush()

    await create_audit_log(
        session,
        actor_id=actor_id,
        action="PRODUCT_COST_UPDATED",
        entity_type="PRODUCT",
        entity_id=product.id,
        company_id=product.created_by_company_id,
        before_state={"cost": old_cost},
        after_state={"cost": new_cost},
    )

    logger.info(
        "product_cost_updated",
        product_id=str(product.id),
        old_cost=str(old_cost) if old_cost is not None else None,
        new_cost=str(new_cost),
        purchase_id=str(purchase.id),
    )
    return entry
