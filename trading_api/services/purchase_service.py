"""
Purchase lifecycle outside approval: draft creation, lookup and deletion.

Creating a purchase never touches stock; only approval does. Deletion undoes
the approval's effects but is refused once money has started to move
(a receipt past PENDING) or a parent-company sale generated this purchase.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence
import uuid

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from trading_api.config import settings
from trading_api.exceptions import IntegrityViolation, NotFound, ValidationError
from trading_api.models.company import Company
from trading_api.models.cost import ProductCostHistory
from trading_api.models.expense import PurchaseExpense
from trading_api.models.payable import RECEIPT_PENDING, SupplierPaymentReceipt
from trading_api.models.product import Product
from trading_api.models.purchase import (
    PURCHASE_DRAFT,
    Purchase,
    PurchaseApprovalEvent,
    PurchaseLine,
)
from trading_api.models.sale import Sale
from trading_api.models.supplier import Supplier
from trading_api.services.audit_service import create_audit_log
from trading_api.services.currency_service import is_supported, quantize_money
from trading_api.services.payable_outbox import retract_receipt_postings
from trading_api.services.stock_service import increment_stock

logger = structlog.get_logger()

ZERO = Decimal("0")


@dataclass
class LineInput:
    product_id: uuid.UUID
    qty: Decimal
    unit_price: Decimal


@dataclass
class PurchaseInput:
    company_id: uuid.UUID
    lines: list[LineInput]
    currency: Optional[str] = None
    supplier_id: Optional[uuid.UUID] = None
    invoice_number: Optional[str] = None
    affects_inventory: bool = True
    notes: Optional[str] = None


@dataclass
class PurchaseDetail:
    purchase: Purchase
    lines: list[PurchaseLine] = field(default_factory=list)
    approval_events: list[PurchaseApprovalEvent] = field(default_factory=list)


def line_sub_total(product: Product, qty: Decimal, unit_price: Decimal) -> Decimal:
    """qty × unit_price, scaled by units_per_box when the product is sold by the box."""
    if product.is_boxed:
        return quantize_money(qty * product.units_per_box * unit_price)
    return quantize_money(qty * unit_price)


async def create_purchase(
    session: AsyncSession,
    data: PurchaseInput,
    created_by: Optional[str] = None,
) -> PurchaseDetail:
    if not data.lines:
        raise ValidationError("A purchase needs at least one line")
    for idx, line in enumerate(data.lines):
        if line.qty is None or line.qty <= 0:
            raise ValidationError("Line quantity must be greater than zero", details={"index": idx})
        if line.unit_price is None or line.unit_price < 0:
            raise ValidationError("Line unit price cannot be negative", details={"index": idx})

    currency = data.currency or settings.BASE_CURRENCY
    if not is_supported(currency):
        raise ValidationError(f"Unsupported currency: {currency}")

    company = await session.get(Company, data.company_id)
    if not company:
        raise NotFound("Company not found")
    if data.supplier_id:
        supplier = await session.get(Supplier, data.supplier_id)
        if not supplier:
            raise NotFound("Supplier not found")

    product_ids = {line.product_id for line in data.lines}
    result = await session.execute(select(Product).where(Product.id.in_(product_ids)))
    products = {p.id: p for p in result.scalars().all()}
    missing = product_ids - set(products)
    if missing:
        raise NotFound(
            "Product not found",
            details={"product_ids": sorted(str(m) for m in missing)},
        )

    now = datetime.utcnow()
    purchase = Purchase(
        id=uuid.uuid4(),
        company_id=company.id,
        supplier_id=data.supplier_id,
        invoice_number=data.invoice_number,
        currency=currency,
        total=ZERO,
        total_expenses=ZERO,
        final_total=ZERO,
        status=PURCHASE_DRAFT,
        affects_inventory=data.affects_inventory,
        notes=data.notes,
        created_at=now,
        updated_at=now,
    )
    session.add(purchase)

    lines = []
    total = ZERO
    for number, item in enumerate(data.lines, start=1):
        sub_total = line_sub_total(products[item.product_id], item.qty, item.unit_price)
        line = PurchaseLine(
            id=uuid.uuid4(),
            purchase_id=purchase.id,
            line_number=number,
            product_id=item.product_id,
            qty=item.qty,
            unit_price=item.unit_price,
            sub_total=sub_total,
        )
        session.add(line)
        lines.append(line)
        total += sub_total

    purchase.total = total
    purchase.final_total = total
    await session.flush()

    logger.info(
        "purchase_created",
        purchase_id=str(purchase.id),
        company_id=str(company.id),
        lines=len(lines),
        total=str(total),
        created_by=created_by,
    )
    return PurchaseDetail(purchase=purchase, lines=lines)


async def get_purchase(session: AsyncSession, purchase_id: uuid.UUID) -> PurchaseDetail:
    purchase = await session.get(Purchase, purchase_id)
    if not purchase:
        raise NotFound("Purchase not found")

    lines_result = await session.execute(
        select(PurchaseLine)
        .where(PurchaseLine.purchase_id == purchase.id)
        .order_by(PurchaseLine.line_number)
    )
    events_result = await session.execute(
        select(PurchaseApprovalEvent)
        .where(PurchaseApprovalEvent.purchase_id == purchase.id)
        .order_by(PurchaseApprovalEvent.round_number)
    )
    return PurchaseDetail(
        purchase=purchase,
        lines=list(lines_result.scalars().all()),
        approval_events=list(events_result.scalars().all()),
    )


async def delete_purchase(
    session: AsyncSession,
    purchase_id: uuid.UUID,
    actor_id: Optional[str] = None,
) -> None:
    purchase = await session.get(Purchase, purchase_id, with_for_update=True)
    if not purchase:
        raise NotFound("Purchase not found")

    linked = await session.execute(
        select(Sale.id).where(Sale.related_branch_purchase_id == purchase.id).limit(1)
    )
    if linked.scalar_one_or_none() is not None:
        raise IntegrityViolation(
            "Purchase was generated by a parent-company sale and cannot be deleted"
        )

    receipts_result = await session.execute(
        select(SupplierPaymentReceipt).where(
            SupplierPaymentReceipt.purchase_id == purchase.id
        )
    )
    receipts = list(receipts_result.scalars().all())
    blocked = [r for r in receipts if r.status != RECEIPT_PENDING]
    if blocked:
        raise IntegrityViolation(
            "Purchase has receipts that are no longer pending",
            details={"receipt_ids": [str(r.id) for r in blocked]},
        )

    lines_result = await session.execute(
        select(PurchaseLine).where(PurchaseLine.purchase_id == purchase.id)
    )
    lines = list(lines_result.scalars().all())

    await retract_receipt_postings(session, [r.id for r in receipts])

    # Children first; most foreign keys here carry no ON DELETE CASCADE
    await session.execute(
        delete(SupplierPaymentReceipt).where(SupplierPaymentReceipt.purchase_id == purchase.id)
    )
    await session.execute(
        delete(PurchaseExpense).where(PurchaseExpense.purchase_id == purchase.id)
    )
    await session.execute(
        delete(ProductCostHistory).where(ProductCostHistory.purchase_id == purchase.id)
    )
    await session.execute(
        delete(PurchaseApprovalEvent).where(PurchaseApprovalEvent.purchase_id == purchase.id)
    )
    await session.execute(
        delete(PurchaseLine).where(PurchaseLine.purchase_id == purchase.id)
    )

    if purchase.is_approved and purchase.affects_inventory:
        for line in lines:
            await increment_stock(session, purchase.company_id, line.product_id, -line.qty)

    before = {
        "status": purchase.status,
        "total": purchase.total,
        "total_expenses": purchase.total_expenses,
        "final_total": purchase.final_total,
    }
    await session.delete(purchase)
    await session.flush()

    await create_audit_log(
        session,
        actor_id=actor_id,
        action="PURCHASE_DELETED",
        entity_type="PURCHASE",
        entity_id=purchase_id,
        company_id=purchase.company_id,
        before_state=before,
    )

    logger.info(
        "purchase_deleted",
        purchase_id=str(purchase_id),
        was_approved=purchase.is_approved,
        receipts_removed=len(receipts),
        lines=len(lines),
    )
