"""
Stock movement sources for ledger reconstruction.

Every source is a read-only query that turns its own transaction rows into
LedgerEvent values, so the reconstructor merges and sorts one shape only.
All history is returned; date windows are applied after the replay.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable
import uuid

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from trading_api.models.company import Company
from trading_api.models.damage_report import DamageReport, DamageReportLine
from trading_api.models.product import Product
from trading_api.models.purchase import (
    PURCHASE_APPROVED,
    Purchase,
    PurchaseFromParent,
    PurchaseFromParentLine,
    PurchaseLine,
)
from trading_api.models.sale import (
    SALE_APPROVED,
    Sale,
    SaleLine,
    SaleReturn,
    SaleReturnLine,
)
from trading_api.models.supplier import Supplier

SOURCE_SALE = "SALE"
SOURCE_PURCHASE = "PURCHASE"
SOURCE_PARENT_PURCHASE = "PARENT_PURCHASE"
SOURCE_RETURN = "RETURN"
SOURCE_DAMAGE = "DAMAGE"

# Returns and damage reports share the sales approval vocabulary
APPROVED = SALE_APPROVED

ZERO = Decimal("0")


@dataclass(frozen=True)
class LedgerEvent:
    timestamp: datetime
    qty_in: Decimal
    qty_out: Decimal
    description: str
    source_kind: str
    source_id: str

    @property
    def net(self) -> Decimal:
        return self.qty_in - self.qty_out


MovementSource = Callable[[AsyncSession, Company, uuid.UUID], Awaitable[list[LedgerEvent]]]


def _qty(value) -> Decimal:
    return Decimal(str(value)) if value is not None else ZERO


async def sale_events(
    session: AsyncSession, company: Company, product_id: uuid.UUID
) -> list[LedgerEvent]:
    """
    Approved sales, qty out.

    A parent company also ships branch sales flagged as fulfilled from its
    stock; a branch sees only the sales it fulfilled itself.
    """
    q = (
        select(
            SaleLine.qty,
            Sale.id,
            Sale.created_at,
            Sale.invoice_number,
            Sale.customer_name,
            Sale.company_id,
            Company.name,
        )
        .join(Sale, Sale.id == SaleLine.sale_id)
        .join(Company, Company.id == Sale.company_id)
        .where(SaleLine.product_id == product_id, Sale.status == SALE_APPROVED)
    )
    if company.is_parent:
        q = q.where(
            or_(
                Sale.company_id == company.id,
                and_(
                    SaleLine.is_from_parent_company.is_(True),
                    Company.parent_id == company.id,
                ),
            )
        )
    else:
        q = q.where(
            Sale.company_id == company.id,
            SaleLine.is_from_parent_company.is_(False),
        )

    result = await session.execute(q)
    events = []
    for qty, sale_id, created_at, invoice_number, customer, sale_company_id, company_name in result.all():
        description = f"Sale: invoice {invoice_number or '-'} ({customer or 'cash customer'})"
        if sale_company_id != company.id:
            description += f" - [{company_name}]"
        events.append(
            LedgerEvent(
                timestamp=created_at,
                qty_in=ZERO,
                qty_out=_qty(qty),
                description=description,
                source_kind=SOURCE_SALE,
                source_id=str(sale_id),
            )
        )
    return events


async def purchase_events(
    session: AsyncSession, company: Company, product_id: uuid.UUID
) -> list[LedgerEvent]:
    """Approved purchases that affect local inventory, qty in."""
    result = await session.execute(
        select(
            PurchaseLine.qty,
            Purchase.id,
            Purchase.created_at,
            Purchase.invoice_number,
            Supplier.name,
        )
        .join(Purchase, Purchase.id == PurchaseLine.purchase_id)
        .outerjoin(Supplier, Supplier.id == Purchase.supplier_id)
        .where(
            PurchaseLine.product_id == product_id,
            Purchase.company_id == company.id,
            Purchase.status == PURCHASE_APPROVED,
            Purchase.affects_inventory.is_(True),
        )
    )
    return [
        LedgerEvent(
            timestamp=created_at,
            qty_in=_qty(qty),
            qty_out=ZERO,
            description=f"Purchase: supplier {supplier_name or '-'}",
            source_kind=SOURCE_PURCHASE,
            source_id=str(purchase_id),
        )
        for qty, purchase_id, created_at, invoice_number, supplier_name in result.all()
    ]


async def parent_purchase_events(
    session: AsyncSession, company: Company, product_id: uuid.UUID
) -> list[LedgerEvent]:
    """Goods received by this branch from its parent company, qty in."""
    result = await session.execute(
        select(
            PurchaseFromParentLine.qty,
            PurchaseFromParent.id,
            PurchaseFromParent.created_at,
            PurchaseFromParent.invoice_number,
        )
        .join(PurchaseFromParent, PurchaseFromParent.id == PurchaseFromParentLine.purchase_id)
        .where(
            PurchaseFromParentLine.product_id == product_id,
            PurchaseFromParent.branch_company_id == company.id,
        )
    )
    return [
        LedgerEvent(
            timestamp=created_at,
            qty_in=_qty(qty),
            qty_out=ZERO,
            description=f"Purchase from parent company: invoice {invoice_number or '-'}",
            source_kind=SOURCE_PARENT_PURCHASE,
            source_id=str(purchase_id),
        )
        for qty, purchase_id, created_at, invoice_number in result.all()
    ]


async def return_events(
    session: AsyncSession, company: Company, product_id: uuid.UUID
) -> list[LedgerEvent]:
    """Approved sale returns of products owned by the company, qty in."""
    result = await session.execute(
        select(
            SaleReturnLine.qty,
            SaleReturn.id,
            SaleReturn.created_at,
            SaleReturn.company_id,
            Sale.invoice_number,
            Company.name,
        )
        .join(SaleReturn, SaleReturn.id == SaleReturnLine.sale_return_id)
        .join(Product, Product.id == SaleReturnLine.product_id)
        .join(Company, Company.id == SaleReturn.company_id)
        .outerjoin(Sale, Sale.id == SaleReturn.sale_id)
        .where(
            SaleReturnLine.product_id == product_id,
            SaleReturn.status == APPROVED,
            Product.created_by_company_id == company.id,
        )
    )
    events = []
    for qty, return_id, created_at, return_company_id, invoice_number, company_name in result.all():
        description = f"Sale return: invoice {invoice_number or '-'}"
        if return_company_id != company.id:
            description += f" - [{company_name}]"
        events.append(
            LedgerEvent(
                timestamp=created_at,
                qty_in=_qty(qty),
                qty_out=ZERO,
                description=description,
                source_kind=SOURCE_RETURN,
                source_id=str(return_id),
            )
        )
    return events


async def damage_events(
    session: AsyncSession, company: Company, product_id: uuid.UUID
) -> list[LedgerEvent]:
    """Approved damage write-offs of the company, qty out."""
    result = await session.execute(
        select(
            DamageReportLine.quantity,
            DamageReport.id,
            DamageReport.created_at,
            DamageReport.reason,
        )
        .join(DamageReport, DamageReport.id == DamageReportLine.damage_report_id)
        .where(
            DamageReportLine.product_id == product_id,
            DamageReport.company_id == company.id,
            DamageReport.status == APPROVED,
        )
    )
    return [
        LedgerEvent(
            timestamp=created_at,
            qty_in=ZERO,
            qty_out=_qty(qty),
            description=f"Damaged: {reason or 'no reason given'}",
            source_kind=SOURCE_DAMAGE,
            source_id=str(report_id),
        )
        for qty, report_id, created_at, reason in result.all()
    ]


MOVEMENT_SOURCES: list[MovementSource] = [
    sale_events,
    purchase_events,
    parent_purchase_events,
    return_events,
    damage_events,
]


async def collect_events(
    session: AsyncSession, company: Company, product_id: uuid.UUID
) -> list[LedgerEvent]:
    events: list[LedgerEvent] = []
    for source in MOVEMENT_SOURCES:
        events.extend(await source(session, company, product_id))
    return events
