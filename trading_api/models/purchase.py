import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Boolean,
    Integer,
    Numeric,
    DateTime,
    Text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from trading_api.database import Base

PURCHASE_DRAFT = "DRAFT"
PURCHASE_APPROVED = "APPROVED"

APPROVAL_FIRST = "FIRST"
APPROVAL_SUPPLEMENTAL = "SUPPLEMENTAL"


class Purchase(Base):
    __tablename__ = "purchases"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False
    )
    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("suppliers.id")
    )
    invoice_number: Mapped[Optional[str]] = mapped_column(String(100))
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    # Invoice total in its own currency
    total: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    # Cumulative expenses across all approval rounds, in base currency
    total_expenses: Mapped[Decimal] = mapped_column(
        Numeric(18, 4), nullable=False, default=Decimal("0")
    )
    final_total: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=PURCHASE_DRAFT)
    affects_inventory: Mapped[bool] = mapped_column(Boolean, default=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    approved_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT','APPROVED')", name="chk_purchase_status"
        ),
        CheckConstraint("total >= 0", name="chk_purchase_total"),
        CheckConstraint(
            "final_total = total + total_expenses", name="chk_purchase_final_total"
        ),
        Index("idx_purchases_company", "company_id", "status"),
        Index("idx_purchases_supplier", "supplier_id"),
    )

    @property
    def is_approved(self) -> bool:
        return self.status == PURCHASE_APPROVED


class PurchaseLine(Base):
    __tablename__ = "purchase_lines"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    purchase_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("purchases.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False
    )
    qty: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    sub_total: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)

    purchase: Mapped["Purchase"] = relationship("Purchase")

    __table_args__ = (
        UniqueConstraint("purchase_id", "line_number", name="uq_purchase_line"),
        CheckConstraint("qty > 0", name="chk_purchase_line_qty"),
        CheckConstraint("unit_price >= 0", name="chk_purchase_line_price"),
        Index("idx_purchase_lines_product", "product_id"),
    )


class PurchaseApprovalEvent(Base):
    """One row per approval round; round 1 is the stock-affecting approval."""

    __tablename__ = "purchase_approval_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    purchase_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("purchases.id", ondelete="CASCADE"),
        nullable=False,
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    expenses_total: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    expense_count: Mapped[int] = mapped_column(Integer, nullable=False)
    approved_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "purchase_id", "round_number", name="uq_purchase_approval_round"
        ),
        CheckConstraint(
            "kind IN ('FIRST','SUPPLEMENTAL')", name="chk_approval_event_kind"
        ),
    )


class PurchaseFromParent(Base):
    """Inter-company purchase: a branch receiving stock from its parent."""

    __tablename__ = "purchases_from_parent"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    branch_company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False
    )
    parent_company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False
    )
    invoice_number: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_purchases_from_parent_branch", "branch_company_id"),
    )


class PurchaseFromParentLine(Base):
    __tablename__ = "purchase_from_parent_lines"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    purchase_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("purchases_from_parent.id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False
    )
    qty: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)

    __table_args__ = (
        Index("idx_pfp_lines_product", "product_id"),
    )
