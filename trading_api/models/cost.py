import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Numeric,
    DateTime,
    Text,
    ForeignKey,
    UniqueConstraint,
    Index,
    desc,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from trading_api.database import Base


class ProductCostHistory(Base):
    """Write-once landed cost per purchase line, produced on first approval."""

    __tablename__ = "product_cost_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False
    )
    purchase_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("purchases.id"), nullable=False
    )
    purchase_line_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("purchase_lines.id"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False
    )
    purchase_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    expense_per_unit: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    total_cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    allocation_strategy: Mapped[str] = mapped_column(String(30), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "purchase_line_id", name="uq_cost_history_purchase_line"
        ),
        Index("idx_cost_history_product", "product_id", desc("created_at")),
        Index("idx_cost_history_purchase", "purchase_id"),
    )


class ProductCostLog(Base):
    __tablename__ = "product_cost_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False
    )
    old_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 4))
    new_cost: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    # Kept after the purchase is deleted; only the link is cleared
    purchase_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("purchases.id", ondelete="SET NULL")
    )
    updated_by: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_cost_logs_product", "product_id"),
    )
