import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    Identity,
    Numeric,
    DateTime,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from trading_api.database import Base

RECEIPT_MAIN_INVOICE = "MAIN_INVOICE"
RECEIPT_EXPENSE = "EXPENSE"
RECEIPT_PENDING = "PENDING"

CREDIT = "CREDIT"
DEBIT = "DEBIT"

POSTING_PENDING = "PENDING"
POSTING_POSTED = "POSTED"
POSTING_FAILED = "FAILED"
POSTING_CANCELLED = "CANCELLED"


class SupplierPaymentReceipt(Base):
    """A payable owed to a supplier; status moves past PENDING externally."""

    __tablename__ = "supplier_payment_receipts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    supplier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=False
    )
    purchase_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("purchases.id"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False
    )
    expense_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("purchase_expenses.id")
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category_name: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(20), default=RECEIPT_PENDING)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    expense: Mapped[Optional["PurchaseExpense"]] = relationship("PurchaseExpense")

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_receipt_amount"),
        CheckConstraint(
            "kind IN ('MAIN_INVOICE','EXPENSE')", name="chk_receipt_kind"
        ),
        CheckConstraint(
            "status IN ('PENDING','PARTIALLY_PAID','PAID','CANCELLED')",
            name="chk_receipt_status",
        ),
        Index("idx_receipts_purchase", "purchase_id"),
        Index("idx_receipts_supplier", "supplier_id", "status"),
        Index("idx_receipts_expense", "expense_id"),
    )


class SupplierAccountEntry(Base):
    """Append-only supplier ledger row; balance is per currency."""

    __tablename__ = "supplier_account_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # Posting order; created_at can tie within one drain
    entry_seq: Mapped[int] = mapped_column(BigInteger, Identity(), unique=True)
    supplier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=False
    )
    transaction_type: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    reference_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    transaction_date: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ('CREDIT','DEBIT')", name="chk_ledger_type"
        ),
        CheckConstraint(
            "reference_type IN ('PURCHASE','PAYMENT','ADJUSTMENT','RETURN')",
            name="chk_ledger_reference_type",
        ),
        CheckConstraint("amount > 0", name="chk_ledger_amount"),
        Index("idx_ledger_supplier_currency", "supplier_id", "currency", "entry_seq"),
    )


class PayablePosting(Base):
    """Outbox row: a ledger posting written with the approval, drained later."""

    __tablename__ = "payable_postings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    receipt_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    supplier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=False
    )
    transaction_type: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    reference_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default=POSTING_PENDING)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    posted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','POSTED','FAILED','CANCELLED')",
            name="chk_posting_status",
        ),
        Index("idx_postings_status", "status", "created_at"),
        Index("idx_postings_receipt", "receipt_id"),
    )
