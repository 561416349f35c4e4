"""
Supplier payable ledger.

Append-only CREDIT/DEBIT entries per supplier; each row carries the running
balance for its own currency. Approvals never read balances: they only hand
entries to a SupplierLedger through the payable outbox.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import select, func, case
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from trading_api.exceptions import LedgerUnavailable
from trading_api.models.payable import CREDIT, DEBIT, SupplierAccountEntry

logger = structlog.get_logger()


@dataclass
class LedgerEntry:
    supplier_id: uuid.UUID
    transaction_type: str
    amount: Decimal
    currency: str
    reference_type: str
    reference_id: uuid.UUID
    description: Optional[str] = None
    transaction_date: datetime = field(default_factory=datetime.utcnow)


class SupplierLedger(ABC):
    @abstractmethod
    async def post(self, session: AsyncSession, entry: LedgerEntry) -> SupplierAccountEntry:
        """Append one entry. Raises LedgerUnavailable on transient failure."""


class SqlSupplierLedger(SupplierLedger):
    """Ledger stored in supplier_account_entries, in the caller's session."""

    async def post(self, session, entry):
        if entry.transaction_type not in (CREDIT, DEBIT):
            raise ValueError(f"Unknown transaction type: {entry.transaction_type}")

        try:
            # Lock the latest row by posting order so concurrent posts continue
            # the same balance
            result = await session.execute(
                select(SupplierAccountEntry)
                .where(
                    SupplierAccountEntry.supplier_id == entry.supplier_id,
                    SupplierAccountEntry.currency == entry.currency,
                )
                .order_by(SupplierAccountEntry.entry_seq.desc())
                .limit(1)
                .with_for_update()
            )
            last = result.scalar_one_or_none()
            previous = last.balance if last else Decimal("0")
            if entry.transaction_type == CREDIT:
                balance = previous + entry.amount
            else:
                balance = previous - entry.amount

            row = SupplierAccountEntry(
                supplier_id=entry.supplier_id,
                transaction_type=entry.transaction_type,
                amount=entry.amount,
                currency=entry.currency,
                balance=balance,
                reference_type=entry.reference_type,
                reference_id=entry.reference_id,
                description=entry.description,
                transaction_date=entry.transaction_date,
                created_at=datetime.utcnow(),
            )
            session.add(row)
            await session.flush()
        except OperationalError as exc:
            raise LedgerUnavailable(str(exc)) from exc

        logger.info(
            "supplier_ledger_posted",
            supplier_id=str(entry.supplier_id),
            transaction_type=entry.transaction_type,
            amount=str(entry.amount),
            currency=entry.currency,
            balance=str(balance),
        )
        return row


async def balances_by_currency(
    session: AsyncSession, supplier_id: uuid.UUID
) -> dict[str, dict[str, Decimal]]:
    """Σ CREDIT − Σ DEBIT per currency. Currencies are never combined."""
    credit = func.coalesce(
        func.sum(case((SupplierAccountEntry.transaction_type == CREDIT, SupplierAccountEntry.amount), else_=0)),
        0,
    )
    debit = func.coalesce(
        func.sum(case((SupplierAccountEntry.transaction_type == DEBIT, SupplierAccountEntry.amount), else_=0)),
        0,
    )
    result = await session.execute(
        select(SupplierAccountEntry.currency, credit, debit)
        .where(SupplierAccountEntry.supplier_id == supplier_id)
        .group_by(SupplierAccountEntry.currency)
        .order_by(SupplierAccountEntry.currency)
    )

    balances = {}
    for currency, total_credit, total_debit in result.all():
        total_credit = Decimal(str(total_credit))
        total_debit = Decimal(str(total_debit))
        balances[currency] = {
            "credit": total_credit,
            "debit": total_debit,
            "balance": total_credit - total_debit,
        }
    return balances
