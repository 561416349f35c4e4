"""
Payable posting outbox.

Approvals write PENDING PayablePosting rows in their own transaction; the
drain hands them to the SupplierLedger afterwards. A ledger outage therefore
delays postings but never loses them, and never rolls back an approval.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
import structlog

from trading_api.config import settings
from trading_api.exceptions import LedgerUnavailable
from trading_api.models.payable import (
    CREDIT,
    DEBIT,
    POSTING_CANCELLED,
    POSTING_FAILED,
    POSTING_PENDING,
    POSTING_POSTED,
    PayablePosting,
)
from trading_api.services.supplier_ledger import LedgerEntry, SupplierLedger

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

REFERENCE_PURCHASE = "PURCHASE"
REFERENCE_ADJUSTMENT = "ADJUSTMENT"


@dataclass
class DrainResult:
    posted: int = 0
    failed: int = 0
    retried: int = 0


@dataclass
class RetractionResult:
    cancelled: int = 0
    reversed: int = 0


def enqueue_posting(
    session: AsyncSession,
    supplier_id: uuid.UUID,
    amount: Decimal,
    currency: str,
    reference_id: uuid.UUID,
    description: Optional[str] = None,
    receipt_id: Optional[uuid.UUID] = None,
    transaction_type: str = CREDIT,
    reference_type: str = REFERENCE_PURCHASE,
) -> PayablePosting:
    """Add a PENDING posting to the caller's transaction."""
    posting = PayablePosting(
        id=uuid.uuid4(),
        receipt_id=receipt_id,
        supplier_id=supplier_id,
        transaction_type=transaction_type,
        amount=amount,
        currency=currency,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        status=POSTING_PENDING,
        attempts=0,
        created_at=datetime.utcnow(),
    )
    session.add(posting)
    return posting


async def retract_receipt_postings(
    session: AsyncSession,
    receipt_ids: Sequence[uuid.UUID],
) -> RetractionResult:
    """
    Undo the ledger effect of receipts that are being deleted.

    Undelivered postings are cancelled; delivered ones get a reversing DEBIT.
    """
    outcome = RetractionResult()
    if not receipt_ids:
        return outcome

    result = await session.execute(
        select(PayablePosting)
        .where(
            PayablePosting.receipt_id.in_(list(receipt_ids)),
            PayablePosting.transaction_type == CREDIT,
        )
        .with_for_update()
    )
    for posting in result.scalars().all():
        if posting.status in (POSTING_PENDING, POSTING_FAILED):
            posting.status = POSTING_CANCELLED
            outcome.cancelled += 1
        elif posting.status == POSTING_POSTED:
            enqueue_posting(
                session,
                supplier_id=posting.supplier_id,
                amount=posting.amount,
                currency=posting.currency,
                reference_id=posting.reference_id,
                description=f"Reversal: {posting.description or 'payable'}",
                transaction_type=DEBIT,
                reference_type=REFERENCE_ADJUSTMENT,
            )
            outcome.reversed += 1

    await session.flush()
    logger.info(
        "payable_postings_retracted",
        receipts=len(receipt_ids),
        cancelled=outcome.cancelled,
        reversed=outcome.reversed,
    )
    return outcome


@retry(
    retry=retry_if_exception_type(LedgerUnavailable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=True,
)
async def _post_with_retry(
    ledger: SupplierLedger, session: AsyncSession, entry: LedgerEntry
) -> None:
    async with session.begin_nested():
        await ledger.post(session, entry)


def _to_entry(posting: PayablePosting) -> LedgerEntry:
    return LedgerEntry(
        supplier_id=posting.supplier_id,
        transaction_type=posting.transaction_type,
        amount=posting.amount,
        currency=posting.currency,
        reference_type=posting.reference_type,
        reference_id=posting.reference_id,
        description=posting.description,
        transaction_date=posting.created_at or datetime.utcnow(),
    )


async def drain_postings(
    session: AsyncSession,
    ledger: SupplierLedger,
    batch_size: Optional[int] = None,
    max_attempts: Optional[int] = None,
) -> DrainResult:
    """
    Deliver PENDING postings oldest first.

    Each posting runs in its own savepoint, so one failure leaves the rest of
    the batch intact. A posting that keeps failing is marked FAILED after
    max_attempts drains. Caller commits.
    """
    batch_size = batch_size or settings.PAYABLE_POSTING_BATCH_SIZE
    max_attempts = max_attempts or settings.PAYABLE_POSTING_MAX_ATTEMPTS

    result = await session.execute(
        select(PayablePosting)
        .where(PayablePosting.status == POSTING_PENDING)
        .order_by(PayablePosting.created_at)
        .limit(batch_size)
        .with_for_update(skip_locked=True)
    )
    postings = result.scalars().all()

    outcome = DrainResult()
    for posting in postings:
        posting.attempts = (posting.attempts or 0) + 1
        try:
            await _post_with_retry(ledger, session, _to_entry(posting))
        except Exception as exc:
            posting.last_error = str(exc)[:1000]
            if posting.attempts >= max_attempts:
                posting.status = POSTING_FAILED
                outcome.failed += 1
                logger.error(
                    "payable_posting_failed",
                    posting_id=str(posting.id),
                    supplier_id=str(posting.supplier_id),
                    attempts=posting.attempts,
                    error=str(exc),
                )
            else:
                outcome.retried += 1
                logger.warning(
                    "payable_posting_deferred",
                    posting_id=str(posting.id),
                    attempts=posting.attempts,
                    error=str(exc),
                )
            continue

        posting.status = POSTING_POSTED
        posting.posted_at = datetime.utcnow()
        posting.last_error = None
        outcome.posted += 1

    await session.flush()
    logger.info(
        "payable_postings_drained",
        posted=outcome.posted,
        failed=outcome.failed,
        retried=outcome.retried,
    )
    return outcome
