# trading_api/jobs/payable_postings.py
"""
Payable posting drain.

Runs as a BackgroundTask after every approval that created receipts, and on
a schedule through POST /internal/jobs/drain-payable-postings so postings
left behind by a ledger outage are picked up again.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
import structlog

from trading_api.config import settings
from trading_api.database import AsyncSessionLocal
from trading_api.services.payable_outbox import DrainResult, drain_postings
from trading_api.services.supplier_ledger import SqlSupplierLedger

logger = structlog.get_logger()
router = APIRouter()


async def run_payable_posting_drain() -> DrainResult:
    """Drain one batch in its own session and commit it."""
    async with AsyncSessionLocal() as session:
        try:
            result = await drain_postings(
                session,
                SqlSupplierLedger(),
                batch_size=settings.PAYABLE_POSTING_BATCH_SIZE,
                max_attempts=settings.PAYABLE_POSTING_MAX_ATTEMPTS,
            )
            await session.commit()
            return result
        except Exception as e:
            await session.rollback()
            logger.error("payable_posting_drain_error", error=str(e))
            raise


async def _require_internal_auth(request: Request):
    """Validates X-Internal-Secret header against INTERNAL_JOB_SECRET from settings."""
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        # In development (DEBUG=True), allow unauthenticated internal calls
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_JOB_SECRET is not configured",
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )


@router.post("/drain-payable-postings")
async def drain_payable_postings(_auth: None = Depends(_require_internal_auth)):
    result = await run_payable_posting_drain()
    logger.info(
        "payable_posting_drain_job_done",
        posted=result.posted,
        failed=result.failed,
        retried=result.retried,
    )
    return {
        "status": "ok",
        "posted": result.posted,
        "failed": result.failed,
        "retried": result.retried,
    }


async def drain_after_commit() -> None:
    """
    BackgroundTask wrapper: the request that queued it has already answered,
    so a failure is only logged. Undelivered rows stay PENDING for the next
    scheduled drain.
    """
    try:
        await run_payable_posting_drain()
    except Exception as e:
        logger.warning("payable_posting_drain_deferred", error=str(e))
