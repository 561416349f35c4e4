from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from trading_api.database import get_db
from trading_api.jobs.payable_postings import drain_after_commit
from trading_api.middleware.auth import get_current_user
from trading_api.schemas.expense import ExpenseDeleteResponse
from trading_api.services.expense_service import delete_expense

router = APIRouter()


@router.delete("/{expense_id}", response_model=ExpenseDeleteResponse)
async def remove_expense(
    expense_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await delete_expense(db, expense_id, actor_id=current_user["user_id"])
    if result.retracted_receipt_count:
        # Reversing DEBITs for already-posted receipts go through the outbox too
        background_tasks.add_task(drain_after_commit)
    return ExpenseDeleteResponse(
        purchase_id=str(result.purchase_id),
        remaining_total_expenses=result.remaining_total_expenses,
        final_total=result.final_total,
        retracted_receipt_count=result.retracted_receipt_count,
    )
