from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
import uuid
import structlog

from trading_api.database import get_db
from trading_api.jobs.payable_postings import drain_after_commit
from trading_api.middleware.auth import get_current_user
from trading_api.models.expense import PurchaseExpense
from trading_api.models.payable import SupplierPaymentReceipt
from trading_api.routes.products import cost_history_to_response
from trading_api.schemas.expense import (
    ApprovalResponse,
    ApproveRequest,
    ExpenseResponse,
    ReceiptResponse,
)
from trading_api.schemas.purchase import (
    ApprovalEventResponse,
    PurchaseCreate,
    PurchaseLineResponse,
    PurchaseResponse,
)
from trading_api.services import expense_service, purchase_service
from trading_api.services.expense_service import ExpenseInput
from trading_api.services.purchase_service import LineInput, PurchaseDetail, PurchaseInput

logger = structlog.get_logger()
router = APIRouter()


def _iso(value):
    return value.isoformat() if value else None


def _to_response(detail: PurchaseDetail) -> PurchaseResponse:
    p = detail.purchase
    return PurchaseResponse(
        id=str(p.id),
        company_id=str(p.company_id),
        supplier_id=str(p.supplier_id) if p.supplier_id else None,
        invoice_number=p.invoice_number,
        currency=p.currency,
        total=p.total,
        total_expenses=p.total_expenses,
        final_total=p.final_total,
        status=p.status,
        is_approved=p.is_approved,
        affects_inventory=p.affects_inventory,
        notes=p.notes,
        approved_at=_iso(p.approved_at),
        approved_by=p.approved_by,
        created_at=_iso(p.created_at) or "",
        lines=[
            PurchaseLineResponse(
                id=str(line.id),
                line_number=line.line_number,
                product_id=str(line.product_id),
                qty=line.qty,
                unit_price=line.unit_price,
                sub_total=line.sub_total,
            )
            for line in detail.lines
        ],
        approval_events=[
            ApprovalEventResponse(
                id=str(e.id),
                round_number=e.round_number,
                kind=e.kind,
                expenses_total=e.expenses_total,
                expense_count=e.expense_count,
                approved_by=e.approved_by,
                created_at=_iso(e.created_at) or "",
            )
            for e in detail.approval_events
        ],
    )


def expense_to_response(e: PurchaseExpense) -> ExpenseResponse:
    return ExpenseResponse(
        id=str(e.id),
        purchase_id=str(e.purchase_id),
        approval_event_id=str(e.approval_event_id) if e.approval_event_id else None,
        category_id=str(e.category_id),
        supplier_id=str(e.supplier_id) if e.supplier_id else None,
        amount=e.amount,
        currency=e.currency,
        exchange_rate=e.exchange_rate,
        amount_in_base=e.amount_in_base,
        is_actual_expense=e.is_actual_expense,
        notes=e.notes,
        created_at=_iso(e.created_at) or "",
    )


def _receipt_to_response(r: SupplierPaymentReceipt) -> ReceiptResponse:
    return ReceiptResponse(
        id=str(r.id),
        supplier_id=str(r.supplier_id),
        purchase_id=str(r.purchase_id),
        expense_id=str(r.expense_id) if r.expense_id else None,
        amount=r.amount,
        currency=r.currency,
        kind=r.kind,
        description=r.description,
        category_name=r.category_name,
        status=r.status,
    )


@router.post("", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
async def create_purchase(
    body: PurchaseCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    data = PurchaseInput(
        company_id=body.company_id,
        supplier_id=body.supplier_id,
        invoice_number=body.invoice_number,
        currency=body.currency.upper() if body.currency else None,
        affects_inventory=body.affects_inventory,
        notes=body.notes,
        lines=[
            LineInput(product_id=line.product_id, qty=line.qty, unit_price=line.unit_price)
            for line in body.lines
        ],
    )
    detail = await purchase_service.create_purchase(db, data, created_by=current_user["user_id"])
    return _to_response(detail)


@router.get("/{purchase_id}", response_model=PurchaseResponse)
async def get_purchase(
    purchase_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    detail = await purchase_service.get_purchase(db, purchase_id)
    return _to_response(detail)


@router.delete("/{purchase_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_purchase(
    purchase_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await purchase_service.delete_purchase(db, purchase_id, actor_id=current_user["user_id"])


@router.post("/{purchase_id}/approve", response_model=ApprovalResponse)
async def approve_purchase(
    purchase_id: uuid.UUID,
    body: ApproveRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    expenses = [
        ExpenseInput(
            category_id=item.category_id,
            amount=item.amount,
            currency=item.currency.upper(),
            exchange_rate=item.exchange_rate,
            supplier_id=item.supplier_id,
            is_actual_expense=item.is_actual_expense,
            notes=item.notes,
        )
        for item in body.expenses
    ]
    outcome = await expense_service.approve_purchase(
        db, purchase_id, expenses, approved_by=current_user["user_id"]
    )

    # Runs after the response, i.e. after get_db() has committed the approval
    if outcome.receipts:
        background_tasks.add_task(drain_after_commit)

    return ApprovalResponse(
        purchase_id=str(outcome.purchase_id),
        is_approved=outcome.is_approved,
        status=outcome.status,
        approval_round=outcome.approval_round,
        total_expenses=outcome.total_expenses,
        final_total=outcome.final_total,
        expenses=[expense_to_response(e) for e in outcome.expenses],
        receipts=[_receipt_to_response(r) for r in outcome.receipts],
        product_costs=[cost_history_to_response(c) for c in outcome.product_costs],
    )


@router.get("/{purchase_id}/expenses", response_model=list[ExpenseResponse])
async def list_expenses(
    purchase_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    expenses = await expense_service.list_expenses(db, purchase_id)
    return [expense_to_response(e) for e in expenses]
