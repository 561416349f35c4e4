"""
Expense allocation engine: purchase approval, supplemental expenses and
expense retraction.

All functions use the caller's session (no commit). get_db() auto-commits,
so an approval's expenses, totals, cost history, stock increments, receipts
and outbox postings land atomically or not at all.

The purchase row is locked FOR UPDATE for the whole approval, which
serializes concurrent approvals of the same invoice: the second caller sees
APPROVED and takes the supplemental path.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from trading_api.exceptions import (
    AlreadyApprovedNoOp,
    IntegrityViolation,
    NotFound,
    ValidationError,
)
from trading_api.models.cost import ProductCostHistory
from trading_api.models.expense import ExpenseCategory, PurchaseExpense
from trading_api.models.payable import (
    RECEIPT_EXPENSE,
    RECEIPT_MAIN_INVOICE,
    RECEIPT_PENDING,
    SupplierPaymentReceipt,
)
from trading_api.models.purchase import (
    APPROVAL_FIRST,
    APPROVAL_SUPPLEMENTAL,
    PURCHASE_APPROVED,
    Purchase,
    PurchaseApprovalEvent,
    PurchaseLine,
)
from trading_api.models.supplier import Supplier
from trading_api.services.allocation_policy import (
    UNIFORM_PER_UNIT,
    AllocationLine,
    get_policy,
)
from trading_api.services.audit_service import create_audit_log
from trading_api.services.cost_history_service import record_cost_history
from trading_api.services.currency_service import (
    effective_rate,
    is_supported,
    to_base_amount,
)
from trading_api.services.payable_outbox import (
    enqueue_posting,
    retract_receipt_postings,
)
from trading_api.services.stock_service import increment_stock

logger = structlog.get_logger()

ZERO = Decimal("0")


@dataclass
class ExpenseInput:
    category_id: uuid.UUID
    amount: Decimal
    currency: str
    exchange_rate: Optional[Decimal] = None
    supplier_id: Optional[uuid.UUID] = None
    is_actual_expense: bool = True
    notes: Optional[str] = None


@dataclass
class ApprovalOutcome:
    purchase_id: uuid.UUID
    is_approved: bool
    status: str
    approval_round: int
    total_expenses: Decimal
    final_total: Decimal
    expenses: list[PurchaseExpense] = field(default_factory=list)
    receipts: list[SupplierPaymentReceipt] = field(default_factory=list)
    product_costs: list[ProductCostHistory] = field(default_factory=list)


@dataclass
class ExpenseDeletion:
    purchase_id: uuid.UUID
    remaining_total_expenses: Decimal
    final_total: Decimal
    retracted_receipt_count: int


def validate_expenses(expenses: Sequence[ExpenseInput]) -> None:
    """Reject malformed expense items before anything is touched."""
    for idx, item in enumerate(expenses):
        where = {"index": idx}
        if item.amount is None or Decimal(str(item.amount)) <= 0:
            raise ValidationError("Expense amount must be greater than zero", details=where)
        if item.exchange_rate is not None and Decimal(str(item.exchange_rate)) <= 0:
            raise ValidationError("Exchange rate must be greater than zero", details=where)
        if not item.currency or not is_supported(item.currency):
            raise ValidationError(
                f"Unsupported currency: {item.currency}", details=where
            )
        if item.is_actual_expense and not item.supplier_id:
            raise ValidationError(
                "An actual expense requires a supplier", details=where
            )


async def _load_categories(
    session: AsyncSession, expenses: Sequence[ExpenseInput]
) -> dict[uuid.UUID, str]:
    wanted = {item.category_id for item in expenses}
    result = await session.execute(
        select(ExpenseCategory.id, ExpenseCategory.name, ExpenseCategory.is_active).where(
            ExpenseCategory.id.in_(wanted)
        )
    )
    found = {}
    for cat_id, name, is_active in result.all():
        if not is_active:
            raise ValidationError(f"Expense category '{name}' is inactive")
        found[cat_id] = name

    missing = wanted - set(found)
    if missing:
        raise NotFound(
            "Expense category not found",
            details={"category_ids": sorted(str(m) for m in missing)},
        )
    return found


async def _check_suppliers(
    session: AsyncSession, expenses: Sequence[ExpenseInput]
) -> None:
    wanted = {
        item.supplier_id
        for item in expenses
        if item.is_actual_expense and item.supplier_id
    }
    if not wanted:
        return
    result = await session.execute(select(Supplier.id).where(Supplier.id.in_(wanted)))
    missing = wanted - set(result.scalars().all())
    if missing:
        raise NotFound(
            "Supplier not found",
            details={"supplier_ids": sorted(str(m) for m in missing)},
        )


def _invoice_ref(purchase: Purchase) -> str:
    return purchase.invoice_number or str(purchase.id)


def _new_receipt(
    session: AsyncSession,
    purchase: Purchase,
    supplier_id: uuid.UUID,
    amount: Decimal,
    currency: str,
    kind: str,
    description: str,
    category_name: Optional[str] = None,
    expense_id: Optional[uuid.UUID] = None,
) -> SupplierPaymentReceipt:
    """Receipt plus its outbox CREDIT posting, both in the caller's transaction."""
    receipt = SupplierPaymentReceipt(
        id=uuid.uuid4(),
        supplier_id=supplier_id,
        purchase_id=purchase.id,
        company_id=purchase.company_id,
        expense_id=expense_id,
        amount=amount,
        currency=currency,
        kind=kind,
        description=description,
        category_name=category_name,
        status=RECEIPT_PENDING,
        created_at=datetime.utcnow(),
    )
    session.add(receipt)
    enqueue_posting(
        session,
        supplier_id=supplier_id,
        amount=amount,
        currency=currency,
        reference_id=receipt.id,
        description=description,
        receipt_id=receipt.id,
    )
    return receipt


async def _next_round(session: AsyncSession, purchase_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count(PurchaseApprovalEvent.id)).where(
            PurchaseApprovalEvent.purchase_id == purchase_id
        )
    )
    return int(result.scalar() or 0) + 1


async def _apply_first_approval(
    session: AsyncSession,
    purchase: Purchase,
    total_expenses: Decimal,
) -> list[ProductCostHistory]:
    """Cost history and stock: the part of approval that happens exactly once."""
    result = await session.execute(
        select(PurchaseLine)
        .where(PurchaseLine.purchase_id == purchase.id)
        .order_by(PurchaseLine.line_number)
    )
    lines = list(result.scalars().all())

    policy = get_policy(UNIFORM_PER_UNIT)
    allocations = policy.allocate(
        [
            AllocationLine(
                qty=line.qty,
                unit_price=line.unit_price,
                line_value=line.sub_total,
                product_id=str(line.product_id),
                line_id=str(line.id),
            )
            for line in lines
        ],
        total_expenses,
    )
    entries = await record_cost_history(
        session, purchase, lines, allocations, policy.name
    )

    if purchase.affects_inventory:
        per_product: "OrderedDict[uuid.UUID, Decimal]" = OrderedDict()
        for line in lines:
            per_product[line.product_id] = per_product.get(line.product_id, ZERO) + line.qty
        for product_id, qty in per_product.items():
            await increment_stock(session, purchase.company_id, product_id, qty)

    return entries


async def approve_purchase(
    session: AsyncSession,
    purchase_id: uuid.UUID,
    expenses: Sequence[ExpenseInput],
    approved_by: str,
) -> ApprovalOutcome:
    """
    Approve a purchase (first round) or attach more expenses to an approved
    one (supplemental round).

    First round: converts expenses to base currency, spreads them uniformly
    per unit, writes cost history, increments stock, marks APPROVED and
    creates receipts for the invoice total and each actual expense.

    Supplemental round: appends expenses and grows the totals; stock and
    cost history are left alone.

    Ledger CREDITs are only enqueued here; see payable_outbox.drain_postings.
    """
    validate_expenses(expenses)

    purchase = await session.get(Purchase, purchase_id, with_for_update=True)
    if not purchase:
        raise NotFound("Purchase not found")

    first_time = purchase.status != PURCHASE_APPROVED
    if not first_time and not expenses:
        raise AlreadyApprovedNoOp(
            "Purchase is already approved; supply expenses to add a supplemental round"
        )

    category_names = await _load_categories(session, expenses) if expenses else {}
    await _check_suppliers(session, expenses)

    round_number = await _next_round(session, purchase.id)
    now = datetime.utcnow()

    event = PurchaseApprovalEvent(
        id=uuid.uuid4(),
        purchase_id=purchase.id,
        round_number=round_number,
        kind=APPROVAL_FIRST if first_time else APPROVAL_SUPPLEMENTAL,
        expenses_total=ZERO,
        expense_count=len(expenses),
        approved_by=approved_by,
        created_at=now,
    )
    session.add(event)
    # Expenses below reference the event by id
    await session.flush()

    rows = []
    batch_total = ZERO
    for item in expenses:
        amount = Decimal(str(item.amount))
        rate = effective_rate(item.currency, item.exchange_rate)
        in_base = to_base_amount(amount, item.currency, item.exchange_rate)
        row = PurchaseExpense(
            id=uuid.uuid4(),
            purchase_id=purchase.id,
            approval_event_id=event.id,
            category_id=item.category_id,
            # Virtual expenses never carry a supplier
            supplier_id=item.supplier_id if item.is_actual_expense else None,
            amount=amount,
            currency=item.currency,
            exchange_rate=rate,
            amount_in_base=in_base,
            is_actual_expense=item.is_actual_expense,
            notes=item.notes,
            created_at=now,
        )
        session.add(row)
        rows.append(row)
        batch_total += in_base

    event.expenses_total = batch_total
    before = {
        "status": purchase.status,
        "total_expenses": purchase.total_expenses,
        "final_total": purchase.final_total,
    }

    if first_time:
        purchase.total_expenses = batch_total
    else:
        purchase.total_expenses = (purchase.total_expenses or ZERO) + batch_total
    # Both totals change together: the next query autoflushes this row and
    # chk_purchase_final_total is checked per statement
    purchase.final_total = purchase.total + purchase.total_expenses
    purchase.updated_at = now

    product_costs = []
    if first_time:
        product_costs = await _apply_first_approval(session, purchase, batch_total)
        purchase.status = PURCHASE_APPROVED
        purchase.approved_at = now
        purchase.approved_by = approved_by

    receipts = []
    ref = _invoice_ref(purchase)
    if first_time and purchase.supplier_id and purchase.total > 0:
        receipts.append(
            _new_receipt(
                session,
                purchase,
                supplier_id=purchase.supplier_id,
                amount=purchase.total,
                currency=purchase.currency,
                kind=RECEIPT_MAIN_INVOICE,
                description=f"Purchase invoice {ref}",
            )
        )
    for row in rows:
        if not (row.is_actual_expense and row.supplier_id):
            continue
        name = category_names.get(row.category_id)
        receipts.append(
            _new_receipt(
                session,
                purchase,
                supplier_id=row.supplier_id,
                amount=row.amount,
                currency=row.currency,
                kind=RECEIPT_EXPENSE,
                description=f"{name or 'Expense'} for purchase invoice {ref}",
                category_name=name,
                expense_id=row.id,
            )
        )

    await session.flush()

    await create_audit_log(
        session,
        actor_id=approved_by,
        action="PURCHASE_APPROVED" if first_time else "PURCHASE_EXPENSES_ADDED",
        entity_type="PURCHASE",
        entity_id=purchase.id,
        company_id=purchase.company_id,
        before_state=before,
        after_state={
            "status": purchase.status,
            "total_expenses": purchase.total_expenses,
            "final_total": purchase.final_total,
            "approval_round": round_number,
        },
    )

    logger.info(
        "purchase_approved" if first_time else "purchase_expenses_added",
        purchase_id=str(purchase.id),
        approval_round=round_number,
        expense_count=len(rows),
        batch_total=str(batch_total),
        total_expenses=str(purchase.total_expenses),
        receipts=len(receipts),
    )

    return ApprovalOutcome(
        purchase_id=purchase.id,
        is_approved=True,
        status=purchase.status,
        approval_round=round_number,
        total_expenses=purchase.total_expenses,
        final_total=purchase.final_total,
        expenses=rows,
        receipts=receipts,
        product_costs=product_costs,
    )


async def list_expenses(
    session: AsyncSession, purchase_id: uuid.UUID
) -> list[PurchaseExpense]:
    purchase = await session.get(Purchase, purchase_id)
    if not purchase:
        raise NotFound("Purchase not found")

    result = await session.execute(
        select(PurchaseExpense)
        .where(PurchaseExpense.purchase_id == purchase_id)
        .order_by(PurchaseExpense.created_at)
    )
    return list(result.scalars().all())


async def delete_expense(
    session: AsyncSession,
    expense_id: uuid.UUID,
    actor_id: Optional[str] = None,
) -> ExpenseDeletion:
    """
    Remove one expense, its PENDING receipt(s) and their ledger effect, then
    recompute the purchase totals from what remains. Cost history is kept.
    """
    expense = await session.get(PurchaseExpense, expense_id)
    if not expense:
        raise NotFound("Expense not found")

    purchase = await session.get(Purchase, expense.purchase_id, with_for_update=True)
    if not purchase:
        raise NotFound("Purchase not found")

    result = await session.execute(
        select(SupplierPaymentReceipt).where(
            SupplierPaymentReceipt.expense_id == expense.id
        )
    )
    receipts = list(result.scalars().all())
    blocked = [r for r in receipts if r.status != RECEIPT_PENDING]
    if blocked:
        raise IntegrityViolation(
            "Expense has receipts that are no longer pending",
            details={"receipt_ids": [str(r.id) for r in blocked]},
        )

    await retract_receipt_postings(session, [r.id for r in receipts])
    for receipt in receipts:
        await session.delete(receipt)
    # Receipts reference the expense; their DELETEs must reach the database first
    await session.flush()
    await session.delete(expense)
    await session.flush()

    remaining = await session.execute(
        select(func.coalesce(func.sum(PurchaseExpense.amount_in_base), 0)).where(
            PurchaseExpense.purchase_id == purchase.id
        )
    )
    before = {
        "total_expenses": purchase.total_expenses,
        "final_total": purchase.final_total,
    }
    purchase.total_expenses = Decimal(str(remaining.scalar() or 0))
    purchase.final_total = purchase.total + purchase.total_expenses
    purchase.updated_at = datetime.utcnow()
    await session.flush()

    await create_audit_log(
        session,
        actor_id=actor_id,
        action="PURCHASE_EXPENSE_DELETED",
        entity_type="PURCHASE_EXPENSE",
        entity_id=expense.id,
        company_id=purchase.company_id,
        before_state=before,
        after_state={
            "total_expenses": purchase.total_expenses,
            "final_total": purchase.final_total,
        },
    )

    logger.info(
        "purchase_expense_deleted",
        expense_id=str(expense.id),
        purchase_id=str(purchase.id),
        remaining_total_expenses=str(purchase.total_expenses),
        retracted_receipts=len(receipts),
    )

    return ExpenseDeletion(
        purchase_id=purchase.id,
        remaining_total_expenses=purchase.total_expenses,
        final_total=purchase.final_total,
        retracted_receipt_count=len(receipts),
    )
