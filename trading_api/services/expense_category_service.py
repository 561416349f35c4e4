"""Expense categories and their default suppliers."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence
import uuid

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from trading_api.exceptions import IntegrityViolation, NotFound, ValidationError
from trading_api.models.expense import (
    ExpenseCategory,
    ExpenseCategorySupplier,
    PurchaseExpense,
)
from trading_api.models.supplier import Supplier

logger = structlog.get_logger()


@dataclass
class CategoryView:
    category: ExpenseCategory
    supplier_ids: list[uuid.UUID] = field(default_factory=list)


async def _supplier_links(
    session: AsyncSession, category_ids: Sequence[uuid.UUID]
) -> dict[uuid.UUID, list[uuid.UUID]]:
    links: dict[uuid.UUID, list[uuid.UUID]] = {cid: [] for cid in category_ids}
    if not category_ids:
        return links
    result = await session.execute(
        select(ExpenseCategorySupplier.category_id, ExpenseCategorySupplier.supplier_id).where(
            ExpenseCategorySupplier.category_id.in_(list(category_ids))
        )
    )
    for category_id, supplier_id in result.all():
        links.setdefault(category_id, []).append(supplier_id)
    return links


async def _replace_suppliers(
    session: AsyncSession, category_id: uuid.UUID, supplier_ids: Sequence[uuid.UUID]
) -> None:
    wanted = set(supplier_ids)
    if wanted:
        result = await session.execute(select(Supplier.id).where(Supplier.id.in_(wanted)))
        missing = wanted - set(result.scalars().all())
        if missing:
            raise NotFound(
                "Supplier not found",
                details={"supplier_ids": sorted(str(m) for m in missing)},
            )

    await session.execute(
        delete(ExpenseCategorySupplier).where(
            ExpenseCategorySupplier.category_id == category_id
        )
    )
    for supplier_id in supplier_ids:
        session.add(
            ExpenseCategorySupplier(category_id=category_id, supplier_id=supplier_id)
        )


async def _name_taken(
    session: AsyncSession, name: str, exclude_id: Optional[uuid.UUID] = None
) -> bool:
    q = select(ExpenseCategory.id).where(func.lower(ExpenseCategory.name) == name.lower())
    if exclude_id:
        q = q.where(ExpenseCategory.id != exclude_id)
    result = await session.execute(q)
    return result.scalar_one_or_none() is not None


async def list_categories(
    session: AsyncSession, include_inactive: bool = False
) -> list[CategoryView]:
    q = select(ExpenseCategory)
    if not include_inactive:
        q = q.where(ExpenseCategory.is_active.is_(True))
    result = await session.execute(q.order_by(ExpenseCategory.name))
    categories = list(result.scalars().all())

    links = await _supplier_links(session, [c.id for c in categories])
    return [CategoryView(category=c, supplier_ids=links.get(c.id, [])) for c in categories]


async def create_category(
    session: AsyncSession,
    name: str,
    description: Optional[str] = None,
    supplier_ids: Sequence[uuid.UUID] = (),
) -> CategoryView:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    if await _name_taken(session, name):
        raise ValidationError(f"Expense category '{name}' already exists")

    now = datetime.utcnow()
    category = ExpenseCategory(
        id=uuid.uuid4(),
        name=name,
        description=description,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    session.add(category)
    await session.flush()
    await _replace_suppliers(session, category.id, supplier_ids)
    await session.flush()

    logger.info("expense_category_created", category_id=str(category.id), name=name)
    return CategoryView(category=category, supplier_ids=list(supplier_ids))


async def update_category(
    session: AsyncSession,
    category_id: uuid.UUID,
    name: Optional[str] = None,
    description: Optional[str] = None,
    is_active: Optional[bool] = None,
    supplier_ids: Optional[Sequence[uuid.UUID]] = None,
) -> CategoryView:
    """Partial update; supplier_ids, when given, replaces the linked set."""
    category = await session.get(ExpenseCategory, category_id)
    if not category:
        raise NotFound("Expense category not found")

    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Category name is required")
        if await _name_taken(session, name, exclude_id=category.id):
            raise ValidationError(f"Expense category '{name}' already exists")
        category.name = name
    if description is not None:
        category.description = description
    if is_active is not None:
        category.is_active = is_active
    if supplier_ids is not None:
        await _replace_suppliers(session, category.id, supplier_ids)
    category.updated_at = datetime.utcnow()
    await session.flush()

    links = await _supplier_links(session, [category.id])
    logger.info("expense_category_updated", category_id=str(category.id))
    return CategoryView(category=category, supplier_ids=links.get(category.id, []))


async def delete_category(session: AsyncSession, category_id: uuid.UUID) -> None:
    category = await session.get(ExpenseCategory, category_id)
    if not category:
        raise NotFound("Expense category not found")

    in_use = await session.execute(
        select(func.count(PurchaseExpense.id)).where(
            PurchaseExpense.category_id == category.id
        )
    )
    count = int(in_use.scalar() or 0)
    if count:
        raise IntegrityViolation(
            "Expense category is used by existing expenses",
            details={"expense_count": count},
        )

    await session.delete(category)
    await session.flush()
    logger.info("expense_category_deleted", category_id=str(category_id))
