from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from trading_api.database import get_db
from trading_api.middleware.auth import get_current_user
from trading_api.schemas.expense import (
    ExpenseCategoryCreate,
    ExpenseCategoryResponse,
    ExpenseCategoryUpdate,
)
from trading_api.services import expense_category_service
from trading_api.services.expense_category_service import CategoryView

router = APIRouter()


def _to_response(view: CategoryView) -> ExpenseCategoryResponse:
    c = view.category
    return ExpenseCategoryResponse(
        id=str(c.id),
        name=c.name,
        description=c.description,
        is_active=c.is_active,
        supplier_ids=[str(s) for s in view.supplier_ids],
        created_at=c.created_at.isoformat() if c.created_at else "",
    )


@router.get("", response_model=list[ExpenseCategoryResponse])
async def list_categories(
    include_inactive: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    views = await expense_category_service.list_categories(db, include_inactive=include_inactive)
    return [_to_response(v) for v in views]


@router.post("", response_model=ExpenseCategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(
    body: ExpenseCategoryCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    view = await expense_category_service.create_category(
        db, name=body.name, description=body.description, supplier_ids=body.supplier_ids
    )
    return _to_response(view)


@router.patch("/{category_id}", response_model=ExpenseCategoryResponse)
async def update_category(
    category_id: uuid.UUID,
    body: ExpenseCategoryUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    view = await expense_category_service.update_category(
        db,
        category_id,
        name=body.name,
        description=body.description,
        is_active=body.is_active,
        supplier_ids=body.supplier_ids,
    )
    return _to_response(view)


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await expense_category_service.delete_category(db, category_id)
