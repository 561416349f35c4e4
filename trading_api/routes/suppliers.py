from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from trading_api.database import get_db
from trading_api.exceptions import NotFound
from trading_api.middleware.auth import get_current_user
from trading_api.models.supplier import Supplier
from trading_api.schemas.supplier import CurrencyBalance, SupplierBalancesResponse
from trading_api.services.supplier_ledger import balances_by_currency

router = APIRouter()


@router.get("/{supplier_id}/balances", response_model=SupplierBalancesResponse)
async def supplier_balances(
    supplier_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    supplier = await db.get(Supplier, supplier_id)
    if not supplier:
        raise NotFound("Supplier not found")

    balances = await balances_by_currency(db, supplier.id)
    return SupplierBalancesResponse(
        supplier_id=str(supplier.id),
        name=supplier.name,
        balances=[
            CurrencyBalance(currency=currency, **totals)
            for currency, totals in balances.items()
        ],
    )
