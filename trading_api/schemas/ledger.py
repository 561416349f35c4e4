from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class LedgerProduct(BaseModel):
    id: str
    sku: str
    name: str
    unit: Optional[str] = None


class LedgerPeriod(BaseModel):
    start_date: Optional[str] = None
    end_date: str


class LedgerMovementResponse(BaseModel):
    date: str
    kind: str
    description: str
    qty_in: Decimal
    qty_out: Decimal
    balance: Decimal
    source_id: Optional[str] = None


class ProductMovementReport(BaseModel):
    product: LedgerProduct
    company_id: str
    period: LedgerPeriod
    opening_balance: Decimal
    closing_balance: Decimal
    current_stock: Decimal
    movements: List[LedgerMovementResponse] = Field(default_factory=list)
