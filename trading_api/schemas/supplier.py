from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field


class CurrencyBalance(BaseModel):
    currency: str
    credit: Decimal
    debit: Decimal
    balance: Decimal


class SupplierBalancesResponse(BaseModel):
    supplier_id: str
    name: str
    balances: List[CurrencyBalance] = Field(default_factory=list)
