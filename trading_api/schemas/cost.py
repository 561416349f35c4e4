from decimal import Decimal
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field


class CostHistoryResponse(BaseModel):
    id: str
    product_id: str
    purchase_id: str
    company_id: str
    purchase_price: Decimal
    expense_per_unit: Decimal
    total_cost_per_unit: Decimal
    quantity: Decimal
    allocation_strategy: str
    created_at: str


class ExpenseDetailResponse(BaseModel):
    category_name: Optional[str] = None
    amount: Decimal
    currency: str
    amount_in_base: Decimal
    is_actual_expense: bool


class LastPurchaseCostResponse(BaseModel):
    purchase_id: str
    invoice_number: Optional[str] = None
    approved_at: Optional[str] = None
    currency: str
    exchange_rate: Decimal
    quantity: Decimal
    unit_price: Decimal
    unit_price_in_base: Decimal
    line_value_in_base: Decimal
    invoice_total_in_base: Decimal
    value_percentage: Decimal
    total_expenses: Decimal
    expense_share: Decimal
    cost_per_unit: Decimal
    allocation_strategy: str
    expenses: List[ExpenseDetailResponse] = Field(default_factory=list)


class CostPreviewResponse(BaseModel):
    product_id: str
    sku: str
    name: str
    current_cost: Optional[Decimal] = None
    last_purchase: Optional[LastPurchaseCostResponse] = None


class ProductCostUpdate(BaseModel):
    new_cost: Decimal = Field(..., gt=0)
    purchase_id: uuid.UUID
    notes: Optional[str] = None


class ProductCostLogResponse(BaseModel):
    id: str
    product_id: str
    old_cost: Optional[Decimal] = None
    new_cost: Decimal
    purchase_id: str
    updated_by: str
    notes: Optional[str] = None
    created_at: str
