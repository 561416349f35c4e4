from decimal import Decimal
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field

from trading_api.schemas.cost import CostHistoryResponse


class ExpenseItemIn(BaseModel):
    category_id: uuid.UUID
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    exchange_rate: Optional[Decimal] = Field(None, gt=0)
    supplier_id: Optional[uuid.UUID] = None
    is_actual_expense: bool = True
    notes: Optional[str] = None


class ApproveRequest(BaseModel):
    expenses: List[ExpenseItemIn] = Field(default_factory=list)


class ReceiptResponse(BaseModel):
    id: str
    supplier_id: str
    purchase_id: str
    expense_id: Optional[str] = None
    amount: Decimal
    currency: str
    kind: str
    description: Optional[str] = None
    category_name: Optional[str] = None
    status: str


class ExpenseResponse(BaseModel):
    id: str
    purchase_id: str
    approval_event_id: Optional[str] = None
    category_id: str
    supplier_id: Optional[str] = None
    amount: Decimal
    currency: str
    exchange_rate: Decimal
    amount_in_base: Decimal
    is_actual_expense: bool
    notes: Optional[str] = None
    created_at: str


class ApprovalResponse(BaseModel):
    purchase_id: str
    is_approved: bool
    status: str
    approval_round: int
    total_expenses: Decimal
    final_total: Decimal
    expenses: List[ExpenseResponse] = Field(default_factory=list)
    receipts: List[ReceiptResponse] = Field(default_factory=list)
    product_costs: List[CostHistoryResponse] = Field(default_factory=list)


class ExpenseDeleteResponse(BaseModel):
    purchase_id: str
    remaining_total_expenses: Decimal
    final_total: Decimal
    retracted_receipt_count: int


class ExpenseCategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    supplier_ids: List[uuid.UUID] = Field(default_factory=list)


class ExpenseCategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    supplier_ids: Optional[List[uuid.UUID]] = None


class ExpenseCategoryResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    is_active: bool
    supplier_ids: List[str] = Field(default_factory=list)
    created_at: str
