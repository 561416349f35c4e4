from decimal import Decimal
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field


class PurchaseLineCreate(BaseModel):
    product_id: uuid.UUID
    qty: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)


class PurchaseCreate(BaseModel):
    company_id: uuid.UUID
    supplier_id: Optional[uuid.UUID] = None
    invoice_number: Optional[str] = Field(None, max_length=100)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    affects_inventory: bool = True
    notes: Optional[str] = None
    lines: List[PurchaseLineCreate] = Field(..., min_length=1)


class PurchaseLineResponse(BaseModel):
    id: str
    line_number: int
    product_id: str
    qty: Decimal
    unit_price: Decimal
    sub_total: Decimal


class ApprovalEventResponse(BaseModel):
    id: str
    round_number: int
    kind: str
    expenses_total: Decimal
    expense_count: int
    approved_by: Optional[str] = None
    created_at: str


class PurchaseResponse(BaseModel):
    id: str
    company_id: str
    supplier_id: Optional[str] = None
    invoice_number: Optional[str] = None
    currency: str
    total: Decimal
    total_expenses: Decimal
    final_total: Decimal
    status: str
    is_approved: bool
    affects_inventory: bool
    notes: Optional[str] = None
    approved_at: Optional[str] = None
    approved_by: Optional[str] = None
    created_at: str
    lines: List[PurchaseLineResponse] = Field(default_factory=list)
    approval_events: List[ApprovalEventResponse] = Field(default_factory=list)
