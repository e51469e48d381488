from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, condecimal


DecimalValue = condecimal(max_digits=14, decimal_places=2)


class PurchaseRequestLineCreate(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    qty: DecimalValue = Field(..., gt=0)
    note: Optional[str] = None


class PurchaseRequestCreate(BaseModel):
    need_by_date: Optional[date] = None
    priority: str = "NORMAL"
    note: Optional[str] = None
    lines: List[PurchaseRequestLineCreate] = Field(..., min_length=1)


class PurchaseRequestUpdate(BaseModel):
    need_by_date: Optional[date] = None
    priority: Optional[str] = None
    note: Optional[str] = None
    lines: Optional[List[PurchaseRequestLineCreate]] = None


class RejectPayload(BaseModel):
    reason: Optional[str] = None


class PurchaseRequestLineResponse(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    qty: DecimalValue
    note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PurchaseRequestResponse(BaseModel):
    id: int
    pr_number: str
    status: str
    requester_id: int
    approver_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejected_reason: Optional[str] = None
    need_by_date: Optional[date] = None
    priority: str
    note: Optional[str] = None
    created_at: datetime
    allowed_actions: List[str] = Field(default_factory=list)
    lines: List[PurchaseRequestLineResponse]

    model_config = ConfigDict(from_attributes=True)
