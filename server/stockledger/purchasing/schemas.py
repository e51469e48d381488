from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, condecimal


DecimalValue = condecimal(max_digits=14, decimal_places=2)


class PurchaseOrderLineCreate(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    qty_ordered: DecimalValue = Field(..., gt=0)
    unit_price: Optional[DecimalValue] = None
    note: Optional[str] = None


class PurchaseOrderCreate(BaseModel):
    supplier_id: int
    pr_id: Optional[int] = None
    order_date: Optional[date] = None
    expected_date: Optional[date] = None
    note: Optional[str] = None
    lines: Optional[List[PurchaseOrderLineCreate]] = None


class PurchaseOrderUpdate(BaseModel):
    supplier_id: Optional[int] = None
    order_date: Optional[date] = None
    expected_date: Optional[date] = None
    note: Optional[str] = None
    lines: Optional[List[PurchaseOrderLineCreate]] = None


class PurchaseOrderActionPayload(BaseModel):
    reason: Optional[str] = None


class PurchaseOrderLineResponse(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    qty_ordered: DecimalValue
    unit_price: DecimalValue
    qty_received: DecimalValue
    note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderTimelineResponse(BaseModel):
    id: int
    action: str
    note: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderResponse(BaseModel):
    id: int
    po_number: str
    pr_id: Optional[int] = None
    supplier_id: int
    status: str
    created_by_id: int
    approved_by_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    order_date: date
    expected_date: Optional[date] = None
    note: Optional[str] = None
    total: DecimalValue
    allowed_actions: List[str] = Field(default_factory=list)
    lines: List[PurchaseOrderLineResponse]
    timeline: List[PurchaseOrderTimelineResponse]

    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderListResponse(BaseModel):
    id: int
    po_number: str
    supplier_name: str
    order_date: date
    status: str
    total: DecimalValue
