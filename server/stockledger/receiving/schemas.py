from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, condecimal


DecimalValue = condecimal(max_digits=14, decimal_places=2)


class GoodsReceiptLineCreate(BaseModel):
    po_line_id: int
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    location_id: int
    qty_received: DecimalValue = Field(..., gt=0)
    unit_cost: Optional[DecimalValue] = None
    lot_id: Optional[int] = None
    lot_number: Optional[str] = Field(default=None, max_length=100)
    expiry_date: Optional[date] = None
    manufactured_date: Optional[date] = None
    note: Optional[str] = None


class GoodsReceiptCreate(BaseModel):
    po_id: int
    note: Optional[str] = None
    lines: List[GoodsReceiptLineCreate] = Field(..., min_length=1)


class GoodsReceiptCancelPayload(BaseModel):
    reason: Optional[str] = None


class GoodsReceiptLineResponse(BaseModel):
    id: int
    po_line_id: int
    product_id: int
    variant_id: Optional[int] = None
    location_id: int
    lot_id: Optional[int] = None
    qty_received: DecimalValue
    unit_cost: DecimalValue
    note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class GoodsReceiptResponse(BaseModel):
    id: int
    grn_number: str
    po_id: int
    status: str
    received_by_id: int
    posted_by_id: Optional[int] = None
    posted_at: Optional[datetime] = None
    movement_id: Optional[int] = None
    note: Optional[str] = None
    created_at: datetime
    lines: List[GoodsReceiptLineResponse]

    model_config = ConfigDict(from_attributes=True)
