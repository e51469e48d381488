from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, condecimal


DecimalValue = condecimal(max_digits=14, decimal_places=2)
MovementType = Literal["RECEIVE", "ISSUE", "TRANSFER", "ADJUST", "RETURN"]


class MovementLineCreate(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    from_location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    lot_id: Optional[int] = None
    qty: DecimalValue
    unit_cost: Optional[DecimalValue] = None
    order_ref: Optional[str] = Field(default=None, max_length=100)
    note: Optional[str] = None


class MovementCreate(BaseModel):
    type: MovementType
    note: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=255)
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    lines: List[MovementLineCreate] = Field(..., min_length=1)


class MovementUpdate(BaseModel):
    note: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=255)
    lines: Optional[List[MovementLineCreate]] = None


class MovementCancelPayload(BaseModel):
    reason: Optional[str] = None


class ReturnLineCreate(BaseModel):
    line_id: int
    qty: DecimalValue = Field(..., gt=0)


class ReturnFromIssueCreate(BaseModel):
    lines: List[ReturnLineCreate] = Field(..., min_length=1)
    note: Optional[str] = None


class MovementLineResponse(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    from_location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    lot_id: Optional[int] = None
    qty: DecimalValue
    unit_cost: Optional[DecimalValue] = None
    order_ref: Optional[str] = None
    note: Optional[str] = None
    rewrite_tag: Optional[str] = None
    original_variant_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class MovementResponse(BaseModel):
    id: int
    doc_number: str
    type: str
    status: str
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    note: Optional[str] = None
    reason: Optional[str] = None
    created_by_id: Optional[int] = None
    posted_by_id: Optional[int] = None
    created_at: datetime
    posted_at: Optional[datetime] = None
    allowed_actions: List[str] = Field(default_factory=list)
    lines: List[MovementLineResponse]

    model_config = ConfigDict(from_attributes=True)


class MovementListResponse(BaseModel):
    id: int
    doc_number: str
    type: str
    status: str
    line_count: int
    total_qty: Decimal
    created_at: datetime
    posted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MovementBatchPayload(BaseModel):
    ids: List[int]
    reason: Optional[str] = Field(default=None, max_length=255)


class MovementBatchItemResponse(BaseModel):
    id: int
    doc_number: str
    success: bool
    error: Optional[str] = None
    code: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class MovementBatchResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[MovementBatchItemResponse]

    model_config = ConfigDict(from_attributes=True)
