from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, condecimal


DecimalValue = condecimal(max_digits=14, decimal_places=2)


class StockDetailRowResponse(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    location_id: int
    sku: str
    name: str
    variant_name: Optional[str] = None
    category_id: Optional[int] = None
    category: Optional[str] = None
    warehouse_id: int
    warehouse_code: str
    warehouse_name: str
    location_code: str
    qty_on_hand: DecimalValue
    unit_cost: DecimalValue
    stock_value: DecimalValue

    model_config = ConfigDict(from_attributes=True)


class StockSummaryResponse(BaseModel):
    sku_count: int
    total_qty: DecimalValue
    total_value: DecimalValue

    model_config = ConfigDict(from_attributes=True)


class MonthEndSnapshotResponse(BaseModel):
    year: int
    month: int
    label: str
    cutoff: datetime
    rows: List[StockDetailRowResponse]
    summary: StockSummaryResponse
    previous_summary: StockSummaryResponse

    model_config = ConfigDict(from_attributes=True)


class TrendPointResponse(BaseModel):
    year: int
    month: int
    label: str
    summary: StockSummaryResponse

    model_config = ConfigDict(from_attributes=True)
