from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, condecimal


DecimalValue = condecimal(max_digits=14, decimal_places=2)


class StockBalanceRowResponse(BaseModel):
    balance_id: int
    product_id: int
    variant_id: Optional[int] = None
    location_id: int
    sku: str
    name: str
    variant_name: Optional[str] = None
    category: Optional[str] = None
    warehouse_code: str
    warehouse_name: str
    location_code: str
    stock_type: str
    qty_on_hand: DecimalValue
    reorder_point: DecimalValue
    shortage: DecimalValue

    model_config = ConfigDict(from_attributes=True)


class StockBalancePageResponse(BaseModel):
    rows: List[StockBalanceRowResponse]
    total: int
    page: int
    page_size: int

    model_config = ConfigDict(from_attributes=True)


class BalanceDiscrepancyResponse(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    location_id: int
    ledger_qty: Decimal
    balance_qty: Decimal
    difference: Decimal

    model_config = ConfigDict(from_attributes=True)


class LotExpiryResponse(BaseModel):
    lot_id: int
    lot_number: str
    product_id: int
    variant_id: Optional[int] = None
    sku: str
    name: str
    expiry_date: date
    qty_on_hand: DecimalValue
    location_count: int
    days: int

    model_config = ConfigDict(from_attributes=True)
