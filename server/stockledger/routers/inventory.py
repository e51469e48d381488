from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.auth import require_permission
from stockledger.db import get_db
from stockledger.inventory import schemas
from stockledger.inventory.queries import (
    MAX_EXPIRY_WINDOW_DAYS,
    MAX_PAGE_SIZE,
    expired_lots,
    expiring_lots,
    list_stock_balances,
    low_stock,
)
from stockledger.ledger.replay import reconcile_balances
from stockledger.permissions import Permission


router = APIRouter(
    prefix="/api/inventory",
    tags=["inventory"],
    dependencies=[Depends(require_permission(Permission.STOCK_READ))],
)

SortColumn = Literal["sku", "name", "category", "warehouse", "location", "qty", "rop"]


@router.get("/balances", response_model=schemas.StockBalancePageResponse)
def list_balances_endpoint(
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    sort: SortColumn = "sku",
    direction: Literal["asc", "desc"] = "asc",
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    return list_stock_balances(
        db,
        search=search,
        category_id=category_id,
        warehouse_id=warehouse_id,
        sort=sort,
        direction=direction,
        page=page,
        page_size=page_size,
    )


@router.get("/low-stock", response_model=schemas.StockBalancePageResponse)
def low_stock_endpoint(
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    sort: SortColumn = "qty",
    direction: Literal["asc", "desc"] = "asc",
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    return low_stock(
        db,
        search=search,
        category_id=category_id,
        warehouse_id=warehouse_id,
        sort=sort,
        direction=direction,
        page=page,
        page_size=page_size,
    )


@router.get("/lots/expiring", response_model=List[schemas.LotExpiryResponse])
def expiring_lots_endpoint(
    days: int = Query(30, ge=0, le=MAX_EXPIRY_WINDOW_DAYS),
    db: Session = Depends(get_db),
):
    return expiring_lots(db, days)


@router.get("/lots/expired", response_model=List[schemas.LotExpiryResponse])
def expired_lots_endpoint(db: Session = Depends(get_db)):
    return expired_lots(db)


@router.get(
    "/reconcile",
    response_model=List[schemas.BalanceDiscrepancyResponse],
    dependencies=[Depends(require_permission(Permission.REPORTS_READ))],
)
def reconcile_endpoint(at: Optional[datetime] = None, db: Session = Depends(get_db)):
    return reconcile_balances(db, at)
