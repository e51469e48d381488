from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from stockledger.auth import require_permission
from stockledger.db import get_db
from stockledger.ledger import schemas
from stockledger.ledger.export import snapshot_to_csv
from stockledger.ledger.replay import current_summary, month_end_snapshot, monthly_trend
from stockledger.permissions import Permission


router = APIRouter(
    prefix="/api/reports",
    tags=["reports"],
    dependencies=[Depends(require_permission(Permission.REPORTS_READ))],
)


@router.get("/stock-summary", response_model=schemas.StockSummaryResponse)
def current_summary_endpoint(db: Session = Depends(get_db)):
    return current_summary(db)


@router.get("/month-end/{year}/{month}", response_model=schemas.MonthEndSnapshotResponse)
def month_end_endpoint(
    year: int,
    month: int,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    return month_end_snapshot(
        db,
        year,
        month,
        search=search,
        category_id=category_id,
        warehouse_id=warehouse_id,
    )


@router.get("/month-end/{year}/{month}/export")
def month_end_export_endpoint(
    year: int,
    month: int,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    snapshot = month_end_snapshot(
        db,
        year,
        month,
        search=search,
        category_id=category_id,
        warehouse_id=warehouse_id,
    )
    return Response(
        content=snapshot_to_csv(snapshot),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="stock-{year}-{month:02d}.csv"'},
    )


@router.get("/trend", response_model=List[schemas.TrendPointResponse])
def trend_endpoint(months: int = Query(6, ge=1, le=36), db: Session = Depends(get_db)):
    return monthly_trend(db, months)
