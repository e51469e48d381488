from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from stockledger.auth import get_current_actor, require_permission
from stockledger.db import get_db
from stockledger.permissions import Actor, Permission
from stockledger.receiving import schemas
from stockledger.receiving.service import (
    cancel_goods_receipt,
    create_goods_receipt,
    get_goods_receipt,
    list_goods_receipts,
    post_goods_receipt,
)
from stockledger.routers.common import unwrap
from stockledger.transactions import run_action


router = APIRouter(prefix="/api/goods-receipts", tags=["goods-receipts"])


@router.get("", response_model=List[schemas.GoodsReceiptResponse])
def list_goods_receipts_endpoint(
    po_id: Optional[int] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Permission.GRN_READ)),
):
    return list_goods_receipts(db, po_id=po_id, status=status_filter)


@router.post("", response_model=schemas.GoodsReceiptResponse, status_code=status.HTTP_201_CREATED)
def create_goods_receipt_endpoint(
    payload: schemas.GoodsReceiptCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return unwrap(run_action(db, create_goods_receipt, payload.model_dump(), actor=actor))


@router.get("/{grn_id}", response_model=schemas.GoodsReceiptResponse)
def get_goods_receipt_endpoint(
    grn_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Permission.GRN_READ)),
):
    return get_goods_receipt(db, grn_id)


@router.post("/{grn_id}/post", response_model=schemas.GoodsReceiptResponse)
def post_goods_receipt_endpoint(grn_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return unwrap(run_action(db, post_goods_receipt, grn_id, actor=actor))


@router.post("/{grn_id}/cancel", response_model=schemas.GoodsReceiptResponse)
def cancel_goods_receipt_endpoint(
    grn_id: int,
    payload: Optional[schemas.GoodsReceiptCancelPayload] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    reason = payload.reason if payload else None
    return unwrap(run_action(db, cancel_goods_receipt, grn_id, actor=actor, reason=reason))
