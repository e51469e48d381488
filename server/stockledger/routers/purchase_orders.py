from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from stockledger.auth import get_current_actor, require_permission
from stockledger.db import get_db
from stockledger.models import PurchaseOrder
from stockledger.permissions import Actor, Permission
from stockledger.purchasing import schemas
from stockledger.purchasing.service import (
    acknowledge_purchase_order,
    approve_purchase_order,
    cancel_purchase_order,
    create_purchase_order,
    get_purchase_order,
    list_purchase_orders,
    po_total,
    reject_purchase_order,
    send_purchase_order,
    submit_purchase_order,
    update_purchase_order,
)
from stockledger.routers.common import unwrap
from stockledger.transactions import run_action
from stockledger.workflow import PURCHASE_ORDER_FLOW


router = APIRouter(prefix="/api/purchase-orders", tags=["purchase-orders"])


def _to_detail_response(po: PurchaseOrder) -> schemas.PurchaseOrderResponse:
    return schemas.PurchaseOrderResponse(
        id=po.id,
        po_number=po.po_number,
        pr_id=po.pr_id,
        supplier_id=po.supplier_id,
        status=po.status,
        created_by_id=po.created_by_id,
        approved_by_id=po.approved_by_id,
        approved_at=po.approved_at,
        sent_at=po.sent_at,
        order_date=po.order_date,
        expected_date=po.expected_date,
        note=po.note,
        total=po_total(po),
        allowed_actions=PURCHASE_ORDER_FLOW.allowed_actions(po.status),
        lines=[schemas.PurchaseOrderLineResponse.model_validate(line) for line in po.lines],
        timeline=[schemas.PurchaseOrderTimelineResponse.model_validate(entry) for entry in po.timeline],
    )


@router.get("", response_model=List[schemas.PurchaseOrderListResponse])
def list_purchase_orders_endpoint(
    status_filter: Optional[str] = Query(None, alias="status"),
    supplier_id: Optional[int] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Permission.PO_READ)),
):
    return [
        schemas.PurchaseOrderListResponse(
            id=po.id,
            po_number=po.po_number,
            supplier_name=po.supplier.name if po.supplier else f"Supplier #{po.supplier_id}",
            order_date=po.order_date,
            status=po.status,
            total=po_total(po),
        )
        for po in list_purchase_orders(db, status=status_filter, supplier_id=supplier_id)
    ]


@router.post("", response_model=schemas.PurchaseOrderResponse, status_code=status.HTTP_201_CREATED)
def create_purchase_order_endpoint(
    payload: schemas.PurchaseOrderCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    po = unwrap(run_action(db, create_purchase_order, payload.model_dump(), actor=actor))
    return _to_detail_response(po)


@router.get("/{purchase_order_id}", response_model=schemas.PurchaseOrderResponse)
def get_purchase_order_endpoint(
    purchase_order_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Permission.PO_READ)),
):
    return _to_detail_response(get_purchase_order(db, purchase_order_id))


@router.patch("/{purchase_order_id}", response_model=schemas.PurchaseOrderResponse)
def update_purchase_order_endpoint(
    purchase_order_id: int,
    payload: schemas.PurchaseOrderUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    po = unwrap(
        run_action(db, update_purchase_order, purchase_order_id, payload.model_dump(exclude_unset=True), actor=actor)
    )
    return _to_detail_response(po)


@router.post("/{purchase_order_id}/submit", response_model=schemas.PurchaseOrderResponse)
def submit_purchase_order_endpoint(
    purchase_order_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)
):
    return _to_detail_response(unwrap(run_action(db, submit_purchase_order, purchase_order_id, actor=actor)))


@router.post("/{purchase_order_id}/approve", response_model=schemas.PurchaseOrderResponse)
def approve_purchase_order_endpoint(
    purchase_order_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)
):
    return _to_detail_response(unwrap(run_action(db, approve_purchase_order, purchase_order_id, actor=actor)))


@router.post("/{purchase_order_id}/reject", response_model=schemas.PurchaseOrderResponse)
def reject_purchase_order_endpoint(
    purchase_order_id: int,
    payload: Optional[schemas.PurchaseOrderActionPayload] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    reason = payload.reason if payload else None
    return _to_detail_response(
        unwrap(run_action(db, reject_purchase_order, purchase_order_id, actor=actor, reason=reason))
    )


@router.post("/{purchase_order_id}/send", response_model=schemas.PurchaseOrderResponse)
def send_purchase_order_endpoint(
    purchase_order_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)
):
    return _to_detail_response(unwrap(run_action(db, send_purchase_order, purchase_order_id, actor=actor)))


@router.post("/{purchase_order_id}/acknowledge", response_model=schemas.PurchaseOrderResponse)
def acknowledge_purchase_order_endpoint(
    purchase_order_id: int,
    payload: Optional[schemas.PurchaseOrderActionPayload] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    note = payload.reason if payload else None
    return _to_detail_response(
        unwrap(run_action(db, acknowledge_purchase_order, purchase_order_id, actor=actor, note=note))
    )


@router.post("/{purchase_order_id}/cancel", response_model=schemas.PurchaseOrderResponse)
def cancel_purchase_order_endpoint(
    purchase_order_id: int,
    payload: Optional[schemas.PurchaseOrderActionPayload] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    reason = payload.reason if payload else None
    return _to_detail_response(
        unwrap(run_action(db, cancel_purchase_order, purchase_order_id, actor=actor, reason=reason))
    )
