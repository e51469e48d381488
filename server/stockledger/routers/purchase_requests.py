from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from stockledger.auth import get_current_actor, require_permission
from stockledger.db import get_db
from stockledger.models import PurchaseRequest
from stockledger.permissions import Actor, Permission
from stockledger.purchase_requests import schemas
from stockledger.purchase_requests.service import (
    approve_purchase_request,
    cancel_purchase_request,
    create_purchase_request,
    get_purchase_request,
    list_purchase_requests,
    reject_purchase_request,
    submit_purchase_request,
    update_purchase_request,
)
from stockledger.routers.common import unwrap
from stockledger.transactions import run_action
from stockledger.workflow import PURCHASE_REQUEST_FLOW


router = APIRouter(prefix="/api/purchase-requests", tags=["purchase-requests"])


def _to_response(pr: PurchaseRequest) -> schemas.PurchaseRequestResponse:
    response = schemas.PurchaseRequestResponse.model_validate(pr)
    response.allowed_actions = PURCHASE_REQUEST_FLOW.allowed_actions(pr.status)
    return response


@router.get("", response_model=List[schemas.PurchaseRequestResponse])
def list_purchase_requests_endpoint(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Permission.PR_READ)),
):
    return [_to_response(pr) for pr in list_purchase_requests(db, status=status_filter)]


@router.post("", response_model=schemas.PurchaseRequestResponse, status_code=status.HTTP_201_CREATED)
def create_purchase_request_endpoint(
    payload: schemas.PurchaseRequestCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    pr = unwrap(run_action(db, create_purchase_request, payload.model_dump(), actor=actor))
    return _to_response(pr)


@router.get("/{pr_id}", response_model=schemas.PurchaseRequestResponse)
def get_purchase_request_endpoint(
    pr_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Permission.PR_READ)),
):
    return _to_response(get_purchase_request(db, pr_id))


@router.patch("/{pr_id}", response_model=schemas.PurchaseRequestResponse)
def update_purchase_request_endpoint(
    pr_id: int,
    payload: schemas.PurchaseRequestUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    pr = unwrap(run_action(db, update_purchase_request, pr_id, payload.model_dump(exclude_unset=True), actor=actor))
    return _to_response(pr)


@router.post("/{pr_id}/submit", response_model=schemas.PurchaseRequestResponse)
def submit_purchase_request_endpoint(pr_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return _to_response(unwrap(run_action(db, submit_purchase_request, pr_id, actor=actor)))


@router.post("/{pr_id}/approve", response_model=schemas.PurchaseRequestResponse)
def approve_purchase_request_endpoint(pr_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return _to_response(unwrap(run_action(db, approve_purchase_request, pr_id, actor=actor)))


@router.post("/{pr_id}/reject", response_model=schemas.PurchaseRequestResponse)
def reject_purchase_request_endpoint(
    pr_id: int,
    payload: Optional[schemas.RejectPayload] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    reason = payload.reason if payload else None
    return _to_response(unwrap(run_action(db, reject_purchase_request, pr_id, actor=actor, reason=reason)))


@router.post("/{pr_id}/cancel", response_model=schemas.PurchaseRequestResponse)
def cancel_purchase_request_endpoint(pr_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return _to_response(unwrap(run_action(db, cancel_purchase_request, pr_id, actor=actor)))
