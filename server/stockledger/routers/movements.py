from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from stockledger.auth import get_current_actor, require_permission
from stockledger.db import get_db
from stockledger.models import StockMovement
from stockledger.movements import schemas
from stockledger.movements.batch import batch_cancel_movements, batch_post_movements
from stockledger.movements.posting import post_movement
from stockledger.movements.service import (
    cancel_movement,
    create_movement,
    create_return_from_issue,
    get_movement,
    list_movements,
    reverse_movement,
    update_movement,
)
from stockledger.permissions import Actor, Permission
from stockledger.routers.common import unwrap
from stockledger.transactions import run_action
from stockledger.workflow import MOVEMENT_FLOW


router = APIRouter(prefix="/api/movements", tags=["movements"])


def _to_response(movement: StockMovement) -> schemas.MovementResponse:
    response = schemas.MovementResponse.model_validate(movement)
    response.allowed_actions = MOVEMENT_FLOW.allowed_actions(movement.status)
    return response


@router.get("", response_model=list[schemas.MovementListResponse])
def list_movements_endpoint(
    response: Response,
    movement_type: Optional[str] = Query(None, alias="type"),
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Permission.MOVEMENTS_READ)),
):
    movements, total = list_movements(
        db,
        movement_type=movement_type,
        status=status_filter,
        search=search,
        page=page,
        page_size=page_size,
    )
    response.headers["X-Total-Count"] = str(total)
    return [
        schemas.MovementListResponse(
            id=movement.id,
            doc_number=movement.doc_number,
            type=movement.type,
            status=movement.status,
            line_count=len(movement.lines),
            total_qty=sum((Decimal(line.qty) for line in movement.lines), Decimal("0")),
            created_at=movement.created_at,
            posted_at=movement.posted_at,
        )
        for movement in movements
    ]


@router.post("", response_model=schemas.MovementResponse, status_code=status.HTTP_201_CREATED)
def create_movement_endpoint(
    payload: schemas.MovementCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    movement = unwrap(run_action(db, create_movement, payload.model_dump(), actor=actor))
    return _to_response(movement)


@router.post("/batch/post", response_model=schemas.MovementBatchResponse)
def batch_post_endpoint(
    payload: schemas.MovementBatchPayload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return batch_post_movements(db, payload.ids, actor=actor)


@router.post("/batch/cancel", response_model=schemas.MovementBatchResponse)
def batch_cancel_endpoint(
    payload: schemas.MovementBatchPayload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return batch_cancel_movements(db, payload.ids, actor=actor, reason=payload.reason)


@router.get("/{movement_id}", response_model=schemas.MovementResponse)
def get_movement_endpoint(
    movement_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_permission(Permission.MOVEMENTS_READ)),
):
    return _to_response(get_movement(db, movement_id))


@router.patch("/{movement_id}", response_model=schemas.MovementResponse)
def update_movement_endpoint(
    movement_id: int,
    payload: schemas.MovementUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    movement = unwrap(run_action(db, update_movement, movement_id, payload.model_dump(exclude_unset=True), actor=actor))
    return _to_response(movement)


@router.post("/{movement_id}/post", response_model=schemas.MovementResponse)
def post_movement_endpoint(
    movement_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    movement = unwrap(run_action(db, post_movement, movement_id, actor=actor))
    return _to_response(movement)


@router.post("/{movement_id}/cancel", response_model=schemas.MovementResponse)
def cancel_movement_endpoint(
    movement_id: int,
    payload: Optional[schemas.MovementCancelPayload] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    reason = payload.reason if payload else None
    movement = unwrap(run_action(db, cancel_movement, movement_id, actor=actor, reason=reason))
    return _to_response(movement)


@router.post("/{movement_id}/reverse", response_model=schemas.MovementResponse, status_code=status.HTTP_201_CREATED)
def reverse_movement_endpoint(
    movement_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    movement = unwrap(run_action(db, reverse_movement, movement_id, actor=actor))
    return _to_response(movement)


@router.post("/{movement_id}/returns", response_model=schemas.MovementResponse, status_code=status.HTTP_201_CREATED)
def create_return_endpoint(
    movement_id: int,
    payload: schemas.ReturnFromIssueCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    movement = unwrap(
        run_action(
            db,
            create_return_from_issue,
            movement_id,
            [line.model_dump() for line in payload.lines],
            actor=actor,
            note=payload.note,
        )
    )
    return _to_response(movement)
