from collections import defaultdict
from datetime import datetime
from decimal import Decimal
import logging
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from stockledger.errors import NotFoundError, StateConflictError, ValidationError
from stockledger.events import emit_audit
from stockledger.ledger.effects import EFFECT_RULES
from stockledger.models import MovementLine, StockMovement
from stockledger.movements.posting import prepare_lines
from stockledger.permissions import Actor, Permission, ensure_permission
from stockledger.sequences.service import DOC_TYPE_MOVEMENT, next_document_number
from stockledger.workflow import MOVEMENT_FLOW


logger = logging.getLogger(__name__)

REF_REVERSAL = "REVERSAL"
REF_RETURN_FROM = "RETURN_FROM"

REVERSAL_TYPES = {
    "RECEIVE": "ISSUE",
    "ISSUE": "RECEIVE",
    "RETURN": "ISSUE",
    "TRANSFER": "TRANSFER",
    "ADJUST": "ADJUST",
}

LINE_FIELDS = (
    "product_id",
    "variant_id",
    "from_location_id",
    "to_location_id",
    "lot_id",
    "qty",
    "unit_cost",
    "order_ref",
    "note",
)


def _build_lines(lines: list[dict]) -> list[MovementLine]:
    return [MovementLine(**{key: line.get(key) for key in LINE_FIELDS}) for line in lines]


def get_movement(db: Session, movement_id: int) -> StockMovement:
    movement = (
        db.query(StockMovement)
        .options(selectinload(StockMovement.lines))
        .filter(StockMovement.id == movement_id)
        .first()
    )
    if not movement:
        raise NotFoundError("Movement", movement_id)
    return movement


def list_movements(
    db: Session,
    *,
    movement_type: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[StockMovement], int]:
    query = db.query(StockMovement)
    if movement_type:
        query = query.filter(StockMovement.type == movement_type)
    if status:
        query = query.filter(StockMovement.status == status)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(StockMovement.doc_number.ilike(term), StockMovement.note.ilike(term)))
    total = query.count()
    rows = (
        query.options(selectinload(StockMovement.lines))
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset((max(page, 1) - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total


def _new_movement(
    db: Session,
    *,
    movement_type: str,
    lines: list[MovementLine],
    actor: Actor,
    note: str | None = None,
    reason: str | None = None,
    ref_type: str | None = None,
    ref_id: int | None = None,
) -> StockMovement:
    prepare_lines(db, movement_type, lines)
    movement = StockMovement(
        doc_number=next_document_number(db, DOC_TYPE_MOVEMENT),
        type=movement_type,
        status="DRAFT",
        note=note,
        reason=reason,
        ref_type=ref_type,
        ref_id=ref_id,
        created_by_id=actor.id,
        created_at=datetime.utcnow(),
    )
    movement.lines = lines
    db.add(movement)
    db.flush()
    emit_audit(
        db,
        actor_id=actor.id,
        action="CREATE",
        ref_type="MOVEMENT",
        ref_id=movement.id,
        new_data={"doc_number": movement.doc_number, "type": movement_type, "line_count": len(lines)},
    )
    return movement


def create_movement(db: Session, payload: dict, *, actor: Actor) -> StockMovement:
    ensure_permission(actor, Permission.MOVEMENTS_WRITE)
    movement_type = payload.get("type")
    if movement_type not in EFFECT_RULES:
        raise ValidationError(f"Unknown movement type {movement_type}.", field="type")
    movement = _new_movement(
        db,
        movement_type=movement_type,
        lines=_build_lines(payload.get("lines") or []),
        actor=actor,
        note=payload.get("note"),
        reason=payload.get("reason"),
        ref_type=payload.get("ref_type"),
        ref_id=payload.get("ref_id"),
    )
    logger.info("Created draft movement %s (%s)", movement.doc_number, movement.type)
    return movement


def update_movement(db: Session, movement_id: int, payload: dict, *, actor: Actor) -> StockMovement:
    ensure_permission(actor, Permission.MOVEMENTS_WRITE)
    movement = get_movement(db, movement_id)
    MOVEMENT_FLOW.ensure_editable(movement.status)

    if "lines" in payload and payload["lines"] is not None:
        lines = _build_lines(payload["lines"])
        prepare_lines(db, movement.type, lines)
        movement.lines.clear()
        db.flush()
        movement.lines.extend(lines)
    for field in ("note", "reason"):
        if field in payload:
            setattr(movement, field, payload[field])
    db.flush()
    emit_audit(db, actor_id=actor.id, action="UPDATE", ref_type="MOVEMENT", ref_id=movement.id, new_data=_payload_summary(payload))
    return movement


def _payload_summary(payload: dict) -> dict:
    summary = {key: value for key, value in payload.items() if key != "lines"}
    if payload.get("lines") is not None:
        summary["line_count"] = len(payload["lines"])
    return summary


def cancel_movement(db: Session, movement_id: int, *, actor: Actor, reason: str | None = None) -> StockMovement:
    ensure_permission(actor, Permission.MOVEMENTS_WRITE)
    movement = get_movement(db, movement_id)
    old_status = movement.status
    movement.status = MOVEMENT_FLOW.target("cancel", old_status)
    if reason:
        movement.note = f"{movement.note}\n[Cancelled] {reason}" if movement.note else f"[Cancelled] {reason}"
    db.flush()
    emit_audit(
        db,
        actor_id=actor.id,
        action="CANCEL",
        ref_type="MOVEMENT",
        ref_id=movement.id,
        old_data={"status": old_status},
        new_data={"status": movement.status, "reason": reason},
    )
    return movement


def _reversed_line(movement_type: str, line: MovementLine) -> MovementLine:
    reversed_type = REVERSAL_TYPES[movement_type]
    from_location_id, to_location_id = line.from_location_id, line.to_location_id
    qty = Decimal(line.qty)
    if movement_type == "TRANSFER":
        from_location_id, to_location_id = line.to_location_id, line.from_location_id
    elif movement_type == "ADJUST":
        qty = -qty
    elif reversed_type == "ISSUE":
        from_location_id, to_location_id = line.to_location_id, None
    elif reversed_type == "RECEIVE":
        from_location_id, to_location_id = None, line.from_location_id
    return MovementLine(
        product_id=line.product_id,
        variant_id=line.variant_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        lot_id=line.lot_id,
        qty=qty,
        unit_cost=line.unit_cost,
        order_ref=line.order_ref,
        note=f"Reversal of line {line.id}",
    )


def reverse_movement(db: Session, movement_id: int, *, actor: Actor) -> StockMovement:
    """Create a DRAFT movement whose effects cancel a POSTED one."""
    ensure_permission(actor, Permission.MOVEMENTS_WRITE)
    original = get_movement(db, movement_id)
    if original.status != "POSTED":
        raise StateConflictError("Only posted movements can be reversed.")
    existing = (
        db.query(StockMovement.doc_number)
        .filter(
            StockMovement.ref_type == REF_REVERSAL,
            StockMovement.ref_id == original.id,
            StockMovement.status != "CANCELLED",
        )
        .first()
    )
    if existing:
        raise StateConflictError(f"Movement {original.doc_number} already has reversal {existing[0]}.")

    reversal = _new_movement(
        db,
        movement_type=REVERSAL_TYPES[original.type],
        lines=[_reversed_line(original.type, line) for line in original.lines],
        actor=actor,
        note=f"Reversal of {original.doc_number}",
        reason="Reversal",
        ref_type=REF_REVERSAL,
        ref_id=original.id,
    )
    logger.info("Created reversal %s for movement %s", reversal.doc_number, original.doc_number)
    return reversal


def _returned_qty_by_key(db: Session, issue_id: int) -> dict[tuple, Decimal]:
    rows = (
        db.query(
            MovementLine.product_id,
            MovementLine.variant_id,
            MovementLine.to_location_id,
            func.coalesce(func.sum(MovementLine.qty), 0),
        )
        .join(StockMovement, StockMovement.id == MovementLine.movement_id)
        .filter(
            StockMovement.ref_type == REF_RETURN_FROM,
            StockMovement.ref_id == issue_id,
            StockMovement.status != "CANCELLED",
        )
        .group_by(MovementLine.product_id, MovementLine.variant_id, MovementLine.to_location_id)
        .all()
    )
    return {(product_id, variant_id, location_id): Decimal(str(total or 0)) for product_id, variant_id, location_id, total in rows}


def create_return_from_issue(
    db: Session,
    issue_id: int,
    lines: list[dict],
    *,
    actor: Actor,
    note: str | None = None,
) -> StockMovement:
    """Create a DRAFT RETURN that puts issued goods back where they came from."""
    ensure_permission(actor, Permission.MOVEMENTS_WRITE)
    issue = get_movement(db, issue_id)
    if issue.type != "ISSUE":
        raise ValidationError("Returns can only be created from an ISSUE movement.", field="movement_id")
    if issue.status != "POSTED":
        raise StateConflictError("Returns can only be created from a posted issue.")
    if not lines:
        raise ValidationError("Select at least one line to return.", field="lines")

    issued_lines = {line.id: line for line in issue.lines}
    issued_by_key: dict[tuple, Decimal] = defaultdict(Decimal)
    for line in issue.lines:
        issued_by_key[(line.product_id, line.variant_id, line.from_location_id)] += Decimal(line.qty)
    returned_by_key = _returned_qty_by_key(db, issue.id)

    requested_by_key: dict[tuple, Decimal] = defaultdict(Decimal)
    return_lines = []
    for index, item in enumerate(lines):
        original = issued_lines.get(item.get("line_id"))
        if original is None:
            raise ValidationError(
                f"Line {item.get('line_id')} is not part of {issue.doc_number}.", field=f"lines[{index}].line_id"
            )
        qty = Decimal(item.get("qty") or 0)
        if qty <= 0:
            raise ValidationError("Return quantity must be greater than zero.", field=f"lines[{index}].qty")
        key = (original.product_id, original.variant_id, original.from_location_id)
        requested_by_key[key] += qty
        remaining = issued_by_key[key] - returned_by_key.get(key, Decimal("0"))
        if requested_by_key[key] > remaining:
            raise ValidationError(
                f"Cannot return {requested_by_key[key]}; only {remaining} remains returnable on line {original.id}.",
                field=f"lines[{index}].qty",
            )
        return_lines.append(
            MovementLine(
                product_id=original.product_id,
                variant_id=original.variant_id,
                to_location_id=original.from_location_id,
                lot_id=original.lot_id,
                qty=qty,
                unit_cost=original.unit_cost,
                order_ref=original.order_ref,
                note=f"Return of line {original.id}",
            )
        )

    movement = _new_movement(
        db,
        movement_type="RETURN",
        lines=return_lines,
        actor=actor,
        note=note or f"Return from {issue.doc_number}",
        reason="Return from issue",
        ref_type=REF_RETURN_FROM,
        ref_id=issue.id,
    )
    logger.info("Created return %s from issue %s", movement.doc_number, issue.doc_number)
    return movement

