from datetime import datetime
from decimal import Decimal
import logging
from typing import Optional

from sqlalchemy.orm import Session, selectinload

from stockledger.catalog import resolve_item
from stockledger.config import get_settings
from stockledger.errors import NotFoundError, ValidationError
from stockledger.events import emit_audit, emit_notification
from stockledger.models import PurchaseRequest, PurchaseRequestLine
from stockledger.permissions import Actor, Permission, ensure_permission
from stockledger.sequences.service import DOC_TYPE_PURCHASE_REQUEST, next_document_number
from stockledger.users import approver_user_ids
from stockledger.workflow import PURCHASE_REQUEST_FLOW, transition


logger = logging.getLogger(__name__)

PRIORITIES = {"LOW", "NORMAL", "HIGH", "URGENT"}


def _pr_url(pr: PurchaseRequest) -> str:
    return f"{get_settings().app_url}/pr/{pr.id}"


def get_purchase_request(db: Session, pr_id: int) -> PurchaseRequest:
    pr = (
        db.query(PurchaseRequest)
        .options(selectinload(PurchaseRequest.lines))
        .filter(PurchaseRequest.id == pr_id)
        .first()
    )
    if not pr:
        raise NotFoundError("Purchase request", pr_id)
    return pr


def list_purchase_requests(db: Session, *, status: Optional[str] = None) -> list[PurchaseRequest]:
    query = db.query(PurchaseRequest).options(selectinload(PurchaseRequest.lines))
    if status:
        query = query.filter(PurchaseRequest.status == status)
    return query.order_by(PurchaseRequest.created_at.desc(), PurchaseRequest.id.desc()).all()


def _build_lines(db: Session, lines: list[dict]) -> list[PurchaseRequestLine]:
    if not lines:
        raise ValidationError("A purchase request needs at least one line.", field="lines")
    built = []
    for index, line in enumerate(lines):
        product, variant = resolve_item(db, line.get("product_id"), line.get("variant_id"), field_prefix=f"lines[{index}].")
        qty = Decimal(line.get("qty") or 0)
        if qty <= 0:
            raise ValidationError("Quantity must be greater than zero.", field=f"lines[{index}].qty")
        built.append(
            PurchaseRequestLine(
                product_id=product.id,
                variant_id=variant.id if variant else None,
                qty=qty,
                note=line.get("note"),
            )
        )
    return built


def _check_priority(priority: str | None) -> str:
    priority = (priority or "NORMAL").upper()
    if priority not in PRIORITIES:
        raise ValidationError(f"Unknown priority {priority}.", field="priority")
    return priority


def create_purchase_request(db: Session, payload: dict, *, actor: Actor) -> PurchaseRequest:
    ensure_permission(actor, Permission.PR_WRITE)
    lines = _build_lines(db, payload.get("lines") or [])
    pr = PurchaseRequest(
        pr_number=next_document_number(db, DOC_TYPE_PURCHASE_REQUEST),
        status="DRAFT",
        requester_id=actor.id,
        need_by_date=payload.get("need_by_date"),
        priority=_check_priority(payload.get("priority")),
        note=payload.get("note"),
    )
    pr.lines = lines
    db.add(pr)
    db.flush()
    emit_audit(
        db,
        actor_id=actor.id,
        action="CREATE",
        ref_type="PR",
        ref_id=pr.id,
        new_data={"pr_number": pr.pr_number, "line_count": len(lines)},
    )
    logger.info("Created purchase request %s", pr.pr_number)
    return pr


def update_purchase_request(db: Session, pr_id: int, payload: dict, *, actor: Actor) -> PurchaseRequest:
    ensure_permission(actor, Permission.PR_WRITE)
    pr = get_purchase_request(db, pr_id)
    PURCHASE_REQUEST_FLOW.ensure_editable(pr.status)

    if payload.get("lines") is not None:
        lines = _build_lines(db, payload["lines"])
        pr.lines.clear()
        db.flush()
        pr.lines.extend(lines)
    if "priority" in payload:
        pr.priority = _check_priority(payload["priority"])
    for field in ("need_by_date", "note"):
        if field in payload:
            setattr(pr, field, payload[field])
    db.flush()
    emit_audit(db, actor_id=actor.id, action="UPDATE", ref_type="PR", ref_id=pr.id, new_data={"status": pr.status})
    return pr


def submit_purchase_request(db: Session, pr_id: int, *, actor: Actor) -> PurchaseRequest:
    ensure_permission(actor, Permission.PR_WRITE)
    pr = get_purchase_request(db, pr_id)
    if not pr.lines:
        raise ValidationError("A purchase request needs at least one line.", field="lines")
    transition(db, PURCHASE_REQUEST_FLOW, pr, "submit", actor_id=actor.id, ref_type="PR")
    pr.rejected_reason = None
    emit_notification(
        db,
        event_type="pr_pending",
        title=f"Purchase request {pr.pr_number} awaits approval",
        message=f"{actor.name or 'A user'} submitted {pr.pr_number} with {len(pr.lines)} lines.",
        url=_pr_url(pr),
        target_user_ids=approver_user_ids(db),
    )
    return pr


def approve_purchase_request(db: Session, pr_id: int, *, actor: Actor) -> PurchaseRequest:
    ensure_permission(actor, Permission.PR_APPROVE)
    pr = get_purchase_request(db, pr_id)
    transition(db, PURCHASE_REQUEST_FLOW, pr, "approve", actor_id=actor.id, ref_type="PR")
    pr.approver_id = actor.id
    pr.approved_at = datetime.utcnow()
    emit_notification(
        db,
        event_type="pr_approved",
        title=f"Purchase request {pr.pr_number} approved",
        message=f"{pr.pr_number} was approved by {actor.name or 'an approver'}.",
        url=_pr_url(pr),
        target_user_ids=[pr.requester_id],
    )
    return pr


def reject_purchase_request(db: Session, pr_id: int, *, actor: Actor, reason: str | None = None) -> PurchaseRequest:
    ensure_permission(actor, Permission.PR_APPROVE)
    pr = get_purchase_request(db, pr_id)
    transition(db, PURCHASE_REQUEST_FLOW, pr, "reject", actor_id=actor.id, ref_type="PR", note=reason)
    pr.rejected_reason = reason
    emit_notification(
        db,
        event_type="pr_rejected",
        title=f"Purchase request {pr.pr_number} rejected",
        message=f"{pr.pr_number} was rejected" + (f": {reason}" if reason else "."),
        url=_pr_url(pr),
        target_user_ids=[pr.requester_id],
    )
    return pr


def cancel_purchase_request(db: Session, pr_id: int, *, actor: Actor) -> PurchaseRequest:
    ensure_permission(actor, Permission.PR_WRITE)
    pr = get_purchase_request(db, pr_id)
    transition(db, PURCHASE_REQUEST_FLOW, pr, "cancel", actor_id=actor.id, ref_type="PR")
    return pr


def convert_purchase_request(db: Session, pr: PurchaseRequest, *, actor: Actor) -> PurchaseRequest:
    """Mark an APPROVED request as converted; called while its PO is created."""
    transition(db, PURCHASE_REQUEST_FLOW, pr, "convert", actor_id=actor.id, ref_type="PR")
    return pr
