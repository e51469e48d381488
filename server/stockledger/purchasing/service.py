from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from stockledger.catalog import resolve_item
from stockledger.config import get_settings
from stockledger.errors import NotFoundError, StateConflictError, ValidationError
from stockledger.events import emit_audit, emit_notification
from stockledger.models import GoodsReceipt, PurchaseOrder, PurchaseOrderLine, PurchaseOrderTimeline, Supplier
from stockledger.permissions import Actor, Permission, ensure_permission
from stockledger.purchase_requests.service import convert_purchase_request, get_purchase_request
from stockledger.sequences.service import DOC_TYPE_PURCHASE_ORDER, next_document_number
from stockledger.users import approver_user_ids
from stockledger.utils.money import quantize_money
from stockledger.workflow import PURCHASE_ORDER_FLOW, transition


logger = logging.getLogger(__name__)


def po_total(po: PurchaseOrder) -> Decimal:
    total = sum((Decimal(line.qty_ordered or 0) * Decimal(line.unit_price or 0) for line in po.lines), Decimal("0"))
    return quantize_money(total)


def _po_url(po: PurchaseOrder) -> str:
    return f"{get_settings().app_url}/po/{po.id}"


def add_timeline(po: PurchaseOrder, action: str, note: str | None = None) -> PurchaseOrderTimeline:
    entry = PurchaseOrderTimeline(action=action, note=note, created_at=datetime.utcnow())
    po.timeline.append(entry)
    return entry


def get_purchase_order(db: Session, po_id: int, *, for_update: bool = False) -> PurchaseOrder:
    query = (
        db.query(PurchaseOrder)
        .options(selectinload(PurchaseOrder.lines), selectinload(PurchaseOrder.timeline))
        .filter(PurchaseOrder.id == po_id)
    )
    if for_update:
        query = query.with_for_update()
    po = query.first()
    if not po:
        raise NotFoundError("Purchase order", po_id)
    return po


def list_purchase_orders(
    db: Session,
    *,
    status: Optional[str] = None,
    supplier_id: Optional[int] = None,
) -> list[PurchaseOrder]:
    query = db.query(PurchaseOrder).options(selectinload(PurchaseOrder.lines), selectinload(PurchaseOrder.supplier))
    if status:
        query = query.filter(PurchaseOrder.status == status)
    if supplier_id:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    return query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).all()


def _build_po_line(db: Session, payload: dict, index: int) -> PurchaseOrderLine:
    product, variant = resolve_item(db, payload.get("product_id"), payload.get("variant_id"), field_prefix=f"lines[{index}].")
    qty = Decimal(payload.get("qty_ordered") or 0)
    if qty <= 0:
        raise ValidationError("Ordered quantity must be greater than zero.", field=f"lines[{index}].qty_ordered")
    if payload.get("unit_price") is not None:
        unit_price = Decimal(payload["unit_price"])
    else:
        unit_price = Decimal((variant.last_cost if variant else None) or product.last_cost or product.standard_cost or 0)
    if unit_price < 0:
        raise ValidationError("Unit price cannot be negative.", field=f"lines[{index}].unit_price")
    return PurchaseOrderLine(
        product_id=product.id,
        variant_id=variant.id if variant else None,
        qty_ordered=qty,
        unit_price=unit_price,
        qty_received=Decimal("0"),
        note=payload.get("note"),
    )


def _build_po_lines(db: Session, lines_payload: list[dict]) -> list[PurchaseOrderLine]:
    if not lines_payload:
        raise ValidationError("Purchase order must include at least one line item.", field="lines")
    return [_build_po_line(db, line, index) for index, line in enumerate(lines_payload)]


def _get_supplier(db: Session, supplier_id: int) -> Supplier:
    supplier = db.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError("Supplier", supplier_id, field="supplier_id")
    if not supplier.is_active:
        raise ValidationError(f"Supplier {supplier.name} is inactive.", field="supplier_id")
    return supplier


def create_purchase_order(db: Session, payload: dict, *, actor: Actor) -> PurchaseOrder:
    """Create a DRAFT purchase order, optionally converting an APPROVED purchase request."""
    ensure_permission(actor, Permission.PO_WRITE)
    supplier = _get_supplier(db, payload.get("supplier_id"))

    pr = None
    lines_payload = payload.get("lines")
    if payload.get("pr_id"):
        pr = get_purchase_request(db, payload["pr_id"])
        if pr.status != "APPROVED":
            raise StateConflictError(f"Purchase request {pr.pr_number} must be APPROVED before ordering.")
        if not lines_payload:
            lines_payload = [
                {"product_id": line.product_id, "variant_id": line.variant_id, "qty_ordered": line.qty}
                for line in pr.lines
            ]

    lines = _build_po_lines(db, lines_payload or [])
    po = PurchaseOrder(
        po_number=next_document_number(db, DOC_TYPE_PURCHASE_ORDER),
        pr_id=pr.id if pr else None,
        supplier_id=supplier.id,
        status="DRAFT",
        created_by_id=actor.id,
        order_date=payload.get("order_date") or date.today(),
        expected_date=payload.get("expected_date"),
        note=payload.get("note"),
    )
    po.lines = lines
    db.add(po)
    add_timeline(po, "Created", f"From {pr.pr_number}" if pr else None)
    db.flush()
    if pr:
        convert_purchase_request(db, pr, actor=actor)
    emit_audit(
        db,
        actor_id=actor.id,
        action="CREATE",
        ref_type="PO",
        ref_id=po.id,
        new_data={"po_number": po.po_number, "pr_id": po.pr_id, "total": str(po_total(po))},
    )
    logger.info("Created purchase order %s for supplier %s", po.po_number, supplier.id)
    return po


def update_purchase_order(db: Session, po_id: int, payload: dict, *, actor: Actor) -> PurchaseOrder:
    ensure_permission(actor, Permission.PO_WRITE)
    po = get_purchase_order(db, po_id)
    PURCHASE_ORDER_FLOW.ensure_editable(po.status)

    if payload.get("supplier_id"):
        po.supplier_id = _get_supplier(db, payload["supplier_id"]).id
    for field in ("order_date", "expected_date", "note"):
        if field in payload and (field != "order_date" or payload[field]):
            setattr(po, field, payload[field])
    if payload.get("lines") is not None:
        lines = _build_po_lines(db, payload["lines"])
        po.lines.clear()
        db.flush()
        po.lines.extend(lines)
    add_timeline(po, "Edited")
    db.flush()
    emit_audit(db, actor_id=actor.id, action="UPDATE", ref_type="PO", ref_id=po.id, new_data={"total": str(po_total(po))})
    return po


def submit_purchase_order(db: Session, po_id: int, *, actor: Actor) -> PurchaseOrder:
    ensure_permission(actor, Permission.PO_WRITE)
    po = get_purchase_order(db, po_id)
    if not po.lines:
        raise ValidationError("Purchase order must include at least one line item.", field="lines")
    transition(db, PURCHASE_ORDER_FLOW, po, "submit", actor_id=actor.id, ref_type="PO")
    add_timeline(po, "Submitted for approval")
    emit_notification(
        db,
        event_type="po_pending",
        title=f"Purchase order {po.po_number} awaits approval",
        message=f"{po.po_number} totalling {po_total(po)} was submitted.",
        url=_po_url(po),
        target_user_ids=approver_user_ids(db),
    )
    return po


def approve_purchase_order(db: Session, po_id: int, *, actor: Actor) -> PurchaseOrder:
    ensure_permission(actor, Permission.PO_APPROVE)
    po = get_purchase_order(db, po_id)
    transition(db, PURCHASE_ORDER_FLOW, po, "approve", actor_id=actor.id, ref_type="PO")
    po.approved_by_id = actor.id
    po.approved_at = datetime.utcnow()
    add_timeline(po, "Approved", actor.name or None)
    emit_notification(
        db,
        event_type="po_approved",
        title=f"Purchase order {po.po_number} approved",
        message=f"{po.po_number} was approved and can be sent to the supplier.",
        url=_po_url(po),
        target_user_ids=[po.created_by_id],
    )
    return po


def reject_purchase_order(db: Session, po_id: int, *, actor: Actor, reason: str | None = None) -> PurchaseOrder:
    ensure_permission(actor, Permission.PO_APPROVE)
    po = get_purchase_order(db, po_id)
    transition(db, PURCHASE_ORDER_FLOW, po, "reject", actor_id=actor.id, ref_type="PO", note=reason)
    add_timeline(po, "Rejected", reason)
    emit_notification(
        db,
        event_type="po_rejected",
        title=f"Purchase order {po.po_number} rejected",
        message=f"{po.po_number} was rejected" + (f": {reason}" if reason else "."),
        url=_po_url(po),
        target_user_ids=[po.created_by_id],
    )
    return po


def send_purchase_order(db: Session, po_id: int, *, actor: Actor) -> PurchaseOrder:
    ensure_permission(actor, Permission.PO_WRITE)
    po = get_purchase_order(db, po_id)
    supplier = _get_supplier(db, po.supplier_id)
    if not (supplier.email or supplier.phone):
        raise ValidationError("Supplier must have contact info before sending.", field="supplier_id")
    transition(db, PURCHASE_ORDER_FLOW, po, "send", actor_id=actor.id, ref_type="PO")
    po.sent_at = datetime.utcnow()
    add_timeline(po, "Sent to supplier", supplier.email or supplier.phone)
    emit_notification(
        db,
        event_type="po_sent",
        title=f"Purchase order {po.po_number} sent",
        message=f"{po.po_number} was sent to {supplier.name}.",
        url=_po_url(po),
        target_user_ids=[po.created_by_id],
    )
    return po


def acknowledge_purchase_order(db: Session, po_id: int, *, actor: Actor, note: str | None = None) -> PurchaseOrder:
    ensure_permission(actor, Permission.PO_WRITE)
    po = get_purchase_order(db, po_id)
    transition(db, PURCHASE_ORDER_FLOW, po, "acknowledge", actor_id=actor.id, ref_type="PO", note=note)
    add_timeline(po, "Supplier confirmed", note)
    return po


def cancel_purchase_order(db: Session, po_id: int, *, actor: Actor, reason: str | None = None) -> PurchaseOrder:
    ensure_permission(actor, Permission.PO_WRITE)
    po = get_purchase_order(db, po_id)
    receipt_count = db.query(func.count(GoodsReceipt.id)).filter(GoodsReceipt.po_id == po.id).scalar() or 0
    if receipt_count:
        raise StateConflictError(f"Purchase order {po.po_number} already has goods receipts and cannot be cancelled.")
    transition(db, PURCHASE_ORDER_FLOW, po, "cancel", actor_id=actor.id, ref_type="PO", note=reason)
    add_timeline(po, "Cancelled", reason)
    return po


def refresh_receipt_status(db: Session, po: PurchaseOrder, *, actor_id: int | None) -> str:
    """Move the PO to PARTIALLY_ or FULLY_RECEIVED from its lines' received quantities."""
    fully_received = all(Decimal(line.qty_received or 0) >= Decimal(line.qty_ordered or 0) for line in po.lines)
    action = "receive_full" if fully_received else "receive_partial"
    if po.status == "PARTIALLY_RECEIVED" and action == "receive_partial":
        return po.status
    transition(db, PURCHASE_ORDER_FLOW, po, action, actor_id=actor_id, ref_type="PO")
    return po.status
