from collections import defaultdict
from datetime import datetime
from decimal import Decimal
import logging
from typing import Optional

from sqlalchemy.orm import Session, selectinload

from stockledger.errors import IntegrityViolationError, NotFoundError, StateConflictError, ValidationError
from stockledger.events import emit_audit
from stockledger.models import (
    GoodsReceipt,
    GoodsReceiptLine,
    Location,
    Lot,
    MovementLine,
    Product,
    ProductVariant,
    PurchaseOrder,
    StockMovement,
)
from stockledger.movements.posting import apply_movement
from stockledger.permissions import Actor, Permission, ensure_permission
from stockledger.purchasing.service import add_timeline, get_purchase_order, refresh_receipt_status
from stockledger.sequences.service import (
    DOC_TYPE_GOODS_RECEIPT,
    DOC_TYPE_MOVEMENT,
    next_document_number,
)
from stockledger.workflow import GOODS_RECEIPT_FLOW, PO_RECEIVABLE_STATUSES, transition


logger = logging.getLogger(__name__)


def get_goods_receipt(db: Session, grn_id: int) -> GoodsReceipt:
    grn = (
        db.query(GoodsReceipt)
        .options(selectinload(GoodsReceipt.lines))
        .filter(GoodsReceipt.id == grn_id)
        .first()
    )
    if not grn:
        raise NotFoundError("Goods receipt", grn_id)
    return grn


def list_goods_receipts(db: Session, *, po_id: Optional[int] = None, status: Optional[str] = None) -> list[GoodsReceipt]:
    query = db.query(GoodsReceipt).options(selectinload(GoodsReceipt.lines))
    if po_id:
        query = query.filter(GoodsReceipt.po_id == po_id)
    if status:
        query = query.filter(GoodsReceipt.status == status)
    return query.order_by(GoodsReceipt.created_at.desc(), GoodsReceipt.id.desc()).all()


def _ensure_receivable(po: PurchaseOrder) -> None:
    if po.status not in PO_RECEIVABLE_STATUSES:
        raise StateConflictError(
            f"Purchase order {po.po_number} is {po.status}; goods can only be received once it has been sent."
        )


def _resolve_lot(db: Session, payload: dict, product_id: int, variant_id: int | None, index: int) -> int | None:
    field = f"lines[{index}].lot_id"
    if payload.get("lot_id"):
        lot = db.get(Lot, payload["lot_id"])
        if not lot:
            raise NotFoundError("Lot", payload["lot_id"], field=field)
        if lot.product_id != product_id or (lot.variant_id is not None and lot.variant_id != variant_id):
            raise IntegrityViolationError(f"Lot {lot.lot_number} belongs to a different item.", field=field)
        return lot.id
    lot_number = (payload.get("lot_number") or "").strip()
    if not lot_number:
        return None
    lot = db.query(Lot).filter(Lot.product_id == product_id, Lot.lot_number == lot_number).first()
    if lot is None:
        lot = Lot(
            product_id=product_id,
            variant_id=variant_id,
            lot_number=lot_number,
            expiry_date=payload.get("expiry_date"),
            manufactured_date=payload.get("manufactured_date"),
        )
        db.add(lot)
        db.flush()
    return lot.id


def _check_over_receipt(po: PurchaseOrder, quantities: dict[int, Decimal]) -> None:
    lines_by_id = {line.id: line for line in po.lines}
    for po_line_id, qty in quantities.items():
        line = lines_by_id[po_line_id]
        outstanding = line.qty_outstanding
        if qty > outstanding:
            raise ValidationError(
                f"Receiving {qty} exceeds the {outstanding} still outstanding on PO line {po_line_id}.",
                field="lines",
            )


def create_goods_receipt(db: Session, payload: dict, *, actor: Actor) -> GoodsReceipt:
    ensure_permission(actor, Permission.GRN_WRITE)
    po = get_purchase_order(db, payload.get("po_id"))
    _ensure_receivable(po)
    lines_payload = payload.get("lines") or []
    if not lines_payload:
        raise ValidationError("A goods receipt needs at least one line.", field="lines")

    po_lines = {line.id: line for line in po.lines}
    quantities: dict[int, Decimal] = defaultdict(Decimal)
    lines = []
    for index, line_payload in enumerate(lines_payload):
        po_line = po_lines.get(line_payload.get("po_line_id"))
        if po_line is None:
            raise IntegrityViolationError(
                f"Line {line_payload.get('po_line_id')} is not part of {po.po_number}.",
                field=f"lines[{index}].po_line_id",
            )
        product_id = line_payload.get("product_id") or po_line.product_id
        variant_id = line_payload.get("variant_id") or po_line.variant_id
        if product_id != po_line.product_id or variant_id != po_line.variant_id:
            raise IntegrityViolationError(
                "Received item must match the purchase order line.", field=f"lines[{index}].variant_id"
            )
        qty = Decimal(line_payload.get("qty_received") or 0)
        if qty <= 0:
            raise ValidationError("Received quantity must be greater than zero.", field=f"lines[{index}].qty_received")
        location = db.get(Location, line_payload.get("location_id"))
        if not location or not location.is_active or location.deleted_at is not None:
            raise ValidationError("Receiving location is missing or inactive.", field=f"lines[{index}].location_id")
        unit_cost = line_payload.get("unit_cost")
        if unit_cost is not None and Decimal(unit_cost) < 0:
            raise ValidationError("Unit cost cannot be negative.", field=f"lines[{index}].unit_cost")
        quantities[po_line.id] += qty
        lines.append(
            GoodsReceiptLine(
                po_line_id=po_line.id,
                product_id=product_id,
                variant_id=variant_id,
                location_id=location.id,
                lot_id=_resolve_lot(db, line_payload, product_id, variant_id, index),
                qty_received=qty,
                unit_cost=Decimal(unit_cost) if unit_cost is not None else Decimal(po_line.unit_price or 0),
                note=line_payload.get("note"),
            )
        )
    _check_over_receipt(po, quantities)

    grn = GoodsReceipt(
        grn_number=next_document_number(db, DOC_TYPE_GOODS_RECEIPT),
        po_id=po.id,
        status="DRAFT",
        received_by_id=actor.id,
        note=payload.get("note"),
    )
    grn.lines = lines
    db.add(grn)
    db.flush()
    emit_audit(
        db,
        actor_id=actor.id,
        action="CREATE",
        ref_type="GRN",
        ref_id=grn.id,
        new_data={"grn_number": grn.grn_number, "po_number": po.po_number, "line_count": len(lines)},
    )
    logger.info("Created goods receipt %s for %s", grn.grn_number, po.po_number)
    return grn


def _update_last_cost(db: Session, line: GoodsReceiptLine) -> None:
    unit_cost = Decimal(line.unit_cost or 0)
    if unit_cost <= 0:
        return
    if line.variant_id is not None:
        variant = db.get(ProductVariant, line.variant_id)
        if variant:
            variant.last_cost = unit_cost
    product = db.get(Product, line.product_id)
    if product:
        product.last_cost = unit_cost


def post_goods_receipt(db: Session, grn_id: int, *, actor: Actor, now: datetime | None = None) -> GoodsReceipt:
    """Post a DRAFT receipt: RECEIVE movement, PO line quantities, last costs and PO status in one go."""
    ensure_permission(actor, Permission.GRN_WRITE)
    grn = get_goods_receipt(db, grn_id)
    GOODS_RECEIPT_FLOW.target("post", grn.status)
    po = get_purchase_order(db, grn.po_id, for_update=True)
    _ensure_receivable(po)

    quantities: dict[int, Decimal] = defaultdict(Decimal)
    for line in grn.lines:
        quantities[line.po_line_id] += Decimal(line.qty_received)
    _check_over_receipt(po, quantities)

    posted_at = now or datetime.utcnow()
    movement = StockMovement(
        doc_number=next_document_number(db, DOC_TYPE_MOVEMENT),
        type="RECEIVE",
        status="DRAFT",
        ref_type="GRN",
        ref_id=grn.id,
        note=f"Goods receipt {grn.grn_number} for {po.po_number}",
        created_by_id=actor.id,
        created_at=posted_at,
    )
    movement.lines = [
        MovementLine(
            product_id=line.product_id,
            variant_id=line.variant_id,
            to_location_id=line.location_id,
            lot_id=line.lot_id,
            qty=line.qty_received,
            unit_cost=line.unit_cost,
            order_ref=po.po_number,
        )
        for line in grn.lines
    ]
    db.add(movement)
    apply_movement(db, movement, posted_by_id=actor.id, now=posted_at)

    lines_by_id = {line.id: line for line in po.lines}
    for po_line_id, qty in quantities.items():
        po_line = lines_by_id[po_line_id]
        po_line.qty_received = Decimal(po_line.qty_received or 0) + qty
    for line in grn.lines:
        _update_last_cost(db, line)

    transition(db, GOODS_RECEIPT_FLOW, grn, "post", actor_id=actor.id, ref_type="GRN")
    grn.posted_by_id = actor.id
    grn.posted_at = posted_at
    grn.movement_id = movement.id

    status = refresh_receipt_status(db, po, actor_id=actor.id)
    add_timeline(po, f"Received goods {grn.grn_number}", f"Status {status}")
    db.flush()
    logger.info("Posted goods receipt %s; %s is now %s", grn.grn_number, po.po_number, status)
    return grn


def cancel_goods_receipt(db: Session, grn_id: int, *, actor: Actor, reason: str | None = None) -> GoodsReceipt:
    ensure_permission(actor, Permission.GRN_WRITE)
    grn = get_goods_receipt(db, grn_id)
    transition(db, GOODS_RECEIPT_FLOW, grn, "cancel", actor_id=actor.id, ref_type="GRN", note=reason)
    if reason:
        grn.note = f"{grn.note}\n[Cancelled] {reason}" if grn.note else f"[Cancelled] {reason}"
    return grn
