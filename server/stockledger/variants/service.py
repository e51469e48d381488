from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from stockledger.errors import IntegrityViolationError, NotFoundError, StateConflictError, ValidationError
from stockledger.events import emit_audit
from stockledger.inventory.service import increment_balance
from stockledger.models import (
    MERGE_REWRITE,
    GoodsReceiptLine,
    Lot,
    MovementLine,
    ProductVariant,
    PurchaseOrderLine,
    PurchaseRequestLine,
    StockBalance,
)
from stockledger.permissions import Actor, Permission, ensure_permission


logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    source_variant_id: int
    target_variant_id: int
    rewritten_lines: int = 0
    rewritten_lots: int = 0
    rewritten_document_lines: dict[str, int] = field(default_factory=dict)
    moved_balances: list[dict] = field(default_factory=list)
    merged_balances: list[dict] = field(default_factory=list)


DOCUMENT_LINES = {
    "purchase_request": PurchaseRequestLine,
    "purchase_order": PurchaseOrderLine,
    "goods_receipt": GoodsReceiptLine,
}


def _load_variant(db: Session, variant_id: int, role: str) -> ProductVariant:
    variant = db.query(ProductVariant).filter(ProductVariant.id == variant_id).with_for_update().first()
    if not variant:
        raise NotFoundError(f"{role.capitalize()} variant", variant_id, field=f"{role}_variant_id")
    return variant


def _repoint_variant(db: Session, model, source_id: int, target_id: int) -> int:
    result = db.execute(
        update(model)
        .where(model.variant_id == source_id)
        .values(variant_id=target_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0

def merge_variants(
    db: Session,
    source_variant_id: int,
    target_variant_id: int,
    *,
    actor: Actor,
    now: datetime | None = None,
) -> MergeResult:
    """Fold a duplicate variant into another variant of the same product.

    Ledger lines are repointed and tagged ``MERGE_REWRITE`` so a later replay
    attributes history to the target. Lots and open document lines follow the
    target too. Balances are summed into the target's rows before the source
    is retired.
    """
    ensure_permission(actor, Permission.VARIANTS_MERGE)
    if source_variant_id == target_variant_id:
        raise ValidationError("Source and target variants must differ.", field="target_variant_id")
    source = _load_variant(db, source_variant_id, "source")
    target = _load_variant(db, target_variant_id, "target")
    if source.product_id != target.product_id:
        raise IntegrityViolationError(
            f"Variants {source.sku} and {target.sku} belong to different products.", field="target_variant_id"
        )
    if not source.is_active or source.deleted_at is not None:
        raise StateConflictError(f"Variant {source.sku} has already been retired.")
    if not target.is_active or target.deleted_at is not None:
        raise StateConflictError(f"Variant {target.sku} is retired and cannot receive a merge.")

    db.flush()
    timestamp = now or datetime.utcnow()
    result = MergeResult(source_variant_id=source.id, target_variant_id=target.id)

    rewritten = db.execute(
        update(MovementLine)
        .where(MovementLine.variant_id == source.id)
        .values(
            variant_id=target.id,
            rewrite_tag=MERGE_REWRITE,
            original_variant_id=source.id,
            rewritten_at=timestamp,
        )
        .execution_options(synchronize_session=False)
    )
    result.rewritten_lines = rewritten.rowcount or 0
    result.rewritten_lots = _repoint_variant(db, Lot, source.id, target.id)
    # Open documents must stay receivable once the source is retired.
    for name, model in DOCUMENT_LINES.items():
        result.rewritten_document_lines[name] = _repoint_variant(db, model, source.id, target.id)

    source_balances = (
        db.query(StockBalance)
        .filter(StockBalance.variant_id == source.id)
        .order_by(StockBalance.location_id.asc())
        .all()
    )
    target_locations = {
        location_id
        for (location_id,) in db.query(StockBalance.location_id).filter(StockBalance.variant_id == target.id).all()
    }
    for balance in source_balances:
        qty = Decimal(balance.qty_on_hand or 0)
        entry = {"location_id": balance.location_id, "qty": str(qty)}
        if balance.location_id in target_locations:
            increment_balance(
                db,
                product_id=target.product_id,
                variant_id=target.id,
                location_id=balance.location_id,
                delta=qty,
                now=timestamp,
            )
            db.execute(delete(StockBalance).where(StockBalance.id == balance.id))
            result.merged_balances.append(entry)
        else:
            db.execute(
                update(StockBalance)
                .where(StockBalance.id == balance.id)
                .values(variant_id=target.id, updated_at=timestamp)
                .execution_options(synchronize_session=False)
            )
            result.moved_balances.append(entry)
    # Core writes above leave stale objects in the identity map.
    db.expire_all()

    source = db.get(ProductVariant, source_variant_id)
    source.is_active = False
    source.deleted_at = timestamp
    db.flush()

    emit_audit(
        db,
        actor_id=actor.id,
        action="MERGE_VARIANT",
        ref_type="VARIANT",
        ref_id=source_variant_id,
        old_data={"variant_id": source_variant_id},
        new_data={
            "target_variant_id": target_variant_id,
            "rewritten_lines": result.rewritten_lines,
            "rewritten_lots": result.rewritten_lots,
            "rewritten_document_lines": result.rewritten_document_lines,
            "moved_balances": result.moved_balances,
            "merged_balances": result.merged_balances,
        },
    )
    logger.info(
        "Merged variant %s into %s: lines=%s moved=%s merged=%s",
        source_variant_id,
        target_variant_id,
        result.rewritten_lines,
        len(result.moved_balances),
        len(result.merged_balances),
    )
    return result
