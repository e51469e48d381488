"""Posting engine: turns a DRAFT movement into balance changes.

Every line is validated before the first write, then each line's effects are
applied with atomic upserts. The caller owns the transaction; any exception
raised here must be followed by a rollback (``run_action`` does that), which
leaves balances untouched.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy.orm import Session, selectinload

from stockledger.catalog import resolve_item
from stockledger.config import get_settings
from stockledger.errors import IntegrityViolationError, NotFoundError, ValidationError
from stockledger.events import emit_audit, emit_notification
from stockledger.inventory.service import apply_delta, apply_lot_delta, get_balance
from stockledger.ledger.effects import REQUIRED_SIDES, Effect, line_effects, rules_for
from stockledger.models import Location, Lot, MovementLine, StockMovement
from stockledger.permissions import Actor, Permission, ensure_permission
from stockledger.workflow import MOVEMENT_FLOW


logger = logging.getLogger(__name__)


@dataclass
class PreparedLine:
    line: MovementLine
    label: str
    effects: list[Effect]


def _line_field(index: int, name: str) -> str:
    return f"lines[{index}].{name}"


def _validate_location(db: Session, location_id: int | None, *, field: str, side: str) -> Location:
    if location_id is None:
        raise ValidationError(f"A {side} location is required.", field=field)
    location = db.get(Location, location_id)
    if not location:
        raise NotFoundError("Location", location_id, field=field)
    if not location.is_active or location.deleted_at is not None:
        raise ValidationError(f"Location {location.code} is inactive.", field=field)
    return location


def prepare_lines(db: Session, movement_type: str, lines: list[MovementLine]) -> list[PreparedLine]:
    rules_for(movement_type)
    if not lines:
        raise ValidationError("A movement needs at least one line.", field="lines")

    required = REQUIRED_SIDES[movement_type]
    prepared: list[PreparedLine] = []
    for index, line in enumerate(lines):
        product, variant = resolve_item(db, line.product_id, line.variant_id, field_prefix=f"lines[{index}].")
        sku = variant.sku if variant else product.sku

        qty = Decimal(line.qty if line.qty is not None else 0)
        if movement_type == "ADJUST":
            if qty == 0:
                raise ValidationError("Adjustment quantity cannot be zero.", field=_line_field(index, "qty"))
        elif qty <= 0:
            raise ValidationError("Quantity must be greater than zero.", field=_line_field(index, "qty"))

        locations = {}
        if "from" in required:
            locations["from"] = _validate_location(
                db, line.from_location_id, field=_line_field(index, "from_location_id"), side="source"
            )
        if "to" in required:
            locations["to"] = _validate_location(
                db, line.to_location_id, field=_line_field(index, "to_location_id"), side="destination"
            )
        if movement_type == "TRANSFER" and line.from_location_id == line.to_location_id:
            raise ValidationError(
                "Transfer source and destination must differ.", field=_line_field(index, "to_location_id")
            )

        if line.lot_id is not None:
            lot = db.get(Lot, line.lot_id)
            if not lot:
                raise NotFoundError("Lot", line.lot_id, field=_line_field(index, "lot_id"))
            if lot.product_id != product.id or (lot.variant_id is not None and lot.variant_id != line.variant_id):
                raise IntegrityViolationError(
                    f"Lot {lot.lot_number} does not belong to {sku}.", field=_line_field(index, "lot_id")
                )

        location_code = "/".join(location.code for location in locations.values())
        prepared.append(
            PreparedLine(
                line=line,
                label=f"{sku} @ {location_code}",
                effects=line_effects(
                    movement_type,
                    qty=qty,
                    from_location_id=line.from_location_id,
                    to_location_id=line.to_location_id,
                ),
            )
        )
    return prepared


def _balance_keys(prepared: list[PreparedLine]) -> list[tuple[int, int | None, int]]:
    keys = []
    for item in prepared:
        for effect in item.effects:
            key = (item.line.product_id, item.line.variant_id, effect.location_id)
            if key not in keys:
                keys.append(key)
    return keys


def _snapshot(db: Session, keys) -> dict:
    return {
        key: get_balance(db, product_id=key[0], variant_id=key[1], location_id=key[2])
        for key in keys
    }


def apply_movement(
    db: Session,
    movement: StockMovement,
    *,
    posted_by_id: int | None,
    now: datetime | None = None,
) -> StockMovement:
    """Post ``movement`` without a permission check; document workflows call this directly."""
    MOVEMENT_FLOW.target("post", movement.status)
    prepared = prepare_lines(db, movement.type, list(movement.lines))

    # Core statements below bypass the unit of work.
    db.flush()
    keys = _balance_keys(prepared)
    before = _snapshot(db, keys)

    allow_negative = get_settings().allow_negative_stock
    posted_at = now or datetime.utcnow()
    for item in prepared:
        for effect in item.effects:
            apply_delta(
                db,
                product_id=item.line.product_id,
                variant_id=item.line.variant_id,
                location_id=effect.location_id,
                delta=effect.delta,
                allow_negative=allow_negative,
                label=item.label,
                now=posted_at,
            )
            if item.line.lot_id is not None:
                apply_lot_delta(
                    db,
                    lot_id=item.line.lot_id,
                    location_id=effect.location_id,
                    delta=effect.delta,
                    allow_negative=allow_negative,
                    label=item.label,
                )

    after = _snapshot(db, keys)
    old_status = movement.status
    movement.status = MOVEMENT_FLOW.target("post", old_status)
    movement.posted_at = posted_at
    movement.posted_by_id = posted_by_id
    db.flush()

    logger.info(
        "Posted movement %s (%s) with %s lines touching %s balances",
        movement.doc_number,
        movement.type,
        len(prepared),
        len(keys),
    )
    emit_audit(
        db,
        actor_id=posted_by_id,
        action="POST",
        ref_type="MOVEMENT",
        ref_id=movement.id,
        old_data={"status": old_status},
        new_data={
            "status": movement.status,
            "doc_number": movement.doc_number,
            "type": movement.type,
            "balances": [
                {
                    "product_id": key[0],
                    "variant_id": key[1],
                    "location_id": key[2],
                    "before": str(before[key]),
                    "after": str(after[key]),
                }
                for key in keys
            ],
        },
    )
    emit_notification(
        db,
        event_type="movement_posted",
        title=f"Movement {movement.doc_number} posted",
        message=f"{movement.type} movement {movement.doc_number} has been posted to stock.",
        url=f"{get_settings().app_url}/movements/{movement.id}",
        target_user_ids=[movement.created_by_id],
    )
    return movement


def post_movement(db: Session, movement_id: int, *, actor: Actor, now: datetime | None = None) -> StockMovement:
    ensure_permission(actor, Permission.MOVEMENTS_APPROVE)
    movement = (
        db.query(StockMovement)
        .options(selectinload(StockMovement.lines))
        .filter(StockMovement.id == movement_id)
        .with_for_update()
        .first()
    )
    if not movement:
        raise NotFoundError("Movement", movement_id)
    return apply_movement(db, movement, posted_by_id=actor.id, now=now)
