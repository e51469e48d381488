from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from stockledger.errors import InsufficientStockError
from stockledger.models import LotBalance, StockBalance
from stockledger.utils.money import quantize_qty


logger = logging.getLogger(__name__)


def _insert_for(db: Session):
    dialect_name = db.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert
    # SQLite/test fallback
    return sqlite.insert


def _balance_key(product_id: int, variant_id: int | None, location_id: int) -> list:
    variant_clause = StockBalance.variant_id.is_(None) if variant_id is None else StockBalance.variant_id == variant_id
    return [
        StockBalance.product_id == product_id,
        variant_clause,
        StockBalance.location_id == location_id,
    ]


def get_balance(db: Session, *, product_id: int, variant_id: int | None, location_id: int) -> Decimal:
    qty = db.execute(
        select(StockBalance.qty_on_hand).where(*_balance_key(product_id, variant_id, location_id))
    ).scalar()
    return quantize_qty(qty)


def get_lot_balance(db: Session, *, lot_id: int, location_id: int) -> Decimal:
    qty = db.execute(
        select(LotBalance.qty_on_hand).where(LotBalance.lot_id == lot_id, LotBalance.location_id == location_id)
    ).scalar()
    return quantize_qty(qty)


def increment_balance(
    db: Session,
    *,
    product_id: int,
    variant_id: int | None,
    location_id: int,
    delta: Decimal,
    now: datetime | None = None,
) -> None:
    """Add ``delta`` (may be negative) to a balance row, creating it on first touch.

    One ``INSERT ... ON CONFLICT DO UPDATE`` statement, targeting whichever partial
    unique index matches the key, so concurrent posters never lose an update.
    """
    timestamp = now or datetime.utcnow()
    insert = _insert_for(db)
    stmt = insert(StockBalance).values(
        product_id=product_id,
        variant_id=variant_id,
        location_id=location_id,
        qty_on_hand=delta,
        updated_at=timestamp,
    )
    if variant_id is None:
        index_elements = ["product_id", "location_id"]
        index_where = StockBalance.variant_id.is_(None)
    else:
        index_elements = ["product_id", "variant_id", "location_id"]
        index_where = StockBalance.variant_id.isnot(None)
    stmt = stmt.on_conflict_do_update(
        index_elements=index_elements,
        index_where=index_where,
        set_={
            "qty_on_hand": StockBalance.qty_on_hand + stmt.excluded.qty_on_hand,
            "updated_at": timestamp,
        },
    )
    db.execute(stmt)
    logger.debug(
        "Balance upsert: product_id=%s variant_id=%s location_id=%s delta=%s",
        product_id,
        variant_id,
        location_id,
        delta,
    )


def decrement_balance(
    db: Session,
    *,
    product_id: int,
    variant_id: int | None,
    location_id: int,
    qty: Decimal,
    allow_negative: bool = False,
    label: str | None = None,
    now: datetime | None = None,
) -> None:
    if allow_negative:
        increment_balance(
            db,
            product_id=product_id,
            variant_id=variant_id,
            location_id=location_id,
            delta=-qty,
            now=now,
        )
        return

    result = db.execute(
        update(StockBalance)
        .where(*_balance_key(product_id, variant_id, location_id), StockBalance.qty_on_hand >= qty)
        .values(qty_on_hand=StockBalance.qty_on_hand - qty, updated_at=now or datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        available = get_balance(db, product_id=product_id, variant_id=variant_id, location_id=location_id)
        raise InsufficientStockError(
            label or f"product #{product_id} at location #{location_id}",
            available,
            quantize_qty(qty),
            field="qty",
        )


def apply_delta(
    db: Session,
    *,
    product_id: int,
    variant_id: int | None,
    location_id: int,
    delta: Decimal,
    allow_negative: bool = False,
    label: str | None = None,
    now: datetime | None = None,
) -> None:
    if delta < 0:
        decrement_balance(
            db,
            product_id=product_id,
            variant_id=variant_id,
            location_id=location_id,
            qty=-delta,
            allow_negative=allow_negative,
            label=label,
            now=now,
        )
    elif delta > 0:
        increment_balance(
            db,
            product_id=product_id,
            variant_id=variant_id,
            location_id=location_id,
            delta=delta,
            now=now,
        )


def apply_lot_delta(
    db: Session,
    *,
    lot_id: int,
    location_id: int,
    delta: Decimal,
    allow_negative: bool = False,
    label: str | None = None,
) -> None:
    if delta < 0 and not allow_negative:
        qty = -delta
        result = db.execute(
            update(LotBalance)
            .where(LotBalance.lot_id == lot_id, LotBalance.location_id == location_id, LotBalance.qty_on_hand >= qty)
            .values(qty_on_hand=LotBalance.qty_on_hand - qty)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InsufficientStockError(
                label or f"lot #{lot_id} at location #{location_id}",
                get_lot_balance(db, lot_id=lot_id, location_id=location_id),
                quantize_qty(qty),
                field="lot_id",
            )
        return

    insert = _insert_for(db)
    stmt = insert(LotBalance).values(lot_id=lot_id, location_id=location_id, qty_on_hand=delta)
    stmt = stmt.on_conflict_do_update(
        index_elements=["lot_id", "location_id"],
        set_={"qty_on_hand": LotBalance.qty_on_hand + stmt.excluded.qty_on_hand},
    )
    db.execute(stmt)
