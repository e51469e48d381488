"""Point-in-time stock reconstruction from the movement ledger.

Every view here is built on ``movement_effects``: one row per signed effect of
every line of every POSTED movement before the cutoff, generated from
``EFFECT_RULES`` so the replay and the poster agree on what a movement does.
"""
from calendar import month_abbr
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Iterable, Optional

from sqlalchemy import func, literal, or_, select, union_all
from sqlalchemy.orm import Session

from stockledger.errors import ValidationError
from stockledger.ledger.effects import EFFECT_RULES, FROM
from stockledger.models import (
    Category,
    Location,
    MovementLine,
    Product,
    ProductVariant,
    StockBalance,
    StockMovement,
    Warehouse,
)
from stockledger.utils.money import quantize_money, quantize_qty


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class StockDetailRow:
    product_id: int
    variant_id: int | None
    location_id: int
    sku: str
    name: str
    variant_name: str | None
    category_id: int | None
    category: str | None
    warehouse_id: int
    warehouse_code: str
    warehouse_name: str
    location_code: str
    qty_on_hand: Decimal
    unit_cost: Decimal
    stock_value: Decimal


@dataclass
class StockSummary:
    sku_count: int = 0
    total_qty: Decimal = ZERO
    total_value: Decimal = ZERO


@dataclass
class BalanceDiscrepancy:
    product_id: int
    variant_id: int | None
    location_id: int
    ledger_qty: Decimal
    balance_qty: Decimal

    @property
    def difference(self) -> Decimal:
        return self.balance_qty - self.ledger_qty


@dataclass
class MonthEndSnapshot:
    year: int
    month: int
    label: str
    cutoff: datetime
    rows: list[StockDetailRow] = field(default_factory=list)
    summary: StockSummary = field(default_factory=StockSummary)
    previous_summary: StockSummary = field(default_factory=StockSummary)


@dataclass
class TrendPoint:
    year: int
    month: int
    label: str
    summary: StockSummary


def movement_effects(cutoff: Optional[datetime] = None):
    """CTE of ``(product_id, variant_id, location_id, qty_delta)``; ``cutoff=None`` replays everything."""
    posted_lines = (
        select(
            MovementLine.product_id,
            MovementLine.variant_id,
            MovementLine.from_location_id,
            MovementLine.to_location_id,
            MovementLine.qty,
            StockMovement.type.label("movement_type"),
        )
        .join(StockMovement, StockMovement.id == MovementLine.movement_id)
        .where(StockMovement.status == "POSTED")
    )
    if cutoff is not None:
        posted_lines = posted_lines.where(StockMovement.posted_at < cutoff)
    posted_lines = posted_lines.cte("posted_lines")

    branches = []
    for movement_type, rules in EFFECT_RULES.items():
        for rule in rules:
            location = posted_lines.c.from_location_id if rule.side == FROM else posted_lines.c.to_location_id
            qty_delta = posted_lines.c.qty if rule.sign > 0 else literal(0) - posted_lines.c.qty
            branches.append(
                select(
                    posted_lines.c.product_id,
                    posted_lines.c.variant_id,
                    location.label("location_id"),
                    qty_delta.label("qty_delta"),
                ).where(posted_lines.c.movement_type == movement_type)
            )
    return union_all(*branches).cte("movement_effects")


def _replayed_balances(cutoff: Optional[datetime]):
    effects = movement_effects(cutoff)
    qty = func.sum(effects.c.qty_delta)
    return (
        select(
            effects.c.product_id,
            effects.c.variant_id,
            effects.c.location_id,
            qty.label("qty"),
        )
        .group_by(effects.c.product_id, effects.c.variant_id, effects.c.location_id)
        .having(qty != 0)
        .subquery("replayed")
    )


def _live_balances():
    return (
        select(
            StockBalance.product_id,
            StockBalance.variant_id,
            StockBalance.location_id,
            StockBalance.qty_on_hand.label("qty"),
        )
        .where(StockBalance.qty_on_hand != 0)
        .subquery("live")
    )


def _unit_cost_expr():
    return func.coalesce(ProductVariant.cost_price, Product.standard_cost, 0)


def _active_product_filter():
    return [Product.is_active.is_(True), Product.deleted_at.is_(None)]


def _detail_rows(
    db: Session,
    balances,
    *,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
) -> list[StockDetailRow]:
    query = (
        select(
            balances.c.product_id,
            balances.c.variant_id,
            balances.c.location_id,
            balances.c.qty,
            Product.sku.label("product_sku"),
            Product.name.label("product_name"),
            ProductVariant.sku.label("variant_sku"),
            ProductVariant.name.label("variant_name"),
            Category.id.label("category_id"),
            Category.name.label("category_name"),
            Warehouse.id.label("warehouse_id"),
            Warehouse.code.label("warehouse_code"),
            Warehouse.name.label("warehouse_name"),
            Location.code.label("location_code"),
            _unit_cost_expr().label("unit_cost"),
        )
        .select_from(balances)
        .join(Product, Product.id == balances.c.product_id)
        .outerjoin(ProductVariant, ProductVariant.id == balances.c.variant_id)
        .join(Location, Location.id == balances.c.location_id)
        .join(Warehouse, Warehouse.id == Location.warehouse_id)
        .outerjoin(Category, Category.id == Product.category_id)
        .where(*_active_product_filter())
    )
    if search:
        term = f"%{search.strip()}%"
        query = query.where(
            or_(
                Product.sku.ilike(term),
                Product.name.ilike(term),
                ProductVariant.sku.ilike(term),
                ProductVariant.name.ilike(term),
            )
        )
    if category_id:
        query = query.where(Product.category_id == category_id)
    if warehouse_id:
        query = query.where(Location.warehouse_id == warehouse_id)
    query = query.order_by(Product.sku, ProductVariant.sku, Warehouse.code, Location.code)

    rows = []
    for row in db.execute(query).mappings():
        qty = quantize_qty(row["qty"])
        if qty == 0:
            continue
        unit_cost = quantize_money(row["unit_cost"]) or ZERO
        rows.append(
            StockDetailRow(
                product_id=row["product_id"],
                variant_id=row["variant_id"],
                location_id=row["location_id"],
                sku=row["variant_sku"] or row["product_sku"],
                name=row["product_name"],
                variant_name=row["variant_name"],
                category_id=row["category_id"],
                category=row["category_name"],
                warehouse_id=row["warehouse_id"],
                warehouse_code=row["warehouse_code"],
                warehouse_name=row["warehouse_name"],
                location_code=row["location_code"],
                qty_on_hand=qty,
                unit_cost=unit_cost,
                stock_value=quantize_money(qty * unit_cost),
            )
        )
    return rows


def _summarize(db: Session, balances) -> StockSummary:
    """Totals over (product, variant) groups whose quantity across all locations is nonzero."""
    qty = func.sum(balances.c.qty)
    by_item = (
        select(
            balances.c.product_id,
            balances.c.variant_id,
            qty.label("qty"),
        )
        .group_by(balances.c.product_id, balances.c.variant_id)
        .having(qty != 0)
        .subquery("stock_by_item")
    )
    query = (
        select(by_item.c.product_id, by_item.c.qty, _unit_cost_expr().label("unit_cost"))
        .select_from(by_item)
        .join(Product, Product.id == by_item.c.product_id)
        .outerjoin(ProductVariant, ProductVariant.id == by_item.c.variant_id)
        .where(*_active_product_filter())
    )

    summary = StockSummary()
    product_ids = set()
    for product_id, item_qty, unit_cost in db.execute(query):
        item_qty = quantize_qty(item_qty)
        if item_qty == 0:
            continue
        product_ids.add(product_id)
        summary.total_qty += item_qty
        summary.total_value += item_qty * (quantize_money(unit_cost) or ZERO)
    summary.sku_count = len(product_ids)
    summary.total_qty = quantize_qty(summary.total_qty)
    summary.total_value = quantize_money(summary.total_value)
    return summary


def stock_detail_at(
    db: Session,
    cutoff: Optional[datetime],
    *,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
) -> list[StockDetailRow]:
    return _detail_rows(
        db,
        _replayed_balances(cutoff),
        search=search,
        category_id=category_id,
        warehouse_id=warehouse_id,
    )


def stock_summary_at(db: Session, cutoff: Optional[datetime]) -> StockSummary:
    return _summarize(db, _replayed_balances(cutoff))


def current_detail(db: Session, **filters) -> list[StockDetailRow]:
    return _detail_rows(db, _live_balances(), **filters)


def current_summary(db: Session) -> StockSummary:
    return _summarize(db, _live_balances())


def replay_balances(db: Session, cutoff: Optional[datetime] = None) -> dict[tuple, Decimal]:
    """Raw replayed quantities per (product, variant, location), active or not."""
    balances = _replayed_balances(cutoff)
    result = {}
    for product_id, variant_id, location_id, qty in db.execute(select(balances)):
        qty = quantize_qty(qty)
        if qty != 0:
            result[(product_id, variant_id, location_id)] = qty
    return result


def reconcile_balances(db: Session, at: Optional[datetime] = None) -> list[BalanceDiscrepancy]:
    """Compare the ledger replay against the StockBalance cache, key by key."""
    ledger = replay_balances(db, at)
    live = {}
    for product_id, variant_id, location_id, qty in db.execute(select(_live_balances())):
        qty = quantize_qty(qty)
        if qty != 0:
            live[(product_id, variant_id, location_id)] = qty

    discrepancies = []
    for key in sorted(set(ledger) | set(live), key=lambda k: (k[0], k[1] or 0, k[2])):
        ledger_qty = ledger.get(key, ZERO)
        balance_qty = live.get(key, ZERO)
        if ledger_qty != balance_qty:
            discrepancies.append(
                BalanceDiscrepancy(
                    product_id=key[0],
                    variant_id=key[1],
                    location_id=key[2],
                    ledger_qty=ledger_qty,
                    balance_qty=balance_qty,
                )
            )
    if discrepancies:
        logger.warning("Stock balance reconciliation found %s discrepancies", len(discrepancies))
    return discrepancies


def _validate_month(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12.", field="month")
    if not 1900 <= year <= 9998:
        raise ValidationError("Year is out of range.", field="year")


def month_end_cutoff(year: int, month: int) -> datetime:
    """First instant (UTC) of the month after ``year``/``month``."""
    _validate_month(year, month)
    if month == 12:
        return datetime(year + 1, 1, 1)
    return datetime(year, month + 1, 1)


def previous_month(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def month_label(year: int, month: int) -> str:
    return f"{month_abbr[month]} {year}"


def month_end_snapshot(
    db: Session,
    year: int,
    month: int,
    *,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
) -> MonthEndSnapshot:
    cutoff = month_end_cutoff(year, month)
    rows = stock_detail_at(db, cutoff, search=search, category_id=category_id, warehouse_id=warehouse_id)
    summary = stock_summary_at(db, cutoff)
    prev_year, prev_month = previous_month(year, month)
    previous = stock_summary_at(db, month_end_cutoff(prev_year, prev_month))
    logger.debug(
        "Month-end snapshot %s-%02d: rows=%s sku_count=%s total_qty=%s",
        year,
        month,
        len(rows),
        summary.sku_count,
        summary.total_qty,
    )
    return MonthEndSnapshot(
        year=year,
        month=month,
        label=month_label(year, month),
        cutoff=cutoff,
        rows=rows,
        summary=summary,
        previous_summary=previous,
    )


def _months_back(year: int, month: int, count: int) -> Iterable[tuple[int, int]]:
    months = []
    for _ in range(count):
        months.append((year, month))
        year, month = previous_month(year, month)
    return reversed(months)


def monthly_trend(db: Session, months: int = 6, *, today: Optional[date] = None) -> list[TrendPoint]:
    if months < 1 or months > 36:
        raise ValidationError("Trend length must be between 1 and 36 months.", field="months")
    today = today or datetime.utcnow().date()
    return [
        TrendPoint(
            year=year,
            month=month,
            label=month_label(year, month),
            summary=stock_summary_at(db, month_end_cutoff(year, month)),
        )
        for year, month in _months_back(today.year, today.month, months)
    ]
