from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
import logging
from typing import Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Query, Session

from stockledger.errors import ValidationError
from stockledger.models import Category, Location, Lot, LotBalance, Product, ProductVariant, StockBalance, Warehouse
from stockledger.utils.money import quantize_qty


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200
MAX_EXPIRY_WINDOW_DAYS = 3650


@dataclass
class BalanceRow:
    balance_id: int
    product_id: int
    variant_id: int | None
    location_id: int
    sku: str
    name: str
    variant_name: str | None
    category: str | None
    warehouse_code: str
    warehouse_name: str
    location_code: str
    stock_type: str
    qty_on_hand: Decimal
    reorder_point: Decimal

    @property
    def shortage(self) -> Decimal:
        return max(self.reorder_point - self.qty_on_hand, Decimal("0"))


@dataclass
class BalancePage:
    rows: list[BalanceRow]
    total: int
    page: int
    page_size: int


def _reorder_point():
    return func.coalesce(ProductVariant.reorder_point, Product.reorder_point, 0)


def _stock_type():
    return func.coalesce(ProductVariant.stock_type, Product.stock_type)


def _sku():
    return func.coalesce(ProductVariant.sku, Product.sku)


SORT_COLUMNS = {
    "sku": _sku,
    "name": lambda: Product.name,
    "category": lambda: Category.name,
    "warehouse": lambda: Warehouse.code,
    "location": lambda: Location.code,
    "qty": lambda: StockBalance.qty_on_hand,
    "rop": _reorder_point,
}


def _base_query(db: Session, *columns) -> Query:
    return (
        db.query(*columns)
        .select_from(StockBalance)
        .join(Product, Product.id == StockBalance.product_id)
        .outerjoin(ProductVariant, ProductVariant.id == StockBalance.variant_id)
        .join(Location, Location.id == StockBalance.location_id)
        .join(Warehouse, Warehouse.id == Location.warehouse_id)
        .outerjoin(Category, Category.id == Product.category_id)
        .filter(
            Product.is_active.is_(True),
            Product.deleted_at.is_(None),
            or_(
                StockBalance.variant_id.is_(None),
                and_(ProductVariant.is_active.is_(True), ProductVariant.deleted_at.is_(None)),
            ),
            Location.is_active.is_(True),
            Location.deleted_at.is_(None),
            StockBalance.qty_on_hand > 0,
        )
    )


def _apply_filters(
    query: Query,
    *,
    search: Optional[str],
    category_id: Optional[int],
    warehouse_id: Optional[int],
    low_stock_only: bool,
) -> Query:
    if low_stock_only:
        query = query.filter(
            _reorder_point() > 0,
            StockBalance.qty_on_hand <= _reorder_point(),
            _stock_type() == "STOCKED",
        )
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Product.sku.ilike(term),
                Product.name.ilike(term),
                ProductVariant.sku.ilike(term),
                ProductVariant.name.ilike(term),
            )
        )
    if category_id:
        query = query.filter(Product.category_id == category_id)
    if warehouse_id:
        query = query.filter(Location.warehouse_id == warehouse_id)
    return query


def _page_args(page: int, page_size: int) -> tuple[int, int]:
    if page < 1:
        raise ValidationError("Page must be 1 or greater.", field="page")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ValidationError(f"Page size must be between 1 and {MAX_PAGE_SIZE}.", field="page_size")
    return page, page_size


def _query_balances(
    db: Session,
    *,
    low_stock_only: bool,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    sort: str = "sku",
    direction: str = "asc",
    page: int = 1,
    page_size: int = 50,
) -> BalancePage:
    page, page_size = _page_args(page, page_size)
    if sort not in SORT_COLUMNS:
        raise ValidationError(f"Unknown sort column '{sort}'.", field="sort")
    if direction not in {"asc", "desc"}:
        raise ValidationError("Sort direction must be 'asc' or 'desc'.", field="direction")
    filters = dict(search=search, category_id=category_id, warehouse_id=warehouse_id, low_stock_only=low_stock_only)

    total = _apply_filters(_base_query(db, func.count(StockBalance.id)), **filters).scalar() or 0

    sort_column = SORT_COLUMNS[sort]()
    order = sort_column.desc() if direction == "desc" else sort_column.asc()
    rows = (
        _apply_filters(
            _base_query(
                db,
                StockBalance.id,
                StockBalance.product_id,
                StockBalance.variant_id,
                StockBalance.location_id,
                _sku().label("sku"),
                Product.name,
                ProductVariant.name.label("variant_name"),
                Category.name.label("category_name"),
                Warehouse.code.label("warehouse_code"),
                Warehouse.name.label("warehouse_name"),
                Location.code.label("location_code"),
                _stock_type().label("stock_type"),
                StockBalance.qty_on_hand,
                _reorder_point().label("reorder_point"),
            ),
            **filters,
        )
        .order_by(order, StockBalance.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    logger.debug(
        "Balance query: low_stock_only=%s sort=%s %s page=%s total=%s",
        low_stock_only,
        sort,
        direction,
        page,
        total,
    )
    return BalancePage(
        rows=[
            BalanceRow(
                balance_id=row.id,
                product_id=row.product_id,
                variant_id=row.variant_id,
                location_id=row.location_id,
                sku=row.sku,
                name=row.name,
                variant_name=row.variant_name,
                category=row.category_name,
                warehouse_code=row.warehouse_code,
                warehouse_name=row.warehouse_name,
                location_code=row.location_code,
                stock_type=row.stock_type,
                qty_on_hand=quantize_qty(row.qty_on_hand),
                reorder_point=quantize_qty(row.reorder_point),
            )
            for row in rows
        ],
        total=total,
        page=page,
        page_size=page_size,
    )


def low_stock(db: Session, **kwargs) -> BalancePage:
    """Balances at or under their reorder point, for effectively STOCKED SKUs only."""
    return _query_balances(db, low_stock_only=True, **kwargs)


def list_stock_balances(db: Session, **kwargs) -> BalancePage:
    return _query_balances(db, low_stock_only=False, **kwargs)


@dataclass
class LotExpiryRow:
    lot_id: int
    lot_number: str
    product_id: int
    variant_id: int | None
    sku: str
    name: str
    expiry_date: date
    qty_on_hand: Decimal
    location_count: int
    days: int


def _lots_with_stock(db: Session) -> Query:
    on_hand = func.sum(LotBalance.qty_on_hand)
    return (
        db.query(
            Lot.id,
            Lot.lot_number,
            Lot.product_id,
            Lot.variant_id,
            func.coalesce(ProductVariant.sku, Product.sku),
            Product.name,
            Lot.expiry_date,
            on_hand,
            func.count(LotBalance.id),
        )
        .join(LotBalance, and_(LotBalance.lot_id == Lot.id, LotBalance.qty_on_hand > 0))
        .join(Product, Product.id == Lot.product_id)
        .outerjoin(ProductVariant, ProductVariant.id == Lot.variant_id)
        .filter(Lot.expiry_date.isnot(None))
        .group_by(
            Lot.id,
            Lot.lot_number,
            Lot.product_id,
            Lot.variant_id,
            ProductVariant.sku,
            Product.sku,
            Product.name,
            Lot.expiry_date,
        )
        .order_by(Lot.expiry_date.asc(), Lot.lot_number.asc())
    )


def _expiry_rows(rows, today: date, *, expired: bool) -> list[LotExpiryRow]:
    return [
        LotExpiryRow(
            lot_id=lot_id,
            lot_number=lot_number,
            product_id=product_id,
            variant_id=variant_id,
            sku=sku,
            name=name,
            expiry_date=expiry_date,
            qty_on_hand=quantize_qty(qty),
            location_count=location_count,
            days=(today - expiry_date).days if expired else (expiry_date - today).days,
        )
        for lot_id, lot_number, product_id, variant_id, sku, name, expiry_date, qty, location_count in rows
    ]


def expiring_lots(db: Session, days: int = 30, *, today: Optional[date] = None) -> list[LotExpiryRow]:
    """Lots with stock on hand that expire between today and ``days`` from now.

    ``days`` on each row counts down to the expiry date; a lot expiring today shows 0.
    """
    if days < 0 or days > MAX_EXPIRY_WINDOW_DAYS:
        raise ValidationError(f"Days must be between 0 and {MAX_EXPIRY_WINDOW_DAYS}.", field="days")
    today = today or date.today()
    rows = (
        _lots_with_stock(db)
        .filter(Lot.expiry_date >= today, Lot.expiry_date <= today + timedelta(days=days))
        .all()
    )
    return _expiry_rows(rows, today, expired=False)


def expired_lots(db: Session, *, today: Optional[date] = None) -> list[LotExpiryRow]:
    """Lots past their expiry date that still hold stock; ``days`` counts since expiry."""
    today = today or date.today()
    rows = _lots_with_stock(db).filter(Lot.expiry_date < today).all()
    return _expiry_rows(rows, today, expired=True)
