from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from stockledger.db import Base


MOVEMENT_TYPES = ("RECEIVE", "ISSUE", "TRANSFER", "ADJUST", "RETURN")
MOVEMENT_STATUSES = ("DRAFT", "POSTED", "CANCELLED")
STOCK_TYPES = ("STOCKED", "MADE_TO_ORDER", "DROP_SHIP")
PR_STATUSES = ("DRAFT", "SUBMITTED", "APPROVED", "REJECTED", "CONVERTED", "CANCELLED")
PO_STATUSES = (
    "DRAFT",
    "SUBMITTED",
    "APPROVED",
    "REJECTED",
    "SENT",
    "IN_PROGRESS",
    "PARTIALLY_RECEIVED",
    "FULLY_RECEIVED",
    "CANCELLED",
)
GRN_STATUSES = ("DRAFT", "POSTED", "CANCELLED")
ROLES = ("ADMIN", "INVENTORY", "PURCHASING", "REQUESTER", "APPROVER", "VIEWER")

MERGE_REWRITE = "MERGE_REWRITE"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(200), nullable=False)
    role = Column(Enum(*ROLES, name="user_role"), nullable=False, default="REQUESTER")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(Integer, primary_key=True)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    locations = relationship("Location", back_populates="warehouse")


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False)
    code = Column(String(50), nullable=False)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    warehouse = relationship("Warehouse", back_populates="locations")

    __table_args__ = (
        UniqueConstraint("warehouse_id", "code", name="uq_location_warehouse_code"),
    )


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), unique=True, nullable=False)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    sku = Column(String(100), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    standard_cost = Column(Numeric(14, 2), nullable=False, default=0)
    last_cost = Column(Numeric(14, 2), nullable=True)
    reorder_point = Column(Numeric(14, 2), nullable=True)
    stock_type = Column(Enum(*STOCK_TYPES, name="stock_type"), nullable=False, default="STOCKED")
    has_variants = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    category = relationship("Category")
    variants = relationship("ProductVariant", back_populates="product")


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    sku = Column(String(100), unique=True, nullable=False)
    name = Column(String(200), nullable=True)
    cost_price = Column(Numeric(14, 2), nullable=True)
    last_cost = Column(Numeric(14, 2), nullable=True)
    reorder_point = Column(Numeric(14, 2), nullable=True)
    stock_type = Column(Enum(*STOCK_TYPES, name="stock_type"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    product = relationship("Product", back_populates="variants")

    @property
    def effective_stock_type(self):
        if self.stock_type:
            return self.stock_type
        return self.product.stock_type if self.product else "STOCKED"


class Lot(Base):
    __tablename__ = "lots"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    lot_number = Column(String(100), nullable=False)
    expiry_date = Column(Date, nullable=True)
    manufactured_date = Column(Date, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("product_id", "lot_number", name="uq_lot_product_number"),
    )


class LotBalance(Base):
    __tablename__ = "lot_balances"

    id = Column(Integer, primary_key=True)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    qty_on_hand = Column(Numeric(14, 2), nullable=False, default=0)

    lot = relationship("Lot")

    __table_args__ = (
        UniqueConstraint("lot_id", "location_id", name="uq_lot_balance_lot_location"),
    )


class StockBalance(Base):
    __tablename__ = "stock_balances"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    qty_on_hand = Column(Numeric(14, 2), nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    product = relationship("Product")
    variant = relationship("ProductVariant")
    location = relationship("Location")

    # NULL variants never collide in a plain unique constraint, so the key is split
    # into two partial indexes.
    __table_args__ = (
        Index(
            "uq_stock_balance_product_location",
            "product_id",
            "location_id",
            unique=True,
            postgresql_where=variant_id.is_(None),
            sqlite_where=variant_id.is_(None),
        ),
        Index(
            "uq_stock_balance_product_variant_location",
            "product_id",
            "variant_id",
            "location_id",
            unique=True,
            postgresql_where=variant_id.isnot(None),
            sqlite_where=variant_id.isnot(None),
        ),
    )


class DocSequence(Base):
    __tablename__ = "doc_sequences"

    id = Column(Integer, primary_key=True)
    doc_type = Column(String(30), unique=True, nullable=False)
    prefix = Column(String(20), nullable=False)
    current_no = Column(Integer, nullable=False, default=0)
    pad_length = Column(Integer, nullable=False, default=4)


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True)
    doc_number = Column(String(40), unique=True, nullable=False)
    type = Column(Enum(*MOVEMENT_TYPES, name="movement_type"), nullable=False)
    status = Column(Enum(*MOVEMENT_STATUSES, name="movement_status"), nullable=False, default="DRAFT")
    ref_type = Column(String(30), nullable=True)
    ref_id = Column(Integer, nullable=True)
    note = Column(Text, nullable=True)
    reason = Column(String(255), nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    posted_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    posted_at = Column(DateTime, nullable=True, index=True)

    lines = relationship(
        "MovementLine",
        back_populates="movement",
        cascade="all, delete-orphan",
        order_by="MovementLine.id",
    )


class MovementLine(Base):
    __tablename__ = "movement_lines"

    id = Column(Integer, primary_key=True)
    movement_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True, index=True)
    from_location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    to_location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=True)
    qty = Column(Numeric(14, 2), nullable=False)
    unit_cost = Column(Numeric(14, 2), nullable=True)
    order_ref = Column(String(100), nullable=True, index=True)
    note = Column(Text, nullable=True)
    rewrite_tag = Column(String(30), nullable=True)
    original_variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    rewritten_at = Column(DateTime, nullable=True)

    movement = relationship("StockMovement", back_populates="lines")
    product = relationship("Product")
    variant = relationship("ProductVariant", foreign_keys=[variant_id])
    lot = relationship("Lot")


class PurchaseRequest(Base):
    __tablename__ = "purchase_requests"

    id = Column(Integer, primary_key=True)
    pr_number = Column(String(40), unique=True, nullable=False)
    status = Column(Enum(*PR_STATUSES, name="purchase_request_status"), nullable=False, default="DRAFT")
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    approver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_reason = Column(Text, nullable=True)
    need_by_date = Column(Date, nullable=True)
    priority = Column(String(20), nullable=False, default="NORMAL")
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    lines = relationship(
        "PurchaseRequestLine",
        back_populates="purchase_request",
        cascade="all, delete-orphan",
        order_by="PurchaseRequestLine.id",
    )


class PurchaseRequestLine(Base):
    __tablename__ = "purchase_request_lines"

    id = Column(Integer, primary_key=True)
    pr_id = Column(Integer, ForeignKey("purchase_requests.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    qty = Column(Numeric(14, 2), nullable=False)
    note = Column(Text, nullable=True)

    purchase_request = relationship("PurchaseRequest", back_populates="lines")
    product = relationship("Product")
    variant = relationship("ProductVariant")


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(Integer, primary_key=True)
    po_number = Column(String(40), unique=True, nullable=False)
    pr_id = Column(Integer, ForeignKey("purchase_requests.id"), nullable=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    status = Column(Enum(*PO_STATUSES, name="purchase_order_status"), nullable=False, default="DRAFT")
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    approved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    order_date = Column(Date, nullable=False)
    expected_date = Column(Date, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    supplier = relationship("Supplier")
    purchase_request = relationship("PurchaseRequest")
    lines = relationship(
        "PurchaseOrderLine",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )
    timeline = relationship(
        "PurchaseOrderTimeline",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderTimeline.id",
    )
    receipts = relationship("GoodsReceipt", back_populates="purchase_order")


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"

    id = Column(Integer, primary_key=True)
    po_id = Column(Integer, ForeignKey("purchase_orders.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    qty_ordered = Column(Numeric(14, 2), nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False, default=0)
    qty_received = Column(Numeric(14, 2), nullable=False, default=0)
    note = Column(Text, nullable=True)

    purchase_order = relationship("PurchaseOrder", back_populates="lines")
    product = relationship("Product")
    variant = relationship("ProductVariant")

    @property
    def qty_outstanding(self):
        return Decimal(self.qty_ordered or 0) - Decimal(self.qty_received or 0)


class PurchaseOrderTimeline(Base):
    __tablename__ = "purchase_order_timeline"

    id = Column(Integer, primary_key=True)
    po_id = Column(Integer, ForeignKey("purchase_orders.id"), nullable=False)
    action = Column(String(100), nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    purchase_order = relationship("PurchaseOrder", back_populates="timeline")


class GoodsReceipt(Base):
    __tablename__ = "goods_receipts"

    id = Column(Integer, primary_key=True)
    grn_number = Column(String(40), unique=True, nullable=False)
    po_id = Column(Integer, ForeignKey("purchase_orders.id"), nullable=False)
    status = Column(Enum(*GRN_STATUSES, name="goods_receipt_status"), nullable=False, default="DRAFT")
    received_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    posted_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    posted_at = Column(DateTime, nullable=True)
    movement_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    purchase_order = relationship("PurchaseOrder", back_populates="receipts")
    movement = relationship("StockMovement")
    lines = relationship(
        "GoodsReceiptLine",
        back_populates="goods_receipt",
        cascade="all, delete-orphan",
        order_by="GoodsReceiptLine.id",
    )


class GoodsReceiptLine(Base):
    __tablename__ = "goods_receipt_lines"

    id = Column(Integer, primary_key=True)
    grn_id = Column(Integer, ForeignKey("goods_receipts.id"), nullable=False)
    po_line_id = Column(Integer, ForeignKey("purchase_order_lines.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    lot_id = Column(Integer, ForeignKey("lots.id"), nullable=True)
    qty_received = Column(Numeric(14, 2), nullable=False)
    unit_cost = Column(Numeric(14, 2), nullable=False, default=0)
    note = Column(Text, nullable=True)

    goods_receipt = relationship("GoodsReceipt", back_populates="lines")
    po_line = relationship("PurchaseOrderLine")
