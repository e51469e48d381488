from decimal import Decimal

import pytest

from stockledger.errors import IntegrityViolationError, StateConflictError, ValidationError
from stockledger.inventory.service import get_balance, get_lot_balance
from stockledger.ledger.replay import reconcile_balances
from stockledger.models import Lot, StockMovement
from stockledger.purchasing.service import (
    approve_purchase_order,
    create_purchase_order,
    send_purchase_order,
    submit_purchase_order,
)
from stockledger.receiving.service import (
    cancel_goods_receipt,
    create_goods_receipt,
    list_goods_receipts,
    post_goods_receipt,
)
from stockledger.tests.factories import (
    ADMIN,
    create_location,
    create_product,
    create_session,
    create_supplier,
    create_variant,
)


def sent_po(db, product, qty="10", unit_price="4.00", variant=None):
    po = create_purchase_order(
        db,
        {
            "supplier_id": create_supplier(db).id,
            "lines": [
                {
                    "product_id": product.id,
                    "variant_id": variant.id if variant else None,
                    "qty_ordered": Decimal(qty),
                    "unit_price": Decimal(unit_price),
                }
            ],
        },
        actor=ADMIN,
    )
    submit_purchase_order(db, po.id, actor=ADMIN)
    approve_purchase_order(db, po.id, actor=ADMIN)
    send_purchase_order(db, po.id, actor=ADMIN)
    db.commit()
    return po


def receipt_for(db, po, location, qty, **line):
    payload_line = {"po_line_id": po.lines[0].id, "location_id": location.id, "qty_received": Decimal(qty)}
    payload_line.update(line)
    return create_goods_receipt(db, {"po_id": po.id, "lines": [payload_line]}, actor=ADMIN)


def test_partial_then_full_receipt_drives_po_status():
    db = create_session()
    product = create_product(db)
    dock = create_location(db, "DOCK")
    po = sent_po(db, product)

    first = receipt_for(db, po, dock, "4")
    post_goods_receipt(db, first.id, actor=ADMIN)
    db.commit()

    assert first.status == "POSTED"
    assert po.status == "PARTIALLY_RECEIVED"
    assert po.lines[0].qty_received == Decimal("4.00")
    assert get_balance(db, product_id=product.id, variant_id=None, location_id=dock.id) == Decimal("4.00")

    second = receipt_for(db, po, dock, "6")
    post_goods_receipt(db, second.id, actor=ADMIN)
    db.commit()

    assert po.status == "FULLY_RECEIVED"
    assert get_balance(db, product_id=product.id, variant_id=None, location_id=dock.id) == Decimal("10.00")
    assert reconcile_balances(db) == []


def test_posting_creates_a_linked_receive_movement():
    db = create_session()
    product = create_product(db)
    dock = create_location(db, "DOCK")
    po = sent_po(db, product, unit_price="4.50")

    grn = receipt_for(db, po, dock, "3")
    post_goods_receipt(db, grn.id, actor=ADMIN)
    db.commit()

    movement = db.get(StockMovement, grn.movement_id)
    assert movement.type == "RECEIVE"
    assert movement.status == "POSTED"
    assert movement.ref_type == "GRN"
    assert movement.ref_id == grn.id
    assert movement.lines[0].order_ref == po.po_number
    assert movement.lines[0].unit_cost == Decimal("4.50")
    assert grn.posted_by_id == ADMIN.id
    assert product.last_cost == Decimal("4.50")
    assert po.timeline[-1].action == f"Received goods {grn.grn_number}"


def test_over_receipt_is_rejected():
    db = create_session()
    product = create_product(db)
    dock = create_location(db, "DOCK")
    po = sent_po(db, product, qty="5")

    with pytest.raises(ValidationError):
        receipt_for(db, po, dock, "6")


def test_two_drafts_cannot_together_over_receive():
    db = create_session()
    product = create_product(db)
    dock = create_location(db, "DOCK")
    po = sent_po(db, product, qty="5")
    first = receipt_for(db, po, dock, "3")
    second = receipt_for(db, po, dock, "3")
    post_goods_receipt(db, first.id, actor=ADMIN)
    db.commit()

    with pytest.raises(ValidationError):
        post_goods_receipt(db, second.id, actor=ADMIN)


def test_po_must_be_sent_before_receiving():
    db = create_session()
    product = create_product(db)
    dock = create_location(db, "DOCK")
    po = create_purchase_order(
        db,
        {"supplier_id": create_supplier(db).id, "lines": [{"product_id": product.id, "qty_ordered": Decimal("2")}]},
        actor=ADMIN,
    )

    with pytest.raises(StateConflictError):
        receipt_for(db, po, dock, "1")


def test_received_item_must_match_the_order_line():
    db = create_session()
    product = create_product(db)
    other = create_product(db, sku="GAD-1", name="Gadget")
    dock = create_location(db, "DOCK")
    po = sent_po(db, product)

    with pytest.raises(IntegrityViolationError):
        receipt_for(db, po, dock, "1", product_id=other.id)


def test_variant_defaults_from_the_order_line():
    db = create_session()
    product = create_product(db)
    red = create_variant(db, product, "WID-1-RED")
    dock = create_location(db, "DOCK")
    po = sent_po(db, product, variant=red)

    grn = receipt_for(db, po, dock, "2")
    post_goods_receipt(db, grn.id, actor=ADMIN)
    db.commit()

    assert grn.lines[0].variant_id == red.id
    assert get_balance(db, product_id=product.id, variant_id=red.id, location_id=dock.id) == Decimal("2.00")


def test_lot_number_creates_lot_and_lot_balance():
    db = create_session()
    product = create_product(db)
    dock = create_location(db, "DOCK")
    po = sent_po(db, product)

    grn = receipt_for(db, po, dock, "5", lot_number="B-2026-01")
    post_goods_receipt(db, grn.id, actor=ADMIN)
    db.commit()

    lot = db.query(Lot).filter(Lot.lot_number == "B-2026-01").one()
    assert grn.lines[0].lot_id == lot.id
    assert get_lot_balance(db, lot_id=lot.id, location_id=dock.id) == Decimal("5.00")


def test_cancelled_receipt_cannot_be_posted():
    db = create_session()
    product = create_product(db)
    dock = create_location(db, "DOCK")
    po = sent_po(db, product)
    grn = receipt_for(db, po, dock, "2")

    cancel_goods_receipt(db, grn.id, actor=ADMIN, reason="Wrong truck")
    db.commit()

    assert grn.status == "CANCELLED"
    assert grn.note == "[Cancelled] Wrong truck"
    with pytest.raises(StateConflictError):
        post_goods_receipt(db, grn.id, actor=ADMIN)
    assert [item.id for item in list_goods_receipts(db, po_id=po.id, status="CANCELLED")] == [grn.id]


def test_inactive_receiving_location_is_rejected():
    db = create_session()
    product = create_product(db)
    closed = create_location(db, "OLD", is_active=False)
    po = sent_po(db, product)

    with pytest.raises(ValidationError):
        receipt_for(db, po, closed, "1")


def test_negative_unit_cost_is_rejected():
    db = create_session()
    product = create_product(db)
    dock = create_location(db, "DOCK")
    po = sent_po(db, product)

    with pytest.raises(ValidationError) as excinfo:
        receipt_for(db, po, dock, "1", unit_cost=Decimal("-0.01"))

    assert excinfo.value.field == "lines[0].unit_cost"
