from datetime import date
from decimal import Decimal

import pytest

from stockledger.errors import ValidationError
from stockledger.inventory.queries import expired_lots, expiring_lots
from stockledger.models import Lot
from stockledger.tests.factories import create_location, create_product, create_session, create_variant, post, receive

TODAY = date(2026, 6, 1)


def add_lot(db, product, lot_number, expiry_date, *, variant=None):
    lot = Lot(
        product_id=product.id,
        variant_id=variant.id if variant else None,
        lot_number=lot_number,
        expiry_date=expiry_date,
    )
    db.add(lot)
    db.flush()
    return lot


def cold_room(db):
    bin_a = create_location(db, "A")
    bin_b = create_location(db, "B")
    milk = create_product(db, sku="MILK", name="Milk")
    yogurt = create_product(db, sku="YOG", name="Yogurt")
    strawberry = create_variant(db, yogurt, "YOG-STRAW")

    soon = add_lot(db, milk, "M-0601", date(2026, 6, 1))
    receive(db, milk, bin_a, "3", lot_id=soon.id)
    receive(db, milk, bin_b, "2", lot_id=soon.id)

    later = add_lot(db, yogurt, "Y-0620", date(2026, 6, 20), variant=strawberry)
    receive(db, yogurt, bin_a, "6", variant=strawberry, lot_id=later.id)

    far = add_lot(db, milk, "M-0901", date(2026, 9, 1))
    receive(db, milk, bin_a, "4", lot_id=far.id)

    stale = add_lot(db, milk, "M-0520", date(2026, 5, 20))
    receive(db, milk, bin_a, "1", lot_id=stale.id)

    used_up = add_lot(db, milk, "M-0525", date(2026, 5, 25))
    receive(db, milk, bin_a, "2", lot_id=used_up.id)
    post(db, "ISSUE", [{"product_id": milk.id, "from_location_id": bin_a.id, "lot_id": used_up.id, "qty": Decimal("2")}])

    add_lot(db, milk, "M-NONE", date(2026, 6, 2))
    db.commit()
    return strawberry


def test_expiring_lots_sum_stock_across_locations():
    db = create_session()
    strawberry = cold_room(db)

    rows = expiring_lots(db, 30, today=TODAY)

    assert [(row.lot_number, row.qty_on_hand, row.location_count, row.days) for row in rows] == [
        ("M-0601", Decimal("5.00"), 2, 0),
        ("Y-0620", Decimal("6.00"), 1, 19),
    ]
    assert rows[1].sku == "YOG-STRAW"
    assert rows[1].variant_id == strawberry.id


def test_expiry_window_is_inclusive():
    db = create_session()
    cold_room(db)

    assert [row.lot_number for row in expiring_lots(db, 0, today=TODAY)] == ["M-0601"]
    assert [row.lot_number for row in expiring_lots(db, 92, today=TODAY)] == ["M-0601", "Y-0620", "M-0901"]


def test_expired_lots_only_list_remaining_stock():
    db = create_session()
    cold_room(db)

    rows = expired_lots(db, today=TODAY)

    assert [(row.lot_number, row.qty_on_hand, row.days) for row in rows] == [("M-0520", Decimal("1.00"), 12)]


def test_expiry_window_must_be_sensible():
    db = create_session()

    with pytest.raises(ValidationError):
        expiring_lots(db, -1)
    with pytest.raises(ValidationError):
        expiring_lots(db, 5000)
