from decimal import Decimal

import pytest

from stockledger.errors import ValidationError
from stockledger.inventory.queries import list_stock_balances, low_stock
from stockledger.tests.factories import (
    create_category,
    create_location,
    create_product,
    create_session,
    create_variant,
    post,
    receive,
)


def stock_floor(db):
    bin_a = create_location(db, "A")
    bin_b = create_location(db, "B")
    tools = create_category(db, name="Tools")

    widget = create_product(db, sku="WID-1", name="Widget", reorder_point=Decimal("10"), category=tools)
    receive(db, widget, bin_a, "4")
    receive(db, widget, bin_b, "3")
    post(db, "ISSUE", [{"product_id": widget.id, "from_location_id": bin_b.id, "qty": Decimal("3")}])

    plenty = create_product(db, sku="GAD-1", name="Gadget", reorder_point=Decimal("5"))
    receive(db, plenty, bin_a, "8")

    custom = create_product(db, sku="MTO-1", name="Custom Desk", reorder_point=Decimal("10"), stock_type="MADE_TO_ORDER")
    receive(db, custom, bin_a, "2")

    untracked = create_product(db, sku="BOLT-1", name="Bolt")
    receive(db, untracked, bin_a, "1")

    shirt = create_product(db, sku="SHIRT", name="Shirt", reorder_point=Decimal("2"))
    red = create_variant(db, shirt, "SHIRT-RED", reorder_point=Decimal("20"))
    blue = create_variant(db, shirt, "SHIRT-BLUE")
    print_on_demand = create_variant(db, shirt, "SHIRT-POD", stock_type="MADE_TO_ORDER")
    receive(db, shirt, bin_a, "6", variant=red)
    receive(db, shirt, bin_a, "6", variant=blue)
    receive(db, shirt, bin_a, "1", variant=print_on_demand)
    return widget, red, tools


def test_low_stock_applies_reorder_points_and_stock_types():
    db = create_session()
    _, red, _ = stock_floor(db)

    page = low_stock(db, sort="qty")

    assert page.total == 2
    assert [(row.sku, row.location_code, row.qty_on_hand) for row in page.rows] == [
        ("WID-1", "A", Decimal("4.00")),
        ("SHIRT-RED", "A", Decimal("6.00")),
    ]
    assert page.rows[0].shortage == Decimal("6.00")
    assert page.rows[1].reorder_point == Decimal("20.00")
    assert page.rows[1].variant_id == red.id


def test_balance_exactly_at_reorder_point_is_low():
    db = create_session()
    bin_a = create_location(db, "A")
    product = create_product(db, reorder_point=Decimal("5"))
    receive(db, product, bin_a, "5")

    rows = low_stock(db).rows

    assert [row.qty_on_hand for row in rows] == [Decimal("5.00")]
    assert rows[0].shortage == Decimal("0")


def test_inactive_locations_and_products_are_hidden():
    db = create_session()
    widget, _, _ = stock_floor(db)
    closed = create_location(db, "OLD")
    receive(db, widget, closed, "1")
    closed.is_active = False
    db.commit()

    assert [row.location_code for row in low_stock(db, search="WID").rows] == ["A"]

    widget.is_active = False
    db.commit()
    assert [row.sku for row in low_stock(db).rows] == ["SHIRT-RED"]


def test_low_stock_filters_sorting_and_pages():
    db = create_session()
    _, _, tools = stock_floor(db)

    by_category = low_stock(db, category_id=tools.id)
    by_search = low_stock(db, search="red")
    by_qty_desc = low_stock(db, sort="qty", direction="desc")
    second_page = low_stock(db, sort="sku", page=2, page_size=1)

    assert [row.sku for row in by_category.rows] == ["WID-1"]
    assert [row.sku for row in by_search.rows] == ["SHIRT-RED"]
    assert [row.sku for row in by_qty_desc.rows] == ["SHIRT-RED", "WID-1"]
    assert second_page.total == 2
    assert [row.sku for row in second_page.rows] == ["WID-1"]


def test_bad_query_arguments_are_rejected():
    db = create_session()

    with pytest.raises(ValidationError):
        low_stock(db, sort="price")
    with pytest.raises(ValidationError):
        low_stock(db, direction="sideways")
    with pytest.raises(ValidationError):
        low_stock(db, page=0)
    with pytest.raises(ValidationError):
        low_stock(db, page_size=500)


def test_balance_listing_shows_everything_on_hand():
    db = create_session()
    stock_floor(db)

    page = list_stock_balances(db, page_size=100)

    assert page.total == 7
    assert "WID-1" in {row.sku for row in page.rows}
    assert all(row.qty_on_hand > 0 for row in page.rows)
