from decimal import Decimal

import pytest

from stockledger.errors import ValidationError
from stockledger.inventory.service import get_balance
from stockledger.models import StockMovement
from stockledger.movements.batch import MAX_BATCH_SIZE, batch_cancel_movements, batch_post_movements
from stockledger.movements.service import create_movement
from stockledger.tests.factories import ADMIN, VIEWER, create_location, create_product, create_session


def draft(db, movement_type, product, location, qty):
    key = "to_location_id" if movement_type == "RECEIVE" else "from_location_id"
    movement = create_movement(
        db,
        {"type": movement_type, "lines": [{"product_id": product.id, key: location.id, "qty": Decimal(qty)}]},
        actor=ADMIN,
    )
    db.commit()
    return movement


def test_batch_post_reports_each_movement_and_keeps_successes():
    db = create_session()
    bin_a = create_location(db, "A")
    widget = create_product(db)
    incoming = draft(db, "RECEIVE", widget, bin_a, "4")
    too_much = draft(db, "ISSUE", widget, bin_a, "9")

    batch = batch_post_movements(db, [incoming.id, too_much.id, 999], actor=ADMIN)

    assert (batch.total, batch.succeeded, batch.failed) == (3, 1, 2)
    assert [(item.id, item.doc_number, item.success) for item in batch.results] == [
        (incoming.id, incoming.doc_number, True),
        (too_much.id, too_much.doc_number, False),
        (999, "-", False),
    ]
    assert batch.results[1].code == "insufficient_stock"
    assert batch.results[2].code == "not_found"
    assert db.get(StockMovement, incoming.id).status == "POSTED"
    assert db.get(StockMovement, too_much.id).status == "DRAFT"
    assert get_balance(db, product_id=widget.id, variant_id=None, location_id=bin_a.id) == Decimal("4.00")


def test_batch_cancel_skips_posted_movements_and_records_reason():
    db = create_session()
    bin_a = create_location(db, "A")
    widget = create_product(db)
    posted = draft(db, "RECEIVE", widget, bin_a, "2")
    batch_post_movements(db, [posted.id], actor=ADMIN)
    stale = draft(db, "RECEIVE", widget, bin_a, "1")

    batch = batch_cancel_movements(db, [posted.id, stale.id], actor=ADMIN, reason="Duplicate entry")

    assert [item.success for item in batch.results] == [False, True]
    assert batch.results[0].code == "state_conflict"
    cancelled = db.get(StockMovement, stale.id)
    assert cancelled.status == "CANCELLED"
    assert "Duplicate entry" in cancelled.note


def test_duplicate_ids_are_handled_once():
    db = create_session()
    bin_a = create_location(db, "A")
    incoming = draft(db, "RECEIVE", create_product(db), bin_a, "1")

    batch = batch_post_movements(db, [incoming.id, incoming.id], actor=ADMIN)

    assert batch.total == 1
    assert batch.succeeded == 1


def test_batch_size_is_bounded():
    db = create_session()

    with pytest.raises(ValidationError):
        batch_post_movements(db, [], actor=ADMIN)
    with pytest.raises(ValidationError) as excinfo:
        batch_cancel_movements(db, list(range(1, MAX_BATCH_SIZE + 2)), actor=ADMIN)
    assert excinfo.value.field == "ids"


def test_each_item_checks_permissions():
    db = create_session()
    bin_a = create_location(db, "A")
    incoming = draft(db, "RECEIVE", create_product(db), bin_a, "1")

    batch = batch_post_movements(db, [incoming.id], actor=VIEWER)

    assert batch.failed == 1
    assert batch.results[0].code == "forbidden"
    assert db.get(StockMovement, incoming.id).status == "DRAFT"
