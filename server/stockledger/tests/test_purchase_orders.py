from decimal import Decimal

import pytest

from stockledger.errors import PermissionDeniedError, StateConflictError, ValidationError
from stockledger.models import GoodsReceipt
from stockledger.permissions import Actor
from stockledger.purchase_requests.service import (
    approve_purchase_request,
    create_purchase_request,
    submit_purchase_request,
)
from stockledger.purchasing.service import (
    acknowledge_purchase_order,
    approve_purchase_order,
    cancel_purchase_order,
    create_purchase_order,
    list_purchase_orders,
    po_total,
    reject_purchase_order,
    send_purchase_order,
    submit_purchase_order,
    update_purchase_order,
)
from stockledger.tests.factories import ADMIN, create_product, create_session, create_supplier
from stockledger.workflow import PURCHASE_ORDER_FLOW

BUYER = Actor(id=2, role="PURCHASING", name="Blake Buyer")


def draft_po(db, supplier, product, qty="10", unit_price=None):
    line = {"product_id": product.id, "qty_ordered": Decimal(qty)}
    if unit_price is not None:
        line["unit_price"] = Decimal(unit_price)
    return create_purchase_order(db, {"supplier_id": supplier.id, "lines": [line]}, actor=BUYER)


def test_unit_price_defaults_from_last_cost_then_standard_cost():
    db = create_session()
    supplier = create_supplier(db)
    bought_before = create_product(db, sku="OLD-1", standard_cost=Decimal("3.00"), last_cost=Decimal("3.40"))
    never_bought = create_product(db, sku="NEW-1", standard_cost=Decimal("7.25"))

    po = create_purchase_order(
        db,
        {
            "supplier_id": supplier.id,
            "lines": [
                {"product_id": bought_before.id, "qty_ordered": Decimal("2")},
                {"product_id": never_bought.id, "qty_ordered": Decimal("1")},
            ],
        },
        actor=BUYER,
    )
    db.commit()

    assert [line.unit_price for line in po.lines] == [Decimal("3.40"), Decimal("7.25")]
    assert po_total(po) == Decimal("14.05")
    assert po.status == "DRAFT"
    assert po.po_number.startswith("PO")
    assert [entry.action for entry in po.timeline] == ["Created"]


def test_order_from_approved_request_copies_lines_and_converts_it():
    db = create_session()
    supplier = create_supplier(db)
    product = create_product(db)
    pr = create_purchase_request(db, {"lines": [{"product_id": product.id, "qty": Decimal("8")}]}, actor=ADMIN)
    submit_purchase_request(db, pr.id, actor=ADMIN)
    approve_purchase_request(db, pr.id, actor=ADMIN)

    po = create_purchase_order(db, {"supplier_id": supplier.id, "pr_id": pr.id}, actor=BUYER)
    db.commit()

    assert pr.status == "CONVERTED"
    assert po.pr_id == pr.id
    assert [(line.product_id, line.qty_ordered) for line in po.lines] == [(product.id, Decimal("8.00"))]
    assert po.timeline[0].note == f"From {pr.pr_number}"


def test_unapproved_request_cannot_be_ordered():
    db = create_session()
    supplier = create_supplier(db)
    product = create_product(db)
    pr = create_purchase_request(db, {"lines": [{"product_id": product.id, "qty": Decimal("8")}]}, actor=ADMIN)

    with pytest.raises(StateConflictError):
        create_purchase_order(db, {"supplier_id": supplier.id, "pr_id": pr.id}, actor=BUYER)


def test_full_approval_and_dispatch_flow(delivered):
    db = create_session()
    supplier = create_supplier(db)
    po = draft_po(db, supplier, create_product(db), unit_price="2.00")

    submit_purchase_order(db, po.id, actor=BUYER)
    approve_purchase_order(db, po.id, actor=ADMIN)
    send_purchase_order(db, po.id, actor=BUYER)
    acknowledge_purchase_order(db, po.id, actor=BUYER, note="Ships Friday")
    db.commit()

    assert po.status == "IN_PROGRESS"
    assert po.approved_by_id == ADMIN.id
    assert po.sent_at is not None
    assert [entry.action for entry in po.timeline] == [
        "Created",
        "Submitted for approval",
        "Approved",
        "Sent to supplier",
        "Supplier confirmed",
    ]
    assert {note.event_type for note in delivered["notifications"]} == {"po_approved", "po_sent"}
    assert PURCHASE_ORDER_FLOW.allowed_actions(po.status) == ["receive_partial", "receive_full", "cancel"]


def test_rejected_order_returns_to_editing():
    db = create_session()
    supplier = create_supplier(db)
    product = create_product(db)
    po = draft_po(db, supplier, product)
    submit_purchase_order(db, po.id, actor=BUYER)

    with pytest.raises(StateConflictError):
        update_purchase_order(db, po.id, {"note": "late change"}, actor=BUYER)

    reject_purchase_order(db, po.id, actor=ADMIN, reason="Wrong supplier")
    update_purchase_order(db, po.id, {"lines": [{"product_id": product.id, "qty_ordered": Decimal("4")}]}, actor=BUYER)
    db.commit()

    assert po.status == "REJECTED"
    assert [line.qty_ordered for line in po.lines] == [Decimal("4.00")]
    assert po.timeline[-1].action == "Edited"


def test_buyer_cannot_approve():
    db = create_session()
    po = draft_po(db, create_supplier(db), create_product(db))
    submit_purchase_order(db, po.id, actor=BUYER)

    with pytest.raises(PermissionDeniedError):
        approve_purchase_order(db, po.id, actor=BUYER)


def test_sending_requires_supplier_contact():
    db = create_session()
    supplier = create_supplier(db, email=None, phone=None)
    po = draft_po(db, supplier, create_product(db))
    submit_purchase_order(db, po.id, actor=BUYER)
    approve_purchase_order(db, po.id, actor=ADMIN)

    with pytest.raises(ValidationError):
        send_purchase_order(db, po.id, actor=BUYER)
    assert po.status == "APPROVED"


def test_send_skipping_approval_is_a_state_conflict():
    db = create_session()
    po = draft_po(db, create_supplier(db), create_product(db))

    with pytest.raises(StateConflictError):
        send_purchase_order(db, po.id, actor=BUYER)


def test_cancel_is_blocked_once_goods_were_received():
    db = create_session()
    supplier = create_supplier(db)
    po = draft_po(db, supplier, create_product(db))
    db.add(GoodsReceipt(grn_number="GRN-TEST", po_id=po.id, status="DRAFT", received_by_id=BUYER.id))
    db.flush()

    with pytest.raises(StateConflictError):
        cancel_purchase_order(db, po.id, actor=BUYER)

    other = draft_po(db, supplier, create_product(db, sku="GAD-1"))
    cancel_purchase_order(db, other.id, actor=BUYER, reason="Duplicate")
    db.commit()
    assert other.status == "CANCELLED"
    assert other.timeline[-1].note == "Duplicate"


def test_list_filters_by_status_and_supplier():
    db = create_session()
    first = create_supplier(db, name="First")
    second = create_supplier(db, name="Second")
    product = create_product(db)
    po_first = draft_po(db, first, product)
    po_second = draft_po(db, second, product)
    submit_purchase_order(db, po_second.id, actor=BUYER)
    db.commit()

    assert [po.id for po in list_purchase_orders(db, supplier_id=first.id)] == [po_first.id]
    assert [po.id for po in list_purchase_orders(db, status="SUBMITTED")] == [po_second.id]


def test_order_lines_are_validated():
    db = create_session()
    supplier = create_supplier(db)
    product = create_product(db)

    with pytest.raises(ValidationError):
        create_purchase_order(db, {"supplier_id": supplier.id, "lines": []}, actor=BUYER)
    with pytest.raises(ValidationError):
        draft_po(db, supplier, product, qty="0")
    with pytest.raises(ValidationError):
        draft_po(db, supplier, product, unit_price="-1")
