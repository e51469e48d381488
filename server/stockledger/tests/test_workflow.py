import pytest

from stockledger.errors import StateConflictError
from stockledger.events import pending_audit
from stockledger.models import StockMovement
from stockledger.tests.factories import create_session
from stockledger.workflow import (
    GOODS_RECEIPT_FLOW,
    MOVEMENT_FLOW,
    PURCHASE_ORDER_FLOW,
    PURCHASE_REQUEST_FLOW,
    transition,
)


def test_targets_follow_the_transition_table():
    assert PURCHASE_REQUEST_FLOW.target("submit", "REJECTED") == "SUBMITTED"
    assert PURCHASE_ORDER_FLOW.target("receive_full", "PARTIALLY_RECEIVED") == "FULLY_RECEIVED"
    assert GOODS_RECEIPT_FLOW.target("post", "DRAFT") == "POSTED"
    assert MOVEMENT_FLOW.can("cancel", "DRAFT")
    assert not MOVEMENT_FLOW.can("cancel", "POSTED")


@pytest.mark.parametrize(
    "flow, action, status",
    [
        (PURCHASE_REQUEST_FLOW, "approve", "DRAFT"),
        (PURCHASE_REQUEST_FLOW, "convert", "SUBMITTED"),
        (PURCHASE_ORDER_FLOW, "send", "SUBMITTED"),
        (PURCHASE_ORDER_FLOW, "cancel", "FULLY_RECEIVED"),
        (PURCHASE_ORDER_FLOW, "cancel", "PARTIALLY_RECEIVED"),
        (GOODS_RECEIPT_FLOW, "post", "POSTED"),
        (MOVEMENT_FLOW, "post", "CANCELLED"),
        (MOVEMENT_FLOW, "reopen", "POSTED"),
    ],
)
def test_undefined_transitions_are_state_conflicts(flow, action, status):
    with pytest.raises(StateConflictError):
        flow.target(action, status)


def test_allowed_actions_per_status():
    assert PURCHASE_REQUEST_FLOW.allowed_actions("DRAFT") == ["submit", "cancel"]
    assert PURCHASE_REQUEST_FLOW.allowed_actions("SUBMITTED") == ["approve", "reject"]
    assert PURCHASE_ORDER_FLOW.allowed_actions("APPROVED") == ["send", "cancel"]
    assert PURCHASE_ORDER_FLOW.allowed_actions("FULLY_RECEIVED") == []
    assert GOODS_RECEIPT_FLOW.allowed_actions("CANCELLED") == []


def test_only_draft_like_statuses_are_editable():
    PURCHASE_ORDER_FLOW.ensure_editable("REJECTED")
    GOODS_RECEIPT_FLOW.ensure_editable("DRAFT")
    with pytest.raises(StateConflictError):
        PURCHASE_ORDER_FLOW.ensure_editable("SENT")
    with pytest.raises(StateConflictError):
        MOVEMENT_FLOW.ensure_editable("POSTED")


def test_transition_updates_status_and_queues_audit():
    db = create_session()
    movement = StockMovement(doc_number="MV-TEST", type="RECEIVE", status="DRAFT", created_by_id=1)
    db.add(movement)
    db.flush()

    previous = transition(db, MOVEMENT_FLOW, movement, "cancel", actor_id=1, ref_type="MOVEMENT", note="typo")

    assert previous == "DRAFT"
    assert movement.status == "CANCELLED"
    record = pending_audit(db)[-1]
    assert record.action == "CANCEL"
    assert record.old_data == {"status": "DRAFT"}
    assert record.new_data == {"status": "CANCELLED", "note": "typo"}
