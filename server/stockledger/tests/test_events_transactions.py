from unittest.mock import patch

import pytest
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, OperationalError, ProgrammingError

from stockledger.errors import StateConflictError, ValidationError
from stockledger.events import (
    emit_audit,
    emit_notification,
    pending_audit,
    register_audit_sink,
    unregister_audit_sink,
)
from stockledger.tests.factories import create_session, create_user
from stockledger.transactions import GENERIC_MESSAGE, TRANSIENT_MESSAGE, run_action


def audit_something(db, action="TOUCH"):
    emit_audit(db, actor_id=1, action=action, ref_type="TEST", ref_id=1)
    return action


def test_events_reach_sinks_only_after_commit(delivered):
    db = create_session()

    audit_something(db)
    emit_notification(db, event_type="ping", title="Ping", message="hello", target_user_ids=[3, 3, None, 2])
    assert delivered["audit"] == []
    assert len(pending_audit(db)) == 1

    db.commit()

    assert [record.action for record in delivered["audit"]] == ["TOUCH"]
    assert delivered["notifications"][0].target_user_ids == [2, 3]
    assert pending_audit(db) == []


def test_rollback_discards_pending_events(delivered):
    db = create_session()
    create_user(db)

    audit_something(db)
    db.rollback()
    db.commit()

    assert delivered["audit"] == []


def test_notification_without_recipients_is_skipped():
    db = create_session()

    assert emit_notification(db, event_type="ping", title="Ping", message="hello", target_user_ids=[]) is None
    assert emit_notification(db, event_type="ping", title="Ping", message="hello", target_user_ids=[None]) is None


def test_failing_sink_does_not_block_other_sinks(delivered):
    def broken(record):
        raise RuntimeError("audit store offline")

    register_audit_sink(broken)
    try:
        db = create_session()
        audit_something(db)
        db.commit()
    finally:
        unregister_audit_sink(broken)

    assert [record.action for record in delivered["audit"]] == ["TOUCH"]


def test_run_action_commits_and_returns_data(delivered):
    db = create_session()

    result = run_action(db, audit_something, "SAVE")

    assert result.success
    assert result.data == "SAVE"
    assert [record.action for record in delivered["audit"]] == ["SAVE"]


@pytest.mark.parametrize(
    "exc, code, retryable",
    [
        (ValidationError("Quantity must be positive.", field="qty"), "validation", False),
        (StateConflictError("Already posted."), "state_conflict", False),
        (IntegrityError("INSERT", {}, Exception("duplicate key")), "integrity", False),
        (OperationalError("UPDATE", {}, Exception("lock timeout")), "transient", True),
        (
            DBAPIError("SELECT 1", {}, Exception("server closed the connection"), connection_invalidated=True),
            "transient",
            True,
        ),
        (DataError("UPDATE", {}, Exception("numeric field overflow")), "error", False),
        (ProgrammingError("SELECT", {}, Exception("column does not exist")), "error", False),
        (RuntimeError("boom"), "error", False),
    ],
)
def test_run_action_maps_failures_and_rolls_back(delivered, exc, code, retryable):
    db = create_session()

    def failing(db):
        audit_something(db)
        raise exc

    result = run_action(db, failing)

    assert not result.success
    assert result.code == code
    assert result.retryable is retryable
    assert pending_audit(db) == []
    assert delivered["audit"] == []


def test_run_action_reports_field_and_messages():
    db = create_session()

    def invalid(db):
        raise ValidationError("Quantity must be positive.", field="qty")

    def slow(db):
        raise OperationalError("UPDATE", {}, Exception("canceling statement due to statement timeout"))

    def crash(db):
        raise KeyError("missing")

    assert run_action(db, invalid).field == "qty"
    assert run_action(db, slow).error == TRANSIENT_MESSAGE
    assert run_action(db, crash).error == GENERIC_MESSAGE


def test_statement_timeout_is_only_set_on_postgresql():
    db = create_session()

    with patch("stockledger.transactions.text") as text:
        run_action(db, audit_something, timeout_seconds=5)

    text.assert_not_called()
