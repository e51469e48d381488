from dataclasses import dataclass

from stockledger.errors import StateConflictError
from stockledger.events import emit_audit


@dataclass(frozen=True)
class StateMachine:
    """Named actions over document statuses: ``{action: {from_status: to_status}}``."""

    document: str
    actions: dict[str, dict[str, str]]
    editable: frozenset[str] = frozenset()

    def can(self, action: str, status: str) -> bool:
        return status in self.actions.get(action, {})

    def target(self, action: str, status: str) -> str:
        transitions = self.actions.get(action)
        if transitions is None:
            raise StateConflictError(f"Unknown {self.document} action '{action}'.")
        if status not in transitions:
            allowed = ", ".join(sorted(transitions))
            raise StateConflictError(
                f"Cannot {action} {self.document} in status {status} (allowed from: {allowed})."
            )
        return transitions[status]

    def allowed_actions(self, status: str) -> list[str]:
        return [action for action, transitions in self.actions.items() if status in transitions]

    def ensure_editable(self, status: str) -> None:
        if status not in self.editable:
            raise StateConflictError(f"{self.document} can only be edited while in {', '.join(sorted(self.editable))}.")


def _from_each(statuses, target: str) -> dict[str, str]:
    return {status: target for status in statuses}


PURCHASE_REQUEST_FLOW = StateMachine(
    document="Purchase request",
    actions={
        "submit": _from_each(("DRAFT", "REJECTED"), "SUBMITTED"),
        "approve": {"SUBMITTED": "APPROVED"},
        "reject": {"SUBMITTED": "REJECTED"},
        "convert": {"APPROVED": "CONVERTED"},
        "cancel": _from_each(("DRAFT", "REJECTED"), "CANCELLED"),
    },
    editable=frozenset({"DRAFT", "REJECTED"}),
)

PO_RECEIVABLE_STATUSES = ("SENT", "IN_PROGRESS", "PARTIALLY_RECEIVED")

PURCHASE_ORDER_FLOW = StateMachine(
    document="Purchase order",
    actions={
        "submit": _from_each(("DRAFT", "REJECTED"), "SUBMITTED"),
        "approve": {"SUBMITTED": "APPROVED"},
        "reject": {"SUBMITTED": "REJECTED"},
        "send": {"APPROVED": "SENT"},
        "acknowledge": {"SENT": "IN_PROGRESS"},
        "receive_partial": _from_each(PO_RECEIVABLE_STATUSES, "PARTIALLY_RECEIVED"),
        "receive_full": _from_each(PO_RECEIVABLE_STATUSES, "FULLY_RECEIVED"),
        "cancel": _from_each(("DRAFT", "SUBMITTED", "APPROVED", "REJECTED", "SENT", "IN_PROGRESS"), "CANCELLED"),
    },
    editable=frozenset({"DRAFT", "REJECTED"}),
)

GOODS_RECEIPT_FLOW = StateMachine(
    document="Goods receipt",
    actions={
        "post": {"DRAFT": "POSTED"},
        "cancel": {"DRAFT": "CANCELLED"},
    },
    editable=frozenset({"DRAFT"}),
)

MOVEMENT_FLOW = StateMachine(
    document="Movement",
    actions={
        "post": {"DRAFT": "POSTED"},
        "cancel": {"DRAFT": "CANCELLED"},
    },
    editable=frozenset({"DRAFT"}),
)


def transition(db, flow: StateMachine, document, action: str, *, actor_id: int | None, ref_type: str, note: str | None = None) -> str:
    """Move ``document`` along ``flow`` and queue the audit record; returns the previous status."""
    old_status = document.status
    document.status = flow.target(action, old_status)
    db.flush()
    new_data = {"status": document.status}
    if note:
        new_data["note"] = note
    emit_audit(
        db,
        actor_id=actor_id,
        action=action.upper(),
        ref_type=ref_type,
        ref_id=document.id,
        old_data={"status": old_status},
        new_data=new_data,
    )
    return old_status
