"""Audit records and notifications delivered after the surrounding transaction commits.

Services call ``emit_audit``/``emit_notification`` while they work; the records
wait on ``session.info`` and reach the registered sinks only once the commit
succeeds. A rollback discards them.
"""
from dataclasses import dataclass, field
import logging
from typing import Any, Callable

from sqlalchemy import event
from sqlalchemy.orm import Session


logger = logging.getLogger(__name__)

_AUDIT_KEY = "stockledger.pending_audit"
_NOTIFY_KEY = "stockledger.pending_notifications"


@dataclass
class AuditRecord:
    actor_id: int | None
    action: str
    ref_type: str
    ref_id: int | None
    old_data: dict[str, Any] | None = None
    new_data: dict[str, Any] | None = None


@dataclass
class NotificationEvent:
    event_type: str
    title: str
    message: str
    url: str | None = None
    target_user_ids: list[int] = field(default_factory=list)


AuditSink = Callable[[AuditRecord], None]
NotificationSink = Callable[[NotificationEvent], None]


def log_audit_record(record: AuditRecord) -> None:
    logger.info(
        "audit action=%s ref=%s#%s actor_id=%s old=%s new=%s",
        record.action,
        record.ref_type,
        record.ref_id,
        record.actor_id,
        record.old_data,
        record.new_data,
    )


def log_notification(notification: NotificationEvent) -> None:
    logger.info(
        "notification type=%s targets=%s title=%s",
        notification.event_type,
        notification.target_user_ids,
        notification.title,
    )


_audit_sinks: list[AuditSink] = [log_audit_record]
_notification_sinks: list[NotificationSink] = [log_notification]


def register_audit_sink(sink: AuditSink) -> AuditSink:
    _audit_sinks.append(sink)
    return sink


def register_notification_sink(sink: NotificationSink) -> NotificationSink:
    _notification_sinks.append(sink)
    return sink


def unregister_audit_sink(sink: AuditSink) -> None:
    if sink in _audit_sinks:
        _audit_sinks.remove(sink)


def unregister_notification_sink(sink: NotificationSink) -> None:
    if sink in _notification_sinks:
        _notification_sinks.remove(sink)


def emit_audit(
    db: Session,
    *,
    actor_id: int | None,
    action: str,
    ref_type: str,
    ref_id: int | None,
    old_data: dict[str, Any] | None = None,
    new_data: dict[str, Any] | None = None,
) -> AuditRecord:
    record = AuditRecord(
        actor_id=actor_id,
        action=action,
        ref_type=ref_type,
        ref_id=ref_id,
        old_data=old_data,
        new_data=new_data,
    )
    db.info.setdefault(_AUDIT_KEY, []).append(record)
    return record


def emit_notification(
    db: Session,
    *,
    event_type: str,
    title: str,
    message: str,
    url: str | None = None,
    target_user_ids: list[int] | None = None,
) -> NotificationEvent | None:
    targets = sorted({user_id for user_id in (target_user_ids or []) if user_id is not None})
    if not targets:
        logger.debug("Skipping notification %s with no recipients", event_type)
        return None
    notification = NotificationEvent(
        event_type=event_type,
        title=title,
        message=message,
        url=url,
        target_user_ids=targets,
    )
    db.info.setdefault(_NOTIFY_KEY, []).append(notification)
    return notification


def pending_audit(db: Session) -> list[AuditRecord]:
    return list(db.info.get(_AUDIT_KEY, []))


def pending_notifications(db: Session) -> list[NotificationEvent]:
    return list(db.info.get(_NOTIFY_KEY, []))


def _deliver(sinks, items, kind: str) -> None:
    for item in items:
        for sink in list(sinks):
            try:
                sink(item)
            except Exception:
                logger.exception("%s sink %r failed; record dropped", kind, sink)


@event.listens_for(Session, "after_commit")
def _flush_pending_events(session: Session) -> None:
    audit = session.info.pop(_AUDIT_KEY, [])
    notifications = session.info.pop(_NOTIFY_KEY, [])
    _deliver(_audit_sinks, audit, "Audit")
    _deliver(_notification_sinks, notifications, "Notification")


def discard_pending_events(session: Session) -> int:
    dropped = len(session.info.pop(_AUDIT_KEY, [])) + len(session.info.pop(_NOTIFY_KEY, []))
    if dropped:
        logger.debug("Discarded %s pending events after rollback", dropped)
    return dropped


@event.listens_for(Session, "after_rollback")
def _discard_on_rollback(session: Session) -> None:
    discard_pending_events(session)
