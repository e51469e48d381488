from dataclasses import dataclass
import logging
from typing import Any, Callable

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from stockledger.config import get_settings
from stockledger.errors import InventoryError
from stockledger.events import discard_pending_events


logger = logging.getLogger(__name__)

TRANSIENT_MESSAGE = "The database is busy or the request timed out. Please retry."
INTEGRITY_MESSAGE = "The change conflicts with existing records."
GENERIC_MESSAGE = "The operation failed unexpectedly."


@dataclass
class ActionResult:
    success: bool
    data: Any = None
    error: str | None = None
    code: str | None = None
    field: str | None = None
    retryable: bool = False

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def from_error(cls, exc: InventoryError) -> "ActionResult":
        return cls(
            success=False,
            error=exc.message,
            code=exc.code,
            field=exc.field,
            retryable=exc.retryable,
        )


def _rollback(db: Session) -> None:
    # rollback() fires no event when no transaction was begun.
    db.rollback()
    discard_pending_events(db)


def is_transient(exc: DBAPIError) -> bool:
    """Timeouts, lock waits and dropped connections; data and SQL errors fail the same way again."""
    return isinstance(exc, OperationalError) or exc.connection_invalidated


def apply_statement_timeout(db: Session, timeout_seconds: int | float) -> None:
    if db.get_bind().dialect.name != "postgresql" or not timeout_seconds:
        return
    db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}"))


def run_action(
    db: Session,
    operation: Callable[..., Any],
    *args,
    timeout_seconds: int | float | None = None,
    **kwargs,
) -> ActionResult:
    """Run ``operation(db, *args, **kwargs)`` as one transaction.

    Commits on success. Any failure rolls back every write and comes back as a
    failed ``ActionResult``; nothing is raised to the caller.
    """
    timeout = get_settings().transaction_timeout_seconds if timeout_seconds is None else timeout_seconds
    name = getattr(operation, "__name__", repr(operation))
    try:
        apply_statement_timeout(db, timeout)
        data = operation(db, *args, **kwargs)
        db.commit()
    except InventoryError as exc:
        _rollback(db)
        logger.info("Action %s rejected: code=%s field=%s error=%s", name, exc.code, exc.field, exc.message)
        return ActionResult.from_error(exc)
    except IntegrityError as exc:
        _rollback(db)
        logger.warning("Action %s hit an integrity error: %s", name, exc.orig)
        return ActionResult(success=False, error=INTEGRITY_MESSAGE, code="integrity")
    except DBAPIError as exc:
        _rollback(db)
        if not is_transient(exc):
            logger.error("Action %s failed in the database: %s", name, exc.orig)
            return ActionResult(success=False, error=GENERIC_MESSAGE, code="error")
        logger.warning("Action %s failed transiently: %s", name, exc.orig)
        return ActionResult(success=False, error=TRANSIENT_MESSAGE, code="transient", retryable=True)
    except Exception:
        _rollback(db)
        logger.exception("Action %s failed", name)
        return ActionResult(success=False, error=GENERIC_MESSAGE, code="error")
    return ActionResult.ok(data)
