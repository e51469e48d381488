from dataclasses import dataclass, field
import logging
from typing import Callable

from sqlalchemy.orm import Session

from stockledger.errors import ValidationError
from stockledger.models import StockMovement
from stockledger.movements.posting import post_movement
from stockledger.movements.service import cancel_movement
from stockledger.permissions import Actor
from stockledger.transactions import run_action


logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 50
UNKNOWN_DOC_NUMBER = "-"


@dataclass
class BatchItemResult:
    id: int
    doc_number: str
    success: bool
    error: str | None = None
    code: str | None = None


@dataclass
class BatchResult:
    results: list[BatchItemResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.results if item.success)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded


def _batch_ids(ids: list[int]) -> list[int]:
    unique = list(dict.fromkeys(ids or []))
    if not unique:
        raise ValidationError("Select at least one movement.", field="ids")
    if len(unique) > MAX_BATCH_SIZE:
        raise ValidationError(f"A batch can hold at most {MAX_BATCH_SIZE} movements.", field="ids")
    return unique


def _run_batch(db: Session, ids: list[int], action: Callable, label: str, **kwargs) -> BatchResult:
    """Run ``action`` once per movement, each in its own transaction.

    One failing movement never rolls back the others.
    """
    ids = _batch_ids(ids)
    numbers = dict(
        db.query(StockMovement.id, StockMovement.doc_number).filter(StockMovement.id.in_(ids)).all()
    )
    db.rollback()

    batch = BatchResult()
    for movement_id in ids:
        doc_number = numbers.get(movement_id, UNKNOWN_DOC_NUMBER)
        outcome = run_action(db, action, movement_id, **kwargs)
        batch.results.append(
            BatchItemResult(
                id=movement_id,
                doc_number=doc_number,
                success=outcome.success,
                error=outcome.error,
                code=outcome.code,
            )
        )
    logger.info("Batch %s: %s of %s movements succeeded", label, batch.succeeded, batch.total)
    return batch


def batch_post_movements(db: Session, ids: list[int], *, actor: Actor) -> BatchResult:
    return _run_batch(db, ids, post_movement, "post", actor=actor)


def batch_cancel_movements(db: Session, ids: list[int], *, actor: Actor, reason: str | None = None) -> BatchResult:
    return _run_batch(db, ids, cancel_movement, "cancel", actor=actor, reason=reason)
