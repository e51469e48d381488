from datetime import datetime
import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stockledger.config import get_settings
from stockledger.errors import ValidationError
from stockledger.models import DocSequence


logger = logging.getLogger(__name__)

DOC_TYPE_PURCHASE_REQUEST = "PR"
DOC_TYPE_PURCHASE_ORDER = "PO"
DOC_TYPE_GOODS_RECEIPT = "GRN"
DOC_TYPE_MOVEMENT = "MOVEMENT"

DEFAULT_PREFIXES = {
    DOC_TYPE_PURCHASE_REQUEST: "PR",
    DOC_TYPE_PURCHASE_ORDER: "PO",
    DOC_TYPE_GOODS_RECEIPT: "GRN",
    DOC_TYPE_MOVEMENT: "MV",
}


def format_document_number(prefix: str, counter: int, pad_length: int, issued_at: datetime) -> str:
    return f"{prefix}{issued_at:%y%m}-{str(counter).zfill(pad_length)}"


def _increment(db: Session, doc_type: str) -> int:
    result = db.execute(
        update(DocSequence)
        .where(DocSequence.doc_type == doc_type)
        .values(current_no=DocSequence.current_no + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def ensure_sequence(db: Session, doc_type: str, *, prefix: str | None = None, pad_length: int | None = None) -> DocSequence:
    sequence = db.query(DocSequence).filter(DocSequence.doc_type == doc_type).first()
    if sequence:
        return sequence
    sequence = DocSequence(
        doc_type=doc_type,
        prefix=prefix or DEFAULT_PREFIXES.get(doc_type, doc_type),
        current_no=0,
        pad_length=pad_length or get_settings().sequence_pad_length,
    )
    db.add(sequence)
    db.flush()
    logger.info("Created document sequence %s with prefix %s", doc_type, sequence.prefix)
    return sequence


def next_document_number(db: Session, doc_type: str, *, now: datetime | None = None) -> str:
    """Allocate the next number for ``doc_type`` inside the caller's transaction.

    The counter row is bumped with a single ``UPDATE ... SET current_no = current_no + 1``
    so concurrent callers serialize on the row lock; a rollback gives the number back.
    """
    if not doc_type:
        raise ValidationError("Document type is required.", field="doc_type")

    if _increment(db, doc_type) == 0:
        ensure_sequence(db, doc_type)
        _increment(db, doc_type)

    prefix, current_no, pad_length = db.execute(
        select(DocSequence.prefix, DocSequence.current_no, DocSequence.pad_length).where(
            DocSequence.doc_type == doc_type
        )
    ).one()
    number = format_document_number(prefix, current_no, pad_length, now or datetime.utcnow())
    logger.debug("Allocated document number: doc_type=%s number=%s", doc_type, number)
    return number
