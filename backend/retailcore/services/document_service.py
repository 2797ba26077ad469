# Overview: Atomic document number allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


def _allocate(document_type: str, scope_key: str) -> int:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.scope_key == scope_key,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        nested = db.session.begin_nested()
        seq = DocumentSequence(document_type=document_type, scope_key=scope_key, next_number=2)
        db.session.add(seq)
        try:
            nested.commit()
            return 1
        except IntegrityError:
            # Lost the creation race; the other caller's row now exists
            nested.rollback()
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    db.session.flush()
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, scope_key=scope_key)
        .scalar()
    )
    return current - 1


def next_document_number(*, document_type: str, prefix: str, pad: int = 4) -> str:
    """
    Allocate the next number for a document type, restarting daily.

    Format: {prefix}-{YYYYMMDD}-{NNNN}, e.g. TRF-20250614-0001.
    The UPDATE takes the row lock, so concurrent callers serialize on it.
    """
    if not document_type:
        raise ValidationError("document_type is required")

    day = utcnow().strftime("%Y%m%d")
    number = _allocate(document_type, day)
    return f"{prefix}-{day}-{number:0{pad}d}"
