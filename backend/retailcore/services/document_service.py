# Overview: Atomic allocation of human-readable document codes.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..exceptions import ConcurrencyConflictError
from ..models import DocumentSequence
from ..time_utils import utcnow


# Codes skipped before giving up when out-of-band rows already use them
MAX_COLLISION_SKIPS = 50


def _allocate(document_type: str) -> int:
    """
    Atomically take the next number for a document type.

    The UPDATE takes the row lock; the first allocation for a type inserts the
    row inside a savepoint so a racing insert does not poison the caller's
    transaction.
    """
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 5,
    dated: bool = True,
    exists=None,
) -> str:
    """
    Allocate the next code for a document type.

    dated=True  -> "V-20260115-00042"
    dated=False -> "R-000042"

    exists(code) -> bool is the collision check; numbers already taken (e.g.
    rows created outside the sequence) are skipped.
    """
    if not document_type:
        raise ValueError("document_type is required")

    for _ in range(MAX_COLLISION_SKIPS):
        number = _allocate(document_type)
        if dated:
            code = f"{prefix}-{utcnow():%Y%m%d}-{number:0{pad}d}"
        else:
            code = f"{prefix}-{number:0{pad}d}"
        if exists is None or not exists(code):
            return code

    raise ConcurrencyConflictError(
        f"Could not allocate a free {document_type} code",
        details={"document_type": document_type},
    )
