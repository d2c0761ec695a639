# Overview: Sequential document numbers for invoices and returns.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from stockledger.time_utils import utcnow


DOCUMENT_TYPE_INVOICE = "INVOICE"
DOCUMENT_TYPE_RETURN = "RETURN"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    year: int | None = None,
    pad: int = 6,
) -> str:
    """
    Allocate the next number for (document_type, year), e.g. INV-2026-000001.

    Runs inside the caller's unit of work (no commit here). The UPDATE takes
    the row lock, so concurrent writers serialize on the sequence row.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if year is None:
        year = utcnow().year

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.year == year,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, year=year)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(document_type=document_type, year=year, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(document_type=document_type, year=year)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{year}-{next_num:0{pad}d}"
