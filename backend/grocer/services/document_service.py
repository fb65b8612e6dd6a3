# Overview: Service-layer allocation of human-readable document numbers.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


def next_document_number(*, document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Allocate the next number for ``document_type`` inside the caller's transaction.

    Increment-then-read on the sequence row, so a concurrent writer blocks on
    the UPDATE. The first allocation inserts the row under a savepoint; if
    another writer inserted it first, the increment is retried. A rolled-back
    caller releases its number.
    """
    if not document_type:
        raise ValueError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            return f"{prefix}-{1:0{pad}d}"
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return f"{prefix}-{current - 1:0{pad}d}"


def next_receipt_number() -> str:
    """INV-000001 style receipt number, prefix and padding from config."""
    return next_document_number(
        document_type="INVOICE",
        prefix=current_app.config.get("RECEIPT_PREFIX", "INV"),
        pad=current_app.config.get("RECEIPT_PAD", 6),
    )
