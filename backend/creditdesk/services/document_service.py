# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError
from ..models import DocumentSequence
from ..validation import normalize_code


# Document types and their number prefixes
PICKUP_SEQUENCE = ("CREDIT_PICKUP", "P")
RETURN_SEQUENCE = ("CREDIT_RETURN", "R")
RETURN_CASE_SEQUENCE = ("RETURN_CASE", "RET")


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Atomically allocate the next document number for a document type.

    The increment is a single UPDATE so two writers can never read the same
    value. Runs inside the caller's transaction; the number is only consumed
    if the caller commits.
    """
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_counter(document_type) - 1
    else:
        db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                f"Sequence {document_type} was created concurrently; retry",
                details={"document_type": document_type},
            ) from exc
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"


def _current_counter(document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )


def _number_taken(model, column_name: str, number: str) -> bool:
    column = getattr(model, column_name)
    return db.session.query(model.id).filter(column == number).first() is not None


def allocate_document_number(model, column_name: str, *, document_type: str, prefix: str) -> str:
    """
    Allocate the next sequence number not already held by a document.

    Explicit numbers may occupy values the sequence has not reached yet.
    Those values are skipped and consumed together with the allocated one,
    so the sequence never hands out a taken number again.
    """
    while True:
        number = next_document_number(document_type=document_type, prefix=prefix)
        if not _number_taken(model, column_name, number):
            return number


def claim_explicit_number(model, column_name: str, number: str) -> str:
    """
    Normalize a caller-supplied number and fail with ConflictError if it is
    already taken.

    Callers that supply their own number are never silently renumbered.
    """
    number = normalize_code(number)
    if _number_taken(model, column_name, number):
        raise ConflictError(
            f"{column_name} {number} already exists",
            details={"field": column_name, "value": number},
        )
    return number


def flush_new_document(record, column_name: str) -> None:
    """
    Flush a freshly added document, turning a unique-number collision into
    ConflictError.
    """
    number = getattr(record, column_name)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConflictError(
            f"{column_name} {number} collided with an existing document",
            details={"field": column_name, "value": number},
        ) from exc
