# Overview: Company-scoped number sequences for orders, documents and transfers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationFailed
from ..extensions import db
from ..models import DocumentSequence


# sequence_type -> printed prefix
PREFIXES = {
    "ORDER_H2M": "ORD-H2M",
    "ORDER_D2H": "ORD-D2H",
    "ORDER_S2D": "ORD-S2D",
    "PO": "PO",
    "INVOICE": "INV",
    "PAYMENT": "PAY",
    "RECEIPT": "RCP",
    "TRANSFER": "TRF",
}


def _current(company_id: int, sequence_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(company_id=company_id, sequence_type=sequence_type)
        .scalar()
    )


def next_number(*, company_id: int, sequence_type: str, pad: int = 4) -> str:
    """
    Allocate the next number for a company/sequence type.

    Runs inside the caller's transaction: the counter row is bumped with a
    single UPDATE (row-locked until the caller commits) so the number is
    only consumed if the surrounding operation commits. A first-use race
    on the counter row is absorbed by a SAVEPOINT instead of rolling back
    the caller's work.
    """
    if not company_id:
        raise ValidationFailed("company_id is required")
    prefix = PREFIXES.get(sequence_type)
    if prefix is None:
        raise ValidationFailed(f"Unknown sequence type {sequence_type!r}", sequence_type=sequence_type)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.company_id == company_id,
            DocumentSequence.sequence_type == sequence_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        num = _current(company_id, sequence_type) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(company_id=company_id, sequence_type=sequence_type, next_number=2)
                )
            num = 1
        except IntegrityError:
            # Another writer created the row first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            num = _current(company_id, sequence_type) - 1

    return f"{prefix}-{num:0{pad}d}"
