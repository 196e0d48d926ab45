from __future__ import annotations

import secrets
import string
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.models import DocumentSequence, InternalRequest, PurchaseRequest
from app.services.errors import InfrastructureError

PURCHASE_PREFIX = 'DA'
INTERNAL_PREFIX = 'INT'
SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
SUFFIX_LENGTH = 6
MAX_SUFFIX_ATTEMPTS = 10


def format_purchase_reference(now: datetime, suffix: str) -> str:
    return f'{PURCHASE_PREFIX}-{now:%Y%m}-{suffix}'


def format_internal_reference(year: int, sequence: int) -> str:
    return f'{INTERNAL_PREFIX}-{year}-{sequence:04d}'


def random_suffix() -> str:
    return ''.join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))


def next_purchase_reference(db: Session, *, now: datetime) -> str:
    for _ in range(MAX_SUFFIX_ATTEMPTS):
        reference = format_purchase_reference(now, random_suffix())
        taken = db.execute(
            select(PurchaseRequest.id).where(PurchaseRequest.reference == reference)
        ).scalar_one_or_none()
        if taken is None:
            return reference
    raise InfrastructureError('Could not allocate a unique purchase request reference')


def _counter_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == 'sqlite':
        return sqlite_insert(DocumentSequence)
    return pg_insert(DocumentSequence)


def ensure_sequence_row(db: Session, *, doc_type: str, period_key: str, start: int) -> None:
    """Create the counter row unless a concurrent transaction already did."""
    statement = (
        _counter_insert(db)
        .values(doc_type=doc_type, period_key=period_key, current_value=start)
        .on_conflict_do_nothing(index_elements=['doc_type', 'period_key'])
    )
    db.execute(statement)


def _locked_sequence(db: Session, *, doc_type: str, period_key: str) -> DocumentSequence | None:
    return db.execute(
        select(DocumentSequence)
        .where(
            DocumentSequence.doc_type == doc_type,
            DocumentSequence.period_key == period_key,
        )
        .with_for_update()
    ).scalar_one_or_none()


def next_internal_reference(db: Session, *, now: datetime) -> str:
    """Allocate the next ``INT-YYYY-NNNN`` reference inside the caller's transaction.

    The per-year counter row is locked until the caller commits, so two concurrent
    creations never read the same value, and a rolled back creation gives its number
    back. The first allocation of a year seeds the counter from the references
    already issued that year.
    """
    period_key = str(now.year)
    sequence = _locked_sequence(db, doc_type=INTERNAL_PREFIX, period_key=period_key)
    if sequence is None:
        issued = db.execute(
            select(func.count(InternalRequest.id)).where(
                InternalRequest.reference.like(f'{INTERNAL_PREFIX}-{period_key}-%')
            )
        ).scalar_one()
        ensure_sequence_row(db, doc_type=INTERNAL_PREFIX, period_key=period_key, start=issued)
        sequence = _locked_sequence(db, doc_type=INTERNAL_PREFIX, period_key=period_key)

    sequence.current_value += 1
    sequence.updated_at = now
    db.flush()
    return format_internal_reference(now.year, sequence.current_value)
