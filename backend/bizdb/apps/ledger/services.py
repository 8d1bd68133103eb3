from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterator, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bizdb.errors import ConflictError, InvalidArgumentError

from . import models

DEFAULT_PAGE_LIMIT = int(os.getenv("LEDGER_PAGE_LIMIT", "50"))
MAX_PAGE_LIMIT = 500

CENT = Decimal("0.01")


@dataclass
class LedgerPage:
    items: List[models.LedgerEntry]
    next_cursor: Optional[str]


def quantize(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT)


def entry_exists(
    db: Session,
    *,
    document_id: str,
    subject_id: str,
    kind: models.LedgerEntryKind,
) -> bool:
    found = (
        db.query(models.LedgerEntry.id)
        .filter(
            models.LedgerEntry.document_id == document_id,
            models.LedgerEntry.subject_id == subject_id,
            models.LedgerEntry.kind == kind,
        )
        .first()
    )
    return found is not None


def duplicate_error(entry: models.LedgerEntry) -> ConflictError:
    return ConflictError(
        "Ledger entry already recorded for this document.",
        detail={
            "document_id": entry.document_id,
            "subject_id": entry.subject_id,
            "kind": getattr(entry.kind, "value", entry.kind),
        },
    )


DUPLICATE_CONSTRAINT = "uq_ledger_entry_document_subject_kind"


def _is_duplicate_violation(exc: IntegrityError) -> bool:
    constraint = getattr(getattr(exc.orig, "diag", None), "constraint_name", None)
    if constraint:
        return constraint == DUPLICATE_CONSTRAINT
    # SQLite reports the column list instead of the constraint name.
    message = str(exc.orig)
    return DUPLICATE_CONSTRAINT in message or (
        "UNIQUE constraint failed" in message
        and "ledger_entries.document_id" in message
        and "ledger_entries.kind" in message
    )


def append(db: Session, *, entry: models.LedgerEntry) -> models.LedgerEntry:
    """
    Persist a new ledger entry inside the caller's unit of work.

    Raises ConflictError if (document_id, subject_id, kind) is already
    recorded, either by a previous call or by a concurrent one that won the
    unique constraint.
    """
    if entry.id is not None:
        raise InvalidArgumentError("Ledger entries are immutable once appended.")
    if entry_exists(db, document_id=entry.document_id, subject_id=entry.subject_id, kind=entry.kind):
        raise duplicate_error(entry)
    db.add(entry)
    try:
        db.flush()
    except IntegrityError as exc:
        if not _is_duplicate_violation(exc):
            raise
        raise duplicate_error(entry) from None
    return entry


def sum_for(
    db: Session,
    *,
    company_id: str,
    subject_id: str,
    as_of: Optional[datetime] = None,
) -> Decimal:
    query = db.query(func.coalesce(func.sum(models.LedgerEntry.amount), 0)).filter(
        models.LedgerEntry.company_id == company_id,
        models.LedgerEntry.subject_id == subject_id,
    )
    if as_of is not None:
        query = query.filter(models.LedgerEntry.occurred_at <= as_of)
    return quantize(query.scalar())


def _resolve_cursor(db: Session, *, company_id: str, subject_id: str, cursor: str) -> models.LedgerEntry:
    try:
        entry_id = int(cursor)
    except (TypeError, ValueError):
        raise InvalidArgumentError("Malformed ledger cursor.", detail={"cursor": cursor}) from None
    anchor = (
        db.query(models.LedgerEntry)
        .filter(
            models.LedgerEntry.id == entry_id,
            models.LedgerEntry.company_id == company_id,
            models.LedgerEntry.subject_id == subject_id,
        )
        .first()
    )
    if not anchor:
        raise InvalidArgumentError("Unknown ledger cursor.", detail={"cursor": cursor})
    return anchor


def list_for(
    db: Session,
    *,
    company_id: str,
    subject_id: str,
    kind: Optional[models.LedgerEntryKind] = None,
    document_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
) -> LedgerPage:
    """
    One page of a subject's entries, oldest first (ties broken by insertion id).

    `next_cursor` is the id of the last entry on the page and resumes the
    listing strictly after it; it is None on the final page.
    """
    limit = DEFAULT_PAGE_LIMIT if limit is None else limit
    if limit < 1 or limit > MAX_PAGE_LIMIT:
        raise InvalidArgumentError(
            f"limit must be between 1 and {MAX_PAGE_LIMIT}.",
            detail={"limit": limit},
        )

    Entry = models.LedgerEntry
    query = db.query(Entry).filter(
        Entry.company_id == company_id,
        Entry.subject_id == subject_id,
    )
    if kind is not None:
        query = query.filter(Entry.kind == kind)
    if document_id:
        query = query.filter(Entry.document_id == document_id)
    if since is not None:
        query = query.filter(Entry.occurred_at >= since)
    if until is not None:
        query = query.filter(Entry.occurred_at <= until)
    if cursor is not None:
        anchor = _resolve_cursor(db, company_id=company_id, subject_id=subject_id, cursor=cursor)
        query = query.filter(
            or_(
                Entry.occurred_at > anchor.occurred_at,
                and_(Entry.occurred_at == anchor.occurred_at, Entry.id > anchor.id),
            )
        )

    rows = query.order_by(Entry.occurred_at.asc(), Entry.id.asc()).limit(limit + 1).all()
    items = rows[:limit]
    next_cursor = str(items[-1].id) if len(rows) > limit else None
    return LedgerPage(items=items, next_cursor=next_cursor)


def iter_for(
    db: Session,
    *,
    company_id: str,
    subject_id: str,
    kind: Optional[models.LedgerEntryKind] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    page_size: Optional[int] = None,
) -> Iterator[models.LedgerEntry]:
    cursor: Optional[str] = None
    while True:
        page = list_for(
            db,
            company_id=company_id,
            subject_id=subject_id,
            kind=kind,
            since=since,
            until=until,
            cursor=cursor,
            limit=page_size,
        )
        yield from page.items
        if page.next_cursor is None:
            return
        cursor = page.next_cursor


def list_for_document(
    db: Session,
    *,
    company_id: str,
    document_type: str,
    document_id: str,
) -> List[models.LedgerEntry]:
    return (
        db.query(models.LedgerEntry)
        .filter(
            models.LedgerEntry.company_id == company_id,
            models.LedgerEntry.document_type == document_type,
            models.LedgerEntry.document_id == document_id,
        )
        .order_by(models.LedgerEntry.occurred_at.asc(), models.LedgerEntry.id.asc())
        .all()
    )
