from __future__ import annotations

from decimal import Decimal
from typing import Optional, Tuple, Type, TypeVar

from sqlalchemy.orm import Session

from bizdb.errors import NotFoundError

from . import models
from . import services as ledger_services

S = TypeVar("S", bound=models.LedgerSubject)


def lock_subject(
    db: Session,
    model: Type[S],
    *,
    company_id: str,
    subject_id: str,
    label: str = "Subject",
) -> S:
    """
    Load a subject for update within the current unit of work.

    Row locks are taken where the database supports them; the subject's
    version column catches the remaining lost updates at flush time.
    """
    subject = (
        db.query(model)
        .filter(model.id == subject_id, model.company_id == company_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not subject:
        raise NotFoundError(f"{label} not found.", detail={"subject_id": subject_id})
    return subject


def apply(db: Session, subject: models.LedgerSubject, signed_amount) -> Tuple[models.Amount, models.Amount]:
    amount = subject.coerce_amount(signed_amount)
    previous = subject.ledger_value
    new_value = previous + amount
    floor = subject.ledger_floor
    if new_value < floor:
        raise subject.insufficient_error(
            f"Insufficient {subject.ledger_subject_type.value.lower()} value for this movement.",
            detail={
                "subject_id": subject.id,
                "current_value": str(previous),
                "requested": str(amount),
                "floor": str(floor),
            },
        )
    subject.ledger_value = new_value
    db.flush()
    return previous, new_value


def post_movement(
    db: Session,
    *,
    subject: models.LedgerSubject,
    kind: models.LedgerEntryKind,
    amount,
    document_type: str,
    document_id: str,
    actor_id: Optional[str],
    reason: Optional[str] = None,
    reference: Optional[str] = None,
    unit_cost: Optional[Decimal] = None,
    reverses_entry_id: Optional[int] = None,
) -> models.LedgerEntry:
    """
    Project `amount` onto the subject and append the matching ledger entry.

    The duplicate check runs before the subject is touched, so a replayed
    movement fails with ConflictError without changing the current value.
    """
    amount = subject.coerce_amount(amount)
    entry = models.LedgerEntry(
        company_id=subject.company_id,
        subject_type=subject.ledger_subject_type,
        subject_id=subject.id,
        kind=kind,
        amount=Decimal(amount),
        unit_cost=unit_cost,
        total_cost=(unit_cost * abs(amount)) if unit_cost is not None else None,
        reason=reason,
        reference=reference,
        document_type=document_type,
        document_id=document_id,
        reverses_entry_id=reverses_entry_id,
        actor_id=actor_id,
    )
    if ledger_services.entry_exists(db, document_id=document_id, subject_id=subject.id, kind=kind):
        raise ledger_services.duplicate_error(entry)

    previous, new_value = apply(db, subject, amount)
    entry.previous_value = Decimal(previous)
    entry.new_value = Decimal(new_value)
    return ledger_services.append(db, entry=entry)
