from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from bizdb.database import get_read_db
from bizdb.security import ActorContext, get_actor_context

from . import models, schemas, services
from . import reconcile as ledger_reconcile

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get("/{subject_id}", response_model=schemas.LedgerPageRead)
def list_entries(
    subject_id: str,
    kind: Optional[models.LedgerEntryKind] = None,
    document_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    page = services.list_for(
        db,
        company_id=ctx.company_id,
        subject_id=subject_id,
        kind=kind,
        document_id=document_id,
        since=since,
        until=until,
        cursor=cursor,
        limit=limit,
    )
    return {"items": page.items, "next_cursor": page.next_cursor}


@router.get("/{subject_id}/reconcile", response_model=schemas.ReconcileRead)
def reconcile_subject(
    subject_id: str,
    db: Session = Depends(get_read_db),
    ctx: ActorContext = Depends(get_actor_context),
):
    result = ledger_reconcile.reconcile(db, company_id=ctx.company_id, subject_id=subject_id)
    return schemas.ReconcileRead(
        subject_type=result.subject_type,
        subject_id=result.subject_id,
        projected_value=result.projected_value,
        ledger_sum=result.ledger_sum,
        is_consistent=result.is_consistent,
    )
